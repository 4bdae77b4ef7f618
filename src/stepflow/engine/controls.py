from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..errors import ConditionEvaluationError, ControlFailure, ExecutionAbort, PropertyResolutionError
from ..executors import ActionExecutor, ActionOutcome
from ..models import ActionControl
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .models import ControlExecution, ExecutionStatus, ReturnCode, now_ms
from .substitution import Substitutor

log = logging.getLogger(__name__)

__all__ = ["ControlRunner", "COMPARATORS"]

COMPARATORS = {
    "verifyStringEqual": "ifStringEqual",
    "verifyStringDifferent": "ifStringDifferent",
    "verifyStringGreater": "ifStringGreater",
    "verifyStringMinor": "ifStringMinor",
    "verifyStringContains": "ifStringContains",
    "verifyStringNotContains": "ifStringNotContains",
    "verifyStringMatchRegex": "ifStringMatchRegex",
    "verifyStringNotMatchRegex": "ifStringNotMatchRegex",
    "verifyStringEmpty": "ifStringEmpty",
    "verifyStringNotEmpty": "ifStringNotEmpty",
    "verifyNumericEquals": "ifNumericEqual",
    "verifyNumericDifferent": "ifNumericDifferent",
    "verifyNumericGreater": "ifNumericGreater",
    "verifyNumericGreaterOrEqual": "ifNumericGreaterOrEqual",
    "verifyNumericMinor": "ifNumericMinor",
    "verifyNumericMinorOrEqual": "ifNumericMinorOrEqual",
}


class ControlRunner:
    """
    Run one control against the value produced by its action.

    ``verify*`` comparisons are evaluated locally; any other control type
    is handed to the action executor.
    """

    def __init__(
        self,
        substitutor: Substitutor,
        evaluator: ConditionEvaluator,
        executor: ActionExecutor,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.substitutor = substitutor
        self.evaluator = evaluator
        self.executor = executor
        self.clock = clock or now_ms

    def _new_record(self, control: ActionControl, index: int) -> ControlExecution:
        return ControlExecution(
            test=control.test,
            testcase=control.testcase,
            step_id=control.step_id,
            index=index,
            action_id=control.action_id,
            control_id=control.control_id,
            sort=control.sort,
            control=control.control,
            condition_operator=control.condition.operator,
            value1_init=control.value1,
            value2_init=control.value2,
            value3_init=control.value3,
            options=dict(control.options),
            is_fatal=control.is_fatal,
            description=control.description,
        )

    def not_run(self, control: ActionControl, index: int, reason: str) -> ControlExecution:
        record = self._new_record(control, index)
        record.status = ExecutionStatus.NOT_RUN
        record.return_message = reason
        return record

    async def run(
        self,
        control: ActionControl,
        produced_value: Any,
        context: ExecutionContext,
        *,
        index: int = 1,
        collect: Optional[List[ControlExecution]] = None,
    ) -> ControlExecution:
        record = self._new_record(control, index)
        if collect is not None:
            collect.append(record)
        record.status = ExecutionStatus.RUNNING
        record.start = self.clock()
        try:
            await self._run(control, produced_value, context, record)
        except (ExecutionAbort, asyncio.CancelledError) as exc:
            record.status = ExecutionStatus.ABORTED
            record.return_code = ReturnCode.FA
            record.return_message = getattr(exc, "message", "Execution cancelled.")
            record.end = self.clock()
            raise
        record.end = self.clock()
        return record

    async def _run(
        self, control: ActionControl, produced_value: Any, context: ExecutionContext, record: ControlExecution
    ) -> None:
        condition = control.condition
        try:
            record.condition_value1 = await self.substitutor.substitute(condition.value1, context)
            record.condition_value2 = await self.substitutor.substitute(condition.value2, context)
            record.condition_value3 = await self.substitutor.substitute(condition.value3, context)
            allowed = self.evaluator.evaluate(
                condition.operator,
                record.condition_value1,
                record.condition_value2,
                record.condition_value3,
                condition.options,
                context,
            )
        except (ConditionEvaluationError, PropertyResolutionError) as exc:
            self._fail(record, f"Control condition could not be evaluated: {exc}")
            return
        if not allowed:
            record.status = ExecutionStatus.SKIPPED
            record.return_message = f"Control {control.control} not executed: condition {condition.operator} is false."
            return

        try:
            record.value1 = await self.substitutor.substitute(control.value1, context)
            record.value2 = await self.substitutor.substitute(control.value2, context)
            record.value3 = await self.substitutor.substitute(control.value3, context)
            if record.value1 == "" and produced_value is not None:
                record.value1 = produced_value if isinstance(produced_value, str) else str(produced_value)
            await self._check(control, produced_value, context, record)
        except (ControlFailure, ConditionEvaluationError, PropertyResolutionError) as exc:
            self._fail(record, str(exc.message))
            return
        record.status = ExecutionStatus.DONE
        record.return_code = ReturnCode.OK
        log.debug("Control %s passed", control.control)

    async def _check(
        self, control: ActionControl, produced_value: Any, context: ExecutionContext, record: ControlExecution
    ) -> None:
        operator = COMPARATORS.get(control.control)
        if operator is not None:
            if not self.evaluator.evaluate(
                operator, record.value1, record.value2, record.value3, record.options, context
            ):
                raise ControlFailure(
                    f"{control.control} failed: '{record.value1}' against '{record.value2}'.",
                    test=control.test,
                    testcase=control.testcase,
                    control_type=control.control,
                )
            record.return_message = f"{control.control} passed: '{record.value1}' against '{record.value2}'."
            return
        args = {
            "value1": record.value1,
            "value2": record.value2,
            "value3": record.value3,
            "options": record.options,
            "produced_value": produced_value,
        }
        try:
            outcome = ActionOutcome.coerce(await context.cancellable(self.executor.execute(control.control, args)))
        except ExecutionAbort:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ControlFailure(
                f"{control.control} could not be checked: {exc}",
                test=control.test,
                testcase=control.testcase,
                control_type=control.control,
            ) from exc
        if outcome.return_code.severity >= ReturnCode.KO.severity:
            raise ControlFailure(
                outcome.message or f"{control.control} failed.",
                test=control.test,
                testcase=control.testcase,
                control_type=control.control,
            )
        record.return_message = outcome.message or f"{control.control} passed."

    def _fail(self, record: ControlExecution, message: str) -> None:
        record.status = ExecutionStatus.DONE
        record.return_message = message
        if record.is_fatal:
            record.return_code = ReturnCode.FA
            record.stop_execution = True
        else:
            record.return_code = ReturnCode.KO
        log.info("Control %s %s: %s", record.control, record.return_code.value, message)
