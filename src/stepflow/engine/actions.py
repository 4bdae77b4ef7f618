from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..errors import ActionExecutionError, ConditionEvaluationError, ExecutionAbort, PropertyResolutionError
from ..executors import ActionExecutor, ActionOutcome
from ..models import StepAction
from ..observability.logging_utils import redact_value
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .controls import ControlRunner
from .models import ActionExecution, ExecutionStatus, ReturnCode, now_ms
from .substitution import Substitutor

log = logging.getLogger(__name__)

__all__ = ["ActionRunner", "CALCULATE_PROPERTY"]

CALCULATE_PROPERTY = "calculateProperty"


class ActionRunner:
    """
    Run one action: gate it, substitute its values, hand it to the executor,
    then run its controls against the produced value.
    """

    def __init__(
        self,
        store: Any,
        substitutor: Substitutor,
        evaluator: ConditionEvaluator,
        executor: ActionExecutor,
        controls: ControlRunner,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.substitutor = substitutor
        self.evaluator = evaluator
        self.executor = executor
        self.controls = controls
        self.clock = clock or now_ms

    def _new_record(self, action: StepAction, index: int) -> ActionExecution:
        return ActionExecution(
            test=action.test,
            testcase=action.testcase,
            step_id=action.step_id,
            index=index,
            action_id=action.action_id,
            sort=action.sort,
            action=action.action,
            condition_operator=action.condition.operator,
            value1_init=action.value1,
            value2_init=action.value2,
            value3_init=action.value3,
            options=dict(action.options),
            is_fatal=action.is_fatal,
            description=action.description,
        )

    async def run(
        self,
        action: StepAction,
        context: ExecutionContext,
        *,
        index: int = 1,
        collect: Optional[List[ActionExecution]] = None,
    ) -> ActionExecution:
        """
        Run ``action`` and return its record.

        When ``collect`` is given the record is appended to it before any work
        starts, so an aborted action still shows up in its step.
        """

        record = self._new_record(action, index)
        if collect is not None:
            collect.append(record)
        record.status = ExecutionStatus.RUNNING
        record.start = self.clock()
        try:
            await self._run(action, context, record)
        except (ExecutionAbort, asyncio.CancelledError) as exc:
            record.status = ExecutionStatus.ABORTED
            record.return_code = ReturnCode.FA
            record.return_message = getattr(exc, "message", "Execution cancelled.")
            record.stop_execution = True
            record.end = self.clock()
            raise
        record.end = self.clock()
        log.info(
            "Action %s (%s/%s#%s.%s) %s %s",
            action.action,
            action.test,
            action.testcase,
            action.step_id,
            action.action_id,
            record.return_code.value,
            record.return_message,
        )
        return record

    async def _run(self, action: StepAction, context: ExecutionContext, record: ActionExecution) -> None:
        condition = action.condition
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
            self._fail(record, f"Action condition could not be evaluated: {exc.message}")
            return
        if not allowed:
            record.status = ExecutionStatus.SKIPPED
            record.return_message = f"Action {action.action} not executed: condition {condition.operator} is false."
            return

        if action.action == CALCULATE_PROPERTY:
            outcome = await self._calculate_property(action, context, record)
        else:
            try:
                record.value1 = await self.substitutor.substitute(action.value1, context)
                record.value2 = await self.substitutor.substitute(action.value2, context)
                record.value3 = await self.substitutor.substitute(action.value3, context)
            except PropertyResolutionError as exc:
                self._fail(record, f"Action values could not be resolved: {exc.message}")
                return
            outcome = await self._execute(action, context, record)
        if outcome is None:
            return

        record.status = ExecutionStatus.DONE
        record.produced_value = outcome.value
        record.return_message = outcome.message
        code = outcome.return_code
        if code is ReturnCode.KO and action.is_fatal:
            code = ReturnCode.FA
        record.return_code = code
        if code is ReturnCode.FA:
            record.stop_execution = True

        controls = self.store.get_controls(action)
        if code.severity >= ReturnCode.KO.severity:
            record.controls = [
                self.controls.not_run(control, record.index, "Action did not pass.") for control in controls
            ]
            return
        for position, control in enumerate(controls):
            control_record = await self.controls.run(
                control, outcome.value, context, index=record.index, collect=record.controls
            )
            if control_record.stop_execution:
                record.stop_execution = True
                record.controls.extend(
                    self.controls.not_run(rest, record.index, "Stopped by a fatal control.")
                    for rest in controls[position + 1 :]
                )
                break
        worst = ReturnCode.worst(
            [record.return_code] + [c.return_code for c in record.controls if c.status.counts]
        )
        if worst is not record.return_code:
            record.return_code = worst
            failed = [c for c in record.controls if c.return_code is worst]
            if failed:
                record.return_message = failed[0].return_message

    async def _execute(
        self, action: StepAction, context: ExecutionContext, record: ActionExecution
    ) -> Optional[ActionOutcome]:
        args = {
            "value1": record.value1,
            "value2": record.value2,
            "value3": record.value3,
            "options": record.options,
        }
        log.debug(
            "Executing %s with value1=%r value2=%r",
            action.action,
            redact_value(action.value1, record.value1),
            redact_value(action.value2, record.value2),
        )
        try:
            return ActionOutcome.coerce(await context.cancellable(self.executor.execute(action.action, args)))
        except ExecutionAbort:
            raise
        except ActionExecutionError as exc:
            self._fail(record, exc.message)
        except Exception as exc:  # noqa: BLE001
            self._fail(record, f"Action {action.action} raised {type(exc).__name__}: {exc}")
        return None

    async def _calculate_property(
        self, action: StepAction, context: ExecutionContext, record: ActionExecution
    ) -> Optional[ActionOutcome]:
        name = action.value1.strip().strip("%")
        record.value1 = name
        try:
            value = await self.substitutor.calculate(name, context, required=True, force=True)
        except PropertyResolutionError as exc:
            self._fail(record, exc.message)
            return None
        return ActionOutcome(ReturnCode.OK, f"Property {name} calculated.", value)

    def _fail(self, record: ActionExecution, message: str) -> None:
        record.status = ExecutionStatus.DONE
        record.return_message = message
        if record.is_fatal:
            record.return_code = ReturnCode.FA
            record.stop_execution = True
        else:
            record.return_code = ReturnCode.KO

    def skipped_records(self, actions: List[StepAction], index: int, reason: str) -> List[ActionExecution]:
        records = []
        for action in actions:
            record = self._new_record(action, index)
            record.status = ExecutionStatus.NOT_RUN
            record.return_message = reason
            records.append(record)
        return records
