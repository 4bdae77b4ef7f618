from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..config import EngineConfig
from ..errors import (
    CircularLibraryCallError,
    ConditionEvaluationError,
    ConfigurationError,
    ExecutionAbort,
    PropertyResolutionError,
)
from ..models import StopPolicy, TestCaseStep
from ..observability.metrics import MetricsRegistry, default_metrics
from .actions import ActionRunner
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .models import ExecutionStatus, ReturnCode, StepExecution, now_ms
from .substitution import Substitutor

log = logging.getLogger(__name__)

__all__ = ["StepRunner"]


class StepRunner:
    """
    Run one step definition, including its loop iterations and, for library
    steps, the steps of the referenced test case.

    Every iteration that gets past its condition check produces its own
    :class:`StepExecution`; a step whose first check fails produces a single
    ``SKIPPED`` record.
    """

    def __init__(
        self,
        store: Any,
        substitutor: Substitutor,
        evaluator: ConditionEvaluator,
        actions: ActionRunner,
        config: Optional[EngineConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.substitutor = substitutor
        self.evaluator = evaluator
        self.actions = actions
        self.config = config or EngineConfig()
        self.metrics = metrics or default_metrics
        self.clock = clock or now_ms

    def halts(self, record: StepExecution) -> bool:
        return record.stop_execution and self.config.stop_policy is StopPolicy.STOP_ON_FATAL

    def new_record(self, step: TestCaseStep, index: int, depth: int) -> StepExecution:
        return StepExecution(
            test=step.test,
            testcase=step.testcase,
            step_id=step.step_id,
            index=index,
            sort=step.sort,
            loop=step.loop,
            condition_operator=step.condition.operator,
            condition_value1_init=step.condition.value1,
            condition_value2_init=step.condition.value2,
            condition_value3_init=step.condition.value3,
            condition_options=dict(step.condition.options),
            description=step.description,
            depth=depth,
            is_using_library_step=step.is_using_library_step,
            library_step_test=step.library_step_test,
            library_step_testcase=step.library_step_testcase,
            use_step_step_id=step.library_step_id,
        )

    def not_run(self, step: TestCaseStep, depth: int, reason: str) -> StepExecution:
        record = self.new_record(step, 1, depth)
        record.status = ExecutionStatus.NOT_RUN
        record.return_message = reason
        return record

    async def run_step(self, step: TestCaseStep, context: ExecutionContext, records: List[StepExecution]) -> None:
        """
        Append the records produced by ``step`` to ``records``.

        Records are appended as soon as they exist so that an abort leaves the
        caller with everything that ran, the aborted record last.
        """

        kind = step.loop
        index = 1
        while True:
            context.step_index = index
            record = self.new_record(step, index, context.depth)
            record.full_start = self.clock()
            try:
                if index > 1 or kind.checks_first_iteration:
                    outcome = await self._check_condition(step, context, record)
                    if outcome is None:
                        records.append(record)
                        self._close(record)
                        return
                    if outcome is not kind.expects:
                        if index == 1:
                            record.status = ExecutionStatus.SKIPPED
                            record.return_message = (
                                f"Step not executed: condition {step.condition.operator} evaluated to {outcome}."
                            )
                            records.append(record)
                            self._close(record)
                            log.info("Step %s skipped", step.label)
                        return
                records.append(record)
                record.status = ExecutionStatus.RUNNING
                record.start = self.clock()
                if step.is_using_library_step:
                    await self._run_library(step, context, record)
                else:
                    await self._run_actions(step, context, record)
            except (ExecutionAbort, asyncio.CancelledError) as exc:
                self._abort(record, exc)
                if record not in records:
                    records.append(record)
                raise
            self._aggregate(record)
            self._close(record)
            log.info("Step %s[%d] %s %s", step.label, index, record.return_code.value, record.return_message)

            if not kind.repeats or record.stop_execution:
                return
            if index >= self.config.max_loop_iterations:
                record.return_code = ReturnCode.worst([record.return_code, ReturnCode.KO])
                record.return_message = f"Loop stopped after reaching the maximum of {index} iterations."
                log.warning("Step %s hit the loop bound of %d iterations", step.label, index)
                return
            index += 1

    async def _check_condition(
        self, step: TestCaseStep, context: ExecutionContext, record: StepExecution
    ) -> Optional[bool]:
        condition = step.condition
        try:
            record.condition_value1 = await self.substitutor.substitute(condition.value1, context)
            record.condition_value2 = await self.substitutor.substitute(condition.value2, context)
            record.condition_value3 = await self.substitutor.substitute(condition.value3, context)
            return self.evaluator.evaluate(
                condition.operator,
                record.condition_value1,
                record.condition_value2,
                record.condition_value3,
                condition.options,
                context,
            )
        except (ConditionEvaluationError, PropertyResolutionError) as exc:
            record.status = ExecutionStatus.DONE
            record.return_code = ReturnCode.KO
            record.return_message = f"Step condition could not be evaluated: {exc.message}"
            return None

    async def _run_actions(self, step: TestCaseStep, context: ExecutionContext, record: StepExecution) -> None:
        actions = self.store.get_actions(step)
        for position, action in enumerate(actions):
            context.raise_if_cancelled()
            result = await self.actions.run(action, context, index=record.index, collect=record.actions)
            if result.stop_execution:
                record.stop_execution = True
                record.actions.extend(
                    self.actions.skipped_records(actions[position + 1 :], record.index, "Step stopped by a fatal failure.")
                )
                return

    async def _run_library(self, step: TestCaseStep, context: ExecutionContext, record: StepExecution) -> None:
        test, testcase = step.library_step_test, step.library_step_testcase
        if not test or not testcase:
            raise ConfigurationError(
                f"Library step {step.label} does not name the test case it calls.", test=step.test, testcase=step.testcase
            )
        depth = context.depth + 1
        if depth > self.config.max_library_depth:
            raise CircularLibraryCallError(
                f"Library step {step.label} would nest {depth} calls deep.",
                test=step.test,
                testcase=step.testcase,
                depth=depth,
                max_depth=self.config.max_library_depth,
                call_path=context.call_path + [f"{test}/{testcase}"],
            )
        targets = self.store.get_steps(test, testcase)
        if step.library_step_id is not None:
            targets = [target for target in targets if target.step_id == step.library_step_id]
        if not targets:
            suffix = f" step {step.library_step_id}" if step.library_step_id is not None else ""
            raise ConfigurationError(
                f"Library step {step.label} calls {test}/{testcase}{suffix}, which does not exist.",
                test=step.test,
                testcase=step.testcase,
            )
        record.end = self.clock()
        log.debug("Step %s calls %s/%s at depth %d", step.label, test, testcase, depth)
        with context.library_frame(test, testcase):
            for position, target in enumerate(targets):
                context.raise_if_cancelled()
                before = len(record.steps)
                await self.run_step(target, context, record.steps)
                if any(self.halts(child) for child in record.steps[before:]):
                    record.stop_execution = True
                    record.steps.extend(
                        self.not_run(rest, depth, "Library call stopped by a fatal failure.")
                        for rest in targets[position + 1 :]
                    )
                    return
        record.return_message = f"Library step {test}/{testcase} executed."

    def _aggregate(self, record: StepExecution) -> None:
        children = [a for a in record.actions if a.status.counts] + [s for s in record.steps if s.status.counts]
        record.status = ExecutionStatus.DONE
        if any(child.stop_execution for child in children):
            record.stop_execution = True
        if not children:
            record.return_code = ReturnCode.OK
            if not record.return_message:
                record.return_message = "Step executed with nothing to run."
            return
        worst = ReturnCode.worst(child.return_code for child in children)
        record.return_code = worst
        if worst is ReturnCode.OK:
            if not record.return_message:
                record.return_message = "Step executed."
            return
        failing = next(child for child in children if child.return_code is worst)
        record.return_message = failing.return_message

    def _abort(self, record: StepExecution, exc: BaseException) -> None:
        record.status = ExecutionStatus.ABORTED
        record.return_code = ReturnCode.FA
        record.return_message = getattr(exc, "message", None) or "Execution cancelled."
        record.stop_execution = True
        self._close(record)
        log.warning("Step %s/%s#%s aborted: %s", record.test, record.testcase, record.step_id, record.return_message)

    def _close(self, record: StepExecution) -> None:
        now = self.clock()
        if not record.start:
            record.start = now
        if not record.end:
            record.end = now
        record.full_end = max(now, record.end)
        self.metrics.record_step(record.return_code.value)
