from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from ..config import EngineConfig, load_config
from ..errors import ExecutionAbort
from ..executors import ActionExecutor, DryRunActionExecutor
from ..observability.logging_utils import redact_values
from ..observability.metrics import MetricsRegistry, default_metrics
from ..properties.resolver import PropertyResolver
from ..sinks import ResultSink
from .actions import ActionRunner
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .controls import ControlRunner
from .models import ExecutionResult, ExecutionStatus, ReturnCode, StepExecution, now_ms
from .steps import StepRunner
from .substitution import Substitutor

log = logging.getLogger(__name__)

__all__ = ["ExecutionOrchestrator"]


class ExecutionOrchestrator:
    """
    Top-level driver for one test case run.

    Steps run strictly in sort order. A fatal outcome raises the stop flag
    (under ``stop_on_fatal``) and later steps are recorded ``NOT_RUN`` unless
    they force their execution. Aborts close the run ``FA``/``ABORTED`` with
    the remaining steps ``NOT_RUN``; either way a full result tree comes back.
    """

    def __init__(
        self,
        store: Any,
        executor: Optional[ActionExecutor] = None,
        resolver: Optional[PropertyResolver] = None,
        *,
        config: Optional[EngineConfig] = None,
        sink: Optional[ResultSink] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.config = config or load_config()
        self.metrics = metrics or default_metrics
        self.executor = executor or DryRunActionExecutor()
        self.resolver = resolver or PropertyResolver(store, config=self.config, metrics=self.metrics)
        self.sink = sink
        self.clock = clock or now_ms
        self.evaluator = ConditionEvaluator()
        self.substitutor = Substitutor(self.resolver)
        self.controls = ControlRunner(self.substitutor, self.evaluator, self.executor, clock=self.clock)
        self.actions = ActionRunner(
            store, self.substitutor, self.evaluator, self.executor, self.controls, clock=self.clock
        )
        self.steps = StepRunner(
            store,
            self.substitutor,
            self.evaluator,
            self.actions,
            config=self.config,
            metrics=self.metrics,
            clock=self.clock,
        )
        self.context: Optional[ExecutionContext] = None
        self.result: Optional[ExecutionResult] = None

    def cancel(self, reason: str = "Execution cancelled.") -> None:
        if self.context is not None:
            self.context.cancel(reason)

    async def run(
        self, test: str, testcase: str, country: str = "", environment: str = "", system: str = ""
    ) -> ExecutionResult:
        context = ExecutionContext(
            test=test,
            testcase=testcase,
            country=country,
            environment=environment,
            system=system,
            definitions=self.resolver.has_definition,
        )
        self.context = context
        result = ExecutionResult(
            execution_id=context.execution_id,
            test=test,
            testcase=testcase,
            country=country,
            environment=environment,
            system=system,
            start=self.clock(),
            status=ExecutionStatus.RUNNING,
        )
        self.result = result
        log.info("Run %s started for %s/%s (country=%s, environment=%s)", result.execution_id, test, testcase, country, environment)

        steps = self.store.get_steps(test, testcase)
        position = 0
        before = 0
        try:
            for position, step in enumerate(steps):
                before = len(result.steps)
                if context.stop and not step.force_execution:
                    result.steps.append(self.steps.not_run(step, 0, "Not executed: the run was stopped by a fatal failure."))
                    continue
                context.raise_if_cancelled()
                await self.steps.run_step(step, context, result.steps)
                produced = result.steps[before:]
                if any(self.steps.halts(record) for record in produced):
                    if not context.stop:
                        log.info("Run %s stopped after step %s", result.execution_id, step.label)
                    context.stop = True
                await self._submit(produced)
        except (ExecutionAbort, asyncio.CancelledError) as exc:
            aborted = result.steps[before:]
            self._close_aborted(result, steps[position + 1 if aborted else position :], exc)
            await self._submit(aborted)
            self._finish(result, context)
            if isinstance(exc, asyncio.CancelledError):
                raise
            return result

        self._close(result, context)
        self._finish(result, context)
        return result

    def _close(self, result: ExecutionResult, context: ExecutionContext) -> None:
        counted = _counted(result.steps)
        result.status = ExecutionStatus.DONE
        result.stopped = context.stop
        result.return_code = ReturnCode.worst(record.return_code for record in counted)
        if context.stop:
            result.return_code = ReturnCode.FA
        if result.return_code is ReturnCode.OK:
            result.return_message = "The test case finished successfully."
            return
        failing = next((record for record in counted if record.return_code is result.return_code), None)
        result.return_message = failing.return_message if failing else "The test case was stopped."

    def _close_aborted(self, result: ExecutionResult, remaining: List[Any], exc: BaseException) -> None:
        message = getattr(exc, "message", None) or "Execution cancelled."
        for step in remaining:
            result.steps.append(self.steps.not_run(step, 0, f"Not executed: {message}"))
        result.status = ExecutionStatus.ABORTED
        result.return_code = ReturnCode.FA
        result.return_message = message
        result.stopped = True
        log.error("Run %s aborted: %s", result.execution_id, message)

    def _finish(self, result: ExecutionResult, context: ExecutionContext) -> None:
        result.end = self.clock()
        result.variables = dict(context.variables)
        self.metrics.record_run(result.testcase, (result.end - result.start) / 1000.0)
        log.debug("Run %s variables: %s", result.execution_id, redact_values(result.variables))
        log.info(
            "Run %s finished %s %s: %s",
            result.execution_id,
            result.status.value,
            result.return_code.value,
            result.return_message,
        )

    async def _submit(self, records: List[StepExecution]) -> None:
        if self.sink is None:
            return
        for record in records:
            try:
                await self.sink.submit(record)
            except Exception as exc:  # noqa: BLE001
                log.warning("Result sink rejected step %s/%s#%s: %s", record.test, record.testcase, record.step_id, exc)


def _counted(records: List[StepExecution]) -> List[StepExecution]:
    return [record for record in records if record.status.counts]
