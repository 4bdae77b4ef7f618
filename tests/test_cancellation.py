import asyncio

import pytest

from stepflow.config import EngineConfig
from stepflow.engine.models import ExecutionStatus, ReturnCode
from stepflow.engine.orchestrator import ExecutionOrchestrator
from stepflow.models import PropertyDefinition, PropertyNature, StepAction, TestCaseStep
from stepflow.observability.metrics import MetricsRegistry
from stepflow.properties import CallablePropertySource, InMemoryPropertyCache, PropertyResolver
from stepflow.store import InMemoryDefinitionStore


def _store(steps=2):
    store = InMemoryDefinitionStore()
    for step_id in range(1, steps + 1):
        store.add_step(TestCaseStep(test="T", testcase="TC", step_id=step_id, sort=step_id))
        store.add_action(StepAction(test="T", testcase="TC", step_id=step_id, action_id=1, action="wait"))
    return store


class BlockingExecutor:
    def __init__(self):
        self.started = None

    async def execute(self, action_type, args):
        self.started.set()
        await asyncio.sleep(3600)


def test_cancel_marks_current_step_aborted_and_rest_not_run():
    store = _store()
    executor = BlockingExecutor()
    orchestrator = ExecutionOrchestrator(store, executor, config=EngineConfig(), metrics=MetricsRegistry())

    async def _scenario():
        executor.started = asyncio.Event()
        task = asyncio.create_task(orchestrator.run("T", "TC"))
        await executor.started.wait()
        orchestrator.cancel("operator stop")
        return await task

    result = asyncio.run(_scenario())
    assert result.status is ExecutionStatus.ABORTED
    assert result.return_code is ReturnCode.FA
    assert result.return_message == "operator stop"
    assert [s.status for s in result.steps] == [ExecutionStatus.ABORTED, ExecutionStatus.NOT_RUN]
    assert result.steps[0].actions[0].status is ExecutionStatus.ABORTED


def test_task_cancellation_keeps_partial_result():
    store = _store()
    executor = BlockingExecutor()
    orchestrator = ExecutionOrchestrator(store, executor, config=EngineConfig(), metrics=MetricsRegistry())

    async def _scenario():
        executor.started = asyncio.Event()
        task = asyncio.create_task(orchestrator.run("T", "TC"))
        await executor.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())
    result = orchestrator.result
    assert result.status is ExecutionStatus.ABORTED
    assert [s.status for s in result.steps] == [ExecutionStatus.ABORTED, ExecutionStatus.NOT_RUN]


def test_cancel_during_retry_backoff_writes_no_cache_entry():
    store = _store(steps=1)
    store.add_property(
        PropertyDefinition(
            test="T",
            testcase="TC",
            property="URL",
            nature=PropertyNature.SERVICE,
            value1="svc",
            cache_expire=60,
            retry_nb=3,
            retry_period=100,
        )
    )
    store.add_action(StepAction(test="T", testcase="TC", step_id=1, action_id=0, action="open", value1="%URL%"))
    holder = {}

    def _fetch(definition, value1, value2, args):
        holder["orchestrator"].cancel()
        raise ConnectionError("flaky")

    config = EngineConfig()
    cache = InMemoryPropertyCache()
    resolver = PropertyResolver(
        store,
        sources={PropertyNature.SERVICE: CallablePropertySource(_fetch)},
        cache=cache,
        config=config,
        metrics=MetricsRegistry(),
    )
    orchestrator = ExecutionOrchestrator(store, None, resolver, config=config, metrics=MetricsRegistry())
    holder["orchestrator"] = orchestrator

    result = asyncio.run(orchestrator.run("T", "TC"))
    assert result.status is ExecutionStatus.ABORTED
    assert result.steps[0].status is ExecutionStatus.ABORTED
    assert len(cache) == 0
    assert resolver.metrics.get_fetch_attempts() == {"URL": 1}
