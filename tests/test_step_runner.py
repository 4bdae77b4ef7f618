import asyncio
import itertools

import pytest

from stepflow.config import EngineConfig
from stepflow.engine.context import ExecutionContext
from stepflow.engine.models import ExecutionStatus, ReturnCode
from stepflow.engine.orchestrator import ExecutionOrchestrator
from stepflow.errors import CircularLibraryCallError, ConfigurationError
from stepflow.executors import DryRunActionExecutor
from stepflow.models import Condition, LoopKind, StepAction, TestCaseStep
from stepflow.observability.metrics import MetricsRegistry
from stepflow.store import InMemoryDefinitionStore


def _step(step_id=1, test="T", testcase="TC", **kwargs):
    return TestCaseStep(test=test, testcase=testcase, step_id=step_id, sort=step_id, **kwargs)


def _action(step_id=1, action_id=1, test="T", testcase="TC", **kwargs):
    kwargs.setdefault("action", "type")
    return StepAction(test=test, testcase=testcase, step_id=step_id, action_id=action_id, sort=action_id, **kwargs)


def _run_step(store, step, executor=None, **config):
    ticks = itertools.count(1)
    orchestrator = ExecutionOrchestrator(
        store,
        executor or DryRunActionExecutor(),
        config=EngineConfig(property_fetch_timeout=0, **config),
        metrics=MetricsRegistry(),
        clock=lambda: next(ticks),
    )
    context = ExecutionContext(test=step.test, testcase=step.testcase, country="FR")
    records = []
    asyncio.run(orchestrator.steps.run_step(step, context, records))
    return records


def test_false_condition_gives_one_skipped_record():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(condition=Condition(operator="EQUALS", value1="1", value2="2")))
    store.add_action(_action())
    records = _run_step(store, step)
    assert len(records) == 1
    assert records[0].status is ExecutionStatus.SKIPPED
    assert records[0].actions == []
    assert records[0].return_code is ReturnCode.OK


def test_equals_condition_true_runs_step():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(condition=Condition(operator="EQUALS", value1="1", value2="1")))
    store.add_action(_action(value1="x"))
    records = _run_step(store, step)
    assert records[0].status is ExecutionStatus.DONE
    assert records[0].return_code is ReturnCode.OK
    assert len(records[0].actions) == 1


def test_while_loop_runs_until_condition_fails():
    store = InMemoryDefinitionStore()
    step = store.add_step(
        _step(
            loop=LoopKind.WHILE_TRUE,
            condition=Condition(operator="ifNumericMinor", value1="%SYS_STEP_INDEX%", value2="3"),
        )
    )
    store.add_action(_action(value1="%SYS_STEP_INDEX%"))
    records = _run_step(store, step)
    assert [r.index for r in records] == [1, 2]
    assert [r.actions[0].value1 for r in records] == ["1", "2"]
    assert all(r.step_id == 1 for r in records)


def test_do_while_runs_first_iteration_unconditionally():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(loop=LoopKind.DO_WHILE_TRUE, condition=Condition(operator="never")))
    store.add_action(_action())
    records = _run_step(store, step)
    assert len(records) == 1
    assert records[0].status is ExecutionStatus.DONE


def test_once_if_false_runs_on_false_condition():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(loop=LoopKind.ONCE_IF_FALSE, condition=Condition(operator="never")))
    records = _run_step(store, step)
    assert records[0].status is ExecutionStatus.DONE


def test_loop_bound_marks_last_iteration_ko():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(loop=LoopKind.WHILE_TRUE))
    store.add_action(_action())
    records = _run_step(store, step, max_loop_iterations=3)
    assert [r.index for r in records] == [1, 2, 3]
    assert records[-1].return_code is ReturnCode.KO
    assert "maximum" in records[-1].return_message
    assert all(r.return_code is ReturnCode.OK for r in records[:-1])


def test_unevaluable_condition_fails_step():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(condition=Condition(operator="GT", value1="abc", value2="1")))
    records = _run_step(store, step)
    assert records[0].return_code is ReturnCode.KO
    assert records[0].actions == []


def test_fatal_action_stops_remaining_actions():
    class Failing:
        async def execute(self, action_type, args):
            return ("KO", "broken", None) if action_type == "click" else ("OK", "", None)

    store = InMemoryDefinitionStore()
    step = store.add_step(_step())
    store.add_action(_action(action_id=1, action="click", is_fatal=True))
    store.add_action(_action(action_id=2, action="type"))
    records = _run_step(store, step, executor=Failing())
    assert records[0].return_code is ReturnCode.FA
    assert records[0].stop_execution is True
    assert [a.status for a in records[0].actions] == [ExecutionStatus.DONE, ExecutionStatus.NOT_RUN]


def test_library_step_runs_children_within_full_span():
    store = InMemoryDefinitionStore()
    step = store.add_step(
        _step(is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOGIN")
    )
    store.add_step(_step(step_id=1, test="LIB", testcase="LOGIN"))
    store.add_step(_step(step_id=2, test="LIB", testcase="LOGIN"))
    store.add_action(_action(step_id=1, test="LIB", testcase="LOGIN", value1="%SYS_TESTCASE%"))
    records = _run_step(store, step)
    parent = records[0]
    assert [child.step_id for child in parent.steps] == [1, 2]
    assert all(child.depth == 1 for child in parent.steps)
    assert parent.steps[0].actions[0].value1 == "LOGIN"
    assert parent.full_start <= parent.start <= parent.end <= parent.full_end
    assert parent.end < parent.full_end
    for child in parent.steps:
        assert parent.end <= child.full_start and child.full_end <= parent.full_end
        assert child.full_start <= child.start <= child.end <= child.full_end


def test_library_step_id_selects_single_step():
    store = InMemoryDefinitionStore()
    step = store.add_step(
        _step(
            is_using_library_step=True,
            library_step_test="LIB",
            library_step_testcase="LOGIN",
            library_step_id=2,
        )
    )
    store.add_step(_step(step_id=1, test="LIB", testcase="LOGIN"))
    store.add_step(_step(step_id=2, test="LIB", testcase="LOGIN"))
    records = _run_step(store, step)
    assert [child.step_id for child in records[0].steps] == [2]


def test_library_child_failure_sets_parent_code():
    class Failing:
        async def execute(self, action_type, args):
            return ("KO", "wrong password", None)

    store = InMemoryDefinitionStore()
    step = store.add_step(_step(is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOGIN"))
    store.add_step(_step(step_id=1, test="LIB", testcase="LOGIN"))
    store.add_action(_action(test="LIB", testcase="LOGIN"))
    records = _run_step(store, step, executor=Failing())
    assert records[0].return_code is ReturnCode.KO
    assert records[0].return_message == "wrong password"


def test_library_depth_beyond_maximum_raises_before_children():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOOP"))
    store.add_step(
        _step(test="LIB", testcase="LOOP", is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOOP")
    )
    with pytest.raises(CircularLibraryCallError) as excinfo:
        _run_step(store, step, max_library_depth=2)
    assert excinfo.value.depth == 3
    assert excinfo.value.max_depth == 2
    assert excinfo.value.call_path == ["T/TC", "LIB/LOOP", "LIB/LOOP", "LIB/LOOP"]


def test_library_depth_records_are_aborted_without_partial_children():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOOP"))
    store.add_step(
        _step(test="LIB", testcase="LOOP", is_using_library_step=True, library_step_test="LIB", library_step_testcase="LOOP")
    )
    orchestrator = ExecutionOrchestrator(
        store, config=EngineConfig(max_library_depth=1), metrics=MetricsRegistry()
    )
    context = ExecutionContext(test="T", testcase="TC")
    records = []
    with pytest.raises(CircularLibraryCallError):
        asyncio.run(orchestrator.steps.run_step(step, context, records))
    top = records[0]
    assert top.status is ExecutionStatus.ABORTED
    assert len(top.steps) == 1
    offending = top.steps[0]
    assert offending.depth == 1
    assert offending.status is ExecutionStatus.ABORTED
    assert offending.return_code is ReturnCode.FA
    assert offending.steps == []


def test_missing_library_target_is_configuration_error():
    store = InMemoryDefinitionStore()
    step = store.add_step(_step(is_using_library_step=True, library_step_test="LIB", library_step_testcase="NONE"))
    with pytest.raises(ConfigurationError):
        _run_step(store, step)
