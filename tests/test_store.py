import asyncio
import logging

import pytest

from stepflow.engine.models import StepExecution
from stepflow.models import PropertyDefinition, PropertyNature, StepAction, TestCaseStep
from stepflow.sinks import LoggingResultSink
from stepflow.store import InMemoryDefinitionStore


def test_steps_and_actions_come_back_in_sort_order():
    store = InMemoryDefinitionStore()
    store.extend(
        [
            TestCaseStep(test="T", testcase="TC", step_id=2, sort=10),
            TestCaseStep(test="T", testcase="TC", step_id=1, sort=20),
            StepAction(test="T", testcase="TC", step_id=2, action_id=5, action="b", sort=1),
            StepAction(test="T", testcase="TC", step_id=2, action_id=3, action="a", sort=1),
        ]
    )
    steps = store.get_steps("T", "TC")
    assert [s.step_id for s in steps] == [2, 1]
    assert [a.action_id for a in store.get_actions(steps[0])] == [3, 5]
    assert store.get_step("T", "TC", 1).sort == 20
    assert store.get_step("T", "TC", 9) is None
    assert store.testcases() == [("T", "TC")]


def test_extend_rejects_unknown_items():
    with pytest.raises(TypeError):
        InMemoryDefinitionStore().extend(["not a definition"])


def test_rename_only_touches_library_definitions():
    store = InMemoryDefinitionStore()
    store.add_property(PropertyDefinition(test="T", testcase="A", property="P", nature=PropertyNature.LIBRARY, value1="OLD"))
    store.add_property(PropertyDefinition(test="T", testcase="B", property="P", nature=PropertyNature.LIBRARY, value1="OLD"))
    store.add_property(PropertyDefinition(test="T", testcase="B", property="Q", nature=PropertyNature.QUERY, value1="OLD"))
    assert store.rename_property("OLD", "NEW") == 2
    values = [(d.property, d.value1) for d in store.get_property_definitions("T", "B")]
    assert values == [("P", "NEW"), ("Q", "OLD")]


def test_logging_sink_writes_summary(caplog):
    record = StepExecution(test="T", testcase="TC", step_id=1, index=1, sort=1, return_message="fine")
    with caplog.at_level(logging.INFO, logger="stepflow"):
        asyncio.run(LoggingResultSink().submit(record))
    assert "T/TC#1[1]" in caplog.text
