import asyncio

import pytest

from stepflow.config import EngineConfig
from stepflow.engine.models import ReturnCode
from stepflow.engine.orchestrator import ExecutionOrchestrator
from stepflow.errors import ConfigurationError
from stepflow.models import LoopKind, PropertyNature
from stepflow.observability.metrics import MetricsRegistry
from stepflow.properties import PropertyResolver
from stepflow.schemas import load_definitions, parse_document, validate_document


def test_load_definitions_builds_store(write_definitions):
    store, libraries = load_definitions(write_definitions())
    steps = store.get_steps("SHOP", "CHECKOUT")
    assert [s.step_id for s in steps] == [1, 2]
    assert steps[1].is_using_library_step
    assert steps[1].library_step_testcase == "LOGIN"
    assert store.get_steps("LIB", "LOGIN")[0].loop is LoopKind.ONCE_IF_TRUE
    action = store.get_actions(steps[0])[0]
    assert store.get_controls(action)[0].is_fatal is True
    definitions = store.get_property_definitions("LIB", "LOGIN")
    assert definitions[0].nature is PropertyNature.LIBRARY


def test_loaded_definitions_run_end_to_end(write_definitions):
    store, libraries = load_definitions(write_definitions())
    config = EngineConfig(property_fetch_timeout=0)
    resolver = PropertyResolver(store, sources={PropertyNature.LIBRARY: libraries}, config=config, metrics=MetricsRegistry())
    orchestrator = ExecutionOrchestrator(store, None, resolver, config=config, metrics=MetricsRegistry())
    result = asyncio.run(orchestrator.run("SHOP", "CHECKOUT", "FR", "QA"))
    assert result.return_code is ReturnCode.OK
    assert result.steps[0].actions[0].value1 == "https://shop.fr/cart"
    assert result.steps[1].steps[0].actions[0].value1 == "jean"
    assert result.variables == {"BASE_URL": "https://shop.fr", "USER": "jean"}


def test_cross_references_are_checked(definitions_document):
    document = definitions_document
    checkout = document["testcases"][0]
    checkout["steps"][1]["library"] = {"test": "LIB", "testcase": "LOGIN", "step_id": 9}
    checkout["steps"].append({"step_id": 1, "condition": {"operator": "ifBlue"}})
    problems = validate_document(parse_document(document))
    assert len(problems) == 3
    assert any("repeats a step id" in p for p in problems)
    assert any("library step 9" in p for p in problems)
    assert any("ifBlue" in p for p in problems)


def test_invalid_fields_become_configuration_error():
    document = {"testcases": [{"test": "T", "testcase": "TC", "properties": [{"property": "P", "nature": "ftp"}]}]}
    with pytest.raises(ConfigurationError) as excinfo:
        parse_document(document)
    assert excinfo.value.diagnostics
    assert "nature" in excinfo.value.diagnostics[0]["message"]


def test_unknown_top_level_keys_rejected():
    with pytest.raises(ConfigurationError):
        parse_document({"testcases": [], "suites": []})


def test_load_definitions_reports_problems(write_definitions):
    document = {"testcases": [{"test": "T", "testcase": "TC", "steps": [{"step_id": 1, "library": {"test": "X", "testcase": "Y"}}]}]}
    with pytest.raises(ConfigurationError) as excinfo:
        load_definitions(write_definitions(document))
    assert "X/Y" in excinfo.value.diagnostics[0]["message"]
