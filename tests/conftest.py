import json

import pytest


@pytest.fixture(autouse=True)
def _clean_stepflow_env(monkeypatch):
    """Keep engine settings at their defaults unless a test sets them."""
    for name in (
        "STEPFLOW_MAX_LIBRARY_DEPTH",
        "STEPFLOW_MAX_LOOP_ITERATIONS",
        "STEPFLOW_STOP_POLICY",
        "STEPFLOW_PROPERTY_FETCH_TIMEOUT_SECONDS",
        "STEPFLOW_PROPERTY_CACHE_ENABLED",
        "STEPFLOW_LOG_REDACT_VALUES",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


DEFINITIONS = {
    "testcases": [
        {
            "test": "SHOP",
            "testcase": "CHECKOUT",
            "steps": [
                {
                    "step_id": 1,
                    "actions": [
                        {
                            "action_id": 1,
                            "action": "open",
                            "value1": "%BASE_URL%/cart",
                            "controls": [{"control_id": 1, "control": "verifyStringContains", "value2": "/cart"}],
                        }
                    ],
                },
                {"step_id": 2, "library": {"test": "LIB", "testcase": "LOGIN"}},
            ],
            "properties": [
                {"property": "BASE_URL", "country": "FR", "value1": "https://shop.fr"},
                {"property": "BASE_URL", "value1": "https://shop.example"},
            ],
        },
        {
            "test": "LIB",
            "testcase": "LOGIN",
            "steps": [
                {
                    "step_id": 1,
                    "loop": "once_if_true",
                    "actions": [{"action_id": 1, "action": "type", "value1": "%USER%"}],
                }
            ],
            "properties": [{"property": "USER", "nature": "library", "value1": "USERS", "value2": "login"}],
        },
    ],
    "libraries": {"USERS": {"": {"login": "anon"}, "FR": {"login": "jean"}}},
}


@pytest.fixture
def definitions_document():
    return json.loads(json.dumps(DEFINITIONS))


@pytest.fixture
def write_definitions(tmp_path, definitions_document):
    def _write(document=None):
        path = tmp_path / "definitions.json"
        path.write_text(json.dumps(definitions_document if document is None else document), encoding="utf-8")
        return path

    return _write
