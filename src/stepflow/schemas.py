"""Pydantic documents for JSON definition files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .engine.conditions import canonical_operator
from .errors import ConfigurationError
from .models import (
    ActionControl,
    Condition,
    LoopKind,
    PropertyDefinition,
    PropertyNature,
    StepAction,
    TestCaseStep,
)
from .properties.sources import DataLibrarySource
from .store import InMemoryDefinitionStore


class ConditionDocument(BaseModel):
    operator: str = "always"
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = {}

    def to_model(self) -> Condition:
        return Condition(
            operator=self.operator,
            value1=self.value1,
            value2=self.value2,
            value3=self.value3,
            options=dict(self.options),
        )


class LibraryCallDocument(BaseModel):
    test: str
    testcase: str
    step_id: int | None = None


class ControlDocument(BaseModel):
    control_id: int
    control: str
    sort: int | None = None
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = {}
    condition: ConditionDocument = Field(default_factory=ConditionDocument)
    is_fatal: bool = True
    description: str = ""


class ActionDocument(BaseModel):
    action_id: int
    action: str
    sort: int | None = None
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = {}
    condition: ConditionDocument = Field(default_factory=ConditionDocument)
    is_fatal: bool = False
    description: str = ""
    controls: List[ControlDocument] = []


class StepDocument(BaseModel):
    step_id: int
    sort: int | None = None
    description: str = ""
    condition: ConditionDocument = Field(default_factory=ConditionDocument)
    loop: LoopKind = LoopKind.ONCE_IF_TRUE
    library: LibraryCallDocument | None = None
    is_library_step: bool = False
    force_execution: bool = False
    actions: List[ActionDocument] = []


class PropertyDocument(BaseModel):
    property: str
    country: str = ""
    description: str = ""
    type: str = "text"
    database: str = ""
    value1: str = ""
    value2: str = ""
    length: int = Field(0, ge=0)
    row_limit: int = Field(0, ge=0)
    nature: PropertyNature = PropertyNature.STATIC
    cache_expire: int = Field(0, ge=0)
    retry_nb: int = Field(0, ge=0)
    retry_period: int = Field(0, ge=0)
    rank: int = 0


class TestCaseDocument(BaseModel):
    test: str
    testcase: str
    description: str = ""
    steps: List[StepDocument] = []
    properties: List[PropertyDocument] = []

    __test__ = False


class DefinitionsDocument(BaseModel):
    testcases: List[TestCaseDocument] = []
    libraries: Dict[str, Dict[str, Any]] = {}
    model_config = ConfigDict(extra="forbid")


def parse_document(data: Any) -> DefinitionsDocument:
    try:
        return DefinitionsDocument.model_validate(data)
    except ValidationError as exc:
        diagnostics = [
            {
                "code": "SF-1001",
                "message": f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}",
                "severity": "fatal",
            }
            for err in exc.errors()
        ]
        raise ConfigurationError("Definitions document is invalid.", diagnostics=diagnostics) from exc


def validate_document(doc: DefinitionsDocument) -> List[str]:
    """Return cross-reference problems the field-level schema cannot see."""
    problems: List[str] = []
    known: Dict[Tuple[str, str], set[int]] = {}
    for tc in doc.testcases:
        key = (tc.test, tc.testcase)
        if key in known:
            problems.append(f"Test case {tc.test}/{tc.testcase} is defined twice.")
        ids = [step.step_id for step in tc.steps]
        if len(ids) != len(set(ids)):
            problems.append(f"Test case {tc.test}/{tc.testcase} repeats a step id.")
        known[key] = set(ids)
    for tc in doc.testcases:
        for step in tc.steps:
            where = f"{tc.test}/{tc.testcase}#{step.step_id}"
            conditions = [step.condition]
            for action in step.actions:
                conditions.append(action.condition)
                conditions.extend(control.condition for control in action.controls)
            for condition in conditions:
                try:
                    canonical_operator(condition.operator)
                except ConfigurationError as exc:
                    problems.append(f"{where}: {exc.message}")
            if step.library is None:
                continue
            target = (step.library.test, step.library.testcase)
            if target not in known:
                problems.append(f"{where}: library test case {target[0]}/{target[1]} is not defined.")
            elif step.library.step_id is not None and step.library.step_id not in known[target]:
                problems.append(f"{where}: library step {step.library.step_id} is not defined in {target[0]}/{target[1]}.")
    return problems


def build_store(doc: DefinitionsDocument) -> Tuple[InMemoryDefinitionStore, DataLibrarySource]:
    store = InMemoryDefinitionStore()
    for tc in doc.testcases:
        for step in tc.steps:
            store.add_step(
                TestCaseStep(
                    test=tc.test,
                    testcase=tc.testcase,
                    step_id=step.step_id,
                    sort=step.step_id if step.sort is None else step.sort,
                    description=step.description,
                    condition=step.condition.to_model(),
                    loop=step.loop,
                    is_using_library_step=step.library is not None,
                    library_step_test=step.library.test if step.library else None,
                    library_step_testcase=step.library.testcase if step.library else None,
                    library_step_id=step.library.step_id if step.library else None,
                    is_library_step=step.is_library_step,
                    force_execution=step.force_execution,
                )
            )
            for action in step.actions:
                store.add_action(
                    StepAction(
                        test=tc.test,
                        testcase=tc.testcase,
                        step_id=step.step_id,
                        action_id=action.action_id,
                        action=action.action,
                        sort=action.action_id if action.sort is None else action.sort,
                        value1=action.value1,
                        value2=action.value2,
                        value3=action.value3,
                        options=dict(action.options),
                        condition=action.condition.to_model(),
                        is_fatal=action.is_fatal,
                        description=action.description,
                    )
                )
                for control in action.controls:
                    store.add_control(
                        ActionControl(
                            test=tc.test,
                            testcase=tc.testcase,
                            step_id=step.step_id,
                            action_id=action.action_id,
                            control_id=control.control_id,
                            control=control.control,
                            sort=control.control_id if control.sort is None else control.sort,
                            value1=control.value1,
                            value2=control.value2,
                            value3=control.value3,
                            options=dict(control.options),
                            condition=control.condition.to_model(),
                            is_fatal=control.is_fatal,
                            description=control.description,
                        )
                    )
        for prop in tc.properties:
            store.add_property(PropertyDefinition(test=tc.test, testcase=tc.testcase, **prop.model_dump()))
    return store, DataLibrarySource(doc.libraries)


def load_definitions(path: str | Path) -> Tuple[InMemoryDefinitionStore, DataLibrarySource]:
    """Read, validate and load a definitions file."""
    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read definitions file {file_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Definitions file {file_path} is not valid JSON: {exc}") from exc
    doc = parse_document(data)
    problems = validate_document(doc)
    if problems:
        raise ConfigurationError(
            f"Definitions file {file_path} has {len(problems)} problem(s).",
            diagnostics=[{"code": "SF-1001", "message": problem, "severity": "fatal"} for problem in problems],
        )
    return build_store(doc)


__all__ = [
    "ActionDocument",
    "ConditionDocument",
    "ControlDocument",
    "DefinitionsDocument",
    "LibraryCallDocument",
    "PropertyDocument",
    "StepDocument",
    "TestCaseDocument",
    "build_store",
    "load_definitions",
    "parse_document",
    "validate_document",
]
