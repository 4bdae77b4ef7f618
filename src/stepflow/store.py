"""
Definition store contract and an in-memory implementation.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from .models import ActionControl, PropertyDefinition, PropertyNature, StepAction, TestCaseStep

TestCaseKey = Tuple[str, str]


class DefinitionStore(Protocol):
    def get_steps(self, test: str, testcase: str) -> List[TestCaseStep]: ...

    def get_actions(self, step: TestCaseStep) -> List[StepAction]: ...

    def get_controls(self, action: StepAction) -> List[ActionControl]: ...

    def get_property_definitions(self, test: str, testcase: str) -> List[PropertyDefinition]: ...

    def rename_property(self, old_name: str, new_name: str) -> int: ...


class InMemoryDefinitionStore(DefinitionStore):
    """Definitions held in dictionaries keyed by (test, testcase)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._steps: Dict[TestCaseKey, List[TestCaseStep]] = {}
        self._actions: Dict[Tuple[str, str, int], List[StepAction]] = {}
        self._controls: Dict[Tuple[str, str, int, int], List[ActionControl]] = {}
        self._properties: Dict[TestCaseKey, List[PropertyDefinition]] = {}

    def add_step(self, step: TestCaseStep) -> TestCaseStep:
        with self._lock:
            self._steps.setdefault((step.test, step.testcase), []).append(step)
        return step

    def add_action(self, action: StepAction) -> StepAction:
        with self._lock:
            self._actions.setdefault((action.test, action.testcase, action.step_id), []).append(action)
        return action

    def add_control(self, control: ActionControl) -> ActionControl:
        with self._lock:
            key = (control.test, control.testcase, control.step_id, control.action_id)
            self._controls.setdefault(key, []).append(control)
        return control

    def add_property(self, definition: PropertyDefinition) -> PropertyDefinition:
        with self._lock:
            self._properties.setdefault((definition.test, definition.testcase), []).append(definition)
        return definition

    def extend(self, items: Iterable[object]) -> None:
        for item in items:
            if isinstance(item, TestCaseStep):
                self.add_step(item)
            elif isinstance(item, StepAction):
                self.add_action(item)
            elif isinstance(item, ActionControl):
                self.add_control(item)
            elif isinstance(item, PropertyDefinition):
                self.add_property(item)
            else:
                raise TypeError(f"Unsupported definition type: {type(item).__name__}")

    def testcases(self) -> List[TestCaseKey]:
        with self._lock:
            keys = set(self._steps) | set(self._properties)
        return sorted(keys)

    def get_steps(self, test: str, testcase: str) -> List[TestCaseStep]:
        with self._lock:
            steps = list(self._steps.get((test, testcase), []))
        return sorted(steps, key=lambda s: (s.sort, s.step_id))

    def get_step(self, test: str, testcase: str, step_id: int) -> Optional[TestCaseStep]:
        for step in self.get_steps(test, testcase):
            if step.step_id == step_id:
                return step
        return None

    def get_actions(self, step: TestCaseStep) -> List[StepAction]:
        with self._lock:
            actions = list(self._actions.get((step.test, step.testcase, step.step_id), []))
        return sorted(actions, key=lambda a: (a.sort, a.action_id))

    def get_controls(self, action: StepAction) -> List[ActionControl]:
        with self._lock:
            controls = list(self._controls.get((action.test, action.testcase, action.step_id, action.action_id), []))
        return sorted(controls, key=lambda c: (c.sort, c.control_id))

    def get_property_definitions(self, test: str, testcase: str) -> List[PropertyDefinition]:
        with self._lock:
            return list(self._properties.get((test, testcase), []))

    def rename_property(self, old_name: str, new_name: str) -> int:
        """Rewrite library-nature definitions whose source is ``old_name``."""
        updated = 0
        with self._lock:
            for key, definitions in self._properties.items():
                renamed: List[PropertyDefinition] = []
                for definition in definitions:
                    if definition.nature is PropertyNature.LIBRARY and definition.value1 == old_name:
                        definition = replace(definition, value1=new_name)
                        updated += 1
                    renamed.append(definition)
                self._properties[key] = renamed
        return updated
