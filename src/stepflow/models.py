"""
Test case definition models consumed by the execution engine.

Definitions are owned by an external store and treated as read-only by the
engine. Execution records live in :mod:`stepflow.engine.models`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

WILDCARD_COUNTRY = ""


class StopPolicy(str, Enum):
    STOP_ON_FATAL = "stop_on_fatal"
    CONTINUE = "continue"


class LoopKind(str, Enum):
    ONCE_IF_TRUE = "once_if_true"
    ONCE_IF_FALSE = "once_if_false"
    WHILE_TRUE = "while_true"
    WHILE_FALSE = "while_false"
    DO_WHILE_TRUE = "do_while_true"
    DO_WHILE_FALSE = "do_while_false"

    @property
    def repeats(self) -> bool:
        return self not in (LoopKind.ONCE_IF_TRUE, LoopKind.ONCE_IF_FALSE)

    @property
    def expects(self) -> bool:
        """Condition outcome that lets the step (or next iteration) run."""
        return self in (LoopKind.ONCE_IF_TRUE, LoopKind.WHILE_TRUE, LoopKind.DO_WHILE_TRUE)

    @property
    def checks_first_iteration(self) -> bool:
        return self not in (LoopKind.DO_WHILE_TRUE, LoopKind.DO_WHILE_FALSE)


class PropertyNature(str, Enum):
    STATIC = "static"
    QUERY = "query"
    SERVICE = "service"
    LIBRARY = "library"
    PROPERTY = "property"


@dataclass
class Condition:
    operator: str = "always"
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TestCaseStep:
    test: str
    testcase: str
    step_id: int
    sort: int = 0
    description: str = ""
    condition: Condition = field(default_factory=Condition)
    loop: LoopKind = LoopKind.ONCE_IF_TRUE
    is_using_library_step: bool = False
    library_step_test: Optional[str] = None
    library_step_testcase: Optional[str] = None
    library_step_id: Optional[int] = None
    is_library_step: bool = False
    force_execution: bool = False

    __test__ = False

    @property
    def label(self) -> str:
        return f"{self.test}/{self.testcase}#{self.step_id}"


@dataclass
class StepAction:
    test: str
    testcase: str
    step_id: int
    action_id: int
    action: str
    sort: int = 0
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    condition: Condition = field(default_factory=Condition)
    is_fatal: bool = False
    description: str = ""


@dataclass
class ActionControl:
    test: str
    testcase: str
    step_id: int
    action_id: int
    control_id: int
    control: str
    sort: int = 0
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    condition: Condition = field(default_factory=Condition)
    is_fatal: bool = True
    description: str = ""


@dataclass
class PropertyDefinition:
    test: str
    testcase: str
    property: str
    country: str = WILDCARD_COUNTRY
    description: str = ""
    type: str = "text"
    database: str = ""
    value1: str = ""
    value2: str = ""
    length: int = 0
    row_limit: int = 0
    nature: PropertyNature = PropertyNature.STATIC
    cache_expire: int = 0
    retry_nb: int = 0
    retry_period: int = 0
    rank: int = 0

    @property
    def is_wildcard(self) -> bool:
        return not self.country

    @property
    def source_name(self) -> str:
        return self.value1 if self.nature is not PropertyNature.STATIC else self.property
