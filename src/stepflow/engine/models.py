"""
Execution records produced by one test case run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..models import LoopKind


def now_ms() -> int:
    return int(time.time() * 1000)


class ReturnCode(str, Enum):
    OK = "OK"
    NA = "NA"
    KO = "KO"
    FA = "FA"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def coerce(cls, raw: Any) -> "ReturnCode":
        if isinstance(raw, ReturnCode):
            return raw
        text = str(raw or "").strip().upper()
        return _ALIASES.get(text, ReturnCode.KO)

    @classmethod
    def worst(cls, codes: Iterable["ReturnCode"]) -> "ReturnCode":
        result = ReturnCode.OK
        for code in codes:
            if code.severity > result.severity:
                result = code
        return result


_SEVERITY = {ReturnCode.OK: 0, ReturnCode.NA: 1, ReturnCode.KO: 2, ReturnCode.FA: 3}
_ALIASES = {
    "OK": ReturnCode.OK,
    "PASS": ReturnCode.OK,
    "NA": ReturnCode.NA,
    "WARN": ReturnCode.NA,
    "KO": ReturnCode.KO,
    "FAIL": ReturnCode.KO,
    "FA": ReturnCode.FA,
    "FATAL": ReturnCode.FA,
}


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"
    NOT_RUN = "NOT_RUN"

    @property
    def counts(self) -> bool:
        """Whether the record takes part in severity aggregation."""
        return self in (ExecutionStatus.DONE, ExecutionStatus.ABORTED)


@dataclass
class ControlExecution:
    test: str
    testcase: str
    step_id: int
    index: int
    action_id: int
    control_id: int
    sort: int
    control: str
    condition_operator: str = "always"
    condition_value1: str = ""
    condition_value2: str = ""
    condition_value3: str = ""
    value1_init: str = ""
    value2_init: str = ""
    value3_init: str = ""
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    is_fatal: bool = True
    description: str = ""
    return_code: ReturnCode = ReturnCode.OK
    return_message: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    start: int = 0
    end: int = 0
    stop_execution: bool = False


@dataclass
class ActionExecution:
    test: str
    testcase: str
    step_id: int
    index: int
    action_id: int
    sort: int
    action: str
    condition_operator: str = "always"
    condition_value1: str = ""
    condition_value2: str = ""
    condition_value3: str = ""
    value1_init: str = ""
    value2_init: str = ""
    value3_init: str = ""
    value1: str = ""
    value2: str = ""
    value3: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    is_fatal: bool = False
    description: str = ""
    return_code: ReturnCode = ReturnCode.OK
    return_message: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    produced_value: Any = None
    start: int = 0
    end: int = 0
    stop_execution: bool = False
    controls: List[ControlExecution] = field(default_factory=list)


@dataclass
class StepExecution:
    test: str
    testcase: str
    step_id: int
    index: int
    sort: int
    loop: LoopKind = LoopKind.ONCE_IF_TRUE
    condition_operator: str = "always"
    condition_value1_init: str = ""
    condition_value2_init: str = ""
    condition_value3_init: str = ""
    condition_value1: str = ""
    condition_value2: str = ""
    condition_value3: str = ""
    condition_options: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    depth: int = 0
    start: int = 0
    end: int = 0
    full_start: int = 0
    full_end: int = 0
    return_code: ReturnCode = ReturnCode.OK
    return_message: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    is_using_library_step: bool = False
    library_step_test: Optional[str] = None
    library_step_testcase: Optional[str] = None
    use_step_step_id: Optional[int] = None
    stop_execution: bool = False
    actions: List[ActionExecution] = field(default_factory=list)
    steps: List["StepExecution"] = field(default_factory=list)

    @property
    def time_elapsed(self) -> float:
        return max(self.full_end - self.full_start, 0) / 1000.0


@dataclass
class ExecutionResult:
    execution_id: str
    test: str
    testcase: str
    country: str
    environment: str
    system: str = ""
    start: int = 0
    end: int = 0
    return_code: ReturnCode = ReturnCode.OK
    return_message: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    stopped: bool = False
    steps: List[StepExecution] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
