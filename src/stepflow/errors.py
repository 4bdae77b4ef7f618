"""
Custom error types for the stepflow execution engine.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class StepflowError(Exception):
    """Base error with optional location metadata."""

    message: str
    test: Optional[str] = None
    testcase: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        location = ""
        if self.test is not None:
            location = f" (test {self.test}"
            if self.testcase is not None:
                location += f", testcase {self.testcase}"
            location += ")"
        return f"{self.message}{location}"


class ExecutionAbort(StepflowError):
    """Marker base for errors that unwind the whole run."""


@dataclass
class ConfigurationError(ExecutionAbort):
    """Raised when a definition is missing, ambiguous or unusable."""

    code: str = "SF-1001"
    diagnostics: list[dict[str, Any]] | None = None

    def __post_init__(self) -> None:  # pragma: no cover - trivial
        if self.diagnostics is None:
            self.diagnostics = [{"code": self.code, "message": self.message, "severity": "fatal"}]


@dataclass
class CircularLibraryCallError(ExecutionAbort):
    """Raised when library step calls nest deeper than allowed."""

    depth: int = 0
    max_depth: int = 0
    call_path: list[str] | None = None
    code: str = "SF-1002"
    diagnostics: list[dict[str, Any]] | None = None

    def __post_init__(self) -> None:  # pragma: no cover - trivial
        if self.diagnostics is None:
            path = " -> ".join(self.call_path or [])
            self.diagnostics = [
                {
                    "code": self.code,
                    "message": f"{self.message} (depth={self.depth}, max={self.max_depth}, path={path})",
                    "severity": "fatal",
                }
            ]


@dataclass
class ExecutionCancelled(ExecutionAbort):
    """Raised at a suspension boundary once the run has been cancelled."""

    code: str = "SF-1003"


@dataclass
class PropertyResolutionError(StepflowError):
    """Raised when a property source keeps failing after all retries."""

    property_name: Optional[str] = None
    attempts: int | None = None
    last_error: BaseException | None = None
    code: str = "SF-1101"
    diagnostics: list[dict[str, Any]] | None = None

    def __post_init__(self) -> None:  # pragma: no cover - trivial
        if self.diagnostics is None:
            detail = f"last_error={self.last_error}" if self.last_error else "no last error"
            self.diagnostics = [
                {
                    "code": self.code,
                    "message": f"{self.message} ({detail})",
                    "severity": "error",
                }
            ]


@dataclass
class PropertyFetchTimeout(StepflowError):
    """Raised when a single property fetch exceeds the configured timeout."""

    code: str = "SF-1102"


@dataclass
class ActionExecutionError(StepflowError):
    """Raised by an action executor that could not perform the action."""

    action_type: Optional[str] = None
    code: str = "SF-1201"


@dataclass
class ControlFailure(StepflowError):
    """An assertion did not hold."""

    control_type: Optional[str] = None
    code: str = "SF-1301"


@dataclass
class ConditionEvaluationError(StepflowError):
    """Raised when a condition cannot be evaluated with the given operands."""

    operator: Optional[str] = None
    code: str = "SF-1401"
