"""
Step, action and control traversal for one test case run.
"""

from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .models import (
    ActionExecution,
    ControlExecution,
    ExecutionResult,
    ExecutionStatus,
    ReturnCode,
    StepExecution,
)

__all__ = [
    "ActionExecution",
    "ConditionEvaluator",
    "ControlExecution",
    "ExecutionContext",
    "ExecutionResult",
    "ExecutionStatus",
    "ReturnCode",
    "StepExecution",
]
