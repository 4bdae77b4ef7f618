"""
Result sinks receive completed step execution trees.
"""

from __future__ import annotations

import logging
from typing import List, Protocol

from .engine.models import StepExecution

log = logging.getLogger(__name__)


class ResultSink(Protocol):
    async def submit(self, execution: StepExecution) -> None: ...


class LoggingResultSink:
    """Write a one-line summary per step tree to the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or log

    async def submit(self, execution: StepExecution) -> None:
        self.logger.info(
            "step %s/%s#%s[%d] %s %s (%d actions, %d library steps) %s",
            execution.test,
            execution.testcase,
            execution.step_id,
            execution.index,
            execution.status.value,
            execution.return_code.value,
            len(execution.actions),
            len(execution.steps),
            execution.return_message,
        )


class CollectingResultSink:
    """Keep submitted trees in memory."""

    def __init__(self) -> None:
        self.executions: List[StepExecution] = []

    async def submit(self, execution: StepExecution) -> None:
        self.executions.append(execution)
