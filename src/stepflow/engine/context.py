from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar
from uuid import uuid4

from ..errors import ExecutionCancelled

T = TypeVar("T")


@dataclass
class ExecutionContext:
    """
    Mutable state of one test case run.

    Owned by a single orchestrator; nothing here is shared between runs.
    """

    test: str
    testcase: str
    country: str = ""
    environment: str = ""
    system: str = ""
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    variables: Dict[str, Any] = field(default_factory=dict)
    stop: bool = False
    frames: List[Tuple[str, str]] = field(default_factory=list)
    resolving: List[str] = field(default_factory=list)
    step_index: int = 0
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    cancel_reason: str = ""
    definitions: Optional[Callable[[str, str, str], bool]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.frames:
            self.frames.append((self.test, self.testcase))

    @property
    def depth(self) -> int:
        return len(self.frames) - 1

    @property
    def current_frame(self) -> Tuple[str, str]:
        return self.frames[-1]

    @property
    def call_path(self) -> List[str]:
        return [f"{test}/{testcase}" for test, testcase in self.frames]

    @contextlib.contextmanager
    def library_frame(self, test: str, testcase: str) -> Iterator[None]:
        self.frames.append((test, testcase))
        try:
            yield
        finally:
            self.frames.pop()

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    def has_property(self, name: str) -> bool:
        """True once ``name`` is bound, or when the current frame defines it."""
        if self.has_variable(name):
            return True
        if self.definitions is None:
            return False
        test, testcase = self.current_frame
        return self.definitions(test, testcase, name)

    def bind(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def system_variables(self) -> Dict[str, str]:
        test, testcase = self.current_frame
        return {
            "SYS_COUNTRY": self.country,
            "SYS_ENVIRONMENT": self.environment,
            "SYS_SYSTEM": self.system,
            "SYS_TEST": test,
            "SYS_TESTCASE": testcase,
            "SYS_STEP_INDEX": str(self.step_index),
            "SYS_EXECUTION_ID": self.execution_id,
        }

    def resolution_args(self) -> Dict[str, Any]:
        return {"environment": self.environment, "system": self.system}

    # Cancellation ---------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self, reason: str = "Execution cancelled.") -> None:
        self.cancel_reason = reason
        self._cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ExecutionCancelled(self.cancel_reason or "Execution cancelled.", test=self.test, testcase=self.testcase)

    async def cancellable(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the run gets cancelled first.

        On cancellation the pending work is cancelled and
        :class:`ExecutionCancelled` is raised at this suspension point.
        """

        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self.raise_if_cancelled()
        raise ExecutionCancelled("Execution cancelled.", test=self.test, testcase=self.testcase)

    async def sleep(self, delay: float) -> None:
        await self.cancellable(asyncio.sleep(delay))
