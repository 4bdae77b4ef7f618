"""
Action executor contract and helpers.

The engine decides whether and with which values an action runs; the
executor performs it (browser, HTTP, SQL, ...).
"""

from __future__ import annotations

import importlib
import inspect
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

from .engine.models import ReturnCode
from .errors import ConfigurationError


@dataclass
class ActionOutcome:
    return_code: ReturnCode = ReturnCode.OK
    message: str = ""
    value: Any = None

    @classmethod
    def coerce(cls, raw: Any) -> "ActionOutcome":
        if isinstance(raw, ActionOutcome):
            return raw
        if isinstance(raw, tuple):
            code = raw[0] if len(raw) > 0 else ReturnCode.OK
            message = raw[1] if len(raw) > 1 else ""
            value = raw[2] if len(raw) > 2 else None
            return cls(return_code=ReturnCode.coerce(code), message=str(message or ""), value=value)
        if isinstance(raw, Mapping):
            return cls(
                return_code=ReturnCode.coerce(raw.get("return_code", "OK")),
                message=str(raw.get("message") or ""),
                value=raw.get("value"),
            )
        return cls(value=raw)


class ActionExecutor(Protocol):
    async def execute(self, action_type: str, args: Dict[str, Any]) -> Any: ...


class DryRunActionExecutor:
    """Executor that performs nothing and reports every action as passed."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Dict[str, Any]]] = []

    async def execute(self, action_type: str, args: Dict[str, Any]) -> ActionOutcome:
        self.calls.append((action_type, dict(args)))
        return ActionOutcome(ReturnCode.OK, f"Dry run of {action_type}.", args.get("value1"))


def load_executor(path: str) -> ActionExecutor:
    """
    Import an executor from ``package.module:attribute``.

    The attribute may be an executor instance, a class or a zero-argument
    factory.
    """

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Executor path '{path}' must look like 'package.module:attribute'.")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Could not import executor module '{module_name}': {exc}") from exc
    target = getattr(module, attr, None)
    if target is None:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'.")
    if inspect.isclass(target) or (callable(target) and not hasattr(target, "execute")):
        target = target()
    if not hasattr(target, "execute"):
        raise ConfigurationError(f"'{path}' does not provide an execute() method.")
    return target
