from __future__ import annotations

import os
from typing import Any, Dict

_SENSITIVE_MARKERS = ("password", "passwd", "secret", "token", "authorization", "apikey", "api_key")


def _env_bool(name: str, default: bool = True) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def is_sensitive(name: str) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def redact_value(name: str, value: Any) -> Any:
    if not _env_bool("STEPFLOW_LOG_REDACT_VALUES", True):
        return value
    if value is None or value == "":
        return value
    return "[REDACTED]" if is_sensitive(name) else value


def redact_values(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Mask values whose key looks like a credential before they reach a log line.
    """

    return {key: redact_value(key, value) for key, value in values.items()}
