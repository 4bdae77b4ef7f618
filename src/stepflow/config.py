"""
Centralized configuration loader for the execution engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .models import StopPolicy

DEFAULT_MAX_LIBRARY_DEPTH = 10
DEFAULT_MAX_LOOP_ITERATIONS = 20
DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    val = environ.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    max_library_depth: int = DEFAULT_MAX_LIBRARY_DEPTH
    max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS
    stop_policy: StopPolicy = StopPolicy.STOP_ON_FATAL
    property_fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    property_cache_enabled: bool = True


def _stop_policy(raw: Optional[str]) -> StopPolicy:
    if not raw:
        return StopPolicy.STOP_ON_FATAL
    try:
        return StopPolicy(raw.strip().lower())
    except ValueError:
        return StopPolicy.STOP_ON_FATAL


def load_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    environ = env if env is not None else os.environ
    return EngineConfig(
        max_library_depth=max(_env_int(environ, "STEPFLOW_MAX_LIBRARY_DEPTH", DEFAULT_MAX_LIBRARY_DEPTH), 0),
        max_loop_iterations=max(_env_int(environ, "STEPFLOW_MAX_LOOP_ITERATIONS", DEFAULT_MAX_LOOP_ITERATIONS), 1),
        stop_policy=_stop_policy(environ.get("STEPFLOW_STOP_POLICY")),
        property_fetch_timeout=_env_float(
            environ, "STEPFLOW_PROPERTY_FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS
        ),
        property_cache_enabled=_env_bool(environ, "STEPFLOW_PROPERTY_CACHE_ENABLED", True),
    )
