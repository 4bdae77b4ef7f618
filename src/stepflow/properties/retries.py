from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from ..errors import ExecutionAbort, PropertyFetchTimeout, PropertyResolutionError

log = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    timeout: float
    max_retries: int = 0
    retry_period: float = 0.0


Sleeper = Callable[[float], Awaitable[Any]]


async def with_retries_and_timeout(
    fn: Callable[[], Awaitable[Any]],
    *,
    config: RetryConfig,
    error_types: Tuple[type[BaseException], ...] = (Exception,),
    on_error: Callable[[BaseException, int], None] | None = None,
    sleep: Optional[Sleeper] = None,
    label: str = "",
) -> Any:
    """
    Execute an async fetch with a per-attempt timeout and a fixed retry period.

    Errors outside ``error_types`` propagate untouched; once attempts are
    exhausted a :class:`PropertyResolutionError` carries the last failure.
    """

    sleeper = sleep or asyncio.sleep
    attempts = max(config.max_retries, 0) + 1
    last_exc: BaseException | None = None

    for attempt in range(attempts):
        try:
            if config.timeout and config.timeout > 0:
                result = await asyncio.wait_for(fn(), timeout=config.timeout)
            else:
                result = await fn()
        except ExecutionAbort:
            raise
        except asyncio.TimeoutError:
            last_exc = PropertyFetchTimeout(f"Fetch of '{label}' timed out after {config.timeout} seconds.")
        except error_types as exc:  # noqa: BLE001
            last_exc = exc
        else:
            return result

        if on_error:
            on_error(last_exc, attempt)
        if attempt < attempts - 1:
            log.debug("Retrying '%s' in %.3fs (attempt %d/%d): %s", label, config.retry_period, attempt + 2, attempts, last_exc)
            if config.retry_period > 0:
                await sleeper(config.retry_period)
    raise PropertyResolutionError(
        f"Property '{label}' could not be resolved after {attempts} attempts.",
        property_name=label,
        attempts=attempts,
        last_error=last_exc,
    )
