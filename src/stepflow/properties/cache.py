from __future__ import annotations

import asyncio
import contextlib
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, FrozenSet, Optional, Protocol, Tuple


@dataclass
class ResolvedProperty:
    key: str
    value: Any
    computed_at: float
    expires_at: float
    sources: FrozenSet[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def resolved_through(self, prefix: str) -> bool:
        return self.key.startswith(prefix) or prefix in self.sources


class PropertyCacheBackend(Protocol):
    def get(self, key: str) -> ResolvedProperty | None: ...

    def set(self, key: str, value: Any, ttl: float, sources: FrozenSet[str] = frozenset()) -> ResolvedProperty: ...

    def invalidate_prefix(self, prefix: str) -> int: ...

    def key_lock(self, key: str) -> AsyncContextManager[None]: ...


class InMemoryPropertyCache(PropertyCacheBackend):
    """
    In-process cache of resolved property values with per-entry deadlines.

    Reads and writes go through a short critical section; callers that need
    single-flight resolution of one key take :meth:`key_lock` around the fetch.
    Key locks belong to the event loop that asked for them and are dropped
    once nobody holds or waits on them.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._store: Dict[str, ResolvedProperty] = {}
        self._key_locks: Dict[Tuple[asyncio.AbstractEventLoop, str], Tuple[asyncio.Lock, int]] = {}
        self._guard = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> ResolvedProperty | None:
        with self._guard:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._store.pop(key, None)
                return None
            return entry

    def set(self, key: str, value: Any, ttl: float, sources: FrozenSet[str] = frozenset()) -> ResolvedProperty:
        now = self._clock()
        entry = ResolvedProperty(key=key, value=value, computed_at=now, expires_at=now + ttl, sources=frozenset(sources))
        if ttl <= 0:
            return entry
        with self._guard:
            self._store[key] = entry
        return entry

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop entries keyed under ``prefix`` or resolved through it."""
        with self._guard:
            doomed = [key for key, entry in self._store.items() if entry.resolved_through(prefix)]
            for key in doomed:
                self._store.pop(key, None)
        return len(doomed)

    @contextlib.asynccontextmanager
    async def key_lock(self, key: str) -> AsyncIterator[None]:
        slot = (asyncio.get_running_loop(), key)
        with self._guard:
            lock, users = self._key_locks.get(slot, (None, 0))
            if lock is None:
                lock = asyncio.Lock()
            self._key_locks[slot] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            with self._guard:
                _, users = self._key_locks[slot]
                if users <= 1:
                    del self._key_locks[slot]
                else:
                    self._key_locks[slot] = (lock, users - 1)

    def active_locks(self) -> int:
        with self._guard:
            return len(self._key_locks)

    def __len__(self) -> int:
        with self._guard:
            return len(self._store)


def _stable_json(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except Exception:
        return str(value)


def source_prefix(nature: str, source_name: str) -> str:
    return f"{nature}:{source_name}|"


def build_property_cache_key(
    nature: str,
    source_name: str,
    test: str,
    testcase: str,
    country: str,
    property_name: str,
    args: Optional[dict] = None,
) -> str:
    """
    Cache key starting with the source prefix so a bulk rename of the source
    can evict every entry resolved through it.
    """

    scope = "|".join([test, testcase, country or "*", property_name])
    return f"{source_prefix(nature, source_name)}{scope}|{_stable_json(args or {})}"
