from __future__ import annotations

import logging
import threading
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ..config import EngineConfig
from ..errors import ConfigurationError
from ..models import PropertyDefinition, PropertyNature
from ..observability.logging_utils import redact_value, redact_values
from ..observability.metrics import MetricsRegistry, default_metrics
from .cache import InMemoryPropertyCache, PropertyCacheBackend, ResolvedProperty, build_property_cache_key, source_prefix
from .retries import RetryConfig, Sleeper, with_retries_and_timeout
from .sources import PropertySource, shape_value

log = logging.getLogger(__name__)

Substitute = Callable[[str], Awaitable[str]]


def select_definition(
    definitions: Iterable[PropertyDefinition], property_name: str, country: str
) -> PropertyDefinition:
    """
    Pick the definition of ``property_name`` that applies to ``country``.

    Exact country matches come before wildcard ones, then lower rank, then
    the order in which the store returned them.
    """

    candidates = []
    for position, definition in enumerate(definitions):
        if definition.property != property_name:
            continue
        if definition.country == country:
            specificity = 0
        elif definition.is_wildcard:
            specificity = 1
        else:
            continue
        candidates.append(((specificity, definition.rank, position), definition))
    if not candidates:
        raise ConfigurationError(f"No definition of property '{property_name}' for country '{country or '*'}'.")
    candidates.sort(key=lambda item: item[0])
    best_order, best = candidates[0]
    if len(candidates) > 1:
        second_order, second = candidates[1]
        if second_order[:2] == best_order[:2]:
            raise ConfigurationError(
                f"Property '{property_name}' is defined more than once for country "
                f"'{best.country or '*'}' with rank {best.rank}.",
                test=best.test,
                testcase=best.testcase,
            )
    return best


class PropertyResolver:
    """
    Resolve property values for a (test, testcase, country) scope.

    Only the test case's own definitions are eligible. Values are cached per
    resolution key until ``cache_expire`` seconds have passed; failing
    sources are retried ``retry_nb`` times, ``retry_period`` ms apart.
    """

    def __init__(
        self,
        store: Any,
        sources: Optional[Mapping[PropertyNature, PropertySource]] = None,
        cache: Optional[PropertyCacheBackend] = None,
        config: Optional[EngineConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.store = store
        self.sources: Dict[PropertyNature, PropertySource] = dict(sources or {})
        self.cache = cache if cache is not None else InMemoryPropertyCache()
        self.config = config or EngineConfig()
        self.metrics = metrics or default_metrics
        self.sleep = sleep
        self._rename_lock = threading.RLock()

    def register_source(self, nature: PropertyNature, source: PropertySource) -> None:
        self.sources[nature] = source

    def definitions_for(self, test: str, testcase: str) -> List[PropertyDefinition]:
        return list(self.store.get_property_definitions(test, testcase))

    def has_definition(self, test: str, testcase: str, property_name: str) -> bool:
        return any(d.property == property_name for d in self.definitions_for(test, testcase))

    async def resolve(
        self,
        test: str,
        testcase: str,
        country: str,
        property_name: str,
        args: Optional[Mapping[str, Any]] = None,
        *,
        substitute: Optional[Substitute] = None,
        sleep: Optional[Sleeper] = None,
        force: bool = False,
    ) -> Any:
        entry = await self._resolve(
            test, testcase, country, property_name, args, substitute=substitute, sleep=sleep, force=force
        )
        return entry.value

    async def _resolve(
        self,
        test: str,
        testcase: str,
        country: str,
        property_name: str,
        args: Optional[Mapping[str, Any]],
        *,
        substitute: Optional[Substitute],
        sleep: Optional[Sleeper],
        force: bool = False,
        chain: tuple[str, ...] = (),
    ) -> ResolvedProperty:
        if property_name in chain:
            raise ConfigurationError(
                f"Property '{property_name}' refers back to itself through {' -> '.join(chain + (property_name,))}.",
                test=test,
                testcase=testcase,
            )
        call_args = dict(args or {})
        call_args.setdefault("country", country)
        with self._rename_lock:
            definition = select_definition(self.definitions_for(test, testcase), property_name, country)
            key = build_property_cache_key(
                definition.nature.value, definition.source_name, test, testcase, country, property_name, call_args
            )
        caching = self.config.property_cache_enabled and definition.cache_expire > 0

        if caching and not force:
            entry = self.cache.get(key)
            if entry is not None:
                self.metrics.record_cache_hit(property_name)
                log.debug("Property cache hit for %s", key)
                return entry

        async with self.cache.key_lock(key):
            if caching and not force:
                entry = self.cache.get(key)
                if entry is not None:
                    self.metrics.record_cache_hit(property_name)
                    return entry
            self.metrics.record_cache_miss(property_name)
            log.debug("Resolving property %s with %s", property_name, redact_values(call_args))

            async def _fetch() -> Tuple[Any, FrozenSet[str]]:
                return await self._fetch(
                    definition, call_args, substitute=substitute, sleep=sleep, chain=chain + (property_name,)
                )

            def _on_error(exc: BaseException, attempt: int) -> None:
                self.metrics.record_fetch_attempt(property_name, success=False)
                log.warning("Property '%s' fetch attempt %d failed: %s", property_name, attempt + 1, exc)

            value, sources = await with_retries_and_timeout(
                _fetch,
                config=RetryConfig(
                    timeout=self.config.property_fetch_timeout,
                    max_retries=definition.retry_nb,
                    retry_period=definition.retry_period / 1000.0,
                ),
                on_error=_on_error,
                sleep=sleep or self.sleep,
                label=property_name,
            )
            self.metrics.record_fetch_attempt(property_name, success=True)
            entry = self.cache.set(key, value, float(definition.cache_expire) if caching else 0.0, sources)
            log.debug("Resolved property %s = %r", property_name, redact_value(property_name, value))
            return entry

    async def _fetch(
        self,
        definition: PropertyDefinition,
        args: Mapping[str, Any],
        *,
        substitute: Optional[Substitute],
        sleep: Optional[Sleeper],
        chain: tuple[str, ...],
    ) -> Tuple[Any, FrozenSet[str]]:
        """Fetch one value and the source prefixes it was resolved through."""
        own = frozenset({source_prefix(definition.nature.value, definition.source_name)})
        value1 = await substitute(definition.value1) if substitute else definition.value1
        if definition.nature is PropertyNature.STATIC:
            return shape_value(definition, value1), own
        if definition.nature is PropertyNature.PROPERTY:
            nested = await self._resolve(
                definition.test,
                definition.testcase,
                str(args.get("country", definition.country)),
                value1,
                args,
                substitute=substitute,
                sleep=sleep,
                chain=chain,
            )
            return shape_value(definition, nested.value), own | nested.sources
        source = self.sources.get(definition.nature)
        if source is None:
            raise ConfigurationError(
                f"No source registered for '{definition.nature.value}' properties (property '{definition.property}').",
                test=definition.test,
                testcase=definition.testcase,
            )
        value2 = await substitute(definition.value2) if substitute else definition.value2
        raw = await source.fetch(definition, value1, value2, args)
        return shape_value(definition, raw), own

    def rename_property(self, old_name: str, new_name: str) -> int:
        """
        Point every library-nature definition using ``old_name`` at ``new_name``.

        Cached values resolved through the old name, directly or through a
        chain of property-nature definitions, are dropped in the same
        critical section that resolution uses to pick definitions.
        """

        with self._rename_lock:
            updated = self.store.rename_property(old_name, new_name)
            evicted = self.cache.invalidate_prefix(source_prefix(PropertyNature.LIBRARY.value, old_name))
        log.info("Renamed property source %s -> %s (%d definitions, %d cache entries)", old_name, new_name, updated, evicted)
        return updated
