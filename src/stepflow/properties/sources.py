"""
Property sources: the collaborators that actually produce property values
for query, service and library natures.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from ..models import PropertyDefinition, WILDCARD_COUNTRY


class EmptyResultError(LookupError):
    """A source answered, but with no usable row."""


class PropertySource(Protocol):
    async def fetch(
        self, definition: PropertyDefinition, value1: str, value2: str, args: Mapping[str, Any]
    ) -> Any: ...


class CallablePropertySource:
    """Adapt a plain function (sync or async) to the :class:`PropertySource` contract."""

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.fn = fn

    async def fetch(
        self, definition: PropertyDefinition, value1: str, value2: str, args: Mapping[str, Any]
    ) -> Any:
        result = self.fn(definition, value1, value2, args)
        if inspect.isawaitable(result):
            result = await result
        return result


class DataLibrarySource:
    """
    In-memory data library keyed by library name, then country.

    An entry stored under the wildcard country answers for every country
    that has no entry of its own.
    """

    def __init__(self, libraries: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._libraries: Dict[str, Dict[str, Any]] = {name: dict(entries) for name, entries in (libraries or {}).items()}

    def register(self, name: str, value: Any, country: str = WILDCARD_COUNTRY) -> None:
        self._libraries.setdefault(name, {})[country] = value

    def rename(self, old_name: str, new_name: str) -> None:
        if old_name in self._libraries:
            self._libraries[new_name] = self._libraries.pop(old_name)

    async def fetch(
        self, definition: PropertyDefinition, value1: str, value2: str, args: Mapping[str, Any]
    ) -> Any:
        entries = self._libraries.get(value1)
        if entries is None:
            raise EmptyResultError(f"No data library named '{value1}'.")
        country = str(args.get("country") or definition.country or WILDCARD_COUNTRY)
        if country in entries:
            value = entries[country]
        elif WILDCARD_COUNTRY in entries:
            value = entries[WILDCARD_COUNTRY]
        else:
            raise EmptyResultError(f"Data library '{value1}' has no entry for country '{country}'.")
        if value2 and isinstance(value, Mapping):
            if value2 not in value:
                raise EmptyResultError(f"Data library '{value1}' has no column '{value2}'.")
            return value[value2]
        return value


def shape_value(definition: PropertyDefinition, raw: Any) -> Any:
    """Apply the row limit and expected length of a definition to a fetched value."""
    value = raw
    if isinstance(value, (list, tuple)):
        rows = list(value)
        if definition.row_limit > 0:
            rows = rows[: definition.row_limit]
        if not rows:
            raise EmptyResultError(f"Source for property '{definition.property}' returned no rows.")
        value = rows[0]
    if value is None:
        raise EmptyResultError(f"Source for property '{definition.property}' returned no value.")
    if isinstance(value, str) and definition.length > 0:
        value = value[: definition.length]
    return value
