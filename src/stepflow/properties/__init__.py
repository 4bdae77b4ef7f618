"""
Property resolution: definition selection, source fetches, caching and retries.
"""

from .cache import InMemoryPropertyCache, ResolvedProperty, build_property_cache_key
from .resolver import PropertyResolver, select_definition
from .sources import CallablePropertySource, DataLibrarySource, EmptyResultError, PropertySource

__all__ = [
    "CallablePropertySource",
    "DataLibrarySource",
    "EmptyResultError",
    "InMemoryPropertyCache",
    "PropertyResolver",
    "PropertySource",
    "ResolvedProperty",
    "build_property_cache_key",
    "select_definition",
]
