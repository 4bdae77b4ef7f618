"""
stepflow test case execution engine.
"""

from .version import __version__  # noqa: F401

__all__ = [
    "config",
    "engine",
    "errors",
    "models",
    "properties",
    "store",
    "__version__",
]
