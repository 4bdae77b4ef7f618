"""
Metrics and logging helpers for the execution engine.
"""

from .metrics import MetricsRegistry, default_metrics

__all__ = ["MetricsRegistry", "default_metrics"]
