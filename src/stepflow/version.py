"""
Central version constant for stepflow.
"""

__version__ = "0.1.0"
