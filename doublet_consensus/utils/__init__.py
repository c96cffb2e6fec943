"""Utility functions for doublet-consensus.

Provides statistical helpers used across modules.
"""

from .stats import (
    fold_change,
    percent,
    percent_series,
)

__all__ = [
    "fold_change",
    "percent",
    "percent_series",
]
