"""Utility functions for scpipe.

Provides statistical helpers, matrix helpers and parameter validation.
"""

from .stats import (
    adjust_pvalues,
    empirical_pvalues,
    proportion_test,
    log2_fold_change,
    fraction_expressing,
)
from .validation import coerce_enum, require_positive

__all__ = [
    "adjust_pvalues",
    "empirical_pvalues",
    "proportion_test",
    "log2_fold_change",
    "fraction_expressing",
    "coerce_enum",
    "require_positive",
]
