"""Statistical utilities for scpipe.

Provides multiple-testing correction, empirical p-values, proportion
tests and the fold-change convention used by the marker engine.
"""

from __future__ import annotations

from typing import Iterable, Union

import numpy as np
from scipy.stats import chi2_contingency
from statsmodels.stats.multitest import multipletests

ArrayLike = Union[Iterable[float], np.ndarray]


def adjust_pvalues(p_values: ArrayLike, method: str = "bonferroni") -> np.ndarray:
    """Correct p-values for multiple testing.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values. Non-finite entries are treated as 1.0.
    method : str
        Any method accepted by ``statsmodels.stats.multitest.multipletests``
        (``bonferroni``, ``fdr_bh``, ...).

    Returns
    -------
    np.ndarray
        Adjusted p-values, capped at 1.
    """
    arr = np.asarray(list(p_values), dtype=float)
    if arr.size == 0:
        return arr
    arr = np.where(np.isfinite(arr), arr, 1.0)
    _, adjusted, _, _ = multipletests(arr, method=method)
    return np.minimum(adjusted, 1.0)


def empirical_pvalues(observed: np.ndarray, null: np.ndarray) -> np.ndarray:
    """Fraction of null values strictly larger than each observed value.

    Parameters
    ----------
    observed : np.ndarray
        Observed statistics (any shape)
    null : np.ndarray
        1-D null distribution

    Returns
    -------
    np.ndarray
        Empirical p-values with the same shape as ``observed``.
    """
    null_sorted = np.sort(np.asarray(null, dtype=float).ravel())
    if null_sorted.size == 0:
        return np.ones_like(observed, dtype=float)
    n_below = np.searchsorted(null_sorted, observed, side="right")
    return (null_sorted.size - n_below) / null_sorted.size


def proportion_test(count_a: int, count_b: int, total: int) -> float:
    """Two-sample test of equal proportions ``count_a/total`` vs ``count_b/total``.

    Chi-square on the 2x2 table with Yates continuity correction. Returns
    1.0 when the table is degenerate (both counts zero or both full).
    """
    if total <= 0:
        return 1.0
    table = np.array(
        [[count_a, total - count_a], [count_b, total - count_b]], dtype=float
    )
    if (table.sum(axis=0) == 0).any():
        return 1.0
    _, p_value, _, _ = chi2_contingency(table, correction=True)
    return float(p_value)


def log2_fold_change(
    group_1: np.ndarray,
    group_2: np.ndarray,
    pseudocount: float = 1.0,
) -> np.ndarray:
    """Average log2 fold change of log-normalized expression.

    Values are moved back to linear space with ``expm1`` before averaging:
    ``log2(mean(expm1(x1)) + pc) - log2(mean(expm1(x2)) + pc)``.

    Parameters
    ----------
    group_1, group_2 : np.ndarray
        Cells x genes arrays of log-normalized expression

    Returns
    -------
    np.ndarray
        Per-gene log2 fold change
    """
    mean_1 = np.expm1(group_1).mean(axis=0)
    mean_2 = np.expm1(group_2).mean(axis=0)
    return np.log2(mean_1 + pseudocount) - np.log2(mean_2 + pseudocount)


def fraction_expressing(values: np.ndarray, decimals: int = 3) -> np.ndarray:
    """Per-column fraction of cells with expression above zero."""
    if values.shape[0] == 0:
        return np.zeros(values.shape[1])
    return np.round((values > 0).mean(axis=0), decimals)
