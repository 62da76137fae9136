"""Dense/sparse agnostic matrix helpers.

All helpers accept either a ``numpy.ndarray`` or a ``scipy.sparse``
matrix and return dense 1-D arrays for per-row / per-column summaries.
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy import sparse

MatrixLike = Union[np.ndarray, sparse.spmatrix]


def to_dense(matrix: MatrixLike, dtype=np.float64) -> np.ndarray:
    """Return a dense copy of ``matrix`` with the given dtype."""
    if sparse.issparse(matrix):
        return matrix.toarray().astype(dtype, copy=False)
    return np.array(matrix, dtype=dtype, copy=True)


def row_sums(matrix: MatrixLike) -> np.ndarray:
    """Sum of each row (per-cell total counts)."""
    return np.asarray(matrix.sum(axis=1), dtype=np.float64).ravel()


def nonzero_per_row(matrix: MatrixLike) -> np.ndarray:
    """Number of strictly positive entries per row (detected features)."""
    return np.asarray((matrix > 0).sum(axis=1)).ravel().astype(np.int64)


def nonzero_per_col(matrix: MatrixLike) -> np.ndarray:
    """Number of strictly positive entries per column (cells expressing)."""
    return np.asarray((matrix > 0).sum(axis=0)).ravel().astype(np.int64)


def col_mean_var(matrix: MatrixLike, ddof: int = 1):
    """Column means and variances without densifying sparse input.

    Parameters
    ----------
    matrix : MatrixLike
        Cells x genes matrix
    ddof : int
        Delta degrees of freedom for the variance

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        (mean, variance) per column
    """
    n = matrix.shape[0]
    if sparse.issparse(matrix):
        mean = np.asarray(matrix.mean(axis=0)).ravel()
        sq = matrix.multiply(matrix)
        mean_sq = np.asarray(sq.mean(axis=0)).ravel()
        var = (mean_sq - mean**2) * n / max(n - ddof, 1)
        return mean, np.maximum(var, 0.0)
    arr = np.asarray(matrix, dtype=np.float64)
    return arr.mean(axis=0), arr.var(axis=0, ddof=ddof)


def scale_rows(matrix: MatrixLike, factors: np.ndarray) -> MatrixLike:
    """Multiply each row by the matching factor, preserving sparsity."""
    factors = np.asarray(factors, dtype=np.float64)
    if sparse.issparse(matrix):
        return (sparse.diags(factors) @ matrix.tocsr().astype(np.float64)).tocsr()
    return np.asarray(matrix, dtype=np.float64) * factors[:, None]


def apply_elementwise(matrix: MatrixLike, func) -> MatrixLike:
    """Apply a zero-preserving elementwise function (e.g. ``np.log1p``)."""
    if sparse.issparse(matrix):
        out = matrix.tocsr(copy=True).astype(np.float64)
        out.data = func(out.data)
        return out
    return func(np.asarray(matrix, dtype=np.float64))


def freeze(matrix: MatrixLike) -> MatrixLike:
    """Mark the underlying buffers read-only."""
    if sparse.issparse(matrix):
        matrix.data.setflags(write=False)
    else:
        matrix.setflags(write=False)
    return matrix
