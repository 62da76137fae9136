"""Per-cell count normalization.

Rescales each cell to a common total and log-transforms the result.
The raw counts are kept in ``layers['counts']`` and the normalized
matrix becomes read-only: later stages work on derived copies.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

import numpy as np
from scipy import sparse

from ...errors import ShapeMismatchError
from ...utils.matrix import MatrixLike, apply_elementwise, freeze, row_sums, scale_rows
from ..store import MatrixStore
from .config import NormalizationConfig, NormalizationMethod


@dataclass
class NormalizationResult:
    """Result from normalizing a store.

    Attributes
    ----------
    store : MatrixStore
        Store with normalized ``X`` and raw counts in ``layers['counts']``
    method : NormalizationMethod
        Method applied
    params : Dict[str, Any]
        Parameters recorded in ``uns['normalization']``
    """

    store: Optional[MatrixStore] = None
    method: NormalizationMethod = NormalizationMethod.LOG_NORMALIZE
    params: Dict[str, Any] = field(default_factory=dict)


class Normalizer:
    """Per-cell count normalizer.

    Parameters
    ----------
    config : NormalizationConfig, optional
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.preprocessing import Normalizer
    >>> result = Normalizer().normalize(qc_result.store)
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def relative_counts(self, counts: MatrixLike) -> MatrixLike:
        """Divide each cell by its total and multiply by the scale factor.

        A cell with zero total counts stays an all-zero row.
        """
        totals = row_sums(counts)
        empty = totals <= 0
        if empty.any():
            self.logger.warning(
                "%d cells have zero total counts; left as zeros", int(empty.sum())
            )
        factors = np.zeros_like(totals)
        factors[~empty] = self.config.scale_factor / totals[~empty]
        return scale_rows(counts, factors)

    def log_normalize(self, counts: MatrixLike) -> MatrixLike:
        """``log(1 + count / total * scale_factor)``; zero stays zero."""
        return apply_elementwise(self.relative_counts(counts), np.log1p)

    @staticmethod
    def centered_log_ratio(counts: MatrixLike) -> MatrixLike:
        """Per-gene centered log ratio: ``log1p(x / exp(mean(log1p(x))))``.

        Each gene is divided by the geometric mean (with pseudocount) of
        its values across cells.
        """
        dense = counts.toarray() if sparse.issparse(counts) else np.asarray(counts, dtype=float)
        geo = np.exp(np.log1p(dense).mean(axis=0))
        return np.log1p(dense / geo[None, :])

    def normalize(self, store: MatrixStore) -> NormalizationResult:
        """Normalize the counts in ``store.X``.

        Parameters
        ----------
        store : MatrixStore
            Store with raw counts in ``X`` (QC already applied)

        Returns
        -------
        NormalizationResult
            New store whose ``X`` is float-valued, same shape, read-only
        """
        method = self.config.method
        counts = store.X
        if counts.ndim != 2 or counts.shape != (store.n_obs, store.n_vars):
            raise ShapeMismatchError(f"Malformed count matrix shape {counts.shape}")

        self.logger.info(
            "Normalizing %d cells x %d genes (method=%s, scale_factor=%.0f)",
            store.n_obs,
            store.n_vars,
            method.value,
            self.config.scale_factor,
        )

        if method is NormalizationMethod.LOG_NORMALIZE:
            normalized = self.log_normalize(counts)
        elif method is NormalizationMethod.RELATIVE_COUNTS:
            normalized = self.relative_counts(counts)
        elif method is NormalizationMethod.CLR:
            normalized = self.centered_log_ratio(counts)
        else:
            raise ValueError(f"Unhandled normalization method: {method}")

        if sparse.issparse(counts) and not sparse.issparse(normalized):
            normalized = sparse.csr_matrix(normalized)
        freeze(normalized)

        params = {"method": method.value, "scale_factor": self.config.scale_factor}
        new_store = store.with_matrix(normalized, counts=counts).with_uns(
            normalization=params
        )
        return NormalizationResult(store=new_store, method=method, params=params)
