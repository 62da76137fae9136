"""Highly variable gene selection.

Ranks genes by variance relative to the mean-variance trend and
selects the top ``n_features`` as the working feature set for scaling
and PCA. All genes stay in the store; selection is recorded in ``var``.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy import sparse
from statsmodels.nonparametric.smoothers_lowess import lowess

from ...errors import NumericDegeneracyError
from ...utils.matrix import MatrixLike, col_mean_var
from ..store import MatrixStore
from .config import FeatureMethod, FeatureSelectionConfig


@dataclass
class FeatureSelectionResult:
    """Result from feature selection.

    Attributes
    ----------
    store : MatrixStore
        Store with ``highly_variable``, ``hvg_rank`` and method-specific
        statistics in ``var``
    features : Tuple[str, ...]
        Selected gene identifiers, ordered by rank
    n_requested : int
        Requested number of features
    unmet : int
        Shortfall when fewer genes have positive variance than requested
    """

    store: Optional[MatrixStore] = None
    features: Tuple[str, ...] = field(default_factory=tuple)
    n_requested: int = 0
    unmet: int = 0


class FeatureSelector:
    """Highly variable gene selector.

    Parameters
    ----------
    config : FeatureSelectionConfig, optional
        Feature selection configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.preprocessing import FeatureSelector, FeatureSelectionConfig
    >>> selector = FeatureSelector(FeatureSelectionConfig(n_features=2000))
    >>> result = selector.select(normalized_store)
    >>> result.features[:10]
    """

    CHUNK_SIZE = 1000

    def __init__(
        self,
        config: Optional[FeatureSelectionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or FeatureSelectionConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _column_chunks(self, matrix: MatrixLike, columns: np.ndarray):
        """Yield (column indices, dense block) pairs."""
        for start in range(0, len(columns), self.CHUNK_SIZE):
            idx = columns[start:start + self.CHUNK_SIZE]
            block = matrix[:, idx]
            block = block.toarray() if sparse.issparse(block) else np.asarray(block)
            yield idx, block.astype(np.float64)

    def vst_statistics(self, counts: MatrixLike) -> pd.DataFrame:
        """Variance-stabilizing statistics on raw counts.

        A lowess trend of ``log10(variance)`` against ``log10(mean)`` is
        fitted over genes with positive variance. Each gene is then
        standardized with the trend's expected standard deviation,
        clipped above at ``clip_max`` (default ``sqrt(n_cells)``), and
        its variance taken as the ranking score.

        Returns
        -------
        pd.DataFrame
            Columns ``mean``, ``variance``, ``variance_expected``,
            ``variance_standardized`` (positional, one row per gene)
        """
        n_cells = counts.shape[0]
        mean, variance = col_mean_var(counts, ddof=1)
        positive = variance > 0
        n_positive = int(positive.sum())
        if n_positive == 0:
            raise NumericDegeneracyError("No gene has positive variance")

        expected = np.zeros_like(variance)
        if n_positive >= 3:
            span = min(1.0, max(self.config.loess_span, 3.0 / n_positive))
            fitted = lowess(
                np.log10(variance[positive]),
                np.log10(mean[positive]),
                frac=span,
                it=0,
                return_sorted=False,
            )
            expected[positive] = np.power(10.0, fitted)
        else:
            expected[positive] = variance[positive]

        clip_max = self.config.clip_max or np.sqrt(n_cells)
        standardized = np.zeros_like(variance)
        columns = np.flatnonzero(positive)
        sd = np.sqrt(expected)
        for idx, block in self._column_chunks(counts, columns):
            z = (block - mean[idx]) / sd[idx]
            z = np.minimum(z, clip_max)
            standardized[idx] = z.var(axis=0, ddof=1)

        return pd.DataFrame(
            {
                "mean": mean,
                "variance": variance,
                "variance_expected": expected,
                "variance_standardized": standardized,
            }
        )

    def dispersion_statistics(self, normalized: MatrixLike) -> pd.DataFrame:
        """Binned dispersion statistics on log-normalized data.

        Mean and variance are computed in linear space (``expm1``);
        ``log(variance / mean)`` is z-scored within ``n_bins`` equal-width
        bins of ``log1p(mean)``. Bins holding a single gene score 0.
        """
        n_genes = normalized.shape[1]
        mean = np.zeros(n_genes)
        variance = np.zeros(n_genes)
        for idx, block in self._column_chunks(normalized, np.arange(n_genes)):
            linear = np.expm1(block)
            mean[idx] = linear.mean(axis=0)
            variance[idx] = linear.var(axis=0, ddof=1) if block.shape[0] > 1 else 0.0

        with np.errstate(divide="ignore", invalid="ignore"):
            dispersion = np.where(mean > 0, np.log(variance / mean), np.nan)
        dispersion[~np.isfinite(dispersion)] = np.nan
        log_mean = np.log1p(mean)

        frame = pd.DataFrame(
            {
                "mean": log_mean,
                "variance": variance,
                "dispersion": dispersion,
            }
        )
        frame["bin"] = pd.cut(frame["mean"], bins=self.config.n_bins)
        grouped = frame.groupby("bin", observed=True)["dispersion"]
        bin_mean = grouped.transform("mean")
        bin_std = grouped.transform("std")
        scaled = (frame["dispersion"] - bin_mean) / bin_std
        frame["dispersion_scaled"] = scaled.replace([np.inf, -np.inf], np.nan).fillna(0.0)
        return frame.drop(columns=["bin"])

    @staticmethod
    def rank_genes(score: np.ndarray, eligible: np.ndarray) -> np.ndarray:
        """1-based rank, descending by score, stable on column order.

        Ineligible genes (zero variance) rank after every eligible gene.
        """
        key = np.where(eligible, score, -np.inf)
        order = np.argsort(-key, kind="stable")
        ranks = np.empty(len(score), dtype=np.int64)
        ranks[order] = np.arange(1, len(score) + 1)
        return ranks

    def select(self, store: MatrixStore) -> FeatureSelectionResult:
        """Select highly variable genes.

        Parameters
        ----------
        store : MatrixStore
            Normalized store; VST reads raw counts from ``layers['counts']``
            when present

        Returns
        -------
        FeatureSelectionResult
            Selected features and annotated store
        """
        cfg = self.config
        method = cfg.method
        self.logger.info(
            "Selecting %d variable features (method=%s) from %d genes",
            cfg.n_features,
            method.value,
            store.n_vars,
        )

        if method is FeatureMethod.VST:
            counts = store.layers.get("counts", store.X)
            stats = self.vst_statistics(counts)
            score = stats["variance_standardized"].to_numpy()
        elif method is FeatureMethod.DISPERSION:
            stats = self.dispersion_statistics(store.X)
            score = stats["dispersion_scaled"].to_numpy()
        else:
            raise ValueError(f"Unhandled feature selection method: {method}")

        eligible = stats["variance"].to_numpy() > 0
        n_eligible = int(eligible.sum())
        if n_eligible == 0:
            raise NumericDegeneracyError("No gene has positive variance")

        ranks = self.rank_genes(score, eligible)
        n_selected = min(cfg.n_features, n_eligible)
        selected = ranks <= n_selected
        unmet = cfg.n_features - n_selected
        if unmet > 0:
            self.logger.warning(
                "Requested %d features but only %d genes have positive variance; "
                "selecting all %d (%d unmet)",
                cfg.n_features,
                n_eligible,
                n_selected,
                unmet,
            )

        order = np.argsort(ranks, kind="stable")[:n_selected]
        features = tuple(store.var_names[order].astype(str))

        columns = {col: stats[col].to_numpy() for col in stats.columns}
        columns["hvg_rank"] = ranks
        columns["highly_variable"] = selected
        new_store = store.with_var(**columns).with_uns(
            hvg={
                "method": method.value,
                "n_requested": int(cfg.n_features),
                "n_selected": int(n_selected),
                "unmet": int(unmet),
                "features": list(features),
            }
        )
        self.logger.info("Selected %d variable features", n_selected)
        return FeatureSelectionResult(
            store=new_store,
            features=features,
            n_requested=cfg.n_features,
            unmet=unmet,
        )

    @staticmethod
    def features_of(store: MatrixStore) -> List[str]:
        """Variable Feature Set recorded on a store, in rank order."""
        if "hvg" not in store.uns:
            raise KeyError("No feature selection recorded on this store")
        return list(store.uns["hvg"]["features"])
