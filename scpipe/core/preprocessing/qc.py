"""Cell-level quality control.

Computes per-cell metrics (total counts, detected features,
mitochondrial fraction) and removes cells outside the configured bounds.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

import numpy as np
import pandas as pd

from ...errors import ConfigurationError
from ...utils.matrix import row_sums, nonzero_per_row
from ..store import MatrixStore
from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "zero_counts",
    "low_features",
    "high_features",
    "high_mt",
]


@dataclass
class QCResult:
    """Result from QC filtering.

    Attributes
    ----------
    store : MatrixStore
        Store restricted to passing cells, with QC metrics in ``obs``
    mask : np.ndarray
        Boolean retention mask over the input cells
    cells_total : int
        Cells before filtering
    cells_removed : int
        Cells removed
    reason_counts : Dict[str, int]
        Cells failing each criterion (a cell may fail several)
    metrics : pd.DataFrame
        Per-cell metrics for all input cells, including ``qc_pass``
    """

    store: Optional[MatrixStore] = None
    mask: Optional[np.ndarray] = None
    cells_total: int = 0
    cells_removed: int = 0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    metrics: Optional[pd.DataFrame] = None

    @property
    def removal_fraction(self) -> float:
        return self.cells_removed / self.cells_total if self.cells_total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig, optional
        QC configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scpipe.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(min_features=200, max_features=2500))
    >>> result = qc.filter(store)
    >>> result.store.n_obs
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def mito_mask(self, store: MatrixStore) -> np.ndarray:
        """Boolean mask of mitochondrial genes.

        Uses the explicit gene set when configured, otherwise a
        case-insensitive prefix match on gene identifiers.
        """
        names = store.var_names.astype(str)
        if self.config.mt_genes:
            wanted = {g.upper() for g in self.config.mt_genes}
            return np.asarray(names.str.upper().isin(wanted))
        prefix = self.config.mt_prefix.upper()
        return np.asarray(names.str.upper().str.startswith(prefix))

    def _prefix_mask(self, store: MatrixStore, prefixes) -> np.ndarray:
        names = store.var_names.astype(str).str.upper()
        mask = np.zeros(store.n_vars, dtype=bool)
        for prefix in prefixes:
            mask |= np.asarray(names.str.startswith(prefix.upper()))
        return mask

    @staticmethod
    def _safe_fraction(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
        """Ratio with NaN where the denominator is zero."""
        ratio = np.full(numerator.shape, np.nan, dtype=float)
        valid = denominator > 0
        ratio[valid] = numerator[valid] / denominator[valid]
        return ratio

    def compute_metrics(self, store: MatrixStore) -> pd.DataFrame:
        """Compute per-cell QC metrics.

        Parameters
        ----------
        store : MatrixStore
            Store holding raw counts in ``X``

        Returns
        -------
        pd.DataFrame
            Columns ``total_counts``, ``n_features``, ``mt_counts``,
            ``mt_fraction`` and ``ribo_fraction``, indexed by cell id.
            Fractions are NaN for cells with zero total counts.
        """
        X = store.X
        total = row_sums(X)
        n_features = nonzero_per_row(X)

        mt = self.mito_mask(store)
        mt_counts = row_sums(X[:, np.flatnonzero(mt)]) if mt.any() else np.zeros(store.n_obs)

        ribo = self._prefix_mask(store, self.config.ribo_prefixes)
        ribo_counts = (
            row_sums(X[:, np.flatnonzero(ribo)]) if ribo.any() else np.zeros(store.n_obs)
        )

        return pd.DataFrame(
            {
                "total_counts": total,
                "n_features": n_features,
                "mt_counts": mt_counts,
                "mt_fraction": self._safe_fraction(mt_counts, total),
                "ribo_fraction": self._safe_fraction(ribo_counts, total),
            },
            index=store.obs_names,
        )

    def build_reasons(self, metrics: pd.DataFrame) -> pd.DataFrame:
        """Flag each criterion a cell fails.

        A zero-count cell has an undefined mitochondrial fraction and is
        flagged ``zero_counts``; NaN never passes the fraction bound.
        """
        cfg = self.config
        mt_fraction = metrics["mt_fraction"]
        reasons = pd.DataFrame(index=metrics.index)
        reasons["zero_counts"] = metrics["total_counts"] <= 0
        reasons["low_features"] = metrics["n_features"] < cfg.min_features
        reasons["high_features"] = metrics["n_features"] > cfg.max_features
        reasons["high_mt"] = ~(mt_fraction < cfg.max_mt_fraction) & mt_fraction.notna()
        return reasons

    def filter(self, store: MatrixStore) -> QCResult:
        """Filter cells based on QC criteria.

        Parameters
        ----------
        store : MatrixStore
            Store holding raw counts

        Returns
        -------
        QCResult
            Filtering result with the reduced store

        Raises
        ------
        ConfigurationError
            If no cell passes the configured bounds
        """
        cfg = self.config
        if cfg.min_cells_per_gene > 0:
            before = store.n_vars
            store = store.filter_genes(cfg.min_cells_per_gene)
            self.logger.info(
                "Gene prefilter: kept %d/%d genes detected in >= %d cells",
                store.n_vars,
                before,
                cfg.min_cells_per_gene,
            )

        metrics = self.compute_metrics(store)
        reasons = self.build_reasons(metrics)
        mask = ~reasons.any(axis=1).to_numpy()
        metrics["qc_pass"] = mask

        result = QCResult(
            mask=mask,
            cells_total=len(mask),
            cells_removed=int((~mask).sum()),
            reason_counts={r: int(reasons[r].sum()) for r in REASON_COLUMNS},
            metrics=metrics,
        )

        self.logger.info(
            "QC bounds: %d <= n_features <= %d, mt_fraction < %.3f",
            cfg.min_features,
            cfg.max_features,
            cfg.max_mt_fraction,
        )
        for reason in REASON_COLUMNS:
            if result.reason_counts[reason]:
                self.logger.info(
                    "  %s: %d cells", reason, result.reason_counts[reason]
                )

        if not mask.any():
            raise ConfigurationError(
                "QC thresholds removed all %d cells (%s); relax the bounds"
                % (
                    result.cells_total,
                    ", ".join(f"{k}={v}" for k, v in result.reason_counts.items()),
                )
            )

        annotated = store.with_obs(
            **{col: metrics[col].to_numpy() for col in metrics.columns}
        )
        result.store = annotated.subset_cells(mask).with_uns(qc=result.to_dict())
        self.logger.info(
            "QC kept %d/%d cells (%.1f%% removed)",
            result.store.n_obs,
            result.cells_total,
            100 * result.removal_fraction,
        )
        return result
