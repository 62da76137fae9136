"""Differential marker testing between groups of cells.

Each comparison runs on the normalized expression matrix:

1. Per-gene detection fractions (``pct_1``, ``pct_2``) and average log2
   fold change are computed for both groups.
2. Genes below ``min_pct`` in both groups, or below the fold-change
   threshold, are dropped before testing.
3. The remaining genes are tested (Wilcoxon rank-sum or Welch t-test)
   and p-values Bonferroni-corrected over the tested genes.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union
import logging
import time
import warnings

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats

from ...errors import ConfigurationError
from ...utils.matrix import to_dense
from ...utils.stats import adjust_pvalues, fraction_expressing, log2_fold_change
from ..store import MatrixStore
from .config import MarkerConfig, MarkerTestMethod

MARKER_COLUMNS = ["gene", "p_val", "avg_log2FC", "pct_1", "pct_2", "p_val_adj"]

Ident = Union[str, int, Sequence[Union[str, int]]]


@dataclass
class MarkerResult:
    """Result from find-all-markers.

    Attributes
    ----------
    markers : pd.DataFrame
        Concatenated marker tables with a ``cluster`` column
    skipped : List[str]
        Clusters too small to test
    elapsed_seconds : float
        Time spent testing
    """

    markers: pd.DataFrame = field(default_factory=lambda: empty_markers(with_cluster=True))
    skipped: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def top(self, n: int = 5) -> pd.DataFrame:
        """First ``n`` markers of each cluster."""
        return top_markers(self.markers, n)


def empty_markers(with_cluster: bool = False) -> pd.DataFrame:
    columns = MARKER_COLUMNS + (["cluster"] if with_cluster else [])
    return pd.DataFrame(columns=columns)


def _test_pvalues(
    group_1: np.ndarray, group_2: np.ndarray, method: MarkerTestMethod
) -> np.ndarray:
    """Vectorized per-column two-sided p-values; undefined results become 1."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        if method is MarkerTestMethod.WILCOX:
            result = stats.mannwhitneyu(group_1, group_2, alternative="two-sided", axis=0)
        elif method is MarkerTestMethod.T_TEST:
            result = stats.ttest_ind(group_1, group_2, equal_var=False, axis=0)
        else:
            raise ValueError(f"Unhandled test method: {method}")
    p_values = np.asarray(result.pvalue, dtype=np.float64)
    return np.where(np.isfinite(p_values), p_values, 1.0)


def compare_groups(
    values: np.ndarray,
    mask_1: np.ndarray,
    mask_2: np.ndarray,
    genes: Sequence[str],
    config: MarkerConfig,
) -> pd.DataFrame:
    """Test every gene for differential expression between two cell groups.

    Parameters
    ----------
    values : np.ndarray
        Cells x genes normalized expression
    mask_1, mask_2 : np.ndarray
        Disjoint boolean cell masks
    genes : Sequence[str]
        Column identifiers
    config : MarkerConfig
        Thresholds and test method

    Returns
    -------
    pd.DataFrame
        One row per tested gene, sorted by ``p_val_adj``, ``p_val`` and
        descending absolute fold change
    """
    group_1 = values[mask_1]
    group_2 = values[mask_2]
    genes = np.asarray(genes, dtype=object)

    pct_1 = fraction_expressing(group_1)
    pct_2 = fraction_expressing(group_2)
    logfc = log2_fold_change(group_1, group_2, config.pseudocount)

    keep = np.maximum(pct_1, pct_2) >= config.min_pct
    if config.only_positive:
        keep &= (logfc > 0) & (logfc >= config.logfc_threshold)
    else:
        keep &= np.abs(logfc) >= config.logfc_threshold
    if not keep.any():
        return empty_markers()

    p_values = _test_pvalues(group_1[:, keep], group_2[:, keep], config.test_method)
    table = pd.DataFrame(
        {
            "gene": genes[keep],
            "p_val": p_values,
            "avg_log2FC": logfc[keep],
            "pct_1": pct_1[keep],
            "pct_2": pct_2[keep],
            "p_val_adj": adjust_pvalues(p_values, method="bonferroni"),
        }
    )
    table["_abs_fc"] = table["avg_log2FC"].abs()
    table = table.sort_values(
        ["p_val_adj", "p_val", "_abs_fc"],
        ascending=[True, True, False],
        kind="mergesort",
    )
    return table.drop(columns="_abs_fc").reset_index(drop=True)


def top_markers(markers: pd.DataFrame, n: int = 5, group_col: str = "cluster") -> pd.DataFrame:
    """First ``n`` rows of each group in a (sorted) marker table."""
    if markers.empty:
        return markers.copy()
    return markers.groupby(group_col, sort=False, observed=True).head(n).reset_index(drop=True)


def _cluster_vs_rest(
    values: np.ndarray,
    labels: np.ndarray,
    cluster: str,
    genes: Sequence[str],
    config: MarkerConfig,
) -> pd.DataFrame:
    mask = labels == cluster
    table = compare_groups(values, mask, ~mask, genes, config)
    table["cluster"] = cluster
    return table


class MarkerEngine:
    """Differential marker engine (FindMarkers / FindAllMarkers).

    Parameters
    ----------
    config : MarkerConfig, optional
        Marker configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.markers import MarkerEngine, MarkerConfig
    >>> engine = MarkerEngine(MarkerConfig(only_positive=True))
    >>> table = engine.find_markers(clustered_store, ident_1="3")
    >>> result = engine.find_all_markers(clustered_store)
    >>> result.top(5)
    """

    def __init__(
        self,
        config: Optional[MarkerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MarkerConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _labels(self, store: MatrixStore) -> np.ndarray:
        column = self.config.group_by
        if column not in store.obs.columns:
            raise ConfigurationError(
                f"Cell metadata has no '{column}' column (run clustering first)"
            )
        return store.obs[column].astype(str).to_numpy()

    def _group_mask(self, labels: np.ndarray, ident: Ident, name: str) -> np.ndarray:
        if isinstance(ident, (str, int, np.integer)):
            idents = [str(ident)]
        elif isinstance(ident, (list, tuple, set, np.ndarray, pd.Index)):
            idents = [str(i) for i in ident]
        else:
            raise ConfigurationError(
                f"{name} must be a group label or a list of labels, got {type(ident).__name__}"
            )
        unknown = sorted(set(idents) - set(labels))
        if unknown:
            raise ConfigurationError(f"{name} refers to unknown groups: {unknown}")
        mask = np.isin(labels, idents)
        if mask.sum() < self.config.min_cells_group:
            raise ConfigurationError(
                f"{name} has {int(mask.sum())} cells; at least "
                f"{self.config.min_cells_group} are required"
            )
        return mask

    def find_markers(
        self,
        store: MatrixStore,
        ident_1: Ident,
        ident_2: Optional[Ident] = None,
    ) -> pd.DataFrame:
        """Markers of ``ident_1`` against ``ident_2`` (default: all other cells).

        Parameters
        ----------
        store : MatrixStore
            Normalized store with group labels in ``obs``
        ident_1 : str or Sequence[str]
            Label(s) of the first group
        ident_2 : str or Sequence[str], optional
            Label(s) of the comparison group

        Returns
        -------
        pd.DataFrame
            Columns ``gene``, ``p_val``, ``avg_log2FC``, ``pct_1``,
            ``pct_2``, ``p_val_adj``

        Raises
        ------
        ConfigurationError
            If a group is unknown, overlaps the other, or has too few cells
        """
        labels = self._labels(store)
        mask_1 = self._group_mask(labels, ident_1, "ident_1")
        if ident_2 is None:
            mask_2 = ~mask_1
            if mask_2.sum() < self.config.min_cells_group:
                raise ConfigurationError(
                    f"Only {int(mask_2.sum())} cells outside ident_1; at least "
                    f"{self.config.min_cells_group} are required"
                )
        else:
            mask_2 = self._group_mask(labels, ident_2, "ident_2")
            if (mask_1 & mask_2).any():
                raise ConfigurationError("ident_1 and ident_2 overlap")

        values = to_dense(store.X)
        table = compare_groups(values, mask_1, mask_2, list(store.var_names), self.config)
        self.logger.info(
            "FindMarkers %s vs %s: %d genes tested (%d cells vs %d)",
            ident_1,
            "rest" if ident_2 is None else ident_2,
            len(table),
            int(mask_1.sum()),
            int(mask_2.sum()),
        )
        return table

    def find_all_markers(self, store: MatrixStore) -> MarkerResult:
        """Markers of every group against all other cells.

        Groups are processed in label order (categorical order when the
        column is categorical). Groups too small to test are skipped with
        a warning.
        """
        cfg = self.config
        labels = self._labels(store)
        column = store.obs[cfg.group_by]
        if isinstance(column.dtype, pd.CategoricalDtype):
            clusters = [str(c) for c in column.cat.categories if str(c) in set(labels)]
        else:
            clusters = sorted(set(labels))

        sizes = pd.Series(labels).value_counts()
        testable, skipped = [], []
        for cluster in clusters:
            n_in = int(sizes.get(cluster, 0))
            if n_in < cfg.min_cells_group or len(labels) - n_in < cfg.min_cells_group:
                skipped.append(cluster)
            else:
                testable.append(cluster)
        if skipped:
            self.logger.warning(
                "Skipping %d groups with fewer than %d cells: %s",
                len(skipped),
                cfg.min_cells_group,
                skipped,
            )

        self.logger.info(
            "FindAllMarkers: %d groups (test=%s, only_positive=%s, n_jobs=%d)",
            len(testable),
            cfg.test_method.value,
            cfg.only_positive,
            cfg.n_jobs,
        )
        start = time.time()
        values = to_dense(store.X)
        genes = list(store.var_names)
        tables = Parallel(n_jobs=cfg.n_jobs, backend="loky")(
            delayed(_cluster_vs_rest)(values, labels, cluster, genes, cfg)
            for cluster in testable
        )
        tables = [t for t in tables if not t.empty]
        markers = (
            pd.concat(tables, ignore_index=True) if tables else empty_markers(with_cluster=True)
        )
        elapsed = time.time() - start
        self.logger.info("FindAllMarkers: %d markers in %.2f sec", len(markers), elapsed)
        return MarkerResult(markers=markers, skipped=skipped, elapsed_seconds=elapsed)
