"""JackStraw permutation test for principal component significance.

Each replicate permutes the values of a small random subset of genes
across cells, recomputes PCA, and records the (absolute) loadings of the
permuted genes. Those form a null distribution per component against
which the real loadings are compared. A component is significant when
it holds more low-p-value genes than expected under a uniform
distribution.

Replicates are independent and run through joblib. Each replicate draws
from its own seed derived from the base seed, so results do not depend
on ``n_jobs``.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging
import time

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ...errors import ConfigurationError
from ...utils.stats import empirical_pvalues, proportion_test
from ..store import MatrixStore
from .config import JackStrawConfig
from .pca import fit_pca, max_components


@dataclass
class JackStrawResult:
    """Result from the JackStraw test.

    Attributes
    ----------
    store : MatrixStore
        Store with ``uns['jackstraw']``
    gene_pvalues : pd.DataFrame
        Features x components empirical p-values
    pc_scores : pd.DataFrame
        Columns ``pc`` and ``score`` (proportion-test p-value per component)
    null_loadings : np.ndarray
        Pooled absolute loadings of permuted genes (entries x components)
    """

    store: Optional[MatrixStore] = None
    gene_pvalues: pd.DataFrame = field(default_factory=pd.DataFrame)
    pc_scores: pd.DataFrame = field(default_factory=pd.DataFrame)
    null_loadings: Optional[np.ndarray] = None

    def significant_pcs(self, alpha: float = 0.05) -> List[int]:
        """1-based indices of components with score below ``alpha``."""
        if self.pc_scores.empty:
            return []
        hits = self.pc_scores[self.pc_scores["score"] < alpha]
        return [int(pc) for pc in hits["pc"]]


def _permuted_loadings(
    scaled: np.ndarray,
    n_dims: int,
    n_permuted: int,
    seed: np.random.SeedSequence,
) -> np.ndarray:
    """Absolute loadings of randomly permuted genes for one replicate."""
    rng = np.random.default_rng(seed)
    genes = rng.choice(scaled.shape[1], size=n_permuted, replace=False)
    shuffled = scaled.copy()
    for g in genes:
        shuffled[:, g] = rng.permutation(shuffled[:, g])
    _, components, _, _ = fit_pca(shuffled, n_dims)
    return np.abs(components[genes])


class JackStraw:
    """Permutation test for principal components.

    Parameters
    ----------
    config : JackStrawConfig, optional
        JackStraw configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.reduction import JackStraw, JackStrawConfig
    >>> result = JackStraw(JackStrawConfig(n_dims=15, n_jobs=4)).run(pca_result.store)
    >>> result.significant_pcs()
    """

    def __init__(
        self,
        config: Optional[JackStrawConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or JackStrawConfig()
        self.logger = logger or logging.getLogger(__name__)

    def run(self, store: MatrixStore) -> JackStrawResult:
        """Score the leading ``n_dims`` components of a PCA'd store.

        Parameters
        ----------
        store : MatrixStore
            Store produced by :class:`PCAEngine`

        Returns
        -------
        JackStrawResult
            Per-gene empirical p-values and per-component scores

        Raises
        ------
        ConfigurationError
            If PCA has not been run or ``n_dims`` exceeds the components
            available
        """
        cfg = self.config
        if "pca" not in store.uns or "X_scaled" not in store.obsm:
            raise ConfigurationError("JackStraw requires a store with PCA results")

        scaled = np.asarray(store.obsm["X_scaled"], dtype=np.float64)
        features = list(store.uns["pca"]["features"])
        n_computed = int(store.uns["pca"]["n_components"])
        n_dims = cfg.n_dims
        if n_dims > n_computed:
            raise ConfigurationError(
                f"n_dims={n_dims} exceeds the {n_computed} computed components"
            )
        if n_dims > max_components(*scaled.shape):
            raise ConfigurationError(f"n_dims={n_dims} exceeds available dimensions")

        n_genes = len(features)
        n_permuted = min(max(3, int(round(n_genes * cfg.prop_freq))), n_genes)
        idx = store.var_names.get_indexer(features)
        real = np.abs(store.varm["PCs"][idx, :n_dims])

        self.logger.info(
            "JackStraw: %d replicates, %d of %d genes permuted, %d components (n_jobs=%d)",
            cfg.num_replicate,
            n_permuted,
            n_genes,
            n_dims,
            cfg.n_jobs,
        )
        start = time.time()
        seeds = np.random.SeedSequence(cfg.random_seed).spawn(cfg.num_replicate)
        replicates = Parallel(n_jobs=cfg.n_jobs, backend="loky")(
            delayed(_permuted_loadings)(scaled, n_dims, n_permuted, seed)
            for seed in seeds
        )
        null = np.vstack(replicates)
        self.logger.info("JackStraw replicates completed in %.2f sec", time.time() - start)

        pc_names = [f"PC_{i + 1}" for i in range(n_dims)]
        pvalues = np.column_stack(
            [empirical_pvalues(real[:, j], null[:, j]) for j in range(n_dims)]
        )
        gene_pvalues = pd.DataFrame(pvalues, index=features, columns=pc_names)

        expected = int(np.floor(n_genes * cfg.score_threshold))
        scores = [
            proportion_test(int((pvalues[:, j] <= cfg.score_threshold).sum()), expected, n_genes)
            for j in range(n_dims)
        ]
        pc_scores = pd.DataFrame({"pc": np.arange(1, n_dims + 1), "score": scores})

        new_store = store.with_uns(
            jackstraw={
                "n_dims": n_dims,
                "num_replicate": cfg.num_replicate,
                "prop_freq": cfg.prop_freq,
                "score_threshold": cfg.score_threshold,
                "pc_scores": [float(s) for s in scores],
            }
        )
        result = JackStrawResult(
            store=new_store,
            gene_pvalues=gene_pvalues,
            pc_scores=pc_scores,
            null_loadings=null,
        )
        self.logger.info(
            "JackStraw: %d/%d components significant at 0.05",
            len(result.significant_pcs()),
            n_dims,
        )
        return result
