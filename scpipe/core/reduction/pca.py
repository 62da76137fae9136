"""Principal component analysis of the scaled feature matrix.

The sign of each component is whatever the SVD backend returns: for a
fixed input and component count the result is reproducible, but it may
differ in sign from other implementations. Downstream stages only use
distances, which are sign-invariant.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy import linalg
from scipy.sparse.linalg import svds

from ...errors import ConfigurationError, NumericDegeneracyError
from ..store import MatrixStore
from .config import PCAConfig, SVDSolver


@dataclass
class PCAResult:
    """Result from PCA.

    Attributes
    ----------
    store : MatrixStore
        Store with ``obsm['X_pca']``, ``varm['PCs']`` and ``uns['pca']``
    embedding : np.ndarray
        Cells x K component scores
    loadings : pd.DataFrame
        Features x K gene weights (columns ``PC_1`` ...)
    variance : np.ndarray
        Variance captured by each component, non-increasing
    variance_ratio : np.ndarray
        Fraction of total variance per component
    """

    store: Optional[MatrixStore] = None
    embedding: Optional[np.ndarray] = None
    loadings: pd.DataFrame = field(default_factory=pd.DataFrame)
    variance: Optional[np.ndarray] = None
    variance_ratio: Optional[np.ndarray] = None

    @property
    def n_components(self) -> int:
        return 0 if self.embedding is None else self.embedding.shape[1]


def max_components(n_obs: int, n_vars: int) -> int:
    """Largest component count supported by an ``n_obs x n_vars`` matrix."""
    return max(min(n_obs, n_vars) - 1, 0)


def fit_pca(
    matrix: np.ndarray,
    n_components: int,
    solver: SVDSolver = SVDSolver.FULL,
    random_seed: int = 42,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Project ``matrix`` onto its leading principal axes.

    Parameters
    ----------
    matrix : np.ndarray
        Cells x features matrix (centered internally)
    n_components : int
        Number of components K
    solver : SVDSolver
        Decomposition backend
    random_seed : int
        Seed for the ARPACK start vector

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]
        (embedding cells x K, components features x K, variance, variance_ratio)

    Raises
    ------
    ConfigurationError
        If K exceeds the available dimensions
    NumericDegeneracyError
        If the input has no variance or the decomposition fails
    """
    n_obs, n_vars = matrix.shape
    limit = max_components(n_obs, n_vars)
    if n_components > limit:
        raise ConfigurationError(
            f"n_components={n_components} exceeds available dimensions ({limit}) "
            f"for a {n_obs} x {n_vars} matrix"
        )

    centered = matrix - matrix.mean(axis=0)
    total_variance = float(centered.var(axis=0, ddof=1).sum())
    if not np.isfinite(total_variance) or total_variance <= 0:
        raise NumericDegeneracyError("Scaled matrix has no variance to decompose")

    try:
        if solver is SVDSolver.FULL:
            u, s, vt = linalg.svd(centered, full_matrices=False)
            u, s, vt = u[:, :n_components], s[:n_components], vt[:n_components]
        else:
            rng = np.random.default_rng(random_seed)
            v0 = rng.uniform(-1, 1, size=min(n_obs, n_vars))
            u, s, vt = svds(centered, k=n_components, v0=v0)
            order = np.argsort(s)[::-1]
            u, s, vt = u[:, order], s[order], vt[order]
    except (linalg.LinAlgError, ArithmeticError) as e:
        raise NumericDegeneracyError(f"Decomposition did not converge: {e}") from e

    embedding = u * s
    variance = s**2 / (n_obs - 1)
    if not (np.isfinite(embedding).all() and np.isfinite(variance).all()):
        raise NumericDegeneracyError("PCA produced non-finite values")
    return embedding, vt.T, variance, variance / total_variance


class PCAEngine:
    """PCA over the scaled Variable Feature Set.

    Parameters
    ----------
    config : PCAConfig, optional
        PCA configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.reduction import PCAEngine, PCAConfig
    >>> result = PCAEngine(PCAConfig(n_components=30)).run(scaled_store)
    >>> result.variance_ratio[:5]
    """

    def __init__(
        self,
        config: Optional[PCAConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PCAConfig()
        self.logger = logger or logging.getLogger(__name__)

    def resolve_components(self, n_obs: int, n_vars: int) -> int:
        """Configured component count, or the default clamped to the data."""
        if self.config.n_components is not None:
            return self.config.n_components
        limit = max_components(n_obs, n_vars)
        if limit < 1:
            raise ConfigurationError(
                f"A {n_obs} x {n_vars} matrix has no principal components"
            )
        return min(PCAConfig.DEFAULT_COMPONENTS, limit)

    def run(self, store: MatrixStore) -> PCAResult:
        """Run PCA on ``store.obsm['X_scaled']``.

        Parameters
        ----------
        store : MatrixStore
            Store produced by the Scaler

        Returns
        -------
        PCAResult
            Embedding, loadings and variance explained
        """
        if "X_scaled" not in store.obsm or "scaling" not in store.uns:
            raise ConfigurationError("PCA requires a scaled store (run the Scaler first)")

        scaled = store.obsm["X_scaled"]
        features = list(store.uns["scaling"]["features"])
        k = self.resolve_components(*scaled.shape)
        self.logger.info(
            "Running PCA: %d cells x %d features, %d components (solver=%s)",
            scaled.shape[0],
            scaled.shape[1],
            k,
            self.config.solver.value,
        )

        embedding, components, variance, ratio = fit_pca(
            scaled, k, self.config.solver, self.config.random_seed
        )

        pc_names = [f"PC_{i + 1}" for i in range(k)]
        loadings = pd.DataFrame(components, index=features, columns=pc_names)

        full_loadings = np.zeros((store.n_vars, k))
        full_loadings[store.var_names.get_indexer(features)] = components

        new_store = (
            store.with_obsm(X_pca=embedding)
            .with_varm(PCs=full_loadings)
            .with_uns(
                pca={
                    "n_components": k,
                    "solver": self.config.solver.value,
                    "variance": variance.tolist(),
                    "variance_ratio": ratio.tolist(),
                    "features": features,
                }
            )
        )
        self.logger.info(
            "PCA done; first components explain %s of variance",
            ", ".join(f"{r:.1%}" for r in ratio[:5]),
        )
        return PCAResult(
            store=new_store,
            embedding=embedding,
            loadings=loadings,
            variance=variance,
            variance_ratio=ratio,
        )

    @staticmethod
    def elbow_table(store: MatrixStore) -> pd.DataFrame:
        """Variance explained per component, for choosing K.

        Returns
        -------
        pd.DataFrame
            Columns ``pc``, ``stdev``, ``variance``, ``variance_ratio``,
            ``cumulative_ratio``
        """
        if "pca" not in store.uns:
            raise KeyError("No PCA recorded on this store")
        variance = np.asarray(store.uns["pca"]["variance"])
        ratio = np.asarray(store.uns["pca"]["variance_ratio"])
        return pd.DataFrame(
            {
                "pc": np.arange(1, len(variance) + 1),
                "stdev": np.sqrt(variance),
                "variance": variance,
                "variance_ratio": ratio,
                "cumulative_ratio": np.cumsum(ratio),
            }
        )
