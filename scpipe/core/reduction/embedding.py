"""2D projection of the PCA embedding for visualization.

UMAP and t-SNE are delegated to scanpy on a lightweight AnnData that
carries only the cell index and ``obsm['X_pca']``.
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
import pandas as pd

from ...errors import ConfigurationError
from ..store import MatrixStore
from .config import EmbeddingConfig, EmbeddingMethod


@dataclass
class EmbeddingResult:
    """Result from a 2D projection.

    Attributes
    ----------
    store : MatrixStore
        Store with ``obsm['X_umap']`` or ``obsm['X_tsne']``
    coordinates : np.ndarray
        Cells x 2 coordinates
    method : EmbeddingMethod
        Projection used
    key : str
        ``obsm`` key holding the coordinates
    """

    store: Optional[MatrixStore] = None
    coordinates: Optional[np.ndarray] = None
    method: EmbeddingMethod = EmbeddingMethod.UMAP
    key: str = "X_umap"


class EmbeddingProjector:
    """UMAP / t-SNE projector.

    Parameters
    ----------
    config : EmbeddingConfig, optional
        Projection configuration
    logger : logging.Logger, optional
        Logger instance
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _as_anndata(self, store: MatrixStore, n_pcs: int):
        import anndata as ad

        pcs = np.asarray(store.obsm["X_pca"][:, :n_pcs], dtype=np.float32)
        obs = pd.DataFrame(index=store.obs_names.astype(str))
        return ad.AnnData(obs=obs, obsm={"X_pca": pcs})

    def project(self, store: MatrixStore) -> EmbeddingResult:
        """Project ``obsm['X_pca']`` to two dimensions.

        Raises
        ------
        ConfigurationError
            If PCA is missing, ``n_pcs`` exceeds the computed components,
            or there are too few cells to embed
        """
        import scanpy as sc

        cfg = self.config
        if "X_pca" not in store.obsm:
            raise ConfigurationError("Embedding requires obsm['X_pca'] (run PCA first)")
        available = store.obsm["X_pca"].shape[1]
        if cfg.n_pcs > available:
            raise ConfigurationError(
                f"n_pcs={cfg.n_pcs} exceeds the {available} computed components"
            )
        n_obs = store.n_obs
        if n_obs < 4:
            raise ConfigurationError(f"Cannot embed {n_obs} cells")

        adata = self._as_anndata(store, cfg.n_pcs)
        seed = cfg.random_seed

        if cfg.method is EmbeddingMethod.UMAP:
            n_neighbors = min(cfg.n_neighbors, n_obs - 1)
            if n_neighbors < cfg.n_neighbors:
                self.logger.warning(
                    "n_neighbors=%d >= n_cells; using %d", cfg.n_neighbors, n_neighbors
                )
            self.logger.info(
                "Running UMAP on %d PCs (n_neighbors=%d, min_dist=%.2f)",
                cfg.n_pcs,
                n_neighbors,
                cfg.min_dist,
            )
            sc.pp.neighbors(
                adata,
                n_neighbors=n_neighbors,
                n_pcs=cfg.n_pcs,
                use_rep="X_pca",
                random_state=seed,
            )
            sc.tl.umap(adata, min_dist=cfg.min_dist, random_state=seed)
            key = "X_umap"
        elif cfg.method is EmbeddingMethod.TSNE:
            perplexity = min(cfg.perplexity, (n_obs - 1) / 3.0)
            if perplexity < cfg.perplexity:
                self.logger.warning(
                    "perplexity=%.1f too large for %d cells; using %.1f",
                    cfg.perplexity,
                    n_obs,
                    perplexity,
                )
            self.logger.info(
                "Running t-SNE on %d PCs (perplexity=%.1f)", cfg.n_pcs, perplexity
            )
            sc.tl.tsne(
                adata,
                n_pcs=cfg.n_pcs,
                use_rep="X_pca",
                perplexity=perplexity,
                random_state=seed,
            )
            key = "X_tsne"
        else:
            raise ValueError(f"Unhandled embedding method: {cfg.method}")

        coordinates = np.asarray(adata.obsm[key], dtype=np.float64)
        new_store = store.with_obsm(**{key: coordinates}).with_uns(
            embedding={
                "method": cfg.method.value,
                "n_pcs": cfg.n_pcs,
                "random_seed": seed,
            }
        )
        return EmbeddingResult(
            store=new_store,
            coordinates=coordinates,
            method=cfg.method,
            key=key,
        )
