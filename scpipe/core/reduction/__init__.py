"""Dimensionality reduction for scpipe.

This module projects the scaled Variable Feature Set into a low-rank
embedding and, for visualization, into two dimensions.

Features:
- PCA by dense or truncated (ARPACK) SVD
- Variance-explained (elbow) table for choosing K
- JackStraw permutation test of component significance
- UMAP / t-SNE projection via scanpy

Example Usage:
    from scpipe.core.reduction import PCAEngine, PCAConfig, JackStraw

    pca = PCAEngine(PCAConfig(n_components=30)).run(scaled_store)
    print(PCAEngine.elbow_table(pca.store).head())

    jackstraw = JackStraw().run(pca.store)
    print(jackstraw.significant_pcs())
"""

from .config import (
    EmbeddingConfig,
    EmbeddingMethod,
    JackStrawConfig,
    PCAConfig,
    SVDSolver,
)
from .embedding import EmbeddingProjector, EmbeddingResult
from .jackstraw import JackStraw, JackStrawResult
from .pca import PCAEngine, PCAResult, fit_pca, max_components

__all__ = [
    # Config
    "PCAConfig",
    "JackStrawConfig",
    "EmbeddingConfig",
    "SVDSolver",
    "EmbeddingMethod",
    # PCA
    "PCAEngine",
    "PCAResult",
    "fit_pca",
    "max_components",
    # JackStraw
    "JackStraw",
    "JackStrawResult",
    # Embedding
    "EmbeddingProjector",
    "EmbeddingResult",
]
