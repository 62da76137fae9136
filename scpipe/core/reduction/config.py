"""Configuration classes for dimensionality reduction.

Covers PCA, the JackStraw permutation test, and 2D projection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...errors import ConfigurationError
from ...utils.validation import coerce_enum, require_positive


class SVDSolver(Enum):
    """Decomposition backends for PCA."""

    FULL = "full"  # dense LAPACK SVD
    ARPACK = "arpack"  # truncated sparse SVD, seeded start vector


class EmbeddingMethod(Enum):
    """2D projection methods for visualization."""

    UMAP = "umap"
    TSNE = "tsne"


@dataclass
class PCAConfig:
    """Configuration for PCA.

    Attributes
    ----------
    n_components : int, optional
        Number of components. None means min(50, available dimensions).
        An explicit value above the available dimensions is an error.
    solver : SVDSolver
        Decomposition backend
    random_seed : int
        Seed for the ARPACK start vector
    """

    n_components: Optional[int] = None
    solver: SVDSolver = SVDSolver.FULL
    random_seed: int = 42

    DEFAULT_COMPONENTS = 50

    def __post_init__(self) -> None:
        self.solver = coerce_enum(SVDSolver, self.solver, "PCA solver")
        if self.n_components is not None:
            require_positive(self.n_components, "n_components")


@dataclass
class JackStrawConfig:
    """Configuration for the JackStraw significance test.

    Attributes
    ----------
    n_dims : int
        Number of leading components tested
    num_replicate : int
        Number of permutation replicates
    prop_freq : float
        Fraction of features permuted per replicate (at least 3 genes)
    score_threshold : float
        Gene p-value threshold used to score each component
    n_jobs : int
        joblib workers for the replicates
    random_seed : int
        Base seed; each replicate derives its own seed from it
    """

    n_dims: int = 20
    num_replicate: int = 100
    prop_freq: float = 0.01
    score_threshold: float = 1e-5
    n_jobs: int = 1
    random_seed: int = 42

    def __post_init__(self) -> None:
        require_positive(self.n_dims, "n_dims")
        require_positive(self.num_replicate, "num_replicate")
        if not 0 < self.prop_freq <= 1:
            raise ConfigurationError(f"prop_freq must be in (0, 1], got {self.prop_freq}")


@dataclass
class EmbeddingConfig:
    """Configuration for UMAP / t-SNE projection.

    Attributes
    ----------
    method : EmbeddingMethod
        Projection method
    n_pcs : int
        Leading principal components used as input
    n_neighbors : int
        UMAP neighborhood size
    min_dist : float
        UMAP minimum distance
    perplexity : float
        t-SNE perplexity (lowered automatically for small datasets)
    random_seed : int
        Seed passed to the projection
    """

    method: EmbeddingMethod = EmbeddingMethod.UMAP
    n_pcs: int = 10
    n_neighbors: int = 30
    min_dist: float = 0.3
    perplexity: float = 30.0
    random_seed: int = 42

    def __post_init__(self) -> None:
        self.method = coerce_enum(EmbeddingMethod, self.method, "embedding method")
        require_positive(self.n_pcs, "n_pcs")
        require_positive(self.n_neighbors, "n_neighbors")
        require_positive(self.perplexity, "perplexity")
