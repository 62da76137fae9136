"""Configuration classes for graph construction and clustering.

All parameters are configurable via YAML. The random seed is threaded
explicitly into every randomized step; nothing reads global random state.
"""

from dataclasses import dataclass
from enum import Enum

from ...errors import ConfigurationError
from ...utils.validation import coerce_enum, require_positive


class DistanceMetric(Enum):
    """Distance metrics for the kNN search."""

    EUCLIDEAN = "euclidean"
    COSINE = "cosine"
    MANHATTAN = "manhattan"


@dataclass
class NeighborsConfig:
    """Configuration for the shared-nearest-neighbor graph.

    Attributes
    ----------
    k : int
        Neighbors per cell, self excluded
    metric : DistanceMetric
        Distance in PCA space
    n_pcs : int
        Leading principal components used
    prune_snn : float
        SNN edges with Jaccard weight below this value are removed
    """

    k: int = 20
    metric: DistanceMetric = DistanceMetric.EUCLIDEAN
    n_pcs: int = 10
    prune_snn: float = 1.0 / 15.0

    def __post_init__(self) -> None:
        self.metric = coerce_enum(DistanceMetric, self.metric, "distance metric")
        require_positive(self.k, "k")
        require_positive(self.n_pcs, "n_pcs")
        if not 0 <= self.prune_snn < 1:
            raise ConfigurationError(f"prune_snn must be in [0, 1), got {self.prune_snn}")


@dataclass
class ClusteringConfig:
    """Configuration for Louvain clustering.

    Attributes
    ----------
    resolution : float
        Modularity resolution; higher values give more, smaller clusters
    random_seed : int
        Seed for the node visiting order
    n_start : int
        Random starts; the partition with the best modularity is kept
    max_levels : int
        Upper bound on aggregation levels
    """

    resolution: float = 0.5
    random_seed: int = 0
    n_start: int = 1
    max_levels: int = 100

    def __post_init__(self) -> None:
        require_positive(self.resolution, "resolution")
        require_positive(self.n_start, "n_start")
        require_positive(self.max_levels, "max_levels")
