"""Graph construction and clustering for scpipe.

Features:
- Exact kNN search over PCA space (euclidean, cosine, manhattan)
- Jaccard-weighted shared-nearest-neighbor graph with pruning
- Louvain modularity optimization with seeded node order and restarts
- Cluster labels ordered by descending size

Example Usage:
    from scpipe.core.clustering import (
        NeighborGraphBuilder, NeighborsConfig, ClusterAssigner, ClusteringConfig,
    )

    store, graph = NeighborGraphBuilder(NeighborsConfig(k=20)).build(pca_store)
    result = ClusterAssigner(ClusteringConfig(resolution=0.5)).cluster(store)
    print(result.n_clusters, result.cluster_sizes)
"""

from .config import ClusteringConfig, DistanceMetric, NeighborsConfig
from .engine import ClusterAssigner, ClusteringResult
from .louvain import louvain, modularity, order_by_size
from .neighbors import NeighborGraph, NeighborGraphBuilder, jaccard_snn, knn_adjacency

__all__ = [
    # Config
    "NeighborsConfig",
    "ClusteringConfig",
    "DistanceMetric",
    # Neighbors
    "NeighborGraph",
    "NeighborGraphBuilder",
    "knn_adjacency",
    "jaccard_snn",
    # Louvain
    "louvain",
    "modularity",
    "order_by_size",
    # Engine
    "ClusterAssigner",
    "ClusteringResult",
]
