"""Shared-nearest-neighbor graph construction.

Exact kNN search over the leading principal components, followed by
Jaccard weighting of the neighborhoods. Each neighborhood includes the
cell itself, so two cells that are mutual nearest neighbors and share
all other neighbors get weight 1.
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
from scipy import sparse
from sklearn.neighbors import NearestNeighbors

from ...errors import ConfigurationError
from ..store import MatrixStore
from .config import NeighborsConfig


@dataclass
class NeighborGraph:
    """kNN and SNN graphs over the surviving cells.

    Attributes
    ----------
    indices : np.ndarray
        Cells x k neighbor indices (self excluded), nearest first
    distances : np.ndarray
        Cells x k distances matching ``indices``
    connectivities : sparse.csr_matrix
        Binary directed kNN adjacency
    snn : sparse.csr_matrix
        Symmetric Jaccard-weighted shared-neighbor graph, no self-loops
    k : int
        Neighbors per cell actually used
    metric : str
        Distance metric
    """

    indices: np.ndarray
    distances: np.ndarray
    connectivities: sparse.csr_matrix
    snn: sparse.csr_matrix
    k: int
    metric: str

    @property
    def n_cells(self) -> int:
        return self.indices.shape[0]

    def distance_matrix(self) -> sparse.csr_matrix:
        """Directed kNN distances as a sparse matrix (explicit zeros kept)."""
        n, k = self.indices.shape
        indptr = np.arange(0, n * k + 1, k)
        return sparse.csr_matrix(
            (self.distances.ravel(), self.indices.ravel(), indptr), shape=(n, n)
        )


def knn_adjacency(indices: np.ndarray) -> sparse.csr_matrix:
    """Binary adjacency with one row per cell and a 1 for each neighbor."""
    n, k = indices.shape
    indptr = np.arange(0, n * k + 1, k)
    data = np.ones(n * k, dtype=np.float64)
    return sparse.csr_matrix((data, indices.ravel(), indptr), shape=(n, n))


def jaccard_snn(connectivities: sparse.csr_matrix, k: int, prune: float) -> sparse.csr_matrix:
    """Jaccard similarity of (self + neighbors) sets.

    Parameters
    ----------
    connectivities : sparse.csr_matrix
        Binary kNN adjacency without self
    k : int
        Neighbors per cell (each set holds ``k + 1`` members)
    prune : float
        Weights below this value are dropped

    Returns
    -------
    sparse.csr_matrix
        Symmetric weighted graph with an empty diagonal
    """
    n = connectivities.shape[0]
    members = (connectivities + sparse.identity(n, format="csr")).tocsr()
    shared = (members @ members.T).tocsr()
    shared.data = shared.data / (2.0 * (k + 1) - shared.data)
    shared.data[shared.data < prune] = 0.0
    shared.setdiag(0.0)
    shared.eliminate_zeros()
    return shared


class NeighborGraphBuilder:
    """Builds the kNN / SNN graph from ``obsm['X_pca']``.

    Parameters
    ----------
    config : NeighborsConfig, optional
        Graph configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scpipe.core.clustering import NeighborGraphBuilder, NeighborsConfig
    >>> builder = NeighborGraphBuilder(NeighborsConfig(k=20, n_pcs=10))
    >>> store, graph = builder.build(pca_store)
    >>> graph.snn.nnz
    """

    def __init__(
        self,
        config: Optional[NeighborsConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NeighborsConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute(self, embedding: np.ndarray) -> NeighborGraph:
        """Build the graph from a cells x dims embedding."""
        cfg = self.config
        n_cells = embedding.shape[0]
        if n_cells < 2:
            raise ConfigurationError(f"Need at least 2 cells for a neighbor graph, got {n_cells}")

        k = cfg.k
        if k >= n_cells:
            k = n_cells - 1
            self.logger.warning(
                "k=%d >= number of cells (%d); using k=%d", cfg.k, n_cells, k
            )

        nn = NearestNeighbors(n_neighbors=k, metric=cfg.metric.value)
        nn.fit(embedding)
        # Without a query matrix each point is excluded from its own neighbors
        distances, indices = nn.kneighbors(n_neighbors=k)

        connectivities = knn_adjacency(indices)
        snn = jaccard_snn(connectivities, k, cfg.prune_snn)
        return NeighborGraph(
            indices=indices,
            distances=distances,
            connectivities=connectivities,
            snn=snn,
            k=k,
            metric=cfg.metric.value,
        )

    def build(self, store: MatrixStore):
        """Build the graph and record it on a new store.

        Returns
        -------
        Tuple[MatrixStore, NeighborGraph]
            Store with ``obsp['connectivities']``, ``obsp['distances']``,
            ``obsp['snn']`` and ``uns['neighbors']``; and the graph itself

        Raises
        ------
        ConfigurationError
            If PCA is missing or ``n_pcs`` exceeds the computed components
        """
        cfg = self.config
        if "X_pca" not in store.obsm:
            raise ConfigurationError("Neighbor graph requires obsm['X_pca'] (run PCA first)")
        available = store.obsm["X_pca"].shape[1]
        if cfg.n_pcs > available:
            raise ConfigurationError(
                f"n_pcs={cfg.n_pcs} exceeds the {available} computed components"
            )

        embedding = np.asarray(store.obsm["X_pca"][:, :cfg.n_pcs], dtype=np.float64)
        self.logger.info(
            "Building SNN graph: %d cells, %d PCs, k=%d, metric=%s",
            embedding.shape[0],
            cfg.n_pcs,
            cfg.k,
            cfg.metric.value,
        )
        graph = self.compute(embedding)
        self.logger.info(
            "SNN graph: %d edges after pruning (threshold=%.4f)",
            graph.snn.nnz // 2,
            cfg.prune_snn,
        )

        new_store = store.with_obsp(
            connectivities=graph.connectivities,
            distances=graph.distance_matrix(),
            snn=graph.snn,
        ).with_uns(
            neighbors={
                "k": graph.k,
                "n_pcs": cfg.n_pcs,
                "metric": graph.metric,
                "prune_snn": cfg.prune_snn,
            }
        )
        return new_store, graph
