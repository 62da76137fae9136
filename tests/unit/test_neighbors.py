"""Unit tests for the shared-nearest-neighbor graph."""

import pytest
import numpy as np
from scipy import sparse

from scpipe.core.clustering import (
    DistanceMetric,
    NeighborGraphBuilder,
    NeighborsConfig,
    jaccard_snn,
    knn_adjacency,
)
from scpipe.errors import ConfigurationError


class TestNeighborsConfig:
    """Tests for NeighborsConfig dataclass."""

    def test_default_values(self):
        """Test default graph settings."""
        config = NeighborsConfig()
        assert config.k == 20
        assert config.n_pcs == 10
        assert config.metric is DistanceMetric.EUCLIDEAN
        assert config.prune_snn == pytest.approx(1 / 15)

    def test_metric_from_string(self):
        """Test resolving the metric by name."""
        assert NeighborsConfig(metric="cosine").metric is DistanceMetric.COSINE

    def test_unknown_metric(self):
        """Test that an unknown metric raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            NeighborsConfig(metric="hamming")


class TestJaccardSNN:
    """Tests for the Jaccard weighting."""

    def test_small_graph(self):
        """Test weights on a hand-computed 4-node example with k=1."""
        # 0 <-> 1 mutual, 2 -> 1, 3 -> 2
        indices = np.array([[1], [0], [1], [2]])
        snn = jaccard_snn(knn_adjacency(indices), k=1, prune=0.0).toarray()
        # sets: {0,1}, {0,1}, {1,2}, {2,3}
        assert snn[0, 1] == pytest.approx(1.0)
        assert snn[0, 2] == pytest.approx(1 / 3)
        assert snn[1, 2] == pytest.approx(1 / 3)
        assert snn[2, 3] == pytest.approx(1 / 3)
        assert snn[0, 3] == 0
        np.testing.assert_array_equal(np.diag(snn), 0)
        np.testing.assert_allclose(snn, snn.T)

    def test_pruning(self):
        """Test that weights below the threshold are removed."""
        indices = np.array([[1], [0], [1], [2]])
        snn = jaccard_snn(knn_adjacency(indices), k=1, prune=0.5)
        assert snn.nnz == 2  # only the 0-1 edge in both directions

    def test_knn_adjacency(self):
        """Test the binary kNN adjacency."""
        adjacency = knn_adjacency(np.array([[1, 2], [0, 2], [1, 0]]))
        np.testing.assert_array_equal(adjacency.sum(axis=1).A1, [2, 2, 2])
        assert adjacency[0, 0] == 0


class TestNeighborGraphBuilder:
    """Tests for NeighborGraphBuilder."""

    def test_no_self_loops(self, blob_store):
        """Test that no cell is its own neighbor and each has k neighbors."""
        _, graph = NeighborGraphBuilder(NeighborsConfig(k=10)).build(blob_store)
        assert graph.indices.shape == (blob_store.n_obs, 10)
        rows = np.arange(graph.n_cells)[:, None]
        assert not (graph.indices == rows).any()
        assert graph.snn.diagonal().sum() == 0
        assert graph.connectivities.diagonal().sum() == 0

    def test_distances_sorted(self, blob_store):
        """Test that neighbors are ordered nearest first."""
        _, graph = NeighborGraphBuilder(NeighborsConfig(k=5)).build(blob_store)
        assert np.all(np.diff(graph.distances, axis=1) >= 0)

    def test_snn_symmetric_and_bounded(self, blob_store):
        """Test that the SNN graph is symmetric with weights in (0, 1]."""
        _, graph = NeighborGraphBuilder().build(blob_store)
        snn = graph.snn
        assert abs(snn - snn.T).max() < 1e-12
        assert snn.data.min() >= 1 / 15
        assert snn.data.max() <= 1.0

    def test_blobs_disconnected(self, blob_store):
        """Test that far-apart blobs share no SNN edges."""
        _, graph = NeighborGraphBuilder(NeighborsConfig(k=10)).build(blob_store)
        blob = blob_store.obs["blob"].to_numpy()
        rows, cols = graph.snn.nonzero()
        assert (blob[rows] == blob[cols]).all()

    def test_store_annotations(self, blob_store):
        """Test the graphs and parameters recorded on the store."""
        store, graph = NeighborGraphBuilder(NeighborsConfig(k=7)).build(blob_store)
        for key in ["connectivities", "distances", "snn"]:
            assert store.obsp[key].shape == (blob_store.n_obs, blob_store.n_obs)
        assert store.uns["neighbors"]["k"] == 7
        assert sparse.issparse(store.obsp["snn"])
        np.testing.assert_allclose(
            store.obsp["distances"].toarray()[0, graph.indices[0]], graph.distances[0]
        )

    def test_k_clamped(self, blob_store):
        """Test that k is lowered when there are too few cells."""
        graph = NeighborGraphBuilder(NeighborsConfig(k=50)).compute(
            blob_store.obsm["X_pca"][:6]
        )
        assert graph.k == 5
        assert graph.indices.shape == (6, 5)

    def test_single_cell(self):
        """Test that one cell cannot form a graph."""
        with pytest.raises(ConfigurationError):
            NeighborGraphBuilder().compute(np.zeros((1, 3)))

    def test_n_pcs_exceeds_embedding(self, blob_store):
        """Test that asking for more PCs than computed raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="exceeds"):
            NeighborGraphBuilder(NeighborsConfig(n_pcs=20)).build(blob_store)

    def test_requires_pca(self, mock_store):
        """Test that the graph needs obsm['X_pca']."""
        with pytest.raises(ConfigurationError):
            NeighborGraphBuilder().build(mock_store)

    def test_other_metrics(self, blob_store):
        """Test that cosine and manhattan searches produce valid graphs."""
        for metric in ["cosine", "manhattan"]:
            _, graph = NeighborGraphBuilder(NeighborsConfig(k=5, metric=metric)).build(
                blob_store
            )
            assert graph.metric == metric
            assert graph.indices.shape == (blob_store.n_obs, 5)
