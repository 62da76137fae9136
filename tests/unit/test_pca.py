"""Unit tests for PCA."""

import pytest
import numpy as np

from scpipe.core.preprocessing import (
    FeatureSelectionConfig,
    FeatureSelector,
    Normalizer,
    Scaler,
)
from scpipe.core.reduction import (
    PCAConfig,
    PCAEngine,
    SVDSolver,
    fit_pca,
    max_components,
)
from scpipe.errors import ConfigurationError, NumericDegeneracyError


@pytest.fixture
def random_matrix():
    """60 x 30 Gaussian matrix with decaying column scales."""
    rng = np.random.default_rng(7)
    return rng.normal(size=(60, 30)) * np.linspace(5, 0.5, 30)


class TestPCAConfig:
    """Tests for PCAConfig dataclass."""

    def test_default_values(self):
        """Test default PCA settings."""
        config = PCAConfig()
        assert config.n_components is None
        assert config.solver is SVDSolver.FULL

    def test_solver_from_string(self):
        """Test resolving the solver by name."""
        assert PCAConfig(solver="arpack").solver is SVDSolver.ARPACK

    def test_non_positive_components(self):
        """Test that zero components is rejected."""
        with pytest.raises(ConfigurationError):
            PCAConfig(n_components=0)


class TestFitPCA:
    """Tests for fit_pca."""

    def test_components_uncorrelated(self, random_matrix):
        """Test that embedding columns have near-zero covariance."""
        embedding, _, _, _ = fit_pca(random_matrix, 10)
        cov = np.cov(embedding, rowvar=False)
        off_diagonal = cov - np.diag(np.diag(cov))
        assert np.abs(off_diagonal).max() < 1e-8 * np.abs(cov).max()

    def test_variance_non_increasing(self, random_matrix):
        """Test that variance explained never increases across components."""
        _, _, variance, ratio = fit_pca(random_matrix, 15)
        assert np.all(np.diff(variance) <= 1e-12)
        assert np.all(np.diff(ratio) <= 1e-12)
        assert ratio.sum() <= 1.0 + 1e-12

    def test_variance_matches_embedding(self, random_matrix):
        """Test that reported variance is the variance of each score column."""
        embedding, _, variance, _ = fit_pca(random_matrix, 5)
        np.testing.assert_allclose(embedding.var(axis=0, ddof=1), variance)

    def test_components_orthonormal(self, random_matrix):
        """Test that gene loadings are orthonormal."""
        _, components, _, _ = fit_pca(random_matrix, 8)
        np.testing.assert_allclose(components.T @ components, np.eye(8), atol=1e-10)

    def test_reproducible(self, random_matrix):
        """Test that the same input and K give the same output."""
        first = fit_pca(random_matrix, 6)
        second = fit_pca(random_matrix, 6)
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a, b)

    def test_arpack_matches_full_up_to_sign(self, random_matrix):
        """Test that the truncated solver agrees with the dense one up to sign."""
        full, _, var_full, _ = fit_pca(random_matrix, 5, SVDSolver.FULL)
        arpack, _, var_arpack, _ = fit_pca(random_matrix, 5, SVDSolver.ARPACK, random_seed=3)
        np.testing.assert_allclose(var_arpack, var_full, rtol=1e-8)
        np.testing.assert_allclose(np.abs(arpack), np.abs(full), atol=1e-6)

    def test_too_many_components(self, random_matrix):
        """Test that K beyond the available dimensions raises ConfigurationError."""
        limit = max_components(*random_matrix.shape)
        assert limit == 29
        with pytest.raises(ConfigurationError, match="exceeds available"):
            fit_pca(random_matrix, limit + 1)

    def test_zero_variance(self):
        """Test that a constant matrix raises NumericDegeneracyError."""
        with pytest.raises(NumericDegeneracyError):
            fit_pca(np.ones((10, 5)), 2)


class TestPCAEngine:
    """Tests for PCAEngine."""

    @pytest.fixture
    def subset_scaled_store(self, two_cluster_store):
        """Scaled store over 20 of the 50 genes."""
        store = Normalizer().normalize(two_cluster_store).store
        store = FeatureSelector(FeatureSelectionConfig(n_features=20)).select(store).store
        return Scaler().scale(store).store

    def test_default_components(self, scaled_store):
        """Test that the default K is min(50, available dimensions)."""
        result = PCAEngine().run(scaled_store)
        n_obs, n_features = scaled_store.obsm["X_scaled"].shape
        assert result.n_components == min(50, min(n_obs, n_features) - 1)

    def test_outputs_recorded(self, scaled_store):
        """Test embedding, loadings and diagnostics on the new store."""
        result = PCAEngine(PCAConfig(n_components=10)).run(scaled_store)
        store = result.store
        assert store.obsm["X_pca"].shape == (scaled_store.n_obs, 10)
        assert store.varm["PCs"].shape == (scaled_store.n_vars, 10)
        assert store.uns["pca"]["n_components"] == 10
        assert len(store.uns["pca"]["variance_ratio"]) == 10
        assert list(result.loadings.columns) == [f"PC_{i}" for i in range(1, 11)]
        assert "X_pca" not in scaled_store.obsm

    def test_loadings_zero_outside_features(self, subset_scaled_store):
        """Test that genes outside the feature set get zero loadings."""
        result = PCAEngine(PCAConfig(n_components=5)).run(subset_scaled_store)
        selected = subset_scaled_store.var["highly_variable"].to_numpy()
        pcs = result.store.varm["PCs"]
        assert np.all(pcs[~selected] == 0)
        np.testing.assert_allclose(
            pcs[subset_scaled_store.var_names.get_indexer(result.loadings.index)],
            result.loadings.to_numpy(),
        )

    def test_first_component_separates_groups(self, scaled_store):
        """Test that PC1 splits the two synthetic groups."""
        result = PCAEngine(PCAConfig(n_components=5)).run(scaled_store)
        pc1 = result.embedding[:, 0]
        group_a, group_b = pc1[:50], pc1[50:]
        assert (group_a.max() < group_b.min()) or (group_b.max() < group_a.min())

    def test_explicit_k_too_large(self, scaled_store):
        """Test that an explicit K above the limit raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            PCAEngine(PCAConfig(n_components=500)).run(scaled_store)

    def test_requires_scaled_store(self, two_cluster_store):
        """Test that PCA on an unscaled store raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="scaled"):
            PCAEngine().run(two_cluster_store)

    def test_elbow_table(self, scaled_store):
        """Test the variance-explained table."""
        store = PCAEngine(PCAConfig(n_components=8)).run(scaled_store).store
        table = PCAEngine.elbow_table(store)
        assert list(table["pc"]) == list(range(1, 9))
        assert np.all(np.diff(table["cumulative_ratio"]) >= 0)
        np.testing.assert_allclose(table["stdev"] ** 2, table["variance"])

    def test_elbow_table_without_pca(self, scaled_store):
        """Test that the elbow table needs a PCA'd store."""
        with pytest.raises(KeyError):
            PCAEngine.elbow_table(scaled_store)
