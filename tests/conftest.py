"""Pytest configuration and shared fixtures for scpipe tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_blob_embedding,
    create_marker_store,
    create_mock_store,
    create_two_cluster_counts,
)

from scpipe.core.store import MatrixStore


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def mock_store() -> MatrixStore:
    """Raw-count store with 60 cells, 40 genes and two MT- genes."""
    return create_mock_store(n_cells=60, n_genes=40)


@pytest.fixture
def two_cluster_store() -> MatrixStore:
    """Raw-count store with two groups of 50 cells over 50 genes."""
    counts, cells, genes, _ = create_two_cluster_counts()
    return MatrixStore.from_counts(counts, cells, genes)


@pytest.fixture
def marker_store() -> MatrixStore:
    """Normalized store where GeneX marks cluster "1"."""
    return create_marker_store()


@pytest.fixture
def blob_store() -> MatrixStore:
    """Store whose ``obsm['X_pca']`` holds three far-apart blobs."""
    points, truth = create_blob_embedding(n_blobs=3, n_per_blob=40, n_dims=10)
    n_cells = points.shape[0]
    counts = np.ones((n_cells, 5))
    store = MatrixStore.from_counts(
        counts, [f"cell_{i}" for i in range(n_cells)], [f"Gene_{i}" for i in range(5)]
    )
    return store.with_obsm(X_pca=points).with_obs(blob=truth.astype(str))


@pytest.fixture
def scaled_store(two_cluster_store) -> MatrixStore:
    """Two-cluster store after normalization, feature selection and scaling."""
    from scpipe.core.preprocessing import FeatureSelector, Normalizer, Scaler

    store = Normalizer().normalize(two_cluster_store).store
    store = FeatureSelector().select(store).store
    return Scaler().scale(store).store


@pytest.fixture
def pca_store(scaled_store) -> MatrixStore:
    """Two-cluster store after PCA with 20 components."""
    from scpipe.core.reduction import PCAConfig, PCAEngine

    return PCAEngine(PCAConfig(n_components=20)).run(scaled_store).store


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def relaxed_qc_config() -> dict:
    """QC section that keeps every cell of a small synthetic matrix."""
    return {"min_features": 0, "max_features": 100000, "max_mt_fraction": 1.0}


@pytest.fixture
def sample_pipeline_config(tmp_path, relaxed_qc_config) -> Path:
    """Create sample pipeline configuration file."""
    import yaml

    config = {
        "pipeline": {
            "qc": relaxed_qc_config,
            "clustering": {"resolution": 0.5, "random_seed": 3},
            "markers": {"only_positive": True},
            "run_embedding": False,
        },
    }

    path = tmp_path / "pipeline.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def count_csv(tmp_path) -> Path:
    """Two-cluster counts written as a cells x genes CSV."""
    counts, cells, genes, _ = create_two_cluster_counts()
    path = tmp_path / "counts.csv"
    pd.DataFrame(counts.astype(int), index=cells, columns=genes).to_csv(path)
    return path


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
