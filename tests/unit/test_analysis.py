"""End-to-end tests for the standard analysis pipeline."""

import logging

import pytest
import numpy as np
import pandas as pd

from scpipe.core.markers import MarkerConfig, MarkerEngine
from scpipe.core.reduction import EmbeddingProjector
from scpipe.errors import ConfigurationError
from scpipe.pipeline import AnalysisPipeline, PipelineConfig, PipelineResult
from tests.fixtures import create_two_cluster_counts


@pytest.fixture
def pipeline_config(relaxed_qc_config):
    """Relaxed QC with clustering settings for 100 cells."""
    return PipelineConfig.from_dict(
        {
            "qc": relaxed_qc_config,
            "clustering": {"resolution": 0.5, "random_seed": 3},
            "markers": {"only_positive": True},
            "run_embedding": False,
        }
    )


@pytest.fixture
def pipeline_result(two_cluster_store, pipeline_config):
    """Full run on the two-cluster counts."""
    return AnalysisPipeline(pipeline_config).run(two_cluster_store)


class TestAnalysisPipeline:
    """Tests for AnalysisPipeline."""

    def test_all_stages_complete(self, pipeline_result):
        """Test that every registered stage ran in order."""
        assert isinstance(pipeline_result, PipelineResult)
        assert pipeline_result.completed_stages == [
            "qc", "normalize", "features", "scale", "pca", "neighbors", "cluster", "markers",
        ]
        assert pipeline_result.aborted_before is None

    def test_recovers_two_groups(self, pipeline_result):
        """Test that the two simulated groups become two clusters."""
        _, _, _, truth = create_two_cluster_counts()
        labels = np.asarray(pipeline_result.labels)
        assert pipeline_result.n_clusters == 2
        for group in ("A", "B"):
            assert len(np.unique(labels[truth == group])) == 1
        assert labels[truth == "A"][0] != labels[truth == "B"][0]

    def test_outputs(self, pipeline_result, two_cluster_store):
        """Test the shapes of the collected outputs."""
        assert len(pipeline_result.cell_metadata) == two_cluster_store.n_obs
        assert "cluster" in pipeline_result.cell_metadata.columns
        assert len(pipeline_result.features) == two_cluster_store.n_vars
        assert pipeline_result.embedding.shape == (two_cluster_store.n_obs, 49)
        assert pipeline_result.graph is not None

    def test_markers_per_cluster(self, pipeline_result):
        """Test that each cluster has significant positive markers."""
        markers = pipeline_result.markers
        for cluster in pipeline_result.labels.categories:
            rows = markers[markers["cluster"] == cluster]
            assert (rows["p_val_adj"] < 0.05).any()
            assert (rows["avg_log2FC"] > 0).all()

    def test_markers_match_direct_call(self, pipeline_result):
        """Test that the marker stage equals a direct find-all-markers call."""
        direct = MarkerEngine(MarkerConfig(only_positive=True)).find_all_markers(
            pipeline_result.store
        )
        pd.testing.assert_frame_equal(
            direct.markers.reset_index(drop=True),
            pipeline_result.markers.reset_index(drop=True),
        )

    def test_input_untouched(self, two_cluster_store, pipeline_config):
        """Test that the input store is not modified."""
        before = np.asarray(two_cluster_store.X).copy()
        AnalysisPipeline(pipeline_config).run(two_cluster_store)
        np.testing.assert_array_equal(np.asarray(two_cluster_store.X), before)
        assert "cluster" not in two_cluster_store.obs.columns

    def test_same_config_reproducible(self, two_cluster_store, pipeline_config):
        """Test that two runs give identical labels."""
        first = AnalysisPipeline(pipeline_config).run(two_cluster_store)
        second = AnalysisPipeline(pipeline_config).run(two_cluster_store)
        np.testing.assert_array_equal(np.asarray(first.labels), np.asarray(second.labels))

    def test_end_stage(self, two_cluster_store, pipeline_config):
        """Test stopping after PCA."""
        result = AnalysisPipeline(pipeline_config).run(two_cluster_store, end_stage="pca")
        assert result.completed_stages[-1] == "pca"
        assert result.labels is None
        assert result.n_clusters == 0
        assert result.embedding is not None
        assert result.markers.empty

    def test_should_abort(self, two_cluster_store, pipeline_config):
        """Test that an abort before clustering keeps earlier outputs."""
        result = AnalysisPipeline(pipeline_config).run(
            two_cluster_store, should_abort=lambda stage_id: stage_id == "cluster"
        )
        assert result.aborted_before == "cluster"
        assert "neighbors" in result.completed_stages
        assert result.labels is None

    def test_summary(self, pipeline_result):
        """Test the run diagnostics."""
        summary = pipeline_result.summary()
        assert summary["n_clusters"] == 2
        assert summary["n_cells"] == 100
        assert sum(summary["cluster_sizes"].values()) == 100
        assert summary["qc"]["cells_removed"] == 0
        assert "jackstraw_significant_pcs" not in summary
        assert summary["skipped_stages"] == []

    def test_with_embedding_and_jackstraw(self, two_cluster_store, relaxed_qc_config):
        """Test the optional stages."""
        config = PipelineConfig.from_dict(
            {
                "qc": relaxed_qc_config,
                "embedding": {"n_neighbors": 15},
                "jackstraw": {"n_dims": 5, "num_replicate": 10, "prop_freq": 0.1},
                "run_jackstraw": True,
            }
        )
        result = AnalysisPipeline(config).run(two_cluster_store)
        assert "embedding" in result.completed_stages
        assert "jackstraw" in result.completed_stages
        assert result.store.obsm["X_umap"].shape == (100, 2)
        assert len(result.jackstraw.pc_scores) == 5
        assert "jackstraw_significant_pcs" in result.summary()

    def test_inconsistent_config(self):
        """Test that cross-stage validation runs on construction."""
        config = PipelineConfig.from_dict({"pca": {"n_components": 5}})
        with pytest.raises(ConfigurationError):
            AnalysisPipeline(config)

    def test_failed_optional_stage_recorded(
        self, two_cluster_store, relaxed_qc_config, monkeypatch, caplog
    ):
        """Test that a failing embedding is logged and listed as skipped."""

        def fail(self, store):
            raise RuntimeError("embedding backend unavailable")

        monkeypatch.setattr(EmbeddingProjector, "project", fail)
        config = PipelineConfig.from_dict(
            {"qc": relaxed_qc_config, "embedding": {"n_neighbors": 15}}
        )
        with caplog.at_level(logging.WARNING, logger="scpipe.pipeline.executor"):
            result = AnalysisPipeline(config).run(two_cluster_store)

        assert "embedding" not in result.completed_stages
        assert "markers" in result.completed_stages
        assert result.skipped_stages == ["embedding"]
        assert result.summary()["skipped_stages"] == ["embedding"]
        assert "embedding backend unavailable" in caplog.text
        assert "X_umap" not in result.store.obsm
