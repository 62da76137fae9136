"""Unit tests for count-matrix loading and run records."""

import json
import logging
from pathlib import Path

import pytest
import numpy as np
import pandas as pd
import yaml

from scpipe.io import (
    ensure_output_dir,
    load_count_matrix,
    load_h5ad,
    load_store,
    log_json,
    log_yaml,
    to_builtin,
    write_dataframe,
)


@pytest.fixture
def small_csv(tmp_path):
    """Three cells x two genes."""
    path = tmp_path / "small.csv"
    pd.DataFrame(
        [[1, 0], [2, 5], [0, 3]],
        index=["c1", "c2", "c3"],
        columns=["GeneA", "GeneB"],
    ).to_csv(path)
    return path


class TestLoadCountMatrix:
    """Tests for load_count_matrix."""

    def test_cells_as_rows(self, small_csv):
        """Test the default orientation."""
        store = load_count_matrix(small_csv)
        assert store.shape == (3, 2)
        assert list(store.obs_names) == ["c1", "c2", "c3"]
        assert list(store.var_names) == ["GeneA", "GeneB"]
        np.testing.assert_array_equal(np.asarray(store.X)[1], [2.0, 5.0])

    def test_genes_as_rows(self, small_csv):
        """Test transposing a genes x cells file."""
        store = load_count_matrix(small_csv, genes_as_rows=True)
        assert store.shape == (2, 3)
        assert list(store.obs_names) == ["GeneA", "GeneB"]

    def test_non_numeric(self, tmp_path):
        """Test that text values raise ValueError."""
        path = tmp_path / "bad.csv"
        pd.DataFrame({"GeneA": ["x", "y"]}, index=["c1", "c2"]).to_csv(path)
        with pytest.raises(ValueError, match="Non-numeric"):
            load_count_matrix(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_count_matrix(tmp_path / "none.csv")

    def test_load_store_dispatch(self, small_csv):
        """Test that a CSV path goes to the CSV reader."""
        assert load_store(small_csv).shape == (3, 2)


class TestLoadH5ad:
    """Tests for load_h5ad."""

    def test_round_trip(self, mock_store, tmp_path):
        """Test reading counts written through AnnData."""
        path = tmp_path / "counts.h5ad"
        mock_store.to_anndata().write_h5ad(path)
        store = load_store(path)
        assert store.shape == mock_store.shape
        assert list(store.var_names) == list(mock_store.var_names)
        np.testing.assert_allclose(np.asarray(store.X), np.asarray(mock_store.X))

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_h5ad(tmp_path / "none.h5ad")


class TestWriters:
    """Tests for table and record writers."""

    def test_write_dataframe_creates_parent(self, tmp_path):
        """Test that nested output directories are created."""
        path = write_dataframe(pd.DataFrame({"a": [1, 2]}), tmp_path / "x" / "y" / "t.csv")
        assert path.exists()
        assert list(pd.read_csv(path)["a"]) == [1, 2]

    def test_ensure_output_dir(self, tmp_path):
        """Test directory creation."""
        directory = ensure_output_dir(tmp_path / "out" / "run1")
        assert directory.is_dir()

    def test_log_json_appends(self, tmp_path):
        """Test one JSON line per record with numpy values converted."""
        path = tmp_path / "runs.jsonl"
        log_json(path, {"n": np.int64(3), "sizes": np.array([1, 2])})
        log_json(path, {"n": 4})
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0]) == {"n": 3, "sizes": [1, 2]}

    def test_log_yaml(self, tmp_path):
        """Test a YAML document terminated by a separator."""
        path = tmp_path / "manifest.yaml"
        log_yaml(path, {"n_clusters": np.int64(2), "timings": {"qc": 0.5}})
        docs = [d for d in yaml.safe_load_all(path.read_text()) if d is not None]
        assert docs == [{"n_clusters": 2, "timings": {"qc": 0.5}}]

    def test_log_yaml_to_logger(self, tmp_path, caplog):
        """Test logging the YAML text instead of writing a file."""
        logger = logging.getLogger("scpipe.test_yaml")
        with caplog.at_level(logging.INFO, logger="scpipe.test_yaml"):
            log_yaml(tmp_path / "unused.yaml", {"a": 1}, logger=logger)
        assert "a: 1" in caplog.text
        assert not (tmp_path / "unused.yaml").exists()

    def test_to_builtin(self):
        """Test conversion of nested numpy values."""
        record = {"sizes": {np.str_("0"): np.int64(5)}, "ratio": np.float32(0.5), "out": Path("x")}
        assert to_builtin(record) == {"sizes": {"0": 5}, "ratio": 0.5, "out": "x"}
