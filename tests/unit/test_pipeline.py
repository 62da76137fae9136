"""Unit tests for pipeline configuration, logging and execution."""

import logging

import pytest
import yaml

from scpipe.core.preprocessing import NormalizationMethod
from scpipe.errors import ConfigurationError
from scpipe.pipeline import (
    ColoredFormatter,
    InMemoryExecutor,
    PipelineConfig,
    PipelineLogger,
    Stage,
)


# ============================================================================
# Configuration
# ============================================================================


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_default(self):
        """Test that every section gets its defaults."""
        config = PipelineConfig.default()
        assert config.qc.min_features == 500
        assert config.normalization.scale_factor == 10000.0
        assert config.features.n_features == 2000
        assert config.clustering.resolution == 0.5
        assert config.markers.min_pct == 0.25
        assert config.run_embedding is True
        assert config.run_jackstraw is False

    def test_from_yaml(self, sample_pipeline_config):
        """Test loading a YAML file with a pipeline section."""
        config = PipelineConfig.from_yaml(sample_pipeline_config)
        assert config.qc.min_features == 0
        assert config.qc.max_mt_fraction == 1.0
        assert config.clustering.random_seed == 3
        assert config.markers.only_positive is True
        assert config.run_embedding is False
        # untouched sections keep defaults
        assert config.neighbors.k == 20

    def test_from_dict_without_wrapper(self):
        """Test that the pipeline key is optional."""
        config = PipelineConfig.from_dict({"normalization": {"method": "clr"}})
        assert config.normalization.method is NormalizationMethod.CLR

    def test_unknown_section(self):
        """Test that an unknown section raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="sections"):
            PipelineConfig.from_dict({"doublets": {}})

    def test_unknown_key(self):
        """Test that an unknown key raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="qc"):
            PipelineConfig.from_dict({"qc": {"min_genes": 10}})

    def test_invalid_value(self):
        """Test that section validation runs while loading."""
        with pytest.raises(ConfigurationError):
            PipelineConfig.from_dict({"clustering": {"resolution": -1}})

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            PipelineConfig.from_yaml(tmp_path / "missing.yaml")

    def test_yaml_round_trip(self, tmp_path):
        """Test that a dumped configuration loads back equal."""
        config = PipelineConfig.from_dict(
            {"features": {"method": "dispersion"}, "pca": {"n_components": 15}}
        )
        path = tmp_path / "out.yaml"
        config.to_yaml(path)
        loaded = PipelineConfig.from_yaml(path)
        assert loaded.to_dict() == config.to_dict()

    def test_to_dict_plain_values(self):
        """Test that enums are written as strings."""
        d = PipelineConfig.default().to_dict()
        assert d["normalization"]["method"] == "log_normalize"
        assert d["neighbors"]["metric"] == "euclidean"
        yaml.safe_dump(d)

    def test_validate_cross_stage(self):
        """Test that neighbor PCs beyond the PCA components are rejected."""
        config = PipelineConfig.from_dict(
            {"pca": {"n_components": 5}, "neighbors": {"n_pcs": 10}}
        )
        with pytest.raises(ConfigurationError, match="n_pcs"):
            config.validate()

    def test_validate_group_by(self):
        """Test that pipeline markers must group by cluster."""
        config = PipelineConfig.from_dict({"markers": {"group_by": "sample"}})
        with pytest.raises(ConfigurationError, match="group_by"):
            config.validate()


# ============================================================================
# Stage and executor
# ============================================================================


def _record(name, log):
    def func(stage_results, **kwargs):
        log.append(name)
        return name.upper()

    return func


class TestStage:
    """Tests for Stage dataclass."""

    def test_to_dict(self):
        """Test the manifest description of a stage."""
        stage = Stage("qc", "Quality Control", func=lambda **_: None, depends_on=["load"])
        assert stage.to_dict() == {
            "stage_id": "qc",
            "name": "Quality Control",
            "depends_on": ["load"],
            "optional": False,
        }


class TestInMemoryExecutor:
    """Tests for InMemoryExecutor."""

    def test_execution_order(self):
        """Test topological order with registration order among peers."""
        executor = InMemoryExecutor()
        executor.register_stage("c", _record("c", []), depends_on=["a", "b"])
        executor.register_stage("a", _record("a", []))
        executor.register_stage("b", _record("b", []), depends_on=["a"])
        assert executor.get_execution_order() == ["a", "b", "c"]

    def test_run_passes_results(self):
        """Test that stages see earlier results and kwargs."""
        seen = {}

        def first(stage_results, value):
            return value + 1

        def second(stage_results, value):
            seen["first"] = stage_results["first"]
            return stage_results["first"] * 10

        executor = InMemoryExecutor()
        executor.register_stage("first", first)
        executor.register_stage("second", second, depends_on=["first"])
        results = executor.run(value=1)
        assert results == {"first": 2, "second": 20}
        assert seen["first"] == 2
        assert executor.completed_stages == ["first", "second"]
        assert set(executor.timings) == {"first", "second"}

    def test_cycle_detected(self):
        """Test that a dependency cycle raises ConfigurationError."""
        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", []), depends_on=["b"])
        executor.register_stage("b", _record("b", []), depends_on=["a"])
        with pytest.raises(ConfigurationError, match="Circular"):
            executor.get_execution_order()

    def test_unknown_dependency(self):
        """Test that depending on an unregistered stage raises ConfigurationError."""
        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", []), depends_on=["ghost"])
        with pytest.raises(ConfigurationError, match="ghost"):
            executor.run()

    def test_duplicate_stage(self):
        """Test that registering a stage twice raises ConfigurationError."""
        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", []))
        with pytest.raises(ConfigurationError):
            executor.register_stage("a", _record("a", []))

    def test_end_stage(self):
        """Test that only the end stage and its dependencies run."""
        log = []
        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", log))
        executor.register_stage("b", _record("b", log), depends_on=["a"])
        executor.register_stage("c", _record("c", log), depends_on=["a"])
        executor.run(end_stage="b")
        assert log == ["a", "b"]

    def test_unknown_end_stage(self):
        """Test that an unknown end stage raises ConfigurationError."""
        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", []))
        with pytest.raises(ConfigurationError):
            executor.run(end_stage="z")

    def test_abort_between_stages(self):
        """Test that the abort callback stops the run at a stage boundary."""
        log = []
        executor = InMemoryExecutor(should_abort=lambda stage_id: stage_id == "b")
        executor.register_stage("a", _record("a", log))
        executor.register_stage("b", _record("b", log), depends_on=["a"])
        executor.register_stage("c", _record("c", log), depends_on=["b"])
        results = executor.run()
        assert log == ["a"]
        assert list(results) == ["a"]
        assert executor.aborted
        assert executor.aborted_before == "b"

    def test_required_stage_failure_propagates(self):
        """Test that a failing required stage re-raises its error."""

        def boom(stage_results):
            raise ConfigurationError("bad thresholds")

        executor = InMemoryExecutor()
        executor.register_stage("a", boom)
        with pytest.raises(ConfigurationError, match="bad thresholds"):
            executor.run()

    def test_optional_stage_failure_skipped(self):
        """Test that a failing optional stage and its dependents are skipped."""
        log = []

        def boom(stage_results):
            raise RuntimeError("no embedding")

        executor = InMemoryExecutor()
        executor.register_stage("a", _record("a", log))
        executor.register_stage("opt", boom, depends_on=["a"], optional=True)
        executor.register_stage("after", _record("after", log), depends_on=["opt"])
        executor.register_stage("other", _record("other", log), depends_on=["a"])
        results = executor.run()
        assert log == ["a", "other"]
        assert set(results) == {"a", "other"}
        assert executor.skipped_stages == ["opt", "after"]

    def test_optional_failure_logged_without_pipeline_logger(self, caplog):
        """Test that a skipped optional stage is reported on the module logger."""

        def boom(stage_results):
            raise RuntimeError("projection failed")

        executor = InMemoryExecutor()
        executor.register_stage("opt", boom, optional=True)
        with caplog.at_level(logging.WARNING, logger="scpipe.pipeline.executor"):
            executor.run()
        assert executor.skipped_stages == ["opt"]
        assert "projection failed" in caplog.text

    def test_with_logger(self, tmp_path):
        """Test that stage events go to the log file."""
        logger = PipelineLogger(tmp_path / "logs", console=False, log_name="scpipe.test")
        logger.setup()
        executor = InMemoryExecutor(logger=logger)
        executor.register_stage("a", _record("a", []), name="Stage A")
        executor.run()
        logger.close()

        text = logger.log_file.read_text()
        assert "Starting stage a: Stage A" in text
        assert "Stage a completed" in text


# ============================================================================
# Logging
# ============================================================================


class TestPipelineLogger:
    """Tests for PipelineLogger."""

    def test_log_file_created(self, tmp_path):
        """Test the timestamped log file in the log directory."""
        logger = PipelineLogger(tmp_path, console=False, log_name="scpipe.test_file")
        logger.setup()
        logger.log_info("hello")
        logger.close()
        assert logger.log_file.parent == tmp_path
        assert logger.log_file.name.startswith("scpipe_")
        assert "hello" in logger.log_file.read_text()

    def test_console_only(self):
        """Test that no file is created without a log directory."""
        logger = PipelineLogger(log_name="scpipe.test_console")
        logger.setup()
        assert logger.log_file is None
        assert len(logger.logger.handlers) == 1
        logger.close()
        assert logger.logger.handlers == []

    def test_format_duration(self):
        """Test human-readable durations."""
        assert PipelineLogger.format_duration(45.24) == "45.2s"
        assert PipelineLogger.format_duration(83) == "1m 23s"
        assert PipelineLogger.format_duration(8100) == "2h 15m"

    def test_colored_formatter_restores_levelname(self):
        """Test that coloring does not leak into other handlers."""
        formatter = ColoredFormatter("%(levelname)s %(message)s", "%H:%M:%S", PipelineLogger.COLORS)
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        text = formatter.format(record)
        assert "\033[0;34m" in text
        assert record.levelname == "INFO"
