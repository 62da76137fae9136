"""Pipeline orchestration module.

Provides the master YAML configuration, in-memory stage execution with
dependency ordering and abort checks between stages, and the standard
analysis pipeline.

Example Usage
-------------
>>> from scpipe.pipeline import AnalysisPipeline, PipelineConfig, PipelineLogger
>>> config = PipelineConfig.from_yaml("scpipe.yaml")
>>> logger = PipelineLogger("logs/")
>>> logger.setup()
>>> result = AnalysisPipeline(config, logger).run(store)
>>> result.summary()
"""

from .stage import Stage
from .config import PipelineConfig
from .logger import ColoredFormatter, PipelineLogger
from .executor import InMemoryExecutor
from .analysis import AnalysisPipeline, PipelineResult

__all__ = [
    # Stage
    "Stage",
    # Config
    "PipelineConfig",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "InMemoryExecutor",
    "AnalysisPipeline",
    "PipelineResult",
]
