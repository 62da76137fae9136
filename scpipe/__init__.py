"""scpipe: single-cell RNA-seq analysis pipeline engine.

This package provides:
- A frozen matrix store for counts and cell/gene metadata
- Quality control, log-normalization and highly variable gene selection
- Scaling and PCA with optional JackStraw significance testing
- Shared-nearest-neighbor graphs and Louvain community detection
- UMAP/t-SNE projection for visualization
- Wilcoxon / t-test marker gene discovery

Example usage:
    >>> from scpipe import MatrixStore, AnalysisPipeline, PipelineConfig
    >>>
    >>> store = MatrixStore.from_counts(counts, cell_ids, gene_ids)
    >>> result = AnalysisPipeline(PipelineConfig()).run(store)
    >>> result.markers.head()
"""

__version__ = "0.1.0"

from .core.store import MatrixStore
from .errors import (
    ConfigurationError,
    NumericDegeneracyError,
    ScpipeError,
    ShapeMismatchError,
)
from .pipeline import AnalysisPipeline, PipelineConfig, PipelineResult

__all__ = [
    "__version__",
    "MatrixStore",
    "AnalysisPipeline",
    "PipelineConfig",
    "PipelineResult",
    "ScpipeError",
    "ConfigurationError",
    "ShapeMismatchError",
    "NumericDegeneracyError",
]
