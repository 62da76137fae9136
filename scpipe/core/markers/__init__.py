"""Differential marker testing for scpipe.

Features:
- FindMarkers: one group (or set of groups) vs another, or vs the rest
- FindAllMarkers: every cluster vs the rest, parallel over clusters
- Detection-fraction and log2 fold-change prefilters
- Wilcoxon rank-sum or Welch t-test, Bonferroni-corrected

Example Usage:
    from scpipe.core.markers import MarkerEngine, MarkerConfig

    engine = MarkerEngine(MarkerConfig(only_positive=True, n_jobs=4))
    result = engine.find_all_markers(clustered_store)
    print(result.top(5))
"""

from .config import MarkerConfig, MarkerTestMethod
from .de import (
    MARKER_COLUMNS,
    MarkerEngine,
    MarkerResult,
    compare_groups,
    empty_markers,
    top_markers,
)

__all__ = [
    "MarkerConfig",
    "MarkerTestMethod",
    "MarkerEngine",
    "MarkerResult",
    "compare_groups",
    "empty_markers",
    "top_markers",
    "MARKER_COLUMNS",
]
