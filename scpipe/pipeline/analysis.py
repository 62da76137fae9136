"""Standard single-cell analysis pipeline.

Wires the stage engines into an :class:`InMemoryExecutor`:

    qc -> normalize -> features -> scale -> pca
        pca -> neighbors -> cluster -> markers
        pca -> embedding            (optional)
        pca -> jackstraw            (optional)

Every stage receives the store produced by its dependency and returns
a new one; no stage mutates its input.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from ..core.clustering import ClusterAssigner, ClusteringResult, NeighborGraph, NeighborGraphBuilder
from ..core.markers import MarkerEngine, MarkerResult, empty_markers
from ..core.preprocessing import CellQC, FeatureSelector, Normalizer, QCResult, Scaler
from ..core.reduction import (
    EmbeddingProjector,
    EmbeddingResult,
    JackStraw,
    JackStrawResult,
    PCAEngine,
    PCAResult,
)
from ..core.store import MatrixStore
from .config import PipelineConfig
from .executor import InMemoryExecutor
from .logger import PipelineLogger


@dataclass
class PipelineResult:
    """Outputs of a pipeline run.

    Attributes
    ----------
    store : MatrixStore
        Last store produced (clustered, with 2D coordinates when computed)
    cell_metadata : pd.DataFrame
        Filtered and annotated cell metadata
    features : Tuple[str, ...]
        Variable Feature Set
    embedding : np.ndarray
        Reduced (PCA) embedding, cells x K
    labels : pd.Categorical
        Cluster label per cell
    markers : pd.DataFrame
        Find-all-markers table with a ``cluster`` column
    stage_results : Dict[str, Any]
        Raw result object of every stage that ran
    timings : Dict[str, float]
        Seconds per stage
    completed_stages : List[str]
        Stages that finished, in order
    skipped_stages : List[str]
        Optional stages that failed, and stages whose dependencies were skipped
    aborted_before : str, optional
        Stage at which the run was stopped by the abort callback
    """

    store: Optional[MatrixStore] = None
    cell_metadata: pd.DataFrame = field(default_factory=pd.DataFrame)
    features: Tuple[str, ...] = field(default_factory=tuple)
    embedding: Optional[np.ndarray] = None
    labels: Optional[pd.Categorical] = None
    markers: pd.DataFrame = field(default_factory=lambda: empty_markers(with_cluster=True))
    stage_results: Dict[str, Any] = field(default_factory=dict)
    timings: Dict[str, float] = field(default_factory=dict)
    completed_stages: List[str] = field(default_factory=list)
    skipped_stages: List[str] = field(default_factory=list)
    aborted_before: Optional[str] = None

    @property
    def n_clusters(self) -> int:
        return 0 if self.labels is None else len(self.labels.categories)

    @property
    def qc(self) -> Optional[QCResult]:
        return self.stage_results.get("qc")

    @property
    def pca(self) -> Optional[PCAResult]:
        return self.stage_results.get("pca")

    @property
    def graph(self) -> Optional[NeighborGraph]:
        built = self.stage_results.get("neighbors")
        return built[1] if built is not None else None

    @property
    def clustering(self) -> Optional[ClusteringResult]:
        return self.stage_results.get("cluster")

    @property
    def jackstraw(self) -> Optional[JackStrawResult]:
        return self.stage_results.get("jackstraw")

    @property
    def projection(self) -> Optional[EmbeddingResult]:
        return self.stage_results.get("embedding")

    def summary(self) -> Dict[str, Any]:
        """Run diagnostics suitable for a JSON/YAML manifest."""
        out: Dict[str, Any] = {
            "completed_stages": list(self.completed_stages),
            "skipped_stages": list(self.skipped_stages),
            "aborted_before": self.aborted_before,
            "timings": {k: round(v, 3) for k, v in self.timings.items()},
            "n_cells": int(len(self.cell_metadata)),
            "n_features": len(self.features),
            "n_clusters": self.n_clusters,
            "n_markers": int(len(self.markers)),
        }
        if self.qc is not None:
            out["qc"] = self.qc.to_dict()
        if self.clustering is not None:
            out["cluster_sizes"] = dict(self.clustering.cluster_sizes)
            out["modularity"] = self.clustering.modularity
        if self.pca is not None:
            out["variance_ratio"] = [float(r) for r in self.pca.variance_ratio]
        if self.jackstraw is not None:
            out["jackstraw_significant_pcs"] = self.jackstraw.significant_pcs()
        return out


class AnalysisPipeline:
    """End-to-end analysis from raw counts to cluster markers.

    Parameters
    ----------
    config : PipelineConfig, optional
        Master configuration
    logger : PipelineLogger, optional
        Stage event logger. Engines log through the ``scpipe`` logger
        hierarchy either way.

    Example
    -------
    >>> from scpipe import AnalysisPipeline, MatrixStore, PipelineConfig
    >>> config = PipelineConfig.from_yaml("scpipe.yaml")
    >>> store = MatrixStore.from_counts(counts, cells, genes)
    >>> result = AnalysisPipeline(config).run(store)
    >>> result.n_clusters, result.markers.head()
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.config = config or PipelineConfig.default()
        self.config.validate()
        self.logger = logger
        self._log = logging.getLogger(__name__)

    def build_executor(
        self, should_abort: Optional[Callable[[str], bool]] = None
    ) -> InMemoryExecutor:
        """Register the standard stages on a fresh executor."""
        cfg = self.config
        executor = InMemoryExecutor(logger=self.logger, should_abort=should_abort)

        def run_qc(stage_results, store):
            return CellQC(cfg.qc).filter(store)

        def run_normalize(stage_results, store):
            return Normalizer(cfg.normalization).normalize(stage_results["qc"].store)

        def run_features(stage_results, store):
            return FeatureSelector(cfg.features).select(stage_results["normalize"].store)

        def run_scale(stage_results, store):
            return Scaler(cfg.scaling).scale(stage_results["features"].store)

        def run_pca(stage_results, store):
            return PCAEngine(cfg.pca).run(stage_results["scale"].store)

        def run_jackstraw(stage_results, store):
            return JackStraw(cfg.jackstraw).run(stage_results["pca"].store)

        def run_neighbors(stage_results, store):
            return NeighborGraphBuilder(cfg.neighbors).build(stage_results["pca"].store)

        def run_cluster(stage_results, store):
            graph_store, _ = stage_results["neighbors"]
            return ClusterAssigner(cfg.clustering).cluster(graph_store)

        def run_embedding(stage_results, store):
            return EmbeddingProjector(cfg.embedding).project(stage_results["pca"].store)

        def run_markers(stage_results, store):
            return MarkerEngine(cfg.markers).find_all_markers(stage_results["cluster"].store)

        executor.register_stage("qc", run_qc, name="Quality Control")
        executor.register_stage("normalize", run_normalize, ["qc"], name="Normalization")
        executor.register_stage("features", run_features, ["normalize"], name="Feature Selection")
        executor.register_stage("scale", run_scale, ["features"], name="Scaling")
        executor.register_stage("pca", run_pca, ["scale"], name="PCA")
        if cfg.run_jackstraw:
            executor.register_stage(
                "jackstraw", run_jackstraw, ["pca"], name="JackStraw", optional=True
            )
        executor.register_stage("neighbors", run_neighbors, ["pca"], name="Neighbor Graph")
        executor.register_stage("cluster", run_cluster, ["neighbors"], name="Clustering")
        if cfg.run_embedding:
            executor.register_stage(
                "embedding", run_embedding, ["pca"], name="Embedding", optional=True
            )
        executor.register_stage("markers", run_markers, ["cluster"], name="Markers")
        return executor

    def run(
        self,
        store: MatrixStore,
        should_abort: Optional[Callable[[str], bool]] = None,
        end_stage: Optional[str] = None,
    ) -> PipelineResult:
        """Run the pipeline on a raw-count store.

        Parameters
        ----------
        store : MatrixStore
            Raw counts as ingested
        should_abort : Callable[[str], bool], optional
            Checked before each stage; True stops the run
        end_stage : str, optional
            Last stage to run (with its dependencies)

        Returns
        -------
        PipelineResult
            Outputs of every stage that completed
        """
        self._log.info(
            "Starting analysis of %d cells x %d genes", store.n_obs, store.n_vars
        )
        executor = self.build_executor(should_abort)
        stage_results = executor.run(end_stage=end_stage, store=store)
        return self._collect(stage_results, executor)

    @staticmethod
    def _collect(stage_results: Dict[str, Any], executor: InMemoryExecutor) -> PipelineResult:
        result = PipelineResult(
            stage_results=stage_results,
            timings=dict(executor.timings),
            completed_stages=list(executor.completed_stages),
            skipped_stages=list(executor.skipped_stages),
            aborted_before=executor.aborted_before,
        )

        final_store = None
        for stage_id in ("qc", "normalize", "features", "scale", "pca"):
            if stage_id in stage_results:
                final_store = stage_results[stage_id].store
        if "features" in stage_results:
            result.features = stage_results["features"].features
        if "pca" in stage_results:
            result.embedding = stage_results["pca"].embedding
        if "cluster" in stage_results:
            final_store = stage_results["cluster"].store
            result.labels = stage_results["cluster"].labels
        if "embedding" in stage_results and final_store is not None:
            projection: EmbeddingResult = stage_results["embedding"]
            final_store = final_store.with_obsm(**{projection.key: projection.coordinates})
        if "markers" in stage_results:
            markers: MarkerResult = stage_results["markers"]
            result.markers = markers.markers

        result.store = final_store
        if final_store is not None:
            result.cell_metadata = final_store.obs.copy()
        return result
