"""Master configuration for a full analysis run.

Collects the per-stage configuration dataclasses and loads them from a
YAML file. Every section is optional; missing sections use defaults.

Example YAML
------------
pipeline:
  qc:
    min_features: 200
    max_mt_fraction: 0.1
  features:
    n_features: 3000
    method: vst
  clustering:
    resolution: 0.8
    random_seed: 7
  markers:
    only_positive: true
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from ..core.clustering import ClusteringConfig, NeighborsConfig
from ..core.markers import MarkerConfig
from ..core.preprocessing import (
    FeatureSelectionConfig,
    NormalizationConfig,
    QCConfig,
    ScalingConfig,
)
from ..core.reduction import EmbeddingConfig, JackStrawConfig, PCAConfig
from ..errors import ConfigurationError


def _plain(value: Any) -> Any:
    """Enums to their values, recursively, for YAML/JSON output."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class PipelineConfig:
    """Master configuration for the analysis pipeline.

    Attributes
    ----------
    qc : QCConfig
        Cell quality control
    normalization : NormalizationConfig
        Per-cell normalization
    features : FeatureSelectionConfig
        Highly variable gene selection
    scaling : ScalingConfig
        Per-gene scaling
    pca : PCAConfig
        Principal component analysis
    jackstraw : JackStrawConfig
        JackStraw significance test (run when ``run_jackstraw``)
    neighbors : NeighborsConfig
        kNN / SNN graph
    clustering : ClusteringConfig
        Louvain clustering
    embedding : EmbeddingConfig
        2D projection (run when ``run_embedding``)
    markers : MarkerConfig
        Marker testing
    run_jackstraw : bool
        Include the JackStraw stage
    run_embedding : bool
        Include the UMAP / t-SNE stage
    """

    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    features: FeatureSelectionConfig = field(default_factory=FeatureSelectionConfig)
    scaling: ScalingConfig = field(default_factory=ScalingConfig)
    pca: PCAConfig = field(default_factory=PCAConfig)
    jackstraw: JackStrawConfig = field(default_factory=JackStrawConfig)
    neighbors: NeighborsConfig = field(default_factory=NeighborsConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    run_jackstraw: bool = False
    run_embedding: bool = True

    SECTIONS = {
        "qc": QCConfig,
        "normalization": NormalizationConfig,
        "features": FeatureSelectionConfig,
        "scaling": ScalingConfig,
        "pca": PCAConfig,
        "jackstraw": JackStrawConfig,
        "neighbors": NeighborsConfig,
        "clustering": ClusteringConfig,
        "embedding": EmbeddingConfig,
        "markers": MarkerConfig,
    }
    FLAGS = ("run_jackstraw", "run_embedding")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build a configuration from nested dictionaries.

        Raises
        ------
        ConfigurationError
            On unknown sections, unknown keys, or invalid values
        """
        data = dict(data or {})
        if "pipeline" in data and isinstance(data["pipeline"], dict):
            data = dict(data["pipeline"])

        unknown = sorted(set(data) - set(cls.SECTIONS) - set(cls.FLAGS))
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {unknown}")

        kwargs: Dict[str, Any] = {}
        for name, section_cls in cls.SECTIONS.items():
            values = data.get(name) or {}
            allowed = {f.name for f in fields(section_cls)}
            bad = sorted(set(values) - allowed)
            if bad:
                raise ConfigurationError(f"Unknown keys in '{name}': {bad}")
            kwargs[name] = section_cls(**values)
        for flag in cls.FLAGS:
            if flag in data:
                kwargs[flag] = bool(data[flag])
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from a YAML file.

        A top-level ``pipeline:`` section is unwrapped when present.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PipelineConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary (enums as strings)."""
        out: Dict[str, Any] = {
            name: _plain(asdict(getattr(self, name))) for name in self.SECTIONS
        }
        for flag in self.FLAGS:
            out[flag] = getattr(self, flag)
        return out

    def to_yaml(self, path: Union[str, Path, None] = None) -> str:
        """Dump as YAML under a ``pipeline:`` key; write to ``path`` if given."""
        text = yaml.safe_dump({"pipeline": self.to_dict()}, sort_keys=False)
        if path is not None:
            Path(path).write_text(text)
        return text

    def validate(self) -> None:
        """Check constraints that span stages.

        Raises
        ------
        ConfigurationError
            If the stage settings are inconsistent with each other
        """
        n_pca = self.pca.n_components
        if n_pca is not None:
            if self.neighbors.n_pcs > n_pca:
                raise ConfigurationError(
                    f"neighbors.n_pcs ({self.neighbors.n_pcs}) exceeds "
                    f"pca.n_components ({n_pca})"
                )
            if self.run_embedding and self.embedding.n_pcs > n_pca:
                raise ConfigurationError(
                    f"embedding.n_pcs ({self.embedding.n_pcs}) exceeds "
                    f"pca.n_components ({n_pca})"
                )
            if self.run_jackstraw and self.jackstraw.n_dims > n_pca:
                raise ConfigurationError(
                    f"jackstraw.n_dims ({self.jackstraw.n_dims}) exceeds "
                    f"pca.n_components ({n_pca})"
                )
        if self.markers.group_by != "cluster":
            raise ConfigurationError(
                "markers.group_by must be 'cluster' inside the pipeline"
            )
