"""Configuration classes for preprocessing stages.

All preprocessing parameters are configurable via YAML. Method names
given as strings are resolved to enum members once, when the config
object is built.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ...errors import ConfigurationError
from ...utils.validation import coerce_enum, require_positive


class NormalizationMethod(Enum):
    """Per-cell normalization strategies."""

    LOG_NORMALIZE = "log_normalize"  # log1p(count / total * scale_factor)
    RELATIVE_COUNTS = "relative_counts"  # count / total * scale_factor
    CLR = "clr"  # per-gene centered log ratio


class FeatureMethod(Enum):
    """Highly variable gene selection strategies."""

    VST = "vst"  # loess trend of log variance vs log mean on raw counts
    DISPERSION = "dispersion"  # binned z-scored dispersion on normalized data


@dataclass
class QCConfig:
    """Configuration for cell quality control.

    Attributes
    ----------
    min_features : int
        Minimum number of detected genes per cell (inclusive)
    max_features : int
        Maximum number of detected genes per cell (inclusive)
    max_mt_fraction : float
        Cells must have a mitochondrial fraction strictly below this value
    mt_prefix : str
        Case-insensitive gene name prefix marking mitochondrial genes
    mt_genes : List[str]
        Explicit mitochondrial gene set; overrides ``mt_prefix`` when given
    ribo_prefixes : List[str]
        Prefixes of ribosomal genes (reported as a metric, never filtered)
    min_cells_per_gene : int
        Genes detected in fewer cells are dropped before QC (0 disables)
    """

    min_features: int = 500
    max_features: int = 5000
    max_mt_fraction: float = 0.05
    mt_prefix: str = "MT-"
    mt_genes: List[str] = field(default_factory=list)
    ribo_prefixes: List[str] = field(default_factory=lambda: ["RPS", "RPL"])
    min_cells_per_gene: int = 3

    def __post_init__(self) -> None:
        require_positive(self.min_features, "min_features", allow_zero=True)
        if self.max_features < self.min_features:
            raise ConfigurationError(
                f"max_features ({self.max_features}) < min_features ({self.min_features})"
            )
        if not 0 < self.max_mt_fraction <= 1:
            raise ConfigurationError(
                f"max_mt_fraction must be in (0, 1], got {self.max_mt_fraction}"
            )
        require_positive(self.min_cells_per_gene, "min_cells_per_gene", allow_zero=True)


@dataclass
class NormalizationConfig:
    """Configuration for per-cell normalization.

    Attributes
    ----------
    method : NormalizationMethod
        Normalization strategy
    scale_factor : float
        Target total per cell before the log transform
    """

    method: NormalizationMethod = NormalizationMethod.LOG_NORMALIZE
    scale_factor: float = 10000.0

    def __post_init__(self) -> None:
        self.method = coerce_enum(NormalizationMethod, self.method, "normalization method")
        require_positive(self.scale_factor, "scale_factor")


@dataclass
class FeatureSelectionConfig:
    """Configuration for highly variable gene selection.

    Attributes
    ----------
    n_features : int
        Number of genes to select
    method : FeatureMethod
        Selection strategy
    loess_span : float
        Fraction of genes used for each local fit of the VST trend
    clip_max : float, optional
        Upper clip for standardized values; None means sqrt(n_cells)
    n_bins : int
        Number of mean-expression bins for the dispersion method
    """

    n_features: int = 2000
    method: FeatureMethod = FeatureMethod.VST
    loess_span: float = 0.3
    clip_max: Optional[float] = None
    n_bins: int = 20

    def __post_init__(self) -> None:
        self.method = coerce_enum(FeatureMethod, self.method, "feature selection method")
        require_positive(self.n_features, "n_features")
        if not 0 < self.loess_span <= 1:
            raise ConfigurationError(f"loess_span must be in (0, 1], got {self.loess_span}")
        require_positive(self.n_bins, "n_bins")


@dataclass
class ScalingConfig:
    """Configuration for feature scaling.

    Attributes
    ----------
    max_value : float, optional
        Clip scaled values to [-max_value, max_value]; None disables clipping
    center : bool
        Subtract the per-gene mean
    """

    max_value: Optional[float] = 10.0
    center: bool = True

    def __post_init__(self) -> None:
        if self.max_value is not None:
            require_positive(self.max_value, "max_value")
