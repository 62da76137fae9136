"""Preprocessing module: QC, normalization, feature selection, scaling.

Pipeline Stages
---------------
- QC: per-cell metrics and retention mask
- Normalization: per-cell rescaling and log transform
- Feature selection: highly variable genes
- Scaling: per-gene z-score over the selected genes

Example Usage
-------------
>>> from scpipe.core.preprocessing import (
...     CellQC, QCConfig,
...     Normalizer, FeatureSelector, Scaler,
... )
>>> qc = CellQC(QCConfig(min_features=200))
>>> store = qc.filter(store).store
>>> store = Normalizer().normalize(store).store
>>> store = FeatureSelector().select(store).store
>>> scaled = Scaler().scale(store)
"""

from .config import (
    QCConfig,
    NormalizationConfig,
    NormalizationMethod,
    FeatureSelectionConfig,
    FeatureMethod,
    ScalingConfig,
)
from .qc import CellQC, QCResult, REASON_COLUMNS
from .normalization import Normalizer, NormalizationResult
from .features import FeatureSelector, FeatureSelectionResult
from .scaling import Scaler, ScalingResult

__all__ = [
    # Config
    "QCConfig",
    "NormalizationConfig",
    "NormalizationMethod",
    "FeatureSelectionConfig",
    "FeatureMethod",
    "ScalingConfig",
    # QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    # Normalization
    "Normalizer",
    "NormalizationResult",
    # Feature selection
    "FeatureSelector",
    "FeatureSelectionResult",
    # Scaling
    "Scaler",
    "ScalingResult",
]
