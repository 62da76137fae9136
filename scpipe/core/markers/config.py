"""Configuration for differential marker testing."""

from dataclasses import dataclass
from enum import Enum

from ...errors import ConfigurationError
from ...utils.validation import coerce_enum, require_positive


class MarkerTestMethod(Enum):
    """Per-gene two-group tests."""

    WILCOX = "wilcox"  # Mann-Whitney U, two-sided
    T_TEST = "t_test"  # Welch's t-test


@dataclass
class MarkerConfig:
    """Configuration for FindMarkers / FindAllMarkers.

    Attributes
    ----------
    min_pct : float
        Gene must be detected in at least this fraction of cells in one
        of the two groups
    logfc_threshold : float
        Minimum absolute average log2 fold change (one-sided when
        ``only_positive``)
    test_method : MarkerTestMethod
        Statistical test
    only_positive : bool
        Keep only genes up-regulated in the first group
    min_cells_group : int
        Smallest group size accepted
    pseudocount : float
        Added to group means before the log2 fold change
    group_by : str
        Cell metadata column holding the group labels
    n_jobs : int
        joblib workers for find-all-markers
    """

    min_pct: float = 0.25
    logfc_threshold: float = 0.25
    test_method: MarkerTestMethod = MarkerTestMethod.WILCOX
    only_positive: bool = False
    min_cells_group: int = 3
    pseudocount: float = 1.0
    group_by: str = "cluster"
    n_jobs: int = 1

    def __post_init__(self) -> None:
        self.test_method = coerce_enum(MarkerTestMethod, self.test_method, "test method")
        if not 0 <= self.min_pct <= 1:
            raise ConfigurationError(f"min_pct must be in [0, 1], got {self.min_pct}")
        require_positive(self.logfc_threshold, "logfc_threshold", allow_zero=True)
        require_positive(self.min_cells_group, "min_cells_group")
        require_positive(self.pseudocount, "pseudocount")
