"""Feature scaling (z-score) over the Variable Feature Set."""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple
import logging

import numpy as np

from ...errors import ConfigurationError, ShapeMismatchError
from ...utils.matrix import to_dense
from ..store import MatrixStore
from .config import ScalingConfig


@dataclass
class ScalingResult:
    """Result from scaling.

    Attributes
    ----------
    store : MatrixStore
        Store with the scaled matrix in ``obsm['X_scaled']``
    matrix : np.ndarray
        Scaled cells x features matrix
    features : Tuple[str, ...]
        Column identifiers of ``matrix``
    mean : np.ndarray
        Per-feature mean removed
    std : np.ndarray
        Per-feature standard deviation (0 for constant genes)
    """

    store: Optional[MatrixStore] = None
    matrix: Optional[np.ndarray] = None
    features: Tuple[str, ...] = field(default_factory=tuple)
    mean: Optional[np.ndarray] = None
    std: Optional[np.ndarray] = None


class Scaler:
    """Per-gene standardizer.

    Parameters
    ----------
    config : ScalingConfig, optional
        Scaling configuration
    logger : logging.Logger, optional
        Logger instance
    """

    def __init__(
        self,
        config: Optional[ScalingConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ScalingConfig()
        self.logger = logger or logging.getLogger(__name__)

    def scale_matrix(self, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Z-score columns of ``values``.

        Standard deviation uses ``ddof=1``. Columns with zero variance
        are returned as zeros.

        Returns
        -------
        Tuple[np.ndarray, np.ndarray, np.ndarray]
            (scaled, mean, std)
        """
        if values.shape[0] < 2:
            raise ConfigurationError("Scaling needs at least 2 cells")
        mean = values.mean(axis=0)
        std = values.std(axis=0, ddof=1)
        centered = values - mean if self.config.center else values.copy()

        constant = ~(std > 0)
        safe_std = np.where(constant, 1.0, std)
        scaled = centered / safe_std
        scaled[:, constant] = 0.0
        std = np.where(constant, 0.0, std)

        if self.config.max_value is not None:
            np.clip(scaled, -self.config.max_value, self.config.max_value, out=scaled)
        return scaled, mean, std

    def scale(
        self,
        store: MatrixStore,
        features: Optional[Sequence[str]] = None,
    ) -> ScalingResult:
        """Scale the normalized expression of the selected features.

        Parameters
        ----------
        store : MatrixStore
            Normalized store
        features : Sequence[str], optional
            Genes to scale. Defaults to the recorded Variable Feature Set.

        Raises
        ------
        ShapeMismatchError
            If a requested feature is not a column of the store
        """
        if features is None:
            if "hvg" not in store.uns:
                raise ConfigurationError(
                    "No features given and no feature selection recorded on store"
                )
            features = store.uns["hvg"]["features"]
        features = tuple(str(f) for f in features)

        missing = [f for f in features if f not in store.var_names]
        if missing:
            raise ShapeMismatchError(
                f"{len(missing)} features are not columns of the matrix "
                f"(e.g. {missing[:5]})"
            )

        idx = store.var_names.get_indexer(list(features))
        values = to_dense(store.X[:, idx])
        scaled, mean, std = self.scale_matrix(values)

        n_constant = int((std == 0).sum())
        if n_constant:
            self.logger.warning("%d zero-variance features scaled to 0", n_constant)
        self.logger.info(
            "Scaled %d features over %d cells (clip=%s)",
            len(features),
            store.n_obs,
            self.config.max_value,
        )

        new_store = store.with_obsm(X_scaled=scaled).with_uns(
            scaling={
                "features": list(features),
                "max_value": self.config.max_value,
                "n_constant": n_constant,
            }
        )
        return ScalingResult(
            store=new_store,
            matrix=scaled,
            features=features,
            mean=mean,
            std=std,
        )
