"""Cell-by-gene matrix store.

The store is the single owner of the expression matrix and its aligned
per-cell / per-gene metadata. It is a frozen value: every pipeline stage
receives a store and returns a new one, so no stage mutates state that
another stage can see.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ConfigurationError, ShapeMismatchError
from ...utils.matrix import MatrixLike, nonzero_per_col


def make_unique(names: Sequence[str]) -> pd.Index:
    """Append ``-1``, ``-2``, ... to repeated identifiers.

    The first occurrence keeps its name, matching AnnData's
    ``var_names_make_unique`` convention.
    """
    seen: Dict[str, int] = {}
    taken = set(str(n) for n in names)
    unique = []
    for name in (str(n) for n in names):
        if name not in seen:
            seen[name] = 0
            unique.append(name)
            continue
        count = seen[name]
        while True:
            count += 1
            candidate = f"{name}-{count}"
            if candidate not in taken:
                break
        seen[name] = count
        taken.add(candidate)
        unique.append(candidate)
    return pd.Index(unique)


@dataclass(frozen=True, eq=False)
class MatrixStore:
    """Immutable container for an expression matrix and its annotations.

    Attributes
    ----------
    X : MatrixLike
        Cells x genes matrix (raw counts at ingestion, normalized later)
    obs : pd.DataFrame
        Cell metadata, one row per matrix row
    var : pd.DataFrame
        Gene metadata, one row per matrix column
    layers : Dict[str, MatrixLike]
        Alternative matrices with the same shape as ``X``
    obsm : Dict[str, np.ndarray]
        Per-cell multi-dimensional annotations (embeddings)
    varm : Dict[str, np.ndarray]
        Per-gene multi-dimensional annotations (PCA loadings)
    obsp : Dict[str, sparse.csr_matrix]
        Cell x cell graphs
    uns : Dict[str, Any]
        Unstructured run diagnostics
    """

    X: MatrixLike
    obs: pd.DataFrame
    var: pd.DataFrame
    layers: Dict[str, MatrixLike] = field(default_factory=dict)
    obsm: Dict[str, np.ndarray] = field(default_factory=dict)
    varm: Dict[str, np.ndarray] = field(default_factory=dict)
    obsp: Dict[str, sparse.csr_matrix] = field(default_factory=dict)
    uns: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.X.ndim != 2:
            raise ShapeMismatchError(f"Expression matrix must be 2-D, got {self.X.ndim}-D")
        n_obs, n_vars = self.X.shape
        if len(self.obs) != n_obs:
            raise ShapeMismatchError(
                f"Cell metadata has {len(self.obs)} rows but matrix has {n_obs} cells"
            )
        if len(self.var) != n_vars:
            raise ShapeMismatchError(
                f"Gene metadata has {len(self.var)} rows but matrix has {n_vars} genes"
            )
        for key, layer in self.layers.items():
            if layer.shape != self.X.shape:
                raise ShapeMismatchError(
                    f"Layer '{key}' has shape {layer.shape}, expected {self.X.shape}"
                )
        for key, value in self.obsm.items():
            if value.shape[0] != n_obs:
                raise ShapeMismatchError(
                    f"obsm['{key}'] has {value.shape[0]} rows, expected {n_obs}"
                )
        for key, value in self.varm.items():
            if value.shape[0] != n_vars:
                raise ShapeMismatchError(
                    f"varm['{key}'] has {value.shape[0]} rows, expected {n_vars}"
                )
        for key, value in self.obsp.items():
            if value.shape != (n_obs, n_obs):
                raise ShapeMismatchError(
                    f"obsp['{key}'] has shape {value.shape}, expected {(n_obs, n_obs)}"
                )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_counts(
        cls,
        counts: MatrixLike,
        cell_ids: Sequence[str],
        gene_ids: Sequence[str],
    ) -> "MatrixStore":
        """Build a store from an in-memory count matrix and identifiers.

        Parameters
        ----------
        counts : MatrixLike
            Non-negative cells x genes count matrix
        cell_ids : Sequence[str]
            Cell identifiers (rows)
        gene_ids : Sequence[str]
            Gene identifiers (columns)

        Raises
        ------
        ShapeMismatchError
            If identifier lengths disagree with the matrix shape
        ConfigurationError
            If the matrix is empty or contains negative values
        """
        if sparse.issparse(counts):
            X = counts.tocsr().astype(np.float64)
            min_value = X.data.min() if X.nnz else 0.0
        else:
            X = np.asarray(counts, dtype=np.float64)
            if X.ndim != 2:
                raise ShapeMismatchError(f"Count matrix must be 2-D, got {X.ndim}-D")
            X = X.copy()
            min_value = X.min() if X.size else 0.0

        if len(cell_ids) != X.shape[0]:
            raise ShapeMismatchError(
                f"{len(cell_ids)} cell identifiers for {X.shape[0]} matrix rows"
            )
        if len(gene_ids) != X.shape[1]:
            raise ShapeMismatchError(
                f"{len(gene_ids)} gene identifiers for {X.shape[1]} matrix columns"
            )
        if X.shape[0] == 0 or X.shape[1] == 0:
            raise ConfigurationError(f"Count matrix is empty (shape={X.shape})")
        if min_value < 0:
            raise ConfigurationError("Count matrix contains negative values")

        obs = pd.DataFrame(index=make_unique(cell_ids))
        obs.index.name = "cell_id"
        var = pd.DataFrame(index=make_unique(gene_ids))
        var.index.name = "gene_id"
        return cls(X=X, obs=obs, var=var)

    @classmethod
    def from_anndata(cls, adata: Any) -> "MatrixStore":
        """Build a store from an ``anndata.AnnData`` object (X only)."""
        return cls.from_counts(
            adata.X,
            cell_ids=list(adata.obs_names),
            gene_ids=list(adata.var_names),
        )

    def to_anndata(self) -> Any:
        """Export to ``anndata.AnnData``; buffers are copied."""
        import anndata as ad

        return ad.AnnData(
            X=self.X.copy(),
            obs=self.obs.copy(),
            var=self.var.copy(),
            layers={k: v.copy() for k, v in self.layers.items()},
            obsm={k: np.array(v, copy=True) for k, v in self.obsm.items()},
            varm={k: np.array(v, copy=True) for k, v in self.varm.items()},
            obsp={k: v.copy() for k, v in self.obsp.items()},
            uns=copy.deepcopy(self.uns),
        )

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def n_obs(self) -> int:
        return self.X.shape[0]

    @property
    def n_vars(self) -> int:
        return self.X.shape[1]

    @property
    def shape(self):
        return self.X.shape

    @property
    def obs_names(self) -> pd.Index:
        return self.obs.index

    @property
    def var_names(self) -> pd.Index:
        return self.var.index

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_matrix(self, X: MatrixLike, **layers: MatrixLike) -> "MatrixStore":
        """Replace ``X`` (same shape), optionally adding layers."""
        if X.shape != self.X.shape:
            raise ShapeMismatchError(
                f"Replacement matrix has shape {X.shape}, expected {self.X.shape}"
            )
        merged = dict(self.layers)
        merged.update(layers)
        return replace(self, X=X, layers=merged)

    def with_obs(self, **columns: Any) -> "MatrixStore":
        """Return a store with additional or replaced cell metadata columns."""
        obs = self.obs.copy()
        for name, values in columns.items():
            obs[name] = values
        return replace(self, obs=obs)

    def with_var(self, **columns: Any) -> "MatrixStore":
        """Return a store with additional or replaced gene metadata columns."""
        var = self.var.copy()
        for name, values in columns.items():
            var[name] = values
        return replace(self, var=var)

    def with_obsm(self, **arrays: np.ndarray) -> "MatrixStore":
        merged = dict(self.obsm)
        merged.update(arrays)
        return replace(self, obsm=merged)

    def with_varm(self, **arrays: np.ndarray) -> "MatrixStore":
        merged = dict(self.varm)
        merged.update(arrays)
        return replace(self, varm=merged)

    def with_obsp(self, **graphs: sparse.csr_matrix) -> "MatrixStore":
        merged = dict(self.obsp)
        merged.update(graphs)
        return replace(self, obsp=merged)

    def with_uns(self, **entries: Any) -> "MatrixStore":
        merged = dict(self.uns)
        merged.update(entries)
        return replace(self, uns=merged)

    def subset_cells(self, mask: np.ndarray) -> "MatrixStore":
        """Keep cells where ``mask`` is True.

        Matrix rows, cell metadata, layers, embeddings and graphs are
        sliced together so a cell is either kept or removed everywhere.
        """
        mask = self._check_mask(mask, self.n_obs, "cell")
        if mask.all():
            return self
        idx = np.flatnonzero(mask)
        return replace(
            self,
            X=self.X[idx],
            obs=self.obs.iloc[idx].copy(),
            layers={k: v[idx] for k, v in self.layers.items()},
            obsm={k: v[idx] for k, v in self.obsm.items()},
            obsp={k: v[idx][:, idx].tocsr() for k, v in self.obsp.items()},
        )

    def subset_genes(self, mask: np.ndarray) -> "MatrixStore":
        """Keep genes where ``mask`` is True (columns and gene metadata)."""
        mask = self._check_mask(mask, self.n_vars, "gene")
        if mask.all():
            return self
        idx = np.flatnonzero(mask)
        return replace(
            self,
            X=self.X[:, idx],
            var=self.var.iloc[idx].copy(),
            layers={k: v[:, idx] for k, v in self.layers.items()},
            varm={k: v[idx] for k, v in self.varm.items()},
        )

    def filter_genes(self, min_cells: int = 3) -> "MatrixStore":
        """Drop genes detected (count > 0) in fewer than ``min_cells`` cells.

        The number of removed genes is recorded in ``uns['gene_filter']``.
        """
        n_cells = nonzero_per_col(self.X)
        keep = n_cells >= min_cells
        if not keep.any():
            raise ConfigurationError(
                f"No gene is detected in at least {min_cells} cells"
            )
        filtered = self.with_var(n_cells=n_cells).subset_genes(keep)
        return filtered.with_uns(
            gene_filter={
                "min_cells": int(min_cells),
                "n_removed": int((~keep).sum()),
                "n_kept": int(keep.sum()),
            }
        )

    def layer(self, key: Optional[str]) -> MatrixLike:
        """Return ``layers[key]``, or ``X`` when ``key`` is None or ``'X'``."""
        if key is None or key == "X":
            return self.X
        if key not in self.layers:
            raise ConfigurationError(
                f"Layer '{key}' not found (available: {sorted(self.layers)})"
            )
        return self.layers[key]

    @staticmethod
    def _check_mask(mask: np.ndarray, length: int, what: str) -> np.ndarray:
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (length,):
            raise ShapeMismatchError(
                f"{what} mask has shape {mask.shape}, expected ({length},)"
            )
        return mask
