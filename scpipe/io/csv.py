"""Tabular I/O at the CLI boundary.

Reads a count matrix from a dense CSV or an ``.h5ad`` file into a
:class:`MatrixStore`, and writes result tables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from ..core.store import MatrixStore

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at ``path`` if needed and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def load_count_matrix(path: PathLike, genes_as_rows: bool = False) -> MatrixStore:
    """Read a dense count CSV into a store.

    The first column holds row identifiers and the header holds column
    identifiers.

    Parameters
    ----------
    path : PathLike
        CSV file
    genes_as_rows : bool
        Set when rows are genes and columns are cells (transposed on load)

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If a value is not numeric
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Count matrix not found: {csv_path}")
    df = pd.read_csv(csv_path, index_col=0)
    if genes_as_rows:
        df = df.T

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(
            f"Non-numeric columns in {csv_path}: {non_numeric[:5]}"
        )
    logger.info("Loaded %d cells x %d genes from %s", df.shape[0], df.shape[1], csv_path)
    return MatrixStore.from_counts(
        df.to_numpy(dtype=np.float64),
        cell_ids=[str(c) for c in df.index],
        gene_ids=[str(g) for g in df.columns],
    )


def load_h5ad(path: PathLike) -> MatrixStore:
    """Read ``X`` of an ``.h5ad`` file (raw counts) into a store."""
    import anndata as ad

    h5ad_path = Path(path)
    if not h5ad_path.exists():
        raise FileNotFoundError(f"AnnData file not found: {h5ad_path}")
    adata = ad.read_h5ad(h5ad_path)
    logger.info("Loaded %d cells x %d genes from %s", adata.n_obs, adata.n_vars, h5ad_path)
    return MatrixStore.from_anndata(adata)


def load_store(path: PathLike, genes_as_rows: bool = False) -> MatrixStore:
    """Dispatch on the file suffix (``.h5ad`` or CSV)."""
    if Path(path).suffix.lower() == ".h5ad":
        return load_h5ad(path)
    return load_count_matrix(path, genes_as_rows=genes_as_rows)


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write ``df`` as CSV, creating the parent directory."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path
