"""I/O utilities for scpipe.

Provides run records (JSON, YAML), count-matrix loading and table writing.
"""

from .logging import log_json, log_yaml, to_builtin
from .csv import (
    ensure_output_dir,
    load_count_matrix,
    load_h5ad,
    load_store,
    write_dataframe,
)

__all__ = [
    # Run records
    "log_json",
    "log_yaml",
    "to_builtin",
    # Tables
    "ensure_output_dir",
    "load_count_matrix",
    "load_h5ad",
    "load_store",
    "write_dataframe",
]
