"""Matrix store: the cell-by-gene matrix and its aligned metadata."""

from .matrix import MatrixStore, make_unique

__all__ = ["MatrixStore", "make_unique"]
