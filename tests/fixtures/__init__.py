"""Test fixtures for scpipe.

Provides synthetic count-matrix generators and test utilities.
"""

from .mock_data import (
    create_count_matrix,
    create_mock_store,
    create_two_cluster_counts,
    create_blob_embedding,
    create_marker_store,
)

__all__ = [
    "create_count_matrix",
    "create_mock_store",
    "create_two_cluster_counts",
    "create_blob_embedding",
    "create_marker_store",
]
