"""Louvain modularity optimization on a weighted undirected graph.

Works directly on a symmetric ``scipy.sparse`` adjacency matrix:

1. Local moves. Nodes are visited in a seeded random order; each node
   moves to the neighboring community with the largest modularity gain,
   and only when the gain is strictly positive. Sweeps repeat until no
   node moves.
2. Aggregation. Communities become super-nodes (``P.T @ A @ P``), with
   internal weight kept on the diagonal.

The two phases repeat until a local-move phase makes no change.
"""

from typing import Optional, Tuple

import numpy as np
from scipy import sparse

from ...errors import NumericDegeneracyError

GAIN_TOLERANCE = 1e-12


def _membership(labels: np.ndarray, n_communities: int) -> sparse.csr_matrix:
    n = len(labels)
    return sparse.csr_matrix(
        (np.ones(n), (np.arange(n), labels)), shape=(n, n_communities)
    )


def modularity(
    adjacency: sparse.spmatrix,
    labels: np.ndarray,
    resolution: float = 1.0,
) -> float:
    """Modularity ``sum_c [in_c / 2m - resolution * (tot_c / 2m)^2]``.

    Parameters
    ----------
    adjacency : sparse.spmatrix
        Symmetric weighted adjacency
    labels : np.ndarray
        Community index per node
    resolution : float
        Resolution parameter

    Returns
    -------
    float
        Modularity (0.0 for a graph without edges)
    """
    adjacency = sparse.csr_matrix(adjacency, dtype=np.float64)
    two_m = adjacency.sum()
    if two_m <= 0:
        return 0.0
    _, labels = np.unique(labels, return_inverse=True)
    membership = _membership(labels, labels.max() + 1)
    collapsed = (membership.T @ adjacency @ membership).toarray()
    internal = np.diag(collapsed)
    total = collapsed.sum(axis=1)
    return float(internal.sum() / two_m - resolution * np.sum((total / two_m) ** 2))


def _local_moves(
    graph: sparse.csr_matrix,
    resolution: float,
    two_m: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, bool]:
    """One local-move phase. Returns (community per node, any node moved)."""
    n = graph.shape[0]
    indptr, indices, weights = graph.indptr, graph.indices, graph.data
    degrees = np.asarray(graph.sum(axis=1)).ravel()
    community = np.arange(n)
    totals = degrees.copy()
    moved_any = False

    while True:
        n_moved = 0
        for node in rng.permutation(n):
            k_i = degrees[node]
            if k_i == 0:
                continue
            current = community[node]

            links = {}
            for pos in range(indptr[node], indptr[node + 1]):
                neighbor = indices[pos]
                if neighbor == node:
                    continue
                c = community[neighbor]
                links[c] = links.get(c, 0.0) + weights[pos]

            totals[current] -= k_i
            scale = resolution * k_i / two_m
            best = current
            best_gain = links.get(current, 0.0) - scale * totals[current]
            for c, w_ic in links.items():
                gain = w_ic - scale * totals[c]
                if gain > best_gain + GAIN_TOLERANCE:
                    best, best_gain = c, gain
            totals[best] += k_i

            if best != current:
                community[node] = best
                n_moved += 1
        if n_moved == 0:
            break
        moved_any = True
    return community, moved_any


def louvain(
    adjacency: sparse.spmatrix,
    resolution: float = 1.0,
    rng: Optional[np.random.Generator] = None,
    max_levels: int = 100,
) -> np.ndarray:
    """Partition a graph by Louvain modularity optimization.

    Parameters
    ----------
    adjacency : sparse.spmatrix
        Symmetric non-negative weighted adjacency (n x n)
    resolution : float
        Resolution parameter
    rng : np.random.Generator, optional
        Source of the node visiting order
    max_levels : int
        Upper bound on aggregation levels

    Returns
    -------
    np.ndarray
        Community index per node (``0..c-1``, unordered)
    """
    rng = rng if rng is not None else np.random.default_rng(0)
    graph = sparse.csr_matrix(adjacency, dtype=np.float64)
    graph.sum_duplicates()
    graph.sort_indices()
    if (graph.data < 0).any():
        raise NumericDegeneracyError("Graph has negative edge weights")
    if abs(graph - graph.T).sum() > 1e-8 * max(graph.sum(), 1.0):
        raise NumericDegeneracyError("Graph adjacency must be symmetric")

    n = graph.shape[0]
    assignment = np.arange(n)
    two_m = graph.sum()
    if two_m <= 0:
        return assignment

    for _ in range(max_levels):
        community, moved = _local_moves(graph, resolution, two_m, rng)
        if not moved:
            break
        _, community = np.unique(community, return_inverse=True)
        assignment = community[assignment]
        n_communities = community.max() + 1
        membership = _membership(community, n_communities)
        graph = (membership.T @ graph @ membership).tocsr()
        graph.sort_indices()
    _, assignment = np.unique(assignment, return_inverse=True)
    return assignment


def order_by_size(labels: np.ndarray) -> np.ndarray:
    """Renumber communities ``0..c-1`` by descending size.

    Ties go to the community whose first member appears first.
    """
    uniques, first, inverse, counts = np.unique(
        labels, return_index=True, return_inverse=True, return_counts=True
    )
    order = np.lexsort((first, -counts))
    rank = np.empty(len(uniques), dtype=np.int64)
    rank[order] = np.arange(len(uniques))
    return rank[inverse.ravel()]
