"""
Graph Module.

This module provides the read-only graph view used by the trainer. The graph
is stored in CSR form (offsets + targets + optional relationship weights) so
neighbor lookups are O(1) slices into numpy arrays.

Graphs can be built from a PyTorch Geometric style edge_index tensor or from
a NetworkX graph. Workers never share a traversal handle: each one calls
concurrent_copy() and gets its own view over the same immutable arrays.
"""

import numpy as np
import torch
import networkx as nx
from torch_geometric.utils import to_undirected
from typing import Any, Dict, List, Optional


class NegativeRelationshipWeightError(ValueError):
    """Raised when a relationship carries a negative weight."""

    def __init__(self, source: int, target: int, weight: float):
        self.source = source
        self.target = target
        self.weight = weight
        super().__init__(
            f"Found an invalid relationship weight between nodes `{source}` and `{target}` "
            f"with the property value of `{weight}`. "
            f"GraphSAGE only supports non-negative weights."
        )


class Graph:
    """
    Immutable CSR adjacency with optional relationship weights.

    Example:
        >>> import torch
        >>> from graphsage_train.data import Graph
        >>>
        >>> # Path 0 - 1 - 2, stored in both directions
        >>> edge_index = torch.tensor([[0, 1], [1, 2]])
        >>> graph = Graph.from_edge_index(edge_index, num_nodes=3)
        >>> graph.degree(1)
        2
    """

    def __init__(
        self,
        offsets: np.ndarray,
        targets: np.ndarray,
        weights: Optional[np.ndarray] = None,
        original_ids: Optional[List[Any]] = None
    ):
        """
        Initialize graph from CSR arrays.

        Args:
            offsets: Array of length node_count + 1, neighbors of node v are
                     targets[offsets[v]:offsets[v + 1]]
            targets: Neighbor node ids
            weights: Optional relationship weights aligned with targets
            original_ids: Optional ids of the nodes in the source graph
        """
        self.offsets = np.asarray(offsets, dtype=np.int64)
        self.targets = np.asarray(targets, dtype=np.int64)
        self.weights = None if weights is None else np.asarray(weights, dtype=np.float64)
        self.original_ids = original_ids

        if self.offsets.ndim != 1 or len(self.offsets) == 0:
            raise ValueError("Offsets must be a non-empty one-dimensional array")
        if self.offsets[-1] != len(self.targets):
            raise ValueError(
                f"Offsets end at {self.offsets[-1]} but there are {len(self.targets)} targets"
            )
        if self.weights is not None and len(self.weights) != len(self.targets):
            raise ValueError("Relationship weights must align with targets")

    @classmethod
    def from_edge_index(
        cls,
        edge_index: torch.Tensor,
        num_nodes: int,
        edge_weight: Optional[torch.Tensor] = None,
        undirected: bool = True
    ) -> 'Graph':
        """
        Build a graph from an edge_index tensor.

        Args:
            edge_index: Edge indices [2, num_edges]
            num_nodes: Total number of nodes
            edge_weight: Optional relationship weights [num_edges]
            undirected: Whether to add the reverse of every edge

        Returns:
            Graph instance

        Raises:
            NegativeRelationshipWeightError: If an edge weight is negative
        """
        edge_index = torch.as_tensor(edge_index).detach().cpu().long()
        if edge_weight is not None:
            edge_weight = torch.as_tensor(edge_weight).detach().cpu().double()
            # merging both directions below would hide a negative weight
            negative = torch.nonzero(edge_weight < 0).flatten()
            if negative.numel() > 0:
                idx = int(negative[0])
                raise NegativeRelationshipWeightError(
                    int(edge_index[0, idx]), int(edge_index[1, idx]), float(edge_weight[idx])
                )

        if undirected and edge_index.numel() > 0:
            if edge_weight is None:
                edge_index = to_undirected(edge_index, num_nodes=num_nodes)
            else:
                edge_index, edge_weight = to_undirected(
                    edge_index, edge_weight, num_nodes=num_nodes, reduce='max'
                )

        src = edge_index[0].numpy() if edge_index.numel() > 0 else np.zeros(0, dtype=np.int64)
        dst = edge_index[1].numpy() if edge_index.numel() > 0 else np.zeros(0, dtype=np.int64)
        weights = None if edge_weight is None else edge_weight.numpy()

        return cls._from_arrays(src, dst, num_nodes, weights)

    @classmethod
    def from_networkx(cls, graph: nx.Graph, weight: Optional[str] = None) -> 'Graph':
        """
        Build a graph from a NetworkX graph.

        Nodes are re-indexed from 0 to N-1 in iteration order; the original
        node keys are kept in original_ids.

        Args:
            graph: NetworkX graph (directed or undirected)
            weight: Edge attribute to use as relationship weight (None = unweighted)

        Returns:
            Graph instance
        """
        node_keys = list(graph.nodes())
        mapping = {key: idx for idx, key in enumerate(node_keys)}

        src, dst, weights = [], [], []
        for u, v, data in graph.edges(data=True):
            w = float(data.get(weight, 1.0)) if weight is not None else 1.0
            src.append(mapping[u])
            dst.append(mapping[v])
            weights.append(w)
            if not graph.is_directed():
                src.append(mapping[v])
                dst.append(mapping[u])
                weights.append(w)

        return cls._from_arrays(
            np.asarray(src, dtype=np.int64),
            np.asarray(dst, dtype=np.int64),
            len(node_keys),
            np.asarray(weights, dtype=np.float64) if weight is not None else None,
            original_ids=node_keys
        )

    @classmethod
    def _from_arrays(
        cls,
        src: np.ndarray,
        dst: np.ndarray,
        num_nodes: int,
        weights: Optional[np.ndarray],
        original_ids: Optional[List[Any]] = None
    ) -> 'Graph':
        """Sort edges by source and compress them into CSR arrays."""
        if len(src) > 0 and (src.min() < 0 or max(src.max(), dst.max()) >= num_nodes):
            raise ValueError(f"Edge endpoints must lie in [0, {num_nodes})")

        order = np.lexsort((dst, src))
        src, dst = src[order], dst[order]
        if weights is not None:
            weights = weights[order]

        counts = np.bincount(src, minlength=num_nodes)
        offsets = np.zeros(num_nodes + 1, dtype=np.int64)
        np.cumsum(counts, out=offsets[1:])

        return cls(offsets, dst, weights, original_ids)

    def node_count(self) -> int:
        """Total number of nodes."""
        return len(self.offsets) - 1

    def relationship_count(self) -> int:
        """Total number of stored (directed) relationships."""
        return len(self.targets)

    def degree(self, node_id: int) -> int:
        """Number of relationships leaving node_id."""
        return int(self.offsets[node_id + 1] - self.offsets[node_id])

    def degrees(self) -> np.ndarray:
        """Degree of every node."""
        return np.diff(self.offsets)

    def has_relationship_property(self) -> bool:
        """Whether relationships carry weights."""
        return self.weights is not None

    def neighbors(self, node_id: int) -> np.ndarray:
        """Neighbor ids of node_id (sorted, may contain duplicates)."""
        return self.targets[self.offsets[node_id]:self.offsets[node_id + 1]]

    def neighbors_with_weights(self, node_id: int):
        """
        Neighbor ids and relationship weights of node_id.

        Unweighted graphs report a weight of 1.0 for every relationship.

        Raises:
            NegativeRelationshipWeightError: If a weight is negative
        """
        start, end = self.offsets[node_id], self.offsets[node_id + 1]
        neighbors = self.targets[start:end]

        if self.weights is None:
            return neighbors, np.ones(len(neighbors), dtype=np.float64)

        weights = self.weights[start:end]
        negative = np.flatnonzero(weights < 0)
        if len(negative) > 0:
            idx = negative[0]
            raise NegativeRelationshipWeightError(
                int(node_id), int(neighbors[idx]), float(weights[idx])
            )
        return neighbors, weights

    def relationship_weight(self, source: int, target: int, fallback: float = 1.0) -> float:
        """
        Weight of the relationship source -> target.

        Args:
            source: Source node id
            target: Target node id
            fallback: Value returned when the graph is unweighted or the
                      relationship does not exist

        Returns:
            Relationship weight
        """
        if self.weights is None:
            return fallback

        start, end = self.offsets[source], self.offsets[source + 1]
        pos = start + np.searchsorted(self.targets[start:end], target)
        if pos >= end or self.targets[pos] != target:
            return fallback

        weight = float(self.weights[pos])
        if weight < 0:
            raise NegativeRelationshipWeightError(int(source), int(target), weight)
        return weight

    def concurrent_copy(self) -> 'Graph':
        """
        Get a traversal handle for use on another thread.

        The CSR arrays are never mutated, so the copy shares them.
        """
        return Graph(self.offsets, self.targets, self.weights, self.original_ids)

    def get_statistics(self) -> Dict:
        """
        Get basic statistics about the graph.

        Returns:
            Dictionary with graph statistics
        """
        degrees = self.degrees()
        return {
            'num_nodes': self.node_count(),
            'num_relationships': self.relationship_count(),
            'weighted': self.has_relationship_property(),
            'avg_degree': float(degrees.mean()) if len(degrees) else 0.0,
            'max_degree': int(degrees.max()) if len(degrees) else 0,
            'isolated_nodes': int((degrees == 0).sum()),
        }


def validate_relationship_weights(graph: Graph) -> None:
    """
    Check that every relationship weight of the graph is non-negative.

    Args:
        graph: Graph to validate

    Raises:
        NegativeRelationshipWeightError: For the first negative weight found
    """
    if not graph.has_relationship_property():
        return

    negative = np.flatnonzero(graph.weights < 0)
    if len(negative) == 0:
        return

    idx = int(negative[0])
    source = int(np.searchsorted(graph.offsets, idx, side='right') - 1)
    raise NegativeRelationshipWeightError(
        source, int(graph.targets[idx]), float(graph.weights[idx])
    )
