"""
SubGraph Module.

A SubGraph is the sampled neighborhood of one batch for one layer, with
global node ids re-indexed to a dense local id space:

    batch position i  --self_adjacency-->  local id of the node itself
    batch position i  --adjacency------->  local ids of its sampled neighbors
    local id l        --original_node_ids->  global node id

Subgraphs are chained: the original_node_ids of one subgraph are the batch of
the next (inner) one, so the representations computed for the inner subgraph
line up with the local ids of the outer subgraph.
"""

import numpy as np
import torch
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


NeighborhoodFunction = Callable[[int], np.ndarray]


class LocalIdMap:
    """Assign dense local ids to global node ids in first-seen order."""

    def __init__(self):
        self._to_mapped: Dict[int, int] = {}
        self._original_ids: List[int] = []

    def to_mapped(self, node_id: int) -> int:
        """Local id of node_id, assigning the next free one if unseen."""
        mapped = self._to_mapped.get(node_id)
        if mapped is None:
            mapped = len(self._original_ids)
            self._to_mapped[node_id] = mapped
            self._original_ids.append(node_id)
        return mapped

    def original_ids(self) -> np.ndarray:
        return np.asarray(self._original_ids, dtype=np.int64)

    def __len__(self) -> int:
        return len(self._original_ids)


@dataclass(eq=False)
class SubGraph:
    """
    Localized neighborhood of a batch for one layer.

    Attributes:
        adjacency: Per batch position, local ids of the sampled neighbors
        self_adjacency: Per batch position, local id of the node itself
        original_node_ids: Global node id of every local id
        relationship_weights: Per batch position, weights of the sampled
                              relationships (None for unweighted graphs)
    """
    adjacency: List[np.ndarray]
    self_adjacency: np.ndarray
    original_node_ids: np.ndarray
    relationship_weights: Optional[List[np.ndarray]] = None

    neighbor_sources: torch.Tensor = field(init=False, repr=False)
    neighbor_index: torch.Tensor = field(init=False, repr=False)
    neighbor_weights: Optional[torch.Tensor] = field(init=False, repr=False)

    def __post_init__(self):
        # Flattened (source row, batch position) pairs, built once so
        # concurrent readers never race on lazy state.
        sizes = [len(neighbors) for neighbors in self.adjacency]
        if sum(sizes) > 0:
            sources = np.concatenate(self.adjacency)
        else:
            sources = np.zeros(0, dtype=np.int64)
        index = np.repeat(np.arange(len(self.adjacency), dtype=np.int64), sizes)

        self.neighbor_sources = torch.from_numpy(sources.astype(np.int64))
        self.neighbor_index = torch.from_numpy(index)

        if self.relationship_weights is None:
            self.neighbor_weights = None
        elif sum(sizes) > 0:
            self.neighbor_weights = torch.from_numpy(
                np.concatenate(self.relationship_weights).astype(np.float64)
            )
        else:
            self.neighbor_weights = torch.zeros(0, dtype=torch.float64)

    def batch_size(self) -> int:
        """Number of batch positions."""
        return len(self.adjacency)

    def node_count(self) -> int:
        """Number of distinct local nodes."""
        return len(self.original_node_ids)

    def is_weighted(self) -> bool:
        return self.relationship_weights is not None


def build_subgraph(
    batch_node_ids: np.ndarray,
    neighborhood_function: NeighborhoodFunction,
    relationship_weight_function: Optional[Callable[[int, int], float]] = None
) -> SubGraph:
    """
    Build the subgraph of one batch.

    Args:
        batch_node_ids: Global ids of the batch positions
        neighborhood_function: Maps a global node id to sampled neighbor ids
        relationship_weight_function: Weight of (node, neighbor); None for
                                      unweighted graphs

    Returns:
        SubGraph with batch nodes mapped first, then newly seen neighbors
    """
    id_map = LocalIdMap()
    adjacency = []
    weights = [] if relationship_weight_function is not None else None
    self_adjacency = np.zeros(len(batch_node_ids), dtype=np.int64)

    for offset, node_id in enumerate(np.asarray(batch_node_ids).tolist()):
        self_adjacency[offset] = id_map.to_mapped(node_id)

        neighbors = neighborhood_function(node_id).tolist()
        adjacency.append(np.asarray([id_map.to_mapped(n) for n in neighbors], dtype=np.int64))

        if weights is not None:
            weights.append(np.asarray(
                [relationship_weight_function(node_id, n) for n in neighbors],
                dtype=np.float64
            ))

    return SubGraph(adjacency, self_adjacency, id_map.original_ids(), weights)


def build_subgraphs(
    batch_node_ids: np.ndarray,
    neighborhood_functions: List[NeighborhoodFunction],
    relationship_weight_function: Optional[Callable[[int, int], float]] = None
) -> List[SubGraph]:
    """
    Build chained subgraphs, one per neighborhood function.

    The first function is applied to the batch, every next one to the
    original_node_ids of the previous subgraph.

    Returns:
        Subgraphs in the order of neighborhood_functions
    """
    subgraphs = []
    previous_nodes = np.asarray(batch_node_ids, dtype=np.int64)

    for neighborhood_function in neighborhood_functions:
        subgraph = build_subgraph(previous_nodes, neighborhood_function, relationship_weight_function)
        subgraphs.append(subgraph)
        previous_nodes = subgraph.original_node_ids

    return subgraphs
