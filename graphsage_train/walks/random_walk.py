"""
Random Walk Sampler Module.

Second-order (node2vec style) random walks over a Graph. The walks are used
to find structurally close nodes: positive context nodes for the loss and
walk-biased neighbor samples for the layers.

Key Concept:
    At each step after the first, the weight of moving to neighbor x of the
    current node depends on the previous node t:
    - x == t (return):              1 / return_factor
    - x is a neighbor of t:         1
    - otherwise (explore outward):  1 / in_out_factor
    Weighted graphs multiply these by the relationship weight.
"""

import numpy as np
from typing import Optional

from ..data.graph import Graph


class RandomWalkSampler:
    """
    Biased random walk generator on a Graph.

    Dead ends (nodes without neighbors) stop the walk early.

    Example:
        >>> import numpy as np
        >>> walker = RandomWalkSampler(
        ...     graph,
        ...     walk_length=10,
        ...     return_factor=1.0,
        ...     in_out_factor=1.0,
        ...     random=np.random.default_rng(42)
        ... )
        >>> walk = walker.walk(0)
        >>> walk[0]
        0
    """

    def __init__(
        self,
        graph: Graph,
        walk_length: int,
        return_factor: float = 1.0,
        in_out_factor: float = 1.0,
        random: Optional[np.random.Generator] = None
    ):
        """
        Initialize random walk sampler.

        Args:
            graph: Graph to walk on
            walk_length: Maximum number of nodes in a walk (including start)
            return_factor: node2vec p, 1/p is the weight of going back
            in_out_factor: node2vec q, 1/q is the weight of moving outward
            random: Random source (None for an unseeded generator)
        """
        if walk_length < 1:
            raise ValueError(f"Walk length must be positive, got {walk_length}")
        if return_factor <= 0 or in_out_factor <= 0:
            raise ValueError("Return and in-out factors must be positive")

        self.graph = graph
        self.walk_length = walk_length
        self.return_factor = return_factor
        self.in_out_factor = in_out_factor
        self.random = random if random is not None else np.random.default_rng()

    def walk(self, start_node: int, walk_length: Optional[int] = None) -> np.ndarray:
        """
        Generate one random walk starting from start_node.

        Args:
            start_node: Node to start the walk from
            walk_length: Override of the configured walk length

        Returns:
            Array of node ids visited (including start)
        """
        length = self.walk_length if walk_length is None else walk_length
        walk = [int(start_node)]
        prev = None
        current = int(start_node)

        for _ in range(length - 1):
            neighbors, weights = self.graph.neighbors_with_weights(current)
            if len(neighbors) == 0:
                break

            if prev is not None:
                weights = weights * self._bias(prev, neighbors)

            next_node = self._choose(neighbors, weights)
            prev, current = current, next_node
            walk.append(current)

        return np.asarray(walk, dtype=np.int64)

    def _bias(self, prev: int, neighbors: np.ndarray) -> np.ndarray:
        """Second-order bias of moving to each neighbor given the previous node."""
        prev_neighbors = self.graph.neighbors(prev)
        bias = np.full(len(neighbors), 1.0 / self.in_out_factor)
        bias[np.isin(neighbors, prev_neighbors)] = 1.0
        bias[neighbors == prev] = 1.0 / self.return_factor
        return bias

    def _choose(self, neighbors: np.ndarray, weights: np.ndarray) -> int:
        """Pick a neighbor proportionally to weights (uniform if all zero)."""
        total = weights.sum()
        if total <= 0:
            return int(neighbors[self.random.integers(len(neighbors))])

        cumulative = np.cumsum(weights)
        idx = int(np.searchsorted(cumulative, self.random.random() * total, side='right'))
        return int(neighbors[min(idx, len(neighbors) - 1)])
