"""
Neighborhood Sampler Module.

Samples k distinct nodes close to a given node. Candidates are taken from a
random walk first, so structurally close nodes are preferred; if the walk did
not visit enough valid candidates, the rest is filled with uniform samples
from the valid range.
"""

import numpy as np
from typing import Callable, Optional

from ..data.graph import Graph
from .random_walk import RandomWalkSampler
from .uniform_sampler import UniformSamplerFromRange


# Walks are longer than k to make up for duplicate and invalid visits.
WALK_LENGTH_MULTIPLIER = 3
# Prefer deeper walks.
RETURN_FACTOR = 0.4
IN_OUT_FACTOR = 0.6


class NeighborhoodSampler:
    """
    Walk-biased sampler of k distinct valid nodes.

    Example:
        >>> import numpy as np
        >>> sampler = NeighborhoodSampler(graph, np.random.default_rng(7), k=5)
        >>> samples = sampler.sample(
        ...     node_id=0,
        ...     lower_bound_on_valid_samples_in_range=graph.node_count() - 1,
        ...     number_of_samples=5,
        ...     is_invalid_sample=lambda node: node == 0
        ... )
        >>> len(samples)
        5
    """

    def __init__(self, graph: Graph, random: np.random.Generator, k: int):
        """
        Initialize neighborhood sampler.

        Args:
            graph: Graph to sample from
            random: Random source, shared by the walk and the uniform fallback
            k: Expected number of samples per call (sets the walk length)
        """
        if k <= 0:
            raise ValueError(f"Number of samples must be positive, got {k}")

        self.graph = graph
        self.k = k
        self.random_walk_sampler = RandomWalkSampler(
            graph,
            walk_length=WALK_LENGTH_MULTIPLIER * k,
            return_factor=RETURN_FACTOR,
            in_out_factor=IN_OUT_FACTOR,
            random=random
        )
        self.uniform_sampler = UniformSamplerFromRange(random)
        self.exclusive_max = graph.node_count()

    def sample(
        self,
        node_id: int,
        lower_bound_on_valid_samples_in_range: int,
        number_of_samples: int,
        is_invalid_sample: Callable[[int], bool],
        candidates: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Sample distinct valid nodes close to node_id.

        Args:
            node_id: Node to sample around
            lower_bound_on_valid_samples_in_range: Known minimum number of valid
                candidates in the fallback range
            number_of_samples: Number of nodes requested
            is_invalid_sample: Predicate rejecting nodes
            candidates: Optional fallback range; when given, uniform samples are
                        drawn from these ids instead of [0, node_count)

        Returns:
            Array of distinct valid node ids, exactly number_of_samples long
            whenever the range holds that many valid nodes
        """
        if number_of_samples <= 0:
            return np.zeros(0, dtype=np.int64)

        walk = self.random_walk_sampler.walk(node_id)

        sampled = set()
        samples = np.zeros(number_of_samples, dtype=np.int64)
        added = 0
        for node in walk[1:].tolist():
            if node in sampled or is_invalid_sample(node):
                continue

            sampled.add(node)
            samples[added] = node
            added += 1

            if added == number_of_samples:
                return samples

        # Fill up with uniform samples if the walk did not contain enough
        # unique valid candidates.
        if candidates is None:
            uniform = self.uniform_sampler.sample(
                0,
                self.exclusive_max,
                lower_bound_on_valid_samples_in_range - added,
                number_of_samples - added,
                lambda node: node in sampled or is_invalid_sample(node)
            )
        else:
            positions = self.uniform_sampler.sample(
                0,
                len(candidates),
                lower_bound_on_valid_samples_in_range - added,
                number_of_samples - added,
                lambda pos: int(candidates[pos]) in sampled or is_invalid_sample(int(candidates[pos]))
            )
            uniform = candidates[positions]

        samples[added:added + len(uniform)] = uniform
        return samples[:added + len(uniform)]

    def sample_neighbors(self, node_id: int, sample_size: int) -> np.ndarray:
        """
        Sample at most sample_size distinct neighbors of node_id.

        Nodes with no more than sample_size distinct neighbors return all of
        them. Self loops are never sampled.

        Args:
            node_id: Node whose neighborhood is sampled
            sample_size: Maximum number of neighbors

        Returns:
            Array of neighbor ids
        """
        neighbors, _ = self.graph.neighbors_with_weights(node_id)
        neighbors = np.unique(neighbors)
        neighbors = neighbors[neighbors != node_id]

        if len(neighbors) <= sample_size:
            return neighbors

        neighbor_set = set(neighbors.tolist())
        return self.sample(
            node_id,
            len(neighbors),
            sample_size,
            lambda node: node == node_id or node not in neighbor_set,
            candidates=neighbors
        )
