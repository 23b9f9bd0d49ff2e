"""
Batch Sampler Module.

This module partitions the nodes of a graph into training batches and
extends each batch with one positive and one negative sample per target:

    extended batch = [targets | positives | negatives]

Element i, b + i and 2b + i of an extended batch of 3b ids form the
(target, positive, negative) triple of target i.

Positives are the end of a short random walk from the target, so they
are structurally close; negatives are drawn by degree^0.75.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import numpy as np

from ..data.graph import Graph
from ..walks import DegreeBiasedNegativeSampler, RandomWalkSampler
from .progress import ProgressTracker
from .termination import TerminationFlag, map_or_cancel


def _batch_random(random_seed: int, batch_start: int) -> np.random.Generator:
    """Independent generator per (seed, batch)."""
    return np.random.default_rng([random_seed & 0xFFFFFFFFFFFFFFFF, batch_start])


class BatchSampler:
    """
    Build the extended batches of an epoch.

    Example:
        >>> sampler = BatchSampler(graph, ProgressTracker.empty(), TerminationFlag(), concurrency=4)
        >>> batches = sampler.extended_batches(batch_size=100, search_depth=5, random_seed=42)
        >>> len(batches[0]) == 3 * 100
        True
    """

    def __init__(
        self,
        graph: Graph,
        progress_tracker: Optional[ProgressTracker] = None,
        termination_flag: Optional[TerminationFlag] = None,
        concurrency: int = 1
    ):
        """
        Initialize batch sampler.

        Args:
            graph: Graph to sample from
            progress_tracker: Receives one progress unit per batch
            termination_flag: Polled once per batch
            concurrency: Number of worker threads
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be positive, got {concurrency}")

        self.graph = graph
        self.progress_tracker = progress_tracker or ProgressTracker.empty()
        self.termination_flag = termination_flag or TerminationFlag()
        self.concurrency = concurrency
        self.negative_sampler = DegreeBiasedNegativeSampler(graph)

    def batch_starts(self, batch_size: int) -> List[int]:
        """First node id of every batch."""
        return list(range(0, self.graph.node_count(), batch_size))

    def extended_batches(self, batch_size: int, search_depth: int, random_seed: int) -> List[np.ndarray]:
        """
        Partition the nodes into batches and add positive and negative samples.

        Args:
            batch_size: Targets per batch (the last batch may be smaller)
            search_depth: Maximum random walk depth of the positive samples
            random_seed: Seed of this round of sampling

        Returns:
            Extended batches in node order, each of length 3 * batch targets
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        if search_depth < 1:
            raise ValueError(f"Search depth must be positive, got {search_depth}")

        node_count = self.graph.node_count()

        def build(batch_start: int) -> np.ndarray:
            self.termination_flag.assert_running()
            targets = np.arange(batch_start, min(batch_start + batch_size, node_count), dtype=np.int64)
            extended = self._extend(
                self.graph.concurrent_copy(),
                targets,
                search_depth,
                _batch_random(random_seed, batch_start)
            )
            self.progress_tracker.log_progress(1)
            return extended

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            return map_or_cancel(executor, build, self.batch_starts(batch_size))

    def _extend(
        self,
        graph: Graph,
        targets: np.ndarray,
        search_depth: int,
        random: np.random.Generator
    ) -> np.ndarray:
        walker = RandomWalkSampler(graph, walk_length=search_depth + 1, random=random)

        positives = np.empty(len(targets), dtype=np.int64)
        for i, node_id in enumerate(targets):
            depth = int(random.integers(1, search_depth + 1))
            # a walk that ends early returns its last node, the start for dead ends
            positives[i] = walker.walk(int(node_id), walk_length=depth + 1)[-1]

        negatives = self.negative_sampler.sample(len(targets), random)

        return np.concatenate([targets, positives, negatives])
