"""
Sampling Module for GraphSAGE Training.

This module implements the structural sampling used to build training
batches:

1. Random walks on the graph (positive context nodes)
2. Walk-biased neighborhood sampling with uniform fallback (layer subgraphs)
3. Degree-biased negative sampling

The core idea: nodes that are reached by short random walks are structurally
close and should have similar embeddings.

Classes:
    RandomWalkSampler: node2vec-style biased random walks
    NeighborhoodSampler: k distinct nodes close to a node
    UniformSamplerFromRange: distinct uniform ids from a range
    DegreeBiasedNegativeSampler: Sample negative nodes for contrast

Example:
    >>> import numpy as np
    >>> from graphsage_train.walks import NeighborhoodSampler
    >>>
    >>> sampler = NeighborhoodSampler(graph, np.random.default_rng(42), k=10)
    >>> neighbors = sampler.sample_neighbors(node_id=0, sample_size=10)
"""

from .random_walk import RandomWalkSampler
from .uniform_sampler import UniformSamplerFromRange
from .neighborhood_sampler import NeighborhoodSampler
from .negative_sampler import DegreeBiasedNegativeSampler

__all__ = [
    'RandomWalkSampler',
    'UniformSamplerFromRange',
    'NeighborhoodSampler',
    'DegreeBiasedNegativeSampler',
]
