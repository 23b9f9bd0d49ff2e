"""
Model Module for GraphSAGE.

This module implements the layer stack, the per-batch embedding
computation and the loss trained by the GraphSAGE trainer.

Components:
    - subgraph.py: Localized per-layer neighborhoods of a batch
    - layers.py: Layer configs, mean/pool aggregators and weight init
    - graphsage.py: Subgraph sampling, feature functions and the embedding
      computation graph
    - loss.py: Negative sampling loss with optional L2 penalty

Example:
    >>> from graphsage_train.model import LayerConfig, create_layer
    >>>
    >>> layers = [
    ...     create_layer(LayerConfig(rows=64, cols=7, sample_size=25, random_seed=42)),
    ...     create_layer(LayerConfig(rows=64, cols=64, sample_size=10, random_seed=43)),
    ... ]
"""

from .subgraph import SubGraph, build_subgraph, build_subgraphs
from .layers import LayerConfig, Layer, MeanAggregator, PoolAggregator, create_layer
from .graphsage import (
    subgraphs_per_layer,
    embeddings_computation_graph,
    single_label_features,
    MultiLabelFeatureFunction,
    create_label_projection_weights,
)
from .loss import GraphSageLoss, BatchLossFunction, l2_penalty

__all__ = [
    'SubGraph',
    'build_subgraph',
    'build_subgraphs',
    'LayerConfig',
    'Layer',
    'MeanAggregator',
    'PoolAggregator',
    'create_layer',
    'subgraphs_per_layer',
    'embeddings_computation_graph',
    'single_label_features',
    'MultiLabelFeatureFunction',
    'create_label_projection_weights',
    'GraphSageLoss',
    'BatchLossFunction',
    'l2_penalty',
]
