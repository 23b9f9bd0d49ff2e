"""
GraphSAGE Embedding Computation.

This module wires the layer stack into the computation of batch embeddings:

    Features of the innermost subgraph [N_L, F]
           │
           ▼
    Layer 0 aggregator over subgraph L-1
           │
           ▼
          ...
           │
           ▼
    Layer L-1 aggregator over subgraph 0   (one row per batch position)
           │
           ▼
    L2 Normalization
           │
           ▼
    Batch Embeddings [batch_size, D]

The L2 normalization is critical: the loss uses dot products as affinity,
which are only comparable across nodes for unit-length embeddings.
"""

import numpy as np
import torch
import torch.nn.functional as F
from typing import Callable, List, Optional

from ..data.graph import Graph
from ..walks import NeighborhoodSampler
from .layers import DTYPE, Layer, generate_weights, tensor_seed
from .subgraph import SubGraph, build_subgraphs


def _layer_seed(random_seed: int, layer_index: int) -> np.random.Generator:
    """Independent generator per (seed, layer)."""
    return np.random.default_rng([random_seed & 0xFFFFFFFFFFFFFFFF, layer_index])


def subgraphs_per_layer(
    graph: Graph,
    node_ids: np.ndarray,
    layers: List[Layer],
    random_seed: int,
    termination_flag=None
) -> List[SubGraph]:
    """
    Sample the neighborhood of a batch for every layer.

    The first subgraph belongs to the last (outermost) layer and has one
    batch position per entry of node_ids; every next subgraph expands the
    nodes of the previous one with the sample size of the next inner layer.

    Args:
        graph: Graph to sample from (a concurrent copy owned by the caller)
        node_ids: Global node ids of the batch
        layers: Layer stack, input layer first
        random_seed: Seed of this sampling round
        termination_flag: Polled before each layer is expanded

    Returns:
        Subgraphs, outermost first
    """
    neighborhood_functions = []
    for layer_index in reversed(range(len(layers))):
        layer = layers[layer_index]
        sampler = NeighborhoodSampler(graph, _layer_seed(random_seed, layer_index), layer.sample_size)

        def sample(node_id, sampler=sampler, sample_size=layer.sample_size):
            return sampler.sample_neighbors(node_id, sample_size)

        neighborhood_functions.append(_polling(sample, termination_flag))

    weight_function = None
    if graph.has_relationship_property():
        weight_function = graph.relationship_weight

    return build_subgraphs(node_ids, neighborhood_functions, weight_function)


def _polling(function, termination_flag):
    """Wrap a neighborhood function so that it checks the termination flag."""
    if termination_flag is None:
        return function

    def polled(node_id):
        termination_flag.assert_running()
        return function(node_id)

    return polled


FeatureFunction = Callable[[Graph, np.ndarray, torch.Tensor], torch.Tensor]


def single_label_features(graph: Graph, node_ids: np.ndarray, features: torch.Tensor) -> torch.Tensor:
    """Feature rows of node_ids, used as they are."""
    return features[torch.from_numpy(node_ids)]


class MultiLabelFeatureFunction:
    """
    Project the features of every node with the weights of its label.

    Nodes of different labels can carry different feature sets (zero
    padded to a common width); one trainable projection per label maps
    them into a shared input space of the first layer.

    Example:
        >>> weights = create_label_projection_weights(2, projected_dimension=8, feature_dimension=5)
        >>> feature_function = MultiLabelFeatureFunction(node_labels, weights)
        >>> feature_function(graph, np.array([0, 3]), features).shape
        torch.Size([2, 8])
    """

    def __init__(self, node_labels, projection_weights: List[torch.Tensor]):
        """
        Initialize multi-label feature function.

        Args:
            node_labels: Label index of every node [node_count]
            projection_weights: One [projected_dim, feature_dim] matrix per label
        """
        if not projection_weights:
            raise ValueError("At least one label projection is required")
        shapes = {tuple(weights.shape) for weights in projection_weights}
        if len(shapes) != 1:
            raise ValueError(f"Label projections must share one shape, got {sorted(shapes)}")

        self.node_labels = torch.as_tensor(np.asarray(node_labels), dtype=torch.long)
        if self.node_labels.numel() > 0 and (
            self.node_labels.min() < 0 or self.node_labels.max() >= len(projection_weights)
        ):
            raise ValueError(f"Node labels must lie in [0, {len(projection_weights)})")
        self.projection_weights = list(projection_weights)

    @property
    def output_dimension(self) -> int:
        return self.projection_weights[0].shape[0]

    def __call__(self, graph: Graph, node_ids: np.ndarray, features: torch.Tensor) -> torch.Tensor:
        ids = torch.from_numpy(node_ids)
        rows = features[ids]

        # [num_labels, num_nodes, projected_dim], then each node keeps its own label
        projected = torch.stack([rows @ weights.t() for weights in self.projection_weights])
        return projected[self.node_labels[ids], torch.arange(len(ids))]


def create_label_projection_weights(
    label_count: int,
    projected_dimension: int,
    feature_dimension: int,
    random_seed: Optional[int] = None
) -> List[torch.Tensor]:
    """Glorot-initialized projection matrix per label."""
    if label_count < 1:
        raise ValueError(f"Label count must be positive, got {label_count}")
    return [
        generate_weights(projected_dimension, feature_dimension, tensor_seed(random_seed, label))
        for label in range(label_count)
    ]


def batch_features(
    features: torch.Tensor,
    subgraphs: List[SubGraph],
    feature_function: Optional[FeatureFunction] = None,
    graph: Optional[Graph] = None
) -> torch.Tensor:
    """
    Features of the nodes of the innermost subgraph.

    Args:
        features: Features of all nodes [node_count, feature_dim]
        subgraphs: Subgraphs, outermost first
        feature_function: Maps (graph, node_ids, features) to layer input
                          rows (single_label_features if None)
        graph: Graph passed on to feature_function

    Returns:
        Feature rows per local id of the innermost subgraph
    """
    feature_function = feature_function or single_label_features
    return feature_function(graph, subgraphs[-1].original_node_ids, features)

def embeddings_computation_graph(
    subgraphs: List[SubGraph],
    layers: List[Layer],
    batched_features: torch.Tensor
) -> torch.Tensor:
    """
    Compute normalized embeddings of the batch positions.

    Args:
        subgraphs: Subgraphs, outermost first (one per layer)
        layers: Layer stack, input layer first
        batched_features: Output of batch_features

    Returns:
        L2-normalized embeddings [batch_size, output_dim]
    """
    if len(subgraphs) != len(layers):
        raise ValueError(f"Expected {len(layers)} subgraphs, got {len(subgraphs)}")

    representations = batched_features
    for layer_index, layer in enumerate(layers):
        subgraph = subgraphs[len(layers) - layer_index - 1]
        representations = layer.aggregator.aggregate(representations, subgraph)

    return F.normalize(representations, p=2, dim=1)


def to_feature_tensor(features, node_count: Optional[int] = None) -> torch.Tensor:
    """
    Convert node features to the tensor type used by the layers.

    Args:
        features: Array-like [node_count, feature_dim]
        node_count: Expected number of rows

    Returns:
        float64 tensor without gradient tracking
    """
    if isinstance(features, torch.Tensor):
        tensor = features.detach().to(dtype=DTYPE, device='cpu')
    else:
        tensor = torch.as_tensor(np.asarray(features), dtype=DTYPE)

    if tensor.dim() != 2:
        raise ValueError(f"Features must be two-dimensional, got shape {tuple(tensor.shape)}")
    if node_count is not None and tensor.shape[0] != node_count:
        raise ValueError(
            f"Features shape {tensor.shape[0]} != node count {node_count}"
        )

    return tensor
