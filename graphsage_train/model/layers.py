"""
GraphSAGE Layers and Aggregators.

This module provides the layer stack trained by the GraphSAGE trainer. Each
layer owns an aggregator with its trainable weights and the number of
neighbors sampled per node for that layer.

Aggregators:
    - mean: mean over self and neighbor representations, then a linear
            projection and activation
    - pool: max over transformed neighbor representations, combined with a
            projection of the node itself

All weights are float64 leaf tensors with requires_grad=True. Gradients
are taken with torch.autograd.grad, never accumulated in .grad during
batch evaluation.
"""

import math
import numpy as np
import torch
import torch.nn.functional as F
from torch_geometric.utils import scatter
from dataclasses import dataclass
from typing import Callable, List, Optional

from .subgraph import SubGraph


DTYPE = torch.float64

AGGREGATOR_TYPES = ('mean', 'pool')
ACTIVATION_FUNCTIONS = ('sigmoid', 'relu')


def get_activation(name: str) -> Callable[[torch.Tensor], torch.Tensor]:
    """Get activation function by name."""
    if name == 'sigmoid':
        return torch.sigmoid
    elif name == 'relu':
        return F.relu
    else:
        raise ValueError(f"Unknown activation: {name}")


def tensor_seed(seed: Optional[int], position: int) -> Optional[int]:
    """Seed of the weight tensor at the given position of a layer."""
    if seed is None:
        return None
    # distinct for every (layer seed, position) pair
    return int(np.random.SeedSequence([seed, position]).generate_state(1)[0])


def generate_weights(rows: int, cols: int, seed: Optional[int]) -> torch.Tensor:
    """
    Glorot-uniform initialized weight matrix.

    Args:
        rows: Output dimension
        cols: Input dimension
        seed: Random seed (None for random)

    Returns:
        Leaf tensor [rows, cols] requiring grad
    """
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)

    bound = math.sqrt(6.0 / (rows + cols))
    weights = (torch.rand(rows, cols, generator=generator, dtype=DTYPE) * 2.0 - 1.0) * bound
    return weights.requires_grad_(True)


@dataclass(frozen=True)
class LayerConfig:
    """
    Configuration of one layer.

    Attributes:
        rows: Output (embedding) dimension
        cols: Input dimension
        sample_size: Neighbors sampled per node
        aggregator_type: 'mean' or 'pool'
        activation_function: 'sigmoid' or 'relu'
        random_seed: Seed for weight initialization (None for random)
    """
    rows: int
    cols: int
    sample_size: int
    aggregator_type: str = 'mean'
    activation_function: str = 'sigmoid'
    random_seed: Optional[int] = None

    def __post_init__(self):
        if self.rows < 1 or self.cols < 1:
            raise ValueError(f"Layer dimensions must be positive, got {self.rows}x{self.cols}")
        if self.sample_size < 1:
            raise ValueError(f"Sample size must be positive, got {self.sample_size}")
        if self.aggregator_type not in AGGREGATOR_TYPES:
            raise ValueError(f"Unknown aggregator: {self.aggregator_type}")
        if self.activation_function not in ACTIVATION_FUNCTIONS:
            raise ValueError(f"Unknown activation: {self.activation_function}")


class MeanAggregator:
    """
    Mean aggregator.

    h_i = act(W · mean({x_i} ∪ {x_j : j ∈ N(i)}))

    On weighted graphs each neighbor row is scaled by its relationship
    weight before averaging.
    """

    def __init__(self, weights: torch.Tensor, activation_function: str = 'sigmoid'):
        """
        Initialize mean aggregator.

        Args:
            weights: Projection [output_dim, input_dim]
            activation_function: Activation applied to the projection
        """
        self.weights = weights
        self.activation_function = activation_function
        self.activation = get_activation(activation_function)

    def aggregate(self, previous_layer: torch.Tensor, subgraph: SubGraph) -> torch.Tensor:
        """
        Aggregate representations of the subgraph.

        Args:
            previous_layer: Representations per local id [num_local_nodes, input_dim]
            subgraph: Subgraph of this layer

        Returns:
            Representations per batch position [batch_size, output_dim]
        """
        batch_size = subgraph.batch_size()
        self_rows = torch.from_numpy(subgraph.self_adjacency)

        neighbor_rows = previous_layer[subgraph.neighbor_sources]
        if subgraph.neighbor_weights is not None:
            neighbor_rows = neighbor_rows * subgraph.neighbor_weights.unsqueeze(1)

        rows = torch.cat([previous_layer[self_rows], neighbor_rows], dim=0)
        index = torch.cat([torch.arange(batch_size), subgraph.neighbor_index])

        means = scatter(rows, index, dim=0, dim_size=batch_size, reduce='mean')

        return self.activation(means @ self.weights.t())

    def weights_list(self) -> List[torch.Tensor]:
        return [self.weights]

    def weights_without_bias(self) -> List[torch.Tensor]:
        return [self.weights]


class PoolAggregator:
    """
    Max-pool aggregator.

    p_j = act(W_pool · x_j + b)
    h_i = act(W_self · x_i + W_neigh · max_{j ∈ N(i)} p_j)

    Nodes without sampled neighbors pool to a zero vector.
    """

    def __init__(
        self,
        pool_weights: torch.Tensor,
        self_weights: torch.Tensor,
        neighbors_weights: torch.Tensor,
        bias: torch.Tensor,
        activation_function: str = 'sigmoid'
    ):
        """
        Initialize pool aggregator.

        Args:
            pool_weights: Neighbor transformation [output_dim, input_dim]
            self_weights: Self projection [output_dim, input_dim]
            neighbors_weights: Pooled neighbor projection [output_dim, output_dim]
            bias: Neighbor transformation bias [output_dim]
            activation_function: Activation applied after each projection
        """
        self.pool_weights = pool_weights
        self.self_weights = self_weights
        self.neighbors_weights = neighbors_weights
        self.bias = bias
        self.activation_function = activation_function
        self.activation = get_activation(activation_function)

    def aggregate(self, previous_layer: torch.Tensor, subgraph: SubGraph) -> torch.Tensor:
        """
        Aggregate representations of the subgraph.

        Args:
            previous_layer: Representations per local id [num_local_nodes, input_dim]
            subgraph: Subgraph of this layer

        Returns:
            Representations per batch position [batch_size, output_dim]
        """
        batch_size = subgraph.batch_size()

        neighborhood_activations = self.activation(
            previous_layer @ self.pool_weights.t() + self.bias
        )
        pooled = scatter(
            neighborhood_activations[subgraph.neighbor_sources],
            subgraph.neighbor_index,
            dim=0,
            dim_size=batch_size,
            reduce='max'
        )

        self_previous = previous_layer[torch.from_numpy(subgraph.self_adjacency)]
        combined = self_previous @ self.self_weights.t() + pooled @ self.neighbors_weights.t()

        return self.activation(combined)

    def weights_list(self) -> List[torch.Tensor]:
        return [self.pool_weights, self.self_weights, self.neighbors_weights, self.bias]

    def weights_without_bias(self) -> List[torch.Tensor]:
        return [self.pool_weights, self.self_weights, self.neighbors_weights]


class Layer:
    """
    One stage of the embedding stack.

    The structure (aggregator kind, dimensions, sample size) is fixed at
    construction; only the values of the weight tensors change in training.

    Example:
        >>> layer = create_layer(LayerConfig(rows=64, cols=7, sample_size=25, random_seed=42))
        >>> [w.shape for w in layer.weights()]
        [torch.Size([64, 7])]
    """

    def __init__(self, config: LayerConfig, aggregator):
        self.config = config
        self.aggregator = aggregator

    @property
    def sample_size(self) -> int:
        return self.config.sample_size

    @property
    def input_dimension(self) -> int:
        return self.config.cols

    @property
    def output_dimension(self) -> int:
        return self.config.rows

    def weights(self) -> List[torch.Tensor]:
        """Trainable tensors of this layer."""
        return self.aggregator.weights_list()

    def count_parameters(self) -> int:
        """Count total number of trainable parameters."""
        return sum(w.numel() for w in self.weights())

    def __repr__(self) -> str:
        return (
            f"Layer(aggregator={self.config.aggregator_type}, "
            f"{self.config.cols}->{self.config.rows}, sample_size={self.config.sample_size})"
        )


def create_layer(config: LayerConfig) -> Layer:
    """
    Create a layer with freshly initialized weights.

    Args:
        config: Layer configuration

    Returns:
        Layer instance
    """
    rows, cols, seed = config.rows, config.cols, config.random_seed

    if config.aggregator_type == 'mean':
        aggregator = MeanAggregator(
            generate_weights(rows, cols, tensor_seed(seed, 0)),
            config.activation_function
        )
    else:
        aggregator = PoolAggregator(
            pool_weights=generate_weights(rows, cols, tensor_seed(seed, 0)),
            self_weights=generate_weights(rows, cols, tensor_seed(seed, 1)),
            neighbors_weights=generate_weights(rows, rows, tensor_seed(seed, 2)),
            bias=torch.zeros(rows, dtype=DTYPE, requires_grad=True),
            activation_function=config.activation_function
        )

    return Layer(config, aggregator)
