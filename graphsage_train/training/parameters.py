"""
Training parameters of the GraphSAGE trainer.
"""

import math
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

from ..model.layers import ACTIVATION_FUNCTIONS, AGGREGATOR_TYPES, LayerConfig


@dataclass(frozen=True)
class GraphSageTrainParameters:
    """
    Hyperparameters of a training run.

    Attributes:
        embedding_dimension: Output dimension of every layer
        sample_sizes: Neighbors sampled per layer, input layer first
        aggregator: 'mean' or 'pool'
        activation_function: 'sigmoid' or 'relu'
        batch_size: Target nodes per batch
        learning_rate: Adam step size
        epochs: Upper bound on epochs
        max_iterations: Upper bound on iterations per epoch
        search_depth: Maximum random walk depth of positive samples
        negative_sample_weight: Weight of the negative loss term
        penalty_l2: L2 penalty coefficient (0 disables the penalty)
        tolerance: Convergence tolerance on the iteration loss
        concurrency: Worker threads for batch preparation and training
        batch_sampling_ratio: Fraction of batches run per iteration
                              (None for min(1, batch_size * concurrency / node_count))
        random_seed: Root seed (None for a fresh random seed per run)
    """
    embedding_dimension: int = 64
    sample_sizes: Tuple[int, ...] = (25, 10)
    aggregator: str = 'mean'
    activation_function: str = 'sigmoid'
    batch_size: int = 100
    learning_rate: float = 0.1
    epochs: int = 1
    max_iterations: int = 10
    search_depth: int = 5
    negative_sample_weight: int = 20
    penalty_l2: float = 0.0
    tolerance: float = 1e-4
    concurrency: int = 4
    batch_sampling_ratio: Optional[float] = None
    random_seed: Optional[int] = None

    def __post_init__(self):
        # Accept lists from config files
        object.__setattr__(self, 'sample_sizes', tuple(int(s) for s in self.sample_sizes))

        if self.embedding_dimension < 1:
            raise ValueError(f"Embedding dimension must be positive, got {self.embedding_dimension}")
        if not self.sample_sizes:
            raise ValueError("At least one sample size is required")
        if any(s < 1 for s in self.sample_sizes):
            raise ValueError(f"Sample sizes must be positive, got {list(self.sample_sizes)}")
        if self.aggregator not in AGGREGATOR_TYPES:
            raise ValueError(f"Unknown aggregator: {self.aggregator}")
        if self.activation_function not in ACTIVATION_FUNCTIONS:
            raise ValueError(f"Unknown activation: {self.activation_function}")
        if self.batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")
        if not self.learning_rate > 0:
            raise ValueError(f"Learning rate must be positive, got {self.learning_rate}")
        if self.epochs < 1:
            raise ValueError(f"Epochs must be positive, got {self.epochs}")
        if self.max_iterations < 1:
            raise ValueError(f"Max iterations must be positive, got {self.max_iterations}")
        if self.search_depth < 1:
            raise ValueError(f"Search depth must be positive, got {self.search_depth}")
        if self.negative_sample_weight < 1:
            raise ValueError(
                f"Negative sample weight must be at least 1, got {self.negative_sample_weight}"
            )
        if self.penalty_l2 < 0:
            raise ValueError(f"L2 penalty must be non-negative, got {self.penalty_l2}")
        if self.tolerance < 0:
            raise ValueError(f"Tolerance must be non-negative, got {self.tolerance}")
        if self.concurrency < 1:
            raise ValueError(f"Concurrency must be positive, got {self.concurrency}")
        if self.batch_sampling_ratio is not None and not 0 < self.batch_sampling_ratio <= 1:
            raise ValueError(
                f"Batch sampling ratio must be in (0, 1], got {self.batch_sampling_ratio}"
            )
        if self.random_seed is not None and self.random_seed < 0:
            raise ValueError(f"Random seed must be non-negative, got {self.random_seed}")

    def layer_configs(self, feature_dimension: int) -> List[LayerConfig]:
        """
        Layer configurations for node features of the given dimension.

        The first layer maps features to the embedding dimension, every
        further layer maps embedding to embedding.
        """
        configs = []
        for i, sample_size in enumerate(self.sample_sizes):
            configs.append(LayerConfig(
                rows=self.embedding_dimension,
                cols=feature_dimension if i == 0 else self.embedding_dimension,
                sample_size=sample_size,
                aggregator_type=self.aggregator,
                activation_function=self.activation_function,
                random_seed=None if self.random_seed is None else self.random_seed + i
            ))
        return configs

    def batches_per_iteration(self, node_count: int) -> int:
        """Number of batch tasks sampled per training iteration."""
        if node_count < 1:
            raise ValueError("Cannot train on a graph without nodes")
        number_of_batches = math.ceil(node_count / self.batch_size)
        ratio = self.batch_sampling_ratio
        if ratio is None:
            ratio = min(1.0, self.batch_size * self.concurrency / node_count)
        return math.ceil(ratio * number_of_batches)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'GraphSageTrainParameters':
        """
        Create parameters from a configuration dictionary.

        Reads the 'training' section; 'embedding_dimension', 'sample_sizes',
        'aggregator' and 'activation_function' may also be given in the
        'model' section. Missing keys keep their defaults.

        Raises:
            ValueError: For unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        values = {}

        for section in ('model', 'training'):
            section_config = config.get(section) or {}
            for key, value in section_config.items():
                if key not in known:
                    raise ValueError(f"Unknown {section} parameter: {key}")
                values[key] = value

        return cls(**values)
