"""
GraphSAGE Trainer Module.

This module implements the mini-batch training loop of GraphSAGE with the
unsupervised negative sampling objective. It handles:
- Extended batch preparation ([targets | positives | negatives])
- Per-epoch sampling of layer subgraphs (eager or lazy)
- Concurrent forward/backward passes per iteration
- Gradient averaging and Adam updates
- Loss-based convergence across iterations and epochs

Design Decisions:
- CPU-only float64 computation, every batch builds its own autograd graph
- Batch tasks return their results, so a cached task drawn twice in one
  iteration is evaluated twice without sharing state
- A new Adam optimizer per epoch, the previous loss carries over
"""

import math
import random as python_random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np
import torch

from ..data.graph import Graph, validate_relationship_weights
from ..model.graphsage import FeatureFunction, subgraphs_per_layer, to_feature_tensor
from ..model.layers import Layer, LayerConfig, create_layer
from ..model.loss import BatchLossFunction, positive_relationship_weights
from .batch_sampler import BatchSampler
from .optimizer import AdamOptimizer, average_gradients
from .parameters import GraphSageTrainParameters
from .progress import ProgressTracker, progress_tasks
from .result import EpochResult, ModelTrainResult, TrainResultBuilder
from .termination import TerminationFlag, map_or_cancel


@dataclass(frozen=True)
class BatchResult:
    """Loss and gradients of one evaluation of a batch."""
    loss: float
    weight_gradients: List[torch.Tensor]


class BatchTask:
    """
    Forward and backward pass of one batch.

    Example:
        >>> task = BatchTask(loss_function, weights, tracker, flag)
        >>> result = task.run()
        >>> len(result.weight_gradients) == len(weights)
        True
    """

    def __init__(
        self,
        loss_function: Callable[[], torch.Tensor],
        weights: List[torch.Tensor],
        progress_tracker: ProgressTracker,
        termination_flag: TerminationFlag
    ):
        self.loss_function = loss_function
        self.weights = weights
        self.progress_tracker = progress_tracker
        self.termination_flag = termination_flag

    def run(self) -> BatchResult:
        self.termination_flag.assert_running()

        loss = self.loss_function()
        gradients = torch.autograd.grad(loss, self.weights, allow_unused=True)
        weight_gradients = [
            torch.zeros_like(weight) if gradient is None else gradient
            for weight, gradient in zip(self.weights, gradients)
        ]

        self.progress_tracker.log_progress(1)
        return BatchResult(loss.item(), weight_gradients)


class EagerBatchTaskSupplier:
    """Creates every batch task of an epoch up front and draws from the cache."""

    def __init__(
        self,
        create_task: Callable[[np.ndarray], BatchTask],
        extended_batches: List[np.ndarray],
        batches_per_iteration: int,
        random: np.random.Generator,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        if executor is None:
            self.tasks = [create_task(extended_batch) for extended_batch in extended_batches]
        else:
            self.tasks = map_or_cancel(executor, create_task, extended_batches)
        self.batches_per_iteration = batches_per_iteration
        self.random = random

    def __call__(self) -> List[BatchTask]:
        return [
            self.tasks[int(self.random.integers(len(self.tasks)))]
            for _ in range(self.batches_per_iteration)
        ]


class LazyBatchTaskSupplier:
    """Creates batch tasks for the drawn batches on every call."""

    def __init__(
        self,
        create_task: Callable[[np.ndarray], BatchTask],
        extended_batches: List[np.ndarray],
        batches_per_iteration: int,
        random: np.random.Generator,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        self.create_task = create_task
        self.extended_batches = extended_batches
        self.batches_per_iteration = batches_per_iteration
        self.random = random
        self.executor = executor

    def __call__(self) -> List[BatchTask]:
        drawn = [
            self.extended_batches[int(self.random.integers(len(self.extended_batches)))]
            for _ in range(self.batches_per_iteration)
        ]
        if self.executor is None:
            return [self.create_task(extended_batch) for extended_batch in drawn]
        return map_or_cancel(self.executor, self.create_task, drawn)


class GraphSageModelTrainer:
    """
    Mini-batch trainer of a GraphSAGE layer stack.

    Every epoch samples layer subgraphs for the prepared batches, then runs
    up to max_iterations iterations. An iteration evaluates a random sample
    of batches concurrently, logs their mean loss and either stops on
    convergence or applies one Adam update with the averaged gradients.

    Example:
        >>> from graphsage_train.training import GraphSageModelTrainer, GraphSageTrainParameters
        >>>
        >>> parameters = GraphSageTrainParameters(sample_sizes=(10, 5), epochs=2, random_seed=42)
        >>> trainer = GraphSageModelTrainer(parameters, feature_dimension=features.shape[1])
        >>> result = trainer.train(graph, features)
        >>> result.metrics.ran_epochs
        2
    """

    def __init__(
        self,
        parameters: GraphSageTrainParameters,
        feature_dimension: int,
        progress_tracker: Optional[ProgressTracker] = None,
        termination_flag: Optional[TerminationFlag] = None,
        layer_configs: Optional[List[LayerConfig]] = None,
        feature_function: Optional[FeatureFunction] = None,
        label_projection_weights: Sequence[torch.Tensor] = ()
    ):
        """
        Initialize trainer.

        Args:
            parameters: Training parameters
            feature_dimension: Input dimension of the first layer (the number
                               of features per node, or the projected
                               dimension with a feature_function)
            progress_tracker: Progress logging (silent if None)
            termination_flag: Cancellation signal
            layer_configs: Explicit layer stack (defaults to
                           parameters.layer_configs(feature_dimension))
            feature_function: Mapping of feature rows to first layer input,
                              for example a MultiLabelFeatureFunction
            label_projection_weights: Weights used by feature_function, trained
                                      with the layers
        """
        if layer_configs is None:
            layer_configs = parameters.layer_configs(feature_dimension)
        if not layer_configs:
            raise ValueError("At least one layer is required")
        if layer_configs[0].cols != feature_dimension:
            raise ValueError(
                f"First layer expects {layer_configs[0].cols} features, got {feature_dimension}"
            )
        for projection in label_projection_weights:
            if projection.shape[0] != feature_dimension:
                raise ValueError(
                    f"Label projections must map to {feature_dimension} features, "
                    f"got {tuple(projection.shape)}"
                )

        self.parameters = parameters
        self.feature_dimension = feature_dimension
        self.progress_tracker = progress_tracker or ProgressTracker.empty()
        self.termination_flag = termination_flag or TerminationFlag()
        self.feature_function = feature_function
        self.label_projection_weights = list(label_projection_weights)
        self.layers: List[Layer] = [create_layer(config) for config in layer_configs]

    def weights(self) -> List[torch.Tensor]:
        """All trainable tensors: label projections, then the layers from input to output."""
        return self.label_projection_weights + [
            weight for layer in self.layers for weight in layer.weights()
        ]

    def _print_setup_summary(self, graph: Graph, number_of_batches: int, batches_per_iteration: int):
        """Log the training setup."""
        log = self.progress_tracker.log_info
        stats = graph.get_statistics()
        log(f"Nodes: {stats['num_nodes']:,} ({stats['isolated_nodes']:,} isolated)")
        log(f"Relationships: {stats['num_relationships']:,}"
            f"{' (weighted)' if stats['weighted'] else ''}")
        log(f"Average degree: {stats['avg_degree']:.2f} (max {stats['max_degree']})")
        log(f"Layers: {', '.join(repr(layer) for layer in self.layers)}")
        log(f"Model parameters: {sum(weight.numel() for weight in self.weights()):,}")
        log(f"Batches: {number_of_batches} of size {self.parameters.batch_size}")
        log(f"Batches per iteration: {batches_per_iteration}")
        log(f"Learning rate: {self.parameters.learning_rate}")

    def train(self, graph: Graph, features) -> ModelTrainResult:
        """
        Train the layer stack on a graph.

        Args:
            graph: Graph to train on
            features: Node features [node_count, feature_dimension]

        Returns:
            Loss metrics and the trained layers

        Raises:
            NegativeRelationshipWeightError: If a relationship weight is negative
            TrainingTerminatedError: If the termination flag was stopped
            ValueError: If features do not match the graph or layer stack
        """
        validate_relationship_weights(graph)
        features = to_feature_tensor(features, graph.node_count())
        if self.feature_function is None and features.shape[1] != self.feature_dimension:
            raise ValueError(
                f"Expected {self.feature_dimension} features per node, got {features.shape[1]}"
            )

        parameters = self.parameters
        root_seed = parameters.random_seed
        if root_seed is None:
            root_seed = python_random.getrandbits(63)

        weights = self.weights()
        batches_per_iteration = parameters.batches_per_iteration(graph.node_count())

        self.progress_tracker.begin_subtask("Prepare batches")
        batch_sampler = BatchSampler(
            graph, self.progress_tracker, self.termination_flag, parameters.concurrency
        )
        extended_batches = batch_sampler.extended_batches(
            parameters.batch_size, parameters.search_depth, root_seed
        )
        random = np.random.default_rng(root_seed)
        self.progress_tracker.end_subtask("Prepare batches")

        self._print_setup_summary(graph, len(extended_batches), batches_per_iteration)

        # cache tasks when batches are expected to be drawn more than once per epoch
        create_eagerly = batches_per_iteration * parameters.max_iterations > len(extended_batches)
        supplier_class = EagerBatchTaskSupplier if create_eagerly else LazyBatchTaskSupplier

        self.progress_tracker.begin_subtask("Train model")

        result_builder = TrainResultBuilder()
        previous_loss = math.nan
        converged = False

        with ThreadPoolExecutor(max_workers=parameters.concurrency) as executor:
            for epoch in range(1, parameters.epochs + 1):
                if converged:
                    break

                self.progress_tracker.begin_subtask("Epoch")
                epoch_seed = epoch + root_seed

                def create_task(extended_batch, epoch_seed=epoch_seed):
                    return self._create_batch_task(extended_batch, graph, features, weights, epoch_seed)

                supplier = supplier_class(
                    create_task, extended_batches, batches_per_iteration, random, executor
                )

                epoch_result = self._train_epoch(supplier, weights, previous_loss, executor)
                result_builder.add_epoch(epoch_result)
                previous_loss = epoch_result.losses[-1]
                converged = epoch_result.converged

                self.progress_tracker.end_subtask("Epoch")

        self.progress_tracker.end_subtask("Train model")

        return ModelTrainResult.of(result_builder.build(), self.layers)

    def _create_batch_task(
        self,
        extended_batch: np.ndarray,
        graph: Graph,
        features: torch.Tensor,
        weights: List[torch.Tensor],
        seed: int
    ) -> BatchTask:
        local_graph = graph.concurrent_copy()

        subgraphs = subgraphs_per_layer(
            local_graph, extended_batch, self.layers, seed, self.termination_flag
        )
        loss_function = BatchLossFunction(
            extended_batch,
            subgraphs,
            features,
            self.layers,
            node_count=graph.node_count(),
            negative_sample_weight=self.parameters.negative_sample_weight,
            penalty_l2=self.parameters.penalty_l2,
            relationship_weights=positive_relationship_weights(local_graph, extended_batch),
            feature_function=self.feature_function,
            graph=local_graph
        )

        return BatchTask(loss_function, weights, self.progress_tracker, self.termination_flag)

    def _train_epoch(
        self,
        batch_task_supplier: Callable[[], List[BatchTask]],
        weights: List[torch.Tensor],
        previous_loss: float,
        executor: ThreadPoolExecutor
    ) -> EpochResult:
        optimizer = AdamOptimizer(weights, self.parameters.learning_rate)

        losses = []
        converged = False

        for _ in range(self.parameters.max_iterations):
            self.progress_tracker.begin_subtask("Iteration")

            tasks = batch_task_supplier()
            results = map_or_cancel(executor, BatchTask.run, tasks)

            average_loss = sum(result.loss for result in results) / len(results)
            losses.append(average_loss)
            self.progress_tracker.log_info(f"Average loss per node: {average_loss:.10f}")

            if abs(previous_loss - average_loss) < self.parameters.tolerance:
                converged = True
                self.progress_tracker.end_subtask("Iteration")
                break

            previous_loss = average_loss

            mean_gradients = average_gradients([result.weight_gradients for result in results])
            optimizer.update(mean_gradients)

            self.progress_tracker.end_subtask("Iteration")

        return EpochResult(converged, tuple(losses))


def train(
    graph: Graph,
    features,
    layer_configs: Optional[List[LayerConfig]] = None,
    parameters: Optional[GraphSageTrainParameters] = None,
    progress_tracker: Optional[ProgressTracker] = None,
    termination_flag: Optional[TerminationFlag] = None,
    feature_function: Optional[FeatureFunction] = None,
    label_projection_weights: Sequence[torch.Tensor] = ()
) -> ModelTrainResult:
    """
    High-level function to train GraphSAGE on a graph.

    This is the recommended entry point for training.

    Args:
        graph: Graph to train on
        features: Node features [node_count, feature_dimension]
        layer_configs: Explicit layer stack (derived from parameters if None)
        parameters: Training parameters (defaults if None)
        progress_tracker: Progress logging (console tracker over the
                          training task layout if None)
        termination_flag: Cancellation signal
        feature_function: Mapping of feature rows to first layer input
        label_projection_weights: Weights of feature_function, trained in
                                  place; their row count is the first
                                  layer input dimension

    Returns:
        Loss metrics and the trained layers
    """
    parameters = parameters or GraphSageTrainParameters()
    features = to_feature_tensor(features, graph.node_count())

    if progress_tracker is None:
        progress_tracker = ProgressTracker(progress_tasks(
            number_of_batches=math.ceil(graph.node_count() / parameters.batch_size),
            batches_per_iteration=parameters.batches_per_iteration(graph.node_count()),
            max_iterations=parameters.max_iterations,
            epochs=parameters.epochs
        ))

    feature_dimension = features.shape[1]
    if label_projection_weights:
        feature_dimension = label_projection_weights[0].shape[0]

    trainer = GraphSageModelTrainer(
        parameters,
        feature_dimension=feature_dimension,
        progress_tracker=progress_tracker,
        termination_flag=termination_flag,
        layer_configs=layer_configs,
        feature_function=feature_function,
        label_projection_weights=label_projection_weights
    )
    return trainer.train(graph, features)
