"""
Training Module for GraphSAGE.

This module implements the mini-batch training pipeline including:
- Extended batch preparation with positive and negative samples
- Concurrent batch evaluation and Adam updates
- Loss-based convergence and the training metrics
- Progress logging and cooperative cancellation

Components:
    GraphSageModelTrainer: Main trainer class
    GraphSageTrainParameters: Validated training hyperparameters
    BatchSampler: Build extended batches
    ProgressTracker: Console progress of the nested training tasks

Example:
    >>> from graphsage_train.training import train, GraphSageTrainParameters
    >>>
    >>> parameters = GraphSageTrainParameters(embedding_dimension=16, epochs=2, random_seed=42)
    >>> result = train(graph, features, parameters=parameters)
    >>> result.metrics.to_dict()['metrics']['ranEpochs']
    2
"""

from .trainer import (
    GraphSageModelTrainer,
    BatchTask,
    BatchResult,
    EagerBatchTaskSupplier,
    LazyBatchTaskSupplier,
    train,
)
from .parameters import GraphSageTrainParameters
from .batch_sampler import BatchSampler
from .optimizer import AdamOptimizer, average_gradients
from .result import EpochResult, GraphSageTrainMetrics, ModelTrainResult, TrainResultBuilder
from .progress import ProgressTracker, Task, progress_tasks
from .termination import TerminationFlag, TrainingTerminatedError, map_or_cancel

__all__ = [
    'GraphSageModelTrainer',
    'BatchTask',
    'BatchResult',
    'EagerBatchTaskSupplier',
    'LazyBatchTaskSupplier',
    'train',
    'GraphSageTrainParameters',
    'BatchSampler',
    'AdamOptimizer',
    'average_gradients',
    'EpochResult',
    'GraphSageTrainMetrics',
    'ModelTrainResult',
    'TrainResultBuilder',
    'ProgressTracker',
    'Task',
    'progress_tasks',
    'TerminationFlag',
    'TrainingTerminatedError',
    'map_or_cancel',
]
