"""
GraphSAGE Loss Module.

This module implements the unsupervised GraphSAGE loss with negative
sampling, plus the optional L2 penalty on aggregator weights.

Loss Function (per target node i of a batch of size b):
    L_i = -log(σ(w_i · z_i · z_pos(i))) - Q · log(σ(-z_i · z_neg(i)))

Where:
    - z are the L2-normalized embeddings of the extended batch
    - w_i is the weight of the relationship between target and positive
      (1.0 if absent)
    - Q is the negative sample weight

The batch loss is the mean of L_i over the b targets. With a positive
penalty coefficient λ the loss additionally gets

    λ · (b / node_count) · Σ ||W||²

over all non-bias weights, so the last (smaller) batch of an epoch carries
the same penalty per node as every other batch.
"""

import numpy as np
import torch
import torch.nn.functional as F
from typing import List, Optional

from ..data.graph import Graph
from .graphsage import FeatureFunction, batch_features, embeddings_computation_graph
from .layers import DTYPE, Layer
from .subgraph import SubGraph


def original_batch_size(extended_batch: np.ndarray) -> int:
    """Number of targets of an extended batch."""
    return len(extended_batch) // 3


def positive_relationship_weights(graph: Graph, extended_batch: np.ndarray) -> Optional[torch.Tensor]:
    """
    Weights of the (target, positive) relationships of an extended batch.

    Returns:
        Tensor [batch_size], or None for unweighted graphs
    """
    if not graph.has_relationship_property():
        return None

    batch_size = original_batch_size(extended_batch)
    weights = [
        graph.relationship_weight(int(extended_batch[i]), int(extended_batch[batch_size + i]), 1.0)
        for i in range(batch_size)
    ]
    return torch.tensor(weights, dtype=DTYPE)


class GraphSageLoss:
    """
    Negative sampling loss over the embeddings of an extended batch.

    Example:
        >>> loss_fn = GraphSageLoss(negative_sample_weight=20)
        >>> # embeddings rows: [targets | positives | negatives]
        >>> loss = loss_fn(embeddings)
        >>> loss.backward()
    """

    def __init__(
        self,
        negative_sample_weight: float = 20.0,
        relationship_weights: Optional[torch.Tensor] = None
    ):
        """
        Initialize loss.

        Args:
            negative_sample_weight: Weight Q of the negative term
            relationship_weights: Optional per-target weight of the positive
                                  relationship [batch_size]
        """
        self.negative_sample_weight = negative_sample_weight
        self.relationship_weights = relationship_weights

    def __call__(self, embeddings: torch.Tensor) -> torch.Tensor:
        """
        Compute the loss.

        Args:
            embeddings: Embeddings of the extended batch [3 * batch_size, dim]

        Returns:
            Scalar loss tensor
        """
        if embeddings.shape[0] % 3 != 0:
            raise ValueError(
                f"Extended batch embeddings must have 3 * batch_size rows, got {embeddings.shape[0]}"
            )
        batch_size = embeddings.shape[0] // 3

        targets = embeddings[:batch_size]
        positives = embeddings[batch_size:2 * batch_size]
        negatives = embeddings[2 * batch_size:]

        positive_affinity = (targets * positives).sum(dim=1)
        if self.relationship_weights is not None:
            positive_affinity = positive_affinity * self.relationship_weights
        negative_affinity = (targets * negatives).sum(dim=1)

        # log_sigmoid(x) = -log(1 + exp(-x)), stable for large |x|
        per_node = (
            -F.logsigmoid(positive_affinity)
            - self.negative_sample_weight * F.logsigmoid(-negative_affinity)
        )

        return per_node.mean()


def l2_penalty(
    layers: List[Layer],
    penalty_l2: float,
    batch_size: int,
    node_count: int
) -> torch.Tensor:
    """
    Scaled L2 penalty over all non-bias aggregator weights.

    Args:
        layers: Layer stack
        penalty_l2: Penalty coefficient
        batch_size: Original (non-extended) size of the batch
        node_count: Number of nodes in the graph

    Returns:
        Scalar tensor penalty_l2 * (batch_size / node_count) * Σ ||W||²
    """
    squared_norms = [
        (weights * weights).sum()
        for layer in layers
        for weights in layer.aggregator.weights_without_bias()
    ]
    return torch.stack(squared_norms).sum() * (penalty_l2 * batch_size / node_count)


class BatchLossFunction:
    """
    Loss of one batch as a function of the current layer weights.

    Holds only structural inputs (subgraphs, feature rows, relationship
    weights). Every call builds a fresh computation graph from the current
    weight values, so one instance can be evaluated in many iterations.
    """

    def __init__(
        self,
        extended_batch: np.ndarray,
        subgraphs: List[SubGraph],
        features: torch.Tensor,
        layers: List[Layer],
        node_count: int,
        negative_sample_weight: float,
        penalty_l2: float = 0.0,
        relationship_weights: Optional[torch.Tensor] = None,
        feature_function: Optional[FeatureFunction] = None,
        graph: Optional[Graph] = None
    ):
        """
        Initialize batch loss function.

        Args:
            extended_batch: [targets | positives | negatives] global node ids
            subgraphs: Subgraphs of the extended batch, outermost first
            features: Features of all nodes
            layers: Layer stack
            node_count: Number of nodes in the graph
            negative_sample_weight: Weight of the negative term
            penalty_l2: L2 penalty coefficient (0 disables the penalty)
            relationship_weights: Weights of the positive relationships
            feature_function: Trainable mapping of features to layer input,
                              evaluated on every call (plain feature rows if None)
            graph: Graph passed on to feature_function
        """
        self.extended_batch = extended_batch
        self.subgraphs = subgraphs
        self.features = features
        self.feature_function = feature_function
        self.graph = graph
        # plain feature rows do not depend on any weight
        self.batched_features = None
        if feature_function is None:
            self.batched_features = batch_features(features, subgraphs)
        self.layers = layers
        self.node_count = node_count
        self.penalty_l2 = penalty_l2
        self.loss = GraphSageLoss(negative_sample_weight, relationship_weights)

    def original_batch_size(self) -> int:
        return original_batch_size(self.extended_batch)

    def __call__(self) -> torch.Tensor:
        batched_features = self.batched_features
        if batched_features is None:
            batched_features = batch_features(
                self.features, self.subgraphs, self.feature_function, self.graph
            )

        embeddings = embeddings_computation_graph(self.subgraphs, self.layers, batched_features)
        loss = self.loss(embeddings)

        if self.penalty_l2 > 0:
            loss = loss + l2_penalty(
                self.layers, self.penalty_l2, self.original_batch_size(), self.node_count
            )

        return loss
