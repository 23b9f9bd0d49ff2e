"""
Optimizer Module.

Adam driven by externally averaged gradients: the trainer evaluates many
batches concurrently, averages their gradients and applies one update.
"""

import torch
from torch.optim import Adam
from typing import List, Sequence


def average_gradients(batched_gradients: Sequence[Sequence[torch.Tensor]]) -> List[torch.Tensor]:
    """
    Average gradients of several batches per parameter.

    Args:
        batched_gradients: One gradient list per batch, aligned with the weights

    Returns:
        Mean gradient per parameter
    """
    if not batched_gradients:
        raise ValueError("Cannot average gradients of zero batches")

    count = len(batched_gradients)
    summed = [torch.zeros_like(gradient) for gradient in batched_gradients[0]]
    for gradients in batched_gradients:
        for total, gradient in zip(summed, gradients):
            total.add_(gradient)

    return [total / count for total in summed]


class AdamOptimizer:
    """
    Adam over a fixed list of weight tensors.

    Example:
        >>> optimizer = AdamOptimizer(layer_weights, learning_rate=0.1)
        >>> optimizer.update(average_gradients(per_batch_gradients))
    """

    def __init__(
        self,
        weights: List[torch.Tensor],
        learning_rate: float,
        betas=(0.9, 0.999),
        eps: float = 1e-8
    ):
        self.weights = list(weights)
        self.optimizer = Adam(self.weights, lr=learning_rate, betas=betas, eps=eps)

    def update(self, mean_gradients: List[torch.Tensor]):
        """
        Apply one Adam step with the given gradients.

        Args:
            mean_gradients: Gradient per weight, same order as the weights
        """
        if len(mean_gradients) != len(self.weights):
            raise ValueError(
                f"Expected {len(self.weights)} gradients, got {len(mean_gradients)}"
            )

        for weight, gradient in zip(self.weights, mean_gradients):
            weight.grad = gradient.detach().to(dtype=weight.dtype).clone()

        self.optimizer.step()
        self.optimizer.zero_grad(set_to_none=True)
