"""
Result Model of a Training Run.

Classes:
    EpochResult: Losses of one epoch and whether it converged
    GraphSageTrainMetrics: Per-iteration losses of every epoch that ran
    ModelTrainResult: Metrics plus the trained layers
    TrainResultBuilder: Collects epoch results while training
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from ..model.layers import Layer


@dataclass(frozen=True)
class EpochResult:
    converged: bool
    losses: Tuple[float, ...]


@dataclass(frozen=True)
class GraphSageTrainMetrics:
    """
    Loss history of a training run.

    Attributes:
        iteration_losses_per_epoch: One tuple of iteration losses per epoch run
        did_converge: Whether some epoch stopped on the tolerance test
    """
    iteration_losses_per_epoch: Tuple[Tuple[float, ...], ...]
    did_converge: bool

    @property
    def epoch_losses(self) -> List[float]:
        """Last iteration loss of each epoch."""
        return [losses[-1] for losses in self.iteration_losses_per_epoch if losses]

    @property
    def ran_epochs(self) -> int:
        return len(self.iteration_losses_per_epoch)

    @property
    def ran_iterations_per_epoch(self) -> List[int]:
        return [len(losses) for losses in self.iteration_losses_per_epoch]

    def to_dict(self) -> Dict[str, Any]:
        """Metrics in the camelCase layout used by model catalogs."""
        return {
            'metrics': {
                'epochLosses': self.epoch_losses,
                'iterationLossesPerEpoch': [list(losses) for losses in self.iteration_losses_per_epoch],
                'didConverge': self.did_converge,
                'ranEpochs': self.ran_epochs,
                'ranIterationsPerEpoch': self.ran_iterations_per_epoch,
            }
        }


@dataclass(frozen=True)
class ModelTrainResult:
    metrics: GraphSageTrainMetrics
    layers: Tuple[Layer, ...]

    @classmethod
    def of(cls, metrics: GraphSageTrainMetrics, layers: Sequence[Layer]) -> 'ModelTrainResult':
        return cls(metrics, tuple(layers))


class TrainResultBuilder:
    """
    Collects the epoch results of a run.

    Example:
        >>> builder = TrainResultBuilder()
        >>> builder.add_epoch(EpochResult(converged=False, losses=(0.9, 0.8)))
        >>> builder.build().ran_iterations_per_epoch
        [2]
    """

    def __init__(self):
        self._epoch_losses: List[Tuple[float, ...]] = []
        self._did_converge = False
        self._built = False

    def add_epoch(self, epoch_result: EpochResult):
        if self._built:
            raise RuntimeError("Cannot add epochs to a built result")
        self._epoch_losses.append(tuple(epoch_result.losses))
        self._did_converge = self._did_converge or epoch_result.converged

    def build(self) -> GraphSageTrainMetrics:
        self._built = True
        return GraphSageTrainMetrics(tuple(self._epoch_losses), self._did_converge)
