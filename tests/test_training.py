"""
Tests for Training Module.

Tests parameters, batch preparation, the optimizer, result metrics,
progress tracking and the training loop.
"""

import math
import threading
import pytest
import torch
import numpy as np
import networkx as nx
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import load_config
from graphsage_train.data import Graph, NegativeRelationshipWeightError
from graphsage_train.model import LayerConfig, MultiLabelFeatureFunction, create_label_projection_weights
from graphsage_train.training import (
    GraphSageModelTrainer,
    GraphSageTrainParameters,
    BatchSampler,
    BatchTask,
    EagerBatchTaskSupplier,
    LazyBatchTaskSupplier,
    AdamOptimizer,
    average_gradients,
    EpochResult,
    GraphSageTrainMetrics,
    ModelTrainResult,
    TrainResultBuilder,
    ProgressTracker,
    progress_tasks,
    TerminationFlag,
    TrainingTerminatedError,
    map_or_cancel,
    train,
)


@pytest.fixture
def karate_graph():
    return Graph.from_networkx(nx.karate_club_graph())


@pytest.fixture
def features(karate_graph):
    return np.random.default_rng(0).random((karate_graph.node_count(), 5))


def small_parameters(**overrides):
    values = dict(
        embedding_dimension=4,
        sample_sizes=(3, 2),
        batch_size=10,
        learning_rate=0.05,
        epochs=1,
        max_iterations=2,
        search_depth=3,
        negative_sample_weight=2,
        concurrency=2,
        random_seed=42,
    )
    values.update(overrides)
    return GraphSageTrainParameters(**values)


class TestParameters:
    """Tests for training parameters."""

    def test_defaults(self):
        parameters = GraphSageTrainParameters()

        assert parameters.embedding_dimension == 64
        assert parameters.sample_sizes == (25, 10)
        assert parameters.aggregator == 'mean'
        assert parameters.activation_function == 'sigmoid'
        assert parameters.batch_size == 100
        assert parameters.learning_rate == 0.1
        assert parameters.epochs == 1
        assert parameters.max_iterations == 10
        assert parameters.search_depth == 5
        assert parameters.negative_sample_weight == 20
        assert parameters.penalty_l2 == 0.0
        assert parameters.tolerance == 1e-4
        assert parameters.concurrency == 4
        assert parameters.batch_sampling_ratio is None
        assert parameters.random_seed is None

    @pytest.mark.parametrize("overrides", [
        dict(embedding_dimension=0),
        dict(sample_sizes=()),
        dict(sample_sizes=(5, 0)),
        dict(aggregator='lstm'),
        dict(activation_function='tanh'),
        dict(batch_size=0),
        dict(learning_rate=0.0),
        dict(epochs=0),
        dict(max_iterations=0),
        dict(search_depth=0),
        dict(negative_sample_weight=0),
        dict(penalty_l2=-0.1),
        dict(tolerance=-1.0),
        dict(concurrency=0),
        dict(batch_sampling_ratio=0.0),
        dict(batch_sampling_ratio=1.5),
        dict(random_seed=-1),
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            GraphSageTrainParameters(**overrides)

    def test_layer_configs(self):
        """Test dimensions and seeds of the derived layer stack."""
        configs = GraphSageTrainParameters(
            embedding_dimension=16, sample_sizes=(5, 3, 2), aggregator='pool', random_seed=10
        ).layer_configs(feature_dimension=7)

        assert [(c.rows, c.cols) for c in configs] == [(16, 7), (16, 16), (16, 16)]
        assert [c.sample_size for c in configs] == [5, 3, 2]
        assert [c.random_seed for c in configs] == [10, 11, 12]
        assert all(c.aggregator_type == 'pool' for c in configs)

    def test_unseeded_layer_configs(self):
        configs = GraphSageTrainParameters().layer_configs(3)
        assert all(c.random_seed is None for c in configs)

    def test_batches_per_iteration_default_ratio(self):
        """Test ceil(min(1, batch_size * concurrency / n) * number_of_batches)."""
        parameters = GraphSageTrainParameters(batch_size=100, concurrency=4)

        assert parameters.batches_per_iteration(1000) == 4
        assert parameters.batches_per_iteration(250) == 3

    def test_batches_per_iteration_explicit_ratio(self):
        parameters = GraphSageTrainParameters(batch_size=100, batch_sampling_ratio=0.25)
        assert parameters.batches_per_iteration(1000) == 3

    def test_batches_per_iteration_empty_graph(self):
        with pytest.raises(ValueError):
            GraphSageTrainParameters().batches_per_iteration(0)

    def test_from_default_config(self):
        """Test that the default config file gives default parameters."""
        parameters = GraphSageTrainParameters.from_config(load_config())
        assert parameters == GraphSageTrainParameters()

    def test_from_config_overrides(self):
        parameters = GraphSageTrainParameters.from_config({
            'model': {'sample_sizes': [4, 2], 'aggregator': 'pool'},
            'training': {'epochs': 3, 'random_seed': 7},
        })

        assert parameters.sample_sizes == (4, 2)
        assert parameters.aggregator == 'pool'
        assert parameters.epochs == 3
        assert parameters.random_seed == 7

    def test_from_config_unknown_key(self):
        with pytest.raises(ValueError):
            GraphSageTrainParameters.from_config({'training': {'weight_decay': 0.1}})


class TestBatchSampler:
    """Tests for extended batch preparation."""

    def test_extended_batch_layout(self, karate_graph):
        """Test [targets | positives | negatives] of length 3b."""
        sampler = BatchSampler(karate_graph, concurrency=2)
        batches = sampler.extended_batches(batch_size=10, search_depth=3, random_seed=1)

        assert [len(batch) for batch in batches] == [30, 30, 30, 12]
        assert batches[0][:10].tolist() == list(range(10))
        assert batches[3][:4].tolist() == [30, 31, 32, 33]

        for batch in batches:
            assert len(batch) % 3 == 0
            assert batch.min() >= 0
            assert batch.max() < karate_graph.node_count()

    def test_positives_are_reachable(self, karate_graph):
        """Test that positives lie within search_depth hops."""
        sampler = BatchSampler(karate_graph)
        batches = sampler.extended_batches(batch_size=34, search_depth=2, random_seed=3)
        nx_graph = nx.karate_club_graph()

        b = 34
        for target, positive in zip(batches[0][:b].tolist(), batches[0][b:2 * b].tolist()):
            distance = nx.shortest_path_length(nx_graph, target, positive)
            assert distance <= 2

    def test_dead_end_is_its_own_positive(self):
        graph = Graph.from_edge_index(torch.tensor([[0], [1]]), num_nodes=3)
        batches = BatchSampler(graph).extended_batches(batch_size=3, search_depth=5, random_seed=0)

        assert batches[0][3 + 2] == 2

    def test_reproducible(self, karate_graph):
        a = BatchSampler(karate_graph, concurrency=3).extended_batches(7, 4, random_seed=11)
        b = BatchSampler(karate_graph, concurrency=1).extended_batches(7, 4, random_seed=11)

        assert all(x.tolist() == y.tolist() for x, y in zip(a, b))

    def test_progress_per_batch(self, karate_graph):
        tracker = ProgressTracker(progress_tasks(4, 1, 1, 1), verbose=False)
        tracker.begin_subtask("Prepare batches")

        BatchSampler(karate_graph, tracker).extended_batches(10, 2, random_seed=0)

        progress = [m for m in tracker.messages if m.startswith("Prepare batches ") and m.endswith("%")]
        assert progress == [
            "Prepare batches 25%", "Prepare batches 50%", "Prepare batches 75%", "Prepare batches 100%"
        ]

    def test_terminated(self, karate_graph):
        flag = TerminationFlag()
        flag.stop()

        with pytest.raises(TrainingTerminatedError):
            BatchSampler(karate_graph, termination_flag=flag).extended_batches(10, 2, random_seed=0)


class TestOptimizer:
    """Tests for gradient averaging and Adam."""

    def test_average_gradients(self):
        batched = [
            [torch.tensor([1.0, 2.0]), torch.tensor([[3.0]])],
            [torch.tensor([3.0, 6.0]), torch.tensor([[5.0]])],
        ]

        mean = average_gradients(batched)

        assert mean[0].tolist() == [2.0, 4.0]
        assert mean[1].tolist() == [[4.0]]

    def test_average_gradients_order_independent(self):
        rng = np.random.default_rng(0)
        batched = [[torch.from_numpy(rng.random((3, 2)))] for _ in range(6)]

        forward = average_gradients(batched)[0]
        backward = average_gradients(batched[::-1])[0]

        assert torch.allclose(forward, backward)

    def test_average_of_nothing(self):
        with pytest.raises(ValueError):
            average_gradients([])

    def test_adam_matches_update_rule(self):
        """Test two steps against the Adam formulas."""
        weight = torch.tensor([1.0, -2.0], dtype=torch.float64, requires_grad=True)
        optimizer = AdamOptimizer([weight], learning_rate=0.1)
        gradients = [torch.tensor([0.5, -1.0], dtype=torch.float64),
                     torch.tensor([0.2, 0.4], dtype=torch.float64)]

        expected = np.array([1.0, -2.0])
        m = np.zeros(2)
        v = np.zeros(2)
        for t, gradient in enumerate(gradients, start=1):
            g = gradient.numpy()
            m = 0.9 * m + 0.1 * g
            v = 0.999 * v + 0.001 * g * g
            m_hat = m / (1 - 0.9 ** t)
            v_hat = v / (1 - 0.999 ** t)
            expected = expected - 0.1 * m_hat / (np.sqrt(v_hat) + 1e-8)

            optimizer.update([gradient])

        assert np.allclose(weight.detach().numpy(), expected, atol=1e-10)
        assert weight.grad is None

    def test_gradient_count_mismatch(self):
        weight = torch.zeros(2, dtype=torch.float64, requires_grad=True)
        with pytest.raises(ValueError):
            AdamOptimizer([weight], 0.1).update([])


class TestResult:
    """Tests for the result model."""

    def test_derived_views(self):
        builder = TrainResultBuilder()
        builder.add_epoch(EpochResult(False, (3.0, 2.0, 1.5)))
        builder.add_epoch(EpochResult(True, (1.4,)))
        metrics = builder.build()

        assert metrics.epoch_losses == [1.5, 1.4]
        assert metrics.ran_epochs == 2
        assert metrics.ran_iterations_per_epoch == [3, 1]
        assert metrics.did_converge

    def test_to_dict(self):
        metrics = GraphSageTrainMetrics(((1.0, 0.5),), False)

        assert metrics.to_dict() == {
            'metrics': {
                'epochLosses': [0.5],
                'iterationLossesPerEpoch': [[1.0, 0.5]],
                'didConverge': False,
                'ranEpochs': 1,
                'ranIterationsPerEpoch': [2],
            }
        }

    def test_builder_is_finished_after_build(self):
        builder = TrainResultBuilder()
        builder.build()
        with pytest.raises(RuntimeError):
            builder.add_epoch(EpochResult(False, (1.0,)))

    def test_model_train_result(self):
        metrics = GraphSageTrainMetrics((), False)
        result = ModelTrainResult.of(metrics, [])

        assert result.metrics is metrics
        assert result.layers == ()


class TestProgressTracker:
    """Tests for progress logging."""

    def test_task_layout(self):
        tasks = progress_tasks(number_of_batches=5, batches_per_iteration=2, max_iterations=3, epochs=4)

        assert [t.description for t in tasks] == ["Prepare batches", "Train model"]
        assert tasks[0].volume == 5
        assert tasks[1].max_iterations == 4
        epoch = tasks[1].subtasks[0]
        assert epoch.description == "Epoch"
        assert epoch.max_iterations == 3
        assert epoch.subtasks[0].volume == 2

    def test_labels_and_percentages(self):
        tracker = ProgressTracker(progress_tasks(2, 4, 3, 2), verbose=False)

        tracker.begin_subtask("Train model")
        tracker.begin_subtask("Epoch")
        tracker.begin_subtask("Iteration")
        for _ in range(4):
            tracker.log_progress()
        tracker.log_info("Average loss per node: 1.0")
        tracker.end_subtask("Iteration")
        tracker.begin_subtask("Iteration")

        messages = tracker.messages
        assert "Train model :: Epoch 1 of 2 :: Iteration 1 of 3 :: Start" in messages
        assert "Train model :: Epoch 1 of 2 :: Iteration 1 of 3 100%" in messages
        assert "Train model :: Epoch 1 of 2 :: Iteration 1 of 3 :: Average loss per node: 1.0" in messages
        assert messages[-1] == "Train model :: Epoch 1 of 2 :: Iteration 2 of 3 :: Start"

    def test_mismatched_end(self):
        tracker = ProgressTracker.empty()
        tracker.begin_subtask("Prepare batches")

        with pytest.raises(ValueError):
            tracker.end_subtask("Train model")

    def test_end_without_begin(self):
        with pytest.raises(ValueError):
            ProgressTracker.empty().end_subtask("Epoch")

    def test_verbose_prints(self, capsys):
        tracker = ProgressTracker()
        tracker.log_info("hello")

        assert "hello" in capsys.readouterr().out

    def test_empty_is_silent(self, capsys):
        tracker = ProgressTracker.empty()
        tracker.begin_subtask("Prepare batches")

        assert capsys.readouterr().out == ""


class TestBatchTaskSuppliers:
    """Tests for eager and lazy batch task creation."""

    def test_eager_creates_tasks_once(self):
        created = []

        def create_task(batch):
            created.append(batch)
            return len(created)

        batches = [np.array([i]) for i in range(3)]
        supplier = EagerBatchTaskSupplier(create_task, batches, 5, np.random.default_rng(0))

        drawn = supplier() + supplier()
        assert len(created) == 3
        assert len(drawn) == 10
        assert set(drawn) <= {1, 2, 3}

    def test_lazy_creates_tasks_per_draw(self):
        created = []

        def create_task(batch):
            created.append(int(batch[0]))
            return batch

        batches = [np.array([i]) for i in range(3)]
        supplier = LazyBatchTaskSupplier(create_task, batches, 2, np.random.default_rng(0))

        assert created == []
        supplier()
        supplier()
        assert len(created) == 4


class TestMapOrCancel:
    """Tests for fan-out of work onto the pool."""

    def test_results_in_item_order(self):
        with ThreadPoolExecutor(max_workers=3) as executor:
            assert map_or_cancel(executor, lambda x: x * x, range(6)) == [0, 1, 4, 9, 16, 25]

    def test_failure_cancels_queued_work(self):
        """Test that calls queued behind a failure never run."""
        release = threading.Event()
        ran = []

        def work(item):
            if item == 0:
                raise RuntimeError("first item failed")
            if item == 1:
                # holds the only worker until the failure has been handled
                release.wait(timeout=5)
            ran.append(item)

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            with pytest.raises(RuntimeError, match="first item failed"):
                map_or_cancel(executor, work, range(6))
        finally:
            release.set()
            executor.shutdown(wait=True)

        assert ran in ([], [1])


class FailingTrainer(GraphSageModelTrainer):
    """Trainer whose batch tasks fail."""

    def _create_batch_task(self, extended_batch, graph, features, weights, seed):
        def fail():
            raise RuntimeError("batch evaluation failed")

        return BatchTask(fail, weights, self.progress_tracker, self.termination_flag)


class StoppingTracker(ProgressTracker):
    """Stops the training when the first iteration begins."""

    def __init__(self, flag):
        super().__init__(verbose=False)
        self.flag = flag

    def begin_subtask(self, description):
        if description == "Iteration":
            self.flag.stop()
        super().begin_subtask(description)


class TestGraphSageModelTrainer:
    """Tests for the training loop."""

    def test_runs_all_iterations_without_convergence(self, karate_graph, features):
        parameters = small_parameters(epochs=2, max_iterations=3, tolerance=0.0)
        trainer = GraphSageModelTrainer(parameters, feature_dimension=5)

        result = trainer.train(karate_graph, features)

        assert result.metrics.ran_iterations_per_epoch == [3, 3]
        assert not result.metrics.did_converge
        assert all(loss > 0 for losses in result.metrics.iteration_losses_per_epoch for loss in losses)
        assert len(result.layers) == 2

    def test_converges_on_second_iteration(self, karate_graph, features):
        """Test that the first iteration never converges (previous loss is NaN)."""
        parameters = small_parameters(epochs=3, max_iterations=5, tolerance=1e9)

        result = GraphSageModelTrainer(parameters, 5).train(karate_graph, features)

        assert result.metrics.did_converge
        assert result.metrics.ran_epochs == 1
        assert result.metrics.ran_iterations_per_epoch == [2]

    def test_previous_loss_carries_across_epochs(self, karate_graph, features):
        parameters = small_parameters(epochs=3, max_iterations=1, tolerance=1e9)

        result = GraphSageModelTrainer(parameters, 5).train(karate_graph, features)

        assert result.metrics.did_converge
        assert result.metrics.ran_iterations_per_epoch == [1, 1]

    def test_weights_updated(self, karate_graph, features):
        parameters = small_parameters(max_iterations=2, tolerance=0.0)
        trainer = GraphSageModelTrainer(parameters, 5)
        before = [w.detach().clone() for w in trainer.weights()]

        result = trainer.train(karate_graph, features)

        after = [w.detach() for layer in result.layers for w in layer.weights()]
        assert any(not torch.equal(a, b) for a, b in zip(before, after))

    def test_label_projection_weights_trained(self, karate_graph, features):
        """Test that label projections are trained together with the layers."""
        projections = create_label_projection_weights(2, 3, 5, random_seed=0)
        before = [w.detach().clone() for w in projections]
        labels = np.arange(karate_graph.node_count()) % 2
        trainer = GraphSageModelTrainer(
            small_parameters(max_iterations=2, tolerance=0.0),
            feature_dimension=3,
            feature_function=MultiLabelFeatureFunction(labels, projections),
            label_projection_weights=projections
        )

        assert all(a is b for a, b in zip(trainer.weights()[:2], projections))

        result = trainer.train(karate_graph, features)

        assert result.layers[0].input_dimension == 3
        assert all(not torch.equal(a, b.detach()) for a, b in zip(before, projections))

    def test_label_projection_dimension_checked(self):
        with pytest.raises(ValueError):
            GraphSageModelTrainer(
                small_parameters(), 4,
                label_projection_weights=create_label_projection_weights(2, 3, 5)
            )

    def test_reproducible_with_seed(self, karate_graph, features):
        parameters = small_parameters(epochs=2, max_iterations=2, tolerance=0.0)

        a = GraphSageModelTrainer(parameters, 5).train(karate_graph, features)
        b = GraphSageModelTrainer(parameters, 5).train(karate_graph, features)

        assert a.metrics == b.metrics
        for layer_a, layer_b in zip(a.layers, b.layers):
            for wa, wb in zip(layer_a.weights(), layer_b.weights()):
                assert torch.equal(wa, wb)

    def test_pool_aggregator_with_penalty(self, karate_graph, features):
        parameters = small_parameters(
            aggregator='pool', activation_function='relu', penalty_l2=0.01, tolerance=0.0
        )

        result = GraphSageModelTrainer(parameters, 5).train(karate_graph, features)

        assert result.metrics.ran_iterations_per_epoch == [2]
        assert all(math.isfinite(loss) for loss in result.metrics.iteration_losses_per_epoch[0])

    def test_weighted_graph(self, features):
        nx_graph = nx.karate_club_graph()
        graph = Graph.from_networkx(nx_graph, weight='weight')

        result = GraphSageModelTrainer(small_parameters(tolerance=0.0), 5).train(graph, features)

        assert result.metrics.ran_epochs == 1

    def test_loss_logged_per_iteration(self, karate_graph, features):
        tracker = ProgressTracker(verbose=False)
        parameters = small_parameters(max_iterations=2, tolerance=0.0)

        result = GraphSageModelTrainer(parameters, 5, progress_tracker=tracker).train(karate_graph, features)

        logged = [m for m in tracker.messages if "Average loss per node: " in m]
        assert len(logged) == 2
        expected = f"Average loss per node: {result.metrics.iteration_losses_per_epoch[0][0]:.10f}"
        assert logged[0].endswith(expected)

    def test_negative_weight_fails_before_training(self, features):
        nx_graph = nx.karate_club_graph()
        nx_graph[0][1]['weight'] = -1.0
        graph = Graph.from_networkx(nx_graph, weight='weight')
        tracker = ProgressTracker(verbose=False)

        with pytest.raises(NegativeRelationshipWeightError):
            GraphSageModelTrainer(small_parameters(), 5, progress_tracker=tracker).train(graph, features)

        assert tracker.messages == []

    def test_feature_mismatch(self, karate_graph):
        trainer = GraphSageModelTrainer(small_parameters(), 5)

        with pytest.raises(ValueError):
            trainer.train(karate_graph, np.ones((karate_graph.node_count(), 4)))
        with pytest.raises(ValueError):
            trainer.train(karate_graph, np.ones((3, 5)))

    def test_first_layer_must_match_features(self):
        with pytest.raises(ValueError):
            GraphSageModelTrainer(
                small_parameters(), 5,
                layer_configs=[LayerConfig(rows=4, cols=6, sample_size=2)]
            )

    def test_terminated_before_start(self, karate_graph, features):
        flag = TerminationFlag()
        flag.stop()

        with pytest.raises(TrainingTerminatedError):
            GraphSageModelTrainer(small_parameters(), 5, termination_flag=flag).train(karate_graph, features)

    def test_terminated_during_training(self, karate_graph, features):
        flag = TerminationFlag()
        trainer = GraphSageModelTrainer(
            small_parameters(), 5, progress_tracker=StoppingTracker(flag), termination_flag=flag
        )

        with pytest.raises(TrainingTerminatedError):
            trainer.train(karate_graph, features)

    def test_failed_task_fails_iteration(self, karate_graph, features):
        trainer = FailingTrainer(small_parameters(), 5)

        with pytest.raises(RuntimeError, match="batch evaluation failed"):
            trainer.train(karate_graph, features)


class TestTrainFunction:
    """Tests for the high-level train function."""

    def test_train_with_explicit_layers(self, karate_graph, features, capsys):
        layer_configs = [
            LayerConfig(rows=3, cols=5, sample_size=4, aggregator_type='pool', random_seed=1),
        ]

        result = train(
            karate_graph,
            features,
            layer_configs=layer_configs,
            parameters=small_parameters(tolerance=0.0)
        )

        assert len(result.layers) == 1
        assert result.layers[0].output_dimension == 3
        assert "Average loss per node" in capsys.readouterr().out

    def test_train_accepts_tensor_features(self, karate_graph, features):
        result = train(
            karate_graph,
            torch.from_numpy(features).float(),
            parameters=small_parameters(),
            progress_tracker=ProgressTracker.empty()
        )

        assert result.metrics.ran_epochs == 1


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
