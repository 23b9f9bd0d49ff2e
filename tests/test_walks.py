"""
Tests for Walks Module.

Tests random walks, neighborhood sampling, uniform range sampling and
negative sampling.
"""

import pytest
import torch
import numpy as np
import networkx as nx
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from graphsage_train.data import Graph
from graphsage_train.walks import (
    RandomWalkSampler,
    NeighborhoodSampler,
    UniformSamplerFromRange,
    DegreeBiasedNegativeSampler,
)


@pytest.fixture
def chain_graph():
    """Chain 0-1-2-3-4 plus an isolated node 5."""
    edge_index = torch.tensor([
        [0, 1, 2, 3],  # sources
        [1, 2, 3, 4]   # targets
    ])
    return Graph.from_edge_index(edge_index, num_nodes=6)


@pytest.fixture
def star_graph():
    """Node 0 connected to nodes 1..20."""
    return Graph.from_networkx(nx.star_graph(20))


class TestRandomWalkSampler:
    """Tests for random walks."""

    @pytest.fixture
    def walker(self, chain_graph):
        return RandomWalkSampler(chain_graph, walk_length=10, random=np.random.default_rng(42))

    def test_walk_starts_correctly(self, walker):
        """Test that walk starts from specified node."""
        walk = walker.walk(2)
        assert walk[0] == 2

    def test_walk_respects_length(self, walker):
        """Test that walk doesn't exceed max length."""
        assert len(walker.walk(0)) == 10
        assert len(walker.walk(0, walk_length=3)) == 3

    def test_walk_valid_transitions(self, chain_graph, walker):
        """Test that walk only uses existing relationships."""
        walk = walker.walk(0).tolist()

        for current, next_node in zip(walk, walk[1:]):
            assert next_node in chain_graph.neighbors(current).tolist()

    def test_walk_on_isolated_node(self, walker):
        """Test that dead ends stop the walk."""
        walk = walker.walk(5)
        assert walk.tolist() == [5]

    def test_same_seed_same_walk(self, chain_graph):
        """Test reproducibility for equal seeds."""
        a = RandomWalkSampler(chain_graph, 20, 0.4, 0.6, np.random.default_rng(7)).walk(2)
        b = RandomWalkSampler(chain_graph, 20, 0.4, 0.6, np.random.default_rng(7)).walk(2)
        assert a.tolist() == b.tolist()

    def test_weighted_walk_follows_weights(self):
        """Test that zero-weight relationships are never taken."""
        nx_graph = nx.Graph()
        nx_graph.add_edge(0, 1, weight=1.0)
        nx_graph.add_edge(0, 2, weight=0.0)
        graph = Graph.from_networkx(nx_graph, weight='weight')

        walker = RandomWalkSampler(graph, walk_length=2, random=np.random.default_rng(0))
        for _ in range(50):
            assert walker.walk(0)[1] == 1

    def test_invalid_arguments(self, chain_graph):
        with pytest.raises(ValueError):
            RandomWalkSampler(chain_graph, walk_length=0)
        with pytest.raises(ValueError):
            RandomWalkSampler(chain_graph, walk_length=5, return_factor=0.0)


class TestUniformSamplerFromRange:
    """Tests for uniform sampling of distinct ids."""

    def test_distinct_and_valid(self):
        """Test that samples are distinct and pass the predicate."""
        sampler = UniformSamplerFromRange(np.random.default_rng(42))
        samples = sampler.sample(0, 100, 98, 10, lambda node: node % 50 == 0)

        assert len(samples) == 10
        assert len(set(samples.tolist())) == 10
        assert all(0 <= node < 100 and node % 50 != 0 for node in samples.tolist())

    def test_returns_all_valid_when_requesting_more(self):
        """Test that too large requests return every valid id."""
        sampler = UniformSamplerFromRange(np.random.default_rng(42))
        samples = sampler.sample(10, 20, 5, 8, lambda node: node % 2 == 1)

        assert sorted(samples.tolist()) == [10, 12, 14, 16, 18]

    def test_rejection_sampling_large_range(self):
        """Test large ranges beyond the scan threshold."""
        sampler = UniformSamplerFromRange(np.random.default_rng(3))
        samples = sampler.sample(0, 100_000, 99_999, 20, lambda node: node == 0)

        assert len(samples) == 20
        assert len(set(samples.tolist())) == 20
        assert 0 not in samples.tolist()

    def test_empty_range(self):
        sampler = UniformSamplerFromRange(np.random.default_rng(0))
        assert len(sampler.sample(5, 5, 0, 3, lambda node: False)) == 0


class TestNeighborhoodSampler:
    """Tests for walk-biased neighborhood sampling."""

    def test_exact_number_of_distinct_valid_samples(self):
        """Test that k distinct valid nodes are returned when available."""
        graph = Graph.from_networkx(nx.karate_club_graph())
        invalid = {0, 5, 7}

        for seed in range(5):
            sampler = NeighborhoodSampler(graph, np.random.default_rng(seed), k=8)
            samples = sampler.sample(
                node_id=0,
                lower_bound_on_valid_samples_in_range=graph.node_count() - len(invalid),
                number_of_samples=8,
                is_invalid_sample=lambda node: node in invalid
            ).tolist()

            assert len(samples) == 8
            assert len(set(samples)) == 8
            assert not invalid & set(samples)

    def test_fewer_valid_nodes_than_requested(self, chain_graph):
        """Test that the result is shorter when the range lacks valid nodes."""
        sampler = NeighborhoodSampler(chain_graph, np.random.default_rng(1), k=5)
        samples = sampler.sample(0, 2, 5, lambda node: node not in (3, 4))

        assert sorted(samples.tolist()) == [3, 4]

    def test_small_neighborhood_returned_completely(self, chain_graph):
        """Test that nodes with few neighbors return all of them."""
        sampler = NeighborhoodSampler(chain_graph, np.random.default_rng(1), k=3)

        assert sampler.sample_neighbors(2, 3).tolist() == [1, 3]
        assert sampler.sample_neighbors(5, 3).tolist() == []

    def test_large_neighborhood_sampled(self, star_graph):
        """Test that exactly sample_size distinct neighbors are drawn."""
        sampler = NeighborhoodSampler(star_graph, np.random.default_rng(11), k=5)
        samples = sampler.sample_neighbors(0, 5).tolist()

        assert len(samples) == 5
        assert len(set(samples)) == 5
        assert set(samples) <= set(range(1, 21))

    def test_self_loops_excluded(self):
        """Test that a node never samples itself."""
        edge_index = torch.tensor([[0, 0, 0], [0, 1, 2]])
        graph = Graph.from_edge_index(edge_index, num_nodes=3)
        sampler = NeighborhoodSampler(graph, np.random.default_rng(0), k=1)

        assert sampler.sample_neighbors(0, 5).tolist() == [1, 2]
        samples = sampler.sample_neighbors(0, 1).tolist()
        assert len(samples) == 1 and samples[0] in (1, 2)

    def test_invalid_k(self, chain_graph):
        with pytest.raises(ValueError):
            NeighborhoodSampler(chain_graph, np.random.default_rng(0), k=0)


class TestNegativeSampler:
    """Tests for degree-biased negative sampling."""

    def test_output_shape(self, star_graph):
        """Test output shape and range."""
        sampler = DegreeBiasedNegativeSampler(star_graph)
        negatives = sampler.sample(100, np.random.default_rng(42))

        assert negatives.shape == (100,)
        assert negatives.min() >= 0
        assert negatives.max() < star_graph.node_count()

    def test_degree_bias(self, star_graph):
        """Test that high-degree nodes are sampled more often."""
        sampler = DegreeBiasedNegativeSampler(star_graph, exponent=0.75)
        negatives = sampler.sample(20000, np.random.default_rng(42))

        # degree 20 vs degree 1: expected share 20^0.75 / (20^0.75 + 20) ~ 0.32
        hub_share = np.mean(negatives == 0)
        uniform_share = 1.0 / star_graph.node_count()
        assert hub_share > 3 * uniform_share

    def test_probabilities_sum_to_one(self, chain_graph):
        sampler = DegreeBiasedNegativeSampler(chain_graph)
        assert abs(sampler.probs.sum() - 1.0) < 1e-9


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
