"""
GraphSAGE Model Trainer.

This package trains the weights of a GraphSAGE layer stack on a graph with
node features, using the unsupervised negative sampling objective: nodes
reached by short random walks should get similar embeddings, nodes drawn
by degree should not.

Submodules:
    - data: Read-only CSR graph and relationship weight validation
    - walks: Random walks, neighborhood sampling and negative sampling
    - model: Layers, aggregators, subgraphs and the batch loss
    - training: Batch preparation, training loop, metrics and progress

Example:
    >>> import networkx as nx
    >>> import numpy as np
    >>> from graphsage_train.data import Graph
    >>> from graphsage_train.training import train, GraphSageTrainParameters
    >>>
    >>> graph = Graph.from_networkx(nx.karate_club_graph())
    >>> features = np.random.default_rng(0).random((graph.node_count(), 8))
    >>> result = train(graph, features, parameters=GraphSageTrainParameters(random_seed=42))
"""

__version__ = "1.0.0"
__author__ = "GraphSAGE Train Team"

# Version info
VERSION_INFO = {
    'major': 1,
    'minor': 0,
    'patch': 0,
    'release': 'stable'
}
