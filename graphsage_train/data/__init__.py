"""
Data Module for GraphSAGE Training.

This module provides the read-only graph the trainer samples from:
1. CSR adjacency with optional relationship weights
2. Construction from edge_index tensors or NetworkX graphs
3. Relationship weight validation

Classes:
    Graph: Read-only CSR graph with concurrent copies for worker threads
    NegativeRelationshipWeightError: Raised for negative relationship weights

Example:
    >>> import networkx as nx
    >>> from graphsage_train.data import Graph
    >>>
    >>> graph = Graph.from_networkx(nx.karate_club_graph())
    >>> graph.node_count()
    34
"""

from .graph import Graph, NegativeRelationshipWeightError, validate_relationship_weights

__all__ = [
    'Graph',
    'NegativeRelationshipWeightError',
    'validate_relationship_weights',
]
