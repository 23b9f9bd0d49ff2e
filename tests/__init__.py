"""
Test Suite for GraphSAGE Training.

This package contains tests for all modules:
- test_graph.py: CSR graph construction and relationship weights
- test_walks.py: Random walks, neighborhood and negative sampling
- test_model.py: Subgraphs, layers, embeddings and loss computation
- test_training.py: Parameters, batches, optimizer and training loop
- test_integration.py: End-to-end training runs and configuration
"""
