"""
Test suite for the multi-target tracking system.

This package contains tests for all tracking components:
- State and observation models
- Multi-target IMM filter (prediction, correction, birth, death)
- Data associations and association proposals
- Sample histories and the RBMCDA particle engine
- Observation adjacency graph and greedy partitioning
- End-to-end tracker scenarios and track evaluation

Test Structure:
- test_state_models.py: Tests for states, mixtures and linear-Gaussian models
- test_imm_filter.py: Tests for the multi-target IMM filter
- test_association.py: Tests for associations and proposals
- test_sample_info.py: Tests for per-particle association histories
- test_rbmcda.py: Tests for the particle engine
- test_adjacency.py: Tests for posterior weights, pruning and the observation graph
- test_partitioning.py: Tests for greedy multipartite partitioning
- test_tracker.py: Integration tests for complete tracker runs
- test_evaluation.py: Tests for track evaluation

To run all tests:
    pytest mttrack/tracking/tests/

To skip the integration scenarios:
    pytest mttrack/tracking/tests/ -m "not integration"

Author: MTTrack Project
"""
