"""
Pytest configuration and shared fixtures for tracking tests.

This module provides common fixtures, synthetic scenario generators and
configuration used across all tracking system tests.

Author: MTTrack Project
"""

import pytest
import numpy as np
from typing import List, Tuple, Optional
import warnings

from ..state_models import (
    MultiState, DynamicNoiseParameters, create_dynamic_models,
    create_observation_model, birth_covariance
)
from ..imm_filter import IMMParameters, MultiTargetIMMFilter
from ..association import (
    AssociationPriors, PoissonCountPrior, UniformSpatialPrior,
    SequentialAssociationProposal
)

np.seterr(all='warn')

warnings.filterwarnings("ignore", category=RuntimeWarning, message="divide by zero encountered in log")


DOMAIN_LOWER = np.array([0.0, 0.0, 0.0])
DOMAIN_UPPER = np.array([100.0, 100.0, 20.0])


def make_frame(rows: List[List[float]], ids: Optional[List[int]] = None) -> MultiState:
    """Build an observation frame from rows of ``[x, y, size]``."""
    return MultiState.from_array(np.array(rows, dtype=float).reshape(-1, 3), ids)


@pytest.fixture
def random_state():
    """Seeded random number generator for reproducible tests."""
    return np.random.RandomState(42)


@pytest.fixture
def noise_parameters():
    """Process noise variances used by the filter fixtures."""
    return DynamicNoiseParameters(q_xy=1.0, q_xy_prev=0.5, q_size=0.5)


@pytest.fixture
def dynamic_models(noise_parameters):
    """Random-walk and linear-extrapolation models."""
    return create_dynamic_models(noise_parameters)


@pytest.fixture
def observation_model():
    """Observation model with small measurement noise."""
    return create_observation_model(r_xy=0.5, r_size=0.5)


@pytest.fixture
def make_filter(dynamic_models, observation_model):
    """Factory for multi-target IMM filters."""
    def _make_filter(lambda_death: float = 0.0,
                     transition: Optional[np.ndarray] = None,
                     delta_t: float = 1.0,
                     size_min: Optional[float] = None,
                     size_max: Optional[float] = None) -> MultiTargetIMMFilter:
        if transition is None:
            transition = np.array([[0.9, 0.1], [0.1, 0.9]])
        params = IMMParameters(transition_probabilities=transition, delta_t=delta_t,
                               lambda_death=lambda_death, size_min=size_min,
                               size_max=size_max)
        return MultiTargetIMMFilter(params, dynamic_models, observation_model,
                                    birth_covariance(0.5, 0.5))

    return _make_filter


@pytest.fixture
def association_priors():
    """Association model over a 100 x 100 domain with sizes up to 20."""
    def _make_priors(p_detect: float = 0.95, lambda_clutter: float = 0.5,
                     lambda_birth: float = 0.1) -> AssociationPriors:
        return AssociationPriors(
            p_detect=p_detect,
            clutter_count=PoissonCountPrior(lambda_clutter),
            birth_count=PoissonCountPrior(lambda_birth),
            clutter_spatial=UniformSpatialPrior(DOMAIN_LOWER, DOMAIN_UPPER),
            birth_spatial=UniformSpatialPrior(DOMAIN_LOWER, DOMAIN_UPPER)
        )

    return _make_priors


@pytest.fixture
def proposal(association_priors):
    """Naive sequential association proposal."""
    return SequentialAssociationProposal(association_priors())


@pytest.fixture
def stationary_scenario():
    """Generate a single stationary target without clutter."""
    def _generate(num_frames: int = 10, position: Tuple[float, float] = (50.0, 50.0),
                  size: float = 5.0, noise_std: float = 0.2,
                  seed: int = 0) -> Tuple[List[MultiState], List[MultiState]]:
        """
        Generate observations of one stationary target.

        Returns:
            Tuple of (observations, ground truth labelled observations)
        """
        rng = np.random.RandomState(seed)
        observations, truth = [], []
        for _ in range(num_frames):
            z = np.array([position[0], position[1], size]) + rng.normal(0, noise_std, 3)
            observations.append(make_frame([z]))
            truth.append(make_frame([z], ids=[1]))
        return observations, truth

    return _generate


@pytest.fixture
def crossing_scenario():
    """Generate two targets on crossing straight lines."""
    def _generate(num_frames: int = 12, sizes: Tuple[float, float] = (5.0, 12.0),
                  noise_std: float = 0.3,
                  seed: int = 1) -> Tuple[List[MultiState], List[MultiState]]:
        """
        Generate two targets crossing at frame ``num_frames // 2``.

        Returns:
            Tuple of (observations, ground truth labelled observations)
        """
        rng = np.random.RandomState(seed)
        cross = num_frames // 2
        observations, truth = [], []
        for t in range(num_frames):
            a = np.array([20.0 + 3.0 * t, 50.0 + 1.5 * (t - cross), sizes[0]])
            b = np.array([20.0 + 3.0 * t, 50.0 - 1.5 * (t - cross), sizes[1]])
            rows = [a + rng.normal(0, noise_std, 3), b + rng.normal(0, noise_std, 3)]
            observations.append(make_frame(rows))
            truth.append(make_frame(rows, ids=[1, 2]))
        return observations, truth

    return _generate


@pytest.fixture
def outlier_scenario():
    """Generate one stationary target plus a single far-away observation."""
    def _generate(num_frames: int = 8, outlier_frame: int = 4,
                  seed: int = 2) -> Tuple[List[MultiState], List[MultiState]]:
        """
        Generate a target at (20, 20) and one outlier at (90, 90).

        Returns:
            Tuple of (observations, ground truth labelled observations)
        """
        rng = np.random.RandomState(seed)
        observations, truth = [], []
        for t in range(num_frames):
            rows = [np.array([20.0, 20.0, 5.0]) + rng.normal(0, 0.2, 3)]
            ids = [1]
            if t == outlier_frame:
                rows.append(np.array([90.0, 90.0, 18.0]))
                ids.append(0)
            observations.append(make_frame(rows))
            truth.append(make_frame(rows, ids=ids))
        return observations, truth

    return _generate


@pytest.fixture
def assert_probabilities_valid():
    """Utility to assert probabilities are valid."""
    def _check_probabilities(probs: np.ndarray, tolerance: float = 1e-10):
        """Check if probabilities are valid (non-negative, sum to 1)."""
        assert np.all(probs >= 0), f"Negative probabilities found: {probs}"
        assert abs(np.sum(probs) - 1.0) < tolerance, f"Probabilities don't sum to 1: sum = {np.sum(probs)}"
        return True

    return _check_probabilities


@pytest.fixture
def assert_symmetric():
    """Utility to assert matrix is symmetric."""
    def _check_symmetric(matrix: np.ndarray, tolerance: float = 1e-12):
        """Check if matrix is symmetric."""
        assert np.allclose(matrix, matrix.T, atol=tolerance), "Matrix is not symmetric"
        return True

    return _check_symmetric


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    for item in items:
        if "test_tracker" in item.nodeid:
            item.add_marker(pytest.mark.integration)
