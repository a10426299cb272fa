"""
Test suite for the multi-target IMM filter.

Tests:
- Model-transition matrix validation and normalization
- Exponential survival model
- Target insertion, IMM mixing and prediction
- Correction, newborn creation and labelling
- Stochastic target death
- Deep copies for resampling

Author: MTTrack Project
"""

import warnings

import pytest
import numpy as np
import numpy.testing as npt

from ..state_models import (
    STATE_DIM, DynamicModelType, GaussianComponent, GaussianMixture, TargetLabel
)
from ..imm_filter import normalize_markov_matrix, ExponentialSurvival
from ..association import DataAssociation
from .conftest import make_frame


def make_belief(mean, variance=0.1, weights=(0.5, 0.5)):
    """Two-component belief with identical components."""
    components = [GaussianComponent(np.asarray(mean, dtype=float), variance * np.eye(STATE_DIM))
                  for _ in weights]
    return GaussianMixture(np.array(weights, dtype=float), components)


def associate(*pairs):
    """Build an association from (target ID, observation index) pairs."""
    association = DataAssociation()
    for target_id, obs_index in pairs:
        association.set_association(target_id, obs_index)
    return association


class TestMarkovMatrix:
    """Test model-transition matrix handling."""

    def test_valid_matrix_unchanged(self):
        matrix = np.array([[0.9, 0.2], [0.1, 0.8]])
        npt.assert_allclose(normalize_markov_matrix(matrix, 2), matrix)

    def test_wrong_shape_raises(self):
        with pytest.raises(ValueError):
            normalize_markov_matrix(np.eye(3), 2)

    def test_negative_entry_raises(self):
        with pytest.raises(ValueError):
            normalize_markov_matrix(np.array([[1.1, 0.0], [-0.1, 1.0]]), 2)

    def test_column_rescaled_with_warning(self):
        with pytest.warns(UserWarning):
            matrix = normalize_markov_matrix(np.array([[2.0, 0.1], [2.0, 0.9]]), 2)
        npt.assert_allclose(matrix[:, 0], [0.5, 0.5])
        npt.assert_allclose(matrix.sum(axis=0), [1.0, 1.0])

    def test_nearly_normalized_column_rescaled_silently(self):
        column = np.array([0.6, 0.4 + 1e-9])
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            matrix = normalize_markov_matrix(np.column_stack([column, [0.2, 0.8]]), 2)
        npt.assert_allclose(matrix[:, 0], column / column.sum(), rtol=1e-15)
        assert matrix[1, 0] < 0.4 + 1e-9
        npt.assert_allclose(matrix.sum(axis=0), [1.0, 1.0], rtol=0, atol=1e-15)

    def test_zero_column_becomes_uniform(self):
        with pytest.warns(UserWarning):
            matrix = normalize_markov_matrix(np.array([[0.0, 0.1], [0.0, 0.9]]), 2)
        npt.assert_allclose(matrix[:, 0], [0.5, 0.5])


class TestExponentialSurvival:
    """Test survival model."""

    def test_death_probability(self):
        survival = ExponentialSurvival(0.5)
        npt.assert_allclose(survival.death_probability(2.0), 1.0 - np.exp(-1.0))
        npt.assert_allclose(survival.survival_probability(2.0), np.exp(-1.0))

    def test_zero_rate_never_dies(self):
        survival = ExponentialSurvival(0.0)
        assert survival.death_probability(1000.0) == 0.0
        assert survival.half_life() == np.inf

    def test_recently_associated_never_dies(self):
        assert ExponentialSurvival(3.0).death_probability(0.0) == 0.0

    def test_half_life(self):
        npt.assert_allclose(ExponentialSurvival(0.5).half_life(), 2.0 * np.log(2.0))

    def test_negative_rate_raises(self):
        with pytest.raises(ValueError):
            ExponentialSurvival(-0.1)


class TestTargets:
    """Test target insertion and removal."""

    def test_add_target(self, make_filter):
        imm = make_filter()
        imm.add_target(3, make_belief([10, 10, 10, 10, 5]))

        assert imm.target_ids == [3]
        assert imm.num_targets == 1
        assert imm.labels[3].id == 3
        npt.assert_allclose(imm.predicted_observations[3].mean(), [10, 10, 5])

    def test_duplicate_target_raises(self, make_filter):
        imm = make_filter()
        imm.add_target(1, make_belief(np.zeros(STATE_DIM)))
        with pytest.raises(ValueError):
            imm.add_target(1, make_belief(np.zeros(STATE_DIM)))

    def test_component_count_mismatch_raises(self, make_filter):
        imm = make_filter()
        with pytest.raises(ValueError):
            imm.add_target(1, make_belief(np.zeros(STATE_DIM), weights=(1.0,)))

    def test_remove_target(self, make_filter):
        imm = make_filter()
        imm.add_target(1, make_belief(np.zeros(STATE_DIM)))
        imm.remove_target(1)
        assert imm.num_targets == 0
        assert 1 not in imm.predicted_observations


class TestPrediction:
    """Test IMM mixing and prediction."""

    def test_mixing_weights_follow_markov_matrix(self, make_filter, assert_probabilities_valid):
        imm = make_filter(transition=np.array([[0.9, 0.2], [0.1, 0.8]]))
        imm.add_target(1, make_belief([10, 10, 10, 10, 5], weights=(1.0, 0.0)))
        imm.predict()

        weights = imm.beliefs[1].weights
        assert_probabilities_valid(weights)
        npt.assert_allclose(weights, [0.9, 0.1])

    def test_stationary_target_stays(self, make_filter):
        imm = make_filter()
        imm.add_target(1, make_belief([10, 20, 10, 20, 5]))
        imm.predict()

        npt.assert_allclose(imm.beliefs[1].mean(), [10, 20, 10, 20, 5])
        npt.assert_allclose(imm.predicted_observations[1].mean(), [10, 20, 5])

    def test_prediction_inflates_covariance(self, make_filter):
        imm = make_filter()
        imm.add_target(1, make_belief([10, 20, 10, 20, 5]))
        before = imm.beliefs[1].collapse().covariance
        imm.predict()
        after = imm.beliefs[1].collapse().covariance

        assert np.all(np.diag(after) > np.diag(before))

    def test_size_clamped(self, make_filter):
        imm = make_filter(size_min=1.0, size_max=3.0)
        imm.add_target(1, make_belief([10, 20, 10, 20, 5]))
        imm.add_target(2, make_belief([10, 20, 10, 20, -2]))
        imm.predict()

        for component in imm.beliefs[1].components:
            assert component.mean[4] == 3.0
        for component in imm.beliefs[2].components:
            assert component.mean[4] == 1.0


class TestUpdate:
    """Test correction, birth and labelling."""

    def test_rejects_non_exclusive_association(self, make_filter, random_state):
        imm = make_filter()
        with pytest.raises(TypeError):
            imm.update(make_frame([[1, 2, 3]]), {0: 1}, random_state)

    def test_association_out_of_range_raises(self, make_filter, random_state):
        imm = make_filter()
        with pytest.raises(ValueError):
            imm.update(make_frame([[1, 2, 3]]), associate((1, 4)), random_state)

    def test_newborn_target(self, make_filter, random_state):
        imm = make_filter()
        labelled = imm.update(make_frame([[30, 40, 6]]), associate((5, 0)), random_state)

        assert imm.target_ids == [5]
        assert labelled.get_label(0).id == 5
        assert imm.labels[5].time_since_association == 0.0
        npt.assert_allclose(imm.beliefs[5].mean(), [30, 40, 30, 40, 6])

    def test_clutter_labelled_zero(self, make_filter, random_state):
        imm = make_filter()
        frame = make_frame([[30, 40, 6], [70, 10, 3]], ids=[4, 4])
        labelled = imm.update(frame, associate((1, 1)), random_state)

        assert labelled.ids() == [0, 1]
        assert frame.ids() == [4, 4]

    def test_correction_pulls_towards_observation(self, make_filter, random_state):
        imm = make_filter()
        imm.add_target(1, make_belief([10, 10, 10, 10, 5], variance=1.0))
        imm.predict()
        before = imm.beliefs[1].collapse()
        imm.update(make_frame([[12, 10, 5]]), associate((1, 0)), random_state)
        after = imm.beliefs[1].collapse()

        assert 10.0 < after.mean[0] < 12.0
        assert after.covariance[0, 0] < before.covariance[0, 0]

    def test_moving_target_prefers_linear_extrapolation(self, make_filter, random_state):
        imm = make_filter()
        imm.add_target(1, make_belief([10, 0, 7, 0, 5]))
        imm.predict()
        imm.update(make_frame([[13, 0, 5]]), associate((1, 0)), random_state)

        weights = imm.beliefs[1].weights
        assert weights[1] > weights[0]
        assert imm.labels[1].motion_model == DynamicModelType.LINEAR_EXTRAPOLATION

    def test_time_since_association(self, make_filter, random_state):
        imm = make_filter(delta_t=0.5)
        imm.add_target(1, make_belief([10, 10, 10, 10, 5]))
        imm.add_target(2, make_belief([50, 50, 50, 50, 5]))
        imm.predict()
        imm.update(make_frame([[10, 10, 5]]), associate((1, 0)), random_state)

        assert imm.labels[1].time_since_association == 0.0
        assert imm.labels[2].time_since_association == 0.5


class TestDeath:
    """Test stochastic target death."""

    def test_unassociated_target_dies_with_high_rate(self, make_filter, random_state):
        imm = make_filter(lambda_death=50.0)
        imm.add_target(1, make_belief([10, 10, 10, 10, 5]))
        imm.predict()
        imm.update(make_frame([]), DataAssociation(), random_state)

        assert imm.num_targets == 0

    def test_associated_target_survives(self, make_filter, random_state):
        imm = make_filter(lambda_death=50.0)
        imm.add_target(1, make_belief([10, 10, 10, 10, 5]))
        imm.predict()
        imm.update(make_frame([[10, 10, 5]]), associate((1, 0)), random_state)

        assert imm.target_ids == [1]

    def test_zero_rate_targets_never_die(self, make_filter, random_state):
        imm = make_filter(lambda_death=0.0)
        imm.add_target(1, make_belief([10, 10, 10, 10, 5]))
        for _ in range(20):
            imm.predict()
            imm.update(make_frame([]), DataAssociation(), random_state)

        assert imm.target_ids == [1]
        assert imm.labels[1].time_since_association == 20.0


class TestCopyAndMean:
    """Test deep copies and point estimates."""

    def test_copy_is_independent(self, make_filter, random_state):
        imm = make_filter()
        imm.add_target(1, make_belief([10, 10, 10, 10, 5]))
        other = imm.copy()

        other.predict()
        other.update(make_frame([[40, 40, 5]]), associate((2, 0)), random_state)
        other.labels[1].time_since_association = 9.0

        assert imm.target_ids == [1]
        assert imm.labels[1].time_since_association == 0.0
        npt.assert_allclose(imm.beliefs[1].mean(), [10, 10, 10, 10, 5])
        assert other.target_ids == [1, 2]

    def test_get_mean(self, make_filter):
        imm = make_filter()
        imm.add_target(2, make_belief([1, 2, 3, 4, 5]), TargetLabel(id=0))
        means = imm.get_mean()

        assert means.dim == STATE_DIM
        assert means.ids() == [2]
        npt.assert_allclose(means.get_vector(0), [1, 2, 3, 4, 5])
