"""
Test suite for data association and association proposals.

Tests:
- Exclusive association bookkeeping
- Poisson count and uniform spatial priors
- Sequential proposal sampling, exclusivity and newborn IDs
- Guided sampling
- Nearest-neighbor candidate restriction

Author: MTTrack Project
"""

import pytest
import numpy as np
import numpy.testing as npt

from ..state_models import GaussianComponent, GaussianMixture
from ..association import (
    CLUTTER, NEWBORN, DataAssociation, PoissonCountPrior, UniformSpatialPrior,
    AssociationPriors, SequentialAssociationProposal, NeighborhoodAssociationProposal,
    create_association_proposal
)
from .conftest import make_frame


def predicted(mean, variance=1.0):
    """Single-component predicted observation mixture."""
    component = GaussianComponent(np.asarray(mean, dtype=float), variance * np.eye(3))
    return GaussianMixture(np.ones(1), [component])


class TestDataAssociation:
    """Test exclusive association bookkeeping."""

    def test_set_and_get(self):
        association = DataAssociation()
        association.set_association(3, 0)
        association.set_association(1, 2)

        assert association.get_target(0) == 3
        assert association.get_target(1) is None
        assert association.get_observation(1) == 2
        assert association.get_observation(7) is None
        assert len(association) == 2

    def test_items_sorted_by_observation(self):
        association = DataAssociation()
        association.set_association(5, 4)
        association.set_association(2, 1)
        assert list(association.items()) == [(1, 2), (4, 5)]

    def test_observation_used_twice_raises(self):
        association = DataAssociation()
        association.set_association(1, 0)
        with pytest.raises(ValueError):
            association.set_association(2, 0)

    def test_target_used_twice_raises(self):
        association = DataAssociation()
        association.set_association(1, 0)
        with pytest.raises(ValueError):
            association.set_association(1, 1)

    def test_non_positive_target_raises(self):
        association = DataAssociation()
        with pytest.raises(ValueError):
            association.set_association(0, 0)

    def test_copy_and_equality(self):
        association = DataAssociation()
        association.set_association(1, 0)
        other = association.copy()

        assert other == association
        other.set_association(2, 1)
        assert other != association
        assert len(association) == 1


class TestPriors:
    """Test count and spatial priors."""

    def test_poisson_increment(self):
        prior = PoissonCountPrior(0.5)
        npt.assert_allclose(prior.log_increment(0), np.log(0.5))
        npt.assert_allclose(prior.log_increment(2), np.log(0.5 / 3))

    def test_zero_rate(self):
        prior = PoissonCountPrior(0.0)
        assert prior.log_pmf(0) == 0.0
        assert prior.log_pmf(1) == -np.inf
        assert prior.log_increment(0) == -np.inf

    def test_negative_rate_raises(self):
        with pytest.raises(ValueError):
            PoissonCountPrior(-1.0)

    def test_uniform_density(self):
        prior = UniformSpatialPrior([0, 0, 0], [100, 100, 20])
        npt.assert_allclose(prior.log_pdf(np.array([1.0, 2.0, 3.0])), -np.log(200000.0))

    def test_uniform_density_constant_outside_box(self):
        prior = UniformSpatialPrior([0, 0, 0], [100, 100, 20])
        assert prior.log_pdf(np.array([500.0, -3.0, 90.0])) == prior.log_pdf(np.zeros(3))

    def test_degenerate_axis_ignored(self):
        prior = UniformSpatialPrior([0, 0, 5], [10, 10, 5])
        npt.assert_allclose(prior.log_pdf(np.zeros(3)), -np.log(100.0))

    def test_invalid_detection_probability(self, association_priors):
        with pytest.raises(ValueError):
            association_priors(p_detect=1.5)

    def test_certain_detection_has_finite_odds(self, association_priors):
        assert np.isfinite(association_priors(p_detect=1.0).log_detection_odds())
        assert np.isfinite(association_priors(p_detect=0.0).log_detection_odds())


class TestSequentialProposal:
    """Test the naive sequential association proposal."""

    def test_empty_frame(self, proposal, random_state):
        sample = proposal.draw(make_frame([]), {1: predicted([50, 50, 5])}, 2, random_state)
        assert len(sample.association) == 0
        assert sample.log_probability == 0.0

    def test_newborns_get_consecutive_ids(self, association_priors, random_state):
        proposal = SequentialAssociationProposal(association_priors(lambda_clutter=0.0))
        frame = make_frame([[10, 10, 5], [60, 60, 5], [90, 20, 5]])
        sample = proposal.draw(frame, {}, 7, random_state)

        assert [sample.association.get_target(m) for m in range(3)] == [7, 8, 9]
        npt.assert_allclose(sample.log_probability, 0.0, atol=1e-12)

    def test_unexplainable_observation_becomes_clutter(self, association_priors, random_state):
        proposal = SequentialAssociationProposal(
            association_priors(lambda_clutter=0.0, lambda_birth=0.0))
        sample = proposal.draw(make_frame([[10, 10, 5]]), {}, 1, random_state)

        assert sample.association.get_target(0) is None
        assert sample.log_probability == 0.0

    def test_close_observation_associated_with_target(self, proposal):
        frame = make_frame([[50.2, 49.9, 5.1]])
        predictions = {4: predicted([50, 50, 5])}
        for seed in range(5):
            sample = proposal.draw(frame, predictions, 5, np.random.RandomState(seed))
            assert sample.association.get_target(0) == 4
            assert sample.log_probability <= 0.0

    def test_associations_are_exclusive(self, proposal):
        frame = make_frame([[50, 50, 5], [50, 50, 5], [50, 50, 5]])
        predictions = {1: predicted([50, 50, 5])}
        for seed in range(10):
            sample = proposal.draw(frame, predictions, 2, np.random.RandomState(seed))
            targets = [sample.association.get_target(m) for m in range(3)]
            associated = [t for t in targets if t is not None]
            assert len(associated) == len(set(associated))
            assert targets.count(1) <= 1

    def test_same_seed_same_draw(self, proposal):
        frame = make_frame([[50, 50, 5], [52, 50, 5], [20, 80, 8]])
        predictions = {1: predicted([50, 50, 5], 4.0), 2: predicted([52, 50, 5], 4.0)}
        a = proposal.draw(frame, predictions, 3, np.random.RandomState(11))
        b = proposal.draw(frame, predictions, 3, np.random.RandomState(11))

        assert a.association == b.association
        assert a.log_probability == b.log_probability


class TestGuidedProposal:
    """Test guided association sampling."""

    def test_guide_forces_clutter(self, proposal, random_state):
        frame = make_frame([[50, 50, 5]])
        sample = proposal.draw(frame, {1: predicted([50, 50, 5])}, 2, random_state,
                               guide={0: CLUTTER})
        assert sample.association.get_target(0) is None
        assert sample.log_probability < 0.0

    def test_guide_forces_newborn(self, proposal, random_state):
        frame = make_frame([[50, 50, 5]])
        sample = proposal.draw(frame, {1: predicted([50, 50, 5])}, 2, random_state,
                               guide={0: NEWBORN})
        assert sample.association.get_target(0) == 2

    def test_guide_forces_target(self, proposal, random_state):
        frame = make_frame([[80, 80, 5]])
        predictions = {1: predicted([50, 50, 5]), 2: predicted([80, 80, 5])}
        sample = proposal.draw(frame, predictions, 3, random_state, guide={0: 1})
        assert sample.association.get_target(0) == 1

    def test_unknown_guide_target_is_sampled(self, proposal, random_state):
        frame = make_frame([[50, 50, 5]])
        sample = proposal.draw(frame, {1: predicted([50, 50, 5])}, 2, random_state,
                               guide={0: 9})
        assert sample.association.get_target(0) == 1

    def test_impossible_guide_is_ignored(self, association_priors, random_state):
        proposal = SequentialAssociationProposal(association_priors(lambda_clutter=0.0))
        sample = proposal.draw(make_frame([[50, 50, 5]]), {}, 1, random_state,
                               guide={0: CLUTTER})
        assert sample.association.get_target(0) == 1


class TestNeighborhoodProposal:
    """Test candidate restriction to nearby targets."""

    def test_candidate_mask_limits_count(self, association_priors):
        proposal = NeighborhoodAssociationProposal(association_priors(), max_num_neighbors=1)
        predictions = {1: predicted([10, 10, 5]), 2: predicted([20, 10, 5])}
        mask = proposal._candidate_mask(make_frame([[12, 10, 5], [19, 10, 5]]),
                                        predictions, [1, 2])
        npt.assert_array_equal(mask, [[True, False], [False, True]])

    def test_candidate_mask_limits_distance(self, association_priors):
        proposal = NeighborhoodAssociationProposal(association_priors(), max_num_neighbors=3,
                                                   max_dist_neighbors=5.0)
        predictions = {1: predicted([10, 10, 5]), 2: predicted([90, 90, 5])}
        mask = proposal._candidate_mask(make_frame([[12, 10, 5]]), predictions, [1, 2])
        npt.assert_array_equal(mask, [[True, False]])

    def test_far_target_never_chosen(self, association_priors):
        proposal = NeighborhoodAssociationProposal(association_priors(), max_num_neighbors=3,
                                                   max_dist_neighbors=5.0)
        frame = make_frame([[60, 60, 5]])
        predictions = {1: predicted([50, 50, 5], 400.0)}
        for seed in range(10):
            sample = proposal.draw(frame, predictions, 2, np.random.RandomState(seed))
            assert sample.association.get_target(0) != 1

    def test_invalid_distance_raises(self, association_priors):
        with pytest.raises(ValueError):
            NeighborhoodAssociationProposal(association_priors(), max_dist_neighbors=0.0)


class TestProposalFactory:
    """Test proposal factory function."""

    def test_naive(self, association_priors):
        proposal = create_association_proposal('naive', association_priors())
        assert type(proposal) is SequentialAssociationProposal

    @pytest.mark.parametrize("name", ['neighbors', 'nn', 'NN'])
    def test_neighbors(self, association_priors, name):
        proposal = create_association_proposal(name, association_priors(), max_num_neighbors=2)
        assert isinstance(proposal, NeighborhoodAssociationProposal)
        assert proposal.max_num_neighbors == 2

    def test_unknown_raises(self, association_priors):
        with pytest.raises(ValueError):
            create_association_proposal('hungarian', association_priors())
