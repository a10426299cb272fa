"""
Data Association for Multi-Target Tracking

This module implements the association side of the particle tracker:
- Exclusive data associations (observation index -> target ID)
- Poisson count priors for clutter and newborn targets
- Uniform spatial priors for clutter and newborn locations
- Sequential association proposals that draw one exclusive association
  per particle and report its log-probability
- A nearest-neighbor restricted proposal for dense scenes

An observation that is not associated with any target is clutter. An
observation associated with an ID that the particle does not know yet is a
newborn target.

Author: MTTrack Project
"""

import numpy as np
from typing import List, Dict, Tuple, Optional, Iterator
from dataclasses import dataclass
from abc import ABC, abstractmethod
from scipy.special import logsumexp
from scipy.stats import poisson
import logging

from .state_models import MultiState, GaussianMixture


logger = logging.getLogger(__name__)

# Guide marker for "this observation starts a new target"
NEWBORN = -1
# Guide marker for "this observation is clutter"
CLUTTER = 0


class DataAssociation:
    """
    Exclusive association between observations and target IDs.

    Each observation index maps to at most one target and each target
    receives at most one observation.
    """

    def __init__(self):
        self._obs_to_target: Dict[int, int] = {}
        self._target_to_obs: Dict[int, int] = {}

    def set_association(self, target_id: int, obs_index: int) -> None:
        """
        Associate an observation with a target.

        Args:
            target_id: Target ID (must be positive)
            obs_index: Index of the observation within its frame

        Raises:
            ValueError: If the target or the observation is already associated
        """
        if target_id <= 0:
            raise ValueError(f"Target IDs must be positive, got {target_id}")
        if obs_index in self._obs_to_target:
            raise ValueError(f"Observation {obs_index} is already associated "
                             f"with target {self._obs_to_target[obs_index]}")
        if target_id in self._target_to_obs:
            raise ValueError(f"Target {target_id} is already associated "
                             f"with observation {self._target_to_obs[target_id]}")
        self._obs_to_target[obs_index] = target_id
        self._target_to_obs[target_id] = obs_index

    def get_target(self, obs_index: int) -> Optional[int]:
        """Target associated with an observation, or None for clutter."""
        return self._obs_to_target.get(obs_index)

    def get_observation(self, target_id: int) -> Optional[int]:
        """Observation associated with a target, or None if undetected."""
        return self._target_to_obs.get(target_id)

    def associated_targets(self) -> List[int]:
        return list(self._target_to_obs.keys())

    def items(self) -> Iterator[Tuple[int, int]]:
        """Iterate over (observation index, target ID) pairs."""
        return iter(sorted(self._obs_to_target.items()))

    def copy(self) -> 'DataAssociation':
        other = DataAssociation()
        other._obs_to_target = dict(self._obs_to_target)
        other._target_to_obs = dict(self._target_to_obs)
        return other

    def __len__(self) -> int:
        return len(self._obs_to_target)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DataAssociation):
            return NotImplemented
        return self._obs_to_target == other._obs_to_target

    def __repr__(self) -> str:
        return f"DataAssociation({dict(self.items())})"


class PoissonCountPrior:
    """Poisson distribution over the number of clutter or newborn observations per frame."""

    def __init__(self, rate: float):
        if rate < 0:
            raise ValueError(f"Poisson rate must be non-negative, got {rate}")
        self.rate = float(rate)

    def log_pmf(self, k: int) -> float:
        if self.rate <= 0:
            return 0.0 if k == 0 else -np.inf
        return float(poisson.logpmf(k, self.rate))

    def log_increment(self, k: int) -> float:
        """Log ratio ``p(k + 1) / p(k)``: the prior cost of one more count."""
        return self.log_pmf(k + 1) - self.log_pmf(k)


class UniformSpatialPrior:
    """
    Uniform density over an axis-aligned box in observation space.

    Axes with non-positive extent are ignored, so a degenerate size range
    yields a density over position only.
    """

    def __init__(self, lower: np.ndarray, upper: np.ndarray):
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        if self.lower.shape != self.upper.shape:
            raise ValueError("Lower and upper bounds must have the same shape")

        extents = self.upper - self.lower
        extents = extents[extents > 0]
        self._log_density = -float(np.sum(np.log(extents))) if extents.size else 0.0

    def log_pdf(self, z: np.ndarray) -> float:
        return self._log_density


@dataclass
class AssociationPriors:
    """Probability model parameters shared by all association proposals."""
    p_detect: float
    clutter_count: PoissonCountPrior
    birth_count: PoissonCountPrior
    clutter_spatial: UniformSpatialPrior
    birth_spatial: UniformSpatialPrior
    min_detect_odds: float = 1e-12

    def __post_init__(self):
        if not 0.0 <= self.p_detect <= 1.0:
            raise ValueError(f"Detection probability must be in [0, 1], got {self.p_detect}")

    def log_detection_odds(self) -> float:
        """Log odds of detecting a live target, with the probability clamped away from 0 and 1."""
        p = np.clip(self.p_detect, self.min_detect_odds, 1.0 - self.min_detect_odds)
        return float(np.log(p) - np.log1p(-p))


@dataclass
class AssociationSample:
    """An exclusive association and the log-probability the proposal drew it with."""
    association: DataAssociation
    log_probability: float


class AssociationProposal(ABC):
    """
    Proposal distribution over exclusive associations.

    Implementations hold only read-only configuration, so one proposal can
    be shared by particles updated on parallel worker threads.
    """

    def __init__(self, priors: AssociationPriors):
        self.priors = priors

    @abstractmethod
    def draw(self, observations: MultiState,
             predicted_observations: Dict[int, GaussianMixture],
             newborn_start_id: int,
             random_state: np.random.RandomState,
             guide: Optional[Dict[int, int]] = None) -> AssociationSample:
        """
        Draw one exclusive association.

        Args:
            observations: Observations of the current frame
            predicted_observations: Predicted observation mixture per live target ID
            newborn_start_id: First ID handed to newborn targets
            random_state: Random number generator of the calling particle
            guide: Optional partial association (observation index -> target ID,
                ``CLUTTER`` or ``NEWBORN``) to follow wherever it is possible

        Returns:
            Sampled association and its log-probability under the proposal
        """
        pass


class SequentialAssociationProposal(AssociationProposal):
    """
    Draws the label of each observation in turn, conditioned on earlier choices.

    For observation ``m`` the candidates are clutter, every live target not
    yet taken, and a newborn target. Candidate scores combine the spatial or
    predicted observation likelihood with the prior cost of the choice
    (Poisson count increment for clutter/newborn, detection odds for live
    targets). The reported log-probability is the sum of the log normalized
    conditional probabilities of the drawn labels.
    """

    def draw(self, observations: MultiState,
             predicted_observations: Dict[int, GaussianMixture],
             newborn_start_id: int,
             random_state: np.random.RandomState,
             guide: Optional[Dict[int, int]] = None) -> AssociationSample:
        target_ids = list(predicted_observations.keys())
        num_targets = len(target_ids)
        num_obs = len(observations)

        log_lik = self._log_likelihoods(observations, predicted_observations, target_ids)
        candidates = self._candidate_mask(observations, predicted_observations, target_ids)
        log_detect = self.priors.log_detection_odds()

        association = DataAssociation()
        taken = np.zeros(num_targets, dtype=bool)
        num_clutter = 0
        num_born = 0
        next_id = newborn_start_id
        log_probability = 0.0

        for m in range(num_obs):
            scores = np.full(num_targets + 2, -np.inf)
            scores[0] = log_lik[m, 0] + self.priors.clutter_count.log_increment(num_clutter)
            available = candidates[m] & ~taken
            target_scores = log_lik[m, 1:num_targets + 1] + log_detect
            scores[1:num_targets + 1][available] = target_scores[available]
            scores[num_targets + 1] = (log_lik[m, num_targets + 1]
                                       + self.priors.birth_count.log_increment(num_born))

            total = logsumexp(scores)
            if not np.isfinite(total):
                # Nothing can explain the observation; keep it as clutter
                scores[0] = 0.0
                total = 0.0
            log_probs = scores - total

            choice = self._guided_choice(m, guide, target_ids, taken, log_probs)
            if choice is None:
                probs = np.exp(log_probs)
                probs /= np.sum(probs)
                choice = int(random_state.choice(num_targets + 2, p=probs))
            log_probability += log_probs[choice]

            if choice == 0:
                num_clutter += 1
            elif choice <= num_targets:
                taken[choice - 1] = True
                association.set_association(target_ids[choice - 1], m)
            else:
                association.set_association(next_id, m)
                next_id += 1
                num_born += 1

        return AssociationSample(association, float(log_probability))

    def _log_likelihoods(self, observations: MultiState,
                         predicted_observations: Dict[int, GaussianMixture],
                         target_ids: List[int]) -> np.ndarray:
        """Columns: clutter, one per live target, newborn."""
        num_targets = len(target_ids)
        log_lik = np.full((len(observations), num_targets + 2), -np.inf)
        for m, (z, _) in enumerate(observations):
            log_lik[m, 0] = self.priors.clutter_spatial.log_pdf(z)
            for n, target_id in enumerate(target_ids):
                log_lik[m, n + 1] = predicted_observations[target_id].log_pdf(z)
            log_lik[m, num_targets + 1] = self.priors.birth_spatial.log_pdf(z)
        return log_lik

    def _candidate_mask(self, observations: MultiState,
                        predicted_observations: Dict[int, GaussianMixture],
                        target_ids: List[int]) -> np.ndarray:
        """Which live targets may explain each observation (all of them here)."""
        return np.ones((len(observations), len(target_ids)), dtype=bool)

    def _guided_choice(self, m: int, guide: Optional[Dict[int, int]],
                       target_ids: List[int], taken: np.ndarray,
                       log_probs: np.ndarray) -> Optional[int]:
        """Candidate index the guide asks for, if it has nonzero probability."""
        if guide is None or m not in guide:
            return None

        wanted = guide[m]
        if wanted == CLUTTER:
            choice = 0
        elif wanted == NEWBORN:
            choice = len(target_ids) + 1
        elif wanted in target_ids:
            choice = target_ids.index(wanted) + 1
            if taken[choice - 1]:
                return None
        else:
            return None

        if not np.isfinite(log_probs[choice]):
            return None
        return choice


class NeighborhoodAssociationProposal(SequentialAssociationProposal):
    """
    Sequential proposal restricted to nearby targets.

    An observation may only be associated with the ``max_num_neighbors``
    live targets whose predicted position is closest to it, and only if
    that position lies within ``max_dist_neighbors``.
    """

    def __init__(self, priors: AssociationPriors, max_num_neighbors: int = 3,
                 max_dist_neighbors: float = np.inf):
        super().__init__(priors)
        if max_dist_neighbors <= 0:
            raise ValueError("Maximum neighbor distance must be positive")
        self.max_num_neighbors = max_num_neighbors
        self.max_dist_neighbors = max_dist_neighbors

    def _candidate_mask(self, observations: MultiState,
                        predicted_observations: Dict[int, GaussianMixture],
                        target_ids: List[int]) -> np.ndarray:
        mask = np.zeros((len(observations), len(target_ids)), dtype=bool)
        if not target_ids:
            return mask

        predicted_xy = np.array([predicted_observations[t].mean()[:2] for t in target_ids])
        for m, (z, _) in enumerate(observations):
            distances = np.linalg.norm(predicted_xy - z[:2], axis=1)
            order = np.argsort(distances, kind='stable')
            if self.max_num_neighbors > 0:
                order = order[:self.max_num_neighbors]
            for n in order:
                if distances[n] <= self.max_dist_neighbors:
                    mask[m, n] = True
        return mask


def create_association_proposal(strategy: str, priors: AssociationPriors,
                                max_num_neighbors: int = 3,
                                max_dist_neighbors: float = np.inf) -> AssociationProposal:
    """
    Factory function to create an association proposal.

    Args:
        strategy: ``'naive'`` (all targets) or ``'neighbors'`` (nearest targets only)
        priors: Association probability model parameters
        max_num_neighbors: Number of nearest targets considered per observation
        max_dist_neighbors: Maximum distance to a considered target

    Returns:
        Association proposal instance
    """
    strategy = strategy.lower()
    if strategy == 'naive':
        return SequentialAssociationProposal(priors)
    elif strategy in ('neighbors', 'nn'):
        return NeighborhoodAssociationProposal(priors, max_num_neighbors, max_dist_neighbors)
    else:
        raise ValueError(f"Unknown association proposal strategy: {strategy}")
