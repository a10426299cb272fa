"""
Rao-Blackwellized Monte Carlo Data Association (RBMCDA) Particle Engine

Each particle pairs a multi-target IMM filter with the history of the data
associations it sampled. Per time step the engine runs, in this order:

1. Predict: IMM prediction of every particle's targets
2. Associate+Update: draw an exclusive association per particle and
   apply it to the particle's filter
3. Reweight: particle weight = cumulative log joint probability of its
   sampled associations, normalized with log-sum-exp
4. Resample: systematic resampling when the effective sample size drops
   below ``ess_percentage * num_particles``

Steps 1 and 2 are independent per particle and optionally run on a thread
pool. Every particle owns a ``RandomState`` seeded from the engine's master
generator, so results do not depend on thread scheduling.

Author: MTTrack Project
"""

import logging
import numpy as np
from typing import List, Dict, Optional, Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from scipy.special import logsumexp

from .state_models import STATE_DIM, MultiState, TargetLabel
from .imm_filter import MultiTargetIMMFilter
from .association import AssociationProposal, CLUTTER, NEWBORN
from .sample_info import SampleInfo


logger = logging.getLogger(__name__)

MAX_SEED = 2**31 - 1


def normalize_log_weights(log_weights: np.ndarray) -> np.ndarray:
    """
    Convert log weights to linear weights summing to one.

    Args:
        log_weights: Unnormalized log weights

    Returns:
        Normalized linear weights (uniform if every log weight is -inf)
    """
    log_weights = np.asarray(log_weights, dtype=float)
    total = logsumexp(log_weights)
    if not np.isfinite(total):
        return np.ones(len(log_weights)) / len(log_weights)
    weights = np.exp(log_weights - total)
    return weights / np.sum(weights)


def compute_ess(weights: np.ndarray) -> float:
    """Effective sample size ``1 / sum(w^2)`` of normalized weights."""
    return float(1.0 / np.sum(np.square(weights)))


def systematic_resample(weights: np.ndarray, random_state: np.random.RandomState) -> np.ndarray:
    """
    Systematic resampling.

    Args:
        weights: Normalized particle weights
        random_state: Random number generator

    Returns:
        Indices of the selected particles, in ascending order
    """
    n = len(weights)
    positions = (random_state.uniform() + np.arange(n)) / n
    cumulative = np.cumsum(weights)
    cumulative[-1] = 1.0
    return np.searchsorted(cumulative, positions, side='left')


class Particle:
    """One hypothesis of the tracker: a filter, its association history and its RNG."""

    def __init__(self, imm_filter: MultiTargetIMMFilter, max_target_id: int,
                 random_state: np.random.RandomState,
                 sample_info: Optional[SampleInfo] = None):
        self.filter = imm_filter
        self.max_target_id = max_target_id
        self.random_state = random_state
        self.sample_info = sample_info if sample_info is not None else SampleInfo()
        # Ground-truth target ID -> this particle's target ID (guided sampling only)
        self.truth_to_sample: Dict[int, int] = {}

    def clone(self, seed: int) -> 'Particle':
        """Deep copy with a freshly seeded random number generator."""
        other = Particle(self.filter.copy(), self.max_target_id,
                         np.random.RandomState(seed), self.sample_info.copy())
        other.truth_to_sample = dict(self.truth_to_sample)
        return other

    def map_truth_id(self, truth_id: int, target_id: int) -> None:
        """Map a ground-truth ID to a target ID, dropping any other truth ID mapped to it."""
        stale = [key for key, value in self.truth_to_sample.items()
                 if value == target_id and key != truth_id]
        for key in stale:
            del self.truth_to_sample[key]
        self.truth_to_sample[truth_id] = target_id


class MultiTargetRBMCDA:
    """
    RBMCDA particle filter over multi-target IMM filters.

    The importance weight of a particle is the cumulative log probability
    of its sampled associations as reported by its SampleInfo.
    """

    def __init__(self, prototype: MultiTargetIMMFilter,
                 proposal: AssociationProposal,
                 num_particles: int,
                 max_target_id: int,
                 random_state: np.random.RandomState,
                 ess_percentage: float = 0.5,
                 num_workers: int = 1):
        """
        Initialize particle engine.

        Args:
            prototype: Filter deep-copied into every particle
            proposal: Association proposal shared by all particles
            num_particles: Number of particles
            max_target_id: Largest target ID used by the prototype
            random_state: Master random number generator
            ess_percentage: Resample when ESS < ess_percentage * num_particles
            num_workers: Worker threads for per-particle steps (1 = sequential)
        """
        if num_particles < 1:
            raise ValueError(f"Number of particles must be positive, got {num_particles}")
        if not 0.0 <= ess_percentage <= 1.0:
            raise ValueError(f"ESS percentage must be in [0, 1], got {ess_percentage}")

        self.proposal = proposal
        self.num_particles = num_particles
        self.ess_percentage = ess_percentage
        self.num_workers = max(1, int(num_workers))
        self.random_state = random_state

        seeds = self.random_state.randint(0, MAX_SEED, size=num_particles)
        self.particles: List[Particle] = [
            Particle(prototype.copy(), max_target_id, np.random.RandomState(seed))
            for seed in seeds
        ]
        self.weights = np.ones(num_particles) / num_particles

        self.time_step = 0
        self.num_resamples = 0
        self.ess_history: List[float] = []

    def predict(self) -> None:
        """IMM prediction of every particle."""
        self._for_each_particle(lambda i, particle: particle.filter.predict())

    def update(self, observations: MultiState,
               ground_truth: Optional[MultiState] = None) -> bool:
        """
        Associate, update and reweight all particles, resampling if needed.

        Args:
            observations: Observations of the current frame
            ground_truth: Same observations labelled with true IDs (0 = clutter)
                to guide the association sampling, or None

        Returns:
            True if the particles were resampled
        """
        if ground_truth is not None and len(ground_truth) != len(observations):
            raise ValueError("Ground truth must label every observation of the frame")

        log_weights = np.array(self._for_each_particle(
            lambda i, particle: self._update_particle(i, particle, observations, ground_truth)
        ))
        self.weights = normalize_log_weights(log_weights)

        ess = self.compute_ess()
        self.ess_history.append(ess)
        resampled = False
        if ess < self.ess_percentage * self.num_particles:
            logger.debug("Time step %d: ESS %.2f below %.2f, resampling",
                         self.time_step, ess, self.ess_percentage * self.num_particles)
            self.resample()
            resampled = True

        self.time_step += 1
        return resampled

    def _update_particle(self, index: int, particle: Particle, observations: MultiState,
                         ground_truth: Optional[MultiState]) -> float:
        imm_filter = particle.filter
        guide = None
        if ground_truth is not None:
            guide = self._translate_ground_truth(particle, ground_truth)

        sample = self.proposal.draw(observations,
                                    imm_filter.get_predicted_observation_distribution(),
                                    particle.max_target_id + 1,
                                    particle.random_state,
                                    guide)
        association = sample.association

        associated = association.associated_targets()
        if associated:
            particle.max_target_id = max(particle.max_target_id, max(associated))
        if ground_truth is not None:
            for m, target_id in association.items():
                truth_id = ground_truth.get_label(m).id
                if truth_id > 0:
                    particle.map_truth_id(truth_id, target_id)

        labelled = imm_filter.update(observations, association, particle.random_state,
                                     time_step=self.time_step)
        particle.sample_info.add_step(sample.log_probability, association, labelled,
                                      imm_filter.target_ids)
        return particle.sample_info.log_joint

    def _translate_ground_truth(self, particle: Particle, ground_truth: MultiState) -> Dict[int, int]:
        """Express the ground-truth labels in the particle's own target IDs."""
        guide = {}
        alive = set(particle.filter.target_ids)
        for m, (_, label) in enumerate(ground_truth):
            if label.id == 0:
                guide[m] = CLUTTER
            elif particle.truth_to_sample.get(label.id) in alive:
                guide[m] = particle.truth_to_sample[label.id]
            else:
                guide[m] = NEWBORN
        return guide

    def _for_each_particle(self, func: Callable[[int, Particle], object]) -> List:
        """Apply ``func`` to every particle, on worker threads if configured."""
        if self.num_workers == 1:
            return [func(i, particle) for i, particle in enumerate(self.particles)]

        results = [None] * self.num_particles
        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            future_to_index = {
                executor.submit(func, i, particle): i
                for i, particle in enumerate(self.particles)
            }
            for future in as_completed(future_to_index):
                results[future_to_index[future]] = future.result()
        return results

    def resample(self) -> None:
        """Systematic resampling with deep copies; weights become uniform."""
        indices = systematic_resample(self.weights, self.random_state)
        seeds = self.random_state.randint(0, MAX_SEED, size=self.num_particles)
        self.particles = [self.particles[idx].clone(seed) for idx, seed in zip(indices, seeds)]
        self.weights = np.ones(self.num_particles) / self.num_particles
        self.num_resamples += 1

    def compute_ess(self) -> float:
        return compute_ess(self.weights)

    def get_mean(self) -> MultiState:
        """
        Weighted ensemble point estimate per target ID.

        Each target's mean is averaged over the particles in which it is
        alive, weighted by the particle weights.
        """
        sums: Dict[int, np.ndarray] = {}
        totals: Dict[int, float] = {}
        for weight, particle in zip(self.weights, self.particles):
            for state, label in particle.filter.get_mean():
                sums[label.id] = sums.get(label.id, np.zeros(STATE_DIM)) + weight * state
                totals[label.id] = totals.get(label.id, 0.0) + weight

        mean = MultiState(STATE_DIM)
        for target_id in sorted(sums):
            if totals[target_id] > 0:
                mean.add(sums[target_id] / totals[target_id], TargetLabel(id=target_id))
        return mean

    def get_sample_infos(self) -> List[SampleInfo]:
        return [particle.sample_info for particle in self.particles]
