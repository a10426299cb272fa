"""
Multi-Target Interacting Multiple Model (IMM) Filter

This module provides the closed-form per-target state estimator used inside
every particle of the RBMCDA tracker. Each live target carries a Gaussian
mixture belief with one component per dynamic model; the filter mixes the
components according to a Markov model-transition matrix, predicts them
with their dynamic models and corrects them with exclusively associated
observations.

Key Features:
- IMM mixing between random-walk and linear-extrapolation motion
- Per-component Kalman correction with likelihood-based reweighting
- Target birth from observations associated with unknown IDs
- Stochastic target death from an exponential survival model
- Explicit deep copies for particle resampling

Author: MTTrack Project
"""

import copy
import logging
import warnings
import numpy as np
from typing import List, Dict, Optional
from dataclasses import dataclass
from scipy.special import logsumexp
from scipy.stats import expon

from .state_models import (
    STATE_DIM, SIZE_INDEX, MultiState, TargetLabel, GaussianComponent,
    GaussianMixture, LinearGaussianModel, create_birth_mixture,
    state_from_observation_matrix
)
from .association import DataAssociation


logger = logging.getLogger(__name__)


def normalize_markov_matrix(matrix: np.ndarray, num_models: int) -> np.ndarray:
    """
    Validate a model-transition matrix and normalize its columns.

    Entry ``[j, i]`` is the probability of switching from model ``i`` to
    model ``j``, so every column must sum to one. A column summing to zero
    becomes uniform, any other column not summing exactly to one is
    rescaled. Both warn unless the column sum was already close to one.

    Args:
        matrix: Square transition matrix
        num_models: Number of dynamic models

    Returns:
        Normalized copy of the matrix

    Raises:
        ValueError: If the matrix is not ``num_models x num_models`` or has negative entries
    """
    matrix = np.array(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape != (num_models, num_models):
        raise ValueError(f"Transition matrix must be {num_models}x{num_models}, "
                         f"got shape {matrix.shape}")
    if np.any(matrix < 0):
        raise ValueError("Transition matrix entries must be non-negative")

    col_sums = np.sum(matrix, axis=0)
    for i in range(num_models):
        if col_sums[i] == 0:
            warnings.warn(f"Transition matrix column {i} sums to 0, using uniform transitions")
            matrix[:, i] = 1.0 / num_models
        elif col_sums[i] != 1.0:
            if not np.isclose(col_sums[i], 1.0):
                warnings.warn(f"Transition matrix column {i} sums to {col_sums[i]:.4f}, "
                              f"normalizing")
            matrix[:, i] /= col_sums[i]
    return matrix


@dataclass
class IMMParameters:
    """Parameters for multi-target IMM filter configuration."""
    transition_probabilities: np.ndarray     # [to, from] model-transition matrix
    delta_t: float = 1.0                     # Frame interval
    lambda_death: float = 0.0                # Death rate of unassociated targets
    size_min: Optional[float] = None         # Lower clamp of the predicted size
    size_max: Optional[float] = None         # Upper clamp of the predicted size


class ExponentialSurvival:
    """Exponential survival model: ``P(death) = 1 - exp(-rate * t)``."""

    def __init__(self, rate: float):
        if rate < 0:
            raise ValueError(f"Death rate must be non-negative, got {rate}")
        self.rate = rate

    def death_probability(self, elapsed: float) -> float:
        if self.rate == 0 or elapsed <= 0:
            return 0.0
        return float(expon.cdf(elapsed, scale=1.0 / self.rate))

    def survival_probability(self, elapsed: float) -> float:
        return 1.0 - self.death_probability(elapsed)

    def half_life(self) -> float:
        return np.log(2.0) / self.rate if self.rate > 0 else np.inf


class MultiTargetIMMFilter:
    """
    IMM Gaussian-mixture filter over a varying set of targets.

    The filter keeps, per live target ID, a Gaussian mixture belief over the
    5-D state with exactly one component per dynamic model, the target's
    label, and the predicted observation mixture computed by ``predict``.
    """

    def __init__(self, params: IMMParameters,
                 dynamic_models: List[LinearGaussianModel],
                 observation_model: LinearGaussianModel,
                 birth_covariance: np.ndarray,
                 state_from_observation: Optional[np.ndarray] = None):
        """
        Initialize filter.

        Args:
            params: IMM filter parameters
            dynamic_models: One linear-Gaussian dynamic model per mixture component
            observation_model: Linear-Gaussian observation model
            birth_covariance: State covariance of newborn targets
            state_from_observation: Observation-to-state lift of newborn means
        """
        self.params = params
        self.dynamic_models = dynamic_models
        self.num_models = len(dynamic_models)
        if self.num_models < 1:
            raise ValueError("IMM filter requires at least one dynamic model")

        self.observation_model = observation_model
        self.birth_covariance = np.asarray(birth_covariance, dtype=float)
        if self.birth_covariance.shape != (STATE_DIM, STATE_DIM):
            raise ValueError(f"Birth covariance must be {STATE_DIM}x{STATE_DIM}")
        if state_from_observation is None:
            state_from_observation = state_from_observation_matrix()
        self.state_from_observation = np.asarray(state_from_observation, dtype=float)

        self.markov = normalize_markov_matrix(params.transition_probabilities, self.num_models)
        self.survival = ExponentialSurvival(params.lambda_death)

        self.beliefs: Dict[int, GaussianMixture] = {}
        self.labels: Dict[int, TargetLabel] = {}
        self.predicted_observations: Dict[int, GaussianMixture] = {}

    @property
    def target_ids(self) -> List[int]:
        return list(self.beliefs.keys())

    @property
    def num_targets(self) -> int:
        return len(self.beliefs)

    def add_target(self, target_id: int, belief: GaussianMixture,
                   label: Optional[TargetLabel] = None) -> None:
        """
        Insert a target with the given belief.

        Args:
            target_id: Unused positive target ID
            belief: Gaussian mixture with one component per dynamic model
            label: Discrete label (defaults to a fresh label)
        """
        if target_id in self.beliefs:
            raise ValueError(f"Target {target_id} already exists")
        if belief.num_components != self.num_models:
            raise ValueError(f"Belief has {belief.num_components} components, "
                             f"filter has {self.num_models} dynamic models")
        if label is None:
            label = TargetLabel(id=target_id)
        label.id = target_id
        self.beliefs[target_id] = belief
        self.labels[target_id] = label
        self.predicted_observations[target_id] = self._project(belief)

    def remove_target(self, target_id: int) -> None:
        del self.beliefs[target_id]
        del self.labels[target_id]
        self.predicted_observations.pop(target_id, None)

    def predict(self) -> None:
        """
        IMM prediction of every live target.

        For previous model ``i`` and next model ``j`` the mixing weight is
        ``markov[j, i] * mu_i / c_j`` with ``c_j = sum_i markov[j, i] * mu_i``.
        The mixed Gaussian of bucket ``j`` is predicted with model ``j`` and
        the new component weights are ``c_j``.
        """
        for target_id, belief in self.beliefs.items():
            predicted = self._predict_target(belief)
            self.beliefs[target_id] = predicted
            self.predicted_observations[target_id] = self._project(predicted)
            self._refresh_label(target_id)

    def _predict_target(self, belief: GaussianMixture) -> GaussianMixture:
        mu = belief.weights
        joint = self.markov * mu[np.newaxis, :]          # [j, i] = markov[j, i] * mu_i
        predicted_probs = np.sum(joint, axis=1)

        components = []
        for j, model in enumerate(self.dynamic_models):
            mixed = belief.collapse(weights=joint[j])
            component = model.predict(mixed)
            self._clamp_size(component)
            components.append(component)

        return GaussianMixture(predicted_probs, components)

    def _clamp_size(self, component: GaussianComponent) -> None:
        size_min, size_max = self.params.size_min, self.params.size_max
        if size_min is None and size_max is None:
            return
        lower = size_min if size_min is not None else -np.inf
        upper = size_max if size_max is not None else np.inf
        component.mean[SIZE_INDEX] = np.clip(component.mean[SIZE_INDEX], lower, upper)

    def _project(self, belief: GaussianMixture) -> GaussianMixture:
        components = [self.observation_model.project(c) for c in belief.components]
        return GaussianMixture(belief.weights.copy(), components)

    def update(self, observations: MultiState, association: DataAssociation,
               random_state: np.random.RandomState,
               time_step: Optional[int] = None) -> MultiState:
        """
        Correct targets with their associated observations, add newborns, let targets die.

        Args:
            observations: Observations of the current frame
            association: Exclusive association of observation indices to target IDs;
                IDs unknown to the filter create newborn targets
            random_state: Random number generator used for the death decisions
            time_step: Frame index, used for log context only

        Returns:
            Copy of the observations labelled with the associated target IDs (0 = clutter)

        Raises:
            TypeError: If the association is not an exclusive DataAssociation
        """
        if not isinstance(association, DataAssociation):
            raise TypeError(f"IMM update requires an exclusive DataAssociation, "
                            f"got {type(association).__name__}")

        dt = self.params.delta_t
        labelled = observations.copy()
        for _, label in labelled:
            label.id = 0
            label.time_since_association = 0.0

        num_born = 0
        for obs_index, target_id in association.items():
            if obs_index >= len(observations):
                raise ValueError(f"Association refers to observation {obs_index}, "
                                 f"frame has {len(observations)} observations")
            z = observations.get_vector(obs_index)

            if target_id in self.beliefs:
                self.beliefs[target_id] = self._correct(self.beliefs[target_id], z)
                self.labels[target_id].time_since_association = -dt
            else:
                belief = create_birth_mixture(z, self.birth_covariance, self.num_models,
                                              self.state_from_observation)
                self.add_target(target_id, belief,
                                TargetLabel(id=target_id, time_since_association=-dt))
                num_born += 1
            self._refresh_label(target_id)
            labelled.get_label(obs_index).id = target_id

        for label in self.labels.values():
            label.time_since_association += dt

        dead = self._let_targets_die(random_state)

        logger.debug("Filter update: %d associated, %d born, %d died, %d alive",
                     len(association), num_born, len(dead), self.num_targets,
                     extra={'time_step': time_step})
        return labelled

    def _correct(self, belief: GaussianMixture, z: np.ndarray) -> GaussianMixture:
        """Per-component Kalman correction and likelihood reweighting."""
        H = self.observation_model.matrix
        R = self.observation_model.noise_covariance

        components = []
        log_weights = np.zeros(belief.num_components)
        with np.errstate(divide='ignore'):
            log_prior = np.log(belief.weights)

        for k, component in enumerate(belief.components):
            P = component.covariance
            predicted_z = H @ component.mean
            S = H @ P @ H.T + R
            innovation = z - predicted_z
            gain = np.linalg.solve(S, H @ P).T

            mean = component.mean + gain @ innovation
            covariance = P - gain @ H @ P
            components.append(GaussianComponent(mean, 0.5 * (covariance + covariance.T)))

            log_weights[k] = log_prior[k] + GaussianComponent(predicted_z, S).log_pdf(z)

        total = logsumexp(log_weights)
        if np.isfinite(total):
            weights = np.exp(log_weights - total)
        else:
            weights = belief.weights.copy()
        return GaussianMixture(weights, components)

    def _let_targets_die(self, random_state: np.random.RandomState) -> List[int]:
        dead = []
        for target_id in self.target_ids:
            p_death = self.survival.death_probability(self.labels[target_id].time_since_association)
            if p_death > 0 and random_state.uniform() < p_death:
                dead.append(target_id)

        for target_id in dead:
            self.remove_target(target_id)
        return dead

    def _refresh_label(self, target_id: int) -> None:
        belief = self.beliefs[target_id]
        self.labels[target_id].motion_model = \
            self.dynamic_models[int(np.argmax(belief.weights))].model_type

    def get_mean(self) -> MultiState:
        """Point estimate (mixture mean) and label of every live target."""
        means = MultiState(STATE_DIM)
        for target_id, belief in self.beliefs.items():
            means.add(belief.mean(), self.labels[target_id].copy())
        return means

    def get_predicted_observation_distribution(self) -> Dict[int, GaussianMixture]:
        """Predicted observation mixture per live target ID, in insertion order."""
        return self.predicted_observations

    def copy(self) -> 'MultiTargetIMMFilter':
        """Deep copy of all per-target state; models and parameters are shared read-only."""
        other = copy.copy(self)
        other.beliefs = {k: v.copy() for k, v in self.beliefs.items()}
        other.labels = {k: v.copy() for k, v in self.labels.items()}
        other.predicted_observations = {k: v.copy() for k, v in self.predicted_observations.items()}
        return other
