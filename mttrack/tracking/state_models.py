"""
Target State and Observation Models for Multi-Target Tracking

This module defines the continuous and discrete representations shared by the
multi-target tracker:
- Target labels (identity, active motion model, time since last association)
- Multi-states: ordered collections of labelled vectors
- Gaussian components and Gaussian mixtures
- Linear-Gaussian dynamic models (random walk, first-order linear extrapolation)
- The linear-Gaussian observation model

Target states are 5-dimensional ``[x, y, x_prev, y_prev, size]`` and
observations are 3-dimensional ``[x, y, size]``.

Author: MTTrack Project
"""

import numpy as np
from typing import List, Dict, Optional, Tuple, Iterator
from dataclasses import dataclass, field
from enum import Enum
from scipy.special import logsumexp
from scipy.stats import multivariate_normal


STATE_DIM = 5
OBSERVATION_DIM = 3

# Indices of the state entries that are observed directly
OBSERVED_STATE_INDICES = (0, 1, 4)
SIZE_INDEX = 4


class DynamicModelType(Enum):
    """Supported linear-Gaussian dynamic models."""
    RANDOM_WALK = 0
    LINEAR_EXTRAPOLATION = 1


@dataclass
class TargetLabel:
    """
    Discrete tag attached to every state or observation vector.

    Attributes:
        id: Target identity (0 marks clutter for observations)
        motion_model: Dynamic model the vector was produced with, if any
        time_since_association: Time elapsed since the target was last associated
    """
    id: int = 0
    motion_model: Optional[DynamicModelType] = None
    time_since_association: float = 0.0

    def copy(self) -> 'TargetLabel':
        """Create an independent copy of this label."""
        return TargetLabel(self.id, self.motion_model, self.time_since_association)


class MultiState:
    """
    Ordered collection of (vector, label) pairs of a common dimension.

    Indices are stable as long as no element is removed, which is all the
    tracker relies on within one time step.
    """

    def __init__(self, dim: int):
        """
        Initialize an empty multi-state.

        Args:
            dim: Dimension of every continuous vector in the collection
        """
        self.dim = dim
        self._vectors: List[np.ndarray] = []
        self._labels: List[TargetLabel] = []

    @classmethod
    def from_array(cls, vectors: np.ndarray,
                   ids: Optional[List[int]] = None) -> 'MultiState':
        """
        Build a multi-state from a ``(n, dim)`` array.

        Args:
            vectors: Array with one vector per row
            ids: Optional target IDs, one per row (defaults to 0)

        Returns:
            New MultiState
        """
        vectors = np.atleast_2d(np.asarray(vectors, dtype=float))
        if vectors.size == 0:
            dim = vectors.shape[1] if vectors.ndim == 2 and vectors.shape[1] > 0 \
                else OBSERVATION_DIM
            return cls(dim)

        multi_state = cls(vectors.shape[1])
        for n, vector in enumerate(vectors):
            target_id = ids[n] if ids is not None else 0
            multi_state.add(vector, TargetLabel(id=int(target_id)))
        return multi_state

    def add(self, vector: np.ndarray, label: Optional[TargetLabel] = None) -> int:
        """
        Append a labelled vector.

        Args:
            vector: Continuous vector of dimension ``dim``
            label: Discrete label (defaults to an unassigned label)

        Returns:
            Index of the appended element
        """
        vector = np.asarray(vector, dtype=float).reshape(-1)
        if vector.shape[0] != self.dim:
            raise ValueError(f"Vector dimension {vector.shape[0]} does not match "
                             f"multi-state dimension {self.dim}")
        self._vectors.append(vector.copy())
        self._labels.append(label if label is not None else TargetLabel())
        return len(self._vectors) - 1

    def get_vector(self, index: int) -> np.ndarray:
        return self._vectors[index]

    def get_label(self, index: int) -> TargetLabel:
        return self._labels[index]

    def set_vector(self, index: int, vector: np.ndarray) -> None:
        self._vectors[index] = np.asarray(vector, dtype=float).reshape(-1).copy()

    def remove(self, index: int) -> None:
        del self._vectors[index]
        del self._labels[index]

    def find(self, target_id: int) -> Optional[int]:
        """Return the index of the first element with the given ID, or None."""
        for n, label in enumerate(self._labels):
            if label.id == target_id:
                return n
        return None

    def ids(self) -> List[int]:
        return [label.id for label in self._labels]

    def as_array(self) -> np.ndarray:
        """Stack all vectors into a ``(n, dim)`` array."""
        if not self._vectors:
            return np.zeros((0, self.dim))
        return np.vstack(self._vectors)

    def copy(self) -> 'MultiState':
        """Deep copy of vectors and labels."""
        other = MultiState(self.dim)
        other._vectors = [v.copy() for v in self._vectors]
        other._labels = [label.copy() for label in self._labels]
        return other

    def __len__(self) -> int:
        return len(self._vectors)

    def __iter__(self) -> Iterator[Tuple[np.ndarray, TargetLabel]]:
        return iter(zip(self._vectors, self._labels))

    def __repr__(self) -> str:
        return f"MultiState(dim={self.dim}, n={len(self)}, ids={self.ids()})"


@dataclass
class GaussianComponent:
    """Single Gaussian with mean vector and covariance matrix."""
    mean: np.ndarray
    covariance: np.ndarray

    def __post_init__(self):
        self.mean = np.asarray(self.mean, dtype=float).reshape(-1)
        self.covariance = np.asarray(self.covariance, dtype=float)
        if self.covariance.shape != (self.mean.shape[0], self.mean.shape[0]):
            raise ValueError(f"Covariance shape {self.covariance.shape} does not "
                             f"match mean dimension {self.mean.shape[0]}")

    @property
    def dim(self) -> int:
        return self.mean.shape[0]

    def log_pdf(self, x: np.ndarray) -> float:
        """Log density of ``x`` under this Gaussian."""
        return float(multivariate_normal.logpdf(x, mean=self.mean, cov=self.covariance,
                                                allow_singular=True))

    def copy(self) -> 'GaussianComponent':
        return GaussianComponent(self.mean.copy(), self.covariance.copy())


class GaussianMixture:
    """
    Weighted set of Gaussian components.

    Weights are kept normalized to sum to one. In the IMM filter there is
    exactly one component per dynamic model, in the order of the filter's
    model list.
    """

    def __init__(self, weights: np.ndarray, components: List[GaussianComponent]):
        """
        Initialize mixture.

        Args:
            weights: Component weights (normalized on construction)
            components: Gaussian components
        """
        weights = np.asarray(weights, dtype=float).reshape(-1)
        if weights.shape[0] != len(components):
            raise ValueError(f"Got {weights.shape[0]} weights for "
                             f"{len(components)} components")
        if len(components) == 0:
            raise ValueError("Gaussian mixture requires at least one component")

        self.components = components
        self.weights = weights
        self.normalize()

    @property
    def num_components(self) -> int:
        return len(self.components)

    @property
    def dim(self) -> int:
        return self.components[0].dim

    def normalize(self) -> None:
        """Rescale weights to sum to one (uniform if all weights vanish)."""
        total = np.sum(self.weights)
        if total > 0 and np.isfinite(total):
            self.weights = self.weights / total
        else:
            self.weights = np.ones(self.num_components) / self.num_components

    def mean(self) -> np.ndarray:
        """Weighted mean of the mixture."""
        return np.sum([w * c.mean for w, c in zip(self.weights, self.components)], axis=0)

    def collapse(self, weights: Optional[np.ndarray] = None) -> GaussianComponent:
        """
        Moment-match the mixture (optionally with other weights) to one Gaussian.

        Args:
            weights: Alternative component weights (normalized internally)

        Returns:
            Single Gaussian with matching first and second moments
        """
        if weights is None:
            weights = self.weights
        weights = np.asarray(weights, dtype=float)
        total = np.sum(weights)
        weights = weights / total if total > 0 else np.ones_like(weights) / len(weights)

        mean = np.sum([w * c.mean for w, c in zip(weights, self.components)], axis=0)
        covariance = np.zeros((self.dim, self.dim))
        for w, c in zip(weights, self.components):
            diff = c.mean - mean
            covariance += w * (c.covariance + np.outer(diff, diff))
        return GaussianComponent(mean, covariance)

    def log_pdf(self, x: np.ndarray) -> float:
        """Log density of ``x`` under the mixture."""
        with np.errstate(divide='ignore'):
            log_weights = np.log(self.weights)
        log_densities = np.array([c.log_pdf(x) for c in self.components])
        return float(logsumexp(log_weights + log_densities))

    def copy(self) -> 'GaussianMixture':
        return GaussianMixture(self.weights.copy(), [c.copy() for c in self.components])

    def __repr__(self) -> str:
        return f"GaussianMixture(weights={np.round(self.weights, 4)}, mean={np.round(self.mean(), 3)})"


@dataclass
class DynamicNoiseParameters:
    """Process noise variances of the dynamic models."""
    q_xy: float = 1.0          # Position variance
    q_xy_prev: float = 1.0     # Previous-position variance
    q_size: float = 1.0        # Size variance

    def covariance(self) -> np.ndarray:
        return np.diag([self.q_xy, self.q_xy, self.q_xy_prev, self.q_xy_prev, self.q_size])


class LinearGaussianModel:
    """
    Linear transform with additive zero-mean Gaussian noise, ``y = A x + v``.

    Used both as dynamic model (``predict``) and as observation model
    (``project``). Both operations are closed-form for Gaussian inputs.
    """

    def __init__(self, matrix: np.ndarray, noise_covariance: np.ndarray,
                 model_type: Optional[DynamicModelType] = None):
        """
        Initialize model.

        Args:
            matrix: Linear map from input to output space
            noise_covariance: Covariance of the additive noise in output space
            model_type: Dynamic model tag, if this is a dynamic model
        """
        self.matrix = np.asarray(matrix, dtype=float)
        self.noise_covariance = np.asarray(noise_covariance, dtype=float)
        self.model_type = model_type

        out_dim = self.matrix.shape[0]
        if self.noise_covariance.shape != (out_dim, out_dim):
            raise ValueError(f"Noise covariance must be {out_dim}x{out_dim}, "
                             f"got {self.noise_covariance.shape}")

    @property
    def input_dim(self) -> int:
        return self.matrix.shape[1]

    @property
    def output_dim(self) -> int:
        return self.matrix.shape[0]

    def transform(self, component: GaussianComponent) -> GaussianComponent:
        """Push a Gaussian through the linear model."""
        mean = self.matrix @ component.mean
        covariance = self.matrix @ component.covariance @ self.matrix.T + self.noise_covariance
        return GaussianComponent(mean, 0.5 * (covariance + covariance.T))

    def predict(self, component: GaussianComponent) -> GaussianComponent:
        return self.transform(component)

    def project(self, component: GaussianComponent) -> GaussianComponent:
        return self.transform(component)

    def copy(self) -> 'LinearGaussianModel':
        return LinearGaussianModel(self.matrix.copy(), self.noise_covariance.copy(),
                                   self.model_type)


# Transition matrices of the supported dynamic models, indexed by model type
DYNAMIC_MODEL_MATRICES: Dict[DynamicModelType, np.ndarray] = {
    DynamicModelType.RANDOM_WALK: np.array([
        [1.0, 0.0, 0.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 0.0, 1.0]
    ]),
    DynamicModelType.LINEAR_EXTRAPOLATION: np.array([
        [2.0, 0.0, -1.0, 0.0, 0.0],
        [0.0, 2.0, 0.0, -1.0, 0.0],
        [1.0, 0.0, 0.0, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 0.0, 1.0]
    ]),
}


def get_transition_matrix(model_type: DynamicModelType) -> np.ndarray:
    """Return a copy of the transition matrix of a dynamic model."""
    return DYNAMIC_MODEL_MATRICES[model_type].copy()


def create_dynamic_model(model_type: DynamicModelType,
                         noise: DynamicNoiseParameters) -> LinearGaussianModel:
    """
    Factory function to create a dynamic model.

    Args:
        model_type: Type of dynamic model
        noise: Process noise variances

    Returns:
        Linear-Gaussian dynamic model
    """
    if isinstance(model_type, str):
        try:
            model_type = DynamicModelType[model_type.upper()]
        except KeyError:
            raise ValueError(f"Unknown dynamic model type: {model_type}")
    if model_type not in DYNAMIC_MODEL_MATRICES:
        raise ValueError(f"Unknown dynamic model type: {model_type}")

    return LinearGaussianModel(get_transition_matrix(model_type), noise.covariance(), model_type)


def create_dynamic_models(noise: DynamicNoiseParameters,
                          model_types: Optional[List[DynamicModelType]] = None
                          ) -> List[LinearGaussianModel]:
    """Create one dynamic model per requested type (default: all supported types)."""
    if model_types is None:
        model_types = list(DynamicModelType)
    return [create_dynamic_model(model_type, noise) for model_type in model_types]


def create_observation_model(r_xy: float, r_size: float) -> LinearGaussianModel:
    """
    Create the observation model picking ``(x, y, size)`` from the state.

    Args:
        r_xy: Measurement noise variance of the position
        r_size: Measurement noise variance of the size

    Returns:
        Linear-Gaussian observation model
    """
    H = np.zeros((OBSERVATION_DIM, STATE_DIM))
    for row, col in enumerate(OBSERVED_STATE_INDICES):
        H[row, col] = 1.0
    R = np.diag([r_xy, r_xy, r_size])
    return LinearGaussianModel(H, R)


def state_from_observation_matrix() -> np.ndarray:
    """Linear lift of an observation ``(x, y, size)`` to a state ``(x, y, x, y, size)``."""
    lift = np.zeros((STATE_DIM, OBSERVATION_DIM))
    lift[0, 0] = 1.0
    lift[1, 1] = 1.0
    lift[2, 0] = 1.0
    lift[3, 1] = 1.0
    lift[4, 2] = 1.0
    return lift


def birth_covariance(r_xy: float, r_size: float) -> np.ndarray:
    """Prior covariance of a newborn target's state."""
    return np.diag([r_xy, r_xy, r_xy, r_xy, r_size])


def create_birth_mixture(observation: np.ndarray, covariance: np.ndarray,
                         num_models: int,
                         lift: Optional[np.ndarray] = None) -> GaussianMixture:
    """
    Create the belief of a newborn target initialized from an observation.

    Args:
        observation: Observation ``(x, y, size)``
        covariance: Birth prior covariance in state space
        num_models: Number of dynamic models (one component each)
        lift: Observation-to-state matrix (default: ``state_from_observation_matrix()``)

    Returns:
        Gaussian mixture with identical, equally weighted components
    """
    if lift is None:
        lift = state_from_observation_matrix()
    mean = lift @ np.asarray(observation, dtype=float)
    components = [GaussianComponent(mean.copy(), covariance.copy()) for _ in range(num_models)]
    return GaussianMixture(np.ones(num_models) / num_models, components)
