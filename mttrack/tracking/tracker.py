"""
Multi-Observation Tracker (RBMCDA + IMM)

Runs the RBMCDA particle engine with multi-target IMM filters over a time
series of observation sets, fuses the particle ensemble into a weighted
observation graph and partitions the graph into tracks.

Pipeline:
1. Estimate clutter rate and detection probability from the observation
   counts if they are not given
2. Seed the prototype filter with one target per first-frame observation
3. Predict / associate+update / reweight / resample over all frames
4. Compute the per-particle posterior weights (per-step renormalized)
5. Build the observation adjacency graph and prune it with an ESS-derived
   threshold
6. Partition the graph greedily; single-node subgraphs are clutter

Author: MTTrack Project
"""

import logging
import numpy as np
from typing import List, Dict, Optional, Tuple, Union
from dataclasses import dataclass, field

from .state_models import (
    OBSERVATION_DIM, MultiState, TargetLabel, LinearGaussianModel,
    DynamicNoiseParameters, create_dynamic_models, create_observation_model,
    create_birth_mixture, birth_covariance, state_from_observation_matrix
)
from .imm_filter import IMMParameters, MultiTargetIMMFilter
from .association import (
    AssociationProposal, AssociationPriors, PoissonCountPrior,
    UniformSpatialPrior, create_association_proposal
)
from .rbmcda import MultiTargetRBMCDA
from .sample_info import SampleInfo, CLUTTER_ID
from .adjacency import (
    ObservationAdjacency, compute_sample_joint_probabilities,
    compute_pruning_threshold, format_dot_graph
)
from .partitioning import GreedyGourmetPartitioning


logger = logging.getLogger(__name__)


@dataclass
class TrackerParameters:
    """Parameters of a tracker run."""
    # Target and clutter model (p_detect < 0 or lambda_clutter == 0: estimate from data)
    p_detect: float = -1.0
    lambda_birth: float = 0.1
    lambda_clutter: float = 0.0
    lambda_death: float = 0.5
    delta_t: float = 1.0

    # Observation domain
    x_min: float = 0.0
    y_min: float = 0.0
    x_max: float = 100.0
    y_max: float = 100.0
    size_min: float = 0.0
    size_max: float = 100.0

    # Dynamic models and noise
    model_transition: np.ndarray = field(
        default_factory=lambda: np.array([[0.9, 0.1], [0.1, 0.9]]))
    q_xy: float = 4.0
    q_xy_prev: float = 1.0
    q_size: float = 1.0
    r_xy: float = 1.0
    r_size: float = 1.0

    # Sampling
    num_particles: int = 100
    ess_percentage: float = 0.5
    proposal: str = 'naive'
    max_num_neighbors: int = 3
    max_dist_neighbors: float = np.inf
    random_seed: Optional[int] = None
    num_workers: int = 1

    # Graph construction
    link_all_track_observations: bool = True
    partition_max_sweeps: int = 10

    def __post_init__(self):
        self.model_transition = np.asarray(self.model_transition, dtype=float)

    def validate(self) -> None:
        """
        Check parameter consistency.

        Raises:
            ValueError: On the first invalid parameter
        """
        if self.p_detect > 1.0:
            raise ValueError(f"Detection probability must be <= 1, got {self.p_detect}")
        for name in ('lambda_birth', 'lambda_clutter', 'lambda_death'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.delta_t <= 0:
            raise ValueError("Frame interval must be positive")
        if self.x_max <= self.x_min or self.y_max <= self.y_min:
            raise ValueError("Observation domain must have positive extent")
        if self.size_max < self.size_min:
            raise ValueError("size_max must not be smaller than size_min")
        for name in ('q_xy', 'q_xy_prev', 'q_size', 'r_xy', 'r_size'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.num_particles < 1:
            raise ValueError("Number of particles must be positive")
        if not 0.0 <= self.ess_percentage <= 1.0:
            raise ValueError("ESS percentage must be in [0, 1]")


def estimate_clutter_and_detection(observation_counts: List[int], lambda_clutter: float,
                                   p_detect: float) -> Tuple[float, float, float]:
    """
    Estimate the clutter rate and the detection probability from observation counts.

    The median count (upper middle element for an even number of frames) is
    used as proxy for the number of targets. The clutter rate is the mean
    excess over the median, the detection probability one minus the mean
    relative deficit. Only parameters flagged for estimation
    (``lambda_clutter == 0``, ``p_detect < 0``) are replaced.

    Args:
        observation_counts: Number of observations per frame
        lambda_clutter: Given clutter rate, 0 to estimate
        p_detect: Given detection probability, negative to estimate

    Returns:
        Tuple of (lambda_clutter, p_detect, estimated number of targets)
    """
    counts = np.asarray(observation_counts, dtype=float)
    num_frames = len(counts)
    num_targets = float(np.sort(counts)[num_frames // 2]) if num_frames else 0.0

    if lambda_clutter == 0 and num_frames:
        excess = counts[counts > num_targets] - num_targets
        lambda_clutter = float(np.sum(excess) / num_frames)

    if p_detect < 0:
        if num_targets > 0:
            deficit = num_targets - counts[counts < num_targets]
            p_detect = float(1.0 - np.sum(deficit) / (num_frames * num_targets))
        else:
            p_detect = 1.0

    return lambda_clutter, p_detect, num_targets


@dataclass
class TrackingResult:
    """Outcome of a tracker run."""
    observations: List[MultiState]                   # Labelled with track IDs, 0 = clutter
    tracks: Dict[int, List[Tuple[int, int]]]          # Track ID -> (time, observation index)
    subgraphs: List[List[int]]                        # Partition of the graph nodes
    adjacency: ObservationAdjacency
    sample_infos: List[SampleInfo]
    sample_weights: np.ndarray                        # Per-step renormalized posterior weights
    ess: float
    pruning_threshold: float
    num_pruned_edges: int
    lambda_clutter: float
    p_detect: float

    @property
    def num_tracks(self) -> int:
        return len(self.tracks)

    def sample_observations(self, index: int) -> List[MultiState]:
        """
        Observations labelled according to one particle's own association history.

        Targets observed only once are reported as clutter.
        """
        info = self.sample_infos[index]
        labelled = []
        for t, observations in enumerate(self.observations):
            ids = info.get_observation_ids(t)
            frame = observations.copy()
            for m, (_, label) in enumerate(frame):
                track = info.get_track(int(ids[m]))
                if ids[m] != CLUTTER_ID and track is not None and len(track) > 1:
                    label.id = int(ids[m])
                else:
                    label.id = CLUTTER_ID
            labelled.append(frame)
        return labelled

    def sample_conditional_probability(self, index: int, t: int) -> float:
        """Log conditional probability of particle ``index``'s association at time ``t``."""
        return self.sample_infos[index].log_conditional[t]

    def to_dot(self) -> str:
        """Graphviz description of the observation graph and the tracks."""
        return format_dot_graph(self.adjacency, self.subgraphs)


class MultiObservationTrackerRBMCDAIMM:
    """
    Multi-target tracker combining RBMCDA sampling with IMM filtering.

    The association proposal and the dynamic/observation models can be
    injected; by default they are created from the parameters.
    """

    def __init__(self, params: Optional[TrackerParameters] = None,
                 proposal: Optional[AssociationProposal] = None,
                 dynamic_models: Optional[List[LinearGaussianModel]] = None,
                 observation_model: Optional[LinearGaussianModel] = None):
        """
        Initialize tracker.

        Args:
            params: Run parameters (defaults to TrackerParameters())
            proposal: Association proposal; created from params if None
            dynamic_models: Dynamic models, one per IMM component
            observation_model: Observation model
        """
        self.params = params if params is not None else TrackerParameters()
        self.params.validate()

        self.proposal = proposal
        if dynamic_models is None:
            noise = DynamicNoiseParameters(self.params.q_xy, self.params.q_xy_prev,
                                           self.params.q_size)
            dynamic_models = create_dynamic_models(noise)
        self.dynamic_models = dynamic_models
        if observation_model is None:
            observation_model = create_observation_model(self.params.r_xy, self.params.r_size)
        self.observation_model = observation_model

        self.engine: Optional[MultiTargetRBMCDA] = None

    def run(self, observations: List[Union[MultiState, np.ndarray]],
            ground_truth: Optional[List[MultiState]] = None) -> TrackingResult:
        """
        Track targets through a time series of observation sets.

        Args:
            observations: One observation set per frame (MultiState or ``(n, 3)`` array)
            ground_truth: Optional labelled copies of the observations (true IDs,
                0 = clutter) that guide the association sampling

        Returns:
            Tracking result with labelled observations and tracks
        """
        frames = [self._as_multi_state(z) for z in observations]
        if not frames:
            raise ValueError("Need at least one frame of observations")
        if ground_truth is not None and len(ground_truth) != len(frames):
            raise ValueError("Ground truth must cover every frame")

        params = self.params
        lambda_clutter, p_detect, num_targets = estimate_clutter_and_detection(
            [len(z) for z in frames], params.lambda_clutter, params.p_detect)
        logger.info("Tracking %d frames: ~%.1f targets, clutter rate %.3f, "
                    "detection probability %.3f", len(frames), num_targets,
                    lambda_clutter, p_detect)

        random_state = np.random.RandomState(params.random_seed)
        proposal = self.proposal
        if proposal is None:
            proposal = self._create_proposal(lambda_clutter, p_detect)

        prototype = self._create_initial_filter(frames[0])
        self.engine = MultiTargetRBMCDA(prototype, proposal, params.num_particles,
                                        max_target_id=len(frames[0]),
                                        random_state=random_state,
                                        ess_percentage=params.ess_percentage,
                                        num_workers=params.num_workers)
        if ground_truth is not None:
            # First-frame observation m seeded target m + 1
            initial = {label.id: m + 1 for m, (_, label) in enumerate(ground_truth[0])
                       if label.id != CLUTTER_ID}
            for particle in self.engine.particles:
                particle.truth_to_sample = dict(initial)

        for t, frame in enumerate(frames):
            self.engine.predict()
            truth = ground_truth[t] if ground_truth is not None else None
            resampled = self.engine.update(frame, truth)
            logger.debug("Frame %d: %d observations, ESS %.2f%s", t, len(frame),
                         self.engine.ess_history[-1], ", resampled" if resampled else "")

        return self._build_result(frames, lambda_clutter, p_detect)

    def _as_multi_state(self, frame: Union[MultiState, np.ndarray]) -> MultiState:
        if isinstance(frame, MultiState):
            if frame.dim != OBSERVATION_DIM:
                raise ValueError(f"Observations must be {OBSERVATION_DIM}-dimensional")
            return frame
        frame = np.asarray(frame, dtype=float)
        if frame.size == 0:
            return MultiState(OBSERVATION_DIM)
        return MultiState.from_array(frame.reshape(-1, OBSERVATION_DIM))

    def _create_proposal(self, lambda_clutter: float, p_detect: float) -> AssociationProposal:
        params = self.params
        lower = np.array([params.x_min, params.y_min, params.size_min])
        upper = np.array([params.x_max, params.y_max, params.size_max])
        priors = AssociationPriors(
            p_detect=p_detect,
            clutter_count=PoissonCountPrior(lambda_clutter),
            birth_count=PoissonCountPrior(params.lambda_birth),
            clutter_spatial=UniformSpatialPrior(lower, upper),
            birth_spatial=UniformSpatialPrior(lower, upper)
        )
        return create_association_proposal(params.proposal, priors,
                                           params.max_num_neighbors,
                                           params.max_dist_neighbors)

    def _create_initial_filter(self, first_frame: MultiState) -> MultiTargetIMMFilter:
        """Prototype filter with one target (IDs 1..M) per first-frame observation."""
        params = self.params
        imm_params = IMMParameters(
            transition_probabilities=params.model_transition,
            delta_t=params.delta_t,
            lambda_death=params.lambda_death,
            size_min=params.size_min,
            size_max=params.size_max
        )
        covariance = birth_covariance(params.r_xy, params.r_size)
        lift = state_from_observation_matrix()
        imm_filter = MultiTargetIMMFilter(imm_params, self.dynamic_models,
                                          self.observation_model, covariance, lift)

        for m, (z, _) in enumerate(first_frame):
            belief = create_birth_mixture(z, covariance, imm_filter.num_models, lift)
            imm_filter.add_target(m + 1, belief, TargetLabel(id=m + 1))
        return imm_filter

    def _build_result(self, frames: List[MultiState], lambda_clutter: float,
                      p_detect: float) -> TrackingResult:
        params = self.params
        sample_infos = self.engine.get_sample_infos()
        weights = compute_sample_joint_probabilities(sample_infos)
        threshold, ess = compute_pruning_threshold(weights)

        adjacency = ObservationAdjacency.from_samples(
            sample_infos, weights, link_all=params.link_all_track_observations)
        num_pruned = adjacency.prune(threshold)
        logger.info("Sample ESS %.2f, pruning threshold %.4f, %d edges pruned, %d kept",
                    ess, threshold, num_pruned, adjacency.num_edges)

        partitioner = GreedyGourmetPartitioning(adjacency.weights, adjacency.partitions,
                                                maximize=True, limit=0.0,
                                                max_sweeps=params.partition_max_sweeps)
        subgraphs = partitioner.run()

        labelled = [frame.copy() for frame in frames]
        for frame in labelled:
            for _, label in frame:
                label.id = CLUTTER_ID

        tracks: Dict[int, List[Tuple[int, int]]] = {}
        for nodes in subgraphs:
            if len(nodes) < 2:
                continue
            track_id = len(tracks) + 1
            tracks[track_id] = [adjacency.node_location(node) for node in nodes]
            for t, m in tracks[track_id]:
                labelled[t].get_label(m).id = track_id

        logger.info("Found %d tracks, %d clutter observations", len(tracks),
                    sum(1 for nodes in subgraphs if len(nodes) == 1))

        return TrackingResult(
            observations=labelled,
            tracks=tracks,
            subgraphs=subgraphs,
            adjacency=adjacency,
            sample_infos=sample_infos,
            sample_weights=weights,
            ess=ess,
            pruning_threshold=threshold,
            num_pruned_edges=num_pruned,
            lambda_clutter=lambda_clutter,
            p_detect=p_detect
        )
