"""
Multi-target tracking module

This module tracks an unknown, time-varying number of targets from noisy,
cluttered detections with unknown target correspondence, using
Rao-Blackwellized Monte Carlo Data Association (RBMCDA) with per-target
Interacting Multiple Model (IMM) Gaussian-mixture filters.

Components:
- State models - 5-D target states, 3-D observations, linear-Gaussian models
- IMM filter - per-target mixture beliefs, birth and stochastic death
- Association - exclusive associations and sequential association proposals
- RBMCDA engine - weighted particle ensemble with ESS-triggered resampling
- Adjacency - ensemble votes fused into a cross-time observation graph
- Partitioning - greedy multipartite graph partitioning into tracks
- Tracker - end-to-end driver
- Evaluation - segment/start/end/clutter metrics against ground truth
"""

from .state_models import (
    STATE_DIM,
    OBSERVATION_DIM,
    DynamicModelType,
    TargetLabel,
    MultiState,
    GaussianComponent,
    GaussianMixture,
    DynamicNoiseParameters,
    LinearGaussianModel,
    create_dynamic_model,
    create_dynamic_models,
    create_observation_model,
    create_birth_mixture,
    state_from_observation_matrix,
)

from .association import (
    DataAssociation,
    PoissonCountPrior,
    UniformSpatialPrior,
    AssociationPriors,
    AssociationSample,
    AssociationProposal,
    SequentialAssociationProposal,
    NeighborhoodAssociationProposal,
    create_association_proposal,
)

from .imm_filter import (
    IMMParameters,
    ExponentialSurvival,
    MultiTargetIMMFilter,
    normalize_markov_matrix,
)

from .sample_info import SampleInfo, CLUTTER_ID

from .rbmcda import (
    Particle,
    MultiTargetRBMCDA,
    compute_ess,
    normalize_log_weights,
    systematic_resample,
)

from .adjacency import (
    ObservationAdjacency,
    compute_sample_joint_probabilities,
    compute_pruning_threshold,
    format_dot_graph,
)

from .partitioning import (
    PartitionedGraphNode,
    Subgraph,
    GreedyGourmetPartitioning,
)

from .tracker import (
    TrackerParameters,
    TrackingResult,
    MultiObservationTrackerRBMCDAIMM,
    estimate_clutter_and_detection,
)

from .evaluation import (
    ConfusionCounts,
    TrackEvaluationResult,
    TrackEvaluator,
)

__all__ = [
    # State models
    'STATE_DIM', 'OBSERVATION_DIM', 'DynamicModelType', 'TargetLabel', 'MultiState',
    'GaussianComponent', 'GaussianMixture', 'DynamicNoiseParameters', 'LinearGaussianModel',
    'create_dynamic_model', 'create_dynamic_models', 'create_observation_model',
    'create_birth_mixture', 'state_from_observation_matrix',

    # Association
    'DataAssociation', 'PoissonCountPrior', 'UniformSpatialPrior', 'AssociationPriors',
    'AssociationSample', 'AssociationProposal', 'SequentialAssociationProposal',
    'NeighborhoodAssociationProposal', 'create_association_proposal',

    # IMM filter
    'IMMParameters', 'ExponentialSurvival', 'MultiTargetIMMFilter', 'normalize_markov_matrix',

    # Particle engine
    'SampleInfo', 'CLUTTER_ID', 'Particle', 'MultiTargetRBMCDA', 'compute_ess',
    'normalize_log_weights', 'systematic_resample',

    # Graph
    'ObservationAdjacency', 'compute_sample_joint_probabilities', 'compute_pruning_threshold',
    'format_dot_graph', 'PartitionedGraphNode', 'Subgraph', 'GreedyGourmetPartitioning',

    # Driver and evaluation
    'TrackerParameters', 'TrackingResult', 'MultiObservationTrackerRBMCDAIMM',
    'estimate_clutter_and_detection', 'ConfusionCounts', 'TrackEvaluationResult',
    'TrackEvaluator',
]
