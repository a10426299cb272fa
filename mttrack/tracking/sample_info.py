"""
Per-particle association history of the RBMCDA tracker.

Author: MTTrack Project
"""

import numpy as np
from typing import List, Dict, Set, Tuple, Optional

from .state_models import MultiState
from .association import DataAssociation


# Pseudo track ID collecting all clutter observations
CLUTTER_ID = 0


class SampleInfo:
    """
    Append-only log of one particle's sampled associations.

    One entry per time step holds the log conditional probability of the
    sampled association, the association itself, the observations and the
    IDs of the targets alive after the update. Tracks are maintained
    incrementally as ordered lists of ``(time, observation index)`` nodes
    per target ID; ``CLUTTER_ID`` collects unassociated observations.
    """

    def __init__(self):
        self.log_conditional: List[float] = []
        self.associations: List[DataAssociation] = []
        self.observations: List[MultiState] = []
        self.live_target_ids: List[Set[int]] = []
        self.all_target_ids: Set[int] = set()
        self._tracks: Dict[int, List[Tuple[int, int]]] = {CLUTTER_ID: []}

    def add_step(self, log_probability: float, association: DataAssociation,
                 observations: MultiState, live_target_ids: List[int]) -> None:
        """
        Append the outcome of one time step.

        Args:
            log_probability: Log conditional probability of the sampled association
            association: Sampled exclusive association
            observations: Observations of the frame
            live_target_ids: IDs of the targets alive after the update
        """
        t = len(self.log_conditional)
        self.log_conditional.append(float(log_probability))
        self.associations.append(association)
        self.observations.append(observations)
        self.live_target_ids.append(set(live_target_ids))

        for m in range(len(observations)):
            target_id = association.get_target(m)
            if target_id is None:
                self._tracks[CLUTTER_ID].append((t, m))
            else:
                self.all_target_ids.add(target_id)
                self._tracks.setdefault(target_id, []).append((t, m))

    @property
    def num_steps(self) -> int:
        return len(self.log_conditional)

    @property
    def log_joint(self) -> float:
        """Cumulative log probability of all sampled associations."""
        return float(np.sum(self.log_conditional))

    def get_tracks(self) -> Dict[int, List[Tuple[int, int]]]:
        """Time-ordered ``(time, observation index)`` nodes per target ID (0 = clutter)."""
        return self._tracks

    def get_track(self, target_id: int) -> Optional[List[Tuple[int, int]]]:
        return self._tracks.get(target_id)

    def get_observation_ids(self, t: int) -> np.ndarray:
        """Target ID of every observation at time ``t`` (0 = clutter)."""
        association = self.associations[t]
        return np.array([association.get_target(m) or CLUTTER_ID
                         for m in range(len(self.observations[t]))], dtype=int)

    def copy(self) -> 'SampleInfo':
        """Deep copy of the mutable history; observation sets are shared read-only."""
        other = SampleInfo()
        other.log_conditional = list(self.log_conditional)
        other.associations = [a.copy() for a in self.associations]
        other.observations = list(self.observations)
        other.live_target_ids = [set(ids) for ids in self.live_target_ids]
        other.all_target_ids = set(self.all_target_ids)
        other._tracks = {k: list(v) for k, v in self._tracks.items()}
        return other

    def __repr__(self) -> str:
        return (f"SampleInfo(steps={self.num_steps}, log_joint={self.log_joint:.3f}, "
                f"targets={sorted(self.all_target_ids)})")
