"""
Track evaluation against ground truth.

Tracks are compared on the level of track segments (pairs of successive
observations of one track), track starts, track ends and the clutter
classification of single observations. Observations are identified by
``(time step, observation index)``, so ground truth and tracker output must
label the same observation sets.

Author: MTTrack Project
"""

import numpy as np
from typing import List, Dict, Set, Tuple
from dataclasses import dataclass

from .state_models import MultiState
from .sample_info import CLUTTER_ID


Node = Tuple[int, int]
Segment = Tuple[Node, Node]


@dataclass
class ConfusionCounts:
    """True/false positive/negative counts of one evaluated quantity."""
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    true_negatives: int = 0

    def precision(self) -> float:
        denominator = self.true_positives + self.false_positives
        return self.true_positives / denominator if denominator > 0 else 0.0

    def recall(self) -> float:
        denominator = self.true_positives + self.false_negatives
        return self.true_positives / denominator if denominator > 0 else 0.0

    def f1_score(self) -> float:
        precision = self.precision()
        recall = self.recall()
        denominator = precision + recall
        return 2 * precision * recall / denominator if denominator > 0 else 0.0


@dataclass
class TrackEvaluationResult:
    """Evaluation of one tracker output."""
    segments: ConfusionCounts
    track_starts: ConfusionCounts
    track_ends: ConfusionCounts
    clutter: ConfusionCounts

    def get_summary(self) -> Dict[str, float]:
        return {
            'segment_precision': self.segments.precision(),
            'segment_recall': self.segments.recall(),
            'segment_f1': self.segments.f1_score(),
            'start_precision': self.track_starts.precision(),
            'start_recall': self.track_starts.recall(),
            'end_precision': self.track_ends.precision(),
            'end_recall': self.track_ends.recall(),
            'clutter_precision': self.clutter.precision(),
            'clutter_recall': self.clutter.recall(),
        }


def collect_tracks(observations: List[MultiState]) -> Dict[int, List[Node]]:
    """Time-ordered nodes per track ID, excluding clutter."""
    tracks: Dict[int, List[Node]] = {}
    for t, frame in enumerate(observations):
        for m, (_, label) in enumerate(frame):
            if label.id != CLUTTER_ID:
                tracks.setdefault(label.id, []).append((t, m))
    return tracks


class TrackEvaluator:
    """
    Compares tracker outputs with labelled ground truth.

    Example:
        >>> evaluator = TrackEvaluator(ground_truth)
        >>> result = evaluator.evaluate(tracking_result.observations)
    """

    def __init__(self, ground_truth: List[MultiState]):
        """
        Initialize evaluator.

        Args:
            ground_truth: Observations labelled with true target IDs (0 = clutter)
        """
        self.ground_truth = ground_truth
        self._truth_tracks = collect_tracks(ground_truth)
        self._truth_segments = self._segments(self._truth_tracks)
        self._truth_starts = {nodes[0] for nodes in self._truth_tracks.values()}
        self._truth_ends = {nodes[-1] for nodes in self._truth_tracks.values()}
        self._truth_clutter = self._clutter_nodes(ground_truth)

    @staticmethod
    def _segments(tracks: Dict[int, List[Node]]) -> Set[Segment]:
        return {(a, b) for nodes in tracks.values() for a, b in zip(nodes[:-1], nodes[1:])}

    @staticmethod
    def _clutter_nodes(observations: List[MultiState]) -> Set[Node]:
        return {(t, m) for t, frame in enumerate(observations)
                for m, (_, label) in enumerate(frame) if label.id == CLUTTER_ID}

    def evaluate(self, tracked: List[MultiState]) -> TrackEvaluationResult:
        """
        Evaluate one tracker output.

        Args:
            tracked: The same observations labelled by the tracker

        Returns:
            Confusion counts for segments, starts, ends and clutter
        """
        if len(tracked) != len(self.ground_truth) or any(
                len(a) != len(b) for a, b in zip(tracked, self.ground_truth)):
            raise ValueError("Tracker output must label the same observations as the ground truth")

        tracks = collect_tracks(tracked)
        segments = self._segments(tracks)
        starts = {nodes[0] for nodes in tracks.values()}
        ends = {nodes[-1] for nodes in tracks.values()}
        clutter = self._clutter_nodes(tracked)
        num_nodes = sum(len(frame) for frame in tracked)

        return TrackEvaluationResult(
            segments=self._compare(self._truth_segments, segments),
            track_starts=self._compare(self._truth_starts, starts),
            track_ends=self._compare(self._truth_ends, ends),
            clutter=self._compare(self._truth_clutter, clutter, universe=num_nodes)
        )

    def evaluate_all(self, outputs: List[List[MultiState]]) -> List[TrackEvaluationResult]:
        return [self.evaluate(tracked) for tracked in outputs]

    @staticmethod
    def _compare(truth: Set, found: Set, universe: int = 0) -> ConfusionCounts:
        tp = len(truth & found)
        fp = len(found - truth)
        fn = len(truth - found)
        tn = max(universe - tp - fp - fn, 0) if universe else 0
        return ConfusionCounts(tp, fp, fn, tn)

    @staticmethod
    def summarize(results: List[TrackEvaluationResult]) -> Dict[str, float]:
        """Mean of every summary metric over several evaluations."""
        if not results:
            return {}
        summaries = [r.get_summary() for r in results]
        return {key: float(np.mean([s[key] for s in summaries])) for key in summaries[0]}
