"""
Cross-Time Observation Adjacency

After a tracker run, the particle ensemble's association histories are
fused into one weighted graph over all observations of all time steps.
The weight of an edge between two observations is the total posterior
weight of the particles that put both observations on the same track.

The posterior weight of a particle is computed by renormalizing the
particles' accumulated log conditional probabilities at every time step
(running log-sum-exp normalization) and exponentiating the final values.
This is the weight used for the graph; it differs from the weight used
for resampling decisions inside the particle engine.

Author: MTTrack Project
"""

import logging
import numpy as np
from typing import List, Dict, Tuple, Iterator, Optional
from scipy.special import logsumexp

from .rbmcda import compute_ess, normalize_log_weights
from .sample_info import SampleInfo, CLUTTER_ID


logger = logging.getLogger(__name__)


def compute_sample_joint_probabilities(sample_infos: List[SampleInfo]) -> np.ndarray:
    """
    Posterior weight of every particle's association history.

    For every time step the accumulated log probabilities of all particles
    are shifted by their log-sum-exp, so the running values stay normalized
    across particles at each step.

    Args:
        sample_infos: Association history of every particle

    Returns:
        Normalized linear weights, one per particle
    """
    if not sample_infos:
        return np.zeros(0)

    num_steps = sample_infos[0].num_steps
    if any(info.num_steps != num_steps for info in sample_infos):
        raise ValueError("All sample histories must cover the same number of time steps")

    log_conditional = np.array([info.log_conditional for info in sample_infos],
                               dtype=float).reshape(len(sample_infos), num_steps)
    running = np.zeros(len(sample_infos))
    for t in range(num_steps):
        running = running + log_conditional[:, t]
        total = logsumexp(running)
        if np.isfinite(total):
            running = running - total

    return normalize_log_weights(running)


def compute_pruning_threshold(weights: np.ndarray) -> Tuple[float, float]:
    """
    Edge pruning threshold derived from the effective sample size.

    The threshold is the total weight minus the ``ceil(ESS) - 1`` largest
    particle weights, i.e. the weight of the particles outside the
    effective majority.

    Args:
        weights: Normalized particle weights

    Returns:
        Tuple of (threshold, ESS)
    """
    weights = np.asarray(weights, dtype=float)
    ess = compute_ess(weights)
    num_largest = int(np.clip(np.ceil(ess) - 1, 0, len(weights)))
    largest = np.sort(weights)[::-1][:num_largest]
    threshold = float(np.sum(weights) - np.sum(largest))
    return threshold, ess


class ObservationAdjacency:
    """
    Weighted multipartite graph over all observations of a run.

    Nodes are indexed globally; the partition of a node is its time step.
    Besides edge weights, every node accumulates the posterior weight of
    the particles that called it clutter and of those that put it on a
    target track.
    """

    def __init__(self, observation_counts: List[int]):
        """
        Initialize an empty graph.

        Args:
            observation_counts: Number of observations per time step
        """
        self.observation_counts = list(observation_counts)
        self.offsets = np.concatenate([[0], np.cumsum(self.observation_counts)]).astype(int)
        self.num_nodes = int(self.offsets[-1])
        self.partitions = np.repeat(np.arange(len(self.observation_counts)),
                                    self.observation_counts).astype(int)

        self.weights = np.zeros((self.num_nodes, self.num_nodes))
        self.clutter_votes = np.zeros(self.num_nodes)
        self.target_votes = np.zeros(self.num_nodes)

    @classmethod
    def from_samples(cls, sample_infos: List[SampleInfo], sample_weights: np.ndarray,
                     link_all: bool = True) -> 'ObservationAdjacency':
        """
        Build the graph from the particles' association histories.

        Args:
            sample_infos: Association history of every particle
            sample_weights: Posterior weight of every particle
            link_all: Link every pair of observations on a track; otherwise
                only temporally successive observations

        Returns:
            Populated adjacency graph
        """
        if len(sample_infos) != len(sample_weights):
            raise ValueError("Need exactly one weight per sample")
        if not sample_infos:
            return cls([])

        counts = [len(obs) for obs in sample_infos[0].observations]
        adjacency = cls(counts)
        for info, weight in zip(sample_infos, sample_weights):
            adjacency.add_sample(info, weight, link_all)
        return adjacency

    def node_index(self, t: int, m: int) -> int:
        return int(self.offsets[t] + m)

    def node_location(self, index: int) -> Tuple[int, int]:
        """Time step and observation index of a global node index."""
        t = int(self.partitions[index])
        return t, int(index - self.offsets[t])

    def add_sample(self, sample_info: SampleInfo, weight: float, link_all: bool = True) -> None:
        """Add one particle's votes with the given weight."""
        for target_id, track in sample_info.get_tracks().items():
            nodes = [self.node_index(t, m) for t, m in track]
            if target_id == CLUTTER_ID:
                self.clutter_votes[nodes] += weight
                continue

            self.target_votes[nodes] += weight
            if link_all:
                for a in range(len(nodes)):
                    for b in range(a + 1, len(nodes)):
                        self._add_edge(nodes[a], nodes[b], weight)
            else:
                for a, b in zip(nodes[:-1], nodes[1:]):
                    self._add_edge(a, b, weight)

    def _add_edge(self, a: int, b: int, weight: float) -> None:
        self.weights[a, b] += weight
        self.weights[b, a] += weight

    def get_weight(self, a: int, b: int) -> float:
        return float(self.weights[a, b])

    def prune(self, threshold: float) -> int:
        """
        Zero every positive edge weight below the threshold.

        Returns:
            Number of removed edges
        """
        mask = (self.weights > 0) & (self.weights < threshold)
        self.weights[mask] = 0.0
        return int(np.count_nonzero(np.triu(mask)))

    def edges(self) -> Iterator[Tuple[int, int, float]]:
        """Iterate over ``(a, b, weight)`` with ``a < b`` and positive weight."""
        rows, cols = np.nonzero(np.triu(self.weights))
        for a, b in zip(rows, cols):
            yield int(a), int(b), float(self.weights[a, b])

    @property
    def num_edges(self) -> int:
        return int(np.count_nonzero(np.triu(self.weights)))


def format_dot_graph(adjacency: ObservationAdjacency,
                     subgraphs: Optional[List[List[int]]] = None,
                     name: str = "observations") -> str:
    """
    Describe the graph and its subgraphs in Graphviz DOT format.

    Args:
        adjacency: Observation graph
        subgraphs: Node lists of the discovered tracks; single-node lists are clutter
        name: Graph name

    Returns:
        DOT source text
    """
    lines = [f"graph {name} {{", "  node [shape=circle];"]

    def node_name(index: int) -> str:
        t, m = adjacency.node_location(index)
        return f"n{t}_{m}"

    clustered = set()
    for k, nodes in enumerate(subgraphs or []):
        if len(nodes) < 2:
            continue
        lines.append(f"  subgraph cluster_{k} {{")
        lines.append(f'    label="track {k}";')
        for index in nodes:
            lines.append(f"    {node_name(index)};")
            clustered.add(index)
        lines.append("  }")

    for index in range(adjacency.num_nodes):
        if index not in clustered:
            style = ' [style=dashed]' if subgraphs is not None else ''
            lines.append(f"  {node_name(index)}{style};")

    max_weight = float(np.max(adjacency.weights)) if adjacency.num_nodes else 0.0
    for a, b, weight in adjacency.edges():
        penwidth = 1.0 + 4.0 * weight / max_weight if max_weight > 0 else 1.0
        lines.append(f'  {node_name(a)} -- {node_name(b)} '
                     f'[label="{weight:.3f}", penwidth={penwidth:.2f}];')

    lines.append("}")
    return "\n".join(lines)
