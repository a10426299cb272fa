"""
Greedy Multipartite Graph Partitioning ("GreedyGourmet")

Partitions a weighted multipartite graph into disjoint subgraphs that hold
at most one node per partition. In the tracker every partition is a time
step and every resulting subgraph with more than one node is a track.

The algorithm is a greedy heuristic without backtracking. Partitions are
visited in ascending order and, for each, every partition with a higher ID.
For each node of the lower partition its optimal neighbor in the higher
partition is looked up; only mutual best matches are considered. The
merge then follows one of three cases depending on whether the involved
subgraphs already occupy the other node's partition:

- Case 0: no conflict, the higher node joins the lower node's subgraph
- Case 1: one subgraph has a conflicting node; it is replaced by the
  newcomer if the newcomer's mean connection to the subgraph is stronger
- Case 2: both subgraphs have conflicting nodes; the better of the two
  possible exchanges is applied if it improves the summed subgraph cost

Results depend on the iteration order, which is fixed to ascending
partition ID and ascending node index. Ties between neighbors go to the
first one found.

Author: MTTrack Project
"""

import logging
import numpy as np
from typing import List, Dict, Optional
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class PartitionedGraphNode:
    """Graph node identified by its partition and its index within the partition."""
    partition: int
    index: int
    subgraph_id: int = -1


class Subgraph:
    """Set of nodes with at most one node per partition."""

    def __init__(self, subgraph_id: int):
        self.id = subgraph_id
        self._by_partition: Dict[int, int] = {}

    def add(self, node: int, partition: int) -> None:
        if partition in self._by_partition:
            raise ValueError(f"Subgraph {self.id} already holds node "
                             f"{self._by_partition[partition]} in partition {partition}")
        self._by_partition[partition] = node

    def remove(self, partition: int) -> None:
        del self._by_partition[partition]

    def node_at(self, partition: int) -> Optional[int]:
        """Node of this subgraph in the given partition, or None."""
        return self._by_partition.get(partition)

    def members(self) -> List[int]:
        return sorted(self._by_partition.values())

    def __len__(self) -> int:
        return len(self._by_partition)

    def __repr__(self) -> str:
        return f"Subgraph(id={self.id}, nodes={self.members()})"


class GreedyGourmetPartitioning:
    """
    Greedy partitioning of a weighted multipartite graph.

    Example:
        >>> partitioner = GreedyGourmetPartitioning(weights, partitions, maximize=True)
        >>> subgraphs = partitioner.run()
    """

    def __init__(self, weights: np.ndarray, partitions: np.ndarray,
                 maximize: bool = True, limit: float = 0.0, max_sweeps: int = 10):
        """
        Initialize partitioner; every node starts in its own subgraph.

        Args:
            weights: Symmetric ``(n, n)`` edge weight matrix
            partitions: Partition ID of every node
            maximize: Prefer large weights (True) or small weights (False)
            limit: Edges not strictly better than this weight are ignored
            max_sweeps: Maximum number of passes over all partition pairs
        """
        self.weights = np.asarray(weights, dtype=float)
        partitions = np.asarray(partitions, dtype=int)
        if self.weights.shape != (len(partitions), len(partitions)):
            raise ValueError(f"Weight matrix shape {self.weights.shape} does not match "
                             f"{len(partitions)} nodes")

        self.maximize = maximize
        self.limit = limit
        self.max_sweeps = max_sweeps

        self.nodes: List[PartitionedGraphNode] = []
        self.partition_nodes: Dict[int, List[int]] = {}
        for node, partition in enumerate(partitions):
            nodes_in_partition = self.partition_nodes.setdefault(int(partition), [])
            self.nodes.append(PartitionedGraphNode(int(partition), len(nodes_in_partition)))
            nodes_in_partition.append(node)
        self.partition_ids = sorted(self.partition_nodes)

        self.subgraphs: Dict[int, Subgraph] = {}
        self._next_subgraph_id = 0
        for node in range(len(self.nodes)):
            self._new_singleton(node)

    def _better(self, a: float, b: float) -> bool:
        return a > b if self.maximize else a < b

    def _new_singleton(self, node: int) -> Subgraph:
        subgraph = Subgraph(self._next_subgraph_id)
        self._next_subgraph_id += 1
        subgraph.add(node, self.nodes[node].partition)
        self.subgraphs[subgraph.id] = subgraph
        self.nodes[node].subgraph_id = subgraph.id
        return subgraph

    def subgraph_of(self, node: int) -> Subgraph:
        return self.subgraphs[self.nodes[node].subgraph_id]

    def optimal_neighbor(self, node: int, partition: int) -> Optional[int]:
        """
        Best neighbor of ``node`` in ``partition``.

        Returns:
            Node index, or None if no edge is strictly better than the limit
        """
        best = None
        best_weight = self.limit
        for candidate in self.partition_nodes.get(partition, []):
            weight = self.weights[node, candidate]
            if self._better(weight, best_weight):
                best = candidate
                best_weight = weight
        return best

    def run(self) -> List[List[int]]:
        """
        Partition the graph.

        Returns:
            Node lists of all subgraphs, ordered by their smallest node
        """
        for sweep in range(self.max_sweeps):
            changes = self._sweep()
            logger.debug("Partitioning sweep %d: %d changes, %d subgraphs",
                         sweep, changes, len(self.subgraphs))
            if changes == 0:
                break
        return self.get_subgraphs()

    def _sweep(self) -> int:
        changes = 0
        for lower_pos, lower in enumerate(self.partition_ids):
            for higher in self.partition_ids[lower_pos + 1:]:
                for n1 in self.partition_nodes[lower]:
                    n2 = self.optimal_neighbor(n1, higher)
                    if n2 is None or self.optimal_neighbor(n2, lower) != n1:
                        continue
                    if self.nodes[n1].subgraph_id == self.nodes[n2].subgraph_id:
                        continue
                    if self._merge(n1, n2, lower, higher):
                        changes += 1
        return changes

    def _merge(self, n1: int, n2: int, lower: int, higher: int) -> bool:
        s1 = self.subgraph_of(n1)
        s2 = self.subgraph_of(n2)
        nstar1 = s1.node_at(higher)
        nstar2 = s2.node_at(lower)

        if nstar1 is None and nstar2 is None:
            self._move(n2, s1)
            return True
        if nstar2 is None:
            return self._replace_if_stronger(s1, nstar1, n2)
        if nstar1 is None:
            return self._replace_if_stronger(s2, nstar2, n1)
        return self._resolve_conflict(n1, n2, s1, s2, nstar1, nstar2)

    def _replace_if_stronger(self, subgraph: Subgraph, nstar: int, newcomer: int) -> bool:
        """Case 1: swap ``nstar`` for ``newcomer`` if the newcomer connects more strongly."""
        others = [node for node in subgraph.members() if node != nstar]
        current = float(np.mean(self.weights[nstar, others]))
        candidate = float(np.mean(self.weights[newcomer, others]))
        if not self._better(candidate, current):
            return False

        self._evict(nstar)
        self._move(newcomer, subgraph)
        return True

    def _resolve_conflict(self, n1: int, n2: int, s1: Subgraph, s2: Subgraph,
                          nstar1: int, nstar2: int) -> bool:
        """Case 2: apply the better exchange if it improves the summed cost of both subgraphs."""
        members1 = s1.members()
        members2 = s2.members()
        unmerged = self.subgraph_cost(members1) + self.subgraph_cost(members2)

        # n2 replaces nstar1 in s1
        cost_into_1 = (self.subgraph_cost([n for n in members1 if n != nstar1] + [n2])
                       + self.subgraph_cost([n for n in members2 if n != n2]))
        # n1 replaces nstar2 in s2
        cost_into_2 = (self.subgraph_cost([n for n in members2 if n != nstar2] + [n1])
                       + self.subgraph_cost([n for n in members1 if n != n1]))

        if self._better(cost_into_2, cost_into_1):
            if not self._better(cost_into_2, unmerged):
                return False
            self._evict(nstar2)
            self._move(n1, s2)
        else:
            if not self._better(cost_into_1, unmerged):
                return False
            self._evict(nstar1)
            self._move(n2, s1)
        return True

    def subgraph_cost(self, nodes: List[int]) -> float:
        """Sum of the weights of all edges within ``nodes`` that pass the limit."""
        if len(nodes) < 2:
            return 0.0
        block = self.weights[np.ix_(nodes, nodes)]
        upper = block[np.triu_indices(len(nodes), k=1)]
        passing = upper > self.limit if self.maximize else upper < self.limit
        return float(np.sum(upper[passing]))

    def _move(self, node: int, target: Subgraph) -> None:
        partition = self.nodes[node].partition
        source = self.subgraph_of(node)
        source.remove(partition)
        if len(source) == 0:
            del self.subgraphs[source.id]
        target.add(node, partition)
        self.nodes[node].subgraph_id = target.id

    def _evict(self, node: int) -> None:
        source = self.subgraph_of(node)
        source.remove(self.nodes[node].partition)
        if len(source) == 0:
            del self.subgraphs[source.id]
        self._new_singleton(node)

    def get_subgraphs(self) -> List[List[int]]:
        """Node lists of all subgraphs, ordered by their smallest node."""
        return sorted((s.members() for s in self.subgraphs.values()), key=lambda nodes: nodes[0])

    def get_tracks(self) -> List[List[int]]:
        """Subgraphs with more than one node."""
        return [nodes for nodes in self.get_subgraphs() if len(nodes) > 1]

    def get_clutter(self) -> List[int]:
        """Nodes left in singleton subgraphs."""
        return [nodes[0] for nodes in self.get_subgraphs() if len(nodes) == 1]
