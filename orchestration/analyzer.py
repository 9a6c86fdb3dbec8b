"""
CYCLE & PATH ANALYZER
Read-only structural analysis of the process graph.

Provides:
- Cycle detection (white/gray/black DFS with an explicit frame stack)
- Longest simple chain from a node, and the overall critical path
- Bottleneck detection from direct in/out degrees
- Aggregate degree metrics for reporting

Nothing in this module mutates the graph.
"""
import logging
from typing import Dict, Iterator, List, Optional, Set, Tuple

import networkx as nx
from pydantic import BaseModel, Field

from infrastructure.graph_db import GraphDB


logger = logging.getLogger("ProcFlow.Analyzer")

# Bottleneck thresholds
BOTTLENECK_DEGREE = 3
HIGH_RISK_DEGREE = 5


class CriticalPath(BaseModel):
    start_node: str = Field(alias="startNode")
    length: int
    nodes: List[str]

    class Config:
        populate_by_name = True


class Bottleneck(BaseModel):
    node_id: str = Field(alias="nodeId")
    node_name: str = Field(alias="nodeName")
    in_degree: int = Field(alias="inDegree")
    out_degree: int = Field(alias="outDegree")
    type: str  # convergence | divergence
    risk: str  # medium | high

    class Config:
        populate_by_name = True

    @property
    def max_degree(self) -> int:
        return max(self.in_degree, self.out_degree)


class DependencyMetrics(BaseModel):
    avg_in_degree: float = Field(default=0.0, alias="avgInDegree")
    avg_out_degree: float = Field(default=0.0, alias="avgOutDegree")
    max_in_degree: int = Field(default=0, alias="maxInDegree")
    max_out_degree: int = Field(default=0, alias="maxOutDegree")
    isolated_node_count: int = Field(default=0, alias="isolatedNodeCount")
    cycle_count: int = Field(default=0, alias="cycleCount")

    class Config:
        populate_by_name = True


class GraphAnalyzer:
    """
    Structural analysis over a GraphDB.

    Uses explicit visited / recursion-stack sets so user-created cycles
    never cause infinite traversal.
    """

    def __init__(self, db: GraphDB):
        self.db = db

    # =========================================================================
    # CYCLES
    # =========================================================================

    def detect_cycles(self) -> List[List[str]]:
        """
        Find cycles via DFS back-edges.

        Each cycle is the slice of the current DFS path from the first
        occurrence of the back-edge target to the current node. The walk
        keeps an explicit stack of (node, successor iterator) frames, so
        long chains do not consume the interpreter's call stack.

        Returns:
            Zero or more cycles as ordered lists of node ids
        """
        visited: Set[str] = set()
        rec_stack: Set[str] = set()
        cycles: List[List[str]] = []

        for root in self.db.all_nodes():
            if root.id in visited:
                continue

            visited.add(root.id)
            rec_stack.add(root.id)
            path: List[str] = [root.id]
            stack: List[Tuple[str, Iterator[str]]] = [(root.id, iter(self.db.successors(root.id)))]

            while stack:
                node_id, succs = stack[-1]
                for succ in succs:
                    if succ not in visited:
                        visited.add(succ)
                        rec_stack.add(succ)
                        path.append(succ)
                        stack.append((succ, iter(self.db.successors(succ))))
                        break
                    elif succ in rec_stack:
                        cycle_start = path.index(succ)
                        cycles.append(path[cycle_start:])
                else:
                    stack.pop()
                    path.pop()
                    rec_stack.remove(node_id)

        if cycles:
            logger.debug(f"Detected {len(cycles)} cycle(s)")
        return cycles

    def find_self_loops(self) -> List[str]:
        """Node ids that depend on themselves."""
        seen = []
        for edge in self.db.get_edges(lambda e: e.is_self_loop):
            if edge.from_node_id not in seen:
                seen.append(edge.from_node_id)
        return seen

    def cycle_names(self, cycles: List[List[str]]) -> List[List[str]]:
        """Map cycle node ids to display names."""
        named = []
        for cycle in cycles:
            names = []
            for node_id in cycle:
                node = self.db.get_node(node_id)
                names.append(node.name if node else node_id)
            named.append(names)
        return named

    # =========================================================================
    # PATHS
    # =========================================================================

    def _is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.db.graph)

    def _chain_table(self) -> Dict[str, Tuple[int, Optional[str]]]:
        """
        Longest chain length and next hop for every node of an acyclic graph.

        Nodes are resolved in reverse topological order; a successor replaces
        the current next hop only when its chain is strictly longer.
        """
        table: Dict[str, Tuple[int, Optional[str]]] = {}
        for node_id in reversed(list(nx.topological_sort(self.db.graph))):
            best_length, best_next = 1, None
            for succ in self.db.successors(node_id):
                if table[succ][0] + 1 > best_length:
                    best_length, best_next = table[succ][0] + 1, succ
            table[node_id] = (best_length, best_next)
        return table

    @staticmethod
    def _follow(table: Dict[str, Tuple[int, Optional[str]]], start_id: str) -> List[str]:
        chain = []
        node_id = start_id
        while node_id is not None:
            chain.append(node_id)
            node_id = table[node_id][1]
        return chain

    def _walk_simple_paths(self, start_id: str, visited: Set[str]) -> List[str]:
        """Per-path exhaustive walk; nodes are excluded only while on the path."""
        on_path = set(visited)
        on_path.add(start_id)
        # frame: [node, successor iterator, best chain found from node]
        stack = [[start_id, iter(self.db.successors(start_id)), [start_id]]]

        while True:
            node_id, succs, best = stack[-1]
            descended = False
            for succ in succs:
                if succ not in on_path:
                    on_path.add(succ)
                    stack.append([succ, iter(self.db.successors(succ)), [succ]])
                    descended = True
                    break
            if descended:
                continue

            stack.pop()
            on_path.discard(node_id)
            if not stack:
                return best
            parent = stack[-1]
            if len(best) + 1 > len(parent[2]):
                parent[2] = [parent[0]] + best

    def longest_path(self, start_id: str, visited: Optional[Set[str]] = None) -> List[str]:
        """
        Longest simple chain of node ids reachable from start_id.

        A node is only excluded while it is on the current path. Ties keep
        the first chain discovered. Acyclic graphs are resolved with a
        memoized chain table instead of enumerating every path.
        """
        if self.db.get_node(start_id) is None:
            logger.warning(f"longest_path: unknown node {start_id}")
            return []

        visited = set(visited or ())
        if start_id in visited:
            return []
        if not visited and self._is_acyclic():
            return self._follow(self._chain_table(), start_id)
        return self._walk_simple_paths(start_id, visited)

    def start_nodes(self) -> List[str]:
        """Nodes without direct predecessors, in insertion order."""
        return [n.id for n in self.db.all_nodes() if not self.db.predecessors(n.id)]

    def critical_path(self) -> Optional[CriticalPath]:
        """
        The longest chain starting from any node with zero predecessors.

        Returns:
            CriticalPath, or None when every node has a predecessor
        """
        table = self._chain_table() if self._is_acyclic() else None

        best: Optional[List[str]] = None
        for start_id in self.start_nodes():
            if table is not None:
                path = self._follow(table, start_id)
            else:
                path = self._walk_simple_paths(start_id, set())
            if path and (best is None or len(path) > len(best)):
                best = path

        if best is None:
            return None
        return CriticalPath(start_node=best[0], length=len(best), nodes=best)

    # =========================================================================
    # DEGREES
    # =========================================================================

    def bottlenecks(self) -> List[Bottleneck]:
        """
        Nodes with many direct incoming or outgoing edges.

        Returns:
            Bottlenecks sorted by max(in_degree, out_degree), descending
        """
        found = []
        for node in self.db.all_nodes():
            in_degree = self.db.in_degree(node.id)
            out_degree = self.db.out_degree(node.id)
            if in_degree < BOTTLENECK_DEGREE and out_degree < BOTTLENECK_DEGREE:
                continue
            found.append(Bottleneck(
                node_id=node.id,
                node_name=node.name,
                in_degree=in_degree,
                out_degree=out_degree,
                type="convergence" if in_degree >= out_degree else "divergence",
                risk="high" if max(in_degree, out_degree) >= HIGH_RISK_DEGREE else "medium"
            ))

        return sorted(found, key=lambda b: b.max_degree, reverse=True)

    def degree_metrics(self, cycle_count: Optional[int] = None) -> DependencyMetrics:
        """Aggregate degree statistics over all nodes."""
        nodes = self.db.all_nodes()
        if cycle_count is None:
            cycle_count = len(self.detect_cycles())
        if not nodes:
            return DependencyMetrics(cycle_count=cycle_count)

        in_degrees = [self.db.in_degree(n.id) for n in nodes]
        out_degrees = [self.db.out_degree(n.id) for n in nodes]
        isolated = sum(1 for i, o in zip(in_degrees, out_degrees) if i == 0 and o == 0)

        return DependencyMetrics(
            avg_in_degree=sum(in_degrees) / len(nodes),
            avg_out_degree=sum(out_degrees) / len(nodes),
            max_in_degree=max(in_degrees),
            max_out_degree=max(out_degrees),
            isolated_node_count=isolated,
            cycle_count=cycle_count
        )
