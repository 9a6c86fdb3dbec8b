"""
GRAPH STORE
Flat id-keyed storage of process nodes and dependency edges.
Features: Narrow read interface for the engine, optional atomic persistence.
"""
import networkx as nx
import logging
import datetime
import json
import hashlib
import os
from typing import Callable, List, Dict, Any, Optional, Tuple

from core.ontology import (
    NodeStatus, NodeSpec, NodeMetadata, EdgeSpec,
    DependencyType, EdgeStrength,
)

# Schema version for persistence format
SCHEMA_VERSION = "1.0"


class GraphDB:
    """
    Node and Edge collections backed by a networkx MultiDiGraph.

    Nodes are keyed by id and carry their NodeSpec under the 'spec'
    attribute; edges are keyed by edge id so parallel dependencies between
    the same pair of nodes stay distinct.
    """

    def __init__(self, persistence_path: Optional[str] = None):
        self.logger = logging.getLogger("ProcFlow.GraphDB")
        self.persistence_path = persistence_path
        self.graph = nx.MultiDiGraph()
        self._edge_index: Dict[str, Tuple[str, str]] = {}  # edge_id -> (from, to)
        if self.persistence_path:
            self._load()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _calculate_checksum(self, data: Dict) -> str:
        """Calculate SHA256 checksum of graph data."""
        serialized = json.dumps(data, sort_keys=True)
        return hashlib.sha256(serialized.encode()).hexdigest()

    def to_document(self) -> Dict:
        """Serialize the graph to a JSON-compatible dict."""
        graph_data = {
            'nodes': [node.model_dump(mode="json") for node in self.all_nodes()],
            'edges': [edge.model_dump(mode="json") for edge in self.get_edges()],
        }
        return {
            'version': SCHEMA_VERSION,
            'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
            'graph': graph_data,
            'checksum': self._calculate_checksum(graph_data),
            'metadata': {
                'node_count': self.node_count(),
                'edge_count': self.edge_count()
            }
        }

    def load_document(self, data: Dict) -> bool:
        """
        Replace the current graph with a serialized document.

        Node statuses are restored as stored; callers should run
        DependencyEngine.perform_initial_check() afterwards.

        Returns:
            True if the document was loaded
        """
        version = data.get('version', 'unknown')
        if version != SCHEMA_VERSION:
            self.logger.warning(f"Schema version mismatch: {version} != {SCHEMA_VERSION}")

        graph_data = data.get('graph', {})
        if 'checksum' in data:
            if data['checksum'] != self._calculate_checksum(graph_data):
                self.logger.error("Checksum mismatch - graph may be corrupted!")
                return False

        self.graph = nx.MultiDiGraph()
        self._edge_index = {}
        for node_data in graph_data.get('nodes', []):
            node = NodeSpec.model_validate(node_data)
            self.graph.add_node(node.id, spec=node)
        for edge_data in graph_data.get('edges', []):
            edge = EdgeSpec.model_validate(edge_data)
            if edge.from_node_id not in self.graph or edge.to_node_id not in self.graph:
                self.logger.warning(f"Skipping edge {edge.id}: endpoint missing")
                continue
            self._insert_edge(edge)

        self.logger.info(f"Loaded Graph: {self.node_count()} nodes, {self.edge_count()} edges")
        return True

    def _persist(self):
        """Atomic Write to Disk (Crash Recovery) - JSON format"""
        if not self.persistence_path:
            return
        directory = os.path.dirname(self.persistence_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        temp_path = self.persistence_path + ".tmp"
        with open(temp_path, "w") as f:
            json.dump(self.to_document(), f, indent=2, default=str)

        os.replace(temp_path, self.persistence_path)

    def _load(self):
        """Load state on startup."""
        if not os.path.exists(self.persistence_path):
            self.logger.info("No existing graph found, starting fresh")
            return
        try:
            with open(self.persistence_path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load JSON graph: {e}")
            return
        self.load_document(data)

    def commit(self):
        """Persist after an in-place node mutation (status updates)."""
        self._persist()

    # =========================================================================
    # EDITING SURFACE (UI / import collaborators)
    # =========================================================================

    def add_node(
        self,
        node_id: str,
        name: str = None,
        status: NodeStatus = NodeStatus.PENDING,
        metadata: Dict = None
    ) -> NodeSpec:
        """
        Create a node. New nodes are PENDING; a different status is only
        meant for restoring stored graphs.
        """
        if node_id in self.graph:
            raise ValueError(f"Node {node_id} already exists")

        node = NodeSpec(
            id=node_id,
            name=name or node_id,
            status=status,
            metadata=NodeMetadata(**(metadata or {}))
        )
        self.graph.add_node(node_id, spec=node)
        self._persist()
        self.logger.info(f"Node Created: {node_id} ({node.status.value})")
        return node

    def _insert_edge(self, edge: EdgeSpec):
        self.graph.add_edge(edge.from_node_id, edge.to_node_id, key=edge.id, spec=edge)
        self._edge_index[edge.id] = (edge.from_node_id, edge.to_node_id)

    def add_edge(
        self,
        from_node_id: str,
        to_node_id: str,
        edge_id: str = None,
        dependency_type: DependencyType = DependencyType.SEQUENTIAL,
        required: bool = True,
        strength: EdgeStrength = EdgeStrength.STRONG,
        label: str = ""
    ) -> EdgeSpec:
        """
        Link two existing nodes. Cycles and self-loops are accepted here;
        detecting them is the analyzer's job.
        """
        if not self.graph.has_node(from_node_id) or not self.graph.has_node(to_node_id):
            raise ValueError("Cannot link non-existent nodes")

        fields = {}
        if edge_id:
            if edge_id in self._edge_index:
                raise ValueError(f"Edge {edge_id} already exists")
            fields['id'] = edge_id

        edge = EdgeSpec(
            from_node_id=from_node_id,
            to_node_id=to_node_id,
            dependency_type=dependency_type,
            required=required,
            strength=strength,
            label=label,
            **fields
        )
        self._insert_edge(edge)
        self._persist()
        if edge.is_self_loop:
            self.logger.warning(f"Self-loop created on {from_node_id}")
        self.logger.debug(f"Edge Created: {from_node_id} → {to_node_id} ({edge.id})")
        return edge

    def remove_edge(self, edge_id: str) -> bool:
        endpoints = self._edge_index.pop(edge_id, None)
        if endpoints is None:
            return False
        self.graph.remove_edge(endpoints[0], endpoints[1], key=edge_id)
        self._persist()
        return True

    def remove_node(self, node_id: str) -> bool:
        """Delete a node together with every incident edge."""
        if node_id not in self.graph:
            return False
        incident = [
            key for _, _, key in self.graph.in_edges(node_id, keys=True)
        ] + [
            key for _, _, key in self.graph.out_edges(node_id, keys=True)
        ]
        for key in incident:
            self._edge_index.pop(key, None)
        self.graph.remove_node(node_id)
        self._persist()
        self.logger.info(f"Node Removed: {node_id} ({len(set(incident))} edges dropped)")
        return True

    # =========================================================================
    # READ INTERFACE (Engine)
    # =========================================================================

    def get_node(self, node_id: str) -> Optional[NodeSpec]:
        if node_id not in self.graph:
            return None
        return self.graph.nodes[node_id]['spec']

    def all_nodes(self) -> List[NodeSpec]:
        """All nodes in insertion order."""
        return [data['spec'] for _, data in self.graph.nodes(data=True)]

    def get_edges(self, predicate: Callable[[EdgeSpec], bool] = None) -> List[EdgeSpec]:
        """All edges, optionally filtered by predicate."""
        edges = [data['spec'] for _, _, data in self.graph.edges(data=True)]
        if predicate is None:
            return edges
        return [edge for edge in edges if predicate(edge)]

    def get_edge(self, edge_id: str) -> Optional[EdgeSpec]:
        endpoints = self._edge_index.get(edge_id)
        if endpoints is None:
            return None
        return self.graph.edges[endpoints[0], endpoints[1], edge_id]['spec']

    def successors(self, node_id: str) -> List[str]:
        """Direct successors (unique, insertion order)."""
        if node_id not in self.graph:
            return []
        return list(self.graph.successors(node_id))

    def predecessors(self, node_id: str) -> List[str]:
        """Direct predecessors (unique, insertion order)."""
        if node_id not in self.graph:
            return []
        return list(self.graph.predecessors(node_id))

    def in_degree(self, node_id: str) -> int:
        """Number of incoming edges, parallel edges counted separately."""
        return self.graph.in_degree(node_id) if node_id in self.graph else 0

    def out_degree(self, node_id: str) -> int:
        """Number of outgoing edges, parallel edges counted separately."""
        return self.graph.out_degree(node_id) if node_id in self.graph else 0

    def node_count(self) -> int:
        return self.graph.number_of_nodes()

    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def get_by_status(self, status: NodeStatus) -> List[str]:
        """
        Get all node IDs with a specific status.

        Args:
            status: The status to filter by

        Returns:
            List of node IDs
        """
        return [node.id for node in self.all_nodes() if node.status == status]
