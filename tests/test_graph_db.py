"""
Graph Store Tests
Editing surface, read interface and JSON persistence.
"""
import json
import pytest

from core.ontology import NodeStatus, DependencyType, EdgeStrength
from infrastructure.graph_db import GraphDB


class TestEditing:

    @pytest.fixture
    def db(self):
        db = GraphDB()
        db.add_node("A", name="Collect requirements")
        db.add_node("B")
        db.add_node("C")
        return db

    def test_new_nodes_are_pending(self, db):
        node = db.get_node("A")
        assert node.status == NodeStatus.PENDING
        assert node.name == "Collect requirements"
        assert db.get_node("B").name == "B"
        assert node.metadata.created_at is not None

    def test_duplicate_node_rejected(self, db):
        with pytest.raises(ValueError):
            db.add_node("A")

    def test_edge_requires_existing_nodes(self, db):
        with pytest.raises(ValueError):
            db.add_edge("A", "ghost")

    def test_duplicate_edge_id_rejected(self, db):
        db.add_edge("A", "B", edge_id="e1")
        with pytest.raises(ValueError):
            db.add_edge("B", "C", edge_id="e1")

    def test_edge_attributes(self, db):
        edge = db.add_edge(
            "A", "B",
            edge_id="e1",
            dependency_type=DependencyType.CONDITIONAL,
            required=False,
            strength=EdgeStrength.WEAK,
            label="after sign-off"
        )
        stored = db.get_edge("e1")

        assert stored is edge
        assert stored.dependency_type == DependencyType.CONDITIONAL
        assert stored.required is False
        assert stored.label == "after sign-off"

    def test_parallel_edges_counted_in_degree(self, db):
        db.add_edge("A", "B")
        db.add_edge("A", "B")

        assert db.successors("A") == ["B"]
        assert db.out_degree("A") == 2
        assert db.in_degree("B") == 2
        assert db.edge_count() == 2

    def test_self_loop_allowed(self, db):
        edge = db.add_edge("A", "A")
        assert edge.is_self_loop
        assert db.successors("A") == ["A"]
        assert db.predecessors("A") == ["A"]

    def test_remove_edge(self, db):
        db.add_edge("A", "B", edge_id="e1")

        assert db.remove_edge("e1") is True
        assert db.remove_edge("e1") is False
        assert db.successors("A") == []

    def test_remove_node_drops_incident_edges(self, db):
        db.add_edge("A", "B", edge_id="in")
        db.add_edge("B", "C", edge_id="out")

        assert db.remove_node("B") is True
        assert db.edge_count() == 0
        assert db.get_edge("in") is None
        assert db.get_edge("out") is None
        assert db.remove_node("B") is False


class TestReadInterface:

    def test_unknown_ids(self):
        db = GraphDB()
        assert db.get_node("ghost") is None
        assert db.successors("ghost") == []
        assert db.predecessors("ghost") == []
        assert db.in_degree("ghost") == 0

    def test_insertion_order_and_filters(self):
        db = GraphDB()
        for node_id in ("C", "A", "B"):
            db.add_node(node_id)
        db.add_edge("C", "A", label="x")
        db.add_edge("C", "B")
        db.get_node("A").status = NodeStatus.BLOCKED

        assert [n.id for n in db.all_nodes()] == ["C", "A", "B"]
        assert db.successors("C") == ["A", "B"]
        assert db.get_by_status(NodeStatus.BLOCKED) == ["A"]
        assert [e.label for e in db.get_edges(lambda e: e.label)] == ["x"]


class TestPersistence:

    def test_roundtrip(self, tmp_path):
        path = str(tmp_path / "store" / "graph.json")
        db = GraphDB(persistence_path=path)
        db.add_node("A", status=NodeStatus.COMPLETED)
        db.add_node("B", name="Ship")
        db.add_edge("A", "B", edge_id="e1", strength=EdgeStrength.MEDIUM)

        reloaded = GraphDB(persistence_path=path)

        assert reloaded.get_node("A").status == NodeStatus.COMPLETED
        assert reloaded.get_node("B").name == "Ship"
        assert reloaded.get_edge("e1").strength == EdgeStrength.MEDIUM
        assert reloaded.successors("A") == ["B"]

    def test_document_layout(self):
        db = GraphDB()
        db.add_node("A")
        doc = db.to_document()

        assert set(doc) == {"version", "timestamp", "graph", "checksum", "metadata"}
        assert doc["metadata"] == {"node_count": 1, "edge_count": 0}

    def test_checksum_mismatch_rejected(self):
        source = GraphDB()
        source.add_node("A")
        doc = source.to_document()
        doc["graph"]["nodes"][0]["status"] = "completed"

        target = GraphDB()
        target.add_node("X")

        assert target.load_document(doc) is False
        assert [n.id for n in target.all_nodes()] == ["X"]

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "graph.json"
        path.write_text("{not json")

        db = GraphDB(persistence_path=str(path))
        assert db.node_count() == 0

    def test_dangling_edges_skipped(self):
        doc = GraphDB().to_document()
        doc["graph"]["edges"].append({"id": "e1", "from_node_id": "A", "to_node_id": "B"})
        del doc["checksum"]

        db = GraphDB()
        assert db.load_document(json.loads(json.dumps(doc))) is True
        assert db.edge_count() == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
