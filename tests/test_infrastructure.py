"""
Infrastructure Tests
State machine, event bus, error logger and configuration loading.
"""
import json
import logging
import pytest
from datetime import timedelta

from core.ontology import NodeSpec, NodeStatus, utc_now
from core.state_machine import NodeStateMachine, coerce_status, is_documented
from infrastructure.config import EngineConfig
from infrastructure.error_logger import ErrorLogger, ErrorCategory
from infrastructure.event_bus import EventBus, EventBusNotifier, MessageType, NOTIFICATION_TOPIC


class TestStateMachine:

    def test_coerce_status(self):
        assert coerce_status(NodeStatus.BLOCKED) == (NodeStatus.BLOCKED, True)
        assert coerce_status(" Active ") == (NodeStatus.ACTIVE, True)
        assert coerce_status("done") == (NodeStatus.PENDING, False)
        assert coerce_status(None) == (NodeStatus.PENDING, False)

    def test_documented_lifecycle(self):
        assert is_documented(NodeStatus.PENDING, NodeStatus.ACTIVE)
        assert is_documented(NodeStatus.COMPLETED, NodeStatus.ARCHIVED)
        assert not is_documented(NodeStatus.COMPLETED, NodeStatus.ACTIVE)

    def test_undocumented_transition_still_applied(self):
        machine = NodeStateMachine()
        node = NodeSpec(id="A", status=NodeStatus.COMPLETED)

        assert machine.record_transition(node, NodeStatus.PENDING) is True
        assert node.status == NodeStatus.PENDING

    def test_started_at_only_from_pending(self):
        machine = NodeStateMachine()
        node = NodeSpec(id="A", status=NodeStatus.BLOCKED)
        machine.record_transition(node, NodeStatus.ACTIVE)

        assert node.metadata.started_at is None

    def test_history_as_dicts(self):
        machine = NodeStateMachine()
        node = NodeSpec(id="A")
        start = utc_now()
        machine.record_transition(node, NodeStatus.ACTIVE, start)
        machine.record_transition(node, NodeStatus.COMPLETED, start + timedelta(seconds=30))

        history = machine.get_history(node)
        assert [h["to_status"] for h in history] == ["active", "completed"]
        assert history[1]["duration_in_prior_status"] == 30.0
        assert node.metadata.completed_at == start + timedelta(seconds=30)


class TestEventBus:

    def test_subscriber_failure_isolated(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("ui closed")

        bus.subscribe("topic", broken)
        bus.subscribe("topic", received.append)

        with caplog.at_level(logging.ERROR):
            bus.publish("topic", "PING", {"n": 1}, "test")

        assert [e["payload"] for e in received] == [{"n": 1}]
        assert any("ui closed" in r.message for r in caplog.records)

    def test_history_limit_and_filter(self):
        bus = EventBus(history_limit=3)
        for i in range(5):
            bus.publish("a" if i % 2 else "b", "PING", {"i": i}, "test")

        assert [e["payload"]["i"] for e in bus.get_history()] == [2, 3, 4]
        assert [e["payload"]["i"] for e in bus.get_history(topic="a")] == [3]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe("topic", received.append)
        bus.unsubscribe("topic", received.append)
        bus.publish("topic", "PING", {}, "test")

        assert received == []

    def test_notifier_cycles_payload(self):
        bus = EventBus()
        EventBusNotifier(bus).on_cycles_detected([["Design", "Review"]])

        event = bus.get_history(topic=NOTIFICATION_TOPIC)[-1]
        assert event["type"] == MessageType.CYCLES_DETECTED
        assert event["payload"] == {"cycles": [["Design", "Review"]]}
        assert event["source"] == "dependency_engine"


class TestErrorLogger:

    def test_in_memory_only(self):
        errors = ErrorLogger()
        errors.log_error("bad status", category=ErrorCategory.INVALID_STATUS, node_id="A")

        assert errors.log_path is None
        assert errors.get_summary() == {"INVALID_STATUS": 1}
        assert errors.get_session_errors()[0].severity == "WARNING"

    def test_jsonl_output_with_stack_trace(self, tmp_path):
        errors = ErrorLogger(storage_dir=str(tmp_path))
        try:
            raise ValueError("rule exploded")
        except ValueError as e:
            errors.log_error(e, category=ErrorCategory.RULE_FAILURE, rule_name="r1")

        lines = errors.log_path.read_text().splitlines()
        record = json.loads(lines[0])
        assert record["category"] == "RULE_FAILURE"
        assert record["severity"] == "ERROR"
        assert record["rule_name"] == "r1"
        assert "ValueError" in record["stack_trace"]

    def test_clear(self):
        errors = ErrorLogger()
        errors.log_error("x")
        errors.clear()
        assert errors.get_session_errors() == []


class TestEngineConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = EngineConfig.from_yaml(str(tmp_path / "absent.yaml"))
        assert config == EngineConfig()

    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "scheduler:\n"
            "  auto_drain: false\n"
            "  max_drain_passes: 50\n"
            "notifications:\n"
            "  cycles: false\n"
            "storage:\n"
            "  graph_path: data/graph.json\n"
            "logging:\n"
            "  level: DEBUG\n"
        )

        config = EngineConfig.from_yaml(str(path))

        assert config.auto_drain is False
        assert config.max_drain_passes == 50
        assert config.notify_cycles is False
        assert config.persistence_path == "data/graph.json"
        assert config.error_log_dir is None
        assert config.log_level == "DEBUG"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("")
        assert EngineConfig.from_yaml(str(path)) == EngineConfig()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
