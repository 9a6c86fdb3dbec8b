"""
NODE STATE MACHINE
Coerces status input and records every status change in the node's history.
"""
import logging
from datetime import datetime
from typing import Dict, Set, Tuple, Any

from core.ontology import NodeStatus, NodeSpec, StatusHistoryEntry, utc_now

logger = logging.getLogger("ProcFlow.StateMachine")


# Documented lifecycle: from_state -> {to_states}
# ARCHIVED is reachable from every state and is handled separately.
DOCUMENTED_TRANSITIONS: Dict[NodeStatus, Set[NodeStatus]] = {
    NodeStatus.PENDING: {
        NodeStatus.ACTIVE,       # Unlocked (all predecessors fulfilled)
        NodeStatus.BLOCKED,      # Upstream block cascaded
    },
    NodeStatus.ACTIVE: {
        NodeStatus.COMPLETED,    # Manual completion
        NodeStatus.BLOCKED,      # Upstream block cascaded
    },
    NodeStatus.BLOCKED: {
        NodeStatus.ACTIVE,       # Unlocked once all predecessors fulfilled
    },
    NodeStatus.COMPLETED: set(),
    NodeStatus.ARCHIVED: set(),
}


def coerce_status(value: Any) -> Tuple[NodeStatus, bool]:
    """
    Convert user input into a NodeStatus.

    Accepts enum members and case-insensitive names or values.

    Returns:
        (status, valid) - invalid input yields (PENDING, False)
    """
    if isinstance(value, NodeStatus):
        return value, True
    if isinstance(value, str):
        normalized = value.strip().lower()
        for status in NodeStatus:
            if normalized == status.value:
                return status, True
    return NodeStatus.PENDING, False


def is_documented(from_status: NodeStatus, to_status: NodeStatus) -> bool:
    """True if the transition is part of the documented lifecycle."""
    if to_status == NodeStatus.ARCHIVED:
        return True
    return to_status in DOCUMENTED_TRANSITIONS.get(from_status, set())


class NodeStateMachine:
    """
    Applies status changes to NodeSpecs.

    Any transition is accepted (manual edits are legitimate); transitions
    outside the documented lifecycle are only logged. Called exclusively
    from DependencyEngine.update_status.
    """

    def status_duration(self, node: NodeSpec, now: datetime) -> float:
        """Seconds since the last history entry, or since node creation."""
        if node.status_history:
            since = node.status_history[-1].timestamp
        else:
            since = node.metadata.created_at
        return max(0.0, (now - since).total_seconds())

    def record_transition(
        self,
        node: NodeSpec,
        new_status: NodeStatus,
        now: datetime = None
    ) -> bool:
        """
        Apply new_status to the node.

        Args:
            node: The node to mutate
            new_status: Target status (already coerced)
            now: Timestamp of the change

        Returns:
            True if the status actually changed
        """
        now = now or utc_now()
        old_status = node.status
        if old_status == new_status:
            return False

        if not is_documented(old_status, new_status):
            logger.debug(f"Manual transition outside lifecycle: {node.id} {old_status.value} → {new_status.value}")

        node.status_history.append(StatusHistoryEntry(
            from_status=old_status,
            to_status=new_status,
            timestamp=now,
            duration_in_prior_status=self.status_duration(node, now)
        ))
        node.status = new_status

        metadata = node.metadata
        metadata.last_status_change_at = now
        if new_status == NodeStatus.ACTIVE and old_status == NodeStatus.PENDING:
            metadata.started_at = now
        elif new_status == NodeStatus.COMPLETED:
            metadata.completed_at = now
            if metadata.started_at:
                metadata.total_processing_seconds = (now - metadata.started_at).total_seconds()

        logger.debug(f"State transition: {node.id} {old_status.value} → {new_status.value}")
        return True

    def get_history(self, node: NodeSpec) -> list:
        """Get transition history for a node as plain dicts."""
        return [entry.model_dump(mode="json") for entry in node.status_history]
