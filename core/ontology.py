"""
PROCFLOW ONTOLOGY - The Vocabulary of the Process Graph

This module defines the declarative schema shared by every layer:
- Status, dependency and trigger enums (simple labels)
- NodeSpec / EdgeSpec models stored in the Graph Store
- Named conditions and actions that rules may refer to

The engine CONSULTS these definitions; it does not redefine them.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Set, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


# =============================================================================
# ENUMS
# =============================================================================

class NodeStatus(str, Enum):
    """Lifecycle states of a work item."""
    PENDING = "pending"        # Created, waiting for predecessors
    ACTIVE = "active"          # Work in progress
    COMPLETED = "completed"    # Done, satisfies dependents
    BLOCKED = "blocked"        # Halted by itself or an upstream block
    ARCHIVED = "archived"      # Retired, still satisfies dependents


class DependencyType(str, Enum):
    """How a successor relates to its predecessor."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class EdgeStrength(str, Enum):
    """Coupling strength of a dependency edge."""
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class RuleTrigger(str, Enum):
    """Event types a rule can react to."""
    STATUS_CHANGE = "status_change"
    DEPENDENCY_CHECK = "dependency_check"


# Statuses that satisfy a dependent node
FULFILLED_STATUSES: Set[NodeStatus] = {NodeStatus.COMPLETED, NodeStatus.ARCHIVED}

# Statuses a cascade is allowed to overwrite with BLOCKED
BLOCKABLE_STATUSES: Set[NodeStatus] = {NodeStatus.ACTIVE, NodeStatus.PENDING}

# Statuses from which a node may be (re)activated
ACTIVATABLE_STATUSES: Set[NodeStatus] = {NodeStatus.PENDING, NodeStatus.BLOCKED}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# NODE MODELS
# =============================================================================

class StatusHistoryEntry(BaseModel):
    """One entry of a node's append-only status log."""
    from_status: NodeStatus
    to_status: NodeStatus
    timestamp: datetime = Field(default_factory=utc_now)
    duration_in_prior_status: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds spent in from_status before this change"
    )


class NodeMetadata(BaseModel):
    """
    Timing properties tracked for every node.

    created_at and last_status_change_at are always present; the
    processing fields are filled in as the node moves through its lifecycle.
    """
    created_at: datetime = Field(default_factory=utc_now)
    last_status_change_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp of the most recent status change"
    )
    started_at: Optional[datetime] = Field(
        default=None,
        description="Set when the node goes from PENDING to ACTIVE"
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        description="Set when the node reaches COMPLETED"
    )
    total_processing_seconds: Optional[float] = Field(
        default=None,
        description="completed_at - started_at, when both are known"
    )

    # === Extension Point ===
    extra: Dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary additional metadata"
    )

    class Config:
        extra = "allow"


class NodeSpec(BaseModel):
    """
    A unit of work in the process graph.

    Owned by the Graph Store. Only DependencyEngine.update_status may
    change status and status_history.
    """
    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        description="Stable unique identifier"
    )
    name: str = Field(
        default="",
        description="Display text used in notifications and reports"
    )
    status: NodeStatus = Field(default=NodeStatus.PENDING)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    def __init__(self, **data):
        super().__init__(**data)
        if not self.name:
            self.name = self.id

    @property
    def is_fulfilled(self) -> bool:
        return self.status in FULFILLED_STATUSES

    class Config:
        validate_assignment = True


class EdgeSpec(BaseModel):
    """
    Directed dependency: to_node_id depends on from_node_id.

    Self-loops are representable; the analyzer flags them.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    from_node_id: str = Field(description="Predecessor node")
    to_node_id: str = Field(description="Successor node")
    dependency_type: DependencyType = Field(default=DependencyType.SEQUENTIAL)
    required: bool = Field(default=True)
    strength: EdgeStrength = Field(default=EdgeStrength.STRONG)
    label: str = Field(default="")
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_self_loop(self) -> bool:
        return self.from_node_id == self.to_node_id


# =============================================================================
# NAMED CONDITIONS AND ACTIONS
# =============================================================================

# Named rule conditions, evaluated by the engine against
# (node, new_status, old_status)
KNOWN_CONDITIONS: Set[str] = {
    "always",           # Fires on every matching event
    "is_fulfilled",     # Node is COMPLETED or ARCHIVED
    "became_fulfilled", # new_status is fulfilling, old_status was not
    "left_blocked",     # old_status was BLOCKED, new_status is not
    "can_activate",     # Node is PENDING/BLOCKED with all predecessors fulfilled
}

# Named rule actions, executed by the engine against a node
KNOWN_ACTIONS: Set[str] = {
    "unlock_successors",            # Activate ready direct successors
    "check_unblock_opportunities",  # Re-examine BLOCKED direct successors
    "cascade_block",                # Block all transitive successors
    "activate",                     # Set the node itself ACTIVE
    "detect_cycles",                # Run cycle detection and notify
}
