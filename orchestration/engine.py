"""
DEPENDENCY ENGINE - The Status Transition Core

One engine instance per loaded project. It is the only component allowed
to change a node's status, and it does so through update_status():

- BLOCKED cascades synchronously to every transitive successor
- COMPLETED / ARCHIVED unlock ready direct successors synchronously, then
  schedule a deferred "check unblock opportunities" pass
- Any other transition becomes a STATUS_CHANGE event for the rule registry

Errors are recovered locally: nothing raised here escapes update_status.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Any

from core.ontology import (
    NodeSpec, NodeStatus, RuleTrigger,
    FULFILLED_STATUSES, BLOCKABLE_STATUSES, ACTIVATABLE_STATUSES, utc_now,
)
from core.state_machine import NodeStateMachine, coerce_status
from infrastructure.config import EngineConfig, configure_logging
from infrastructure.graph_db import GraphDB
from infrastructure.event_bus import Notifier, EventBusNotifier
from infrastructure.error_logger import ErrorLogger, ErrorCategory
from orchestration.rules import RuleRegistry
from orchestration.scheduler import EventScheduler, EngineEvent
from orchestration.analyzer import GraphAnalyzer
from orchestration.report import ReportGenerator, Report


logger = logging.getLogger("ProcFlow.Engine")


class DependencyEngine:
    """
    Propagates lifecycle status across a process graph.

    This engine:
    - Owns the single status mutation entry point (update_status)
    - Cascades blocking and unlocking with explicit visited sets
    - Feeds deferred events to the RuleRegistry through the EventScheduler
    - Exposes cycle/path analytics and the dependency report
    """

    def __init__(
        self,
        graph_db: GraphDB,
        notifier: Notifier = None,
        config: EngineConfig = None,
        error_logger: ErrorLogger = None,
        clock: Callable[[], datetime] = None
    ):
        """
        Initialize the engine.

        Args:
            graph_db: The Graph Store for this project
            notifier: Notification collaborator (defaults to an EventBusNotifier)
            config: Engine settings (defaults to EngineConfig())
            error_logger: Diagnostic sink (defaults to an in-memory ErrorLogger)
            clock: Time source for history entries
        """
        self.db = graph_db
        self.config = config or EngineConfig()
        self.notifier = notifier or EventBusNotifier()
        self.error_logger = error_logger or ErrorLogger(storage_dir=self.config.error_log_dir)
        self._clock = clock or utc_now
        self._state_machine = NodeStateMachine()
        self._cascading = False

        self.registry = RuleRegistry(
            node_lookup=self.db.get_node,
            condition_resolver=self.evaluate_condition,
            action_resolver=self.execute_action,
            error_logger=self.error_logger
        )
        self.scheduler = EventScheduler(
            dispatch=self.registry.dispatch,
            max_passes=self.config.max_drain_passes
        )
        self.analyzer = GraphAnalyzer(self.db)
        self.reporter = ReportGenerator(self.db, self.analyzer, self.registry)

        self.register_default_rules()
        logger.info("DependencyEngine initialized")

    @classmethod
    def from_config(cls, config_path: str = None, notifier: Notifier = None) -> "DependencyEngine":
        """
        Build an engine (and its Graph Store) from config/engine.yaml.

        A persisted graph is loaded and its cascades replayed.
        """
        config = EngineConfig.from_yaml(config_path) if config_path else EngineConfig.from_yaml()
        configure_logging(config.log_level)
        engine = cls(GraphDB(persistence_path=config.persistence_path), notifier=notifier, config=config)
        if engine.db.node_count():
            engine.perform_initial_check()
        return engine

    def register_default_rules(self):
        self.registry.register(
            "check_unblock_opportunities",
            RuleTrigger.DEPENDENCY_CHECK,
            condition="is_fulfilled",
            action="check_unblock_opportunities"
        )
        self.registry.register(
            "recheck_after_unblock",
            RuleTrigger.STATUS_CHANGE,
            condition="left_blocked",
            action="check_unblock_opportunities"
        )
        self.registry.register(
            "deadlock_detection",
            RuleTrigger.STATUS_CHANGE,
            condition="always",
            action="detect_cycles"
        )
        # Opt-in: activate a node as soon as a dependency check finds it ready
        self.registry.register(
            "auto_activation",
            RuleTrigger.DEPENDENCY_CHECK,
            condition="can_activate",
            action="activate",
            enabled=False
        )

    # =========================================================================
    # NAMED CONDITIONS / ACTIONS
    # =========================================================================

    def evaluate_condition(
        self,
        condition: str,
        node: NodeSpec,
        new_status: Optional[NodeStatus],
        old_status: Optional[NodeStatus]
    ) -> bool:
        """Resolve a named rule condition."""
        if condition == "always":
            return True
        if condition == "is_fulfilled":
            return node.is_fulfilled
        if condition == "became_fulfilled":
            return new_status in FULFILLED_STATUSES and old_status not in FULFILLED_STATUSES
        if condition == "left_blocked":
            return old_status == NodeStatus.BLOCKED and new_status != NodeStatus.BLOCKED
        if condition == "can_activate":
            return self.can_activate(node.id)

        logger.warning(f"Unknown condition: {condition}")
        return False

    def execute_action(self, action: str, node: NodeSpec):
        """Run a named rule action."""
        if action == "unlock_successors":
            self.unlock_successors(node.id)
        elif action == "check_unblock_opportunities":
            self.check_unblock_opportunities(node.id)
        elif action == "cascade_block":
            self.cascade_block(node.id)
        elif action == "activate":
            self.update_status(node.id, NodeStatus.ACTIVE)
        elif action == "detect_cycles":
            self.detect_cycles(notify=self.config.notify_cycles)
        else:
            raise ValueError(f"Unknown action: {action}")

    # =========================================================================
    # STATUS TRANSITION CORE
    # =========================================================================

    def _unknown_node(self, node_id: str, operation: str):
        logger.warning(f"{operation}: node {node_id} not found")
        self.error_logger.log_error(
            f"{operation} referenced unknown node {node_id}",
            category=ErrorCategory.UNKNOWN_NODE,
            node_id=node_id
        )

    def _commit(self, node_id: str, status: NodeStatus):
        """Persist the store; a failed write is recorded and propagation goes on."""
        try:
            self.db.commit()
        except OSError as e:
            logger.error(f"Persisting {node_id} → {status.value} failed: {e}")
            self.error_logger.log_error(
                e,
                category=ErrorCategory.GRAPH,
                node_id=node_id,
                node_status=status.value
            )

    def update_status(self, node_id: str, new_status: Any) -> bool:
        """
        The only sanctioned way to change a node's status.

        Args:
            node_id: The node to update
            new_status: Target status (NodeStatus or its string value);
                        unrecognized values fall back to PENDING

        Returns:
            True if the node's status actually changed
        """
        node = self.db.get_node(node_id)
        if node is None:
            self._unknown_node(node_id, "update_status")
            return False

        status, valid = coerce_status(new_status)
        if not valid:
            logger.error(f"Invalid status {new_status!r} for {node_id}, using {status.value}")
            self.error_logger.log_error(
                f"Invalid status {new_status!r}",
                category=ErrorCategory.INVALID_STATUS,
                node_id=node_id,
                node_status=node.status.value
            )

        old_status = node.status
        changed = self._state_machine.record_transition(node, status, self._clock())
        if changed:
            self._commit(node_id, status)
            logger.info(f"Status: {node.name} {old_status.value} → {status.value}")
            self._notify(self.notifier.on_status_changed, {
                "nodeId": node.id,
                "nodeName": node.name,
                "oldStatus": old_status.value,
                "newStatus": status.value,
            })

        try:
            if status == NodeStatus.BLOCKED:
                # Inside a cascade the outer transitive walk already covers
                # this node's successors.
                if not self._cascading:
                    self.cascade_block(node_id)
            elif status in FULFILLED_STATUSES:
                self.unlock_successors(node_id)
                self.scheduler.enqueue(EngineEvent(
                    type=RuleTrigger.DEPENDENCY_CHECK,
                    node_id=node_id,
                    old_status=old_status,
                    new_status=status
                ))
            else:
                self.scheduler.enqueue(EngineEvent(
                    type=RuleTrigger.STATUS_CHANGE,
                    node_id=node_id,
                    old_status=old_status,
                    new_status=status
                ))

            if self.config.auto_drain:
                self.scheduler.drain()
        except Exception as e:
            logger.error(f"Propagation after {node_id} → {status.value} failed: {e}")
            self.error_logger.log_error(
                e,
                category=ErrorCategory.GRAPH,
                node_id=node_id,
                node_status=status.value
            )

        return changed

    def cascade_block(self, node_id: str) -> List[str]:
        """
        Block every ACTIVE or PENDING transitive successor of node_id.

        Successors already BLOCKED, COMPLETED or ARCHIVED are left alone.

        Returns:
            IDs of the nodes newly blocked
        """
        if self.db.get_node(node_id) is None:
            self._unknown_node(node_id, "cascade_block")
            return []

        successors = self.get_all_successors(node_id)
        blocked = []

        outer = self._cascading
        self._cascading = True
        try:
            for succ_id in successors:
                succ = self.db.get_node(succ_id)
                if succ is None or succ.status not in BLOCKABLE_STATUSES:
                    continue
                self.update_status(succ_id, NodeStatus.BLOCKED)
                blocked.append(succ_id)
        finally:
            self._cascading = outer

        if blocked:
            self._notify(self.notifier.on_cascade_result, {
                "blockedCount": len(blocked),
                "blockedNames": self._names(blocked),
            })
        return blocked

    def can_activate(self, node_id: str) -> bool:
        """
        True iff the node is PENDING or BLOCKED and every direct predecessor
        is fulfilled. A node without predecessors is always activatable.
        """
        node = self.db.get_node(node_id)
        if node is None:
            self._unknown_node(node_id, "can_activate")
            return False
        if node.status not in ACTIVATABLE_STATUSES:
            return False

        for pred_id in self.db.predecessors(node_id):
            pred = self.db.get_node(pred_id)
            if pred is None or not pred.is_fulfilled:
                return False
        return True

    def _activate_ready(self, candidates: List[str], statuses: Set[NodeStatus]) -> List[str]:
        unlocked = []
        for succ_id in candidates:
            succ = self.db.get_node(succ_id)
            if succ is None or succ.status not in statuses:
                continue
            if self.can_activate(succ_id):
                self.update_status(succ_id, NodeStatus.ACTIVE)
                unlocked.append(succ_id)
        return unlocked

    def unlock_successors(self, node_id: str) -> List[str]:
        """
        Activate each direct successor whose predecessors are all fulfilled.

        Returns:
            IDs of the nodes unlocked
        """
        if self.db.get_node(node_id) is None:
            self._unknown_node(node_id, "unlock_successors")
            return []

        unlocked = self._activate_ready(self.db.successors(node_id), ACTIVATABLE_STATUSES)
        if unlocked:
            self._notify(self.notifier.on_unlock_result, {
                "unlockedCount": len(unlocked),
                "unlockedNames": self._names(unlocked),
            })
        return unlocked

    def check_unblock_opportunities(self, node_id: str) -> List[str]:
        """
        Re-examine BLOCKED direct successors.

        Catches successors whose last unfulfilled predecessor has just
        finished, which a single unlock pass may have seen too early.

        Returns:
            IDs of the nodes unlocked
        """
        if self.db.get_node(node_id) is None:
            self._unknown_node(node_id, "check_unblock_opportunities")
            return []

        unlocked = self._activate_ready(self.db.successors(node_id), {NodeStatus.BLOCKED})
        if unlocked:
            self._notify(self.notifier.on_unlock_result, {
                "unlockedCount": len(unlocked),
                "unlockedNames": self._names(unlocked),
            })
        return unlocked

    # =========================================================================
    # WHOLE-GRAPH CHECKS
    # =========================================================================

    def perform_initial_check(self) -> Dict[str, Any]:
        """
        Re-derive cascades for a freshly loaded graph.

        Statuses restored from storage never went through update_status, so
        their blocks and unlocks have to be replayed once.

        Returns:
            {"blocked": [...], "unlocked": [...], "cycles": n}
        """
        logger.info("Performing initial dependency check...")
        blocked: List[str] = []
        unlocked: List[str] = []

        for node_id in self.db.get_by_status(NodeStatus.BLOCKED):
            blocked.extend(self.cascade_block(node_id))

        for node in self.db.all_nodes():
            if node.is_fulfilled:
                unlocked.extend(self.unlock_successors(node.id))

        self.scheduler.drain()
        cycles = self.detect_cycles(notify=self.config.notify_cycles)

        logger.info(
            f"Initial dependency check completed: {len(blocked)} blocked, "
            f"{len(unlocked)} unlocked, {len(cycles)} cycle(s)"
        )
        return {"blocked": blocked, "unlocked": unlocked, "cycles": len(cycles)}

    def trigger_full_dependency_check(self) -> Dict[str, Any]:
        """Replay all cascades on demand (same as the initial check)."""
        return self.perform_initial_check()

    def check_all_dependencies(self, node_id: str) -> int:
        """
        Queue a dependency check for a single node and drain the queue.

        Returns:
            Number of waves processed
        """
        if self.db.get_node(node_id) is None:
            self._unknown_node(node_id, "check_all_dependencies")
            return 0
        self.scheduler.enqueue(EngineEvent(type=RuleTrigger.DEPENDENCY_CHECK, node_id=node_id))
        return self.scheduler.drain()

    # =========================================================================
    # TRAVERSAL HELPERS
    # =========================================================================

    def _walk(self, node_id: str, step: Callable[[str], List[str]]) -> List[str]:
        """Breadth-first walk with a visited set; excludes the start unless revisited."""
        visited: Set[str] = {node_id}
        order: List[str] = []
        queue = deque(step(node_id))

        while queue:
            current = queue.popleft()
            if current == node_id and current not in order:
                order.append(current)
            if current in visited:
                continue
            visited.add(current)
            order.append(current)
            queue.extend(step(current))

        return order

    def get_all_successors(self, node_id: str) -> List[str]:
        """All transitive successors in BFS order (cycle-safe)."""
        return self._walk(node_id, self.db.successors)

    def get_all_predecessors(self, node_id: str) -> List[str]:
        """All transitive predecessors in BFS order (cycle-safe)."""
        return self._walk(node_id, self.db.predecessors)

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    def detect_cycles(self, notify: bool = False) -> List[List[str]]:
        cycles = self.analyzer.detect_cycles()
        if cycles and notify:
            self._notify(self.notifier.on_cycles_detected, self.analyzer.cycle_names(cycles))
        return cycles

    def generate_report(self) -> Report:
        return self.reporter.generate()

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def _names(self, node_ids: List[str]) -> List[str]:
        names = []
        for node_id in node_ids:
            node = self.db.get_node(node_id)
            names.append(node.name if node else node_id)
        return names

    def _notify(self, callback: Callable, payload: Any):
        """Fire-and-forget delivery to the notification collaborator."""
        try:
            callback(payload)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")
