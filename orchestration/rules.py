"""
RULE REGISTRY
Named reactive rules keyed by trigger type.

A rule is plain data: a trigger, a condition and an action. Conditions and
actions are either callables or names from KNOWN_CONDITIONS / KNOWN_ACTIONS,
which the engine resolves at dispatch time.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from core.ontology import (
    NodeSpec, NodeStatus, RuleTrigger,
    KNOWN_CONDITIONS, KNOWN_ACTIONS, utc_now,
)
from infrastructure.error_logger import ErrorLogger, ErrorCategory

logger = logging.getLogger("ProcFlow.Rules")


ConditionFn = Callable[[NodeSpec, Optional[NodeStatus], Optional[NodeStatus]], bool]
ActionFn = Callable[[NodeSpec], None]


class RuleDefinitionError(Exception):
    """Raised when a rule refers to an unknown named condition or action."""
    pass


@dataclass
class Rule:
    """A reactive rule evaluated by the registry."""
    name: str
    trigger: RuleTrigger
    condition: Union[str, ConditionFn]
    action: Union[str, ActionFn]
    enabled: bool = True
    execution_count: int = 0
    created_at: datetime = field(default_factory=utc_now)


class RuleRegistry:
    """
    Holds rules in registration order and dispatches events to them.

    Named conditions/actions are delegated to the resolvers passed in by
    the engine:
        condition_resolver(name, node, new_status, old_status) -> bool
        action_resolver(name, node) -> None
    """

    def __init__(
        self,
        node_lookup: Callable[[str], Optional[NodeSpec]],
        condition_resolver: Callable = None,
        action_resolver: Callable = None,
        error_logger: ErrorLogger = None
    ):
        self._rules: Dict[str, Rule] = {}
        self._node_lookup = node_lookup
        self._condition_resolver = condition_resolver
        self._action_resolver = action_resolver
        self._error_logger = error_logger

    def register(
        self,
        name: str,
        trigger: RuleTrigger,
        condition: Union[str, ConditionFn],
        action: Union[str, ActionFn],
        enabled: bool = True
    ) -> Rule:
        """
        Add a rule, replacing any rule with the same name.

        A replaced rule keeps its position in the dispatch order.

        Raises:
            RuleDefinitionError if a named condition/action is unknown
        """
        trigger = RuleTrigger(trigger)
        if isinstance(condition, str) and condition not in KNOWN_CONDITIONS:
            raise RuleDefinitionError(f"Unknown condition '{condition}' in rule {name}")
        if isinstance(action, str) and action not in KNOWN_ACTIONS:
            raise RuleDefinitionError(f"Unknown action '{action}' in rule {name}")

        if name in self._rules:
            logger.info(f"Rule {name} already exists, replacing")

        rule = Rule(
            name=name,
            trigger=trigger,
            condition=condition,
            action=action,
            enabled=enabled
        )
        self._rules[name] = rule
        logger.debug(f"Registered rule: {name} ({trigger.value})")
        return rule

    def unregister(self, name: str) -> bool:
        return self._rules.pop(name, None) is not None

    def enable(self, name: str) -> bool:
        rule = self._rules.get(name)
        if rule:
            rule.enabled = True
        return rule is not None

    def disable(self, name: str) -> bool:
        rule = self._rules.get(name)
        if rule:
            rule.enabled = False
        return rule is not None

    def get(self, name: str) -> Optional[Rule]:
        return self._rules.get(name)

    def all_rules(self) -> List[Rule]:
        return list(self._rules.values())

    def rules_for(self, trigger: RuleTrigger) -> List[Rule]:
        """Enabled rules for a trigger, in registration order."""
        return [r for r in self._rules.values() if r.enabled and r.trigger == trigger]

    def execution_counts(self) -> Dict[str, int]:
        return {name: rule.execution_count for name, rule in self._rules.items()}

    def _check(self, rule: Rule, node: NodeSpec, new_status, old_status) -> bool:
        if isinstance(rule.condition, str):
            return bool(self._condition_resolver(rule.condition, node, new_status, old_status))
        return bool(rule.condition(node, new_status, old_status))

    def _run(self, rule: Rule, node: NodeSpec):
        if isinstance(rule.action, str):
            self._action_resolver(rule.action, node)
        else:
            rule.action(node)

    def dispatch(self, event) -> int:
        """
        Evaluate every enabled rule matching the event's type.

        A failing rule is logged and skipped; the remaining rules still run.

        Args:
            event: An EngineEvent (type, node_id, new_status, old_status)

        Returns:
            Number of rules whose action executed
        """
        node = self._node_lookup(event.node_id)
        if node is None:
            logger.warning(f"Event {event.type.value} references unknown node {event.node_id}")
            if self._error_logger:
                self._error_logger.log_error(
                    f"Unknown node {event.node_id} in {event.type.value} event",
                    category=ErrorCategory.UNKNOWN_NODE,
                    node_id=event.node_id
                )
            return 0

        executed = 0
        for rule in self.rules_for(event.type):
            try:
                if self._check(rule, node, event.new_status, event.old_status):
                    logger.debug(f"Executing rule: {rule.name} on {node.id}")
                    self._run(rule, node)
                    rule.execution_count += 1
                    executed += 1
            except Exception as e:
                logger.error(f"Rule {rule.name} failed on {node.id}: {e}")
                if self._error_logger:
                    self._error_logger.log_error(
                        e,
                        category=ErrorCategory.RULE_FAILURE,
                        node_id=node.id,
                        node_status=node.status.value,
                        rule_name=rule.name
                    )
        return executed
