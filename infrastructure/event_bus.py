"""
NOTIFICATION EVENT BUS
Decoupled, fire-and-forget feedback channel for cascade results.

The engine never depends on delivery: subscriber failures are logged and
swallowed at the bus boundary.
"""
import logging
import uuid
import datetime
from typing import Dict, Callable, List, Any

logger = logging.getLogger("ProcFlow.EventBus")


class EventBus:
    """Synchronous topic-based publish/subscribe with bounded history."""

    def __init__(self, history_limit: int = 1000):
        self.subscribers: Dict[str, List[Callable]] = {}
        self.history: List[Dict[str, Any]] = []
        self.history_limit = history_limit

    def subscribe(self, topic: str, callback: Callable):
        """Subscribe a callback to a topic"""
        if topic not in self.subscribers:
            self.subscribers[topic] = []
        self.subscribers[topic].append(callback)
        logger.debug(f"Subscribed to {topic}")

    def unsubscribe(self, topic: str, callback: Callable):
        """Unsubscribe a callback from a topic"""
        if topic in self.subscribers and callback in self.subscribers[topic]:
            self.subscribers[topic].remove(callback)

    def publish(self, topic: str, message_type: str, payload: Dict, source_id: str) -> Dict:
        """Publish an event to a topic and deliver it immediately"""
        event = {
            "id": str(uuid.uuid4()),
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "topic": topic,
            "type": message_type,
            "source": source_id,
            "payload": payload
        }
        self.history.append(event)
        if len(self.history) > self.history_limit:
            self.history = self.history[-self.history_limit:]
        logger.debug(f"Published {message_type} to {topic}")
        self._dispatch(event)
        return event

    def _dispatch(self, event: Dict):
        """Dispatch event to all subscribers"""
        for callback in list(self.subscribers.get(event['topic'], [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Handler failed for {event['type']}: {e}")

    def get_history(self, topic: str = None, limit: int = 100) -> List[Dict]:
        """Retrieve event history, optionally filtered by topic"""
        if topic:
            filtered = [e for e in self.history if e['topic'] == topic]
            return filtered[-limit:]
        return self.history[-limit:]


# Message type constants
class MessageType:
    STATUS_CHANGED = "STATUS_CHANGED"
    CASCADE_RESULT = "CASCADE_RESULT"
    UNLOCK_RESULT = "UNLOCK_RESULT"
    CYCLES_DETECTED = "CYCLES_DETECTED"


NOTIFICATION_TOPIC = "notifications"


class Notifier:
    """
    Notification collaborator interface.

    The base class ignores everything; subclass it to route feedback to
    a UI, a log sink or a message bus.
    """

    def on_status_changed(self, payload: Dict[str, Any]):
        pass

    def on_cascade_result(self, payload: Dict[str, Any]):
        pass

    def on_unlock_result(self, payload: Dict[str, Any]):
        pass

    def on_cycles_detected(self, cycles: List[List[str]]):
        pass


class EventBusNotifier(Notifier):
    """Publishes engine feedback on the 'notifications' topic."""

    def __init__(self, event_bus: EventBus = None, source_id: str = "dependency_engine"):
        self.event_bus = event_bus or EventBus()
        self.source_id = source_id

    def _publish(self, message_type: str, payload: Dict[str, Any]):
        self.event_bus.publish(
            topic=NOTIFICATION_TOPIC,
            message_type=message_type,
            payload=payload,
            source_id=self.source_id
        )

    def on_status_changed(self, payload: Dict[str, Any]):
        self._publish(MessageType.STATUS_CHANGED, payload)

    def on_cascade_result(self, payload: Dict[str, Any]):
        logger.info(f"{payload['blockedCount']} dependent node(s) blocked: {', '.join(payload['blockedNames'])}")
        self._publish(MessageType.CASCADE_RESULT, payload)

    def on_unlock_result(self, payload: Dict[str, Any]):
        logger.info(f"{payload['unlockedCount']} node(s) unlocked: {', '.join(payload['unlockedNames'])}")
        self._publish(MessageType.UNLOCK_RESULT, payload)

    def on_cycles_detected(self, cycles: List[List[str]]):
        for cycle in cycles:
            logger.warning(f"Circular dependency: {' → '.join(cycle)}")
        self._publish(MessageType.CYCLES_DETECTED, {"cycles": cycles})
