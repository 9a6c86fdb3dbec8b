"""
EVENT SCHEDULER
Single-threaded cooperative queue feeding the Rule Registry.

Events are processed in waves: each pass snapshots and clears the live
queue, then dispatches the snapshot in order. Events enqueued during a pass
(a rule action calling update_status, for instance) form the next wave, so
long cascades never recurse through the scheduler.
"""
import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from core.ontology import NodeStatus, RuleTrigger, utc_now

logger = logging.getLogger("ProcFlow.Scheduler")


@dataclass
class EngineEvent:
    """A deferred unit of rule work."""
    type: RuleTrigger
    node_id: str
    old_status: Optional[NodeStatus] = None
    new_status: Optional[NodeStatus] = None
    timestamp: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class EventScheduler:
    """
    FIFO event queue drained to a fixpoint.

    Responsibilities:
    - Buffer events produced by status transitions
    - Refuse re-entrant drains (is_processing guard)
    - Repeat passes until no rule produced new events
    """

    def __init__(
        self,
        dispatch: Callable[[EngineEvent], object],
        max_passes: int = 1000,
        history_limit: int = 1000
    ):
        self._dispatch = dispatch
        self.max_passes = max_passes
        self._queue: List[EngineEvent] = []
        self.is_processing = False
        self.processed_count = 0
        self.history: Deque[EngineEvent] = deque(maxlen=history_limit)  # most recent dispatched events

    def enqueue(self, event: EngineEvent):
        self._queue.append(event)
        logger.debug(f"Queued {event.type.value} for {event.node_id}")

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def _run_wave(self) -> int:
        """Snapshot, clear and dispatch the current queue."""
        events = list(self._queue)
        self._queue = []
        for event in events:
            self._dispatch(event)
            self.processed_count += 1
            self.history.append(event)
        return len(events)

    def drain(self) -> int:
        """
        Process queued events until the queue stays empty.

        Returns:
            Number of waves processed (0 if already draining or idle)
        """
        if self.is_processing or not self._queue:
            return 0

        self.is_processing = True
        passes = 0
        try:
            while self._queue:
                if passes >= self.max_passes:
                    logger.error(
                        f"Drain stopped after {passes} passes, "
                        f"{len(self._queue)} event(s) left queued"
                    )
                    break
                self._run_wave()
                passes += 1
        finally:
            self.is_processing = False

        logger.debug(f"Drain complete: {passes} wave(s)")
        return passes

    async def drain_async(self, on_wave: Callable[[int], object] = None) -> int:
        """
        Same fixpoint as drain(), yielding to the event loop between waves.

        Args:
            on_wave: Optional callback receiving the wave number after each
                     pass, so an external renderer can observe intermediate
                     state

        Returns:
            Number of waves processed
        """
        if self.is_processing or not self._queue:
            return 0

        self.is_processing = True
        passes = 0
        try:
            while self._queue:
                if passes >= self.max_passes:
                    logger.error(
                        f"Async drain stopped after {passes} passes, "
                        f"{len(self._queue)} event(s) left queued"
                    )
                    break
                self._run_wave()
                passes += 1
                if on_wave:
                    try:
                        on_wave(passes)
                    except Exception as e:
                        logger.error(f"Wave callback failed: {e}")
                await asyncio.sleep(0)
        finally:
            self.is_processing = False

        return passes

    def clear(self):
        self._queue = []

    def get_status(self) -> Dict:
        """Get scheduler status."""
        return {
            "processing": self.is_processing,
            "queue_size": len(self._queue),
            "processed": self.processed_count,
        }
