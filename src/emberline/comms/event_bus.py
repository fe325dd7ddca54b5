"""EventBus — thread-safe pub/sub used as the engine's telemetry outlet.

The engine writes ``tick_published`` / ``tick_failed`` / ``tick_aborted``
events here after each tick.  Nothing in the engine ever reads from the
bus, so the engine runs unchanged when no bus is attached.
"""

from __future__ import annotations

import queue
import threading


class EventBus:
    """Fan-out of engine events to subscriber queues."""

    QUEUE_SIZE = 256

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[queue.Queue, frozenset[str] | None]] = []

    def subscribe(self, event_types: list[str] | None = None) -> queue.Queue:
        """Subscribe to events.  Returns the Queue events are delivered to.

        ``event_types`` limits delivery to the named event types; None
        delivers everything.
        """
        q: queue.Queue = queue.Queue(maxsize=self.QUEUE_SIZE)
        wanted = frozenset(event_types) if event_types else None
        with self._lock:
            self._subscribers.append((q, wanted))
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers = [(s, w) for s, w in self._subscribers if s is not q]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_type: str, data: dict | None = None) -> None:
        """Deliver an event to every subscriber whose filter admits it."""
        message = {"type": event_type} if data is None else {"type": event_type, "data": data}
        with self._lock:
            targets = [q for q, wanted in self._subscribers if wanted is None or event_type in wanted]
        for q in targets:
            self._deliver(q, message)

    @staticmethod
    def _deliver(q: queue.Queue, message: dict) -> None:
        # A full queue loses its oldest event so the newest always lands
        while True:
            try:
                q.put_nowait(message)
                return
            except queue.Full:
                try:
                    q.get_nowait()
                except queue.Empty:
                    continue
