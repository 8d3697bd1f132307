"""Event bus for orchestrator observers.

This module provides an EventBus class that replaces implicit broadcast
between components with explicit subscription: every observer owns a bounded
asyncio.Queue and must unsubscribe it on teardown.

The event bus supports:
- Multiple subscribers, each with its own bounded queue
- Synchronous, non-blocking publication (safe inside the log aggregator)
- Bounded history for replay to late subscribers
- Close notification through a BUS_CLOSED sentinel event
"""

import asyncio
import threading
from collections import deque

import structlog

from events.types import EventType, ProcessingEvent

logger = structlog.get_logger(__name__)


class EventBus:
    """Pub/sub event bus for orchestrator events.

    Publication never blocks and never raises: when a subscriber's queue is
    full the event is dropped for that subscriber and a warning is logged.
    This keeps publishers such as the log aggregator free of failure paths.

    Publication must happen on the event loop thread, since asyncio.Queue is
    not thread-safe. The subscriber registry itself is protected by a
    threading.Lock so that subscribe/unsubscribe may be called from anywhere.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe()
        >>> bus.publish(ProcessingEvent(type=EventType.LOG_APPENDED, data={...}))
        >>> event = await queue.get()
        >>> bus.unsubscribe(queue)

    Attributes:
        _subscribers: Registered subscriber queues
        _history: Most recent events, for replay on (re)connect
        _lock: Threading lock for subscriber registry access
    """

    MAX_HISTORY = 500

    def __init__(self, queue_size: int = 1000) -> None:
        """Initialize an empty event bus.

        Args:
            queue_size: Capacity of each subscriber queue.
        """
        self.queue_size = queue_size
        self._subscribers: list[asyncio.Queue[ProcessingEvent]] = []
        self._history: deque[ProcessingEvent] = deque(maxlen=self.MAX_HISTORY)
        self._lock = threading.Lock()
        self._closed = False
        logger.info("event_bus_initialized", queue_size=queue_size)

    def subscribe(self, maxsize: int | None = None) -> asyncio.Queue[ProcessingEvent]:
        """Register a new subscriber.

        Args:
            maxsize: Optional capacity override for this subscriber's queue.

        Returns:
            A bounded asyncio.Queue that receives every event published
            after this call.
        """
        queue: asyncio.Queue[ProcessingEvent] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else self.queue_size
        )
        with self._lock:
            self._subscribers.append(queue)
            subscriber_count = len(self._subscribers)

        logger.info("subscriber_added", subscriber_count=subscriber_count)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ProcessingEvent]) -> None:
        """Remove a subscriber queue.

        If the queue is not registered, this is a no-op.

        Args:
            queue: The queue to remove
        """
        with self._lock:
            try:
                self._subscribers.remove(queue)
            except ValueError:
                logger.warning("unsubscribe_queue_not_found")
                return
            subscriber_count = len(self._subscribers)

        logger.info("subscriber_removed", subscriber_count=subscriber_count)

    def publish(self, event: ProcessingEvent) -> None:
        """Deliver an event to every subscriber without blocking.

        Args:
            event: The ProcessingEvent to publish
        """
        with self._lock:
            if self._closed:
                logger.debug("publish_after_close_ignored", event_type=event.type.value)
                return
            self._history.append(event)
            subscribers = list(self._subscribers)

        for queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "queue_full_event_dropped",
                    event_type=event.type.value,
                    session_id=event.session_id,
                )

        logger.debug(
            "event_published",
            event_type=event.type.value,
            session_id=event.session_id,
            subscriber_count=len(subscribers),
        )

    def emit(
        self,
        event_type: EventType,
        *,
        session_id: str | None = None,
        **data: object,
    ) -> None:
        """Build and publish an event in one call."""
        self.publish(ProcessingEvent(type=event_type, session_id=session_id, data=data))

    def get_event_history(self) -> list[ProcessingEvent]:
        """Return the retained events in chronological order."""
        with self._lock:
            return list(self._history)

    def get_subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        """Close the bus and notify every subscriber.

        Puts a BUS_CLOSED sentinel into each subscriber queue so that
        consumers (e.g. the WebSocket send loop) can break out cleanly, then
        drops all subscribers. Further publications are ignored.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            queues = list(self._subscribers)
            self._subscribers.clear()

        sentinel = ProcessingEvent(type=EventType.BUS_CLOSED, data={"reason": "bus_closed"})
        for queue in queues:
            try:
                queue.put_nowait(sentinel)
            except asyncio.QueueFull:
                logger.warning("bus_closed_sentinel_dropped")

        logger.info("event_bus_closed", subscribers_removed=len(queues))


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance.

    Creates the instance on first call (lazy initialization).
    This function is thread-safe.

    Returns:
        The global EventBus instance
    """
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            # Double-check locking pattern
            if _event_bus is None:
                from config import settings

                _event_bus = EventBus(queue_size=settings.event_queue_size)
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance.

    This is primarily useful for testing to ensure a clean state
    between test runs.
    """
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
