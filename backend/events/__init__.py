"""Event system for orchestrator observers.

This package provides the explicit subscription infrastructure between the
orchestrator components and the surfaces that display their state. It is
based on bounded asyncio.Queue subscribers with an unsubscribe-on-teardown
contract.

Key Components:
    - EventType: Enum of all event types in the system
    - ProcessingEvent: Pydantic model for events flowing through the system
    - EventBus: Pub/sub implementation for event distribution

Usage:
    >>> from events import EventType, ProcessingEvent, get_event_bus
    >>>
    >>> bus = get_event_bus()
    >>> queue = bus.subscribe()
    >>> bus.publish(ProcessingEvent(
    ...     type=EventType.SESSION_STATE_CHANGED,
    ...     session_id="pdf_directory_1699876543000",
    ...     data={"status": "processing", "processed_count": 0, "total_count": 3},
    ... ))
    >>> event = await queue.get()
    >>> bus.unsubscribe(queue)

Event Flow:
    1. The log aggregator, session manager and repair coordinator publish
    2. The WebSocket handler subscribes and forwards events to clients
    3. The handler unsubscribes when the connection closes
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EventType,
    ProcessingEvent,
)

__all__ = [
    "EventType",
    "ProcessingEvent",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
