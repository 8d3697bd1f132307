"""Event type definitions for the orchestrator event system.

This module defines the events that flow from the orchestrator components to
interested surfaces (the WebSocket stream, tests). Every user-visible state
change produces an event.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types in the orchestrator.

    Events are categorized by:
    - Logs: entries accepted by the log aggregator
    - Session: processing session state transitions
    - Config: repair lifecycle and configuration reloads
    - Bus: lifecycle of the bus itself
    """

    # Logs
    LOG_APPENDED = "log_appended"

    # Session
    SESSION_STATE_CHANGED = "session_state_changed"

    # Config
    CONFIG_REPAIR_STARTED = "config_repair_started"
    CONFIG_REPAIRED = "config_repaired"
    CONFIG_REPAIR_FAILED = "config_repair_failed"
    CONFIG_REPAIR_SKIPPED = "config_repair_skipped"
    CONFIG_RELOADED = "config_reloaded"

    # Bus
    BUS_CLOSED = "bus_closed"


class ProcessingEvent(BaseModel):
    """An event published by an orchestrator component.

    Payload schemas by event type:

    LOG_APPENDED:
        - message: str - The log line
        - kind: str - info, success, error or progress
        - timestamp: str - RFC 3339 timestamp of the entry

    SESSION_STATE_CHANGED:
        - status: str - New session status
        - processed_count: int
        - total_count: int
        - errors: int - Number of errors recorded so far

    CONFIG_REPAIRED:
        - details: list[str] - Repair report lines
        - backup_path: Optional[str] - Where the corrupted file was copied

    CONFIG_REPAIR_FAILED:
        - error: str - Why the repair failed
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    session_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "log_appended",
                    "timestamp": 1699876543.123,
                    "session_id": "pdf_directory_1699876543000",
                    "data": {
                        "message": "Processing: edital_001.pdf (1/3)",
                        "kind": "progress",
                        "timestamp": "2024-11-13T12:15:43.123000+00:00",
                    },
                }
            ]
        }
    }
