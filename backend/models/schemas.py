"""Pydantic schemas for the orchestrator domain and the HTTP API.

This module defines the data models shared by the config store, the log
aggregator, the session manager and the API handlers. All models use
Pydantic v2.
"""

import time
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    """Return the current UTC time as an RFC 3339 string."""
    return datetime.now(UTC).isoformat()


class SessionStatus(StrEnum):
    """Processing session lifecycle status."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_SESSION_STATUSES = frozenset({SessionStatus.SUBMITTING, SessionStatus.PROCESSING})


class LogKind(StrEnum):
    """Category of a user-facing log entry."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    PROGRESS = "progress"


class DirectoryKind(StrEnum):
    """Working directories tracked in the persisted configuration."""

    INPUT = "input"
    OUTPUT = "output"


class LogEntry(BaseModel):
    """A single user-facing log line."""

    timestamp: str = Field(default_factory=utc_now_iso)
    message: str
    kind: LogKind = LogKind.INFO
    session_id: str | None = None


class AppConfig(BaseModel):
    """Process-wide persisted state.

    Owned by the config store client. ``processing_logs`` never holds more
    than ``max_logs`` entries once saved.
    """

    last_input_directory: str | None = None
    last_output_directory: str | None = None
    verbose: bool = False
    processing_logs: list[LogEntry] = Field(default_factory=list)
    max_logs: int = Field(default=1000, ge=0)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    def trim_logs(self) -> None:
        """Drop the oldest persisted entries beyond ``max_logs``."""
        overflow = len(self.processing_logs) - self.max_logs
        if overflow > 0:
            del self.processing_logs[:overflow]

    def touch(self) -> None:
        self.updated_at = utc_now_iso()


# ---------------------------------------------------------------------------
# Worker contract
# ---------------------------------------------------------------------------


class JobSpec(BaseModel):
    """What to process and where to write the results."""

    input_path: str = ""
    output_directory: str = ""
    verbose: bool = False


class SubmitAck(BaseModel):
    """Worker acknowledgement of a submitted job."""

    session_id: str
    immediate_result: dict[str, Any] | None = None


class WorkerStatus(BaseModel):
    """Progress snapshot reported by the worker for one session."""

    is_processing: bool
    current_file: str | None = None
    processed_count: int = 0
    total_count: int = 0
    errors: list[str] = Field(default_factory=list)
    progress_percentage: float = 0.0


class FileInfo(BaseModel):
    """Metadata for a file exposed by the file browser."""

    name: str
    path: str
    size: int
    modified_timestamp: int


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ProcessingSession(BaseModel):
    """One batch processing job and its tracked progress."""

    session_id: str = ""
    status: SessionStatus = SessionStatus.IDLE
    input_path: str | None = None
    output_directory: str | None = None
    current_file: str | None = None
    processed_count: int = 0
    total_count: int = 0
    errors: list[str] = Field(default_factory=list)
    submitted_at: float | None = None
    completed_at: float | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SESSION_STATUSES

    @property
    def progress_percentage(self) -> float:
        if self.total_count <= 0:
            return 0.0
        return min(100.0, self.processed_count / self.total_count * 100.0)


class SessionHandle(BaseModel):
    """Returned to the caller of a successful submission."""

    session_id: str
    status: SessionStatus
    submitted_at: float = Field(default_factory=time.time)
    immediate_result: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


class RepairStatus(StrEnum):
    """Outcome of a repair request."""

    REPAIRED = "repaired"
    SKIPPED = "skipped"


class RepairReport(BaseModel):
    """Result of a configuration repair attempt."""

    status: RepairStatus
    details: list[str] = Field(default_factory=list)
    backup_path: str | None = None
    config: AppConfig | None = None


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class CreateSessionRequest(BaseModel):
    """Request body for starting a processing session."""

    target: Literal["directory", "file"] = Field(
        default="directory",
        description="Process the whole input directory or a single file",
    )
    file_path: str | None = Field(
        default=None,
        description="File to process when target is 'file'",
        examples=["/data/PDFs/edital_001.pdf"],
    )


class SessionResponse(BaseModel):
    """Response for session submission."""

    session_id: str = Field(description="Worker-assigned session identifier")
    status: SessionStatus = Field(description="Current session status")
    websocket_url: str = Field(
        default="/ws/events",
        description="WebSocket URL for real-time event streaming",
    )


class SessionDetailResponse(BaseModel):
    """Current (or most recent) session state."""

    active: ProcessingSession
    last: ProcessingSession | None = None
    progress_percentage: float = 0.0


class DirectoriesUpdateRequest(BaseModel):
    """Request body for changing the working directories."""

    input_directory: str | None = None
    output_directory: str | None = None


class VerboseUpdateRequest(BaseModel):
    """Request body for toggling verbose processing."""

    verbose: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    session_status: SessionStatus
    repair_in_progress: bool
    timestamp: float = Field(default_factory=time.time)
