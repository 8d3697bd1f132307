"""Models module for Pydantic schemas.

This module exposes the domain and request/response models.
"""

from models.schemas import (
    ACTIVE_SESSION_STATUSES,
    AppConfig,
    CreateSessionRequest,
    DirectoriesUpdateRequest,
    DirectoryKind,
    FileInfo,
    HealthResponse,
    JobSpec,
    LogEntry,
    LogKind,
    ProcessingSession,
    RepairReport,
    RepairStatus,
    SessionDetailResponse,
    SessionHandle,
    SessionResponse,
    SessionStatus,
    SubmitAck,
    VerboseUpdateRequest,
    WorkerStatus,
)

__all__ = [
    "ACTIVE_SESSION_STATUSES",
    "AppConfig",
    "CreateSessionRequest",
    "DirectoriesUpdateRequest",
    "DirectoryKind",
    "FileInfo",
    "HealthResponse",
    "JobSpec",
    "LogEntry",
    "LogKind",
    "ProcessingSession",
    "RepairReport",
    "RepairStatus",
    "SessionDetailResponse",
    "SessionHandle",
    "SessionResponse",
    "SessionStatus",
    "SubmitAck",
    "VerboseUpdateRequest",
    "WorkerStatus",
]
