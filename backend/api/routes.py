"""HTTP API routes for the document intake backend.

This module defines the HTTP endpoints for processing sessions, logs,
configuration and file access, plus the health check. Real-time events are
handled via WebSocket in websocket.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from errors import (
    AlreadyRunningError,
    ConfigError,
    InvalidSpecError,
    RepairError,
    RepairInProgressError,
    SubmissionFailedError,
)
from models.schemas import (
    AppConfig,
    CreateSessionRequest,
    DirectoriesUpdateRequest,
    DirectoryKind,
    FileInfo,
    HealthResponse,
    LogEntry,
    RepairReport,
    SessionDetailResponse,
    SessionResponse,
    VerboseUpdateRequest,
)

if TYPE_CHECKING:
    from orchestrator import Orchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()


# Orchestrator dependency (set during application startup)
_orchestrator: Orchestrator | None = None


def set_orchestrator(orchestrator: Orchestrator) -> None:
    """Set the orchestrator instance for the routes.

    This should be called during application startup to inject the
    orchestrator dependency.

    Args:
        orchestrator: The Orchestrator instance to use for all routes.
    """
    global _orchestrator
    _orchestrator = orchestrator
    logger.info("orchestrator_configured")


def get_orchestrator() -> Orchestrator:
    """Get the orchestrator instance.

    Raises:
        RuntimeError: If the orchestrator has not been configured.
    """
    if _orchestrator is None:
        logger.error("orchestrator_not_configured")
        raise RuntimeError(
            "Orchestrator not configured. Call set_orchestrator() during startup."
        )
    return _orchestrator


def _config_failure(action: str, error: Exception) -> HTTPException:
    """Map a configuration or repair failure to a 503 response."""
    logger.error("config_request_failed", action=action, error=str(error))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Could not {action}: {error}",
    )


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------


@router.post(
    "/api/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start processing",
    description="Process the current input directory or a single PDF file.",
)
async def create_session(request: CreateSessionRequest) -> SessionResponse:
    """Start a processing session.

    Raises:
        HTTPException: 409 if a session is already running, 422 if the job
            is missing a path, 502 if the worker rejected the job.
    """
    orchestrator = get_orchestrator()

    try:
        if request.target == "file":
            if not request.file_path:
                raise InvalidSpecError("file_path is required when target is 'file'")
            handle = await orchestrator.process_file(request.file_path)
        else:
            handle = await orchestrator.process_directory()
    except AlreadyRunningError as e:
        logger.warning("session_already_running", session_id=e.session_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InvalidSpecError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except SubmissionFailedError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    logger.info("session_created", session_id=handle.session_id, target=request.target)
    return SessionResponse(session_id=handle.session_id, status=handle.status)


@router.get(
    "/api/sessions/current",
    response_model=SessionDetailResponse,
    summary="Current session",
    description="Return the active session and the most recent finished one.",
)
async def get_current_session() -> SessionDetailResponse:
    sessions = get_orchestrator().sessions
    active = sessions.get_session()
    return SessionDetailResponse(
        active=active,
        last=sessions.last_session,
        progress_percentage=active.progress_percentage,
    )


@router.post(
    "/api/sessions/current/cancel",
    status_code=status.HTTP_200_OK,
    summary="Cancel processing",
    description="Stop tracking the active session and release it on the worker.",
)
async def cancel_session() -> dict[str, bool]:
    """Cancel the active session; a no-op returning ``cancelled: false`` when idle."""
    cancelled = await get_orchestrator().cancel()
    logger.info("session_cancel_requested", cancelled=cancelled)
    return {"cancelled": cancelled}


# -----------------------------------------------------------------------------
# Logs
# -----------------------------------------------------------------------------


@router.get(
    "/api/logs",
    response_model=list[LogEntry],
    summary="Transient log",
    description="Most recent log entries of this process, oldest first.",
)
async def get_logs(
    limit: Annotated[int | None, Query(description="Return only the last N entries", ge=1)] = None,
) -> list[LogEntry]:
    entries = get_orchestrator().logs.entries
    return entries[-limit:] if limit else entries


@router.get(
    "/api/logs/persistent",
    response_model=list[LogEntry],
    summary="Persisted log history",
)
async def get_persistent_logs() -> list[LogEntry]:
    try:
        return await get_orchestrator().logs.load_persistent()
    except (ConfigError, RepairError) as e:
        raise _config_failure("load the log history", e) from e


@router.delete(
    "/api/logs/persistent",
    status_code=status.HTTP_200_OK,
    summary="Clear persisted log history",
)
async def clear_persistent_logs() -> dict[str, str]:
    try:
        await get_orchestrator().logs.clear_persistent()
    except ConfigError as e:
        raise _config_failure("clear the log history", e) from e
    return {"status": "cleared"}


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@router.get(
    "/api/config",
    response_model=AppConfig,
    summary="Persisted configuration",
)
async def get_config() -> AppConfig:
    try:
        return await get_orchestrator().current_config()
    except (ConfigError, RepairError) as e:
        raise _config_failure("load the configuration", e) from e


@router.put(
    "/api/config/directories",
    summary="Change working directories",
)
async def update_directories(request: DirectoriesUpdateRequest) -> dict[str, object]:
    """Persist new input and/or output directories.

    Returns:
        The directories now in effect and whether each was verified on disk.
    """
    orchestrator = get_orchestrator()
    changes = {
        DirectoryKind.INPUT: request.input_directory,
        DirectoryKind.OUTPUT: request.output_directory,
    }
    if all(path is None for path in changes.values()):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide input_directory and/or output_directory",
        )

    verified: dict[str, bool] = {}
    try:
        for kind, path in changes.items():
            if path is not None:
                verified[kind.value] = await orchestrator.set_directory(kind, path)
    except (ConfigError, RepairError) as e:
        raise _config_failure("save the directories", e) from e

    return {
        "input_directory": orchestrator.directories.current(DirectoryKind.INPUT),
        "output_directory": orchestrator.directories.current(DirectoryKind.OUTPUT),
        "verified": verified,
    }


@router.post(
    "/api/config/directories/reset",
    summary="Restore default directories",
    description="Persist the worker's default input and output directories.",
)
async def reset_directories() -> dict[str, str]:
    try:
        input_dir, output_dir = await get_orchestrator().reset_directories()
    except (ConfigError, RepairError) as e:
        raise _config_failure("restore the default directories", e) from e
    return {"input_directory": input_dir, "output_directory": output_dir}


@router.put(
    "/api/config/verbose",
    summary="Toggle verbose processing",
)
async def update_verbose(request: VerboseUpdateRequest) -> dict[str, bool]:
    try:
        await get_orchestrator().set_verbose(request.verbose)
    except (ConfigError, RepairError) as e:
        raise _config_failure("save verbose mode", e) from e
    return {"verbose": request.verbose}


@router.post(
    "/api/config/repair",
    response_model=RepairReport,
    summary="Repair the configuration file",
    description="Back up an unusable configuration file and rewrite it with defaults.",
)
async def repair_config() -> RepairReport:
    try:
        return await get_orchestrator().repair_config()
    except RepairInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except RepairError as e:
        raise _config_failure("repair the configuration", e) from e


# -----------------------------------------------------------------------------
# Files
# -----------------------------------------------------------------------------


@router.get(
    "/api/files",
    response_model=list[str],
    summary="List input or result files",
    description=(
        "List the PDF files below the current input directory, or the JSON "
        "results below the current output directory."
    ),
)
async def list_files(
    kind: Annotated[
        DirectoryKind, Query(description="Directory to list: input or output")
    ] = DirectoryKind.INPUT,
) -> list[str]:
    orchestrator = get_orchestrator()
    try:
        if kind == DirectoryKind.OUTPUT:
            return await orchestrator.list_output_files()
        return await orchestrator.list_input_files()
    except FileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get(
    "/api/files/info",
    response_model=FileInfo,
    summary="File metadata",
)
async def get_file_info(
    path: Annotated[str, Query(description="Absolute path of the file")],
) -> FileInfo:
    try:
        return await get_orchestrator().files.get_file_info(path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.post(
    "/api/files/open",
    summary="Open a file or folder",
    description="Open a file or a folder with the desktop's default application.",
)
async def open_path(
    path: Annotated[str, Query(description="Absolute path of the file or folder")],
    folder: Annotated[bool, Query(description="Open as a folder")] = False,
) -> dict[str, bool]:
    files = get_orchestrator().files
    try:
        opened = await (files.open_folder(path) if folder else files.open_file(path))
    except FileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OSError as e:
        logger.error("open_path_failed", path=path, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Could not open {path}: {e}"
        ) from e
    return {"opened": opened}


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with session and repair status.",
)
async def health_check() -> HealthResponse:
    orchestrator = get_orchestrator()
    return HealthResponse(
        status="healthy" if orchestrator.initialized else "starting",
        session_status=orchestrator.sessions.status,
        repair_in_progress=orchestrator.coordinator.repair_in_progress,
    )
