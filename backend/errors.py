"""Exception taxonomy for the processing orchestrator.

Errors are grouped by the operation that raises them:

- SubmitError: rejected or failed job submissions.
- PollError: failures talking to the worker while a session is polled.
- ConfigError: failures loading or saving the persisted configuration.
  Carries a structured ``kind`` so callers never inspect message text.
- RepairError: failures of the configuration repair procedure.
"""

from enum import StrEnum
from pathlib import Path


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmitError(OrchestratorError):
    """A processing job could not be submitted."""


class AlreadyRunningError(SubmitError):
    """Raised when a session is already submitting or processing."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is already running")
        self.session_id = session_id


class InvalidSpecError(SubmitError):
    """Raised when a job spec is missing a required path."""


class SubmissionFailedError(SubmitError):
    """Raised when the worker rejects or fails the submission call."""


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class PollError(OrchestratorError):
    """A status poll against the worker failed."""


class WorkerUnreachableError(PollError):
    """Raised when the worker cannot report status for a session."""

    def __init__(self, session_id: str, detail: str) -> None:
        super().__init__(f"Worker unreachable for session '{session_id}': {detail}")
        self.session_id = session_id
        self.detail = detail


# ---------------------------------------------------------------------------
# Configuration store
# ---------------------------------------------------------------------------


class ConfigErrorKind(StrEnum):
    """Structured classification of configuration store failures."""

    CORRUPTED_FILE = "corrupted_file"
    IO_ERROR = "io_error"


class ConfigError(OrchestratorError):
    """A configuration store operation failed.

    Attributes:
        kind: Whether the file itself is unreadable or the I/O failed.
        path: The configuration file the error refers to.
        detail: Low-level cause, for display only.
    """

    kind: ConfigErrorKind = ConfigErrorKind.IO_ERROR

    def __init__(self, message: str, *, path: Path | str, detail: str = "") -> None:
        super().__init__(message)
        self.path = Path(path)
        self.detail = detail


class CorruptedConfigError(ConfigError):
    """The configuration file has invalid encoding or malformed structure."""

    kind = ConfigErrorKind.CORRUPTED_FILE


class ConfigIOError(ConfigError):
    """The configuration file could not be read or written."""

    kind = ConfigErrorKind.IO_ERROR


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


class RepairError(OrchestratorError):
    """The configuration repair procedure failed."""


class RepairInProgressError(RepairError):
    """Raised when a caller requires a repair but one is already running."""


class UnrecoverableRepairError(RepairError):
    """Raised when the store could not rewrite a valid configuration."""
