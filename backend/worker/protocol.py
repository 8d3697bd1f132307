"""Contracts the orchestrator uses to talk to the processing worker.

The worker performs the document parsing itself; the orchestrator only
submits jobs, polls their status and releases them. Any object with these
coroutine methods can be plugged into the SessionManager.
"""

from typing import Protocol

from models.schemas import DirectoryKind, FileInfo, SubmitAck, WorkerStatus


class ProcessingWorker(Protocol):
    """Batch document-processing worker."""

    async def submit_job(
        self,
        input_path: str,
        output_directory: str,
        verbose: bool,
        session_id: str | None = None,
    ) -> SubmitAck:
        """Start processing a file or directory.

        ``session_id`` is a provisional id the worker may adopt or replace;
        the returned ack carries the authoritative one.
        """
        ...

    async def get_status(self, session_id: str) -> WorkerStatus:
        """Report progress; raises if the session is unknown."""
        ...

    async def clear_session(self, session_id: str) -> None:
        """Release worker-side state for a finished session."""
        ...

    async def default_directory(self, kind: DirectoryKind) -> str:
        """Return (and create) the default input or output directory."""
        ...


class FileBrowser(Protocol):
    """Listing and opening of files on the worker's filesystem."""

    async def list_files(self, directory: str, extension: str = ".pdf") -> list[str]:
        ...

    async def get_file_info(self, path: str) -> FileInfo:
        ...

    async def open_file(self, path: str) -> bool:
        ...

    async def open_folder(self, path: str) -> bool:
        ...
