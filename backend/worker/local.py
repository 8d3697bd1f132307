"""In-process processing worker.

LocalWorker runs a pluggable document processor over one PDF or every PDF
below a directory, on the default executor, and keeps a per-session status
registry that the orchestrator polls. The extraction logic itself lives in
the ``DocumentProcessor`` callable and is not part of this package.
"""

import asyncio
import json
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from models.schemas import DirectoryKind, SubmitAck, WorkerStatus
from worker.files import find_files

logger = structlog.get_logger(__name__)

DocumentProcessor = Callable[[Path, Path, bool], dict[str, Any]]


def write_summary_json(pdf_path: Path, output_dir: Path, verbose: bool) -> dict[str, Any]:
    """Default processor: write a JSON summary of the document next to the results."""
    stat = pdf_path.stat()
    summary: dict[str, Any] = {
        "file_name": pdf_path.name,
        "source_path": str(pdf_path),
        "file_size": stat.st_size,
        "processed_at": datetime.now(UTC).isoformat(),
    }
    if verbose:
        summary["modified_timestamp"] = int(stat.st_mtime)
    target = output_dir / f"{pdf_path.stem}.json"
    target.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    return summary


class LocalWorker:
    """ProcessingWorker that processes files in this process.

    Status entries are mutated from executor threads, so the registry is
    guarded by a threading.Lock and ``get_status`` returns copies.

    Attributes:
        processor: Callable invoked once per PDF file.
        default_directories: Default input/output folders by kind.
    """

    def __init__(
        self,
        default_directories: dict[DirectoryKind, str],
        processor: DocumentProcessor = write_summary_json,
    ) -> None:
        self.processor = processor
        self.default_directories = default_directories
        self._states: dict[str, WorkerStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = threading.Lock()

    async def submit_job(
        self,
        input_path: str,
        output_directory: str,
        verbose: bool,
        session_id: str | None = None,
    ) -> SubmitAck:
        """Validate the input and start processing in the background.

        Raises:
            FileNotFoundError: If the input path does not exist.
            ValueError: If a file is not a PDF or a directory holds none.
            OSError: If the output directory cannot be created.
        """
        loop = asyncio.get_running_loop()
        source = Path(input_path)
        stamp = int(time.time() * 1000)

        if source.is_file():
            if source.suffix.lower() != ".pdf":
                raise ValueError(f"The file must have a .pdf extension: {input_path}")
            files = [source]
            mode = "file"
        elif source.is_dir():
            files = await loop.run_in_executor(None, find_files, source, ".pdf")
            if not files:
                raise ValueError(f"No PDF files found in directory: {input_path}")
            mode = "directory"
        else:
            raise FileNotFoundError(f"Input path not found: {input_path}")

        sid = session_id or f"pdf_{mode}_{stamp}"
        output = Path(output_directory)
        await loop.run_in_executor(None, lambda: output.mkdir(parents=True, exist_ok=True))

        with self._lock:
            self._states[sid] = WorkerStatus(is_processing=True, total_count=len(files))

        task = loop.create_task(self._run(sid, files, output, verbose), name=f"worker_{sid}")
        self._tasks[sid] = task
        task.add_done_callback(lambda t, s=sid: self._tasks.pop(s, None))

        logger.info("worker_job_started", session_id=sid, mode=mode, total_files=len(files))
        return SubmitAck(
            session_id=sid,
            immediate_result={"mode": mode, "total_files": len(files)},
        )

    async def _run(self, session_id: str, files: list[Path], output: Path, verbose: bool) -> None:
        await asyncio.get_running_loop().run_in_executor(
            None, self._process_all, session_id, files, output, verbose
        )

    def _update(self, session_id: str, **changes: Any) -> None:
        with self._lock:
            state = self._states.get(session_id)
            if state is None:
                return
            for key, value in changes.items():
                setattr(state, key, value)
            if state.total_count:
                state.progress_percentage = state.processed_count / state.total_count * 100.0

    def _process_all(self, session_id: str, files: list[Path], output: Path, verbose: bool) -> None:
        processed = 0
        errors: list[str] = []
        try:
            for path in files:
                self._update(session_id, current_file=str(path))
                try:
                    self.processor(path, output, verbose)
                except Exception as e:
                    errors.append(f"Error processing {path.name}: {e}")
                    logger.warning("worker_file_failed", session_id=session_id, file=str(path), error=str(e))
                    self._update(session_id, errors=list(errors))
                    continue
                processed += 1
                self._update(session_id, processed_count=processed)
        finally:
            self._update(session_id, is_processing=False, current_file=None)
            logger.info(
                "worker_job_finished",
                session_id=session_id,
                processed=processed,
                total=len(files),
                errors=len(errors),
            )

    async def get_status(self, session_id: str) -> WorkerStatus:
        """Return a copy of the session's status.

        Raises:
            KeyError: If the session is unknown.
        """
        with self._lock:
            state = self._states.get(session_id)
            if state is None:
                raise KeyError(f"Processing session not found: {session_id}")
            return state.model_copy(deep=True)

    async def clear_session(self, session_id: str) -> None:
        with self._lock:
            self._states.pop(session_id, None)
        logger.debug("worker_session_cleared", session_id=session_id)

    async def default_directory(self, kind: DirectoryKind) -> str:
        path = Path(self.default_directories[kind])
        await asyncio.get_running_loop().run_in_executor(
            None, lambda: path.mkdir(parents=True, exist_ok=True)
        )
        return str(path)

    async def wait_idle(self) -> None:
        """Wait for every background job to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
