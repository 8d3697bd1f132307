"""Session manager for single-flight document processing.

This module provides the SessionManager class that owns the one processing
session the application may run at a time: it submits the job to the
worker, polls the worker on a fixed cadence, feeds progress into the log
aggregator and releases the worker session once processing ends.

State machine::

    idle --submit--> submitting --ack--> processing
        --{done|error}--> completed | failed --cleanup--> idle

Usage:
    >>> manager = SessionManager(worker, logs, get_event_bus())
    >>> handle = await manager.submit(JobSpec(input_path=..., output_directory=...))
    >>> manager.get_session().status
    <SessionStatus.PROCESSING: 'processing'>
    >>> await manager.cancel()
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from pathlib import Path

import structlog

from errors import (
    AlreadyRunningError,
    InvalidSpecError,
    SubmissionFailedError,
    WorkerUnreachableError,
)
from events import EventBus, EventType
from log_aggregator import LogAggregator
from models.schemas import (
    JobSpec,
    LogKind,
    ProcessingSession,
    SessionHandle,
    SessionStatus,
    WorkerStatus,
)
from worker.protocol import ProcessingWorker

logger = structlog.get_logger(__name__)


class PollTimer:
    """Repeating timer on the running event loop.

    The callback fires every ``interval`` seconds whether or not the work it
    started has finished. Stopping is permanent; a stopped timer never fires
    again.
    """

    def __init__(self, interval: float, callback: Callable[["PollTimer"], None]) -> None:
        self.interval = interval
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._stopped

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("PollTimer cannot be restarted")
        self._handle = asyncio.get_running_loop().call_later(self.interval, self._fire)

    def _fire(self) -> None:
        if self._stopped:
            return
        self._handle = asyncio.get_running_loop().call_later(self.interval, self._fire)
        self._callback(self)

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class SessionManager:
    """Owns the single active processing session.

    The active-session check in ``submit`` and the timer swap in
    ``_stop_polling`` run without suspension points, so on one event loop a
    second submission can never slip in and a terminal status is acted on
    once even when overlapping polls both observe it.

    Attributes:
        worker: The processing worker jobs are submitted to.
        logs: User-facing log aggregator.
        event_bus: Bus receiving SESSION_STATE_CHANGED events.
        poll_interval: Seconds between status polls.
    """

    def __init__(
        self,
        worker: ProcessingWorker,
        logs: LogAggregator,
        event_bus: EventBus,
        poll_interval: float = 0.5,
    ) -> None:
        self.worker = worker
        self.logs = logs
        self.event_bus = event_bus
        self.poll_interval = poll_interval
        self._session = ProcessingSession()
        self._last: ProcessingSession | None = None
        self._timer: PollTimer | None = None
        self._seen_errors = 0
        self._poll_tasks: set[asyncio.Task[None]] = set()
        logger.info("session_manager_initialized", poll_interval=poll_interval)

    def _generate_session_id(self) -> str:
        """Generate a provisional session identifier.

        Returns:
            A session ID in the format "job_{12 hex chars}"
        """
        return f"job_{uuid.uuid4().hex[:12]}"

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def get_session(self) -> ProcessingSession:
        """Return a snapshot of the current session."""
        return self._session.model_copy(deep=True)

    @property
    def last_session(self) -> ProcessingSession | None:
        """Snapshot of the most recent session that reached a terminal status."""
        return self._last.model_copy(deep=True) if self._last is not None else None

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def is_polling(self) -> bool:
        return self._timer is not None

    # -----------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------

    async def submit(self, spec: JobSpec) -> SessionHandle:
        """Submit a processing job and start polling its status.

        Args:
            spec: What to process and where to write results.

        Returns:
            Handle carrying the worker's session id. Its status is ``idle``
            if the session was cancelled while the submission was pending.

        Raises:
            AlreadyRunningError: If a session is submitting or processing.
            InvalidSpecError: If the input path or output directory is blank.
            SubmissionFailedError: If the worker rejected the job.
        """
        if self._session.is_active:
            raise AlreadyRunningError(self._session.session_id)
        if not spec.input_path.strip():
            raise InvalidSpecError("An input file or directory is required")
        if not spec.output_directory.strip():
            raise InvalidSpecError("An output directory is required")

        session = ProcessingSession(
            session_id=self._generate_session_id(),
            status=SessionStatus.SUBMITTING,
            input_path=spec.input_path,
            output_directory=spec.output_directory,
            submitted_at=time.time(),
        )
        self._session = session
        self._seen_errors = 0
        self._publish(session)
        self.logs.append(f"Starting processing: {spec.input_path}", session_id=session.session_id)

        try:
            ack = await self.worker.submit_job(
                spec.input_path,
                spec.output_directory,
                spec.verbose,
                session_id=session.session_id,
            )
        except Exception as e:
            logger.error("job_submission_failed", session_id=session.session_id, error=str(e))
            if self._session is session:
                session.errors.append(str(e))
                self._set_status(session, SessionStatus.FAILED)
                session.completed_at = time.time()
                self._last = session.model_copy(deep=True)
                self.logs.append(
                    f"Failed to start processing: {e}", LogKind.ERROR, session.session_id
                )
                self._reset()
            raise SubmissionFailedError(f"Failed to start processing: {e}") from e

        if self._session is not session:
            logger.info("submission_cancelled_before_ack", session_id=ack.session_id)
            await self._release(ack.session_id)
            return SessionHandle(
                session_id=ack.session_id,
                status=SessionStatus.IDLE,
                submitted_at=session.submitted_at or time.time(),
                immediate_result=ack.immediate_result,
            )

        session.session_id = ack.session_id
        self._set_status(session, SessionStatus.PROCESSING)
        total = (ack.immediate_result or {}).get("total_files")
        if isinstance(total, int):
            session.total_count = total
            self.logs.append(f"Found {total} file(s) to process", session_id=ack.session_id)
        logger.info("processing_started", session_id=ack.session_id, total=total)

        self._start_polling()
        return SessionHandle(
            session_id=ack.session_id,
            status=SessionStatus.PROCESSING,
            submitted_at=session.submitted_at or time.time(),
            immediate_result=ack.immediate_result,
        )

    # -----------------------------------------------------------------
    # Polling
    # -----------------------------------------------------------------

    def _start_polling(self) -> None:
        timer = PollTimer(self.poll_interval, self._on_tick)
        self._timer = timer
        timer.start()

    def _on_tick(self, timer: PollTimer) -> None:
        task = asyncio.get_running_loop().create_task(self._poll(timer))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)

    def _stop_polling(self, timer: PollTimer) -> bool:
        """Stop ``timer`` if it is still the active one.

        Returns:
            True for the caller that actually stopped it, False otherwise.
        """
        if self._timer is not timer:
            return False
        self._timer = None
        timer.stop()
        return True

    async def _poll(self, timer: PollTimer) -> None:
        session = self._session
        try:
            status = await self.worker.get_status(session.session_id)
        except Exception as e:
            if not self._stop_polling(timer):
                logger.debug("stale_poll_failure_discarded", error=str(e))
                return
            error = WorkerUnreachableError(session.session_id, str(e))
            logger.error("worker_status_failed", session_id=session.session_id, error=str(e))
            session.errors.append(str(error))
            self._set_status(session, SessionStatus.FAILED)
            self.logs.append(
                f"Lost contact with the worker: {e}", LogKind.ERROR, session.session_id
            )
            await self._finish(session)
            return

        if self._timer is not timer:
            logger.debug("stale_poll_result_discarded", session_id=session.session_id)
            return

        self._apply_status(session, status)
        if status.is_processing:
            return
        if not self._stop_polling(timer):
            return

        processed, total = session.processed_count, session.total_count
        if status.errors and processed < total:
            self._set_status(session, SessionStatus.FAILED)
            self.logs.append(
                f"Processing finished with errors: {processed}/{total} files processed, "
                f"{len(status.errors)} error(s)",
                LogKind.ERROR,
                session.session_id,
            )
        else:
            self._set_status(session, SessionStatus.COMPLETED)
            self.logs.append(
                f"Processing complete: {processed}/{total} files processed",
                LogKind.SUCCESS,
                session.session_id,
            )
        await self._finish(session)

    def _apply_status(self, session: ProcessingSession, status: WorkerStatus) -> None:
        session.current_file = status.current_file
        session.processed_count = status.processed_count
        session.total_count = status.total_count

        p, t = status.processed_count, status.total_count
        if status.current_file:
            message = f"Processing: {Path(status.current_file).name} ({p}/{t})"
        else:
            message = f"Processed {p}/{t} files"
        self.logs.append(message, LogKind.PROGRESS, session.session_id)

        # The worker's error list is cumulative.
        for error in status.errors[self._seen_errors :]:
            session.errors.append(error)
            self.logs.append(error, LogKind.ERROR, session.session_id)
        self._seen_errors = max(self._seen_errors, len(status.errors))

    # -----------------------------------------------------------------
    # Termination
    # -----------------------------------------------------------------

    async def _finish(self, session: ProcessingSession) -> None:
        session.completed_at = time.time()
        session.current_file = None
        self._last = session.model_copy(deep=True)
        logger.info(
            "processing_finished",
            session_id=session.session_id,
            status=session.status.value,
            processed=session.processed_count,
            total=session.total_count,
            errors=len(session.errors),
        )
        await self._release(session.session_id)
        if self._session is session:
            self._reset()

    async def _release(self, session_id: str) -> None:
        """Ask the worker to drop its session state; failures are only logged."""
        try:
            await self.worker.clear_session(session_id)
        except Exception as e:
            logger.warning("worker_session_release_failed", session_id=session_id, error=str(e))
            self.logs.append(
                f"Could not release worker session {session_id}: {e}", LogKind.ERROR, session_id
            )

    def _reset(self) -> None:
        self._session = ProcessingSession()
        self._seen_errors = 0
        self._publish(self._session)

    async def cancel(self) -> bool:
        """Stop tracking the active session and release it on the worker.

        A session still submitting is released by the pending ``submit``
        once the worker acknowledges it.

        Returns:
            True if a session was cancelled, False if there was none.
        """
        session = self._session
        if not session.is_active:
            return False

        if self._timer is not None:
            self._stop_polling(self._timer)
        self._reset()
        self.logs.append("Processing cancelled", session_id=session.session_id)
        logger.info("processing_cancelled", session_id=session.session_id, status=session.status.value)

        if session.status == SessionStatus.PROCESSING:
            await self._release(session.session_id)
        return True

    async def shutdown(self) -> None:
        """Tear down: cancel any active session and drop in-flight polls."""
        await self.cancel()
        for task in list(self._poll_tasks):
            task.cancel()
        if self._poll_tasks:
            await asyncio.gather(*list(self._poll_tasks), return_exceptions=True)
        logger.info("session_manager_shutdown")

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    def _set_status(self, session: ProcessingSession, status: SessionStatus) -> None:
        session.status = status
        self._publish(session)

    def _publish(self, session: ProcessingSession) -> None:
        self.event_bus.emit(
            EventType.SESSION_STATE_CHANGED,
            session_id=session.session_id or None,
            status=session.status.value,
            processed_count=session.processed_count,
            total_count=session.total_count,
            errors=len(session.errors),
        )
