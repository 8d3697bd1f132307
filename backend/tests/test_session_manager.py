"""Tests for session_manager.py -- single-flight session lifecycle.

Covers submission validation, single-flight enforcement, the polling
ticker, terminal mapping, stop-exactly-once under overlapping polls,
cancellation (including during submission) and best-effort cleanup.
All worker calls are mocked.
"""

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest

from errors import AlreadyRunningError, InvalidSpecError, SubmissionFailedError
from events.bus import EventBus
from events.types import EventType
from log_aggregator import LogAggregator
from models.schemas import JobSpec, LogKind, SessionStatus, SubmitAck, WorkerStatus
from session_manager import PollTimer, SessionManager
from tests.conftest import events_of, make_status, wait_until

ACK_ID = "pdf_directory_1700000000000"


def _spec(**overrides: object) -> JobSpec:
    values: dict[str, object] = {"input_path": "/data/PDFs", "output_directory": "/data/out"}
    values.update(overrides)
    return JobSpec(**values)  # type: ignore[arg-type]


def _messages(logs: LogAggregator, kind: LogKind) -> list[str]:
    return [e.message for e in logs.entries if e.kind == kind]


def _sequence(statuses: list[WorkerStatus]):
    """Return each status once, then repeat the last one."""

    def next_status(session_id: str) -> WorkerStatus:
        return statuses.pop(0) if len(statuses) > 1 else statuses[0]

    return next_status


@pytest.fixture()
async def manager(
    mock_worker: AsyncMock, logs: LogAggregator, event_bus: EventBus
) -> AsyncGenerator[SessionManager, None]:
    await logs.store.initialize()
    mgr = SessionManager(mock_worker, logs, event_bus, poll_interval=0.01)
    yield mgr
    await mgr.shutdown()
    await logs.flush()


# =========================================================================
# PollTimer
# =========================================================================


class TestPollTimer:
    async def test_fires_repeatedly_until_stopped(self) -> None:
        ticks: list[PollTimer] = []
        timer = PollTimer(0.005, ticks.append)
        timer.start()
        await wait_until(lambda: len(ticks) >= 3)
        timer.stop()
        count = len(ticks)
        await asyncio.sleep(0.03)
        assert len(ticks) == count
        assert all(t is timer for t in ticks)
        assert timer.active is False

    async def test_cannot_restart(self) -> None:
        timer = PollTimer(0.01, lambda t: None)
        timer.start()
        timer.stop()
        with pytest.raises(RuntimeError):
            timer.start()


# =========================================================================
# Submission
# =========================================================================


class TestSubmit:
    @pytest.mark.parametrize(
        "spec",
        [_spec(input_path=""), _spec(input_path="   "), _spec(output_directory="")],
    )
    async def test_blank_paths_are_rejected(
        self, manager: SessionManager, mock_worker: AsyncMock, spec: JobSpec
    ) -> None:
        with pytest.raises(InvalidSpecError):
            await manager.submit(spec)
        assert manager.status == SessionStatus.IDLE
        mock_worker.submit_job.assert_not_called()

    async def test_submit_starts_processing(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        handle = await manager.submit(_spec(verbose=True))

        assert handle.session_id == ACK_ID
        assert handle.status == SessionStatus.PROCESSING
        assert manager.status == SessionStatus.PROCESSING
        assert manager.is_polling is True
        args = mock_worker.submit_job.await_args
        assert args.args == ("/data/PDFs", "/data/out", True)
        assert args.kwargs["session_id"].startswith("job_")
        assert manager.get_session().total_count == 3

    async def test_second_submit_while_processing_is_rejected(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        await manager.submit(_spec())
        with pytest.raises(AlreadyRunningError):
            await manager.submit(_spec())
        assert mock_worker.submit_job.await_count == 1

    async def test_second_submit_while_submitting_is_rejected(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        release = asyncio.Event()

        async def slow_submit(*args: object, **kwargs: object) -> SubmitAck:
            await release.wait()
            return SubmitAck(session_id=ACK_ID)

        mock_worker.submit_job.side_effect = slow_submit
        first = asyncio.create_task(manager.submit(_spec()))
        await wait_until(lambda: manager.status == SessionStatus.SUBMITTING)

        with pytest.raises(AlreadyRunningError):
            await manager.submit(_spec())

        release.set()
        await first
        assert mock_worker.submit_job.await_count == 1

    async def test_submission_failure(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        mock_worker.submit_job.side_effect = FileNotFoundError("Input path not found")

        with pytest.raises(SubmissionFailedError):
            await manager.submit(_spec())

        assert manager.status == SessionStatus.IDLE
        assert manager.is_polling is False
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.FAILED
        assert len(_messages(logs, LogKind.ERROR)) == 1


# =========================================================================
# Polling and terminal mapping
# =========================================================================


class TestPolling:
    async def test_successful_run_end_to_end(
        self,
        manager: SessionManager,
        mock_worker: AsyncMock,
        logs: LogAggregator,
        event_bus: EventBus,
    ) -> None:
        statuses = [
            make_status(current_file="/data/PDFs/a.pdf", processed=0),
            make_status(current_file="/data/PDFs/b.pdf", processed=1),
            make_status(current_file="/data/PDFs/c.pdf", processed=2),
            make_status(is_processing=False, processed=3),
        ]
        mock_worker.get_status.side_effect = _sequence(statuses)

        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)

        progress = _messages(logs, LogKind.PROGRESS)
        assert progress[:3] == [
            "Processing: a.pdf (0/3)",
            "Processing: b.pdf (1/3)",
            "Processing: c.pdf (2/3)",
        ]
        assert progress[-1] == "Processed 3/3 files"
        assert _messages(logs, LogKind.SUCCESS) == ["Processing complete: 3/3 files processed"]
        mock_worker.clear_session.assert_awaited_once_with(ACK_ID)
        assert manager.is_polling is False
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.COMPLETED

        states = [e.data["status"] for e in events_of(event_bus, EventType.SESSION_STATE_CHANGED)]
        assert states == ["submitting", "processing", "completed", "idle"]

    async def test_repeated_progress_is_logged_once(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        mock_worker.get_status.return_value = make_status(current_file="/x/a.pdf", processed=0)
        await manager.submit(_spec())
        await wait_until(lambda: mock_worker.get_status.await_count >= 5)
        assert _messages(logs, LogKind.PROGRESS) == ["Processing: a.pdf (0/3)"]

    async def test_worker_errors_surfaced_once_and_failed_mapping(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        statuses = [
            make_status(processed=0, errors=["Error processing a.pdf: bad header"]),
            make_status(processed=0, errors=["Error processing a.pdf: bad header"]),
            make_status(
                is_processing=False,
                processed=1,
                errors=["Error processing a.pdf: bad header", "Error processing b.pdf: empty"],
            ),
        ]
        mock_worker.get_status.side_effect = _sequence(statuses)

        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)

        errors = _messages(logs, LogKind.ERROR)
        assert errors[:2] == ["Error processing a.pdf: bad header", "Error processing b.pdf: empty"]
        assert errors[2].startswith("Processing finished with errors: 1/3")
        assert len(errors) == 3
        assert _messages(logs, LogKind.SUCCESS) == []
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.FAILED
        assert len(manager.last_session.errors) == 2

    async def test_errors_with_everything_processed_is_completed(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        mock_worker.get_status.return_value = make_status(
            is_processing=False, processed=3, errors=["warning: slow file"]
        )
        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.COMPLETED

    async def test_worker_errors_do_not_end_session(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        mock_worker.get_status.return_value = make_status(processed=1, errors=["oops"])
        await manager.submit(_spec())
        await wait_until(lambda: mock_worker.get_status.await_count >= 3)
        assert manager.status == SessionStatus.PROCESSING

    async def test_poll_failure_stops_and_fails(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        mock_worker.get_status.side_effect = ConnectionError("worker gone")

        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)
        await asyncio.sleep(0.02)
        calls = mock_worker.get_status.await_count
        await asyncio.sleep(0.05)

        assert mock_worker.get_status.await_count == calls
        lost = [m for m in _messages(logs, LogKind.ERROR) if m.startswith("Lost contact")]
        assert len(lost) == 1
        mock_worker.clear_session.assert_awaited_once_with(ACK_ID)
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.FAILED

    async def test_terminal_status_stops_exactly_once(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        gate = asyncio.Event()

        async def slow_status(session_id: str):
            await gate.wait()
            return make_status(is_processing=False, processed=3)

        mock_worker.get_status.side_effect = slow_status

        await manager.submit(_spec())
        # Several ticks fire while the first poll is still unresolved.
        await wait_until(lambda: mock_worker.get_status.await_count >= 3)
        gate.set()
        await wait_until(lambda: manager.status == SessionStatus.IDLE)
        await asyncio.sleep(0.03)

        assert len(_messages(logs, LogKind.SUCCESS)) == 1
        mock_worker.clear_session.assert_awaited_once()
        assert manager.is_polling is False

    async def test_cleanup_failure_is_logged_not_retried(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        mock_worker.get_status.return_value = make_status(is_processing=False, processed=3)
        mock_worker.clear_session.side_effect = RuntimeError("worker busy")

        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)
        await asyncio.sleep(0.03)

        mock_worker.clear_session.assert_awaited_once()
        release_errors = [m for m in _messages(logs, LogKind.ERROR) if "release" in m]
        assert len(release_errors) == 1
        assert manager.last_session is not None
        assert manager.last_session.status == SessionStatus.COMPLETED

    async def test_new_session_after_completion(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        mock_worker.get_status.return_value = make_status(is_processing=False, processed=3)
        await manager.submit(_spec())
        await wait_until(lambda: manager.status == SessionStatus.IDLE)

        handle = await manager.submit(_spec())
        assert handle.status == SessionStatus.PROCESSING


# =========================================================================
# Cancellation
# =========================================================================


class TestCancel:
    async def test_cancel_when_idle_is_noop(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        assert await manager.cancel() is False
        mock_worker.clear_session.assert_not_called()

    async def test_cancel_stops_polling_and_releases(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        await manager.submit(_spec())
        await wait_until(lambda: mock_worker.get_status.await_count >= 1)

        assert await manager.cancel() is True
        await asyncio.sleep(0.02)
        calls = mock_worker.get_status.await_count
        await asyncio.sleep(0.05)

        assert manager.status == SessionStatus.IDLE
        assert manager.is_polling is False
        assert mock_worker.get_status.await_count == calls
        mock_worker.clear_session.assert_awaited_once_with(ACK_ID)

    async def test_late_poll_result_is_discarded(
        self, manager: SessionManager, mock_worker: AsyncMock, logs: LogAggregator
    ) -> None:
        gate = asyncio.Event()

        async def slow_status(session_id: str):
            await gate.wait()
            return make_status(is_processing=False, processed=3)

        mock_worker.get_status.side_effect = slow_status
        await manager.submit(_spec())
        await wait_until(lambda: mock_worker.get_status.await_count >= 1)

        await manager.cancel()
        gate.set()
        await asyncio.sleep(0.03)

        assert _messages(logs, LogKind.SUCCESS) == []
        assert manager.last_session is None

    async def test_cancel_during_submission_releases_after_ack(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        release = asyncio.Event()

        async def slow_submit(*args: object, **kwargs: object) -> SubmitAck:
            await release.wait()
            return SubmitAck(session_id=ACK_ID)

        mock_worker.submit_job.side_effect = slow_submit
        pending = asyncio.create_task(manager.submit(_spec()))
        await wait_until(lambda: manager.status == SessionStatus.SUBMITTING)

        assert await manager.cancel() is True
        mock_worker.clear_session.assert_not_called()

        release.set()
        handle = await pending

        assert handle.status == SessionStatus.IDLE
        assert manager.is_polling is False
        mock_worker.clear_session.assert_awaited_once_with(ACK_ID)
        mock_worker.get_status.assert_not_called()

    async def test_shutdown_cancels_active_session(
        self, manager: SessionManager, mock_worker: AsyncMock
    ) -> None:
        await manager.submit(_spec())
        await manager.shutdown()
        assert manager.status == SessionStatus.IDLE
        assert manager.is_polling is False
