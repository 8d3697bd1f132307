"""Shared test fixtures for backend tests.

Provides an isolated config file per test, the repair coordinator and log
aggregator wired to it, and a scriptable mock worker so that tests never
touch the real data folders.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from config_store import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from config_repair import ConfigRepairCoordinator  # noqa: E402
from config_store import ConfigStoreClient, JsonConfigFile  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import EventType, ProcessingEvent  # noqa: E402
from log_aggregator import LogAggregator  # noqa: E402
from models.schemas import DirectoryKind, SubmitAck, WorkerStatus  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


def events_of(bus: EventBus, event_type: EventType) -> list[ProcessingEvent]:
    """Return the retained events of one type."""
    return [e for e in bus.get_event_history() if e.type == event_type]


# ---------------------------------------------------------------------------
# Config store
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "Config" / "intake_config.json"


@pytest.fixture()
def config_file(config_path: Path) -> JsonConfigFile:
    return JsonConfigFile(config_path)


@pytest.fixture()
def store(config_file: JsonConfigFile) -> ConfigStoreClient:
    return ConfigStoreClient(config_file)


@pytest.fixture()
def coordinator(store: ConfigStoreClient, event_bus: EventBus) -> ConfigRepairCoordinator:
    return ConfigRepairCoordinator(store, event_bus)


@pytest.fixture()
def logs(
    store: ConfigStoreClient,
    coordinator: ConfigRepairCoordinator,
    event_bus: EventBus,
) -> LogAggregator:
    return LogAggregator(store, coordinator, event_bus)


def corrupt(path: Path, content: bytes = b"{ this is not json") -> None:
    """Overwrite the config file with invalid content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


# ---------------------------------------------------------------------------
# Mock worker
# ---------------------------------------------------------------------------


def make_status(
    is_processing: bool = True,
    current_file: str | None = None,
    processed: int = 0,
    total: int = 3,
    errors: list[str] | None = None,
) -> WorkerStatus:
    """Create a WorkerStatus with sensible defaults."""
    return WorkerStatus(
        is_processing=is_processing,
        current_file=current_file,
        processed_count=processed,
        total_count=total,
        errors=errors or [],
    )


def _make_mock_worker(**overrides: Any) -> AsyncMock:
    """Create a mock ProcessingWorker.

    All methods are AsyncMock by default. Callers can override return
    values or side effects per-test.
    """
    worker = AsyncMock()
    worker.submit_job = AsyncMock(
        return_value=SubmitAck(
            session_id="pdf_directory_1700000000000",
            immediate_result={"mode": "directory", "total_files": 3},
        )
    )
    worker.get_status = AsyncMock(return_value=make_status())
    worker.clear_session = AsyncMock()

    async def default_directory(kind: DirectoryKind) -> str:
        return f"/data/{'PDFs' if kind == DirectoryKind.INPUT else 'Resultados'}"

    worker.default_directory = AsyncMock(side_effect=default_directory)
    for name, value in overrides.items():
        setattr(worker, name, value)
    return worker


@pytest.fixture()
def mock_worker() -> AsyncMock:
    """Provide a mock ProcessingWorker for each test."""
    return _make_mock_worker()


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


async def wait_until(predicate: Any, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until it is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
