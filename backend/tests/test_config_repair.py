"""Tests for config_repair.py -- the configuration repair gate.

Covers structured corruption classification, the single repair flag,
the one-shot repair/retry in load_config and initialize, and reload
notification.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config_repair import ConfigRepairCoordinator
from config_store import ConfigStoreClient
from errors import (
    ConfigIOError,
    CorruptedConfigError,
    UnrecoverableRepairError,
)
from events.bus import EventBus
from events.types import EventType
from models.schemas import AppConfig, LogKind, RepairStatus
from tests.conftest import corrupt, events_of

# =========================================================================
# Classification
# =========================================================================


class TestIsCorruption:
    def test_corrupted_file_on_store_path(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        error = CorruptedConfigError("bad", path=config_path)
        assert coordinator.is_corruption(error) is True

    def test_io_error_is_not_corruption(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        assert coordinator.is_corruption(ConfigIOError("denied", path=config_path)) is False

    def test_other_file_is_not_corruption(
        self, coordinator: ConfigRepairCoordinator, tmp_path: Path
    ) -> None:
        error = CorruptedConfigError("bad", path=tmp_path / "other.json")
        assert coordinator.is_corruption(error) is False

    def test_message_text_is_ignored(self, coordinator: ConfigRepairCoordinator) -> None:
        assert coordinator.is_corruption(ValueError("failed to deserialize config")) is False


# =========================================================================
# repair()
# =========================================================================


class TestRepair:
    async def test_repair_corrupted_file(
        self,
        coordinator: ConfigRepairCoordinator,
        store: ConfigStoreClient,
        config_path: Path,
        event_bus: EventBus,
    ) -> None:
        corrupt(config_path)
        report = await coordinator.repair()

        assert report.status == RepairStatus.REPAIRED
        assert coordinator.repair_in_progress is False
        assert coordinator.repair_generation == 1
        assert isinstance(await store.load(), AppConfig)
        assert len(events_of(event_bus, EventType.CONFIG_REPAIR_STARTED)) == 1
        assert len(events_of(event_bus, EventType.CONFIG_REPAIRED)) == 1

    async def test_repair_while_running_is_skipped(
        self, store: ConfigStoreClient, event_bus: EventBus
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        real_repair = store.repair

        async def slow_repair():
            started.set()
            await release.wait()
            return await real_repair()

        store.repair = slow_repair  # type: ignore[method-assign]
        coordinator = ConfigRepairCoordinator(store, event_bus)

        first = asyncio.create_task(coordinator.repair())
        await started.wait()
        second = await coordinator.repair()
        release.set()
        first_report = await first

        assert second.status == RepairStatus.SKIPPED
        assert first_report.status == RepairStatus.REPAIRED
        assert coordinator.repair_generation == 1
        assert len(events_of(event_bus, EventType.CONFIG_REPAIR_SKIPPED)) == 1

    async def test_skipped_repair_does_not_touch_store(
        self, coordinator: ConfigRepairCoordinator
    ) -> None:
        coordinator.store = AsyncMock(spec=ConfigStoreClient)
        coordinator._repair_in_progress = True
        report = await coordinator.repair()
        assert report.status == RepairStatus.SKIPPED
        coordinator.store.repair.assert_not_called()

    async def test_repair_failure_is_unrecoverable(
        self, store: ConfigStoreClient, event_bus: EventBus, config_path: Path
    ) -> None:
        store.repair = AsyncMock(  # type: ignore[method-assign]
            side_effect=ConfigIOError("disk full", path=config_path)
        )
        coordinator = ConfigRepairCoordinator(store, event_bus)
        messages: list[tuple[str, LogKind]] = []
        coordinator.attach_log_sink(lambda m, k: messages.append((m, k)))

        with pytest.raises(UnrecoverableRepairError):
            await coordinator.repair()

        assert coordinator.repair_in_progress is False
        assert len(events_of(event_bus, EventType.CONFIG_REPAIR_FAILED)) == 1
        assert messages[-1][1] == LogKind.ERROR
        store.repair.assert_awaited_once()

    async def test_repair_logs_at_most_ten_detail_lines(
        self, store: ConfigStoreClient, event_bus: EventBus
    ) -> None:
        report = await store.repair()
        report.details = [f"line {i}" for i in range(15)]
        store.repair = AsyncMock(return_value=report)  # type: ignore[method-assign]
        coordinator = ConfigRepairCoordinator(store, event_bus)
        messages: list[str] = []
        coordinator.attach_log_sink(lambda m, k: messages.append(m))

        await coordinator.repair()

        detail_lines = [m for m in messages if m.startswith("  line")]
        assert len(detail_lines) == 10

    async def test_reload_listener_receives_repaired_config(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        corrupt(config_path)
        listener = AsyncMock()
        coordinator.add_reload_listener(listener)
        await coordinator.repair()
        listener.assert_awaited_once()
        assert isinstance(listener.await_args.args[0], AppConfig)

    async def test_removed_listener_not_called(
        self, coordinator: ConfigRepairCoordinator
    ) -> None:
        listener = AsyncMock()
        coordinator.add_reload_listener(listener)
        coordinator.remove_reload_listener(listener)
        await coordinator.repair()
        listener.assert_not_awaited()


# =========================================================================
# load_config() / initialize()
# =========================================================================


class TestLoadWithRepair:
    async def test_load_repairs_once_and_retries(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        corrupt(config_path)
        config = await coordinator.load_config()
        assert isinstance(config, AppConfig)
        assert coordinator.repair_generation == 1

    async def test_retry_failure_does_not_repair_again(
        self, store: ConfigStoreClient, event_bus: EventBus, config_path: Path
    ) -> None:
        store.load = AsyncMock(  # type: ignore[method-assign]
            side_effect=CorruptedConfigError("still bad", path=config_path)
        )
        coordinator = ConfigRepairCoordinator(store, event_bus)

        with pytest.raises(CorruptedConfigError):
            await coordinator.load_config()

        assert store.load.await_count == 2
        assert coordinator.repair_generation == 1

    async def test_io_error_propagates_without_repair(
        self, store: ConfigStoreClient, event_bus: EventBus, config_path: Path
    ) -> None:
        store.load = AsyncMock(  # type: ignore[method-assign]
            side_effect=ConfigIOError("denied", path=config_path)
        )
        coordinator = ConfigRepairCoordinator(store, event_bus)

        with pytest.raises(ConfigIOError):
            await coordinator.load_config()
        assert coordinator.repair_generation == 0

    async def test_load_during_running_repair_waits_for_it(
        self, store: ConfigStoreClient, event_bus: EventBus, config_path: Path
    ) -> None:
        corrupt(config_path)
        started = asyncio.Event()
        release = asyncio.Event()
        real_repair = store.repair

        async def slow_repair():
            started.set()
            await release.wait()
            return await real_repair()

        store.repair = slow_repair  # type: ignore[method-assign]
        coordinator = ConfigRepairCoordinator(store, event_bus)

        background = asyncio.create_task(coordinator.repair())
        await started.wait()
        load = asyncio.create_task(coordinator.load_config())
        await asyncio.sleep(0.01)
        assert not load.done()

        release.set()
        config = await load
        await background

        assert isinstance(config, AppConfig)
        assert coordinator.repair_generation == 1

    async def test_initialize_repairs_corrupted_file(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        corrupt(config_path, b"\x00\x01\x02")
        config = await coordinator.initialize()
        assert config.processing_logs == []
        assert config_path.with_name("intake_config.json.backup").is_file()

    async def test_initialize_missing_file_needs_no_repair(
        self, coordinator: ConfigRepairCoordinator, config_path: Path
    ) -> None:
        await coordinator.initialize()
        assert config_path.is_file()
        assert coordinator.repair_generation == 0
