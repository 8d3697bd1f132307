"""Configuration repair coordinator.

This module owns the single gate through which every component triggers a
repair of the persisted configuration. A repair is guarded by one boolean
flag, ``repair_in_progress``: a request made while it is set returns a
"skipped" report instead of queueing a second repair. Repair failures are
terminal for that attempt and are never retried automatically.

Usage:
    >>> coordinator = ConfigRepairCoordinator(store, event_bus)
    >>> config = await coordinator.load_config()  # repairs once on corruption
    >>> report = await coordinator.repair()
    >>> report.status
    <RepairStatus.REPAIRED: 'repaired'>
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import structlog

from config_store import ConfigStoreClient
from errors import (
    ConfigError,
    ConfigErrorKind,
    UnrecoverableRepairError,
)
from events import EventBus, EventType
from models.schemas import AppConfig, LogKind, RepairReport, RepairStatus

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LogSink = Callable[[str, LogKind], object]
ReloadListener = Callable[[AppConfig | None], Awaitable[None]]


def _same_file(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


class ConfigRepairCoordinator:
    """Detects configuration corruption and drives bounded repairs.

    The ``repair_in_progress`` flag is checked and set before the first
    suspension point of ``repair()``, so on a single event loop no two
    repairs can overlap. A truly parallel caller would need a lock here.

    Attributes:
        store: Client for the persisted configuration.
        event_bus: Bus receiving repair lifecycle events.
        repair_generation: Incremented each time a repair starts. Lets
            callers tell whether a repair ran since they observed an error.
    """

    MAX_DETAIL_LINES = 10

    def __init__(self, store: ConfigStoreClient, event_bus: EventBus) -> None:
        self.store = store
        self.event_bus = event_bus
        self.repair_generation = 0
        self._repair_in_progress = False
        self._repair_finished: asyncio.Event | None = None
        self._log_sink: LogSink | None = None
        self._reload_listeners: list[ReloadListener] = []

    @property
    def repair_in_progress(self) -> bool:
        return self._repair_in_progress

    def attach_log_sink(self, sink: LogSink) -> None:
        """Route user-facing repair messages to ``sink`` (the log aggregator)."""
        self._log_sink = sink

    def add_reload_listener(self, listener: ReloadListener) -> None:
        self._reload_listeners.append(listener)

    def remove_reload_listener(self, listener: ReloadListener) -> None:
        if listener in self._reload_listeners:
            self._reload_listeners.remove(listener)

    def _log(self, message: str, kind: LogKind = LogKind.INFO) -> None:
        if self._log_sink is not None:
            self._log_sink(message, kind)

    def is_corruption(self, error: BaseException) -> bool:
        """Return True if ``error`` means the configuration file itself is unusable.

        Only a ConfigError classified as a corrupted file *and* referring to
        this store's configuration file qualifies. Everything else is a plain
        I/O failure and is left to the caller.
        """
        if not isinstance(error, ConfigError):
            return False
        if error.kind != ConfigErrorKind.CORRUPTED_FILE:
            return False
        return _same_file(error.path, self.store.path)

    async def repair(self) -> RepairReport:
        """Run one repair of the configuration file.

        Returns:
            A ``repaired`` report, or a ``skipped`` report when another
            repair is already running (no store mutation happens then).

        Raises:
            UnrecoverableRepairError: If the store could not rewrite a valid
                configuration. The flag is cleared and nothing is retried.
        """
        if self._repair_in_progress:
            logger.warning("config_repair_skipped", reason="already_in_progress")
            self.event_bus.emit(EventType.CONFIG_REPAIR_SKIPPED)
            return RepairReport(
                status=RepairStatus.SKIPPED,
                details=["Repair already in progress"],
            )

        self._repair_in_progress = True
        self.repair_generation += 1
        finished = asyncio.Event()
        self._repair_finished = finished
        try:
            logger.info("config_repair_started", path=str(self.store.path))
            self.event_bus.emit(EventType.CONFIG_REPAIR_STARTED, path=str(self.store.path))
            self._log("Running automatic configuration repair...")

            try:
                report = await self.store.repair()
            except (ConfigError, OSError) as e:
                logger.error("config_repair_failed", path=str(self.store.path), error=str(e))
                self.event_bus.emit(EventType.CONFIG_REPAIR_FAILED, error=str(e))
                self._log(f"Configuration repair failed: {e}", LogKind.ERROR)
                raise UnrecoverableRepairError(f"Configuration repair failed: {e}") from e

            self._log("Configuration repaired", LogKind.SUCCESS)
            self._log_details(report.details)
            logger.info(
                "config_repair_complete",
                path=str(self.store.path),
                backup_path=report.backup_path,
            )
            self.event_bus.emit(
                EventType.CONFIG_REPAIRED,
                details=report.details,
                backup_path=report.backup_path,
            )
        finally:
            self._repair_in_progress = False
            finished.set()

        await self._notify_reload(report.config)
        return report

    def _log_details(self, details: list[str]) -> None:
        for line in details[: self.MAX_DETAIL_LINES]:
            if line.strip():
                self._log(f"  {line.strip()}")
        if len(details) > self.MAX_DETAIL_LINES:
            self._log("  ... (full details in the application log)")
            logger.info("config_repair_details", details=details)

    async def _notify_reload(self, config: AppConfig | None) -> None:
        for listener in list(self._reload_listeners):
            try:
                await listener(config)
            except Exception as e:
                logger.error("config_reload_listener_failed", error=str(e))

    async def run_with_repair(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a store operation, repairing and retrying once on corruption.

        If another repair is already running, this waits for it instead of
        starting a second one. The retry runs outside of any repair; if it
        fails again the error propagates and no further repair is attempted.

        Raises:
            ConfigError: Plain I/O failures, or a failure of the retry.
            UnrecoverableRepairError: If the repair itself failed.
        """
        try:
            return await operation()
        except ConfigError as e:
            if not self.is_corruption(e):
                raise
            logger.warning("config_corruption_detected", path=str(e.path), detail=e.detail)
            self._log(f"Corrupted configuration detected: {e}", LogKind.ERROR)

        report = await self.repair()
        if report.status == RepairStatus.SKIPPED:
            await self.wait_for_repair()

        return await operation()

    async def wait_for_repair(self) -> None:
        """Return once the repair running now (if any) has finished."""
        finished = self._repair_finished
        if self._repair_in_progress and finished is not None:
            await finished.wait()

    async def load_config(self) -> AppConfig:
        """Load the configuration, repairing once if it is corrupted."""
        return await self.run_with_repair(self.store.load)

    async def initialize(self) -> AppConfig:
        """Initialize the configuration store, repairing once if corrupted."""
        return await self.run_with_repair(self.store.initialize)
