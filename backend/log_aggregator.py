"""User-facing processing log.

The LogAggregator keeps a transient ring of the most recent entries and
mirrors the important ones into the persisted configuration on a best-effort
basis. It also holds the reentrancy guard that keeps logging failures from
cascading:

- ``append`` is synchronous and never raises.
- ``progress`` entries are never persisted, and an entry identical to the
  last transient ``progress`` entry is discarded.
- Mirroring is suppressed while a configuration repair is running.
- A failed mirror is reported to structlog only; it never appends another
  entry, which is the loop the guard exists to prevent.
- A corrupted-file failure schedules at most one repair through the
  ConfigRepairCoordinator, deferred past the current call stack.

Usage:
    >>> logs = LogAggregator(store, coordinator, event_bus)
    >>> logs.append("Processing complete", LogKind.SUCCESS, session_id="s1")
    >>> await logs.flush()  # wait for pending mirror writes
"""

import asyncio
from collections import deque

import structlog

from config_repair import ConfigRepairCoordinator
from config_store import ConfigStoreClient
from errors import ConfigError, RepairError
from events import EventBus, EventType
from models.schemas import LogEntry, LogKind

logger = structlog.get_logger(__name__)


class LogAggregator:
    """Transient log ring with best-effort persistence.

    Persisted writes are serialized through a FIFO lock so that each
    load-mutate-save round trip completes before the next one starts, and
    entries reach the store in the order ``append`` was called.

    Attributes:
        store: Client for the persisted configuration.
        coordinator: The repair gate; also provides the repair flag.
        event_bus: Bus receiving a LOG_APPENDED event per accepted entry.
        limit: Capacity of the transient ring.
        mirror_failures: Number of failed persistence attempts.
    """

    def __init__(
        self,
        store: ConfigStoreClient,
        coordinator: ConfigRepairCoordinator,
        event_bus: EventBus,
        limit: int = 100,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.limit = limit
        self.mirror_failures = 0
        self._entries: deque[LogEntry] = deque(maxlen=limit)
        self._persistent: list[LogEntry] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()
        self._repair_scheduled = False
        coordinator.attach_log_sink(self.append)

    # -----------------------------------------------------------------
    # Transient log
    # -----------------------------------------------------------------

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        message: str,
        kind: LogKind = LogKind.INFO,
        session_id: str | None = None,
    ) -> LogEntry | None:
        """Record an entry in the transient log and mirror it if persistable.

        Returns:
            The new entry, or None if it duplicated the last progress entry.
        """
        if kind == LogKind.PROGRESS and self._entries:
            last = self._entries[-1]
            if last.kind == LogKind.PROGRESS and last.message == message:
                return None

        entry = LogEntry(message=message, kind=kind, session_id=session_id)
        self._entries.append(entry)
        self.event_bus.emit(
            EventType.LOG_APPENDED,
            session_id=session_id,
            message=message,
            kind=kind.value,
            timestamp=entry.timestamp,
        )

        if kind != LogKind.PROGRESS and not self.coordinator.repair_in_progress:
            self._schedule_mirror(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    # -----------------------------------------------------------------
    # Persisted log
    # -----------------------------------------------------------------

    @property
    def persistent_logs(self) -> list[LogEntry]:
        return list(self._persistent)

    def set_persistent(self, entries: list[LogEntry]) -> None:
        """Replace the cached persisted log (after a config load)."""
        self._persistent = list(entries)

    async def load_persistent(self) -> list[LogEntry]:
        """Reload the persisted log from the store (repairing once if corrupted)."""
        config = await self.coordinator.load_config()
        self._persistent = list(config.processing_logs)
        return self.persistent_logs

    async def clear_persistent(self) -> None:
        """Clear the persisted log history.

        Entries appended before the call are mirrored first, so none of them
        reappear after the clear.

        Raises:
            ConfigError: If the store could not be updated.
        """
        await self._drain_mirrors()
        generation = self.coordinator.repair_generation
        try:
            async with self._write_lock:
                await self.store.clear_logs()
        except ConfigError as e:
            logger.error("persistent_log_clear_failed", error=str(e))
            self.append(f"Could not clear log history: {e}", LogKind.ERROR)
            if self.coordinator.is_corruption(e):
                self._request_repair(generation)
            raise
        self._persistent = []
        self.append("Log history cleared", LogKind.SUCCESS)

    async def _drain_mirrors(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule_mirror(self, entry: LogEntry) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("log_mirror_skipped_no_loop", message=entry.message)
            return

        task = loop.create_task(self._mirror(entry, self.coordinator.repair_generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _mirror(self, entry: LogEntry, generation: int) -> None:
        async with self._write_lock:
            if self.coordinator.repair_in_progress:
                logger.debug("log_mirror_skipped_during_repair", message=entry.message)
                return

            try:
                config = await self.store.append_log(entry)
            except Exception as e:
                # Never append here: a failing store would feed itself.
                self.mirror_failures += 1
                logger.warning(
                    "persistent_log_failed",
                    error=str(e),
                    kind=entry.kind.value,
                    message=entry.message,
                )
                if self.coordinator.is_corruption(e):
                    self._request_repair(generation)
                return

            self._persistent = list(config.processing_logs)

    # -----------------------------------------------------------------
    # Repair scheduling
    # -----------------------------------------------------------------

    def _request_repair(self, generation: int) -> None:
        """Schedule one repair for a corruption observed at ``generation``."""
        if self._repair_scheduled:
            logger.debug("config_repair_already_scheduled")
            return
        if self.coordinator.repair_in_progress:
            logger.debug("config_repair_already_running")
            return
        if self.coordinator.repair_generation != generation:
            # A repair started after this write was issued; the failure is stale.
            logger.debug("config_repair_stale_detection", generation=generation)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("config_repair_not_scheduled_no_loop")
            return

        self._repair_scheduled = True
        logger.info("config_repair_scheduled")
        loop.call_soon(self._launch_repair, generation)

    def _launch_repair(self, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self._run_repair(generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_repair(self, generation: int) -> None:
        try:
            if self.coordinator.repair_generation != generation:
                logger.debug("scheduled_config_repair_superseded", generation=generation)
                return
            await self.coordinator.repair()
        except RepairError as e:
            logger.error("scheduled_config_repair_failed", error=str(e))
        finally:
            self._repair_scheduled = False

    async def flush(self) -> None:
        """Wait until all pending mirror writes and scheduled repairs finish."""
        while self._pending or self._repair_scheduled:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            # Let deferred callbacks (call_soon) enqueue their tasks.
            await asyncio.sleep(0)
