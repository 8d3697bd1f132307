"""Resolution and persistence of the input and output working directories.

A directory comes from the persisted configuration when one was saved
there, otherwise from the worker's default folder. Paths are not checked
for existence; the worker reports missing inputs when a job is submitted.
"""

from functools import partial

import structlog

from config_repair import ConfigRepairCoordinator
from config_store import ConfigStoreClient
from errors import ConfigError, RepairError
from log_aggregator import LogAggregator
from models.schemas import AppConfig, DirectoryKind, LogKind
from worker.protocol import ProcessingWorker

logger = structlog.get_logger(__name__)


def persisted_directory(config: AppConfig, kind: DirectoryKind) -> str | None:
    if kind == DirectoryKind.INPUT:
        return config.last_input_directory
    return config.last_output_directory


class DirectoryResolver:
    """Tracks the current input and output directories.

    Attributes:
        store: Client for the persisted configuration.
        coordinator: Repair gate used for every store access.
        worker: Supplies default directories.
        logs: User-facing log aggregator.
    """

    def __init__(
        self,
        store: ConfigStoreClient,
        coordinator: ConfigRepairCoordinator,
        worker: ProcessingWorker,
        logs: LogAggregator,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.worker = worker
        self.logs = logs
        self._current: dict[DirectoryKind, str] = {}

    def current(self, kind: DirectoryKind) -> str | None:
        """Return the last resolved or updated directory, if any."""
        return self._current.get(kind)

    async def resolve(self, kind: DirectoryKind) -> str:
        """Resolve ``kind`` from the persisted config, or the worker default.

        An unreadable configuration is logged and treated as having no
        saved directory.
        """
        try:
            config = await self.coordinator.load_config()
        except (ConfigError, RepairError) as e:
            logger.warning("directory_config_unavailable", kind=kind.value, error=str(e))
            self.logs.append(f"Could not read the saved {kind.value} directory: {e}", LogKind.ERROR)
            config = None
        return await self.resolve_with(kind, config)

    async def resolve_with(self, kind: DirectoryKind, config: AppConfig | None) -> str:
        """Resolve ``kind`` against an already loaded configuration."""
        saved = persisted_directory(config, kind) if config is not None else None
        if saved:
            self._current[kind] = saved
            self.logs.append(f"Using saved {kind.value} directory: {saved}")
            logger.info("directory_resolved", kind=kind.value, source="config", path=saved)
            return saved

        default = await self.worker.default_directory(kind)
        self._current[kind] = default
        self.logs.append(f"Using default {kind.value} directory: {default}")
        logger.info("directory_resolved", kind=kind.value, source="worker_default", path=default)
        return default

    async def update(self, kind: DirectoryKind, path: str) -> bool:
        """Persist a manual directory change and verify it was saved.

        Returns:
            True if the reloaded configuration holds ``path``, False if it
            holds something else (logged as an error entry).

        Raises:
            ConfigError: If the change could not be persisted.
            RepairError: If persisting needed a repair that failed.
        """
        self._current[kind] = path
        if kind == DirectoryKind.INPUT:
            operation = partial(self.store.update_directories, input_directory=path)
        else:
            operation = partial(self.store.update_directories, output_directory=path)

        try:
            await self.coordinator.run_with_repair(operation)
        except (ConfigError, RepairError) as e:
            logger.error("directory_save_failed", kind=kind.value, path=path, error=str(e))
            self.logs.append(f"Could not save the {kind.value} directory: {e}", LogKind.ERROR)
            raise

        self.logs.append(f"{kind.value.capitalize()} directory set to: {path}", LogKind.SUCCESS)

        config = await self.coordinator.load_config()
        saved = persisted_directory(config, kind)
        if saved != path:
            logger.error("directory_save_mismatch", kind=kind.value, expected=path, found=saved)
            self.logs.append(
                f"Saved {kind.value} directory does not match: expected {path}, found {saved}",
                LogKind.ERROR,
            )
            return False
        return True

    async def reset_to_defaults(self) -> tuple[str, str]:
        """Persist the worker's default input and output directories.

        Returns:
            The restored ``(input, output)`` directories.

        Raises:
            ConfigError: If the directories could not be persisted.
            RepairError: If persisting needed a repair that failed.
        """
        input_dir = await self.worker.default_directory(DirectoryKind.INPUT)
        output_dir = await self.worker.default_directory(DirectoryKind.OUTPUT)
        self._current[DirectoryKind.INPUT] = input_dir
        self._current[DirectoryKind.OUTPUT] = output_dir

        operation = partial(
            self.store.update_directories,
            input_directory=input_dir,
            output_directory=output_dir,
        )
        try:
            await self.coordinator.run_with_repair(operation)
        except (ConfigError, RepairError) as e:
            logger.error("directory_reset_failed", error=str(e))
            self.logs.append(f"Could not restore the default directories: {e}", LogKind.ERROR)
            raise

        self.logs.append("Directories restored to defaults", LogKind.SUCCESS)
        self.logs.append(f"  Input: {input_dir}")
        self.logs.append(f"  Output: {output_dir}")
        logger.info("directories_reset", input_directory=input_dir, output_directory=output_dir)
        return input_dir, output_dir
