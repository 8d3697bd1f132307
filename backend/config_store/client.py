"""Async client for the persisted application configuration.

Every operation is a whole-document round trip: load, mutate in memory,
save. There is no field-level update primitive at the storage boundary.

Every write (mutations, ``save``, ``initialize`` and ``repair``) runs under
one asyncio lock, so a background log mirror can never save a document it
loaded before another write and roll that write back.
"""

import asyncio
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

import structlog

from config_store.backend import JsonConfigFile
from models.schemas import AppConfig, LogEntry, RepairReport

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ConfigStoreClient:
    """Typed async access to the AppConfig document.

    File I/O runs on the default executor, so each call is a suspension
    point for the caller.

    Attributes:
        backend: The synchronous file backend.
    """

    def __init__(self, backend: JsonConfigFile) -> None:
        self.backend = backend
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.backend.path

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, partial(fn, *args))

    async def initialize(self) -> AppConfig:
        """Load the configuration, creating a default one on first run.

        Raises:
            ConfigError: If an existing file cannot be loaded.
        """
        async with self._write_lock:
            exists = await self._run(self.backend.exists)
            if exists:
                return await self.load()

            config = self.backend.default_config()
            await self._write(config)
        logger.info("config_created", path=str(self.path))
        return config

    async def load(self) -> AppConfig:
        """Load the configuration document.

        Raises:
            CorruptedConfigError: If the file is unreadable or malformed.
            ConfigIOError: On any other filesystem failure.
        """
        return await self._run(self.backend.read)

    async def save(self, config: AppConfig) -> None:
        """Save the configuration, trimming logs to ``max_logs`` first."""
        async with self._write_lock:
            await self._write(config)

    async def _write(self, config: AppConfig) -> None:
        config.trim_logs()
        await self._run(self.backend.write, config)

    async def _mutate(self, mutation: Callable[[AppConfig], None]) -> AppConfig:
        async with self._write_lock:
            config = await self.load()
            mutation(config)
            config.touch()
            await self._write(config)
        return config

    async def update_directories(
        self,
        input_directory: str | None = None,
        output_directory: str | None = None,
    ) -> AppConfig:
        """Persist new working directories. ``None`` leaves a value unchanged."""

        def apply(config: AppConfig) -> None:
            if input_directory is not None:
                config.last_input_directory = input_directory
            if output_directory is not None:
                config.last_output_directory = output_directory

        config = await self._mutate(apply)
        logger.info(
            "config_directories_updated",
            input_directory=config.last_input_directory,
            output_directory=config.last_output_directory,
        )
        return config

    async def update_verbose(self, verbose: bool) -> AppConfig:
        def apply(config: AppConfig) -> None:
            config.verbose = verbose

        config = await self._mutate(apply)
        logger.info("config_verbose_updated", verbose=verbose)
        return config

    async def append_log(self, entry: LogEntry) -> AppConfig:
        """Append one entry to the persisted log and trim to ``max_logs``."""

        def apply(config: AppConfig) -> None:
            config.processing_logs.append(entry)
            config.trim_logs()

        return await self._mutate(apply)

    async def clear_logs(self) -> AppConfig:
        def apply(config: AppConfig) -> None:
            config.processing_logs.clear()

        config = await self._mutate(apply)
        logger.info("config_logs_cleared")
        return config

    async def repair(self) -> RepairReport:
        """Run the backend repair primitive.

        Raises:
            ConfigIOError: If a valid document could not be written.
        """
        async with self._write_lock:
            return await self._run(self.backend.repair)
