"""Application facade wiring the orchestrator components together.

The Orchestrator owns the process-wide state: one config store client, the
repair coordinator, the log aggregator, the session manager and the
directory resolver. The API layer receives a single instance at startup.

Usage:
    >>> orchestrator = Orchestrator.from_settings(settings)
    >>> await orchestrator.initialize()
    >>> handle = await orchestrator.process_directory()
    >>> await orchestrator.shutdown()
"""

from functools import partial

import structlog

from config import Settings
from config_repair import ConfigRepairCoordinator
from config_store import ConfigStoreClient, JsonConfigFile
from directory_resolver import DirectoryResolver
from errors import ConfigError, RepairError, RepairInProgressError
from events import EventBus, EventType, get_event_bus
from log_aggregator import LogAggregator
from models.schemas import (
    AppConfig,
    DirectoryKind,
    JobSpec,
    LogKind,
    RepairReport,
    RepairStatus,
    SessionHandle,
)
from session_manager import SessionManager
from worker import LocalFileBrowser, LocalWorker
from worker.protocol import FileBrowser, ProcessingWorker

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Owns and wires the processing components.

    Attributes:
        store: Client for the persisted configuration.
        worker: Processing worker.
        files: File browser for the worker's filesystem.
        event_bus: Bus shared by all components.
        coordinator: Configuration repair gate.
        logs: User-facing log aggregator.
        sessions: Single-flight session manager.
        directories: Input/output directory resolver.
        verbose: Verbose flag passed to new jobs.
    """

    def __init__(
        self,
        store: ConfigStoreClient,
        worker: ProcessingWorker,
        files: FileBrowser,
        event_bus: EventBus,
        *,
        transient_log_limit: int = 100,
        poll_interval: float = 0.5,
    ) -> None:
        self.store = store
        self.worker = worker
        self.files = files
        self.event_bus = event_bus
        self.coordinator = ConfigRepairCoordinator(store, event_bus)
        self.logs = LogAggregator(store, self.coordinator, event_bus, limit=transient_log_limit)
        self.sessions = SessionManager(worker, self.logs, event_bus, poll_interval=poll_interval)
        self.directories = DirectoryResolver(store, self.coordinator, worker, self.logs)
        self.verbose = False
        self.initialized = False
        self.coordinator.add_reload_listener(self._on_config_reloaded)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        event_bus: EventBus | None = None,
        worker: ProcessingWorker | None = None,
        files: FileBrowser | None = None,
    ) -> "Orchestrator":
        """Build an orchestrator with the local worker and JSON config file."""
        store = ConfigStoreClient(
            JsonConfigFile(settings.config_path, default_max_logs=settings.default_max_logs)
        )
        if worker is None:
            worker = LocalWorker(
                {
                    DirectoryKind.INPUT: settings.default_input_directory,
                    DirectoryKind.OUTPUT: settings.default_output_directory,
                }
            )
        return cls(
            store,
            worker,
            files or LocalFileBrowser(),
            event_bus or get_event_bus(),
            transient_log_limit=settings.transient_log_limit,
            poll_interval=settings.poll_interval_seconds,
        )

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def initialize(self) -> bool:
        """Load the configuration and resolve the working directories.

        Failures are logged, never raised, so the application always starts.

        Returns:
            True if the persisted configuration was loaded.
        """
        self.logs.append("Initializing configuration...")
        config: AppConfig | None
        try:
            config = await self.coordinator.initialize()
        except (ConfigError, RepairError) as e:
            logger.error("orchestrator_init_config_failed", error=str(e))
            self.logs.append(f"Could not load the configuration: {e}", LogKind.ERROR)
            config = None

        if config is not None:
            self.verbose = config.verbose
            self.logs.set_persistent(config.processing_logs)

        try:
            input_dir = await self.directories.resolve_with(DirectoryKind.INPUT, config)
            output_dir = await self.directories.resolve_with(DirectoryKind.OUTPUT, config)
        except OSError as e:
            logger.error("orchestrator_init_directories_failed", error=str(e))
            self.logs.append(f"Could not resolve the working directories: {e}", LogKind.ERROR)
        else:
            self.logs.append(
                f"Ready. Input: {input_dir} | Output: {output_dir} | "
                f"Verbose: {'on' if self.verbose else 'off'}",
                LogKind.SUCCESS,
            )

        self.initialized = True
        logger.info("orchestrator_initialized", config_loaded=config is not None)
        return config is not None

    async def shutdown(self) -> None:
        """Cancel any active session and wait for pending log writes."""
        await self.sessions.shutdown()
        await self.logs.flush()
        self.coordinator.remove_reload_listener(self._on_config_reloaded)
        logger.info("orchestrator_shutdown")

    async def _on_config_reloaded(self, config: AppConfig | None) -> None:
        if config is None:
            try:
                config = await self.store.load()
            except ConfigError as e:
                logger.error("config_reload_failed", error=str(e))
                return

        self.verbose = config.verbose
        self.logs.set_persistent(config.processing_logs)
        input_dir = await self.directories.resolve_with(DirectoryKind.INPUT, config)
        output_dir = await self.directories.resolve_with(DirectoryKind.OUTPUT, config)
        self.event_bus.emit(
            EventType.CONFIG_RELOADED,
            input_directory=input_dir,
            output_directory=output_dir,
            verbose=self.verbose,
        )
        logger.info("config_reloaded", input_directory=input_dir, output_directory=output_dir)

    # -----------------------------------------------------------------
    # Processing
    # -----------------------------------------------------------------

    async def _directory(self, kind: DirectoryKind) -> str:
        return self.directories.current(kind) or await self.directories.resolve(kind)

    async def process_directory(self) -> SessionHandle:
        """Process every PDF in the current input directory.

        Raises:
            SubmitError: If the job could not be started.
        """
        spec = JobSpec(
            input_path=await self._directory(DirectoryKind.INPUT),
            output_directory=await self._directory(DirectoryKind.OUTPUT),
            verbose=self.verbose,
        )
        return await self.sessions.submit(spec)

    async def process_file(self, path: str) -> SessionHandle:
        """Process a single PDF file into the current output directory.

        Raises:
            SubmitError: If the job could not be started.
        """
        spec = JobSpec(
            input_path=path,
            output_directory=await self._directory(DirectoryKind.OUTPUT),
            verbose=self.verbose,
        )
        return await self.sessions.submit(spec)

    async def cancel(self) -> bool:
        return await self.sessions.cancel()

    # -----------------------------------------------------------------
    # Configuration
    # -----------------------------------------------------------------

    async def current_config(self) -> AppConfig:
        """Load the persisted configuration (repairing once if corrupted)."""
        return await self.coordinator.load_config()

    async def set_verbose(self, verbose: bool) -> None:
        """Change and persist the verbose flag.

        Raises:
            ConfigError: If the flag could not be persisted.
            RepairError: If persisting needed a repair that failed.
        """
        self.verbose = verbose
        try:
            await self.coordinator.run_with_repair(partial(self.store.update_verbose, verbose))
        except (ConfigError, RepairError) as e:
            logger.error("verbose_save_failed", verbose=verbose, error=str(e))
            self.logs.append(f"Could not save verbose mode: {e}", LogKind.ERROR)
            raise
        self.logs.append(f"Verbose mode {'enabled' if verbose else 'disabled'}", LogKind.SUCCESS)

    async def set_directory(self, kind: DirectoryKind, path: str) -> bool:
        """Change and persist a working directory; see DirectoryResolver.update."""
        return await self.directories.update(kind, path)

    async def reset_directories(self) -> tuple[str, str]:
        """Restore and persist the worker's default directories; see DirectoryResolver."""
        return await self.directories.reset_to_defaults()

    async def repair_config(self) -> RepairReport:
        """Run a manual configuration repair.

        Raises:
            RepairInProgressError: If another repair is already running.
            UnrecoverableRepairError: If the repair failed.
        """
        self.logs.append("Manual configuration repair requested")
        report = await self.coordinator.repair()
        if report.status == RepairStatus.SKIPPED:
            self.logs.append("A configuration repair is already running")
            raise RepairInProgressError("A configuration repair is already running")
        return report

    async def list_input_files(self) -> list[str]:
        """List the PDF files below the current input directory.

        Raises:
            FileNotFoundError: If the input directory does not exist.
        """
        return await self.files.list_files(await self._directory(DirectoryKind.INPUT), ".pdf")

    async def list_output_files(self) -> list[str]:
        """List the JSON results below the current output directory.

        Raises:
            FileNotFoundError: If the output directory does not exist.
        """
        return await self.files.list_files(await self._directory(DirectoryKind.OUTPUT), ".json")
