"""JSON file backend for the persisted application configuration.

The backend is synchronous; ConfigStoreClient moves every call onto the
default executor. Failures are raised as ConfigError subclasses with a
structured kind:

- CorruptedConfigError: invalid UTF-8, malformed JSON, trailing data or a
  document that does not match the AppConfig schema.
- ConfigIOError: anything else the filesystem reports.
"""

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from errors import ConfigIOError, CorruptedConfigError
from models.schemas import AppConfig, RepairReport, RepairStatus

logger = structlog.get_logger(__name__)


class JsonConfigFile:
    """Reads and writes one AppConfig document as pretty-printed JSON.

    Attributes:
        path: Location of the configuration file.
        default_max_logs: ``max_logs`` used for freshly created documents.
    """

    def __init__(self, path: Path | str, default_max_logs: int = 1000) -> None:
        self.path = Path(path)
        self.default_max_logs = default_max_logs

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.backup")

    def exists(self) -> bool:
        return self.path.is_file()

    def default_config(self) -> AppConfig:
        return AppConfig(max_logs=self.default_max_logs)

    def read(self) -> AppConfig:
        """Load and validate the configuration document.

        Raises:
            CorruptedConfigError: If the file content cannot be decoded or
                does not describe a valid AppConfig.
            ConfigIOError: If the file cannot be read.
        """
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise ConfigIOError(
                f"Could not read configuration file: {e.strerror or e}",
                path=self.path,
                detail=str(e),
            ) from e

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptedConfigError(
                "Configuration file contains invalid UTF-8 data",
                path=self.path,
                detail=str(e),
            ) from e

        try:
            return AppConfig.model_validate_json(text)
        except ValidationError as e:
            raise CorruptedConfigError(
                "Configuration file could not be deserialized",
                path=self.path,
                detail=str(e),
            ) from e

    def write(self, config: AppConfig) -> None:
        """Persist the configuration document atomically.

        Raises:
            ConfigIOError: If the file cannot be written.
        """
        content = config.model_dump_json(indent=2)
        try:
            self._replace(content.encode("utf-8"))
        except OSError as e:
            raise ConfigIOError(
                f"Could not write configuration file: {e.strerror or e}",
                path=self.path,
                detail=str(e),
            ) from e
        logger.debug("config_file_written", path=str(self.path), bytes=len(content))

    def repair(self) -> RepairReport:
        """Diagnose the configuration file and rewrite it when unusable.

        A readable, valid file is left untouched. An unreadable or invalid
        file is copied to ``<name>.backup`` (best effort) and replaced with
        defaults. A missing file is created with defaults.

        Returns:
            A report whose ``details`` are human-readable diagnostic lines.

        Raises:
            ConfigIOError: If the configuration folder or the new document
                cannot be written.
        """
        details = [f"Configuration directory: {self.path.parent}", f"Configuration file: {self.path}"]
        backup_path: str | None = None

        if self.path.exists():
            details.append("Configuration file exists")
            try:
                config = self.read()
            except (CorruptedConfigError, ConfigIOError) as e:
                details.append(f"Configuration file unusable: {e}")
                backup_path = self._backup(details)
            else:
                details.append("Configuration file is valid, no changes made")
                return RepairReport(status=RepairStatus.REPAIRED, details=details, config=config)
        else:
            details.append("Configuration file does not exist")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigIOError(
                    f"Could not create configuration directory: {e.strerror or e}",
                    path=self.path,
                    detail=str(e),
                ) from e

        config = self.default_config()
        self.write(config)
        details.append("New default configuration written")
        logger.info("config_file_rebuilt", path=str(self.path), backup_path=backup_path)
        return RepairReport(
            status=RepairStatus.REPAIRED,
            details=details,
            backup_path=backup_path,
            config=config,
        )

    def _replace(self, data: bytes) -> None:
        # Readers see either the old document or the new one, never a partial write.
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = tempfile.NamedTemporaryFile(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp", delete=False
        )
        tmp_path = Path(tmp.name)
        try:
            with tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise
        self._sync_folder()

    def _sync_folder(self) -> None:
        if os.name != "posix":
            return
        try:
            fd = os.open(self.path.parent, os.O_RDONLY)
        except OSError as e:
            logger.debug("config_folder_sync_skipped", path=str(self.path.parent), error=str(e))
            return
        try:
            os.fsync(fd)
        except OSError as e:
            logger.debug("config_folder_sync_skipped", path=str(self.path.parent), error=str(e))
        finally:
            os.close(fd)

    def _backup(self, details: list[str]) -> str | None:
        try:
            shutil.copyfile(self.path, self.backup_path)
        except OSError as e:
            details.append(f"Could not back up corrupted file: {e}")
            logger.warning("config_backup_failed", path=str(self.path), error=str(e))
            return None
        details.append(f"Backup written to {self.backup_path}")
        return str(self.backup_path)
