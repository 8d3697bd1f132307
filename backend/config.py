"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the document
intake backend. All settings can be overridden via environment variables or
a .env file.
"""

import json
import logging
from pathlib import Path
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        data_root: Root folder holding the PDF, result and config folders.
        config_dir: Folder for the persisted configuration document. Defaults
            to ``<data_root>/Config`` when empty.
        config_filename: File name of the persisted configuration document.
        input_subdir: Folder under ``data_root`` used as the default input.
        output_subdir: Folder under ``data_root`` used as the default output.
        poll_interval_ms: Cadence of the processing status ticker.
        transient_log_limit: Capacity of the in-memory log ring.
        default_max_logs: ``max_logs`` written into fresh configurations.
        event_queue_size: Capacity of each event bus subscriber queue.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Storage layout
    data_root: str = "./Database"
    config_dir: str = ""
    config_filename: str = "intake_config.json"
    input_subdir: str = "PDFs"
    output_subdir: str = "Resultados"

    # Processing
    poll_interval_ms: int = 500
    transient_log_limit: int = 100
    default_max_logs: int = 1000
    event_queue_size: int = 1000

    # Server Configuration
    backend_port: int = 8000
    frontend_port: int = 3000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def config_path(self) -> Path:
        """Full path of the persisted configuration document."""
        base = Path(self.config_dir) if self.config_dir else Path(self.data_root) / "Config"
        return base / self.config_filename

    @property
    def default_input_directory(self) -> str:
        return str(Path(self.data_root) / self.input_subdir)

    @property
    def default_output_directory(self) -> str:
        return str(Path(self.data_root) / self.output_subdir)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
