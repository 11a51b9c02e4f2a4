"""Logging setup shared by the curses app and the quick-entry CLI."""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass
class LoggingConfig:
    """Configuration settings for application logging."""

    level: str = "INFO"
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_to_file: bool = True
    log_to_console: bool = True
    log_file_path: Path = Path("logs/moneywise.log")
    max_file_size_mb: int = 5
    backup_count: int = 3

    @classmethod
    def from_environment(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_to_file=os.getenv("LOG_TO_FILE", "true").lower() == "true",
            log_file_path=Path(os.getenv("LOG_FILE_PATH", "logs/moneywise.log")),
        )


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """Configure the root logger.

    The curses UI owns the terminal, so it passes a config with
    ``log_to_console=False`` and only the rotating file handler is installed.
    """
    if config is None:
        config = LoggingConfig.from_environment()

    level = logging.DEBUG if verbose else getattr(logging, config.level, logging.INFO)
    formatter = logging.Formatter(config.format_string)
    handlers: list[logging.Handler] = []

    if config.log_to_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        handlers.append(console)

    if config.log_to_file:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # SQLAlchemy echoes through its own loggers; keep them quiet unless debugging
    logging.getLogger("sqlalchemy").setLevel(logging.DEBUG if verbose else logging.WARNING)
