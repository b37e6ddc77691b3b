"""
Logging configuration for the Household Planner API.
Sets up console logging plus rotating application and error log files.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Log format
DETAILED_FORMAT = "%(asctime)s [%(name)s:%(lineno)d] %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(levelname)s - %(message)s"

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


def _resolve_log_dir(log_dir: Optional[str]) -> Path:
    if log_dir:
        return Path(log_dir)
    return Path("/var/log/household-planner") if Path("/var/log").exists() else Path("./logs")


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for app.log and error.log (defaults to /var/log or ./logs)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture everything at root level

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
    root_logger.addHandler(console_handler)

    directory = _resolve_log_dir(log_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_rotating_handler(directory / "app.log", logging.DEBUG))
        root_logger.addHandler(_rotating_handler(directory / "error.log", logging.ERROR))
    except OSError as e:
        root_logger.warning(f"Could not set up log files in {directory}: {e}")

    # Set specific loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
