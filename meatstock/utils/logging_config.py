"""
Minimal structured logging configuration for meatstock.

Provides:
- File logging for warnings and errors (shortages, sweep failures)
- Console logging for critical errors only
- Automatic log rotation

Library modules only call logging.getLogger(__name__); the embedding
application calls setup_logging() once.
"""
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

APP_LOGGER = "meatstock"


def setup_logging(
    log_dir: Optional[Union[str, Path]] = None,
    app_name: str = APP_LOGGER,
    file_level: int = logging.WARNING,
) -> logging.Logger:
    """
    Setup structured logging with file output.

    Args:
        log_dir: Directory for log files (created if missing).  When *None*
                 the default location is used (see utils.paths.get_logs_dir).
        app_name: Logger name; "meatstock" covers every module of the package
        file_level: Minimum level written to the log file

    Returns:
        Configured logger instance
    """
    if log_dir is None:
        from .paths import get_logs_dir  # noqa: PLC0415
        log_path = get_logs_dir()
    else:
        log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    # File handler: rotating log (max 5MB, keep 3 backups)
    log_file = log_path / f"{app_name}_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(file_handler)

    # Console handler: critical errors only
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.CRITICAL)
    console_handler.setFormatter(logging.Formatter("CRITICAL: %(message)s"))
    logger.addHandler(console_handler)

    return logger


def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    """
    Get configured logger instance.

    Args:
        name: Logger name (defaults to app logger)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
