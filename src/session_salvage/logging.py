"""Logging configuration for session-salvage.

Provides centralized logging setup with file output to ~/.session-salvage/logs/.

Components never consult a global verbosity switch: each one takes an
optional logger handle and falls back to its module logger, so the
handle returned by ``setup_logging`` is what controls verbosity.
"""

import logging
import sys
from pathlib import Path

# Default log directory
DEFAULT_LOG_DIR = Path.home() / ".session-salvage" / "logs"

LOGGER_PREFIX = "session_salvage"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a session-salvage component.

    Creates a logger with both file and optional console handlers.
    Log files are written to ~/.session-salvage/logs/<name>.log.

    Args:
        name: Logger name (used for log filename)
        log_dir: Directory for log files (defaults to ~/.session-salvage/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to console (defaults to True)

    Returns:
        Configured logger instance
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    # Ensure log directory exists
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{name}")
    logger.setLevel(level)

    # Avoid adding duplicate handlers if already configured
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a session-salvage component.

    This function returns an existing logger or creates a basic one.
    For full configuration with file output, use setup_logging().

    Args:
        name: Logger name (will be prefixed with 'session_salvage.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def child_logger(parent: logging.Logger | None, name: str) -> logging.Logger:
    """Return a component logger that follows an explicitly passed handle.

    When ``parent`` is given the component logs through ``parent.<name>``
    and inherits its handlers and level; otherwise the module logger is used.
    """
    if parent is None:
        return get_logger(name)
    return parent.getChild(name)
