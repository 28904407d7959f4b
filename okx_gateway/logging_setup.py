"""Structured logging setup using loguru.

Every module logs through the shared ``logger``; ``setup_logging`` swaps its
sinks. Messages follow ``"Event description | key=value ..."`` so the file
sink stays greppable.
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(
    log_file: Optional[str] = "okx_gateway.log",
    level: str = "INFO",
    enable_console: bool = True,
    *,
    rotation: str = "100 MB",
    retention: str = "7 days",
) -> None:
    """Replace the gateway's log sinks.

    Args:
        log_file: Path to the log file; ``None`` or empty disables file logging
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Also log to stderr (stdout is left to the HTTP server)
        rotation: loguru rotation condition for the file sink
        retention: loguru retention for rotated files
    """
    _logger.remove()
    level = level.upper()

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_path),
            format=LOG_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
        )

    if enable_console:
        _logger.add(sys.stderr, format=LOG_FORMAT, level=level, colorize=True)


def setup_from_config(logging_config) -> None:
    """Apply a ``LoggingConfig`` section."""
    setup_logging(
        logging_config.log_file,
        logging_config.log_level,
        logging_config.enable_console,
        rotation=logging_config.rotation,
        retention=logging_config.retention,
    )
    _logger.debug(
        f"Logging configured | file={logging_config.log_file} level={logging_config.log_level} "
        f"rotation={logging_config.rotation} retention={logging_config.retention}"
    )


logger = _logger
