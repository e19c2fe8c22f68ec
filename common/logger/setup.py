"""Logging configuration."""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional
from pythonjsonlogger import jsonlogger

if TYPE_CHECKING:
    from common.config.executor_conf import LogConf

LOG_FILE_NAME = "executor.log"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Process-wide defaults, replaced once by configure_logging() at startup
_default_level = "INFO"
_file_handler: Optional[logging.Handler] = None
_logger_names: List[str] = []


def _parse_level(log_level: str) -> int:
    # Config files use lower-case names such as "debug"
    return getattr(logging, log_level.upper(), logging.INFO)


def setup_logger(name: str, log_level: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with JSON formatting.

    Args:
        name: Logger name (typically __name__)
        log_level: Logging level (defaults to the level set by configure_logging)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if log_level is None:
        log_level = _default_level

    level = _parse_level(log_level)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    formatter = jsonlogger.JsonFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if _file_handler is not None:
        logger.addHandler(_file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    if name not in _logger_names:
        _logger_names.append(name)

    return logger


def configure_logging(
    log_conf: "LogConf", level_override: Optional[str] = None
) -> None:
    """
    Apply the [log] section of the executor configuration.

    Loggers created before this call (module-level loggers) are rebuilt so
    they pick up the new level and the log file.

    Args:
        log_conf: Parsed log configuration (Level, Path)
        level_override: Level that wins over the file value (LOG_LEVEL env)
    """
    global _default_level, _file_handler

    _default_level = level_override or log_conf.level or "INFO"

    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None

    if log_conf.path:
        log_dir = Path(log_conf.path)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        handler.setLevel(_parse_level(_default_level))
        handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        _file_handler = handler

    for name in list(_logger_names):
        setup_logger(name)

