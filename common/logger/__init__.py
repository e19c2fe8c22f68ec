"""Logging helpers."""

from common.logger.setup import configure_logging, setup_logger

__all__ = ["setup_logger", "configure_logging"]
