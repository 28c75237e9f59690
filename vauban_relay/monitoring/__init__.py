"""Monitoring helpers."""

from .logging import bind_context, clear_context, configure_logging, get_logger

__all__ = ["bind_context", "clear_context", "configure_logging", "get_logger"]
