"""Kernel: in-process event bus."""

from .event_system import EventBus, EventHandler, EventMetrics

__all__ = ["EventBus", "EventHandler", "EventMetrics"]
