"""API routers."""

from . import events, m2m, relay, scheduled

__all__ = ["events", "m2m", "relay", "scheduled"]
