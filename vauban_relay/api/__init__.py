"""HTTP API."""

from .app import RelayApp, create_app

__all__ = ["RelayApp", "create_app"]
