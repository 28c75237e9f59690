"""Relay data models."""

from .base import RelayModel, mask_address
from .content import ContentRecord, compute_content_hash
from .events import DomainEvent, EmitRequest, EventName
from .relay import NO_PARENT, RelayHealth, RelayRequest, RelayResult
from .session_key import SessionKey

__all__ = [
    "ContentRecord",
    "DomainEvent",
    "EmitRequest",
    "EventName",
    "NO_PARENT",
    "RelayHealth",
    "RelayModel",
    "RelayRequest",
    "RelayResult",
    "SessionKey",
    "compute_content_hash",
    "mask_address",
]
