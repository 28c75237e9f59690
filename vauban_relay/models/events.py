"""
Event Models

Domain events announced on the in-process bus after a write lands.
Payloads carry identifiers needed for cache keys, never full content.
"""

from enum import Enum
from typing import Any

from pydantic import Field

from .base import RelayModel


class EventName(str, Enum):
    """Names of domain events."""

    SUBJECT_CREATED = "subject:created"
    SUBJECT_ADDED = "subject:added"
    SUBJECT_PUBLISHED = "subject:published"
    SUBJECT_SCHEDULED = "subject:scheduled"
    SUBJECT_APPROVED = "subject:approved"
    SUBJECT_REJECTED = "subject:rejected"
    MESSAGE_RECEIVED = "message:received"
    USER_BANNED = "user:banned"
    USER_UNBANNED = "user:unbanned"


# Keys an externally emitted payload must carry for each event.
REQUIRED_PAYLOAD_KEYS: dict[EventName, tuple[str, ...]] = {
    EventName.SUBJECT_CREATED: ("subjectId",),
    EventName.SUBJECT_ADDED: ("subjectId",),
    EventName.SUBJECT_PUBLISHED: (),
    EventName.SUBJECT_SCHEDULED: ("subjectId", "scheduledAt"),
    EventName.SUBJECT_APPROVED: ("subjectId",),
    EventName.SUBJECT_REJECTED: ("subjectId",),
    EventName.MESSAGE_RECEIVED: ("conversationId", "from"),
    EventName.USER_BANNED: ("address",),
    EventName.USER_UNBANNED: ("address",),
}


class DomainEvent(RelayModel):
    """A named event with its payload. Transient, never persisted."""

    name: EventName
    payload: dict[str, Any] = Field(default_factory=dict)

    def missing_keys(self) -> list[str]:
        return [k for k in REQUIRED_PAYLOAD_KEYS[self.name] if k not in self.payload]


class EmitRequest(RelayModel):
    """Body of the external emit endpoint."""

    type: EventName
    data: dict[str, Any]

    def to_event(self) -> DomainEvent:
        return DomainEvent(name=self.type, payload=self.data)
