"""
Base Models and Common Types

Foundation classes shared by the relay models.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: Any) -> Any:
    """Coerce naive datetimes and ISO strings to timezone-aware UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def mask_address(address: str | None, visible: int = 10) -> str:
    """Mask an address for public display: first ``visible`` chars + '...'."""
    if not address:
        return "not configured"
    return f"{address[:visible]}..."


class RelayModel(BaseModel):
    """Base model for relay entities with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )
