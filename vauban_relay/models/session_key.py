"""
Session Key Models

A session key is an ephemeral secp256k1 account delegated by a master
account. Its public key is the session account's address.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import Field, SecretStr, field_validator

from .base import RelayModel, ensure_aware, utc_now

DEFAULT_SESSION_KEY_TTL = timedelta(days=7)


class SessionKey(RelayModel):
    """Client-held delegated signing key."""

    public_key: str = Field(description="Session account address")
    private_key: SecretStr
    master_account: str = Field(description="Account that delegated this key")
    nonce: int = Field(default=0, ge=0)
    is_on_chain: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime = Field(default_factory=lambda: utc_now() + DEFAULT_SESSION_KEY_TTL)

    @field_validator("created_at", "expires_at", mode="before")
    @classmethod
    def convert_datetime(cls, v: Any) -> Any:
        return ensure_aware(v)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def belongs_to(self, account: str) -> bool:
        return self.master_account.lower() == account.lower()

    def to_storage(self) -> dict[str, Any]:
        """Serialize including the private key. Only for local persistence."""
        data = self.model_dump(mode="json")
        data["private_key"] = self.private_key.get_secret_value()
        return data
