"""
Content Models

Off-chain content bodies and the 32-byte digest committed on-chain.
"""

import hashlib
import re
from datetime import datetime

from pydantic import Field, field_validator, model_validator

from .base import RelayModel, ensure_aware, utc_now

BYTES32_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")


def compute_content_hash(body: str) -> str:
    """
    SHA-256 of the UTF-8 body as a 0x-prefixed bytes32 hex string.

    Raises:
        ValueError: The body is not encodable as UTF-8 (lone surrogates).
    """
    try:
        encoded = body.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"Content body is not valid UTF-8: {e.reason}") from e
    return "0x" + hashlib.sha256(encoded).hexdigest()


class ContentRecord(RelayModel):
    """A content body keyed by its digest. Write-once per hash."""

    # Bodies are stored byte-exact; stripping would break the digest.
    model_config = RelayModel.model_config | {"str_strip_whitespace": False}

    hash: str = Field(description="0x-prefixed SHA-256 digest of body")
    body: str
    cached_at: datetime = Field(default_factory=utc_now)

    @field_validator("hash")
    @classmethod
    def normalize_hash(cls, v: str) -> str:
        v = v.lower()
        if not BYTES32_PATTERN.match(v):
            raise ValueError("hash must be 0x followed by 64 hex characters")
        return v

    @field_validator("cached_at", mode="before")
    @classmethod
    def convert_datetime(cls, v):
        return ensure_aware(v)

    @model_validator(mode="after")
    def check_digest(self) -> "ContentRecord":
        if compute_content_hash(self.body) != self.hash:
            raise ValueError("hash does not match body digest")
        return self

    @classmethod
    def from_body(cls, body: str) -> "ContentRecord":
        return cls(hash=compute_content_hash(body), body=body)
