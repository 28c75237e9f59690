"""
Relay Models

Request, result and health payloads of the comment relay.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from ..exceptions import RequestError
from .base import RelayModel

NO_PARENT = "0"

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "subject_id": ("subjectId", "postId"),
    "content_hash": ("contentHash",),
    "session_public_key": ("sessionPublicKey",),
    "user_address": ("userAddress",),
    "signature": ("signature",),
}


def _first_present(payload: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = payload.get(name)
        if value is not None and value != "":
            return value
    return None


class RelayRequest(RelayModel):
    """One signed relay action. Never persisted."""

    subject_id: str = Field(validation_alias=AliasChoices("subjectId", "postId", "subject_id"))
    content_hash: str = Field(validation_alias=AliasChoices("contentHash", "content_hash"))
    parent_id: str = Field(
        default=NO_PARENT,
        validation_alias=AliasChoices("parentId", "parentCommentId", "parent_id"),
    )
    session_public_key: str = Field(
        validation_alias=AliasChoices("sessionPublicKey", "session_public_key")
    )
    user_address: str = Field(validation_alias=AliasChoices("userAddress", "user_address"))
    signature: str
    nonce: int = Field(ge=0)

    @field_validator("subject_id", "parent_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        if v is None or v == "":
            return NO_PARENT
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("nonce", mode="before")
    @classmethod
    def parse_nonce(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError("nonce must be an integer")
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError("nonce must be an integer")
            return int(v)
        return v

    @property
    def is_reply(self) -> bool:
        return self.parent_id != NO_PARENT

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RelayRequest":
        """Validate a raw JSON body, raising RequestError before any network work."""
        if not isinstance(payload, Mapping):
            raise RequestError("Invalid request body")

        missing = [
            field for field, names in REQUIRED_FIELDS.items()
            if not _first_present(payload, names)
        ]
        if missing:
            raise RequestError(details={"missing": missing})

        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if "nonce" in fields:
                raise RequestError("Invalid nonce") from e
            raise RequestError(
                "Invalid request body",
                details=[{"field": ".".join(map(str, err["loc"])), "message": err["msg"]} for err in e.errors()],
            ) from e


class RelayResult(RelayModel):
    success: bool = True
    transaction_hash: str = Field(serialization_alias="transactionHash")
    message: str = "Comment posted successfully (gasless)"

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class RelayHealth(RelayModel):
    status: str = "ok"
    relayer: str
    social_contract: str = Field(serialization_alias="socialContract")

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
