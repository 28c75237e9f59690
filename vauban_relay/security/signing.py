"""
Ordered-field request signing.

A relay authorization is a signature over the keccak hash of the ABI-encoded
field tuple ``(subject_id, content_hash, parent_id, user_address, nonce)``.
The order is part of the protocol: the session key signs it and the relay
recomputes it byte for byte before verification.
"""

from typing import Protocol

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from ..models.relay import NO_PARENT

FIELD_TYPES = ["string", "string", "string", "string", "string"]


def relay_message_hash(
    subject_id: str,
    content_hash: str,
    parent_id: str | None,
    user_address: str,
    nonce: int,
) -> bytes:
    """Hash the ordered relay fields. A missing parent hashes as the no-parent sentinel."""
    fields = [
        str(subject_id),
        content_hash.lower(),
        str(parent_id) if parent_id not in (None, "") else NO_PARENT,
        user_address.lower(),
        str(int(nonce)),
    ]
    return keccak(encode(FIELD_TYPES, fields))


def sign_relay_message(message_hash: bytes, private_key: str) -> str:
    """Sign a relay hash with a session private key (EIP-191 personal message)."""
    signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key)
    return "0x" + bytes(signed.signature).hex()


def verify_relay_signature(message_hash: bytes, signature: str, session_public_key: str) -> bool:
    """
    Check that ``signature`` over ``message_hash`` was made by ``session_public_key``.

    Returns False when a different key signed. Raises when the signature is
    malformed and cannot be recovered at all.
    """
    recovered: str = Account.recover_message(
        encode_defunct(primitive=message_hash),
        signature=signature,
    )
    return recovered.lower() == session_public_key.lower()


class SignatureVerifier(Protocol):
    """Callable used by the relay to check a request signature."""

    def __call__(self, message_hash: bytes, signature: str, session_public_key: str) -> bool: ...
