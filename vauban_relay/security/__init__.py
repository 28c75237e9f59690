"""Signing, signature policy and API key gate."""

from .api_keys import M2MGate, generate_api_key
from .policy import InsecurePolicyError, NoncePolicy, SecurityPolicy, SignatureEnforcement
from .signing import (
    SignatureVerifier,
    relay_message_hash,
    sign_relay_message,
    verify_relay_signature,
)

__all__ = [
    "InsecurePolicyError",
    "M2MGate",
    "NoncePolicy",
    "SecurityPolicy",
    "SignatureEnforcement",
    "SignatureVerifier",
    "generate_api_key",
    "relay_message_hash",
    "sign_relay_message",
    "verify_relay_signature",
]
