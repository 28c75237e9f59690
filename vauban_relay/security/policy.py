"""
Signature enforcement policy.

The relay never decides on its own whether a bad signature is fatal. It is
handed a SecurityPolicy at construction, built once from deployment
settings, and a permissive policy cannot be built for production.
"""

from dataclasses import dataclass
from enum import Enum

import structlog

from ..config import Settings

logger = structlog.get_logger(__name__)


class SignatureEnforcement(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


class NoncePolicy(str, Enum):
    """
    How a client picks the nonce for its next request after a failed relay.

    REQUERY: always use the chain's current value. A nonce signed for a
        request that never landed is reused.
    ADVANCE: never reuse a signed nonce; take the larger of the chain value
        and the local counter, accepting gaps that the contract will reject.
    """

    REQUERY = "requery"
    ADVANCE = "advance"


class InsecurePolicyError(ValueError):
    """Raised when a permissive policy is requested for production."""


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Value object controlling signature enforcement in the relay.

    Attributes:
        enforcement: STRICT rejects invalid or unverifiable signatures with
            401; PERMISSIVE logs them and lets the request proceed
        environment: Deployment environment the policy was built for
    """

    enforcement: SignatureEnforcement
    environment: str

    def __post_init__(self) -> None:
        if self.environment == "production" and self.enforcement != SignatureEnforcement.STRICT:
            raise InsecurePolicyError("Permissive signature enforcement is not allowed in production")
        if self.enforcement == SignatureEnforcement.PERMISSIVE:
            logger.warning(
                "permissive_signature_policy",
                environment=self.environment,
                detail="invalid signatures will be relayed",
            )

    @property
    def enforce_signatures(self) -> bool:
        return self.enforcement == SignatureEnforcement.STRICT

    @classmethod
    def strict(cls, environment: str = "production") -> "SecurityPolicy":
        return cls(SignatureEnforcement.STRICT, environment)

    @classmethod
    def permissive(cls, environment: str = "development") -> "SecurityPolicy":
        return cls(SignatureEnforcement.PERMISSIVE, environment)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecurityPolicy":
        """Strict in production, permissive elsewhere unless explicitly overridden."""
        if settings.signature_enforcement is not None:
            enforcement = SignatureEnforcement(settings.signature_enforcement)
        elif settings.is_production:
            enforcement = SignatureEnforcement.STRICT
        else:
            enforcement = SignatureEnforcement.PERMISSIVE
        return cls(enforcement, settings.app_env)
