"""
Relay Exceptions

Every failure surfaced to an HTTP caller is a RelayError carrying its status
code and a stable ``error`` string. The API layer renders them verbatim.
"""

from typing import Any


class RelayError(Exception):
    """Base exception for relay failures with an HTTP rendering."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(
        self,
        error: str | None = None,
        *,
        message: str | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ):
        self.error = error or self.error
        self.message = message
        self.details = details
        self.headers = headers or {}
        super().__init__(message or self.error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.message is not None:
            body["message"] = self.message
        if self.details is not None:
            body["details"] = self.details
        return body


class RequestError(RelayError):
    """Malformed or incomplete input."""

    status_code = 400
    error = "Missing required fields"


class AuthorizationError(RelayError):
    """Signature or API key rejected."""

    status_code = 401
    error = "Invalid signature"


class NotFoundError(RelayError):
    status_code = 404
    error = "Not found"


class RateLimitError(RelayError):
    status_code = 429
    error = "Rate limit exceeded"


class ConfigurationError(RelayError):
    """Deployment is missing configuration. Operator-fixable."""

    status_code = 500
    error = "Service not configured"


class ExecutionError(RelayError):
    """The underlying contract call failed. The nonce may have been consumed."""

    status_code = 500
    error = "Failed to relay comment"


class ConfirmationError(RelayError):
    """Submitted but not confirmed. Outcome is ambiguous; do not reuse the nonce blindly."""

    status_code = 500
    error = "Failed to relay comment"


class ServiceUnavailableError(RelayError):
    status_code = 503
    error = "Service unavailable"


# =============================================================================
# Client-side errors
# =============================================================================


class SessionKeyError(Exception):
    """Retryable infrastructure failure while creating or using a session key."""

    retryable = True


class SessionKeyNotFoundError(SessionKeyError):
    """No usable session key exists for the account."""

    retryable = False
