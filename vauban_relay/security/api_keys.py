"""
API key gate for machine-to-machine publishing.

Keys are compared in constant time and counted in a fixed window per key.
Counters are process-local and keyed by a digest of the API key, so raw
keys are never held in memory beyond the configured one.
"""

import hashlib
import hmac
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

API_KEY_PREFIX = "vb_"
API_KEY_LENGTH = 32
_ALPHABET = string.ascii_letters + string.digits


@dataclass
class RateLimitEntry:
    """Tracks rate limit for a key."""
    count: int = 0
    window_start: float = field(default_factory=time.time)


def generate_api_key() -> str:
    """Generate a new API key for operators to configure."""
    return API_KEY_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(API_KEY_LENGTH))


class M2MGate:
    """
    Validates API keys and enforces a fixed-window request limit.

    Args:
        api_key: The single accepted key; None disables the gate entirely
        max_requests: Requests allowed per window
        window_seconds: Window length
        clock: Time source in seconds, injectable for tests
    """

    def __init__(
        self,
        api_key: str | None,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self._api_key = api_key
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def validate(self, api_key: str | None) -> bool:
        if not api_key:
            return False
        if not self._api_key:
            logger.warning("m2m_api_key_not_configured")
            return False
        return hmac.compare_digest(api_key.encode("utf-8"), self._api_key.encode("utf-8"))

    @staticmethod
    def _bucket(api_key: str) -> str:
        return hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    def _current(self, bucket: str, now: float) -> RateLimitEntry | None:
        entry = self._entries.get(bucket)
        if entry is None or now >= entry.window_start + self.window_seconds:
            return None
        return entry

    def check_rate_limit(self, api_key: str) -> bool:
        """Count one request. Returns False when the window is exhausted."""
        now = self._clock()
        bucket = self._bucket(api_key)
        with self._lock:
            entry = self._current(bucket, now)
            if entry is None:
                self._entries[bucket] = RateLimitEntry(count=1, window_start=now)
                return True
            if entry.count >= self.max_requests:
                logger.warning("m2m_rate_limit_exceeded", count=entry.count)
                return False
            entry.count += 1
            return True

    def remaining(self, api_key: str) -> int:
        with self._lock:
            entry = self._current(self._bucket(api_key), self._clock())
        if entry is None:
            return self.max_requests
        return max(0, self.max_requests - entry.count)

    def reset_at(self, api_key: str) -> float:
        """Epoch seconds when the current window ends."""
        now = self._clock()
        with self._lock:
            entry = self._current(self._bucket(api_key), now)
        if entry is None:
            return now + self.window_seconds
        return entry.window_start + self.window_seconds

    def rate_limit_headers(self, api_key: str) -> dict[str, str]:
        return {
            "X-RateLimit-Remaining": str(self.remaining(api_key)),
            "X-RateLimit-Reset": str(int(self.reset_at(api_key) * 1000)),
        }
