"""Rate limiting for magic link requests.

Fixed window per normalized email: the first request opens a window, at most
`max_attempts` requests are admitted inside it, and the counter resets once
the window has passed.

InMemoryRateLimiter keeps its counters in process memory. Under a
multi-process or multi-instance deployment every process counts on its own,
so the effective limit is multiplied by the number of processes. Use
ValkeyRateLimiter when the counter has to be shared.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Admission control for magic link issuance."""

    @abstractmethod
    def admit(self, key: str) -> bool:
        """Record an attempt for key. Returns False when the attempt is denied."""

    @abstractmethod
    def retry_after(self, key: str) -> int:
        """Seconds until key may be admitted again (at least 1)."""

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget all attempts for key."""


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: datetime


class InMemoryRateLimiter(RateLimiter):
    """Process-local counters. Single-instance deployments only."""

    def __init__(self, max_attempts: int = 3, window: timedelta = timedelta(minutes=15)):
        self._max_attempts = max_attempts
        self._window = window
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AuthConfig) -> "InMemoryRateLimiter":
        return cls(
            max_attempts=config.rate_limit_attempts,
            window=timedelta(minutes=config.rate_limit_window_minutes),
        )

    def admit(self, key: str) -> bool:
        key = key.lower()
        now = now_utc()

        with self._lock:
            entry = self._entries.get(key)

            if entry is None or now > entry.window_reset_at:
                self._entries[key] = RateLimitEntry(count=1, window_reset_at=now + self._window)
                return True

            # Denied attempts do not touch the entry
            if entry.count >= self._max_attempts:
                return False

            entry.count += 1
            return True

    def retry_after(self, key: str) -> int:
        with self._lock:
            entry = self._entries.get(key.lower())
        if entry is None:
            return 1
        seconds = int((entry.window_reset_at - now_utc()).total_seconds())
        return max(seconds, 1)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key.lower(), None)

    def get_remaining_attempts(self, key: str) -> int:
        """Attempts left in the current window."""
        with self._lock:
            entry = self._entries.get(key.lower())
        if entry is None or now_utc() > entry.window_reset_at:
            return self._max_attempts
        return max(self._max_attempts - entry.count, 0)


class ValkeyRateLimiter(RateLimiter):
    """Shared counters in Valkey for multi-instance deployments.

    INCR opens the window on the first hit and EXPIRE fixes its length, so the
    window is fixed like the in-memory one. A counter found without a TTL
    (EXPIRE lost after INCR) gets its expiry set on the next hit. Denied
    attempts still increment the key; the count only matters while it lives.
    """

    KEY_PREFIX = "ratelimit:magic_link:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._max_attempts = config.rate_limit_attempts
        self._window_seconds = config.rate_limit_window_minutes * 60

    def _key(self, email: str) -> str:
        """Generate rate limit key for email (normalized to lowercase)."""
        return f"{self.KEY_PREFIX}{email.lower()}"

    def admit(self, key: str) -> bool:
        redis_key = self._key(key)
        count = self._valkey.incr(redis_key)

        # -1: key exists with no expiry
        if count == 1 or self._valkey.ttl(redis_key) == -1:
            self._valkey.expire(redis_key, self._window_seconds)

        return count <= self._max_attempts

    def retry_after(self, key: str) -> int:
        ttl = self._valkey.ttl(self._key(key))
        if ttl == -1:
            return self._window_seconds
        return max(ttl, 1)

    def reset(self, key: str) -> None:
        self._valkey.delete(self._key(key))
