"""Magic link token generation, hashing and expiry.

Raw tokens only ever leave the process inside the emailed link. Storage sees
the SHA-256 digest, so a leaked token table yields nothing usable.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from utils.timezone import now_utc

# No 0/O, 1/I/L
SHORT_TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_token(byte_length: int = 32) -> str:
    """Random hex token from the OS CSPRNG (64 chars at the default length)."""
    return secrets.token_bytes(byte_length).hex()


def generate_short_token(length: int = 6) -> str:
    """Human-readable verification code, e.g. for typing on another device."""
    return "".join(secrets.choice(SHORT_TOKEN_ALPHABET) for _ in range(length))


def hash_token(token: str) -> str:
    """SHA-256 hex digest of the raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token_hash(token: str, token_hash: str) -> bool:
    return hmac.compare_digest(hash_token(token), token_hash)


def expiry_at(minutes_from_now: int) -> datetime:
    return now_utc() + timedelta(minutes=minutes_from_now)


def is_expired(expires_at: datetime) -> bool:
    """True once the current time is strictly past expires_at."""
    return now_utc() > expires_at


def remaining_seconds(expires_at: datetime) -> int:
    """Whole seconds until expiry, 0 if already expired."""
    return max(0, int((expires_at - now_utc()).total_seconds()))
