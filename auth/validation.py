"""Input normalization and validation for auth inputs.

Pure functions. Bad input yields None/False, never an exception; the
service layer turns those into typed errors at the boundary.
"""

import ipaddress
import re
from typing import Any

# Practical RFC 5322 subset. Fails closed: anything outside it is invalid.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_MAX_EMAIL_LENGTH = 254
_MAX_LOCAL_PART_LENGTH = 64

_NAME_MIN_LENGTH = 2
_NAME_MAX_LENGTH = 100

_CUID_RE = re.compile(r"^c[a-z0-9]{24,}$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def normalize_email(raw: str) -> str:
    """Lowercase and trim."""
    return raw.strip().lower()


def is_valid_email(value: Any) -> bool:
    """Check an already-normalized email against pattern and length limits."""
    if not isinstance(value, str) or not value:
        return False
    if len(value) > _MAX_EMAIL_LENGTH:
        return False
    if not _EMAIL_RE.match(value):
        return False
    local_part = value.split("@", 1)[0]
    return len(local_part) <= _MAX_LOCAL_PART_LENGTH


def normalize_and_validate_email(raw: Any) -> str | None:
    """Normalize then validate. Returns the normalized email or None."""
    if not isinstance(raw, str):
        return None
    email = normalize_email(raw)
    return email if is_valid_email(email) else None


def is_valid_display_name(raw: Any) -> bool:
    if not isinstance(raw, str):
        return False
    return _NAME_MIN_LENGTH <= len(raw.strip()) <= _NAME_MAX_LENGTH


def normalize_display_name(raw: str) -> str:
    """Collapse whitespace runs and capitalize each word ("aDA  lovelace" -> "Ada Lovelace")."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in raw.split())


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_opaque_id(value: Any) -> bool:
    """True for cuid-like ids or RFC 4122 UUIDs.

    Used to reject malformed identifiers before they reach a store lookup.
    """
    if not isinstance(value, str):
        return False
    return bool(_CUID_RE.match(value) or _UUID_RE.match(value))


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def ip_or_none(value: Any) -> str | None:
    """value if it parses as an IPv4/IPv6 address, else None."""
    if not isinstance(value, str):
        return None
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return None
    return value
