"""Store contracts for users and verification tokens, plus in-memory versions.

The in-memory stores are for single-process development and tests. Every
operation takes the store lock, which makes mark_used_if_unused a true
compare-and-set. For production use the Postgres stores in auth.database.
"""

import threading
from typing import Any, Protocol
from datetime import datetime
from uuid import uuid4

from auth.types import User, VerificationToken
from utils.timezone import now_utc

# Fields a patch may never change
IMMUTABLE_USER_FIELDS = frozenset({"id", "created_at"})
UPDATABLE_USER_FIELDS = frozenset({"email", "name", "billing_customer_id"})


class UserStore(Protocol):
    def find_by_email(self, email: str) -> User | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def create(self, email: str, name: str | None = None) -> User: ...

    def update(self, user_id: str, patch: dict[str, Any]) -> User | None: ...

    def record_login(self, user_id: str) -> None: ...


class TokenStore(Protocol):
    def find_by_hash(self, token_hash: str) -> VerificationToken | None: ...

    def create(self, token_hash: str, email: str, expires_at: datetime) -> VerificationToken: ...

    def invalidate_all_unused(self, email: str) -> int: ...

    def mark_used_if_unused(self, token_id: str) -> bool: ...


def clean_user_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Drop immutable and unknown fields from a user patch."""
    return {k: v for k, v in patch.items() if k in UPDATABLE_USER_FIELDS}


class InMemoryUserStore:
    """Users keyed by id, with a unique email index."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._lock = threading.Lock()

    def find_by_email(self, email: str) -> User | None:
        email = email.lower()
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return user.model_copy()
        return None

    def find_by_id(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def create(self, email: str, name: str | None = None) -> User:
        email = email.lower()
        with self._lock:
            if any(u.email == email for u in self._users.values()):
                raise ValueError(f"User with email {email} already exists")
            user = User(id=str(uuid4()), email=email, name=name, created_at=now_utc())
            self._users[user.id] = user
            return user.model_copy()

    def update(self, user_id: str, patch: dict[str, Any]) -> User | None:
        changes = clean_user_patch(patch)
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            new_email = changes.get("email")
            if new_email and any(
                u.email == new_email and u.id != user_id for u in self._users.values()
            ):
                raise ValueError(f"User with email {new_email} already exists")
            updated = user.model_copy(update=changes)
            self._users[user_id] = updated
            return updated.model_copy()

    def record_login(self, user_id: str) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is not None:
                self._users[user_id] = user.model_copy(update={"last_login_at": now_utc()})


class InMemoryTokenStore:
    """Verification tokens keyed by id, looked up by hash."""

    def __init__(self):
        self._tokens: dict[str, VerificationToken] = {}
        self._lock = threading.Lock()

    def find_by_hash(self, token_hash: str) -> VerificationToken | None:
        with self._lock:
            for token in self._tokens.values():
                if token.token_hash == token_hash:
                    return token.model_copy()
        return None

    def create(self, token_hash: str, email: str, expires_at: datetime) -> VerificationToken:
        with self._lock:
            if any(t.token_hash == token_hash for t in self._tokens.values()):
                raise ValueError("Duplicate token hash")
            token = VerificationToken(
                id=str(uuid4()),
                token_hash=token_hash,
                email=email.lower(),
                expires_at=expires_at,
                used=False,
                created_at=now_utc(),
            )
            self._tokens[token.id] = token
            return token.model_copy()

    def invalidate_all_unused(self, email: str) -> int:
        email = email.lower()
        count = 0
        with self._lock:
            for token_id, token in self._tokens.items():
                if token.email == email and not token.used:
                    self._tokens[token_id] = token.model_copy(update={"used": True})
                    count += 1
        return count

    def mark_used_if_unused(self, token_id: str) -> bool:
        """Atomic compare-and-set on the used flag."""
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None or token.used:
                return False
            self._tokens[token_id] = token.model_copy(update={"used": True})
            return True

    def unused_for_email(self, email: str) -> list[VerificationToken]:
        """Live (unused) tokens for email. Inspection helper."""
        email = email.lower()
        with self._lock:
            return [t.model_copy() for t in self._tokens.values() if t.email == email and not t.used]
