"""Postgres-backed user and token stores.

Tables: users, verification_tokens. Emails are stored lowercased.
DDL lives in schema.sql next to this module; apply_schema() installs it.
"""

from datetime import datetime
from importlib import resources
from typing import Any

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient
from auth.stores import clean_user_patch
from auth.types import User, VerificationToken
from utils.timezone import now_utc, to_utc, to_utc_or_none

_USER_COLUMNS = "id, email, name, billing_customer_id, created_at, last_login_at"
_TOKEN_COLUMNS = "id, token_hash, email, expires_at, used, created_at"


def schema_sql() -> str:
    return resources.files("auth").joinpath("schema.sql").read_text(encoding="utf-8")


def apply_schema(postgres: PostgresClient) -> None:
    """Create the auth tables if missing. Idempotent."""
    postgres.execute_script(schema_sql())


def _user_from_row(row: dict) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        name=row["name"],
        billing_customer_id=row["billing_customer_id"],
        created_at=to_utc(row["created_at"]),
        last_login_at=to_utc_or_none(row["last_login_at"]),
    )


def _token_from_row(row: dict) -> VerificationToken:
    return VerificationToken(
        id=str(row["id"]),
        token_hash=row["token_hash"],
        email=row["email"],
        expires_at=to_utc(row["expires_at"]),
        used=row["used"],
        created_at=to_utc(row["created_at"]),
    )


class PostgresUserStore:
    """User persistence."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def find_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        )
        return _user_from_row(row) if row else None

    def find_by_id(self, user_id: str) -> User | None:
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return _user_from_row(row) if row else None

    def create(self, email: str, name: str | None = None) -> User:
        """Create new user with email (lowercased).

        Raises:
            ValueError: Email already registered.
        """
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (email, name, created_at)
                    VALUES (lower(%s), %s, %s)
                    RETURNING {_USER_COLUMNS}""",
                (email, name, now_utc()),
            )
        except UniqueViolation:
            raise ValueError(f"User with email {email} already exists")
        return _user_from_row(rows[0])

    def update(self, user_id: str, patch: dict[str, Any]) -> User | None:
        """Apply patch. id and created_at are never written."""
        changes = clean_user_patch(patch)
        if not changes:
            return self.find_by_id(user_id)

        # Column names come from the UPDATABLE_USER_FIELDS allow-list
        assignments = ", ".join(f"{column} = %s" for column in changes)
        try:
            rows = self._db.execute_returning(
                f"UPDATE users SET {assignments} WHERE id = %s RETURNING {_USER_COLUMNS}",
                (*changes.values(), user_id),
            )
        except UniqueViolation:
            raise ValueError(f"User with email {changes.get('email')} already exists")
        return _user_from_row(rows[0]) if rows else None

    def record_login(self, user_id: str) -> None:
        """Update last_login_at to current time."""
        self._db.execute_returning(
            "UPDATE users SET last_login_at = %s WHERE id = %s RETURNING id",
            (now_utc(), user_id),
        )


class PostgresTokenStore:
    """Verification token persistence. Rows are never deleted here."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def find_by_hash(self, token_hash: str) -> VerificationToken | None:
        row = self._db.execute_single(
            f"SELECT {_TOKEN_COLUMNS} FROM verification_tokens WHERE token_hash = %s",
            (token_hash,),
        )
        return _token_from_row(row) if row else None

    def create(self, token_hash: str, email: str, expires_at: datetime) -> VerificationToken:
        rows = self._db.execute_returning(
            f"""INSERT INTO verification_tokens (token_hash, email, expires_at, used, created_at)
                VALUES (%s, lower(%s), %s, false, %s)
                RETURNING {_TOKEN_COLUMNS}""",
            (token_hash, email, expires_at, now_utc()),
        )
        return _token_from_row(rows[0])

    def invalidate_all_unused(self, email: str) -> int:
        """Mark every unused token for email as used. Returns count."""
        rows = self._db.execute_returning(
            """UPDATE verification_tokens
               SET used = true, used_at = %s
               WHERE email = lower(%s) AND used = false
               RETURNING id""",
            (now_utc(), email),
        )
        return len(rows)

    def mark_used_if_unused(self, token_id: str) -> bool:
        """Conditional update; only one concurrent caller gets a row back."""
        rows = self._db.execute_returning(
            """UPDATE verification_tokens
               SET used = true, used_at = %s
               WHERE id = %s AND used = false
               RETURNING id""",
            (now_utc(), token_id),
        )
        return len(rows) > 0
