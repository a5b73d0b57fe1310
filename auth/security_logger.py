"""Security event logging for auth audit trail.

Every event goes to the application log. When a PostgresClient is supplied,
events are also appended to the security_events table.
"""

import logging
from enum import Enum
from typing import Any

from psycopg2.extras import Json

from auth.validation import ip_or_none, is_valid_uuid
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    MAGIC_LINK_REQUESTED = "magic_link_requested"
    MAGIC_LINK_SENT = "magic_link_sent"
    MAGIC_LINK_SUPERSEDED = "magic_link_superseded"
    MAGIC_LINK_VERIFIED = "magic_link_verified"
    MAGIC_LINK_FAILED = "magic_link_failed"
    MAGIC_LINK_EXPIRED = "magic_link_expired"
    MAGIC_LINK_ALREADY_USED = "magic_link_already_used"
    SESSION_CREATED = "session_created"
    SESSION_EXTENDED = "session_extended"
    SESSION_REJECTED = "session_rejected"
    SESSION_REVOKED = "session_revoked"
    RATE_LIMITED = "rate_limited"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    WELCOME_EMAIL_FAILED = "welcome_email_failed"
    BILLING_LINK_FAILED = "billing_link_failed"


# Events that indicate an attack or a failure rather than normal use
_WARNING_EVENTS = frozenset({
    SecurityEvent.MAGIC_LINK_FAILED,
    SecurityEvent.MAGIC_LINK_ALREADY_USED,
    SecurityEvent.SESSION_REJECTED,
    SecurityEvent.RATE_LIMITED,
    SecurityEvent.WELCOME_EMAIL_FAILED,
    SecurityEvent.BILLING_LINK_FAILED,
})


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient | None = None):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log security event."""
        level = logging.WARNING if event in _WARNING_EVENTS else logging.INFO
        logger.log(
            level,
            "security_event=%s email=%s user_id=%s ip=%s details=%s",
            event.value,
            email,
            user_id,
            ip_address,
            details or {},
        )

        if self._db is None:
            return

        # user_id is a uuid column and ip_address an inet column; other values
        # move to details
        details = dict(details or {})
        if user_id is not None and not is_valid_uuid(str(user_id)):
            details["user_id"] = str(user_id)
            user_id = None
        if ip_address is not None and ip_or_none(ip_address) is None:
            details["ip_address"] = ip_address
            ip_address = None

        self._db.execute_returning(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event.value,
                email,
                str(user_id) if user_id else None,
                ip_address,
                user_agent,
                Json(details) if details else None,
                now_utc(),
            ),
        )

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: str | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters."""
        if self._db is None:
            return []

        conditions = []
        params = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if user_id and not is_valid_uuid(str(user_id)):
            return []

        if user_id:
            conditions.append("user_id = %s")
            params.append(str(user_id))

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, email, user_id, ip_address, user_agent, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            tuple(params),
        )
