"""Tests for SecurityLogger - auth event audit trail."""

import logging
from unittest.mock import Mock

import pytest
from psycopg2.extras import Json

from auth.security_logger import SecurityLogger, SecurityEvent
from clients.postgres_client import PostgresClient


@pytest.fixture
def db():
    return Mock(spec=PostgresClient)


class TestLogEvent:
    """Test event logging."""

    def test_writes_log_line_without_database(self, caplog):
        caplog.set_level(logging.INFO, logger="auth.security_logger")
        SecurityLogger().log(SecurityEvent.MAGIC_LINK_SENT, email="user@example.com")

        assert "security_event=magic_link_sent" in caplog.text
        assert "user@example.com" in caplog.text

    def test_suspicious_events_log_at_warning(self, caplog):
        caplog.set_level(logging.INFO, logger="auth.security_logger")
        SecurityLogger().log(SecurityEvent.MAGIC_LINK_ALREADY_USED, email="user@example.com")

        assert caplog.records[-1].levelno == logging.WARNING

    def test_persists_event_to_database(self, db):
        SecurityLogger(db).log(
            event=SecurityEvent.MAGIC_LINK_REQUESTED,
            email="logged@example.com",
            user_id="123e4567-e89b-42d3-a456-426614174000",
            ip_address="192.168.1.1",
            details={"reason": "test"},
        )

        query, params = db.execute_returning.call_args.args
        assert "INSERT INTO security_events" in query
        assert params[0] == "magic_link_requested"
        assert params[1] == "logged@example.com"
        assert params[2] == "123e4567-e89b-42d3-a456-426614174000"
        assert params[3] == "192.168.1.1"
        assert isinstance(params[5], Json)

    def test_no_details_stored_as_null(self, db):
        SecurityLogger(db).log(SecurityEvent.SESSION_REVOKED)
        params = db.execute_returning.call_args.args[1]
        assert params[5] is None

    def test_values_unfit_for_typed_columns_go_to_details(self, db):
        SecurityLogger(db).log(
            SecurityEvent.SESSION_REJECTED,
            user_id="admin",
            ip_address="testclient",
        )

        params = db.execute_returning.call_args.args[1]
        assert params[2] is None
        assert params[3] is None
        assert params[5].adapted == {"user_id": "admin", "ip_address": "testclient"}


class TestGetRecentEvents:
    """Test event querying."""

    def test_filters_and_limit(self, db):
        db.execute.return_value = []
        SecurityLogger(db).get_recent_events(
            email="target@example.com",
            event_type=SecurityEvent.RATE_LIMITED,
            limit=5,
        )

        query, params = db.execute.call_args.args
        assert "email = %s AND event_type = %s" in query
        assert params == ("target@example.com", "rate_limited", 5)

    def test_no_filters(self, db):
        db.execute.return_value = []
        SecurityLogger(db).get_recent_events()
        query, params = db.execute.call_args.args
        assert "WHERE 1=1" in query
        assert params == (100,)

    def test_without_database_returns_empty(self):
        assert SecurityLogger().get_recent_events() == []

    def test_non_uuid_user_filter_matches_nothing(self, db):
        assert SecurityLogger(db).get_recent_events(user_id="admin") == []
        db.execute.assert_not_called()
