"""Tests for Postgres-backed stores - PostgresClient mocked."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from psycopg2.errors import UniqueViolation

from auth.database import PostgresTokenStore, PostgresUserStore, apply_schema, schema_sql
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

USER_ID = "123e4567-e89b-42d3-a456-426614174000"


def _user_row(**overrides):
    row = {
        "id": USER_ID,
        "email": "user@example.com",
        "name": "Ada",
        "billing_customer_id": None,
        "created_at": now_utc(),
        "last_login_at": None,
    }
    row.update(overrides)
    return row


def _token_row(**overrides):
    row = {
        "id": "223e4567-e89b-42d3-a456-426614174000",
        "token_hash": "a" * 64,
        "email": "user@example.com",
        "expires_at": now_utc() + timedelta(minutes=15),
        "used": False,
        "created_at": now_utc(),
    }
    row.update(overrides)
    return row


@pytest.fixture
def db():
    return Mock(spec=PostgresClient)


class TestPostgresUserStore:
    @pytest.fixture
    def store(self, db):
        return PostgresUserStore(db)

    def test_find_by_email_lowercases_in_sql(self, store, db):
        db.execute_single.return_value = _user_row()
        user = store.find_by_email("User@Example.com")

        query, params = db.execute_single.call_args.args
        assert "lower(%s)" in query
        assert params == ("User@Example.com",)
        assert user.id == USER_ID

    def test_find_by_id_missing(self, store, db):
        db.execute_single.return_value = None
        assert store.find_by_id(USER_ID) is None

    def test_create_returns_user(self, store, db):
        db.execute_returning.return_value = [_user_row()]
        user = store.create("user@example.com", name="Ada")
        assert user.name == "Ada"

    def test_create_duplicate_raises_value_error(self, store, db):
        db.execute_returning.side_effect = UniqueViolation()
        with pytest.raises(ValueError, match="already exists"):
            store.create("user@example.com")

    def test_update_only_writes_allowed_columns(self, store, db):
        db.execute_returning.return_value = [_user_row(name="Bob")]
        store.update(USER_ID, {"id": "x", "created_at": now_utc(), "name": "Bob"})

        query, params = db.execute_returning.call_args.args
        assert "SET name = %s WHERE" in query
        assert "created_at =" not in query
        assert params == ("Bob", USER_ID)

    def test_empty_update_reads_current_row(self, store, db):
        db.execute_single.return_value = _user_row()
        store.update(USER_ID, {"id": "x"})
        db.execute_returning.assert_not_called()

    def test_update_email_conflict(self, store, db):
        db.execute_returning.side_effect = UniqueViolation()
        with pytest.raises(ValueError):
            store.update(USER_ID, {"email": "taken@example.com"})

    def test_record_login(self, store, db):
        store.record_login(USER_ID)
        query, params = db.execute_returning.call_args.args
        assert "last_login_at" in query
        assert params[1] == USER_ID


class TestPostgresTokenStore:
    @pytest.fixture
    def store(self, db):
        return PostgresTokenStore(db)

    def test_find_by_hash(self, store, db):
        db.execute_single.return_value = _token_row()
        token = store.find_by_hash("a" * 64)
        assert token.used is False

    def test_create(self, store, db):
        db.execute_returning.return_value = [_token_row()]
        token = store.create("a" * 64, "user@example.com", now_utc() + timedelta(minutes=15))
        assert token.email == "user@example.com"

    def test_invalidate_all_unused_counts_rows(self, store, db):
        db.execute_returning.return_value = [{"id": "1"}, {"id": "2"}]
        assert store.invalidate_all_unused("user@example.com") == 2

        query = db.execute_returning.call_args.args[0]
        assert "used = false" in query

    def test_mark_used_is_conditional_update(self, store, db):
        db.execute_returning.return_value = [{"id": "1"}]
        assert store.mark_used_if_unused("1") is True

        query = db.execute_returning.call_args.args[0]
        assert "WHERE id = %s AND used = false" in query
        assert "RETURNING id" in query

    def test_mark_used_lost_race(self, store, db):
        db.execute_returning.return_value = []
        assert store.mark_used_if_unused("1") is False


class TestSchema:
    def test_schema_defines_auth_tables(self):
        sql = schema_sql()
        for table in ("users", "verification_tokens", "security_events"):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in sql

    def test_apply_schema_runs_script(self):
        db = Mock(spec=PostgresClient)

        apply_schema(db)

        db.execute_script.assert_called_once_with(schema_sql())
