"""Tests for SessionCodec - signed session credentials."""

from datetime import timedelta

import jwt
import pytest

from auth.session import SessionCodec
from auth.exceptions import ConfigurationError
from utils.timezone import now_utc

SECRET = "unit-test-secret-with-plenty-of-entropy"
USER_ID = "123e4567-e89b-42d3-a456-426614174000"


@pytest.fixture
def codec():
    return SessionCodec(SECRET)


def _flip(token: str, index: int) -> str:
    replacement = "A" if token[index] != "A" else "g"
    return token[:index] + replacement + token[index + 1:]


class TestSignVerify:
    """Round trip."""

    def test_round_trip_recovers_claims(self, codec):
        claims = codec.verify(codec.sign(USER_ID, "user@example.com"))

        assert claims is not None
        assert claims.user_id == USER_ID
        assert claims.email == "user@example.com"
        assert claims.expires_at > claims.issued_at

    def test_default_lifetime_is_seven_days(self, codec):
        claims = codec.verify(codec.sign(USER_ID, "user@example.com"))
        assert claims.expires_at - claims.issued_at == timedelta(days=7)

    def test_custom_lifetime(self, codec):
        claims = codec.verify(codec.sign(USER_ID, "user@example.com", expires_in=timedelta(hours=1)))
        assert claims.expires_at - claims.issued_at == timedelta(hours=1)

    def test_hs256_header(self, codec):
        token = codec.sign(USER_ID, "user@example.com")
        assert jwt.get_unverified_header(token)["alg"] == "HS256"


class TestRejection:
    """Anything not signed by us, or expired, yields None."""

    def test_wrong_secret(self, codec):
        foreign = SessionCodec("some-other-secret-entirely-different").sign(USER_ID, "user@example.com")
        assert codec.verify(foreign) is None

    def test_expired(self, codec):
        token = codec.sign(USER_ID, "user@example.com", expires_in=timedelta(seconds=-10))
        assert codec.verify(token) is None

    def test_missing_claims(self, codec):
        token = jwt.encode({"sub": USER_ID}, SECRET, algorithm="HS256")
        assert codec.verify(token) is None

    def test_unsigned_token(self, codec):
        token = jwt.encode(
            {"sub": USER_ID, "email": "a@b.com", "iat": now_utc(), "exp": now_utc() + timedelta(days=1)},
            None,
            algorithm="none",
        )
        assert codec.verify(token) is None

    @pytest.mark.parametrize("value", ["", "garbage", "a.b.c", None, 123])
    def test_malformed(self, codec, value):
        assert codec.verify(value) is None

    def test_any_flipped_character_invalidates(self, codec):
        token = codec.sign(USER_ID, "user@example.com")
        # The final signature char carries base64 padding bits that decode identically
        positions = [i for i, c in enumerate(token[:-1]) if c != "."]

        for index in positions:
            assert codec.verify(_flip(token, index)) is None, f"flip at {index} accepted"


class TestMissingSecret:
    def test_sign_raises_configuration_error(self):
        with pytest.raises(ConfigurationError):
            SessionCodec(None).sign(USER_ID, "user@example.com")

    def test_verify_raises_configuration_error(self, codec):
        token = codec.sign(USER_ID, "user@example.com")
        with pytest.raises(ConfigurationError):
            SessionCodec("").verify(token)


class TestInspection:
    def test_decode_unsafe_ignores_signature(self, codec):
        foreign = SessionCodec("another-secret-value-for-testing").sign(USER_ID, "user@example.com")
        claims = codec.decode_unsafe(foreign)
        assert claims.user_id == USER_ID

    def test_decode_unsafe_garbage(self, codec):
        assert codec.decode_unsafe("not-a-jwt") is None

    def test_expires_at(self, codec):
        token = codec.sign(USER_ID, "user@example.com", expires_in=timedelta(hours=2))
        remaining = codec.expires_at(token) - now_utc()
        assert timedelta(hours=1, minutes=59) < remaining <= timedelta(hours=2)


class TestExpiringSoon:
    def test_thirty_minutes_left_is_expiring(self, codec):
        token = codec.sign(USER_ID, "user@example.com", expires_in=timedelta(minutes=30))
        assert codec.is_expiring_soon(token, threshold_minutes=60) is True

    def test_ten_days_left_is_not_expiring(self, codec):
        token = codec.sign(USER_ID, "user@example.com", expires_in=timedelta(days=10))
        assert codec.is_expiring_soon(token, threshold_minutes=60) is False

    def test_unparsable_counts_as_expiring(self, codec):
        assert codec.is_expiring_soon("garbage") is True
