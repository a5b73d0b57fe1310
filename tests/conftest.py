"""Shared test fixtures for the auth test suite.

Everything here is hermetic: in-memory stores, a recording email sender and
a fixed signing secret. Postgres/Valkey/Vault-backed classes are tested
against mocks in their own modules.
"""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env (Vault env vars) BEFORE any imports that might read them
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.cookies import CookieTransport
from auth.rate_limiter import InMemoryRateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionCodec
from auth.stores import InMemoryTokenStore, InMemoryUserStore
from utils.user_context import clear_current_user_id


TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
TEST_EMAIL = "testuser@test.local"


class RecordingEmailSender:
    """EmailSender that remembers what it was asked to send."""

    def __init__(self):
        self.magic_links: list[dict] = []
        self.welcomes: list[dict] = []
        self.fail_magic_link: Exception | None = None
        self.fail_welcome: Exception | None = None

    def send_magic_link(self, to, token, name=None):
        if self.fail_magic_link is not None:
            raise self.fail_magic_link
        self.magic_links.append({"to": to, "token": token, "name": name})

    def send_welcome(self, to, name):
        if self.fail_welcome is not None:
            raise self.fail_welcome
        self.welcomes.append({"to": to, "name": name})

    @property
    def last_token(self) -> str:
        return self.magic_links[-1]["token"]


# =============================================================================
# USER CONTEXT
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


# =============================================================================
# AUTH COMPONENTS
# =============================================================================


@pytest.fixture
def config():
    """Development config so TestClient resends cookies over http."""
    return AuthConfig(
        environment="development",
        app_base_url="https://test.example.com",
        app_name="Test App",
    )


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def token_store():
    return InMemoryTokenStore()


@pytest.fixture
def session_codec():
    return SessionCodec(TEST_JWT_SECRET)


@pytest.fixture
def cookies(config):
    return CookieTransport.from_config(config)


@pytest.fixture
def rate_limiter(config):
    return InMemoryRateLimiter.from_config(config)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def security_logger():
    """Log-only security logger (no database)."""
    return SecurityLogger()


@pytest.fixture
def auth_service(
    config,
    user_store,
    token_store,
    session_codec,
    cookies,
    rate_limiter,
    email_sender,
    security_logger,
):
    return AuthService(
        config=config,
        user_store=user_store,
        token_store=token_store,
        session_codec=session_codec,
        cookies=cookies,
        rate_limiter=rate_limiter,
        email_sender=email_sender,
        security_logger=security_logger,
    )
