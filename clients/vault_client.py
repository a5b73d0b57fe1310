"""
HashiCorp Vault access for the auth service's secrets.

AppRole login from VAULT_ADDR / VAULT_ROLE_ID / VAULT_SECRET_ID (and an
optional VAULT_NAMESPACE). Reads are confined to KV v2 paths under
'magiclink/'. Missing configuration or secrets raise immediately; there are
no defaults for secrets.

Layout:
    magiclink/database   url
    magiclink/valkey     url
    magiclink/session    jwt_secret
    magiclink/email      gateway_url, api_key, hmac_secret
    magiclink/smtp       smtp_host, smtp_port, smtp_user, smtp_pass, smtp_secure, from_email
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "magiclink"

# Email provider -> (vault path, fields)
_EMAIL_SECRETS = {
    "gateway": ("email", ("gateway_url", "api_key", "hmac_secret")),
    "smtp": ("smtp", ("smtp_host", "smtp_port", "smtp_user", "smtp_pass", "smtp_secure", "from_email")),
}
_EMAIL_SECRETS["nodemailer"] = _EMAIL_SECRETS["smtp"]

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultClient:
    """AppRole-authenticated reader for secrets under magiclink/."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not self.vault_role_id or not self.vault_secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        options = {"url": self.vault_addr}
        if self.vault_namespace:
            options["namespace"] = self.vault_namespace

        self.client = hvac.Client(**options)
        self._login()

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info(f"Vault client ready: {self.vault_addr}")

    def _login(self) -> None:
        try:
            result = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
            self.client.token = result["auth"]["client_token"]
        except (hvac.exceptions.VaultError, KeyError) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of a KV v2 secret.

        Args:
            path: Path below magiclink/, e.g. 'session'
            field: Field within the secret, e.g. 'jwt_secret'

        Raises:
            PermissionError: Path missing or access denied
            KeyError: Secret exists but has no such field
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")

        data = response["data"]["data"]
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(data)}"
            )
        return data[field]


def _cached_secret(path: str, field: str) -> str:
    key = f"{_SECRET_PREFIX}/{path}/{field}"
    if key not in _secret_cache:
        _secret_cache[key] = _ensure_vault_client().get_secret(path, field)
    return _secret_cache[key]


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return _cached_secret("database", "url")


def get_valkey_url() -> str:
    """Valkey (Redis) connection URL."""
    return _cached_secret("valkey", "url")


def get_jwt_secret() -> str:
    """Session signing secret (HS256)."""
    return _cached_secret("session", "jwt_secret")


def get_email_config(provider: str = "gateway") -> Dict[str, str]:
    """Credentials for an email provider. Providers without secrets (console) get {}."""
    entry = _EMAIL_SECRETS.get(provider.lower())
    if entry is None:
        return {}
    path, fields = entry
    return {field: _cached_secret(path, field) for field in fields}


def clear_secret_cache() -> None:
    """Forget cached secrets (after rotation)."""
    _secret_cache.clear()
