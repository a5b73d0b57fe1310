"""
Email delivery for magic links and welcome messages.

The auth service only depends on the EmailSender protocol. Variants:
- ConsoleEmailSender: logs the link (development)
- EmailGatewayClient: HTTP transactional gateway, HMAC-SHA256 signed requests
- SmtpEmailSender: any SMTP relay
"""

import hashlib
import hmac
import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send_magic_link(self, to: str, token: str, name: str | None = None) -> None: ...

    def send_welcome(self, to: str, name: str) -> None: ...


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed off for delivery."""


class EmailGatewayError(EmailDeliveryError):
    """Raised when email gateway request fails."""


def magic_link_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/verify?{urlencode({'token': token})}"


def magic_link_text(app_url: str, token: str, name: str | None, expiry_minutes: int) -> str:
    return (
        f"Hi {name or 'there'}!\n\n"
        "Click the link below to sign in:\n\n"
        f"  {magic_link_url(app_url, token)}\n\n"
        f"This link expires in {expiry_minutes} minutes. "
        "If you didn't request this email, you can safely ignore it.\n"
    )


def welcome_text(app_name: str, app_url: str, name: str) -> str:
    return (
        f"Hi {name}!\n\n"
        f"Welcome to {app_name}! Your account has been successfully created.\n\n"
        f"Get started: {app_url}\n"
    )


class ConsoleEmailSender:
    """Writes emails to the log instead of sending them."""

    def __init__(self, app_url: str, app_name: str, expiry_minutes: int = 15):
        self.app_url = app_url
        self.app_name = app_name
        self.expiry_minutes = expiry_minutes

    def send_magic_link(self, to: str, token: str, name: str | None = None) -> None:
        logger.info(
            "MAGIC LINK EMAIL to=%s\n%s",
            to,
            magic_link_text(self.app_url, token, name, self.expiry_minutes),
        )

    def send_welcome(self, to: str, name: str) -> None:
        logger.info("WELCOME EMAIL to=%s\n%s", to, welcome_text(self.app_name, self.app_url, name))


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, app_url: str):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            app_url: Application base URL the gateway builds links against

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.app_url = app_url

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=10,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_magic_link(self, to: str, token: str, name: str | None = None) -> None:
        """
        Send magic link email via gateway. The gateway renders the template.

        Raises:
            EmailGatewayError: On any failure
        """
        payload = {
            "type": "magic_link",
            "email": to,
            "token": token,
            "name": name,
            "app_url": self.app_url,
        }
        self._sign_and_send(payload)
        logger.info(f"Magic link email sent to {to}")

    def send_welcome(self, to: str, name: str) -> None:
        payload = {
            "type": "welcome",
            "email": to,
            "name": name,
            "app_url": self.app_url,
        }
        self._sign_and_send(payload)
        logger.info(f"Welcome email sent to {to}")


class SmtpEmailSender:
    """Plain-text emails over SMTP (STARTTLS unless use_ssl)."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str,
        app_url: str,
        use_ssl: bool = False,
        expiry_minutes: int = 15,
        timeout: int = 10,
    ):
        if not host or not username or not password:
            raise ValueError("SMTP configuration is incomplete: host, username and password are required")

        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.app_url = app_url
        self.use_ssl = use_ssl
        self.expiry_minutes = expiry_minutes
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        smtp.starttls()
        return smtp

    def _send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = f"{self.from_name} <{self.from_email}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            with self._connect() as smtp:
                smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {to} failed: {e}")
            raise EmailDeliveryError(f"SMTP delivery failed: {e}")

    def send_magic_link(self, to: str, token: str, name: str | None = None) -> None:
        self._send(
            to,
            "Your sign-in link",
            magic_link_text(self.app_url, token, name, self.expiry_minutes),
        )
        logger.info(f"Magic link email sent to {to}")

    def send_welcome(self, to: str, name: str) -> None:
        self._send(
            to,
            f"Welcome to {self.from_name}!",
            welcome_text(self.from_name, self.app_url, name),
        )
        logger.info(f"Welcome email sent to {to}")


def create_email_sender(
    provider: str,
    app_url: str,
    app_name: str,
    settings: dict[str, str] | None = None,
    expiry_minutes: int = 15,
) -> EmailSender:
    """
    Build the configured sender.

    Args:
        provider: 'console', 'gateway', or 'smtp' ('nodemailer' is an alias)
        app_url: Application base URL for links
        app_name: Sender display name
        settings: Provider credentials (see vault_client.get_email_config)

    Raises:
        ValueError: Unknown provider or incomplete credentials
    """
    settings = settings or {}
    name = provider.lower()

    if name == "console":
        return ConsoleEmailSender(app_url=app_url, app_name=app_name, expiry_minutes=expiry_minutes)

    if name == "gateway":
        return EmailGatewayClient(
            gateway_url=settings.get("gateway_url", ""),
            api_key=settings.get("api_key", ""),
            hmac_secret=settings.get("hmac_secret", ""),
            app_url=app_url,
        )

    if name in ("smtp", "nodemailer"):
        return SmtpEmailSender(
            host=settings.get("smtp_host", ""),
            port=int(settings.get("smtp_port") or 587),
            username=settings.get("smtp_user", ""),
            password=settings.get("smtp_pass", ""),
            from_email=settings.get("from_email", "noreply@example.com"),
            from_name=app_name,
            app_url=app_url,
            use_ssl=str(settings.get("smtp_secure", "")).lower() == "true",
            expiry_minutes=expiry_minutes,
        )

    raise ValueError(f"Unknown email provider '{provider}'. Valid: console, gateway, smtp")
