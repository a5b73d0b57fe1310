"""
Tests for email senders.

Focus on observable behavior: what goes over the wire, what gets logged,
and which failures surface as EmailDeliveryError.
"""

import hashlib
import hmac
import json
import logging
import smtplib
from unittest.mock import patch

import pytest
import responses

from clients.email_client import (
    ConsoleEmailSender,
    EmailDeliveryError,
    EmailGatewayClient,
    EmailGatewayError,
    SmtpEmailSender,
    create_email_sender,
    magic_link_url,
)

GATEWAY_URL = "https://gateway.example.com/send"
APP_URL = "https://app.example.com"


class TestMagicLinkUrl:
    def test_builds_verify_link(self):
        assert magic_link_url(APP_URL, "abc123") == "https://app.example.com/verify?token=abc123"

    def test_trailing_slash(self):
        assert magic_link_url(APP_URL + "/", "abc") == "https://app.example.com/verify?token=abc"


class TestConsoleEmailSender:
    def test_logs_magic_link(self, caplog):
        caplog.set_level(logging.INFO, logger="clients.email_client")
        ConsoleEmailSender(app_url=APP_URL, app_name="Test App").send_magic_link(
            "user@example.com", "abc123", name="Ada"
        )

        assert "https://app.example.com/verify?token=abc123" in caplog.text
        assert "user@example.com" in caplog.text
        assert "Hi Ada!" in caplog.text

    def test_logs_welcome(self, caplog):
        caplog.set_level(logging.INFO, logger="clients.email_client")
        ConsoleEmailSender(app_url=APP_URL, app_name="Test App").send_welcome("user@example.com", "there")

        assert "Welcome to Test App" in caplog.text


class TestEmailGatewayClientInit:
    """Fail-fast on invalid config."""

    @pytest.mark.parametrize("missing", ["gateway_url", "api_key", "hmac_secret"])
    def test_rejects_empty_credential(self, missing):
        kwargs = {
            "gateway_url": GATEWAY_URL,
            "api_key": "test-api-key",
            "hmac_secret": "test-hmac-secret",
            "app_url": APP_URL,
        }
        kwargs[missing] = ""
        with pytest.raises(ValueError, match=missing):
            EmailGatewayClient(**kwargs)


class TestEmailGatewayClientSend:
    """Uses responses library for HTTP mocking."""

    @pytest.fixture
    def client(self):
        return EmailGatewayClient(
            gateway_url=GATEWAY_URL,
            api_key="test-api-key",
            hmac_secret="test-hmac-secret",
            app_url=APP_URL,
        )

    @responses.activate
    def test_magic_link_payload_is_signed(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        assert client.send_magic_link("user@example.com", "abc123", name="Ada") is None

        request = responses.calls[0].request
        payload = json.loads(request.body)
        assert payload == {
            "type": "magic_link",
            "email": "user@example.com",
            "token": "abc123",
            "name": "Ada",
            "app_url": APP_URL,
        }
        expected = hmac.new(b"test-hmac-secret", request.body.encode(), hashlib.sha256).hexdigest()
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"

    @responses.activate
    def test_welcome_payload(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        client.send_welcome("user@example.com", "Ada")

        assert json.loads(responses.calls[0].request.body)["type"] == "welcome"

    @responses.activate
    def test_gateway_500_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": False, "message": "Internal error"}, status=500)

        with pytest.raises(EmailGatewayError):
            client.send_magic_link("user@example.com", "abc123")

    @responses.activate
    def test_success_false_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": False, "message": "Invalid email"}, status=200)

        with pytest.raises(EmailGatewayError, match="Invalid email"):
            client.send_magic_link("invalid", "abc123")

    @responses.activate
    def test_connection_failure_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, body=ConnectionError("Network unreachable"))

        with pytest.raises(EmailGatewayError):
            client.send_magic_link("user@example.com", "abc123")

    @responses.activate
    def test_invalid_json_response_raises_error(self, client):
        responses.add(responses.POST, GATEWAY_URL, body="not json", status=200)

        with pytest.raises(EmailGatewayError):
            client.send_magic_link("user@example.com", "abc123")

    def test_gateway_error_is_delivery_error(self):
        assert issubclass(EmailGatewayError, EmailDeliveryError)


class TestSmtpEmailSender:
    """smtplib patched - no network."""

    @pytest.fixture
    def sender(self):
        return SmtpEmailSender(
            host="smtp.example.com",
            port=587,
            username="mailer",
            password="secret",
            from_email="noreply@example.com",
            from_name="Test App",
            app_url=APP_URL,
        )

    def test_incomplete_config_rejected(self):
        with pytest.raises(ValueError, match="SMTP"):
            SmtpEmailSender("", 587, "u", "p", "a@b.com", "App", APP_URL)

    def test_sends_magic_link_with_starttls(self, sender):
        with patch("clients.email_client.smtplib.SMTP") as smtp_class:
            smtp = smtp_class.return_value
            smtp.__enter__.return_value = smtp

            sender.send_magic_link("user@example.com", "abc123")

        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "secret")
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "user@example.com"
        assert "verify?token=abc123" in message.get_content()

    def test_ssl_mode(self):
        sender = SmtpEmailSender(
            "smtp.example.com", 465, "mailer", "secret", "noreply@example.com", "Test App", APP_URL, use_ssl=True
        )
        with patch("clients.email_client.smtplib.SMTP_SSL") as smtp_class:
            smtp = smtp_class.return_value
            smtp.__enter__.return_value = smtp
            sender.send_welcome("user@example.com", "Ada")

        smtp_class.assert_called_once_with("smtp.example.com", 465, timeout=10)
        smtp.starttls.assert_not_called()

    def test_smtp_failure_is_delivery_error(self, sender):
        with patch("clients.email_client.smtplib.SMTP") as smtp_class:
            smtp = smtp_class.return_value
            smtp.__enter__.return_value = smtp
            smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

            with pytest.raises(EmailDeliveryError):
                sender.send_magic_link("user@example.com", "abc123")


class TestCreateEmailSender:
    def test_console(self):
        sender = create_email_sender("console", app_url=APP_URL, app_name="App")
        assert isinstance(sender, ConsoleEmailSender)

    def test_gateway(self):
        sender = create_email_sender(
            "gateway",
            app_url=APP_URL,
            app_name="App",
            settings={"gateway_url": GATEWAY_URL, "api_key": "k", "hmac_secret": "s"},
        )
        assert isinstance(sender, EmailGatewayClient)

    @pytest.mark.parametrize("provider", ["smtp", "nodemailer", "SMTP"])
    def test_smtp_aliases(self, provider):
        sender = create_email_sender(
            provider,
            app_url=APP_URL,
            app_name="App",
            settings={
                "smtp_host": "smtp.example.com",
                "smtp_port": "465",
                "smtp_user": "u",
                "smtp_pass": "p",
                "smtp_secure": "true",
            },
        )
        assert isinstance(sender, SmtpEmailSender)
        assert sender.port == 465
        assert sender.use_ssl is True

    def test_gateway_without_credentials_fails_fast(self):
        with pytest.raises(ValueError):
            create_email_sender("gateway", app_url=APP_URL, app_name="App")

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown email provider"):
            create_email_sender("carrier-pigeon", app_url=APP_URL, app_name="App")
