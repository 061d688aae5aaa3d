"""
Portfolio API — E-mail Service Tests
=====================================

What we test:
    ✅ EmailJS: payload shape, success, 4xx without retry, 5xx/transport retried
    ✅ SMTP: message built and sent through smtplib (mocked)
    ✅ Failures reported as False, never raised
    ✅ Self-test reports missing configuration

External services are never contacted: EmailJS goes through
httpx.MockTransport and smtplib.SMTP is patched.
"""

import json
import smtplib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from portfolio_api.services.email_service import EmailService

CONTACT = {
    "name": "Ada Lovelace",
    "email": "ada@example.com",
    "subject": "Hello",
    "message": "A message long enough to pass validation.",
    "ip_address": "198.51.100.4",
}


@pytest.fixture
def emailjs_settings(make_settings):
    return make_settings(
        email_provider="emailjs",
        emailjs_service_id="service_1",
        emailjs_template_id="template_1",
        emailjs_public_key="public",
        emailjs_private_key="private",
        email_retry_attempts=3,
    )


@pytest.fixture
def smtp_settings(make_settings):
    return make_settings(
        email_provider="smtp",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_username="mailer",
        smtp_password="secret",
        contact_to_email="owner@example.com",
        contact_from_email="noreply@example.com",
    )


def mock_client(responder):
    """AsyncClient whose requests are answered by `responder`; records them."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responder(len(requests))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, requests


class TestEmailJS:

    @pytest.mark.asyncio
    async def test_success_sends_expected_payload(self, emailjs_settings):
        client, requests = mock_client(lambda n: httpx.Response(200, text="OK"))
        service = EmailService(emailjs_settings, client=client, retry_wait_max=0.01)

        async with client:
            assert await service.send_contact_email(CONTACT) is True

        assert len(requests) == 1
        payload = json.loads(requests[0].content)
        assert payload["service_id"] == "service_1"
        assert payload["user_id"] == "public"
        assert payload["accessToken"] == "private"
        assert payload["template_params"]["reply_to"] == "ada@example.com"
        assert requests[0].headers["user-agent"] == "Portfolio-Backend/1.0"

    @pytest.mark.asyncio
    async def test_client_error_fails_without_retry(self, emailjs_settings):
        client, requests = mock_client(lambda n: httpx.Response(400, text="bad template"))
        service = EmailService(emailjs_settings, client=client, retry_wait_max=0.01)

        async with client:
            assert await service.send_contact_email(CONTACT) is False

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, emailjs_settings):
        client, requests = mock_client(
            lambda n: httpx.Response(503) if n == 1 else httpx.Response(200, text="OK")
        )
        service = EmailService(emailjs_settings, client=client, retry_wait_max=0.01)

        async with client:
            assert await service.send_contact_email(CONTACT) is True

        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_attempts(self, emailjs_settings):
        def refuse(n):
            raise httpx.ConnectError("connection refused")

        client, requests = mock_client(refuse)
        service = EmailService(emailjs_settings, client=client, retry_wait_max=0.01)

        async with client:
            assert await service.send_contact_email(CONTACT) is False

        assert len(requests) == 3


class TestSMTP:

    @pytest.mark.asyncio
    async def test_message_sent(self, smtp_settings):
        service = EmailService(smtp_settings)

        with patch("portfolio_api.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp_cls.return_value.__enter__.return_value = smtp

            assert await service.send_contact_email(CONTACT) is True

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=smtp_settings.email_timeout)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "secret")
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "owner@example.com"
        assert message["Reply-To"] == "ada@example.com"
        assert message["Subject"] == "Portfolio Contact: Hello"
        assert "IP: 198.51.100.4" in message.get_content()

    @pytest.mark.asyncio
    async def test_multiline_subject_folded_into_one_header(self, smtp_settings):
        service = EmailService(smtp_settings)
        contact = dict(CONTACT, subject="Hi\r\nthere\n\n  friend")

        with patch("portfolio_api.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp = MagicMock()
            smtp_cls.return_value.__enter__.return_value = smtp

            assert await service.send_contact_email(contact) is True

        message = smtp.send_message.call_args.args[0]
        assert message["Subject"] == "Portfolio Contact: Hi there friend"

    @pytest.mark.asyncio
    async def test_unbuildable_message_returns_false(self, smtp_settings):
        service = EmailService(smtp_settings)
        contact = dict(CONTACT, email="ada@example.com\nBcc: everyone@example.com")

        with patch("portfolio_api.services.email_service.smtplib.SMTP") as smtp_cls:
            assert await service.send_contact_email(contact) is False

        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_failure_returns_false(self, smtp_settings):
        service = EmailService(smtp_settings)

        with patch("portfolio_api.services.email_service.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value.send_message.side_effect = (
                smtplib.SMTPException("mailbox unavailable")
            )

            assert await service.send_contact_email(CONTACT) is False


class TestConfiguration:

    def test_unconfigured_emailjs(self, make_settings):
        service = EmailService(make_settings(email_provider="emailjs"))

        assert not service.is_configured
        assert service.missing_configuration() == [
            "service_id", "template_id", "public_key", "private_key",
        ]

    def test_configured_smtp(self, smtp_settings):
        assert EmailService(smtp_settings).is_configured

    @pytest.mark.asyncio
    async def test_self_test_reports_missing_configuration(self, make_settings):
        result = await EmailService(make_settings()).test_configuration()

        assert result["configured"] is False
        assert result["test_successful"] is False
        assert result["message"].startswith("Missing configuration: service_id")

    @pytest.mark.asyncio
    async def test_self_test_sends_test_message(self, emailjs_settings):
        client, requests = mock_client(lambda n: httpx.Response(200, text="OK"))
        service = EmailService(emailjs_settings, client=client)

        async with client:
            result = await service.test_configuration()

        assert result["test_successful"] is True
        assert result["message"] == "Email configuration test successful"
        assert json.loads(requests[0].content)["template_params"]["from_email"] == "test@example.com"
