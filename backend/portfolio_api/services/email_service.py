"""
Portfolio API — Contact E-mail Notification Service
====================================================

What:  Notifies the portfolio owner about new contact messages.
How:   Two providers, chosen by EMAIL_PROVIDER:
       - emailjs: JSON POST to the EmailJS REST API over httpx, retried with
         tenacity (exponential backoff + jitter) on transport errors and 5xx
       - smtp:    plain-text message via smtplib, run in a worker thread so
         the event loop is never blocked
Who:   ContactController (after a message is stored) and the e-mail
       self-test endpoint.

Failure policy:
    `send_contact_email()` reports failure by returning False and logging;
    a broken mail setup must never fail the contact submission itself.
"""

import asyncio
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Dict, List, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from portfolio_api.config import Settings
from portfolio_api.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)

USER_AGENT = "Portfolio-Backend/1.0"

TEST_CONTACT = {
    "name": "Test User",
    "email": "test@example.com",
    "subject": "Email Configuration Test",
    "message": "This is a test email to verify the email configuration is working properly.",
    "ip_address": "127.0.0.1",
}


def single_line(value: str) -> str:
    """Join the non-blank lines of `value` with single spaces (header values are one line)."""
    return " ".join(line.strip() for line in value.splitlines() if line.strip())


class _RetryableEmailError(Exception):
    """Upstream answered 5xx; worth another attempt."""


class EmailService:
    """
    Args:
        settings:       Provider selection and credentials
        client:         Optional shared httpx.AsyncClient (tests inject one
                        backed by httpx.MockTransport)
        retry_wait_max: Upper bound of the backoff between attempts, seconds
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        retry_wait_max: float = 4.0,
    ):
        self.settings = settings
        self.provider = settings.email_provider
        self._client = client
        self._retry_wait_max = retry_wait_max

    # ── Configuration ─────────────────────────────────────────────────────

    def _config(self) -> Dict[str, Any]:
        s = self.settings
        if self.provider == "emailjs":
            return {
                "service_id": s.emailjs_service_id,
                "template_id": s.emailjs_template_id,
                "public_key": s.emailjs_public_key,
                "private_key": s.emailjs_private_key,
            }
        return {
            "host": s.smtp_host,
            "port": s.smtp_port,
            "username": s.smtp_username,
            "password": s.smtp_password,
            "from_email": s.contact_from_email,
            "to_email": s.contact_to_email,
        }

    def missing_configuration(self) -> List[str]:
        return [key for key, value in self._config().items() if not value]

    @property
    def is_configured(self) -> bool:
        return not self.missing_configuration()

    # ── Sending ───────────────────────────────────────────────────────────

    async def send_contact_email(self, contact: Mapping[str, Any]) -> bool:
        """Send the notification for one contact message. Never raises."""
        try:
            if self.provider == "emailjs":
                await self._send_via_emailjs(contact)
            else:
                await self._send_via_smtp(contact)
        except EmailDeliveryError as e:
            logger.error("E-mail delivery via %s failed: %s", self.provider, e.message)
            return False

        logger.info("Sent contact notification via %s for %s", self.provider, contact.get("email"))
        return True

    async def _send_via_emailjs(self, contact: Mapping[str, Any]) -> None:
        config = self._config()
        payload = {
            "service_id": config["service_id"],
            "template_id": config["template_id"],
            "user_id": config["public_key"],
            "accessToken": config["private_key"],
            "template_params": {
                "from_name": contact["name"],
                "from_email": contact["email"],
                "subject": contact["subject"],
                "message": contact["message"],
                "to_name": "Portfolio Owner",
                "reply_to": contact["email"],
            },
        }

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((httpx.TransportError, _RetryableEmailError)),
                stop=stop_after_attempt(self.settings.email_retry_attempts),
                wait=wait_exponential_jitter(initial=0.5, max=self._retry_wait_max),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self._post_json(self.settings.emailjs_endpoint, payload)
                    if response.status_code >= 500:
                        raise _RetryableEmailError(
                            f"EmailJS returned status {response.status_code}"
                        )
        except (httpx.HTTPError, _RetryableEmailError) as e:
            raise EmailDeliveryError(
                message=f"EmailJS request failed: {e}",
                provider="emailjs",
            )

        if response.status_code != 200:
            raise EmailDeliveryError(
                message=f"EmailJS returned status {response.status_code}: {response.text[:200]}",
                provider="emailjs",
                context={"status_code": response.status_code},
            )

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers)

        timeout = httpx.Timeout(
            self.settings.email_timeout, connect=self.settings.email_connect_timeout
        )
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    def build_smtp_message(self, contact: Mapping[str, Any]) -> EmailMessage:
        config = self._config()
        message = EmailMessage()
        message["From"] = config["from_email"]
        message["To"] = config["to_email"]
        message["Reply-To"] = contact["email"]
        message["Subject"] = f"Portfolio Contact: {single_line(contact['subject'])}"
        message["X-Mailer"] = USER_AGENT
        message.set_content(
            "New contact form submission:\n\n"
            f"Name: {contact['name']}\n"
            f"Email: {contact['email']}\n"
            f"Subject: {contact['subject']}\n\n"
            f"Message:\n{contact['message']}\n\n"
            "---\n"
            "Sent from Portfolio Contact Form\n"
            f"IP: {contact.get('ip_address') or 'Unknown'}\n"
            f"Time: {datetime.now(timezone.utc).isoformat()}\n"
        )
        return message

    async def _send_via_smtp(self, contact: Mapping[str, Any]) -> None:
        try:
            message = self.build_smtp_message(contact)
            await asyncio.to_thread(self._deliver_smtp, message)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            raise EmailDeliveryError(message=f"SMTP delivery failed: {e}", provider="smtp")

    def _deliver_smtp(self, message: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.email_timeout) as smtp:
            if s.smtp_use_tls:
                smtp.starttls()
            if s.smtp_username:
                smtp.login(s.smtp_username, s.smtp_password)
            smtp.send_message(message)

    # ── Self-test ─────────────────────────────────────────────────────────

    async def test_configuration(self) -> Dict[str, Any]:
        """Check the configuration and send one test message."""
        result: Dict[str, Any] = {
            "provider": self.provider,
            "configured": False,
            "test_successful": False,
            "message": "",
        }

        missing = self.missing_configuration()
        if missing:
            result["message"] = "Missing configuration: " + ", ".join(missing)
            return result

        result["configured"] = True
        result["test_successful"] = await self.send_contact_email(TEST_CONTACT)
        result["message"] = (
            "Email configuration test successful"
            if result["test_successful"]
            else "Email configuration test failed - check logs for details"
        )
        return result
