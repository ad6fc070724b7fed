"""Out-of-band delivery of one-time passcodes."""

import asyncio
import random
from dataclasses import dataclass
from typing import Protocol

import httpx

from otpgate.core.config import Settings
from otpgate.core.logging import get_logger

logger = get_logger("notifier")

SUBJECTS = {
    "signup": "Complete Your Registration - OTP Verification",
    "login": "Login Verification - OTP Code",
    "password-reset": "Reset Your Password - OTP Verification",
}

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message: str
    message_id: str | None = None


class Notifier(Protocol):
    async def send(self, identifier: str, code: str, purpose: str) -> DeliveryResult: ...


def render_otp_email(code: str, purpose: str, ttl_minutes: int) -> tuple[str, str]:
    """Return (subject, html) for an OTP email."""
    subject = SUBJECTS.get(purpose, SUBJECTS["login"])
    html = (
        "<!DOCTYPE html><html><body>"
        f"<h2>{subject}</h2>"
        "<p>Your verification code is:</p>"
        f'<p style="font-size:32px;font-weight:bold;letter-spacing:6px">{code}</p>'
        f"<p>This code expires in {ttl_minutes} minutes.</p>"
        "<p>Do not share this code with anyone. "
        "If you didn't request it, please ignore this email.</p>"
        "</body></html>"
    )
    return subject, html


def calculate_backoff_delay(attempt: int, base_delay: float = 0.5, max_delay: float = 8.0) -> float:
    """Exponential backoff with jitter (0.5 to 1.5 times the delay)."""
    delay = min(base_delay * (2**attempt), max_delay)
    return delay * (0.5 + random.random())


class EmailNotifier:
    """Sends OTP emails through a transactional email HTTP API (Brevo-compatible).

    Transport errors and the statuses in ``RETRYABLE_STATUS_CODES`` are retried
    with exponential backoff; anything else is reported as a failed delivery.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender_email: str,
        sender_name: str,
        ttl_minutes: int = 10,
        timeout: float = 10.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        base_delay: float = 0.5,
    ):
        self.api_url = api_url
        self._api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.ttl_minutes = ttl_minutes
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings) -> "EmailNotifier":
        return cls(
            api_url=config.email_api_url,
            api_key=config.email_api_key,
            sender_email=config.email_from_address,
            sender_name=config.email_from_name,
            ttl_minutes=config.otp_ttl_minutes,
            timeout=config.email_timeout_seconds,
            max_retries=config.email_max_retries,
        )

    async def send(self, identifier: str, code: str, purpose: str) -> DeliveryResult:
        subject, html = render_otp_email(code, purpose, self.ttl_minutes)
        payload = {
            "sender": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": identifier}],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"api-key": self._api_key, "accept": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    response = await client.post(self.api_url, json=payload, headers=headers)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    error = f"{type(e).__name__}: {e}"
                else:
                    if response.is_success:
                        message_id = None
                        try:
                            message_id = response.json().get("messageId")
                        except ValueError:
                            pass
                        logger.info(f"OTP email sent to {identifier} ({purpose})")
                        return DeliveryResult(True, "OTP sent successfully", message_id)
                    error = f"HTTP {response.status_code}"
                    if response.status_code not in RETRYABLE_STATUS_CODES:
                        break

                if attempt < self.max_retries:
                    delay = calculate_backoff_delay(attempt, self.base_delay)
                    logger.info(
                        f"Email delivery attempt {attempt + 1}/{self.max_retries + 1} "
                        f"failed ({error}); retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        logger.warning(f"OTP email to {identifier} failed: {error}")
        return DeliveryResult(False, f"Failed to send OTP: {error}")


class LogNotifier:
    """Development notifier: writes the code to the log instead of sending it."""

    async def send(self, identifier: str, code: str, purpose: str) -> DeliveryResult:
        logger.warning(f"[dev] OTP for {identifier} ({purpose}): {code}")
        return DeliveryResult(True, "OTP written to log")


def build_notifier(config: Settings) -> Notifier:
    """Email delivery when an API key is configured, log output otherwise."""
    if config.email_api_key:
        return EmailNotifier.from_settings(config)
    return LogNotifier()
