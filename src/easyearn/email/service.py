"""
Email service with provider abstraction.

Supports console (development default), SMTP and the Resend API. The provider is
selected via configuration. Sends happen after the triggering transaction has
committed; a failed send is reported to the caller, never raised.
"""

from __future__ import annotations

import hashlib
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from easyearn.config import get_settings
from easyearn.email.templates import withdrawal_processed

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

NOT_CONFIGURED = "EMAIL_NOT_CONFIGURED"
SEND_FAILED = "SEND_FAILED"
RATE_LIMITED = "RATE_LIMITED"


@dataclass(frozen=True)
class EmailDelivery:
    sent: bool
    reason: str | None = None


class BaseEmailProvider(ABC):
    """Abstract base class for email delivery providers."""

    name = "base"

    @abstractmethod
    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailDelivery:
        """Send an email."""
        ...


class ConsoleProvider(BaseEmailProvider):
    """Log emails instead of delivering them. Reported as not configured."""

    name = "console"

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailDelivery:
        logger.info("email_console", to=to_email, subject=subject, body=text_body)
        return EmailDelivery(sent=False, reason=NOT_CONFIGURED)


class SMTPProvider(BaseEmailProvider):
    """Send emails via SMTP using aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailDelivery:
        """Send via SMTP."""
        import aiosmtplib

        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            tls_context = ssl.create_default_context() if self.use_tls else None
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                tls_context=tls_context,
            )
        except Exception:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return EmailDelivery(sent=False, reason=SEND_FAILED)
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailDelivery(sent=True)


class ResendProvider(BaseEmailProvider):
    """Send emails via Resend API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailDelivery:
        """Send via Resend HTTP API."""
        if not self.api_key:
            logger.warning("email_not_configured", provider=self.name)
            return EmailDelivery(sent=False, reason=NOT_CONFIGURED)

        import httpx

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    "https://api.resend.com/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{self.from_name} <{self.from_address}>",
                        "to": [to_email],
                        "subject": subject,
                        "html": html_body,
                        "text": text_body,
                    },
                    timeout=10.0,
                )
                response.raise_for_status()
        except Exception:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return EmailDelivery(sent=False, reason=SEND_FAILED)
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailDelivery(sent=True)


def _create_provider() -> BaseEmailProvider:
    """Create email provider based on configuration."""
    settings = get_settings()
    provider_name = settings.email_provider.lower()

    if provider_name == "console":
        return ConsoleProvider()
    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """
    High-level email service for Easy Earn.

    Handles per-recipient rate limiting and template rendering.
    """

    def __init__(
        self,
        provider: BaseEmailProvider | None = None,
        redis: Redis | None = None,
    ) -> None:
        self.provider = provider or _create_provider()
        self._redis = redis

    RATE_LIMIT_MAX = 5
    RATE_LIMIT_WINDOW = 3600

    async def _check_rate_limit(self, email: str) -> bool:
        """Check if we can send another email to this address."""
        if self._redis is None:
            return True
        key = f"email_rate:{hashlib.sha256(email.lower().encode()).hexdigest()}"
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self.RATE_LIMIT_WINDOW)
        except RedisError as exc:
            logger.warning("email_rate_limit_unavailable", error=str(exc))
            return True
        return count <= self.RATE_LIMIT_MAX

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailDelivery:
        """Send an email with rate limiting."""
        if not await self._check_rate_limit(to):
            logger.warning("email_rate_limited", to=to, subject=subject)
            return EmailDelivery(sent=False, reason=RATE_LIMITED)
        return await self.provider.send(to, subject, html_body, text_body)

    async def send_withdrawal_processed(
        self,
        to: str,
        display_name: str,
        amount_cents: int,
        method: str,
        code: str | None,
        redemption_id: str,
    ) -> EmailDelivery:
        subject, html_body, text_body = withdrawal_processed(
            display_name=display_name or to,
            amount_cents=amount_cents,
            method=method,
            code=code,
            redemption_id=redemption_id,
        )
        return await self.send_email(to, subject, html_body, text_body)


# Module-level singleton
_email_service: EmailService | None = None


def get_email_service(redis: Redis | None = None) -> EmailService:
    """Get or create the email service singleton."""
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService(redis=redis)
    return _email_service


def reset_email_service() -> None:
    """Reset the email service singleton (for testing)."""
    global _email_service  # noqa: PLW0603
    _email_service = None
