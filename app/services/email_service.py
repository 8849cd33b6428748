"""
Transactional email delivery.

One sender is built at startup from settings and injected wherever mail is
sent (OTP delivery, password reset). ``send`` never raises for provider
errors; it reports them in the returned EmailResult.
"""
import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import parseaddr
from typing import Protocol

import httpx
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings
from app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(frozen=True)
class EmailResult:
    ok: bool
    provider: str
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    provider: str

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        ...


class ConsoleEmailSender:
    """Development sender: logs the message instead of delivering it."""

    provider = "console"

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        logger.info("[EMAIL][DEV] to=%s subject=%s", to, subject)
        logger.debug("[EMAIL][DEV] body=%s", html)
        return EmailResult(ok=True, provider=self.provider, message_id=f"console-{uuid.uuid4()}")


class SmtpEmailSender:
    provider = "smtp"

    def __init__(self, host: str, port: int, user: str, password: str, sender: str, use_tls: bool = True, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    def _build(self, to: str, subject: str, html: str, text: str | None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = f"<{uuid.uuid4()}@{self.host or 'localhost'}>"
        message.set_content(text or "This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls()
            if self.user:
                client.login(self.user, self.password)
            client.send_message(message)

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        message = self._build(to, subject, html, text)
        try:
            await run_in_threadpool(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP_SEND_FAILED to=%s error=%s", to, exc)
            return EmailResult(ok=False, provider=self.provider, error=str(exc))
        return EmailResult(ok=True, provider=self.provider, message_id=message["Message-ID"])


class SendGridEmailSender:
    provider = "sendgrid"

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    def _from_field(self) -> dict:
        name, address = parseaddr(self.sender)
        field = {"email": address or self.sender}
        if name:
            field["name"] = name
        return field

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        content = []
        if text:
            content.append({"type": "text/plain", "value": text})
        content.append({"type": "text/html", "value": html})
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": self._from_field(),
            "subject": subject,
            "content": content,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    SENDGRID_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.RequestError as exc:
            logger.error("SENDGRID_SEND_FAILED to=%s error=%s", to, exc)
            return EmailResult(ok=False, provider=self.provider, error=str(exc))

        if response.status_code >= 400:
            logger.error("SENDGRID_SEND_FAILED to=%s status=%s", to, response.status_code)
            return EmailResult(ok=False, provider=self.provider, error=f"HTTP {response.status_code}: {response.text}")
        return EmailResult(ok=True, provider=self.provider, message_id=response.headers.get("X-Message-Id"))


def build_email_sender(settings: Settings) -> EmailSender:
    provider = settings.email_provider.strip().lower()
    if provider == "console":
        if settings.is_production:
            raise ConfigurationError("The console email provider cannot be used in production")
        return ConsoleEmailSender()
    if provider == "smtp":
        if not settings.smtp_host:
            raise ConfigurationError("SMTP email provider selected but smtp_host is not set")
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.email_from,
            use_tls=settings.smtp_use_tls,
        )
    if provider == "sendgrid":
        if not settings.sendgrid_api_key:
            raise ConfigurationError("SendGrid email provider selected but sendgrid_api_key is not set")
        return SendGridEmailSender(api_key=settings.sendgrid_api_key, sender=settings.email_from)
    raise ConfigurationError(f"Unknown email provider: {settings.email_provider}")
