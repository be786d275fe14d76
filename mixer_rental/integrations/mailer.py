"""Outbound mail with Protocol pattern for dependency injection.

Provides SmtpMailSender (real delivery) and NullMailSender (SMTP not
configured). The SMTP password may be stored encrypted with Fernet, keyed
from SECRET_KEY.
"""

import base64
import hashlib
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from ..config import settings

logger = logging.getLogger(__name__)

_SENDER_NAME = "Rental Document Desk"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class MailSender(Protocol):
    """Mail delivery interface."""

    def send(self, to: list[str], subject: str, html_body: str) -> DeliveryResult: ...


# ── Credential encryption ─────────────────────────────────────────────


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_value(plaintext: str) -> str:
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.decrypt(ciphertext.encode()).decode()


# ── Senders ────────────────────────────────────────────────────────────


class SmtpMailSender:
    """STARTTLS SMTP delivery. Every failure comes back as a result, never raised."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_addr: str = "",
        timeout: int = 15,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.from_addr = from_addr or user
        self.timeout = timeout

    def _resolve_password(self) -> str:
        # Fernet tokens start with 'gAAAAA'
        if self._password.startswith("gAAAAA"):
            return decrypt_value(self._password)
        return self._password

    def _build_message(self, to: list[str], subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        domain = self.from_addr.split("@")[-1] if "@" in self.from_addr else "local"
        msg["From"] = formataddr((_SENDER_NAME, self.from_addr))
        msg["To"] = ", ".join(to)
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=domain)
        msg["Subject"] = subject
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def send(self, to: list[str], subject: str, html_body: str) -> DeliveryResult:
        if not to:
            return DeliveryResult(success=False, error="No recipients")

        msg = self._build_message(to, subject, html_body)
        try:
            password = self._resolve_password()
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.user, password)
                server.send_message(msg)
        except InvalidToken:
            logger.error("SMTP password could not be decrypted with the current SECRET_KEY")
            return DeliveryResult(success=False, error="SMTP password could not be decrypted")
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", ", ".join(to), exc)
            return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

        logger.info("Sent '%s' to %s", subject, ", ".join(to))
        return DeliveryResult(success=True, message_id=msg["Message-ID"])


class NullMailSender:
    """Used when SMTP credentials are missing; every send fails and stays retryable."""

    def send(self, to: list[str], subject: str, html_body: str) -> DeliveryResult:
        logger.debug("SMTP not configured, skipping '%s'", subject)
        return DeliveryResult(success=False, error="SMTP not configured")


def create_mail_sender() -> MailSender:
    """Factory: create the appropriate mail sender based on configuration."""
    if not settings.smtp_user or not settings.smtp_password:
        logger.warning("SMTP credentials missing, expiry alerts will not be delivered")
        return NullMailSender()
    return SmtpMailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        from_addr=settings.smtp_from,
        timeout=settings.smtp_timeout_seconds,
    )
