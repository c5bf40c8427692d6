"""
mail.py — Email notification channel.

Delivery mechanism:
    • SMTP via aiosmtplib (STARTTLS + login when credentials are set)
    • Body containing "<" is sent as HTML as-is
    • Anything else is wrapped in the plain-text template below

═══════════════════════════════════════════════════════════════════════════
PLAIN-TEXT TEMPLATE
═══════════════════════════════════════════════════════════════════════════

    Dear {name},

    {body}

    Additional Information:          (only when data is non-empty)
    • key: value
    • key: value

    Best regards,
    Travo Tourist Safety System

    ---
    This is an automated message. Please do not reply to this email.
    Sent at: {timestamp}
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import List, Optional

import aiosmtplib

from backend.app.core.errors import ChannelDeliveryError
from backend.app.notifications.models import Notification

logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT_NAME = "Tourist"


@dataclass(frozen=True)
class EmailMessage:
    """What the transport receives: exactly one of html / text is set."""
    to: str
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None


def is_html(body: str) -> bool:
    return "<" in body


def render_text_body(
    notification: Notification,
    recipient_name: Optional[str],
    *,
    sent_at: Optional[datetime] = None,
) -> str:
    """Plain-text template with greeting and ``data`` flattened to bullets."""
    sent_at = sent_at or datetime.now(timezone.utc)
    lines = [
        f"Dear {recipient_name or DEFAULT_RECIPIENT_NAME},",
        "",
        notification.body,
        "",
    ]
    if notification.data:
        lines.append("Additional Information:")
        lines.extend(f"• {key}: {value}" for key, value in notification.data.items())
        lines.append("")
    lines.extend([
        "Best regards,",
        "Travo Tourist Safety System",
        "",
        "---",
        "This is an automated message. Please do not reply to this email.",
        f"Sent at: {sent_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
    ])
    return "\n".join(lines)


def render_email(notification: Notification, to: str, recipient_name: Optional[str]) -> EmailMessage:
    if is_html(notification.body):
        return EmailMessage(to=to, subject=notification.title, html=notification.body)
    return EmailMessage(
        to=to,
        subject=notification.title,
        text=render_text_body(notification, recipient_name),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Transports
# ═══════════════════════════════════════════════════════════════════════════

class EmailTransport(ABC):
    """Accepts one rendered email and returns the provider message id."""

    name = "email"

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """Raise ChannelDeliveryError on failure."""

    async def close(self) -> None:
        return None


class SimulatedEmailTransport(EmailTransport):
    """Logs the email instead of sending it (development mode)."""

    name = "simulation"

    def __init__(self) -> None:
        self.outbox: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str:
        logger.info("[EMAIL] simulated → %s: Subject='%s'", message.to, message.subject)
        self.outbox.append(message)
        return f"sim-{uuid.uuid4().hex[:12]}"


class SmtpEmailTransport(EmailTransport):
    """SMTP delivery through aiosmtplib, one connection per message."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        start_tls: bool = True,
        from_address: str,
        from_name: str = "",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._start_tls = start_tls
        self._from_address = from_address
        self._from_name = from_name
        self._timeout = timeout_seconds

    def _build_mime(self, message: EmailMessage) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = formataddr((self._from_name, self._from_address))
        mime["To"] = message.to
        mime["Message-ID"] = make_msgid(domain=self._from_address.split("@")[-1])
        if message.html is not None:
            mime.attach(MIMEText(message.html, "html", "utf-8"))
        else:
            mime.attach(MIMEText(message.text or "", "plain", "utf-8"))
        return mime

    async def send(self, message: EmailMessage) -> str:
        mime = self._build_mime(message)
        try:
            await aiosmtplib.send(
                mime,
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                start_tls=self._start_tls,
                timeout=self._timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise ChannelDeliveryError("email", str(exc)) from exc
        return mime["Message-ID"]
