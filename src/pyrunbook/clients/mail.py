"""Mail delivery collaborators."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

__all__ = ["MailMessage", "Mailer", "SmtpMailer"]


@dataclass(frozen=True)
class MailMessage:
    to: tuple[str, ...]
    subject: str
    body: str
    sender: str | None = None
    cc: tuple[str, ...] = field(default=())
    html: bool = False


@runtime_checkable
class Mailer(Protocol):
    async def deliver(self, message: MailMessage) -> dict[str, Any]:
        """Send ``message`` and return a delivery receipt."""
        ...


class SmtpMailer:
    """
    Mailer speaking SMTP through the standard library.

    smtplib is blocking, so each delivery runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        default_sender: str | None = None,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.use_tls = use_tls
        self.default_sender = default_sender
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"SmtpMailer({self.host}:{self.port})"

    def _build(self, message: MailMessage) -> EmailMessage:
        sender = message.sender or self.default_sender
        if not sender:
            raise ValueError("No sender given and no default_sender configured")

        email = EmailMessage()
        email["From"] = sender
        email["To"] = ", ".join(message.to)
        if message.cc:
            email["Cc"] = ", ".join(message.cc)
        email["Subject"] = message.subject
        email["Message-ID"] = make_msgid()
        if message.html:
            email.set_content(message.body, subtype="html")
        else:
            email.set_content(message.body)
        return email

    def _send(self, email: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self._password or "")
            smtp.send_message(email)

    async def deliver(self, message: MailMessage) -> dict[str, Any]:
        email = self._build(message)
        await asyncio.to_thread(self._send, email)
        logger.info(f"Delivered mail {email['Message-ID']} to {len(message.to)} recipient(s)")
        return {
            "message_id": email["Message-ID"],
            "recipients": list(message.to) + list(message.cc),
        }
