# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mail transport: message construction and SMTP delivery.

The worker only depends on the ``MailTransport`` protocol;
``SmtpTransport`` implements it on top of ``SMTPPool``.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Protocol

import aiosmtplib

from .config import SmtpConfig
from .smtp_pool import SMTPPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEmail:
    """One e-mail ready to send.

    Attributes:
        from_name: Display name; the address is used when empty.
        from_email: Sender address.
        to: Recipient address.
        subject: Subject line.
        text: Plain text body.
    """

    from_name: str | None
    from_email: str
    to: str
    subject: str
    text: str

    @property
    def from_header(self) -> str:
        return formataddr((self.from_name or self.from_email, self.from_email))

    @property
    def html(self) -> str:
        return text_to_html(self.text)


def text_to_html(text: str) -> str:
    """Escape ``text`` for HTML and turn newlines into ``<br>``."""
    return html.escape(text).replace("\r\n", "\n").replace("\n", "<br>")


def build_message(email: OutboundEmail) -> EmailMessage:
    """Build a multipart/alternative message with text and HTML parts."""
    msg = EmailMessage()
    msg["From"] = email.from_header
    msg["To"] = email.to
    msg["Subject"] = email.subject
    msg["Date"] = formatdate(localtime=False)
    domain = email.from_email.rpartition("@")[2] or None
    msg["Message-ID"] = make_msgid(domain=domain)
    msg.set_content(email.text)
    msg.add_alternative(email.html, subtype="html")
    return msg


class MailTransport(Protocol):
    async def send(self, email: OutboundEmail) -> str: ...

    async def verify(self) -> bool: ...

    async def cleanup(self) -> None: ...

    async def close(self) -> None: ...


class SmtpTransport:
    """Deliver e-mails through one SMTP server using pooled connections.

    Attributes:
        config: SMTP server settings.
        pool: Connection pool shared by all consumers.
    """

    def __init__(self, config: SmtpConfig, pool: SMTPPool | None = None):
        self.config = config
        self.pool = pool or SMTPPool(ttl=config.pool_ttl)

    async def send(self, email: OutboundEmail) -> str:
        """Send one e-mail and return its Message-ID.

        Raises:
            aiosmtplib.SMTPException: On SMTP errors.
            OSError: On network errors.
        """
        msg = build_message(email)
        cfg = self.config
        async with self.pool.connection(
            cfg.host, cfg.port, cfg.user, cfg.password, use_tls=cfg.use_tls
        ) as smtp:
            await smtp.send_message(msg, sender=email.from_email, recipients=[email.to])
        return msg["Message-ID"]

    async def verify(self) -> bool:
        """Check that the server accepts a connection (and login, when configured)."""
        cfg = self.config
        try:
            await self.pool.probe(cfg.host, cfg.port, cfg.user, cfg.password, use_tls=cfg.use_tls)
        except (aiosmtplib.SMTPException, OSError, TimeoutError) as exc:
            logger.warning("SMTP server %s:%s not reachable: %s", cfg.host, cfg.port, exc)
            return False
        return True

    async def cleanup(self) -> None:
        """Close pooled connections that expired or stopped answering."""
        await self.pool.cleanup()

    async def close(self) -> None:
        await self.pool.close_all()


__all__ = ["MailTransport", "OutboundEmail", "SmtpTransport", "build_message", "text_to_html"]
