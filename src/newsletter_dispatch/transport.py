# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mail transport: send results, the SMTP transport and content helpers.

A transport turns one personalized message into a :data:`SendResult`.
Ordinary delivery failures (SMTP rejections, timeouts, refused connections)
come back as :class:`Rejected` values so the dispatcher can record them per
recipient. Anything else propagates and aborts the run.
"""

from __future__ import annotations

import asyncio
import html as html_lib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Protocol
from urllib.parse import urlencode

import aiosmtplib

from .exceptions import TransportConfigurationError
from .smtp_pool import SMTPPool


@dataclass(frozen=True)
class Delivered:
    """The provider accepted the message."""

    message_id: str | None = None


@dataclass(frozen=True)
class Rejected:
    """The provider refused the message or could not be reached.

    Attributes:
        error: Human-readable error text.
        temporary: True for 4xx codes and network errors.
        smtp_code: SMTP reply code when the server sent one.
    """

    error: str
    temporary: bool = False
    smtp_code: int | None = None

    def describe(self) -> str:
        return f"{self.error} (SMTP {self.smtp_code})" if self.smtp_code else self.error


SendResult = Delivered | Rejected


class MailTransport(Protocol):
    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        ...


_TEMPORARY_PATTERNS = (
    "421",
    "450",
    "451",
    "452",
    "timeout",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "try again",
    "throttl",
)


def classify_smtp_error(exc: Exception) -> tuple[bool, int | None]:
    """Classify an SMTP error as temporary or permanent.

    Returns:
        tuple: (is_temporary, smtp_code)
    """
    smtp_code = None
    if isinstance(exc, aiosmtplib.SMTPException):
        smtp_code = getattr(exc, "code", None)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True, smtp_code

    if smtp_code:
        if 400 <= smtp_code < 500:
            return True, smtp_code
        if 500 <= smtp_code < 600:
            return False, smtp_code

    error_msg = str(exc).lower()
    if any(pattern in error_msg for pattern in _TEMPORARY_PATTERNS):
        return True, smtp_code
    return False, smtp_code


class SmtpTransport:
    """MailTransport backed by aiosmtplib and a reusable connection.

    Attributes:
        from_address: Envelope and header sender.
        pool: Connection cache shared across sends.
    """

    def __init__(
        self,
        *,
        host: str | None,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_address: str | None = None,
        pool: SMTPPool | None = None,
        send_timeout: float = 30.0,
    ):
        if not host or not from_address:
            raise TransportConfigurationError()
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.pool = pool or SMTPPool()
        self.send_timeout = send_timeout

    def build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Subject"] = subject
        domain = self.from_address.rpartition("@")[2] or None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    async def send(self, to: str, subject: str, html: str, text: str) -> SendResult:
        """Send one message. Unusable addresses are permanent rejections."""
        try:
            msg = self.build_message(to, subject, html, text)
        except (ValueError, TypeError) as exc:
            return Rejected(error=f"Invalid message for {to!r}: {exc}", temporary=False)
        try:
            async with self.pool.connection(
                self.host, self.port, self.user, self.password, use_tls=self.use_tls
            ) as smtp:
                await asyncio.wait_for(smtp.send_message(msg), timeout=self.send_timeout)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            temporary, smtp_code = classify_smtp_error(exc)
            return Rejected(error=str(exc) or type(exc).__name__, temporary=temporary, smtp_code=smtp_code)
        return Delivered(message_id=msg["Message-ID"])

    async def close(self) -> None:
        await self.pool.close_all()


def unsubscribe_url(base_url: str, token: str, campaign_id: str) -> str:
    query = urlencode({"token": token, "newsletter": campaign_id})
    return f"{base_url.rstrip('/')}/api/newsletter/unsubscribe?{query}"


def add_unsubscribe_link(
    html: str,
    token: str,
    campaign_id: str,
    base_url: str,
    site_name: str = "our newsletter",
) -> str:
    """Append the unsubscribe footer to an HTML body.

    Args:
        html: Campaign HTML content.
        token: The recipient's unsubscribe token.
        campaign_id: Campaign the link refers to.
        base_url: Public site URL, e.g. ``https://news.example.edu``.
        site_name: Name shown in the footer text.

    Returns:
        The HTML with a footer carrying the personal unsubscribe link.
    """
    link = html_lib.escape(unsubscribe_url(base_url, token, campaign_id), quote=True)
    site = html_lib.escape(base_url.rstrip("/"), quote=True)
    year = datetime.now(timezone.utc).year
    footer = (
        '\n<div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #eee; '
        'text-align: center; color: #666; font-size: 12px;">\n'
        f"  <p>You're receiving this email because you subscribed to {html_lib.escape(site_name)}.</p>\n"
        "  <p>\n"
        f'    <a href="{link}" style="color: #666; text-decoration: underline;">Unsubscribe</a> |\n'
        f'    <a href="{site}" style="color: #666; text-decoration: underline;">Visit Website</a>\n'
        "  </p>\n"
        f"  <p>&copy; {year} {html_lib.escape(site_name)}. All rights reserved.</p>\n"
        "</div>\n"
    )
    return html + footer


_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    """Plain-text rendition of an HTML body: drop style/script blocks and tags, collapse whitespace."""
    text = _STYLE_RE.sub("", html)
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = html_lib.unescape(text)
    return _WS_RE.sub(" ", text).strip()


__all__ = [
    "Delivered",
    "MailTransport",
    "Rejected",
    "SendResult",
    "SmtpTransport",
    "add_unsubscribe_link",
    "classify_smtp_error",
    "strip_html",
    "unsubscribe_url",
]
