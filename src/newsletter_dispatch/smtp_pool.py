# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Reusable SMTP connections for a delivery run.

A run sends hundreds of messages to the same server one after another, so
opening a new session per recipient wastes most of the pacing budget on
handshakes. :class:`SMTPPool` keeps one connection per server/credential
tuple, checks it with NOOP before reuse and replaces it after TTL expiry
or after a failed send.

Example:
    pool = SMTPPool(ttl=300)
    async with pool.connection("smtp.example.com", 587, "user", "secret", use_tls=True) as smtp:
        await smtp.send_message(message)
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosmtplib

ConnectionKey = tuple[str, int, str | None, str | None, bool]


class SMTPPool:
    """Keyed SMTP connection cache with TTL and NOOP health checks.

    Attributes:
        ttl: Maximum idle age in seconds before a connection is replaced.
        connect_timeout: Upper bound for connect plus login, in seconds.
    """

    def __init__(self, ttl: int = 300, connect_timeout: float = 15.0):
        self.ttl = ttl
        self.connect_timeout = connect_timeout
        self._entries: dict[ConnectionKey, tuple[aiosmtplib.SMTP, float]] = {}
        self._lock = asyncio.Lock()

    async def _connect(
        self, host: str, port: int, user: str | None, password: str | None, use_tls: bool
    ) -> aiosmtplib.SMTP:
        """Open and authenticate a new SMTP session.

        Port 465 with TLS uses implicit TLS; other ports with TLS use STARTTLS.

        Raises:
            asyncio.TimeoutError: If connect plus login exceeds ``connect_timeout``.
            aiosmtplib.SMTPException: If connection or authentication fails.
        """
        implicit_tls = use_tls and port == 465
        smtp = aiosmtplib.SMTP(
            hostname=host,
            port=port,
            use_tls=implicit_tls,
            start_tls=use_tls and not implicit_tls,
            timeout=10.0,
        )

        async def _do_connect() -> None:
            await smtp.connect()
            if user and password:
                await smtp.login(user, password)

        await asyncio.wait_for(_do_connect(), timeout=self.connect_timeout)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError):
            return False
        return code == 250

    async def _quit(self, smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError):
            smtp.close()

    async def get_connection(
        self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool
    ) -> aiosmtplib.SMTP:
        """Return a live connection for the given server, reusing a cached one when healthy."""
        key: ConnectionKey = (host, port, user, password, use_tls)
        async with self._lock:
            entry = self._entries.pop(key, None)

        if entry:
            smtp, last_used = entry
            if (time.monotonic() - last_used) < self.ttl and await self._is_alive(smtp):
                async with self._lock:
                    self._entries[key] = (smtp, time.monotonic())
                return smtp
            await self._quit(smtp)

        smtp = await self._connect(host, port, user, password, use_tls)
        async with self._lock:
            self._entries[key] = (smtp, time.monotonic())
        return smtp

    async def discard(self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool) -> None:
        """Drop and close the cached connection for a server, if any."""
        async with self._lock:
            entry = self._entries.pop((host, port, user, password, use_tls), None)
        if entry:
            await self._quit(entry[0])

    @asynccontextmanager
    async def connection(
        self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool
    ) -> AsyncIterator[aiosmtplib.SMTP]:
        """Context manager yielding a connection; the connection is discarded if the body raises."""
        smtp = await self.get_connection(host, port, user, password, use_tls=use_tls)
        try:
            yield smtp
        except BaseException:
            await self.discard(host, port, user, password, use_tls=use_tls)
            raise

    async def close_all(self) -> None:
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for smtp, _last_used in entries:
            await self._quit(smtp)


__all__ = ["SMTPPool"]
