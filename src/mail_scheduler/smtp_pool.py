# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Asyncio-friendly SMTP connection pool.

Each dispatch consumer runs in its own asyncio task and keeps one SMTP
connection for as long as it stays fresh, so consecutive sends from the same
consumer skip the connect / STARTTLS / AUTH round trips.

The pool handles:
- TTL-based connection expiration
- Health checking via SMTP NOOP before reuse
- Reconnection when a connection is stale or broken
- Closing everything on shutdown

Example:
    Sending through the pool::

        pool = SMTPPool(ttl=300)
        async with pool.connection("smtp.example.com", 587, "user", "secret", use_tls=True) as smtp:
            await smtp.send_message(message)

        await pool.close_all()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosmtplib

logger = logging.getLogger(__name__)

ConnectionParams = tuple[str, int, str | None, str | None, bool]


class SMTPPool:
    """SMTP connection pool with per-task connection reuse.

    Attributes:
        ttl: Maximum age in seconds of a pooled connection.
        connect_timeout: Seconds allowed for connect plus login.
        pool: Task id -> (connection, last use, connection params).
        lock: Guards ``pool``.
    """

    def __init__(self, ttl: int = 300, connect_timeout: float = 15.0):
        self.ttl = ttl
        self.connect_timeout = connect_timeout
        self.pool: dict[int, tuple[aiosmtplib.SMTP, float, ConnectionParams]] = {}
        self.lock = asyncio.Lock()

    async def _connect(self, params: ConnectionParams) -> aiosmtplib.SMTP:
        """Open and authenticate a new connection.

        Port 465 with TLS uses implicit TLS, other ports with TLS use
        STARTTLS, and ``use_tls=False`` keeps the session in plain text.

        Raises:
            TimeoutError: If connect plus login exceeds ``connect_timeout``.
            aiosmtplib.SMTPException: If connection or authentication fails.
        """
        host, port, user, password, use_tls = params
        if use_tls and port == 465:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, use_tls=True, start_tls=False, timeout=10.0)
        elif use_tls:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, use_tls=False, start_tls=True, timeout=10.0)
        else:
            smtp = aiosmtplib.SMTP(hostname=host, port=port, use_tls=False, start_tls=False, timeout=10.0)

        async def _do_connect() -> None:
            await smtp.connect()
            if user and password:
                await smtp.login(user, password)

        await asyncio.wait_for(_do_connect(), timeout=self.connect_timeout)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Return True if the connection answers NOOP with 250."""
        try:
            response = await asyncio.wait_for(smtp.noop(), timeout=5.0)
        except (aiosmtplib.SMTPException, OSError, TimeoutError):
            return False
        return response.code == 250

    async def _quit(self, smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError, TimeoutError) as exc:
            logger.debug("Ignoring error while closing SMTP connection: %s", exc)

    async def get_connection(
        self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool
    ) -> aiosmtplib.SMTP:
        """Return the current task's connection, reconnecting when needed."""
        task_id = id(asyncio.current_task())
        params: ConnectionParams = (host, int(port), user, password, bool(use_tls))

        async with self.lock:
            entry = self.pool.get(task_id)

        if entry:
            smtp, last_used, pooled_params = entry
            fresh_enough = (time.time() - last_used) < self.ttl
            if pooled_params == params and fresh_enough and await self._is_alive(smtp):
                async with self.lock:
                    self.pool[task_id] = (smtp, time.time(), params)
                return smtp
            async with self.lock:
                self.pool.pop(task_id, None)
            await self._quit(smtp)

        smtp = await self._connect(params)
        async with self.lock:
            self.pool[task_id] = (smtp, time.time(), params)
        return smtp

    async def probe(
        self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool
    ) -> None:
        """Open and close a throwaway connection, raising on failure."""
        smtp = await self._connect((host, int(port), user, password, bool(use_tls)))
        await self._quit(smtp)

    async def discard_current(self) -> None:
        """Drop the current task's connection (after a failed send)."""
        task_id = id(asyncio.current_task())
        async with self.lock:
            entry = self.pool.pop(task_id, None)
        if entry:
            await self._quit(entry[0])

    @asynccontextmanager
    async def connection(
        self, host: str, port: int, user: str | None, password: str | None, *, use_tls: bool
    ) -> AsyncIterator[aiosmtplib.SMTP]:
        """Context manager yielding a pooled connection.

        If the body raises, the connection is dropped so the next send starts
        from a clean session.
        """
        smtp = await self.get_connection(host, port, user, password, use_tls=use_tls)
        try:
            yield smtp
        except BaseException:
            await self.discard_current()
            raise

    async def cleanup(self) -> None:
        """Close connections that exceeded the TTL or fail the health check."""
        now = time.time()
        async with self.lock:
            items = list(self.pool.items())

        expired: list[int] = []
        for task_id, (smtp, last_used, _params) in items:
            if (now - last_used) > self.ttl or not await self._is_alive(smtp):
                expired.append(task_id)

        for task_id in expired:
            async with self.lock:
                entry = self.pool.pop(task_id, None)
            if entry:
                await self._quit(entry[0])

    async def close_all(self) -> None:
        async with self.lock:
            entries = list(self.pool.values())
            self.pool.clear()
        for smtp, _last_used, _params in entries:
            await self._quit(smtp)


__all__ = ["SMTPPool"]
