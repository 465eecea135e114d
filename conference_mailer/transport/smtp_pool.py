"""Lightweight asyncio-friendly SMTP connection pool."""

import asyncio
import time
from typing import Dict, Optional, Tuple

import aiosmtplib

PoolKey = Tuple[str, int, Optional[str], bool]


class SMTPPool:
    """Reuse one authenticated SMTP connection per server and credentials.

    The queue drains one job at a time, so a single connection per key is
    enough; it is verified with ``NOOP`` before reuse and replaced once it is
    older than ``ttl`` seconds or stops answering.
    """

    def __init__(self, ttl: int = 300, connect_timeout: float = 10.0):
        """Create a pool with the given time-to-live, in seconds."""
        self.ttl = ttl
        self.connect_timeout = connect_timeout
        self.pool: Dict[PoolKey, Tuple[aiosmtplib.SMTP, float]] = {}
        self.lock = asyncio.Lock()

    async def _connect(self, host: str, port: int, user: Optional[str], password: Optional[str], use_tls: bool) -> aiosmtplib.SMTP:
        """Open a new SMTP connection and authenticate if needed."""
        # Implicit TLS (port 465) never negotiates STARTTLS; otherwise upgrade when the server offers it.
        smtp = aiosmtplib.SMTP(
            hostname=host,
            port=port,
            use_tls=use_tls,
            start_tls=False if use_tls else None,
            timeout=self.connect_timeout,
        )

        async def _do_connect():
            await smtp.connect()
            if user and password:
                await smtp.login(user, password)

        await asyncio.wait_for(_do_connect(), timeout=self.connect_timeout + 5.0)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Return ``True`` when the connection responds correctly to NOOP."""
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            return code == 250
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError):
            return False

    @staticmethod
    async def _quit(smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError):
            pass

    async def get_connection(self, host: str, port: int, user: Optional[str], password: Optional[str], *, use_tls: bool) -> aiosmtplib.SMTP:
        """Return a live connection for the given server and credentials."""
        key: PoolKey = (host, port, user, use_tls)
        async with self.lock:
            entry = self.pool.pop(key, None)

        if entry:
            smtp, opened_at = entry
            if (time.time() - opened_at) < self.ttl and await self._is_alive(smtp):
                async with self.lock:
                    self.pool[key] = (smtp, opened_at)
                return smtp
            await self._quit(smtp)

        smtp = await self._connect(host, port, user, password, use_tls)
        async with self.lock:
            self.pool[key] = (smtp, time.time())
        return smtp

    async def discard(self, host: str, port: int, user: Optional[str], *, use_tls: bool) -> None:
        """Drop the pooled connection for a server after a failed send."""
        async with self.lock:
            entry = self.pool.pop((host, port, user, use_tls), None)
        if entry:
            await self._quit(entry[0])

    async def close_all(self) -> None:
        """Close every pooled connection."""
        async with self.lock:
            entries = list(self.pool.values())
            self.pool.clear()
        for smtp, _ in entries:
            await self._quit(smtp)
