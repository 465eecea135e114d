"""Periodic self-ping that keeps a hosted instance from being idled."""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Dict, Optional

import aiohttp

from .logger import get_logger

USER_AGENT = "ICCICT-KeepWarm/1.0"


def resolve_health_url(base: Optional[str], path: Optional[str] = "/health") -> Optional[str]:
    """Join the public base URL and the health path, or return ``None`` without a base."""
    if not base:
        return None
    path = path or "/health"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base.rstrip('/')}{path}"


class KeepWarmPinger:
    """GET the health URL every ``interval_minutes`` after an initial delay.

    Each tick waits a random jitter first so that several instances sharing a
    URL do not ping in lockstep. Failures are logged and never stop the loop.
    """

    def __init__(
        self,
        url: str,
        *,
        interval_minutes: float = 10.0,
        initial_delay: float = 60.0,
        max_jitter: float = 20.0,
        timeout: float = 8.0,
        logger=None,
    ):
        self.url = url
        self.interval = max(1.0, float(interval_minutes) * 60.0)
        self.initial_delay = max(0.0, float(initial_delay))
        self.max_jitter = max(0.0, float(max_jitter))
        self.timeout = float(timeout)
        self.logger = logger or get_logger("ConferenceMailer.keep_warm")
        self._task: Optional[asyncio.Task] = None

    async def ping(self) -> bool:
        """Issue one GET request; return whether the endpoint answered with a 2xx/3xx status."""
        started = time.monotonic()
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(self.url, headers={"User-Agent": USER_AGENT}) as resp:
                    resp.raise_for_status()
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.logger.warning("[keep-warm] ping failed (url=%s): %s", self.url, str(exc) or type(exc).__name__)
            return False
        duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info("[keep-warm] ping ok (url=%s, status=%d, duration_ms=%d)", self.url, status, duration_ms)
        return True

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            if self.max_jitter:
                await asyncio.sleep(random.uniform(0, self.max_jitter))
            try:
                await self.ping()
            except Exception as exc:
                self.logger.exception("[keep-warm] unhandled error while pinging: %s", exc)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="keep-warm")
        self.logger.info("[keep-warm] scheduled (url=%s, every_min=%.0f)", self.url, self.interval / 60)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None


def build_pinger(settings: Dict[str, Any], logger=None) -> Optional[KeepWarmPinger]:
    """Create the pinger described by ``settings`` or ``None`` when it is disabled."""
    logger = logger or get_logger("ConferenceMailer.keep_warm")
    if not settings.get("keep_warm_enabled", True):
        logger.info("[keep-warm] disabled via KEEP_WARM_ENABLED=false")
        return None
    url = resolve_health_url(settings.get("keep_warm_url"), settings.get("keep_warm_path"))
    if not url:
        logger.warning("[keep-warm] no base URL found (set KEEP_WARM_URL or RENDER_EXTERNAL_URL)")
        return None
    return KeepWarmPinger(
        url,
        interval_minutes=settings.get("keep_warm_interval_minutes") or 10.0,
        logger=logger,
    )
