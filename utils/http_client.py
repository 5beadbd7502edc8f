"""Shared HTTP client for market-data feeds: retry/backoff, per-source limits, 429 cooldowns."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""
    timed_out: bool = False


@dataclass
class SourceGate:
    """Concurrency, call-rate window and 429 cooldown for one named upstream."""

    name: str
    concurrency: asyncio.Semaphore
    max_calls: int | None = None
    window_seconds: float = 60.0
    calls: deque[float] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cooldown_until: float = 0.0
    failures: int = 0

    async def wait_turn(self) -> None:
        pause = self.cooldown_until - time.monotonic()
        if pause > 0:
            logger.debug("HTTP_COOLDOWN_WAIT source=%s wait=%.2fs", self.name, pause)
            await asyncio.sleep(pause)
        if self.max_calls is None:
            return
        while True:
            async with self.lock:
                now = time.monotonic()
                while self.calls and self.calls[0] <= now - self.window_seconds:
                    self.calls.popleft()
                if len(self.calls) < self.max_calls:
                    self.calls.append(now)
                    return
                pause = max(0.01, self.calls[0] + self.window_seconds - now)
            logger.debug("HTTP_RATE_WAIT source=%s wait=%.2fs max_calls=%s", self.name, pause, self.max_calls)
            await asyncio.sleep(pause)

    def cool_down(self, retry_after: str | None) -> float:
        try:
            hinted = max(0.0, float(retry_after or 0.0))
        except ValueError:
            hinted = 0.0
        seconds = max(config.HTTP_429_COOLDOWN_SECONDS, hinted)
        self.cooldown_until = max(self.cooldown_until, time.monotonic() + seconds)
        logger.warning("HTTP_429 source=%s cooldown=%.1fs", self.name, seconds)
        return seconds


def backoff_delay(attempt: int, status: int) -> float:
    cap = max(config.HTTP_BACKOFF_BASE_SECONDS, config.HTTP_BACKOFF_MAX_SECONDS)
    delay = cap if status == 429 else min(cap, config.HTTP_BACKOFF_BASE_SECONDS * 2 ** max(0, attempt - 1))
    return max(0.01, delay + random.uniform(0.0, config.HTTP_JITTER_SECONDS))


class ResilientHttpClient:
    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._source_limits = dict(source_limits or {})
        self._session: aiohttp.ClientSession | None = None
        self._gates: dict[str, SourceGate] = {}

    @property
    def failures(self) -> dict[str, int]:
        return {name: gate.failures for name, gate in self._gates.items()}

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=aiohttp.TCPConnector(limit=config.HTTP_CONNECTOR_LIMIT),
            )
        return self._session

    def gate(self, source: str) -> SourceGate:
        name = str(source or "default").strip().lower() or "default"
        gate = self._gates.get(name)
        if gate is None:
            limit = self._source_limits.get(name, config.HTTP_DEFAULT_CONCURRENCY)
            gate = SourceGate(name=name, concurrency=asyncio.Semaphore(max(1, int(limit))))
            rate = config.HTTP_SOURCE_RATE_LIMITS.get(name)
            if rate is not None:
                gate.max_calls, gate.window_seconds = max(1, int(rate[0])), max(1.0, float(rate[1]))
            self._gates[name] = gate
        return gate

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        """GET and decode JSON. 429 and 5xx are retried with backoff; the final failure is returned, never raised."""
        attempts = max(1, int(max_attempts or config.HTTP_RETRY_ATTEMPTS))
        request_headers = {**self._headers, **(headers or {})}
        gate = self.gate(source)

        result = HttpResult(ok=False, status=0, data=None, error="http_exhausted")
        for attempt in range(1, attempts + 1):
            await gate.wait_turn()
            async with gate.concurrency:
                try:
                    session = await self._get_session()
                    async with session.get(url, params=params, headers=request_headers) as response:
                        status = int(response.status or 0)
                        if status == 200:
                            return HttpResult(ok=True, status=status, data=await response.json())
                        if status == 429:
                            gate.cool_down((response.headers or {}).get("Retry-After"))
                        result = HttpResult(ok=False, status=status, data=None, error=f"http_status_{status}")
                        if status != 429 and not 500 <= status <= 599:
                            break
                except (asyncio.TimeoutError, TimeoutError) as exc:
                    result = HttpResult(ok=False, status=0, data=None, error=f"http_timeout:{exc}", timed_out=True)
                except (aiohttp.ClientError, ValueError) as exc:
                    result = HttpResult(ok=False, status=0, data=None, error=f"http_error:{exc}")
            if attempt >= attempts:
                break
            delay = backoff_delay(attempt, result.status)
            logger.debug(
                "HTTP_RETRY source=%s attempt=%s/%s status=%s delay=%.2fs url=%s",
                gate.name,
                attempt,
                attempts,
                result.status,
                delay,
                url,
            )
            await asyncio.sleep(delay)

        gate.failures += 1
        return result
