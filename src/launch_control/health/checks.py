"""HTTP readiness polling for freshly started workloads."""

from __future__ import annotations

import asyncio
from enum import StrEnum

import httpx
import structlog

log = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_INTERVAL_SECONDS = 0.8


class ProbeOutcome(StrEnum):
    HEALTHY = "healthy"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def is_healthy(http_code: int) -> bool:
    """Any 2xx or 3xx response counts as ready."""
    return 200 <= http_code < 400


class HealthProber:
    """Polls an HTTP(S) endpoint until it answers 2xx/3xx or the timeout elapses."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        request_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.interval = interval
        self._request_timeout = request_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._request_timeout,
            transport=self._transport,
            follow_redirects=False,
        )

    async def probe(self, url: str) -> int:
        """One-shot GET. Returns the HTTP status code, or 0 if the request failed."""
        async with self._client() as client:
            return await self._probe_with(client, url)

    async def await_ready(
        self,
        url: str,
        timeout: float | None = None,
        interval: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ProbeOutcome:
        """Poll ``url`` at a fixed interval until healthy, timed out or cancelled."""
        timeout = self.timeout if timeout is None else timeout
        interval = self.interval if interval is None else interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0

        async with self._client() as client:
            while True:
                if cancel is not None and cancel.is_set():
                    log.info("health wait cancelled", url=url, attempts=attempts)
                    return ProbeOutcome.CANCELLED

                attempts += 1
                code = await self._probe_with(client, url)
                if is_healthy(code):
                    log.info("health check passed", url=url, status=code, attempts=attempts)
                    return ProbeOutcome.HEALTHY

                remaining = deadline - loop.time()
                if remaining <= 0:
                    log.warning("health check timed out", url=url, timeout=timeout, attempts=attempts)
                    return ProbeOutcome.TIMED_OUT

                await self._pause(min(interval, remaining), cancel)

    async def _probe_with(self, client: httpx.AsyncClient, url: str) -> int:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            log.debug("health probe failed", url=url, error=str(e))
            return 0
        return response.status_code

    @staticmethod
    async def _pause(delay: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
