"""Rate limiting transport for httpx."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 5.0
MAX_RETRY_AFTER = 30.0


@dataclass
class HostData:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    window_start: Optional[float] = None
    request_count: int = 0
    rate_limit: Optional[float] = None


class RateLimitedTransport(httpx.AsyncHTTPTransport):
    """
    httpx transport that learns per-host rate limits from 429 responses.

    A 429 is retried after `Retry-After` (or a delay derived from the learned
    rate) up to `max_attempts` times in total; after that the 429 response is
    returned to the caller unchanged. Hosts with a learned limit are paced so
    later requests stay under it.
    """

    def __init__(
        self,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
        max_attempts: int = 3,
        **kwargs
    ):
        super().__init__(
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            **kwargs
        )
        self.max_attempts = max(1, max_attempts)
        self._host_data: dict[str, HostData] = {}

    def _get_host_data(self, host: str) -> HostData:
        """Get or create host tracking data."""
        if host not in self._host_data:
            self._host_data[host] = HostData()
        return self._host_data[host]

    async def _pace(self, host: str, host_data: HostData) -> None:
        """Count the request and, for throttled hosts, wait out the learned rate."""
        async with host_data.lock:
            now = time.monotonic()
            if host_data.window_start is None:
                host_data.window_start = now
            host_data.request_count += 1

            if host_data.rate_limit:
                elapsed = now - host_data.window_start
                earliest = host_data.request_count / host_data.rate_limit
                delay = earliest - elapsed
            else:
                delay = 0

        if delay > 0:
            logger.debug(f"[{host}] Pacing request by {delay:.2f}s")
            await asyncio.sleep(delay)

    async def _learn(self, host: str, host_data: HostData, response: httpx.Response) -> float:
        """Record a 429 and return how long to wait before retrying."""
        async with host_data.lock:
            default_retry_after = DEFAULT_RETRY_AFTER
            if host_data.window_start is not None:
                elapsed = time.monotonic() - host_data.window_start
                if elapsed > 0 and host_data.request_count > 1:
                    host_data.rate_limit = (host_data.request_count - 1) / elapsed
                    logger.info(
                        f"[{host}] Rate limit learned: {host_data.rate_limit:.2f} req/s"
                    )
                    default_retry_after = min(1.0 / host_data.rate_limit, 10.0)

            host_data.window_start = None
            host_data.request_count = 0

        retry_after = response.headers.get("Retry-After", default_retry_after)
        try:
            wait_time = float(retry_after)
        except ValueError:
            wait_time = default_retry_after
        return min(max(wait_time, 0.0), MAX_RETRY_AFTER)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        host_data = self._get_host_data(host)

        attempt = 0

        while True:
            attempt += 1

            await self._pace(host, host_data)
            response = await super().handle_async_request(request)

            if response.status_code != 429:
                return response

            if attempt >= self.max_attempts:
                logger.warning(f"[{host}] Still rate limited after {attempt} attempts")
                return response

            wait_time = await self._learn(host, host_data, response)
            await response.aclose()
            logger.info(
                f"[{host}] Rate limited (429): attempt {attempt}/{self.max_attempts}, "
                f"retrying after {wait_time}s"
            )
            await asyncio.sleep(wait_time)
