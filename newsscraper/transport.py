"""
Source-aware transport: fetches feeds and pages through the shared HttpClient
while honouring each source's politeness settings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol
from urllib import robotparser
from urllib.parse import urlparse

import aiohttp

from .errors import RobotsDisallowedError
from .infra.http import HttpClient, RetryHook
from .models import Source


logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
PAGE_ACCEPT = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"


class Transport(Protocol):
    """What the feed reader and content extractor need from the network."""

    async def fetch_feed(self, source: Source, on_retry: Optional[RetryHook] = None) -> str:
        ...

    async def fetch_page(self, url: str, source: Source) -> str:
        ...


class Throttle:
    """Enforces a minimum delay between requests to one source."""

    def __init__(self, delay_ms: int):
        self._delay = max(0, delay_ms) / 1000.0
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    async def wait(self) -> None:
        if not self._delay:
            return
        async with self._lock:
            now = time.monotonic()
            if self._last is not None:
                remaining = self._delay - (now - self._last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last = time.monotonic()


class RobotsCache:
    """Fetches and caches robots.txt per host."""

    def __init__(self, http: HttpClient):
        self._http = http
        self._parsers: Dict[str, robotparser.RobotFileParser] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def allowed(self, url: str, user_agent: str, timeout: float) -> bool:
        parts = urlparse(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        lock = self._locks.setdefault(origin, asyncio.Lock())
        async with lock:
            parser = self._parsers.get(origin)
            if parser is None:
                parser = robotparser.RobotFileParser()
                try:
                    text = await self._http.get_text(
                        f"{origin}/robots.txt", user_agent=user_agent, timeout=timeout
                    )
                    parser.parse(text.splitlines())
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    # Unreachable or missing robots.txt means no restrictions.
                    logger.debug(f"robots.txt unavailable for {origin}: {e}")
                    parser.parse([])
                self._parsers[origin] = parser
        return parser.can_fetch(user_agent, url)


class SourceTransport:
    """Default transport used by the pipeline."""

    def __init__(self, http: HttpClient):
        self.http = http
        self.robots = RobotsCache(http)
        self._throttles: Dict[str, Throttle] = {}

    def _throttle(self, source: Source) -> Throttle:
        throttle = self._throttles.get(source.name)
        if throttle is None:
            throttle = Throttle(source.delay_between_requests)
            self._throttles[source.name] = throttle
        return throttle

    async def fetch_feed(self, source: Source, on_retry: Optional[RetryHook] = None) -> str:
        return await self.http.get_text(
            source.rss_url,
            user_agent=source.user_agent,
            timeout=source.timeout_ms / 1000.0,
            headers={"Accept": FEED_ACCEPT},
            on_retry=on_retry,
        )

    async def fetch_page(self, url: str, source: Source) -> str:
        timeout = source.timeout_ms / 1000.0
        if source.respect_robots_txt and not await self.robots.allowed(url, source.user_agent, timeout):
            raise RobotsDisallowedError(url)
        await self._throttle(source).wait()
        return await self.http.get_text(
            url,
            user_agent=source.user_agent,
            timeout=timeout,
            headers={"Accept": PAGE_ACCEPT},
        )

    async def close(self) -> None:
        await self.http.close()
