"""
http.py – Async HTTP client built on *aiohttp* with smart retries,
          transparent 429 / 5xx back-off and per-request overrides for
          user-agent and timeout.
"""

from __future__ import annotations

import asyncio
import email.utils
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)

# Called with (attempt, max_attempts, delay_seconds, error) before each retry sleep.
RetryHook = Callable[[int, int, float, BaseException], Awaitable[None]]


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * global & per-request headers (keeps user-agent in one place)
    * exponential back-off **with jitter** for 429 / 5xx / network errors
    * transparent parsing of *Retry-After* header
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    @staticmethod
    def _parse_retry_after(header_val: str | None) -> Optional[float]:
        """Return seconds given a Retry-After header value."""
        if not header_val:
            return None
        header_val = header_val.strip()
        # seconds
        if header_val.isdigit():
            return float(header_val)
        # HTTP-date
        try:
            parsed = email.utils.parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
        return max(0.0, parsed.timestamp() - time.time())

    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        jitter = random.uniform(0, self._base_delay)
        return exponential + jitter

    async def _request_text(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float] = None,
        on_retry: Optional[RetryHook] = None,
        **kwargs,
    ) -> str:
        """Perform a request with retries and return the decoded body."""
        session = await self._ensure_session()

        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        for attempt in range(1, self._max_retries + 1):
            try:
                async with session.request(method, url, **kwargs) as resp:
                    if resp.status in RETRYABLE_STATUS:
                        raise aiohttp.ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                            message=f"retryable status {resp.status}",
                            headers=resp.headers,
                        )
                    resp.raise_for_status()
                    body = await resp.read()
                    try:
                        return body.decode(resp.charset or "utf-8", errors="replace")
                    except LookupError:
                        return body.decode("utf-8", errors="replace")
            except aiohttp.ClientResponseError as e:
                if e.status not in RETRYABLE_STATUS or attempt == self._max_retries:
                    logger.error("HTTP %s %s failed after %d attempts: %s", method, url, attempt, e)
                    raise
                retry_after_hdr = e.headers.get("Retry-After") if e.headers else None
                sleep_seconds = self._backoff(attempt, self._parse_retry_after(retry_after_hdr))
                error: BaseException = e
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if attempt == self._max_retries:
                    logger.error("HTTP %s %s failed after %d attempts: %s", method, url, attempt, e)
                    raise
                sleep_seconds = self._backoff(attempt, None)
                error = e

            logger.warning(
                "HTTP %s %s failed (attempt %d/%d – will retry in %.1fs): %s",
                method,
                url,
                attempt,
                self._max_retries,
                sleep_seconds,
                str(error).splitlines()[0] if str(error) else type(error).__name__,
            )
            if on_retry is not None:
                await on_retry(attempt, self._max_retries, sleep_seconds, error)
            await asyncio.sleep(sleep_seconds)

        # Should never hit here
        raise RuntimeError("Unreachable retry loop")

    # ---------------------------------------------- #
    # Public helpers
    async def get_text(
        self,
        url: str,
        *,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        on_retry: Optional[RetryHook] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> str:
        merged = dict(headers or {})
        if user_agent:
            merged["User-Agent"] = user_agent
        return await self._request_text(
            "GET", url, headers=merged, timeout=timeout, on_retry=on_retry
        )
