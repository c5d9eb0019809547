"""
Feed reader: turns a source's RSS/Atom feed into candidate items.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional
from urllib.parse import urljoin, urlparse

import aiohttp
import feedparser

from .errors import FeedFetchError
from .infra.http import RetryHook
from .models import CandidateItem, Source
from .transport import Transport
from .utils import normalize_url


logger = logging.getLogger(__name__)


def _entry_date(entry: Any) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc)


def _entry_summary(entry: Any) -> Optional[str]:
    content = entry.get("content")
    if content:
        value = content[0].get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description")


def parse_feed(text: str, source_name: str) -> List[CandidateItem]:
    """Parse feed XML into candidates, preserving feed order.

    Entry links are resolved against the feed's own link and normalized;
    entries without an http(s) link are skipped.
    """
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise FeedFetchError(source_name, f"unparseable feed: {feed.get('bozo_exception')}")

    base = feed.feed.get("link", "")
    items: List[CandidateItem] = []
    for entry in feed.entries:
        link = (entry.get("link") or "").strip()
        if not link:
            continue
        url = normalize_url(urljoin(base, link))
        if urlparse(url).scheme not in ("http", "https"):
            logger.debug(f"Skipping {source_name} entry without a web link: {link!r}")
            continue
        items.append(
            CandidateItem(
                url=url,
                title=(entry.get("title") or "").strip(),
                summary=_entry_summary(entry),
                author=entry.get("author"),
                published_at=_entry_date(entry),
                position=len(items),
            )
        )
    return items


class FeedReader:
    """Fetches and parses feeds through a transport."""

    def __init__(self, transport: Transport):
        self.transport = transport

    async def read(self, source: Source, on_retry: Optional[RetryHook] = None) -> List[CandidateItem]:
        try:
            text = await self.transport.fetch_feed(source, on_retry=on_retry)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedFetchError(source.name, str(e) or type(e).__name__) from e

        # feedparser is CPU bound; keep it off the event loop.
        items = await asyncio.to_thread(parse_feed, text, source.name)
        logger.debug(f"Parsed {len(items)} items from {source.name}")
        return items
