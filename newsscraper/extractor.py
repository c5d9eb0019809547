"""
Content extractor: fetches an article page and pulls out title, body, author
and date through a layered fallback.

Layers, first usable one wins:

1. site strategies from ``newsscraper/plugins`` matching the URL
2. JSON-LD ``articleBody``
3. structural selectors, most specific first
4. default containers (``article``, ``main``, ``body``)
5. the summary the feed itself provided

The body is rendered as plain text with one blank line between paragraphs,
plus a cleaned HTML copy whose links and images carry absolute URLs.
"""

from __future__ import annotations

import asyncio
import html as html_lib
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

import aiohttp
from bs4 import BeautifulSoup, Tag

from .config import ExtractionSettings
from .errors import ExtractionError, RobotsDisallowedError
from .interfaces import ContentStrategy
from .models import CandidateItem, ExtractedArticle, Source
from .transport import Transport
from .utils import content_hash, detect_language, normalize_whitespace, parse_datetime


logger = logging.getLogger(__name__)

STRIP_TAGS = ["script", "style", "noscript", "iframe", "svg", "form", "button", "template"]

NOISE_SELECTORS = ", ".join([
    "nav", ".navigation", ".nav-menu",
    ".social-share", ".share-buttons", ".sharing", '[class*="share-"]',
    ".newsletter-signup", ".newsletter", ".subscribe",
    ".advertisement", ".ad-container", ".ads", '[id^="google_ads"]',
    ".related-articles", ".recommended", ".more-on", '[class*="related"]',
    "aside", "footer",
    ".comments", ".comment-section",
    '[class*="promo"]', '[class*="banner"]',
    "figure", "figcaption", ".caption", '[class*="caption"]',
    ".video-container", ".video-player", ".featured-video",
])

CONTENT_SELECTORS = [
    '[itemprop="articleBody"]',
    'section[name="articleBody"]',
    '[data-testid="article-body"]',
    'article [class*="article-body"]',
    'article [class*="body"]:not([class*="meta"])',
    'article [class*="content"]:not([class*="header"])',
    'main [class*="story-body"]',
    ".article-body",
    ".article-text",
    ".story-content",
    ".story-body",
    ".content__article-body",
    ".entry-content",
    ".post-content",
    ".article-content",
]

DEFAULT_CONTAINERS = ["article", "main", '[role="main"]', "body"]

BLOCK_TAGS = ["p", "h2", "h3", "h4", "li", "blockquote", "pre"]
HEADING_TAGS = {"h2", "h3", "h4"}

LINK_MARKERS = (">>", "»", "›", "→", "▶", "|")
PROMO_PREFIXES = ("READ MORE", "READ ALSO", "RELATED", "WATCH", "CLICK HERE", "SIGN UP", "SUBSCRIBE", "MORE:")
PROMO_MAX_WORDS = 15

BOILERPLATE_PATTERNS = [
    re.compile(r"^\d+\s+(minute|hour|day)s?\s+ago$", re.I),
    re.compile(r"^(image source|image caption|getty images)", re.I),
    re.compile(r"^©\s*\d{4}"),
    re.compile(r"^\[.*\]$"),
]

ARTICLE_TYPES = {"NewsArticle", "Article", "ReportageNewsArticle", "BlogPosting", "AnalysisNewsArticle"}


# ---------------------------------------------- #
# Paragraph rendering
def is_promo(el: Tag, text: str) -> bool:
    """Short ALL-CAPS lines next to link markers are related-article promos."""
    if not any(c.isalpha() for c in text) or text.upper() != text:
        return False
    if len(text.split()) > PROMO_MAX_WORDS:
        return False
    links = el.find_all("a") if el.name != "a" else [el]
    if links and normalize_whitespace(" ".join(a.get_text(" ") for a in links)) == text:
        return True
    if text.startswith(LINK_MARKERS) or text.endswith(LINK_MARKERS):
        return True
    return bool(links) and text.startswith(PROMO_PREFIXES)


def is_boilerplate(text: str) -> bool:
    return any(p.search(text) for p in BOILERPLATE_PATTERNS)


def _has_block_ancestor(el: Tag, stop: Tag) -> bool:
    for parent in el.parents:
        if parent is stop:
            return False
        if parent.name in BLOCK_TAGS:
            return True
    return False


def _outermost(elements: Sequence[Tag]) -> List[Tag]:
    """Drop matches nested inside other matches."""
    ids = {id(el) for el in elements}
    return [el for el in elements if not any(id(p) in ids for p in el.parents)]


def render_paragraphs(blocks: Sequence[Tag], min_paragraph_chars: int) -> Tuple[List[str], str]:
    """Turn body elements into clean paragraphs and matching HTML."""
    paragraphs: List[str] = []
    fragments: List[str] = []
    seen = set()

    def keep(text: str, fragment: str) -> None:
        if text in seen:
            return
        seen.add(text)
        paragraphs.append(text)
        fragments.append(fragment)

    for block in _outermost(blocks):
        if block.name in BLOCK_TAGS:
            elements = [block]
        else:
            elements = [el for el in block.find_all(BLOCK_TAGS) if not _has_block_ancestor(el, block)]

        if not elements:
            # No paragraph markup; fall back to the text's own line breaks.
            for line in block.get_text("\n").splitlines():
                text = normalize_whitespace(line)
                if len(text) >= min_paragraph_chars and not is_boilerplate(text):
                    keep(text, f"<p>{html_lib.escape(text)}</p>")
            continue

        for el in elements:
            text = normalize_whitespace(el.get_text(" "))
            if not text or is_promo(el, text) or is_boilerplate(text):
                continue
            if (len(text) < min_paragraph_chars
                    and el.name not in HEADING_TAGS
                    and not text.endswith((".", "!", "?", '"', "”"))):
                continue
            keep(text, str(el))

    return paragraphs, "\n".join(fragments)


def absolutize_urls(soup: BeautifulSoup, base_url: str) -> None:
    for attr, tags in (("href", ["a", "link"]), ("src", ["img", "source", "video", "audio"])):
        for tag in soup.find_all(tags):
            value = tag.get(attr)
            if value and not value.startswith(("data:", "mailto:", "javascript:", "#")):
                tag[attr] = urljoin(base_url, value)


def strip_noise(soup: BeautifulSoup) -> None:
    for tag in soup(STRIP_TAGS):
        tag.decompose()
    for el in soup.select(NOISE_SELECTORS):
        if el.name not in ("html", "body") and not el.decomposed:
            el.decompose()


# ---------------------------------------------- #
# Metadata
def _jsonld_items(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _jsonld_items(item)
    elif isinstance(data, dict):
        yield data
        if "@graph" in data:
            yield from _jsonld_items(data["@graph"])


def find_jsonld_article(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except (json.JSONDecodeError, TypeError):
            continue
        for item in _jsonld_items(data):
            types = item.get("@type")
            types = types if isinstance(types, list) else [types]
            if ARTICLE_TYPES.intersection(t for t in types if isinstance(t, str)):
                return item
    return None


def _jsonld_author(item: Dict[str, Any]) -> Optional[str]:
    author = item.get("author")
    if isinstance(author, list):
        names = [_jsonld_author({"author": a}) for a in author]
        names = [n for n in names if n]
        return ", ".join(names) or None
    if isinstance(author, dict):
        return author.get("name")
    if isinstance(author, str):
        return author
    return None


def _meta(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    content = tag.get("content") if tag else None
    return normalize_whitespace(content) if content and content.strip() else None


def _text(soup: BeautifulSoup, selector: str) -> Optional[str]:
    el = soup.select_one(selector)
    text = normalize_whitespace(el.get_text(" ")) if el else ""
    return text or None


def _summary_paragraphs(summary: Optional[str]) -> List[str]:
    if not summary:
        return []
    soup = BeautifulSoup(summary, "html.parser")
    blocks = soup.find_all(BLOCK_TAGS)
    if blocks:
        texts = [normalize_whitespace(b.get_text(" ")) for b in blocks]
    else:
        texts = [normalize_whitespace(line) for line in soup.get_text("\n").splitlines()]
    return [t for t in texts if t and not is_boilerplate(t)]


class ContentExtractor:
    """Extracts article fields for one candidate at a time.

    ``extract`` is a plain coroutine: candidate and source in, article out or
    ``ExtractionError`` raised. HTML parsing runs in a worker thread so that
    concurrent page fetches keep flowing.
    """

    def __init__(
        self,
        transport: Transport,
        strategies: Optional[Sequence[ContentStrategy]] = None,
        settings: Optional[ExtractionSettings] = None,
    ):
        self.transport = transport
        self.strategies = list(strategies or [])
        self.settings = settings or ExtractionSettings()

    async def extract(self, candidate: CandidateItem, source: Source) -> ExtractedArticle:
        try:
            page = await self.transport.fetch_page(candidate.url, source)
        except RobotsDisallowedError:
            return self.feed_fallback(candidate, "robots_disallowed")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return self.feed_fallback(candidate, f"page_fetch_failed: {str(e) or type(e).__name__}")

        return await asyncio.to_thread(self.parse_html, page, candidate)

    # ---------------------------------------------- #
    # Parsing
    def parse_html(self, page: str, candidate: CandidateItem) -> ExtractedArticle:
        soup = BeautifulSoup(page, "html.parser")
        base = soup.find("base", href=True)
        base_url = urljoin(candidate.url, base["href"]) if base else candidate.url

        jsonld = find_jsonld_article(soup)
        title = self._pick_title(soup, jsonld, candidate)
        author = (
            (_jsonld_author(jsonld) if jsonld else None)
            or _meta(soup, name="author")
            or _text(soup, '[rel="author"]')
            or _text(soup, ".author, .by-author, .article-author, .byline")
            or candidate.author
        )
        published = (
            parse_datetime(jsonld.get("datePublished") if jsonld else None)
            or parse_datetime(_meta(soup, property="article:published_time"))
            or parse_datetime((soup.find("time", datetime=True) or {}).get("datetime"))
            or candidate.published_at
        )

        strategies = [s for s in self.strategies if s.matches(candidate.url)]
        for strategy in strategies:
            strategy.clean(soup)
        strip_noise(soup)
        absolutize_urls(soup, base_url)

        for method, paragraphs, body_html in self._layers(soup, candidate.url, jsonld, strategies):
            content = "\n\n".join(paragraphs)
            if len(content) < self.settings.min_content_chars:
                continue
            if title is None:
                raise ExtractionError(candidate.url, "no usable title", stage="title")
            content = content[:self.settings.max_content_chars]
            logger.debug(f"Extracted {candidate.url} via {method} ({len(paragraphs)} paragraphs)")
            return ExtractedArticle(
                url=candidate.url,
                title=title,
                content=content,
                content_html=body_html or None,
                author=author,
                publication_date=published,
                language=detect_language(content),
                content_hash=content_hash(title, content),
                extraction_method=method,
            )

        return self.feed_fallback(candidate, "no_page_content", page_title=title)

    def _layers(
        self,
        soup: BeautifulSoup,
        url: str,
        jsonld: Optional[Dict[str, Any]],
        strategies: Sequence[ContentStrategy],
    ) -> Iterator[Tuple[str, List[str], str]]:
        min_chars = self.settings.min_paragraph_chars

        for strategy in strategies:
            blocks = strategy.select(soup, url)
            if blocks:
                yield (f"plugin:{strategy.name}", *render_paragraphs(blocks, min_chars))

        if jsonld and isinstance(jsonld.get("articleBody"), str):
            paragraphs = [normalize_whitespace(p) for p in re.split(r"\n\s*\n|\n", jsonld["articleBody"])]
            paragraphs = [p for p in paragraphs if p]
            yield "json-ld", paragraphs, "\n".join(f"<p>{html_lib.escape(p)}</p>" for p in paragraphs)

        for selector in CONTENT_SELECTORS:
            matches = soup.select(selector)
            if matches:
                yield f"selector:{selector}", *render_paragraphs(matches, min_chars)

        for selector in DEFAULT_CONTAINERS:
            container = soup.select_one(selector)
            if container is not None:
                yield f"container:{selector}", *render_paragraphs([container], min_chars)

    def _pick_title(
        self, soup: BeautifulSoup, jsonld: Optional[Dict[str, Any]], candidate: CandidateItem
    ) -> Optional[str]:
        options = [
            _text(soup, "h1"),
            _meta(soup, property="og:title"),
            _meta(soup, name="twitter:title"),
            normalize_whitespace(jsonld["headline"]) if jsonld and isinstance(jsonld.get("headline"), str) else None,
            _text(soup, "title"),
            normalize_whitespace(candidate.title) if candidate.title else None,
        ]
        for option in options:
            if option and len(option) >= self.settings.min_title_chars:
                return option
        return None

    # ---------------------------------------------- #
    # Fallback
    def feed_fallback(
        self, candidate: CandidateItem, reason: str, page_title: Optional[str] = None
    ) -> ExtractedArticle:
        """Build a degraded article from feed metadata, or raise."""
        title = page_title or normalize_whitespace(candidate.title or "")
        paragraphs = _summary_paragraphs(candidate.summary)
        content = "\n\n".join(paragraphs)

        if len(title) < self.settings.min_title_chars or len(content) < self.settings.min_fallback_chars:
            raise ExtractionError(candidate.url, f"{reason}; feed metadata insufficient", stage="fallback")

        return ExtractedArticle(
            url=candidate.url,
            title=title,
            content=content,
            content_html="\n".join(f"<p>{html_lib.escape(p)}</p>" for p in paragraphs),
            author=candidate.author,
            publication_date=candidate.published_at,
            language=detect_language(content),
            content_hash=content_hash(title, content),
            extraction_method="feed_fallback",
            degraded=True,
            fallback_reason=reason,
        )
