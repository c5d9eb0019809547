"""
Small helpers shared by the extractor and the CLI.
"""

import hashlib
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from langdetect import DetectorFactory, LangDetectException, detect

# langdetect is probabilistic; a fixed seed keeps results reproducible.
DetectorFactory.seed = 0

_WS = re.compile(r"\s+")
_TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid"}


def normalize_whitespace(text: str) -> str:
    return _WS.sub(" ", text).strip()


def content_hash(title: str, content: str) -> str:
    """Fingerprint of an article for duplicate detection."""
    normalized_title = normalize_whitespace(title).lower()
    normalized_content = normalize_whitespace(content).lower()[:2000]
    return hashlib.sha256(f"{normalized_title}:{normalized_content}".encode("utf-8")).hexdigest()


def detect_language(text: str, default: str = "en") -> str:
    if not text or len(text.strip()) < 20:
        return default
    try:
        return detect(text[:5000])
    except LangDetectException:
        return default


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as found in meta tags and JSON-LD."""
    if not value:
        return None
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        minutes, secs = divmod(round(seconds), 60)
        return f"{minutes}m {secs}s"
    hours, rest = divmod(round(seconds), 3600)
    return f"{hours}h {rest // 60}m"


def normalize_url(url: str) -> str:
    """Canonical form of an article URL: no fragment and no tracking parameters."""
    parts = urlsplit(url.strip())
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc.lower(), parts.path, urlencode(query), ""))
