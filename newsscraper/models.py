"""
Core data models for the scraping pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class JobStatus(str, Enum):
    """Lifecycle of a scraping job."""

    NEW = "new"
    IN_PROGRESS = "in-progress"
    SUCCESSFUL = "successful"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _TRANSITIONS[self]

    def transition(self, target: "JobStatus") -> "JobStatus":
        """Return ``target`` if the move is allowed, raise otherwise."""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.value, target.value)
        return target


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.SUCCESSFUL, JobStatus.PARTIAL, JobStatus.FAILED, JobStatus.CANCELLED}
)

_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.NEW: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: TERMINAL_STATUSES,
    JobStatus.SUCCESSFUL: frozenset(),
    JobStatus.PARTIAL: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Source(BaseModel):
    """A configured news feed plus its politeness settings."""

    id: Optional[str] = None
    name: str
    domain: str = ""
    rss_url: str
    respect_robots_txt: bool = True
    delay_between_requests: int = 1000  # milliseconds
    user_agent: str = "NewsScraper/1.0 (+https://example.org/bot)"
    timeout_ms: int = 30000
    enabled: bool = True

    def model_post_init(self, __context: Any) -> None:
        if not self.domain:
            self.domain = urlparse(self.rss_url).hostname or ""


class CandidateItem(BaseModel):
    """A feed entry considered for extraction."""

    url: str
    title: str = ""
    summary: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    position: int = 0


class ExtractedArticle(BaseModel):
    """Article fields produced by the content extractor."""

    url: str
    title: str
    content: str
    content_html: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[datetime] = None
    language: str = "en"
    content_hash: str
    extraction_method: str = "selector"
    degraded: bool = False
    fallback_reason: Optional[str] = None


class ScrapedArticle(BaseModel):
    """A persisted article row."""

    id: str = Field(default_factory=new_id)
    source_id: str
    job_id: Optional[str] = None
    source_url: str
    title: str
    content: str
    content_html: Optional[str] = None
    author: Optional[str] = None
    publication_date: Optional[datetime] = None
    language: str = "en"
    content_hash: str
    processing_status: str = "completed"
    extraction_method: str = "selector"
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_extracted(
        cls, extracted: ExtractedArticle, source_id: str, job_id: Optional[str]
    ) -> "ScrapedArticle":
        return cls(
            source_id=source_id,
            job_id=job_id,
            source_url=extracted.url,
            title=extracted.title,
            content=extracted.content,
            content_html=extracted.content_html,
            author=extracted.author,
            publication_date=extracted.publication_date,
            language=extracted.language,
            content_hash=extracted.content_hash,
            extraction_method=extracted.extraction_method,
        )


class ScrapingJob(BaseModel):
    """One triggered scraping run across one or more sources."""

    id: str = Field(default_factory=new_id)
    sources_requested: List[str]
    articles_per_source: int
    status: JobStatus = JobStatus.NEW
    triggered_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_articles_scraped: int = 0
    total_errors: int = 0

    @property
    def max_articles(self) -> int:
        return len(self.sources_requested) * self.articles_per_source


class JobLogEntry(BaseModel):
    """A structured, job-scoped log line."""

    id: Optional[int] = None
    job_id: str
    source_name: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def event_name(self) -> Optional[str]:
        return self.additional_data.get("event_name")


class LogPage(BaseModel):
    """A page of job log entries."""

    entries: List[JobLogEntry]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


class SourceOutcome(BaseModel):
    """Result of running the pipeline for one source."""

    source: str
    saved: int = 0
    extracted: int = 0
    errors: int = 0
    candidates: int = 0
    duplicates: int = 0
    already_stored: int = 0
    capped: int = 0
    failed: bool = False
    reason: Optional[str] = None
