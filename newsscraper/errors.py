"""
Exception taxonomy for the scraping pipeline.

Candidate- and source-level errors are caught by the pipeline and turned into
counters and job log entries; only validation errors reach the caller.
"""

from __future__ import annotations

from typing import Optional


class ScraperError(Exception):
    """Base class for all scraper errors."""


class FeedFetchError(ScraperError):
    """The source feed could not be fetched or parsed."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Feed for '{source}' unavailable: {reason}")
        self.source = source
        self.reason = reason


class ExtractionError(ScraperError):
    """A single candidate article could not be extracted."""

    def __init__(self, url: str, reason: str, stage: str = "page"):
        super().__init__(f"Extraction failed for {url} ({stage}): {reason}")
        self.url = url
        self.reason = reason
        self.stage = stage


class RobotsDisallowedError(ExtractionError):
    """robots.txt forbids fetching the page."""

    def __init__(self, url: str):
        super().__init__(url, "disallowed by robots.txt", stage="robots")


class DuplicateError(ScraperError):
    """An article with the same source URL is already stored."""

    def __init__(self, source_url: str, existing_id: Optional[str] = None):
        super().__init__(f"Article already stored: {source_url}")
        self.source_url = source_url
        self.existing_id = existing_id


class UnknownSourceError(ScraperError):
    """A requested source name is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown source: {name}")
        self.name = name


class PersistenceError(ScraperError):
    """Writing to or reading from the durable store failed."""


class JobValidationError(ScraperError, ValueError):
    """Trigger parameters are invalid."""


class JobNotFoundError(ScraperError, KeyError):
    """No job exists with the given id."""

    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class InvalidTransitionError(ScraperError):
    """A job status change that the state machine does not allow."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid job status transition: {current} -> {target}")
        self.current = current
        self.target = target
