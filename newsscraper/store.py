"""
Persistence layer for sources, jobs, job logs and scraped articles.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

import aiosqlite

from .errors import DuplicateError, JobNotFoundError, PersistenceError
from .infra.db import Database
from .models import (
    JobLogEntry,
    JobStatus,
    LogLevel,
    LogPage,
    ScrapedArticle,
    ScrapingJob,
    Source,
    new_id,
    utcnow,
)


logger = logging.getLogger(__name__)

_DB_ERRORS = (sqlite3.Error, aiosqlite.Error)

# SQLite caps bound parameters per statement; stay well below it.
_IN_CHUNK = 500


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _source_from_row(row: aiosqlite.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        domain=row["domain"],
        rss_url=row["rss_url"],
        respect_robots_txt=bool(row["respect_robots_txt"]),
        delay_between_requests=row["delay_between_requests"],
        user_agent=row["user_agent"],
        timeout_ms=row["timeout_ms"],
        enabled=bool(row["enabled"]),
    )


def _job_from_row(row: aiosqlite.Row) -> ScrapingJob:
    return ScrapingJob(
        id=row["id"],
        sources_requested=json.loads(row["sources_requested"]),
        articles_per_source=row["articles_per_source"],
        status=JobStatus(row["status"]),
        triggered_at=row["triggered_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        total_articles_scraped=row["total_articles_scraped"],
        total_errors=row["total_errors"],
    )


def _log_from_row(row: aiosqlite.Row) -> JobLogEntry:
    return JobLogEntry(
        id=row["id"],
        job_id=row["job_id"],
        source_name=row["source_name"],
        timestamp=row["timestamp"],
        level=LogLevel(row["level"]),
        message=row["message"],
        additional_data=json.loads(row["additional_data"]) if row["additional_data"] else {},
    )


def _article_from_row(row: aiosqlite.Row) -> ScrapedArticle:
    return ScrapedArticle(**{key: row[key] for key in row.keys()})


class ArticleStore:
    """Durable store for the scraping pipeline.

    Every write either succeeds atomically or raises ``PersistenceError``; a
    conflicting article URL raises ``DuplicateError`` instead so callers can
    treat it as a benign race.
    """

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def open(cls, db_path: str) -> "ArticleStore":
        return cls(Database(db_path))

    async def connect(self) -> None:
        try:
            await self.db.connect()
        except _DB_ERRORS as e:
            raise PersistenceError(f"Cannot open database {self.db.db_path}: {e}") from e

    async def close(self) -> None:
        await self.db.close()

    async def __aenter__(self) -> "ArticleStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------------------------------------------- #
    # Sources
    async def upsert_source(self, source: Source) -> str:
        """Insert or update a source by name; returns its id."""
        try:
            existing = await self.db.fetch_value("SELECT id FROM sources WHERE name = ?", (source.name,))
            source_id = existing or source.id or new_id()
            data = source.model_dump()
            data["id"] = source_id
            data["respect_robots_txt"] = int(source.respect_robots_txt)
            data["enabled"] = int(source.enabled)
            data["created_at"] = utcnow().isoformat()
            update_cols = [c for c in data if c not in ("id", "name", "created_at")]
            await self.db.execute(
                f"""
                INSERT INTO sources ({', '.join(data)})
                VALUES ({', '.join('?' * len(data))})
                ON CONFLICT(name) DO UPDATE SET
                    {', '.join(f'{c} = excluded.{c}' for c in update_cols)}
                """,
                tuple(data.values()),
            )
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to upsert source {source.name}: {e}") from e
        return source_id

    async def get_source(self, name: str) -> Optional[Source]:
        row = await self._fetch_one("SELECT * FROM sources WHERE name = ?", (name,))
        return _source_from_row(row) if row else None

    async def list_sources(self) -> List[Source]:
        rows = await self._fetch_all("SELECT * FROM sources ORDER BY name")
        return [_source_from_row(r) for r in rows]

    # ---------------------------------------------- #
    # Articles
    async def exists(self, source_url: str) -> bool:
        row = await self._fetch_one(
            "SELECT 1 FROM scraped_content WHERE source_url = ? LIMIT 1", (source_url,)
        )
        return row is not None

    async def existing_urls(self, urls: Iterable[str]) -> Set[str]:
        """Return the subset of ``urls`` that already have stored content."""
        urls = list(dict.fromkeys(urls))
        found: Set[str] = set()
        for start in range(0, len(urls), _IN_CHUNK):
            chunk = urls[start:start + _IN_CHUNK]
            rows = await self._fetch_all(
                f"SELECT source_url FROM scraped_content WHERE source_url IN ({', '.join('?' * len(chunk))})",
                tuple(chunk),
            )
            found.update(r["source_url"] for r in rows)
        return found

    async def existing_hashes(self, hashes: Iterable[str]) -> Set[str]:
        """Return the subset of ``hashes`` that match stored content."""
        hashes = list(dict.fromkeys(hashes))
        found: Set[str] = set()
        for start in range(0, len(hashes), _IN_CHUNK):
            chunk = hashes[start:start + _IN_CHUNK]
            rows = await self._fetch_all(
                f"SELECT DISTINCT content_hash FROM scraped_content "
                f"WHERE content_hash IN ({', '.join('?' * len(chunk))})",
                tuple(chunk),
            )
            found.update(r["content_hash"] for r in rows)
        return found

    async def insert_article(self, article: ScrapedArticle) -> str:
        """Insert an article; raises ``DuplicateError`` if its URL is stored."""
        data = article.model_dump()
        data["publication_date"] = _ts(article.publication_date)
        data["created_at"] = _ts(article.created_at)
        try:
            inserted = await self.db.insert("scraped_content", data)
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to insert article {article.source_url}: {e}") from e
        if not inserted:
            existing_id = await self.db.fetch_value(
                "SELECT id FROM scraped_content WHERE source_url = ?", (article.source_url,)
            )
            raise DuplicateError(article.source_url, existing_id)
        return article.id

    async def list_articles(
        self,
        *,
        source_id: Optional[str] = None,
        job_id: Optional[str] = None,
        language: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ScrapedArticle]:
        clauses, params = self._filters(source_id=source_id, job_id=job_id, language=language)
        rows = await self._fetch_all(
            f"SELECT * FROM scraped_content {clauses} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_article_from_row(r) for r in rows]

    async def count_articles_for_job(self, job_id: str, source_id: Optional[str] = None) -> int:
        clauses, params = self._filters(job_id=job_id, source_id=source_id)
        row = await self._fetch_one(f"SELECT COUNT(*) FROM scraped_content {clauses}", params)
        return row[0]

    async def article_counts_by_source(self, job_id: str) -> Dict[str, int]:
        rows = await self._fetch_all(
            """
            SELECT s.name AS name, COUNT(c.id) AS n
            FROM scraped_content c JOIN sources s ON s.id = c.source_id
            WHERE c.job_id = ?
            GROUP BY s.name
            ORDER BY s.name
            """,
            (job_id,),
        )
        return {r["name"]: r["n"] for r in rows}

    # ---------------------------------------------- #
    # Jobs
    async def create_job(self, job: ScrapingJob) -> str:
        try:
            await self.db.insert(
                "scraping_jobs",
                {
                    "id": job.id,
                    "sources_requested": json.dumps(job.sources_requested),
                    "articles_per_source": job.articles_per_source,
                    "status": job.status.value,
                    "triggered_at": _ts(job.triggered_at),
                    "started_at": _ts(job.started_at),
                    "completed_at": _ts(job.completed_at),
                    "total_articles_scraped": job.total_articles_scraped,
                    "total_errors": job.total_errors,
                },
            )
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to create job {job.id}: {e}") from e
        return job.id

    async def get_job(self, job_id: str) -> ScrapingJob:
        row = await self._fetch_one("SELECT * FROM scraping_jobs WHERE id = ?", (job_id,))
        if row is None:
            raise JobNotFoundError(job_id)
        return _job_from_row(row)

    async def list_jobs(
        self, status: Optional[JobStatus] = None, limit: int = 20, offset: int = 0
    ) -> List[ScrapingJob]:
        if status is not None:
            rows = await self._fetch_all(
                "SELECT * FROM scraping_jobs WHERE status = ? ORDER BY triggered_at DESC LIMIT ? OFFSET ?",
                (status.value, limit, offset),
            )
        else:
            rows = await self._fetch_all(
                "SELECT * FROM scraping_jobs ORDER BY triggered_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [_job_from_row(r) for r in rows]

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        total_articles_scraped: Optional[int] = None,
        total_errors: Optional[int] = None,
    ) -> ScrapingJob:
        """Move a job to ``status``; the state machine guards the transition."""
        try:
            async with self.db.transaction() as conn:
                async with conn.execute("SELECT status FROM scraping_jobs WHERE id = ?", (job_id,)) as cur:
                    row = await cur.fetchone()
                if row is None:
                    raise JobNotFoundError(job_id)
                JobStatus(row["status"]).transition(status)

                now = utcnow().isoformat()
                sets = ["status = ?"]
                params: List[Any] = [status.value]
                if status is JobStatus.IN_PROGRESS:
                    sets.append("started_at = ?")
                    params.append(now)
                if status.is_terminal:
                    sets.append("completed_at = ?")
                    params.append(now)
                # Counters only move forward.
                if total_articles_scraped is not None:
                    sets.append("total_articles_scraped = MAX(total_articles_scraped, ?)")
                    params.append(total_articles_scraped)
                if total_errors is not None:
                    sets.append("total_errors = MAX(total_errors, ?)")
                    params.append(total_errors)
                await conn.execute(
                    f"UPDATE scraping_jobs SET {', '.join(sets)} WHERE id = ?", (*params, job_id)
                )
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to update job {job_id}: {e}") from e
        return await self.get_job(job_id)

    async def increment_job_counters(self, job_id: str, articles: int = 0, errors: int = 0) -> None:
        """Atomically add to a running job's counters."""
        if not articles and not errors:
            return
        try:
            await self.db.execute(
                """
                UPDATE scraping_jobs
                SET total_articles_scraped = total_articles_scraped + ?,
                    total_errors = total_errors + ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (max(0, articles), max(0, errors), job_id,
                 JobStatus.NEW.value, JobStatus.IN_PROGRESS.value),
            )
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to update counters for job {job_id}: {e}") from e

    # ---------------------------------------------- #
    # Job logs
    async def append_log(self, entry: JobLogEntry) -> None:
        data = entry.additional_data or {}
        try:
            await self.db.insert(
                "scraping_logs",
                {
                    "job_id": entry.job_id,
                    "source_name": entry.source_name,
                    "timestamp": _ts(entry.timestamp),
                    "level": entry.level.value,
                    "message": entry.message,
                    "event_type": data.get("event_type"),
                    "event_name": data.get("event_name"),
                    "additional_data": json.dumps(data, default=str),
                },
            )
        except _DB_ERRORS as e:
            raise PersistenceError(f"Failed to append log for job {entry.job_id}: {e}") from e

    async def list_job_logs(
        self,
        job_id: str,
        page: int = 1,
        page_size: int = 50,
        *,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        event_type: Optional[str] = None,
        event_name: Optional[str] = None,
    ) -> LogPage:
        page = max(1, page)
        page_size = max(1, page_size)
        clauses = ["job_id = ?"]
        params: List[Any] = [job_id]
        if level is not None:
            clauses.append("level = ?")
            params.append(level.value)
        if source is not None:
            clauses.append("source_name = ?")
            params.append(source)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(event_type)
        if event_name is not None:
            clauses.append("event_name = ?")
            params.append(event_name)
        where = " AND ".join(clauses)

        total_row = await self._fetch_one(f"SELECT COUNT(*) FROM scraping_logs WHERE {where}", tuple(params))
        rows = await self._fetch_all(
            f"SELECT * FROM scraping_logs WHERE {where} ORDER BY timestamp, id LIMIT ? OFFSET ?",
            (*params, page_size, (page - 1) * page_size),
        )
        return LogPage(
            entries=[_log_from_row(r) for r in rows],
            total=total_row[0],
            page=page,
            page_size=page_size,
        )

    # ---------------------------------------------- #
    # Helpers
    @staticmethod
    def _filters(**kwargs: Optional[str]) -> tuple:
        clauses, params = [], []
        for column, value in kwargs.items():
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)

    async def _fetch_one(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        try:
            return await self.db.fetch_one(sql, params)
        except _DB_ERRORS as e:
            raise PersistenceError(f"Query failed: {e}") from e

    async def _fetch_all(self, sql: str, params: tuple = ()) -> List[aiosqlite.Row]:
        try:
            return await self.db.fetch_all(sql, params)
        except _DB_ERRORS as e:
            raise PersistenceError(f"Query failed: {e}") from e
