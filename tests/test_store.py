"""Tests for the SQLite-backed article store."""

import asyncio

import pytest

from newsscraper.errors import DuplicateError, InvalidTransitionError, JobNotFoundError
from newsscraper.models import (
    JobLogEntry,
    JobStatus,
    LogLevel,
    ScrapedArticle,
    ScrapingJob,
    Source,
)
from newsscraper.store import ArticleStore


def make_article(source_id, url, job_id=None, title="A headline"):
    return ScrapedArticle(
        source_id=source_id,
        job_id=job_id,
        source_url=url,
        title=title,
        content="Some body text.\n\nA second paragraph.",
        content_hash=f"hash-{url}",
    )


async def open_store(tmp_path):
    store = ArticleStore.open(str(tmp_path / "scraper.db"))
    await store.connect()
    source_id = await store.upsert_source(Source(name="alpha", rss_url="https://alpha.example.com/rss"))
    return store, source_id


class TestSources:
    def test_upsert_is_keyed_by_name(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                again = await store.upsert_source(
                    Source(name="alpha", rss_url="https://alpha.example.com/feed", enabled=False)
                )
                source = await store.get_source("alpha")
                return source_id, again, source, await store.list_sources()
            finally:
                await store.close()

        first_id, second_id, source, sources = asyncio.run(scenario())

        assert first_id == second_id
        assert source.rss_url == "https://alpha.example.com/feed"
        assert source.enabled is False
        assert [s.name for s in sources] == ["alpha"]


class TestArticles:
    def test_second_insert_of_same_url_raises_duplicate(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                first = await store.insert_article(make_article(source_id, "https://alpha.example.com/1"))
                with pytest.raises(DuplicateError) as excinfo:
                    await store.insert_article(make_article(source_id, "https://alpha.example.com/1"))
                rows = await store.list_articles(source_id=source_id)
                return first, excinfo.value, rows
            finally:
                await store.close()

        first_id, error, rows = asyncio.run(scenario())

        assert error.existing_id == first_id
        assert len(rows) == 1

    def test_concurrent_inserts_store_exactly_one_row(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                url = "https://alpha.example.com/race"
                results = await asyncio.gather(
                    *(store.insert_article(make_article(source_id, url)) for _ in range(8)),
                    return_exceptions=True,
                )
                return results, await store.list_articles()
            finally:
                await store.close()

        results, rows = asyncio.run(scenario())

        assert sum(1 for r in results if isinstance(r, str)) == 1
        assert sum(1 for r in results if isinstance(r, DuplicateError)) == 7
        assert len(rows) == 1

    def test_existing_urls_returns_stored_subset(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                await store.insert_article(make_article(source_id, "https://alpha.example.com/1"))
                await store.insert_article(make_article(source_id, "https://alpha.example.com/3"))
                found = await store.existing_urls(
                    f"https://alpha.example.com/{i}" for i in range(5)
                )
                return found, await store.exists("https://alpha.example.com/3"), await store.exists("nope")
            finally:
                await store.close()

        found, exists, missing = asyncio.run(scenario())

        assert found == {"https://alpha.example.com/1", "https://alpha.example.com/3"}
        assert exists is True
        assert missing is False

    def test_existing_hashes_returns_stored_subset(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                await store.insert_article(make_article(source_id, "https://alpha.example.com/1"))
                return await store.existing_hashes(
                    ["hash-https://alpha.example.com/1", "hash-https://alpha.example.com/2"]
                )
            finally:
                await store.close()

        assert asyncio.run(scenario()) == {"hash-https://alpha.example.com/1"}

    def test_counts_by_job_and_source(self, tmp_path):
        async def scenario():
            store, source_id = await open_store(tmp_path)
            try:
                job = ScrapingJob(sources_requested=["alpha"], articles_per_source=3)
                await store.create_job(job)
                for i in range(3):
                    await store.insert_article(make_article(source_id, f"https://alpha.example.com/{i}", job.id))
                await store.insert_article(make_article(source_id, "https://alpha.example.com/other"))
                return (
                    await store.count_articles_for_job(job.id),
                    await store.count_articles_for_job(job.id, source_id=source_id),
                    await store.article_counts_by_source(job.id),
                )
            finally:
                await store.close()

        total, by_source_id, by_name = asyncio.run(scenario())

        assert total == 3
        assert by_source_id == 3
        assert by_name == {"alpha": 3}


class TestJobs:
    def test_status_updates_set_timestamps(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                job = ScrapingJob(sources_requested=["alpha"], articles_per_source=2)
                await store.create_job(job)
                running = await store.update_job_status(job.id, JobStatus.IN_PROGRESS)
                done = await store.update_job_status(
                    job.id, JobStatus.SUCCESSFUL, total_articles_scraped=2, total_errors=0
                )
                return running, done
            finally:
                await store.close()

        running, done = asyncio.run(scenario())

        assert running.status is JobStatus.IN_PROGRESS
        assert running.started_at is not None
        assert running.completed_at is None
        assert done.status is JobStatus.SUCCESSFUL
        assert done.completed_at is not None
        assert done.total_articles_scraped == 2

    def test_invalid_transition_leaves_job_unchanged(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                job = ScrapingJob(sources_requested=["alpha"], articles_per_source=2)
                await store.create_job(job)
                with pytest.raises(InvalidTransitionError):
                    await store.update_job_status(job.id, JobStatus.SUCCESSFUL)
                return await store.get_job(job.id)
            finally:
                await store.close()

        job = asyncio.run(scenario())

        assert job.status is JobStatus.NEW
        assert job.completed_at is None

    def test_counters_increment_atomically_and_never_decrease(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                job = ScrapingJob(sources_requested=["alpha"], articles_per_source=50)
                await store.create_job(job)
                await store.update_job_status(job.id, JobStatus.IN_PROGRESS)
                await asyncio.gather(
                    *(store.increment_job_counters(job.id, articles=1, errors=i % 2) for i in range(20))
                )
                finished = await store.update_job_status(
                    job.id, JobStatus.PARTIAL, total_articles_scraped=5, total_errors=3
                )
                # Terminal jobs ignore further increments.
                await store.increment_job_counters(job.id, articles=4, errors=4)
                return finished, await store.get_job(job.id)
            finally:
                await store.close()

        finished, reloaded = asyncio.run(scenario())

        assert finished.total_articles_scraped == 20
        assert finished.total_errors == 10
        assert reloaded.total_articles_scraped == 20
        assert reloaded.total_errors == 10

    def test_unknown_job_raises(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                with pytest.raises(JobNotFoundError):
                    await store.get_job("missing")
                with pytest.raises(JobNotFoundError):
                    await store.update_job_status("missing", JobStatus.IN_PROGRESS)
            finally:
                await store.close()

        asyncio.run(scenario())

    def test_list_jobs_filters_by_status(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                first = ScrapingJob(sources_requested=["alpha"], articles_per_source=1)
                second = ScrapingJob(sources_requested=["alpha"], articles_per_source=1)
                await store.create_job(first)
                await store.create_job(second)
                await store.update_job_status(second.id, JobStatus.CANCELLED)
                return (
                    await store.list_jobs(),
                    await store.list_jobs(status=JobStatus.CANCELLED),
                )
            finally:
                await store.close()

        all_jobs, cancelled = asyncio.run(scenario())

        assert len(all_jobs) == 2
        assert [j.status for j in cancelled] == [JobStatus.CANCELLED]


class TestJobLogs:
    def test_pagination_and_filters(self, tmp_path):
        async def scenario():
            store, _ = await open_store(tmp_path)
            try:
                job = ScrapingJob(sources_requested=["alpha", "beta"], articles_per_source=1)
                await store.create_job(job)
                for i in range(7):
                    await store.append_log(
                        JobLogEntry(
                            job_id=job.id,
                            source_name="alpha" if i % 2 == 0 else "beta",
                            level=LogLevel.ERROR if i == 3 else LogLevel.INFO,
                            message=f"event {i}",
                            additional_data={"event_type": "source", "event_name": f"step_{i}"},
                        )
                    )
                return (
                    await store.list_job_logs(job.id, page=1, page_size=3),
                    await store.list_job_logs(job.id, page=3, page_size=3),
                    await store.list_job_logs(job.id, level=LogLevel.ERROR),
                    await store.list_job_logs(job.id, source="alpha"),
                    await store.list_job_logs(job.id, event_name="step_5"),
                )
            finally:
                await store.close()

        first, last, errors, alpha, by_name = asyncio.run(scenario())

        assert [e.message for e in first.entries] == ["event 0", "event 1", "event 2"]
        assert first.total == 7
        assert first.has_more
        assert [e.message for e in last.entries] == ["event 6"]
        assert not last.has_more
        assert [e.message for e in errors.entries] == ["event 3"]
        assert alpha.total == 4
        assert by_name.entries[0].event_name == "step_5"
        assert by_name.entries[0].additional_data["event_type"] == "source"
