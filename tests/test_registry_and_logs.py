"""Tests for source lookup, the dedup gate and the job log sink."""

import asyncio
import logging
from unittest.mock import AsyncMock

from newsscraper.dedup import DedupGate
from newsscraper.errors import PersistenceError
from newsscraper.log_sink import JobLogger
from newsscraper.models import CandidateItem, LogLevel, ScrapedArticle, ScrapingJob, Source
from newsscraper.registry import SourceRegistry
from newsscraper.store import ArticleStore


def configured():
    return [
        Source(name="alpha", rss_url="https://alpha.example.com/rss"),
        Source(name="off", rss_url="https://off.example.com/rss", enabled=False),
    ]


class TestSourceRegistry:
    def test_configured_sources_are_seeded_on_first_use(self, tmp_path):
        async def scenario():
            async with ArticleStore.open(str(tmp_path / "db.sqlite")) as store:
                registry = SourceRegistry(store, configured())
                found = await registry.get_source("alpha")
                return found, await registry.get_source("missing"), await registry.get_source("off")

        found, missing, disabled = asyncio.run(scenario())

        assert found.id is not None
        assert found.domain == "alpha.example.com"
        assert missing is None
        assert disabled is None

    def test_list_sources_includes_configured(self, tmp_path):
        async def scenario():
            async with ArticleStore.open(str(tmp_path / "db.sqlite")) as store:
                return await SourceRegistry(store, configured()).list_sources()

        assert [s.name for s in asyncio.run(scenario())] == ["alpha", "off"]


class TestDedupGate:
    def test_drops_stored_and_repeated_urls_and_limits(self, tmp_path):
        items = [
            CandidateItem(url=f"https://alpha.example.com/{n}", position=i)
            for i, n in enumerate([0, 1, 1, 2, 3, 4])
        ]

        async def scenario():
            async with ArticleStore.open(str(tmp_path / "db.sqlite")) as store:
                source_id = await store.upsert_source(configured()[0])
                await store.insert_article(
                    ScrapedArticle(
                        source_id=source_id,
                        source_url="https://alpha.example.com/2",
                        title="Stored",
                        content="Stored body",
                        content_hash="h",
                    )
                )
                return await DedupGate(store).filter(items, limit=2)

        kept, duplicates = asyncio.run(scenario())

        assert [c.url for c in kept] == ["https://alpha.example.com/0", "https://alpha.example.com/1"]
        assert duplicates == 2


class TestJobLogger:
    def test_entries_are_stored_with_event_fields(self, tmp_path):
        async def scenario():
            async with ArticleStore.open(str(tmp_path / "db.sqlite")) as store:
                job = ScrapingJob(sources_requested=["alpha"], articles_per_source=1)
                await store.create_job(job)
                log = JobLogger(store, job.id)
                await log.info("rss", "rss_parsed", "Parsed 3 feed items", source="alpha", item_count=3)
                await log.error("source", "source_failed", "Feed unavailable", source="alpha")
                return await store.list_job_logs(job.id)

        page = asyncio.run(scenario())

        first, second = page.entries
        assert first.source_name == "alpha"
        assert first.additional_data == {"event_type": "rss", "event_name": "rss_parsed", "item_count": 3}
        assert second.level is LogLevel.ERROR

    def test_store_failure_is_reported_not_raised(self, caplog):
        store = AsyncMock()
        store.append_log.side_effect = PersistenceError("database is locked")
        log = JobLogger(store, "0123456789abcdef")

        with caplog.at_level(logging.ERROR, logger="newsscraper.log_sink"):
            entry = asyncio.run(log.warning("extraction", "extraction_failed", "Extraction failed"))

        assert entry.level is LogLevel.WARNING
        assert "Failed to persist log event extraction_failed" in caplog.text
