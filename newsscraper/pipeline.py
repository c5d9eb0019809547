"""
Per-source pipeline: feed → dedup → concurrent extraction → cap → persist.
"""

import asyncio
import logging
import math
from typing import List, Optional, Sequence, Tuple

from .config import ScrapingSettings
from .dedup import DedupGate
from .errors import DuplicateError, ExtractionError, FeedFetchError, PersistenceError
from .extractor import ContentExtractor
from .feeds import FeedReader
from .log_sink import JobLogger
from .models import CandidateItem, ExtractedArticle, ScrapedArticle, Source, SourceOutcome
from .store import ArticleStore


logger = logging.getLogger(__name__)


class JobContext:
    """State owned by one running job.

    Passed explicitly to every source pipeline; nothing about the current job
    lives in module globals.
    """

    def __init__(self, job_id: str, articles_per_source: int, job_logger: JobLogger):
        self.job_id = job_id
        self.articles_per_source = articles_per_source
        self.logger = job_logger
        self.cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()


class SourcePipeline:
    """Runs one source to completion and reports what happened.

    Failures of individual candidates are counted and logged; only a feed
    error, a persistence error or a source where every candidate failed to
    extract marks the source as failed.
    """

    def __init__(
        self,
        store: ArticleStore,
        feeds: FeedReader,
        extractor: ContentExtractor,
        settings: Optional[ScrapingSettings] = None,
    ):
        self.store = store
        self.feeds = feeds
        self.extractor = extractor
        self.dedup = DedupGate(store)
        self.settings = settings or ScrapingSettings()

    async def run(self, ctx: JobContext, source: Source, cap: int) -> SourceOutcome:
        log = ctx.logger
        outcome = SourceOutcome(source=source.name)
        await log.info(
            "source", "source_started", f"Processing {source.name} ({source.rss_url})",
            source=source.name, rss_url=source.rss_url, target=cap,
        )

        async def on_retry(attempt: int, max_attempts: int, delay: float, error: BaseException) -> None:
            await log.warning(
                "rss", "rss_fetch_retry",
                f"Feed fetch attempt {attempt}/{max_attempts} failed ({error}); retrying in {delay:.1f}s",
                source=source.name, attempt=attempt, delay=round(delay, 2), error=str(error),
            )

        try:
            items = await self.feeds.read(source, on_retry=on_retry)
        except FeedFetchError as e:
            outcome.errors = 1
            outcome.failed = True
            outcome.reason = "feed_error"
            await log.error(
                "source", "source_failed", f"Feed unavailable: {e.reason}",
                source=source.name, reason=outcome.reason, error=e.reason,
            )
            return outcome

        await log.info(
            "rss", "rss_parsed", f"Parsed {len(items)} feed items",
            source=source.name, item_count=len(items),
        )

        scanned = items[:max(cap, math.ceil(self.settings.scan_multiplier * cap))]
        limit = max(cap, math.ceil(self.settings.over_fetch_multiplier * cap))
        candidates, duplicates = await self.dedup.filter(scanned, limit)
        outcome.candidates = len(candidates)
        outcome.duplicates = duplicates
        await log.info(
            "dedup", "candidates_filtered",
            f"{len(candidates)} new candidates from {len(scanned)} scanned items ({duplicates} already stored)",
            source=source.name, scanned=len(scanned), candidates=len(candidates), duplicates=duplicates,
        )

        if not candidates:
            await log.info(
                "source", "source_completed", "No new articles",
                source=source.name, saved=0, extracted=0, errors=0,
            )
            return outcome

        results, attempted, errors = await self._extract_all(ctx, source, candidates)
        extracted = [article for article in results if article is not None]
        outcome.extracted = len(extracted)
        outcome.errors = errors

        if len(extracted) > cap:
            outcome.capped = len(extracted) - cap
            await log.info(
                "source", "articles_capped",
                f"Keeping first {cap} of {len(extracted)} extracted articles",
                source=source.name, target=cap, extracted=len(extracted), capped=outcome.capped,
            )
            extracted = extracted[:cap]

        await self._persist(ctx, source, extracted, outcome)

        if attempted and not outcome.extracted and errors == attempted:
            outcome.failed = True
            outcome.reason = "no_extractable_content"

        if outcome.failed:
            await log.error(
                "source", "source_failed",
                f"Source failed ({outcome.reason}): saved {outcome.saved}, {outcome.errors} errors",
                source=source.name, reason=outcome.reason, saved=outcome.saved,
                extracted=outcome.extracted, errors=outcome.errors,
            )
        else:
            await log.info(
                "source", "source_completed",
                f"Saved {outcome.saved} articles ({outcome.extracted} extracted, {outcome.errors} errors)",
                source=source.name, saved=outcome.saved, extracted=outcome.extracted,
                errors=outcome.errors, capped=outcome.capped, already_stored=outcome.already_stored,
            )
        return outcome

    # ---------------------------------------------- #
    # Extraction
    async def _extract_all(
        self, ctx: JobContext, source: Source, candidates: Sequence[CandidateItem]
    ) -> Tuple[List[Optional[ExtractedArticle]], int, int]:
        """Extract candidates concurrently.

        Results are slotted by candidate index so the kept set follows feed
        order whatever the completion order. Returns the slots plus the
        number of attempted and failed extractions.
        """
        semaphore = asyncio.Semaphore(self.settings.extraction_concurrency)
        results: List[Optional[ExtractedArticle]] = [None] * len(candidates)
        counts = {"attempted": 0, "errors": 0}

        async def worker(index: int, candidate: CandidateItem) -> None:
            async with semaphore:
                if ctx.cancelled:
                    return
                counts["attempted"] += 1
                results[index] = await self._extract_one(ctx, source, candidate, counts)

        await asyncio.gather(*(worker(i, c) for i, c in enumerate(candidates)))
        return results, counts["attempted"], counts["errors"]

    async def _extract_one(
        self, ctx: JobContext, source: Source, candidate: CandidateItem, counts: dict
    ) -> Optional[ExtractedArticle]:
        log = ctx.logger
        try:
            article = await self.extractor.extract(candidate, source)
        except ExtractionError as e:
            counts["errors"] += 1
            await log.warning(
                "extraction", "extraction_failed", f"Extraction failed for {candidate.url}: {e.reason}",
                source=source.name, url=candidate.url, stage=e.stage, error=e.reason,
            )
            return None
        except Exception as e:
            counts["errors"] += 1
            logger.error(f"Unexpected extraction error for {candidate.url}: {e}", exc_info=True)
            await log.error(
                "extraction", "extraction_failed", f"Unexpected error extracting {candidate.url}: {e}",
                source=source.name, url=candidate.url, stage="unexpected", error=str(e),
            )
            return None

        if article.degraded:
            await log.warning(
                "extraction", "extraction_fallback",
                f"Using feed metadata for {candidate.url} ({article.fallback_reason})",
                source=source.name, url=candidate.url, reason=article.fallback_reason,
            )
        else:
            await log.info(
                "extraction", "article_extracted", f"Extracted {candidate.url}",
                source=source.name, url=candidate.url, method=article.extraction_method,
                content_length=len(article.content),
            )
        return article

    # ---------------------------------------------- #
    # Persistence
    async def _persist(
        self, ctx: JobContext, source: Source, articles: Sequence[ExtractedArticle], outcome: SourceOutcome
    ) -> None:
        """Store extracted articles.

        Articles whose content is already stored, and URLs another job wrote
        first, count as ``already_stored``; ``saved`` only counts rows this
        job inserted.
        """
        log = ctx.logger
        try:
            known_hashes = await self.store.existing_hashes(a.content_hash for a in articles)
        except PersistenceError as e:
            logger.warning(f"Content hash lookup failed for {source.name}: {e}")
            known_hashes = set()

        for extracted in articles:
            if extracted.content_hash in known_hashes:
                outcome.already_stored += 1
                await log.info(
                    "dedup", "duplicate_skipped", f"Same content already stored: {extracted.url}",
                    source=source.name, url=extracted.url, match="content_hash",
                )
                continue

            article = ScrapedArticle.from_extracted(extracted, source_id=source.id, job_id=ctx.job_id)
            try:
                await self.store.insert_article(article)
            except DuplicateError as e:
                # Another job stored the same URL between dedup and insert.
                outcome.already_stored += 1
                await log.info(
                    "dedup", "duplicate_skipped", f"Already stored by another job: {extracted.url}",
                    source=source.name, url=extracted.url, article_id=e.existing_id, match="source_url",
                )
                continue
            except PersistenceError as e:
                outcome.errors += 1
                outcome.failed = True
                outcome.reason = "persistence_error"
                await log.error(
                    "persistence", "persistence_failed", f"Failed to save {extracted.url}: {e}",
                    source=source.name, url=extracted.url, error=str(e),
                )
                continue

            known_hashes.add(extracted.content_hash)
            outcome.saved += 1
            await log.info(
                "persistence", "article_persisted", f"Saved {extracted.title!r}",
                source=source.name, url=extracted.url, article_id=article.id,
            )
