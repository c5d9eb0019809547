"""
Job orchestrator: validates triggers, fans sources out under a bound,
aggregates outcomes and drives the job state machine.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import plugin_loader
from .config import ScrapingSettings, Settings
from .errors import (
    InvalidTransitionError,
    JobValidationError,
    PersistenceError,
    UnknownSourceError,
)
from .extractor import ContentExtractor
from .feeds import FeedReader
from .infra.http import HttpClient
from .interfaces import ContentStrategy
from .log_sink import JobLogger
from .models import JobStatus, LogLevel, LogPage, ScrapingJob, Source, SourceOutcome
from .pipeline import JobContext, SourcePipeline
from .registry import SourceRegistry
from .store import ArticleStore
from .transport import SourceTransport, Transport
from .utils import format_duration


logger = logging.getLogger(__name__)


def derive_status(outcomes: Sequence[SourceOutcome], unknown: int = 0, cancelled: bool = False) -> JobStatus:
    """Terminal status from per-source outcomes; unknown sources count as failed."""
    if cancelled:
        return JobStatus.CANCELLED
    failed = unknown + sum(1 for o in outcomes if o.failed)
    succeeded = sum(1 for o in outcomes if not o.failed)
    if succeeded == 0:
        return JobStatus.FAILED
    if failed == 0:
        return JobStatus.SUCCESSFUL
    return JobStatus.PARTIAL


def validate_trigger(sources: Iterable[str], articles_per_source: Any) -> List[str]:
    """Return the ordered, de-duplicated source names or raise ``JobValidationError``."""
    if isinstance(sources, str):
        sources = [sources]
    names = list(dict.fromkeys(s.strip() for s in (sources or []) if s and s.strip()))
    if not names:
        raise JobValidationError("At least one source name is required")
    if isinstance(articles_per_source, bool) or not isinstance(articles_per_source, int):
        raise JobValidationError(f"articles_per_source must be an integer, got {articles_per_source!r}")
    if articles_per_source < 1:
        raise JobValidationError(f"articles_per_source must be positive, got {articles_per_source}")
    return names


class Orchestrator:
    """Owns running jobs for one process.

    Each job gets its own ``JobContext``; contexts are dropped once the job
    reaches a terminal status.
    """

    def __init__(
        self,
        store: ArticleStore,
        registry: SourceRegistry,
        pipeline: SourcePipeline,
        settings: Optional[ScrapingSettings] = None,
        transport: Optional[Transport] = None,
    ):
        self.store = store
        self.registry = registry
        self.pipeline = pipeline
        self.settings = settings or ScrapingSettings()
        self.transport = transport
        self._contexts: Dict[str, JobContext] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ArticleStore,
        transport: Optional[Transport] = None,
        strategies: Optional[Sequence[ContentStrategy]] = None,
    ) -> "Orchestrator":
        """Wire the default pipeline: HTTP transport, plugins, feed reader."""
        if transport is None:
            http = HttpClient(
                timeout=settings.http.timeout,
                max_retries=settings.http.max_retries,
                base_delay=settings.http.base_delay,
                max_delay=settings.http.max_delay,
                default_headers={"User-Agent": settings.http.user_agent},
            )
            transport = SourceTransport(http)
        if strategies is None:
            strategies = plugin_loader.load_strategies()

        extractor = ContentExtractor(transport, strategies, settings.extraction)
        pipeline = SourcePipeline(store, FeedReader(transport), extractor, settings.scraping)
        registry = SourceRegistry(store, settings.configured_sources())
        return cls(store, registry, pipeline, settings.scraping, transport=transport)

    # ---------------------------------------------- #
    # Triggering
    async def trigger_job(self, sources: Iterable[str], articles_per_source: int) -> ScrapingJob:
        """Create a job and run it in the background. Returns the new job."""
        job, ctx = await self._create_job(sources, articles_per_source)
        task = asyncio.create_task(self._execute(job, ctx), name=f"job-{job.id[:8]}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._on_task_done(job_id, t))
        return job

    async def run_job(self, sources: Iterable[str], articles_per_source: int) -> ScrapingJob:
        """Create a job and run it to a terminal status."""
        job, ctx = await self._create_job(sources, articles_per_source)
        return await self._execute(job, ctx)

    async def wait(self, job_id: str) -> ScrapingJob:
        """Wait for a background job started by ``trigger_job``."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.store.get_job(job_id)

    async def cancel_job(self, job_id: str) -> bool:
        """Request cancellation; returns False if the job is not running here."""
        ctx = self._contexts.get(job_id)
        if ctx is None:
            job = await self.store.get_job(job_id)
            logger.info(f"Job {job_id} is not running in this process (status: {job.status.value})")
            return False
        ctx.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def running_jobs(self) -> List[str]:
        return list(self._contexts)

    async def shutdown(self) -> None:
        """Cancel running jobs, wait for them to drain and close the transport."""
        for ctx in self._contexts.values():
            ctx.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        if self.transport is not None and hasattr(self.transport, "close"):
            await self.transport.close()

    # ---------------------------------------------- #
    # Queries
    async def get_job(self, job_id: str) -> ScrapingJob:
        return await self.store.get_job(job_id)

    async def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 20) -> List[ScrapingJob]:
        return await self.store.list_jobs(status=status, limit=limit)

    async def list_job_logs(
        self,
        job_id: str,
        page: int = 1,
        page_size: int = 50,
        *,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> LogPage:
        await self.store.get_job(job_id)
        return await self.store.list_job_logs(
            job_id, page, page_size, level=level, source=source, event_type=event_type
        )

    async def job_summary(self, job_id: str) -> Dict[str, Any]:
        """Per-source article counts taken from stored rows, next to the job's counters."""
        job = await self.store.get_job(job_id)
        counts = await self.store.article_counts_by_source(job_id)
        by_source = {name: counts.get(name, 0) for name in job.sources_requested}
        stored = sum(by_source.values())
        return {
            "job": job,
            "saved_by_source": by_source,
            "stored_total": stored,
            "reported_total": job.total_articles_scraped,
            "consistent": stored == job.total_articles_scraped,
        }

    # ---------------------------------------------- #
    # Execution
    async def _create_job(self, sources: Iterable[str], articles_per_source: int) -> Tuple[ScrapingJob, JobContext]:
        names = validate_trigger(sources, articles_per_source)
        job = ScrapingJob(sources_requested=names, articles_per_source=articles_per_source)
        await self.store.create_job(job)
        ctx = JobContext(job.id, articles_per_source, JobLogger(self.store, job.id))
        self._contexts[job.id] = ctx
        logger.info(f"Created job {job.id}: {', '.join(names)} x {articles_per_source}")
        return job, ctx

    async def _execute(self, job: ScrapingJob, ctx: JobContext) -> ScrapingJob:
        log = ctx.logger
        started = time.monotonic()
        try:
            if ctx.cancelled:
                job = await self.store.update_job_status(job.id, JobStatus.CANCELLED)
                await log.warning("job", "job_cancelled", "Job cancelled before it started")
                return job

            await self.store.update_job_status(job.id, JobStatus.IN_PROGRESS)
            await log.info(
                "job", "job_started",
                f"Job started: {len(job.sources_requested)} sources, {job.articles_per_source} articles each",
                sources=job.sources_requested, articles_per_source=job.articles_per_source,
            )

            sources, unknown = await self._resolve_sources(ctx, job.sources_requested)
            if not sources:
                await log.error(
                    "job", "no_valid_sources", "None of the requested sources are known",
                    requested=job.sources_requested,
                )

            outcomes = await self._run_sources(ctx, sources, job.articles_per_source)
            status = derive_status(outcomes, unknown=len(unknown), cancelled=ctx.cancelled)
            total_saved = sum(o.saved for o in outcomes)
            total_errors = sum(o.errors for o in outcomes) + len(unknown)

            job = await self.store.update_job_status(
                job.id, status, total_articles_scraped=total_saved, total_errors=total_errors
            )
            await self._log_completion(ctx, job, outcomes, unknown, time.monotonic() - started)
            return job
        except Exception as e:
            logger.error(f"Job {job.id} crashed: {e}", exc_info=True)
            await self._mark_failed(job.id)
            raise
        finally:
            self._contexts.pop(job.id, None)

    async def _resolve_sources(self, ctx: JobContext, names: Sequence[str]) -> Tuple[List[Source], List[str]]:
        sources: List[Source] = []
        unknown: List[str] = []
        for name in names:
            try:
                source = await self.registry.get_source(name)
                if source is None:
                    raise UnknownSourceError(name)
            except UnknownSourceError as e:
                unknown.append(name)
                await ctx.logger.warning("source", "source_unknown", str(e), source=name)
                continue
            sources.append(source)
        return sources, unknown

    async def _run_sources(self, ctx: JobContext, sources: Sequence[Source], cap: int) -> List[SourceOutcome]:
        semaphore = asyncio.Semaphore(self.settings.source_concurrency)

        async def run_one(source: Source) -> Optional[SourceOutcome]:
            async with semaphore:
                if ctx.cancelled:
                    return None
                try:
                    outcome = await self.pipeline.run(ctx, source, cap)
                except Exception as e:
                    logger.error(f"Source {source.name} crashed in job {ctx.job_id}: {e}", exc_info=True)
                    outcome = SourceOutcome(source=source.name, errors=1, failed=True, reason="unexpected_error")
                    await ctx.logger.error(
                        "source", "source_failed", f"Unexpected error: {e}",
                        source=source.name, reason=outcome.reason, error=str(e),
                    )
                await self._record(ctx, outcome)
                return outcome

        results = await asyncio.gather(*(run_one(s) for s in sources))
        return [r for r in results if r is not None]

    async def _record(self, ctx: JobContext, outcome: SourceOutcome) -> None:
        """Fold a finished source into the job counters right away."""
        try:
            await self.store.increment_job_counters(ctx.job_id, articles=outcome.saved, errors=outcome.errors)
        except PersistenceError as e:
            # The final status update carries the totals again.
            logger.error(f"Could not update counters for job {ctx.job_id}: {e}")

    async def _log_completion(
        self,
        ctx: JobContext,
        job: ScrapingJob,
        outcomes: Sequence[SourceOutcome],
        unknown: Sequence[str],
        elapsed: float,
    ) -> None:
        data = {
            "status": job.status.value,
            "total_saved": job.total_articles_scraped,
            "total_errors": job.total_errors,
            "max_articles": job.max_articles,
            "duration_seconds": round(elapsed, 3),
            "outcomes": {o.source: o.model_dump(exclude={"source"}) for o in outcomes},
            "unknown_sources": list(unknown),
        }
        message = (
            f"Job {job.status.value}: saved {job.total_articles_scraped}/{job.max_articles} articles, "
            f"{job.total_errors} errors in {format_duration(elapsed)}"
        )
        if job.status is JobStatus.CANCELLED:
            await ctx.logger.warning("job", "job_cancelled", message, **data)
        elif job.status is JobStatus.SUCCESSFUL:
            await ctx.logger.info("job", "job_completed", message, **data)
        elif job.status is JobStatus.PARTIAL:
            await ctx.logger.warning("job", "job_completed", message, **data)
        else:
            await ctx.logger.error("job", "job_completed", message, **data)

    async def _mark_failed(self, job_id: str) -> None:
        try:
            current = await self.store.get_job(job_id)
            if not current.status.is_terminal:
                if current.status is JobStatus.NEW:
                    await self.store.update_job_status(job_id, JobStatus.IN_PROGRESS)
                await self.store.update_job_status(job_id, JobStatus.FAILED)
        except (InvalidTransitionError, PersistenceError) as e:
            logger.error(f"Could not mark job {job_id} as failed: {e}")

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning(f"Job task {task.get_name()} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Job {job_id} ended with an error: {task.exception()}")
