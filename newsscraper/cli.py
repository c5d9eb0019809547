"""
Command line interface for the news scraper.

Usage: newsscraper <command> [options]

Commands:
    trigger SOURCE... [--articles N]   - Run a scraping job to completion
    job JOB_ID                         - Show job status and per-source counts
    logs JOB_ID [--page N ...]         - Show a page of job logs
    jobs [--status STATUS]             - List recent jobs
    sources                            - List known sources
    articles [--source NAME ...]       - List stored articles
    serve                              - Run configured schedules until stopped
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from .config import Settings, load_settings
from .errors import JobNotFoundError, JobValidationError, PersistenceError
from .models import JobStatus, LogLevel, ScrapingJob
from .orchestrator import Orchestrator
from .scheduling import create_scheduler, register_schedules
from .store import ArticleStore


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    END = "\033[0m"


STATUS_COLORS = {
    JobStatus.NEW: Colors.CYAN,
    JobStatus.IN_PROGRESS: Colors.BLUE,
    JobStatus.SUCCESSFUL: Colors.GREEN,
    JobStatus.PARTIAL: Colors.YELLOW,
    JobStatus.FAILED: Colors.RED,
    JobStatus.CANCELLED: Colors.YELLOW,
}

LEVEL_COLORS = {
    LogLevel.INFO: Colors.END,
    LogLevel.WARNING: Colors.YELLOW,
    LogLevel.ERROR: Colors.RED,
}


def format_status(status: JobStatus) -> str:
    return f"{STATUS_COLORS[status]}{status.value}{Colors.END}"


def print_job(job: ScrapingJob) -> None:
    print(f"{Colors.BOLD}Job {job.id}{Colors.END}  [{format_status(job.status)}]")
    print(f"  Sources:   {', '.join(job.sources_requested)} ({job.articles_per_source} each)")
    print(f"  Articles:  {job.total_articles_scraped}/{job.max_articles}")
    print(f"  Errors:    {job.total_errors}")
    print(f"  Triggered: {job.triggered_at:%Y-%m-%d %H:%M:%S}")
    if job.completed_at:
        print(f"  Completed: {job.completed_at:%Y-%m-%d %H:%M:%S}")


# ---------------------------------------------- #
# Commands
async def cmd_trigger(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    articles = args.articles if args.articles is not None else settings.scraping.default_articles_per_source
    job = await orchestrator.run_job(args.sources, articles)
    summary = await orchestrator.job_summary(job.id)
    print_job(job)
    for name, count in summary["saved_by_source"].items():
        print(f"    {name}: {count}")
    return 1 if job.status is JobStatus.FAILED else 0


async def cmd_job(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    summary = await orchestrator.job_summary(args.job_id)
    print_job(summary["job"])
    print("  Stored per source:")
    for name, count in summary["saved_by_source"].items():
        print(f"    {name}: {count}")
    if not summary["consistent"]:
        print(
            f"{Colors.YELLOW}⚠️  Stored rows ({summary['stored_total']}) differ from "
            f"reported total ({summary['reported_total']}){Colors.END}"
        )
    return 0


async def cmd_logs(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    page = await orchestrator.list_job_logs(
        args.job_id,
        args.page,
        args.page_size,
        level=LogLevel(args.level) if args.level else None,
        source=args.source,
        event_type=args.event_type,
    )
    for entry in page.entries:
        color = LEVEL_COLORS[entry.level]
        source = f" [{entry.source_name}]" if entry.source_name else ""
        print(
            f"{entry.timestamp:%H:%M:%S} {color}{entry.level.value.upper():7}{Colors.END}"
            f"{source} {entry.message}"
        )
    more = " (more: --page {})".format(page.page + 1) if page.has_more else ""
    print(f"{Colors.BLUE}Page {page.page}, {len(page.entries)} of {page.total} entries{more}{Colors.END}")
    return 0


async def cmd_jobs(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    status = JobStatus(args.status) if args.status else None
    jobs = await orchestrator.list_jobs(status=status, limit=args.limit)
    if not jobs:
        print(f"{Colors.YELLOW}No jobs found{Colors.END}")
        return 0
    for job in jobs:
        print(
            f"{job.id}  {job.triggered_at:%Y-%m-%d %H:%M}  {format_status(job.status):22} "
            f"{job.total_articles_scraped:>4}/{job.max_articles:<4} {', '.join(job.sources_requested)}"
        )
    return 0


async def cmd_sources(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    sources = await orchestrator.registry.list_sources()
    if not sources:
        print(f"{Colors.YELLOW}No sources configured{Colors.END}")
        return 0
    for source in sources:
        state = f"{Colors.GREEN}enabled{Colors.END}" if source.enabled else f"{Colors.RED}disabled{Colors.END}"
        print(f"{source.name:20} {state}  {source.rss_url}")
    return 0


async def cmd_articles(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    source_id = None
    if args.source:
        source = await orchestrator.store.get_source(args.source)
        if source is None:
            print(f"{Colors.RED}Unknown source: {args.source}{Colors.END}")
            return 1
        source_id = source.id
    articles = await orchestrator.store.list_articles(
        source_id=source_id, job_id=args.job, language=args.language, limit=args.limit
    )
    for article in articles:
        print(f"{article.created_at:%Y-%m-%d %H:%M}  [{article.language}] {article.title}")
        print(f"    {article.source_url}")
    return 0


async def cmd_serve(orchestrator: Orchestrator, args: argparse.Namespace, settings: Settings) -> int:
    if os.getenv("SCHEDULER_MODE", "enabled").lower() == "disabled":
        logger.warning("SCHEDULER_MODE=disabled, not starting scheduler")
        return 0
    if not settings.schedules:
        logger.error("No schedules configured. Exiting.")
        return 1

    scheduler = create_scheduler(settings)
    register_schedules(scheduler, orchestrator, settings.schedules)

    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        await scheduler.start()
        for job_id, info in scheduler.list_jobs().items():
            logger.info(f"  - {job_id}: next run {info['next_run']}")
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        running = orchestrator.running_jobs()
        if running:
            logger.info(f"Cancelling {len(running)} running job(s)...")
        await orchestrator.shutdown()
        logger.info("Shutdown complete")
    return 0


COMMANDS = {
    "trigger": cmd_trigger,
    "job": cmd_job,
    "logs": cmd_logs,
    "jobs": cmd_jobs,
    "sources": cmd_sources,
    "articles": cmd_articles,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="newsscraper", description="RSS news scraping jobs")
    parser.add_argument("--config", help="Path to config.yaml (default: $SCRAPER_CONFIG or ./config.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    trigger = sub.add_parser("trigger", help="Run a scraping job to completion")
    trigger.add_argument("sources", nargs="+", help="Source names")
    trigger.add_argument("-n", "--articles", type=int, help="Articles per source")

    job = sub.add_parser("job", help="Show a job")
    job.add_argument("job_id")

    logs = sub.add_parser("logs", help="Show job logs")
    logs.add_argument("job_id")
    logs.add_argument("--page", type=int, default=1)
    logs.add_argument("--page-size", type=int, default=50)
    logs.add_argument("--level", choices=[lvl.value for lvl in LogLevel])
    logs.add_argument("--source")
    logs.add_argument("--event-type")

    jobs = sub.add_parser("jobs", help="List recent jobs")
    jobs.add_argument("--status", choices=[s.value for s in JobStatus])
    jobs.add_argument("--limit", type=int, default=20)

    sub.add_parser("sources", help="List sources")

    articles = sub.add_parser("articles", help="List stored articles")
    articles.add_argument("--source")
    articles.add_argument("--job")
    articles.add_argument("--language")
    articles.add_argument("--limit", type=int, default=20)

    sub.add_parser("serve", help="Run configured schedules")
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with ArticleStore.open(settings.db_path) as store:
        orchestrator = Orchestrator.from_settings(settings, store)
        try:
            return await COMMANDS[args.command](orchestrator, args, settings)
        finally:
            await orchestrator.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=LOG_FORMAT)

    try:
        return asyncio.run(_run(args, settings))
    except JobValidationError as e:
        print(f"{Colors.RED}Invalid job: {e}{Colors.END}")
        return 2
    except JobNotFoundError as e:
        print(f"{Colors.RED}{e}{Colors.END}")
        return 1
    except PersistenceError as e:
        print(f"{Colors.RED}Database error: {e}{Colors.END}")
        return 1
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted{Colors.END}")
        return 130


if __name__ == "__main__":
    sys.exit(main())
