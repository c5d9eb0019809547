"""
Scheduler infrastructure for running periodic scraping jobs.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter


logger = logging.getLogger(__name__)

JobFunc = Union[Callable, str]


class Scheduler:
    """Async task scheduler wrapper around APScheduler with optional persistence.

    With persistence enabled, jobs must reference their function as a
    ``"module:function"`` string so the job store can serialize them.
    """

    def __init__(
        self,
        db_url: str = "sqlite:///scheduler_jobs.db",
        timezone: str = "UTC",
        enable_persistence: bool = False,
    ):
        if enable_persistence:
            jobstores = {"default": SQLAlchemyJobStore(url=db_url)}
        else:
            # Memory job store
            jobstores = {}

        job_defaults = {
            "coalesce": True,
            # One run of a schedule at a time; overlapping runs would only find duplicates.
            "max_instances": 1,
            "misfire_grace_time": 60,  # seconds
        }

        self._scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            job_defaults=job_defaults,
            timezone=timezone,
        )
        self._persistent = enable_persistence
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info(f"Scheduler started ({'persistent' if self._persistent else 'in-memory'} job store)")

    async def stop(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: JobFunc,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        job_id: Optional[str] = None,
        args: Optional[List[Any]] = None,
        **kwargs,
    ) -> None:
        """Add a job that runs at regular intervals."""
        trigger_kwargs = {}
        if seconds is not None:
            trigger_kwargs["seconds"] = seconds
        if minutes is not None:
            trigger_kwargs["minutes"] = minutes
        if hours is not None:
            trigger_kwargs["hours"] = hours

        if not trigger_kwargs:
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(**trigger_kwargs),
            id=job_id,
            args=args or [],
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Added interval job: {job_id or _func_name(func)} ({trigger_kwargs})")

    def add_cron_job(
        self,
        func: JobFunc,
        cron_expression: str,
        job_id: Optional[str] = None,
        args: Optional[List[Any]] = None,
        **kwargs,
    ) -> None:
        """Add a job that runs on a five-field cron schedule."""
        if not self._validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        parts = cron_expression.split()
        if len(parts) != 5:
            raise ValueError("Cron expression must have 5 parts: minute hour day month day_of_week")

        minute, hour, day, month, day_of_week = parts
        trigger = CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=self._scheduler.timezone,
        )

        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            args=args or [],
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Added cron job: {job_id or _func_name(func)} ({cron_expression})")

    def _validate_cron_expression(self, cron_expression: str) -> bool:
        """Validate cron expression using croniter."""
        try:
            croniter(cron_expression)
            return True
        except (ValueError, KeyError) as e:
            logger.error(f"Invalid cron expression '{cron_expression}': {e}")
            return False

    def list_jobs(self) -> Dict[str, Any]:
        """List all scheduled jobs."""
        jobs = {}
        for job in self._scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
        return jobs


def _func_name(func: JobFunc) -> str:
    return func if isinstance(func, str) else getattr(func, "__name__", repr(func))
