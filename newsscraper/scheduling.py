"""
Recurring scraping jobs declared under ``schedules:`` in the config.
"""

import logging
from typing import Dict, List, Optional

from .config import ScheduleConfig, Settings
from .errors import ScraperError
from .infra.scheduler import Scheduler
from .orchestrator import Orchestrator


logger = logging.getLogger(__name__)

# Serializable reference used by the APScheduler job store.
SCHEDULED_JOB_REF = f"{__name__}:run_scheduled_job"

# Schedules and the orchestrator they run on, registered by ``register_schedules``.
_schedules: Dict[str, ScheduleConfig] = {}
_orchestrator: Optional[Orchestrator] = None


def create_scheduler(settings: Settings) -> Scheduler:
    return Scheduler(
        db_url=settings.scheduler_db_url,
        timezone=settings.scheduler_timezone,
        enable_persistence=settings.scheduler_persistence,
    )


def register_schedules(
    scheduler: Scheduler, orchestrator: Orchestrator, schedules: List[ScheduleConfig]
) -> List[str]:
    """Add one scheduler job per schedule; returns the scheduler job ids."""
    global _orchestrator
    _orchestrator = orchestrator
    _schedules.clear()

    job_ids = []
    for schedule in schedules:
        job_id = f"schedule_{schedule.name}"
        _schedules[schedule.name] = schedule
        if schedule.cron:
            scheduler.add_cron_job(SCHEDULED_JOB_REF, cron_expression=schedule.cron, job_id=job_id, args=[schedule.name])
        else:
            interval = schedule.interval or {}
            scheduler.add_interval_job(
                SCHEDULED_JOB_REF,
                seconds=interval.get("seconds"),
                minutes=interval.get("minutes"),
                hours=interval.get("hours"),
                job_id=job_id,
                args=[schedule.name],
            )
        job_ids.append(job_id)
    return job_ids


async def run_scheduled_job(schedule_name: str) -> Optional[str]:
    """Run one scheduled job to completion. Used by APScheduler."""
    schedule = _schedules.get(schedule_name)
    if schedule is None or _orchestrator is None:
        logger.error(f"Schedule not registered: {schedule_name}")
        return None

    try:
        job = await _orchestrator.run_job(schedule.sources, schedule.articles_per_source)
    except ScraperError as e:
        logger.error(f"Scheduled job '{schedule_name}' failed: {e}")
        return None

    logger.info(
        f"Scheduled job '{schedule_name}' finished as {job.status.value}: "
        f"{job.total_articles_scraped} articles, {job.total_errors} errors"
    )
    return job.id
