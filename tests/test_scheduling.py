"""Tests for the scheduler wrapper and configured schedules."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from newsscraper import scheduling
from newsscraper.config import ScheduleConfig, Settings
from newsscraper.errors import JobValidationError
from newsscraper.infra.scheduler import Scheduler
from newsscraper.models import JobStatus, ScrapingJob


SCHEDULES = [
    ScheduleConfig(name="morning", sources=["alpha", "beta"], articles_per_source=4, cron="0 7 * * *"),
    ScheduleConfig(name="hourly", sources=["gamma"], interval={"hours": 1}),
]


class TestScheduler:
    def test_rejects_invalid_cron(self):
        scheduler = Scheduler()
        with pytest.raises(ValueError):
            scheduler.add_cron_job(lambda: None, cron_expression="not a cron", job_id="bad")

    def test_interval_needs_a_unit(self):
        scheduler = Scheduler()
        with pytest.raises(ValueError):
            scheduler.add_interval_job(lambda: None, job_id="empty")

    def test_lists_added_jobs(self):
        scheduler = Scheduler(timezone="Europe/Stockholm")
        scheduler.add_cron_job(lambda: None, cron_expression="*/15 * * * *", job_id="quarterly")
        scheduler.add_interval_job(lambda: None, minutes=5, job_id="often")

        jobs = scheduler.list_jobs()

        assert set(jobs) == {"quarterly", "often"}
        assert "cron" in jobs["quarterly"]["trigger"]
        assert "interval" in jobs["often"]["trigger"]


class TestSchedules:
    def test_register_adds_one_job_per_schedule(self):
        scheduler = Scheduler()

        job_ids = scheduling.register_schedules(scheduler, Mock(), SCHEDULES)

        assert job_ids == ["schedule_morning", "schedule_hourly"]
        assert set(scheduler.list_jobs()) == set(job_ids)

    def test_scheduled_run_triggers_job(self):
        job = ScrapingJob(
            sources_requested=["alpha", "beta"], articles_per_source=4, status=JobStatus.SUCCESSFUL
        )
        orchestrator = Mock()
        orchestrator.run_job = AsyncMock(return_value=job)
        scheduling.register_schedules(Scheduler(), orchestrator, SCHEDULES)

        result = asyncio.run(scheduling.run_scheduled_job("morning"))

        assert result == job.id
        orchestrator.run_job.assert_awaited_once_with(["alpha", "beta"], 4)

    def test_scheduled_run_reports_errors(self):
        orchestrator = Mock()
        orchestrator.run_job = AsyncMock(side_effect=JobValidationError("bad"))
        scheduling.register_schedules(Scheduler(), orchestrator, SCHEDULES)

        assert asyncio.run(scheduling.run_scheduled_job("hourly")) is None

    def test_unknown_schedule(self):
        scheduling.register_schedules(Scheduler(), Mock(), [])
        assert asyncio.run(scheduling.run_scheduled_job("missing")) is None

    def test_create_scheduler_from_settings(self):
        scheduler = scheduling.create_scheduler(Settings(scheduler_timezone="UTC"))
        assert not scheduler.running
