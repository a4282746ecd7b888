"""
Daily background jobs: question creation, reminders, processing and cleanup.

Each job runs once per local calendar day (in the scheduler timezone) once its
wall-clock time has been reached. A scheduler started late catches up on the
jobs whose time already passed today. One scheduler instance is assumed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from arch_backend.config import Settings
from arch_backend.lifecycle import DailyQuestionLifecycle
from arch_backend.timeutils import has_reached, local_date, parse_hhmm

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 60 * 60


@dataclass
class ScheduledJob:
    name: str
    at: str
    run: Callable[[], object]

    def __post_init__(self):
        parse_hhmm(self.at)


class DailyScheduler:
    def __init__(
        self,
        jobs: list[ScheduledJob],
        timezone_name: str,
        clock: Callable[[], float] = time.time,
    ):
        self.jobs = {job.name: job for job in jobs}
        self.timezone_name = timezone_name
        self.clock = clock
        self.last_run: dict[str, str] = {}

    def run_pending(self) -> list[str]:
        """Run every job that is due today and has not run yet; returns their names."""
        now = self.clock()
        today = local_date(self.timezone_name, now)
        ran = []
        for job in sorted(self.jobs.values(), key=lambda j: parse_hhmm(j.at)):
            if self.last_run.get(job.name) == today:
                continue
            if not has_reached(self.timezone_name, now, job.at):
                continue
            self._execute(job)
            self.last_run[job.name] = today
            ran.append(job.name)
        return ran

    def run_job(self, name: str) -> object:
        job = self.jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown job {name!r}; known jobs: {sorted(self.jobs)}")
        return self._execute(job)

    def _execute(self, job: ScheduledJob) -> Optional[object]:
        started = time.monotonic()
        logger.info("Running job %s", job.name)
        try:
            result = job.run()
        except Exception:
            logger.exception("Job %s failed", job.name)
            return None
        logger.info(
            "Job %s finished in %.2fs: %s", job.name, time.monotonic() - started, result
        )
        return result

    def run_loop(self, poll_interval_seconds: float = 60) -> None:
        logger.info(
            "Scheduler started with jobs %s (%s)",
            ", ".join(f"{job.name}@{job.at}" for job in self.jobs.values()),
            self.timezone_name,
        )
        while True:
            self.run_pending()
            time.sleep(poll_interval_seconds)


def cleanup(db, now: float, grace_seconds: float) -> dict:
    """Drop expired sessions and complete get-togethers well past their date."""
    sessions = db.delete_expired_sessions(now)
    completed = db.complete_past_get_togethers(now - grace_seconds)
    logger.info(
        "Cleanup removed %d sessions and completed %d get-togethers",
        sessions,
        completed,
    )
    return {"expiredSessions": sessions, "completedGetTogethers": completed}


def build_scheduler(
    db,
    notifier,
    settings: Settings,
    clock: Callable[[], float] = time.time,
    events=None,
) -> DailyScheduler:
    lifecycle = DailyQuestionLifecycle(db, notifier, clock=clock, events=events)
    grace = settings.event_completion_grace_hours * SECONDS_PER_HOUR
    jobs = [
        ScheduledJob(
            "create_daily_questions",
            settings.question_send_time,
            lifecycle.create_daily_questions,
        ),
        ScheduledJob(
            "send_reminders",
            settings.reminder_time,
            lambda: lifecycle.send_reminders(settings.reminder_window_minutes * 60),
        ),
        ScheduledJob(
            "process_daily_responses",
            settings.response_processing_time,
            lifecycle.process_due_questions,
        ),
        ScheduledJob("cleanup", settings.cleanup_time, lambda: cleanup(db, clock(), grace)),
    ]
    return DailyScheduler(jobs, settings.scheduler_timezone, clock=clock)
