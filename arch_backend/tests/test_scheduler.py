import unittest

from arch_backend.config import Settings
from arch_backend.records import EventStatus, EventType
from arch_backend.scheduler import DailyScheduler, ScheduledJob, build_scheduler, cleanup
from arch_backend.tests.testing_utils import (
    DEADLINE,
    TIMEZONE,
    TODAY,
    FakeClock,
    StoreTestCase,
)
from arch_backend.timeutils import at_local_time

SECONDS_PER_DAY = 24 * 60 * 60


class DailySchedulerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(at_local_time(TIMEZONE, TODAY, "05:00"))
        self.calls = []
        self.scheduler = DailyScheduler(
            [
                ScheduledJob("early", "06:00", lambda: self.calls.append("early")),
                ScheduledJob("late", "17:00", lambda: self.calls.append("late")),
            ],
            TIMEZONE,
            clock=self.clock,
        )

    def test_runs_each_job_once_per_day_after_its_time(self):
        self.assertEqual(self.scheduler.run_pending(), [])

        self.clock.set(at_local_time(TIMEZONE, TODAY, "06:00"))
        self.assertEqual(self.scheduler.run_pending(), ["early"])
        self.clock.advance(60)
        self.assertEqual(self.scheduler.run_pending(), [])

        self.clock.set(at_local_time(TIMEZONE, "2024-03-06", "06:30"))
        self.assertEqual(self.scheduler.run_pending(), ["early"])
        self.assertEqual(self.calls, ["early", "early"])

    def test_late_start_catches_up_in_time_order(self):
        self.clock.set(at_local_time(TIMEZONE, TODAY, "20:00"))
        self.assertEqual(self.scheduler.run_pending(), ["early", "late"])
        self.assertEqual(self.calls, ["early", "late"])

    def test_failing_job_is_logged_and_not_retried_today(self):
        def boom():
            raise RuntimeError("boom")

        scheduler = DailyScheduler([ScheduledJob("boom", "00:00", boom)], TIMEZONE, self.clock)
        with self.assertLogs("arch_backend.scheduler", level="ERROR"):
            self.assertEqual(scheduler.run_pending(), ["boom"])
        self.assertEqual(scheduler.run_pending(), [])

    def test_run_job_runs_immediately(self):
        self.scheduler.run_job("late")
        self.assertEqual(self.calls, ["late"])
        with self.assertRaises(KeyError):
            self.scheduler.run_job("missing")

    def test_rejects_bad_time(self):
        with self.assertRaises(ValueError):
            ScheduledJob("bad", "25:00", lambda: None)


class SchedulerWiringTests(StoreTestCase):
    def test_build_scheduler_registers_daily_jobs(self):
        scheduler = build_scheduler(self.db, self.notifier, Settings(), clock=self.clock)
        self.assertEqual(
            sorted(scheduler.jobs),
            ["cleanup", "create_daily_questions", "process_daily_responses", "send_reminders"],
        )
        self.assertEqual(scheduler.jobs["create_daily_questions"].at, "06:00")

    def test_daily_jobs_drive_question_lifecycle(self):
        alice = self.make_user("Alice")
        bob = self.make_user("Bob")
        arch = self.make_arch(alice, bob)
        scheduler = build_scheduler(self.db, self.notifier, Settings(), clock=self.clock)

        self.assertEqual(scheduler.run_job("create_daily_questions"), 2)
        self.clock.set(DEADLINE + 60)
        self.assertEqual(scheduler.run_job("process_daily_responses"), 2)
        questions = self.db.list_questions(arch_id=arch.arch_id)
        self.assertTrue(all(q.processed for q in questions))

    def test_cleanup(self):
        alice = self.make_user("Alice")
        arch = self.make_arch(alice)
        now = self.clock()
        self.db.create_session(alice.user_id, "expired", now - 1)
        self.db.create_session(alice.user_id, "live", now + 3600)
        old = self.db.create_get_together(
            arch.arch_id, alice.user_id, "Brunch", EventType.IN_PERSON,
            now - 2 * SECONDS_PER_DAY, [], location="Home",
        )
        recent = self.db.create_get_together(
            arch.arch_id, alice.user_id, "Call", EventType.VIRTUAL,
            now - 3600, [], virtual_link="https://meet",
        )

        result = cleanup(self.db, now, grace_seconds=SECONDS_PER_DAY)

        self.assertEqual(result, {"expiredSessions": 1, "completedGetTogethers": 1})
        self.assertIsNone(self.db.get_session("expired"))
        self.assertEqual(
            self.db.get_get_together(old.get_together_id).status, EventStatus.COMPLETED
        )
        self.assertEqual(
            self.db.get_get_together(recent.get_together_id).status, EventStatus.PLANNING
        )


if __name__ == "__main__":
    unittest.main()
