"""
Tests for LearningQueue retry behaviour.
"""
from datetime import timedelta

from habit_engine.services.learning_queue import LearningQueue
from habit_engine.tests.conftest import USER_ID, NOW


class FakeScheduler:
    """Captures add_job calls instead of running them"""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, **kwargs):
        self.jobs.append((func, kwargs))


def make_queue(job, scheduler, **kwargs):
    return LearningQueue(job, scheduler, clock=lambda: NOW, **kwargs)


class TestEnqueue:
    """Tests for enqueue"""

    def test_adds_one_off_job(self):
        scheduler = FakeScheduler()
        queue = make_queue(lambda user_id: None, scheduler)

        queue.enqueue(USER_ID)

        func, kwargs = scheduler.jobs[0]
        assert func == queue.run
        assert kwargs["trigger"] == "date"
        assert kwargs["run_date"] == NOW
        assert kwargs["args"] == [USER_ID, 1]
        assert kwargs["id"] == f"learning:{USER_ID}"
        assert kwargs["replace_existing"] is True

    def test_delay_shifts_run_date(self):
        scheduler = FakeScheduler()
        queue = make_queue(lambda user_id: None, scheduler)

        queue.enqueue(USER_ID, attempt=2, delay=5.0)

        _, kwargs = scheduler.jobs[0]
        assert kwargs["run_date"] == NOW + timedelta(seconds=5)
        assert kwargs["args"] == [USER_ID, 2]


class TestRun:
    """Tests for run and retries"""

    def test_success_does_not_requeue(self):
        calls = []
        scheduler = FakeScheduler()
        queue = make_queue(calls.append, scheduler)

        queue.run(USER_ID)

        assert calls == [USER_ID]
        assert scheduler.jobs == []

    def test_failures_back_off_then_drop(self):
        def failing(user_id):
            raise RuntimeError("database is locked")

        scheduler = FakeScheduler()
        queue = make_queue(failing, scheduler)

        queue.run(USER_ID, 1)
        queue.run(USER_ID, 2)
        queue.run(USER_ID, 3)

        assert len(scheduler.jobs) == 2
        first, second = (kwargs for _, kwargs in scheduler.jobs)
        assert first["args"] == [USER_ID, 2]
        assert first["run_date"] == NOW + timedelta(seconds=5)
        assert second["args"] == [USER_ID, 3]
        assert second["run_date"] == NOW + timedelta(seconds=10)

    def test_retry_delay_is_capped(self):
        queue = make_queue(lambda user_id: None, FakeScheduler(), base_delay=5.0, max_delay=30.0)

        assert queue.retry_delay(1) == 5.0
        assert queue.retry_delay(3) == 20.0
        assert queue.retry_delay(4) == 30.0
        assert queue.retry_delay(10) == 30.0
