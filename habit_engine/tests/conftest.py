"""
Shared fixtures and helpers for habit engine tests.
"""
import os
import tempfile

# Keep the app module off the real database and log directory
os.environ.setdefault("HABIT_ENGINE_DATABASE_URL", "sqlite://")
os.environ.setdefault("HABIT_ENGINE_LOG_DIR", os.path.join(tempfile.gettempdir(), "habit-engine-tests"))

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habit_engine.database import Base
from habit_engine.models import Task, TaskCompletion, UserStreak
from habit_engine.schemas import NotificationTiming
from habit_engine.services.date_service import DateService
from habit_engine.services.locks import KeyedLockRegistry
from habit_engine.services.notification_service import NotificationDispatcher
from habit_engine.services.streak_service import StreakService
from habit_engine.services.personalization_service import PersonalizationService

USER_ID = "user-1"

# Wednesday evening, after the evening check cutoff
NOW = datetime(2026, 3, 18, 20, 0, 0)


class FixedClock:
    """Clock that only moves when a test moves it"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, days: int = 0, hours: int = 0):
        self.current += timedelta(days=days, hours=hours)

    def set(self, value: datetime):
        self.current = value


class RecordingDispatcher(NotificationDispatcher):
    """In-memory dispatcher that records every call"""

    def __init__(self, reminders: Optional[List[Any]] = None, fail_sends: bool = False):
        self.reminders = list(reminders or [])
        self.scheduled: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.cancelled: List[str] = []
        self.sent: List[Dict[str, Any]] = []
        self.fail_sends = fail_sends

    def get_scheduled_reminders(self, user_id):
        return [r for r in self.reminders if r.user_id == user_id]

    def schedule_reminder(self, user_id, task_id, timing, title, body, is_smart_enabled=True):
        reminder_id = f"reminder-{len(self.scheduled) + 1}"
        self.scheduled.append({
            "id": reminder_id,
            "user_id": user_id,
            "task_id": task_id,
            "timing": timing,
            "title": title,
            "body": body,
            "is_smart_enabled": is_smart_enabled,
        })
        return reminder_id

    def update_reminder(self, reminder_id, timing):
        self.updated.append((reminder_id, timing))
        return reminder_id

    def cancel_reminder(self, reminder_id):
        self.cancelled.append(reminder_id)

    def cancel_task_reminders(self, task_id):
        return 0

    def send_notification(self, user_id, title, body, data=None):
        if self.fail_sends:
            raise RuntimeError("push transport down")
        self.sent.append({"user_id": user_id, "title": title, "body": body, "data": data})
        return f"notification-{len(self.sent)}"


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def date_service(clock):
    return DateService(clock)


@pytest.fixture
def today(date_service):
    return date_service.today()


@pytest.fixture
def yesterday(today):
    return today - timedelta(days=1)


@pytest.fixture
def streak_service(db_session, date_service):
    return StreakService(
        db_session,
        date_service=date_service,
        locks=KeyedLockRegistry(),
        protection_quota=3,
        grace_days=1
    )


@pytest.fixture
def personalizer(db_session, date_service):
    return PersonalizationService(db_session, date_service=date_service)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


def create_task(
    db,
    user_id: str = USER_ID,
    title: str = "Read 20 pages",
    is_habit: bool = False,
    due_date: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
    status: str = "todo"
) -> Task:
    created_at = created_at or NOW
    task = Task(
        user_id=user_id,
        title=title,
        is_habit=is_habit,
        due_date=due_date,
        status=status,
        created_at=created_at,
        updated_at=created_at
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def create_streak(
    db,
    user_id: str = USER_ID,
    streak_type: str = "daily_completion",
    current_count: int = 5,
    longest_count: Optional[int] = None,
    last_activity_date: Optional[datetime] = None,
    is_active: bool = True,
    available_protections: int = 3,
    used_protections: int = 0,
    protection_reset_date: Optional[datetime] = None,
    is_protected_today: bool = False,
    last_protected_date: Optional[datetime] = None
) -> UserStreak:
    streak = UserStreak(
        user_id=user_id,
        streak_type=streak_type,
        current_count=current_count,
        longest_count=longest_count if longest_count is not None else current_count,
        last_activity_date=last_activity_date,
        streak_start_date=last_activity_date,
        is_active=is_active,
        available_protections=available_protections,
        used_protections=used_protections,
        protection_reset_date=protection_reset_date,
        is_protected_today=is_protected_today,
        last_protected_date=last_protected_date,
        meta="{}",
        created_at=NOW,
        updated_at=NOW
    )
    db.add(streak)
    db.commit()
    db.refresh(streak)
    return streak


def create_completions(
    db,
    timestamps: List[datetime],
    user_id: str = USER_ID,
    completion_type: str = "manual",
    task_id: int = 1
) -> List[TaskCompletion]:
    completions = [
        TaskCompletion(
            task_id=task_id,
            completed_by=user_id,
            completed_at=timestamp,
            completion_type=completion_type,
            notes="",
            created_at=timestamp
        )
        for timestamp in timestamps
    ]
    db.add_all(completions)
    db.commit()
    return completions


def completions_at(hour: int, count: int, days_back_start: int = 1) -> List[datetime]:
    """`count` timestamps at the given hour on consecutive past days"""
    return [
        datetime(NOW.year, NOW.month, NOW.day, hour, 5) - timedelta(days=days_back_start + i)
        for i in range(count)
    ]


def timing(hour: int, minute: int = 0) -> NotificationTiming:
    return NotificationTiming(hour=hour, minute=minute)
