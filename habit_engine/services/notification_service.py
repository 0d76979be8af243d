"""
Notification dispatch.
The engine decides what to send and when; a dispatcher stores reminders and
hands immediate notifications to whatever transport is configured.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from habit_engine.models import ScheduledReminder
from habit_engine.schemas import NotificationTiming
from habit_engine.repositories.reminder_repository import ReminderRepository
from habit_engine.constants import STREAK_TYPE_DAILY_COMPLETION

logger = logging.getLogger("habit_engine.notifications")

STREAK_TYPE_LABELS = {
    STREAK_TYPE_DAILY_COMPLETION: "Daily Tasks",
    "weekly_goal": "Weekly Goals",
    "habit_consistency": "Habit Tracking",
}


class NotificationDispatcher(ABC):
    """Reminder scheduling and immediate delivery"""

    @abstractmethod
    def get_scheduled_reminders(self, user_id: str) -> List[ScheduledReminder]:
        ...

    @abstractmethod
    def schedule_reminder(
        self,
        user_id: str,
        task_id: int,
        timing: NotificationTiming,
        title: str,
        body: str,
        is_smart_enabled: bool = True
    ) -> str:
        """Returns an opaque reminder id"""

    @abstractmethod
    def update_reminder(self, reminder_id: str, timing: NotificationTiming) -> str:
        """Move a reminder to a new time; returns the id to use from now on"""

    @abstractmethod
    def cancel_reminder(self, reminder_id: str) -> None:
        ...

    @abstractmethod
    def cancel_task_reminders(self, task_id: int) -> int:
        ...

    @abstractmethod
    def send_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        ...


class LocalReminderDispatcher(NotificationDispatcher):
    """Keeps reminders in the scheduled_reminders table and logs deliveries"""

    def __init__(self, db: Session):
        self.db = db
        self.reminder_repo = ReminderRepository()

    def get_scheduled_reminders(self, user_id: str) -> List[ScheduledReminder]:
        return self.reminder_repo.list_active_for_user(self.db, user_id)

    def schedule_reminder(
        self,
        user_id: str,
        task_id: int,
        timing: NotificationTiming,
        title: str,
        body: str,
        is_smart_enabled: bool = True
    ) -> str:
        reminder = self.reminder_repo.create(self.db, ScheduledReminder(
            id=str(uuid.uuid4()),
            user_id=user_id,
            task_id=task_id,
            hour=timing.hour,
            minute=timing.minute,
            day_of_week=timing.day_of_week,
            recurrence=timing.recurrence,
            is_smart_enabled=is_smart_enabled,
            title=title,
            body=body,
            is_active=True
        ))
        logger.info(
            f"Scheduled reminder {reminder.id} for task {task_id} at "
            f"{timing.hour:02d}:{timing.minute:02d} ({timing.recurrence})"
        )
        return reminder.id

    def update_reminder(self, reminder_id: str, timing: NotificationTiming) -> str:
        reminder = self.reminder_repo.get_by_id(self.db, reminder_id)
        if reminder is None:
            raise KeyError(f"Reminder {reminder_id} not found")

        reminder.hour = timing.hour
        reminder.minute = timing.minute
        reminder.day_of_week = timing.day_of_week
        reminder.recurrence = timing.recurrence
        self.reminder_repo.update(self.db, reminder)

        logger.info(f"Rescheduled reminder {reminder_id} to {timing.hour:02d}:{timing.minute:02d}")
        return reminder.id

    def cancel_reminder(self, reminder_id: str) -> None:
        reminder = self.reminder_repo.get_by_id(self.db, reminder_id)
        if reminder is None or not reminder.is_active:
            return

        reminder.is_active = False
        self.reminder_repo.update(self.db, reminder)
        logger.info(f"Cancelled reminder {reminder_id}")

    def cancel_task_reminders(self, task_id: int) -> int:
        reminders = self.reminder_repo.list_active_for_task(self.db, task_id)
        for reminder in reminders:
            reminder.is_active = False
        if reminders:
            self.db.commit()
            logger.info(f"Cancelled {len(reminders)} reminder(s) of task {task_id}")
        return len(reminders)

    def send_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        notification_id = str(uuid.uuid4())
        logger.info(f"Notification {notification_id} to user {user_id}: {title} | {body}")
        return notification_id


def streak_type_label(streak_type: str) -> str:
    if streak_type in STREAK_TYPE_LABELS:
        return STREAK_TYPE_LABELS[streak_type]
    return streak_type.replace("_", " ").title()


def build_protection_message(streak, task_title: Optional[str] = None) -> Dict[str, Any]:
    """Message for a single automatically protected streak"""
    name = task_title or streak_type_label(streak.streak_type)
    return {
        "title": "We've got your back!",
        "body": f"Your streak for \"{name}\" has been protected for today.",
        "data": {
            "type": "streak_protection",
            "streak_id": streak.id,
            "streak_type": streak.streak_type,
        },
    }


def build_multiple_protections_message(streaks: List) -> Dict[str, Any]:
    """Message for several streaks protected in one sweep"""
    count = len(streaks)
    labels = [streak_type_label(s.streak_type) for s in streaks]

    if count == 1:
        body = f"Your {labels[0]} streak has been automatically protected."
    elif count == 2:
        body = f"We've protected your {' and '.join(labels)} streaks."
    else:
        body = f"We've automatically protected {count} of your streaks for today."

    return {
        "title": f"{count} streaks protected!",
        "body": body,
        "data": {
            "type": "multiple_protections",
            "protected_count": count,
            "streak_ids": [s.id for s in streaks],
        },
    }


def build_at_risk_message(streak, hours_remaining: int, task_title: Optional[str] = None) -> Dict[str, Any]:
    """Warning for a streak that will break unless something is completed today"""
    name = task_title or streak_type_label(streak.streak_type)
    return {
        "title": f"Only {hours_remaining} hours left!",
        "body": f"Complete \"{name}\" to maintain your {streak.current_count}-day streak.",
        "data": {
            "type": "streak_at_risk",
            "streak_id": streak.id,
            "hours_remaining": hours_remaining,
            "current_count": streak.current_count,
        },
    }
