"""
Reminder repository - local store of scheduled task reminders.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from habit_engine.models import ScheduledReminder


class ReminderRepository:
    """Repository for ScheduledReminder data access"""

    @staticmethod
    def get_by_id(db: Session, reminder_id: str) -> Optional[ScheduledReminder]:
        return db.query(ScheduledReminder).filter(ScheduledReminder.id == reminder_id).first()

    @staticmethod
    def list_active_for_user(db: Session, user_id: str) -> List[ScheduledReminder]:
        """Get user's active reminders"""
        return db.query(ScheduledReminder).filter(
            and_(
                ScheduledReminder.user_id == user_id,
                ScheduledReminder.is_active == True
            )
        ).order_by(ScheduledReminder.created_at).all()

    @staticmethod
    def list_active_for_task(db: Session, task_id: int) -> List[ScheduledReminder]:
        return db.query(ScheduledReminder).filter(
            and_(
                ScheduledReminder.task_id == task_id,
                ScheduledReminder.is_active == True
            )
        ).all()

    @staticmethod
    def create(db: Session, reminder: ScheduledReminder) -> ScheduledReminder:
        db.add(reminder)
        db.commit()
        db.refresh(reminder)
        return reminder

    @staticmethod
    def update(db: Session, reminder: ScheduledReminder) -> ScheduledReminder:
        db.commit()
        db.refresh(reminder)
        return reminder
