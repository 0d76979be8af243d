"""
Streak repository - Data access layer for streak-related models.
Handles queries for user streaks, daily activity rows and protection records.
Writes are staged (flushed) and committed by the calling service so that a
streak update and its audit trail land in one transaction.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_

from habit_engine.models import UserStreak, DailyActivity, StreakProtection


class StreakRepository:
    """Repository for UserStreak data access"""

    @staticmethod
    def get_for_user(db: Session, user_id: str, streak_id: int) -> Optional[UserStreak]:
        """Get streak by ID, only if it belongs to the user"""
        return db.query(UserStreak).filter(
            and_(UserStreak.id == streak_id, UserStreak.user_id == user_id)
        ).first()

    @staticmethod
    def get_by_type(db: Session, user_id: str, streak_type: str) -> Optional[UserStreak]:
        """Get user's streak of the given type"""
        return db.query(UserStreak).filter(
            and_(UserStreak.user_id == user_id, UserStreak.streak_type == streak_type)
        ).first()

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[UserStreak]:
        """Get all streaks of a user, most recently updated first"""
        return db.query(UserStreak).filter(
            UserStreak.user_id == user_id
        ).order_by(UserStreak.updated_at.desc(), UserStreak.id).all()

    @staticmethod
    def list_active_for_user(db: Session, user_id: str) -> List[UserStreak]:
        """Get user's active streaks with a positive count"""
        return db.query(UserStreak).filter(
            and_(
                UserStreak.user_id == user_id,
                UserStreak.is_active == True,
                UserStreak.current_count > 0
            )
        ).order_by(UserStreak.id).all()

    @staticmethod
    def list_user_ids(db: Session) -> List[str]:
        """Distinct ids of users owning at least one streak"""
        return [row[0] for row in db.query(UserStreak.user_id).distinct().all()]

    @staticmethod
    def add(db: Session, streak: UserStreak) -> UserStreak:
        """Stage a new streak; the caller commits"""
        db.add(streak)
        db.flush()
        return streak

    @staticmethod
    def consume_protection(
        db: Session,
        streak_id: int,
        protection_date: datetime,
        updated_at: datetime
    ) -> bool:
        """
        Move one protection from available to used, guarded in the WHERE clause.

        The row only changes when a protection is still available and the
        streak is not yet protected for `protection_date`, so of two
        concurrent requests at most one sees a row count of 1.

        Returns:
            True if this call consumed the protection
        """
        updated = db.query(UserStreak).filter(
            and_(
                UserStreak.id == streak_id,
                UserStreak.available_protections > 0,
                or_(
                    UserStreak.is_protected_today == False,
                    UserStreak.last_protected_date.is_(None),
                    UserStreak.last_protected_date != protection_date
                )
            )
        ).update(
            {
                UserStreak.is_protected_today: True,
                UserStreak.last_protected_date: protection_date,
                UserStreak.used_protections: UserStreak.used_protections + 1,
                UserStreak.available_protections: UserStreak.available_protections - 1,
                UserStreak.updated_at: updated_at,
            },
            synchronize_session="fetch"
        )
        return updated == 1


class DailyActivityRepository:
    """Repository for DailyActivity data access"""

    @staticmethod
    def get_by_day(db: Session, user_id: str, day_start: datetime) -> Optional[DailyActivity]:
        """Get the activity row of a user for the day starting at `day_start`"""
        return db.query(DailyActivity).filter(
            and_(
                DailyActivity.user_id == user_id,
                DailyActivity.activity_date == day_start
            )
        ).first()

    @staticmethod
    def list_in_range(
        db: Session,
        user_id: str,
        start_time: datetime,
        end_time: datetime
    ) -> List[DailyActivity]:
        """Get activity rows within [start_time, end_time), newest first"""
        return db.query(DailyActivity).filter(
            and_(
                DailyActivity.user_id == user_id,
                DailyActivity.activity_date >= start_time,
                DailyActivity.activity_date < end_time
            )
        ).order_by(DailyActivity.activity_date.desc()).all()

    @staticmethod
    def add(db: Session, activity: DailyActivity) -> DailyActivity:
        """Stage a new activity row; the caller commits"""
        db.add(activity)
        db.flush()
        return activity


class StreakProtectionRepository:
    """Repository for StreakProtection data access"""

    @staticmethod
    def add(db: Session, protection: StreakProtection) -> StreakProtection:
        """Stage a protection record; the caller commits"""
        db.add(protection)
        db.flush()
        return protection

    @staticmethod
    def get_history(db: Session, user_id: str, since: datetime) -> List[StreakProtection]:
        """Get user's protections dated at or after `since`, newest first"""
        return db.query(StreakProtection).filter(
            and_(
                StreakProtection.user_id == user_id,
                StreakProtection.protection_date >= since
            )
        ).order_by(StreakProtection.protection_date.desc()).all()
