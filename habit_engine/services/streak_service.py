"""
Streak continuity service.
Maintains daily activity rows, daily streak counters and the monthly
protection budget that can keep a streak alive through a missed day.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habit_engine.models import UserStreak, DailyActivity, StreakProtection
from habit_engine.schemas import (
    StreakResponse, DailyActivityResponse, StreakProtectionResponse,
    StreakUpdateResult, ProtectionEligibility, ProtectionResult,
    ProtectionSweepResult, MonthlyResetResult, StreakStats
)
from habit_engine.repositories.task_repository import (
    TaskRepository, TaskCompletionRepository
)
from habit_engine.repositories.streak_repository import (
    StreakRepository, DailyActivityRepository, StreakProtectionRepository
)
from habit_engine.services.date_service import DateService
from habit_engine.services.locks import KeyedLockRegistry, default_locks
from habit_engine.exceptions import DatabaseException
from habit_engine.constants import (
    STREAK_TYPE_DAILY_COMPLETION, DEFAULT_PROTECTION_QUOTA, DEFAULT_GRACE_DAYS,
    PROTECTION_AUTO
)

logger = logging.getLogger("habit_engine.streaks")

REASON_STREAK_NOT_FOUND = "Streak not found"
REASON_NO_PROTECTIONS = "No protections available"
REASON_ALREADY_PROTECTED = "Already protected today"
REASON_ALREADY_MAINTAINED = "Streak already maintained today"
REASON_LOST_RACE = "Streak already protected today"


def advance_streak(
    streak: UserStreak,
    today: datetime,
    has_activity: bool,
    grace_days: int = DEFAULT_GRACE_DAYS
) -> None:
    """
    Apply one day's transition to a streak in place.

    With activity the count grows when the last active day lies within the
    grace window before `today`, restarts at 1 after a longer gap, and stays
    put when today was already counted. Without activity the streak only
    breaks once the last active day falls behind the grace window, so with
    the default one-day grace a streak last active yesterday survives today's
    check and breaks on the next one.

    A protection covering a day after the last activity (and inside the
    grace window) is treated as a maintained day once that day has passed:
    the last activity moves to the protected day, the count does not grow.

    Args:
        streak: Streak to update
        today: Day being evaluated, normalized to midnight
        has_activity: Whether the user completed anything on `today`
        grace_days: Days the last activity may lag behind before breaking
    """
    last_activity = None
    if streak.last_activity_date is not None:
        last_activity = DateService.normalize_to_midnight(streak.last_activity_date)

    # Days already behind the last counted day never rewind the streak
    if last_activity is not None and today < last_activity:
        return

    protected_day = None
    if streak.last_protected_date is not None:
        protected_day = DateService.normalize_to_midnight(streak.last_protected_date)

    if (
        last_activity is not None
        and protected_day is not None
        and protected_day < today
        and 0 < (protected_day - last_activity).days <= grace_days
    ):
        streak.last_activity_date = protected_day
        last_activity = protected_day

    if streak.is_protected_today and (
        has_activity or protected_day is None or protected_day < today
    ):
        streak.is_protected_today = False

    window_start = today - timedelta(days=grace_days)

    if has_activity:
        if last_activity is not None and window_start <= last_activity < today:
            streak.current_count = (streak.current_count or 0) + 1
        elif last_activity != today:
            streak.current_count = 1
            streak.streak_start_date = today

        streak.last_activity_date = today
        streak.is_active = True
    elif last_activity is not None and last_activity < window_start:
        streak.current_count = 0
        streak.is_active = False

    streak.longest_count = max(streak.longest_count or 0, streak.current_count or 0)


def is_protected_on(streak: UserStreak, day: datetime) -> bool:
    """Check whether a protection covers `day`"""
    if not streak.is_protected_today or streak.last_protected_date is None:
        return False
    return DateService.normalize_to_midnight(streak.last_protected_date) == day


class StreakService:
    """Service for streak and daily activity bookkeeping"""

    def __init__(
        self,
        db: Session,
        date_service: Optional[DateService] = None,
        locks: Optional[KeyedLockRegistry] = None,
        protection_quota: int = DEFAULT_PROTECTION_QUOTA,
        grace_days: int = DEFAULT_GRACE_DAYS
    ):
        self.db = db
        self.task_repo = TaskRepository()
        self.completion_repo = TaskCompletionRepository()
        self.streak_repo = StreakRepository()
        self.activity_repo = DailyActivityRepository()
        self.protection_repo = StreakProtectionRepository()
        self.date_service = date_service or DateService()
        self.locks = locks or default_locks
        self.protection_quota = protection_quota
        self.grace_days = grace_days

    def update_daily_activity(
        self,
        user_id: str,
        target: Optional[datetime] = None
    ) -> StreakUpdateResult:
        """
        Recompute the user's activity row for a day, then advance streaks.

        The activity upsert and the streak transition are committed together.
        Days before today only get their counts recomputed: streaks and the
        row's recorded streak_days stay as they are.

        Args:
            user_id: User to update
            target: Any moment of the day to evaluate (defaults to now)

        Returns:
            StreakUpdateResult with the user's streaks and the activity row
        """
        day_start, day_end = self.date_service.get_day_range(target or self.date_service.now())

        with self.locks.user(user_id):
            try:
                activity = self._upsert_daily_activity(user_id, day_start, day_end)

                if day_start < self.date_service.today():
                    self.db.commit()
                    logger.info(f"Recounted past activity for user {user_id} on {day_start.date()}")
                    return StreakUpdateResult(
                        success=True,
                        streaks=[
                            StreakResponse.model_validate(s)
                            for s in self.streak_repo.list_for_user(self.db, user_id)
                        ],
                        daily_activity=DailyActivityResponse.model_validate(activity)
                    )

                streaks = self._advance_user_streaks(
                    user_id, day_start, activity.tasks_completed > 0
                )

                daily = next(
                    (s for s in streaks if s.streak_type == STREAK_TYPE_DAILY_COMPLETION), None
                )
                activity.streak_days = daily.current_count if daily else 0

                self.db.commit()

                return StreakUpdateResult(
                    success=True,
                    streaks=[StreakResponse.model_validate(s) for s in streaks],
                    daily_activity=DailyActivityResponse.model_validate(activity)
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to update daily activity for user {user_id}: {e}")
                return StreakUpdateResult(success=False, error=str(e))

    def update_user_streaks(
        self,
        user_id: str,
        target: Optional[datetime] = None,
        has_activity: bool = False
    ) -> StreakUpdateResult:
        """
        Run the daily streak transition for a user.

        Args:
            user_id: User to update
            target: Day to evaluate (defaults to today)
            has_activity: Whether the user had qualifying activity that day

        Returns:
            StreakUpdateResult with the user's streaks
        """
        today = self.date_service.normalize_to_midnight(target or self.date_service.now())

        with self.locks.user(user_id):
            try:
                streaks = self._advance_user_streaks(user_id, today, has_activity)
                self.db.commit()
                return StreakUpdateResult(
                    success=True,
                    streaks=[StreakResponse.model_validate(s) for s in streaks]
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to update streaks for user {user_id}: {e}")
                return StreakUpdateResult(success=False, error=str(e))

    def can_apply_protection(self, user_id: str, streak_id: int) -> ProtectionEligibility:
        """Check whether a protection can be spent on the streak today"""
        try:
            streak = self.streak_repo.get_for_user(self.db, user_id, streak_id)
            return self._check_eligibility(streak, self.date_service.today())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to check protection eligibility for streak {streak_id}: {e}")
            return ProtectionEligibility(can_protect=False, reason=str(e))

    def apply_streak_protection(
        self,
        user_id: str,
        streak_id: int,
        protection_type: str = PROTECTION_AUTO,
        reason: str = "Automatic protection applied",
        task_id: Optional[int] = None
    ) -> ProtectionResult:
        """
        Spend one protection on the streak for today.

        The counter move and the audit record are written in one transaction.
        The counter update is guarded in SQL, so a concurrent request that
        passed the eligibility check as well loses with REASON_LOST_RACE.

        Args:
            user_id: Owner of the streak
            streak_id: Streak to protect
            protection_type: auto, manual or premium
            reason: Free text stored on the audit record
            task_id: Optional task the protection relates to

        Returns:
            ProtectionResult with the audit record and the updated streak
        """
        today = self.date_service.today()
        now = self.date_service.now()

        with self.locks.user(user_id), self.locks.streak(streak_id):
            try:
                streak = self.streak_repo.get_for_user(self.db, user_id, streak_id)
                eligibility = self._check_eligibility(streak, today)
                if not eligibility.can_protect:
                    return ProtectionResult(
                        success=False, can_protect=False, reason=eligibility.reason
                    )

                snapshot = {
                    "originalStreakCount": streak.current_count,
                    "appliedAt": now.isoformat(),
                    "availableBefore": streak.available_protections,
                    "usedBefore": streak.used_protections,
                }

                if not self.streak_repo.consume_protection(self.db, streak.id, today, now):
                    self.db.rollback()
                    logger.info(f"Protection race lost for streak {streak_id} of user {user_id}")
                    return ProtectionResult(
                        success=False, can_protect=False, reason=REASON_LOST_RACE
                    )

                self.db.refresh(streak)

                protection = StreakProtection(
                    user_id=user_id,
                    streak_id=streak.id,
                    task_id=task_id,
                    protection_date=today,
                    protection_type=protection_type,
                    reason=reason,
                    available_protections=streak.available_protections,
                    used_protections=streak.used_protections,
                    meta=json.dumps(snapshot),
                    created_at=now
                )
                self.protection_repo.add(self.db, protection)

                self.db.commit()

                logger.info(
                    f"Applied {protection_type} protection to streak {streak_id} of user {user_id} "
                    f"({streak.available_protections} left)"
                )
                return ProtectionResult(
                    success=True,
                    can_protect=True,
                    protection=StreakProtectionResponse.model_validate(protection),
                    streak=StreakResponse.model_validate(streak)
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to apply protection to streak {streak_id}: {e}")
                return ProtectionResult(success=False, error=str(e))

    def check_streaks_needing_protection(self, user_id: str) -> ProtectionSweepResult:
        """
        Evening sweep: active streaks not yet maintained or protected today.

        Returns:
            ProtectionSweepResult with at-risk streaks and the protectable subset
        """
        today = self.date_service.today()

        try:
            at_risk = []
            protectable = []

            for streak in self.streak_repo.list_active_for_user(self.db, user_id):
                if self._maintained_on(streak, today) or is_protected_on(streak, today):
                    continue
                at_risk.append(streak)
                if self._check_eligibility(streak, today).can_protect:
                    protectable.append(streak)

            return ProtectionSweepResult(
                success=True,
                streaks_at_risk=[StreakResponse.model_validate(s) for s in at_risk],
                protectable_streaks=[StreakResponse.model_validate(s) for s in protectable]
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to check streaks needing protection for user {user_id}: {e}")
            return ProtectionSweepResult(success=False, error=str(e))

    def perform_midnight_reset(self, user_id: str) -> StreakUpdateResult:
        """
        Daily maintenance: evaluate today without activity, then refresh today's row.

        Safe to call repeatedly; later calls find the state already processed.
        """
        today = self.date_service.today()

        with self.locks.user(user_id):
            result = self.update_user_streaks(user_id, today, has_activity=False)
            if not result.success:
                return result

            return self.update_daily_activity(user_id, today)

    def reset_monthly_protections(self, user_id: str) -> MonthlyResetResult:
        """
        Refill the protection budget of streaks whose reset date has come.

        Streaks whose reset date is still ahead are left untouched, so repeated
        calls within a month change nothing.
        """
        today = self.date_service.today()
        next_reset = self.date_service.first_of_next_month(today)

        with self.locks.user(user_id):
            try:
                reset_count = 0
                for streak in self.streak_repo.list_for_user(self.db, user_id):
                    if (
                        streak.protection_reset_date is not None
                        and self.date_service.normalize_to_midnight(streak.protection_reset_date) > today
                    ):
                        continue

                    streak.available_protections = self.protection_quota
                    streak.used_protections = 0
                    streak.protection_reset_date = next_reset
                    streak.is_protected_today = False
                    reset_count += 1

                self.db.commit()

                if reset_count:
                    logger.info(f"Reset protections of {reset_count} streak(s) for user {user_id}")
                return MonthlyResetResult(success=True, streaks_reset=reset_count)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to reset monthly protections for user {user_id}: {e}")
                return MonthlyResetResult(success=False, error=str(e))

    def get_user_streaks(self, user_id: str) -> List[UserStreak]:
        try:
            return self.streak_repo.list_for_user(self.db, user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException("streak query", str(e))

    def get_daily_activities(
        self,
        user_id: str,
        start: datetime,
        end: datetime
    ) -> List[DailyActivity]:
        """Activity rows for the days from `start` through `end`, both inclusive"""
        range_start = self.date_service.normalize_to_midnight(start)
        _, range_end = self.date_service.get_day_range(end)

        try:
            return self.activity_repo.list_in_range(self.db, user_id, range_start, range_end)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException("daily activity query", str(e))

    def get_streak_stats(self, user_id: str, days: int = 30) -> StreakStats:
        """
        Summarize the daily streak and the trailing window of activity.

        Args:
            user_id: User to summarize
            days: Size of the trailing window

        Returns:
            StreakStats
        """
        today = self.date_service.today()

        try:
            daily = self.streak_repo.get_by_type(self.db, user_id, STREAK_TYPE_DAILY_COMPLETION)
            activities = self.activity_repo.list_in_range(
                self.db, user_id, today - timedelta(days=days), today + timedelta(days=1)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException("streak stats query", str(e))

        total_completions = sum(a.tasks_completed or 0 for a in activities)
        average_rate = 0.0
        if activities:
            average_rate = sum(a.completion_rate or 0.0 for a in activities) / len(activities)

        return StreakStats(
            daily_streak=daily.current_count if daily else 0,
            longest_streak=daily.longest_count if daily else 0,
            total_completions=total_completions,
            average_completion_rate=round(average_rate, 2)
        )

    def get_protection_history(self, user_id: str, days: int = 30) -> List[StreakProtection]:
        since = self.date_service.today() - timedelta(days=days)
        try:
            return self.protection_repo.get_history(self.db, user_id, since)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseException("protection history query", str(e))

    def _upsert_daily_activity(
        self,
        user_id: str,
        day_start: datetime,
        day_end: datetime
    ) -> DailyActivity:
        """Recount the day's numbers into the user's activity row"""
        tasks_completed = self.completion_repo.count_in_range(self.db, user_id, day_start, day_end)
        habit_completions = self.completion_repo.count_in_range(
            self.db, user_id, day_start, day_end, habits_only=True
        )
        total_tasks = self.task_repo.count_due_in_range(self.db, user_id, day_start, day_end)
        tasks_created = self.task_repo.count_created_in_range(self.db, user_id, day_start, day_end)

        completion_rate = 0.0
        if total_tasks > 0:
            completion_rate = min(tasks_completed / total_tasks * 100, 100.0)

        activity = self.activity_repo.get_by_day(self.db, user_id, day_start)
        if not activity:
            activity = self.activity_repo.add(self.db, DailyActivity(
                user_id=user_id,
                activity_date=day_start,
                active_time_minutes=0,
                goals_achieved=0,
                meta="{}"
            ))

        activity.tasks_completed = tasks_completed
        activity.tasks_created = tasks_created
        activity.total_tasks = total_tasks
        activity.completion_rate = completion_rate
        activity.habit_completions = habit_completions
        activity.updated_at = self.date_service.now()
        return activity

    def _advance_user_streaks(
        self,
        user_id: str,
        today: datetime,
        has_activity: bool
    ) -> List[UserStreak]:
        """Advance the daily streak, creating it on first activity. Caller commits."""
        streak = self.streak_repo.get_by_type(self.db, user_id, STREAK_TYPE_DAILY_COMPLETION)

        if streak is None:
            if has_activity:
                self.streak_repo.add(self.db, self._new_streak(user_id, today))
                logger.info(f"Started daily streak for user {user_id}")
        else:
            was_active = streak.is_active
            advance_streak(streak, today, has_activity, self.grace_days)
            streak.updated_at = self.date_service.now()
            if was_active and not streak.is_active:
                logger.info(f"Daily streak of user {user_id} broken")

        self.db.flush()
        return self.streak_repo.list_for_user(self.db, user_id)

    def _new_streak(self, user_id: str, today: datetime) -> UserStreak:
        now = self.date_service.now()
        return UserStreak(
            user_id=user_id,
            streak_type=STREAK_TYPE_DAILY_COMPLETION,
            current_count=1,
            longest_count=1,
            last_activity_date=today,
            streak_start_date=today,
            is_active=True,
            available_protections=self.protection_quota,
            used_protections=0,
            protection_reset_date=self.date_service.first_of_next_month(today),
            is_protected_today=False,
            meta="{}",
            created_at=now,
            updated_at=now
        )

    def _maintained_on(self, streak: UserStreak, day: datetime) -> bool:
        if streak.last_activity_date is None:
            return False
        return self.date_service.normalize_to_midnight(streak.last_activity_date) == day

    def _check_eligibility(
        self,
        streak: Optional[UserStreak],
        today: datetime
    ) -> ProtectionEligibility:
        if streak is None:
            return ProtectionEligibility(can_protect=False, reason=REASON_STREAK_NOT_FOUND)

        available = streak.available_protections or 0

        if available <= 0:
            return ProtectionEligibility(
                can_protect=False, reason=REASON_NO_PROTECTIONS, available_protections=available
            )

        if is_protected_on(streak, today):
            return ProtectionEligibility(
                can_protect=False, reason=REASON_ALREADY_PROTECTED, available_protections=available
            )

        if self._maintained_on(streak, today):
            return ProtectionEligibility(
                can_protect=False, reason=REASON_ALREADY_MAINTAINED, available_protections=available
            )

        return ProtectionEligibility(can_protect=True, available_protections=available)
