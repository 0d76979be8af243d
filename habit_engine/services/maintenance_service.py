"""
Scheduled maintenance service.
Midnight streak reset, evening protection sweep and monthly protection
refill for one user, with durable per-day run bookkeeping.
"""
import logging
from typing import List, Optional
from sqlalchemy.orm import Session

from habit_engine.schemas import StreakResponse
from habit_engine.repositories.job_run_repository import JobRunRepository
from habit_engine.services.date_service import DateService
from habit_engine.services.streak_service import StreakService
from habit_engine.services.notification_service import (
    NotificationDispatcher, LocalReminderDispatcher,
    build_protection_message, build_multiple_protections_message, build_at_risk_message
)
from habit_engine.constants import (
    EVENING_CHECK_HOUR, JOB_MIDNIGHT_RESET, JOB_EVENING_CHECK, JOB_MONTHLY_RESET,
    PROTECTION_AUTO
)

logger = logging.getLogger("habit_engine.maintenance")


class MaintenanceService:
    """Service for the recurring per-user streak jobs"""

    def __init__(
        self,
        db: Session,
        streak_service: Optional[StreakService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        date_service: Optional[DateService] = None,
        evening_hour: int = EVENING_CHECK_HOUR
    ):
        self.db = db
        self.job_run_repo = JobRunRepository()
        self.date_service = date_service or DateService()
        self.streak_service = streak_service or StreakService(db, self.date_service)
        self.dispatcher = dispatcher or LocalReminderDispatcher(db)
        self.evening_hour = evening_hour

    def run_midnight_reset(self, user_id: str) -> dict:
        """
        Run the daily streak reset once per day.

        Returns:
            Dictionary describing what happened
        """
        now = self.date_service.now()

        if self.job_run_repo.has_run_on(self.db, user_id, JOB_MIDNIGHT_RESET, now.date()):
            return {"skipped": True, "reason": "Already ran today"}

        result = self.streak_service.perform_midnight_reset(user_id)
        if not result.success:
            logger.warning(f"Midnight reset failed for user {user_id}: {result.error}")
            return {"skipped": False, "success": False, "error": result.error}

        self.job_run_repo.mark_run(self.db, user_id, JOB_MIDNIGHT_RESET, now)
        logger.info(f"Midnight reset done for user {user_id}")
        return {"skipped": False, "success": True}

    def run_evening_check(self, user_id: str) -> dict:
        """
        Protect at-risk streaks after the evening cutoff and notify the user.

        Steps:
        1. Skip before the cutoff hour or when already done today
        2. Apply an automatic protection to every protectable streak
        3. Tell the user what was protected
        4. Warn about at-risk streaks that stayed unprotected

        Notification failures are logged; protections stay applied.

        Returns:
            Dictionary with protected and at-risk counts
        """
        now = self.date_service.now()

        if now.hour < self.evening_hour:
            return {"skipped": True, "reason": "Too early for streak check"}

        if self.job_run_repo.has_run_on(self.db, user_id, JOB_EVENING_CHECK, now.date()):
            return {"skipped": True, "reason": "Already checked today"}

        sweep = self.streak_service.check_streaks_needing_protection(user_id)
        if not sweep.success:
            logger.warning(f"Evening check failed for user {user_id}: {sweep.error}")
            return {"skipped": False, "success": False, "error": sweep.error}

        protected: List[StreakResponse] = []
        for streak in sweep.protectable_streaks:
            result = self.streak_service.apply_streak_protection(
                user_id, streak.id, PROTECTION_AUTO, "Automatic evening protection"
            )
            if result.success:
                protected.append(result.streak)
            else:
                logger.warning(
                    f"Could not protect streak {streak.id} of user {user_id}: "
                    f"{result.reason or result.error}"
                )

        protected_ids = {s.id for s in protected}
        unprotected = [s for s in sweep.streaks_at_risk if s.id not in protected_ids]

        if len(protected) == 1:
            self._send(user_id, build_protection_message(protected[0]))
        elif protected:
            self._send(user_id, build_multiple_protections_message(protected))

        hours_remaining = max(24 - now.hour, 1)
        for streak in unprotected:
            self._send(user_id, build_at_risk_message(streak, hours_remaining))

        self.job_run_repo.mark_run(self.db, user_id, JOB_EVENING_CHECK, now)
        logger.info(
            f"Evening check for user {user_id}: {len(protected)} protected, "
            f"{len(unprotected)} at risk"
        )
        return {
            "skipped": False,
            "success": True,
            "protected": len(protected),
            "at_risk": len(unprotected)
        }

    def run_monthly_reset(self, user_id: str) -> dict:
        """Refill protection budgets that are due"""
        result = self.streak_service.reset_monthly_protections(user_id)
        if not result.success:
            logger.warning(f"Monthly protection reset failed for user {user_id}: {result.error}")
            return {"success": False, "error": result.error}

        if result.streaks_reset:
            self.job_run_repo.mark_run(
                self.db, user_id, JOB_MONTHLY_RESET, self.date_service.now()
            )
        return {"success": True, "streaks_reset": result.streaks_reset}

    def _send(self, user_id: str, message: dict) -> None:
        try:
            self.dispatcher.send_notification(
                user_id, message["title"], message["body"], message["data"]
            )
        except Exception as e:
            logger.error(f"Failed to send {message['data']['type']} notification to user {user_id}: {e}")
