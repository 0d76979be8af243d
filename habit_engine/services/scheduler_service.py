"""
Background scheduler for streak maintenance and personalization learning.
Handles:
- Midnight streak reset
- Evening streak protection sweep
- Monthly protection refill
- Queued personalization learning runs

Jobs fire every minute; per-user JobRun rows decide whether there is
anything left to do today, so restarts neither repeat nor skip a day.
"""
import logging
from typing import Callable, List
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from habit_engine.database import SessionLocal
from habit_engine.repositories.task_repository import TaskRepository
from habit_engine.repositories.streak_repository import StreakRepository
from habit_engine.services.learning_queue import LearningQueue
from habit_engine.services.maintenance_service import MaintenanceService
from habit_engine.services.task_service import TaskService

logger = logging.getLogger("habit_engine.scheduler")

scheduler = BackgroundScheduler()


def known_user_ids(db) -> List[str]:
    """Users owning tasks or streaks"""
    return sorted(set(TaskRepository.list_user_ids(db)) | set(StreakRepository.list_user_ids(db)))


def _for_each_user(job_name: str, action: Callable[[MaintenanceService, str], dict]) -> None:
    db = SessionLocal()
    try:
        service = MaintenanceService(db)
        for user_id in known_user_ids(db):
            try:
                result = action(service, user_id)
                if not result.get("skipped"):
                    logger.debug(f"{job_name} for user {user_id}: {result}")
            except Exception as e:
                db.rollback()
                logger.error(f"Scheduler Error ({job_name}) for user {user_id}: {e}")
    except Exception as e:
        logger.error(f"Scheduler Error ({job_name}): {e}")
    finally:
        db.close()


def run_midnight_resets():
    """Job: daily streak reset"""
    _for_each_user("Midnight reset", lambda service, user_id: service.run_midnight_reset(user_id))


def run_evening_checks():
    """Job: evening protection sweep"""
    _for_each_user("Evening check", lambda service, user_id: service.run_evening_check(user_id))


def run_monthly_resets():
    """Job: protection budget refill"""
    _for_each_user("Monthly reset", lambda service, user_id: service.run_monthly_reset(user_id))


def learn_for_user(user_id: str) -> None:
    """Queued job: re-analyze patterns and reschedule smart reminders"""
    db = SessionLocal()
    try:
        TaskService(db).run_personalization_learning(user_id)
    finally:
        db.close()


learning_queue = LearningQueue(learn_for_user, scheduler)


def start_scheduler():
    """Start the scheduler"""
    if not scheduler.running:
        trigger = CronTrigger(minute='*')

        scheduler.add_job(
            run_midnight_resets,
            trigger,
            id='midnight_reset',
            replace_existing=True
        )

        scheduler.add_job(
            run_evening_checks,
            trigger,
            id='evening_streak_check',
            replace_existing=True
        )

        scheduler.add_job(
            run_monthly_resets,
            trigger,
            id='monthly_protection_reset',
            replace_existing=True
        )

        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
