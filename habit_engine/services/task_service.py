"""
Task management service.
Handles task completion events and the follow-up work they trigger:
daily activity and streak bookkeeping, personalization learning and
rescheduling of smart reminders.
"""
import logging
from collections import Counter
from datetime import timedelta
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habit_engine.models import Task, TaskCompletion
from habit_engine.schemas import (
    TaskCreate, TaskResponse, TaskCompletionResponse, TaskCompletionResult,
    CompletionStats, NotificationTiming, OptimizedTiming, SmartReminderResult
)
from habit_engine.repositories.task_repository import (
    TaskRepository, TaskCompletionRepository
)
from habit_engine.services.date_service import DateService
from habit_engine.services.streak_service import StreakService
from habit_engine.services.personalization_service import PersonalizationService
from habit_engine.services.notification_service import (
    NotificationDispatcher, LocalReminderDispatcher
)
from habit_engine.services.learning_queue import LearningQueue
from habit_engine.exceptions import TaskNotFoundException
from habit_engine.constants import (
    TASK_STATUS_TODO, TASK_STATUS_COMPLETED, COMPLETION_MANUAL,
    RESCHEDULE_CONFIDENCE_THRESHOLD, SMART_MESSAGE_OPTIMIZED_CONFIDENCE,
    SMART_MESSAGE_SMART_CONFIDENCE
)

logger = logging.getLogger("habit_engine.tasks")


class TaskService:
    """Service for task management"""

    def __init__(
        self,
        db: Session,
        personalizer: Optional[PersonalizationService] = None,
        streak_service: Optional[StreakService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        learning_queue: Optional[LearningQueue] = None,
        date_service: Optional[DateService] = None
    ):
        self.db = db
        self.task_repo = TaskRepository()
        self.completion_repo = TaskCompletionRepository()
        self.date_service = date_service or DateService()
        self.personalizer = personalizer or PersonalizationService(db, self.date_service)
        self.streak_service = streak_service or StreakService(db, self.date_service)
        self.dispatcher = dispatcher or LocalReminderDispatcher(db)
        self.learning_queue = learning_queue

    def get_task(self, user_id: str, task_id: int) -> Task:
        """
        Get a task of the user.

        Raises:
            TaskNotFoundException: no such task for this user
        """
        task = self.task_repo.get_for_user(self.db, user_id, task_id)
        if not task:
            raise TaskNotFoundException(task_id)
        return task

    def list_tasks(self, user_id: str) -> List[Task]:
        return self.task_repo.list_tasks(self.db, user_id)

    def create_task(self, user_id: str, task_data: TaskCreate) -> Task:
        """Create a new task"""
        now = self.date_service.now()
        task = Task(**task_data.model_dump(), user_id=user_id)
        task.status = TASK_STATUS_TODO
        task.created_at = now
        task.updated_at = now

        # Due dates are tracked per day
        if task.due_date:
            task.due_date = self.date_service.normalize_to_midnight(task.due_date)

        task = self.task_repo.create(self.db, task)
        logger.info(f"Created task {task.id} for user {user_id}")
        return task

    def toggle_task_completion(
        self,
        user_id: str,
        task_id: int,
        completion_type: str = COMPLETION_MANUAL,
        notes: Optional[str] = None
    ) -> TaskCompletionResult:
        """
        Flip a task between completed and todo.

        Completing records one TaskCompletion, refreshes today's activity and
        streaks, and queues personalization learning. Uncompleting deletes
        the completion record and refreshes activity for its day; it is not
        a learning signal.

        Raises:
            TaskNotFoundException: no such task for this user
        """
        task = self.get_task(user_id, task_id)

        if task.status == TASK_STATUS_COMPLETED:
            return self._uncomplete(user_id, task)
        return self._complete(user_id, task, completion_type, notes)

    def complete_task(
        self,
        user_id: str,
        task_id: int,
        completion_type: str = COMPLETION_MANUAL,
        notes: Optional[str] = None
    ) -> TaskCompletionResult:
        task = self.get_task(user_id, task_id)
        if task.status == TASK_STATUS_COMPLETED:
            return TaskCompletionResult(
                success=False,
                task=TaskResponse.model_validate(task),
                reason="Task already completed"
            )
        return self._complete(user_id, task, completion_type, notes)

    def uncomplete_task(self, user_id: str, task_id: int) -> TaskCompletionResult:
        task = self.get_task(user_id, task_id)
        if task.status != TASK_STATUS_COMPLETED:
            return TaskCompletionResult(
                success=False,
                task=TaskResponse.model_validate(task),
                reason="Task is not completed"
            )
        return self._uncomplete(user_id, task)

    def run_personalization_learning(self, user_id: str) -> int:
        """
        Re-analyze the user's patterns and move smart reminders accordingly.

        Errors propagate so the learning queue can retry.

        Returns:
            Number of reminders rescheduled
        """
        self.personalizer.analyze_user_patterns(user_id)
        updated = self.update_smart_notifications(user_id)
        logger.info(f"Personalization learning for user {user_id} rescheduled {updated} reminder(s)")
        return updated

    def update_smart_notifications(self, user_id: str) -> int:
        """
        Re-optimize every smart reminder of the user.

        A reminder is moved only when the new time differs and the
        optimization is confident enough. One failing reminder does not
        stop the others.

        Returns:
            Number of reminders rescheduled
        """
        updated = 0

        for reminder in self.dispatcher.get_scheduled_reminders(user_id):
            if not reminder.is_smart_enabled:
                continue

            reminder_id = reminder.id
            try:
                task = self.task_repo.get_by_id(self.db, reminder.task_id)
                if task is None:
                    continue

                current_timing = NotificationTiming(
                    hour=reminder.hour,
                    minute=reminder.minute,
                    day_of_week=reminder.day_of_week,
                    recurrence=reminder.recurrence
                )
                optimization = self.personalizer.get_optimized_timing(user_id, task, current_timing)

                if not self.should_reschedule(current_timing, optimization):
                    continue

                self.dispatcher.update_reminder(reminder_id, optimization.optimized_timing)
                updated += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to update smart reminder {reminder_id}: {e}")

        return updated

    def schedule_smart_notification(
        self,
        user_id: str,
        task_id: int,
        original_timing: NotificationTiming
    ) -> SmartReminderResult:
        """
        Schedule a task reminder at the personalized time.

        With smart timing off, or when the optimized scheduling fails, the
        reminder is scheduled at the original time.

        Raises:
            TaskNotFoundException: no such task for this user
        """
        task = self.get_task(user_id, task_id)
        settings = self.personalizer.get_user_settings(user_id)

        if settings.is_smart_enabled:
            try:
                optimization = self.personalizer.get_optimized_timing(user_id, task, original_timing)
                reminder_id = self.dispatcher.schedule_reminder(
                    user_id,
                    task.id,
                    optimization.optimized_timing,
                    self.build_smart_message(task, optimization),
                    self.build_reminder_body(task, True),
                    is_smart_enabled=True
                )
                logger.info(
                    f"Smart reminder for \"{task.title}\": "
                    f"{original_timing.hour:02d}:{original_timing.minute:02d} -> "
                    f"{optimization.optimized_timing.hour:02d}:{optimization.optimized_timing.minute:02d} "
                    f"({optimization.reason})"
                )
                return SmartReminderResult(
                    reminder_id=reminder_id, is_smart_enabled=True, optimization=optimization
                )
            except Exception as e:
                self.db.rollback()
                logger.error(f"Smart scheduling failed for task {task_id}, using original timing: {e}")

        reminder_id = self.dispatcher.schedule_reminder(
            user_id,
            task.id,
            original_timing,
            f"Time to work on \"{task.title}\"",
            self.build_reminder_body(task, False),
            is_smart_enabled=False
        )
        return SmartReminderResult(reminder_id=reminder_id, is_smart_enabled=False)

    def get_user_completion_stats(self, user_id: str, days: int = 30) -> CompletionStats:
        """Completion totals over the trailing window"""
        since = self.date_service.now() - timedelta(days=days)

        try:
            completions = self.completion_repo.list_completions(self.db, user_id, since)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load completion stats for user {user_id}: {e}")
            return CompletionStats(total_completions=0, completions_by_type={}, average_per_day=0.0)

        by_type = Counter(c.completion_type for c in completions)
        return CompletionStats(
            total_completions=len(completions),
            completions_by_type=dict(by_type),
            average_per_day=len(completions) / days if days > 0 else 0.0
        )

    @staticmethod
    def should_reschedule(current: NotificationTiming, optimization: OptimizedTiming) -> bool:
        """Move only confident optimizations that actually change the time"""
        optimized = optimization.optimized_timing
        changed = optimized.hour != current.hour or optimized.minute != current.minute
        return changed and optimization.confidence > RESCHEDULE_CONFIDENCE_THRESHOLD

    @staticmethod
    def build_smart_message(task: Task, optimization: Optional[OptimizedTiming]) -> str:
        message = f"Time to work on \"{task.title}\""
        if optimization is None:
            return message
        if optimization.confidence > SMART_MESSAGE_OPTIMIZED_CONFIDENCE:
            return f"{message} (Optimized timing)"
        if optimization.confidence > SMART_MESSAGE_SMART_CONFIDENCE:
            return f"{message} (Smart timing)"
        return message

    @staticmethod
    def build_reminder_body(task: Task, is_smart_enabled: bool) -> str:
        body = f"Don't forget about \"{task.title}\""
        return f"{body} (Smart timing enabled)" if is_smart_enabled else body

    def _complete(
        self,
        user_id: str,
        task: Task,
        completion_type: str,
        notes: Optional[str]
    ) -> TaskCompletionResult:
        now = self.date_service.now()

        try:
            # At most one live completion record per task
            for stale in self.completion_repo.list_for_task(self.db, task.id):
                self.completion_repo.delete(self.db, stale)

            task.status = TASK_STATUS_COMPLETED
            task.completed_at = now
            task.updated_at = now

            completion = self.completion_repo.add(self.db, TaskCompletion(
                task_id=task.id,
                completed_by=user_id,
                completed_at=now,
                completion_type=completion_type,
                notes=notes or "",
                created_at=now
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to complete task {task.id}: {e}")
            return TaskCompletionResult(success=False, error=str(e))

        logger.info(f"Task {task.id} completed by user {user_id} ({completion_type})")

        self._refresh_daily_activity(user_id, now)
        self._enqueue_learning(user_id)

        return TaskCompletionResult(
            success=True,
            task=TaskResponse.model_validate(task),
            completion=TaskCompletionResponse.model_validate(completion)
        )

    def _uncomplete(self, user_id: str, task: Task) -> TaskCompletionResult:
        now = self.date_service.now()
        activity_day = now

        try:
            for completion in self.completion_repo.list_for_task(self.db, task.id):
                activity_day = completion.completed_at
                self.completion_repo.delete(self.db, completion)

            task.status = TASK_STATUS_TODO
            task.completed_at = None
            task.updated_at = now
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to uncomplete task {task.id}: {e}")
            return TaskCompletionResult(success=False, error=str(e))

        logger.info(f"Task {task.id} uncompleted by user {user_id}")

        self._refresh_daily_activity(user_id, activity_day)

        return TaskCompletionResult(success=True, task=TaskResponse.model_validate(task))

    def _refresh_daily_activity(self, user_id: str, day) -> None:
        # Streak bookkeeping never fails the completion itself
        try:
            result = self.streak_service.update_daily_activity(user_id, day)
            if not result.success:
                logger.warning(f"Streak update skipped for user {user_id}: {result.error}")
        except Exception as e:
            logger.error(f"Streak update failed for user {user_id}: {e}")

    def _enqueue_learning(self, user_id: str) -> None:
        if self.learning_queue is not None:
            self.learning_queue.enqueue(user_id)
            return

        try:
            self.run_personalization_learning(user_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Personalization learning failed for user {user_id}: {e}")
