"""
Task repository - Data access layer for Task and TaskCompletion models.
Handles all database queries related to tasks and their completion records.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from habit_engine.models import Task, TaskCompletion
from habit_engine.constants import COMPLETION_HABIT


class TaskRepository:
    """Repository for Task data access"""

    @staticmethod
    def get_by_id(db: Session, task_id: int) -> Optional[Task]:
        """Get task by ID"""
        return db.query(Task).filter(Task.id == task_id).first()

    @staticmethod
    def get_for_user(db: Session, user_id: str, task_id: int) -> Optional[Task]:
        """Get task by ID, only if it belongs to the user"""
        return db.query(Task).filter(
            and_(Task.id == task_id, Task.user_id == user_id)
        ).first()

    @staticmethod
    def list_tasks(db: Session, user_id: str) -> List[Task]:
        """Get all tasks created by the user"""
        return db.query(Task).filter(Task.user_id == user_id).order_by(Task.created_at).all()

    @staticmethod
    def count_due_in_range(
        db: Session,
        user_id: str,
        start_time: datetime,
        end_time: datetime
    ) -> int:
        """Count user's tasks due within the time range"""
        return db.query(Task).filter(
            and_(
                Task.user_id == user_id,
                Task.due_date >= start_time,
                Task.due_date < end_time
            )
        ).count()

    @staticmethod
    def count_created_in_range(
        db: Session,
        user_id: str,
        start_time: datetime,
        end_time: datetime
    ) -> int:
        """Count user's tasks created within the time range"""
        return db.query(Task).filter(
            and_(
                Task.user_id == user_id,
                Task.created_at >= start_time,
                Task.created_at < end_time
            )
        ).count()

    @staticmethod
    def list_user_ids(db: Session) -> List[str]:
        """Distinct ids of users owning at least one task"""
        return [row[0] for row in db.query(Task.user_id).distinct().all()]

    @staticmethod
    def create(db: Session, task: Task) -> Task:
        """Create a new task"""
        db.add(task)
        db.commit()
        db.refresh(task)
        return task


class TaskCompletionRepository:
    """Repository for TaskCompletion data access"""

    @staticmethod
    def list_completions(
        db: Session,
        user_id: str,
        since: datetime
    ) -> List[TaskCompletion]:
        """Get user's completions at or after `since`"""
        return db.query(TaskCompletion).filter(
            and_(
                TaskCompletion.completed_by == user_id,
                TaskCompletion.completed_at >= since
            )
        ).order_by(TaskCompletion.completed_at).all()

    @staticmethod
    def count_in_range(
        db: Session,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        habits_only: bool = False
    ) -> int:
        """Count user's completions within the time range"""
        query = db.query(TaskCompletion).filter(
            and_(
                TaskCompletion.completed_by == user_id,
                TaskCompletion.completed_at >= start_time,
                TaskCompletion.completed_at < end_time
            )
        )

        if habits_only:
            query = query.filter(TaskCompletion.completion_type == COMPLETION_HABIT)

        return query.count()

    @staticmethod
    def list_for_task(db: Session, task_id: int) -> List[TaskCompletion]:
        return db.query(TaskCompletion).filter(TaskCompletion.task_id == task_id).all()

    @staticmethod
    def add(db: Session, completion: TaskCompletion) -> TaskCompletion:
        """Stage a completion record; the caller commits"""
        db.add(completion)
        db.flush()
        return completion

    @staticmethod
    def delete(db: Session, completion: TaskCompletion) -> None:
        """Stage deletion of a completion record; the caller commits"""
        db.delete(completion)
        db.flush()
