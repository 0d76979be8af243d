from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Float, Date, JSON, UniqueConstraint
)
from datetime import datetime
from habit_engine.database import Base


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)  # creator
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    status = Column(String, default="todo")  # todo, in_progress, completed
    is_habit = Column(Boolean, default=False)
    due_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    completed_at = Column(DateTime, nullable=True)


class TaskCompletion(Base):
    __tablename__ = "task_completions"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, nullable=False, index=True)
    completed_by = Column(String, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=False, index=True)
    completion_type = Column(String, default="manual")  # manual, automatic, habit
    notes = Column(String, default="")
    created_at = Column(DateTime, default=datetime.now)


class DailyActivity(Base):
    __tablename__ = "daily_activities"
    __table_args__ = (UniqueConstraint("user_id", "activity_date", name="uq_daily_activity_user_day"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    activity_date = Column(DateTime, nullable=False, index=True)  # normalized to midnight

    tasks_completed = Column(Integer, default=0)
    tasks_created = Column(Integer, default=0)
    total_tasks = Column(Integer, default=0)
    completion_rate = Column(Float, default=0.0)  # Percentage (0-100)
    active_time_minutes = Column(Integer, default=0)
    habit_completions = Column(Integer, default=0)
    streak_days = Column(Integer, default=0)  # Daily streak after this update
    goals_achieved = Column(Integer, default=0)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", String, default="{}")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class UserStreak(Base):
    __tablename__ = "user_streaks"
    __table_args__ = (UniqueConstraint("user_id", "streak_type", name="uq_user_streak_type"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    streak_type = Column(String, nullable=False, default="daily_completion")

    current_count = Column(Integer, default=0)
    longest_count = Column(Integer, default=0)  # High-water mark, never decreases
    last_activity_date = Column(DateTime, nullable=True)
    streak_start_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=False)

    # Monthly protection budget
    available_protections = Column(Integer, default=0)
    used_protections = Column(Integer, default=0)
    protection_reset_date = Column(DateTime, nullable=True)  # First of next month
    is_protected_today = Column(Boolean, default=False)
    last_protected_date = Column(DateTime, nullable=True)  # Day covered by the protection

    meta = Column("metadata", String, default="{}")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class StreakProtection(Base):
    """Audit record, written once per applied protection and never updated"""
    __tablename__ = "streak_protections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    streak_id = Column(Integer, nullable=False, index=True)
    task_id = Column(Integer, nullable=True)
    protection_date = Column(DateTime, nullable=False, index=True)
    protection_type = Column(String, default="auto")  # auto, manual, premium
    reason = Column(String, nullable=True)

    # Budget after the protection was applied
    available_protections = Column(Integer, default=0)
    used_protections = Column(Integer, default=0)

    meta = Column("metadata", String, default="{}")  # Pre-protection snapshot
    created_at = Column(DateTime, default=datetime.now)


class UserNotificationProfile(Base):
    """Cached analysis of completion history, rebuilt from task_completions"""
    __tablename__ = "notification_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)

    most_active_hours = Column(JSON, default=list)
    preferred_days = Column(JSON, default=list)
    average_response_time = Column(Float, default=30.0)
    completion_patterns = Column(JSON, default=list)
    notification_effectiveness = Column(JSON, default=dict)  # "hour" -> 0..1
    total_completions = Column(Integer, default=0)
    last_analyzed = Column(DateTime, nullable=False)


class PersonalizationSettings(Base):
    __tablename__ = "personalization_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)

    is_smart_enabled = Column(Boolean, default=True)
    min_hour = Column(Integer, default=8)    # Earliest notification hour
    max_hour = Column(Integer, default=22)   # Latest notification hour
    excluded_days = Column(JSON, default=list)  # date.weekday() values
    adaptation_sensitivity = Column(String, default="medium")  # low, medium, high
    learning_enabled = Column(Boolean, default=True)

    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class NotificationInteraction(Base):
    """Append-only log of how the user reacted to a notification"""
    __tablename__ = "notification_interactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    notification_id = Column(String, nullable=False)
    task_id = Column(Integer, nullable=True)
    interaction_type = Column(String, nullable=False)  # completed, dismissed, snoozed
    response_latency_minutes = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.now)


class ScheduledReminder(Base):
    __tablename__ = "scheduled_reminders"

    id = Column(String, primary_key=True)  # Opaque identifier handed to callers
    user_id = Column(String, nullable=False, index=True)
    task_id = Column(Integer, nullable=False, index=True)
    hour = Column(Integer, nullable=False)
    minute = Column(Integer, nullable=False)
    day_of_week = Column(Integer, nullable=True)
    recurrence = Column(String, default="daily")  # daily, weekly, one_off
    is_smart_enabled = Column(Boolean, default=True)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class JobRun(Base):
    """Durable per-user bookkeeping of the last processed day of a scheduled job"""
    __tablename__ = "job_runs"
    __table_args__ = (UniqueConstraint("user_id", "job_name", name="uq_job_run_user_job"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    job_name = Column(String, nullable=False)
    last_run_date = Column(Date, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
