"""
Application constants and environment-driven configuration.
"""
import os

# Storage
DATABASE_URL = os.getenv("HABIT_ENGINE_DATABASE_URL", "sqlite:///./habit_engine.db")

# Logging
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/habit-engine"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"

# CORS (comma separated)
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "HABIT_ENGINE_CORS_ORIGINS", "http://localhost:3000,http://localhost:8081"
    ).split(",")
    if origin.strip()
]

# Task statuses
TASK_STATUS_TODO = "todo"
TASK_STATUS_COMPLETED = "completed"

# Completion types
COMPLETION_MANUAL = "manual"
COMPLETION_HABIT = "habit"

# Streaks
STREAK_TYPE_DAILY_COMPLETION = "daily_completion"
DEFAULT_PROTECTION_QUOTA = int(os.getenv("HABIT_ENGINE_PROTECTION_QUOTA", "3"))
DEFAULT_GRACE_DAYS = int(os.getenv("HABIT_ENGINE_GRACE_DAYS", "1"))

PROTECTION_AUTO = "auto"

# Personalization
ANALYSIS_WINDOW_DAYS = 60
PROFILE_TTL_DAYS = 7
MIN_COMPLETIONS_FOR_OPTIMIZATION = 10
FULL_CONFIDENCE_COMPLETIONS = 50
DEFAULT_EFFECTIVENESS = 0.5
DEFAULT_RESPONSE_TIME_MINUTES = 30
DEFAULT_PATTERN_COMPLETION_MINUTES = 15
TOP_ACTIVE_HOURS = 3
TOP_PREFERRED_DAYS = 4
DEFAULT_ACTIVE_HOURS = [9, 14, 19]
DEFAULT_PREFERRED_DAYS = [0, 1, 2, 3, 4]  # Monday..Friday, date.weekday()
MINUTE_SLOTS = (0, 15, 30, 45)

SENSITIVITY_LOW = "low"
SENSITIVITY_MEDIUM = "medium"
SENSITIVITY_HIGH = "high"

INTERACTION_COMPLETED = "completed"

# Orchestration
RESCHEDULE_CONFIDENCE_THRESHOLD = 0.3
SMART_MESSAGE_OPTIMIZED_CONFIDENCE = 0.7
SMART_MESSAGE_SMART_CONFIDENCE = 0.4

# Scheduled maintenance
EVENING_CHECK_HOUR = int(os.getenv("HABIT_ENGINE_EVENING_CHECK_HOUR", "18"))
JOB_MIDNIGHT_RESET = "midnight_reset"
JOB_EVENING_CHECK = "evening_streak_check"
JOB_MONTHLY_RESET = "monthly_protection_reset"

# Learning queue retry policy
LEARNING_MAX_ATTEMPTS = 3
LEARNING_BASE_DELAY_SECONDS = 5.0
LEARNING_MAX_DELAY_SECONDS = 300.0
