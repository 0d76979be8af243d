from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Literal, Optional

CompletionType = Literal["manual", "automatic", "habit"]
ProtectionType = Literal["auto", "manual", "premium"]
Sensitivity = Literal["low", "medium", "high"]
InteractionType = Literal["completed", "dismissed", "snoozed"]
Recurrence = Literal["daily", "weekly", "one_off"]


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    is_habit: bool = False
    due_date: Optional[datetime] = None

class TaskResponse(BaseModel):
    id: int
    user_id: str
    title: str
    description: Optional[str]
    status: str
    is_habit: bool
    due_date: Optional[datetime]
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True

class TaskCompletionResponse(BaseModel):
    id: int
    task_id: int
    completed_by: str
    completed_at: datetime
    completion_type: str
    notes: str = ""

    class Config:
        from_attributes = True

class ToggleCompletionRequest(BaseModel):
    completion_type: CompletionType = "manual"
    notes: Optional[str] = None

class TaskCompletionResult(BaseModel):
    success: bool
    task: Optional[TaskResponse] = None
    completion: Optional[TaskCompletionResponse] = None
    reason: Optional[str] = None
    error: Optional[str] = None

class CompletionStats(BaseModel):
    total_completions: int
    completions_by_type: Dict[str, int]
    average_per_day: float


# Streak schemas
class StreakResponse(BaseModel):
    id: int
    user_id: str
    streak_type: str
    current_count: int
    longest_count: int
    last_activity_date: Optional[datetime]
    streak_start_date: Optional[datetime]
    is_active: bool
    available_protections: int
    used_protections: int
    protection_reset_date: Optional[datetime]
    is_protected_today: bool

    class Config:
        from_attributes = True

class DailyActivityResponse(BaseModel):
    id: int
    user_id: str
    activity_date: datetime
    tasks_completed: int
    tasks_created: int
    total_tasks: int
    completion_rate: float
    active_time_minutes: int
    habit_completions: int
    streak_days: int
    goals_achieved: int

    class Config:
        from_attributes = True

class StreakProtectionResponse(BaseModel):
    id: int
    user_id: str
    streak_id: int
    task_id: Optional[int]
    protection_date: datetime
    protection_type: str
    reason: Optional[str]
    available_protections: int
    used_protections: int
    created_at: datetime

    class Config:
        from_attributes = True

class StreakUpdateResult(BaseModel):
    success: bool
    streaks: List[StreakResponse] = []
    daily_activity: Optional[DailyActivityResponse] = None
    error: Optional[str] = None

class ProtectionEligibility(BaseModel):
    can_protect: bool
    reason: Optional[str] = None
    available_protections: Optional[int] = None

class ProtectionRequest(BaseModel):
    protection_type: ProtectionType = "manual"
    reason: str = Field(default="Manual protection applied", max_length=500)
    task_id: Optional[int] = None

class ProtectionResult(BaseModel):
    success: bool
    protection: Optional[StreakProtectionResponse] = None
    streak: Optional[StreakResponse] = None
    can_protect: Optional[bool] = None
    reason: Optional[str] = None
    error: Optional[str] = None

class ProtectionSweepResult(BaseModel):
    success: bool
    streaks_at_risk: List[StreakResponse] = []
    protectable_streaks: List[StreakResponse] = []
    error: Optional[str] = None

class MonthlyResetResult(BaseModel):
    success: bool
    streaks_reset: int = 0
    error: Optional[str] = None

class StreakStats(BaseModel):
    daily_streak: int = 0
    longest_streak: int = 0
    total_completions: int = 0
    average_completion_rate: float = 0.0


# Notification schemas
class NotificationTiming(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)  # date.weekday()
    recurrence: Recurrence = "daily"

class OptimizedTiming(BaseModel):
    original_timing: NotificationTiming
    optimized_timing: NotificationTiming
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str
    effectiveness_score: float

class CompletionPattern(BaseModel):
    hour: int
    day_of_week: int
    completion_count: int
    success_rate: float
    average_completion_time: float

class NotificationProfileResponse(BaseModel):
    user_id: str
    most_active_hours: List[int]
    preferred_days: List[int]
    average_response_time: float
    completion_patterns: List[CompletionPattern] = []
    last_analyzed: datetime
    total_completions: int
    notification_effectiveness: Dict[str, float] = {}

    class Config:
        from_attributes = True

class PersonalizationSettingsBase(BaseModel):
    is_smart_enabled: bool = True
    min_hour: int = Field(default=8, ge=0, le=23)
    max_hour: int = Field(default=22, ge=0, le=23)
    excluded_days: List[int] = []
    adaptation_sensitivity: Sensitivity = "medium"
    learning_enabled: bool = True

class PersonalizationSettingsUpdate(BaseModel):
    is_smart_enabled: Optional[bool] = None
    min_hour: Optional[int] = Field(None, ge=0, le=23)
    max_hour: Optional[int] = Field(None, ge=0, le=23)
    excluded_days: Optional[List[int]] = None
    adaptation_sensitivity: Optional[Sensitivity] = None
    learning_enabled: Optional[bool] = None

class PersonalizationSettingsResponse(PersonalizationSettingsBase):
    user_id: str

    class Config:
        from_attributes = True

class InteractionCreate(BaseModel):
    notification_id: str = Field(..., min_length=1)
    task_id: Optional[int] = None
    interaction_type: InteractionType
    response_latency_minutes: float = Field(default=0.0, ge=0.0)

class ReminderResponse(BaseModel):
    id: str
    user_id: str
    task_id: int
    hour: int
    minute: int
    day_of_week: Optional[int]
    recurrence: str
    is_smart_enabled: bool
    title: str
    body: str
    is_active: bool

    class Config:
        from_attributes = True

class SmartReminderRequest(BaseModel):
    task_id: int
    timing: NotificationTiming

class SmartReminderResult(BaseModel):
    reminder_id: str
    is_smart_enabled: bool
    optimization: Optional[OptimizedTiming] = None

class OptimizedTimingRequest(BaseModel):
    task_id: Optional[int] = None
    timing: NotificationTiming
