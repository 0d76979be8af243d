from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging
import os
from pathlib import Path

from habit_engine.database import engine, get_db, Base
from habit_engine import models  # Import all models to register them with Base
from habit_engine.schemas import (
    TaskCreate, TaskResponse, ToggleCompletionRequest, TaskCompletionResult, CompletionStats,
    StreakResponse, StreakStats, DailyActivityResponse, StreakProtectionResponse,
    ProtectionEligibility, ProtectionRequest, ProtectionResult, ProtectionSweepResult,
    NotificationProfileResponse, PersonalizationSettingsResponse, PersonalizationSettingsUpdate,
    OptimizedTiming, OptimizedTimingRequest, SmartReminderRequest, SmartReminderResult,
    InteractionCreate, ReminderResponse
)
from habit_engine.auth import verify_api_key
from habit_engine.exceptions import (
    TaskNotFoundException, ValidationException, DatabaseException
)
from habit_engine.services.streak_service import StreakService
from habit_engine.services.personalization_service import PersonalizationService
from habit_engine.services.task_service import TaskService
from habit_engine.services.notification_service import LocalReminderDispatcher
from habit_engine.services.scheduler_service import (
    start_scheduler, stop_scheduler, learning_queue
)
from habit_engine.constants import (
    DEFAULT_LOG_DIRECTORY_PROD, DEFAULT_LOG_DIRECTORY_DEV, CORS_ALLOWED_ORIGINS
)

LOG_DIR = os.getenv("HABIT_ENGINE_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("HABIT_ENGINE_LOG_FILE", "app.log")

# Create log directory if it doesn't exist (for development)
try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()  # Also log to console
    ]
)

logger = logging.getLogger("habit_engine")

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Habit Engine API",
    description="Streak continuity and adaptive reminder timing",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_task_service(db: Session = Depends(get_db)) -> TaskService:
    return TaskService(db, learning_queue=learning_queue)


# Startup event
@app.on_event("startup")
async def startup_event():
    logger.info(f"Habit Engine API started. Logging to: {log_path}")
    start_scheduler()

# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Habit Engine API")
    stop_scheduler()

# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "Habit Engine API", "status": "active"}


# ===== TASKS =====

@app.get("/api/users/{user_id}/tasks", response_model=List[TaskResponse], dependencies=[Depends(verify_api_key)])
async def list_tasks(user_id: str, service: TaskService = Depends(get_task_service)):
    """Get all tasks of a user"""
    return service.list_tasks(user_id)

@app.post("/api/users/{user_id}/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
async def create_task(user_id: str, task: TaskCreate, service: TaskService = Depends(get_task_service)):
    """Create a new task"""
    return service.create_task(user_id, task)

@app.post("/api/users/{user_id}/tasks/{task_id}/toggle", response_model=TaskCompletionResult, dependencies=[Depends(verify_api_key)])
async def toggle_task(
    user_id: str,
    task_id: int,
    request: Optional[ToggleCompletionRequest] = None,
    service: TaskService = Depends(get_task_service)
):
    """Toggle task completion"""
    request = request or ToggleCompletionRequest()
    try:
        result = service.toggle_task_completion(user_id, task_id, request.completion_type, request.notes)
    except TaskNotFoundException:
        raise HTTPException(status_code=404, detail="Task not found")

    if result.error:
        raise HTTPException(status_code=500, detail=result.error)
    return result

@app.get("/api/users/{user_id}/completions/stats", response_model=CompletionStats, dependencies=[Depends(verify_api_key)])
async def get_completion_stats(user_id: str, days: int = 30, service: TaskService = Depends(get_task_service)):
    """Completion totals over the last N days"""
    if days <= 0:
        raise HTTPException(status_code=400, detail="days must be positive")
    return service.get_user_completion_stats(user_id, days)


# ===== STREAKS =====

@app.get("/api/users/{user_id}/streaks", response_model=List[StreakResponse], dependencies=[Depends(verify_api_key)])
async def get_streaks(user_id: str, db: Session = Depends(get_db)):
    """Get all streaks of a user"""
    try:
        return StreakService(db).get_user_streaks(user_id)
    except DatabaseException as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/users/{user_id}/streaks/stats", response_model=StreakStats, dependencies=[Depends(verify_api_key)])
async def get_streak_stats(user_id: str, days: int = 30, db: Session = Depends(get_db)):
    """Daily streak and activity summary"""
    try:
        return StreakService(db).get_streak_stats(user_id, days)
    except DatabaseException as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/users/{user_id}/streaks/at-risk", response_model=ProtectionSweepResult, dependencies=[Depends(verify_api_key)])
async def get_streaks_at_risk(user_id: str, db: Session = Depends(get_db)):
    """Streaks that will break unless maintained or protected today"""
    return StreakService(db).check_streaks_needing_protection(user_id)

@app.get("/api/users/{user_id}/streaks/protections", response_model=List[StreakProtectionResponse], dependencies=[Depends(verify_api_key)])
async def get_protection_history(user_id: str, days: int = 30, db: Session = Depends(get_db)):
    """Protections applied in the last N days"""
    try:
        return StreakService(db).get_protection_history(user_id, days)
    except DatabaseException as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/api/users/{user_id}/streaks/{streak_id}/eligibility", response_model=ProtectionEligibility, dependencies=[Depends(verify_api_key)])
async def get_protection_eligibility(user_id: str, streak_id: int, db: Session = Depends(get_db)):
    """Check whether a protection can be applied today"""
    return StreakService(db).can_apply_protection(user_id, streak_id)

@app.post("/api/users/{user_id}/streaks/{streak_id}/protect", response_model=ProtectionResult, dependencies=[Depends(verify_api_key)])
async def protect_streak(
    user_id: str,
    streak_id: int,
    request: Optional[ProtectionRequest] = None,
    db: Session = Depends(get_db)
):
    """Spend one protection on a streak"""
    request = request or ProtectionRequest()
    result = StreakService(db).apply_streak_protection(
        user_id, streak_id, request.protection_type, request.reason, request.task_id
    )

    if result.error:
        raise HTTPException(status_code=500, detail=result.error)
    return result

@app.get("/api/users/{user_id}/activity", response_model=List[DailyActivityResponse], dependencies=[Depends(verify_api_key)])
async def get_daily_activity(user_id: str, start: date, end: date, db: Session = Depends(get_db)):
    """Daily activity rows between two dates (inclusive)"""
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    try:
        return StreakService(db).get_daily_activities(user_id, start, end)
    except DatabaseException as e:
        raise HTTPException(status_code=500, detail=str(e))


# ===== NOTIFICATIONS =====

@app.get("/api/users/{user_id}/notifications/settings", response_model=PersonalizationSettingsResponse, dependencies=[Depends(verify_api_key)])
async def get_notification_settings(user_id: str, db: Session = Depends(get_db)):
    """Get personalization settings"""
    return PersonalizationService(db).get_user_settings(user_id)

@app.patch("/api/users/{user_id}/notifications/settings", response_model=PersonalizationSettingsResponse, dependencies=[Depends(verify_api_key)])
async def update_notification_settings(
    user_id: str,
    settings_update: PersonalizationSettingsUpdate,
    db: Session = Depends(get_db)
):
    """Partially update personalization settings"""
    try:
        return PersonalizationService(db).update_user_settings(user_id, settings_update)
    except ValidationException as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/api/users/{user_id}/notifications/profile", response_model=NotificationProfileResponse, dependencies=[Depends(verify_api_key)])
async def get_notification_profile(user_id: str, db: Session = Depends(get_db)):
    """Cached completion profile (rebuilt when stale)"""
    return PersonalizationService(db).get_user_profile(user_id)

@app.post("/api/users/{user_id}/notifications/profile/analyze", response_model=NotificationProfileResponse, dependencies=[Depends(verify_api_key)])
async def analyze_notification_profile(user_id: str, db: Session = Depends(get_db)):
    """Rebuild the completion profile now"""
    return PersonalizationService(db).analyze_user_patterns(user_id)

@app.post("/api/users/{user_id}/notifications/optimize", response_model=OptimizedTiming, dependencies=[Depends(verify_api_key)])
async def preview_optimized_timing(
    user_id: str,
    request: OptimizedTimingRequest,
    service: TaskService = Depends(get_task_service)
):
    """Preview the personalized time for a reminder without scheduling it"""
    task = None
    if request.task_id is not None:
        try:
            task = service.get_task(user_id, request.task_id)
        except TaskNotFoundException:
            raise HTTPException(status_code=404, detail="Task not found")
    return service.personalizer.get_optimized_timing(user_id, task, request.timing)

@app.get("/api/users/{user_id}/notifications/reminders", response_model=List[ReminderResponse], dependencies=[Depends(verify_api_key)])
async def list_reminders(user_id: str, db: Session = Depends(get_db)):
    """Active reminders of a user"""
    return LocalReminderDispatcher(db).get_scheduled_reminders(user_id)

@app.post("/api/users/{user_id}/notifications/reminders", response_model=SmartReminderResult, status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
async def schedule_reminder(
    user_id: str,
    request: SmartReminderRequest,
    service: TaskService = Depends(get_task_service)
):
    """Schedule a task reminder at the personalized time"""
    try:
        return service.schedule_smart_notification(user_id, request.task_id, request.timing)
    except TaskNotFoundException:
        raise HTTPException(status_code=404, detail="Task not found")

@app.post("/api/users/{user_id}/notifications/interactions", status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
async def record_interaction(user_id: str, interaction: InteractionCreate, db: Session = Depends(get_db)):
    """Record how the user reacted to a notification"""
    record = PersonalizationService(db).record_notification_interaction(
        user_id,
        interaction.notification_id,
        interaction.task_id,
        interaction.interaction_type,
        interaction.response_latency_minutes
    )
    return {"id": record.id, "interaction_type": record.interaction_type}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("habit_engine.main:app", host="0.0.0.0", port=8000, reload=False)
