"""
Notification personalization service.
Learns when a user tends to complete tasks and moves reminder times
toward those hours within the user's configured bounds.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habit_engine.models import Task, NotificationInteraction
from habit_engine.schemas import (
    NotificationTiming, OptimizedTiming, NotificationProfileResponse,
    PersonalizationSettingsResponse, PersonalizationSettingsUpdate
)
from habit_engine.repositories.task_repository import TaskCompletionRepository
from habit_engine.repositories.profile_repository import (
    NotificationProfileRepository, PersonalizationSettingsRepository,
    NotificationInteractionRepository
)
from habit_engine.services.date_service import DateService
from habit_engine.exceptions import ValidationException
from habit_engine.constants import (
    ANALYSIS_WINDOW_DAYS, PROFILE_TTL_DAYS, MIN_COMPLETIONS_FOR_OPTIMIZATION,
    FULL_CONFIDENCE_COMPLETIONS, DEFAULT_EFFECTIVENESS, DEFAULT_RESPONSE_TIME_MINUTES,
    DEFAULT_PATTERN_COMPLETION_MINUTES, TOP_ACTIVE_HOURS, TOP_PREFERRED_DAYS,
    DEFAULT_ACTIVE_HOURS, DEFAULT_PREFERRED_DAYS, MINUTE_SLOTS,
    SENSITIVITY_LOW, SENSITIVITY_MEDIUM, SENSITIVITY_HIGH, INTERACTION_COMPLETED
)

logger = logging.getLogger("habit_engine.personalization")

REASON_DISABLED = "Smart learning disabled by user"
REASON_UNAVAILABLE = "Personalization unavailable, using original timing"
SENSITIVITIES = (SENSITIVITY_LOW, SENSITIVITY_MEDIUM, SENSITIVITY_HIGH)


def snap_minute(minute: int) -> int:
    """Nearest of MINUTE_SLOTS; on equal distance the earlier slot wins"""
    best = MINUTE_SLOTS[0]
    for slot in MINUTE_SLOTS:
        if abs(minute - slot) < abs(minute - best):
            best = slot
    return best


def top_keys(counts: Counter, limit: int) -> List[int]:
    """Keys ordered by count descending, ties by ascending key"""
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [key for key, _ in ranked[:limit]]


def describe_adjustment(original_hour: int, optimized_hour: int) -> str:
    """User-facing explanation of an hour change"""
    delta = optimized_hour - original_hour
    distance = abs(delta)
    direction = "later" if delta > 0 else "earlier"

    if distance == 0:
        return "Timing already optimal based on your patterns"
    if distance == 1:
        return f"Moved 1 hour {direction} based on your completion patterns"
    if distance <= 3:
        return f"Adjusted {distance} hours {direction} to when you're most active"
    return f"Optimized to your peak productivity time ({optimized_hour:02d}:00)"


def select_hour(
    original_hour: int,
    most_active_hours: List[int],
    total_completions: int,
    min_hour: int,
    max_hour: int,
    sensitivity: str
) -> int:
    """
    Pick the reminder hour.

    Below MIN_COMPLETIONS_FOR_OPTIMIZATION completions the original hour is
    kept. Otherwise the ranked active hours inside [min_hour, max_hour] are
    the candidates; with none the original hour is clamped into the window.

    Sensitivity:
        low: closest candidate within one hour, else the top candidate
        medium: first-ranked candidate within two hours, else the top candidate
        high: the top candidate
    """
    if total_completions < MIN_COMPLETIONS_FOR_OPTIMIZATION:
        return original_hour

    candidates = [h for h in most_active_hours if min_hour <= h <= max_hour]
    if not candidates:
        return min(max(original_hour, min_hour), max_hour)

    if sensitivity == SENSITIVITY_HIGH:
        return candidates[0]

    if sensitivity == SENSITIVITY_LOW:
        nearby = [h for h in candidates if abs(h - original_hour) <= 1]
        if nearby:
            return min(nearby, key=lambda h: abs(h - original_hour))
        return candidates[0]

    for hour in candidates:
        if abs(hour - original_hour) <= 2:
            return hour
    return candidates[0]


class PersonalizationService:
    """Service for completion pattern analysis and reminder timing"""

    def __init__(self, db: Session, date_service: Optional[DateService] = None):
        self.db = db
        self.completion_repo = TaskCompletionRepository()
        self.profile_repo = NotificationProfileRepository()
        self.settings_repo = PersonalizationSettingsRepository()
        self.interaction_repo = NotificationInteractionRepository()
        self.date_service = date_service or DateService()

    def analyze_user_patterns(self, user_id: str) -> NotificationProfileResponse:
        """
        Rebuild the user's profile from the trailing analysis window.

        With no completions in the window a default profile is returned and
        nothing is stored; total_completions == 0 marks it as not learned.

        Returns:
            NotificationProfileResponse
        """
        now = self.date_service.now()
        since = now - timedelta(days=ANALYSIS_WINDOW_DAYS)
        completions = self.completion_repo.list_completions(self.db, user_id, since)

        if not completions:
            logger.debug(f"No completions for user {user_id}, using default profile")
            return self.default_profile(user_id, now)

        total = len(completions)
        hour_counts = Counter(c.completed_at.hour for c in completions)
        day_counts = Counter(c.completed_at.weekday() for c in completions)
        slot_counts = Counter((c.completed_at.hour, c.completed_at.weekday()) for c in completions)

        patterns = [
            {
                "hour": hour,
                "day_of_week": day,
                "completion_count": count,
                "success_rate": count / total,
                "average_completion_time": DEFAULT_PATTERN_COMPLETION_MINUTES,
            }
            for (hour, day), count in sorted(slot_counts.items())
        ]

        peak = max(hour_counts.values())
        effectiveness = {str(hour): hour_counts.get(hour, 0) / peak for hour in range(24)}

        profile = self.profile_repo.save(self.db, {
            "user_id": user_id,
            "most_active_hours": top_keys(hour_counts, TOP_ACTIVE_HOURS),
            "preferred_days": top_keys(day_counts, TOP_PREFERRED_DAYS),
            "average_response_time": self._average_response_time(user_id, since),
            "completion_patterns": patterns,
            "notification_effectiveness": effectiveness,
            "total_completions": total,
            "last_analyzed": now,
        })

        logger.info(
            f"Analyzed {total} completions for user {user_id}, "
            f"active hours {profile.most_active_hours}"
        )
        return NotificationProfileResponse.model_validate(profile)

    def get_user_profile(self, user_id: str) -> NotificationProfileResponse:
        """Stored profile, rebuilt when missing or older than PROFILE_TTL_DAYS"""
        profile = self.profile_repo.get(self.db, user_id)
        if profile is None:
            return self.analyze_user_patterns(user_id)

        age = self.date_service.now() - profile.last_analyzed
        if age > timedelta(days=PROFILE_TTL_DAYS):
            logger.debug(f"Profile of user {user_id} is {age.days} days old, re-analyzing")
            return self.analyze_user_patterns(user_id)

        return NotificationProfileResponse.model_validate(profile)

    def get_optimized_timing(
        self,
        user_id: str,
        task: Optional[Task],
        original_timing: NotificationTiming
    ) -> OptimizedTiming:
        """
        Map a reminder time onto the user's active hours.

        Never raises: on any failure the original timing comes back with
        zero confidence.

        Args:
            user_id: User the reminder belongs to
            task: Task being reminded about (for logging only)
            original_timing: Time the reminder was requested for

        Returns:
            OptimizedTiming
        """
        try:
            settings = self.get_user_settings(user_id)
            if not settings.is_smart_enabled or not settings.learning_enabled:
                return OptimizedTiming(
                    original_timing=original_timing,
                    optimized_timing=original_timing,
                    confidence=0.0,
                    reason=REASON_DISABLED,
                    effectiveness_score=DEFAULT_EFFECTIVENESS
                )

            profile = self.get_user_profile(user_id)

            hour = select_hour(
                original_timing.hour,
                profile.most_active_hours,
                profile.total_completions,
                settings.min_hour,
                settings.max_hour,
                settings.adaptation_sensitivity
            )
            optimized_timing = original_timing.model_copy(
                update={"hour": hour, "minute": snap_minute(original_timing.minute)}
            )

            effectiveness = self._effectiveness_at(profile.notification_effectiveness, hour)
            volume = min(profile.total_completions / FULL_CONFIDENCE_COMPLETIONS, 1.0)
            confidence = (volume + effectiveness) / 2

            if task is not None:
                logger.debug(
                    f"Task {task.id}: {original_timing.hour:02d}:{original_timing.minute:02d} -> "
                    f"{hour:02d}:{optimized_timing.minute:02d} (confidence {confidence:.2f})"
                )

            return OptimizedTiming(
                original_timing=original_timing,
                optimized_timing=optimized_timing,
                confidence=confidence,
                reason=describe_adjustment(original_timing.hour, hour),
                effectiveness_score=effectiveness
            )
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Timing optimization failed for user {user_id}: {e}")
            return OptimizedTiming(
                original_timing=original_timing,
                optimized_timing=original_timing,
                confidence=0.0,
                reason=REASON_UNAVAILABLE,
                effectiveness_score=DEFAULT_EFFECTIVENESS
            )

    def record_notification_interaction(
        self,
        user_id: str,
        notification_id: str,
        task_id: Optional[int],
        interaction_type: str,
        response_latency_minutes: float = 0.0
    ) -> NotificationInteraction:
        """
        Append an interaction; a completion re-analyzes the profile right away.
        """
        interaction = self.interaction_repo.create(self.db, NotificationInteraction(
            user_id=user_id,
            notification_id=notification_id,
            task_id=task_id,
            interaction_type=interaction_type,
            response_latency_minutes=response_latency_minutes,
            created_at=self.date_service.now()
        ))

        if interaction_type == INTERACTION_COMPLETED:
            try:
                self.analyze_user_patterns(user_id)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Re-analysis after interaction failed for user {user_id}: {e}")

        return interaction

    def get_user_settings(self, user_id: str) -> PersonalizationSettingsResponse:
        """
        Settings of the user, created with defaults on first read.

        If storage fails, defaults with smart timing disabled are returned
        and nothing is written.
        """
        try:
            settings = self.settings_repo.get(self.db, user_id)
            return PersonalizationSettingsResponse.model_validate(settings)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to load personalization settings for user {user_id}: {e}")
            return PersonalizationSettingsResponse(
                user_id=user_id,
                is_smart_enabled=False,
                learning_enabled=False
            )

    def update_user_settings(
        self,
        user_id: str,
        changes: Union[PersonalizationSettingsUpdate, Dict]
    ) -> PersonalizationSettingsResponse:
        """
        Merge a partial update onto the stored settings.

        Raises:
            ValidationException: hour window or other values are invalid
        """
        if isinstance(changes, PersonalizationSettingsUpdate):
            changes = changes.model_dump(exclude_unset=True)
        changes = {key: value for key, value in changes.items() if value is not None}

        settings = self.settings_repo.get(self.db, user_id)
        self._validate_settings(settings, changes)

        for key, value in changes.items():
            setattr(settings, key, value)

        settings = self.settings_repo.update(self.db, settings)
        logger.info(f"Updated personalization settings for user {user_id}: {sorted(changes)}")
        return PersonalizationSettingsResponse.model_validate(settings)

    @staticmethod
    def default_profile(user_id: str, now: datetime) -> NotificationProfileResponse:
        """Cold-start profile used before any completion is recorded"""
        return NotificationProfileResponse(
            user_id=user_id,
            most_active_hours=list(DEFAULT_ACTIVE_HOURS),
            preferred_days=list(DEFAULT_PREFERRED_DAYS),
            average_response_time=DEFAULT_RESPONSE_TIME_MINUTES,
            completion_patterns=[],
            last_analyzed=now,
            total_completions=0,
            notification_effectiveness={}
        )

    def _average_response_time(self, user_id: str, since: datetime) -> float:
        interactions = self.interaction_repo.list_since(self.db, user_id, since)
        latencies = [
            i.response_latency_minutes for i in interactions
            if i.response_latency_minutes is not None
        ]
        if not latencies:
            return float(DEFAULT_RESPONSE_TIME_MINUTES)
        return sum(latencies) / len(latencies)

    @staticmethod
    def _effectiveness_at(effectiveness: Dict[str, float], hour: int) -> float:
        # Unseen and zero-count hours both fall back to the neutral score
        return effectiveness.get(str(hour)) or DEFAULT_EFFECTIVENESS

    @staticmethod
    def _validate_settings(settings, changes: Dict) -> None:
        min_hour = changes.get("min_hour", settings.min_hour)
        max_hour = changes.get("max_hour", settings.max_hour)

        for field, hour in (("min_hour", min_hour), ("max_hour", max_hour)):
            if not 0 <= hour <= 23:
                raise ValidationException(field, "must be between 0 and 23")

        if min_hour >= max_hour:
            raise ValidationException("max_hour", "must be greater than min_hour")

        sensitivity = changes.get("adaptation_sensitivity")
        if sensitivity is not None and sensitivity not in SENSITIVITIES:
            raise ValidationException(
                "adaptation_sensitivity", f"must be one of {', '.join(SENSITIVITIES)}"
            )

        for day in changes.get("excluded_days", []):
            if not 0 <= day <= 6:
                raise ValidationException("excluded_days", "weekdays must be between 0 and 6")
