"""
Personalization repositories - Data access for notification profiles,
per-user personalization settings and the interaction log.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from habit_engine.models import (
    UserNotificationProfile, PersonalizationSettings, NotificationInteraction
)


class NotificationProfileRepository:
    """Repository for the cached UserNotificationProfile"""

    @staticmethod
    def get(db: Session, user_id: str) -> Optional[UserNotificationProfile]:
        return db.query(UserNotificationProfile).filter(
            UserNotificationProfile.user_id == user_id
        ).first()

    @staticmethod
    def save(db: Session, values: dict) -> UserNotificationProfile:
        """
        Overwrite the user's profile with freshly computed values.

        Args:
            db: Database session
            values: Column values including user_id

        Returns:
            Stored profile
        """
        profile = NotificationProfileRepository.get(db, values["user_id"])
        if not profile:
            profile = UserNotificationProfile(user_id=values["user_id"])
            db.add(profile)

        for key, value in values.items():
            setattr(profile, key, value)

        db.commit()
        db.refresh(profile)
        return profile


class PersonalizationSettingsRepository:
    """Repository for PersonalizationSettings data access"""

    @staticmethod
    def get(db: Session, user_id: str) -> PersonalizationSettings:
        """
        Get settings (creates with defaults if not exists).

        Returns:
            PersonalizationSettings object
        """
        settings = db.query(PersonalizationSettings).filter(
            PersonalizationSettings.user_id == user_id
        ).first()
        if not settings:
            settings = PersonalizationSettings(
                user_id=user_id,
                is_smart_enabled=True,
                min_hour=8,
                max_hour=22,
                excluded_days=[],
                adaptation_sensitivity="medium",
                learning_enabled=True
            )
            db.add(settings)
            db.commit()
            db.refresh(settings)
        return settings

    @staticmethod
    def update(db: Session, settings: PersonalizationSettings) -> PersonalizationSettings:
        """
        Update settings.

        Args:
            db: Database session
            settings: Settings object with updated values

        Returns:
            Updated settings
        """
        db.commit()
        db.refresh(settings)
        return settings


class NotificationInteractionRepository:
    """Repository for the append-only interaction log"""

    @staticmethod
    def create(db: Session, interaction: NotificationInteraction) -> NotificationInteraction:
        db.add(interaction)
        db.commit()
        db.refresh(interaction)
        return interaction

    @staticmethod
    def list_since(db: Session, user_id: str, since: datetime) -> List[NotificationInteraction]:
        """Get user's interactions at or after `since`"""
        return db.query(NotificationInteraction).filter(
            and_(
                NotificationInteraction.user_id == user_id,
                NotificationInteraction.created_at >= since
            )
        ).order_by(NotificationInteraction.created_at).all()
