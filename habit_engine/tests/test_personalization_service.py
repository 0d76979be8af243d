"""
Tests for PersonalizationService.

Tests cover:
1. Pattern analysis and cold start
2. Profile cache TTL
3. Hour selection by sensitivity and window
4. Minute snapping
5. Confidence and reason strings
6. Degraded behaviour on failures
7. Settings defaults, merge and validation
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError

from habit_engine.models import UserNotificationProfile, NotificationInteraction
from habit_engine.exceptions import ValidationException
from habit_engine.schemas import PersonalizationSettingsUpdate
from habit_engine.services.personalization_service import (
    snap_minute, select_hour, describe_adjustment, top_keys
)
from habit_engine.tests.conftest import (
    USER_ID, NOW, create_completions, completions_at, timing
)


class TestAnalyzeUserPatterns:
    """Tests for analyze_user_patterns"""

    def test_cold_start_returns_defaults(self, db_session, personalizer):
        """No completions: default hours and weekdays, nothing stored"""
        profile = personalizer.analyze_user_patterns(USER_ID)

        assert profile.total_completions == 0
        assert profile.most_active_hours == [9, 14, 19]
        assert profile.preferred_days == [0, 1, 2, 3, 4]
        assert profile.notification_effectiveness == {}
        assert db_session.query(UserNotificationProfile).count() == 0

    def test_learns_hours_and_effectiveness(self, db_session, personalizer):
        create_completions(
            db_session,
            completions_at(10, 5) + completions_at(15, 3) + completions_at(20, 2) + completions_at(7, 1)
        )

        profile = personalizer.analyze_user_patterns(USER_ID)

        assert profile.total_completions == 11
        assert profile.most_active_hours == [10, 15, 20]
        assert profile.notification_effectiveness["10"] == 1.0
        assert profile.notification_effectiveness["15"] == pytest.approx(0.6)
        assert profile.notification_effectiveness["3"] == 0.0
        assert len(profile.notification_effectiveness) == 24
        assert db_session.query(UserNotificationProfile).count() == 1

    def test_patterns_share_of_total(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 4))

        profile = personalizer.analyze_user_patterns(USER_ID)

        assert sum(p.completion_count for p in profile.completion_patterns) == 4
        for pattern in profile.completion_patterns:
            assert pattern.success_rate == pytest.approx(pattern.completion_count / 4)
            assert pattern.average_completion_time == 15

    def test_ignores_completions_outside_window(self, db_session, personalizer):
        create_completions(db_session, [NOW - timedelta(days=61)])

        profile = personalizer.analyze_user_patterns(USER_ID)

        assert profile.total_completions == 0

    def test_ignores_other_users(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 3), user_id="someone-else")

        assert personalizer.analyze_user_patterns(USER_ID).total_completions == 0

    def test_response_time_from_interactions(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 2))
        db_session.add_all([
            NotificationInteraction(
                user_id=USER_ID, notification_id="n1", interaction_type="completed",
                response_latency_minutes=10.0, created_at=NOW - timedelta(days=1)
            ),
            NotificationInteraction(
                user_id=USER_ID, notification_id="n2", interaction_type="snoozed",
                response_latency_minutes=20.0, created_at=NOW - timedelta(days=2)
            ),
        ])
        db_session.commit()

        profile = personalizer.analyze_user_patterns(USER_ID)

        assert profile.average_response_time == 15.0

    def test_response_time_default(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 2))

        assert personalizer.analyze_user_patterns(USER_ID).average_response_time == 30.0


class TestTopKeys:
    """Tests for ranking helper"""

    def test_ties_broken_by_key(self):
        from collections import Counter

        counts = Counter({14: 3, 9: 3, 20: 1, 11: 3})

        assert top_keys(counts, 3) == [9, 11, 14]


class TestProfileCache:
    """Tests for get_user_profile TTL"""

    def test_fresh_profile_is_reused(self, db_session, personalizer, clock):
        create_completions(db_session, completions_at(10, 3))
        personalizer.analyze_user_patterns(USER_ID)
        analyzed_at = clock()

        create_completions(db_session, completions_at(16, 10, days_back_start=0))
        clock.advance(days=6)

        profile = personalizer.get_user_profile(USER_ID)

        assert profile.last_analyzed == analyzed_at
        assert profile.total_completions == 3

    def test_stale_profile_is_rebuilt(self, db_session, personalizer, clock):
        create_completions(db_session, completions_at(10, 3))
        personalizer.analyze_user_patterns(USER_ID)

        clock.advance(days=8)

        profile = personalizer.get_user_profile(USER_ID)

        assert profile.last_analyzed == clock()

    def test_missing_profile_is_built(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 3))

        profile = personalizer.get_user_profile(USER_ID)

        assert profile.total_completions == 3


class TestMinuteSnapping:
    """Tests for snap_minute"""

    @pytest.mark.parametrize("minute,expected", [
        (0, 0), (7, 0), (8, 15), (22, 15), (23, 30), (37, 30), (38, 45), (59, 45)
    ])
    def test_nearest_slot(self, minute, expected):
        assert snap_minute(minute) == expected


class TestHourSelection:
    """Tests for select_hour"""

    def test_low_signal_keeps_original(self):
        assert select_hour(9, [15, 16, 17], 9, 8, 22, "high") == 9

    def test_high_takes_top_candidate(self):
        assert select_hour(19, [14, 10, 20], 20, 8, 22, "high") == 14

    def test_low_prefers_nearby(self):
        assert select_hour(11, [14, 10, 20], 20, 8, 22, "low") == 10

    def test_low_falls_back_to_top(self):
        assert select_hour(17, [14, 10, 20], 20, 8, 22, "low") == 14

    def test_low_tie_goes_to_higher_ranked(self):
        assert select_hour(11, [12, 10], 20, 8, 22, "low") == 12

    def test_medium_takes_first_within_two_hours(self):
        assert select_hour(12, [20, 14, 11], 20, 8, 22, "medium") == 14

    def test_medium_falls_back_to_top(self):
        assert select_hour(8, [20, 14, 11], 20, 6, 22, "medium") == 20

    def test_window_filters_candidates(self):
        assert select_hour(9, [10, 14, 20], 20, 16, 22, "high") == 20

    def test_empty_window_clamps_original(self):
        assert select_hour(8, [9, 10], 20, 16, 22, "high") == 16
        assert select_hour(23, [9, 10], 20, 16, 22, "high") == 22


class TestReasons:
    """Tests for describe_adjustment"""

    def test_unchanged(self):
        assert describe_adjustment(9, 9) == "Timing already optimal based on your patterns"

    def test_one_hour(self):
        assert describe_adjustment(9, 8) == "Moved 1 hour earlier based on your completion patterns"
        assert describe_adjustment(9, 10) == "Moved 1 hour later based on your completion patterns"

    def test_two_to_three_hours(self):
        assert describe_adjustment(9, 12) == "Adjusted 3 hours later to when you're most active"
        assert describe_adjustment(9, 7) == "Adjusted 2 hours earlier to when you're most active"

    def test_peak_time(self):
        assert describe_adjustment(9, 14) == "Optimized to your peak productivity time (14:00)"
        assert describe_adjustment(20, 8) == "Optimized to your peak productivity time (08:00)"


class TestGetOptimizedTiming:
    """Tests for get_optimized_timing"""

    def test_moves_to_active_hour(self, db_session, personalizer):
        create_completions(db_session, completions_at(14, 20))

        result = personalizer.get_optimized_timing(USER_ID, None, timing(13, 37))

        assert result.optimized_timing.hour == 14
        assert result.optimized_timing.minute == 30
        assert result.original_timing.hour == 13
        assert result.confidence == pytest.approx(0.7)
        assert result.effectiveness_score == 1.0
        assert result.reason == "Moved 1 hour later based on your completion patterns"

    def test_low_signal_keeps_hour(self, db_session, personalizer):
        create_completions(db_session, completions_at(15, 9))

        result = personalizer.get_optimized_timing(USER_ID, None, timing(9, 37))

        assert result.optimized_timing.hour == 9
        assert result.optimized_timing.minute == 30
        assert result.reason == "Timing already optimal based on your patterns"

    def test_unseen_hour_uses_neutral_effectiveness(self, db_session, personalizer):
        create_completions(db_session, completions_at(15, 5))

        result = personalizer.get_optimized_timing(USER_ID, None, timing(9))

        # 5/50 volume; no completions at hour 9
        assert result.effectiveness_score == 0.5
        assert result.confidence == pytest.approx((0.1 + 0.5) / 2)

    def test_cold_start_confidence(self, personalizer):
        result = personalizer.get_optimized_timing(USER_ID, None, timing(9))

        assert result.optimized_timing.hour == 9
        assert result.confidence == pytest.approx(0.25)

    def test_keeps_day_and_recurrence(self, db_session, personalizer):
        from habit_engine.schemas import NotificationTiming

        create_completions(db_session, completions_at(14, 20))
        original = NotificationTiming(hour=13, minute=0, day_of_week=2, recurrence="weekly")

        result = personalizer.get_optimized_timing(USER_ID, None, original)

        assert result.optimized_timing.day_of_week == 2
        assert result.optimized_timing.recurrence == "weekly"

    def test_disabled_passes_through(self, db_session, personalizer):
        create_completions(db_session, completions_at(14, 20))
        personalizer.update_user_settings(USER_ID, {"is_smart_enabled": False})

        result = personalizer.get_optimized_timing(USER_ID, None, timing(9, 37))

        assert result.optimized_timing == result.original_timing
        assert result.confidence == 0.0
        assert result.reason == "Smart learning disabled by user"

    def test_learning_disabled_passes_through(self, db_session, personalizer):
        personalizer.update_user_settings(USER_ID, {"learning_enabled": False})

        result = personalizer.get_optimized_timing(USER_ID, None, timing(9, 37))

        assert result.confidence == 0.0
        assert result.optimized_timing.minute == 37

    def test_failure_returns_original(self, personalizer, monkeypatch):
        def broken(user_id):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(personalizer, "get_user_profile", broken)

        result = personalizer.get_optimized_timing(USER_ID, None, timing(9, 37))

        assert result.optimized_timing == result.original_timing
        assert result.confidence == 0.0
        assert result.reason == "Personalization unavailable, using original timing"


class TestRecordInteraction:
    """Tests for record_notification_interaction"""

    def test_completed_triggers_analysis(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 3))

        personalizer.record_notification_interaction(USER_ID, "n1", 1, "completed", 12.0)

        stored = db_session.query(UserNotificationProfile).filter_by(user_id=USER_ID).one()
        assert stored.total_completions == 3
        assert stored.average_response_time == 12.0

    def test_dismissed_only_appends(self, db_session, personalizer):
        create_completions(db_session, completions_at(10, 3))

        interaction = personalizer.record_notification_interaction(USER_ID, "n1", 1, "dismissed", 3.0)

        assert interaction.id is not None
        assert db_session.query(NotificationInteraction).count() == 1
        assert db_session.query(UserNotificationProfile).count() == 0


class TestSettings:
    """Tests for settings read and update"""

    def test_defaults_created_on_first_read(self, personalizer):
        settings = personalizer.get_user_settings(USER_ID)

        assert settings.is_smart_enabled is True
        assert settings.min_hour == 8
        assert settings.max_hour == 22
        assert settings.excluded_days == []
        assert settings.adaptation_sensitivity == "medium"
        assert settings.learning_enabled is True

    def test_partial_update_merges(self, personalizer):
        personalizer.update_user_settings(USER_ID, {"adaptation_sensitivity": "high"})
        settings = personalizer.update_user_settings(
            USER_ID, PersonalizationSettingsUpdate(min_hour=9)
        )

        assert settings.min_hour == 9
        assert settings.max_hour == 22
        assert settings.adaptation_sensitivity == "high"

    def test_window_must_be_ordered(self, personalizer):
        with pytest.raises(ValidationException):
            personalizer.update_user_settings(USER_ID, {"min_hour": 22, "max_hour": 8})

        with pytest.raises(ValidationException):
            personalizer.update_user_settings(USER_ID, {"min_hour": 22})

    def test_rejects_bad_values(self, personalizer):
        with pytest.raises(ValidationException):
            personalizer.update_user_settings(USER_ID, {"max_hour": 24})

        with pytest.raises(ValidationException):
            personalizer.update_user_settings(USER_ID, {"adaptation_sensitivity": "extreme"})

        with pytest.raises(ValidationException):
            personalizer.update_user_settings(USER_ID, {"excluded_days": [7]})

    def test_read_failure_disables_smart_timing(self, personalizer, monkeypatch):
        def broken(db, user_id):
            raise SQLAlchemyError("no such table")

        monkeypatch.setattr(personalizer.settings_repo, "get", broken)

        settings = personalizer.get_user_settings(USER_ID)

        assert settings.is_smart_enabled is False
        assert settings.learning_enabled is False
