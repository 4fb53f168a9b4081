"""Unit tests for custom exception hierarchy"""
from datetime import datetime

import pytest

from fitquest.exceptions import (
    BadgeEvaluationError,
    ChallengeUpdateError,
    ConcurrentUpdateError,
    ConfigurationError,
    ConnectionError,
    DatabaseError,
    FitQuestError,
    GamificationError,
    QueryError,
    RewardAlreadyClaimedError,
    StreakUpdateError,
    ValidationError,
    XPAwardError,
)


class TestFitQuestError:
    """Test base exception class"""

    def test_basic_exception(self):
        error = FitQuestError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)

    def test_exception_with_context(self):
        error = FitQuestError(
            message="Save failed",
            user_id="123456",
            operation="commit_xp_grant",
            context={"amount": 50},
            user_message="Could not save your XP",
        )
        assert error.user_id == "123456"
        assert error.operation == "commit_xp_grant"
        assert error.context["amount"] == 50
        assert error.user_message == "Could not save your XP"

    def test_exception_with_cause(self):
        original = ValueError("bad value")
        error = FitQuestError(message="Wrapped", cause=original)
        assert error.cause is original

    def test_to_dict(self):
        error = FitQuestError("Test", user_message="Friendly")
        data = error.to_dict()
        assert data["error"] == "FitQuestError"
        assert data["message"] == "Test"
        assert data["user_message"] == "Friendly"
        assert data["request_id"] == error.request_id

    def test_auto_logs(self, caplog):
        with caplog.at_level("ERROR", logger="fitquest.exceptions"):
            FitQuestError("Logged error", user_id="42")
        assert "Logged error" in caplog.text


class TestValidationError:

    def test_field_and_value(self):
        error = ValidationError("XP amount must be positive", field="amount", value=-5)
        assert error.field == "amount"
        assert error.value == -5
        assert error.context == {"field": "amount", "value": -5}
        assert "Invalid amount" in error.user_message


class TestDatabaseErrors:

    @pytest.mark.parametrize("error", [
        ConnectionError(),
        QueryError("failed", query="SELECT 1"),
        ConcurrentUpdateError("moved", expected=1, actual=2),
    ])
    def test_hierarchy(self, error):
        assert isinstance(error, DatabaseError)
        assert isinstance(error, FitQuestError)

    def test_connection_error_default_message(self):
        assert ConnectionError().message == "Database connection failed"

    def test_query_error_keeps_query(self):
        assert QueryError("failed", query="upsert_streak").query == "upsert_streak"

    def test_concurrent_update_fields(self):
        error = ConcurrentUpdateError("moved", expected=100, actual=150)
        assert error.expected == 100
        assert error.actual == 150


class TestConfigurationError:

    def test_config_key(self):
        error = ConfigurationError("bad", config_key="BADGE_CATALOG")
        assert error.config_key == "BADGE_CATALOG"
        assert error.context["config_key"] == "BADGE_CATALOG"


class TestGamificationErrors:

    def test_xp_award_error(self):
        error = XPAwardError("commit failed", amount=50, reason="Workout", user_id="7")
        assert isinstance(error, GamificationError)
        assert error.operation == "award_xp"
        assert error.context == {"amount": 50, "reason": "Workout"}
        assert "rewards" in error.user_message

    def test_streak_update_error(self):
        error = StreakUpdateError("save failed", category="water")
        assert error.category == "water"
        assert error.operation == "update_streak"

    def test_badge_evaluation_error(self):
        error = BadgeEvaluationError("save failed", badge_id="consistency")
        assert error.badge_id == "consistency"
        assert error.operation == "evaluate_badges"

    def test_challenge_update_error(self):
        error = ChallengeUpdateError("read failed", challenge_id="weekly_water_7")
        assert isinstance(error, GamificationError)
        assert error.context == {"challenge_id": "weekly_water_7"}
        assert error.operation == "update_challenge_progress"

    def test_reward_already_claimed_is_validation_error(self):
        error = RewardAlreadyClaimedError("taken", kind="loot", claim_id="abc")
        assert isinstance(error, ValidationError)
        assert error.field == "loot_id"
        assert error.value == "abc"
        assert error.operation == "claim_reward"
        assert error.user_message.startswith("Invalid loot_id")

    def test_custom_user_message_kept(self):
        error = GamificationError("x", user_message="Custom")
        assert error.user_message == "Custom"


class TestLogLevels:

    def test_validation_error_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="fitquest.exceptions"):
            ValidationError("bad amount", field="amount", value=0, operation="award_xp")
        record = caplog.records[-1]
        assert record.levelname == "WARNING"
        assert "award_xp" in record.getMessage()

    def test_concurrent_update_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="fitquest.exceptions"):
            ConcurrentUpdateError("moved", expected=1, actual=2)
        assert caplog.records[-1].levelname == "WARNING"

    def test_query_error_logs_error_with_context(self, caplog):
        with caplog.at_level("ERROR", logger="fitquest.exceptions"):
            QueryError("failed", query="get_streaks", user_id="9")
        record = caplog.records[-1]
        assert record.levelname == "ERROR"
        assert record.error_context == {"query": "get_streaks"}
        assert record.user_id == "9"


class TestContextMerging:

    def test_explicit_context_extends_subclass_fields(self):
        error = QueryError("failed", query="mark_loot_used", context={"loot_id": "abc"})
        assert error.context == {"query": "mark_loot_used", "loot_id": "abc"}

    def test_explicit_operation_overrides_default(self):
        error = XPAwardError("failed", amount=10, operation="log_ai_usage")
        assert error.operation == "log_ai_usage"

    def test_to_dict_includes_operation(self):
        assert StreakUpdateError("x", category="sleep").to_dict()["operation"] == "update_streak"
