"""
Error types raised by the reward engine

Every FitQuestError logs itself when constructed, carrying the user, the
operation being attempted and a request id so one failed award can be traced
across the service, store and query layers. Subclasses only declare what is
specific to them: a default user-facing message, a log level and extra
context fields.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class FitQuestError(Exception):
    """
    Base exception for all fitquest errors

    Example:
        raise FitQuestError(
            message="Failed to persist XP grant",
            user_id="user-42",
            operation="award_xp",
            context={"amount": 50, "reason": "Logged a meal"}
        )
    """

    default_user_message = "An error occurred. Please try again."
    log_level = logging.ERROR
    default_operation: Optional[str] = None

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation or self.default_operation
        self.context = {**self._extra_context(), **(context or {})}
        self.cause = cause
        self.user_message = user_message or self._build_user_message()
        self.timestamp = datetime.now(timezone.utc)

        self._log_error()

    def _extra_context(self) -> Dict[str, Any]:
        """Subclass fields that belong in the structured context"""
        return {}

    def _build_user_message(self) -> str:
        return self.default_user_message

    def _log_error(self) -> None:
        details = {
            "error_type": type(self).__name__,
            # "message" is reserved on LogRecord
            "error_message": self.message,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.cause is not None:
            details["cause"] = repr(self.cause)

        logger.log(
            self.log_level,
            f"{type(self).__name__} in {self.operation or 'unknown operation'}: {self.message}",
            extra=details,
            exc_info=self.cause,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view for API responses and feedback payloads"""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "user_message": self.user_message,
            "operation": self.operation,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(FitQuestError):
    """
    Caller passed something the engine refuses

    Raised before any state is touched: non-positive XP amounts, unknown
    streak categories, loot ids that are missing or already used.
    """

    log_level = logging.WARNING

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None, **kwargs):
        self.field = field
        self.value = value
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"field": self.field, "value": self.value}

    def _build_user_message(self) -> str:
        return f"Invalid {self.field}: {self.message}" if self.field else self.message


# Storage


class DatabaseError(FitQuestError):
    """Anything raised while reading or writing reward state"""

    default_user_message = "We encountered an issue saving your progress. Please try again."


class ConnectionError(DatabaseError):
    """Pool missing or the server is unreachable"""

    default_user_message = "We're having trouble connecting to the database. Please try again in a moment."

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(message, **kwargs)


class QueryError(DatabaseError):
    """A statement failed; query names the store operation that issued it"""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        self.query = query
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"query": self.query}


class ConcurrentUpdateError(DatabaseError):
    """
    A conditional write found a different value than the one it was computed from

    Covers the XP total and the last streak log date.

    Expected during contention; the service re-reads and retries, so this
    is logged as a warning rather than an error.
    """

    default_user_message = "Your progress was updated elsewhere. Please try again."
    log_level = logging.WARNING

    def __init__(self, message: str, expected: Optional[Any] = None, actual: Optional[Any] = None, **kwargs):
        self.expected = expected
        self.actual = actual
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual}


class ConfigurationError(FitQuestError):
    """Environment settings or the badge catalog are unusable"""

    default_user_message = "The system is not properly configured. Please contact support."

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        self.config_key = config_key
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"config_key": self.config_key}


# Reward engine


class GamificationError(FitQuestError):
    """A reward operation failed and left no partial state behind"""

    default_user_message = "We couldn't update your rewards right now. Please try again."


class XPAwardError(GamificationError):
    """XP grant could not be committed"""

    default_operation = "award_xp"

    def __init__(self, message: str, amount: Optional[int] = None, reason: Optional[str] = None, **kwargs):
        self.amount = amount
        self.reason = reason
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"amount": self.amount, "reason": self.reason}


class StreakUpdateError(GamificationError):
    """Streak record could not be read or written; no bonus XP was granted"""

    default_operation = "update_streak"

    def __init__(self, message: str, category: Optional[str] = None, **kwargs):
        self.category = category
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"category": self.category}


class BadgeEvaluationError(GamificationError):
    """Badge records could not be read or persisted"""

    default_operation = "evaluate_badges"

    def __init__(self, message: str, badge_id: Optional[str] = None, **kwargs):
        self.badge_id = badge_id
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"badge_id": self.badge_id}


class ChallengeUpdateError(GamificationError):
    """Challenge records could not be read or persisted"""

    default_operation = "update_challenge_progress"

    def __init__(self, message: str, challenge_id: Optional[str] = None, **kwargs):
        self.challenge_id = challenge_id
        super().__init__(message, **kwargs)

    def _extra_context(self) -> Dict[str, Any]:
        return {"challenge_id": self.challenge_id}


class RewardAlreadyClaimedError(ValidationError):
    """
    A one-shot reward (loot use, challenge completion) was already claimed

    Raised by the store inside the XP commit, so the grant is rolled back
    with it.
    """

    default_operation = "claim_reward"

    def __init__(self, message: str, kind: str, claim_id: str, **kwargs):
        self.kind = kind
        self.claim_id = claim_id
        super().__init__(message, field=f"{kind}_id", value=claim_id, **kwargs)
