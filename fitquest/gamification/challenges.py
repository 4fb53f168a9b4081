"""
Challenge System

Weekly, monthly and recovery challenges. Each user holds their own copy of a
challenge (goal, progress, completion flag); completing one pays its
xp_reward once and counts towards the challenge badges.

Progress is reported as an absolute count and only ever moves forward,
capped at the goal.
"""

import logging
import random
from datetime import date
from typing import Optional

from fitquest.models.gamification import (
    Challenge,
    ChallengePeriod,
    ChallengeType,
    StreakCategory,
)

logger = logging.getLogger(__name__)

CHALLENGE_SOURCE = "challenge"
WEEKLY_CHALLENGE_COUNT = 3
RECOVERY_GOAL_DAYS = 3
RECOVERY_XP_REWARD = 150


# ============================================
# Challenge Library
# ============================================

WEEKLY_CHALLENGES: tuple[Challenge, ...] = (
    Challenge(
        id="weekly_workout_4", title="Workout Week", description="Complete 4 workouts this week.",
        goal=4, xp_reward=100, type=ChallengeType.LOG_WORKOUTS, period=ChallengePeriod.WEEKLY,
    ),
    Challenge(
        id="weekly_meal_log_5", title="Meal Mastery", description="Log meals for 5 days this week.",
        goal=5, xp_reward=80, type=ChallengeType.LOG_MEALS, period=ChallengePeriod.WEEKLY,
    ),
    Challenge(
        id="weekly_protein_5", title="Protein Power", description="Hit your protein goal 5 days this week.",
        goal=5, xp_reward=75, type=ChallengeType.HIT_PROTEIN_DAYS, period=ChallengePeriod.WEEKLY,
    ),
    Challenge(
        id="weekly_water_7", title="Hydration Challenge", description="Drink your water goal every day this week.",
        goal=7, xp_reward=100, badge_id="hydration_hero",
        type=ChallengeType.DRINK_WATER_DAYS, period=ChallengePeriod.WEEKLY,
    ),
    Challenge(
        id="weekly_macro_perfect_3", title="Macro Mastery", description="Hit all macro goals 3 days this week.",
        goal=3, xp_reward=120, type=ChallengeType.HIT_ALL_MACROS_DAYS, period=ChallengePeriod.WEEKLY,
    ),
    Challenge(
        id="weekly_streak_maintain", title="Keep It Going", description="Maintain any 7-day streak this week.",
        goal=7, xp_reward=150, badge_id="consistency",
        type=ChallengeType.MAINTAIN_STREAK, period=ChallengePeriod.WEEKLY,
    ),
)

MONTHLY_CHALLENGES: tuple[Challenge, ...] = (
    Challenge(
        id="monthly_workout_16", title="Workout Month", description="Complete 16 workouts this month.",
        goal=16, xp_reward=500, type=ChallengeType.LOG_WORKOUTS, period=ChallengePeriod.MONTHLY,
    ),
    Challenge(
        id="monthly_weight_log_4", title="Track Progress", description="Log your weight 4 times this month.",
        goal=4, xp_reward=200, type=ChallengeType.LOG_WEIGHT, period=ChallengePeriod.MONTHLY,
    ),
    Challenge(
        id="monthly_perfect_week", title="Perfect Week",
        description="Complete 7 consecutive perfect days (all goals hit).",
        goal=7, xp_reward=750, type=ChallengeType.PERFECT_DAYS_IN_ROW, period=ChallengePeriod.MONTHLY,
    ),
)

# Starter set handed to a new user
INITIAL_CHALLENGE_IDS = ("weekly_workout_4", "weekly_protein_5", "weekly_water_7")


def get_challenge_by_id(challenge_id: str) -> Optional[Challenge]:
    for challenge in WEEKLY_CHALLENGES + MONTHLY_CHALLENGES:
        if challenge.id == challenge_id:
            return challenge.model_copy()
    return None


def initial_challenges() -> list[Challenge]:
    return [get_challenge_by_id(challenge_id) for challenge_id in INITIAL_CHALLENGE_IDS]


def generate_weekly_challenges(
    rng: Optional[random.Random] = None,
    count: int = WEEKLY_CHALLENGE_COUNT,
) -> list[Challenge]:
    """Pick `count` distinct weekly challenges at random"""
    rng = rng or random.Random()
    picked = rng.sample(list(WEEKLY_CHALLENGES), k=min(count, len(WEEKLY_CHALLENGES)))
    logger.debug(f"Generated weekly challenges: {[c.id for c in picked]}")
    return [challenge.model_copy() for challenge in picked]


def generate_monthly_challenges() -> list[Challenge]:
    return [challenge.model_copy() for challenge in MONTHLY_CHALLENGES]


def recovery_challenge(category: StreakCategory, today: date) -> Challenge:
    """
    Comeback challenge offered after a streak breaks

    The id carries the date so each break gets its own challenge.
    """
    labels = {
        StreakCategory.WORKOUT: "Workout",
        StreakCategory.MEAL: "Meal Logging",
        StreakCategory.WATER: "Hydration",
    }
    label = labels[category]
    return Challenge(
        id=f"recovery_{category.value}_{today.isoformat()}",
        title=f"🔥 Reignite Your {label} Streak",
        description=(
            f"Get back on track! Complete {label.lower()} for {RECOVERY_GOAL_DAYS} days "
            f"to restart your streak with a bonus."
        ),
        goal=RECOVERY_GOAL_DAYS,
        xp_reward=RECOVERY_XP_REWARD,
        type=ChallengeType.RECOVERY,
        period=ChallengePeriod.SPECIAL,
    )


def advance_progress(challenge: Challenge, progress: int) -> Challenge:
    """
    Apply a progress report to a challenge

    Pure. Progress never moves backwards and is capped at the goal; reaching
    the goal marks the challenge completed. A completed challenge is
    returned unchanged.
    """
    if challenge.is_completed:
        return challenge
    new_progress = min(max(progress, challenge.progress), challenge.goal)
    return challenge.model_copy(update={
        "progress": new_progress,
        "is_completed": new_progress >= challenge.goal,
    })


def challenge_completion_reason(challenge: Challenge) -> str:
    return f"Completed challenge: {challenge.title}"


def format_challenge_progress(challenge: Challenge) -> str:
    """
    Format one challenge for a plain-text summary

    Args:
        challenge: User's challenge record

    Returns:
        Formatted string for display
    """
    status = "✅" if challenge.is_completed else "🎯"
    return (
        f"{status} {challenge.title} ({challenge.period.value})\n"
        f"   {challenge.progress}/{challenge.goal} ({challenge.progress_pct}%) · +{challenge.xp_reward} XP"
    )
