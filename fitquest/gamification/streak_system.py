"""
Daily Streak Tracking System

Tracks consecutive-day streaks for the logging categories:
- workout
- meal
- water

Rules:
- Logging again on the same day is a no-op (never double-counts)
- Logging the day after the last log continues the streak
- Any larger gap (or no prior log) restarts the streak at 1
- longest only ever grows

Bonus XP is additive across thresholds: reaching day 30 pays
50 (>=3) + 100 (>=7) + 500 (>=30) = 650 XP that day.
"""

from typing import NamedTuple
from datetime import date, timedelta
import logging

from fitquest.models.gamification import StreakCategory, StreakData

logger = logging.getLogger(__name__)


# (minimum current streak, bonus XP), all thresholds that are met pay out
STREAK_BONUS_THRESHOLDS: list[tuple[int, int]] = [
    (3, 50),
    (7, 100),
    (30, 500),
]

STREAK_BONUS_SOURCE = "streak_bonus"


class StreakUpdate(NamedTuple):
    streak: StreakData
    changed: bool
    reset: bool
    bonus_xp: int


def calculate_streak_bonus(current: int) -> int:
    """Bonus XP paid for a streak of `current` days"""
    bonus = 0
    for threshold, amount in STREAK_BONUS_THRESHOLDS:
        if current >= threshold:
            bonus += amount
    return bonus


def compute_streak_update(streak: StreakData, today: date) -> StreakUpdate:
    """
    Work out the next streak state for a log made on `today`

    Pure: the input model is not mutated.

    Returns:
        StreakUpdate(streak, changed, reset, bonus_xp). changed is False for
        a same-day replay, in which case bonus_xp is 0.
    """
    last_date = streak.last_log_date

    if last_date == today:
        return StreakUpdate(streak=streak, changed=False, reset=False, bonus_xp=0)

    if last_date is not None and last_date == today - timedelta(days=1):
        current = streak.current + 1
        reset = False
    else:
        current = 1
        # A first-ever log is a start, not a reset
        reset = last_date is not None

    new_streak = StreakData(
        current=current,
        longest=max(streak.longest, current),
        last_log_date=today,
    )
    return StreakUpdate(
        streak=new_streak,
        changed=True,
        reset=reset,
        bonus_xp=calculate_streak_bonus(current),
    )


def streak_bonus_reason(category: StreakCategory, days: int) -> str:
    return f"{category.value} streak bonus ({days} days)"


def default_streaks() -> dict[StreakCategory, StreakData]:
    return {category: StreakData() for category in StreakCategory}


def format_streak_display(streaks: dict[StreakCategory, StreakData]) -> str:
    """
    Format streaks for a plain-text summary

    Args:
        streaks: Mapping of category to streak state

    Returns:
        Formatted string for display
    """
    active = {c: s for c, s in streaks.items() if s.current > 0}
    if not active:
        return "No active streaks yet. Log a workout, a meal or your water to start one! 💪"

    emoji_map = {
        StreakCategory.WORKOUT: "🏋️",
        StreakCategory.MEAL: "🥗",
        StreakCategory.WATER: "💧",
    }

    lines = ["🔥 YOUR STREAKS\n"]
    for category, streak in sorted(active.items(), key=lambda item: item[1].current, reverse=True):
        line = f"{emoji_map.get(category, '🔥')} {category.value.capitalize()}: {streak.current} days"
        if streak.longest > streak.current:
            line += f" (best: {streak.longest})"
        lines.append(line)

    return "\n".join(lines)
