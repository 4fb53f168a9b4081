"""
Gamification engine

Pure rule modules, no I/O:
- xp_system: level calculators (band and 100-level variants), multipliers
- streak_system: daily streak transitions and bonus XP
- badge_system: tiered badge catalog and evaluator
- loot: mystery chests and weighted loot rolls
- challenges: weekly, monthly and recovery challenges and their progress rule
- feedback: FIFO of events for the presentation layer
"""

from fitquest.gamification.xp_system import (
    calculate_level_info,
    calculate_extended_level_info,
    make_band_calculator,
)
from fitquest.gamification.streak_system import compute_streak_update, calculate_streak_bonus
from fitquest.gamification.badge_system import BADGE_CATALOG, check_and_award, evaluate_badges
from fitquest.gamification.loot import check_for_chest_unlock, roll_loot
from fitquest.gamification.challenges import advance_progress, generate_weekly_challenges
from fitquest.gamification.feedback import FeedbackQueue

__all__ = [
    "calculate_level_info",
    "calculate_extended_level_info",
    "make_band_calculator",
    "compute_streak_update",
    "calculate_streak_bonus",
    "BADGE_CATALOG",
    "check_and_award",
    "evaluate_badges",
    "check_for_chest_unlock",
    "roll_loot",
    "advance_progress",
    "generate_weekly_challenges",
    "FeedbackQueue",
]
