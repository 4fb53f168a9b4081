"""
XP and Leveling System

Pure level calculators. Level info is always derived from cumulative XP so it
can never drift from the ledger.

Band variant (coarse, used for summaries):
- Beginner: 0-499 XP
- Intermediate: 500-1499 XP
- Advanced: 1500-3499 XP
- Elite: 3500+ XP (terminal, unbounded)

Extended variant (100 levels, used by the reward engine):
- Cumulative XP for level L: floor(1.99 * L ** 2.2), level 1 at 0 XP
- ~50,000 XP reaches level 100
- Rank titles layered over level ranges (Newbie ... Bodybuilder)
- Perks unlock every 5 levels and never re-lock
- XP multiplier grows at levels 15, 50 and 75

XP Award Rules (base amounts before multiplier):
- Meal logged: 10 XP
- Workout set completed: 5 XP
- Workout completed: 50 XP
- Water goal hit: 15 XP
- Weight logged: 20 XP
- AI plan generated: 75 XP
"""

from typing import Callable, Optional, Sequence
import logging
import math

from fitquest.exceptions import ConfigurationError
from fitquest.models.gamification import LevelInfo

logger = logging.getLogger(__name__)


# ==========================================
# Band variant
# ==========================================

LEVEL_BANDS: list[tuple[str, int]] = [
    ("Beginner", 0),
    ("Intermediate", 500),
    ("Advanced", 1500),
    ("Elite", 3500),
]


def validate_level_bands(bands: Sequence[tuple[str, int]]) -> None:
    """Fail loudly on an empty table, a gap at 0 or non-ascending minimums"""
    if not bands:
        raise ConfigurationError("Level band table is empty", config_key="LEVEL_BANDS")
    if bands[0][1] != 0:
        raise ConfigurationError(
            f"First level band must start at 0 XP, got {bands[0][1]}",
            config_key="LEVEL_BANDS",
        )
    for (prev_name, prev_min), (name, min_xp) in zip(bands, bands[1:]):
        if min_xp <= prev_min:
            raise ConfigurationError(
                f"Level band '{name}' ({min_xp} XP) must start above '{prev_name}' ({prev_min} XP)",
                config_key="LEVEL_BANDS",
            )


def make_band_calculator(bands: Sequence[tuple[str, int]]) -> Callable[[int], LevelInfo]:
    """
    Build a level calculator over an ordered list of (title, min_xp) bands.

    The final band is unbounded: progress is reported as 100% and
    xp_for_next as None once a user reaches it.
    """
    validate_level_bands(bands)
    bands = list(bands)

    def calculate(xp: int) -> LevelInfo:
        xp = max(int(xp), 0)

        index = 0
        for i, (_, min_xp) in enumerate(bands):
            if min_xp <= xp:
                index = i

        title, level_min = bands[index]
        if index + 1 < len(bands):
            next_min = bands[index + 1][1]
            progress = (xp - level_min) / (next_min - level_min) * 100
        else:
            next_min = None
            progress = 100.0

        return LevelInfo(
            total_xp=xp,
            numeric_level=index + 1,
            rank_title=title,
            level_min_xp=level_min,
            xp_for_next=next_min,
            progress_pct=round(min(progress, 100.0), 2),
            rank_progress_pct=round(min(progress, 100.0), 2),
            next_rank_level=index + 2 if next_min is not None else None,
        )

    return calculate


calculate_level_info = make_band_calculator(LEVEL_BANDS)


# ==========================================
# Extended 100-level variant
# ==========================================

MAX_LEVEL = 100
CURVE_MULTIPLIER = 1.99
CURVE_EXPONENT = 2.2

# (title, first level, last level)
RANK_RANGES: list[tuple[str, int, int]] = [
    ("Newbie", 1, 10),
    ("Rookie", 11, 25),
    ("Unit", 26, 40),
    ("Gym Rat", 41, 60),
    ("Gym Addict", 61, 80),
    ("Bodybuilder", 81, 100),
]

LEVEL_PERKS: list[tuple[int, list[str]]] = [
    (5, ["Custom streak goal"]),
    (10, ["Newbie rank badge", "Dark theme unlocked"]),
    (15, ["Weekly XP bonus +10%"]),
    (20, ["Advanced analytics"]),
    (25, ["Rookie rank badge", "Blue theme unlocked"]),
    (30, ["AI coaching tips"]),
    (35, ["Priority challenge access"]),
    (40, ["Unit rank badge", "Purple theme unlocked"]),
    (45, ["Custom workout builder"]),
    (50, ["Legendary loot access", "Weekly XP bonus +25%"]),
    (60, ["Gym Rat rank badge", "Orange theme unlocked"]),
    (65, ["Beast mode workouts"]),
    (70, ["Elite meal plans"]),
    (75, ["Weekly XP bonus +50%"]),
    (80, ["Gym Addict rank badge", "Red theme unlocked"]),
    (85, ["Champion status"]),
    (90, ["Exclusive exercises"]),
    (95, ["Master coaching"]),
    (100, ["Bodybuilder rank badge", "Gold theme unlocked", "MAX LEVEL ACHIEVED"]),
]

# (minimum level, multiplier), ascending
XP_MULTIPLIERS: list[tuple[int, float]] = [
    (1, 1.0),
    (15, 1.10),
    (50, 1.25),
    (75, 1.50),
]


def get_total_xp_for_level(level: int) -> int:
    """Cumulative XP required to reach a level"""
    if level <= 1:
        return 0
    return math.floor(CURVE_MULTIPLIER * math.pow(level, CURVE_EXPONENT))


def get_xp_for_single_level(level: int) -> int:
    """XP needed to go from level-1 to level"""
    if level <= 1:
        return 0
    return get_total_xp_for_level(level) - get_total_xp_for_level(level - 1)


def get_rank_title(level: int) -> str:
    for title, first, last in RANK_RANGES:
        if first <= level <= last:
            return title
    return RANK_RANGES[-1][0]


def get_perks_for_level(level: int) -> list[str]:
    """All perks unlocked at or below a level (monotonic in level)"""
    perks: list[str] = []
    for required_level, level_perks in LEVEL_PERKS:
        if level >= required_level:
            perks.extend(level_perks)
    return perks


def get_xp_multiplier(level: int) -> float:
    multiplier = 1.0
    for required_level, value in XP_MULTIPLIERS:
        if level >= required_level:
            multiplier = value
    return multiplier


def calculate_extended_level_info(xp: int) -> LevelInfo:
    """
    Calculate numeric level, rank, perks and progress from total XP

    Total for every integer input: negative XP is treated as 0 and
    everything past level 100 reports 100% progress with no next level.
    """
    xp = max(int(xp), 0)

    numeric_level = 1
    for level in range(2, MAX_LEVEL + 1):
        if get_total_xp_for_level(level) > xp:
            break
        numeric_level = level

    rank_title = get_rank_title(numeric_level)
    rank_index = next(i for i, r in enumerate(RANK_RANGES) if r[0] == rank_title)
    _, rank_min, rank_max = RANK_RANGES[rank_index]

    level_min_xp = get_total_xp_for_level(numeric_level)
    if numeric_level < MAX_LEVEL:
        xp_for_next: Optional[int] = get_total_xp_for_level(numeric_level + 1)
        progress = min((xp - level_min_xp) / (xp_for_next - level_min_xp) * 100, 100.0)
    else:
        xp_for_next = None
        progress = 100.0

    rank_progress = (numeric_level - rank_min) / (rank_max - rank_min + 1) * 100
    next_rank_level = RANK_RANGES[rank_index + 1][1] if rank_index + 1 < len(RANK_RANGES) else None

    return LevelInfo(
        total_xp=xp,
        numeric_level=numeric_level,
        rank_title=rank_title,
        perks_unlocked=get_perks_for_level(numeric_level),
        level_min_xp=level_min_xp,
        xp_for_next=xp_for_next,
        progress_pct=round(progress, 2),
        rank_progress_pct=round(min(max(rank_progress, 0.0), 100.0), 2),
        next_rank_level=next_rank_level,
        xp_multiplier=get_xp_multiplier(numeric_level),
    )


def apply_multiplier(amount: int, multiplier: float) -> int:
    """Floor the multiplied amount to an integer grant"""
    # round() first so 100 * 1.1 doesn't floor to 110 - epsilon
    return math.floor(round(amount * multiplier, 6))


def get_xp_for_activity(activity_type: str, **kwargs) -> int:
    """
    Calculate base XP for an activity

    Args:
        activity_type: Type of activity
        **kwargs: Additional context (personal_record, full_day_logged, ...)

    Returns:
        XP amount to award (before multiplier)
    """
    base_xp = {
        "meal": 10,
        "workout_set": 5,
        "workout": 50,
        "water_goal": 15,
        "weight_log": 20,
        "ai_usage": 75,
        "challenge": 0,  # Determined by challenge
    }

    amount = base_xp.get(activity_type, 10)

    # Bonuses
    if kwargs.get("personal_record"):
        amount += 25
    if kwargs.get("full_day_logged"):
        amount += 15

    return amount
