"""Gamification models: levels, streaks, badges, loot, challenges, ledger and feedback events"""
import math
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Union
from datetime import date, datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# Levels
# ==========================================

class LevelInfo(BaseModel):
    """Derived level data; always recomputed from cumulative XP, never stored as truth"""
    model_config = ConfigDict(frozen=True)

    total_xp: int
    numeric_level: int
    rank_title: str
    perks_unlocked: list[str] = Field(default_factory=list)
    level_min_xp: int
    xp_for_next: Optional[int] = None  # Cumulative XP of the next level; None at MAX
    progress_pct: float
    rank_progress_pct: float = 0.0
    next_rank_level: Optional[int] = None
    xp_multiplier: float = 1.0

    @property
    def is_max_level(self) -> bool:
        return self.xp_for_next is None


class XPState(BaseModel):
    """Per-user XP summary row (the authoritative running total)"""
    total_xp: int = 0
    current_level: int = 1
    rank_title: str = "Newbie"
    perks_unlocked: list[str] = Field(default_factory=list)
    level_up_count: int = 0
    updated_at: Optional[datetime] = None


class XPTransaction(BaseModel):
    """Append-only XP ledger entry"""
    id: UUID = Field(default_factory=uuid4)
    amount: int  # post-multiplier
    base_amount: int
    reason: str
    source: str = "general"
    multiplier: float = 1.0
    created_at: datetime = Field(default_factory=_utcnow)


# ==========================================
# Streaks
# ==========================================

class StreakCategory(str, Enum):
    """Logging categories that carry a daily streak"""
    WORKOUT = "workout"
    MEAL = "meal"
    WATER = "water"


class StreakData(BaseModel):
    """Consecutive-day counter for one category"""
    current: int = 0
    longest: int = 0
    last_log_date: Optional[date] = None

    @field_validator("last_log_date", mode="before")
    @classmethod
    def empty_string_is_none(cls, v: Any) -> Any:
        if v == "":
            return None
        return v


# ==========================================
# Badges
# ==========================================

class BadgeTier(str, Enum):
    """Badge tiers, strictly ordered bronze < silver < gold < diamond"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER: list[BadgeTier] = [BadgeTier.BRONZE, BadgeTier.SILVER, BadgeTier.GOLD, BadgeTier.DIAMOND]


class BadgeCategory(str, Enum):
    """Badge categories"""
    WORKOUT = "workout"
    NUTRITION = "nutrition"
    CONSISTENCY = "consistency"
    PROGRESS = "progress"
    AI = "ai"
    CHALLENGES = "challenges"
    MILESTONES = "milestones"
    SPECIAL = "special"


class TierDefinition(BaseModel):
    """One rung of a badge: reached once the metric value hits the threshold"""
    model_config = ConfigDict(frozen=True)

    tier: BadgeTier
    threshold: float
    xp_reward: int = 0
    label: str = ""


class BadgeDefinition(BaseModel):
    """Static badge definition"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    category: BadgeCategory
    icon: str
    metric: str  # key into the metric extractor registry
    tiers: tuple[TierDefinition, ...]

    def tier_definition(self, tier: BadgeTier) -> Optional[TierDefinition]:
        for tier_def in self.tiers:
            if tier_def.tier == tier:
                return tier_def
        return None

    @property
    def final_tier(self) -> BadgeTier:
        return self.tiers[-1].tier


class EarnedBadge(BaseModel):
    """Per-user badge record"""
    badge_id: str
    current_tier: BadgeTier
    progress_value: float = 0
    tier_progress_pct: int = 0
    earned_on: date
    last_tier_awarded_at: date


class BadgeAward(BaseModel):
    """Outcome of evaluating one badge: newly earned, upgraded or silently refreshed"""
    definition: BadgeDefinition
    badge: EarnedBadge
    old_tier: Optional[BadgeTier] = None
    new_tier: BadgeTier
    is_new: bool = False

    @property
    def is_upgrade(self) -> bool:
        return not self.is_new and self.old_tier is not None and self.new_tier != self.old_tier

    @property
    def xp_reward(self) -> int:
        tier_def = self.definition.tier_definition(self.new_tier)
        return tier_def.xp_reward if tier_def else 0


_NUMERIC_CONTEXT_FIELDS = (
    "workout_count",
    "meal_count",
    "water_days",
    "weight_logs",
    "challenges_completed",
    "ai_usage_count",
    "protein_goal_days",
    "progress_photo_sets",
    "current_level",
    "total_xp",
)

_FLAG_CONTEXT_FIELDS = (
    "early_adopter",
    "early_bird_workout",
    "night_owl_workout",
    "weekend_warrior",
    "macro_perfect_day",
)


class BadgeContext(BaseModel):
    """
    Loosely-typed activity snapshot used for badge evaluation.

    Every field is optional. Values that cannot be read as numbers collapse
    to 0 (or False) instead of raising, so a partial or malformed context
    only affects the badges it actually describes.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    workout_count: float = 0
    meal_count: float = 0
    water_days: float = 0
    weight_logs: float = 0
    challenges_completed: float = 0
    ai_usage_count: float = 0
    protein_goal_days: float = 0
    progress_photo_sets: float = 0
    current_level: float = 0
    total_xp: float = 0

    early_adopter: bool = False
    early_bird_workout: bool = False
    night_owl_workout: bool = False
    weekend_warrior: bool = False
    macro_perfect_day: bool = False

    streaks: dict[StreakCategory, StreakData] = Field(default_factory=dict)

    @field_validator(*_NUMERIC_CONTEXT_FIELDS, mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return float(bool(v))
        try:
            number = float(v)
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(number) or number < 0:
            return 0.0
        return number

    @field_validator(*_FLAG_CONTEXT_FIELDS, mode="before")
    @classmethod
    def coerce_flag(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "y")
        if isinstance(v, (bool, int, float)):
            return bool(v)
        return False

    @field_validator("streaks", mode="before")
    @classmethod
    def coerce_streaks(cls, v: Any) -> dict:
        if not isinstance(v, dict):
            return {}
        parsed = {}
        for key, value in v.items():
            try:
                category = StreakCategory(key)
                parsed[category] = value if isinstance(value, StreakData) else StreakData.model_validate(value)
            except (ValueError, TypeError):
                continue
        return parsed

    @classmethod
    def from_any(cls, data: Union["BadgeContext", Mapping, None]) -> "BadgeContext":
        """Build a context from a model, a mapping or nothing"""
        if isinstance(data, BadgeContext):
            return data
        if not isinstance(data, Mapping):
            return cls()
        return cls.model_validate(dict(data))


# ==========================================
# Loot
# ==========================================

class LootRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class LootType(str, Enum):
    TIP = "tip"
    EXERCISE = "exercise"
    THEME = "theme"
    XP_BOOST = "xp_boost"
    MYSTERY = "mystery"


class LootItem(BaseModel):
    """Static loot definition"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    type: LootType
    rarity: LootRarity
    icon: str
    value: Any = None  # XP amount for boosts, theme name, exercise list


class MysteryChest(BaseModel):
    """Chest awarded when crossing a level milestone"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    required_level: int
    possible_loot: tuple[LootItem, ...]


class UnlockedLoot(BaseModel):
    """Inventory row: one rolled loot item"""
    id: UUID = Field(default_factory=uuid4)
    item: LootItem
    chest_id: str
    unlocked_on: date
    used: bool = False


# ==========================================
# Challenges
# ==========================================

class ChallengeType(str, Enum):
    """What a challenge counts"""
    LOG_WORKOUTS = "log_workouts"
    LOG_MEALS = "log_meals"
    HIT_PROTEIN_DAYS = "hit_protein_days"
    DRINK_WATER_DAYS = "drink_water_days"
    HIT_ALL_MACROS_DAYS = "hit_all_macros_days"
    MAINTAIN_STREAK = "maintain_streak"
    LOG_WEIGHT = "log_weight"
    PERFECT_DAYS_IN_ROW = "perfect_days_in_row"
    RECOVERY = "recovery"


class ChallengePeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SPECIAL = "special"


class Challenge(BaseModel):
    """A user's copy of a challenge: goal, progress so far and completion flag"""
    id: str
    title: str
    description: str = ""
    goal: int = Field(gt=0)
    progress: int = Field(default=0, ge=0)
    xp_reward: int = Field(default=0, ge=0)
    badge_id: Optional[str] = None
    is_completed: bool = False
    type: ChallengeType
    period: ChallengePeriod

    @property
    def progress_pct(self) -> int:
        return min(100, math.floor(self.progress / self.goal * 100))


class RewardClaim(BaseModel):
    """
    One-shot flag flipped in the same commit as an XP grant.

    kind="loot" marks an inventory item used, kind="challenge" marks a
    challenge completed. The grant is refused if the flag was already set.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["loot", "challenge"]
    id: str


# ==========================================
# Feedback events
# ==========================================

class XPToastEvent(BaseModel):
    kind: Literal["xp_toast"] = "xp_toast"
    amount: int
    reason: str


class LevelUpEvent(BaseModel):
    kind: Literal["level_up"] = "level_up"
    old_level: int
    new_level: int
    new_rank: str
    perks_unlocked: list[str] = Field(default_factory=list)
    chest: Optional[UnlockedLoot] = None


class BadgeUnlockEvent(BaseModel):
    kind: Literal["badge_unlock"] = "badge_unlock"
    badges: list[BadgeAward]


class BadgeTierUpgradeEvent(BaseModel):
    kind: Literal["badge_tier_upgrade"] = "badge_tier_upgrade"
    badge: BadgeAward
    from_tier: BadgeTier
    to_tier: BadgeTier


FeedbackEvent = Annotated[
    Union[XPToastEvent, LevelUpEvent, BadgeUnlockEvent, BadgeTierUpgradeEvent],
    Field(discriminator="kind"),
]


# ==========================================
# Orchestrator results
# ==========================================

class XPAwardResult(BaseModel):
    """Summary of one award_xp call"""
    xp_awarded: int
    base_amount: int
    multiplier: float
    reason: str
    source: str
    old_total_xp: int
    new_total_xp: int
    old_level: int
    new_level: int
    leveled_up: bool
    new_rank: str
    new_perks: list[str] = Field(default_factory=list)
    chest: Optional[UnlockedLoot] = None
    badge_awards: list[BadgeAward] = Field(default_factory=list)


class StreakUpdateResult(BaseModel):
    """Summary of one update_streak call"""
    category: StreakCategory
    streak: StreakData
    previous: StreakData
    changed: bool
    reset: bool = False
    bonus_xp: int = 0
    xp_result: Optional[XPAwardResult] = None


class ChallengeProgressResult(BaseModel):
    """Summary of one update_challenge_progress call"""
    challenge: Challenge
    previous_progress: int
    completed_now: bool = False
    xp_result: Optional[XPAwardResult] = None


class GamificationState(BaseModel):
    """Everything the reward screens show for one user"""
    total_xp: int
    level: LevelInfo
    streaks: dict[StreakCategory, StreakData]
    earned_badges: list[EarnedBadge] = Field(default_factory=list)
    challenges: list[Challenge] = Field(default_factory=list)
    loot: list[UnlockedLoot] = Field(default_factory=list)
