"""
Tiered Badge System

Each badge tracks one scalar metric derived from the activity context and
climbs bronze -> silver -> gold -> diamond as the metric crosses each tier's
threshold.

Features:
- Metric extraction resilient to missing/malformed context (defaults to 0)
- Tier only moves forward; a lower metric value never downgrades a badge
- Progress toward the next tier (100% exactly at the final tier)
- Catalog validation that fails loudly at startup
"""

from typing import Callable, Iterable, Mapping, Optional, Sequence, Union
from datetime import date
import logging
import math

from fitquest.exceptions import ConfigurationError
from fitquest.models.gamification import (
    BadgeAward,
    BadgeCategory,
    BadgeContext,
    BadgeDefinition,
    BadgeTier,
    EarnedBadge,
    StreakCategory,
    TierDefinition,
)

logger = logging.getLogger(__name__)


# ==========================================
# Metric extraction
# ==========================================

def _streak_current(ctx: BadgeContext, category: StreakCategory) -> float:
    streak = ctx.streaks.get(category)
    return float(streak.current) if streak else 0.0


def _best_current_streak(ctx: BadgeContext) -> float:
    return float(max((s.current for s in ctx.streaks.values()), default=0))


METRIC_EXTRACTORS: dict[str, Callable[[BadgeContext], float]] = {
    # counts
    "workout_count": lambda ctx: ctx.workout_count,
    "meal_count": lambda ctx: ctx.meal_count,
    "water_days": lambda ctx: ctx.water_days,
    "weight_logs": lambda ctx: ctx.weight_logs,
    "challenges_completed": lambda ctx: ctx.challenges_completed,
    "ai_usage_count": lambda ctx: ctx.ai_usage_count,
    "protein_goal_days": lambda ctx: ctx.protein_goal_days,
    "progress_photo_sets": lambda ctx: ctx.progress_photo_sets,
    "current_level": lambda ctx: ctx.current_level,
    "total_xp": lambda ctx: ctx.total_xp,
    # streaks
    "best_current_streak": _best_current_streak,
    "workout_streak": lambda ctx: _streak_current(ctx, StreakCategory.WORKOUT),
    "meal_streak": lambda ctx: _streak_current(ctx, StreakCategory.MEAL),
    "water_streak": lambda ctx: _streak_current(ctx, StreakCategory.WATER),
    # flags
    "early_adopter": lambda ctx: float(ctx.early_adopter),
    "early_bird_workout": lambda ctx: float(ctx.early_bird_workout),
    "night_owl_workout": lambda ctx: float(ctx.night_owl_workout),
    "weekend_warrior": lambda ctx: float(ctx.weekend_warrior),
    "macro_perfect_day": lambda ctx: float(ctx.macro_perfect_day),
    # level thresholds
    "reached_max_level": lambda ctx: 1.0 if ctx.current_level >= 100 else 0.0,
}


def extract_metric(definition: BadgeDefinition, context: BadgeContext) -> float:
    """Metric value a badge is judged on"""
    extractor = METRIC_EXTRACTORS.get(definition.metric)
    if extractor is None:
        raise ConfigurationError(
            f"Badge '{definition.id}' uses unknown metric '{definition.metric}'",
            config_key="BADGE_CATALOG",
        )
    return extractor(context)


# ==========================================
# Catalog
# ==========================================

def _tiers(thresholds: Sequence[float], rewards: Sequence[int], start: BadgeTier = BadgeTier.BRONZE) -> tuple[TierDefinition, ...]:
    order = list(BadgeTier)
    first = order.index(start)
    return tuple(
        TierDefinition(tier=order[first + i], threshold=threshold, xp_reward=reward, label=order[first + i].value.capitalize())
        for i, (threshold, reward) in enumerate(zip(thresholds, rewards))
    )


BADGE_CATALOG: tuple[BadgeDefinition, ...] = (
    # Workout
    BadgeDefinition(
        id="workout_warrior", name="Workout Warrior", description="Complete workouts.",
        category=BadgeCategory.WORKOUT, icon="💪", metric="workout_count",
        tiers=_tiers([1, 10, 50, 100], [25, 50, 150, 300]),
    ),
    BadgeDefinition(
        id="early_bird", name="Early Bird", description="Complete a workout before 7 AM.",
        category=BadgeCategory.WORKOUT, icon="🌅", metric="early_bird_workout",
        tiers=_tiers([1], [25]),
    ),
    BadgeDefinition(
        id="night_owl", name="Night Owl", description="Complete a workout after 9 PM.",
        category=BadgeCategory.WORKOUT, icon="🌙", metric="night_owl_workout",
        tiers=_tiers([1], [25]),
    ),
    BadgeDefinition(
        id="weekend_warrior", name="Weekend Warrior", description="Work out on both Saturday and Sunday.",
        category=BadgeCategory.WORKOUT, icon="🎯", metric="weekend_warrior",
        tiers=_tiers([1], [50]),
    ),
    # Nutrition
    BadgeDefinition(
        id="meal_tracker", name="Meal Tracker", description="Log your meals.",
        category=BadgeCategory.NUTRITION, icon="🥗", metric="meal_count",
        tiers=_tiers([1, 50, 100, 365], [25, 75, 150, 300]),
    ),
    BadgeDefinition(
        id="protein_pro", name="Protein Pro", description="Hit your protein goal on consecutive days.",
        category=BadgeCategory.NUTRITION, icon="🍗", metric="protein_goal_days",
        tiers=_tiers([1, 7, 30], [25, 100, 300]),
    ),
    BadgeDefinition(
        id="hydration_hero", name="Hydration Hero", description="Hit your water goal.",
        category=BadgeCategory.NUTRITION, icon="💧", metric="water_days",
        tiers=_tiers([1, 7, 30], [25, 100, 300]),
    ),
    BadgeDefinition(
        id="macro_perfectionist", name="Macro Perfectionist", description="Hit all macro goals in a single day.",
        category=BadgeCategory.NUTRITION, icon="🎯", metric="macro_perfect_day",
        tiers=_tiers([1], [50]),
    ),
    # Consistency
    BadgeDefinition(
        id="consistency", name="On a Roll", description="Keep a daily streak going in any category.",
        category=BadgeCategory.CONSISTENCY, icon="🔥", metric="best_current_streak",
        tiers=_tiers([3, 7, 30, 100], [25, 75, 250, 1000]),
    ),
    # Progress
    BadgeDefinition(
        id="weight_logger", name="Weight Logger", description="Log your weight.",
        category=BadgeCategory.PROGRESS, icon="⚖️", metric="weight_logs",
        tiers=_tiers([1, 10, 50, 100], [10, 50, 150, 300]),
    ),
    BadgeDefinition(
        id="photogenic", name="Photogenic", description="Upload sets of progress photos.",
        category=BadgeCategory.PROGRESS, icon="📸", metric="progress_photo_sets",
        tiers=_tiers([1, 5, 10], [25, 75, 150]),
    ),
    # AI
    BadgeDefinition(
        id="ai_explorer", name="AI Explorer", description="Use the AI planning tools.",
        category=BadgeCategory.AI, icon="🤖", metric="ai_usage_count",
        tiers=_tiers([1, 10, 25], [25, 75, 150]),
    ),
    # Challenges
    BadgeDefinition(
        id="challenger", name="Challenger", description="Complete weekly and monthly challenges.",
        category=BadgeCategory.CHALLENGES, icon="🌟", metric="challenges_completed",
        tiers=_tiers([1, 5, 10, 25], [50, 100, 200, 500]),
    ),
    # Milestones
    BadgeDefinition(
        id="level_climber", name="Level Climber", description="Reach level milestones.",
        category=BadgeCategory.MILESTONES, icon="⭐", metric="current_level",
        tiers=_tiers([10, 25, 50, 100], [100, 250, 500, 1000]),
    ),
    BadgeDefinition(
        id="bodybuilder", name="BODYBUILDER", description="Reach MAX LEVEL 100.",
        category=BadgeCategory.MILESTONES, icon="👑", metric="reached_max_level",
        tiers=_tiers([1], [1000], start=BadgeTier.DIAMOND),
    ),
    # Special
    BadgeDefinition(
        id="early_adopter", name="Early Adopter", description="Joined the fitness journey!",
        category=BadgeCategory.SPECIAL, icon="🎁", metric="early_adopter",
        tiers=_tiers([1], [50]),
    ),
)


def validate_badge_catalog(definitions: Iterable[BadgeDefinition]) -> None:
    """
    Reject catalog defects before any user is evaluated.

    Raises:
        ConfigurationError: duplicate id, unknown metric, no tiers, tiers out of
            bronze->diamond order or thresholds that don't strictly increase
    """
    seen: set[str] = set()
    for definition in definitions:
        if definition.id in seen:
            raise ConfigurationError(f"Duplicate badge id '{definition.id}'", config_key="BADGE_CATALOG")
        seen.add(definition.id)

        if definition.metric not in METRIC_EXTRACTORS:
            raise ConfigurationError(
                f"Badge '{definition.id}' uses unknown metric '{definition.metric}'",
                config_key="BADGE_CATALOG",
            )
        if not definition.tiers:
            raise ConfigurationError(f"Badge '{definition.id}' has no tiers", config_key="BADGE_CATALOG")

        for prev, tier_def in zip(definition.tiers, definition.tiers[1:]):
            if tier_def.tier.rank <= prev.tier.rank:
                raise ConfigurationError(
                    f"Badge '{definition.id}' tiers out of order: {prev.tier.value} before {tier_def.tier.value}",
                    config_key="BADGE_CATALOG",
                )
            if tier_def.threshold <= prev.threshold:
                raise ConfigurationError(
                    f"Badge '{definition.id}' thresholds must strictly increase "
                    f"({prev.threshold} -> {tier_def.threshold})",
                    config_key="BADGE_CATALOG",
                )
        if definition.tiers[0].threshold <= 0:
            raise ConfigurationError(
                f"Badge '{definition.id}' first threshold must be positive",
                config_key="BADGE_CATALOG",
            )


# ==========================================
# Evaluation
# ==========================================

def qualifying_tier(definition: BadgeDefinition, value: float) -> Optional[TierDefinition]:
    """Highest tier whose threshold the value has reached"""
    for tier_def in reversed(definition.tiers):
        if value >= tier_def.threshold:
            return tier_def
    return None


def calculate_tier_progress(definition: BadgeDefinition, tier: BadgeTier, value: float) -> int:
    """
    Percent of the way from the current tier's threshold to the next one

    100 only at the final tier; capped at 99 otherwise so the two can't be
    confused.
    """
    index = next(i for i, t in enumerate(definition.tiers) if t.tier == tier)
    if index == len(definition.tiers) - 1:
        return 100

    current = definition.tiers[index].threshold
    following = definition.tiers[index + 1].threshold
    pct = math.floor((value - current) / (following - current) * 100)
    return min(max(pct, 0), 99)


def _higher_tier(a: BadgeTier, b: BadgeTier) -> BadgeTier:
    return a if a.rank >= b.rank else b


def evaluate_badge(
    definition: BadgeDefinition,
    context: BadgeContext,
    existing: Optional[EarnedBadge],
    today: date,
) -> Optional[BadgeAward]:
    """
    Evaluate a single badge

    Returns:
        BadgeAward for a new badge, a tier upgrade or a silent progress
        refresh; None when nothing needs to be written.
    """
    value = extract_metric(definition, context)

    if existing is None:
        if value <= 0:
            return None
        tier_def = qualifying_tier(definition, value)
        if tier_def is None:
            return None
        badge = EarnedBadge(
            badge_id=definition.id,
            current_tier=tier_def.tier,
            progress_value=value,
            tier_progress_pct=calculate_tier_progress(definition, tier_def.tier, value),
            earned_on=today,
            last_tier_awarded_at=today,
        )
        return BadgeAward(definition=definition, badge=badge, new_tier=tier_def.tier, is_new=True)

    # Keep the highest value ever seen so the stored tier always matches it
    effective_value = max(value, existing.progress_value)
    tier_def = qualifying_tier(definition, effective_value)
    new_tier = existing.current_tier if tier_def is None else _higher_tier(existing.current_tier, tier_def.tier)

    if value < existing.progress_value:
        logger.debug(
            f"Ignoring regression for badge {definition.id}: "
            f"{existing.progress_value} -> {value}"
        )

    if new_tier != existing.current_tier:
        badge = existing.model_copy(update={
            "current_tier": new_tier,
            "progress_value": effective_value,
            "tier_progress_pct": calculate_tier_progress(definition, new_tier, effective_value),
            "last_tier_awarded_at": today,
        })
        return BadgeAward(
            definition=definition,
            badge=badge,
            old_tier=existing.current_tier,
            new_tier=new_tier,
        )

    if effective_value != existing.progress_value:
        badge = existing.model_copy(update={
            "progress_value": effective_value,
            "tier_progress_pct": calculate_tier_progress(definition, new_tier, effective_value),
        })
        return BadgeAward(
            definition=definition,
            badge=badge,
            old_tier=existing.current_tier,
            new_tier=new_tier,
        )

    return None


def evaluate_badges(
    context: Optional[Union[BadgeContext, Mapping]],
    existing_badges: Mapping[str, EarnedBadge],
    definitions: Iterable[BadgeDefinition] = BADGE_CATALOG,
    today: Optional[date] = None,
) -> list[BadgeAward]:
    """Every badge record that needs writing, including silent progress refreshes"""
    ctx = BadgeContext.from_any(context)
    today = today or date.today()

    changes = []
    for definition in definitions:
        award = evaluate_badge(definition, ctx, existing_badges.get(definition.id), today)
        if award is not None:
            changes.append(award)
    return changes


def check_and_award(
    context: Optional[Union[BadgeContext, Mapping]],
    existing_badges: Mapping[str, EarnedBadge],
    definitions: Iterable[BadgeDefinition] = BADGE_CATALOG,
    today: Optional[date] = None,
) -> list[BadgeAward]:
    """
    Badges newly earned or tier-upgraded by this context

    Args:
        context: Activity snapshot (BadgeContext or a plain mapping)
        existing_badges: badge_id -> stored record
        definitions: Badge catalog
        today: Date stamped on new/upgraded records

    Returns:
        Awards with is_new=True for first unlocks, or old_tier/new_tier set
        for upgrades. Silent progress refreshes are not included.
    """
    return [
        award
        for award in evaluate_badges(context, existing_badges, definitions, today)
        if award.is_new or award.is_upgrade
    ]


def get_badge_definition(badge_id: str, definitions: Iterable[BadgeDefinition] = BADGE_CATALOG) -> Optional[BadgeDefinition]:
    for definition in definitions:
        if definition.id == badge_id:
            return definition
    return None


def format_badge_unlock_message(award: BadgeAward) -> str:
    """
    Format a badge unlock / upgrade message for celebration

    Args:
        award: Output from check_and_award()

    Returns:
        Formatted celebration message
    """
    tier_emoji = {
        BadgeTier.DIAMOND: "💎",
        BadgeTier.GOLD: "🥇",
        BadgeTier.SILVER: "🥈",
        BadgeTier.BRONZE: "🥉",
    }
    symbol = tier_emoji.get(award.new_tier, "🏆")
    headline = "BADGE UNLOCKED!" if award.is_new else "BADGE UPGRADED!"

    lines = [
        f"🎉 {headline} 🎉",
        "",
        f"{symbol} {award.definition.icon} {award.definition.name} ({award.new_tier.value.capitalize()}) {symbol}",
        "",
        award.definition.description,
    ]
    if award.xp_reward:
        lines += ["", f"⭐ +{award.xp_reward} XP Bonus!"]
    return "\n".join(lines)


validate_badge_catalog(BADGE_CATALOG)
