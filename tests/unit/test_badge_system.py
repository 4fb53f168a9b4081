"""Unit tests for Badge System (fitquest/gamification/badge_system.py)"""
from datetime import date

import pytest

from fitquest.exceptions import ConfigurationError
from fitquest.gamification.badge_system import (
    BADGE_CATALOG,
    calculate_tier_progress,
    check_and_award,
    evaluate_badges,
    extract_metric,
    format_badge_unlock_message,
    get_badge_definition,
    qualifying_tier,
    validate_badge_catalog,
)
from fitquest.models.gamification import (
    BadgeCategory,
    BadgeContext,
    BadgeDefinition,
    BadgeTier,
    EarnedBadge,
    StreakCategory,
    StreakData,
    TierDefinition,
)

TODAY = date(2024, 6, 15)
EARLIER = date(2024, 1, 1)


def _earned(badge_id, tier, value, earned_on=EARLIER):
    return EarnedBadge(
        badge_id=badge_id,
        current_tier=tier,
        progress_value=value,
        tier_progress_pct=0,
        earned_on=earned_on,
        last_tier_awarded_at=earned_on,
    )


def _definition(**overrides):
    fields = dict(
        id="test_badge",
        name="Test",
        description="Test badge",
        category=BadgeCategory.WORKOUT,
        icon="🏅",
        metric="workout_count",
        tiers=(
            TierDefinition(tier=BadgeTier.BRONZE, threshold=1),
            TierDefinition(tier=BadgeTier.SILVER, threshold=5),
        ),
    )
    fields.update(overrides)
    return BadgeDefinition(**fields)


# ============================================================================
# Catalog Tests
# ============================================================================

def test_catalog_is_valid():
    validate_badge_catalog(BADGE_CATALOG)


def test_catalog_ids_unique():
    ids = [d.id for d in BADGE_CATALOG]
    assert len(ids) == len(set(ids))


@pytest.mark.parametrize("definitions", [
    [_definition(), _definition()],
    [_definition(metric="does_not_exist")],
    [_definition(tiers=())],
    [_definition(tiers=(
        TierDefinition(tier=BadgeTier.SILVER, threshold=1),
        TierDefinition(tier=BadgeTier.BRONZE, threshold=5),
    ))],
    [_definition(tiers=(
        TierDefinition(tier=BadgeTier.BRONZE, threshold=5),
        TierDefinition(tier=BadgeTier.SILVER, threshold=5),
    ))],
    [_definition(tiers=(TierDefinition(tier=BadgeTier.BRONZE, threshold=0),))],
])
def test_invalid_catalog_rejected(definitions):
    with pytest.raises(ConfigurationError):
        validate_badge_catalog(definitions)


def test_unknown_metric_raises_on_extract():
    with pytest.raises(ConfigurationError):
        extract_metric(_definition(metric="nope"), BadgeContext())


def test_get_badge_definition():
    assert get_badge_definition("hydration_hero").name == "Hydration Hero"
    assert get_badge_definition("missing") is None


# ============================================================================
# Tier Math Tests
# ============================================================================

def test_qualifying_tier():
    hydration = get_badge_definition("hydration_hero")
    assert qualifying_tier(hydration, 0) is None
    assert qualifying_tier(hydration, 1).tier == BadgeTier.BRONZE
    assert qualifying_tier(hydration, 7).tier == BadgeTier.SILVER
    assert qualifying_tier(hydration, 500).tier == BadgeTier.GOLD


def test_tier_progress_between_thresholds():
    hydration = get_badge_definition("hydration_hero")
    assert calculate_tier_progress(hydration, BadgeTier.SILVER, 10) == 13


def test_tier_progress_capped_below_final_tier():
    hydration = get_badge_definition("hydration_hero")
    assert calculate_tier_progress(hydration, BadgeTier.SILVER, 29.99) == 99


def test_tier_progress_final_tier_is_100():
    hydration = get_badge_definition("hydration_hero")
    assert calculate_tier_progress(hydration, BadgeTier.GOLD, 30) == 100


# ============================================================================
# Evaluation Tests
# ============================================================================

def test_tier_upgrade_with_progress():
    """Bronze at 1 with 10 water days moves to silver, 13% toward gold"""
    existing = {"hydration_hero": _earned("hydration_hero", BadgeTier.BRONZE, 1)}

    awards = check_and_award({"waterDays": 10}, existing, today=TODAY)

    assert len(awards) == 1
    award = awards[0]
    assert award.is_upgrade
    assert award.old_tier == BadgeTier.BRONZE
    assert award.new_tier == BadgeTier.SILVER
    assert award.badge.tier_progress_pct == 13
    assert award.badge.progress_value == 10
    assert award.badge.earned_on == EARLIER
    assert award.badge.last_tier_awarded_at == TODAY
    assert award.xp_reward == 100


def test_new_badge_unlock():
    awards = check_and_award({"workoutCount": 1}, {}, today=TODAY)

    assert [a.definition.id for a in awards] == ["workout_warrior"]
    assert awards[0].is_new
    assert awards[0].new_tier == BadgeTier.BRONZE
    assert awards[0].badge.earned_on == TODAY


def test_multi_tier_jump_lands_on_highest():
    awards = check_and_award({"workoutCount": 60}, {}, today=TODAY)
    assert awards[0].new_tier == BadgeTier.GOLD


def test_tier_never_regresses():
    existing = {"workout_warrior": _earned("workout_warrior", BadgeTier.GOLD, 55)}

    changes = evaluate_badges({"workoutCount": 3}, existing, today=TODAY)

    assert changes == []


def test_unchanged_metric_writes_nothing():
    existing = {"workout_warrior": _earned("workout_warrior", BadgeTier.BRONZE, 4)}

    assert evaluate_badges({"workoutCount": 4}, existing, today=TODAY) == []


def test_progress_refresh_is_silent():
    """Same tier, higher value: record is refreshed but not reported as an award"""
    existing = {"workout_warrior": _earned("workout_warrior", BadgeTier.BRONZE, 4)}

    changes = evaluate_badges({"workoutCount": 6}, existing, today=TODAY)
    awards = check_and_award({"workoutCount": 6}, existing, today=TODAY)

    assert len(changes) == 1
    assert changes[0].badge.progress_value == 6
    assert changes[0].badge.tier_progress_pct == 55
    assert awards == []


def test_streak_metrics_from_context():
    context = BadgeContext(streaks={
        StreakCategory.WATER: StreakData(current=8, longest=8),
        StreakCategory.MEAL: StreakData(current=2, longest=5),
    })

    awards = check_and_award(context, {}, today=TODAY)

    consistency = next(a for a in awards if a.definition.id == "consistency")
    assert consistency.new_tier == BadgeTier.SILVER


def test_flag_badges():
    awards = check_and_award({"earlyBirdWorkout": "yes", "early_adopter": True}, {}, today=TODAY)
    assert {a.definition.id for a in awards} == {"early_bird", "early_adopter"}


def test_max_level_badge():
    awards = check_and_award({"currentLevel": 100}, {}, today=TODAY)
    ids = {a.definition.id for a in awards}
    assert "bodybuilder" in ids
    bodybuilder = next(a for a in awards if a.definition.id == "bodybuilder")
    assert bodybuilder.new_tier == BadgeTier.DIAMOND
    assert bodybuilder.badge.tier_progress_pct == 100


@pytest.mark.parametrize("context", [
    None,
    {},
    {"workoutCount": "lots"},
    {"workoutCount": -5},
    {"workoutCount": None, "waterDays": [1, 2]},
    {"streaks": "broken"},
    {"streaks": {"unknown": {"current": 5}}},
    {"workoutCount": float("nan")},
    {"workoutCount": "inf"},
    {"waterDays": float("inf"), "mealCount": "-Infinity"},
    {"streaks": {"water": {"current": float("inf")}}},
])
def test_malformed_context_never_raises(context):
    assert check_and_award(context, {}, today=TODAY) == []


def test_non_finite_counts_read_as_zero():
    context = BadgeContext.from_any({"workoutCount": "inf", "totalXp": float("-inf")})

    assert context.workout_count == 0
    assert context.total_xp == 0


def test_camel_and_snake_case_keys():
    camel = BadgeContext.from_any({"waterDays": 3})
    snake = BadgeContext.from_any({"water_days": 3})
    assert camel.water_days == snake.water_days == 3


def test_format_badge_unlock_message():
    award = check_and_award({"workoutCount": 1}, {}, today=TODAY)[0]

    message = format_badge_unlock_message(award)

    assert "BADGE UNLOCKED!" in message
    assert "Workout Warrior (Bronze)" in message
    assert "+25 XP" in message


def test_format_badge_upgrade_message():
    existing = {"hydration_hero": _earned("hydration_hero", BadgeTier.BRONZE, 1)}
    award = check_and_award({"waterDays": 10}, existing, today=TODAY)[0]

    assert "BADGE UPGRADED!" in format_badge_unlock_message(award)
