"""Unit tests for Challenge System (fitquest/gamification/challenges.py)"""
import random
from datetime import date

import pytest

from fitquest.gamification.challenges import (
    INITIAL_CHALLENGE_IDS,
    MONTHLY_CHALLENGES,
    RECOVERY_XP_REWARD,
    WEEKLY_CHALLENGES,
    advance_progress,
    challenge_completion_reason,
    format_challenge_progress,
    generate_monthly_challenges,
    generate_weekly_challenges,
    get_challenge_by_id,
    initial_challenges,
    recovery_challenge,
)
from fitquest.models.gamification import ChallengePeriod, ChallengeType, StreakCategory


# ============================================================================
# Catalog Tests
# ============================================================================

def test_catalog_ids_unique():
    ids = [c.id for c in WEEKLY_CHALLENGES + MONTHLY_CHALLENGES]
    assert len(ids) == len(set(ids))


def test_catalog_periods():
    assert all(c.period == ChallengePeriod.WEEKLY for c in WEEKLY_CHALLENGES)
    assert all(c.period == ChallengePeriod.MONTHLY for c in MONTHLY_CHALLENGES)


def test_catalog_entries_start_fresh():
    for challenge in WEEKLY_CHALLENGES + MONTHLY_CHALLENGES:
        assert challenge.progress == 0
        assert not challenge.is_completed
        assert challenge.xp_reward > 0


def test_get_challenge_by_id():
    assert get_challenge_by_id("weekly_water_7").badge_id == "hydration_hero"
    assert get_challenge_by_id("nope") is None


def test_initial_challenges():
    assert [c.id for c in initial_challenges()] == list(INITIAL_CHALLENGE_IDS)


def test_generate_weekly_challenges_distinct_and_seeded():
    first = generate_weekly_challenges(random.Random(7))
    again = generate_weekly_challenges(random.Random(7))

    assert len(first) == 3
    assert len({c.id for c in first}) == 3
    assert [c.id for c in first] == [c.id for c in again]


def test_generate_weekly_challenges_count_capped():
    assert len(generate_weekly_challenges(random.Random(1), count=50)) == len(WEEKLY_CHALLENGES)


def test_generate_monthly_challenges():
    assert [c.id for c in generate_monthly_challenges()] == [c.id for c in MONTHLY_CHALLENGES]


def test_recovery_challenge():
    challenge = recovery_challenge(StreakCategory.WATER, date(2024, 6, 15))

    assert challenge.id == "recovery_water_2024-06-15"
    assert challenge.type == ChallengeType.RECOVERY
    assert challenge.period == ChallengePeriod.SPECIAL
    assert challenge.xp_reward == RECOVERY_XP_REWARD
    assert "Hydration" in challenge.title


# ============================================================================
# Progress Tests
# ============================================================================

@pytest.mark.parametrize("reported,expected,completed", [
    (0, 0, False),
    (3, 3, False),
    (4, 4, True),
    (12, 4, True),
])
def test_advance_progress(reported, expected, completed):
    challenge = get_challenge_by_id("weekly_workout_4")

    updated = advance_progress(challenge, reported)

    assert updated.progress == expected
    assert updated.is_completed is completed


def test_advance_progress_ignores_lower_reports():
    challenge = get_challenge_by_id("weekly_workout_4").model_copy(update={"progress": 3})

    assert advance_progress(challenge, 1).progress == 3


def test_advance_progress_completed_unchanged():
    done = get_challenge_by_id("weekly_workout_4").model_copy(update={"progress": 4, "is_completed": True})

    assert advance_progress(done, 9) is done


def test_advance_progress_does_not_mutate():
    challenge = get_challenge_by_id("weekly_meal_log_5")

    advance_progress(challenge, 5)

    assert challenge.progress == 0
    assert not challenge.is_completed


def test_progress_pct_floors():
    challenge = get_challenge_by_id("weekly_water_7").model_copy(update={"progress": 3})
    assert challenge.progress_pct == 42


def test_format_challenge_progress():
    challenge = get_challenge_by_id("weekly_workout_4").model_copy(update={"progress": 2})

    text = format_challenge_progress(challenge)

    assert "Workout Week (weekly)" in text
    assert "2/4 (50%)" in text
    assert "+100 XP" in text
    assert challenge_completion_reason(challenge) == "Completed challenge: Workout Week"
