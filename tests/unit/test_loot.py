"""Unit tests for Loot System (fitquest/gamification/loot.py)"""
import random
from collections import Counter
from datetime import date
from unittest.mock import Mock

import pytest

from fitquest.gamification.loot import (
    CHEST_LEVELS,
    LOOT_ITEMS,
    MYSTERY_CHESTS,
    RARITY_WEIGHTS,
    check_for_chest_unlock,
    chest_for_milestone,
    open_chest,
    roll_loot,
)
from fitquest.models.gamification import LootRarity


# ============================================================================
# Chest Unlock Tests
# ============================================================================

def test_chest_levels_every_five():
    assert CHEST_LEVELS[0] == 5
    assert CHEST_LEVELS[-1] == 100
    assert all(b - a == 5 for a, b in zip(CHEST_LEVELS, CHEST_LEVELS[1:]))


@pytest.mark.parametrize("old_level,new_level,chest_id", [
    (4, 5, "beginner_chest"),
    (9, 10, "beginner_chest"),
    (24, 25, "intermediate_chest"),
    (49, 50, "advanced_chest"),
    (74, 75, "master_chest"),
    (99, 100, "ultimate_chest"),
])
def test_milestone_chests(old_level, new_level, chest_id):
    assert check_for_chest_unlock(old_level, new_level).id == chest_id


@pytest.mark.parametrize("old_level,new_level", [(1, 4), (5, 9), (10, 10), (100, 100)])
def test_no_chest_without_milestone(old_level, new_level):
    assert check_for_chest_unlock(old_level, new_level) is None


def test_multi_milestone_jump_uses_highest():
    """Crossing 20 and 25 in one grant yields the 25 chest"""
    assert check_for_chest_unlock(19, 26).id == "intermediate_chest"


def test_chest_for_milestone_boundaries():
    assert chest_for_milestone(20).id == "beginner_chest"
    assert chest_for_milestone(40).id == "intermediate_chest"
    assert chest_for_milestone(70).id == "advanced_chest"
    assert chest_for_milestone(95).id == "master_chest"


def test_every_chest_has_loot():
    for chest in MYSTERY_CHESTS.values():
        assert chest.possible_loot


# ============================================================================
# Roll Tests
# ============================================================================

def test_rarity_weights():
    assert RARITY_WEIGHTS == {
        LootRarity.COMMON: 50,
        LootRarity.RARE: 30,
        LootRarity.EPIC: 15,
        LootRarity.LEGENDARY: 5,
    }


def test_roll_is_reproducible_with_seed():
    chest = MYSTERY_CHESTS["beginner_chest"]
    first = [roll_loot(chest, random.Random(7)).id for _ in range(5)]
    second = [roll_loot(chest, random.Random(7)).id for _ in range(5)]
    assert first == second


def test_roll_only_returns_chest_items():
    chest = MYSTERY_CHESTS["advanced_chest"]
    rng = random.Random(1)
    for _ in range(200):
        assert roll_loot(chest, rng) in chest.possible_loot


def test_roll_falls_back_when_rarity_missing():
    """A legendary roll from the beginner chest still returns a beginner item"""
    chest = MYSTERY_CHESTS["beginner_chest"]
    rng = Mock()
    rng.choices.return_value = [LootRarity.LEGENDARY]
    rng.choice.side_effect = lambda items: items[0]

    item = roll_loot(chest, rng)

    assert item == chest.possible_loot[0]


def test_roll_distribution_follows_weights():
    chest = MYSTERY_CHESTS["beginner_chest"]
    rng = random.Random(123)
    counts = Counter(roll_loot(chest, rng).rarity for _ in range(4000))

    assert counts[LootRarity.COMMON] > counts[LootRarity.RARE]


def test_open_chest():
    chest = MYSTERY_CHESTS["master_chest"]

    loot = open_chest(chest, date(2024, 6, 15), random.Random(3))

    assert loot.chest_id == "master_chest"
    assert loot.item.rarity == LootRarity.LEGENDARY
    assert loot.used is False
    assert loot.item in LOOT_ITEMS
