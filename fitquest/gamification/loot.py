"""
Loot and Mystery Chest System

A chest unlocks when a level-up crosses one of the milestone levels
(every 5 levels). The chest tier depends on the milestone crossed and
decides which rarities can drop; the item is then rolled with rarity
weights common 50 / rare 30 / epic 15 / legendary 5.
"""

from typing import Optional
from datetime import date
import logging
import random

from fitquest.models.gamification import (
    LootItem,
    LootRarity,
    LootType,
    MysteryChest,
    UnlockedLoot,
)

logger = logging.getLogger(__name__)


LOOT_ITEMS: tuple[LootItem, ...] = (
    # Common
    LootItem(id="tip_protein", name="Protein Tip", description="Eat protein within 30 minutes post-workout for best muscle recovery.", type=LootType.TIP, rarity=LootRarity.COMMON, icon="💡"),
    LootItem(id="tip_hydration", name="Hydration Tip", description="Drink water before, during, and after workouts to maintain performance.", type=LootType.TIP, rarity=LootRarity.COMMON, icon="💧"),
    LootItem(id="tip_sleep", name="Sleep Tip", description="Aim for 7-9 hours of sleep for optimal muscle growth and recovery.", type=LootType.TIP, rarity=LootRarity.COMMON, icon="😴"),
    LootItem(id="xp_50", name="50 XP Boost", description="Instant XP bonus!", type=LootType.XP_BOOST, rarity=LootRarity.COMMON, icon="⚡", value=50),
    # Rare
    LootItem(id="exercise_plank_variation", name="Plank Variation", description="Unlock side plank and plank reaches.", type=LootType.EXERCISE, rarity=LootRarity.RARE, icon="🏋️", value=["Side Plank", "Plank Reaches"]),
    LootItem(id="exercise_hiit", name="HIIT Workout", description="Unlock high-intensity interval training routines.", type=LootType.EXERCISE, rarity=LootRarity.RARE, icon="🔥", value=["Burpees", "Mountain Climbers", "Jump Squats"]),
    LootItem(id="xp_100", name="100 XP Boost", description="Bigger XP bonus!", type=LootType.XP_BOOST, rarity=LootRarity.RARE, icon="💥", value=100),
    LootItem(id="theme_blue", name="Ocean Theme", description="Unlock the calming blue ocean theme.", type=LootType.THEME, rarity=LootRarity.RARE, icon="🌊", value="ocean"),
    # Epic
    LootItem(id="exercise_advanced", name="Advanced Exercises", description="Unlock muscle-ups, pistol squats, and handstand push-ups.", type=LootType.EXERCISE, rarity=LootRarity.EPIC, icon="⚡", value=["Muscle-Ups", "Pistol Squats", "Handstand Push-ups"]),
    LootItem(id="xp_250", name="250 XP Boost", description="Massive XP boost!", type=LootType.XP_BOOST, rarity=LootRarity.EPIC, icon="🌟", value=250),
    LootItem(id="theme_sunset", name="Sunset Theme", description="Unlock the vibrant sunset theme.", type=LootType.THEME, rarity=LootRarity.EPIC, icon="🌅", value="sunset"),
    # Legendary
    LootItem(id="exercise_beast_mode", name="Beast Mode Routine", description="Unlock the ultimate beast mode workout plan.", type=LootType.EXERCISE, rarity=LootRarity.LEGENDARY, icon="👑", value=["Beast Mode Full Body", "Strength Massacre", "Endurance Inferno"]),
    LootItem(id="xp_500", name="500 XP Boost", description="LEGENDARY XP BOOST!", type=LootType.XP_BOOST, rarity=LootRarity.LEGENDARY, icon="💎", value=500),
    LootItem(id="theme_gold", name="Gold Champion Theme", description="The prestigious gold champion theme.", type=LootType.THEME, rarity=LootRarity.LEGENDARY, icon="👑", value="gold"),
    LootItem(id="mystery_legendary", name="Mystery Legendary", description="Something incredible awaits...", type=LootType.MYSTERY, rarity=LootRarity.LEGENDARY, icon="🎁"),
)

RARITY_WEIGHTS: dict[LootRarity, int] = {
    LootRarity.COMMON: 50,
    LootRarity.RARE: 30,
    LootRarity.EPIC: 15,
    LootRarity.LEGENDARY: 5,
}


def _loot_of(*rarities: LootRarity) -> tuple[LootItem, ...]:
    return tuple(item for item in LOOT_ITEMS if item.rarity in rarities)


MYSTERY_CHESTS: dict[str, MysteryChest] = {
    "beginner_chest": MysteryChest(
        id="beginner_chest", name="Beginner Mystery Chest", required_level=5,
        possible_loot=_loot_of(LootRarity.COMMON, LootRarity.RARE),
    ),
    "intermediate_chest": MysteryChest(
        id="intermediate_chest", name="Intermediate Mystery Chest", required_level=25,
        possible_loot=_loot_of(LootRarity.RARE, LootRarity.EPIC),
    ),
    "advanced_chest": MysteryChest(
        id="advanced_chest", name="Advanced Mystery Chest", required_level=50,
        possible_loot=_loot_of(LootRarity.EPIC, LootRarity.LEGENDARY),
    ),
    "master_chest": MysteryChest(
        id="master_chest", name="Master Mystery Chest", required_level=75,
        possible_loot=_loot_of(LootRarity.LEGENDARY),
    ),
    "ultimate_chest": MysteryChest(
        id="ultimate_chest", name="Ultimate Champion Chest", required_level=100,
        possible_loot=_loot_of(LootRarity.LEGENDARY),
    ),
}

CHEST_LEVELS: tuple[int, ...] = tuple(range(5, 101, 5))


def chest_for_milestone(level: int) -> MysteryChest:
    if level <= 20:
        return MYSTERY_CHESTS["beginner_chest"]
    if level <= 40:
        return MYSTERY_CHESTS["intermediate_chest"]
    if level <= 70:
        return MYSTERY_CHESTS["advanced_chest"]
    if level < 100:
        return MYSTERY_CHESTS["master_chest"]
    return MYSTERY_CHESTS["ultimate_chest"]


def check_for_chest_unlock(old_level: int, new_level: int) -> Optional[MysteryChest]:
    """
    Chest earned by moving from old_level to new_level

    A multi-level jump that crosses several milestones yields one chest,
    picked for the highest milestone crossed; the lower milestones in the
    same jump do not drop a chest of their own.
    """
    crossed = [level for level in CHEST_LEVELS if old_level < level <= new_level]
    if not crossed:
        return None
    return chest_for_milestone(crossed[-1])


def roll_loot(chest: MysteryChest, rng: Optional[random.Random] = None) -> LootItem:
    """
    Pick an item from a chest

    Rarity is rolled by weight first; if the chest holds nothing of that
    rarity any item from the chest is returned instead.
    """
    rng = rng or random.Random()

    rarities = list(RARITY_WEIGHTS)
    selected = rng.choices(rarities, weights=[RARITY_WEIGHTS[r] for r in rarities], k=1)[0]

    available = [item for item in chest.possible_loot if item.rarity == selected]
    if not available:
        available = list(chest.possible_loot)
    return rng.choice(available)


def open_chest(chest: MysteryChest, today: date, rng: Optional[random.Random] = None) -> UnlockedLoot:
    item = roll_loot(chest, rng)
    logger.debug(f"Rolled {item.id} ({item.rarity.value}) from {chest.id}")
    return UnlockedLoot(item=item, chest_id=chest.id, unlocked_on=today)
