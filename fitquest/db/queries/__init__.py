"""
Database queries

Module organization:
- gamification.py: XP summary and ledger, streaks, earned badges, loot inventory, challenges
"""

from fitquest.db.queries.gamification import (
    get_user_xp_data,
    commit_xp_grant,
    get_xp_transactions,
    get_user_streaks,
    get_user_streak,
    upsert_user_streak,
    get_earned_badges,
    upsert_earned_badge,
    get_loot_inventory,
    mark_loot_used,
    get_challenges,
    upsert_challenge,
)

__all__ = [
    "get_user_xp_data",
    "commit_xp_grant",
    "get_xp_transactions",
    "get_user_streaks",
    "get_user_streak",
    "upsert_user_streak",
    "get_earned_badges",
    "upsert_earned_badge",
    "get_loot_inventory",
    "mark_loot_used",
    "get_challenges",
    "upsert_challenge",
]
