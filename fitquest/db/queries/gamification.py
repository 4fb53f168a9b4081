"""Gamification database queries"""
import json
import logging
from datetime import date
from typing import Optional
from psycopg.types.json import Jsonb
from fitquest.db.connection import db
from fitquest.exceptions import ConcurrentUpdateError, RewardAlreadyClaimedError

logger = logging.getLogger(__name__)


# ==========================================
# XP System Functions
# ==========================================

async def get_user_xp_data(user_id: str) -> dict:
    """
    Get user XP summary (creates if doesn't exist)

    Returns:
        {
            'user_id': str,
            'total_xp': int,
            'current_level': int,
            'rank_title': str,
            'perks_unlocked': list,
            'level_up_count': int,
            'updated_at': datetime
        }
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT user_id, total_xp, current_level, rank_title, perks_unlocked, level_up_count, updated_at
                FROM user_xp
                WHERE user_id = %s
                """,
                (user_id,)
            )
            row = await cur.fetchone()

            if not row:
                # Create new user XP record with defaults
                await cur.execute(
                    """
                    INSERT INTO user_xp (user_id, total_xp, current_level, rank_title, perks_unlocked, level_up_count)
                    VALUES (%s, 0, 1, 'Newbie', '[]'::jsonb, 0)
                    ON CONFLICT (user_id) DO UPDATE SET user_id = EXCLUDED.user_id
                    RETURNING user_id, total_xp, current_level, rank_title, perks_unlocked, level_up_count, updated_at
                    """,
                    (user_id,)
                )
                row = await cur.fetchone()
                await conn.commit()
                logger.info(f"Created new XP record for user {user_id}")

            return dict(row) if row else None


# One-shot flags flipped together with an XP grant
_CLAIM_SQL = {
    "loot": """
        UPDATE loot_inventory
        SET used = TRUE
        WHERE user_id = %s AND id = %s AND used = FALSE
        RETURNING id
    """,
    "challenge": """
        UPDATE challenges
        SET is_completed = TRUE,
            progress = goal,
            completed_at = CURRENT_TIMESTAMP,
            updated_at = CURRENT_TIMESTAMP
        WHERE user_id = %s AND challenge_id = %s AND is_completed = FALSE
        RETURNING challenge_id
    """,
}


async def commit_xp_grant(
    user_id: str,
    expected_total_xp: int,
    xp_data: dict,
    transaction: dict,
    loot: Optional[dict] = None,
    claim: Optional[dict] = None
) -> None:
    """
    Apply one XP grant atomically

    The summary row is only updated if its total still equals
    expected_total_xp (compare-and-swap); the ledger row and any loot are
    written in the same transaction.

    Args:
        user_id: User ID
        expected_total_xp: Total read before the grant was computed
        xp_data: Dict with total_xp, current_level, rank_title, perks_unlocked, level_up_count
        transaction: Dict with id, amount, base_amount, reason, source, multiplier, created_at
        loot: Optional dict with id, item_id, chest_id, item, unlocked_on, used
        claim: Optional dict with kind ("loot" or "challenge") and id; the
            flag is flipped in the same transaction

    Raises:
        ConcurrentUpdateError: another writer changed the total first
        RewardAlreadyClaimedError: the claimed flag was already set
    """
    async with db.connection() as conn:
        try:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE user_xp
                    SET total_xp = %s,
                        current_level = %s,
                        rank_title = %s,
                        perks_unlocked = %s,
                        level_up_count = %s,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = %s AND total_xp = %s
                    RETURNING total_xp
                    """,
                    (
                        xp_data['total_xp'],
                        xp_data['current_level'],
                        xp_data['rank_title'],
                        Jsonb(xp_data['perks_unlocked']),
                        xp_data['level_up_count'],
                        user_id,
                        expected_total_xp
                    )
                )
                updated = await cur.fetchone()
                if not updated:
                    await conn.rollback()
                    raise ConcurrentUpdateError(
                        f"XP total for user {user_id} changed during grant",
                        expected=expected_total_xp,
                        user_id=user_id,
                        operation="commit_xp_grant",
                    )

                await cur.execute(
                    """
                    INSERT INTO xp_transactions (id, user_id, amount, base_amount, reason, source, multiplier, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        transaction['id'],
                        user_id,
                        transaction['amount'],
                        transaction['base_amount'],
                        transaction['reason'],
                        transaction['source'],
                        transaction['multiplier'],
                        transaction['created_at']
                    )
                )

                if loot:
                    await cur.execute(
                        """
                        INSERT INTO loot_inventory (id, user_id, item_id, chest_id, item, unlocked_on, used)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            loot['id'],
                            user_id,
                            loot['item_id'],
                            loot['chest_id'],
                            Jsonb(loot['item']),
                            loot['unlocked_on'],
                            loot['used']
                        )
                    )

                if claim:
                    await cur.execute(_CLAIM_SQL[claim['kind']], (user_id, claim['id']))
                    if not await cur.fetchone():
                        await conn.rollback()
                        raise RewardAlreadyClaimedError(
                            f"{claim['kind']} {claim['id']} was already claimed",
                            kind=claim['kind'],
                            claim_id=claim['id'],
                            user_id=user_id,
                        )

            await conn.commit()
        except (ConcurrentUpdateError, RewardAlreadyClaimedError):
            raise
        except Exception:
            await conn.rollback()
            raise


async def get_xp_transactions(user_id: str, limit: int = 50) -> list[dict]:
    """
    Get recent XP transactions for user

    Args:
        user_id: User ID
        limit: Maximum number of transactions to return

    Returns:
        List of transactions ordered by created_at DESC
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id, user_id, amount, base_amount, reason, source, multiplier, created_at
                FROM xp_transactions
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
            rows = await cur.fetchall()
            return [dict(row) for row in rows]


# ==========================================
# Streak System Functions
# ==========================================

async def get_user_streaks(user_id: str) -> list[dict]:
    """
    Get all streak rows for user

    Returns:
        List of dicts with streak_type, current_streak, longest_streak, last_log_date
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT streak_type, current_streak, longest_streak, last_log_date
                FROM user_streaks
                WHERE user_id = %s
                """,
                (user_id,)
            )
            rows = await cur.fetchall()
            return [dict(row) for row in rows]


async def get_user_streak(user_id: str, streak_type: str) -> Optional[dict]:
    """Get a single streak row (None if the user never logged this category)"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT streak_type, current_streak, longest_streak, last_log_date
                FROM user_streaks
                WHERE user_id = %s AND streak_type = %s
                """,
                (user_id, streak_type)
            )
            row = await cur.fetchone()
            return dict(row) if row else None


async def upsert_user_streak(
    user_id: str,
    streak_type: str,
    current_streak: int,
    longest_streak: int,
    last_log_date: Optional[date],
    expected_last_log_date: Optional[date]
) -> None:
    """
    Insert or update a streak row, conditional on the last log date read

    The row is only replaced while its last_log_date still equals
    expected_last_log_date (None for a category never logged), and never
    with the date it already holds. longest_streak is merged with GREATEST
    so a stale writer can never shrink it.

    Raises:
        ConcurrentUpdateError: another writer logged this category first
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_streaks (user_id, streak_type, current_streak, longest_streak, last_log_date)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, streak_type) DO UPDATE
                SET current_streak = EXCLUDED.current_streak,
                    longest_streak = GREATEST(user_streaks.longest_streak, EXCLUDED.longest_streak),
                    last_log_date = EXCLUDED.last_log_date,
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_streaks.last_log_date IS NOT DISTINCT FROM %s::date
                  AND user_streaks.last_log_date IS DISTINCT FROM EXCLUDED.last_log_date
                RETURNING streak_type
                """,
                (user_id, streak_type, current_streak, longest_streak, last_log_date, expected_last_log_date)
            )
            written = await cur.fetchone()
            await conn.commit()

    if not written:
        raise ConcurrentUpdateError(
            f"{streak_type} streak for user {user_id} changed during update",
            expected=expected_last_log_date,
            user_id=user_id,
            operation="upsert_streak",
        )


# ==========================================
# Badge Functions
# ==========================================

async def get_earned_badges(user_id: str) -> list[dict]:
    """Get all earned badge rows for user, most recently earned first"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT badge_id, current_tier, progress_value, tier_progress_pct, earned_on, last_tier_awarded_at
                FROM earned_badges
                WHERE user_id = %s
                ORDER BY earned_on DESC
                """,
                (user_id,)
            )
            rows = await cur.fetchall()
            return [dict(row) for row in rows]


_TIER_RANK = "array_position(ARRAY['bronze', 'silver', 'gold', 'diamond'], {})"
_NEW_RANK = _TIER_RANK.format("%(current_tier)s")
_OLD_RANK = _TIER_RANK.format("current_tier")


async def upsert_earned_badge(user_id: str, badge: dict) -> Optional[str]:
    """
    Insert or merge an earned badge row

    The stored tier never goes down and progress_value never shrinks, even
    when the caller evaluated a stale snapshot. earned_on is kept from the
    first insert; tier_progress_pct and last_tier_awarded_at follow
    whichever tier wins.

    Returns:
        Tier stored before this write, None if the row was just created
    """
    params = {
        'user_id': user_id,
        'badge_id': badge['badge_id'],
        'current_tier': badge['current_tier'],
        'progress_value': badge['progress_value'],
        'tier_progress_pct': badge['tier_progress_pct'],
        'earned_on': badge['earned_on'],
        'last_tier_awarded_at': badge['last_tier_awarded_at'],
    }

    async with db.connection() as conn:
        try:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO earned_badges
                        (user_id, badge_id, current_tier, progress_value, tier_progress_pct, earned_on, last_tier_awarded_at)
                    VALUES (%(user_id)s, %(badge_id)s, %(current_tier)s, %(progress_value)s,
                            %(tier_progress_pct)s, %(earned_on)s, %(last_tier_awarded_at)s)
                    ON CONFLICT (user_id, badge_id) DO NOTHING
                    RETURNING badge_id
                    """,
                    params
                )
                if await cur.fetchone():
                    await conn.commit()
                    return None

                # Row exists: lock it so the tier we report is the one we merged into
                await cur.execute(
                    """
                    SELECT current_tier
                    FROM earned_badges
                    WHERE user_id = %(user_id)s AND badge_id = %(badge_id)s
                    FOR UPDATE
                    """,
                    params
                )
                previous = await cur.fetchone()

                await cur.execute(
                    f"""
                    UPDATE earned_badges
                    SET current_tier = CASE WHEN {_NEW_RANK} > {_OLD_RANK}
                            THEN %(current_tier)s ELSE current_tier END,
                        tier_progress_pct = CASE
                            WHEN {_NEW_RANK} > {_OLD_RANK} THEN %(tier_progress_pct)s
                            WHEN {_NEW_RANK} = {_OLD_RANK} THEN GREATEST(tier_progress_pct, %(tier_progress_pct)s)
                            ELSE tier_progress_pct END,
                        last_tier_awarded_at = CASE WHEN {_NEW_RANK} > {_OLD_RANK}
                            THEN %(last_tier_awarded_at)s ELSE last_tier_awarded_at END,
                        progress_value = GREATEST(progress_value, %(progress_value)s),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = %(user_id)s AND badge_id = %(badge_id)s
                    """,
                    params
                )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise

    return previous['current_tier']


# ==========================================
# Loot Functions
# ==========================================

async def get_loot_inventory(user_id: str) -> list[dict]:
    """Get loot inventory, oldest first"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id, item_id, chest_id, item, unlocked_on, used
                FROM loot_inventory
                WHERE user_id = %s
                ORDER BY unlocked_on ASC, created_at ASC
                """,
                (user_id,)
            )
            rows = await cur.fetchall()
            result = []
            for row in rows:
                row = dict(row)
                if isinstance(row['item'], str):
                    row['item'] = json.loads(row['item'])
                result.append(row)
            return result


async def mark_loot_used(user_id: str, loot_id: str) -> bool:
    """
    Flag an inventory item as used

    Returns:
        True if an unused item was flipped, False otherwise
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE loot_inventory
                SET used = TRUE
                WHERE user_id = %s AND id = %s AND used = FALSE
                RETURNING id
                """,
                (user_id, loot_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return row is not None


# ==========================================
# Challenge Functions
# ==========================================

async def get_challenges(user_id: str) -> list[dict]:
    """Get the user's challenges, oldest first"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT challenge_id, title, description, goal, progress, xp_reward,
                       badge_id, is_completed, type, period
                FROM challenges
                WHERE user_id = %s
                ORDER BY created_at ASC
                """,
                (user_id,)
            )
            rows = await cur.fetchall()
            return [dict(row) for row in rows]


async def upsert_challenge(user_id: str, challenge: dict) -> None:
    """
    Insert a challenge or merge progress into an existing one

    progress only grows and a completed challenge stays completed.
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO challenges
                    (user_id, challenge_id, title, description, goal, progress, xp_reward,
                     badge_id, is_completed, type, period, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        CASE WHEN %s THEN CURRENT_TIMESTAMP END)
                ON CONFLICT (user_id, challenge_id) DO UPDATE
                SET progress = GREATEST(challenges.progress, EXCLUDED.progress),
                    is_completed = challenges.is_completed OR EXCLUDED.is_completed,
                    completed_at = COALESCE(challenges.completed_at, EXCLUDED.completed_at),
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    user_id,
                    challenge['id'],
                    challenge['title'],
                    challenge['description'],
                    challenge['goal'],
                    challenge['progress'],
                    challenge['xp_reward'],
                    challenge['badge_id'],
                    challenge['is_completed'],
                    challenge['type'],
                    challenge['period'],
                    challenge['is_completed']
                )
            )
            await conn.commit()
