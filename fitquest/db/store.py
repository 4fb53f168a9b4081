"""
Persistence boundary for the reward engine

GamificationService only talks to a GamificationStore. Two implementations:
- InMemoryGamificationStore: process-local, used by tests and local runs
- PostgresGamificationStore: psycopg-backed, one row per user/key with upserts

Writes that several service instances (or processes) can race on are
conditional at this layer rather than relying on the caller's lock:
- commit_xp_grant applies the ledger row, the summary snapshot, any loot and
  any reward claim as one unit, and refuses to overwrite a total that moved
  since it was read
- upsert_streak only replaces a streak whose last log date is the one read
- upsert_earned_badge merges so a tier never goes down and reports the tier
  it replaced
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncGenerator, Optional, Protocol, runtime_checkable
from uuid import UUID

import psycopg

from fitquest.db import queries
from fitquest.exceptions import (
    ConcurrentUpdateError,
    ConnectionError,
    QueryError,
    RewardAlreadyClaimedError,
)
from fitquest.models.gamification import (
    BadgeTier,
    Challenge,
    EarnedBadge,
    LootItem,
    RewardClaim,
    StreakCategory,
    StreakData,
    UnlockedLoot,
    XPState,
    XPTransaction,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class GamificationStore(Protocol):
    """Async persistence contract, keyed by user id (and category / badge id / challenge id)"""

    async def get_xp_state(self, user_id: str) -> XPState: ...

    async def commit_xp_grant(
        self,
        user_id: str,
        expected_total_xp: int,
        transaction: XPTransaction,
        snapshot: XPState,
        loot: Optional[UnlockedLoot] = None,
        claim: Optional[RewardClaim] = None,
    ) -> None: ...

    async def get_xp_transactions(self, user_id: str, limit: int = 50) -> list[XPTransaction]: ...

    async def get_streaks(self, user_id: str) -> dict[StreakCategory, StreakData]: ...

    async def get_streak(self, user_id: str, category: StreakCategory) -> StreakData: ...

    async def upsert_streak(
        self,
        user_id: str,
        category: StreakCategory,
        streak: StreakData,
        expected_last_log_date: Optional[date],
    ) -> None: ...

    async def get_earned_badges(self, user_id: str) -> dict[str, EarnedBadge]: ...

    async def upsert_earned_badge(self, user_id: str, badge: EarnedBadge) -> Optional[BadgeTier]: ...

    async def get_loot_inventory(self, user_id: str) -> list[UnlockedLoot]: ...

    async def mark_loot_used(self, user_id: str, loot_id: UUID) -> bool: ...

    async def get_challenges(self, user_id: str) -> list[Challenge]: ...

    async def upsert_challenge(self, user_id: str, challenge: Challenge) -> None: ...


def merge_earned_badge(stored: EarnedBadge, incoming: EarnedBadge) -> EarnedBadge:
    """
    Combine a stored badge record with a newly evaluated one

    The higher tier wins together with its progress pct and award date;
    progress_value keeps the larger reading; earned_on keeps the first date.
    """
    merged = {
        "progress_value": max(stored.progress_value, incoming.progress_value),
        "earned_on": stored.earned_on,
    }
    if incoming.current_tier.rank > stored.current_tier.rank:
        merged.update(
            current_tier=incoming.current_tier,
            tier_progress_pct=incoming.tier_progress_pct,
            last_tier_awarded_at=incoming.last_tier_awarded_at,
        )
    elif incoming.current_tier == stored.current_tier:
        merged["tier_progress_pct"] = max(stored.tier_progress_pct, incoming.tier_progress_pct)
    return stored.model_copy(update=merged)


def merge_challenge(stored: Challenge, incoming: Challenge) -> Challenge:
    """Progress only grows and completion is sticky"""
    return stored.model_copy(update={
        "progress": max(stored.progress, incoming.progress),
        "is_completed": stored.is_completed or incoming.is_completed,
    })


class InMemoryGamificationStore:
    """
    Dict-backed store

    Every method runs without awaiting in the middle, so on one event loop
    each call is atomic. Models are copied on the way in and out so callers
    can't mutate stored state by accident.
    """

    def __init__(self):
        self._xp: dict[str, XPState] = {}
        self._transactions: dict[str, list[XPTransaction]] = {}
        self._streaks: dict[tuple[str, StreakCategory], StreakData] = {}
        self._badges: dict[tuple[str, str], EarnedBadge] = {}
        self._loot: dict[str, list[UnlockedLoot]] = {}
        self._challenges: dict[str, dict[str, Challenge]] = {}

    async def get_xp_state(self, user_id: str) -> XPState:
        state = self._xp.setdefault(user_id, XPState())
        return state.model_copy(deep=True)

    async def commit_xp_grant(
        self,
        user_id: str,
        expected_total_xp: int,
        transaction: XPTransaction,
        snapshot: XPState,
        loot: Optional[UnlockedLoot] = None,
        claim: Optional[RewardClaim] = None,
    ) -> None:
        current = self._xp.setdefault(user_id, XPState())
        if current.total_xp != expected_total_xp:
            raise ConcurrentUpdateError(
                f"XP total for user {user_id} changed during grant",
                expected=expected_total_xp,
                actual=current.total_xp,
                user_id=user_id,
                operation="commit_xp_grant",
            )
        apply_claim = self._check_claim(user_id, claim) if claim is not None else None

        self._xp[user_id] = snapshot.model_copy(deep=True)
        self._transactions.setdefault(user_id, []).append(transaction.model_copy(deep=True))
        if loot is not None:
            self._loot.setdefault(user_id, []).append(loot.model_copy(deep=True))
        if apply_claim is not None:
            apply_claim()

    def _check_claim(self, user_id: str, claim: RewardClaim):
        """Validate a claim without touching state; returns the mutation to apply"""
        if claim.kind == "loot":
            for index, item in enumerate(self._loot.get(user_id, [])):
                if str(item.id) == claim.id and not item.used:
                    def mark_used(index=index, item=item):
                        self._loot[user_id][index] = item.model_copy(update={"used": True})
                    return mark_used
        else:
            challenge = self._challenges.get(user_id, {}).get(claim.id)
            if challenge is not None and not challenge.is_completed:
                def complete():
                    self._challenges[user_id][claim.id] = challenge.model_copy(
                        update={"is_completed": True, "progress": challenge.goal}
                    )
                return complete

        raise RewardAlreadyClaimedError(
            f"{claim.kind} {claim.id} was already claimed",
            kind=claim.kind,
            claim_id=claim.id,
            user_id=user_id,
        )

    async def get_xp_transactions(self, user_id: str, limit: int = 50) -> list[XPTransaction]:
        transactions = self._transactions.get(user_id, [])
        newest_first = list(reversed(transactions))[:limit]
        return [t.model_copy(deep=True) for t in newest_first]

    async def get_streaks(self, user_id: str) -> dict[StreakCategory, StreakData]:
        return {
            category: self._streaks.get((user_id, category), StreakData()).model_copy()
            for category in StreakCategory
        }

    async def get_streak(self, user_id: str, category: StreakCategory) -> StreakData:
        return self._streaks.get((user_id, category), StreakData()).model_copy()

    async def upsert_streak(
        self,
        user_id: str,
        category: StreakCategory,
        streak: StreakData,
        expected_last_log_date: Optional[date],
    ) -> None:
        previous = self._streaks.get((user_id, category))
        stored_date = previous.last_log_date if previous else None
        if stored_date != expected_last_log_date or (previous and stored_date == streak.last_log_date):
            raise ConcurrentUpdateError(
                f"{category.value} streak for user {user_id} changed during update",
                expected=expected_last_log_date,
                actual=stored_date,
                user_id=user_id,
                operation="upsert_streak",
            )
        longest = max(streak.longest, previous.longest) if previous else streak.longest
        self._streaks[(user_id, category)] = streak.model_copy(update={"longest": longest})

    async def get_earned_badges(self, user_id: str) -> dict[str, EarnedBadge]:
        return {
            badge_id: badge.model_copy()
            for (owner, badge_id), badge in self._badges.items()
            if owner == user_id
        }

    async def upsert_earned_badge(self, user_id: str, badge: EarnedBadge) -> Optional[BadgeTier]:
        previous = self._badges.get((user_id, badge.badge_id))
        if previous is None:
            self._badges[(user_id, badge.badge_id)] = badge.model_copy()
            return None
        self._badges[(user_id, badge.badge_id)] = merge_earned_badge(previous, badge)
        return previous.current_tier

    async def get_loot_inventory(self, user_id: str) -> list[UnlockedLoot]:
        return [loot.model_copy(deep=True) for loot in self._loot.get(user_id, [])]

    async def mark_loot_used(self, user_id: str, loot_id: UUID) -> bool:
        for index, loot in enumerate(self._loot.get(user_id, [])):
            if loot.id == loot_id and not loot.used:
                self._loot[user_id][index] = loot.model_copy(update={"used": True})
                return True
        return False

    async def get_challenges(self, user_id: str) -> list[Challenge]:
        return [c.model_copy() for c in self._challenges.get(user_id, {}).values()]

    async def upsert_challenge(self, user_id: str, challenge: Challenge) -> None:
        challenges = self._challenges.setdefault(user_id, {})
        previous = challenges.get(challenge.id)
        challenges[challenge.id] = challenge.model_copy() if previous is None else merge_challenge(previous, challenge)


@asynccontextmanager
async def _database_errors(operation: str, user_id: str) -> AsyncGenerator[None, None]:
    """Translate driver failures into the project's DatabaseError types"""
    try:
        yield
    except psycopg.OperationalError as e:
        raise ConnectionError(
            f"Database unavailable during {operation}: {e}",
            user_id=user_id,
            operation=operation,
            cause=e,
        ) from e
    except psycopg.Error as e:
        raise QueryError(
            f"Query failed during {operation}: {e}",
            query=operation,
            user_id=user_id,
            cause=e,
        ) from e


class PostgresGamificationStore:
    """Store backed by fitquest.db.queries (psycopg 3 connection pool)"""

    async def get_xp_state(self, user_id: str) -> XPState:
        async with _database_errors("get_xp_state", user_id):
            row = await queries.get_user_xp_data(user_id)
        return XPState(
            total_xp=row["total_xp"],
            current_level=row["current_level"],
            rank_title=row["rank_title"],
            perks_unlocked=row["perks_unlocked"] or [],
            level_up_count=row["level_up_count"],
            updated_at=row.get("updated_at"),
        )

    async def commit_xp_grant(
        self,
        user_id: str,
        expected_total_xp: int,
        transaction: XPTransaction,
        snapshot: XPState,
        loot: Optional[UnlockedLoot] = None,
        claim: Optional[RewardClaim] = None,
    ) -> None:
        loot_row = None
        if loot is not None:
            loot_row = {
                "id": loot.id,
                "item_id": loot.item.id,
                "chest_id": loot.chest_id,
                "item": loot.item.model_dump(mode="json"),
                "unlocked_on": loot.unlocked_on,
                "used": loot.used,
            }

        async with _database_errors("commit_xp_grant", user_id):
            await queries.commit_xp_grant(
                user_id,
                expected_total_xp,
                snapshot.model_dump(include={"total_xp", "current_level", "rank_title", "perks_unlocked", "level_up_count"}),
                transaction.model_dump(),
                loot_row,
                claim.model_dump() if claim is not None else None,
            )

    async def get_xp_transactions(self, user_id: str, limit: int = 50) -> list[XPTransaction]:
        async with _database_errors("get_xp_transactions", user_id):
            rows = await queries.get_xp_transactions(user_id, limit=limit)
        return [
            XPTransaction(
                id=row["id"],
                amount=row["amount"],
                base_amount=row["base_amount"],
                reason=row["reason"],
                source=row["source"],
                multiplier=float(row["multiplier"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def get_streaks(self, user_id: str) -> dict[StreakCategory, StreakData]:
        async with _database_errors("get_streaks", user_id):
            rows = await queries.get_user_streaks(user_id)

        streaks = {category: StreakData() for category in StreakCategory}
        for row in rows:
            try:
                category = StreakCategory(row["streak_type"])
            except ValueError:
                logger.warning(f"Ignoring unknown streak type {row['streak_type']!r} for user {user_id}")
                continue
            streaks[category] = StreakData(
                current=row["current_streak"],
                longest=row["longest_streak"],
                last_log_date=row["last_log_date"],
            )
        return streaks

    async def get_streak(self, user_id: str, category: StreakCategory) -> StreakData:
        async with _database_errors("get_streak", user_id):
            row = await queries.get_user_streak(user_id, category.value)
        if not row:
            return StreakData()
        return StreakData(
            current=row["current_streak"],
            longest=row["longest_streak"],
            last_log_date=row["last_log_date"],
        )

    async def upsert_streak(
        self,
        user_id: str,
        category: StreakCategory,
        streak: StreakData,
        expected_last_log_date: Optional[date],
    ) -> None:
        async with _database_errors("upsert_streak", user_id):
            await queries.upsert_user_streak(
                user_id,
                category.value,
                streak.current,
                streak.longest,
                streak.last_log_date,
                expected_last_log_date,
            )

    async def get_earned_badges(self, user_id: str) -> dict[str, EarnedBadge]:
        async with _database_errors("get_earned_badges", user_id):
            rows = await queries.get_earned_badges(user_id)
        return {row["badge_id"]: EarnedBadge.model_validate(row) for row in rows}

    async def upsert_earned_badge(self, user_id: str, badge: EarnedBadge) -> Optional[BadgeTier]:
        async with _database_errors("upsert_earned_badge", user_id):
            previous = await queries.upsert_earned_badge(user_id, {
                **badge.model_dump(),
                "current_tier": badge.current_tier.value,
            })
        return BadgeTier(previous) if previous else None

    async def get_loot_inventory(self, user_id: str) -> list[UnlockedLoot]:
        async with _database_errors("get_loot_inventory", user_id):
            rows = await queries.get_loot_inventory(user_id)
        return [
            UnlockedLoot(
                id=row["id"],
                item=LootItem.model_validate(row["item"]),
                chest_id=row["chest_id"],
                unlocked_on=row["unlocked_on"],
                used=row["used"],
            )
            for row in rows
        ]

    async def mark_loot_used(self, user_id: str, loot_id: UUID) -> bool:
        async with _database_errors("mark_loot_used", user_id):
            return await queries.mark_loot_used(user_id, str(loot_id))

    async def get_challenges(self, user_id: str) -> list[Challenge]:
        async with _database_errors("get_challenges", user_id):
            rows = await queries.get_challenges(user_id)
        return [
            Challenge(
                id=row["challenge_id"],
                title=row["title"],
                description=row["description"],
                goal=row["goal"],
                progress=row["progress"],
                xp_reward=row["xp_reward"],
                badge_id=row["badge_id"],
                is_completed=row["is_completed"],
                type=row["type"],
                period=row["period"],
            )
            for row in rows
        ]

    async def upsert_challenge(self, user_id: str, challenge: Challenge) -> None:
        async with _database_errors("upsert_challenge", user_id):
            await queries.upsert_challenge(user_id, challenge.model_dump(mode="json"))
