"""
GamificationService - per-user reward orchestration

Ties the pure calculators (levels, streaks, badges, loot, challenges) to a
GamificationStore and a FeedbackQueue. One instance per user; every
read-compute-commit cycle for that instance runs under one asyncio.Lock.
Other instances and other processes are caught by the store's conditional
writes: a moved XP total or streak date is re-read and retried, a badge
write reports the tier it replaced so only real unlocks and upgrades are
celebrated and paid, and one-shot rewards are claimed inside the XP commit.
"""

import asyncio
import logging
import random
from datetime import date
from typing import Any, Callable, Iterable, Mapping, Optional, Union
from uuid import UUID

from fitquest.config import AI_USAGE_XP, LOOT_RANDOM_SEED, XP_COMMIT_MAX_RETRIES
from fitquest.db.store import GamificationStore
from fitquest.exceptions import (
    BadgeEvaluationError,
    ChallengeUpdateError,
    ConcurrentUpdateError,
    RewardAlreadyClaimedError,
    StreakUpdateError,
    ValidationError,
    XPAwardError,
)
from fitquest.gamification.badge_system import (
    BADGE_CATALOG,
    evaluate_badges,
    validate_badge_catalog,
)
from fitquest.gamification.challenges import (
    CHALLENGE_SOURCE,
    advance_progress,
    challenge_completion_reason,
)
from fitquest.gamification.feedback import FeedbackQueue
from fitquest.gamification.loot import check_for_chest_unlock, open_chest
from fitquest.gamification.streak_system import (
    STREAK_BONUS_SOURCE,
    compute_streak_update,
    format_streak_display,
    streak_bonus_reason,
)
from fitquest.gamification.xp_system import apply_multiplier, calculate_extended_level_info
from fitquest.models.gamification import (
    BadgeAward,
    BadgeContext,
    BadgeDefinition,
    BadgeTier,
    BadgeTierUpgradeEvent,
    BadgeUnlockEvent,
    Challenge,
    ChallengeProgressResult,
    EarnedBadge,
    FeedbackEvent,
    GamificationState,
    LevelInfo,
    LevelUpEvent,
    LootType,
    RewardClaim,
    StreakCategory,
    StreakData,
    StreakUpdateResult,
    UnlockedLoot,
    XPAwardResult,
    XPState,
    XPToastEvent,
    XPTransaction,
)
from fitquest.monitoring import (
    record_badge,
    record_level_up,
    record_streak_update,
    record_xp_awarded,
    track_award,
)

logger = logging.getLogger(__name__)

BADGE_REWARD_SOURCE = "badge_reward"
LOOT_SOURCE = "loot"
AI_USAGE_SOURCE = "ai_usage"

BadgeContextInput = Optional[Union[BadgeContext, Mapping[str, Any]]]


def _landed_award(change: BadgeAward, replaced_tier: Optional[BadgeTier]) -> Optional[BadgeAward]:
    """
    What a badge write actually changed, judged by the tier it replaced

    None when another writer already stored this tier or a higher one, or
    when the write was only a progress refresh.
    """
    if replaced_tier is None:
        return change.model_copy(update={"is_new": True, "old_tier": None})
    if change.new_tier.rank > replaced_tier.rank:
        return change.model_copy(update={"is_new": False, "old_tier": replaced_tier})
    return None


class GamificationService:
    """
    Reward engine for a single user.

    Responsibilities:
    - XP grants with level multipliers, level-ups and chest drops
    - Daily streak updates and streak bonus XP
    - Tiered badge evaluation and tier rewards
    - Loot inventory use and challenge completion
    - Aggregate reward state reads
    - Feedback events for the presentation layer
    """

    def __init__(
        self,
        user_id: str,
        store: GamificationStore,
        definitions: Iterable[BadgeDefinition] = BADGE_CATALOG,
        level_calculator: Callable[[int], LevelInfo] = calculate_extended_level_info,
        rng: Optional[random.Random] = None,
        feedback: Optional[FeedbackQueue] = None,
        max_retries: int = XP_COMMIT_MAX_RETRIES,
    ):
        """
        Initialize GamificationService.

        Args:
            user_id: Owner of every record this instance touches
            store: Persistence backend
            definitions: Badge catalog (validated here)
            level_calculator: Maps cumulative XP to LevelInfo
            rng: Random source for loot rolls
            feedback: Queue to publish events to (a fresh one by default)
            max_retries: Re-reads allowed when the XP total moved during a commit

        Raises:
            ConfigurationError: badge catalog is malformed
        """
        self.definitions = tuple(definitions)
        validate_badge_catalog(self.definitions)

        self.user_id = user_id
        self.store = store
        self.level_calculator = level_calculator
        self.rng = rng or random.Random(LOOT_RANDOM_SEED)
        self.feedback = feedback if feedback is not None else FeedbackQueue()
        self.max_retries = max_retries
        self._lock = asyncio.Lock()
        logger.debug(f"GamificationService initialized for user {user_id}")

    # ==========================================
    # XP
    # ==========================================

    async def award_xp(
        self,
        amount: int,
        reason: str,
        source: Optional[str] = None,
        badge_context: BadgeContextInput = None,
    ) -> XPAwardResult:
        """
        Grant XP, publish feedback and optionally evaluate badges.

        The grant is multiplied by the user's level multiplier (read before
        the grant) and floored. Badge tier rewards earned along the way are
        granted afterwards as separate "badge_reward" grants.

        Args:
            amount: Base XP, must be a positive integer
            reason: Human-readable ledger reason
            source: Ledger source tag ("general" if omitted)
            badge_context: Activity snapshot; badges are only evaluated when given

        Returns:
            XPAwardResult for this grant (tier rewards are not folded in)

        Raises:
            ValidationError: amount is not a positive integer
            XPAwardError: the grant could not be persisted; nothing was applied
            BadgeEvaluationError: XP was committed but badge records could not be saved
        """
        return await self._award(amount, reason, source or "general", badge_context)

    async def _award(
        self,
        amount: int,
        reason: str,
        source: str,
        badge_context: BadgeContextInput,
        claim: Optional[RewardClaim] = None,
    ) -> XPAwardResult:
        self._validate_amount(amount)

        with track_award("award_xp"):
            async with self._lock:
                result = await self._commit_grant(amount, reason, source, claim)
                self._publish_grant(result)

                if badge_context is not None:
                    result.badge_awards = await self._evaluate_badges(
                        badge_context, result.new_level, result.new_total_xp
                    )

        await self._grant_badge_rewards(result.badge_awards)
        return result

    def _validate_amount(self, amount: Any) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                "XP amount must be a positive integer",
                field="amount",
                value=amount,
                user_id=self.user_id,
                operation="award_xp",
            )

    async def _commit_grant(
        self,
        amount: int,
        reason: str,
        source: str,
        claim: Optional[RewardClaim] = None,
    ) -> XPAwardResult:
        """Read, compute and commit one grant; caller holds the lock"""
        attempts = 0
        while True:
            try:
                state = await self.store.get_xp_state(self.user_id)
            except Exception as e:
                raise XPAwardError(
                    f"Could not read XP state: {e}",
                    amount=amount,
                    reason=reason,
                    user_id=self.user_id,
                    cause=e,
                ) from e

            old_info = self.level_calculator(state.total_xp)
            multiplier = old_info.xp_multiplier
            granted = apply_multiplier(amount, multiplier)
            new_info = self.level_calculator(state.total_xp + granted)
            leveled_up = new_info.numeric_level > old_info.numeric_level

            loot = None
            if leveled_up:
                chest = check_for_chest_unlock(old_info.numeric_level, new_info.numeric_level)
                if chest:
                    loot = open_chest(chest, date.today(), self.rng)

            transaction = XPTransaction(
                amount=granted,
                base_amount=amount,
                reason=reason,
                source=source,
                multiplier=multiplier,
            )
            snapshot = XPState(
                total_xp=new_info.total_xp,
                current_level=new_info.numeric_level,
                rank_title=new_info.rank_title,
                perks_unlocked=new_info.perks_unlocked,
                level_up_count=state.level_up_count + (1 if leveled_up else 0),
                updated_at=transaction.created_at,
            )

            try:
                await self.store.commit_xp_grant(
                    self.user_id, state.total_xp, transaction, snapshot, loot, claim
                )
            except RewardAlreadyClaimedError:
                raise
            except ConcurrentUpdateError as e:
                attempts += 1
                if attempts > self.max_retries:
                    raise XPAwardError(
                        f"XP total kept changing after {attempts} attempts",
                        amount=amount,
                        reason=reason,
                        user_id=self.user_id,
                        cause=e,
                    ) from e
                logger.warning(
                    f"XP commit conflict for user {self.user_id} "
                    f"(attempt {attempts}/{self.max_retries}), retrying"
                )
                continue
            except Exception as e:
                raise XPAwardError(
                    f"Could not commit XP grant: {e}",
                    amount=amount,
                    reason=reason,
                    user_id=self.user_id,
                    cause=e,
                ) from e
            break

        logger.info(
            f"Awarded {granted} XP to user {self.user_id}: {reason} "
            f"(base={amount}, x{multiplier}, total={new_info.total_xp})"
        )

        new_perks = [p for p in new_info.perks_unlocked if p not in old_info.perks_unlocked]
        return XPAwardResult(
            xp_awarded=granted,
            base_amount=amount,
            multiplier=multiplier,
            reason=reason,
            source=source,
            old_total_xp=state.total_xp,
            new_total_xp=new_info.total_xp,
            old_level=old_info.numeric_level,
            new_level=new_info.numeric_level,
            leveled_up=leveled_up,
            new_rank=new_info.rank_title,
            new_perks=new_perks,
            chest=loot,
        )

    def _publish_grant(self, result: XPAwardResult) -> None:
        """Exactly one event per grant: a level-up replaces the toast"""
        record_xp_awarded(result.source, result.xp_awarded)

        if not result.leveled_up:
            self.feedback.push(XPToastEvent(amount=result.xp_awarded, reason=result.reason))
            return

        record_level_up()
        logger.info(
            f"User {self.user_id} leveled up: {result.old_level} -> {result.new_level} "
            f"({result.new_rank})"
        )
        self.feedback.push(LevelUpEvent(
            old_level=result.old_level,
            new_level=result.new_level,
            new_rank=result.new_rank,
            perks_unlocked=result.new_perks,
            chest=result.chest,
        ))

    async def get_level_info(self) -> LevelInfo:
        state = await self.store.get_xp_state(self.user_id)
        return self.level_calculator(state.total_xp)

    async def get_xp_history(self, limit: int = 50) -> list[XPTransaction]:
        """Ledger entries, newest first"""
        return await self.store.get_xp_transactions(self.user_id, limit=limit)

    async def log_ai_usage(self, kind: str, ai_usage_count: int) -> XPAwardResult:
        """
        Grant XP for an AI-generated plan and re-check AI badges.

        Args:
            kind: What was generated ("workout", "meal", ...)
            ai_usage_count: Total generations so far, including this one
        """
        return await self.award_xp(
            AI_USAGE_XP,
            f"AI {kind} plan generated",
            source=AI_USAGE_SOURCE,
            badge_context={"ai_usage_count": ai_usage_count},
        )

    # ==========================================
    # Streaks
    # ==========================================

    async def update_streak(
        self,
        category: Union[StreakCategory, str],
        today: Optional[date] = None,
        badge_context: BadgeContextInput = None,
    ) -> StreakUpdateResult:
        """
        Record a log in a streak category.

        The streak is persisted before any bonus XP is granted; if the write
        fails no XP is granted. A second log on the same day changes nothing.

        Args:
            category: workout, meal or water
            today: Date of the log (defaults to today)
            badge_context: Passed to the bonus grant, or evaluated on its own
                when there is no bonus

        Raises:
            ValidationError: unknown category
            StreakUpdateError: the streak could not be read or persisted
        """
        try:
            category = StreakCategory(category)
        except ValueError:
            raise ValidationError(
                f"Unknown streak category: {category}",
                field="category",
                value=category,
                user_id=self.user_id,
                operation="update_streak",
            )
        today = today or date.today()

        async with self._lock:
            previous, update = await self._commit_streak(category, today)

        if not update.changed:
            record_streak_update(category.value, "same_day")
            logger.debug(f"{category.value} streak already logged today for user {self.user_id}")
            return StreakUpdateResult(category=category, streak=previous, previous=previous, changed=False)

        if update.reset:
            outcome = "reset"
        elif update.streak.current == 1:
            outcome = "started"
        else:
            outcome = "continued"
        record_streak_update(category.value, outcome)
        logger.info(
            f"{category.value} streak for user {self.user_id}: "
            f"{previous.current} -> {update.streak.current} ({outcome})"
        )

        xp_result = None
        if update.bonus_xp > 0:
            xp_result = await self.award_xp(
                update.bonus_xp,
                streak_bonus_reason(category, update.streak.current),
                source=STREAK_BONUS_SOURCE,
                badge_context=badge_context,
            )
        elif badge_context is not None:
            await self.check_badges(badge_context)

        return StreakUpdateResult(
            category=category,
            streak=update.streak,
            previous=previous,
            changed=True,
            reset=update.reset,
            bonus_xp=update.bonus_xp,
            xp_result=xp_result,
        )

    async def _commit_streak(self, category: StreakCategory, today: date):
        """
        Read, compute and conditionally write one streak; caller holds the lock

        A conflicting writer triggers a re-read, which usually turns the
        update into a same-day no-op.
        """
        attempts = 0
        while True:
            try:
                previous = await self.store.get_streak(self.user_id, category)
            except Exception as e:
                raise StreakUpdateError(
                    f"Could not read {category.value} streak: {e}",
                    category=category.value,
                    user_id=self.user_id,
                    cause=e,
                ) from e

            update = compute_streak_update(previous, today)
            if not update.changed:
                return previous, update

            try:
                await self.store.upsert_streak(
                    self.user_id, category, update.streak, previous.last_log_date
                )
            except ConcurrentUpdateError as e:
                attempts += 1
                if attempts > self.max_retries:
                    raise StreakUpdateError(
                        f"{category.value} streak kept changing after {attempts} attempts",
                        category=category.value,
                        user_id=self.user_id,
                        cause=e,
                    ) from e
                logger.warning(
                    f"{category.value} streak conflict for user {self.user_id} "
                    f"(attempt {attempts}/{self.max_retries}), re-reading"
                )
                continue
            except Exception as e:
                raise StreakUpdateError(
                    f"Could not save {category.value} streak: {e}",
                    category=category.value,
                    user_id=self.user_id,
                    cause=e,
                ) from e
            return previous, update

    async def get_streaks(self) -> dict[StreakCategory, StreakData]:
        return await self.store.get_streaks(self.user_id)

    async def format_streak_display(self) -> str:
        return format_streak_display(await self.get_streaks())

    # ==========================================
    # Badges
    # ==========================================

    async def check_badges(self, badge_context: BadgeContextInput) -> list[BadgeAward]:
        """Evaluate badges without granting activity XP"""
        async with self._lock:
            try:
                state = await self.store.get_xp_state(self.user_id)
            except Exception as e:
                raise BadgeEvaluationError(
                    f"Could not read XP state: {e}",
                    user_id=self.user_id,
                    cause=e,
                ) from e
            info = self.level_calculator(state.total_xp)
            awards = await self._evaluate_badges(badge_context, info.numeric_level, info.total_xp)

        await self._grant_badge_rewards(awards)
        return awards

    async def _evaluate_badges(
        self,
        badge_context: BadgeContextInput,
        current_level: int,
        total_xp: int,
    ) -> list[BadgeAward]:
        """
        Evaluate against fresh store state and persist every change.

        Caller holds the lock. Returns only new badges and tier upgrades.
        """
        try:
            streaks = await self.store.get_streaks(self.user_id)
            existing = await self.store.get_earned_badges(self.user_id)
        except Exception as e:
            raise BadgeEvaluationError(
                f"Could not read badge state: {e}",
                user_id=self.user_id,
                cause=e,
            ) from e

        context = BadgeContext.from_any(badge_context).model_copy(update={
            "streaks": streaks,
            "current_level": current_level,
            "total_xp": total_xp,
        })

        awards = []
        for change in evaluate_badges(context, existing, self.definitions, date.today()):
            try:
                replaced_tier = await self.store.upsert_earned_badge(self.user_id, change.badge)
            except Exception as e:
                raise BadgeEvaluationError(
                    f"Could not save badge {change.definition.id}: {e}",
                    badge_id=change.definition.id,
                    user_id=self.user_id,
                    cause=e,
                ) from e
            award = _landed_award(change, replaced_tier)
            if award is not None:
                awards.append(award)

        unlocked = [a for a in awards if a.is_new]
        upgraded = [a for a in awards if a.is_upgrade]

        if unlocked:
            self.feedback.push(BadgeUnlockEvent(badges=unlocked))
            for _ in unlocked:
                record_badge("unlock")
        for award in upgraded:
            record_badge("upgrade")
            self.feedback.push(BadgeTierUpgradeEvent(
                badge=award,
                from_tier=award.old_tier,
                to_tier=award.new_tier,
            ))

        if unlocked or upgraded:
            logger.info(
                f"Badges for user {self.user_id}: "
                f"unlocked={[a.definition.id for a in unlocked]}, "
                f"upgraded={[a.definition.id for a in upgraded]}"
            )
        return unlocked + upgraded

    async def _grant_badge_rewards(self, awards: list[BadgeAward]) -> None:
        for award in awards:
            if award.xp_reward <= 0:
                continue
            await self.award_xp(
                award.xp_reward,
                f"{award.definition.name} ({award.new_tier.value})",
                source=BADGE_REWARD_SOURCE,
            )

    async def get_earned_badges(self) -> dict[str, EarnedBadge]:
        return await self.store.get_earned_badges(self.user_id)

    # ==========================================
    # Loot
    # ==========================================

    async def get_loot_inventory(self) -> list[UnlockedLoot]:
        return await self.store.get_loot_inventory(self.user_id)

    async def use_loot(self, loot_id: Union[UUID, str]) -> Optional[XPAwardResult]:
        """
        Consume an inventory item.

        XP boosts are granted immediately with source "loot", and the item is
        flagged as used in the same commit as the grant, so a failed grant
        leaves the boost in the inventory. Other item types are only flagged
        as used.

        Returns:
            XPAwardResult for an XP boost, None otherwise

        Raises:
            ValidationError: unknown item or already used
            XPAwardError: the boost could not be granted; the item stays unused
        """
        loot_id = UUID(str(loot_id))
        inventory = await self.store.get_loot_inventory(self.user_id)
        loot = next((item for item in inventory if item.id == loot_id), None)
        if loot is None:
            raise ValidationError(
                "Loot item not found in inventory",
                field="loot_id",
                value=str(loot_id),
                user_id=self.user_id,
                operation="use_loot",
            )

        if loot.item.type == LootType.XP_BOOST and loot.item.value and not loot.used:
            # RewardAlreadyClaimedError is a ValidationError: a racing use_loot won
            result = await self._award(
                int(loot.item.value),
                f"Loot: {loot.item.name}",
                LOOT_SOURCE,
                None,
                claim=RewardClaim(kind="loot", id=str(loot_id)),
            )
        elif loot.used or not await self.store.mark_loot_used(self.user_id, loot_id):
            raise ValidationError(
                "Loot item was already used",
                field="loot_id",
                value=str(loot_id),
                user_id=self.user_id,
                operation="use_loot",
            )
        else:
            result = None

        logger.info(f"User {self.user_id} used {loot.item.id} from {loot.chest_id}")
        return result

    # ==========================================
    # Challenges
    # ==========================================

    async def get_challenges(self) -> list[Challenge]:
        return await self.store.get_challenges(self.user_id)

    async def save_challenges(self, challenges: Iterable[Challenge]) -> None:
        """
        Add challenges to the user's list

        Re-saving a challenge the user already has keeps its progress and
        completion.
        """
        for challenge in challenges:
            try:
                await self.store.upsert_challenge(self.user_id, challenge)
            except Exception as e:
                raise ChallengeUpdateError(
                    f"Could not save challenge {challenge.id}: {e}",
                    challenge_id=challenge.id,
                    user_id=self.user_id,
                    operation="save_challenges",
                    cause=e,
                ) from e

    async def update_challenge_progress(
        self,
        challenge_id: str,
        progress: int,
        badge_context: BadgeContextInput = None,
    ) -> ChallengeProgressResult:
        """
        Report progress on a challenge.

        Reaching the goal completes the challenge and grants its xp_reward
        exactly once (source "challenge"); the completion flag is written in
        the same commit as the XP. On completion badges are evaluated with
        challenges_completed raised to the number of completed challenges.

        Args:
            challenge_id: Id of one of the user's challenges
            progress: Absolute progress count; lower than stored is ignored
            badge_context: Extra activity snapshot for badge evaluation

        Raises:
            ValidationError: unknown challenge or negative progress
            ChallengeUpdateError: challenge records could not be read or saved
            XPAwardError: the reward could not be committed; the challenge
                stays incomplete
        """
        if isinstance(progress, bool) or not isinstance(progress, int) or progress < 0:
            raise ValidationError(
                "Challenge progress must be a non-negative integer",
                field="progress",
                value=progress,
                user_id=self.user_id,
                operation="update_challenge_progress",
            )

        async with self._lock:
            try:
                challenges = await self.store.get_challenges(self.user_id)
            except Exception as e:
                raise ChallengeUpdateError(
                    f"Could not read challenges: {e}",
                    challenge_id=challenge_id,
                    user_id=self.user_id,
                    cause=e,
                ) from e

            challenge = next((c for c in challenges if c.id == challenge_id), None)
            if challenge is None:
                raise ValidationError(
                    f"Unknown challenge: {challenge_id}",
                    field="challenge_id",
                    value=challenge_id,
                    user_id=self.user_id,
                    operation="update_challenge_progress",
                )

            updated = advance_progress(challenge, progress)
            completed_now = updated.is_completed and not challenge.is_completed
            # A paid completion is written by the XP commit itself
            paid_completion = completed_now and challenge.xp_reward > 0

            if updated != challenge and not paid_completion:
                try:
                    await self.store.upsert_challenge(self.user_id, updated)
                except Exception as e:
                    raise ChallengeUpdateError(
                        f"Could not save challenge {challenge_id}: {e}",
                        challenge_id=challenge_id,
                        user_id=self.user_id,
                        cause=e,
                    ) from e
            completed_count = sum(1 for c in challenges if c.is_completed) + (1 if completed_now else 0)

        result = ChallengeProgressResult(
            challenge=updated,
            previous_progress=challenge.progress,
            completed_now=completed_now,
        )
        if not completed_now:
            if badge_context is not None:
                await self.check_badges(badge_context)
            return result

        context = BadgeContext.from_any(badge_context)
        context = context.model_copy(update={
            "challenges_completed": max(context.challenges_completed, completed_count),
        })

        if paid_completion:
            try:
                result.xp_result = await self._award(
                    challenge.xp_reward,
                    challenge_completion_reason(challenge),
                    CHALLENGE_SOURCE,
                    context,
                    claim=RewardClaim(kind="challenge", id=challenge.id),
                )
            except RewardAlreadyClaimedError:
                logger.info(f"Challenge {challenge_id} for user {self.user_id} was completed by another writer")
                result.completed_now = False
                return result
        else:
            await self.check_badges(context)

        logger.info(f"User {self.user_id} completed challenge {challenge_id}")
        return result

    # ==========================================
    # Aggregate state
    # ==========================================

    async def get_gamification_state(self) -> GamificationState:
        """XP, level, streaks, badges, challenges and loot in one read"""
        xp_state, streaks, badges, challenges, loot = await asyncio.gather(
            self.store.get_xp_state(self.user_id),
            self.store.get_streaks(self.user_id),
            self.store.get_earned_badges(self.user_id),
            self.store.get_challenges(self.user_id),
            self.store.get_loot_inventory(self.user_id),
        )
        return GamificationState(
            total_xp=xp_state.total_xp,
            level=self.level_calculator(xp_state.total_xp),
            streaks=streaks,
            earned_badges=list(badges.values()),
            challenges=challenges,
            loot=loot,
        )

    # ==========================================
    # Feedback
    # ==========================================

    def peek_next_feedback(self) -> Optional[FeedbackEvent]:
        return self.feedback.peek()

    def dismiss_feedback(self) -> Optional[FeedbackEvent]:
        return self.feedback.dismiss()

    def clear_feedback(self) -> None:
        self.feedback.clear()


__all__ = [
    "GamificationService",
    "BADGE_REWARD_SOURCE",
    "LOOT_SOURCE",
    "AI_USAGE_SOURCE",
]
