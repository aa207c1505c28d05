"""Reward cases: referral wheel, level-up case, level key claims and streak cases.

Eligibility is checked inside the same unit of work that pays the reward, on a
locked user row, so two concurrent opens cannot both pass the check.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.config import get_settings
from easyearn.db.models import LevelCaseOpen, StreakCaseOpen, TransactionType, User
from easyearn.gamification.levels import level_for, total_keys
from easyearn.gamification.segments import (
    LEVEL_CASE_SEGMENTS,
    STREAK_TIERS,
    WHEEL_SEGMENTS,
    Segment,
    pick_weighted,
    streak_case_segments,
)
from easyearn.gamification.streak_service import (
    StreakSnapshot,
    build_snapshot,
    compute_streak,
    get_streak_snapshot,
    load_claim_history,
    load_claimed_tiers,
)
from easyearn.ledger.errors import LedgerError, LedgerErrorKind
from easyearn.ledger.service import apply_balance_change, as_utc, lock_user, refresh_user, unit_of_work, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class WheelResult:
    segment: Segment
    balance_cents: int
    next_available_at: datetime | None


@dataclass(frozen=True)
class LevelClaimResult:
    claimed_levels: int
    keys_added: int
    available_keys: int
    claimed_up_to_level: int


@dataclass(frozen=True)
class LevelCaseResult:
    segment: Segment
    available_keys: int
    level: int


@dataclass(frozen=True)
class StreakCaseResult:
    segment: Segment
    snapshot: StreakSnapshot


async def count_active_referrals(db: AsyncSession, user_id: str, since: datetime) -> int:
    """Referred users who completed a withdrawal at or after ``since``."""
    count = await db.scalar(
        select(func.count(User.id)).where(User.referred_by_id == user_id, User.last_withdrawal_at >= since)
    )
    return int(count or 0)


async def spin_wheel(
    db: AsyncSession,
    user_id: str,
    admin_test: bool = False,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> WheelResult:
    """Open the referral case.

    Admin test mode skips the referral and cooldown gates and does not start a
    new cooldown.
    """
    settings = get_settings()
    now = now or utcnow()
    cooldown = timedelta(hours=settings.wheel_cooldown_hours)
    required = settings.wheel_required_active_referrals

    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        if not user.is_active:
            raise LedgerError(
                LedgerErrorKind.ACCOUNT_RESTRICTED,
                "Muted or terminated accounts cannot open the referral case.",
            )

        if not admin_test:
            since = now - timedelta(days=settings.active_referral_window_days)
            active = await count_active_referrals(db, user_id, since)
            if active < required:
                raise LedgerError(
                    LedgerErrorKind.NOT_ENOUGH_REFERRALS,
                    f"You need {required} active referrals to open this case.",
                )
            if user.wheel_last_spun_at is not None:
                next_at = as_utc(user.wheel_last_spun_at) + cooldown
                if next_at > now:
                    raise LedgerError(
                        LedgerErrorKind.COOLDOWN_ACTIVE,
                        details={"next_available_at": next_at.isoformat()},
                    )

        segment = pick_weighted(WHEEL_SEGMENTS, rng=rng)
        label = "Admin test case opening reward" if admin_test else "Referral case opening reward"
        await apply_balance_change(
            db,
            user_id,
            segment.amount_cents,
            segment.amount_cents,
            TransactionType.WHEEL_SPIN,
            segment.amount_cents,
            f"{label} ({segment.label})",
        )
        if not admin_test:
            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(wheel_last_spun_at=now)
                .execution_options(synchronize_session=False)
            )

    logger.info("wheel_opened", user_id=user_id, segment=segment.id, admin_test=admin_test)
    fresh = await refresh_user(db, user_id)
    return WheelResult(
        segment=segment,
        balance_cents=fresh.balance_cents if fresh else 0,
        next_available_at=None if admin_test else now + cooldown,
    )


async def claim_level_rewards(db: AsyncSession, user_id: str) -> LevelClaimResult:
    """Grant the case keys for every level reached since the last claim."""
    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        if not user.is_active:
            raise LedgerError(
                LedgerErrorKind.ACCOUNT_RESTRICTED,
                "Muted or terminated accounts cannot claim level rewards.",
            )
        level = level_for(user.lifetime_earned_cents)
        already = max(0, user.level_rewards_claimed)
        if level <= already:
            raise LedgerError(LedgerErrorKind.NO_LEVEL_REWARDS)

        keys = max(0, total_keys(level) - total_keys(already))
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values({User.level_rewards_claimed: level, User.level_case_keys: User.level_case_keys + keys})
            .execution_options(synchronize_session=False)
        )

    logger.info("level_rewards_claimed", user_id=user_id, level=level, keys_added=keys)
    fresh = await refresh_user(db, user_id)
    return LevelClaimResult(
        claimed_levels=level - already,
        keys_added=keys,
        available_keys=fresh.level_case_keys if fresh else keys,
        claimed_up_to_level=level,
    )


async def open_level_case(
    db: AsyncSession,
    user_id: str,
    rng: random.Random | None = None,
) -> LevelCaseResult:
    """Spend one level-up key for a level case reward."""
    segment = pick_weighted(LEVEL_CASE_SEGMENTS, rng=rng)

    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        if not user.is_active:
            raise LedgerError(LedgerErrorKind.ACCOUNT_RESTRICTED)
        level_at_open = level_for(user.lifetime_earned_cents)

        spent = await db.execute(
            update(User)
            .where(User.id == user_id, User.level_case_keys >= 1)
            .values({User.level_case_keys: User.level_case_keys - 1})
            .execution_options(synchronize_session=False)
        )
        if spent.rowcount == 0:
            raise LedgerError(LedgerErrorKind.NO_KEYS)

        db.add(LevelCaseOpen(user_id=user_id, amount_cents=segment.amount_cents, level_at_open=level_at_open))
        await apply_balance_change(
            db,
            user_id,
            segment.amount_cents,
            segment.amount_cents,
            TransactionType.LEVEL_CASE,
            segment.amount_cents,
            f"Level-Up Case reward ({segment.label})",
        )

    logger.info("level_case_opened", user_id=user_id, segment=segment.id, level=level_at_open)
    fresh = await refresh_user(db, user_id)
    return LevelCaseResult(
        segment=segment,
        available_keys=fresh.level_case_keys if fresh else 0,
        level=level_for(fresh.lifetime_earned_cents) if fresh else level_at_open,
    )


async def open_streak_case(
    db: AsyncSession,
    user_id: str,
    tier: int,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> StreakCaseResult:
    """Open the milestone case for ``tier`` once per streak instance.

    The streak is recomputed from claims read inside the unit of work. The
    unique (user, streak start day, tier) constraint rejects a concurrent
    second open.
    """
    if tier not in STREAK_TIERS:
        msg = f"unknown streak case tier: {tier}"
        raise ValueError(msg)
    now = now or utcnow()
    segment = pick_weighted(streak_case_segments(tier), rng=rng)

    try:
        async with unit_of_work(db):
            user = await lock_user(db, user_id)
            if not user.is_active:
                raise LedgerError(LedgerErrorKind.ACCOUNT_RESTRICTED)

            state = compute_streak(await load_claim_history(db, user_id, now), now)
            if state.streak_start_day is None:
                raise LedgerError(LedgerErrorKind.NO_ACTIVE_STREAK)
            snapshot = build_snapshot(state, await load_claimed_tiers(db, user_id, state.streak_start_day))
            if not snapshot.available(tier):
                raise LedgerError(LedgerErrorKind.CASE_NOT_AVAILABLE)

            db.add(
                StreakCaseOpen(
                    user_id=user_id,
                    tier=tier,
                    streak_start_day=state.streak_start_day,
                    streak_days_at_open=state.streak_days,
                    amount_cents=segment.amount_cents,
                    created_at=now,
                )
            )
            await db.flush()
            await apply_balance_change(
                db,
                user_id,
                segment.amount_cents,
                segment.amount_cents,
                TransactionType.STREAK_CASE,
                segment.amount_cents,
                f"{tier}-Day Streak Case reward ({segment.label})",
            )
    except IntegrityError:
        logger.info("streak_case_conflict", user_id=user_id, tier=tier)
        raise LedgerError(LedgerErrorKind.CASE_NOT_AVAILABLE) from None

    logger.info("streak_case_opened", user_id=user_id, tier=tier, segment=segment.id)
    return StreakCaseResult(segment=segment, snapshot=await get_streak_snapshot(db, user_id, now))
