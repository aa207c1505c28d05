"""Daily earning streaks derived from offer claim history.

A UTC day qualifies when the claims made on it pay out at least $2.00. The
streak is anchored on today if today qualifies, else on yesterday, and counts
consecutive qualifying days backwards from the anchor. A streak instance is
identified by its first day, which is what milestone cases are keyed on.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.db.models import StreakCaseOpen, TaskClaim
from easyearn.gamification.segments import STREAK_TIERS
from easyearn.ledger.service import as_utc, utcnow

STREAK_DAILY_TARGET_CENTS = 200
LOOKBACK_DAYS = 400


@dataclass(frozen=True)
class StreakState:
    streak_days: int
    streak_start_day: date | None
    streak_end_day: date | None
    today_earned_cents: int
    today_qualified: bool
    remaining_today_cents: int
    can_keep_today: bool


@dataclass(frozen=True)
class StreakSnapshot:
    state: StreakState
    claimed_case_7: bool
    claimed_case_14: bool
    available_case_7: bool
    available_case_14: bool
    next_milestone: int | None
    days_to_next_milestone: int | None

    def available(self, tier: int) -> bool:
        return self.available_case_14 if tier == 14 else self.available_case_7


def daily_totals(claims: Iterable[tuple[datetime, int]]) -> dict[date, int]:
    totals: dict[date, int] = {}
    for claimed_at, payout_cents in claims:
        day = as_utc(claimed_at).date()
        totals[day] = totals.get(day, 0) + payout_cents
    return totals


def compute_streak(claims: Iterable[tuple[datetime, int]], now: datetime) -> StreakState:
    """Streak state for ``(claimed_at, payout_cents)`` pairs as of ``now``."""
    totals = daily_totals(claims)

    def qualifies(day: date) -> bool:
        return totals.get(day, 0) >= STREAK_DAILY_TARGET_CENTS

    today = as_utc(now).date()
    yesterday = today - timedelta(days=1)
    today_earned = totals.get(today, 0)
    today_qualified = today_earned >= STREAK_DAILY_TARGET_CENTS
    remaining = max(0, STREAK_DAILY_TARGET_CENTS - today_earned)

    if qualifies(today):
        end_day: date | None = today
    elif qualifies(yesterday):
        end_day = yesterday
    else:
        end_day = None

    if end_day is None:
        return StreakState(
            streak_days=0,
            streak_start_day=None,
            streak_end_day=None,
            today_earned_cents=today_earned,
            today_qualified=today_qualified,
            remaining_today_cents=remaining,
            can_keep_today=False,
        )

    days = 0
    cursor = end_day
    while qualifies(cursor):
        days += 1
        cursor -= timedelta(days=1)

    return StreakState(
        streak_days=days,
        streak_start_day=cursor + timedelta(days=1),
        streak_end_day=end_day,
        today_earned_cents=today_earned,
        today_qualified=today_qualified,
        remaining_today_cents=remaining,
        can_keep_today=not today_qualified and qualifies(yesterday) and days > 0,
    )


def next_milestone(streak_days: int) -> tuple[int | None, int | None]:
    """The next case tier still ahead and how many qualifying days it needs."""
    for tier in STREAK_TIERS:
        if streak_days < tier:
            return tier, tier - streak_days
    return None, None


def build_snapshot(state: StreakState, claimed_tiers: Collection[int]) -> StreakSnapshot:
    """Combine a streak state with the tiers already opened for its start day."""
    has_streak = state.streak_start_day is not None
    claimed_7 = has_streak and 7 in claimed_tiers
    claimed_14 = has_streak and 14 in claimed_tiers
    milestone, days_to = next_milestone(state.streak_days)
    return StreakSnapshot(
        state=state,
        claimed_case_7=claimed_7,
        claimed_case_14=claimed_14,
        available_case_7=has_streak and state.streak_days >= 7 and not claimed_7,
        available_case_14=has_streak and state.streak_days >= 14 and not claimed_14,
        next_milestone=milestone,
        days_to_next_milestone=days_to,
    )


def lookback_start(now: datetime) -> datetime:
    today = as_utc(now).date()
    return datetime.combine(today - timedelta(days=LOOKBACK_DAYS), time.min, tzinfo=timezone.utc)


async def load_claim_history(db: AsyncSession, user_id: str, now: datetime) -> list[tuple[datetime, int]]:
    result = await db.execute(
        select(TaskClaim.claimed_at, TaskClaim.payout_cents).where(
            TaskClaim.user_id == user_id,
            TaskClaim.claimed_at >= lookback_start(now),
        )
    )
    return [(claimed_at, payout) for claimed_at, payout in result.all()]


async def load_claimed_tiers(db: AsyncSession, user_id: str, streak_start_day: date) -> set[int]:
    result = await db.execute(
        select(StreakCaseOpen.tier).where(
            StreakCaseOpen.user_id == user_id,
            StreakCaseOpen.streak_start_day == streak_start_day,
            StreakCaseOpen.tier.in_(STREAK_TIERS),
        )
    )
    return set(result.scalars().all())


async def get_streak_snapshot(db: AsyncSession, user_id: str, now: datetime | None = None) -> StreakSnapshot:
    """Load claim history and opened cases and build the user's streak snapshot."""
    now = now or utcnow()
    state = compute_streak(await load_claim_history(db, user_id, now), now)
    claimed: set[int] = set()
    if state.streak_start_day is not None:
        claimed = await load_claimed_tiers(db, user_id, state.streak_start_day)
    return build_snapshot(state, claimed)
