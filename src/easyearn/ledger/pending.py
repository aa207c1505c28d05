"""Pending-hold policy for offer payouts and the matured-hold release sweep."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.db.models import TaskClaim, TransactionType
from easyearn.ledger.service import append_transaction, as_utc, format_usd, unit_of_work, update_balances, utcnow

logger = structlog.get_logger()

MID_TIER_MIN_CENTS = 300
MID_TIER_MAX_CENTS = 700
MID_TIER_DAYS = 14
HIGH_TIER_DAYS = 30

_HOUR_SECONDS = 3600


@dataclass(frozen=True)
class PendingCountdown:
    total_hours: int
    days: int
    hours: int


@dataclass(frozen=True)
class ReleaseResult:
    released_count: int
    released_cents: int


def pending_days_for(payout_cents: int) -> int:
    """Hold length in days: up to $3.00 is instant, up to $7.00 is 14 days, above that 30."""
    if payout_cents > MID_TIER_MAX_CENTS:
        return HIGH_TIER_DAYS
    if payout_cents > MID_TIER_MIN_CENTS:
        return MID_TIER_DAYS
    return 0


def pending_until_for(payout_cents: int, now: datetime) -> datetime | None:
    days = pending_days_for(payout_cents)
    if days <= 0:
        return None
    return now + timedelta(days=days)


def pending_duration_label(days: int) -> str:
    if days <= 0:
        return "Instant"
    return f"{days} day{'' if days == 1 else 's'}"


def pending_countdown(pending_until: datetime, now: datetime) -> PendingCountdown:
    remaining = max(0.0, (as_utc(pending_until) - as_utc(now)).total_seconds())
    total_hours = math.ceil(remaining / _HOUR_SECONDS)
    return PendingCountdown(total_hours=total_hours, days=total_hours // 24, hours=total_hours % 24)


def format_pending_countdown(pending_until: datetime, now: datetime) -> str:
    countdown = pending_countdown(pending_until, now)
    if countdown.total_hours <= 0:
        return "Releasing now"
    return f"{countdown.days}d {countdown.hours}h left"


def pending_earn_notice(payout_cents: int, pending_days: int) -> str:
    return f"Offer completed: {format_usd(payout_cents)} is pending for {pending_days} days for fraud checks."


async def release_matured_pending(db: AsyncSession, user_id: str, now: datetime | None = None) -> ReleaseResult:
    """Credit every held claim whose hold has expired, oldest first, in one unit of work.

    Each claim is released with a conditional update on ``credited_at IS NULL``
    so concurrent sweeps (or a reversal that closed the claim) never double-pay.
    Re-running after a successful sweep releases nothing.
    """
    now = now or utcnow()
    matured = (
        await db.execute(
            select(TaskClaim.id, TaskClaim.payout_cents, TaskClaim.offer_title, TaskClaim.offerwall_name, TaskClaim.task_key)
            .where(
                TaskClaim.user_id == user_id,
                TaskClaim.credited_at.is_(None),
                TaskClaim.pending_until.is_not(None),
                TaskClaim.pending_until <= now,
            )
            .order_by(TaskClaim.pending_until.asc(), TaskClaim.id.asc())
        )
    ).all()

    if not matured:
        return ReleaseResult(released_count=0, released_cents=0)

    released_count = 0
    released_cents = 0
    async with unit_of_work(db):
        for claim in matured:
            result = await db.execute(
                update(TaskClaim)
                .where(TaskClaim.id == claim.id, TaskClaim.credited_at.is_(None))
                .values(credited_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue

            released_count += 1
            released_cents += claim.payout_cents
            source_name = claim.offer_title or claim.task_key
            await append_transaction(
                db,
                user_id,
                TransactionType.EARN_RELEASE,
                claim.payout_cents,
                f"Pending offer released from {claim.offerwall_name}: {source_name}",
            )

        if released_cents > 0:
            await update_balances(db, user_id, released_cents, released_cents)

    logger.info(
        "pending_released",
        user_id=user_id,
        released_count=released_count,
        released_cents=released_cents,
    )
    return ReleaseResult(released_count=released_count, released_cents=released_cents)
