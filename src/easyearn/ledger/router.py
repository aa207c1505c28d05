"""Ledger endpoints: pending release sweep and balance summary."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.auth.dependencies import get_current_user
from easyearn.database import get_session
from easyearn.db.models import TaskClaim, Transaction, User
from easyearn.gamification.levels import level_for, next_level_target_cents, progress_percent
from easyearn.ledger.pending import (
    format_pending_countdown,
    pending_days_for,
    pending_duration_label,
    release_matured_pending,
)
from easyearn.ledger.schemas import LedgerSummaryResponse, PendingClaimEntry, ReleaseResponse, TransactionEntry
from easyearn.ledger.service import as_utc, refresh_user, utcnow

router = APIRouter(prefix="/api/v1/ledger", tags=["Ledger"])


@router.post("/release", response_model=ReleaseResponse)
async def release_pending(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ReleaseResponse:
    """Release every matured pending payout for the current user."""
    user_id = user.id
    result = await release_matured_pending(db, user_id, utcnow())
    fresh = await refresh_user(db, user_id)
    if fresh is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return ReleaseResponse(
        released_count=result.released_count,
        released_cents=result.released_cents,
        balance_cents=fresh.balance_cents,
    )


@router.get("/summary", response_model=LedgerSummaryResponse)
async def ledger_summary(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> LedgerSummaryResponse:
    """Balance, level progress, open holds with countdowns and the most recent ledger rows.

    Matured holds are released first so the balance is current.
    """
    user_id = user.id
    now = utcnow()
    await release_matured_pending(db, user_id, now)
    fresh = await refresh_user(db, user_id)
    if fresh is None:
        raise HTTPException(status_code=404, detail="User not found.")
    level = level_for(fresh.lifetime_earned_cents)

    claims = (
        await db.execute(
            select(TaskClaim)
            .where(TaskClaim.user_id == user_id, TaskClaim.credited_at.is_(None), TaskClaim.pending_until.is_not(None))
            .order_by(TaskClaim.pending_until.asc())
        )
    ).scalars().all()
    pending = [
        PendingClaimEntry(
            task_key=c.task_key,
            offerwall_name=c.offerwall_name,
            offer_title=c.offer_title,
            payout_cents=c.payout_cents,
            pending_until=as_utc(c.pending_until),
            hold_label=pending_duration_label(pending_days_for(c.payout_cents)),
            countdown=format_pending_countdown(c.pending_until, now),
        )
        for c in claims
        if c.pending_until is not None
    ]

    transactions = (
        await db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
    ).scalars().all()

    return LedgerSummaryResponse(
        balance_cents=fresh.balance_cents,
        lifetime_earned_cents=fresh.lifetime_earned_cents,
        total_withdrawn_cents=fresh.total_withdrawn_cents,
        level=level,
        next_level_target_cents=next_level_target_cents(level),
        level_progress_percent=progress_percent(fresh.lifetime_earned_cents),
        pending_cents=sum(entry.payout_cents for entry in pending),
        pending=pending,
        recent_transactions=[
            TransactionEntry(
                type=t.type,
                amount_cents=t.amount_cents,
                description=t.description,
                created_at=as_utc(t.created_at),
            )
            for t in transactions
        ],
    )
