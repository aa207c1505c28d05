"""Reward endpoints: referral wheel, level keys and cases, daily streak."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.auth.dependencies import get_current_user
from easyearn.database import get_session
from easyearn.db.models import User
from easyearn.gamification.case_service import claim_level_rewards, open_level_case, open_streak_case, spin_wheel
from easyearn.gamification.schemas import (
    LevelCaseResponse,
    LevelClaimResponse,
    RewardResponse,
    StreakCaseRequest,
    StreakCaseResponse,
    StreakResponse,
    WheelRequest,
    WheelResponse,
)
from easyearn.gamification.streak_service import get_streak_snapshot
from easyearn.ledger.errors import LedgerError

router = APIRouter(prefix="/api/v1", tags=["Rewards"])


def _http_error(exc: LedgerError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.post("/wheel", response_model=WheelResponse)
async def open_wheel(
    body: WheelRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> WheelResponse:
    """Open the referral case. ``admin_test`` is honoured for admins only."""
    admin_test = bool(body and body.admin_test and user.is_admin)
    try:
        result = await spin_wheel(db, user.id, admin_test=admin_test)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return WheelResponse(
        reward=RewardResponse.from_segment(result.segment),
        balance_cents=result.balance_cents,
        next_available_at=result.next_available_at,
    )


@router.post("/levels/claim", response_model=LevelClaimResponse)
async def claim_levels(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> LevelClaimResponse:
    """Convert newly reached levels into level-up case keys."""
    try:
        result = await claim_level_rewards(db, user.id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return LevelClaimResponse(
        claimed_levels=result.claimed_levels,
        keys_added=result.keys_added,
        available_keys=result.available_keys,
        claimed_up_to_level=result.claimed_up_to_level,
    )


@router.post("/levels/case/open", response_model=LevelCaseResponse)
async def open_level(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> LevelCaseResponse:
    try:
        result = await open_level_case(db, user.id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return LevelCaseResponse(
        reward=RewardResponse.from_segment(result.segment),
        available_keys=result.available_keys,
        new_level=result.level,
    )


@router.get("/streak", response_model=StreakResponse)
async def get_streak(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> StreakResponse:
    """Current streak, today's progress and milestone case availability."""
    return StreakResponse.from_snapshot(await get_streak_snapshot(db, user.id))


@router.post("/streak/case/open", response_model=StreakCaseResponse)
async def open_streak(
    body: StreakCaseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> StreakCaseResponse:
    try:
        result = await open_streak_case(db, user.id, body.tier)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return StreakCaseResponse(
        reward=RewardResponse.from_segment(result.segment),
        streak=StreakResponse.from_snapshot(result.snapshot),
    )
