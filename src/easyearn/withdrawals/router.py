"""Withdrawal endpoints: user requests and admin processing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.auth.dependencies import get_current_admin, get_current_user
from easyearn.database import get_session
from easyearn.db.models import User
from easyearn.dependencies import get_email_service_dep
from easyearn.email.service import EmailService
from easyearn.ledger.errors import LedgerError
from easyearn.withdrawals.schemas import (
    AdminWithdrawalAction,
    AdminWithdrawalResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from easyearn.withdrawals.service import process_withdrawal, request_withdrawal

router = APIRouter(prefix="/api/v1", tags=["Withdrawals"])


@router.post("/withdrawals", response_model=WithdrawalResponse)
async def create_withdrawal(
    body: WithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> WithdrawalResponse:
    """Request a payout. The amount is charged immediately and held until an admin acts."""
    try:
        result = await request_withdrawal(db, user.id, body.method, body.amount_cents, body.payout_email)
    except LedgerError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    return WithdrawalResponse(
        redemption_id=result.redemption_id,
        amount_cents=result.amount_cents,
        balance_cents=result.balance_cents,
    )


@router.post("/admin/withdrawals/{redemption_id}", response_model=AdminWithdrawalResponse)
async def admin_withdrawal_action(
    redemption_id: int,
    body: AdminWithdrawalAction,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service_dep),
) -> AdminWithdrawalResponse:
    """Approve, cancel (refund) or mark a withdrawal as sent."""
    if not admin.is_active:
        raise HTTPException(status_code=403, detail="Account is not active.")
    try:
        result = await process_withdrawal(
            db,
            redemption_id,
            admin.id,
            body.action,
            reason=body.reason,
            code=body.code,
            email_service=email_service,
        )
    except LedgerError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc

    email = result.email
    return AdminWithdrawalResponse(
        status=result.status.value,
        referral_bonus_cents=result.referral_bonus_cents,
        email_sent=bool(email and email.sent),
        email_reason=email.reason if email and not email.sent else None,
    )
