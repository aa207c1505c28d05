"""Pydantic request and response models for withdrawal endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from easyearn.withdrawals.service import AdminAction


class WithdrawalRequest(BaseModel):
    method: str = Field(..., min_length=1, max_length=64)
    amount_cents: int = Field(..., ge=1)
    payout_email: str | None = Field(None, max_length=320)


class WithdrawalResponse(BaseModel):
    ok: bool = True
    redemption_id: int
    amount_cents: int
    balance_cents: int


class AdminWithdrawalAction(BaseModel):
    action: AdminAction
    reason: str | None = None
    code: str | None = None


class AdminWithdrawalResponse(BaseModel):
    ok: bool = True
    status: str
    referral_bonus_cents: int = 0
    email_sent: bool = False
    email_reason: str | None = None
