"""Pydantic response models for ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ReleaseResponse(BaseModel):
    released_count: int
    released_cents: int
    balance_cents: int


class PendingClaimEntry(BaseModel):
    task_key: str
    offerwall_name: str
    offer_title: str | None
    payout_cents: int
    pending_until: datetime
    hold_label: str
    countdown: str


class TransactionEntry(BaseModel):
    type: str
    amount_cents: int
    description: str
    created_at: datetime


class LedgerSummaryResponse(BaseModel):
    balance_cents: int
    lifetime_earned_cents: int
    total_withdrawn_cents: int
    level: int
    next_level_target_cents: int
    level_progress_percent: int
    pending_cents: int
    pending: list[PendingClaimEntry]
    recent_transactions: list[TransactionEntry]
