"""Pydantic request and response models for admin offer credits."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ManualOfferRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    offerwall_name: str = Field(..., min_length=2, max_length=80)
    offer_id: str | None = Field(None, max_length=80)
    offer_title: str = Field(..., min_length=2, max_length=120)
    amount: str = Field(..., min_length=1, max_length=32)


class ManualOfferResponse(BaseModel):
    ok: bool = True
    amount_cents: int
    pending: bool
    pending_days: int
    offer_id: str
