"""Pydantic request and response models for reward endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel

from easyearn.gamification.segments import Segment
from easyearn.gamification.streak_service import StreakSnapshot


# --- Requests ---


class WheelRequest(BaseModel):
    admin_test: bool = False


class StreakCaseRequest(BaseModel):
    tier: Literal[7, 14]


# --- Responses ---


class RewardResponse(BaseModel):
    id: str
    label: str
    amount_cents: int

    @classmethod
    def from_segment(cls, segment: Segment) -> RewardResponse:
        return cls(id=segment.id, label=segment.label, amount_cents=segment.amount_cents)


class WheelResponse(BaseModel):
    ok: bool = True
    reward: RewardResponse
    balance_cents: int
    next_available_at: datetime | None = None


class LevelClaimResponse(BaseModel):
    ok: bool = True
    claimed_levels: int
    keys_added: int
    available_keys: int
    claimed_up_to_level: int


class LevelCaseResponse(BaseModel):
    ok: bool = True
    reward: RewardResponse
    available_keys: int
    new_level: int


class StreakResponse(BaseModel):
    streak_days: int
    streak_start_day: date | None = None
    streak_end_day: date | None = None
    today_earned_cents: int
    today_qualified: bool
    remaining_today_cents: int
    can_keep_today: bool
    claimed_case_7: bool
    claimed_case_14: bool
    available_case_7: bool
    available_case_14: bool
    next_milestone: int | None = None
    days_to_next_milestone: int | None = None

    @classmethod
    def from_snapshot(cls, snapshot: StreakSnapshot) -> StreakResponse:
        state = snapshot.state
        return cls(
            streak_days=state.streak_days,
            streak_start_day=state.streak_start_day,
            streak_end_day=state.streak_end_day,
            today_earned_cents=state.today_earned_cents,
            today_qualified=state.today_qualified,
            remaining_today_cents=state.remaining_today_cents,
            can_keep_today=state.can_keep_today,
            claimed_case_7=snapshot.claimed_case_7,
            claimed_case_14=snapshot.claimed_case_14,
            available_case_7=snapshot.available_case_7,
            available_case_14=snapshot.available_case_14,
            next_milestone=snapshot.next_milestone,
            days_to_next_milestone=snapshot.days_to_next_milestone,
        )


class StreakCaseResponse(BaseModel):
    ok: bool = True
    reward: RewardResponse
    streak: StreakResponse
