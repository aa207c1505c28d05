"""ORM models for the ledger schema.

Money is stored as integer cents. Transactions are append-only; balance changes
always go through easyearn.ledger.service so each one has a paired row.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from easyearn.db.base import Base, BigIntPK


def new_user_id() -> str:
    """Collision-resistant string id in the same shape the web tier issues (c + 24 chars)."""
    return "c" + uuid.uuid4().hex[:24]


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    MUTED = "MUTED"
    TERMINATED = "TERMINATED"


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TransactionType(str, enum.Enum):
    EARN = "EARN"
    EARN_PENDING = "EARN_PENDING"
    EARN_RELEASE = "EARN_RELEASE"
    STREAK_CASE = "STREAK_CASE"
    LEVEL_CASE = "LEVEL_CASE"
    WITHDRAWAL = "WITHDRAWAL"
    WITHDRAWAL_REFUND = "WITHDRAWAL_REFUND"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    PROMO_CODE_CREATE = "PROMO_CODE_CREATE"
    PROMO_CODE_REDEEM = "PROMO_CODE_REDEEM"
    WHEEL_SPIN = "WHEEL_SPIN"


class RedemptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELED = "CANCELED"
    SENT = "SENT"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Identity plus mutable financial state."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_user_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=UserRole.USER.value)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_earned_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_withdrawn_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    level_case_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    level_rewards_claimed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    wheel_last_spun_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_withdrawal_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    referred_by_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    task_claims: Mapped[list[TaskClaim]] = relationship("TaskClaim", back_populates="user")
    transactions: Mapped[list[Transaction]] = relationship(
        "Transaction", back_populates="user", foreign_keys="Transaction.user_id"
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


# ---------------------------------------------------------------------------
# Offer completions
# ---------------------------------------------------------------------------


class TaskClaim(Base):
    """One rewarded completion. task_key is the idempotency key."""

    __tablename__ = "task_claims"
    __table_args__ = (
        Index("idx_task_claims_user_claimed", "user_id", "claimed_at"),
        Index("idx_task_claims_user_pending", "user_id", "credited_at", "pending_until"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    offerwall_name: Mapped[str] = mapped_column(String(64), nullable=False)
    offer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    offer_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pending_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="task_claims")


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Transaction(Base):
    """Append-only ledger entry. Negative amounts are debits."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_user_type_description", "user_id", "type", "description"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    source_user_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped[User] = relationship("User", back_populates="transactions", foreign_keys=[user_id])


# ---------------------------------------------------------------------------
# Gamification
# ---------------------------------------------------------------------------


class StreakCaseOpen(Base):
    """A milestone case claimed for one streak instance (identified by its start day)."""

    __tablename__ = "streak_case_opens"
    __table_args__ = (
        UniqueConstraint("user_id", "streak_start_day", "tier", name="uq_streak_case_opens_user_start_tier"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    streak_start_day: Mapped[date] = mapped_column(Date, nullable=False)
    streak_days_at_open: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class LevelCaseOpen(Base):
    """History of level-up case openings."""

    __tablename__ = "level_case_opens"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    level_at_open: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


class Redemption(Base):
    """A withdrawal request. The balance is debited when the request is created."""

    __tablename__ = "redemptions"
    __table_args__ = (Index("idx_redemptions_status_created", "status", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RedemptionStatus.PENDING.value)
    payout_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    note: Mapped[str | None] = mapped_column(String(120), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    referral_bonus_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    referral_bonus_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped[User] = relationship("User", foreign_keys=[user_id])
