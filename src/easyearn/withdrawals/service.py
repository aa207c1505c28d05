"""Withdrawal requests and their admin processing.

The balance is debited when a request is created. An admin then approves it,
cancels it (refunding the full amount) or marks it sent, which records the
payout, pays the referrer's bonus and emails the user after commit.

    PENDING -> APPROVED -> SENT
    PENDING | APPROVED -> CANCELED
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from easyearn.config import get_settings
from easyearn.db.models import Redemption, RedemptionStatus, TransactionType, User
from easyearn.email.service import EmailDelivery, EmailService
from easyearn.ledger.errors import LedgerError, LedgerErrorKind
from easyearn.ledger.service import apply_balance_change, format_usd, lock_user, unit_of_work, utcnow

logger = structlog.get_logger()

CODE_MAX_LENGTH = 120
CANCEL_REASON_MIN_LENGTH = 3
CANCEL_REASON_MAX_LENGTH = 200

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class PayoutMethod:
    method: str
    label: str
    min_amount_cents: int


PAYOUT_METHODS: dict[str, PayoutMethod] = {
    option.method: option
    for option in (
        PayoutMethod("PAYPAL", "PayPal", 500),
        PayoutMethod("APPLE_GIFT_CARD", "Apple Gift Card", 1000),
        PayoutMethod("AMAZON_GIFT_CARD", "Amazon Gift Card", 500),
        PayoutMethod("GOOGLE_PLAY_GIFT_CARD", "Google Play Gift Card", 1000),
        PayoutMethod("SPOTIFY_GIFT_CARD", "Spotify Gift Card", 1000),
        PayoutMethod("NETFLIX_GIFT_CARD", "Netflix Gift Card", 1000),
        PayoutMethod("PLAYSTATION_GIFT_CARD", "PlayStation Gift Card", 1000),
        PayoutMethod("NINTENDO_GIFT_CARD", "Nintendo Gift Card", 1000),
        PayoutMethod("XBOX_GIFT_CARD", "Xbox Gift Card", 1000),
        PayoutMethod("STARBUCKS_GIFT_CARD", "Starbucks Gift Card", 500),
        PayoutMethod("DOORDASH_GIFT_CARD", "DoorDash Gift Card", 1000),
        PayoutMethod("STEAM_GIFT_CARD", "Steam Gift Card", 2000),
        PayoutMethod("VALORANT_GIFT_CARD", "Valorant Gift Card", 1000),
        PayoutMethod("LEAGUE_OF_LEGENDS_GIFT_CARD", "League of Legends Gift Card", 1000),
        PayoutMethod("DISCORD_NITRO", "Discord Nitro", 300),
        PayoutMethod("ROBLOX_GIFT_CARD", "Roblox Gift Card", 1000),
        PayoutMethod("VISA_GIFT_CARD", "Visa Gift Card", 2000),
    )
}

GIFT_CARD_METHODS = frozenset(method for method in PAYOUT_METHODS if method != "PAYPAL")


class AdminAction(str, enum.Enum):
    APPROVE = "approve"
    CANCEL = "cancel"
    SEND = "send"


@dataclass(frozen=True)
class WithdrawalRequestResult:
    redemption_id: int
    amount_cents: int
    balance_cents: int


@dataclass(frozen=True)
class AdminActionResult:
    redemption_id: int
    status: RedemptionStatus
    referral_bonus_cents: int = 0
    email: EmailDelivery | None = None


@dataclass(frozen=True)
class _SentNotice:
    to_email: str
    display_name: str
    amount_cents: int
    method: str
    code: str | None
    redemption_id: int


def referral_bonus_cents(amount_cents: int, percent: float | None = None) -> int:
    """Referrer share of a completed withdrawal, rounded half up."""
    rate = get_settings().referral_bonus_percent if percent is None else percent
    return int(amount_cents * rate + 0.5)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_PATTERN.match(value))


async def request_withdrawal(
    db: AsyncSession,
    user_id: str,
    method: str,
    amount_cents: int,
    payout_email: str | None = None,
) -> WithdrawalRequestResult:
    """Debit the balance and open a PENDING redemption.

    Raises LedgerError: INVALID_AMOUNT for unknown methods, amounts under the
    method minimum or a missing PayPal email; ACCOUNT_RESTRICTED for muted or
    terminated accounts; INSUFFICIENT_BALANCE when the balance cannot cover it.
    """
    option = PAYOUT_METHODS.get(method)
    if option is None:
        raise LedgerError(LedgerErrorKind.INVALID_AMOUNT, "Redemption option is unavailable.")
    if amount_cents < option.min_amount_cents:
        raise LedgerError(
            LedgerErrorKind.INVALID_AMOUNT,
            f"Minimum for {option.label} is {format_usd(option.min_amount_cents)}.",
        )
    email = (payout_email or "").strip().lower()
    if option.method == "PAYPAL" and not is_valid_email(email):
        raise LedgerError(LedgerErrorKind.INVALID_AMOUNT, "Enter a valid PayPal email before redeeming.")

    async with unit_of_work(db):
        user = await lock_user(db, user_id)
        if not user.is_active:
            raise LedgerError(
                LedgerErrorKind.ACCOUNT_RESTRICTED,
                "Muted or terminated accounts cannot request withdrawals.",
            )

        await apply_balance_change(
            db,
            user_id,
            -amount_cents,
            0,
            TransactionType.WITHDRAWAL,
            -amount_cents,
            f"Withdrawal request via {option.label} ({format_usd(amount_cents)} charged, pending admin approval)",
        )
        redemption = Redemption(
            user_id=user_id,
            method=option.method,
            amount_cents=amount_cents,
            status=RedemptionStatus.PENDING.value,
            payout_email=email if option.method == "PAYPAL" else None,
            created_at=utcnow(),
        )
        db.add(redemption)
        await db.flush()
        redemption_id = redemption.id

    balance = await db.scalar(select(User.balance_cents).where(User.id == user_id))
    logger.info("withdrawal_requested", user_id=user_id, method=method, amount_cents=amount_cents)
    return WithdrawalRequestResult(
        redemption_id=redemption_id,
        amount_cents=amount_cents,
        balance_cents=int(balance or 0),
    )


async def _mark_processed(
    db: AsyncSession,
    redemption_id: int,
    admin_id: str,
    status: RedemptionStatus,
    now: datetime,
    **values: object,
) -> None:
    await db.execute(
        update(Redemption)
        .where(Redemption.id == redemption_id)
        .values(status=status.value, processed_by_id=admin_id, processed_at=now, **values)
        .execution_options(synchronize_session=False)
    )


async def process_withdrawal(
    db: AsyncSession,
    redemption_id: int,
    admin_id: str,
    action: AdminAction,
    reason: str | None = None,
    code: str | None = None,
    email_service: EmailService | None = None,
    now: datetime | None = None,
) -> AdminActionResult:
    """Apply an admin action to a redemption.

    The withdrawal email for ``send`` goes out only after the unit of work has
    committed; its outcome is reported, not raised.
    """
    now = now or utcnow()
    notice: _SentNotice | None = None
    bonus = 0

    async with unit_of_work(db):
        redemption = await db.scalar(
            select(Redemption)
            .where(Redemption.id == redemption_id)
            .options(selectinload(Redemption.user))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if redemption is None:
            raise LedgerError(LedgerErrorKind.REDEMPTION_NOT_FOUND)
        status = RedemptionStatus(redemption.status)
        owner = redemption.user
        owner_id = redemption.user_id
        amount = redemption.amount_cents

        if action is AdminAction.APPROVE:
            if status is not RedemptionStatus.PENDING:
                raise LedgerError(LedgerErrorKind.INVALID_STATUS_TRANSITION)
            new_status = RedemptionStatus.APPROVED
            await _mark_processed(db, redemption_id, admin_id, new_status, now)

        elif action is AdminAction.CANCEL:
            if status not in (RedemptionStatus.PENDING, RedemptionStatus.APPROVED):
                raise LedgerError(LedgerErrorKind.INVALID_STATUS_TRANSITION)
            cancel_reason = (reason or "").strip()
            if len(cancel_reason) < CANCEL_REASON_MIN_LENGTH:
                raise LedgerError(LedgerErrorKind.CANCEL_REASON_REQUIRED)
            if len(cancel_reason) > CANCEL_REASON_MAX_LENGTH:
                raise LedgerError(LedgerErrorKind.CANCEL_REASON_REQUIRED, "Cancel reason is too long.")
            new_status = RedemptionStatus.CANCELED
            await _mark_processed(db, redemption_id, admin_id, new_status, now, cancel_reason=cancel_reason)
            await lock_user(db, owner_id)
            await apply_balance_change(
                db,
                owner_id,
                amount,
                0,
                TransactionType.WITHDRAWAL_REFUND,
                amount,
                f"Withdrawal canceled and refunded: {cancel_reason}",
            )

        else:
            if status is not RedemptionStatus.APPROVED:
                raise LedgerError(LedgerErrorKind.INVALID_STATUS_TRANSITION)
            gift_code = (code or "").strip() or None
            if gift_code and len(gift_code) > CODE_MAX_LENGTH:
                raise LedgerError(LedgerErrorKind.CODE_REQUIRED, "CODE is too long.")
            if gift_code is None and redemption.method in GIFT_CARD_METHODS:
                raise LedgerError(LedgerErrorKind.CODE_REQUIRED)

            new_status = RedemptionStatus.SENT
            await db.execute(
                update(User)
                .where(User.id == owner_id)
                .values(
                    {
                        User.total_withdrawn_cents: User.total_withdrawn_cents + amount,
                        User.last_withdrawal_at: now,
                    }
                )
                .execution_options(synchronize_session=False)
            )

            referrer_id = owner.referred_by_id
            if referrer_id is not None:
                referrer = await db.scalar(select(User.id).where(User.id == referrer_id).with_for_update())
                if referrer is not None:
                    bonus = referral_bonus_cents(amount)
                    if bonus > 0:
                        await apply_balance_change(
                            db,
                            referrer_id,
                            bonus,
                            bonus,
                            TransactionType.REFERRAL_BONUS,
                            bonus,
                            "5% referral bonus from completed withdrawal",
                            source_user_id=owner_id,
                        )

            await _mark_processed(
                db,
                redemption_id,
                admin_id,
                new_status,
                now,
                note=gift_code,
                referral_bonus_cents=bonus,
                referral_bonus_paid_at=now if bonus > 0 else None,
            )
            notice = _SentNotice(
                to_email=owner.email,
                display_name=owner.display_name,
                amount_cents=amount,
                method=redemption.method,
                code=gift_code,
                redemption_id=redemption_id,
            )

    logger.info(
        "withdrawal_processed",
        redemption_id=redemption_id,
        admin_id=admin_id,
        action=action.value,
        status=new_status.value,
        referral_bonus_cents=bonus,
    )

    delivery: EmailDelivery | None = None
    if notice is not None:
        service = email_service or EmailService()
        delivery = await service.send_withdrawal_processed(
            to=notice.to_email,
            display_name=notice.display_name,
            amount_cents=notice.amount_cents,
            method=notice.method,
            code=notice.code,
            redemption_id=str(notice.redemption_id),
        )
    return AdminActionResult(
        redemption_id=redemption_id,
        status=new_status,
        referral_bonus_cents=bonus,
        email=delivery,
    )
