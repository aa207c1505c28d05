"""
Postback reconciliation: turn a verified callback into an idempotent ledger mutation.

Per (provider, transaction id) a claim moves through:

    unseen -> credited (pending or final) -> reversed

A repeated credit is a duplicate, a reversal with no claim is ignored and a
repeated reversal is a duplicate. Each transition runs in one unit of work keyed
by the provider task key; the unique constraint on ``task_claims.task_key`` is
the final arbiter when two deliveries race.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.db.models import TaskClaim, Transaction, TransactionType
from easyearn.ledger.errors import LedgerError, LedgerErrorKind
from easyearn.ledger.pending import pending_days_for, pending_earn_notice, pending_until_for
from easyearn.ledger.service import (
    append_transaction,
    apply_balance_change,
    lock_user,
    unit_of_work,
    utcnow,
)
from easyearn.offerwalls.providers import ParsedPostback, ProviderSpec

logger = structlog.get_logger()


class PostbackOutcome(str, enum.Enum):
    CREDITED = "CREDITED"
    PENDING = "PENDING"
    DUPLICATE = "DUPLICATE"
    REVERSED = "REVERSED"
    PENDING_CANCELED = "PENDING_CANCELED"
    ALREADY_REVERSED = "ALREADY_REVERSED"
    IGNORED_UNKNOWN_USER = "IGNORED_UNKNOWN_USER"
    IGNORED_INACTIVE_USER = "IGNORED_INACTIVE_USER"
    IGNORED_NO_CLAIM = "IGNORED_NO_CLAIM"
    IGNORED_REVERSAL_USER_MISSING = "IGNORED_REVERSAL_USER_MISSING"
    IGNORED_NON_POSITIVE = "IGNORED_NON_POSITIVE"


_CREDIT_ERRORS: dict[LedgerErrorKind, PostbackOutcome] = {
    LedgerErrorKind.USER_NOT_FOUND: PostbackOutcome.IGNORED_UNKNOWN_USER,
    LedgerErrorKind.ACCOUNT_RESTRICTED: PostbackOutcome.IGNORED_INACTIVE_USER,
    LedgerErrorKind.DUPLICATE: PostbackOutcome.DUPLICATE,
}

_REVERSAL_ERRORS: dict[LedgerErrorKind, PostbackOutcome] = {
    LedgerErrorKind.CLAIM_NOT_FOUND: PostbackOutcome.IGNORED_NO_CLAIM,
    LedgerErrorKind.ALREADY_REVERSED: PostbackOutcome.ALREADY_REVERSED,
    LedgerErrorKind.USER_NOT_FOUND: PostbackOutcome.IGNORED_REVERSAL_USER_MISSING,
}


async def credit_offer(
    db: AsyncSession,
    spec: ProviderSpec,
    postback: ParsedPostback,
    now: datetime | None = None,
) -> PostbackOutcome:
    """Record a completed offer. Holds payouts above $3.00 instead of crediting them.

    Store failures other than the task-key race propagate so the caller can
    answer 500 and the provider retries.
    """
    if not postback.tx or not postback.user_id:
        msg = "credit requires tx and user_id"
        raise ValueError(msg)

    payout = postback.payout_cents
    if payout is None or payout < 1:
        return PostbackOutcome.IGNORED_NON_POSITIVE

    now = now or utcnow()
    tx_id = postback.tx
    task_key = spec.task_key(postback)
    log = logger.bind(provider=spec.key, task_key=task_key, user_id=postback.user_id, payout_cents=payout)
    if postback.payout_from_heuristic:
        log.warning("postback_payout_from_heuristic_field")

    pending_days = pending_days_for(payout)
    try:
        async with unit_of_work(db):
            user = await lock_user(db, postback.user_id)
            user_id = user.id
            if not user.is_active:
                raise LedgerError(LedgerErrorKind.ACCOUNT_RESTRICTED)

            existing = await db.scalar(select(TaskClaim.id).where(TaskClaim.task_key == task_key))
            if existing is not None:
                raise LedgerError(LedgerErrorKind.DUPLICATE)

            db.add(
                TaskClaim(
                    user_id=user_id,
                    task_key=task_key,
                    offerwall_name=spec.name,
                    offer_id=postback.offer_id or tx_id,
                    offer_title=spec.offer_title(postback),
                    payout_cents=payout,
                    claimed_at=now,
                    pending_until=pending_until_for(payout, now),
                    credited_at=None if pending_days > 0 else now,
                )
            )
            await db.flush()

            if pending_days > 0:
                await append_transaction(
                    db,
                    user_id,
                    TransactionType.EARN_PENDING,
                    payout,
                    f"{pending_earn_notice(payout, pending_days)} ({spec.name} tx: {tx_id})",
                )
            else:
                await apply_balance_change(
                    db,
                    user_id,
                    payout,
                    payout,
                    TransactionType.EARN,
                    payout,
                    spec.credited_description(tx_id),
                )
    except LedgerError as exc:
        outcome = _CREDIT_ERRORS.get(exc.kind)
        if outcome is None:
            raise
        log.info("postback_not_credited", outcome=outcome.value)
        return outcome
    except IntegrityError:
        log.info("postback_duplicate", reason="task_key_conflict")
        return PostbackOutcome.DUPLICATE

    if pending_days > 0:
        log.info("postback_pending", pending_days=pending_days)
        return PostbackOutcome.PENDING
    log.info("postback_credited")
    return PostbackOutcome.CREDITED


async def reverse_offer(
    db: AsyncSession,
    spec: ProviderSpec,
    postback: ParsedPostback,
    now: datetime | None = None,
) -> PostbackOutcome:
    """Undo a prior credit.

    A held claim is closed without touching the balance. A credited claim
    debits balance and lifetime earnings by the payout, clamped at zero, and
    records the full negative payout in the ledger.
    """
    if not postback.tx:
        msg = "reversal requires tx"
        raise ValueError(msg)

    now = now or utcnow()
    tx_id = postback.tx
    task_key = spec.task_key(postback)
    reversal_description = spec.reversed_description(tx_id)
    canceled_description = spec.pending_canceled_description(tx_id)
    log = logger.bind(provider=spec.key, task_key=task_key)

    try:
        async with unit_of_work(db):
            claim = await db.scalar(
                select(TaskClaim)
                .where(TaskClaim.task_key == task_key)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            if claim is None:
                raise LedgerError(LedgerErrorKind.CLAIM_NOT_FOUND)
            claim_id = claim.id
            user_id = claim.user_id
            payout = claim.payout_cents

            already = await db.scalar(
                select(Transaction.id)
                .where(
                    Transaction.user_id == user_id,
                    or_(
                        and_(
                            Transaction.type == TransactionType.EARN.value,
                            Transaction.description == reversal_description,
                        ),
                        and_(
                            Transaction.type == TransactionType.EARN_PENDING.value,
                            Transaction.description == canceled_description,
                        ),
                    ),
                )
                .limit(1)
            )
            if already is not None:
                raise LedgerError(LedgerErrorKind.ALREADY_REVERSED)

            outcome = PostbackOutcome.REVERSED
            closed_pending = False
            if claim.credited_at is None:
                # A concurrent release sweep may have credited the claim meanwhile.
                closed = await db.execute(
                    update(TaskClaim)
                    .where(TaskClaim.id == claim_id, TaskClaim.credited_at.is_(None))
                    .values(credited_at=now, pending_until=now)
                    .execution_options(synchronize_session=False)
                )
                closed_pending = closed.rowcount == 1

            if closed_pending:
                await append_transaction(db, user_id, TransactionType.EARN_PENDING, 0, canceled_description)
                outcome = PostbackOutcome.PENDING_CANCELED
            else:
                await lock_user(db, user_id)
                await apply_balance_change(
                    db,
                    user_id,
                    -payout,
                    -payout,
                    TransactionType.EARN,
                    -payout,
                    reversal_description,
                    clamp=True,
                )
    except LedgerError as exc:
        outcome = _REVERSAL_ERRORS.get(exc.kind)
        if outcome is None:
            raise
        log.info("postback_reversal_ignored", outcome=outcome.value)
        return outcome

    log.info("postback_reversed", outcome=outcome.value, user_id=user_id, payout_cents=payout)
    return outcome


MANUAL_OFFER_MAX_CENTS = 100_000
MANUAL_TASK_KEY_PREFIX = "manual-admin-offer"


@dataclass(frozen=True)
class ManualCreditResult:
    amount_cents: int
    pending: bool
    pending_days: int
    offer_id: str


async def credit_manual_offer(
    db: AsyncSession,
    user_id: str,
    offerwall_name: str,
    offer_title: str,
    amount_cents: int,
    offer_id: str | None = None,
    now: datetime | None = None,
) -> ManualCreditResult:
    """Credit an offer on a user's behalf, following the same hold policy as postbacks.

    The offer id defaults to ``ADMIN-<epoch ms>``. Reusing an offer id is rejected
    as a duplicate.
    """
    if amount_cents < 1:
        raise LedgerError(LedgerErrorKind.INVALID_AMOUNT, "Enter a valid USD amount.")
    if amount_cents > MANUAL_OFFER_MAX_CENTS:
        raise LedgerError(LedgerErrorKind.INVALID_AMOUNT, "Manual offer amount is too large.")

    now = now or utcnow()
    offerwall_name = offerwall_name.strip()
    offer_title = offer_title.strip()
    offer_id = (offer_id or "").strip() or f"ADMIN-{time.time_ns() // 1_000_000}"
    task_key = f"{MANUAL_TASK_KEY_PREFIX}:{offer_id}"
    pending_days = pending_days_for(amount_cents)
    log = logger.bind(task_key=task_key, user_id=user_id, payout_cents=amount_cents)

    try:
        async with unit_of_work(db):
            try:
                user = await lock_user(db, user_id)
            except LedgerError:
                raise LedgerError(LedgerErrorKind.USER_NOT_FOUND, "Target user not found.") from None
            if not user.is_active:
                raise LedgerError(
                    LedgerErrorKind.ACCOUNT_RESTRICTED, "Target user account must be active.", status_code=400
                )

            if await db.scalar(select(TaskClaim.id).where(TaskClaim.task_key == task_key)) is not None:
                raise LedgerError(LedgerErrorKind.DUPLICATE, "This manual offer was already credited.")

            db.add(
                TaskClaim(
                    user_id=user_id,
                    task_key=task_key,
                    offerwall_name=offerwall_name,
                    offer_id=offer_id,
                    offer_title=offer_title,
                    payout_cents=amount_cents,
                    claimed_at=now,
                    pending_until=pending_until_for(amount_cents, now),
                    credited_at=None if pending_days > 0 else now,
                )
            )
            await db.flush()

            if pending_days > 0:
                await append_transaction(
                    db,
                    user_id,
                    TransactionType.EARN_PENDING,
                    amount_cents,
                    f"{pending_earn_notice(amount_cents, pending_days)} ({offerwall_name}: {offer_title})",
                )
            else:
                await apply_balance_change(
                    db,
                    user_id,
                    amount_cents,
                    amount_cents,
                    TransactionType.EARN,
                    amount_cents,
                    f"Manual offer credit from {offerwall_name}: {offer_title}",
                )
    except IntegrityError:
        raise LedgerError(LedgerErrorKind.DUPLICATE, "This manual offer was already credited.") from None

    log.info("manual_offer_credited", pending_days=pending_days)
    return ManualCreditResult(
        amount_cents=amount_cents,
        pending=pending_days > 0,
        pending_days=pending_days,
        offer_id=offer_id,
    )
