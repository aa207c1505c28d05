"""Ledger primitives: balance mutation, transaction append and unit-of-work handling.

Every balance change is a conditional SQL UPDATE on the user row paired with one
Transaction insert, both inside the caller's unit of work. Nothing here commits
on its own; ``unit_of_work`` owns commit and rollback.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.db.models import Transaction, TransactionType, User
from easyearn.ledger.errors import LedgerError, LedgerErrorKind

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without timezone support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_usd(cents: int) -> str:
    """Render integer cents as a dollar string, e.g. 250 -> "$2.50"."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:.2f}"


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit everything done in the block, or roll all of it back on any exception."""
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


async def lock_user(db: AsyncSession, user_id: str) -> User:
    """Load the user row with a row lock and fresh column values.

    Raises LedgerError(USER_NOT_FOUND) when the row does not exist.
    """
    result = await db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise LedgerError(LedgerErrorKind.USER_NOT_FOUND)
    return user


async def refresh_user(db: AsyncSession, user_id: str) -> User | None:
    """Re-read a user after bulk updates so balances reflect the database."""
    result = await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def append_transaction(
    db: AsyncSession,
    user_id: str,
    tx_type: TransactionType,
    amount: int,
    description: str,
    source_user_id: str | None = None,
) -> Transaction:
    """Insert one ledger row. Used directly only for entries with no balance effect."""
    tx = Transaction(
        user_id=user_id,
        type=tx_type.value,
        amount_cents=amount,
        description=description,
        source_user_id=source_user_id,
        created_at=utcnow(),
    )
    db.add(tx)
    await db.flush()
    return tx


def _delta_expression(column: Any, delta: int, clamp: bool) -> Any:  # noqa: ANN401
    if delta >= 0:
        return column + delta
    decrement = -delta
    if clamp:
        return case((column > decrement, column - decrement), else_=0)
    return column - decrement


async def update_balances(
    db: AsyncSession,
    user_id: str,
    balance_delta: int,
    lifetime_delta: int,
    clamp: bool = False,
) -> None:
    """Conditional UPDATE of the user's balance and lifetime earnings.

    Positive deltas are plain increments. Negative deltas either clamp at zero
    (``clamp=True``, used by reversals) or are rejected with
    INSUFFICIENT_BALANCE when the balance cannot cover them (spends).
    """
    values: dict[Any, Any] = {}
    if balance_delta:
        values[User.balance_cents] = _delta_expression(User.balance_cents, balance_delta, clamp)
    if lifetime_delta:
        values[User.lifetime_earned_cents] = _delta_expression(User.lifetime_earned_cents, lifetime_delta, clamp)
    if not values:
        return

    stmt = update(User).where(User.id == user_id)
    if balance_delta < 0 and not clamp:
        stmt = stmt.where(User.balance_cents >= -balance_delta)
    result = await db.execute(stmt.values(values).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        exists = await db.scalar(select(User.id).where(User.id == user_id))
        if exists is None:
            raise LedgerError(LedgerErrorKind.USER_NOT_FOUND)
        raise LedgerError(LedgerErrorKind.INSUFFICIENT_BALANCE)


async def apply_balance_change(
    db: AsyncSession,
    user_id: str,
    balance_delta: int,
    lifetime_delta: int,
    tx_type: TransactionType,
    amount: int,
    description: str,
    source_user_id: str | None = None,
    clamp: bool = False,
) -> Transaction:
    """Adjust balance / lifetime earnings and append the paired transaction row."""
    await update_balances(db, user_id, balance_delta, lifetime_delta, clamp=clamp)
    tx = await append_transaction(db, user_id, tx_type, amount, description, source_user_id)
    logger.debug(
        "ledger_balance_changed",
        user_id=user_id,
        tx_type=tx_type.value,
        balance_delta=balance_delta,
        lifetime_delta=lifetime_delta,
        amount=amount,
    )
    return tx
