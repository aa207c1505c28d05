"""Postback reconciliation against the ledger: credit, hold, release and reversal."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select, update

from easyearn.db.models import TaskClaim, TransactionType, User, UserStatus
from easyearn.ledger.pending import release_matured_pending
from easyearn.offerwalls.params import PostbackParams
from easyearn.offerwalls.providers import ADGEM, CPX, ProviderSpec
from easyearn.offerwalls.service import PostbackOutcome, credit_offer, reverse_offer

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _postback(spec: ProviderSpec, query: str):
    return spec.parse(PostbackParams.from_query(query))


async def _claims(session_factory, user_id: str) -> list[TaskClaim]:
    async with session_factory() as session:
        result = await session.execute(select(TaskClaim).where(TaskClaim.user_id == user_id))
        return list(result.scalars().all())


class TestCredit:
    @pytest.mark.asyncio
    async def test_instant_credit(self, db_session, make_user, fetch_user, fetch_transactions):
        """Payouts up to $3.00 are credited immediately with one EARN row."""
        user = await make_user()
        postback = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=2.00&goal_id=g1")

        outcome = await credit_offer(db_session, ADGEM, postback, now=NOW)

        assert outcome is PostbackOutcome.CREDITED
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 200
        assert fresh.lifetime_earned_cents == 200
        rows = await fetch_transactions(user.id)
        assert [(r.type, r.amount_cents, r.description) for r in rows] == [
            (TransactionType.EARN.value, 200, "AdGem reward credited (tx: t1)")
        ]

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, db_session, make_user, fetch_user, fetch_transactions):
        user = await make_user()
        postback = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=2.00")

        first = await credit_offer(db_session, ADGEM, postback, now=NOW)
        second = await credit_offer(db_session, ADGEM, postback, now=NOW)

        assert first is PostbackOutcome.CREDITED
        assert second is PostbackOutcome.DUPLICATE
        assert (await fetch_user(user.id)).balance_cents == 200
        assert len(await fetch_transactions(user.id)) == 1

    @pytest.mark.asyncio
    async def test_large_payout_is_held(self, db_session, session_factory, make_user, fetch_user, fetch_transactions):
        user = await make_user()
        postback = _postback(CPX, f"trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1&offer_id=9")

        outcome = await credit_offer(db_session, CPX, postback, now=NOW)

        assert outcome is PostbackOutcome.PENDING
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 0
        assert fresh.lifetime_earned_cents == 0
        (claim,) = await _claims(session_factory, user.id)
        assert claim.task_key == "cpx:c1"
        assert claim.offer_title == "Survey 9"
        assert claim.credited_at is None
        assert claim.pending_until.replace(tzinfo=timezone.utc) == NOW + timedelta(days=14)
        (row,) = await fetch_transactions(user.id)
        assert row.type == TransactionType.EARN_PENDING.value
        assert row.amount_cents == 500
        assert row.description.startswith("Offer completed: $5.00 is pending for 14 days")

    @pytest.mark.asyncio
    async def test_unknown_user_is_ignored(self, db_session):
        postback = _postback(ADGEM, "transaction_id=t1&player_id=cnobody12345&payout=1.00")
        assert await credit_offer(db_session, ADGEM, postback, now=NOW) is PostbackOutcome.IGNORED_UNKNOWN_USER

    @pytest.mark.asyncio
    async def test_inactive_user_is_ignored(self, db_session, session_factory, make_user):
        user = await make_user(status=UserStatus.MUTED.value)
        postback = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=1.00")
        assert await credit_offer(db_session, ADGEM, postback, now=NOW) is PostbackOutcome.IGNORED_INACTIVE_USER
        assert await _claims(session_factory, user.id) == []

    @pytest.mark.asyncio
    async def test_non_positive_payout(self, db_session, make_user):
        user = await make_user()
        postback = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=0")
        assert await credit_offer(db_session, ADGEM, postback, now=NOW) is PostbackOutcome.IGNORED_NON_POSITIVE

    @pytest.mark.asyncio
    async def test_concurrent_delivery_loses_on_task_key(
        self, db_session, session_factory, make_user, fetch_user, fetch_transactions
    ):
        """A rival claim committed after the duplicate check is caught by the unique task key."""
        user = await make_user()
        postback = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=2.00")
        read_scalar = db_session.scalar
        calls = {"n": 0}

        async def _scalar_with_rival_commit(statement, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] > 1:
                return await read_scalar(statement, *args, **kwargs)
            async with session_factory() as rival:
                rival.add(
                    TaskClaim(
                        user_id=user.id,
                        task_key=ADGEM.task_key(postback),
                        offerwall_name=ADGEM.name,
                        offer_id="t1",
                        payout_cents=200,
                        claimed_at=NOW,
                        credited_at=NOW,
                    )
                )
                await rival.commit()
            return None

        with patch.object(db_session, "scalar", new=_scalar_with_rival_commit):
            outcome = await credit_offer(db_session, ADGEM, postback, now=NOW)

        assert outcome is PostbackOutcome.DUPLICATE
        assert (await fetch_user(user.id)).balance_cents == 0
        assert await fetch_transactions(user.id) == []
        assert len(await _claims(session_factory, user.id)) == 1


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_after_hold(self, db_session, make_user, fetch_user, fetch_transactions):
        user = await make_user()
        postback = _postback(CPX, f"trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1")
        await credit_offer(db_session, CPX, postback, now=NOW)

        early = await release_matured_pending(db_session, user.id, NOW + timedelta(days=13))
        assert early.released_count == 0

        result = await release_matured_pending(db_session, user.id, NOW + timedelta(days=14))
        assert result.released_count == 1
        assert result.released_cents == 500
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 500
        assert fresh.lifetime_earned_cents == 500
        rows = await fetch_transactions(user.id)
        assert rows[-1].type == TransactionType.EARN_RELEASE.value
        assert rows[-1].description == "Pending offer released from CPX Research: Survey"

    @pytest.mark.asyncio
    async def test_second_sweep_releases_nothing(self, db_session, make_user, fetch_user):
        user = await make_user()
        for tx in ("a", "b"):
            postback = _postback(CPX, f"trans_id={tx}&user_id={user.id}&amount_usd=4.00&status=1")
            await credit_offer(db_session, CPX, postback, now=NOW)

        later = NOW + timedelta(days=20)
        first = await release_matured_pending(db_session, user.id, later)
        second = await release_matured_pending(db_session, user.id, later)

        assert (first.released_count, first.released_cents) == (2, 800)
        assert (second.released_count, second.released_cents) == (0, 0)
        assert (await fetch_user(user.id)).balance_cents == 800


class TestReversal:
    @pytest.mark.asyncio
    async def test_reversal_before_release_cancels_hold(self, db_session, make_user, fetch_user, fetch_transactions):
        """A held claim is closed without touching the balance."""
        user = await make_user()
        credit = _postback(CPX, f"trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1")
        await credit_offer(db_session, CPX, credit, now=NOW)

        reversal = _postback(CPX, f"trans_id=c1&user_id={user.id}&status=-2")
        outcome = await reverse_offer(db_session, CPX, reversal, now=NOW + timedelta(days=1))

        assert outcome is PostbackOutcome.PENDING_CANCELED
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 0
        assert fresh.lifetime_earned_cents == 0
        rows = await fetch_transactions(user.id)
        assert rows[-1].type == TransactionType.EARN_PENDING.value
        assert rows[-1].amount_cents == 0
        assert rows[-1].description == "CPX Research pending reward canceled (tx: c1)"

        release = await release_matured_pending(db_session, user.id, NOW + timedelta(days=30))
        assert release.released_count == 0
        assert (await fetch_user(user.id)).balance_cents == 0

    @pytest.mark.asyncio
    async def test_reversal_after_release_clamps_balance(
        self, db_session, session_factory, make_user, fetch_user, fetch_transactions
    ):
        """Balance never goes negative; the ledger row records the full payout."""
        user = await make_user()
        credit = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=2.00")
        await credit_offer(db_session, ADGEM, credit, now=NOW)
        async with session_factory() as session:
            await session.execute(update(User).where(User.id == user.id).values(balance_cents=50))
            await session.commit()

        reversal = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=-2.00")
        outcome = await reverse_offer(db_session, ADGEM, reversal, now=NOW)

        assert outcome is PostbackOutcome.REVERSED
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 0
        assert fresh.lifetime_earned_cents == 0
        rows = await fetch_transactions(user.id)
        assert (rows[-1].type, rows[-1].amount_cents, rows[-1].description) == (
            TransactionType.EARN.value,
            -200,
            "AdGem reward reversed (tx: t1)",
        )

    @pytest.mark.asyncio
    async def test_reversal_of_released_hold(self, db_session, make_user, fetch_user):
        user = await make_user()
        credit = _postback(CPX, f"trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1")
        await credit_offer(db_session, CPX, credit, now=NOW)
        await release_matured_pending(db_session, user.id, NOW + timedelta(days=15))

        reversal = _postback(CPX, f"trans_id=c1&user_id={user.id}&status=-2")
        assert await reverse_offer(db_session, CPX, reversal) is PostbackOutcome.REVERSED
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 0
        assert fresh.lifetime_earned_cents == 0

    @pytest.mark.asyncio
    async def test_repeated_reversal(self, db_session, make_user, fetch_transactions):
        user = await make_user()
        credit = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=1.00")
        await credit_offer(db_session, ADGEM, credit, now=NOW)
        reversal = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&state=reversed")

        assert await reverse_offer(db_session, ADGEM, reversal) is PostbackOutcome.REVERSED
        assert await reverse_offer(db_session, ADGEM, reversal) is PostbackOutcome.ALREADY_REVERSED
        assert len(await fetch_transactions(user.id)) == 2

    @pytest.mark.asyncio
    async def test_repeated_reversal_of_canceled_hold(self, db_session, make_user):
        user = await make_user()
        credit = _postback(CPX, f"trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1")
        await credit_offer(db_session, CPX, credit, now=NOW)
        reversal = _postback(CPX, f"trans_id=c1&user_id={user.id}&status=-2")

        assert await reverse_offer(db_session, CPX, reversal) is PostbackOutcome.PENDING_CANCELED
        assert await reverse_offer(db_session, CPX, reversal) is PostbackOutcome.ALREADY_REVERSED

    @pytest.mark.asyncio
    async def test_reversal_without_claim(self, db_session, make_user):
        user = await make_user()
        reversal = _postback(ADGEM, f"transaction_id=missing&player_id={user.id}&payout=-1")
        assert await reverse_offer(db_session, ADGEM, reversal) is PostbackOutcome.IGNORED_NO_CLAIM

    @pytest.mark.asyncio
    async def test_credit_after_reversal_is_duplicate(self, db_session, make_user, fetch_user):
        user = await make_user()
        credit = _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=1.00")
        await credit_offer(db_session, ADGEM, credit, now=NOW)
        await reverse_offer(db_session, ADGEM, _postback(ADGEM, f"transaction_id=t1&player_id={user.id}&payout=-1"))

        assert await credit_offer(db_session, ADGEM, credit, now=NOW) is PostbackOutcome.DUPLICATE
        assert (await fetch_user(user.id)).balance_cents == 0
