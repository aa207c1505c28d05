"""Referral wheel, level keys and level-up case endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from easyearn.db.models import TransactionType, UserRole, UserStatus
from easyearn.gamification.segments import LEVEL_CASE_SEGMENTS, WHEEL_SEGMENTS

WHEEL_IDS = {segment.id for segment in WHEEL_SEGMENTS}


async def _add_referrals(make_user, referrer_id: str, count: int, last_withdrawal_at: datetime) -> None:
    for _ in range(count):
        await make_user(referred_by_id=referrer_id, last_withdrawal_at=last_withdrawal_at)


class TestWheel:
    @pytest.mark.asyncio
    async def test_requires_active_referrals(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user()
        await _add_referrals(make_user, user.id, 9, datetime.now(timezone.utc) - timedelta(days=1))

        response = await client.post("/api/v1/wheel", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["detail"] == "You need 10 active referrals to open this case."

    @pytest.mark.asyncio
    async def test_stale_referrals_do_not_count(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user()
        await _add_referrals(make_user, user.id, 10, datetime.now(timezone.utc) - timedelta(days=20))
        response = await client.post("/api/v1/wheel", headers=auth_headers(user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_open_then_cooldown(self, client: AsyncClient, make_user, fetch_user, auth_headers):
        user = await make_user()
        await _add_referrals(make_user, user.id, 10, datetime.now(timezone.utc) - timedelta(days=1))

        response = await client.post("/api/v1/wheel", headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["reward"]["id"] in WHEEL_IDS
        assert data["balance_cents"] == data["reward"]["amount_cents"]
        assert data["next_available_at"] is not None
        fresh = await fetch_user(user.id)
        assert fresh.wheel_last_spun_at is not None
        assert fresh.lifetime_earned_cents == data["reward"]["amount_cents"]

        again = await client.post("/api/v1/wheel", headers=auth_headers(user))
        assert again.status_code == 429
        detail = again.json()["detail"]
        assert detail["message"] == "Case cooldown is still active."
        assert "next_available_at" in detail

    @pytest.mark.asyncio
    async def test_admin_test_mode(
        self, client: AsyncClient, make_user, fetch_user, fetch_transactions, auth_headers
    ):
        admin = await make_user(role=UserRole.ADMIN.value)

        first = await client.post("/api/v1/wheel", json={"admin_test": True}, headers=auth_headers(admin))
        second = await client.post("/api/v1/wheel", json={"admin_test": True}, headers=auth_headers(admin))

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["next_available_at"] is None
        assert (await fetch_user(admin.id)).wheel_last_spun_at is None
        rows = await fetch_transactions(admin.id)
        assert len(rows) == 2
        assert all(row.type == TransactionType.WHEEL_SPIN.value for row in rows)
        assert rows[0].description.startswith("Admin test case opening reward (")

    @pytest.mark.asyncio
    async def test_admin_test_ignored_for_regular_users(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user()
        response = await client.post("/api/v1/wheel", json={"admin_test": True}, headers=auth_headers(user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_muted_account(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user(status=UserStatus.MUTED.value)
        response = await client.post("/api/v1/wheel", headers=auth_headers(user))
        assert response.status_code == 403
        assert response.json()["detail"] == "Muted or terminated accounts cannot open the referral case."


class TestLevelRewards:
    @pytest.mark.asyncio
    async def test_claim_keys_once(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user(lifetime_earned_cents=5000)

        response = await client.post("/api/v1/levels/claim", headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "claimed_levels": 10,
            "keys_added": 13,
            "available_keys": 13,
            "claimed_up_to_level": 10,
        }
        again = await client.post("/api/v1/levels/claim", headers=auth_headers(user))
        assert again.status_code == 400
        assert again.json()["detail"] == "No unclaimed level rewards yet."

    @pytest.mark.asyncio
    async def test_claim_only_new_levels(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user(lifetime_earned_cents=6000, level_rewards_claimed=8, level_case_keys=2)
        response = await client.post("/api/v1/levels/claim", headers=auth_headers(user))
        data = response.json()
        assert data["claimed_levels"] == 4
        assert data["keys_added"] == 7
        assert data["available_keys"] == 9

    @pytest.mark.asyncio
    async def test_muted_account_cannot_claim(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user(lifetime_earned_cents=5000, status=UserStatus.MUTED.value)
        response = await client.post("/api/v1/levels/claim", headers=auth_headers(user))
        assert response.status_code == 403
        assert response.json()["detail"] == "Muted or terminated accounts cannot claim level rewards."


class TestLevelCase:
    @pytest.mark.asyncio
    async def test_open_spends_one_key(
        self, client: AsyncClient, make_user, fetch_user, fetch_transactions, auth_headers
    ):
        user = await make_user(level_case_keys=1, lifetime_earned_cents=600)

        response = await client.post("/api/v1/levels/case/open", headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()
        amount = data["reward"]["amount_cents"]
        assert amount in {segment.amount_cents for segment in LEVEL_CASE_SEGMENTS}
        assert data["available_keys"] == 0
        assert data["new_level"] == (600 + amount) // 500
        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == amount
        (row,) = await fetch_transactions(user.id)
        assert row.type == TransactionType.LEVEL_CASE.value
        assert row.description == f"Level-Up Case reward ({data['reward']['label']})"

    @pytest.mark.asyncio
    async def test_no_keys(self, client: AsyncClient, make_user, fetch_user, auth_headers):
        user = await make_user()
        response = await client.post("/api/v1/levels/case/open", headers=auth_headers(user))
        assert response.status_code == 400
        assert response.json()["detail"] == "No Level-Up Case keys available."
        assert (await fetch_user(user.id)).balance_cents == 0
