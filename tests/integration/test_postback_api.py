"""Offerwall postback endpoints end to end."""

from __future__ import annotations

import hashlib
import hmac

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from easyearn.db.models import TaskClaim


async def _claim_count(session_factory) -> int:
    async with session_factory() as session:
        return int(await session.scalar(select(func.count(TaskClaim.id))) or 0)


class TestAdGemPostback:
    @pytest.mark.asyncio
    async def test_signed_callback_credits(self, client: AsyncClient, configure, make_user, fetch_user):
        configure(ADGEM_POSTBACK_SECRET="adgem-secret")
        user = await make_user()
        query = f"transaction_id=t1&player_id={user.id}&payout=1.00&goal_id=g1"
        verifier = hmac.new(
            b"adgem-secret", f"http://test/api/adgem/postback?{query}".encode(), hashlib.sha256
        ).hexdigest()

        response = await client.get(f"/api/adgem/postback?{query}&verifier={verifier}")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 100

    @pytest.mark.asyncio
    async def test_invalid_verifier(self, client: AsyncClient, configure, make_user, fetch_user):
        configure(ADGEM_POSTBACK_SECRET="adgem-secret")
        user = await make_user()
        response = await client.get(
            f"/api/adgem/postback?transaction_id=t1&player_id={user.id}&payout=1.00&verifier=deadbeef"
        )
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Invalid verifier."}
        assert (await fetch_user(user.id)).balance_cents == 0

    @pytest.mark.asyncio
    async def test_missing_parameters(self, client: AsyncClient):
        response = await client.get("/api/adgem/postback?payout=1.00")
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Missing required parameters."}

    @pytest.mark.asyncio
    async def test_missing_payout(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.get(f"/api/adgem/postback?transaction_id=t1&player_id={user.id}")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing payout amount."

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        url = f"/api/adgem/postback?transaction_id=t1&player_id={user.id}&payout=1.00"
        assert (await client.get(url)).json() == {"ok": True, "credited": True}
        assert (await client.get(url)).json() == {"ok": True, "duplicate": True}
        assert (await fetch_user(user.id)).balance_cents == 100

    @pytest.mark.asyncio
    async def test_form_post(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        response = await client.post(
            "/api/adgem/postback",
            data={"transaction_id": "t2", "player_id": user.id, "payout": "0.40"},
        )
        assert response.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 40

    @pytest.mark.asyncio
    async def test_unknown_user_is_acknowledged(self, client: AsyncClient):
        response = await client.get("/api/adgem/postback?transaction_id=t1&player_id=cnobody12345&payout=1")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "ignored": "Unknown user."}

    @pytest.mark.asyncio
    async def test_reversal(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        await client.get(f"/api/adgem/postback?transaction_id=t1&player_id={user.id}&payout=1.00")
        response = await client.get(f"/api/adgem/postback?transaction_id=t1&player_id={user.id}&payout=-1.00")
        assert response.json() == {"ok": True, "reversed": True}
        assert (await fetch_user(user.id)).balance_cents == 0

    @pytest.mark.asyncio
    async def test_reversal_without_claim(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.get(
            f"/api/adgem/postback?transaction_id=none&player_id={user.id}&payout=-1.00&state=chargeback"
        )
        assert response.json() == {"ok": True, "ignored": "No claim found for reversal."}

    @pytest.mark.asyncio
    async def test_debug_callback_does_not_touch_ledger(
        self, client: AsyncClient, session_factory, make_user, fetch_user
    ):
        user = await make_user()
        response = await client.get(
            f"/api/adgem/postback?transaction_id=t1&player_id={user.id}&payout=1.00&debug=true"
        )
        data = response.json()
        assert response.status_code == 200
        assert data["debug"] is True
        assert data["signature_valid"] is True
        assert data["parsed"]["tx"] == "t1"
        assert data["parsed"]["payout_cents"] == 100
        assert data["ignored"] == "Debug callback accepted without wallet credit."
        assert "token_valid" not in data
        assert (await fetch_user(user.id)).balance_cents == 0
        assert await _claim_count(session_factory) == 0


class TestBitLabsPostback:
    @pytest.mark.asyncio
    async def test_json_body(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        response = await client.post("/api/bitlabs/postback", json={"tx": "b1", "uid": user.id, "raw": 0.5})
        assert response.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 50

    @pytest.mark.asyncio
    async def test_missing_reward(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.get(f"/api/bitlabs/postback?tx=b1&uid={user.id}")
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Missing reward value."}

    @pytest.mark.asyncio
    async def test_invalid_hash(self, client: AsyncClient, configure, make_user):
        configure(BITLABS_APP_SECRET="bl-secret")
        user = await make_user()
        response = await client.get(f"/api/bitlabs/postback?tx=b1&uid={user.id}&raw=0.50&hash=bad")
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Invalid hash."}


class TestCpxPostback:
    @pytest.mark.asyncio
    async def test_hold_then_cancel(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        credit = await client.get(f"/api/cpx/postback?trans_id=c1&user_id={user.id}&amount_usd=5.00&status=1")
        assert credit.json() == {"ok": True, "credited": True}

        reversal = await client.get(f"/api/cpx/postback?trans_id=c1&user_id={user.id}&status=-2")
        assert reversal.json() == {"ok": True, "reversed": True}

        fresh = await fetch_user(user.id)
        assert fresh.balance_cents == 0
        assert fresh.lifetime_earned_cents == 0

    @pytest.mark.asyncio
    async def test_multipart_form_post(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        fields = {"trans_id": "m1", "user_id": user.id, "amount_usd": "1.00", "status": "1"}
        body = "".join(
            f"--FORMBOUNDARY\r\nContent-Disposition: form-data; name=\"{name}\"\r\n\r\n{value}\r\n"
            for name, value in fields.items()
        )
        response = await client.post(
            "/api/cpx/postback",
            content=f"{body}--FORMBOUNDARY--\r\n".encode(),
            headers={"Content-Type": "multipart/form-data; boundary=FORMBOUNDARY"},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 100

    @pytest.mark.asyncio
    async def test_only_debug_true_is_a_dry_run(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        dry = await client.get(f"/api/cpx/postback?trans_id=d1&user_id={user.id}&amount_usd=1.00&status=1&debug=TRUE")
        assert dry.json()["debug"] is True
        assert (await fetch_user(user.id)).balance_cents == 0

        real = await client.get(f"/api/cpx/postback?trans_id=d2&user_id={user.id}&amount_usd=1.00&status=1&debug=1")
        assert real.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 100


class TestKiwiwallPostback:
    @pytest.mark.asyncio
    async def test_text_acknowledgement(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        response = await client.get(f"/api/kiwiwall?trans_id=k1&user_id={user.id}&amount=1.50&status=1")
        assert response.status_code == 200
        assert response.text == "1"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["cache-control"] == "no-store"
        assert (await fetch_user(user.id)).balance_cents == 150

    @pytest.mark.asyncio
    async def test_missing_parameters_answer_zero(self, client: AsyncClient):
        response = await client.get("/api/kiwiwall?amount=1.50")
        assert response.status_code == 200
        assert response.text == "0"

    @pytest.mark.asyncio
    async def test_documented_signature(self, client: AsyncClient, configure, make_user, fetch_user):
        configure(KIWIWALL_SECRET_KEY="kw-secret")
        user = await make_user()
        signature = hashlib.md5(f"{user.id}:0.75:kw-secret".encode()).hexdigest()  # noqa: S324
        response = await client.get(f"/api/kiwiwall?trans_id=k2&user_id={user.id}&amount=0.75&signature={signature}")
        assert response.text == "1"
        assert (await fetch_user(user.id)).balance_cents == 75

    @pytest.mark.asyncio
    async def test_bad_signature(self, client: AsyncClient, configure, make_user, fetch_user):
        configure(KIWIWALL_SECRET_KEY="kw-secret")
        user = await make_user()
        response = await client.get(f"/api/kiwiwall?trans_id=k2&user_id={user.id}&amount=0.75&signature=abc")
        assert response.status_code == 200
        assert response.text == "0"
        assert (await fetch_user(user.id)).balance_cents == 0

    @pytest.mark.asyncio
    async def test_store_failure_asks_for_retry(self, client: AsyncClient, make_user):
        user = await make_user()
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("database is down")))
        with patch("easyearn.offerwalls.router.credit_offer", new=failing):
            response = await client.get(f"/api/kiwiwall?trans_id=k3&user_id={user.id}&amount=1.50&status=1")
        assert response.status_code == 500
        assert response.text == "0"

    @pytest.mark.asyncio
    async def test_reversal_status(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        await client.get(f"/api/kiwiwall?trans_id=k1&user_id={user.id}&amount=1.50&status=1")
        response = await client.get(f"/api/kiwiwall?trans_id=k1&user_id={user.id}&amount=1.50&status=2")
        assert response.text == "1"
        assert (await fetch_user(user.id)).balance_cents == 0


class TestTheoremReachPostback:
    @pytest.mark.asyncio
    async def test_completion_credits(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        response = await client.get(
            f"/api/theoremreach/postback?transaction_id={user.id}::s1&user_id={user.id}&amount=0.50&result=10"
        )
        assert response.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 50

    @pytest.mark.asyncio
    async def test_unbound_transaction(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.get(
            f"/api/theoremreach/postback?transaction_id=cother123456::s1&user_id={user.id}&amount=0.50&result=10"
        )
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Invalid transaction binding."}

    @pytest.mark.asyncio
    async def test_non_completion_result_is_ignored(self, client: AsyncClient, make_user, fetch_user):
        user = await make_user()
        response = await client.get(
            f"/api/theoremreach/postback?transaction_id={user.id}::s1&user_id={user.id}&amount=0.50&result=2"
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "ignored": "Ignored callback result 2."}
        assert (await fetch_user(user.id)).balance_cents == 0

    @pytest.mark.asyncio
    async def test_api_token_enforced(self, client: AsyncClient, configure, make_user, fetch_user):
        configure(THEOREMREACH_APP_TOKEN="tr-token")
        user = await make_user()
        url = f"/api/theoremreach/postback?transaction_id={user.id}::s1&user_id={user.id}&amount=0.50&result=10"

        denied = await client.get(url)
        assert denied.status_code == 401
        assert denied.json() == {"ok": False, "error": "Invalid API key."}

        accepted = await client.get(url, headers={"X-Api-Key": "tr-token"})
        assert accepted.json() == {"ok": True, "credited": True}
        assert (await fetch_user(user.id)).balance_cents == 50

    @pytest.mark.asyncio
    async def test_unsigned_rejected_in_production(self, client: AsyncClient, configure, make_user):
        configure(EASYEARN_ENVIRONMENT="production")
        user = await make_user()
        response = await client.get(
            f"/api/theoremreach/postback?transaction_id={user.id}::s1&user_id={user.id}&amount=0.50&result=10"
        )
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Invalid hash."}

    @pytest.mark.asyncio
    async def test_debug_reports_token_state(self, client: AsyncClient, make_user):
        user = await make_user()
        response = await client.get(
            f"/api/theoremreach/postback?transaction_id={user.id}::s1&user_id={user.id}&debug=true"
        )
        data = response.json()
        assert data["debug"] is True
        assert data["token_valid"] is True
