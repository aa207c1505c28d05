"""Offerwall postback endpoints (one GET/POST route per provider) and admin manual offer credits."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.auth.dependencies import get_current_admin
from easyearn.config import Settings, get_settings
from easyearn.database import get_session
from easyearn.db.models import User
from easyearn.ledger.errors import LedgerError
from easyearn.offerwalls.params import PostbackParams, merge_form, merge_json, parse_cents
from easyearn.offerwalls.providers import (
    ADGEM,
    BITLABS,
    CPX,
    KIWIWALL,
    THEOREMREACH,
    ProviderSpec,
    VerificationContext,
    tx_bound_to_user,
)
from easyearn.offerwalls.schemas import ManualOfferRequest, ManualOfferResponse
from easyearn.offerwalls.service import PostbackOutcome, credit_manual_offer, credit_offer, reverse_offer

logger = structlog.get_logger()

router = APIRouter(tags=["Offerwalls"])

_DEBUG_NOTICE = "Debug callback accepted without wallet credit."
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

_IGNORED_REASONS: dict[PostbackOutcome, str] = {
    PostbackOutcome.IGNORED_UNKNOWN_USER: "Unknown user.",
    PostbackOutcome.IGNORED_INACTIVE_USER: "User is not active.",
    PostbackOutcome.IGNORED_NO_CLAIM: "No claim found for reversal.",
    PostbackOutcome.IGNORED_REVERSAL_USER_MISSING: "User not found for reversal.",
    PostbackOutcome.IGNORED_NON_POSITIVE: "Non-positive amount.",
}


def outcome_body(outcome: PostbackOutcome) -> dict[str, object]:
    """JSON acknowledgement for a reconciliation outcome."""
    if outcome in (PostbackOutcome.CREDITED, PostbackOutcome.PENDING):
        return {"ok": True, "credited": True}
    if outcome in (PostbackOutcome.DUPLICATE, PostbackOutcome.ALREADY_REVERSED):
        return {"ok": True, "duplicate": True}
    if outcome in (PostbackOutcome.REVERSED, PostbackOutcome.PENDING_CANCELED):
        return {"ok": True, "reversed": True}
    return {"ok": True, "ignored": _IGNORED_REASONS[outcome]}


def text_ack(success: bool, status_code: int = 200) -> PlainTextResponse:
    """Plain ``1``/``0`` acknowledgement for providers that expect a text body."""
    return PlainTextResponse(
        "1" if success else "0",
        status_code=status_code,
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-store"},
    )


def _error(spec: ProviderSpec, status_code: int, message: str) -> Response:
    if spec.text_ack:
        # "0" with 200 rejects the callback; 500 asks the provider to retry.
        return text_ack(False, 500 if status_code >= 500 else 200)
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


def _ignored(spec: ProviderSpec, reason: str) -> Response:
    if spec.text_ack:
        return text_ack(True)
    return JSONResponse(content={"ok": True, "ignored": reason})


async def collect_params(request: Request, spec: ProviderSpec) -> tuple[PostbackParams, str, str]:
    """Query and body parameters, the raw body and the URL the signature was computed over."""
    params = PostbackParams.from_query(request.url.query)
    raw_body = ""
    if request.method == "POST":
        raw_body = (await request.body()).decode("utf-8", errors="replace")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            merge_json(params, raw_body)
        elif content_type.startswith(_FORM_TYPES):
            form = await request.form()
            merge_form(params, form.multi_items())

    if request.method == "GET" or spec.sign_request_url:
        raw_url = str(request.url)
    else:
        base = f"{request.url.scheme}://{request.url.netloc}{request.url.path}"
        query = params.to_query()
        raw_url = f"{base}?{query}" if query else base
    return params, raw_body, raw_url


async def handle_postback(
    spec: ProviderSpec,
    request: Request,
    db: AsyncSession,
    settings: Settings,
) -> Response:
    """Validate one callback and apply it to the ledger."""
    params, raw_body, raw_url = await collect_params(request, spec)
    postback = spec.parse(params)
    ctx = VerificationContext(
        raw_url=raw_url,
        raw_body=raw_body,
        header_api_token=request.headers.get("x-api-key"),
        secrets=settings.provider_secrets(spec.key),
        tokens=settings.provider_tokens(spec.key),
        production=settings.is_production,
    )
    log = logger.bind(provider=spec.key, tx=postback.tx, user_id=postback.user_id)

    if (params.get("debug") or "").strip().lower() == "true":
        body: dict[str, object] = {
            "ok": True,
            "debug": True,
            "signature_valid": spec.verify(postback, ctx),
            "parsed": postback.debug_view(),
            "ignored": _DEBUG_NOTICE,
        }
        if spec.token_keys:
            body["token_valid"] = spec.token_valid(postback, ctx)
        log.info("postback_debug", signature_valid=body["signature_valid"])
        return JSONResponse(content=body)

    if not postback.tx or not postback.user_id:
        log.info("postback_rejected", reason="missing_parameters")
        return _error(spec, 400, "Missing required parameters.")

    if spec.require_tx_binding and not tx_bound_to_user(postback):
        log.warning("postback_rejected", reason="tx_binding")
        return _error(spec, 400, "Invalid transaction binding.")

    if spec.enforce_token and not spec.token_valid(postback, ctx):
        log.warning("postback_rejected", reason="api_token")
        return _error(spec, 401, "Invalid API key.")

    if not spec.verify(postback, ctx):
        log.warning("postback_rejected", reason="signature")
        return _error(spec, 401, spec.signature_error)

    if postback.payout_cents is None and spec.missing_payout_error is not None:
        return _error(spec, 400, spec.missing_payout_error)

    reversal = spec.is_reversal(postback)
    if not reversal:
        if spec.text_ack and postback.payout_cents is None:
            return text_ack(False)
        if spec.success_result is not None:
            result = (postback.result or "").strip().lower()
            if result != spec.success_result:
                return _ignored(spec, f"Ignored callback result {postback.result or 'unknown'}.")
            payout = postback.payout_cents
            if payout is None or payout < 1:
                return _error(spec, 400, "Missing reward value.")

    try:
        if reversal:
            outcome = await reverse_offer(db, spec, postback)
        else:
            outcome = await credit_offer(db, spec, postback)
    except SQLAlchemyError:
        log.exception("postback_store_failed", reversal=reversal)
        action = "reversal" if reversal else "reward"
        return _error(spec, 500, f"Could not process {spec.name} {action}.")

    if spec.text_ack:
        return text_ack(True)
    return JSONResponse(content=outcome_body(outcome))


@router.api_route("/api/adgem/postback", methods=["GET", "POST"])
async def adgem_postback(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """AdGem S2S callback (HMAC-SHA256 ``verifier``)."""
    return await handle_postback(ADGEM, request, db, settings)


@router.api_route("/api/bitlabs/postback", methods=["GET", "POST"])
async def bitlabs_postback(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """BitLabs S2S callback (HMAC-SHA1 over the callback URL)."""
    return await handle_postback(BITLABS, request, db, settings)


@router.api_route("/api/cpx/postback", methods=["GET", "POST"])
async def cpx_postback(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """CPX Research callback (``status`` 1 completes, -2 reverses)."""
    return await handle_postback(CPX, request, db, settings)


@router.api_route("/api/kiwiwall", methods=["GET", "POST"])
async def kiwiwall_postback(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """KiwiWall callback. Answers ``1`` when handled and ``0`` otherwise."""
    return await handle_postback(KIWIWALL, request, db, settings)


@router.api_route("/api/theoremreach/postback", methods=["GET", "POST"])
async def theoremreach_postback(
    request: Request,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """TheoremReach survey callback (``result`` 10 is a completion)."""
    return await handle_postback(THEOREMREACH, request, db, settings)


@router.post("/api/v1/admin/offers/manual", response_model=ManualOfferResponse)
async def admin_manual_offer(
    body: ManualOfferRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
) -> ManualOfferResponse:
    """Credit an offer the provider never reported. Large amounts are held like postback payouts."""
    if not admin.is_active:
        raise HTTPException(status_code=403, detail="Account is not active.")
    amount_cents = parse_cents(body.amount, allow_negative=False)
    if amount_cents is None:
        raise HTTPException(status_code=400, detail="Enter a valid USD amount.")
    try:
        result = await credit_manual_offer(
            db,
            body.user_id,
            body.offerwall_name,
            body.offer_title,
            amount_cents,
            offer_id=body.offer_id,
        )
    except LedgerError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    except SQLAlchemyError as exc:
        logger.error("manual_offer_store_failed", user_id=body.user_id, error=str(exc))
        raise HTTPException(status_code=500, detail="Could not create manual offer credit.") from exc
    logger.info("manual_offer_created", admin_id=admin.id, user_id=body.user_id, offer_id=result.offer_id)
    return ManualOfferResponse(
        amount_cents=result.amount_cents,
        pending=result.pending,
        pending_days=result.pending_days,
        offer_id=result.offer_id,
    )
