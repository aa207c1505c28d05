"""
Per-offerwall callback definitions.

Each provider is a ``ProviderSpec``: its parameter alias tables (tried in order,
first non-blank value wins), its reversal vocabulary, its task-key shape and its
signature scheme. Keeping the tables as data puts every alias a provider may
send in one reviewable place.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from easyearn.offerwalls.params import PostbackParams, find_param, format_amount, get_param, parse_cents
from easyearn.offerwalls.verification import (
    body_candidates,
    decode_if_possible,
    hmac_digest,
    hmac_digests,
    matches_any,
    normalize_hash,
    normalize_loose_hash,
    plain_digest,
    secret_prefix_digests,
    secret_suffix_digests,
    signing_inputs,
    strip_query_keys,
    url_candidates,
    verify_api_token,
)

API_TOKEN_KEYS = ("api_key", "apikey", "app_token", "app_id", "appid")

_CUID_PREFIX = re.compile(r"^c[a-z0-9]{8,}$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class ParsedPostback:
    """Provider-neutral view of one callback."""

    provider: str
    tx: str | None
    user_id: str | None
    usd_cents: int | None
    local_cents: int | None
    offer_id: str | None
    offer_title: str | None
    status: str | None
    result: str | None
    signature: str | None
    alt_signature: str | None
    api_token: str | None
    user_id_inferred: bool = False
    payout_from_heuristic: bool = False
    extras: Mapping[str, str | None] = field(default_factory=dict)

    @property
    def payout_cents(self) -> int | None:
        return self.usd_cents if self.usd_cents is not None else self.local_cents

    def debug_view(self) -> dict[str, object]:
        return {
            "tx": self.tx,
            "user_id": self.user_id,
            "user_id_inferred": self.user_id_inferred,
            "payout_from_heuristic": self.payout_from_heuristic,
            "usd_cents": self.usd_cents,
            "local_cents": self.local_cents,
            "payout_cents": self.payout_cents,
            "offer_id": self.offer_id,
            "offer_title": self.offer_title,
            "status": self.status,
            "result": self.result,
            "has_signature": bool(self.signature or self.alt_signature),
            **{key: value for key, value in self.extras.items()},
        }


@dataclass(frozen=True)
class VerificationContext:
    """Everything a signature scheme may look at besides the parsed fields."""

    raw_url: str
    raw_body: str
    header_api_token: str | None
    secrets: Sequence[str]
    tokens: Sequence[str] = ()
    production: bool = False


Verifier = Callable[[ParsedPostback, VerificationContext], bool]
ReversalRule = Callable[[ParsedPostback], bool]


@dataclass(frozen=True)
class ProviderSpec:
    key: str
    name: str
    verify: Verifier
    is_reversal: ReversalRule
    tx_keys: tuple[str, ...]
    user_keys: tuple[str, ...]
    usd_keys: tuple[str, ...]
    local_keys: tuple[str, ...] = ()
    offer_id_keys: tuple[str, ...] = ()
    title_keys: tuple[str, ...] = ()
    status_keys: tuple[str, ...] = ()
    result_keys: tuple[str, ...] = ()
    signature_keys: tuple[str, ...] = ()
    alt_signature_keys: tuple[str, ...] = ()
    token_keys: tuple[str, ...] = ()
    extra_keys: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    # Aliases that are conventions of particular integrations rather than
    # documented payout fields (sub_id2 carries the payout when configured so).
    heuristic_keys: frozenset[str] = frozenset()
    case_insensitive: bool = False
    allow_negative_amounts: bool = True
    infer_user_from_tx: bool = False
    default_title: str = "Offer"
    title_from_offer_id: str | None = None
    task_key_extra: str | None = None
    task_key_extra_default: str = ""
    text_ack: bool = False
    sign_request_url: bool = False
    signature_error: str = "Invalid hash."
    missing_payout_error: str | None = None
    require_tx_binding: bool = False
    enforce_token: bool = False
    success_result: str | None = None

    def parse(self, params: PostbackParams) -> ParsedPostback:
        def pick(keys: Sequence[str]) -> str | None:
            return get_param(params, keys, case_insensitive=self.case_insensitive)

        tx = pick(self.tx_keys)
        user_id = pick(self.user_keys)
        inferred = False
        usd_key, usd_raw = find_param(params, self.usd_keys, self.case_insensitive)
        if user_id is None and self.infer_user_from_tx:
            user_id = infer_user_id_from_tx(tx)
            inferred = user_id is not None

        return ParsedPostback(
            provider=self.key,
            tx=tx,
            user_id=user_id,
            usd_cents=parse_cents(usd_raw, allow_negative=self.allow_negative_amounts),
            local_cents=(
                parse_cents(pick(self.local_keys), allow_negative=self.allow_negative_amounts)
                if self.local_keys
                else None
            ),
            offer_id=pick(self.offer_id_keys) if self.offer_id_keys else None,
            offer_title=pick(self.title_keys) if self.title_keys else None,
            status=pick(self.status_keys) if self.status_keys else None,
            result=pick(self.result_keys) if self.result_keys else None,
            signature=pick(self.signature_keys) if self.signature_keys else None,
            alt_signature=pick(self.alt_signature_keys) if self.alt_signature_keys else None,
            api_token=pick(self.token_keys) if self.token_keys else None,
            user_id_inferred=inferred,
            payout_from_heuristic=usd_key in self.heuristic_keys,
            extras={name: pick(keys) for name, keys in self.extra_keys.items()},
        )

    def task_key(self, postback: ParsedPostback) -> str:
        if postback.tx is None:
            msg = "task key requires a transaction id"
            raise ValueError(msg)
        if self.task_key_extra is None:
            return f"{self.key}:{postback.tx}"
        extra = (postback.extras.get(self.task_key_extra) or "").strip() or self.task_key_extra_default
        return f"{self.key}:{postback.tx}:{extra}"

    def offer_title(self, postback: ParsedPostback) -> str:
        if self.title_from_offer_id is not None:
            return self.title_from_offer_id.format(postback.offer_id) if postback.offer_id else self.default_title
        return postback.offer_title or self.default_title

    def token_valid(self, postback: ParsedPostback, ctx: VerificationContext) -> bool:
        return verify_api_token([postback.api_token, ctx.header_api_token], ctx.tokens)

    def credited_description(self, tx: str) -> str:
        return f"{self.name} reward credited (tx: {tx})"

    def reversed_description(self, tx: str) -> str:
        return f"{self.name} reward reversed (tx: {tx})"

    def pending_canceled_description(self, tx: str) -> str:
        return f"{self.name} pending reward canceled (tx: {tx})"


def infer_user_id_from_tx(tx: str | None) -> str | None:
    """Recover the user id from transaction ids minted as ``<user>::<uuid>`` or ``<user>-<suffix>``."""
    if not tx:
        return None
    compact = tx.strip()
    if len(compact) < 8:
        return None
    if "::" in compact:
        candidate = compact.split("::", 1)[0]
        if _CUID_PREFIX.match(candidate):
            return candidate
    dash = compact.find("-")
    if dash > 0:
        candidate = compact[:dash]
        if _CUID_PREFIX.match(candidate):
            return candidate
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def _lower(value: str | None) -> str:
    return (value or "").strip().lower()


def _negative(postback: ParsedPostback) -> bool:
    payout = postback.payout_cents
    return payout is not None and payout < 0


# ---------------------------------------------------------------------------
# Reversal vocabularies
# ---------------------------------------------------------------------------


def _adgem_reversal(postback: ParsedPostback) -> bool:
    state = _lower(postback.status)
    return _negative(postback) or any(
        word in state for word in ("reverse", "chargeback", "reject", "cancel", "fraud")
    )


def _bitlabs_reversal(postback: ParsedPostback) -> bool:
    return _negative(postback) or _lower(postback.status) in {"reversal", "chargeback"}


def _cpx_reversal(postback: ParsedPostback) -> bool:
    return _parse_int(postback.status) == -2


_KIWIWALL_REVERSAL_WORDS = frozenset(
    {
        "reversal",
        "chargeback",
        "cancel",
        "cancelled",
        "canceled",
        "rejected",
        "declined",
        "failed",
        "fraud",
        "revoked",
        "-1",
        "2",
        "3",
        "4",
        "5",
    }
)


def _kiwiwall_reversal(postback: ParsedPostback) -> bool:
    return _negative(postback) or _lower(postback.status) in _KIWIWALL_REVERSAL_WORDS


def _theoremreach_reversal(postback: ParsedPostback) -> bool:
    words = {"reversal", "chargeback", "cancel"}
    result = _lower(postback.result)
    return (
        _negative(postback)
        or _lower(postback.status) in words
        or result in words
        or result in {"3", "4", "5"}
    )


# ---------------------------------------------------------------------------
# Signature schemes
# ---------------------------------------------------------------------------


def _adgem_verify(postback: ParsedPostback, ctx: VerificationContext) -> bool:
    if not ctx.secrets:
        return True
    incoming = normalize_hash(postback.signature or "")
    if not incoming:
        return False
    stripped = strip_query_keys(ctx.raw_url, ("verifier",))
    inputs = [c for c in dict.fromkeys([stripped, decode_if_possible(stripped)]) if c]
    # One secret historically; the first configured value signs.
    secret = ctx.secrets[0]
    return matches_any(incoming, (hmac_digest("sha256", secret, value) for value in inputs))


def _bitlabs_verify(postback: ParsedPostback, ctx: VerificationContext) -> bool:
    if not ctx.secrets:
        return True
    incoming = normalize_hash(postback.signature or "")
    if not incoming:
        return False
    inputs = url_candidates(ctx.raw_url, ("hash",), include_full_url=False)
    return matches_any(
        incoming,
        (hmac_digest("sha1", secret, value) for secret in ctx.secrets for value in inputs),
    )


def _cpx_verify(postback: ParsedPostback, ctx: VerificationContext) -> bool:
    if not ctx.secrets:
        return True
    if not postback.signature or not postback.user_id or not postback.tx:
        return False
    incoming = normalize_hash(postback.signature)
    candidates: list[str] = []
    for secret in ctx.secrets:
        candidates.extend(
            [
                secret,
                plain_digest("md5", f"{postback.user_id}-{secret}"),
                plain_digest("md5", f"{postback.tx}-{secret}"),
                plain_digest("md5", f"{postback.user_id}{secret}"),
                plain_digest("md5", f"{postback.tx}{secret}"),
            ]
        )
    return matches_any(incoming, candidates)


_KIWIWALL_PLACEHOLDERS = frozenset({"secure_hash", "generated_hash"})


def _kiwiwall_verify(postback: ParsedPostback, ctx: VerificationContext) -> bool:
    if not ctx.secrets:
        return True
    if not postback.signature:
        return False
    incoming = normalize_loose_hash(postback.signature)
    if not incoming or incoming in _KIWIWALL_PLACEHOLDERS:
        return False

    # Documented form: md5(sub_id:amount:secret), with amount or gross.
    sub_id = (postback.extras.get("sub_id_raw") or "").strip()
    amounts = [v.strip() for v in (postback.extras.get("amount_raw"), postback.extras.get("gross_raw")) if v and v.strip()]
    if sub_id and amounts:
        documented = [
            plain_digest("md5", f"{sid}:{amount}:{secret}")
            for secret in ctx.secrets
            for amount in amounts
            for sid in (sub_id, decode_if_possible(sub_id))
        ]
        if matches_any(incoming, documented):
            return True

    inputs = signing_inputs(
        url_candidates(ctx.raw_url, ("hash", "signature", "sig", "secure_hash")),
        body_candidates(ctx.raw_body),
    )
    compact_parts = [v.strip() for v in (postback.tx, postback.user_id, postback.status) if v]
    if postback.payout_cents is not None:
        compact_parts.extend([format_amount(postback.payout_cents), str(postback.payout_cents)])
    compact = ":".join(compact_parts)

    for secret in ctx.secrets:
        for value in inputs:
            candidates = hmac_digests(value, secret, ("sha1", "sha256", "sha512"))
            candidates.extend(
                [
                    plain_digest("md5", f"{value}{secret}"),
                    plain_digest("md5", f"{secret}{value}"),
                    plain_digest("sha1", f"{value}{secret}"),
                    plain_digest("sha256", f"{value}{secret}"),
                ]
            )
            if matches_any(incoming, candidates):
                return True
        if compact:
            compact_candidates = [
                plain_digest("md5", f"{compact}:{secret}"),
                plain_digest("md5", f"{secret}:{compact}"),
                hmac_digest("sha1", secret, compact),
                hmac_digest("sha256", secret, compact),
            ]
            if matches_any(incoming, compact_candidates):
                return True
    return False


_THEOREMREACH_FAMILIES = ("sha1", "sha256", "sha512", "sha3_256")


def _theoremreach_verify(postback: ParsedPostback, ctx: VerificationContext) -> bool:
    if not ctx.secrets:
        # Unsigned callbacks are only tolerated outside production.
        return not ctx.production

    inputs = signing_inputs(
        url_candidates(ctx.raw_url, ("hash", "enc", "signature"), host_variants=True),
        body_candidates(ctx.raw_body),
    )
    for raw_signature in (postback.alt_signature, postback.signature):
        incoming = normalize_hash(raw_signature or "")
        if not incoming:
            continue
        for secret in ctx.secrets:
            for value in inputs:
                candidates = secret_suffix_digests(value, secret, _THEOREMREACH_FAMILIES)
                candidates.extend(secret_prefix_digests(value, secret, _THEOREMREACH_FAMILIES))
                candidates.extend(hmac_digests(value, secret, _THEOREMREACH_FAMILIES))
                if matches_any(incoming, candidates):
                    return True
    return False


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


ADGEM = ProviderSpec(
    key="adgem",
    name="AdGem",
    verify=_adgem_verify,
    is_reversal=_adgem_reversal,
    tx_keys=("transaction_id",),
    user_keys=("player_id",),
    usd_keys=("payout",),
    local_keys=("amount",),
    offer_id_keys=("offer_id", "campaign_id"),
    title_keys=("goal_name", "goalname", "offer_name"),
    status_keys=("state",),
    signature_keys=("verifier",),
    signature_error="Invalid verifier.",
    missing_payout_error="Missing payout amount.",
    extra_keys={"goal_id": ("goal_id", "goalid"), "request_id": ("request_id",)},
    default_title="AdGem Offer",
    task_key_extra="goal_id",
    task_key_extra_default="goal",
)

BITLABS = ProviderSpec(
    key="bitlabs",
    name="BitLabs",
    verify=_bitlabs_verify,
    is_reversal=_bitlabs_reversal,
    tx_keys=("tx", "trans_id", "transaction_id", "transactionId"),
    user_keys=("uid", "user_id", "ext_user_id", "userid"),
    usd_keys=("raw", "amount_usd", "value_usd", "usd", "amount", "sub_id2", "subid_2"),
    local_keys=("val", "amount_local", "value", "value_currency"),
    offer_id_keys=("offer_task_id", "offer_id", "survey_id", "campaign_id", "task_id", "sub_id", "subid"),
    title_keys=("offer_task_name", "offer_title", "offer_name", "survey_name"),
    status_keys=("type", "status", "event"),
    signature_keys=("hash",),
    heuristic_keys=frozenset({"sub_id2", "subid_2"}),
    missing_payout_error="Missing reward value.",
    default_title="BitLabs Offer",
)

CPX = ProviderSpec(
    key="cpx",
    name="CPX Research",
    verify=_cpx_verify,
    is_reversal=_cpx_reversal,
    tx_keys=("trans_id", "transId"),
    user_keys=("user_id", "ext_user_id", "userid"),
    usd_keys=("amount_usd", "amount"),
    offer_id_keys=("offer_id", "offer_ID"),
    status_keys=("status",),
    signature_keys=("hash", "secure_hash"),
    extra_keys={"sub_id": ("sub_id", "subid", "subid_1"), "sub_id_2": ("sub_id_2", "subid_2")},
    allow_negative_amounts=False,
    default_title="Survey",
    title_from_offer_id="Survey {}",
)

KIWIWALL = ProviderSpec(
    key="kiwiwall",
    name="KIWIWALL",
    verify=_kiwiwall_verify,
    is_reversal=_kiwiwall_reversal,
    tx_keys=("tx", "transaction_id", "trans_id", "transactionId", "conversion_id", "event_id", "id"),
    user_keys=(
        "user_id",
        "uid",
        "userid",
        "userId",
        "ext_user_id",
        "external_user_id",
        "player_id",
        "playerid",
        "sub_id",
        "subid",
    ),
    usd_keys=(
        "amount_usd",
        "payout_usd",
        "reward_usd",
        "value_usd",
        "usd",
        "amount",
        "payout",
        "reward",
        "sub_id2",
        "subid_2",
    ),
    local_keys=("amount_local", "value_currency", "value", "val"),
    offer_id_keys=("offer_id", "campaign_id", "goal_id", "task_id", "survey_id", "sub_id", "subid"),
    title_keys=("offer_name", "offer_title", "campaign_name", "goal_name", "task_name", "survey_name"),
    status_keys=("status", "type", "event", "result", "event_type"),
    signature_keys=("hash", "signature", "sig", "secure_hash"),
    token_keys=API_TOKEN_KEYS,
    extra_keys={
        "sub_id_raw": ("sub_id", "subid", "user_id", "uid", "userid", "userId"),
        "amount_raw": ("amount", "amount_usd", "payout", "reward", "value", "value_usd", "sub_id2", "subid_2"),
        "gross_raw": ("gross", "amount_local"),
    },
    heuristic_keys=frozenset({"sub_id2", "subid_2"}),
    case_insensitive=True,
    default_title="KIWIWALL Offer",
    text_ack=True,
)

THEOREMREACH = ProviderSpec(
    key="theoremreach",
    name="TheoremReach",
    verify=_theoremreach_verify,
    is_reversal=_theoremreach_reversal,
    tx_keys=("transaction_id", "trans_id", "tx", "tx_id", "transactionId", "event_id", "reward_id", "id"),
    user_keys=(
        "user_id",
        "userid",
        "userId",
        "uid",
        "ext_user_id",
        "external_user_id",
        "external_id",
        "sub_id",
        "subid",
        "user",
        "playerid",
        "player_id",
    ),
    usd_keys=(
        "amount_usd",
        "value_usd",
        "reward_usd",
        "reward_amount_usd",
        "payout_usd",
        "amount",
        "payout",
        "reward",
        "reward_amount",
    ),
    local_keys=("amount_local", "value_currency", "value", "val"),
    offer_id_keys=("survey_id", "offer_id", "campaign_id", "task_id"),
    title_keys=("survey_name", "offer_name", "offer_title", "task_name"),
    status_keys=("type", "status", "event", "event_type", "eventStatus"),
    result_keys=("result", "status_code", "event_status", "statusCode"),
    signature_keys=("hash",),
    alt_signature_keys=("enc", "signature"),
    token_keys=API_TOKEN_KEYS,
    case_insensitive=True,
    infer_user_from_tx=True,
    default_title="TheoremReach Survey",
    sign_request_url=True,
    require_tx_binding=True,
    enforce_token=True,
    success_result="10",
)


def tx_bound_to_user(postback: ParsedPostback) -> bool:
    """Survey links minted here always use ``transaction_id = <user>::<uuid>``."""
    if not postback.tx or not postback.user_id:
        return False
    return postback.tx.strip().startswith(f"{postback.user_id.strip()}::")
