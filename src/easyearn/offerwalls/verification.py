"""
Candidate-based signature verification for offerwall callbacks.

Providers document their signing schemes loosely, so a callback is accepted when
its signature matches *any* digest computed over a set of plausible signing
inputs (URL forms, optionally with the raw body appended). A missing match is a
rejection; an unconfigured secret list is a pass. Every comparison goes through
``hmac.compare_digest``.

All functions here are pure.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
from collections.abc import Iterable, Sequence
from urllib.parse import parse_qsl, quote_plus, unquote, urlencode, urlsplit

PLAIN_FAMILIES = ("md5", "sha1", "sha256", "sha512", "sha3_256")
HMAC_FAMILIES = ("sha1", "sha256", "sha512", "sha3_256")

_WRAPPING_PREFIX = re.compile(r"^[{(\[\"']+")
_WRAPPING_SUFFIX = re.compile(r"[})\]\"']+$")


def decode_if_possible(value: str) -> str:
    """Percent-decode ``value``; return it unchanged when the escapes are not valid UTF-8."""
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def normalize_hash(value: str) -> str:
    return value.strip().lower()


def normalize_loose_hash(value: str) -> str:
    """Normalize signatures that arrive URL-encoded or wrapped in quotes/brackets."""
    normalized = decode_if_possible(value.strip())
    normalized = _WRAPPING_PREFIX.sub("", normalized)
    normalized = _WRAPPING_SUFFIX.sub("", normalized)
    return normalized.strip().lower()


def safe_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def matches_any(incoming: str, candidates: Iterable[str]) -> bool:
    """Constant-time compare ``incoming`` against every candidate; no early exit on length."""
    matched = False
    for candidate in candidates:
        if safe_equals(incoming, normalize_hash(candidate)):
            matched = True
    return matched


def plain_digest(algorithm: str, data: str) -> str:
    return hashlib.new(algorithm, data.encode("utf-8")).hexdigest()


def hmac_digest(algorithm: str, secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), algorithm).hexdigest()


def secret_suffix_digests(value: str, secret: str, families: Sequence[str]) -> list[str]:
    """``H(value + secret)`` for each family."""
    return [plain_digest(algorithm, f"{value}{secret}") for algorithm in families]


def secret_prefix_digests(value: str, secret: str, families: Sequence[str]) -> list[str]:
    """``H(secret + value)`` for each family."""
    return [plain_digest(algorithm, f"{secret}{value}") for algorithm in families]


def hmac_digests(value: str, secret: str, families: Sequence[str]) -> list[str]:
    return [hmac_digest(algorithm, secret, value) for algorithm in families]


# ---------------------------------------------------------------------------
# Signing-input candidates
# ---------------------------------------------------------------------------


def strip_query_keys(raw_url: str, keys: Iterable[str]) -> str:
    """Drop query parts whose (decoded, lower-cased) key is in ``keys``; drop any fragment."""
    to_strip = {key.lower() for key in keys}
    trimmed = raw_url.split("#", 1)[0]
    if "?" not in trimmed:
        return trimmed

    base, raw_query = trimmed.split("?", 1)
    if not raw_query:
        return base

    kept = [
        part
        for part in raw_query.split("&")
        if part and decode_if_possible(part.split("=", 1)[0]).strip().lower() not in to_strip
    ]
    return f"{base}?{'&'.join(kept)}" if kept else base


def canonical_query(raw_query: str) -> str:
    """Re-encode a query string the way browsers serialize form data (spaces as ``+``)."""
    pairs = parse_qsl(raw_query, keep_blank_values=True)
    return urlencode(pairs, quote_via=quote_plus, safe="*")


def _with_query(base: str, query: str) -> str:
    return f"{base}?{query}" if query else base


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


def url_candidates(
    raw_url: str,
    signature_keys: Iterable[str],
    *,
    include_full_url: bool = True,
    host_variants: bool = False,
) -> list[str]:
    """Plausible signing inputs derived from the callback URL.

    With the signature parameters stripped: origin+path, host+path, path, the raw
    and canonically re-encoded query, and each base combined with each query
    form. Every candidate is offered raw and percent-decoded. ``host_variants``
    adds www/bare host and http/https permutations of origin+path.
    """
    stripped = strip_query_keys(raw_url, signature_keys)
    parts = urlsplit(stripped)
    raw_query = stripped.split("?", 1)[1] if "?" in stripped else ""
    canonical = canonical_query(raw_query)
    path = parts.path or "/"
    origin_path = f"{parts.scheme}://{parts.netloc}{path}"
    host_path = f"{parts.netloc}{path}"

    bases: list[str] = []
    if include_full_url:
        bases.append(stripped)
    bases.extend(
        [
            origin_path,
            host_path,
            path,
            raw_query,
            canonical,
            _with_query(origin_path, raw_query),
            _with_query(origin_path, canonical),
            _with_query(host_path, raw_query),
            _with_query(host_path, canonical),
            _with_query(path, raw_query),
            _with_query(path, canonical),
        ]
    )

    if host_variants:
        hosts = [parts.netloc]
        hosts.append(parts.netloc[4:] if parts.netloc.startswith("www.") else f"www.{parts.netloc}")
        schemes = _dedupe([parts.scheme, "https"])
        origins = _dedupe(f"{scheme}://{host}{path}" for host in hosts for scheme in schemes)
        bases.extend(origins)
        bases.extend(_with_query(origin, raw_query) for origin in origins)
        bases.extend(_with_query(origin, canonical) for origin in origins)

    expanded = (variant.strip() for base in bases for variant in (base, decode_if_possible(base)))
    return _dedupe(expanded)


def body_candidates(raw_body: str) -> list[str]:
    """Raw, trimmed and compact re-serialized JSON forms of the request body."""
    if not raw_body:
        return [""]
    candidates = [raw_body, raw_body.strip()]
    try:
        parsed = json.loads(raw_body)
    except ValueError:
        pass
    else:
        candidates.append(json.dumps(parsed, separators=(",", ":"), ensure_ascii=False))
    return _dedupe(candidates)


def signing_inputs(urls: Sequence[str], bodies: Sequence[str]) -> list[str]:
    """Each URL candidate alone and with each body candidate appended."""
    combined: list[str] = []
    for url in urls:
        combined.append(url)
        combined.extend(f"{url}{body}" for body in bodies)
    return _dedupe(combined)


# ---------------------------------------------------------------------------
# API token
# ---------------------------------------------------------------------------


def verify_api_token(provided: Iterable[str | None], configured: Sequence[str]) -> bool:
    """Match any provided token against each configured value or its base64 form.

    Nothing configured means the check passes.
    """
    if not configured:
        return True
    values = [value.strip() for value in provided if value and value.strip()]
    if not values:
        return False
    candidates: list[str] = []
    for value in configured:
        candidates.append(value)
        candidates.append(base64.b64encode(value.encode("utf-8")).decode("ascii"))
    return any(safe_equals(value, candidate) for value in values for candidate in candidates)
