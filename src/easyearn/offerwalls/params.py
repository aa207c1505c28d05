"""Callback parameter handling: ordered parameter bag, alias lookup and amount parsing."""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Sequence
from urllib.parse import parse_qsl, quote_plus, urlencode


class PostbackParams:
    """Ordered multi-valued parameter bag.

    ``set`` replaces the first occurrence in place and drops the rest, so a body
    value overriding a query value keeps the query position when the signing
    URL is rebuilt.
    """

    def __init__(self, pairs: Iterable[tuple[str, str]] = ()) -> None:
        self._pairs: list[tuple[str, str]] = list(pairs)

    @classmethod
    def from_query(cls, query: str) -> PostbackParams:
        return cls(parse_qsl(query, keep_blank_values=True))

    def get(self, key: str) -> str | None:
        for name, value in self._pairs:
            if name == key:
                return value
        return None

    def get_case_insensitive(self, key: str) -> str | None:
        wanted = key.strip().lower()
        for name, value in self._pairs:
            if name.strip().lower() == wanted and value.strip():
                return value
        return None

    def set(self, key: str, value: str) -> None:
        for index, (name, _) in enumerate(self._pairs):
            if name == key:
                self._pairs[index] = (key, value)
                self._pairs = self._pairs[: index + 1] + [p for p in self._pairs[index + 1 :] if p[0] != key]
                return
        self._pairs.append((key, value))

    def to_query(self) -> str:
        return urlencode(self._pairs, quote_via=quote_plus, safe="*")


def find_param(
    params: PostbackParams, keys: Sequence[str], case_insensitive: bool = False
) -> tuple[str, str] | tuple[None, None]:
    """First non-blank trimmed value among ``keys`` together with the alias that matched."""
    for key in keys:
        value = params.get(key)
        if value is not None and value.strip():
            return key, value.strip()
        if case_insensitive:
            matched = params.get_case_insensitive(key)
            if matched is not None:
                return key, matched.strip()
    return None, None


def get_param(params: PostbackParams, keys: Sequence[str], case_insensitive: bool = False) -> str | None:
    return find_param(params, keys, case_insensitive)[1]


def parse_cents(value: str | None, allow_negative: bool = True) -> int | None:
    """Parse a dollar amount into cents. ``,`` is accepted as the decimal separator.

    Half-cents round up. Returns None for missing, non-numeric or non-finite
    input, and for negatives unless ``allow_negative``.
    """
    if not value:
        return None
    normalized = value.replace(",", ".", 1).strip()
    try:
        amount = float(normalized)
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    cents = math.floor(amount * 100 + 0.5)
    if cents < 0 and not allow_negative:
        return None
    return cents


def format_amount(cents: int) -> str:
    """Shortest decimal form of ``cents / 100`` (``150`` -> ``"1.5"``, ``200`` -> ``"2"``)."""
    value = cents / 100
    if value.is_integer():
        return str(int(value))
    return repr(value)


def merge_form(params: PostbackParams, fields: Iterable[tuple[str, object]]) -> None:
    """Merge parsed form fields (urlencoded or multipart) into ``params``; the body wins per key.

    Empty values and file uploads are skipped.
    """
    for key, value in fields:
        if isinstance(value, str) and value:
            params.set(key, value)


def merge_json(params: PostbackParams, raw_body: str) -> None:
    """Merge a JSON object body into ``params``; the body wins per key.

    Empty strings and booleans are skipped, numbers are stringified, other JSON
    types and unparseable bodies are ignored.
    """
    if not raw_body.strip():
        return
    try:
        payload = json.loads(raw_body)
    except ValueError:
        return
    if not isinstance(payload, dict):
        return
    for key, value in payload.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, str) and value:
            params.set(key, value)
        elif isinstance(value, (int, float)) and math.isfinite(value):
            params.set(key, format_json_number(value))


def format_json_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
