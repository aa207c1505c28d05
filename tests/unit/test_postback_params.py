"""Parameter bag, alias lookup, amount parsing and body merging."""

import pytest

from easyearn.offerwalls.params import (
    PostbackParams,
    find_param,
    format_amount,
    get_param,
    merge_form,
    merge_json,
    parse_cents,
)


class TestParseCents:
    @pytest.mark.parametrize(
        ("raw", "cents"),
        [("1.5", 150), ("2,50", 250), (" 3 ", 300), ("0.01", 1), ("-1.00", -100), ("0.125", 13)],
    )
    def test_valid_amounts(self, raw, cents):
        assert parse_cents(raw) == cents

    @pytest.mark.parametrize("raw", [None, "", "abc", "inf", "nan"])
    def test_invalid_amounts(self, raw):
        assert parse_cents(raw) is None

    def test_negative_rejected_when_not_allowed(self):
        assert parse_cents("-1", allow_negative=False) is None
        assert parse_cents("1", allow_negative=False) == 100

    def test_format_amount(self):
        assert format_amount(150) == "1.5"
        assert format_amount(200) == "2"
        assert format_amount(1) == "0.01"


class TestPostbackParams:
    def test_first_value_wins(self):
        params = PostbackParams.from_query("a=1&a=2")
        assert params.get("a") == "1"
        assert params.to_query() == "a=1&a=2"

    def test_set_replaces_in_place_and_drops_duplicates(self):
        params = PostbackParams.from_query("a=1&b=2&a=3")
        params.set("a", "9")
        assert params.to_query() == "a=9&b=2"

    def test_set_appends_new_keys(self):
        params = PostbackParams.from_query("a=1")
        params.set("c", "x y")
        assert params.to_query() == "a=1&c=x+y"

    def test_blank_values_are_kept(self):
        params = PostbackParams.from_query("a=&b=1")
        assert params.get("a") == ""
        assert params.to_query() == "a=&b=1"


class TestLookup:
    def test_first_non_blank_alias(self):
        params = PostbackParams.from_query("uid=&user_id=%20u1%20")
        assert find_param(params, ("uid", "user_id")) == ("user_id", "u1")

    def test_missing(self):
        params = PostbackParams.from_query("x=1")
        assert find_param(params, ("uid",)) == (None, None)
        assert get_param(params, ("uid",)) is None

    def test_case_insensitive(self):
        params = PostbackParams.from_query("UserID=abc")
        assert get_param(params, ("userid",)) is None
        assert get_param(params, ("userid",), case_insensitive=True) == "abc"


class TestMergeBody:
    def test_form_fields_override_query(self):
        params = PostbackParams.from_query("tx=1&amount=1")
        merge_form(params, [("amount", "2"), ("extra", "x"), ("empty", "")])
        assert params.to_query() == "tx=1&amount=2&extra=x"

    def test_form_uploads_are_skipped(self):
        params = PostbackParams.from_query("tx=1")
        merge_form(params, [("file", object()), ("status", "1")])
        assert params.to_query() == "tx=1&status=1"

    def test_json_body(self):
        params = PostbackParams.from_query("tx=1")
        merge_json(params, '{"amount": 2.0, "flag": true, "name": "x", "empty": "", "n": 5}')
        assert params.get("amount") == "2"
        assert params.get("flag") is None
        assert params.get("name") == "x"
        assert params.get("empty") is None
        assert params.get("n") == "5"

    def test_json_fractions_keep_their_digits(self):
        params = PostbackParams()
        merge_json(params, '{"amount": 1.25}')
        assert params.get("amount") == "1.25"

    def test_unparseable_bodies_are_ignored(self):
        params = PostbackParams.from_query("tx=1")
        merge_json(params, "{not json")
        merge_json(params, "[1, 2]")
        merge_json(params, "   ")
        assert params.to_query() == "tx=1"
