"""Unit tests for order_etl.normalize."""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from order_etl.normalize import (
    parse_bool,
    parse_numeric,
    parse_quantity,
    parse_ts,
    split_name,
    strip_order_hash,
    trim,
)


# ---------------------------------------------------------------------------
# trim
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None


# ---------------------------------------------------------------------------
# parse_numeric
# ---------------------------------------------------------------------------

class TestParseNumeric:
    def test_plain_decimal(self):
        assert parse_numeric("19.99") == Decimal("19.99")

    def test_currency_symbol_and_thousands(self):
        assert parse_numeric("$1,234.50") == Decimal("1234.50")

    def test_negative(self):
        assert parse_numeric("-5.00") == Decimal("-5.00")

    def test_letters_only_is_absent_not_zero(self):
        assert parse_numeric("N/A") is None

    def test_empty_is_absent(self):
        assert parse_numeric("") is None

    def test_none(self):
        assert parse_numeric(None) is None

    def test_leftover_garbage_is_absent(self):
        assert parse_numeric("1.2.3") is None

    def test_range_is_absent_not_its_prefix(self):
        assert parse_numeric("10-20") is None

    def test_zero_is_kept(self):
        assert parse_numeric("0.00") == Decimal("0.00")


# ---------------------------------------------------------------------------
# parse_quantity
# ---------------------------------------------------------------------------

class TestParseQuantity:
    def test_integer(self):
        assert parse_quantity("3") == 3

    def test_leading_integer(self):
        assert parse_quantity("2 units") == 2

    def test_missing_defaults_to_one(self):
        assert parse_quantity(None) == 1

    def test_unparsable_defaults_to_one(self):
        assert parse_quantity("many") == 1

    def test_zero_defaults_to_one(self):
        assert parse_quantity("0") == 1

    def test_custom_default(self):
        assert parse_quantity("", default=5) == 5


# ---------------------------------------------------------------------------
# parse_ts
# ---------------------------------------------------------------------------

class TestParseTs:
    def test_shopify_layout_with_offset(self):
        result = parse_ts("2025-01-15 10:30:00 -0500")
        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone(timedelta(hours=-5)))

    def test_iso_with_z(self):
        result = parse_ts("2025-01-15T10:30:00Z")
        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        result = parse_ts("2025-01-15 10:30:00")
        assert result.tzinfo == timezone.utc

    def test_date_only(self):
        assert parse_ts("2025-01-15") == datetime(2025, 1, 15, tzinfo=timezone.utc)

    def test_us_layout(self):
        assert parse_ts("01/15/2025") == datetime(2025, 1, 15, tzinfo=timezone.utc)

    def test_empty(self):
        assert parse_ts("") is None

    def test_garbage(self):
        assert parse_ts("last tuesday") is None

    def test_none(self):
        assert parse_ts(None) is None


# ---------------------------------------------------------------------------
# parse_bool
# ---------------------------------------------------------------------------

class TestParseBool:
    @pytest.mark.parametrize("value", ["yes", "Yes", "TRUE", "true", " yes "])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["no", "false", "1", "", None])
    def test_falsy(self, value):
        assert parse_bool(value) is False


# ---------------------------------------------------------------------------
# split_name
# ---------------------------------------------------------------------------

class TestSplitName:
    def test_two_tokens(self):
        assert split_name("Ada Lovelace") == ("Ada", "Lovelace")

    def test_remainder_joined(self):
        assert split_name("Ada  Lovelace   King") == ("Ada", "Lovelace King")

    def test_single_token(self):
        assert split_name("Cher") == ("Cher", None)

    def test_blank(self):
        assert split_name("   ") == (None, None)

    def test_none(self):
        assert split_name(None) == (None, None)


# ---------------------------------------------------------------------------
# strip_order_hash
# ---------------------------------------------------------------------------

class TestStripOrderHash:
    def test_strips_one_hash(self):
        assert strip_order_hash("#1001") == "1001"

    def test_only_first_hash(self):
        assert strip_order_hash("##1001") == "#1001"

    def test_no_hash(self):
        assert strip_order_hash("1001") == "1001"

    def test_missing(self):
        assert strip_order_hash(None) == ""
