"""Tests for string-encoded numeric parsing."""

from decimal import Decimal

import pytest

from aptos_trade_indexer.ingestor.numeric import (
    INT64_MAX,
    DecimalString,
    ParseFallbacks,
    parse_int,
)

U128_MAX = "340282366920938463463374607431768211455"


class TestParseInt:
    def test_parses_decimal_string(self) -> None:
        assert parse_int("1000") == 1000

    def test_accepts_int(self) -> None:
        assert parse_int(42) == 42

    def test_malformed_falls_back_and_counts(self) -> None:
        fallbacks = ParseFallbacks()
        assert parse_int("12abc", 7, field="price", fallbacks=fallbacks) == 7
        assert fallbacks.counts["price"] == 1
        assert fallbacks.total == 1

    def test_out_of_int64_range_falls_back(self) -> None:
        fallbacks = ParseFallbacks()
        assert parse_int(str(INT64_MAX + 1), 0, field="amount_from", fallbacks=fallbacks) == 0
        assert fallbacks.counts["amount_from"] == 1

    def test_none_and_bool_fall_back(self, caplog: pytest.LogCaptureFixture) -> None:
        assert parse_int(None, 3000, field="fee") == 3000
        assert parse_int(True, 60, field="tick_spacing") == 60
        assert "Unparseable value for fee" in caplog.text

    def test_merge(self) -> None:
        a = ParseFallbacks()
        b = ParseFallbacks()
        a.record("tick", "x", 0)
        b.record("tick", "y", 0)
        b.record("price", "z", 0)
        a.merge(b)
        assert a.counts == {"tick": 2, "price": 1}


class TestDecimalString:
    def test_beyond_u64_round_trips_exactly(self) -> None:
        value = DecimalString(U128_MAX)
        assert str(value) == U128_MAX
        assert value.to_decimal() == Decimal(U128_MAX)

    def test_addition_is_exact(self) -> None:
        total = DecimalString(U128_MAX) + DecimalString("1")
        assert str(total) == "340282366920938463463374607431768211456"

    def test_comparison(self) -> None:
        assert DecimalString("10") > DecimalString("9")
        assert DecimalString("1.50") == DecimalString("1.5")
        assert DecimalString("0").is_zero()

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            DecimalString("nan")
        with pytest.raises(ValueError):
            DecimalString("liquidity")

    def test_parse_falls_back(self) -> None:
        fallbacks = ParseFallbacks()
        value = DecimalString.parse("not-a-number", field="liquidity", fallbacks=fallbacks)
        assert value.is_zero()
        assert fallbacks.counts["liquidity"] == 1

    def test_from_decimal_strips_trailing_zeros(self) -> None:
        assert str(DecimalString.from_decimal(Decimal("2.500"))) == "2.5"
        assert str(DecimalString.from_decimal(Decimal("-0.000"))) == "0"
        assert str(DecimalString.from_decimal(Decimal("1E+3"))) == "1000"

    def test_not_an_int(self) -> None:
        with pytest.raises(TypeError):
            DecimalString("1") + 1  # type: ignore[operator]
