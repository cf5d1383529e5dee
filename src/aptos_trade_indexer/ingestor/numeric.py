"""Numeric parsing for string-encoded on-chain values.

Move events encode every integer (u64, u128, u256) as a decimal string. This
module is the only place where those strings are interpreted:

- Fixed-width fields (counts, trade amounts, prices, timestamps, ticks) are
  parsed into Python ints and checked against the signed 64-bit range of the
  storage columns.
- Arbitrary-precision fields (pool liquidity, sqrt prices, swap amounts) are
  carried as ``DecimalString`` values and never narrowed to a fixed width.

Malformed values fall back to a named default instead of rejecting the event.
Every fallback is counted in a ``ParseFallbacks`` collector and logged so that
upstream decoding bugs stay visible.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Context, Decimal, InvalidOperation
from functools import total_ordering
from typing import Any

logger = logging.getLogger(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# u256 has 78 decimal digits; sums of many of them stay exact below this.
DECIMAL_CONTEXT = Context(prec=160)


@dataclass
class ParseFallbacks:
    """Counts fields that could not be parsed and were replaced by a default."""

    counts: Counter[str] = field(default_factory=Counter)

    def record(self, field_name: str, raw: Any, default: Any) -> None:
        self.counts[field_name] += 1
        logger.warning(
            "Unparseable value for %s: %r (using default %r)", field_name, raw, default
        )

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def merge(self, other: ParseFallbacks) -> None:
        self.counts.update(other.counts)


def parse_int(
    value: Any,
    default: int = 0,
    *,
    field: str = "value",
    fallbacks: ParseFallbacks | None = None,
) -> int:
    """Parse a string-encoded integer that must fit a signed 64-bit column.

    Args:
        value: Raw value from the event payload (usually a string).
        default: Value used when parsing fails or the result is out of range.
        field: Field name used in the fallback record.
        fallbacks: Optional collector for fallback occurrences.

    Returns:
        The parsed integer, or ``default``.
    """
    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip())
        except (TypeError, ValueError):
            parsed = None

    if parsed is None or not INT64_MIN <= parsed <= INT64_MAX:
        if fallbacks is not None:
            fallbacks.record(field, value, default)
        else:
            logger.warning("Unparseable value for %s: %r (using default %r)", field, value, default)
        return default
    return parsed


@total_ordering
class DecimalString:
    """Opaque arbitrary-precision number carried as its decimal string.

    Only addition and comparison are supported. Values are kept in their
    canonical string form so that they round-trip through storage unaltered.
    """

    __slots__ = ("_text",)

    def __init__(self, text: str = "0") -> None:
        try:
            number = Decimal(text)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValueError(f"Not a decimal number: {text!r}") from e
        if not number.is_finite():
            raise ValueError(f"Not a finite decimal number: {text!r}")
        self._text = str(text).strip()

    @classmethod
    def parse(
        cls,
        value: Any,
        default: str = "0",
        *,
        field: str = "value",
        fallbacks: ParseFallbacks | None = None,
    ) -> DecimalString:
        """Parse a raw payload value, falling back to ``default`` when malformed."""
        try:
            return cls(str(value))
        except ValueError:
            if fallbacks is not None:
                fallbacks.record(field, value, default)
            else:
                logger.warning(
                    "Unparseable value for %s: %r (using default %r)", field, value, default
                )
            return cls(default)

    @classmethod
    def from_decimal(cls, value: Decimal) -> DecimalString:
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        if text in ("", "-0"):
            text = "0"
        return cls(text)

    @classmethod
    def zero(cls) -> DecimalString:
        return cls("0")

    def to_decimal(self) -> Decimal:
        return Decimal(self._text)

    def is_zero(self) -> bool:
        return self.to_decimal() == 0

    def __add__(self, other: object) -> DecimalString:
        if not isinstance(other, DecimalString):
            return NotImplemented
        return DecimalString.from_decimal(DECIMAL_CONTEXT.add(self.to_decimal(), other.to_decimal()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecimalString):
            return NotImplemented
        return self.to_decimal() == other.to_decimal()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, DecimalString):
            return NotImplemented
        return self.to_decimal() < other.to_decimal()

    def __hash__(self) -> int:
        return hash(self.to_decimal())

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"DecimalString({self._text!r})"
