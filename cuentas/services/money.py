"""Money / rounding helpers.

Centralized so the quote engine, the ledger and the projector use identical
rounding semantics. Amounts are always `Decimal` inside the core; floats only
appear at the SQLite boundary.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def round2(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def optional_decimal(value: Optional[Number]) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


def sum_money(values: Iterable[Number]) -> Decimal:
    """Sum first, round once."""
    total = Decimal("0")
    for v in values:
        total += to_decimal(v)
    return round2(total)


def within_tolerance(a: Number, b: Number, tolerance: Number = CENT) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= to_decimal(tolerance)
