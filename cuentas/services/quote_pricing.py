"""Quote pricing engine.

Builds the priced line set and totals of a quote from structured items. The
engine is pure: it never touches storage and never looks up a rate itself;
the caller passes the rate it locked at creation.

Rounding policy: every line is rounded to cents first, totals are the sum of
the rounded lines (so a document always adds up), then the delivery fee is
added on top.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import secrets
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from cuentas.core.errors import InvalidStateError, ValidationError
from cuentas.models.constants import PRICING_MODES
from cuentas.models.quote import QuoteItemIn
from cuentas.services.money import ZERO, Number, optional_decimal, round2, sum_money, to_decimal

ItemLike = Union[QuoteItemIn, Mapping[str, Any]]


@dataclass(frozen=True)
class PricedItem:
    name: str
    quantity: Decimal
    unit: str
    unit_price_primary: Decimal
    line_primary: Decimal
    unit_price_secondary: Optional[Decimal] = None
    line_secondary: Optional[Decimal] = None

    def to_json(self) -> Dict[str, Any]:
        """Decimals as strings so a stored quote reads back exactly."""
        return {
            "name": self.name,
            "quantity": str(self.quantity),
            "unit": self.unit,
            "unit_price_primary": str(self.unit_price_primary),
            "line_primary": str(self.line_primary),
            "unit_price_secondary": _str_or_none(self.unit_price_secondary),
            "line_secondary": _str_or_none(self.line_secondary),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "PricedItem":
        return cls(
            name=data["name"],
            quantity=to_decimal(data["quantity"]),
            unit=data.get("unit") or "kg",
            unit_price_primary=to_decimal(data["unit_price_primary"]),
            line_primary=to_decimal(data["line_primary"]),
            unit_price_secondary=optional_decimal(data.get("unit_price_secondary")),
            line_secondary=optional_decimal(data.get("line_secondary")),
        )


@dataclass(frozen=True)
class PricedQuote:
    items: Tuple[PricedItem, ...]
    delivery_fee: Decimal
    pricing_mode: str
    locked_rate: Optional[Decimal]
    total_primary: Decimal
    total_secondary: Optional[Decimal]
    total_bs: Decimal


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _item_field(item: ItemLike, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _price_item(item: ItemLike, position: int, dual: bool) -> PricedItem:
    name = (_item_field(item, "name") or "").strip()
    if not name:
        raise ValidationError(f"item {position}: name is required")
    try:
        quantity = to_decimal(_item_field(item, "quantity"))
        unit_primary = to_decimal(_item_field(item, "unit_price_primary"))
        unit_secondary = optional_decimal(_item_field(item, "unit_price_secondary"))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"item {position}: {exc}") from exc
    if quantity <= 0:
        raise ValidationError(f"item {position}: quantity must be greater than 0")
    if unit_primary < 0 or (unit_secondary is not None and unit_secondary < 0):
        raise ValidationError(f"item {position}: prices cannot be negative")

    line_primary = round2(unit_primary * quantity)
    line_secondary = None
    if dual:
        effective = unit_secondary if unit_secondary is not None else unit_primary
        line_secondary = round2(effective * quantity)
    else:
        unit_secondary = None
    return PricedItem(
        name=name,
        quantity=quantity,
        unit=_item_field(item, "unit") or "kg",
        unit_price_primary=unit_primary,
        line_primary=line_primary,
        unit_price_secondary=unit_secondary,
        line_secondary=line_secondary,
    )


def build_quote(
    items: Iterable[ItemLike],
    delivery_fee: Number = ZERO,
    pricing_mode: str = "bcv",
    locked_rate: Optional[Number] = None,
) -> PricedQuote:
    """Price every line and derive the totals.

    Raises ValidationError on empty items, non-positive quantities, negative
    prices or fee, an unknown pricing mode, or a missing rate when bolivar
    totals are required.
    """
    if pricing_mode not in PRICING_MODES:
        raise ValidationError(f"unknown pricing mode '{pricing_mode}'")
    items = list(items)
    if not items:
        raise ValidationError("a quote needs at least one item")
    fee = to_decimal(delivery_fee)
    if fee < 0:
        raise ValidationError("delivery fee cannot be negative")
    fee = round2(fee)
    rate = optional_decimal(locked_rate)
    if pricing_mode != "divisa" and (rate is None or rate <= 0):
        raise ValidationError("a positive locked rate is required for bolivar totals")

    dual = pricing_mode == "dual"
    priced = tuple(_price_item(item, i, dual) for i, item in enumerate(items, start=1))

    total_primary = sum_money(p.line_primary for p in priced) + fee
    total_secondary = None
    if dual:
        total_secondary = sum_money(p.line_secondary for p in priced) + fee
    total_bs = ZERO if pricing_mode == "divisa" else round2(total_primary * rate)

    return PricedQuote(
        items=priced,
        delivery_fee=fee,
        pricing_mode=pricing_mode,
        locked_rate=rate,
        total_primary=total_primary,
        total_secondary=total_secondary,
        total_bs=total_bs,
    )


def infer_pricing_mode(
    pricing_mode: Optional[str],
    total_primary: Number,
    total_secondary: Optional[Number],
    total_bs: Number,
) -> str:
    """Pricing mode of a stored quote; only legacy rows without one are inferred."""
    if pricing_mode in PRICING_MODES:
        return pricing_mode  # type: ignore[return-value]
    bs = to_decimal(total_bs or 0)
    secondary = optional_decimal(total_secondary)
    if secondary and bs > 0 and secondary != to_decimal(total_primary):
        return "dual"
    if bs == 0:
        return "divisa"
    return "bcv"


def generate_quote_id(
    exists: Callable[[str], bool], digits: int = 5, attempts: int = 25
) -> str:
    """Short numeric code without a leading zero, retried on collision."""
    low = 10 ** (digits - 1)
    span = 9 * low
    for _ in range(attempts):
        candidate = str(low + secrets.randbelow(span))
        if not exists(candidate):
            return candidate
    raise InvalidStateError("could not allocate a free quote id")


def items_to_json(items: Iterable[PricedItem]) -> List[Dict[str, Any]]:
    return [p.to_json() for p in items]


def items_from_json(raw: Iterable[Mapping[str, Any]]) -> Tuple[PricedItem, ...]:
    return tuple(PricedItem.from_json(r) for r in raw)
