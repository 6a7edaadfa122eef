"""Domain-level transaction validation.

Pydantic models check individual fields on the way in. The rules here span
several fields and must also hold for the merged record of a partial edit,
so they run on a plain dict just before anything is written.

Rules:
  - kind, date, description, amount_primary, amount_bs and currency_type are
    never null
  - amount_secondary of 0 means "not dual" and is stored as null
  - amount_secondary only on purchases in the bcv_usd track
  - amount_primary > 0 or amount_bs > 0
  - payment_method is only kept on payments
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from cuentas.core.errors import ValidationError
from cuentas.models.constants import CURRENCY_TYPES, PAYMENT_METHODS, TRANSACTION_KINDS
from cuentas.services.money import optional_decimal, round2

REQUIRED_FIELDS = (
    "kind",
    "date",
    "description",
    "amount_primary",
    "amount_bs",
    "currency_type",
)


def validate_transaction_domain(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a normalized copy of `record` or raise ValidationError."""
    data = dict(record)
    for name in REQUIRED_FIELDS:
        if data.get(name) is None:
            raise ValidationError(f"{name} cannot be null")
    if data["kind"] not in TRANSACTION_KINDS:
        raise ValidationError("kind must be 'purchase' or 'payment'")
    if data["currency_type"] not in CURRENCY_TYPES:
        raise ValidationError("unsupported currency type")
    description = str(data["description"]).strip()
    if not description:
        raise ValidationError("description is required")
    data["description"] = description

    primary = round2(data["amount_primary"])
    amount_bs = round2(data["amount_bs"])
    if primary < 0 or amount_bs < 0:
        raise ValidationError("amounts cannot be negative")
    if primary == 0 and amount_bs == 0:
        raise ValidationError("amount_primary or amount_bs must be greater than 0")
    data["amount_primary"] = primary
    data["amount_bs"] = amount_bs

    secondary = optional_decimal(data.get("amount_secondary"))
    if secondary is not None:
        secondary = round2(secondary)
        if secondary < 0:
            raise ValidationError("amount_secondary cannot be negative")
        if secondary == 0:
            secondary = None
    if secondary is not None:
        if data["currency_type"] != "bcv_usd":
            raise ValidationError("amount_secondary is only allowed on the bcv_usd track")
        if data["kind"] != "purchase":
            raise ValidationError("only purchases can carry amount_secondary")
    data["amount_secondary"] = secondary

    method = data.get("payment_method") or None
    if method is not None and method not in PAYMENT_METHODS:
        raise ValidationError("unsupported payment method")
    data["payment_method"] = method if data["kind"] == "payment" else None

    rate = optional_decimal(data.get("locked_rate"))
    if rate is not None and rate <= 0:
        raise ValidationError("locked_rate must be positive")
    data["locked_rate"] = rate
    return data
