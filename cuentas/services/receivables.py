"""Receivables aging: who owes what, since when, and how fast they pay.

Read-only views over the ledger. Balances come from the cached columns that
`LedgerEngine.recompute` maintains; counts and dates come from the log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from cuentas.core.errors import NotFoundError
from cuentas.db.dal import Database
from cuentas.services.ledger import Balances, LedgerEngine, LedgerEntry
from cuentas.services.money import sum_money


@dataclass(frozen=True)
class CustomerSummary:
    id: int
    name: str
    rate_type: str
    balances: Balances
    total_purchases: int
    last_purchase_date: Optional[date]
    last_payment_date: Optional[date]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CustomerSummary":
        return cls(
            id=row["id"],
            name=row["name"],
            rate_type=row["rate_type"],
            balances=Balances.from_row(row),
            total_purchases=int(row["total_purchases"] or 0),
            last_purchase_date=_opt_date(row["last_purchase_date"]),
            last_payment_date=_opt_date(row["last_payment_date"]),
        )


@dataclass(frozen=True)
class PaymentPattern:
    total_purchases: int
    total_payments: int
    unpaid_purchases: int
    total_unpaid: Decimal
    avg_days_to_pay: Optional[int]
    avg_days_between_purchases: Optional[int]
    last_purchase_date: Optional[date]
    last_payment_date: Optional[date]


def _opt_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _mean_days(values: Sequence[int]) -> Optional[int]:
    if not values:
        return None
    mean = Decimal(sum(values)) / len(values)
    return int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def payment_pattern(entries: Iterable[LedgerEntry]) -> PaymentPattern:
    """How a customer pays, from their whole log.

    Days-to-pay counts settled purchases only (settle date minus purchase
    date); the amount still owed sums unsettled purchases on every track.
    """
    entries = list(entries)
    purchases = [e for e in entries if e.kind == "purchase"]
    payments = [e for e in entries if e.kind == "payment"]
    unpaid = [p for p in purchases if not p.is_settled]

    days_to_pay = [
        (p.settle_date - p.date).days for p in purchases if p.is_settled and p.settle_date
    ]
    purchase_dates = sorted(p.date for p in purchases)
    gaps = [(b - a).days for a, b in zip(purchase_dates, purchase_dates[1:])]

    return PaymentPattern(
        total_purchases=len(purchases),
        total_payments=len(payments),
        unpaid_purchases=len(unpaid),
        total_unpaid=sum_money(p.amount_primary for p in unpaid),
        avg_days_to_pay=_mean_days(days_to_pay),
        avg_days_between_purchases=_mean_days(gaps),
        last_purchase_date=max((p.date for p in purchases), default=None),
        last_payment_date=max((p.date for p in payments), default=None),
    )


class ReceivablesService:
    def __init__(self, db: Database, ledger: LedgerEngine):
        self.db = db
        self.ledger = ledger

    def summaries(self, search: Optional[str] = None) -> List[CustomerSummary]:
        """Active customers by name, with balances and last activity dates."""
        return [CustomerSummary.from_row(r) for r in self.db.customer_activity(search)]

    def pattern(self, customer_id: int) -> PaymentPattern:
        row = self.db.get_customer(customer_id)
        if not row or not row["is_active"]:
            raise NotFoundError(f"customer {customer_id} not found")
        return payment_pattern(self.ledger.entries(customer_id))
