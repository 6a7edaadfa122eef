"""Ledger engine: the only writer of customer transactions and cached balances.

Every mutation follows the same shape: take the customer's lock, open one
SQLite transaction, change the log, re-derive the three balances from the
whole log, commit. Readers therefore never observe a new row without its
balances (or the reverse).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional

from cuentas.core.errors import (
    ConsistencyFault,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from cuentas.db.dal import Database
from cuentas.models.constants import BALANCE_FIELDS, RATE_KIND_BY_TRACK
from cuentas.models.transaction import TransactionIn
from cuentas.services import clock
from cuentas.services.customer_locks import customer_lock
from cuentas.services.money import CENT, ZERO, optional_decimal, round2, sum_money, within_tolerance
from cuentas.services.rates.base import RateSource
from cuentas.services.transaction_validation import validate_transaction_domain

logger = logging.getLogger("cuentas.ledger")

EDITABLE_FIELDS = (
    "kind",
    "date",
    "description",
    "amount_primary",
    "amount_bs",
    "amount_secondary",
    "currency_type",
    "quote_ref",
    "payment_method",
    "locked_rate",
    "notes",
)


@dataclass(frozen=True)
class Balances:
    balance_divisas: Decimal = ZERO
    balance_bcv: Decimal = ZERO
    balance_euro: Decimal = ZERO

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Balances":
        return cls(
            balance_divisas=round2(row["balance_divisas"]),
            balance_bcv=round2(row["balance_bcv"]),
            balance_euro=round2(row["balance_euro"]),
        )

    def as_dict(self) -> Dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    customer_id: int
    kind: str
    date: date
    description: str
    amount_primary: Decimal
    amount_bs: Decimal
    amount_secondary: Optional[Decimal]
    currency_type: str
    quote_ref: Optional[str]
    payment_method: Optional[str]
    locked_rate: Optional[Decimal]
    is_settled: bool
    settle_method: Optional[str]
    settle_date: Optional[date]
    notes: Optional[str]
    created_at: str
    updated_at: str

    @property
    def is_dual(self) -> bool:
        return (
            self.kind == "purchase"
            and self.currency_type == "bcv_usd"
            and self.amount_secondary is not None
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LedgerEntry":
        return cls(
            id=row["id"],
            customer_id=row["customer_id"],
            kind=row["kind"],
            date=date.fromisoformat(row["date"]),
            description=row["description"],
            amount_primary=round2(row["amount_primary"]),
            amount_bs=round2(row["amount_bs"]),
            amount_secondary=(
                round2(row["amount_secondary"])
                if row["amount_secondary"] is not None
                else None
            ),
            currency_type=row["currency_type"],
            quote_ref=row["quote_ref"],
            payment_method=row["payment_method"],
            locked_rate=optional_decimal(row["locked_rate"]),
            is_settled=bool(row["is_settled"]),
            settle_method=row["settle_method"],
            settle_date=date.fromisoformat(row["settle_date"]) if row["settle_date"] else None,
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def record(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in EDITABLE_FIELDS}


@dataclass(frozen=True)
class VerifyResult:
    balances: Balances
    repaired: bool


def compute_balances(entries: Iterable[LedgerEntry]) -> Balances:
    """Full re-derivation of the three track balances from a transaction log.

    Per track: unsettled purchases minus every payment. Dual purchases count
    on their bcv_usd amount_primary only; the projector handles the other view.
    """
    buckets: Dict[str, List[Decimal]] = {track: [] for track in BALANCE_FIELDS}
    for entry in entries:
        if entry.kind == "purchase":
            if entry.is_settled:
                continue
            buckets[entry.currency_type].append(entry.amount_primary)
        else:
            buckets[entry.currency_type].append(-entry.amount_primary)
    return Balances(
        **{BALANCE_FIELDS[track]: sum_money(values) for track, values in buckets.items()}
    )


class LedgerEngine:
    def __init__(self, db: Database, tolerance: Decimal = CENT):
        self.db = db
        self.tolerance = tolerance

    # Reads -------------------------------------------------------
    def _require_customer(
        self, customer_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> Dict[str, Any]:
        row = self.db.get_customer(customer_id, cur=cur)
        if not row:
            raise NotFoundError(f"customer {customer_id} not found")
        return row

    def _require_entry(
        self, cur: sqlite3.Cursor, customer_id: int, tx_id: int
    ) -> LedgerEntry:
        row = self.db.get_transaction(tx_id, customer_id=customer_id, cur=cur)
        if not row:
            raise NotFoundError(f"transaction {tx_id} not found for customer {customer_id}")
        return LedgerEntry.from_row(row)

    def entries(
        self,
        customer_id: int,
        newest_first: bool = True,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> List[LedgerEntry]:
        rows = self.db.list_transactions(customer_id, newest_first=newest_first, cur=cur)
        return [LedgerEntry.from_row(r) for r in rows]

    def get_entry(self, customer_id: int, tx_id: int) -> LedgerEntry:
        row = self.db.get_transaction(tx_id, customer_id=customer_id)
        if not row:
            raise NotFoundError(f"transaction {tx_id} not found for customer {customer_id}")
        return LedgerEntry.from_row(row)

    def cached_balances(self, customer_id: int) -> Balances:
        return Balances.from_row(self._require_customer(customer_id))

    # Recompute ---------------------------------------------------
    def recompute(
        self, customer_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> Balances:
        """Re-derive and overwrite the cached balances from the full log."""
        if cur is None:
            with customer_lock(customer_id), self.db.transaction() as own:
                return self.recompute(customer_id, cur=own)
        self._require_customer(customer_id, cur=cur)
        balances = compute_balances(self.entries(customer_id, newest_first=False, cur=cur))
        self.db.write_balances(cur, customer_id, balances.as_dict())
        return balances

    def verify(self, customer_id: int) -> VerifyResult:
        """Compare the cache with a fresh recompute; overwrite it on drift."""
        with customer_lock(customer_id), self.db.transaction() as cur:
            cached = Balances.from_row(self._require_customer(customer_id, cur=cur))
            fresh = compute_balances(self.entries(customer_id, newest_first=False, cur=cur))
            drifted = any(
                not within_tolerance(getattr(cached, f), getattr(fresh, f), self.tolerance)
                for f in BALANCE_FIELDS.values()
            )
            if not drifted:
                return VerifyResult(balances=cached, repaired=False)
            fault = ConsistencyFault(customer_id, cached.as_dict(), fresh.as_dict())
            logger.warning(
                str(fault),
                extra={
                    "customer_id": customer_id,
                    "cached": {k: str(v) for k, v in fault.cached.items()},
                    "fresh": {k: str(v) for k, v in fault.fresh.items()},
                },
            )
            self.db.write_balances(cur, customer_id, fresh.as_dict())
            return VerifyResult(balances=fresh, repaired=True)

    # Mutations ---------------------------------------------------
    def apply(
        self,
        customer_id: int,
        tx: TransactionIn,
        rate_source: RateSource,
    ) -> LedgerEntry:
        """Validate, append and recompute. The rate is locked here, once."""
        locked_rate = tx.locked_rate
        if locked_rate is None:
            locked_rate = rate_source.current_rate(RATE_KIND_BY_TRACK[tx.currency_type])
        amount_bs = tx.amount_bs
        if amount_bs is None:
            amount_bs = _derive_bs(tx.amount_primary, tx.currency_type, locked_rate)
        record = validate_transaction_domain(
            {
                "kind": tx.kind,
                "date": tx.date,
                "description": tx.description,
                "amount_primary": tx.amount_primary,
                "amount_bs": amount_bs,
                "amount_secondary": tx.amount_secondary,
                "currency_type": tx.currency_type,
                "quote_ref": tx.quote_ref,
                "payment_method": tx.payment_method,
                "locked_rate": locked_rate,
                "notes": tx.notes,
            }
        )
        with customer_lock(customer_id), self.db.transaction() as cur:
            customer = self._require_customer(customer_id, cur=cur)
            if not customer["is_active"]:
                raise InvalidStateError(f"customer {customer_id} is inactive")
            if record["quote_ref"] and not self.db.quote_exists(cur, record["quote_ref"]):
                raise ValidationError(f"quote {record['quote_ref']} does not exist")
            tx_id = self.db.insert_transaction(cur, customer_id, record)
            balances = self.recompute(customer_id, cur=cur)
            entry = self._require_entry(cur, customer_id, tx_id)
        logger.info(
            "transaction applied",
            extra={
                "customer_id": customer_id,
                "tx_id": tx_id,
                "kind": entry.kind,
                "currency_type": entry.currency_type,
                "balance_bcv": str(balances.balance_bcv),
            },
        )
        return entry

    def edit(
        self, customer_id: int, tx_id: int, changes: Mapping[str, Any]
    ) -> LedgerEntry:
        """Partial edit; the merged record must still satisfy every invariant."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not editable: {sorted(unknown)}")
        with customer_lock(customer_id), self.db.transaction() as cur:
            current = self._require_entry(cur, customer_id, tx_id)
            if (
                "kind" in changes
                and changes["kind"] != current.kind
                and current.is_settled
            ):
                raise InvalidStateError("cannot change the kind of a settled transaction")
            merged = {**current.record(), **changes}
            rate_kind = RATE_KIND_BY_TRACK.get(merged["currency_type"])
            if (
                rate_kind is not None
                and rate_kind != RATE_KIND_BY_TRACK[current.currency_type]
                and "locked_rate" not in changes
            ):
                raise ValidationError(
                    f"moving to {merged['currency_type']} needs a locked_rate in {rate_kind}"
                )
            if "amount_bs" not in changes and (
                merged["amount_primary"] != current.amount_primary
                or merged["currency_type"] != current.currency_type
                or merged["locked_rate"] != current.locked_rate
            ):
                merged["amount_bs"] = _derive_bs(
                    merged["amount_primary"] or ZERO,
                    merged["currency_type"],
                    merged["locked_rate"],
                    fallback=current.amount_bs,
                )
            record = validate_transaction_domain(merged)
            if record["quote_ref"] and record["quote_ref"] != current.quote_ref:
                if not self.db.quote_exists(cur, record["quote_ref"]):
                    raise ValidationError(f"quote {record['quote_ref']} does not exist")
            before = current.record()
            diff = {k: v for k, v in record.items() if k in before and before[k] != v}
            self.db.update_transaction(cur, tx_id, diff)
            self.recompute(customer_id, cur=cur)
            entry = self._require_entry(cur, customer_id, tx_id)
        logger.info(
            "transaction edited",
            extra={"customer_id": customer_id, "tx_id": tx_id, "fields": sorted(diff)},
        )
        return entry

    def delete(self, customer_id: int, tx_id: int) -> Balances:
        with customer_lock(customer_id), self.db.transaction() as cur:
            current = self._require_entry(cur, customer_id, tx_id)
            if current.quote_ref:
                quote = self.db.get_quote(current.quote_ref, cur=cur)
                if quote and quote["external_link"]:
                    raise InvalidStateError(
                        f"transaction {tx_id} is linked to externally referenced quote {current.quote_ref}"
                    )
            self.db.delete_transaction(cur, tx_id)
            balances = self.recompute(customer_id, cur=cur)
        logger.info("transaction deleted", extra={"customer_id": customer_id, "tx_id": tx_id})
        return balances

    def settle(
        self,
        customer_id: int,
        tx_id: int,
        method: Optional[str] = None,
        settle_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> LedgerEntry:
        """Mark a purchase paid; it leaves the outstanding sum entirely."""
        with customer_lock(customer_id), self.db.transaction() as cur:
            current = self._require_entry(cur, customer_id, tx_id)
            if current.kind != "purchase":
                raise InvalidStateError("only purchases can be settled")
            if current.is_settled:
                raise InvalidStateError(f"transaction {tx_id} is already settled")
            update: Dict[str, Any] = {
                "is_settled": True,
                "settle_method": method,
                "settle_date": settle_date or clock.utc_today(),
            }
            if notes and notes.strip():
                update["notes"] = (
                    f"{current.notes}\n{notes.strip()}" if current.notes else notes.strip()
                )
            self.db.update_transaction(cur, tx_id, update)
            if current.quote_ref and self.db.quote_exists(cur, current.quote_ref):
                self.db.update_quote(
                    cur,
                    current.quote_ref,
                    {"status": "settled", "settled_at": clock.utc_now_iso()},
                )
            self.recompute(customer_id, cur=cur)
            entry = self._require_entry(cur, customer_id, tx_id)
        logger.info(
            "transaction settled",
            extra={"customer_id": customer_id, "tx_id": tx_id, "method": method},
        )
        return entry

    def unsettle(self, customer_id: int, tx_id: int) -> LedgerEntry:
        with customer_lock(customer_id), self.db.transaction() as cur:
            current = self._require_entry(cur, customer_id, tx_id)
            if not current.is_settled:
                raise InvalidStateError(f"transaction {tx_id} is not settled")
            self.db.update_transaction(
                cur,
                tx_id,
                {"is_settled": False, "settle_method": None, "settle_date": None},
            )
            if current.quote_ref and self.db.quote_exists(cur, current.quote_ref):
                still_settled = any(
                    r["is_settled"] for r in self.db.purchases_for_quote(cur, current.quote_ref)
                )
                if not still_settled:
                    self.db.update_quote(
                        cur, current.quote_ref, {"status": "pending", "settled_at": None}
                    )
            self.recompute(customer_id, cur=cur)
            entry = self._require_entry(cur, customer_id, tx_id)
        logger.info("transaction unsettled", extra={"customer_id": customer_id, "tx_id": tx_id})
        return entry


def _derive_bs(
    amount_primary: Decimal,
    currency_type: str,
    rate: Optional[Decimal],
    fallback: Decimal = ZERO,
) -> Decimal:
    """Informational bolivar figure; divisas debts have none."""
    if currency_type == "divisas":
        return ZERO
    if rate is None:
        return fallback
    return round2(amount_primary * rate)


def group_by_customer(rows: Iterable[Mapping[str, Any]]) -> Dict[int, List[Mapping[str, Any]]]:
    grouped: Dict[int, List[Mapping[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(row["customer_id"], []).append(row)
    return grouped


__all__ = [
    "Balances",
    "LedgerEntry",
    "LedgerEngine",
    "VerifyResult",
    "compute_balances",
    "group_by_customer",
]
