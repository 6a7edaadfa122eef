"""Quote lifecycle on top of the pricing engine.

Creation locks the current USD rate on the quote; every later edit reprices
with that same rate. When a quote is edited, purchases that reference it are
rewritten to the new totals and their customers' balances are recomputed in
the same database transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cuentas.core.errors import InvalidStateError, NotFoundError, ValidationError
from cuentas.db.dal import Database
from cuentas.models.quote import QuoteIn, QuoteUpdateIn
from cuentas.models.transaction import TransactionIn
from cuentas.services import clock
from cuentas.services.customer_locks import customer_locks
from cuentas.services.ledger import LedgerEngine, LedgerEntry, group_by_customer
from cuentas.services.money import ZERO, optional_decimal, round2
from cuentas.services.quote_pricing import (
    PricedItem,
    PricedQuote,
    build_quote,
    generate_quote_id,
    infer_pricing_mode,
    items_from_json,
    items_to_json,
)
from cuentas.services.rates.base import RateSource
from cuentas.services.transaction_validation import validate_transaction_domain

logger = logging.getLogger("cuentas.quotes")


@dataclass(frozen=True)
class QuoteView:
    id: str
    date: date
    items: Tuple[PricedItem, ...]
    total_primary: Decimal
    total_secondary: Optional[Decimal]
    total_bs: Decimal
    delivery_fee: Decimal
    pricing_mode: str
    pricing_mode_inferred: bool
    hide_bs_on_documents: bool
    status: str
    customer_name: Optional[str]
    customer_address: Optional[str]
    locked_rate: Optional[Decimal]
    external_link: bool
    source: str
    settled_at: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuoteView":
        total_secondary = optional_decimal(row["total_secondary"])
        mode = infer_pricing_mode(
            row["pricing_mode"], row["total_primary"], total_secondary, row["total_bs"]
        )
        return cls(
            id=row["id"],
            date=date.fromisoformat(row["date"]),
            items=items_from_json(row["items"]),
            total_primary=round2(row["total_primary"]),
            total_secondary=round2(total_secondary) if total_secondary is not None else None,
            total_bs=round2(row["total_bs"]),
            delivery_fee=round2(row["delivery_fee"] or 0),
            pricing_mode=mode,
            pricing_mode_inferred=row["pricing_mode"] is None,
            hide_bs_on_documents=bool(row["hide_bs_on_documents"]),
            status=row["status"],
            customer_name=row["customer_name"],
            customer_address=row["customer_address"],
            locked_rate=optional_decimal(row["locked_rate"]),
            external_link=bool(row["external_link"]),
            source=row["source"],
            settled_at=row["settled_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class OverdueQuote:
    quote: QuoteView
    days_old: int
    is_linked: bool


def _priced_fields(priced: PricedQuote) -> Dict[str, Any]:
    return {
        "items": items_to_json(priced.items),
        "total_primary": priced.total_primary,
        "total_secondary": priced.total_secondary,
        "total_bs": priced.total_bs,
        "delivery_fee": priced.delivery_fee,
        "pricing_mode": priced.pricing_mode,
        "locked_rate": priced.locked_rate,
    }


def purchase_amounts(quote: QuoteView, currency_type: str) -> Dict[str, Any]:
    """Ledger amounts a purchase in `currency_type` carries for `quote`."""
    dual = quote.pricing_mode == "dual" and currency_type == "bcv_usd"
    return {
        "amount_primary": quote.total_primary,
        "amount_bs": ZERO if currency_type == "divisas" else quote.total_bs,
        "amount_secondary": quote.total_secondary if dual else None,
    }


class QuoteService:
    def __init__(self, db: Database, ledger: LedgerEngine, id_digits: int = 5):
        self.db = db
        self.ledger = ledger
        self.id_digits = id_digits

    # Reads -------------------------------------------------------
    def get(self, quote_id: str) -> QuoteView:
        row = self.db.get_quote(quote_id)
        if not row:
            raise NotFoundError(f"quote {quote_id} not found")
        return QuoteView.from_row(row)

    def list(self, status: Optional[str] = None, limit: int = 100) -> List[QuoteView]:
        return [QuoteView.from_row(r) for r in self.db.list_quotes(status=status, limit=limit)]

    def overdue(self, days: int = 15, limit: int = 50) -> List[OverdueQuote]:
        """Pending quotes older than `days`, oldest first, flagged when booked on a ledger."""
        now = clock.utc_now()
        rows = self.db.overdue_quotes(clock.to_iso(now - timedelta(days=days)), limit)
        return [
            OverdueQuote(
                quote=QuoteView.from_row(r),
                days_old=(now - clock.parse_iso(r["created_at"])).days,
                is_linked=bool(r["is_linked"]),
            )
            for r in rows
        ]

    def stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        # timestamps are stored in UTC
        raw = self.db.quote_stats(today or clock.utc_today())
        raw["settled_today_primary"] = round2(raw["settled_today_primary"])
        raw["settled_today_bs"] = round2(raw["settled_today_bs"])
        return raw

    # Writes ------------------------------------------------------
    def create(self, payload: QuoteIn, rate_source: RateSource) -> QuoteView:
        rate = rate_source.current_rate("usd")
        priced = build_quote(
            payload.items, payload.delivery_fee, payload.pricing_mode, rate
        )
        record = {
            **_priced_fields(priced),
            "date": payload.date or clock.utc_today(),
            "hide_bs_on_documents": payload.hide_bs_on_documents,
            "status": "pending",
            "customer_name": payload.customer_name,
            "customer_address": payload.customer_address,
            "external_link": False,
            "source": payload.source,
        }
        with self.db.transaction() as cur:
            quote_id = generate_quote_id(
                lambda candidate: self.db.quote_exists(cur, candidate), self.id_digits
            )
            self.db.insert_quote(cur, quote_id, record)
        logger.info(
            "quote created",
            extra={
                "quote_id": quote_id,
                "pricing_mode": priced.pricing_mode,
                "total_primary": str(priced.total_primary),
            },
        )
        return self.get(quote_id)

    def _edit_rate(self, current: QuoteView, rate_source: Optional[RateSource]) -> Optional[Decimal]:
        if current.locked_rate is not None:
            return current.locked_rate
        if current.total_primary > 0 and current.total_bs > 0:
            # legacy row: recover the rate its bolivar total was priced at
            return current.total_bs / current.total_primary
        if rate_source is not None:
            return rate_source.current_rate("usd")
        return None

    def edit(
        self,
        quote_id: str,
        payload: QuoteUpdateIn,
        rate_source: Optional[RateSource] = None,
    ) -> QuoteView:
        """Regenerate every line and total, then carry them onto linked purchases."""
        current = self.get(quote_id)
        mode = payload.pricing_mode or current.pricing_mode
        fee = payload.delivery_fee if payload.delivery_fee is not None else current.delivery_fee
        priced = build_quote(payload.items, fee, mode, self._edit_rate(current, rate_source))
        header: Dict[str, Any] = {}
        for name in ("hide_bs_on_documents", "customer_name", "customer_address"):
            if name in payload.model_fields_set:
                header[name] = getattr(payload, name)
        if header.get("hide_bs_on_documents") is None:
            header.pop("hide_bs_on_documents", None)

        with self.db.transaction() as cur:
            linked_ids = {r["customer_id"] for r in self.db.purchases_for_quote(cur, quote_id)}
        with customer_locks(linked_ids), self.db.transaction() as cur:
            self.db.update_quote(cur, quote_id, {**_priced_fields(priced), **header})
            updated = QuoteView.from_row(self.db.get_quote(quote_id, cur=cur))
            linked = self.db.purchases_for_quote(cur, quote_id)
            for customer_id, rows in group_by_customer(linked).items():
                for row in rows:
                    entry = LedgerEntry.from_row(row)
                    merged = {**entry.record(), **purchase_amounts(updated, entry.currency_type)}
                    record = validate_transaction_domain(merged)
                    self.db.update_transaction(
                        cur,
                        entry.id,
                        {
                            "amount_primary": record["amount_primary"],
                            "amount_bs": record["amount_bs"],
                            "amount_secondary": record["amount_secondary"],
                        },
                    )
                self.ledger.recompute(customer_id, cur=cur)
        logger.info(
            "quote edited",
            extra={
                "quote_id": quote_id,
                "linked_purchases": len(linked),
                "total_primary": str(priced.total_primary),
            },
        )
        return updated

    def set_status(self, quote_id: str, status: str) -> QuoteView:
        settled_at = clock.utc_now_iso() if status == "settled" else None
        with self.db.transaction() as cur:
            if not self.db.quote_exists(cur, quote_id):
                raise NotFoundError(f"quote {quote_id} not found")
            self.db.update_quote(cur, quote_id, {"status": status, "settled_at": settled_at})
        logger.info("quote status changed", extra={"quote_id": quote_id, "status": status})
        return self.get(quote_id)

    def set_external_link(self, quote_id: str, linked: bool) -> QuoteView:
        with self.db.transaction() as cur:
            if not self.db.quote_exists(cur, quote_id):
                raise NotFoundError(f"quote {quote_id} not found")
            self.db.update_quote(cur, quote_id, {"external_link": linked})
        return self.get(quote_id)

    def delete(self, quote_id: str) -> None:
        with self.db.transaction() as cur:
            row = self.db.get_quote(quote_id, cur=cur)
            if not row:
                raise NotFoundError(f"quote {quote_id} not found")
            if row["external_link"]:
                raise InvalidStateError(f"quote {quote_id} is externally referenced")
            self.db.delete_quote(cur, quote_id)
        logger.info("quote deleted", extra={"quote_id": quote_id})

    def link_purchase(
        self,
        customer_id: int,
        quote_id: str,
        rate_source: RateSource,
        on_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """Book the quote as a purchase on the customer's ledger."""
        quote = self.get(quote_id)
        if self.db.customer_references_quote(customer_id, quote_id):
            raise InvalidStateError(
                f"quote {quote_id} is already on customer {customer_id}'s ledger"
            )
        currency_type = "divisas" if quote.pricing_mode == "divisa" else "bcv_usd"
        amounts = purchase_amounts(quote, currency_type)
        if amounts["amount_primary"] <= 0:
            raise ValidationError(f"quote {quote_id} has no amount to book")
        tx = TransactionIn(
            kind="purchase",
            date=on_date or clock.utc_today(),
            description=description or f"Presupuesto {quote_id}",
            currency_type=currency_type,
            quote_ref=quote_id,
            locked_rate=quote.locked_rate,
            **amounts,
        )
        return self.ledger.apply(customer_id, tx, rate_source)
