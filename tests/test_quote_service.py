from datetime import date, datetime
from decimal import Decimal

import pytest

from cuentas.core.errors import InvalidStateError, NotFoundError
from cuentas.models.quote import QuoteIn, QuoteItemIn, QuoteUpdateIn
from cuentas.services import clock
from cuentas.services.clock import utc_today
from cuentas.services.quote_service import QuoteView

D = Decimal


def items(*lines):
    return [
        QuoteItemIn(
            name=name,
            quantity=D(qty),
            unit_price_primary=D(price),
            unit_price_secondary=D(secondary) if secondary else None,
        )
        for name, qty, price, secondary in lines
    ]


def test_create_locks_rate_and_reads_back_identically(quotes, rates):
    created = quotes.create(
        QuoteIn(
            items=items(("Camarón", "2.5", "11.99", "10"), ("Pulpo", "1", "8", None)),
            pricing_mode="dual",
            delivery_fee=D("3"),
            customer_name="Sra. Carmen",
        ),
        rates,
    )
    assert created.locked_rate == D("40")
    assert created.total_primary == D("40.98")
    assert created.total_secondary == D("36.00")
    assert created.total_bs == D("1639.20")
    assert created.status == "pending"
    assert not created.pricing_mode_inferred

    again = quotes.get(created.id)
    assert again.items == created.items
    assert (again.total_primary, again.total_secondary, again.total_bs) == (
        created.total_primary,
        created.total_secondary,
        created.total_bs,
    )


def test_edit_reuses_locked_rate_and_updates_linked_purchases(
    db, quotes, ledger, rates, customer_id
):
    quote = quotes.create(QuoteIn(items=items(("Pargo", "1", "20", None))), rates)
    purchase = quotes.link_purchase(customer_id, quote.id, rates)
    assert ledger.cached_balances(customer_id).balance_bcv == D("20.00")

    db.upsert_rate(utc_today(), D("55"), None, "manual")  # later rates must not leak in
    edited = quotes.edit(
        quote.id,
        QuoteUpdateIn(items=items(("Pargo", "1", "20", None), ("Mero", "2", "10", "8")), pricing_mode="dual"),
    )
    assert edited.total_primary == D("40.00")
    assert edited.total_secondary == D("36.00")
    assert edited.total_bs == D("1600.00")

    entry = ledger.get_entry(customer_id, purchase.id)
    assert entry.amount_primary == D("40.00")
    assert entry.amount_bs == D("1600.00")
    assert entry.amount_secondary == D("36.00")
    assert entry.is_dual
    assert ledger.cached_balances(customer_id).balance_bcv == D("40.00")


def test_divisa_quote_books_on_cash_track(quotes, ledger, rates, customer_id):
    quote = quotes.create(
        QuoteIn(items=items(("Calamar", "3", "4", None)), pricing_mode="divisa"), rates
    )
    entry = quotes.link_purchase(customer_id, quote.id, rates)
    assert entry.currency_type == "divisas"
    assert entry.amount_bs == D("0.00")
    assert ledger.cached_balances(customer_id).balance_divisas == D("12.00")

    with pytest.raises(InvalidStateError):
        quotes.link_purchase(customer_id, quote.id, rates)


def test_status_link_and_delete(quotes, rates):
    quote = quotes.create(QuoteIn(items=items(("Atún", "1", "5", None))), rates)

    settled = quotes.set_status(quote.id, "settled")
    assert settled.status == "settled" and settled.settled_at
    assert quotes.set_status(quote.id, "pending").settled_at is None

    quotes.set_external_link(quote.id, True)
    with pytest.raises(InvalidStateError):
        quotes.delete(quote.id)
    quotes.set_external_link(quote.id, False)
    quotes.delete(quote.id)
    with pytest.raises(NotFoundError):
        quotes.get(quote.id)


def test_stats_and_listing(quotes, rates):
    a = quotes.create(QuoteIn(items=items(("Atún", "1", "5", None))), rates)
    quotes.create(QuoteIn(items=items(("Pulpo", "1", "7", None))), rates)
    quotes.set_status(a.id, "settled")

    stats = quotes.stats()
    assert stats["created_today"] == 2
    assert stats["settled_today_primary"] == D("5.00")
    assert stats["settled_today_bs"] == D("200.00")
    assert stats["pending"] == 1
    assert stats["total"] == 2
    assert [q.id for q in quotes.list(status="settled")] == [a.id]


def test_legacy_rows_infer_pricing_mode(db, quotes):
    with db.transaction() as cur:
        cur.execute(
            """
            INSERT INTO quotes (id, date, items, total_primary, total_secondary, total_bs, status)
            VALUES ('10001', '2025-11-03', '[]', 30, 24, 1200, 'pending')
            """
        )
    legacy = quotes.get("10001")
    assert isinstance(legacy, QuoteView)
    assert legacy.pricing_mode == "dual"
    assert legacy.pricing_mode_inferred
    assert legacy.locked_rate is None


def test_legacy_edit_recovers_rate_from_totals(db, quotes):
    with db.transaction() as cur:
        cur.execute(
            """
            INSERT INTO quotes (id, date, items, total_primary, total_bs, status)
            VALUES ('10002', '2025-11-03', '[]', 10, 365, 'pending')
            """
        )
    edited = quotes.edit("10002", QuoteUpdateIn(items=items(("Pargo", "2", "10", None))))
    assert edited.pricing_mode == "bcv"
    assert not edited.pricing_mode_inferred
    assert edited.total_bs == D("730.00")


def test_settle_date_and_quote_stats_use_one_clock(monkeypatch, quotes, ledger, rates, customer_id):
    monkeypatch.setattr(clock, "utc_now", lambda: datetime(2026, 3, 2, 23, 59, 30))
    quote = quotes.create(QuoteIn(items=items(("Pargo", "1", "12", None))), rates)
    assert quote.date == date(2026, 3, 2)
    purchase = quotes.link_purchase(customer_id, quote.id, rates)

    settled = ledger.settle(customer_id, purchase.id)
    assert settled.settle_date == date(2026, 3, 2)
    assert quotes.get(quote.id).settled_at.startswith("2026-03-02")
    stats = quotes.stats()
    assert stats["settled_today_primary"] == D("12.00")
    assert stats["settled_today_bs"] == D("480.00")
