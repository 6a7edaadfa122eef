from datetime import date, timedelta
from decimal import Decimal

import pytest

from cuentas.core.errors import NotFoundError
from cuentas.models.quote import QuoteIn, QuoteItemIn
from cuentas.models.transaction import TransactionIn
from cuentas.services import clock
from cuentas.services.receivables import ReceivablesService, payment_pattern

D = Decimal


def tx(kind, amount, day, currency="bcv_usd"):
    return TransactionIn(
        kind=kind,
        date=day,
        description=f"{kind} {amount}",
        amount_primary=D(amount),
        currency_type=currency,
    )


@pytest.fixture()
def receivables(db, ledger):
    return ReceivablesService(db, ledger)


def test_payment_pattern_from_the_log(ledger, rates, customer_id):
    first = ledger.apply(customer_id, tx("purchase", "100", date(2026, 3, 2)), rates)
    second = ledger.apply(customer_id, tx("purchase", "50", date(2026, 3, 12)), rates)
    ledger.apply(customer_id, tx("purchase", "30", date(2026, 3, 22), "divisas"), rates)
    ledger.apply(customer_id, tx("payment", "5", date(2026, 3, 15)), rates)
    ledger.settle(customer_id, first.id, settle_date=date(2026, 3, 9))
    ledger.settle(customer_id, second.id, settle_date=date(2026, 3, 24))

    pattern = payment_pattern(ledger.entries(customer_id))
    assert pattern.total_purchases == 3
    assert pattern.total_payments == 1
    assert pattern.unpaid_purchases == 1
    assert pattern.total_unpaid == D("30.00")
    assert pattern.avg_days_to_pay == 10  # 7 and 12 days, half rounds up
    assert pattern.avg_days_between_purchases == 10
    assert pattern.last_purchase_date == date(2026, 3, 22)
    assert pattern.last_payment_date == date(2026, 3, 15)


def test_payment_pattern_of_an_empty_log():
    pattern = payment_pattern([])
    assert pattern.total_purchases == pattern.total_payments == 0
    assert pattern.total_unpaid == D("0.00")
    assert pattern.avg_days_to_pay is None
    assert pattern.avg_days_between_purchases is None
    assert pattern.last_purchase_date is None


def test_pattern_requires_an_active_customer(db, receivables, customer_id):
    with pytest.raises(NotFoundError):
        receivables.pattern(9999)
    db.update_customer(customer_id, {"is_active": False})
    with pytest.raises(NotFoundError):
        receivables.pattern(customer_id)


def test_summaries_list_active_customers_with_activity(db, ledger, rates, receivables, customer_id):
    quiet = db.create_customer(name="Abasto Sin Movimiento")
    gone = db.create_customer(name="Cerrado")
    db.update_customer(gone, {"is_active": False})

    ledger.apply(customer_id, tx("purchase", "20", date(2026, 4, 1)), rates)
    ledger.apply(customer_id, tx("purchase", "10", date(2026, 4, 8)), rates)
    ledger.apply(customer_id, tx("payment", "12", date(2026, 4, 5)), rates)

    rows = receivables.summaries()
    assert [r.id for r in rows] == [quiet, customer_id]

    idle, busy = rows
    assert idle.total_purchases == 0
    assert idle.last_purchase_date is None and idle.last_payment_date is None
    assert busy.total_purchases == 2
    assert busy.last_purchase_date == date(2026, 4, 8)
    assert busy.last_payment_date == date(2026, 4, 5)
    assert busy.balances.balance_bcv == D("18.00")

    assert [r.id for r in receivables.summaries("esquina")] == [customer_id]


def _backdate(db, quote_id, days):
    stamp = clock.to_iso(clock.utc_now() - timedelta(days=days, hours=1))
    with db.transaction() as cur:
        cur.execute("UPDATE quotes SET created_at = ? WHERE id = ?", (stamp, quote_id))


def test_overdue_quotes_oldest_first_and_flag_linked(db, quotes, rates, customer_id):
    def make(name):
        line = QuoteItemIn(name=name, quantity=D("1"), unit_price_primary=D("10"))
        return quotes.create(QuoteIn(items=[line]), rates)

    old_linked = make("Atún")
    older = make("Sardina")
    make("Corvina")  # too recent
    settled = make("Mero")
    _backdate(db, old_linked.id, 20)
    _backdate(db, older.id, 30)
    _backdate(db, settled.id, 40)
    quotes.link_purchase(customer_id, old_linked.id, rates)
    quotes.set_status(settled.id, "settled")

    found = quotes.overdue(days=15)
    assert [o.quote.id for o in found] == [older.id, old_linked.id]
    assert [o.days_old for o in found] == [30, 20]
    assert [o.is_linked for o in found] == [False, True]

    assert [o.quote.id for o in quotes.overdue(days=25)] == [older.id]
    assert len(quotes.overdue(days=15, limit=1)) == 1


def test_overdue_uses_the_shared_clock(db, quotes, rates, monkeypatch):
    line = QuoteItemIn(name="Robalo", quantity=D("1"), unit_price_primary=D("5"))
    quote = quotes.create(QuoteIn(items=[line]), rates)
    created = clock.parse_iso(db.get_quote(quote.id)["created_at"])

    monkeypatch.setattr(clock, "utc_now", lambda: created + timedelta(days=3))
    assert [o.days_old for o in quotes.overdue(days=2)] == [3]
    assert quotes.overdue(days=3) == []
