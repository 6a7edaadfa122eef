from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from cuentas.core.errors import InvalidStateError, NotFoundError, ValidationError
from cuentas.models.quote import QuoteIn, QuoteItemIn, QuoteUpdateIn
from cuentas.models.transaction import TransactionIn
from cuentas.services.balance_projector import project
from cuentas.services.clock import utc_today
from cuentas.services.ledger import Balances

D = Decimal


def tx(kind="purchase", amount="0", currency="bcv_usd", **extra):
    return TransactionIn(
        kind=kind,
        date=extra.pop("date", date(2026, 3, 2)),
        description=extra.pop("description", f"{kind} {amount}"),
        amount_primary=D(amount),
        currency_type=currency,
        **extra,
    )


def test_worked_example(ledger, rates, customer_id):
    a = ledger.apply(customer_id, tx(amount="100"), rates)
    assert ledger.cached_balances(customer_id).balance_bcv == D("100.00")

    ledger.apply(customer_id, tx(amount="50", amount_secondary=D("40")), rates)
    stored = ledger.cached_balances(customer_id)
    assert stored.balance_bcv == D("150.00")

    divisas_view = project(stored, ledger.entries(customer_id), "divisas")
    assert divisas_view.balance_bcv == D("100.00")
    assert divisas_view.balance_divisas == D("40.00")

    ledger.apply(customer_id, tx(kind="payment", amount="30"), rates)
    assert ledger.cached_balances(customer_id).balance_bcv == D("120.00")

    ledger.settle(customer_id, a.id, method="pago_movil")
    assert ledger.cached_balances(customer_id).balance_bcv == D("20.00")


def test_recompute_is_idempotent(ledger, rates, customer_id):
    ledger.apply(customer_id, tx(amount="12.34", currency="divisas"), rates)
    ledger.apply(customer_id, tx(amount="7.5", currency="bcv_eur"), rates)
    ledger.apply(customer_id, tx(kind="payment", amount="2", currency="divisas"), rates)

    first = ledger.recompute(customer_id)
    second = ledger.recompute(customer_id)
    assert first == second == ledger.cached_balances(customer_id)
    assert first == Balances(
        balance_divisas=D("10.34"), balance_bcv=D("0.00"), balance_euro=D("7.50")
    )


def test_payment_without_purchase_is_credit(ledger, rates, customer_id):
    ledger.apply(customer_id, tx(kind="payment", amount="25", currency="divisas"), rates)
    assert ledger.cached_balances(customer_id).balance_divisas == D("-25.00")


def test_settle_then_unsettle_restores_balance(ledger, rates, customer_id):
    ledger.apply(customer_id, tx(amount="80"), rates)
    target = ledger.apply(customer_id, tx(amount="19.99", amount_secondary=D("15")), rates)
    before = ledger.cached_balances(customer_id)

    settled = ledger.settle(customer_id, target.id, method="efectivo", notes="pagó en tienda")
    assert settled.is_settled
    assert settled.settle_date == utc_today()
    assert ledger.cached_balances(customer_id) != before

    reopened = ledger.unsettle(customer_id, target.id)
    assert not reopened.is_settled
    assert reopened.settle_method is None and reopened.settle_date is None
    assert ledger.cached_balances(customer_id) == before


def test_settle_state_errors(ledger, rates, customer_id):
    payment = ledger.apply(customer_id, tx(kind="payment", amount="5"), rates)
    purchase = ledger.apply(customer_id, tx(amount="5"), rates)

    with pytest.raises(InvalidStateError):
        ledger.settle(customer_id, payment.id)
    with pytest.raises(InvalidStateError):
        ledger.unsettle(customer_id, purchase.id)
    ledger.settle(customer_id, purchase.id)
    with pytest.raises(InvalidStateError):
        ledger.settle(customer_id, purchase.id)


def test_locked_rate_and_bolivar_amount_are_captured(ledger, rates, customer_id):
    eur = ledger.apply(customer_id, tx(amount="10", currency="bcv_eur"), rates)
    assert eur.locked_rate == D("43.50")
    assert eur.amount_bs == D("435.00")

    cash = ledger.apply(customer_id, tx(amount="10", currency="divisas"), rates)
    assert cash.locked_rate == D("40.00")
    assert cash.amount_bs == D("0.00")


@pytest.mark.parametrize(
    "payload",
    [
        {"currency": "bcv_eur", "amount_secondary": D("5")},
        {"currency": "divisas", "amount_secondary": D("5")},
        {"kind": "payment", "amount_secondary": D("5")},
        {"currency": "divisas", "amount": "0"},
    ],
)
def test_invalid_transactions_persist_nothing(ledger, rates, customer_id, payload):
    params = {"amount": "10", **payload}
    with pytest.raises(ValidationError):
        ledger.apply(customer_id, tx(**params), rates)
    assert ledger.entries(customer_id) == []


def test_zero_secondary_means_not_dual(ledger, rates, customer_id):
    entry = ledger.apply(customer_id, tx(amount="10", amount_secondary=D("0")), rates)
    assert entry.amount_secondary is None
    assert not entry.is_dual


def test_payment_method_only_kept_on_payments(ledger, rates, customer_id):
    purchase = ledger.apply(customer_id, tx(amount="3", payment_method="zelle"), rates)
    payment = ledger.apply(
        customer_id, tx(kind="payment", amount="3", payment_method="zelle"), rates
    )
    assert purchase.payment_method is None
    assert payment.payment_method == "zelle"


def test_edit_reclassifies_currency_track(ledger, rates, customer_id):
    entry = ledger.apply(customer_id, tx(amount="30"), rates)
    edited = ledger.edit(customer_id, entry.id, {"currency_type": "divisas"})

    assert edited.currency_type == "divisas"
    assert edited.amount_bs == D("0.00")
    balances = ledger.cached_balances(customer_id)
    assert balances.balance_bcv == D("0.00")
    assert balances.balance_divisas == D("30.00")


def test_moving_between_usd_and_eur_tracks_needs_a_new_rate(ledger, rates, customer_id):
    entry = ledger.apply(customer_id, tx(amount="10"), rates)
    assert entry.amount_bs == D("400.00")

    with pytest.raises(ValidationError):
        ledger.edit(customer_id, entry.id, {"currency_type": "bcv_eur"})
    assert ledger.get_entry(customer_id, entry.id) == entry

    moved = ledger.edit(
        customer_id, entry.id, {"currency_type": "bcv_eur", "locked_rate": D("43.50")}
    )
    assert moved.locked_rate == D("43.50")
    assert moved.amount_bs == D("435.00")
    assert ledger.cached_balances(customer_id).balance_euro == D("10.00")


def test_edit_that_breaks_invariants_is_rejected(ledger, rates, customer_id):
    entry = ledger.apply(customer_id, tx(amount="30", amount_secondary=D("25")), rates)
    before = ledger.cached_balances(customer_id)

    with pytest.raises(ValidationError):
        ledger.edit(customer_id, entry.id, {"currency_type": "bcv_eur"})
    with pytest.raises(ValidationError):
        ledger.edit(customer_id, entry.id, {"description": None})

    assert ledger.get_entry(customer_id, entry.id) == entry
    assert ledger.cached_balances(customer_id) == before

    # clearing the secondary amount in the same edit makes the move legal
    moved = ledger.edit(
        customer_id,
        entry.id,
        {"currency_type": "bcv_eur", "amount_secondary": None, "locked_rate": D("43.50")},
    )
    assert moved.amount_secondary is None
    assert moved.amount_bs == D("1305.00")
    assert ledger.cached_balances(customer_id).balance_euro == D("30.00")


def test_kind_of_settled_transaction_is_frozen(ledger, rates, customer_id):
    entry = ledger.apply(customer_id, tx(amount="9"), rates)
    ledger.settle(customer_id, entry.id)
    with pytest.raises(InvalidStateError):
        ledger.edit(customer_id, entry.id, {"kind": "payment"})


def test_delete_recomputes(ledger, rates, customer_id):
    keep = ledger.apply(customer_id, tx(amount="10"), rates)
    drop = ledger.apply(customer_id, tx(amount="5"), rates)
    balances = ledger.delete(customer_id, drop.id)
    assert balances.balance_bcv == D("10.00")
    assert [e.id for e in ledger.entries(customer_id)] == [keep.id]


def test_delete_rejected_while_quote_is_externally_linked(ledger, quotes, rates, customer_id):
    quote = quotes.create(
        QuoteIn(items=[QuoteItemIn(name="Pulpo", quantity=D("2"), unit_price_primary=D("9"))]),
        rates,
    )
    purchase = quotes.link_purchase(customer_id, quote.id, rates)
    quotes.set_external_link(quote.id, True)
    before = ledger.cached_balances(customer_id)

    with pytest.raises(InvalidStateError):
        ledger.delete(customer_id, purchase.id)

    assert ledger.cached_balances(customer_id) == before == Balances(balance_bcv=D("18.00"))
    assert ledger.get_entry(customer_id, purchase.id) == purchase


def test_settling_linked_purchase_settles_quote(ledger, quotes, rates, customer_id):
    quote = quotes.create(
        QuoteIn(items=[QuoteItemIn(name="Pargo", quantity=D("1"), unit_price_primary=D("12"))]),
        rates,
    )
    purchase = quotes.link_purchase(customer_id, quote.id, rates)

    ledger.settle(customer_id, purchase.id, method="transferencia")
    settled = quotes.get(quote.id)
    assert settled.status == "settled"
    assert settled.settled_at is not None

    ledger.unsettle(customer_id, purchase.id)
    assert quotes.get(quote.id).status == "pending"


def test_verify_repairs_drifted_cache(db, ledger, rates, customer_id):
    ledger.apply(customer_id, tx(amount="42"), rates)
    with db.transaction() as cur:
        db.write_balances(
            cur,
            customer_id,
            {"balance_divisas": D("0"), "balance_bcv": D("41.99"), "balance_euro": D("0")},
        )

    result = ledger.verify(customer_id)
    assert result.repaired
    assert result.balances.balance_bcv == D("42.00")
    assert ledger.cached_balances(customer_id).balance_bcv == D("42.00")
    assert not ledger.verify(customer_id).repaired


def test_unknown_customer_and_transaction(ledger, rates, customer_id):
    with pytest.raises(NotFoundError):
        ledger.apply(9999, tx(amount="1"), rates)
    with pytest.raises(NotFoundError):
        ledger.settle(customer_id, 9999)


def test_inactive_customer_rejects_new_transactions(db, ledger, rates, customer_id):
    db.update_customer(customer_id, {"is_active": False})
    with pytest.raises(InvalidStateError):
        ledger.apply(customer_id, tx(amount="1"), rates)


def test_concurrent_writers_on_one_customer_do_not_lose_updates(ledger, rates, customer_id):
    def writer():
        for _ in range(10):
            ledger.apply(customer_id, tx(amount="1", currency="divisas"), rates)

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(writer) for _ in range(4)]
    for future in futures:
        future.result()

    assert len(ledger.entries(customer_id)) == 40
    assert ledger.cached_balances(customer_id).balance_divisas == D("40.00")
    assert not ledger.verify(customer_id).repaired


def test_quote_edit_races_with_applies_on_linked_customers(db, ledger, quotes, rates, customer_id):
    other_id = db.create_customer(name="Restaurant El Faro")
    quote = quotes.create(
        QuoteIn(items=[QuoteItemIn(name="Pargo", quantity=D("1"), unit_price_primary=D("10"))]),
        rates,
    )
    for cid in (customer_id, other_id):
        quotes.link_purchase(cid, quote.id, rates)

    def editor():
        for qty in range(1, 11):
            quotes.edit(
                quote.id,
                QuoteUpdateIn(
                    items=[QuoteItemIn(name="Pargo", quantity=D(qty), unit_price_primary=D("10"))]
                ),
            )

    def payer(cid):
        for _ in range(10):
            ledger.apply(cid, tx(kind="payment", amount="1"), rates)

    with ThreadPoolExecutor(max_workers=3) as pool:
        futures = [
            pool.submit(editor),
            pool.submit(payer, customer_id),
            pool.submit(payer, other_id),
        ]
    for future in futures:
        future.result()

    assert quotes.get(quote.id).total_primary == D("100.00")
    for cid in (customer_id, other_id):
        assert ledger.cached_balances(cid).balance_bcv == D("90.00")
        assert not ledger.verify(cid).repaired
