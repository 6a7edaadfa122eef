"""Balance projection between the BCV and divisas views.

A dual purchase is owed either as bolivars at the BCV rate (its
amount_primary, already inside balance_bcv) or as cash dollars (its
amount_secondary). The divisas view moves every unsettled dual purchase from
the first column to the second. Nothing here writes; callers share these
functions instead of re-deriving views on their own.
"""

from __future__ import annotations

from typing import Iterable

from cuentas.core.errors import ValidationError
from cuentas.models.constants import BALANCE_VIEWS
from cuentas.services.ledger import Balances, LedgerEntry
from cuentas.services.money import round2, sum_money


def _check_view(view: str) -> None:
    if view not in BALANCE_VIEWS:
        raise ValidationError("view must be 'bcv' or 'divisas'")


def has_dual(entries: Iterable[LedgerEntry]) -> bool:
    return any(e.is_dual and not e.is_settled for e in entries)


def project(stored: Balances, entries: Iterable[LedgerEntry], view: str) -> Balances:
    """Re-express `stored` under `view`.

    bcv: unchanged. divisas: balance_bcv - D, balance_divisas + S, where D and
    S are the primary and secondary sums of unsettled dual purchases.
    balance_euro never moves.
    """
    _check_view(view)
    if view == "bcv":
        return stored
    duals = [e for e in entries if e.is_dual and not e.is_settled]
    if not duals:
        return stored
    moved_out = sum_money(e.amount_primary for e in duals)
    moved_in = sum_money(e.amount_secondary for e in duals)
    return Balances(
        balance_divisas=round2(stored.balance_divisas + moved_in),
        balance_bcv=round2(stored.balance_bcv - moved_out),
        balance_euro=stored.balance_euro,
    )


def display_amount(entry: LedgerEntry, view: str):
    """Amount a row shows under `view`: dual purchases show their cash figure in divisas."""
    _check_view(view)
    if view == "divisas" and entry.is_dual:
        return entry.amount_secondary
    return entry.amount_primary
