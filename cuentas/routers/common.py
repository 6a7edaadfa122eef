"""Dependencies and response builders shared by the routers.

Settings and the rate service live on `app.state` (set by `create_app`), so a
test app built with its own Settings gets its own database end to end.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Mapping, Optional

from fastapi import Depends, Request

from cuentas.core.config import Settings
from cuentas.db.dal import Database
from cuentas.models.customer import CustomerOut
from cuentas.models.quote import OverdueQuoteOut, QuoteOut
from cuentas.models.transaction import TransactionOut
from cuentas.services.balance_projector import display_amount
from cuentas.services.ledger import Balances, LedgerEngine, LedgerEntry
from cuentas.services.quote_service import OverdueQuote, QuoteService, QuoteView
from cuentas.services.rates.cache_service import CentralRateService
from cuentas.services.receivables import ReceivablesService
from cuentas.services.share_tokens import ShareTokenService

# Dependencies -----------------------------------------------------


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(settings: Settings = Depends(get_app_settings)) -> Database:
    return Database(settings.db_path)


def get_rate_source(request: Request) -> CentralRateService:
    return request.app.state.rate_service


def get_ledger(
    db: Database = Depends(get_db), settings: Settings = Depends(get_app_settings)
) -> LedgerEngine:
    return LedgerEngine(db, tolerance=settings.balance_tolerance)


def get_quote_service(
    db: Database = Depends(get_db),
    ledger: LedgerEngine = Depends(get_ledger),
    settings: Settings = Depends(get_app_settings),
) -> QuoteService:
    return QuoteService(db, ledger, id_digits=settings.quote_id_digits)


def get_share_tokens(
    db: Database = Depends(get_db), settings: Settings = Depends(get_app_settings)
) -> ShareTokenService:
    return ShareTokenService(db, token_bytes=settings.share_token_bytes)


def get_receivables(
    db: Database = Depends(get_db), ledger: LedgerEngine = Depends(get_ledger)
) -> ReceivablesService:
    return ReceivablesService(db, ledger)


# Response builders ------------------------------------------------


def transaction_out(entry: LedgerEntry, view: str = "bcv") -> TransactionOut:
    return TransactionOut.model_validate(
        {
            **asdict(entry),
            "is_dual": entry.is_dual,
            "display_amount": display_amount(entry, view),
        }
    )


def quote_out(view: QuoteView) -> QuoteOut:
    return QuoteOut.model_validate(asdict(view))


def overdue_quote_out(item: OverdueQuote) -> OverdueQuoteOut:
    return OverdueQuoteOut.model_validate(
        {**asdict(item.quote), "days_old": item.days_old, "is_linked": item.is_linked}
    )


def customer_out(row: Mapping[str, Any], balances: Optional[Balances] = None) -> CustomerOut:
    data = dict(row)
    data.update((balances or Balances.from_row(row)).as_dict())
    return CustomerOut.model_validate(data)
