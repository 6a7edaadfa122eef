"""Public, read-only account snapshot reached through a share token.

Every failure here is a plain 404 so a caller cannot tell an unknown token
from a revoked one.
"""

from fastapi import APIRouter, Depends, Query

from cuentas.core.errors import NotFoundError
from cuentas.db.dal import Database
from cuentas.models.customer import PublicAccountOut, PublicCustomerOut
from cuentas.models.quote import QuoteOut
from cuentas.routers.common import (
    get_db,
    get_ledger,
    get_quote_service,
    get_share_tokens,
    quote_out,
    transaction_out,
)
from cuentas.services.balance_projector import has_dual, project
from cuentas.services.ledger import LedgerEngine
from cuentas.services.quote_service import QuoteService
from cuentas.services.share_tokens import ShareTokenService

router = APIRouter(prefix="/cuenta", tags=["public"])


@router.get("/{token}", response_model=PublicAccountOut, summary="Shared account view")
async def public_account(
    token: str,
    view: str = Query("bcv", description="bcv | divisas"),
    db: Database = Depends(get_db),
    tokens: ShareTokenService = Depends(get_share_tokens),
    ledger: LedgerEngine = Depends(get_ledger),
):
    customer_id = tokens.resolve(token)
    stored = ledger.verify(customer_id).balances
    entries = ledger.entries(customer_id)
    projected = project(stored, entries, view)
    row = db.get_customer(customer_id)
    return PublicAccountOut(
        view=view,
        has_dual=has_dual(entries),
        customer=PublicCustomerOut(
            name=row["name"], rate_type=row["rate_type"], **projected.as_dict()
        ),
        transactions=[transaction_out(e, view) for e in entries],
    )


@router.get(
    "/{token}/quotes/{quote_id}",
    response_model=QuoteOut,
    summary="A quote referenced from the shared account",
)
async def public_quote(
    token: str,
    quote_id: str,
    db: Database = Depends(get_db),
    tokens: ShareTokenService = Depends(get_share_tokens),
    quotes: QuoteService = Depends(get_quote_service),
):
    customer_id = tokens.resolve(token)
    if not db.customer_references_quote(customer_id, quote_id):
        raise NotFoundError("quote not found")
    return quote_out(quotes.get(quote_id))
