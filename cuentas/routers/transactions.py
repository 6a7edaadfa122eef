from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status

from cuentas.models.transaction import (
    SettleIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
)
from cuentas.routers.common import (
    get_ledger,
    get_quote_service,
    get_rate_source,
    transaction_out,
)
from cuentas.services.ledger import LedgerEngine
from cuentas.services.quote_service import QuoteService
from cuentas.services.rates.base import RateSource

router = APIRouter(prefix="/customers/{customer_id}", tags=["transactions"])


@router.get(
    "/transactions",
    response_model=List[TransactionOut],
    summary="Customer ledger, newest first",
)
async def list_transactions(
    customer_id: int,
    view: str = Query("bcv", description="bcv | divisas; controls display_amount"),
    ledger: LedgerEngine = Depends(get_ledger),
):
    ledger.cached_balances(customer_id)  # 404 for unknown customers
    return [transaction_out(e, view) for e in ledger.entries(customer_id)]


@router.post(
    "/transactions",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record a purchase or payment",
)
async def create_transaction(
    customer_id: int,
    payload: TransactionIn,
    ledger: LedgerEngine = Depends(get_ledger),
    rate_source: RateSource = Depends(get_rate_source),
):
    return transaction_out(ledger.apply(customer_id, payload, rate_source))


@router.patch(
    "/transactions/{tx_id}",
    response_model=TransactionOut,
    summary="Edit any subset of a transaction's fields",
)
async def edit_transaction(
    customer_id: int,
    tx_id: int,
    payload: TransactionUpdateIn,
    ledger: LedgerEngine = Depends(get_ledger),
):
    return transaction_out(ledger.edit(customer_id, tx_id, payload.changes()))


@router.delete(
    "/transactions/{tx_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a transaction",
)
async def delete_transaction(
    customer_id: int, tx_id: int, ledger: LedgerEngine = Depends(get_ledger)
):
    ledger.delete(customer_id, tx_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/transactions/{tx_id}/settle",
    response_model=TransactionOut,
    summary="Mark a purchase as paid",
)
async def settle_transaction(
    customer_id: int,
    tx_id: int,
    payload: Optional[SettleIn] = Body(None),
    ledger: LedgerEngine = Depends(get_ledger),
):
    payload = payload or SettleIn()
    entry = ledger.settle(
        customer_id,
        tx_id,
        method=payload.method,
        settle_date=payload.date,
        notes=payload.notes,
    )
    return transaction_out(entry)


@router.post(
    "/transactions/{tx_id}/unsettle",
    response_model=TransactionOut,
    summary="Reopen a settled purchase",
)
async def unsettle_transaction(
    customer_id: int, tx_id: int, ledger: LedgerEngine = Depends(get_ledger)
):
    return transaction_out(ledger.unsettle(customer_id, tx_id))


@router.post(
    "/quotes/{quote_id}/purchase",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Book a quote as a purchase on this customer's ledger",
)
async def link_quote_purchase(
    customer_id: int,
    quote_id: str,
    quotes: QuoteService = Depends(get_quote_service),
    rate_source: RateSource = Depends(get_rate_source),
):
    return transaction_out(quotes.link_purchase(customer_id, quote_id, rate_source))
