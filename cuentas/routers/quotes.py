from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from cuentas.core.errors import ValidationError
from cuentas.models.constants import QUOTE_STATUSES
from cuentas.models.quote import (
    QuoteIn,
    OverdueQuoteOut,
    QuoteLinkIn,
    QuoteOut,
    QuoteStatsOut,
    QuoteStatusIn,
    QuoteUpdateIn,
)
from cuentas.routers.common import (
    get_quote_service,
    get_rate_source,
    overdue_quote_out,
    quote_out,
)
from cuentas.services.quote_service import QuoteService
from cuentas.services.rates.base import RateSource

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.get("", response_model=List[QuoteOut], summary="List quotes, newest first")
async def list_quotes(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    quotes: QuoteService = Depends(get_quote_service),
):
    if status_filter is not None and status_filter not in QUOTE_STATUSES:
        raise ValidationError("status must be 'pending' or 'settled'")
    return [quote_out(q) for q in quotes.list(status=status_filter, limit=limit)]


@router.post(
    "",
    response_model=QuoteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Price and store a quote",
)
async def create_quote(
    payload: QuoteIn,
    quotes: QuoteService = Depends(get_quote_service),
    rate_source: RateSource = Depends(get_rate_source),
):
    return quote_out(quotes.create(payload, rate_source))


@router.get("/stats", response_model=QuoteStatsOut, summary="Today's quote counters")
async def quote_stats(quotes: QuoteService = Depends(get_quote_service)):
    return QuoteStatsOut(**quotes.stats())


@router.get(
    "/overdue",
    response_model=List[OverdueQuoteOut],
    summary="Pending quotes older than N days, oldest first",
)
async def overdue_quotes(
    days: int = Query(15, ge=0),
    limit: int = Query(50, ge=1, le=500),
    quotes: QuoteService = Depends(get_quote_service),
):
    return [overdue_quote_out(q) for q in quotes.overdue(days=days, limit=limit)]


@router.get("/{quote_id}", response_model=QuoteOut, summary="Get a quote")
async def get_quote(quote_id: str, quotes: QuoteService = Depends(get_quote_service)):
    return quote_out(quotes.get(quote_id))


@router.put(
    "/{quote_id}",
    response_model=QuoteOut,
    summary="Regenerate a quote's items and totals",
)
async def edit_quote(
    quote_id: str,
    payload: QuoteUpdateIn,
    quotes: QuoteService = Depends(get_quote_service),
    rate_source: RateSource = Depends(get_rate_source),
):
    return quote_out(quotes.edit(quote_id, payload, rate_source))


@router.delete(
    "/{quote_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a quote"
)
async def delete_quote(quote_id: str, quotes: QuoteService = Depends(get_quote_service)):
    quotes.delete(quote_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{quote_id}/status", response_model=QuoteOut, summary="Set quote status")
async def set_quote_status(
    quote_id: str,
    payload: QuoteStatusIn,
    quotes: QuoteService = Depends(get_quote_service),
):
    return quote_out(quotes.set_status(quote_id, payload.status))


@router.put(
    "/{quote_id}/external-link",
    response_model=QuoteOut,
    summary="Flag whether the quote is referenced outside the ledger",
)
async def set_quote_external_link(
    quote_id: str,
    payload: QuoteLinkIn,
    quotes: QuoteService = Depends(get_quote_service),
):
    return quote_out(quotes.set_external_link(quote_id, payload.external_link))
