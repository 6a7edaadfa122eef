from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from cuentas.core.config import Settings
from cuentas.core.errors import NotFoundError
from cuentas.db.dal import Database
from cuentas.models.customer import (
    BalancesOut,
    CustomerIn,
    CustomerOut,
    CustomerSummaryOut,
    CustomerUpdateIn,
    PaymentPatternOut,
    RecomputeOut,
    ShareTokenOut,
)
from cuentas.routers.common import (
    customer_out,
    get_app_settings,
    get_db,
    get_ledger,
    get_receivables,
    get_share_tokens,
)
from cuentas.services.balance_projector import has_dual, project
from cuentas.services.ledger import LedgerEngine
from cuentas.services.receivables import ReceivablesService
from cuentas.services.share_tokens import ShareTokenService

router = APIRouter(prefix="/customers", tags=["customers"])


def _require(db: Database, customer_id: int) -> dict:
    row = db.get_customer(customer_id)
    if not row:
        raise NotFoundError(f"customer {customer_id} not found")
    return row


@router.get("", response_model=List[CustomerOut], summary="List customers")
async def list_customers(
    include_inactive: bool = Query(False),
    search: Optional[str] = Query(None, description="Case-insensitive name filter"),
    db: Database = Depends(get_db),
):
    rows = db.list_customers(include_inactive=include_inactive, search=search)
    return [customer_out(r) for r in rows]


@router.post(
    "",
    response_model=CustomerOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer",
)
async def create_customer(payload: CustomerIn, db: Database = Depends(get_db)):
    customer_id = db.create_customer(
        name=payload.name,
        phone=payload.phone,
        notes=payload.notes,
        rate_type=payload.rate_type,
        custom_rate=payload.custom_rate,
    )
    return customer_out(_require(db, customer_id))


@router.get(
    "/summary",
    response_model=List[CustomerSummaryOut],
    summary="Active customers with balances and last activity",
)
async def customer_summaries(
    search: Optional[str] = Query(None, description="Case-insensitive name filter"),
    receivables: ReceivablesService = Depends(get_receivables),
):
    return [
        CustomerSummaryOut(
            id=s.id,
            name=s.name,
            rate_type=s.rate_type,
            total_purchases=s.total_purchases,
            last_purchase_date=s.last_purchase_date,
            last_payment_date=s.last_payment_date,
            **s.balances.as_dict(),
        )
        for s in receivables.summaries(search)
    ]


@router.get("/{customer_id}", response_model=CustomerOut, summary="Get a customer")
async def get_customer(
    customer_id: int,
    db: Database = Depends(get_db),
    ledger: LedgerEngine = Depends(get_ledger),
):
    # reads go through verification so a drifted cache heals itself
    checked = ledger.verify(customer_id)
    return customer_out(_require(db, customer_id), checked.balances)


@router.patch("/{customer_id}", response_model=CustomerOut, summary="Update a customer")
async def update_customer(
    customer_id: int,
    payload: CustomerUpdateIn,
    db: Database = Depends(get_db),
):
    current = _require(db, customer_id)
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("name", "") is None:
        fields.pop("name")
    if fields.get("is_active", False) is None:
        fields.pop("is_active")
    rate_type = fields.get("rate_type") or current["rate_type"]
    if rate_type != "manual":
        fields["custom_rate"] = None
    db.update_customer(customer_id, fields)
    return customer_out(_require(db, customer_id))


@router.delete(
    "/{customer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate a customer",
)
async def deactivate_customer(customer_id: int, db: Database = Depends(get_db)):
    _require(db, customer_id)
    db.update_customer(customer_id, {"is_active": False})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{customer_id}/balances",
    response_model=BalancesOut,
    summary="Balances projected into the bcv or divisas view",
)
async def get_balances(
    customer_id: int,
    view: str = Query("bcv", description="bcv | divisas"),
    ledger: LedgerEngine = Depends(get_ledger),
):
    stored = ledger.verify(customer_id).balances
    entries = ledger.entries(customer_id)
    projected = project(stored, entries, view)
    return BalancesOut(view=view, has_dual=has_dual(entries), **projected.as_dict())


@router.post(
    "/{customer_id}/recompute",
    response_model=RecomputeOut,
    summary="Verify cached balances against the ledger and repair on drift",
)
async def recompute_customer(
    customer_id: int, ledger: LedgerEngine = Depends(get_ledger)
):
    result = ledger.verify(customer_id)
    return RecomputeOut(
        customer_id=customer_id,
        repaired=result.repaired,
        **result.balances.as_dict(),
    )


@router.post(
    "/{customer_id}/share-token",
    response_model=ShareTokenOut,
    status_code=status.HTTP_201_CREATED,
    summary="Issue (or reissue) the public account link",
)
async def issue_share_token(
    customer_id: int,
    tokens: ShareTokenService = Depends(get_share_tokens),
    settings: Settings = Depends(get_app_settings),
):
    token = tokens.issue(customer_id)
    return ShareTokenOut(token=token, url=f"{settings.share_url_base.rstrip('/')}/{token}")


@router.delete(
    "/{customer_id}/share-token",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke the public account link",
)
async def revoke_share_token(
    customer_id: int, tokens: ShareTokenService = Depends(get_share_tokens)
):
    tokens.revoke(customer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{customer_id}/payment-pattern",
    response_model=PaymentPatternOut,
    summary="How quickly a customer pays",
)
async def payment_pattern(
    customer_id: int, receivables: ReceivablesService = Depends(get_receivables)
):
    return PaymentPatternOut(customer_id=customer_id, **asdict(receivables.pattern(customer_id)))
