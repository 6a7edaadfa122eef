from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import PRICING_MODES, QUOTE_SOURCES, QUOTE_STATUSES
from .fields import Money, Quantity


class QuoteItemIn(BaseModel):
    """One structured line as produced by the order form or the order parser.

    Numeric rules (quantity > 0, prices >= 0) are enforced by the pricing
    engine so direct callers get the same errors as the API.
    """

    name: str
    quantity: Decimal
    unit: str = "kg"
    unit_price_primary: Decimal
    unit_price_secondary: Optional[Decimal] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("item name cannot be empty")
        return v.strip()


def _valid_mode(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in PRICING_MODES:
        raise ValueError("pricing_mode must be one of bcv, divisa, dual")
    return value


class QuoteIn(BaseModel):
    items: List[QuoteItemIn]
    delivery_fee: Decimal = Decimal("0")
    pricing_mode: str = "bcv"
    hide_bs_on_documents: bool = False
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    date: Optional[dt.date] = None
    source: str = "admin"

    @field_validator("pricing_mode")
    @classmethod
    def _mode(cls, v: str) -> str:
        return _valid_mode(v)  # type: ignore[return-value]

    @field_validator("source")
    @classmethod
    def _source(cls, v: str) -> str:
        if v not in QUOTE_SOURCES:
            raise ValueError("unsupported quote source")
        return v


class QuoteUpdateIn(BaseModel):
    """Full regeneration of a quote's lines. Omitted header fields keep their value."""

    items: List[QuoteItemIn]
    delivery_fee: Optional[Decimal] = None
    pricing_mode: Optional[str] = None
    hide_bs_on_documents: Optional[bool] = None
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None

    @field_validator("pricing_mode")
    @classmethod
    def _mode(cls, v: Optional[str]) -> Optional[str]:
        return _valid_mode(v)


class QuoteStatusIn(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _status(cls, v: str) -> str:
        if v not in QUOTE_STATUSES:
            raise ValueError("status must be 'pending' or 'settled'")
        return v


class QuoteLinkIn(BaseModel):
    external_link: bool


class QuoteItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    quantity: Quantity
    unit: str
    unit_price_primary: Money
    line_primary: Money
    unit_price_secondary: Optional[Money] = None
    line_secondary: Optional[Money] = None


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    date: dt.date
    items: List[QuoteItemOut]
    total_primary: Money
    total_secondary: Optional[Money] = None
    total_bs: Money
    delivery_fee: Money
    pricing_mode: str
    pricing_mode_inferred: bool = False
    hide_bs_on_documents: bool
    status: str
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    locked_rate: Optional[Money] = None
    external_link: bool
    source: str
    settled_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class QuoteStatsOut(BaseModel):
    created_today: int
    settled_today_primary: Money
    settled_today_bs: Money
    pending: int
    total: int = Field(..., ge=0)


class OverdueQuoteOut(QuoteOut):
    days_old: int
    is_linked: bool
