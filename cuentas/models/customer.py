from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import RATE_TYPES
from .fields import Money
from .transaction import TransactionOut


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CustomerIn(BaseModel):
    name: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    rate_type: str = "bcv_usd"
    custom_rate: Optional[Decimal] = Field(None, gt=0)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be empty")
        return value.strip()

    @field_validator("phone", "notes")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _clean_optional(value)

    @field_validator("rate_type")
    @classmethod
    def _valid_rate_type(cls, value: str) -> str:
        if value not in RATE_TYPES:
            raise ValueError("unsupported rate type")
        return value

    @model_validator(mode="after")
    def _custom_rate_only_for_manual(self) -> "CustomerIn":
        if self.rate_type != "manual":
            self.custom_rate = None
        return self


class CustomerUpdateIn(BaseModel):
    """Partial update. Balances are never writable here; they come from recompute."""

    name: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    rate_type: Optional[str] = None
    custom_rate: Optional[Decimal] = Field(None, gt=0)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("name cannot be empty")
        return value.strip() if value is not None else None

    @field_validator("phone", "notes")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _clean_optional(value)

    @field_validator("rate_type")
    @classmethod
    def _valid_rate_type(cls, value: Optional[str]) -> Optional[str]:
        # omitted means "keep"; an explicit null has no meaning for a required column
        if value is None or value not in RATE_TYPES:
            raise ValueError("unsupported rate type")
        return value

    @model_validator(mode="after")
    def _at_least_one(self) -> "CustomerUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    rate_type: str
    custom_rate: Optional[Money] = None
    share_token: Optional[str] = None
    is_active: bool
    balance_divisas: Money
    balance_bcv: Money
    balance_euro: Money
    created_at: datetime
    updated_at: datetime


class BalancesOut(BaseModel):
    view: str
    has_dual: bool
    balance_divisas: Money
    balance_bcv: Money
    balance_euro: Money


class RecomputeOut(BaseModel):
    customer_id: int
    repaired: bool
    balance_divisas: Money
    balance_bcv: Money
    balance_euro: Money


class ShareTokenOut(BaseModel):
    token: str
    url: str


class PublicCustomerOut(BaseModel):
    name: str
    rate_type: str
    balance_divisas: Money
    balance_bcv: Money
    balance_euro: Money


class PublicAccountOut(BaseModel):
    view: str
    has_dual: bool
    customer: PublicCustomerOut
    transactions: List[TransactionOut]


class CustomerSummaryOut(BaseModel):
    id: int
    name: str
    rate_type: str
    balance_divisas: Money
    balance_bcv: Money
    balance_euro: Money
    total_purchases: int
    last_purchase_date: Optional[dt.date] = None
    last_payment_date: Optional[dt.date] = None


class PaymentPatternOut(BaseModel):
    customer_id: int
    total_purchases: int
    total_payments: int
    unpaid_purchases: int
    total_unpaid: Money
    avg_days_to_pay: Optional[int] = None
    avg_days_between_purchases: Optional[int] = None
    last_purchase_date: Optional[dt.date] = None
    last_payment_date: Optional[dt.date] = None
