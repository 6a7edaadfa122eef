from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import CURRENCY_TYPES, PAYMENT_METHODS, TRANSACTION_KINDS
from .fields import Money


def _valid_kind(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in TRANSACTION_KINDS:
        raise ValueError("kind must be 'purchase' or 'payment'")
    return value


def _valid_currency_type(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in CURRENCY_TYPES:
        raise ValueError("unsupported currency type")
    return value


def _valid_payment_method(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in PAYMENT_METHODS:
        raise ValueError("unsupported payment method")
    return value


class TransactionIn(BaseModel):
    kind: str
    date: dt.date
    description: str
    amount_primary: Decimal = Field(Decimal("0"), ge=0)
    amount_bs: Optional[Decimal] = Field(None, ge=0)
    amount_secondary: Optional[Decimal] = Field(None, ge=0)
    currency_type: str = "divisas"
    quote_ref: Optional[str] = None
    payment_method: Optional[str] = None
    locked_rate: Optional[Decimal] = Field(None, gt=0)
    notes: Optional[str] = None

    @field_validator("kind")
    @classmethod
    def _kind(cls, v: str) -> str:
        return _valid_kind(v)  # type: ignore[return-value]

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("description is required")
        return v.strip()

    @field_validator("currency_type")
    @classmethod
    def _currency_type(cls, v: str) -> str:
        return _valid_currency_type(v)  # type: ignore[return-value]

    @field_validator("payment_method")
    @classmethod
    def _payment_method(cls, v: Optional[str]) -> Optional[str]:
        return _valid_payment_method(v)


class TransactionUpdateIn(BaseModel):
    """Partial edit. customer_id is immutable and not accepted here.

    Fields explicitly sent as null clear the stored value (e.g. amount_secondary
    to turn a dual purchase back into a plain one); omitted fields are kept.
    """

    kind: Optional[str] = None
    date: Optional[dt.date] = None
    description: Optional[str] = None
    amount_primary: Optional[Decimal] = Field(None, ge=0)
    amount_bs: Optional[Decimal] = Field(None, ge=0)
    amount_secondary: Optional[Decimal] = Field(None, ge=0)
    currency_type: Optional[str] = None
    quote_ref: Optional[str] = None
    payment_method: Optional[str] = None
    locked_rate: Optional[Decimal] = Field(None, gt=0)
    notes: Optional[str] = None

    @field_validator("kind")
    @classmethod
    def _kind(cls, v: Optional[str]) -> Optional[str]:
        return _valid_kind(v)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("description cannot be empty")
        return v.strip() if v is not None else None

    @field_validator("currency_type")
    @classmethod
    def _currency_type(cls, v: Optional[str]) -> Optional[str]:
        return _valid_currency_type(v)

    @field_validator("payment_method")
    @classmethod
    def _payment_method(cls, v: Optional[str]) -> Optional[str]:
        return _valid_payment_method(v)

    @model_validator(mode="after")
    def _at_least_one(self) -> "TransactionUpdateIn":
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided for update")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class SettleIn(BaseModel):
    method: Optional[str] = None
    date: Optional[dt.date] = None
    notes: Optional[str] = None

    @field_validator("method")
    @classmethod
    def _method(cls, v: Optional[str]) -> Optional[str]:
        return _valid_payment_method(v)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    kind: str
    date: dt.date
    description: str
    amount_primary: Money
    amount_bs: Money
    amount_secondary: Optional[Money] = None
    currency_type: str
    quote_ref: Optional[str] = None
    payment_method: Optional[str] = None
    locked_rate: Optional[Money] = None
    is_settled: bool
    settle_method: Optional[str] = None
    settle_date: Optional[dt.date] = None
    notes: Optional[str] = None
    is_dual: bool
    display_amount: Optional[Money] = None
    created_at: dt.datetime
    updated_at: dt.datetime
