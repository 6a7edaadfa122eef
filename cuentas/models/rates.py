from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .fields import Money


class CurrentRatesOut(BaseModel):
    usd: Money
    eur: Money
    manual: bool
    source: str


class RateHistoryOut(BaseModel):
    requested_date: dt.date
    found: bool
    date: Optional[dt.date] = None
    exact: bool = False
    usd_rate: Optional[Money] = None
    eur_rate: Optional[Money] = None


class RateOverrideIn(BaseModel):
    usd_rate: Decimal = Field(..., gt=0, description="Bolivars per 1 USD")
    eur_rate: Optional[Decimal] = Field(None, gt=0, description="Bolivars per 1 EUR")


class RateSettingsIn(BaseModel):
    """Operator tuning persisted in metadata; omitted fields are kept."""

    provider: Optional[str] = Field(None, description="static | external-http")
    cache_ttl_seconds: Optional[int] = Field(None, ge=60, le=86400)

    @model_validator(mode="after")
    def _at_least_one(self) -> "RateSettingsIn":
        if self.provider is None and self.cache_ttl_seconds is None:
            raise ValueError("provide provider and/or cache_ttl_seconds")
        return self


class RateSettingsOut(BaseModel):
    provider: str
    cache_ttl_seconds: int
