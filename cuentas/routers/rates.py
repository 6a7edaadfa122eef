"""Reference-rate endpoints.

    - GET /rates                -> current USD/EUR rates and where they came from
    - GET /rates/history?date=  -> closest stored rate on or before a day
    - PUT /rates/override       -> pin today's rate manually
    - DELETE /rates/override    -> go back to the provider
    - GET|PUT /rates/settings   -> provider and cache TTL (persisted in metadata)
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status

from cuentas.core.errors import NotFoundError
from cuentas.models.rates import (
    CurrentRatesOut,
    RateHistoryOut,
    RateOverrideIn,
    RateSettingsIn,
    RateSettingsOut,
)
from cuentas.routers.common import get_rate_source
from cuentas.services.rates.cache_service import CentralRateService

router = APIRouter(prefix="/rates", tags=["rates"])


def _current(svc: CentralRateService) -> CurrentRatesOut:
    detail = svc.current_rates_detail()
    return CurrentRatesOut(
        usd=detail.usd, eur=detail.eur, manual=detail.manual, source=detail.source
    )


@router.get("", response_model=CurrentRatesOut, summary="Current reference rates")
async def current_rates(svc: CentralRateService = Depends(get_rate_source)):
    return _current(svc)


@router.get(
    "/history",
    response_model=RateHistoryOut,
    summary="Rate in force on a given day",
)
async def rate_history(
    day: date = Query(..., alias="date"),
    svc: CentralRateService = Depends(get_rate_source),
):
    found = svc.history(day)
    if not found:
        return RateHistoryOut(requested_date=day, found=False)
    return RateHistoryOut(
        requested_date=day,
        found=True,
        date=found.date,
        exact=found.date == day,
        usd_rate=found.usd_rate,
        eur_rate=found.eur_rate,
    )


@router.put("/override", response_model=CurrentRatesOut, summary="Set a manual rate")
async def set_override(
    payload: RateOverrideIn, svc: CentralRateService = Depends(get_rate_source)
):
    svc.set_override(payload.usd_rate, payload.eur_rate)
    return _current(svc)


@router.delete(
    "/override",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear the manual rate",
)
async def clear_override(svc: CentralRateService = Depends(get_rate_source)):
    if not svc.clear_override():
        raise NotFoundError("no manual rate override is active")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _settings(svc: CentralRateService) -> RateSettingsOut:
    return RateSettingsOut(provider=svc.provider_name, cache_ttl_seconds=svc.ttl_seconds)


@router.get("/settings", response_model=RateSettingsOut, summary="Rate provider settings")
async def rate_settings(svc: CentralRateService = Depends(get_rate_source)):
    return _settings(svc)


@router.put(
    "/settings",
    response_model=RateSettingsOut,
    summary="Switch rate provider and/or cache TTL",
)
async def update_rate_settings(
    payload: RateSettingsIn, svc: CentralRateService = Depends(get_rate_source)
):
    svc.configure(provider=payload.provider, ttl_seconds=payload.cache_ttl_seconds)
    return _settings(svc)
