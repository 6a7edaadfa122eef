from __future__ import annotations

"""Concrete rate sources and factory.

'static' serves the configured fixed rates. 'external-http' reads the BCV
USD quote from a primary mirror, then a fallback mirror, and degrades to the
static rates when both are down. Neither mirror publishes EUR, so the EUR
rate always comes from configuration.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
import logging

from cuentas.core.config import Settings
from cuentas.services.http_client import HttpError, get_json
from cuentas.services.money import round2, to_decimal
from .base import RateSource

logger = logging.getLogger("cuentas.rates")


class StaticRateSource(RateSource):
    name = "static"

    def __init__(self, usd_rate: Decimal, eur_rate: Decimal):
        if usd_rate <= 0 or eur_rate <= 0:
            raise ValueError("static rates must be positive")
        self._rates = {"usd": round2(usd_rate), "eur": round2(eur_rate)}

    def fetch_rates(self) -> Dict[str, Decimal]:
        return dict(self._rates)


def _parse_exchangedyn(data: Dict[str, Any]) -> Optional[Decimal]:
    quote = ((data.get("sources") or {}).get("BCV") or {}).get("quote")
    return to_decimal(quote) if quote else None


def _parse_bcvapi(data: Dict[str, Any]) -> Optional[Decimal]:
    precio = data.get("precio")
    return to_decimal(precio) if precio else None


class ExternalHTTPRateSource(RateSource):
    name = "external-http"
    _CACHE_TTL = timedelta(minutes=30)
    _FAILURE_TTL = timedelta(minutes=5)

    def __init__(
        self,
        primary_url: str,
        fallback_url: str,
        fallback: StaticRateSource,
        timeout: float = 5.0,
    ):
        self._endpoints = (
            (primary_url, _parse_exchangedyn),
            (fallback_url, _parse_bcvapi),
        )
        self._fallback = fallback
        self._timeout = timeout
        self._cache_expires: Optional[datetime] = None
        self._rates: Dict[str, Decimal] = {}
        self.degraded = False

    def _fetch_usd(self) -> Optional[Decimal]:
        for url, parse in self._endpoints:
            try:
                rate = parse(get_json(url, timeout=self._timeout, retries=1))
            except (HttpError, ValueError) as e:
                logger.warning("bcv endpoint unusable", extra={"url": url, "error": str(e)})
                continue
            if rate and rate > 0:
                return round2(rate)
        return None

    def _refresh_if_needed(self) -> None:
        now = datetime.utcnow()
        if self._cache_expires and now < self._cache_expires:
            return
        static = self._fallback.fetch_rates()
        usd = self._fetch_usd()
        if usd is None:
            logger.error("all bcv endpoints failed; using static rates")
            self._rates = static
            self.degraded = True
            self._cache_expires = now + self._FAILURE_TTL
            return
        self._rates = {"usd": usd, "eur": static["eur"]}
        self.degraded = False
        self._cache_expires = now + self._CACHE_TTL

    def fetch_rates(self) -> Dict[str, Decimal]:
        self._refresh_if_needed()
        return dict(self._rates)


def _static_from(settings: Settings) -> StaticRateSource:
    return StaticRateSource(settings.static_usd_rate, settings.static_eur_rate)


def _external_from(settings: Settings) -> ExternalHTTPRateSource:
    return ExternalHTTPRateSource(
        primary_url=str(settings.bcv_primary_url),
        fallback_url=str(settings.bcv_fallback_url),
        fallback=_static_from(settings),
        timeout=settings.http_timeout_seconds,
    )


_PROVIDER_REGISTRY: Dict[str, Callable[[Settings], RateSource]] = {
    "static": _static_from,
    "external-http": _external_from,
}


def make_rate_provider(kind: str, settings: Settings) -> RateSource:
    factory = _PROVIDER_REGISTRY.get(kind)
    if not factory:
        raise ValueError(f"Unknown rate provider kind '{kind}'")
    return factory(settings)
