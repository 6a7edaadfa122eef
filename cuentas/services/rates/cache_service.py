"""Central rate service: the RateSource the application injects.

Purpose:
    Give every caller one place to read the current USD/EUR reference rates,
    cached for a configurable TTL (metadata `rates_cache_ttl`, falling back to
    settings.rates_cache_ttl_seconds).

Design:
    - Wraps the provider selected via metadata/settings (`make_rate_provider`).
    - Keeps the last fetched pair plus its timestamp; refreshes when stale.
    - A manual override stored in metadata wins over the provider until
      cleared, so an operator can pin the day's rate when the mirrors lag.
    - Every fresh fetch and every override is written to `bcv_rates` (one row
      per day), which is what `rate_on_date` answers from.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from threading import Lock
from typing import Dict, Optional, TYPE_CHECKING
import logging

from cuentas.core.config import Settings
from cuentas.core.errors import ValidationError
from cuentas.services import clock
from cuentas.services.app_settings import (
    clear_manual_rates,
    get_effective_rate_provider,
    get_manual_rates,
    get_rates_cache_ttl,
    set_manual_rates,
    set_rate_provider,
    set_rates_cache_ttl,
)
from cuentas.services.money import to_decimal
from .base import RateSource
from .providers import make_rate_provider

if TYPE_CHECKING:  # pragma: no cover
    from cuentas.db.dal import Database

logger = logging.getLogger("cuentas.rates")


@dataclass
class _CacheEntry:
    rates: Dict[str, Decimal]
    fetched_at: datetime


@dataclass(frozen=True)
class CurrentRates:
    usd: Decimal
    eur: Decimal
    manual: bool
    source: str


@dataclass(frozen=True)
class HistoricalRate:
    date: date
    usd_rate: Decimal
    eur_rate: Optional[Decimal]
    source: str


class CentralRateService(RateSource):
    """TTL-cached, overridable rate source with daily history."""

    name = "central"

    def __init__(self, db: "Database", settings: Settings):
        self._db = db
        self._settings = settings
        self._lock = Lock()
        self._cache: Optional[_CacheEntry] = None
        self.reload()

    def reload(self) -> None:
        """Re-read provider and TTL from metadata and drop the cache."""
        provider_name = get_effective_rate_provider(self._db, self._settings)
        with self._lock:
            self._provider = make_rate_provider(provider_name, self._settings)
            self._ttl = timedelta(seconds=get_rates_cache_ttl(self._db, self._settings))
            self._cache = None

    @property
    def provider_name(self) -> str:
        return self._provider.name

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def configure(
        self, provider: Optional[str] = None, ttl_seconds: Optional[int] = None
    ) -> None:
        """Persist provider/TTL changes in metadata, then reload."""
        try:
            if provider is not None:
                set_rate_provider(self._db, provider)
            if ttl_seconds is not None:
                set_rates_cache_ttl(self._db, ttl_seconds)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        self.reload()
        logger.info(
            "rate settings changed",
            extra={"provider": self.provider_name, "ttl_seconds": self.ttl_seconds},
        )

    # Internal --------------------------------------------------
    def _is_entry_valid(self, entry: _CacheEntry) -> bool:
        return datetime.utcnow() - entry.fetched_at < self._ttl

    def _provider_rates(self, record: bool = True) -> Dict[str, Decimal]:
        with self._lock:
            entry = self._cache
            if entry and self._is_entry_valid(entry):
                return dict(entry.rates)
            rates = self._provider.fetch_rates()
            self._cache = _CacheEntry(rates=rates, fetched_at=datetime.utcnow())
        if record:
            self._db.upsert_rate(clock.utc_today(), rates["usd"], rates["eur"], self._provider.name)
        logger.info(
            "reference rates refreshed",
            extra={"provider": self._provider.name, "usd": str(rates["usd"])},
        )
        return dict(rates)

    # RateSource ------------------------------------------------
    def fetch_rates(self) -> Dict[str, Decimal]:
        current = self.current_rates_detail()
        return {"usd": current.usd, "eur": current.eur}

    def current_rates_detail(self) -> CurrentRates:
        manual = get_manual_rates(self._db)
        if manual:
            eur = manual.get("eur") or self._provider_rates(record=False)["eur"]
            return CurrentRates(usd=manual["usd"], eur=eur, manual=True, source="manual")
        rates = self._provider_rates()
        return CurrentRates(
            usd=rates["usd"], eur=rates["eur"], manual=False, source=self._provider.name
        )

    def rate_on_date(self, day: date) -> Optional[Decimal]:
        found = self.history(day)
        return found.usd_rate if found else None

    def history(self, day: date) -> Optional[HistoricalRate]:
        """Closest stored rate on or before `day`."""
        row = self._db.rate_on_or_before(day)
        if not row:
            return None
        return HistoricalRate(
            date=date.fromisoformat(row["date"]),
            usd_rate=to_decimal(row["usd_rate"]),
            eur_rate=to_decimal(row["eur_rate"]) if row["eur_rate"] is not None else None,
            source=row["source"],
        )

    # Manual override -------------------------------------------
    def set_override(self, usd_rate: Decimal, eur_rate: Optional[Decimal] = None) -> CurrentRates:
        rates = set_manual_rates(self._db, usd_rate, eur_rate)
        self._db.upsert_rate(clock.utc_today(), rates["usd"], rates.get("eur"), "manual")
        logger.info("manual rate override set", extra={"usd": str(rates["usd"])})
        return self.current_rates_detail()

    def clear_override(self) -> bool:
        removed = clear_manual_rates(self._db)
        if removed:
            logger.info("manual rate override cleared")
        return removed
