from datetime import date, timedelta
from decimal import Decimal

import pytest

from cuentas.services import app_settings
from cuentas.services.clock import utc_today
from cuentas.services.http_client import HttpError
from cuentas.services.rates import providers
from cuentas.services.rates.base import UnknownRateKind
from cuentas.services.rates.cache_service import CentralRateService
from cuentas.services.rates.providers import (
    ExternalHTTPRateSource,
    StaticRateSource,
    make_rate_provider,
)

D = Decimal


def test_static_source(rates):
    assert rates.current_rate("usd") == D("40.00")
    assert rates.current_rate("EUR") == D("43.50")
    assert rates.rate_on_date(utc_today()) is None
    with pytest.raises(UnknownRateKind):
        rates.current_rate("cop")


def test_registry_rejects_unknown_provider(settings):
    assert isinstance(make_rate_provider("static", settings), StaticRateSource)
    with pytest.raises(ValueError):
        make_rate_provider("carrier-pigeon", settings)


def _external():
    return ExternalHTTPRateSource(
        "https://primary.example/bcv",
        "https://fallback.example/dolar",
        fallback=StaticRateSource(D("40"), D("43.50")),
        timeout=0.1,
    )


def test_external_prefers_primary(monkeypatch):
    def fake_get_json(url, **_):
        assert "primary" in url
        return {"sources": {"BCV": {"quote": "36.4567", "last_retrieved": "2026-10-17"}}}

    monkeypatch.setattr(providers, "get_json", fake_get_json)
    source = _external()
    assert source.current_rate("usd") == D("36.46")
    assert source.current_rate("eur") == D("43.50")
    assert not source.degraded


def test_external_falls_back_to_second_mirror(monkeypatch):
    def fake_get_json(url, **_):
        if "primary" in url:
            raise HttpError("down", url)
        return {"precio": 37.1}

    monkeypatch.setattr(providers, "get_json", fake_get_json)
    assert _external().current_rate("usd") == D("37.10")


def test_external_degrades_to_static(monkeypatch):
    def fake_get_json(url, **_):
        raise HttpError("down", url)

    monkeypatch.setattr(providers, "get_json", fake_get_json)
    source = _external()
    assert source.current_rate("usd") == D("40.00")
    assert source.degraded


def test_central_service_caches_and_records_history(db, settings, monkeypatch):
    calls = []
    original = StaticRateSource.fetch_rates

    def counting(self):
        calls.append(1)
        return original(self)

    monkeypatch.setattr(StaticRateSource, "fetch_rates", counting)
    svc = CentralRateService(db, settings)

    assert svc.current_rate("usd") == D("40.00")
    assert svc.current_rate("eur") == D("43.50")
    assert len(calls) == 1

    stored = svc.history(utc_today())
    assert stored.usd_rate == D("40.00")
    assert stored.source == "static"
    assert svc.rate_on_date(utc_today()) == D("40.00")


def test_manual_override_wins_until_cleared(db, settings):
    svc = CentralRateService(db, settings)
    current = svc.set_override(D("41.2"))
    assert current.manual and current.usd == D("41.20")
    assert current.eur == D("43.50")
    assert svc.current_rate("usd") == D("41.20")
    assert svc.history(utc_today()).source == "manual"

    assert svc.clear_override()
    assert not svc.clear_override()
    assert svc.current_rate("usd") == D("40.00")


def test_rate_on_date_uses_closest_previous_day(db, settings):
    svc = CentralRateService(db, settings)
    monday = date(2026, 3, 2)
    db.upsert_rate(monday, D("39.10"), D("42.00"), "manual")
    db.upsert_rate(monday + timedelta(days=3), D("39.90"), None, "manual")

    assert svc.rate_on_date(monday + timedelta(days=2)) == D("39.10")
    found = svc.history(monday + timedelta(days=4))
    assert found.date == monday + timedelta(days=3)
    assert found.eur_rate is None
    assert svc.rate_on_date(monday - timedelta(days=1)) is None


def test_metadata_settings_fall_back_to_environment(db, settings):
    assert app_settings.get_effective_rate_provider(db, settings) == "static"
    assert app_settings.get_rates_cache_ttl(db, settings) == settings.rates_cache_ttl_seconds

    app_settings.set_rates_cache_ttl(db, 120)
    assert app_settings.get_rates_cache_ttl(db, settings) == 120
    with pytest.raises(ValueError):
        app_settings.set_rates_cache_ttl(db, 5)
    with pytest.raises(ValueError):
        app_settings.set_rate_provider(db, "carrier-pigeon")
    assert app_settings.get_manual_rates(db) is None
