"""Operator-tunable settings backed by the metadata table.

Typed accessors fall back to the environment `Settings` when a key is missing
or invalid, so a bad row never takes the API down.

Metadata keys:
  - rate_provider_override: str in {static, external-http}
  - rates_cache_ttl: int (seconds, 60..86400)
  - manual_rates: JSON object {"usd": "41.20", "eur": "44.80"}; while present it
    replaces whatever the provider reports
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Dict, Optional, Protocol

from cuentas.core.config import ALLOWED_RATE_PROVIDERS, Settings, get_settings
from cuentas.services.money import round2, to_decimal

PROVIDER_KEY = "rate_provider_override"
TTL_KEY = "rates_cache_ttl"
MANUAL_RATES_KEY = "manual_rates"


class _DBConnProto(Protocol):
    def _connect(self): ...  # noqa: D401


# ------------- Low level helpers -----------------


def _get_metadata_value(db: _DBConnProto, key: str) -> Optional[str]:
    with db._connect() as conn:  # type: ignore[attr-defined]
        cur = conn.cursor()
        cur.execute("SELECT value FROM metadata WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None


def _set_metadata_value(db: _DBConnProto, key: str, value: str) -> None:
    with db._connect() as conn:  # type: ignore[attr-defined]
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO metadata(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=(strftime('%Y-%m-%dT%H:%M:%fZ','now'))",
            (key, value),
        )


def _delete_metadata_value(db: _DBConnProto, key: str) -> bool:
    with db._connect() as conn:  # type: ignore[attr-defined]
        cur = conn.cursor()
        cur.execute("DELETE FROM metadata WHERE key=?", (key,))
        return cur.rowcount > 0


def _get_int(
    db: _DBConnProto,
    key: str,
    default: int,
    min_v: int | None = None,
    max_v: int | None = None,
) -> int:
    val = _get_metadata_value(db, key)
    if val is None:
        return default
    try:
        iv = int(val)
    except ValueError:
        return default
    if min_v is not None:
        iv = max(min_v, iv)
    if max_v is not None:
        iv = min(max_v, iv)
    return iv


# ------------- Rate provider / cache -------------


def get_effective_rate_provider(
    db: _DBConnProto, settings: Optional[Settings] = None
) -> str:
    override = _get_metadata_value(db, PROVIDER_KEY)
    if override and override in ALLOWED_RATE_PROVIDERS:
        return override
    return (settings or get_settings()).rate_provider


def set_rate_provider(db: _DBConnProto, provider: str) -> None:
    if provider not in ALLOWED_RATE_PROVIDERS:
        raise ValueError(f"Unsupported provider '{provider}'")
    _set_metadata_value(db, PROVIDER_KEY, provider)


def get_rates_cache_ttl(db: _DBConnProto, settings: Optional[Settings] = None) -> int:
    default = (settings or get_settings()).rates_cache_ttl_seconds
    return _get_int(db, TTL_KEY, default, 60, 86400)


def set_rates_cache_ttl(db: _DBConnProto, ttl_seconds: int) -> None:
    if not (60 <= ttl_seconds <= 86400):
        raise ValueError("TTL must be between 60 and 86400 seconds")
    _set_metadata_value(db, TTL_KEY, str(ttl_seconds))


# ------------- Manual rate override --------------


def get_manual_rates(db: _DBConnProto) -> Optional[Dict[str, Decimal]]:
    raw = _get_metadata_value(db, MANUAL_RATES_KEY)
    if not raw:
        return None
    try:
        obj = json.loads(raw)
        rates = {k: to_decimal(v) for k, v in obj.items() if k in ("usd", "eur")}
    except (ValueError, AttributeError):
        return None
    if "usd" not in rates or any(v <= 0 for v in rates.values()):
        return None
    return rates


def set_manual_rates(
    db: _DBConnProto, usd_rate: Decimal, eur_rate: Optional[Decimal] = None
) -> Dict[str, Decimal]:
    if usd_rate <= 0 or (eur_rate is not None and eur_rate <= 0):
        raise ValueError("manual rates must be positive")
    rates = {"usd": round2(usd_rate)}
    if eur_rate is not None:
        rates["eur"] = round2(eur_rate)
    _set_metadata_value(
        db,
        MANUAL_RATES_KEY,
        json.dumps({k: str(v) for k, v in rates.items()}, separators=(",", ":")),
    )
    return rates


def clear_manual_rates(db: _DBConnProto) -> bool:
    return _delete_metadata_value(db, MANUAL_RATES_KEY)


__all__ = [
    "get_effective_rate_provider",
    "set_rate_provider",
    "get_rates_cache_ttl",
    "set_rates_cache_ttl",
    "get_manual_rates",
    "set_manual_rates",
    "clear_manual_rates",
]
