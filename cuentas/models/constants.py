"""Domain constants and enumerations for validation.

Kept as plain sets like the rest of the models; the database CHECK
constraints mirror them.
"""

from typing import Dict, Set

# Which reference rate a customer is billed at
RATE_TYPES: Set[str] = {"bcv_usd", "bcv_eur", "manual"}

# Independent currency tracks a debt can live in
CURRENCY_TYPES: Set[str] = {"divisas", "bcv_usd", "bcv_eur"}
CURRENCY_TRACK_ORDER = ("divisas", "bcv_usd", "bcv_eur")

# Cached balance column per currency track
BALANCE_FIELDS: Dict[str, str] = {
    "divisas": "balance_divisas",
    "bcv_usd": "balance_bcv",
    "bcv_eur": "balance_euro",
}

# Reference rate kind backing each track (divisas still locks the USD rate)
RATE_KIND_BY_TRACK: Dict[str, str] = {
    "divisas": "usd",
    "bcv_usd": "usd",
    "bcv_eur": "eur",
}
RATE_KINDS: Set[str] = {"usd", "eur"}

TRANSACTION_KINDS: Set[str] = {"purchase", "payment"}
PAYMENT_METHODS: Set[str] = {
    "efectivo",
    "tarjeta",
    "pago_movil",
    "transferencia",
    "zelle",
}

PRICING_MODES: Set[str] = {"bcv", "divisa", "dual"}
QUOTE_STATUSES: Set[str] = {"pending", "settled"}
QUOTE_SOURCES: Set[str] = {"admin", "cliente"}

BALANCE_VIEWS: Set[str] = {"bcv", "divisas"}
