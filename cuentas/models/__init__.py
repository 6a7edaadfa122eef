"""Pydantic models for the Cuentas ledger API."""

from .constants import (
    RATE_TYPES,
    CURRENCY_TYPES,
    TRANSACTION_KINDS,
    PAYMENT_METHODS,
    PRICING_MODES,
    QUOTE_STATUSES,
    BALANCE_VIEWS,
)  # re-export
from .customer import CustomerIn, CustomerOut, CustomerUpdateIn
from .transaction import TransactionIn, TransactionOut, TransactionUpdateIn, SettleIn
from .quote import QuoteIn, QuoteItemIn, QuoteOut, QuoteUpdateIn
from .rates import CurrentRatesOut, RateSettingsIn, RateSettingsOut

__all__ = [
    "RATE_TYPES",
    "CURRENCY_TYPES",
    "TRANSACTION_KINDS",
    "PAYMENT_METHODS",
    "PRICING_MODES",
    "QUOTE_STATUSES",
    "BALANCE_VIEWS",
    "CustomerIn",
    "CustomerOut",
    "CustomerUpdateIn",
    "TransactionIn",
    "TransactionOut",
    "TransactionUpdateIn",
    "SettleIn",
    "QuoteIn",
    "QuoteItemIn",
    "QuoteOut",
    "QuoteUpdateIn",
    "CurrentRatesOut",
    "RateSettingsIn",
    "RateSettingsOut",
]
