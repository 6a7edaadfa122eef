from __future__ import annotations

"""Reference-rate source abstraction.

A RateSource answers "how many bolivars for one USD / one EUR". The ledger
and the quote engine receive one as an explicit dependency and capture the
answer once as `locked_rate`; nothing re-queries it retroactively.
"""
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from cuentas.models.constants import RATE_KINDS


class UnknownRateKind(ValueError):
    pass


class RateSource(ABC):
    name: str = "abstract"

    @abstractmethod
    def fetch_rates(self) -> Dict[str, Decimal]:
        """Return {"usd": Bs per USD, "eur": Bs per EUR}."""
        raise NotImplementedError

    def current_rate(self, kind: str) -> Decimal:
        kind = kind.lower()
        if kind not in RATE_KINDS:
            raise UnknownRateKind(f"unknown rate kind '{kind}'")
        return self.fetch_rates()[kind]

    def rate_on_date(self, day: date) -> Optional[Decimal]:
        """Sources without history know nothing about past days."""
        return None
