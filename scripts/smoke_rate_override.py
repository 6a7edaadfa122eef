"""Smoke script for the manual rate override.

Sequence:
 1. Fetch baseline rates via the central rate service.
 2. Pin an obviously different USD rate.
 3. Fetch again (should report manual) and read today's history row.
 4. Clear the override and fetch (should revert to the provider rate).
"""

from decimal import Decimal
from pprint import pprint

from cuentas.core.config import get_settings
from cuentas.db.dal import Database
from cuentas.db.migrate import apply_migrations
from cuentas.services import clock
from cuentas.services.rates.cache_service import CentralRateService


def run():
    settings = get_settings()
    apply_migrations(settings.db_path)
    svc = CentralRateService(Database(settings.db_path), settings)
    output = {}

    output["baseline"] = svc.current_rates_detail()

    svc.set_override(Decimal("99.99"))
    output["override_active"] = svc.current_rates_detail()
    output["history_today"] = svc.history(clock.utc_today())

    output["cleared"] = svc.clear_override()
    output["after_clear"] = svc.current_rates_detail()

    pprint(output)


if __name__ == "__main__":
    run()
