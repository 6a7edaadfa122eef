from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cuentas.core.config import Settings
from cuentas.db.dal import Database
from cuentas.db.migrate import apply_migrations
from cuentas.main import create_app
from cuentas.services.ledger import LedgerEngine
from cuentas.services.quote_service import QuoteService
from cuentas.services.rates.providers import StaticRateSource


@pytest.fixture()
def settings(tmp_path):
    s = Settings(
        data_dir=tmp_path,
        db_path=tmp_path / "test.sqlite3",
        rate_provider="static",
        static_usd_rate=Decimal("40.00"),
        static_eur_rate=Decimal("43.50"),
        debug=False,
    )
    s.init_post_load()
    return s


@pytest.fixture()
def db(settings):
    apply_migrations(settings.db_path)
    return Database(settings.db_path)


@pytest.fixture()
def rates():
    return StaticRateSource(Decimal("40"), Decimal("43.50"))


@pytest.fixture()
def ledger(db, settings):
    return LedgerEngine(db, tolerance=settings.balance_tolerance)


@pytest.fixture()
def quotes(db, ledger):
    return QuoteService(db, ledger)


@pytest.fixture()
def customer_id(db):
    return db.create_customer(name="Bodegón La Esquina", phone="04141234567")


@pytest.fixture()
def client(settings):
    app = create_app(settings)
    return TestClient(app)
