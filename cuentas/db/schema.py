"""Database schema DDL definitions and initialization utilities.

Tables:
  - customers: account holders plus the three cached balances
  - customer_transactions: the per-customer ledger log (purchases & payments)
  - quotes: itemized price estimates; items stored as a JSON array
  - bcv_rates: one reference rate row per calendar day
  - metadata: key/value store (schema version, rate override, runtime settings)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

CUSTOMERS_DDL = f"""
CREATE TABLE IF NOT EXISTS customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    phone TEXT,
    notes TEXT,
    rate_type TEXT NOT NULL DEFAULT 'bcv_usd' CHECK (rate_type IN ('bcv_usd','bcv_eur','manual')),
    custom_rate REAL,
    share_token TEXT UNIQUE,
    is_active INTEGER NOT NULL DEFAULT 1,
    balance_divisas REAL NOT NULL DEFAULT 0,
    balance_bcv REAL NOT NULL DEFAULT 0,
    balance_euro REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

TRANSACTIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS customer_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('purchase','payment')),
    date TEXT NOT NULL, -- ISO date (YYYY-MM-DD)
    description TEXT NOT NULL,
    amount_primary REAL NOT NULL DEFAULT 0,
    amount_bs REAL NOT NULL DEFAULT 0,
    amount_secondary REAL, -- dual purchases only (bcv_usd track)
    currency_type TEXT NOT NULL DEFAULT 'divisas' CHECK (currency_type IN ('divisas','bcv_usd','bcv_eur')),
    quote_ref TEXT,
    payment_method TEXT,
    locked_rate REAL,
    is_settled INTEGER NOT NULL DEFAULT 0,
    settle_method TEXT,
    settle_date TEXT,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (customer_id) REFERENCES customers(id)
);
"""

QUOTES_DDL = f"""
CREATE TABLE IF NOT EXISTS quotes (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    items TEXT NOT NULL, -- JSON array of priced lines
    total_primary REAL NOT NULL,
    total_secondary REAL,
    total_bs REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','settled')),
    customer_name TEXT,
    customer_address TEXT,
    source TEXT NOT NULL DEFAULT 'admin',
    settled_at TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

BCV_RATES_DDL = f"""
CREATE TABLE IF NOT EXISTS bcv_rates (
    date TEXT PRIMARY KEY, -- ISO date
    usd_rate REAL NOT NULL,
    eur_rate REAL,
    source TEXT NOT NULL DEFAULT 'static',
    fetched_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

TRANSACTIONS_CUSTOMER_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_tx_customer_date "
    "ON customer_transactions(customer_id, date);"
)
TRANSACTIONS_QUOTE_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_tx_quote ON customer_transactions(quote_ref);"
)
QUOTES_STATUS_INDEX_DDL = "CREATE INDEX IF NOT EXISTS idx_quotes_status ON quotes(status);"
CUSTOMERS_ACTIVE_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_customers_active ON customers(is_active, name);"
)

DDL_ORDER: Sequence[str] = (
    CUSTOMERS_DDL,
    TRANSACTIONS_DDL,
    QUOTES_DDL,
    BCV_RATES_DDL,
    METADATA_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    The quotes table is created in its legacy shape; `migrate` adds the
    pricing-mode era columns so old and new installs converge.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        _ensure_indexes(cur)
        conn.commit()
    finally:
        conn.close()


def _ensure_indexes(cur: sqlite3.Cursor) -> None:
    for ddl in (
        TRANSACTIONS_CUSTOMER_INDEX_DDL,
        TRANSACTIONS_QUOTE_INDEX_DDL,
        QUOTES_STATUS_INDEX_DDL,
        CUSTOMERS_ACTIVE_INDEX_DDL,
    ):
        try:
            cur.execute(ddl)
        except sqlite3.OperationalError:
            # Legacy tables may lack columns; migration handles re-creation.
            continue
