"""Database migration utilities.

Handles schema evolution by applying idempotent migrations keyed by an integer
`schema_version` stored in the metadata table.

  v1: base tables from `schema.init_db`
  v2: quotes gain pricing_mode, delivery_fee, hide_bs_on_documents,
      locked_rate and external_link. pricing_mode stays NULL on rows written
      before the column existed; readers infer it instead of rewriting history.
"""

from __future__ import annotations
from pathlib import Path
import logging
import sqlite3
from typing import Callable, Optional, Sequence, Tuple

from . import schema as schema_def
from .schema import init_db

SCHEMA_VERSION_KEY = "schema_version"

logger = logging.getLogger("cuentas.db")

_QUOTE_V2_COLUMNS = (
    ("pricing_mode", "TEXT CHECK (pricing_mode IN ('bcv','divisa','dual'))"),
    ("delivery_fee", "REAL NOT NULL DEFAULT 0"),
    ("hide_bs_on_documents", "INTEGER NOT NULL DEFAULT 0"),
    ("locked_rate", "REAL"),
    ("external_link", "INTEGER NOT NULL DEFAULT 0"),
)


def _table_columns(cur: sqlite3.Cursor, table: str) -> set[str]:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}


def _quotes_pricing_columns(cur: sqlite3.Cursor) -> None:
    existing = _table_columns(cur, "quotes")
    for name, ddl in _QUOTE_V2_COLUMNS:
        if name not in existing:
            cur.execute(f"ALTER TABLE quotes ADD COLUMN {name} {ddl}")


# (target version, step); steps run in order inside one transaction each
MIGRATIONS: Sequence[Tuple[int, Callable[[sqlite3.Cursor], None]]] = (
    (2, _quotes_pricing_columns),
)
CURRENT_SCHEMA_VERSION = MIGRATIONS[-1][0]


def _read_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,)
        ).fetchone()
    except sqlite3.OperationalError:
        # metadata table may not exist yet (first run before init_db)
        return None
    return int(row[0]) if row else None


def _write_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def apply_migrations(db_path: Path) -> int:
    """Bring the database at `db_path` up to CURRENT_SCHEMA_VERSION and return it."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = _read_version(conn) or 1
        for target, step in MIGRATIONS:
            if version >= target:
                continue
            try:
                step(conn.cursor())
                _write_version(conn, target)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            logger.info("schema migrated", extra={"schema_version": target})
            version = target
        _write_version(conn, version)
        conn.commit()
        return version
    finally:
        conn.close()
