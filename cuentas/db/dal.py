"""Data Access Layer for customers, ledger rows, quotes and reference rates.

Responsibilities
----------------
- Provide row-level CRUD helpers returning plain dicts (sqlite3.Row -> dict).
- Let services compose several helpers inside one SQLite transaction by
  passing the same cursor (`with db.transaction() as cur`), so a ledger
  mutation and its balance recompute commit together.
- Keep money conversion at the boundary: Decimal in, REAL stored.

Business rules (invariants, recompute, projections) live in `cuentas.services`.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
import json
import sqlite3
from typing import Any, Dict, Iterator, List, Mapping, Optional

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

CUSTOMER_COLUMNS = ("name", "phone", "notes", "rate_type", "custom_rate", "is_active")
TRANSACTION_COLUMNS = (
    "kind",
    "date",
    "description",
    "amount_primary",
    "amount_bs",
    "amount_secondary",
    "currency_type",
    "quote_ref",
    "payment_method",
    "locked_rate",
    "is_settled",
    "settle_method",
    "settle_date",
    "notes",
)
QUOTE_COLUMNS = (
    "date",
    "items",
    "total_primary",
    "total_secondary",
    "total_bs",
    "delivery_fee",
    "pricing_mode",
    "hide_bs_on_documents",
    "status",
    "customer_name",
    "customer_address",
    "locked_rate",
    "external_link",
    "source",
    "settled_at",
)


def _to_db(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor whose work commits as one unit (or rolls back on error)."""
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            yield cur
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _cursor(self, cur: Optional[sqlite3.Cursor]) -> Iterator[sqlite3.Cursor]:
        if cur is not None:
            yield cur
            return
        # standalone call: implicit transaction, committed on success
        conn = self._connect()
        try:
            yield conn.cursor()
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Customers
    def create_customer(
        self,
        name: str,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
        rate_type: str = "bcv_usd",
        custom_rate: Optional[Decimal] = None,
    ) -> int:
        with self._cursor(None) as cur:
            cur.execute(
                f"""
                INSERT INTO customers (name, phone, notes, rate_type, custom_rate, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (name, phone, notes, rate_type, _to_db(custom_rate)),
            )
            return int(cur.lastrowid)

    def get_customer(
        self, customer_id: int, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute("SELECT * FROM customers WHERE id = ?", (customer_id,))
            row = c.fetchone()
            return dict(row) if row else None

    def list_customers(
        self, include_inactive: bool = False, search: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if not include_inactive:
            clauses.append("is_active = 1")
        if search:
            clauses.append("LOWER(name) LIKE ?")
            params.append(f"%{search.lower()}%")
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._cursor(None) as cur:
            cur.execute(f"SELECT * FROM customers{where} ORDER BY name ASC", params)
            return [dict(r) for r in cur.fetchall()]

    def customer_activity(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active customers with purchase count and last purchase/payment dates."""
        sql = """
            SELECT c.*,
                   COUNT(CASE WHEN t.kind = 'purchase' THEN 1 END) AS total_purchases,
                   MAX(CASE WHEN t.kind = 'purchase' THEN t.date END) AS last_purchase_date,
                   MAX(CASE WHEN t.kind = 'payment' THEN t.date END) AS last_payment_date
            FROM customers c
            LEFT JOIN customer_transactions t ON t.customer_id = c.id
            WHERE c.is_active = 1
        """
        params: List[Any] = []
        if search:
            sql += " AND LOWER(c.name) LIKE ?"
            params.append(f"%{search.lower()}%")
        sql += " GROUP BY c.id ORDER BY c.name ASC"
        with self._cursor(None) as cur:
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def update_customer(self, customer_id: int, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(CUSTOMER_COLUMNS)
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not fields:
            return
        assignments = [f"{k} = ?" for k in fields]
        assignments.append(f"updated_at = ({UTC_NOW_SQL})")
        with self._cursor(None) as cur:
            cur.execute(
                f"UPDATE customers SET {', '.join(assignments)} WHERE id = ?",
                (*[_to_db(v) for v in fields.values()], customer_id),
            )
            if cur.rowcount == 0:
                raise ValueError("customer not found")

    def write_balances(
        self, cur: sqlite3.Cursor, customer_id: int, balances: Mapping[str, Decimal]
    ) -> None:
        """Overwrite the cached balance columns. Only the recompute path calls this."""
        cur.execute(
            f"""
            UPDATE customers
            SET balance_divisas = ?, balance_bcv = ?, balance_euro = ?, updated_at = ({UTC_NOW_SQL})
            WHERE id = ?
            """,
            (
                _to_db(balances["balance_divisas"]),
                _to_db(balances["balance_bcv"]),
                _to_db(balances["balance_euro"]),
                customer_id,
            ),
        )

    # ------------------------------------------------------------------
    # Share tokens
    def get_customer_by_token(
        self, token: str, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute(
                "SELECT * FROM customers WHERE share_token = ? AND is_active = 1",
                (token,),
            )
            row = c.fetchone()
            return dict(row) if row else None

    def share_token_taken(self, cur: sqlite3.Cursor, token: str) -> bool:
        cur.execute("SELECT 1 FROM customers WHERE share_token = ?", (token,))
        return cur.fetchone() is not None

    def set_share_token(
        self, cur: sqlite3.Cursor, customer_id: int, token: Optional[str]
    ) -> None:
        cur.execute(
            f"UPDATE customers SET share_token = ?, updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
            (token, customer_id),
        )
        if cur.rowcount == 0:
            raise ValueError("customer not found")

    # ------------------------------------------------------------------
    # Ledger rows
    def insert_transaction(
        self, cur: sqlite3.Cursor, customer_id: int, record: Mapping[str, Any]
    ) -> int:
        columns = [c for c in TRANSACTION_COLUMNS if c in record]
        placeholders = ", ".join("?" for _ in columns)
        cur.execute(
            f"""
            INSERT INTO customer_transactions (
                customer_id, {', '.join(columns)}, created_at, updated_at
            ) VALUES (?, {placeholders}, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
            """,
            (customer_id, *[_to_db(record[c]) for c in columns]),
        )
        return int(cur.lastrowid)

    def get_transaction(
        self,
        tx_id: int,
        customer_id: Optional[int] = None,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> Optional[Dict[str, Any]]:
        sql = "SELECT * FROM customer_transactions WHERE id = ?"
        params: List[Any] = [tx_id]
        if customer_id is not None:
            sql += " AND customer_id = ?"
            params.append(customer_id)
        with self._cursor(cur) as c:
            c.execute(sql, params)
            row = c.fetchone()
            return dict(row) if row else None

    def list_transactions(
        self,
        customer_id: int,
        newest_first: bool = True,
        cur: Optional[sqlite3.Cursor] = None,
    ) -> List[Dict[str, Any]]:
        order = "date DESC, id DESC" if newest_first else "id ASC"
        with self._cursor(cur) as c:
            c.execute(
                f"SELECT * FROM customer_transactions WHERE customer_id = ? ORDER BY {order}",
                (customer_id,),
            )
            return [dict(r) for r in c.fetchall()]

    def update_transaction(
        self, cur: sqlite3.Cursor, tx_id: int, fields: Mapping[str, Any]
    ) -> None:
        unknown = set(fields) - set(TRANSACTION_COLUMNS)
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not fields:
            return
        assignments = [f"{k} = ?" for k in fields]
        assignments.append(f"updated_at = ({UTC_NOW_SQL})")
        cur.execute(
            f"UPDATE customer_transactions SET {', '.join(assignments)} WHERE id = ?",
            (*[_to_db(v) for v in fields.values()], tx_id),
        )
        if cur.rowcount == 0:
            raise ValueError("transaction not found")

    def delete_transaction(self, cur: sqlite3.Cursor, tx_id: int) -> None:
        cur.execute("DELETE FROM customer_transactions WHERE id = ?", (tx_id,))
        if cur.rowcount == 0:
            raise ValueError("transaction not found")

    def purchases_for_quote(
        self, cur: sqlite3.Cursor, quote_id: str
    ) -> List[Dict[str, Any]]:
        cur.execute(
            """
            SELECT * FROM customer_transactions
            WHERE quote_ref = ? AND kind = 'purchase'
            ORDER BY id ASC
            """,
            (quote_id,),
        )
        return [dict(r) for r in cur.fetchall()]

    def customer_references_quote(self, customer_id: int, quote_id: str) -> bool:
        with self._cursor(None) as cur:
            cur.execute(
                "SELECT 1 FROM customer_transactions WHERE customer_id = ? AND quote_ref = ? LIMIT 1",
                (customer_id, quote_id),
            )
            return cur.fetchone() is not None

    # ------------------------------------------------------------------
    # Quotes
    def quote_exists(self, cur: sqlite3.Cursor, quote_id: str) -> bool:
        cur.execute("SELECT 1 FROM quotes WHERE id = ?", (quote_id,))
        return cur.fetchone() is not None

    def insert_quote(
        self, cur: sqlite3.Cursor, quote_id: str, record: Mapping[str, Any]
    ) -> None:
        columns = [c for c in QUOTE_COLUMNS if c in record]
        values = [
            json.dumps(record[c]) if c == "items" else _to_db(record[c]) for c in columns
        ]
        placeholders = ", ".join("?" for _ in columns)
        cur.execute(
            f"""
            INSERT INTO quotes (id, {', '.join(columns)}, created_at, updated_at)
            VALUES (?, {placeholders}, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
            """,
            (quote_id, *values),
        )

    def get_quote(
        self, quote_id: str, cur: Optional[sqlite3.Cursor] = None
    ) -> Optional[Dict[str, Any]]:
        with self._cursor(cur) as c:
            c.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,))
            row = c.fetchone()
            if not row:
                return None
            data = dict(row)
            data["items"] = json.loads(data["items"]) if data.get("items") else []
            return data

    def list_quotes(
        self, status: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM quotes"
        params: List[Any] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._cursor(None) as cur:
            cur.execute(sql, params)
            rows = [dict(r) for r in cur.fetchall()]
        for r in rows:
            r["items"] = json.loads(r["items"]) if r.get("items") else []
        return rows

    def overdue_quotes(self, created_before: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Pending quotes created before `created_before` (UTC ISO), oldest first."""
        sql = """
            SELECT q.*,
                   EXISTS(
                       SELECT 1 FROM customer_transactions t WHERE t.quote_ref = q.id
                   ) AS is_linked
            FROM quotes q
            WHERE q.status = 'pending' AND q.created_at < ?
            ORDER BY q.created_at ASC, q.id ASC
            LIMIT ?
        """
        with self._cursor(None) as cur:
            cur.execute(sql, (created_before, limit))
            rows = [dict(r) for r in cur.fetchall()]
        for r in rows:
            r["items"] = json.loads(r["items"]) if r.get("items") else []
        return rows

    def update_quote(
        self, cur: sqlite3.Cursor, quote_id: str, fields: Mapping[str, Any]
    ) -> None:
        unknown = set(fields) - set(QUOTE_COLUMNS)
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not fields:
            return
        assignments = [f"{k} = ?" for k in fields]
        assignments.append(f"updated_at = ({UTC_NOW_SQL})")
        values = [
            json.dumps(v) if k == "items" else _to_db(v) for k, v in fields.items()
        ]
        cur.execute(
            f"UPDATE quotes SET {', '.join(assignments)} WHERE id = ?",
            (*values, quote_id),
        )
        if cur.rowcount == 0:
            raise ValueError("quote not found")

    def delete_quote(self, cur: sqlite3.Cursor, quote_id: str) -> None:
        cur.execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
        if cur.rowcount == 0:
            raise ValueError("quote not found")

    def quote_stats(self, day: date) -> Dict[str, Any]:
        day_iso = day.isoformat()
        with self._cursor(None) as cur:
            cur.execute(
                "SELECT COUNT(*) FROM quotes WHERE substr(created_at, 1, 10) = ?",
                (day_iso,),
            )
            created_today = int(cur.fetchone()[0] or 0)
            cur.execute(
                """
                SELECT COALESCE(SUM(total_primary), 0), COALESCE(SUM(total_bs), 0)
                FROM quotes
                WHERE status = 'settled' AND substr(settled_at, 1, 10) = ?
                """,
                (day_iso,),
            )
            settled_primary, settled_bs = cur.fetchone()
            cur.execute("SELECT COUNT(*) FROM quotes WHERE status = 'pending'")
            pending = int(cur.fetchone()[0] or 0)
            cur.execute("SELECT COUNT(*) FROM quotes")
            total = int(cur.fetchone()[0] or 0)
        return {
            "created_today": created_today,
            "settled_today_primary": settled_primary,
            "settled_today_bs": settled_bs,
            "pending": pending,
            "total": total,
        }

    # ------------------------------------------------------------------
    # Reference rates
    def upsert_rate(
        self,
        day: date,
        usd_rate: Decimal,
        eur_rate: Optional[Decimal],
        source: str,
    ) -> None:
        with self._cursor(None) as cur:
            cur.execute(
                f"""
                INSERT INTO bcv_rates (date, usd_rate, eur_rate, source, fetched_at)
                VALUES (?, ?, ?, ?, ({UTC_NOW_SQL}))
                ON CONFLICT(date) DO UPDATE SET
                    usd_rate = excluded.usd_rate,
                    eur_rate = COALESCE(excluded.eur_rate, bcv_rates.eur_rate),
                    source = excluded.source,
                    fetched_at = ({UTC_NOW_SQL})
                """,
                (day.isoformat(), _to_db(usd_rate), _to_db(eur_rate), source),
            )

    def rate_on_or_before(self, day: date) -> Optional[Dict[str, Any]]:
        with self._cursor(None) as cur:
            cur.execute(
                """
                SELECT date, usd_rate, eur_rate, source FROM bcv_rates
                WHERE date <= ?
                ORDER BY date DESC
                LIMIT 1
                """,
                (day.isoformat(),),
            )
            row = cur.fetchone()
            return dict(row) if row else None


__all__ = ["Database"]
