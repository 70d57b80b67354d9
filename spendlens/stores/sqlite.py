# spendlens/stores/sqlite.py
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from spendlens.errors import StoreError
from spendlens.stores.base import BaseStore, Record

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS staging_import (
        id INTEGER PRIMARY KEY,
        date_raw TEXT NOT NULL,
        transaction_type TEXT NOT NULL,
        amount_raw TEXT NOT NULL,
        description TEXT NOT NULL,
        processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY,
        date TEXT NOT NULL,
        amount REAL NOT NULL,
        description TEXT NOT NULL,
        payee_clean TEXT NOT NULL,
        payee_norm TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'Uncategorized',
        source_staging_id INTEGER UNIQUE,
        processed INTEGER NOT NULL DEFAULT 1,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payee_mapping (
        id INTEGER PRIMARY KEY,
        pattern TEXT NOT NULL,
        normalized TEXT,
        category TEXT NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_summary (
        id INTEGER PRIMARY KEY,
        payee TEXT NOT NULL,
        avg_amount REAL,
        frequency TEXT,
        last_date TEXT,
        next_expected_date TEXT,
        occurrences INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions (date)",
    "CREATE INDEX IF NOT EXISTS idx_staging_processed ON staging_import (processed)",
)

_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "staging_import": (
        "id", "date_raw", "transaction_type", "amount_raw", "description",
        "processed", "created_at",
    ),
    "transactions": (
        "id", "date", "amount", "description", "payee_clean", "payee_norm",
        "category", "source_staging_id", "processed", "created_at",
    ),
    "payee_mapping": ("id", "pattern", "normalized", "category", "created_at"),
    "recurring_summary": (
        "id", "payee", "avg_amount", "frequency", "last_date",
        "next_expected_date", "occurrences",
    ),
}

_BOOL_COLUMNS = {"processed"}
_TIMESTAMPED = {"staging_import", "transactions", "payee_mapping"}


def _check_columns(table: str, columns: Iterable[str]) -> None:
    known = _COLUMNS.get(table)
    if known is None:
        raise StoreError(f"Unknown table '{table}'")
    for col in columns:
        if col not in known:
            raise StoreError(f"Unknown column '{col}' for table '{table}'")


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def _from_db(row: sqlite3.Row) -> Record:
    record = dict(row)
    for col in _BOOL_COLUMNS & record.keys():
        record[col] = bool(record[col])
    return record


def _build_filters(
    table: str,
    where: Optional[Mapping[str, Any]],
    where_in: Optional[Mapping[str, Iterable[Any]]],
    gte: Optional[Mapping[str, Any]],
) -> Tuple[Optional[str], List[Any]]:
    """Return the WHERE clause and params, or ``None`` if nothing can match."""
    conditions: List[str] = []
    params: List[Any] = []
    for col, value in (where or {}).items():
        _check_columns(table, [col])
        conditions.append(f"{col} = ?")
        params.append(_to_db(value))
    for col, values in (where_in or {}).items():
        _check_columns(table, [col])
        values = list(values)
        if not values:
            return None, []
        conditions.append(f"{col} IN ({', '.join('?' for _ in values)})")
        params.extend(_to_db(v) for v in values)
    for col, value in (gte or {}).items():
        _check_columns(table, [col])
        conditions.append(f"{col} >= ?")
        params.append(_to_db(value))
    where_sql = " WHERE " + " AND ".join(conditions) if conditions else ""
    return where_sql, params


class SQLiteStore(BaseStore):
    """Single-tenant store backed by a local SQLite file.

    Every non-empty bearer token resolves to the same ``local`` identity;
    row-level scoping only exists in the Supabase backend.
    """

    LOCAL_IDENTITY = "local"

    def __init__(self, config: Dict[str, Any] | None = None, db_path: str | None = None) -> None:
        store_cfg = (config or {}).get("store", {})
        self.db_path = str(db_path or store_cfg.get("db_path") or "spendlens.db")
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("SQLite error on %s: %s", self.db_path, exc)
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def insert(
        self,
        table: str,
        rows: Sequence[Record],
        *,
        skip_conflicts_on: Optional[str] = None,
    ) -> List[Record]:
        if not rows:
            return []
        conflict_sql = ""
        if skip_conflicts_on:
            _check_columns(table, [skip_conflicts_on])
            conflict_sql = f" ON CONFLICT ({skip_conflicts_on}) DO NOTHING"
        stamp = datetime.now(timezone.utc).isoformat()
        stored: List[Record] = []
        with self._connect() as conn:
            for row in rows:
                record = dict(row)
                if table in _TIMESTAMPED:
                    record.setdefault("created_at", stamp)
                _check_columns(table, record)
                cols = list(record)
                cursor = conn.execute(
                    f"INSERT INTO {table} ({', '.join(cols)}) "
                    f"VALUES ({', '.join('?' for _ in cols)}){conflict_sql}",
                    [_to_db(record[c]) for c in cols],
                )
                if cursor.rowcount == 0:
                    continue
                stored.append({**record, "id": cursor.lastrowid})
        return stored

    def select(
        self,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Mapping[str, Any]] = None,
        where_in: Optional[Mapping[str, Iterable[Any]]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        cols = list(columns or _COLUMNS.get(table, ()))
        _check_columns(table, cols)
        where_sql, params = _build_filters(table, where, where_in, gte)
        if where_sql is None:
            return []
        query = f"SELECT {', '.join(cols)} FROM {table}{where_sql}"
        if order_by:
            _check_columns(table, [order_by])
            direction = "DESC" if descending else "ASC"
            query += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_from_db(r) for r in rows]

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        where: Optional[Mapping[str, Any]] = None,
        where_in: Optional[Mapping[str, Iterable[Any]]] = None,
    ) -> int:
        _check_columns(table, values)
        where_sql, params = _build_filters(table, where, where_in, None)
        if where_sql is None:
            return 0
        assignments = ", ".join(f"{col} = ?" for col in values)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}{where_sql}",
                [_to_db(v) for v in values.values()] + params,
            )
            return cursor.rowcount

    def delete(self, table: str, *, where_in: Mapping[str, Iterable[Any]]) -> int:
        where_sql, params = _build_filters(table, None, where_in, None)
        if not where_sql:
            return 0
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table}{where_sql}", params)
            return cursor.rowcount

    def authenticate(self, token: str | None) -> Optional[str]:
        return self.LOCAL_IDENTITY if token else None
