"""
Postgres-backed ledger store for fee and salary entries.

Why: The monthly job and the admin trigger may overlap. The read-before-write
check in `LedgerGenerator` is not enough on its own, so the table carries a
`unique (title, account_id)` constraint and inserts use
`on conflict do nothing`. A lost race therefore results in a skipped row,
never a duplicate.

Atomicity:
    `batch_insert` writes the whole batch inside one transaction. Any failure
    rolls back every row of that batch.

Timeouts:
    Connections reuse the bounded `connect()` helper from the profile store;
    timeouts and connection failures surface as `TransientError`.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence
import os
import re

try:  # pragma: no cover - optional dependency in dev
    import psycopg
    from psycopg import sql as _sql
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.identity_access.stores_db import connect, translate_db_errors

from .ledger import LedgerEntry

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")
_COLUMNS = "id, kind, account_id, account_name, title, amount, status, entry_date, created_at, details"


def _row_to_entry(row: Mapping[str, Any]) -> LedgerEntry:
    return LedgerEntry(
        id=str(row["id"]),
        kind=str(row["kind"]),
        account_id=str(row["account_id"]),
        account_name=str(row.get("account_name") or ""),
        title=str(row["title"]),
        amount=str(row["amount"]),
        status=str(row["status"]),
        date=str(row.get("entry_date") or ""),
        created_at=row["created_at"],
        details=dict(row.get("details") or {}),
    )


class DBLedgerRepo:
    """Ledger store over `public.ledger_entries` (one table, `kind` column)."""

    def __init__(
        self,
        dsn: str | None = None,
        table: str = "public.ledger_entries",
        timeout_seconds: Optional[int] = None,
    ) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBLedgerRepo")
        self._dsn = dsn or os.getenv("DATABASE_URL") or ""
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBLedgerRepo")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        schema, _, name = table.rpartition(".")
        self._table = _sql.Identifier(schema or "public", name)
        self._timeout = timeout_seconds or int(os.getenv("PROFILE_STORE_TIMEOUT_SECONDS", "10") or 10)

    def list_entries_by_title(self, kind: str, title: str) -> List[LedgerEntry]:
        stmt = _sql.SQL(
            "select " + _COLUMNS + " from {} where kind = %s and title = %s order by account_id"
        ).format(self._table)
        with translate_db_errors("ledger_read"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (kind, title))
                    rows = cur.fetchall()
        return [_row_to_entry(r) for r in rows]

    def batch_insert(self, kind: str, entries: Sequence[LedgerEntry]) -> int:
        if not entries:
            return 0
        if any(e.kind != kind for e in entries):
            raise ValueError("entry_kind_mismatch")
        stmt = _sql.SQL(
            """
            insert into {} (""" + _COLUMNS + """)
            values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            on conflict do nothing
            """
        ).format(self._table)
        written = 0
        with translate_db_errors("ledger_write"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        for entry in entries:
                            cur.execute(
                                stmt,
                                (
                                    entry.id,
                                    entry.kind,
                                    entry.account_id,
                                    entry.account_name,
                                    entry.title,
                                    entry.amount,
                                    entry.status,
                                    entry.date,
                                    entry.created_at,
                                    Json(dict(entry.details)),
                                ),
                            )
                            written += max(cur.rowcount, 0)
        return written

    def delete_entries_for_account(self, account_id: str) -> int:
        stmt = _sql.SQL("delete from {} where account_id = %s").format(self._table)
        with translate_db_errors("ledger_purge"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (account_id,))
                    return max(cur.rowcount, 0)


__all__ = ["DBLedgerRepo", "HAVE_PSYCOPG"]
