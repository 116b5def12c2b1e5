"""
Database-backed ProfileStore for production use (Postgres/Supabase).

Why: Profiles must be durable and shared between the API instances and the
monthly ledger job. Role-specific fields (fee rate, salary, class) live in a
`jsonb` column so new fields need no migration.

Security:
- Intended to be used with a service role connection string; app clients must
  not write `role`/`verified` directly. Only the gate calls the writers.

Timeouts:
- Every connection sets `connect_timeout` and a per-session `statement_timeout`
  (PROFILE_STORE_TIMEOUT_SECONDS, default 10) so no call blocks indefinitely.
  Timeouts and connection failures surface as `TransientError`.

Note: This module uses psycopg3. `backend.web.wiring` imports it lazily when
`IDENTITY_BACKEND=keycloak` (the default). Tests use the in-memory store.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional
import os
import re

try:
    import psycopg
    from psycopg import sql as _sql
    from psycopg.rows import dict_row
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .domain import AlreadyExists, InternalError, NotFound, Profile, TransientError

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")
_COLUMN_FIELDS = ("name", "role", "verified", "createdAt")


def _timeout_seconds() -> int:
    raw = os.getenv("PROFILE_STORE_TIMEOUT_SECONDS", "10")
    try:
        value = int(raw)
    except ValueError:
        return 10
    return max(1, value)


def _split_table(table: str) -> tuple[str, str]:
    if "." in table:
        schema, name = table.split(".", 1)
    else:
        schema, name = "public", table
    return schema, name


@contextmanager
def translate_db_errors(operation: str) -> Iterator[None]:
    """Map psycopg failures onto the gate's error taxonomy."""
    try:
        yield
    except psycopg.OperationalError as exc:  # connection loss, statement timeout
        raise TransientError(f"{operation}_unavailable") from exc
    except psycopg.Error as exc:
        raise InternalError(f"{operation}_failed") from exc


def connect(dsn: str, timeout_seconds: int):
    """Open a short-lived connection with bounded connect and statement time."""
    return psycopg.connect(
        dsn,
        connect_timeout=timeout_seconds,
        options=f"-c statement_timeout={timeout_seconds * 1000}",
        row_factory=dict_row,
    )


def _row_to_profile(row: Mapping[str, Any]) -> Profile:
    doc: Dict[str, Any] = dict(row.get("attributes") or {})
    doc.update(
        {
            "name": row.get("name"),
            "role": row.get("role"),
            "verified": row.get("verified"),
            "createdAt": row.get("created_at"),
        }
    )
    return Profile.from_document(str(row["id"]), doc)


class DBProfileStore:
    """Postgres-backed profile store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Fully qualified table name. Defaults to `public.profiles`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.profiles", timeout_seconds: int | None = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBProfileStore")
        self._dsn = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBProfileStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._schema, self._name = _split_table(table)
        self._timeout = timeout_seconds or _timeout_seconds()

    def _table(self):
        return _sql.Identifier(self._schema, self._name)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        stmt = _sql.SQL(
            "select id, name, role, verified, created_at, attributes from {} where id = %s"
        ).format(self._table())
        with translate_db_errors("profile_read"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (profile_id,))
                    row = cur.fetchone()
        return _row_to_profile(row) if row else None

    def put_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile:
        attributes = {k: v for k, v in fields.items() if k not in _COLUMN_FIELDS}
        stmt = _sql.SQL(
            """
            insert into {} as p (id, name, role, verified, created_at, attributes)
            values (%s, %s, %s, %s, coalesce(%s, now()), %s)
            on conflict (id) do update
               set name = excluded.name,
                   role = excluded.role,
                   verified = excluded.verified,
                   attributes = excluded.attributes
            returning id, name, role, verified, created_at, attributes
            """
        ).format(self._table())
        params = (
            profile_id,
            str(fields.get("name") or ""),
            str(fields.get("role") or ""),
            bool(fields.get("verified", False)),
            fields.get("createdAt"),
            Json(attributes),
        )
        with translate_db_errors("profile_write"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, params)
                    row = cur.fetchone()
        return _row_to_profile(row)

    def create_profile(self, profile_id: str, fields: Mapping[str, Any]) -> Profile:
        """Insert only; the primary key decides between concurrent registrations."""
        attributes = {k: v for k, v in fields.items() if k not in _COLUMN_FIELDS}
        stmt = _sql.SQL(
            """
            insert into {} (id, name, role, verified, created_at, attributes)
            values (%s, %s, %s, %s, coalesce(%s, now()), %s)
            on conflict (id) do nothing
            returning id, name, role, verified, created_at, attributes
            """
        ).format(self._table())
        params = (
            profile_id,
            str(fields.get("name") or ""),
            str(fields.get("role") or ""),
            bool(fields.get("verified", False)),
            fields.get("createdAt"),
            Json(attributes),
        )
        with translate_db_errors("profile_create"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, params)
                    row = cur.fetchone()
        if row is None:
            raise AlreadyExists("profile_exists")
        return _row_to_profile(row)

    def update_profile(self, profile_id: str, partial: Mapping[str, Any]) -> Profile:
        select_stmt = _sql.SQL(
            "select id, name, role, verified, created_at, attributes from {} where id = %s for update"
        ).format(self._table())
        update_stmt = _sql.SQL(
            """
            update {}
               set name = %s, role = %s, verified = %s, attributes = %s
             where id = %s
            returning id, name, role, verified, created_at, attributes
            """
        ).format(self._table())
        with translate_db_errors("profile_update"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(select_stmt, (profile_id,))
                    row = cur.fetchone()
                    if not row:
                        raise NotFound("profile_not_found")
                    merged = _row_to_profile(row).to_document()
                    merged.update(partial)
                    attributes = {k: v for k, v in merged.items() if k not in _COLUMN_FIELDS}
                    cur.execute(
                        update_stmt,
                        (
                            str(merged.get("name") or ""),
                            str(merged.get("role") or ""),
                            bool(merged.get("verified")),
                            Json(attributes),
                            profile_id,
                        ),
                    )
                    updated = cur.fetchone()
        return _row_to_profile(updated)

    def delete_profile(self, profile_id: str) -> None:
        stmt = _sql.SQL("delete from {} where id = %s").format(self._table())
        with translate_db_errors("profile_delete"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (profile_id,))
                    deleted = cur.rowcount
        if not deleted:
            raise NotFound("profile_not_found")

    def query_by_role_and_flags(
        self,
        role: str,
        verified: bool,
        extra_filters: Mapping[str, Any] | None = None,
    ) -> List[Profile]:
        stmt = _sql.SQL(
            """
            select id, name, role, verified, created_at, attributes
              from {}
             where role = %s
               and verified = %s
               and attributes @> %s
             order by id
            """
        ).format(self._table())
        with translate_db_errors("profile_query"):
            with connect(self._dsn, self._timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, (role, bool(verified), Json(dict(extra_filters or {}))))
                    rows = cur.fetchall()
        return [_row_to_profile(r) for r in rows]


__all__ = ["DBProfileStore", "connect", "translate_db_errors", "HAVE_PSYCOPG"]
