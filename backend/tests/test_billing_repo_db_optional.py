"""
Optional DB tests for the Postgres profile and ledger stores.

Applies only when a Postgres database is reachable via SERVICE_ROLE_DSN.
Requires that migrations have been applied (e.g., `supabase migration up`).
"""
from __future__ import annotations

from datetime import datetime, timezone
import os
import uuid

import pytest

from backend.billing.ledger import LedgerEntry, LedgerGenerator
from backend.identity_access.domain import NotFound

psycopg = None
try:  # pragma: no cover - optional at runtime
    import psycopg  # type: ignore
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore


def _dsn_or_skip() -> str:
    dsn = os.getenv("SERVICE_ROLE_DSN")
    if not dsn or psycopg is None:
        pytest.skip("SERVICE_ROLE_DSN not set; apply migrations and expose a service-role DSN")
    return dsn


def _entry(account_id: str, title: str) -> LedgerEntry:
    return LedgerEntry(
        id=f"{account_id}_March_2025",
        kind="fee",
        account_id=account_id,
        account_name="Test",
        title=title,
        amount="5000",
        status="Pending",
        date="05/03/2025",
        created_at=datetime(2025, 3, 5, 10, tzinfo=timezone.utc),
        details={"class": "N/A"},
    )


def test_profile_store_roundtrip_and_query():
    from backend.identity_access.stores_db import DBProfileStore

    store = DBProfileStore(dsn=_dsn_or_skip())
    pid = f"test-{uuid.uuid4()}"
    try:
        store.put_profile(pid, {"name": "DB Teacher", "role": "teacher", "verified": False, "salaryType": "Fixed"})
        updated = store.update_profile(pid, {"verified": True})
        assert updated.verified is True
        assert updated.get("salaryType") == "Fixed"

        ids = [p.id for p in store.query_by_role_and_flags("teacher", True, {"salaryType": "Fixed"})]
        assert pid in ids
    finally:
        try:
            store.delete_profile(pid)
        except NotFound:
            pass
    assert store.get_profile(pid) is None
    with pytest.raises(NotFound):
        store.update_profile(pid, {"verified": True})


def test_profile_store_create_is_insert_only():
    from backend.identity_access.domain import AlreadyExists
    from backend.identity_access.stores_db import DBProfileStore

    store = DBProfileStore(dsn=_dsn_or_skip())
    pid = f"test-{uuid.uuid4()}"
    try:
        store.create_profile(pid, {"name": "First", "role": "student", "verified": False})
        with pytest.raises(AlreadyExists):
            store.create_profile(pid, {"name": "Second", "role": "teacher", "verified": False})
        prof = store.get_profile(pid)
        assert prof.role == "student" and prof.name == "First"
    finally:
        store.delete_profile(pid)


def test_ledger_repo_skips_duplicate_natural_keys():
    from backend.billing.repo_db import DBLedgerRepo

    repo = DBLedgerRepo(dsn=_dsn_or_skip())
    account = f"test-{uuid.uuid4()}"
    title = f"Tuition Fee - March 2025 {account}"
    try:
        assert repo.batch_insert("fee", [_entry(account, title)]) == 1
        # A second writer that missed the first insert must not duplicate it
        assert repo.batch_insert("fee", [_entry(account, title)]) == 0
        rows = repo.list_entries_by_title("fee", title)
        assert [r.account_id for r in rows] == [account]
        assert rows[0].details == {"class": "N/A"}
    finally:
        assert repo.delete_entries_for_account(account) == 1


def test_generator_against_db_is_idempotent():
    from backend.billing.repo_db import DBLedgerRepo
    from backend.identity_access.stores_db import DBProfileStore

    dsn = _dsn_or_skip()
    profiles = DBProfileStore(dsn=dsn)
    repo = DBLedgerRepo(dsn=dsn)
    pid = f"test-{uuid.uuid4()}"
    profiles.put_profile(pid, {"name": "DB Student", "role": "student", "verified": True, "monthlyFeeAmount": "1200"})
    try:
        gen = LedgerGenerator(profiles, repo, clock=lambda: datetime(2031, 3, 5, 10, tzinfo=timezone.utc))
        gen.run()
        gen.run()
        mine = [e for e in repo.list_entries_by_title("fee", "Tuition Fee - March 2031") if e.account_id == pid]
        assert len(mine) == 1
        assert mine[0].amount == "1200"
    finally:
        repo.delete_entries_for_account(pid)
        profiles.delete_profile(pid)
