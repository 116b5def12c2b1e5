"""
In-memory ledger store for development and tests.

Mirrors the guarantees of the Postgres store: a batch is applied all or
nothing, and an entry whose `(title, accountId)` already exists is skipped
instead of duplicated.
"""
from __future__ import annotations

from threading import Lock
from typing import Dict, List, Sequence, Tuple

from .ledger import LedgerEntry


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self._entries: Dict[str, Dict[Tuple[str, str], LedgerEntry]] = {}
        self._lock = Lock()
        self.batches: int = 0

    def list_entries_by_title(self, kind: str, title: str) -> List[LedgerEntry]:
        with self._lock:
            return [e for e in self._entries.get(kind, {}).values() if e.title == title]

    def batch_insert(self, kind: str, entries: Sequence[LedgerEntry]) -> int:
        staged: Dict[Tuple[str, str], LedgerEntry] = {}
        for entry in entries:
            if entry.kind != kind:
                raise ValueError("entry_kind_mismatch")
            staged.setdefault(entry.natural_key, entry)
        with self._lock:
            ledger = self._entries.setdefault(kind, {})
            fresh = {key: entry for key, entry in staged.items() if key not in ledger}
            ledger.update(fresh)
            self.batches += 1
        return len(fresh)

    def delete_entries_for_account(self, account_id: str) -> int:
        removed = 0
        with self._lock:
            for ledger in self._entries.values():
                for key in [k for k, e in ledger.items() if e.account_id == account_id]:
                    del ledger[key]
                    removed += 1
        return removed

    def all_entries(self, kind: str) -> List[LedgerEntry]:
        with self._lock:
            return sorted(self._entries.get(kind, {}).values(), key=lambda e: (e.title, e.account_id))


__all__ = ["InMemoryLedgerStore"]
