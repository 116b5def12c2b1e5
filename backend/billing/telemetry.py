"""
In-process counters for the monthly ledger job.

Intent:
    Tests and operators can see how often each pipeline ran and with which
    outcome (completed / noop / failed), how many entries each ledger got and
    how long the last full run took. Values live for the process lifetime only.
"""
from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Optional, Tuple

PIPELINE_STATUSES = ("completed", "noop", "failed")

_runs: Counter[Tuple[str, str]] = Counter()
_entries_created: Counter[str] = Counter()
_last_run_seconds: Optional[float] = None
_lock = Lock()


def record_pipeline_run(kind: str, status: str) -> None:
    if status not in PIPELINE_STATUSES:
        raise ValueError(f"unknown pipeline status: {status}")
    with _lock:
        _runs[(kind, status)] += 1


def record_entries_created(kind: str, count: int) -> None:
    if count <= 0:
        return
    with _lock:
        _entries_created[kind] += count


def record_run_duration(seconds: float) -> None:
    global _last_run_seconds
    with _lock:
        _last_run_seconds = max(0.0, float(seconds))


def pipeline_runs(kind: str, status: str) -> int:
    with _lock:
        return _runs[(kind, status)]


def entries_created(kind: str) -> int:
    with _lock:
        return _entries_created[kind]


def last_run_seconds() -> Optional[float]:
    """Duration of the most recent run, None before the first one."""
    with _lock:
        return _last_run_seconds


def reset_for_tests() -> None:
    global _last_run_seconds
    with _lock:
        _runs.clear()
        _entries_created.clear()
        _last_run_seconds = None
