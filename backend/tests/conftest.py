"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), make
the repository root importable and keep module-level singletons (wired
services, telemetry counters) from leaking between tests.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure `backend.*` is importable regardless of the invocation directory
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# API tests run against in-memory stores unless a test wires something else.
os.environ.setdefault("IDENTITY_BACKEND", "memory")


def _probe(dsn: str) -> bool:
    try:
        import psycopg  # type: ignore
    except Exception:
        return False
    try:
        with psycopg.connect(dsn, connect_timeout=3):  # type: ignore[arg-type]
            return True
    except Exception:
        return False


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Ensure a consistent dev environment per test.

    Tests opt into prod semantics or ledger overrides explicitly; leftovers
    from the developer's shell must not change outcomes.
    """
    for var in (
        "BRAINPLUS_ENV",
        "LEDGER_TIMEZONE",
        "LEDGER_RUN_DAY",
        "LEDGER_RUN_HOUR",
        "LEDGER_RUN_MINUTE",
        "LEDGER_RUN_ONCE",
        "LEDGER_DEFAULT_FEE_AMOUNT",
        "LEDGER_DEFAULT_SALARY_AMOUNT",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("IDENTITY_BACKEND", "memory")
    yield


@pytest.fixture(autouse=True)
def _reset_wired_services():
    """Drop wired gate/generator singletons so each test starts empty."""
    try:
        from backend.web import wiring
    except Exception:
        yield
        return
    wiring.set_services(None)
    yield
    wiring.set_services(None)


@pytest.fixture(autouse=True)
def _reset_billing_telemetry():
    from backend.billing import telemetry

    telemetry.reset_for_tests()
    yield


@pytest.fixture(autouse=True)
def _prune_live_db_env_when_unreachable():
    """Clear SERVICE_ROLE_DSN when it points at an unreachable database.

    Optional live-DB tests trigger only on the presence of SERVICE_ROLE_DSN;
    a stale value in the developer's shell would otherwise fail them hard.
    """
    dsn = os.getenv("SERVICE_ROLE_DSN") or ""
    if dsn and not _probe(dsn):
        os.environ.pop("SERVICE_ROLE_DSN", None)
    yield
