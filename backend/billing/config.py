"""
Ledger job configuration parsing and validation.

Intent:
    Provide a single place to read the environment variables that control the
    monthly fee/salary job: billing time zone, calendar trigger and default
    amounts.

Why:
    Centralising configuration makes validation and defaults explicit and lets
    tests exercise config behaviour without booting the worker process.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class LedgerConfig:
    timezone: str = "UTC"
    # Calendar trigger; defaults to 10:00 on the 5th of each month.
    run_day: int = 5
    run_hour: int = 10
    run_minute: int = 0
    default_fee_amount: str = "5000"
    default_salary_amount: str = "0"
    run_once: bool = False

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


def _amount_env(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        if float(raw) < 0:
            raise ValueError
    except ValueError:
        raise ValueError(f"{name} must be a non-negative number, got: {raw!r}")
    return raw


def load_ledger_config() -> LedgerConfig:
    """
    Parse and validate ledger configuration from environment variables.

    Behavior:
        - `LEDGER_RUN_DAY` is limited to 1..28 so every month has the trigger day.
        - `LEDGER_TIMEZONE` must be a valid IANA zone (default: UTC).
        - Default amounts are kept as strings, matching stored ledger amounts.
    """
    tz_name = (os.getenv("LEDGER_TIMEZONE") or "UTC").strip()
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"LEDGER_TIMEZONE is not a valid time zone: {tz_name!r}")
    return LedgerConfig(
        timezone=tz_name,
        run_day=_int_env("LEDGER_RUN_DAY", 5, low=1, high=28),
        run_hour=_int_env("LEDGER_RUN_HOUR", 10, low=0, high=23),
        run_minute=_int_env("LEDGER_RUN_MINUTE", 0, low=0, high=59),
        default_fee_amount=_amount_env("LEDGER_DEFAULT_FEE_AMOUNT", "5000"),
        default_salary_amount=_amount_env("LEDGER_DEFAULT_SALARY_AMOUNT", "0"),
        run_once=(os.getenv("LEDGER_RUN_ONCE", "false") or "").strip().lower() in {"1", "true", "yes"},
    )


__all__ = ["LedgerConfig", "load_ledger_config"]
