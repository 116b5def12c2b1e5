"""Ledger configuration parsing: defaults, validation and overrides."""
from __future__ import annotations

import pytest

from backend.billing.config import LedgerConfig, load_ledger_config


def test_defaults_when_env_is_empty():
    cfg = load_ledger_config()
    assert cfg == LedgerConfig()
    assert (cfg.run_day, cfg.run_hour, cfg.run_minute) == (5, 10, 0)
    assert cfg.default_fee_amount == "5000"
    assert cfg.default_salary_amount == "0"
    assert cfg.run_once is False


def test_overrides_are_parsed(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LEDGER_TIMEZONE", "Asia/Kolkata")
    monkeypatch.setenv("LEDGER_RUN_DAY", "1")
    monkeypatch.setenv("LEDGER_RUN_HOUR", "6")
    monkeypatch.setenv("LEDGER_RUN_MINUTE", "30")
    monkeypatch.setenv("LEDGER_DEFAULT_FEE_AMOUNT", "4500")
    monkeypatch.setenv("LEDGER_RUN_ONCE", "true")

    cfg = load_ledger_config()

    assert cfg.timezone == "Asia/Kolkata"
    assert cfg.tzinfo.key == "Asia/Kolkata"
    assert (cfg.run_day, cfg.run_hour, cfg.run_minute) == (1, 6, 30)
    assert cfg.default_fee_amount == "4500"
    assert cfg.run_once is True


@pytest.mark.parametrize(
    "var,value",
    [
        ("LEDGER_RUN_DAY", "29"),
        ("LEDGER_RUN_DAY", "0"),
        ("LEDGER_RUN_HOUR", "24"),
        ("LEDGER_RUN_MINUTE", "60"),
        ("LEDGER_RUN_DAY", "fifth"),
        ("LEDGER_TIMEZONE", "Mars/Olympus"),
        ("LEDGER_DEFAULT_FEE_AMOUNT", "-1"),
        ("LEDGER_DEFAULT_SALARY_AMOUNT", "lots"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(ValueError):
        load_ledger_config()
