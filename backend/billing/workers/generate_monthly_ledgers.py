"""
Monthly ledger worker: creates the pending fee and salary entries of a month.

Intent:
    Fire `LedgerGenerator.run()` on a fixed calendar trigger (default: the 5th
    of each month at 10:00 in `LEDGER_TIMEZONE`). Reruns are harmless because
    the generator only inserts entries that are still missing.

    The worker is invoked from docker-compose via:
        python -m backend.billing.workers.generate_monthly_ledgers

    With `LEDGER_RUN_ONCE=true` it performs a single run and exits, which lets
    an external cron own the schedule instead.
"""
from __future__ import annotations

from datetime import datetime, timezone
import logging
import os
import time
from typing import Callable, List, Optional

from backend.billing import telemetry
from backend.billing.config import LedgerConfig, load_ledger_config
from backend.billing.ledger import LedgerGenerator, LedgerRunError, PipelineReport

LOG = logging.getLogger("brainplus.billing.worker")


def next_scheduled_run(now: datetime, *, day: int, hour: int, minute: int) -> datetime:
    """Return the first trigger strictly after `now`, in `now`'s time zone."""
    candidate = now.replace(day=day, hour=hour, minute=minute, second=0, microsecond=0)
    if candidate > now:
        return candidate
    if now.month == 12:
        return candidate.replace(year=now.year + 1, month=1)
    return candidate.replace(month=now.month + 1)


def build_generator(config: LedgerConfig | None = None) -> LedgerGenerator:
    """Wire the generator against the Postgres profile and ledger stores."""
    from backend.billing.repo_db import DBLedgerRepo
    from backend.identity_access.stores_db import DBProfileStore

    cfg = config or load_ledger_config()
    return LedgerGenerator(DBProfileStore(), DBLedgerRepo(), config=cfg)


def run_once(
    generator: LedgerGenerator | None = None,
    *,
    now: Optional[datetime] = None,
) -> List[PipelineReport]:
    """Run both pipelines once; raises `LedgerRunError` when any failed."""
    gen = generator or build_generator()
    started = time.monotonic()
    try:
        reports = gen.run(now=now)
    except LedgerRunError as exc:
        LOG.error(
            "ledger.run_failed failed=%s retryable=%s",
            ",".join(r.kind for r in exc.reports if not r.ok),
            exc.retryable,
        )
        raise
    finally:
        telemetry.record_run_duration(time.monotonic() - started)
    LOG.info(
        "ledger.run_done created=%s",
        ",".join(f"{r.kind}:{r.created}" for r in reports),
    )
    return reports


def run_forever(
    generator: LedgerGenerator,
    config: LedgerConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] | None = None,
    max_runs: Optional[int] = None,
) -> None:
    """Sleep until each trigger and run; a failed run never stops the loop."""
    now_fn = clock or (lambda: datetime.now(tz=timezone.utc))
    runs = 0
    while max_runs is None or runs < max_runs:
        local_now = now_fn().astimezone(config.tzinfo)
        due = next_scheduled_run(
            local_now,
            day=config.run_day,
            hour=config.run_hour,
            minute=config.run_minute,
        )
        # Same-zone aware subtraction is wall-clock; convert so DST shifts count.
        delay = max(0.0, (due.astimezone(timezone.utc) - local_now.astimezone(timezone.utc)).total_seconds())
        LOG.info("ledger.next_run at=%s in_seconds=%d", due.isoformat(), int(delay))
        sleep(delay)
        try:
            run_once(generator, now=due)
        except LedgerRunError:
            pass  # logged in run_once; the next trigger retries
        except Exception as exc:
            LOG.error("ledger.run_crashed error=%s", type(exc).__name__)
        runs += 1


def main() -> None:
    """CLI entrypoint for the worker."""
    level_name = os.getenv("LOG_LEVEL", "INFO")
    normalized_level = level_name.strip().upper() or "INFO"
    logging.basicConfig(level=normalized_level)

    cfg = load_ledger_config()
    LOG.info(
        "ledger.worker_start timezone=%s day=%s hour=%s minute=%s run_once=%s",
        cfg.timezone,
        cfg.run_day,
        cfg.run_hour,
        cfg.run_minute,
        cfg.run_once,
    )
    generator = build_generator(cfg)
    if cfg.run_once:
        try:
            run_once(generator)
        except LedgerRunError as exc:
            raise SystemExit(75 if exc.retryable else 1)
        return
    run_forever(generator, cfg)


if __name__ == "__main__":
    main()
