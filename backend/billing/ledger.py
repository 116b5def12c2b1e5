"""
Monthly ledger generation: one pending fee or salary entry per eligible account.

Intent:
    Materialise the billing obligations of a period (calendar month) exactly
    once per account. Two pipelines share the same shape and differ only in
    the eligibility predicate and the target ledger:
      - fees: verified students
      - salaries: verified teachers with `salaryType == "Fixed"`

Idempotency:
    The natural key is `(title, accountId)`; the title is derived from the
    period ("Tuition Fee - March 2025"). Each run reads the entries already
    billed for the period and inserts only the missing ones in one atomic
    batch. Entries are never updated or deleted here, so a rerun after a
    failed or partial run converges to the same final state.

Concurrency:
    The existence check is read-then-write. Two overlapping runs may both
    decide an account is unbilled; stores guard the natural key themselves
    (unique constraint / conflict skip), see DESIGN.md.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from backend.identity_access.domain import Profile
from backend.identity_access.ports import ProfileStoreProtocol

from . import telemetry
from .config import LedgerConfig

LOG = logging.getLogger("brainplus.billing.ledger")

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

STATUS_PENDING = "Pending"


@dataclass(frozen=True)
class LedgerEntry:
    """One billing obligation for one account in one period."""

    id: str
    kind: str
    account_id: str
    account_name: str
    title: str
    amount: str
    status: str
    date: str
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.title, self.account_id)


@dataclass(frozen=True)
class BillingPeriod:
    year: int
    month: int

    @classmethod
    def containing(cls, moment: datetime) -> "BillingPeriod":
        return cls(year=moment.year, month=moment.month)

    @property
    def month_name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    def title(self, label: str) -> str:
        return f"{label} - {self.month_name} {self.year}"


@dataclass(frozen=True)
class LedgerPipeline:
    """Eligibility predicate plus the entry template for one ledger."""

    kind: str
    label: str
    role: str
    rate_field: str
    default_amount: str
    extra_filters: Mapping[str, Any] = field(default_factory=dict)
    # details key -> (profile field, fallback)
    detail_fields: Mapping[str, tuple[str, str]] = field(default_factory=dict)

    def amount_for(self, profile: Profile) -> str:
        raw = profile.get(self.rate_field)
        if raw is None or isinstance(raw, bool):
            return self.default_amount
        text = str(raw).strip()
        return text or self.default_amount


FEE_PIPELINE = LedgerPipeline(
    kind="fee",
    label="Tuition Fee",
    role="student",
    rate_field="monthlyFeeAmount",
    default_amount="5000",
    detail_fields={"class": ("standard", "N/A"), "phone": ("phone", "")},
)

SALARY_PIPELINE = LedgerPipeline(
    kind="salary",
    label="Salary",
    role="teacher",
    rate_field="salary",
    default_amount="0",
    extra_filters={"salaryType": "Fixed"},
    detail_fields={"email": ("email", ""), "phone": ("phone", "")},
)


def default_pipelines(config: LedgerConfig | None = None) -> List[LedgerPipeline]:
    cfg = config or LedgerConfig()
    return [
        replace(FEE_PIPELINE, default_amount=cfg.default_fee_amount),
        replace(SALARY_PIPELINE, default_amount=cfg.default_salary_amount),
    ]


class LedgerStoreProtocol(Protocol):
    def list_entries_by_title(self, kind: str, title: str) -> List[LedgerEntry]:
        ...

    def batch_insert(self, kind: str, entries: Sequence[LedgerEntry]) -> int:
        """Insert all entries or none; returns the number of rows written."""
        ...

    def delete_entries_for_account(self, account_id: str) -> int:
        ...


@dataclass(frozen=True)
class PipelineReport:
    kind: str
    title: str
    eligible: int = 0
    already_billed: int = 0
    created: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "title": self.title,
            "eligible": self.eligible,
            "alreadyBilled": self.already_billed,
            "created": self.created,
            "error": self.error,
        }


class LedgerRunError(Exception):
    """At least one pipeline failed; the others were still attempted."""

    def __init__(self, reports: Sequence[PipelineReport], errors: Sequence[BaseException]):
        failed = ", ".join(r.kind for r in reports if not r.ok)
        super().__init__(f"ledger pipelines failed: {failed}")
        self.reports = list(reports)
        self.errors = list(errors)

    @property
    def retryable(self) -> bool:
        return all(getattr(e, "retryable", False) for e in self.errors)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class LedgerGenerator:
    """Create the missing ledger entries of the current billing period.

    Parameters
    ----------
    profiles:
        Profile store used to find eligible accounts.
    ledger:
        Ledger store holding fee and salary entries.
    config:
        Billing time zone and default amounts.
    pipelines:
        Optional override; defaults to fee + salary.
    clock:
        Returns an aware datetime; injectable for deterministic tests.
    """

    def __init__(
        self,
        profiles: ProfileStoreProtocol,
        ledger: LedgerStoreProtocol,
        *,
        config: LedgerConfig | None = None,
        pipelines: Sequence[LedgerPipeline] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._profiles = profiles
        self._ledger = ledger
        self._config = config or LedgerConfig()
        self._pipelines = list(pipelines) if pipelines is not None else default_pipelines(self._config)
        self._clock = clock or _utcnow

    @property
    def pipelines(self) -> List[LedgerPipeline]:
        return list(self._pipelines)

    def _local_now(self, now: Optional[datetime]) -> datetime:
        moment = now or self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._config.tzinfo)

    def run(self, now: Optional[datetime] = None) -> List[PipelineReport]:
        """Run every pipeline once for the period containing `now`.

        A failing pipeline does not stop the others; afterwards
        `LedgerRunError` is raised carrying all reports.
        """
        local_now = self._local_now(now)
        reports: List[PipelineReport] = []
        errors: List[BaseException] = []
        for pipeline in self._pipelines:
            try:
                report = self.run_pipeline(pipeline, now=local_now)
            except Exception as exc:
                title = BillingPeriod.containing(local_now).title(pipeline.label)
                LOG.error(
                    "ledger.pipeline_failed kind=%s title=%s error=%s",
                    pipeline.kind,
                    title,
                    getattr(exc, "code", type(exc).__name__),
                )
                telemetry.record_pipeline_run(pipeline.kind, "failed")
                report = PipelineReport(kind=pipeline.kind, title=title, error=getattr(exc, "code", type(exc).__name__))
                errors.append(exc)
            reports.append(report)
        if errors:
            raise LedgerRunError(reports, errors)
        return reports

    def run_pipeline(self, pipeline: LedgerPipeline, *, now: Optional[datetime] = None) -> PipelineReport:
        local_now = self._local_now(now)
        period = BillingPeriod.containing(local_now)
        title = period.title(pipeline.label)
        LOG.info("ledger.pipeline_start kind=%s title=%s", pipeline.kind, title)

        eligible = self._profiles.query_by_role_and_flags(pipeline.role, True, pipeline.extra_filters)
        billed = {entry.account_id for entry in self._ledger.list_entries_by_title(pipeline.kind, title)}

        created_at = self._clock()
        entry_date = local_now.strftime("%d/%m/%Y")
        new_entries: List[LedgerEntry] = []
        seen: set[str] = set()
        for profile in eligible:
            if profile.id in billed or profile.id in seen:
                continue
            seen.add(profile.id)
            new_entries.append(self._build_entry(pipeline, period, title, profile, entry_date, created_at))

        already = len({p.id for p in eligible} & billed)
        if not new_entries:
            LOG.info(
                "ledger.pipeline_noop kind=%s title=%s eligible=%s already_billed=%s",
                pipeline.kind,
                title,
                len(eligible),
                already,
            )
            telemetry.record_pipeline_run(pipeline.kind, "noop")
            return PipelineReport(kind=pipeline.kind, title=title, eligible=len(eligible), already_billed=already)

        written = self._ledger.batch_insert(pipeline.kind, new_entries)
        telemetry.record_entries_created(pipeline.kind, written)
        telemetry.record_pipeline_run(pipeline.kind, "completed")
        LOG.info(
            "ledger.pipeline_done kind=%s title=%s eligible=%s already_billed=%s created=%s",
            pipeline.kind,
            title,
            len(eligible),
            already,
            written,
        )
        return PipelineReport(
            kind=pipeline.kind,
            title=title,
            eligible=len(eligible),
            already_billed=already,
            created=written,
        )

    @staticmethod
    def _build_entry(
        pipeline: LedgerPipeline,
        period: BillingPeriod,
        title: str,
        profile: Profile,
        entry_date: str,
        created_at: datetime,
    ) -> LedgerEntry:
        details = {}
        for key, (source, fallback) in pipeline.detail_fields.items():
            value = profile.get(source)
            details[key] = str(value) if value not in (None, "") else fallback
        return LedgerEntry(
            id=f"{profile.id}_{period.month_name}_{period.year}",
            kind=pipeline.kind,
            account_id=profile.id,
            account_name=profile.name or "Unknown",
            title=title,
            amount=pipeline.amount_for(profile),
            status=STATUS_PENDING,
            date=entry_date,
            created_at=created_at,
            details=details,
        )


__all__ = [
    "MONTH_NAMES",
    "STATUS_PENDING",
    "LedgerEntry",
    "BillingPeriod",
    "LedgerPipeline",
    "FEE_PIPELINE",
    "SALARY_PIPELINE",
    "default_pipelines",
    "LedgerStoreProtocol",
    "PipelineReport",
    "LedgerRunError",
    "LedgerGenerator",
]
