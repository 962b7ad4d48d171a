"""Scan job models and run reports."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


class TriggerType(str, Enum):
    """What caused a scan job to be created."""

    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"
    DEPLOY = "deploy"


# Trigger types covered by the once-per-day idempotency key
SCHEDULED_TRIGGERS = (TriggerType.DAILY, TriggerType.WEEKLY)


class ScanStatus(str, Enum):
    """Scan job status (pending -> processing -> complete | failed)."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class ScanJob(BaseModel):
    """One execution of the analysis pipeline against a page URL."""

    id: str
    url: str
    owner_id: str | None = None
    trigger_type: TriggerType
    status: ScanStatus = ScanStatus.PENDING
    parent_scan_id: str | None = None
    scan_day: date | None = None
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ScanJobCreate(BaseModel):
    """Parameters for creating a scan job record."""

    url: str = Field(..., description="Page URL to scan")
    owner_id: str | None = Field(default=None, description="Owner (None for anonymous runs)")
    trigger_type: TriggerType
    parent_scan_id: str | None = Field(
        default=None, description="Scan this one is compared against"
    )
    scan_day: date | None = Field(
        default=None, description="Owner-timezone calendar day of a scheduled scan"
    )


class ScanRequestedEvent(BaseModel):
    """Payload of the scan requested event sent to the work queue."""

    scan_job_id: str
    url: str
    parent_scan_job_id: str | None = None


class EnqueueFailure(BaseModel):
    """A page or job the run could not announce on the queue."""

    url: str
    scan_job_id: str | None = None
    page_id: str | None = None
    error: str


class ScheduleRunReport(BaseModel):
    """Outcome of one scheduler (or backfill) pass."""

    frequency: str
    candidates: int = 0
    created: int = 0
    skipped: int = 0
    failed: list[EnqueueFailure] = Field(default_factory=list)


class StaleRecoveryReport(BaseModel):
    """Outcome of re-announcing stale pending jobs."""

    found: int = 0
    re_emitted: int = 0
    failed: list[EnqueueFailure] = Field(default_factory=list)


class BackupRunReport(BaseModel):
    """Outcome of one self-healing backup run."""

    resynced: bool = False
    backfill: list[ScheduleRunReport] = Field(default_factory=list)
    stale: StaleRecoveryReport = Field(default_factory=StaleRecoveryReport)

    @computed_field
    @property
    def backfilled(self) -> int:
        return sum(report.created for report in self.backfill)


class ScanFailure(BaseModel):
    """Pipeline report of a scan that could not be completed."""

    error_message: str | None = Field(default=None, max_length=2000)


class ScanStartResult(BaseModel):
    """Outcome of a pipeline start callback."""

    job: ScanJob
    started: bool
