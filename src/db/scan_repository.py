"""Scan job repository."""

from datetime import date, datetime, timezone

import logfire
from supabase import Client

from src.constants import QUERY_PAGE_SIZE
from src.db.query_executor import fetch_all, is_unique_violation, timed_query
from src.models.scan_models import (
    SCHEDULED_TRIGGERS,
    ScanJob,
    ScanJobCreate,
    ScanStatus,
    TriggerType,
)

_OPEN_STATUSES = [ScanStatus.PENDING.value, ScanStatus.PROCESSING.value]


class ScanRepository:
    """Reads and writes ``scan_jobs`` rows.

    Scheduled jobs are protected by a partial unique index on
    (url, owner_id, trigger_type, scan_day); ``create_if_absent`` treats a
    violation of that index as the success path.
    """

    def __init__(self, client: Client, page_size: int = QUERY_PAGE_SIZE):
        self._client = client
        self._page_size = page_size

    def _job_data(self, job: ScanJobCreate) -> dict:
        return {
            "url": job.url,
            "owner_id": job.owner_id,
            "trigger_type": job.trigger_type.value,
            "status": ScanStatus.PENDING.value,
            "parent_scan_id": job.parent_scan_id,
            "scan_day": job.scan_day.isoformat() if job.scan_day else None,
        }

    def find_for_day(
        self,
        url: str,
        owner_id: str,
        trigger_type: TriggerType,
        scan_day: date,
    ) -> ScanJob | None:
        """Look up the scheduled job for an idempotency key, if any."""
        with timed_query(
            "find_scan_for_day",
            owner_id=owner_id,
            trigger_type=trigger_type.value,
            scan_day=scan_day.isoformat(),
        ):
            result = (
                self._client.table("scan_jobs")
                .select("*")
                .eq("url", url)
                .eq("owner_id", owner_id)
                .eq("trigger_type", trigger_type.value)
                .eq("scan_day", scan_day.isoformat())
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return ScanJob(**result.data[0])

    def create_if_absent(self, job: ScanJobCreate) -> tuple[ScanJob | None, bool]:
        """
        Insert a scheduled job unless its idempotency key already exists.

        Returns:
            (job, created). ``created`` is False when a concurrent writer won
            the insert; ``job`` is then the existing row (or None if it could
            not be read back).
        """
        if job.scan_day is None or job.trigger_type not in SCHEDULED_TRIGGERS:
            raise ValueError("create_if_absent requires a scheduled trigger and scan_day")

        with timed_query(
            "create_scan_job",
            owner_id=job.owner_id,
            trigger_type=job.trigger_type.value,
        ):
            try:
                result = self._client.table("scan_jobs").insert(self._job_data(job)).execute()
            except Exception as e:
                if not is_unique_violation(e):
                    raise
                result = None

        if result is None:
            logfire.info(
                "Scan job already exists for day",
                url=job.url,
                owner_id=job.owner_id,
                trigger_type=job.trigger_type.value,
                scan_day=job.scan_day.isoformat(),
            )
            existing = self.find_for_day(
                job.url, job.owner_id or "", job.trigger_type, job.scan_day
            )
            return existing, False

        if not result.data:
            raise ValueError("Failed to create scan job")
        return ScanJob(**result.data[0]), True

    def create(self, job: ScanJobCreate) -> ScanJob:
        """Insert a job with no idempotency key (manual and deploy scans)."""
        with timed_query(
            "create_scan_job",
            owner_id=job.owner_id,
            trigger_type=job.trigger_type.value,
        ):
            result = self._client.table("scan_jobs").insert(self._job_data(job)).execute()
        if not result.data:
            raise ValueError("Failed to create scan job")
        return ScanJob(**result.data[0])

    def get(self, job_id: str) -> ScanJob | None:
        with timed_query("get_scan_job", scan_job_id=job_id):
            result = (
                self._client.table("scan_jobs")
                .select("*")
                .eq("id", job_id)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return ScanJob(**result.data[0])

    def list_stale_pending(
        self, lookback_start: datetime, stale_threshold: datetime
    ) -> list[ScanJob]:
        """Pending scheduled jobs created in [lookback_start, stale_threshold]."""
        with timed_query(
            "list_stale_pending_scans",
            lookback_start=lookback_start.isoformat(),
            stale_threshold=stale_threshold.isoformat(),
        ):
            rows = fetch_all(
                lambda: (
                    self._client.table("scan_jobs")
                    .select("*")
                    .eq("status", ScanStatus.PENDING.value)
                    .in_("trigger_type", [t.value for t in SCHEDULED_TRIGGERS])
                    .gte("created_at", lookback_start.isoformat())
                    .lte("created_at", stale_threshold.isoformat())
                    .order("created_at")
                    .order("id")
                ),
                self._page_size,
            )
        return [ScanJob(**row) for row in rows]

    def claim(self, job_id: str) -> ScanJob | None:
        """Move a job from pending to processing; None if it was not pending."""
        with timed_query("claim_scan_job", scan_job_id=job_id):
            result = (
                self._client.table("scan_jobs")
                .update({"status": ScanStatus.PROCESSING.value})
                .eq("id", job_id)
                .eq("status", ScanStatus.PENDING.value)
                .execute()
            )
        if not result.data:
            return None
        return ScanJob(**result.data[0])

    def mark_complete(self, job_id: str) -> ScanJob | None:
        return self._finish(job_id, ScanStatus.COMPLETE, None)

    def mark_failed(self, job_id: str, error_message: str | None) -> ScanJob | None:
        return self._finish(job_id, ScanStatus.FAILED, error_message)

    def _finish(
        self, job_id: str, status: ScanStatus, error_message: str | None
    ) -> ScanJob | None:
        data = {
            "status": status.value,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        if error_message is not None:
            data["error_message"] = error_message[:1000]

        with timed_query("finish_scan_job", scan_job_id=job_id, status=status.value):
            result = (
                self._client.table("scan_jobs")
                .update(data)
                .eq("id", job_id)
                .in_("status", _OPEN_STATUSES)
                .execute()
            )
        if not result.data:
            return None
        return ScanJob(**result.data[0])

    def latest_for_url(self, url: str, owner_id: str) -> ScanJob | None:
        with timed_query("latest_scan_for_url", owner_id=owner_id):
            result = (
                self._client.table("scan_jobs")
                .select("*")
                .eq("url", url)
                .eq("owner_id", owner_id)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return ScanJob(**result.data[0])

    def delete_for_owner(self, owner_id: str) -> int:
        """Account erasure: the only path that removes scan jobs."""
        with timed_query("delete_scans_for_owner", owner_id=owner_id):
            result = (
                self._client.table("scan_jobs")
                .delete()
                .eq("owner_id", owner_id)
                .execute()
            )
        deleted = len(result.data or [])
        logfire.info("Scan jobs erased", owner_id=owner_id, deleted=deleted)
        return deleted
