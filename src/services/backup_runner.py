"""Self-healing backup runner.

Runs some time after the primary scheduled trigger and repairs whatever it
missed:
1. Re-sync the work queue consumer binding
2. Backfill due pages that have no job for today
3. Re-announce scheduled jobs stuck in pending

Every step is either "create if absent" or "re-announce an existing row", so
the runner is safe to invoke any number of times.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import logfire
import sentry_sdk

from src.constants import (
    STALE_SCAN_LOOKBACK_HOURS,
    STALE_SCAN_THRESHOLD_HOURS,
    WEEKLY_SCAN_WEEKDAY,
)
from src.db.scan_repository import ScanRepository
from src.models.scan_models import (
    BackupRunReport,
    EnqueueFailure,
    ScheduleRunReport,
    StaleRecoveryReport,
    TriggerType,
)
from src.services.event_queue import EventQueue, QueueError, emit_scan_requested
from src.services.scan_scheduler import ScanScheduler, utc_now


@dataclass(frozen=True)
class RecoveryWindow:
    """Creation-time range of pending jobs considered stale (both ends inclusive)."""

    lookback_start: datetime
    stale_threshold: datetime


def recovery_window(
    now: datetime,
    threshold_hours: int = STALE_SCAN_THRESHOLD_HOURS,
    lookback_hours: int = STALE_SCAN_LOOKBACK_HOURS,
) -> RecoveryWindow:
    return RecoveryWindow(
        lookback_start=now - timedelta(hours=lookback_hours),
        stale_threshold=now - timedelta(hours=threshold_hours),
    )


class BackupRunner:
    """Independent second pass over the scheduler's work."""

    def __init__(
        self,
        scheduler: ScanScheduler,
        scans: ScanRepository,
        queue: EventQueue,
        *,
        weekly_weekday: int = WEEKLY_SCAN_WEEKDAY,
        stale_threshold_hours: int = STALE_SCAN_THRESHOLD_HOURS,
        stale_lookback_hours: int = STALE_SCAN_LOOKBACK_HOURS,
    ):
        self._scheduler = scheduler
        self._scans = scans
        self._queue = queue
        self._weekly_weekday = weekly_weekday
        self._threshold_hours = stale_threshold_hours
        self._lookback_hours = stale_lookback_hours

    async def resync(self) -> bool:
        """Refresh the queue consumer binding; never raises."""
        try:
            ok = await self._queue.ensure_subscription()
        except Exception as e:
            logfire.error(
                "Queue re-sync raised",
                error=str(e),
                error_type=type(e).__name__,
            )
            sentry_sdk.capture_exception(e)
            return False

        if not ok:
            logfire.warning("Queue re-sync did not succeed, continuing with backfill")
        return ok

    async def backfill(
        self, frequency: str | TriggerType, now: datetime
    ) -> ScheduleRunReport:
        """
        Re-derive the due set and create any jobs the primary run missed.

        A concurrent primary run creating the same row is handled by the
        idempotency key; that row counts as skipped here.
        """
        report = await self._scheduler.run(frequency, now)
        if report.created:
            logfire.warning(
                "Backup runner created missed scans",
                frequency=report.frequency,
                created=report.created,
            )
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("frequency", report.frequency)
                scope.set_extra("created", report.created)
                sentry_sdk.capture_message(
                    f"Backup runner backfilled {report.created} {report.frequency} scan(s)",
                    level="warning",
                )
        return report

    async def recover_stale(self, now: datetime) -> StaleRecoveryReport:
        """Re-announce pending scheduled jobs older than the staleness threshold.

        No rows are created. Each job is re-emitted at most once per call and a
        failure for one job does not stop the rest.
        """
        window = recovery_window(now, self._threshold_hours, self._lookback_hours)
        stale = self._scans.list_stale_pending(window.lookback_start, window.stale_threshold)
        report = StaleRecoveryReport(found=len(stale))

        seen: set[str] = set()
        for job in stale:
            if job.id in seen:
                continue
            seen.add(job.id)
            try:
                await emit_scan_requested(self._queue, job)
            except QueueError as e:
                logfire.error(
                    "Failed to re-emit stale scan",
                    scan_job_id=job.id,
                    url=job.url,
                    error=str(e),
                )
                sentry_sdk.capture_exception(e)
                report.failed.append(
                    EnqueueFailure(url=job.url, scan_job_id=job.id, error=str(e))
                )
                continue
            report.re_emitted += 1

        if report.found:
            logfire.warning(
                "Stale pending scans re-emitted",
                found=report.found,
                re_emitted=report.re_emitted,
                failed=len(report.failed),
            )
        return report

    def is_weekly_run_day(self, now: datetime) -> bool:
        return now.weekday() == self._weekly_weekday

    async def run(self, now: datetime | None = None) -> BackupRunReport:
        """Execute all three steps unconditionally."""
        now = now or utc_now()
        report = BackupRunReport()
        report.resynced = await self.resync()

        frequencies = [TriggerType.DAILY]
        if self.is_weekly_run_day(now):
            frequencies.append(TriggerType.WEEKLY)
        for frequency in frequencies:
            report.backfill.append(await self.backfill(frequency, now))

        report.stale = await self.recover_stale(now)

        logfire.info(
            "Backup run complete",
            resynced=report.resynced,
            backfilled=report.backfilled,
            stale_re_emitted=report.stale.re_emitted,
        )
        return report
