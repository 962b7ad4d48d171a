"""Scan job status updates reported by the analysis pipeline.

Queue delivery is at-least-once, so ``start`` is a compare-and-set: only the
first delivery moves a job out of pending, later duplicates are told the job
is already handled.
"""

import logfire

from src.db.page_repository import PageRepository
from src.db.scan_repository import ScanRepository
from src.models.scan_models import ScanJob, ScanStatus


class ScanNotFoundError(Exception):
    pass


class ScanLifecycle:
    def __init__(self, scans: ScanRepository, pages: PageRepository):
        self._scans = scans
        self._pages = pages

    def _get(self, job_id: str) -> ScanJob:
        job = self._scans.get(job_id)
        if job is None:
            raise ScanNotFoundError(f"Scan job {job_id} not found")
        return job

    def start(self, job_id: str) -> tuple[ScanJob, bool]:
        """
        Claim a pending job for processing.

        Returns:
            (job, started). ``started`` is False when the job had already left
            pending, in which case the consumer should skip it.
        """
        claimed = self._scans.claim(job_id)
        if claimed is not None:
            logfire.info("Scan started", scan_job_id=job_id)
            return claimed, True

        job = self._get(job_id)
        logfire.info(
            "Duplicate scan delivery ignored",
            scan_job_id=job_id,
            status=job.status.value,
        )
        return job, False

    def complete(self, job_id: str) -> ScanJob:
        finished = self._scans.mark_complete(job_id)
        if finished is None:
            job = self._get(job_id)
            logfire.info(
                "Scan already finished",
                scan_job_id=job_id,
                status=job.status.value,
            )
            return job

        if finished.owner_id:
            self._pages.set_last_scan(finished.url, finished.owner_id, finished.id)
        logfire.info("Scan completed", scan_job_id=job_id)
        return finished

    def fail(self, job_id: str, error_message: str | None = None) -> ScanJob:
        """Mark a job failed. Failed is terminal; nothing re-queues it."""
        finished = self._scans.mark_failed(job_id, error_message)
        if finished is None:
            return self._get(job_id)
        logfire.warning(
            "Scan failed",
            scan_job_id=job_id,
            error=error_message,
        )
        return finished

    def erase_owner(self, owner_id: str) -> int:
        """Delete every scan job of an owner (account erasure)."""
        return self._scans.delete_for_owner(owner_id)

    @staticmethod
    def is_terminal(job: ScanJob) -> bool:
        return job.status in (ScanStatus.COMPLETE, ScanStatus.FAILED)
