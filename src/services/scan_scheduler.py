"""Scheduled scan creation.

Decides which monitored pages are due on a daily or weekly run, creates one
pending scan job per page per owner-local day, and announces each new job
on the work queue. The same selection and creation logic is reused by the
backup runner, so every step is "create if absent".
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import logfire

from src.db.page_repository import PageRepository
from src.db.profile_repository import ProfileRepository
from src.db.scan_repository import ScanRepository
from src.models.page_models import MonitoredPage, ScanFrequency
from src.models.scan_models import (
    SCHEDULED_TRIGGERS,
    EnqueueFailure,
    ScanJob,
    ScanJobCreate,
    ScheduleRunReport,
    TriggerType,
)
from src.models.tier_models import OwnerProfile, Tier
from src.services.event_queue import EventQueue, QueueError, emit_scan_requested
from src.services.tier_policy import allows_daily, effective_tier, get_page_limit

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def owner_scan_day(now: datetime, tz_name: str | None) -> date:
    """Calendar day of ``now`` in the owner's timezone (UTC if unknown)."""
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logfire.warning("Unknown owner timezone, using UTC", timezone=tz_name)
        tz = ZoneInfo("UTC")
    return now.astimezone(tz).date()


def parse_run_frequency(frequency: str | TriggerType) -> TriggerType:
    """Accept "daily" or "weekly"; anything else is a ValueError."""
    trigger = TriggerType(frequency)
    if trigger not in SCHEDULED_TRIGGERS:
        raise ValueError(f"Not a scheduled frequency: {trigger.value}")
    return trigger


@dataclass(frozen=True)
class ScheduleCandidate:
    """A page that is due on this run, with its owner's resolved tier."""

    page: MonitoredPage
    profile: OwnerProfile
    tier: Tier


@dataclass(frozen=True)
class ScheduleOutcome:
    job: ScanJob | None
    created: bool
    error: str | None = None


def is_due(tier: Tier, page_frequency: ScanFrequency, trigger: TriggerType) -> bool:
    """Whether a page with this tier and cadence belongs on the given run."""
    if trigger == TriggerType.DAILY:
        return allows_daily(tier) and page_frequency != ScanFrequency.WEEKLY
    return not allows_daily(tier) or page_frequency == ScanFrequency.WEEKLY


class ScanScheduler:
    """Create and announce scheduled scan jobs.

    Example:
        >>> scheduler = ScanScheduler(pages, profiles, scans, queue)
        >>> report = await scheduler.run("daily")
        >>> report.created
        3
    """

    def __init__(
        self,
        pages: PageRepository,
        profiles: ProfileRepository,
        scans: ScanRepository,
        queue: EventQueue,
        clock: Clock | None = None,
    ):
        self._pages = pages
        self._profiles = profiles
        self._scans = scans
        self._queue = queue
        self._clock = clock or utc_now

    def select_candidates(
        self, frequency: str | TriggerType, now: datetime | None = None
    ) -> list[ScheduleCandidate]:
        """
        Pages due on this run, with per-owner page quotas applied.

        Owners without a profile row are skipped. Within each owner the
        oldest pages win, so lowering a quota never scans newer pages in
        place of older ones.
        """
        trigger = parse_run_frequency(frequency)
        now = now or self._clock()

        pages = self._pages.list_scheduled_pages()
        owner_ids = {page.owner_id for page in pages}
        profiles = self._profiles.get_profiles(owner_ids)

        missing = owner_ids - profiles.keys()
        if missing:
            logfire.warning(
                "Owners have pages but no profile row, skipping their scans",
                frequency=trigger.value,
                owner_count=len(missing),
            )

        tiers = {
            owner_id: effective_tier(
                profile.subscription_tier,
                profile.subscription_status,
                profile.trial_ends_at,
                now,
            )
            for owner_id, profile in profiles.items()
        }

        due = [
            page
            for page in pages
            if page.owner_id in tiers
            and is_due(tiers[page.owner_id], page.scan_frequency, trigger)
        ]
        due.sort(key=lambda page: page.created_at)

        kept: dict[str, int] = defaultdict(int)
        candidates: list[ScheduleCandidate] = []
        for page in due:
            profile = profiles[page.owner_id]
            tier = tiers[page.owner_id]
            if kept[page.owner_id] >= get_page_limit(tier, profile.bonus_pages):
                continue
            kept[page.owner_id] += 1
            candidates.append(ScheduleCandidate(page=page, profile=profile, tier=tier))

        logfire.info(
            "Scan candidates selected",
            frequency=trigger.value,
            pages=len(pages),
            due=len(due),
            candidates=len(candidates),
        )
        return candidates

    def ensure_job(
        self,
        candidate: ScheduleCandidate,
        trigger: TriggerType,
        now: datetime,
    ) -> tuple[ScanJob | None, bool]:
        """Create the day's job for a candidate unless it already exists."""
        page = candidate.page
        scan_day = owner_scan_day(now, candidate.profile.timezone)

        existing = self._scans.find_for_day(page.url, page.owner_id, trigger, scan_day)
        if existing is not None:
            return existing, False

        return self._scans.create_if_absent(
            ScanJobCreate(
                url=page.url,
                owner_id=page.owner_id,
                trigger_type=trigger,
                parent_scan_id=page.last_scan_id,
                scan_day=scan_day,
            )
        )

    async def schedule_page(
        self,
        candidate: ScheduleCandidate,
        trigger: TriggerType,
        now: datetime,
    ) -> ScheduleOutcome:
        """
        Create-if-absent one page's job and announce it when new.

        Queue failures are returned in the outcome rather than raised; the job
        row stays pending and stale recovery re-announces it later.
        """
        job, created = self.ensure_job(candidate, trigger, now)
        if not created or job is None:
            return ScheduleOutcome(job=job, created=False)

        try:
            await emit_scan_requested(self._queue, job)
        except QueueError as e:
            logfire.warning(
                "Scan job created but not enqueued",
                scan_job_id=job.id,
                url=job.url,
                error=str(e),
            )
            return ScheduleOutcome(job=job, created=True, error=str(e))

        return ScheduleOutcome(job=job, created=True)

    async def run(
        self, frequency: str | TriggerType, now: datetime | None = None
    ) -> ScheduleRunReport:
        """Run one scheduled pass for ``frequency``."""
        trigger = parse_run_frequency(frequency)
        now = now or self._clock()
        candidates = self.select_candidates(trigger, now)
        report = ScheduleRunReport(frequency=trigger.value, candidates=len(candidates))

        for candidate in candidates:
            page = candidate.page
            try:
                outcome = await self.schedule_page(candidate, trigger, now)
            except Exception as e:
                logfire.error(
                    "Failed to schedule page",
                    page_id=page.id,
                    url=page.url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                report.failed.append(
                    EnqueueFailure(url=page.url, page_id=page.id, error=str(e))
                )
                continue

            if not outcome.created:
                report.skipped += 1
                continue

            report.created += 1
            if outcome.error is not None:
                report.failed.append(
                    EnqueueFailure(
                        url=page.url,
                        page_id=page.id,
                        scan_job_id=outcome.job.id if outcome.job else None,
                        error=outcome.error,
                    )
                )

        logfire.info(
            "Scheduled scan run complete",
            frequency=trigger.value,
            candidates=report.candidates,
            created=report.created,
            skipped=report.skipped,
            failed=len(report.failed),
        )
        return report
