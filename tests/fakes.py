"""In-memory stand-ins for the Supabase repositories.

Each fake mirrors the public methods of its repository, including the
unique-index and compare-and-set behaviour the services rely on.
"""

import itertools
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Iterable

from src.models.change_models import (
    ActorType,
    ChangeCheckpoint,
    ChangeCheckpointCreate,
    ChangeLifecycleEvent,
    ChangeStatus,
    DetectedChange,
    DetectedChangeCreate,
)
from src.models.integration_models import AnalyticsIntegration
from src.models.page_models import MonitoredPage, ScanFrequency
from src.models.scan_models import (
    SCHEDULED_TRIGGERS,
    ScanJob,
    ScanJobCreate,
    ScanStatus,
    TriggerType,
)
from src.models.suggestion_models import (
    SuggestionStatus,
    SuggestionUpsert,
    TrackedSuggestion,
)
from src.models.tier_models import OwnerProfile

_ids = itertools.count(1)


def new_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids)}"


class UniqueViolation(Exception):
    """Shaped like PostgREST's APIError for a duplicate key."""

    code = "23505"


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeProfileRepository:
    def __init__(self, profiles: Iterable[OwnerProfile] = ()):
        self.profiles = {p.id: p for p in profiles}
        self.lookups: list[list[str]] = []

    def add(self, profile: OwnerProfile) -> OwnerProfile:
        self.profiles[profile.id] = profile
        return profile

    def get_profiles(self, owner_ids: Iterable[str]) -> dict[str, OwnerProfile]:
        ids = sorted(set(owner_ids))
        self.lookups.append(ids)
        return {i: self.profiles[i] for i in ids if i in self.profiles}

    def get_profile(self, owner_id: str) -> OwnerProfile | None:
        return self.profiles.get(owner_id)


class FakePageRepository:
    def __init__(self):
        self.pages: dict[str, MonitoredPage] = {}

    def add(
        self,
        owner_id: str,
        url: str,
        scan_frequency: ScanFrequency = ScanFrequency.DAILY,
        created_at: datetime | None = None,
        last_scan_id: str | None = None,
        name: str | None = None,
    ) -> MonitoredPage:
        page = MonitoredPage(
            id=new_id("page"),
            owner_id=owner_id,
            url=url,
            name=name,
            scan_frequency=scan_frequency,
            last_scan_id=last_scan_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.pages[page.id] = page
        return page

    def list_scheduled_pages(self) -> list[MonitoredPage]:
        pages = [p for p in self.pages.values() if p.scan_frequency != ScanFrequency.MANUAL]
        return sorted(pages, key=lambda p: p.created_at)

    def get_page(self, page_id: str, owner_id: str | None = None) -> MonitoredPage | None:
        page = self.pages.get(page_id)
        if page is None or (owner_id is not None and page.owner_id != owner_id):
            return None
        return page

    def get_pages(self, page_ids: list[str]) -> dict[str, MonitoredPage]:
        return {i: self.pages[i] for i in set(page_ids) if i in self.pages}

    def list_for_owner(self, owner_id: str) -> list[MonitoredPage]:
        pages = [p for p in self.pages.values() if p.owner_id == owner_id]
        return sorted(pages, key=lambda p: p.created_at)

    def create(
        self,
        owner_id: str,
        url: str,
        name: str | None,
        scan_frequency: ScanFrequency,
    ) -> MonitoredPage:
        if any(p.owner_id == owner_id and p.url == url for p in self.pages.values()):
            raise UniqueViolation("duplicate key value violates unique constraint")
        return self.add(owner_id, url, scan_frequency, name=name)

    def update(
        self, page_id: str, owner_id: str, fields: dict[str, Any]
    ) -> MonitoredPage | None:
        page = self.get_page(page_id, owner_id)
        if page is None:
            return None
        updated = page.model_copy(update=fields)
        self.pages[page_id] = MonitoredPage(**updated.model_dump())
        return self.pages[page_id]

    def set_last_scan(self, url: str, owner_id: str, scan_id: str) -> None:
        for page_id, page in list(self.pages.items()):
            if page.url == url and page.owner_id == owner_id:
                self.pages[page_id] = page.model_copy(update={"last_scan_id": scan_id})

    def delete(self, page_id: str, owner_id: str) -> bool:
        if self.get_page(page_id, owner_id) is None:
            return False
        del self.pages[page_id]
        return True

    def delete_for_owner(self, owner_id: str) -> int:
        doomed = [i for i, p in self.pages.items() if p.owner_id == owner_id]
        for page_id in doomed:
            del self.pages[page_id]
        return len(doomed)


class FakeScanRepository:
    """Scan jobs with the (url, owner, trigger, scan_day) unique index."""

    def __init__(self, clock=None):
        self.jobs: dict[str, ScanJob] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # Simulates a concurrent writer inserting the same key first
        self.race_on_insert = False

    def add(self, job: ScanJobCreate, created_at: datetime | None = None,
            status: ScanStatus = ScanStatus.PENDING) -> ScanJob:
        stored = ScanJob(
            id=new_id("scan"),
            url=job.url,
            owner_id=job.owner_id,
            trigger_type=job.trigger_type,
            status=status,
            parent_scan_id=job.parent_scan_id,
            scan_day=job.scan_day,
            created_at=created_at or self._clock(),
        )
        self.jobs[stored.id] = stored
        return stored

    def find_for_day(
        self, url: str, owner_id: str, trigger_type: TriggerType, scan_day: date
    ) -> ScanJob | None:
        for job in self.jobs.values():
            if (
                job.url == url
                and job.owner_id == owner_id
                and job.trigger_type == trigger_type
                and job.scan_day == scan_day
            ):
                return job
        return None

    def create_if_absent(self, job: ScanJobCreate) -> tuple[ScanJob | None, bool]:
        if job.scan_day is None or job.trigger_type not in SCHEDULED_TRIGGERS:
            raise ValueError("create_if_absent requires a scheduled trigger and scan_day")
        if self.race_on_insert:
            self.race_on_insert = False
            self.add(job)
        existing = self.find_for_day(
            job.url, job.owner_id or "", job.trigger_type, job.scan_day
        )
        if existing is not None:
            return existing, False
        return self.add(job), True

    def create(self, job: ScanJobCreate) -> ScanJob:
        return self.add(job)

    def get(self, job_id: str) -> ScanJob | None:
        return self.jobs.get(job_id)

    def list_stale_pending(
        self, lookback_start: datetime, stale_threshold: datetime
    ) -> list[ScanJob]:
        jobs = [
            j
            for j in self.jobs.values()
            if j.status == ScanStatus.PENDING
            and j.trigger_type in SCHEDULED_TRIGGERS
            and lookback_start <= j.created_at <= stale_threshold
        ]
        return sorted(jobs, key=lambda j: j.created_at)

    def claim(self, job_id: str) -> ScanJob | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != ScanStatus.PENDING:
            return None
        self.jobs[job_id] = job.model_copy(update={"status": ScanStatus.PROCESSING})
        return self.jobs[job_id]

    def _finish(self, job_id: str, status: ScanStatus, error: str | None) -> ScanJob | None:
        job = self.jobs.get(job_id)
        if job is None or job.status not in (ScanStatus.PENDING, ScanStatus.PROCESSING):
            return None
        self.jobs[job_id] = job.model_copy(
            update={
                "status": status,
                "error_message": error,
                "completed_at": self._clock(),
            }
        )
        return self.jobs[job_id]

    def mark_complete(self, job_id: str) -> ScanJob | None:
        return self._finish(job_id, ScanStatus.COMPLETE, None)

    def mark_failed(self, job_id: str, error_message: str | None) -> ScanJob | None:
        return self._finish(job_id, ScanStatus.FAILED, error_message)

    def latest_for_url(self, url: str, owner_id: str) -> ScanJob | None:
        jobs = [j for j in self.jobs.values() if j.url == url and j.owner_id == owner_id]
        return max(jobs, key=lambda j: j.created_at) if jobs else None

    def delete_for_owner(self, owner_id: str) -> int:
        doomed = [i for i, j in self.jobs.items() if j.owner_id == owner_id]
        for job_id in doomed:
            del self.jobs[job_id]
        return len(doomed)


class FakeChangeRepository:
    """Changes, insert-only checkpoints and lifecycle events."""

    def __init__(self):
        self.changes: dict[str, DetectedChange] = {}
        self.checkpoints: dict[tuple[str, int], ChangeCheckpoint] = {}
        self.events: list[ChangeLifecycleEvent] = []
        # Status another writer sets just before the next transition lands
        self.interfering_status: ChangeStatus | None = None

    def add(
        self,
        page_id: str,
        owner_id: str,
        first_detected_at: datetime,
        status: ChangeStatus = ChangeStatus.WATCHING,
        element: str = "Hero headline",
    ) -> DetectedChange:
        change = DetectedChange(
            id=new_id("change"),
            page_id=page_id,
            owner_id=owner_id,
            element=element,
            first_detected_at=first_detected_at,
            status=status,
        )
        self.changes[change.id] = change
        return change

    def insert_change(
        self, owner_id: str, change: DetectedChangeCreate, detected_at: datetime
    ) -> DetectedChange:
        data = change.model_dump(exclude={"first_detected_at"})
        stored = DetectedChange(
            id=new_id("change"),
            owner_id=owner_id,
            first_detected_at=change.first_detected_at or detected_at,
            status=ChangeStatus.WATCHING,
            **data,
        )
        self.changes[stored.id] = stored
        return stored

    def get_change(self, change_id: str) -> DetectedChange | None:
        return self.changes.get(change_id)

    def list_changes_for_page(
        self, page_id: str, owner_id: str | None = None
    ) -> list[DetectedChange]:
        changes = [
            c
            for c in self.changes.values()
            if c.page_id == page_id and (owner_id is None or c.owner_id == owner_id)
        ]
        return sorted(changes, key=lambda c: c.first_detected_at, reverse=True)

    def list_checkpoint_candidates(self, detected_before: datetime) -> list[DetectedChange]:
        changes = [
            c
            for c in self.changes.values()
            if c.status != ChangeStatus.REVERTED and c.first_detected_at <= detected_before
        ]
        return sorted(changes, key=lambda c: c.first_detected_at)

    def update_hypothesis(
        self, change_id: str, owner_id: str, hypothesis: str, at: datetime
    ) -> DetectedChange | None:
        change = self.changes.get(change_id)
        if change is None or change.owner_id != owner_id:
            return None
        self.changes[change_id] = change.model_copy(
            update={"hypothesis": hypothesis, "hypothesis_at": at}
        )
        return self.changes[change_id]

    def apply_transition(
        self,
        change_id: str,
        expected_status: ChangeStatus,
        new_status: ChangeStatus,
        reason: str,
        actor_type: ActorType,
        *,
        actor_id: str | None = None,
        checkpoint_id: str | None = None,
        correlation_metrics: dict[str, Any] | None = None,
    ) -> DetectedChange | None:
        change = self.changes.get(change_id)
        if change is None:
            return None
        if self.interfering_status is not None:
            change = change.model_copy(update={"status": self.interfering_status})
            self.changes[change_id] = change
            self.interfering_status = None
        if change.status != expected_status:
            return None

        update: dict[str, Any] = {"status": new_status}
        if correlation_metrics is not None:
            update["correlation_metrics"] = correlation_metrics
            update["correlation_unlocked_at"] = datetime.now(timezone.utc)
        self.changes[change_id] = change.model_copy(update=update)
        self.events.append(
            ChangeLifecycleEvent(
                id=new_id("event"),
                change_id=change_id,
                from_status=expected_status,
                to_status=new_status,
                reason=reason,
                actor_type=actor_type,
                actor_id=actor_id,
                checkpoint_id=checkpoint_id,
                created_at=datetime.now(timezone.utc),
            )
        )
        return self.changes[change_id]

    def get_checkpoint_horizons(self, change_ids: Iterable[str]) -> dict[str, set[int]]:
        wanted = set(change_ids)
        horizons: dict[str, set[int]] = defaultdict(set)
        for change_id, horizon in self.checkpoints:
            if change_id in wanted:
                horizons[change_id].add(horizon)
        return dict(horizons)

    def list_checkpoints(
        self, change_ids: Iterable[str]
    ) -> dict[str, list[ChangeCheckpoint]]:
        wanted = set(change_ids)
        grouped: dict[str, list[ChangeCheckpoint]] = defaultdict(list)
        for (change_id, _), checkpoint in sorted(self.checkpoints.items()):
            if change_id in wanted:
                grouped[change_id].append(checkpoint)
        return dict(grouped)

    def insert_checkpoint(self, checkpoint: ChangeCheckpointCreate) -> ChangeCheckpoint | None:
        key = (checkpoint.change_id, checkpoint.horizon_days)
        if key in self.checkpoints:
            return None
        stored = ChangeCheckpoint(id=new_id("checkpoint"), **checkpoint.model_dump())
        self.checkpoints[key] = stored
        return stored

    def list_lifecycle_events(self, change_id: str) -> list[ChangeLifecycleEvent]:
        return [e for e in self.events if e.change_id == change_id]


class FakeSuggestionRepository:
    def __init__(self):
        self.suggestions: dict[str, TrackedSuggestion] = {}

    def find_open(self, page_id: str, element: str, title: str) -> TrackedSuggestion | None:
        for s in self.suggestions.values():
            if (
                s.page_id == page_id
                and s.element == element
                and s.title == title
                and s.status == SuggestionStatus.OPEN
            ):
                return s
        return None

    def upsert_open(
        self, owner_id: str, suggestion: SuggestionUpsert, now: datetime
    ) -> TrackedSuggestion:
        existing = self.find_open(suggestion.page_id, suggestion.element, suggestion.title)
        if existing is not None:
            bumped = existing.model_copy(
                update={
                    "times_suggested": existing.times_suggested + 1,
                    "last_suggested_at": now,
                }
            )
            self.suggestions[bumped.id] = bumped
            return bumped
        created = TrackedSuggestion(
            id=new_id("suggestion"),
            owner_id=owner_id,
            first_suggested_at=now,
            last_suggested_at=now,
            **suggestion.model_dump(),
        )
        self.suggestions[created.id] = created
        return created

    def get(self, suggestion_id: str, owner_id: str) -> TrackedSuggestion | None:
        s = self.suggestions.get(suggestion_id)
        return s if s is not None and s.owner_id == owner_id else None

    def list_for_page(
        self, page_id: str, status: SuggestionStatus | None = None
    ) -> list[TrackedSuggestion]:
        return [
            s
            for s in self.suggestions.values()
            if s.page_id == page_id and (status is None or s.status == status)
        ]

    def set_status(
        self,
        suggestion_id: str,
        owner_id: str,
        status: SuggestionStatus,
        now: datetime,
    ) -> TrackedSuggestion | None:
        s = self.get(suggestion_id, owner_id)
        if s is None:
            return None
        update: dict[str, Any] = {"status": status}
        if status == SuggestionStatus.ADDRESSED:
            update["addressed_at"] = now
        elif status == SuggestionStatus.DISMISSED:
            update["dismissed_at"] = now
        self.suggestions[suggestion_id] = s.model_copy(update=update)
        return self.suggestions[suggestion_id]


class FakeIntegrationRepository:
    def __init__(self, integrations: Iterable[AnalyticsIntegration] = ()):
        self.integrations = list(integrations)

    def get_active_for_owner(self, owner_id: str) -> AnalyticsIntegration | None:
        for integration in reversed(self.integrations):
            if integration.owner_id == owner_id and integration.is_active:
                return integration
        return None


class FakeAnalyticsAdapter:
    """Adapter returning canned metrics for the windows around a change.

    Windows starting at or after ``change_time`` get ``after``, earlier ones
    get ``before``. ``raise_error`` makes every call fail.
    """

    provider = "posthog"

    def __init__(
        self,
        change_time: datetime,
        before: dict[str, float] | None = None,
        after: dict[str, float] | None = None,
        raise_error: Exception | None = None,
    ):
        self.change_time = change_time
        self.before = before or {}
        self.after = after or {}
        self.raise_error = raise_error
        self.calls: list[tuple[str, datetime, datetime]] = []

    async def get_metrics(self, page, window):
        self.calls.append((page.id, window.start, window.end))
        if self.raise_error is not None:
            raise self.raise_error
        if window.start >= self.change_time:
            return dict(self.after)
        return dict(self.before)


class FakeResolver:
    """Resolver returning one adapter for every owner, or none at all."""

    def __init__(self, adapter=None):
        self.adapter = adapter
        self.resolved: list[tuple[str, str]] = []

    def resolve(self, owner_id, tier):
        self.resolved.append((owner_id, tier.value))
        return self.adapter
