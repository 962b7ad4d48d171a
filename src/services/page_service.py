"""Owner-facing page operations.

Registration applies URL validation, the tier's frequency and quota checks
and the one-page-per-normalized-URL rule. Policy rejections are raised to the
caller rather than silently adjusted.
"""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

import logfire

from src.constants import MAX_URL_LENGTH
from src.db.change_repository import ChangeRepository
from src.db.page_repository import PageRepository
from src.db.profile_repository import ProfileRepository
from src.db.query_executor import is_unique_violation
from src.db.scan_repository import ScanRepository
from src.db.suggestion_repository import SuggestionRepository
from src.models.attention_models import PageSummary
from src.models.change_models import ChangeView
from src.models.page_models import MonitoredPage, PageUpdate
from src.models.scan_models import ScanJob, ScanJobCreate, TriggerType
from src.models.suggestion_models import SuggestionStatus
from src.models.tier_models import OwnerProfile, Tier
from src.services.attention import compute_attention_status
from src.services.attribution import outcome_text_for_change
from src.services.event_queue import EventQueue, QueueError, emit_scan_requested
from src.services.tier_policy import (
    DeployScansNotAllowedError,
    can_use_deploy_scans,
    check_page_quota,
    check_scan_frequency,
    effective_tier,
)

_DEFAULT_PORTS = {"http": 80, "https": 443}


class PageServiceError(Exception):
    """Base exception for page operations."""

    pass


class InvalidUrlError(PageServiceError):
    pass


class DuplicatePageError(PageServiceError):
    """Raised when the owner already monitors the normalized URL."""

    pass


class PageNotFoundError(PageServiceError):
    pass


class OwnerProfileMissingError(PageServiceError):
    """Raised when a write needs the owner's profile row and there is none."""

    pass


def normalize_url(raw: str) -> str:
    """
    Canonical form used for the one-page-per-URL rule.

    Scheme and host are lower-cased, default ports and the fragment are
    dropped, and an empty path becomes "/". Query strings are kept.

    Raises:
        InvalidUrlError: Not an absolute http(s) URL with a host
    """
    value = (raw or "").strip()
    if not value:
        raise InvalidUrlError("URL is required")
    if len(value) > MAX_URL_LENGTH:
        raise InvalidUrlError(f"URL is longer than {MAX_URL_LENGTH} characters")

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(f"Invalid URL: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise InvalidUrlError("Only http and https URLs can be monitored")
    if not parts.hostname:
        raise InvalidUrlError("URL must include a host")
    if parts.username or parts.password:
        raise InvalidUrlError("URLs with credentials are not allowed")

    netloc = parts.hostname.lower()
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


class PageService:
    """Register, update and list an owner's monitored pages."""

    def __init__(
        self,
        pages: PageRepository,
        profiles: ProfileRepository,
        scans: ScanRepository,
        changes: ChangeRepository,
        suggestions: SuggestionRepository,
        queue: EventQueue,
    ):
        self._pages = pages
        self._profiles = profiles
        self._scans = scans
        self._changes = changes
        self._suggestions = suggestions
        self._queue = queue

    def _owner(
        self, owner_id: str, require_profile: bool = False
    ) -> tuple[OwnerProfile, Tier]:
        profile = self._profiles.get_profile(owner_id)
        if profile is None:
            if require_profile:
                raise OwnerProfileMissingError(f"Owner {owner_id} has no profile")
            profile = OwnerProfile(id=owner_id)
        tier = effective_tier(
            profile.subscription_tier,
            profile.subscription_status,
            profile.trial_ends_at,
        )
        return profile, tier

    def register_page(
        self,
        owner_id: str,
        url: str,
        name: str | None = None,
        scan_frequency: str = "weekly",
    ) -> MonitoredPage:
        """
        Start monitoring a URL.

        Raises:
            InvalidUrlError: URL failed validation
            OwnerProfileMissingError: Owner has no profile row yet
            ScanFrequencyNotAllowedError: Cadence not on the owner's tier
            PageLimitReachedError: Owner is at the page quota
            DuplicatePageError: Owner already monitors this URL
        """
        normalized = normalize_url(url)
        # Pages reference profiles, so an owner without one cannot hold pages
        profile, tier = self._owner(owner_id, require_profile=True)
        frequency = check_scan_frequency(tier, scan_frequency)

        existing = self._pages.list_for_owner(owner_id)
        # The unique index on (owner_id, url) is the real guard against races
        if any(page.url == normalized for page in existing):
            raise DuplicatePageError("This URL is already being monitored")
        check_page_quota(tier, len(existing), profile.bonus_pages)

        try:
            page = self._pages.create(owner_id, normalized, name, frequency)
        except Exception as e:
            if is_unique_violation(e):
                raise DuplicatePageError("This URL is already being monitored") from e
            raise

        logfire.info(
            "Page registration accepted",
            owner_id=owner_id,
            page_id=page.id,
            tier=tier.value,
            scan_frequency=frequency.value,
        )
        return page

    def get_page(self, page_id: str, owner_id: str | None = None) -> MonitoredPage:
        page = self._pages.get_page(page_id, owner_id)
        if page is None:
            raise PageNotFoundError(f"Page {page_id} not found")
        return page

    def update_page(self, owner_id: str, page_id: str, update: PageUpdate) -> MonitoredPage:
        fields: dict = {}
        if update.name is not None:
            fields["name"] = update.name
        if update.scan_frequency is not None:
            _, tier = self._owner(owner_id)
            fields["scan_frequency"] = check_scan_frequency(tier, update.scan_frequency).value

        if not fields:
            page = self._pages.get_page(page_id, owner_id)
        else:
            page = self._pages.update(page_id, owner_id, fields)
        if page is None:
            raise PageNotFoundError(f"Page {page_id} not found")
        return page

    def delete_page(self, owner_id: str, page_id: str) -> None:
        if not self._pages.delete(page_id, owner_id):
            raise PageNotFoundError(f"Page {page_id} not found")
        logfire.info("Page deleted", owner_id=owner_id, page_id=page_id)

    def erase_owner(self, owner_id: str) -> int:
        deleted = self._pages.delete_for_owner(owner_id)
        logfire.info("Pages erased", owner_id=owner_id, deleted=deleted)
        return deleted

    async def request_rescan(
        self,
        owner_id: str,
        page_id: str,
        trigger: TriggerType = TriggerType.MANUAL,
        deploy_id: str | None = None,
    ) -> ScanJob:
        """Create an on-demand scan job (manual or deploy) and announce it.

        Raises:
            PageNotFoundError: Unknown page
            DeployScansNotAllowedError: Deploy trigger on a tier without it
            QueueError: Job could not be announced; the job is marked failed
        """
        if trigger not in (TriggerType.MANUAL, TriggerType.DEPLOY):
            raise ValueError(f"Not an on-demand trigger: {trigger.value}")
        page = self.get_page(page_id, owner_id)
        if trigger == TriggerType.DEPLOY:
            _, tier = self._owner(owner_id)
            if not can_use_deploy_scans(tier):
                raise DeployScansNotAllowedError(tier)

        job = self._scans.create(
            ScanJobCreate(
                url=page.url,
                owner_id=owner_id,
                trigger_type=trigger,
                parent_scan_id=page.last_scan_id,
            )
        )
        try:
            await emit_scan_requested(self._queue, job)
        except QueueError as e:
            # Stale recovery only re-emits scheduled jobs
            self._scans.mark_failed(job.id, f"Could not enqueue scan: {e}")
            logfire.error(
                "On-demand scan could not be enqueued",
                scan_job_id=job.id,
                page_id=page_id,
                trigger=trigger.value,
                error=str(e),
            )
            raise
        logfire.info(
            "On-demand scan requested",
            scan_job_id=job.id,
            page_id=page_id,
            trigger=trigger.value,
            deploy_id=deploy_id,
        )
        return job

    def list_changes(self, owner_id: str, page_id: str) -> list[ChangeView]:
        self.get_page(page_id, owner_id)
        changes = self._changes.list_changes_for_page(page_id, owner_id)
        checkpoints = self._changes.list_checkpoints(c.id for c in changes)
        return [
            ChangeView(
                change=change,
                checkpoints=checkpoints.get(change.id, []),
                outcome_text=outcome_text_for_change(change, checkpoints.get(change.id, [])),
            )
            for change in changes
        ]

    def dashboard(self, owner_id: str) -> list[PageSummary]:
        """Every page of the owner with its latest scan and attention signal."""
        summaries = []
        for page in self._pages.list_for_owner(owner_id):
            last_scan = self._scans.latest_for_url(page.url, owner_id)
            changes = self._changes.list_changes_for_page(page.id, owner_id)
            checkpoints = self._changes.list_checkpoints(c.id for c in changes)
            suggestions = self._suggestions.list_for_page(page.id, SuggestionStatus.OPEN)

            summaries.append(
                PageSummary(
                    id=page.id,
                    url=page.url,
                    name=page.name,
                    scan_frequency=page.scan_frequency.value,
                    last_scan_id=last_scan.id if last_scan else None,
                    last_scan_status=last_scan.status.value if last_scan else None,
                    last_scan_at=last_scan.created_at.isoformat() if last_scan else None,
                    attention=compute_attention_status(
                        last_scan, changes, checkpoints, suggestions
                    ),
                )
            )
        return summaries
