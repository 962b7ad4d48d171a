"""Correlation checkpoint engine.

For every non-reverted change, writes one immutable checkpoint per elapsed
horizon (7/14/30/60/90 days) comparing the page's metrics before and after
the change, and resolves the change's status from the first conclusive
checkpoint. Resolved changes keep accruing checkpoints but their status is
never reopened by a later horizon.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import logfire

from src.config import Settings, get_settings
from src.db.change_repository import ChangeRepository
from src.db.page_repository import PageRepository
from src.db.profile_repository import ProfileRepository
from src.models.change_models import (
    ActorType,
    Assessment,
    ChangeCheckpointCreate,
    ChangeStatus,
    CheckpointRunReport,
    CorrelationMetrics,
    DetectedChange,
)
from src.models.integration_models import MetricWindow
from src.models.page_models import MonitoredPage
from src.models.tier_models import Tier
from src.services.analytics_adapter import (
    NOT_CONNECTED,
    AnalyticsAdapter,
    AnalyticsAdapterResolver,
)
from src.services.change_lifecycle import ChangeLifecycleStore
from src.services.correlation import (
    FINAL_HORIZON,
    HORIZONS,
    compare_metrics,
    compute_confidence,
    compute_windows,
    eligible_horizons,
    overall_assessment,
    sample_size,
)
from src.services.tier_policy import effective_tier, get_max_horizon_days

NO_PROVIDER = "none"


@dataclass
class PlannedChange:
    change: DetectedChange
    horizons: list[int]
    tier: Tier


@dataclass(frozen=True)
class HorizonResult:
    checkpoint: ChangeCheckpointCreate
    has_data: bool
    correlation: CorrelationMetrics | None = None


def target_status(assessment: Assessment, horizon_days: int) -> ChangeStatus | None:
    """Status a watching change moves to after a checkpoint with data."""
    if assessment == Assessment.IMPROVED:
        return ChangeStatus.VALIDATED
    if assessment == Assessment.REGRESSED:
        return ChangeStatus.REGRESSED
    if horizon_days >= FINAL_HORIZON:
        return ChangeStatus.INCONCLUSIVE
    return None


class CheckpointEngine:
    """Compute due checkpoints and resolve change statuses.

    Example:
        >>> engine = CheckpointEngine(changes, pages, profiles, lifecycle, resolver)
        >>> report = await engine.run()
        >>> report.checkpoints_written
        12
    """

    def __init__(
        self,
        changes: ChangeRepository,
        pages: PageRepository,
        profiles: ProfileRepository,
        lifecycle: ChangeLifecycleStore,
        resolver: AnalyticsAdapterResolver,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._changes = changes
        self._pages = pages
        self._profiles = profiles
        self._lifecycle = lifecycle
        self._resolver = resolver
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(self, now: datetime) -> tuple[int, list[PlannedChange]]:
        """
        Work due at ``now``.

        Returns:
            (number of candidate changes, changes with at least one due horizon)
        """
        candidates = self._changes.list_checkpoint_candidates(now - timedelta(days=HORIZONS[0]))
        if not candidates:
            return 0, []

        existing = self._changes.get_checkpoint_horizons(c.id for c in candidates)
        profiles = self._profiles.get_profiles(c.owner_id for c in candidates)

        planned: list[PlannedChange] = []
        for change in candidates:
            profile = profiles.get(change.owner_id)
            tier = (
                effective_tier(
                    profile.subscription_tier,
                    profile.subscription_status,
                    profile.trial_ends_at,
                    now,
                )
                if profile
                else Tier.FREE
            )
            horizons = eligible_horizons(
                change.first_detected_at,
                now,
                existing.get(change.id, set()),
                get_max_horizon_days(tier),
            )
            if horizons:
                planned.append(PlannedChange(change=change, horizons=horizons, tier=tier))
        return len(candidates), planned

    def due_horizon_count(self, now: datetime | None = None) -> int:
        """Number of (change, horizon) checkpoints still waiting to be written."""
        _, planned = self.plan(now or self._clock())
        return sum(len(p.horizons) for p in planned)

    async def run(self, now: datetime | None = None) -> CheckpointRunReport:
        now = now or self._clock()
        considered, planned = self.plan(now)
        report = CheckpointRunReport(changes_considered=considered, changes_due=len(planned))
        if not planned:
            logfire.info("No checkpoints due", changes_considered=considered)
            return report

        pages = self._pages.get_pages([p.change.page_id for p in planned])
        adapters: dict[str, AnalyticsAdapter | None] = {}
        for item in planned:
            owner_id = item.change.owner_id
            if owner_id not in adapters:
                adapters[owner_id] = self._resolver.resolve(owner_id, item.tier)

        semaphore = asyncio.Semaphore(self._settings.checkpoint_concurrency)

        async def bounded(item: PlannedChange) -> None:
            async with semaphore:
                try:
                    await self.process_change(
                        item,
                        pages.get(item.change.page_id),
                        adapters.get(item.change.owner_id),
                        now,
                        report,
                    )
                except Exception as e:
                    logfire.error(
                        "Checkpoint processing failed for change",
                        change_id=item.change.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    report.errors += 1

        await asyncio.gather(*(bounded(item) for item in planned))

        logfire.info(
            "Checkpoint run complete",
            changes_considered=report.changes_considered,
            changes_due=report.changes_due,
            checkpoints_written=report.checkpoints_written,
            duplicates_skipped=report.duplicates_skipped,
            transitions=report.transitions,
            errors=report.errors,
        )
        return report

    async def process_change(
        self,
        item: PlannedChange,
        page: MonitoredPage | None,
        adapter: AnalyticsAdapter | None,
        now: datetime,
        report: CheckpointRunReport,
    ) -> None:
        """Write each due horizon in ascending order; stop at the first error."""
        current = item.change
        if page is None:
            logfire.warning("Change has no page, skipping", change_id=current.id)
            return

        for horizon in item.horizons:
            try:
                result = await self.evaluate_horizon(current, page, adapter, horizon, now)
            except Exception as e:
                logfire.error(
                    "Checkpoint evaluation failed, will retry next run",
                    change_id=current.id,
                    horizon_days=horizon,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                report.errors += 1
                return

            written = self._changes.insert_checkpoint(result.checkpoint)
            if written is None:
                report.duplicates_skipped += 1
                continue
            report.checkpoints_written += 1

            if current.status != ChangeStatus.WATCHING or not result.has_data:
                continue

            new_status = target_status(result.checkpoint.assessment, horizon)
            if new_status is None:
                continue

            updated = self._lifecycle.transition(
                current.id,
                new_status,
                f"{horizon}-day checkpoint assessed "
                f"{result.checkpoint.assessment.value}",
                ActorType.SYSTEM,
                checkpoint_id=written.id,
                correlation_metrics=(
                    result.correlation.model_dump(mode="json")
                    if result.correlation
                    else None
                ),
                current=current,
            )
            if updated is not None:
                report.transitions += 1
                current = updated
            else:
                current = self._lifecycle.get(current.id)

    async def evaluate_horizon(
        self,
        change: DetectedChange,
        page: MonitoredPage,
        adapter: AnalyticsAdapter | None,
        horizon: int,
        now: datetime,
    ) -> HorizonResult:
        """Build the checkpoint for one horizon (nothing is written here)."""
        windows = compute_windows(change.first_detected_at, horizon)

        def no_data(source: str) -> HorizonResult:
            return HorizonResult(
                checkpoint=ChangeCheckpointCreate(
                    change_id=change.id,
                    horizon_days=horizon,
                    before_start=windows.before_start,
                    before_end=windows.before_end,
                    after_start=windows.after_start,
                    after_end=windows.after_end,
                    metrics=None,
                    assessment=Assessment.INCONCLUSIVE,
                    confidence=None,
                    data_source=source,
                    computed_at=now,
                ),
                has_data=False,
            )

        if adapter is None:
            return no_data(NO_PROVIDER)

        before = await adapter.get_metrics(
            page, MetricWindow(windows.before_start, windows.before_end)
        )
        if before is NOT_CONNECTED:
            return no_data(NO_PROVIDER)
        after = await adapter.get_metrics(
            page, MetricWindow(windows.after_start, windows.after_end)
        )
        if after is NOT_CONNECTED:
            return no_data(NO_PROVIDER)
        if not before or not after:
            return no_data(adapter.provider)

        results = compare_metrics(before, after, self._settings.neutral_band_percent)
        if not results:
            return no_data(adapter.provider)

        overall = overall_assessment(results)
        sample = sample_size(before, after)
        confidence = compute_confidence(
            results,
            overall,
            sample,
            self._settings.confidence_full_magnitude_percent,
            self._settings.confidence_reference_sample_size,
        )
        correlation = CorrelationMetrics(
            metrics=results,
            overall_assessment=overall,
            confidence=confidence,
            sample_size=sample,
        )
        return HorizonResult(
            checkpoint=ChangeCheckpointCreate(
                change_id=change.id,
                horizon_days=horizon,
                before_start=windows.before_start,
                before_end=windows.before_end,
                after_start=windows.after_start,
                after_end=windows.after_end,
                metrics=correlation.model_dump(mode="json"),
                assessment=overall,
                confidence=confidence,
                data_source=adapter.provider,
                computed_at=now,
            ),
            has_data=True,
            correlation=correlation,
        )
