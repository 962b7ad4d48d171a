"""Dashboard attention prioritizer.

Reduces a page's latest scan, its changes and its open suggestions to one
ranked signal. Rules are checked in order and the first match wins.
"""

from src.models.attention_models import AttentionReason, AttentionStatus, Severity
from src.models.change_models import (
    Assessment,
    ChangeCheckpoint,
    ChangeStatus,
    CorrelationMetrics,
    DetectedChange,
)
from src.models.scan_models import ScanJob, ScanStatus
from src.models.suggestion_models import (
    SuggestionImpact,
    SuggestionStatus,
    TrackedSuggestion,
)
from src.services.attribution import direction_of, format_percent, friendly_metric_name
from src.services.correlation import governing_checkpoint

STABLE = AttentionStatus(
    needs_attention=False,
    reason=None,
    headline="All clear",
    subheadline=None,
    severity=None,
)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def _regressed_metric_text(checkpoint: ChangeCheckpoint) -> str | None:
    if not checkpoint.metrics:
        return None
    correlation = CorrelationMetrics.model_validate(checkpoint.metrics)
    regressed = [m for m in correlation.metrics if m.assessment == Assessment.REGRESSED]
    if not regressed:
        return None
    worst = max(regressed, key=lambda m: abs(m.change_percent))
    return (
        f"{friendly_metric_name(worst.name)} "
        f"{direction_of(worst.change_percent)} {format_percent(worst.change_percent)}"
    )


def compute_attention_status(
    last_scan: ScanJob | None,
    changes: list[DetectedChange],
    checkpoints_by_change: dict[str, list[ChangeCheckpoint]],
    open_suggestions: list[TrackedSuggestion],
) -> AttentionStatus:
    if last_scan is not None and last_scan.status == ScanStatus.FAILED:
        return AttentionStatus(
            needs_attention=True,
            reason=AttentionReason.SCAN_FAILED,
            headline="Last scan failed",
            subheadline="Check the page is accessible",
            severity=Severity.HIGH,
        )

    if last_scan is None:
        return AttentionStatus(
            needs_attention=True,
            reason=AttentionReason.NO_SCANS_YET,
            headline="No scans yet",
            subheadline="Run your first audit to start tracking",
            severity=Severity.LOW,
        )

    open_changes = [c for c in changes if c.status != ChangeStatus.REVERTED]
    for change in open_changes:
        checkpoint = governing_checkpoint(change, checkpoints_by_change.get(change.id, []))
        if checkpoint is not None and checkpoint.assessment == Assessment.REGRESSED:
            return AttentionStatus(
                needs_attention=True,
                reason=AttentionReason.NEGATIVE_CORRELATION,
                headline=f"Change detected {change.first_detected_at:%A}",
                subheadline=_regressed_metric_text(checkpoint),
                severity=Severity.HIGH,
            )

    suggestions = [s for s in open_suggestions if s.status == SuggestionStatus.OPEN]
    watching = [c for c in open_changes if c.status == ChangeStatus.WATCHING]
    if watching and suggestions:
        return AttentionStatus(
            needs_attention=True,
            reason=AttentionReason.RECENT_CHANGE,
            headline=f"{watching[0].element} changed",
            subheadline=f"Watching for impact ({_plural(len(watching), 'item')})",
            severity=Severity.MEDIUM,
        )

    high_impact = [s for s in suggestions if s.impact == SuggestionImpact.HIGH]
    if high_impact:
        return AttentionStatus(
            needs_attention=True,
            reason=AttentionReason.HIGH_IMPACT_SUGGESTIONS,
            headline=_plural(len(high_impact), "high-impact suggestion"),
            subheadline=high_impact[0].title,
            severity=Severity.MEDIUM,
        )

    return STABLE
