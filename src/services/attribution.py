"""Confidence-banded outcome text for detected changes.

The wording only ever asserts that a metric moved alongside a change; it never
claims the change produced the movement.
"""

from src.models.change_models import (
    Assessment,
    ChangeCheckpoint,
    ChangeStatus,
    CorrelationMetrics,
    DetectedChange,
)
from src.services.correlation import governing_checkpoint, top_metric

# Lower bounds are inclusive
DIRECT_CLAIM_CONFIDENCE = 0.8
HEDGED_CLAIM_CONFIDENCE = 0.5

FRIENDLY_METRIC_NAMES = {
    "bounce_rate": "Bounce rate",
    "conversion_rate": "Conversion rate",
    "time_on_page": "Time on page",
    "ctr": "Click-through rate",
    "scroll_depth": "Scroll depth",
    "form_completion": "Form completion",
    "pageviews": "Pageviews",
    "unique_visitors": "Unique visitors",
}


def friendly_metric_name(metric_key: str) -> str:
    return FRIENDLY_METRIC_NAMES.get(metric_key, metric_key)


def format_percent(change_percent: float) -> str:
    value = abs(change_percent)
    if value == int(value):
        return f"{int(value)}%"
    return f"{value}%"


def direction_of(change_percent: float) -> str:
    return "up" if change_percent >= 0 else "down"


def format_outcome_text(
    status: ChangeStatus | str,
    confidence: float | None,
    metric_key: str | None,
    direction: str | None,
    change_percent: float | None,
) -> str | None:
    """
    Render the outcome line for a change.

    Args:
        status: Change status; "regressed" selects the negative verb
        confidence: 0-1 score, None is treated as 0
        metric_key: Raw metric name (e.g. "bounce_rate")
        direction: "up" or "down"
        change_percent: Signed or absolute percent change

    Returns:
        The text, or None when metric, direction or percent is missing
    """
    if not metric_key or direction is None or change_percent is None:
        return None

    metric = friendly_metric_name(metric_key)
    pct = format_percent(change_percent)
    conf = confidence if confidence is not None else 0.0
    status_value = status.value if isinstance(status, ChangeStatus) else status

    if conf >= DIRECT_CLAIM_CONFIDENCE:
        verb = "hurt" if status_value == ChangeStatus.REGRESSED.value else "helped"
        return f"Your change {verb} — {metric} {direction} {pct}"

    if conf >= HEDGED_CLAIM_CONFIDENCE:
        return f"Since your change, {metric} is {direction} {pct}. Likely connected."

    return f"We're seeing {metric} movement, but can't tie it clearly to your change yet."


def outcome_text_for_change(
    change: DetectedChange, checkpoints: list[ChangeCheckpoint]
) -> str | None:
    """Outcome text from the change's governing checkpoint, if it has metrics."""
    checkpoint = governing_checkpoint(change, checkpoints)
    if checkpoint is None or not checkpoint.metrics:
        return None

    correlation = CorrelationMetrics.model_validate(checkpoint.metrics)
    metric = top_metric(correlation.metrics, correlation.overall_assessment)
    if metric is None or metric.assessment == Assessment.NEUTRAL:
        return None

    return format_outcome_text(
        change.status,
        checkpoint.confidence,
        metric.name,
        direction_of(metric.change_percent),
        metric.change_percent,
    )
