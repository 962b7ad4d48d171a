"""Pure correlation math for change checkpoints.

No I/O. Given before/after metric values this module classifies each metric,
derives an overall assessment and scores how much to trust it.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from src.constants import (
    CHECKPOINT_HORIZONS,
    CONFIDENCE_FULL_MAGNITUDE_PERCENT,
    CONFIDENCE_REFERENCE_SAMPLE_SIZE,
    NEUTRAL_BAND_PERCENT,
)
from src.models.change_models import (
    Assessment,
    ChangeCheckpoint,
    ChangeStatus,
    DetectedChange,
    MetricResult,
)

HORIZONS: tuple[int, ...] = CHECKPOINT_HORIZONS
FINAL_HORIZON = HORIZONS[-1]

# Metrics where a decrease is an improvement; everything else is higher-is-better
LOWER_IS_BETTER = frozenset(
    {
        "bounce_rate",
        "exit_rate",
        "load_time",
        "page_load_time",
        "time_to_first_byte",
        "error_rate",
        "cart_abandonment",
    }
)

# Metric used as the traffic volume behind a comparison
SAMPLE_SIZE_METRIC = "pageviews"


@dataclass(frozen=True)
class CheckpointWindows:
    before_start: datetime
    before_end: datetime
    after_start: datetime
    after_end: datetime


def eligible_horizons(
    first_detected_at: datetime,
    now: datetime,
    existing: Iterable[int] = (),
    max_horizon: int = FINAL_HORIZON,
) -> list[int]:
    """Horizons that have elapsed, are not yet written and the tier allows."""
    elapsed_days = (now - first_detected_at) // timedelta(days=1)
    done = set(existing)
    return [
        h for h in HORIZONS if elapsed_days >= h and h not in done and h <= max_horizon
    ]


def compute_windows(first_detected_at: datetime, horizon_days: int) -> CheckpointWindows:
    """Before window [t - h, t] and after window [t, t + h]."""
    span = timedelta(days=horizon_days)
    return CheckpointWindows(
        before_start=first_detected_at - span,
        before_end=first_detected_at,
        after_start=first_detected_at,
        after_end=first_detected_at + span,
    )


def compute_change_percent(before: float, after: float) -> float:
    """Percent change rounded to one decimal.

    A zero baseline has no defined ratio: any growth counts as +100%, no
    growth as 0%.
    """
    if before == 0:
        return 100.0 if after > 0 else 0.0
    return round((after - before) / abs(before) * 100, 1)


def classify_metric(
    name: str,
    change_percent: float,
    neutral_band: float = NEUTRAL_BAND_PERCENT,
) -> Assessment:
    if abs(change_percent) <= neutral_band:
        return Assessment.NEUTRAL
    went_up = change_percent > 0
    if name in LOWER_IS_BETTER:
        went_up = not went_up
    return Assessment.IMPROVED if went_up else Assessment.REGRESSED


def compare_metrics(
    before: dict[str, float],
    after: dict[str, float],
    neutral_band: float = NEUTRAL_BAND_PERCENT,
) -> list[MetricResult]:
    """Classify every metric present in both windows, in a stable order."""
    results = []
    for name in sorted(before.keys() & after.keys()):
        b, a = before[name], after[name]
        if b is None or a is None:
            continue
        change = compute_change_percent(float(b), float(a))
        results.append(
            MetricResult(
                name=name,
                before=float(b),
                after=float(a),
                change_percent=change,
                assessment=classify_metric(name, change, neutral_band),
            )
        )
    return results


def overall_assessment(results: list[MetricResult]) -> Assessment:
    """Combine per-metric results.

    improved: at least one improved and none regressed
    regressed: at least one regressed and none improved
    neutral: every metric neutral
    inconclusive: no metrics, or metrics pulling both ways
    """
    if not results:
        return Assessment.INCONCLUSIVE
    improved = any(r.assessment == Assessment.IMPROVED for r in results)
    regressed = any(r.assessment == Assessment.REGRESSED for r in results)
    if improved and not regressed:
        return Assessment.IMPROVED
    if regressed and not improved:
        return Assessment.REGRESSED
    if not improved and not regressed:
        return Assessment.NEUTRAL
    return Assessment.INCONCLUSIVE


def sample_size(before: dict[str, float], after: dict[str, float]) -> int:
    """Traffic behind a comparison: the smaller window's pageviews (0 if absent)."""
    b = before.get(SAMPLE_SIZE_METRIC)
    a = after.get(SAMPLE_SIZE_METRIC)
    if b is None or a is None:
        return 0
    return max(0, int(min(b, a)))


def compute_confidence(
    results: list[MetricResult],
    overall: Assessment,
    sample: int,
    full_magnitude_percent: float = CONFIDENCE_FULL_MAGNITUDE_PERCENT,
    reference_sample_size: int = CONFIDENCE_REFERENCE_SAMPLE_SIZE,
) -> float:
    """
    Heuristic trust score in [0, 1], rounded to two decimals.

    Half comes from the size of the driving change (saturating at
    ``full_magnitude_percent``), half from traffic volume on a log scale
    (saturating at ``reference_sample_size``). The driving change is the
    largest move among metrics that agree with the overall assessment, or
    the largest move overall when none agree.
    """
    if not results:
        return 0.0

    agreeing = [abs(r.change_percent) for r in results if r.assessment == overall]
    magnitude = max(agreeing) if agreeing else max(abs(r.change_percent) for r in results)
    magnitude_factor = min(1.0, magnitude / full_magnitude_percent)

    sample_factor = min(
        1.0, math.log10(1 + max(0, sample)) / math.log10(1 + reference_sample_size)
    )

    score = 0.5 * magnitude_factor + 0.5 * sample_factor
    return round(max(0.0, min(1.0, score)), 2)


def top_metric(results: list[MetricResult], overall: Assessment) -> MetricResult | None:
    """Metric that best represents the outcome, for display."""
    if not results:
        return None
    agreeing = [r for r in results if r.assessment == overall]
    pool = agreeing or [r for r in results if r.assessment != Assessment.NEUTRAL] or results
    return max(pool, key=lambda r: abs(r.change_percent))


# Checkpoint assessment that agrees with a resolved status
_STATUS_ASSESSMENT = {
    ChangeStatus.VALIDATED: Assessment.IMPROVED,
    ChangeStatus.REGRESSED: Assessment.REGRESSED,
}


def governing_checkpoint(
    change: DetectedChange, checkpoints: list[ChangeCheckpoint]
) -> ChangeCheckpoint | None:
    """
    Checkpoint that speaks for a change's current status.

    The largest horizon whose assessment matches the status (validated ->
    improved, regressed -> regressed); otherwise the largest horizon.
    """
    if not checkpoints:
        return None
    wanted = _STATUS_ASSESSMENT.get(change.status)
    if wanted is not None:
        matching = [cp for cp in checkpoints if cp.assessment == wanted]
        if matching:
            return max(matching, key=lambda cp: cp.horizon_days)
    return max(checkpoints, key=lambda cp: cp.horizon_days)
