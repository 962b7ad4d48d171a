"""Detected change, checkpoint and lifecycle event models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.constants import MAX_HYPOTHESIS_CHARS


class ChangeStatus(str, Enum):
    """Lifecycle status of a detected change."""

    WATCHING = "watching"
    VALIDATED = "validated"
    REGRESSED = "regressed"
    INCONCLUSIVE = "inconclusive"
    REVERTED = "reverted"


class ChangeScope(str, Enum):
    ELEMENT = "element"
    SECTION = "section"
    PAGE = "page"


class Assessment(str, Enum):
    """Outcome of one metric or of a whole checkpoint."""

    IMPROVED = "improved"
    REGRESSED = "regressed"
    NEUTRAL = "neutral"
    INCONCLUSIVE = "inconclusive"


class ActorType(str, Enum):
    """Who performed a status transition."""

    SYSTEM = "system"
    USER = "user"
    LLM = "llm"


class DetectedChange(BaseModel):
    """A single content difference discovered between a scan and its parent."""

    id: str
    page_id: str
    owner_id: str
    element: str
    element_type: str | None = None
    scope: ChangeScope = ChangeScope.ELEMENT
    description: str | None = None
    before_value: str | None = None
    after_value: str | None = None
    first_detected_at: datetime
    first_detected_scan_id: str | None = None
    status: ChangeStatus = ChangeStatus.WATCHING
    correlation_metrics: dict[str, Any] | None = None
    correlation_unlocked_at: datetime | None = None
    hypothesis: str | None = None
    hypothesis_at: datetime | None = None
    deploy_id: str | None = None
    created_at: datetime | None = None


class DetectedChangeCreate(BaseModel):
    """Parameters the analysis pipeline sends for a newly detected difference."""

    page_id: str = Field(..., description="Monitored page UUID")
    element: str = Field(..., min_length=1, description="Element identifier")
    element_type: str | None = None
    scope: ChangeScope = ChangeScope.ELEMENT
    description: str | None = None
    before_value: str | None = None
    after_value: str | None = None
    first_detected_at: datetime | None = Field(
        default=None, description="Defaults to the time of the call"
    )
    first_detected_scan_id: str | None = None
    deploy_id: str | None = None


class HypothesisUpdate(BaseModel):
    """Owner-supplied guess at why a change was made."""

    hypothesis: str = Field(..., min_length=1, max_length=MAX_HYPOTHESIS_CHARS * 2)


class MetricResult(BaseModel):
    """Before/after values and classification of one metric."""

    name: str
    before: float
    after: float
    change_percent: float
    assessment: Assessment


class CorrelationMetrics(BaseModel):
    """Metric breakdown stored on a checkpoint and its change."""

    metrics: list[MetricResult] = Field(default_factory=list)
    overall_assessment: Assessment
    confidence: float | None = None
    sample_size: int | None = None


class ChangeCheckpoint(BaseModel):
    """One immutable horizon evaluation of a detected change."""

    id: str
    change_id: str
    horizon_days: int
    before_start: datetime
    before_end: datetime
    after_start: datetime
    after_end: datetime
    metrics: dict[str, Any] | None = None
    assessment: Assessment
    confidence: float | None = None
    data_source: str = "none"
    computed_at: datetime


class ChangeCheckpointCreate(BaseModel):
    change_id: str
    horizon_days: int
    before_start: datetime
    before_end: datetime
    after_start: datetime
    after_end: datetime
    metrics: dict[str, Any] | None = None
    assessment: Assessment
    confidence: float | None = Field(default=None, ge=0, le=1)
    data_source: str = "none"
    computed_at: datetime


class ChangeLifecycleEvent(BaseModel):
    """Append-only audit record of a status transition."""

    id: str
    change_id: str
    from_status: ChangeStatus
    to_status: ChangeStatus
    reason: str | None = None
    actor_type: ActorType = ActorType.SYSTEM
    actor_id: str | None = None
    checkpoint_id: str | None = None
    created_at: datetime


class RevertRequest(BaseModel):
    reason: str = Field(default="Later scan shows the change was undone")


class CheckpointRunReport(BaseModel):
    """Outcome of one checkpoint engine pass."""

    changes_considered: int = 0
    changes_due: int = 0
    checkpoints_written: int = 0
    duplicates_skipped: int = 0
    transitions: int = 0
    errors: int = 0


class ChangeView(BaseModel):
    """A change with its checkpoints and rendered outcome text."""

    change: DetectedChange
    checkpoints: list[ChangeCheckpoint] = Field(default_factory=list)
    outcome_text: str | None = None
