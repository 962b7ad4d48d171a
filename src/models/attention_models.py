"""Dashboard attention signal models."""

from enum import Enum

from pydantic import BaseModel


class AttentionReason(str, Enum):
    SCAN_FAILED = "scan_failed"
    NO_SCANS_YET = "no_scans_yet"
    NEGATIVE_CORRELATION = "negative_correlation"
    RECENT_CHANGE = "recent_change"
    HIGH_IMPACT_SUGGESTIONS = "high_impact_suggestions"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AttentionStatus(BaseModel):
    """Single ranked "needs attention" signal for one page."""

    needs_attention: bool
    reason: AttentionReason | None = None
    headline: str
    subheadline: str | None = None
    severity: Severity | None = None


class PageSummary(BaseModel):
    """Dashboard row: page, its latest scan and its attention signal."""

    id: str
    url: str
    name: str | None = None
    scan_frequency: str
    last_scan_id: str | None = None
    last_scan_status: str | None = None
    last_scan_at: str | None = None
    attention: AttentionStatus
