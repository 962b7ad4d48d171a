"""Tracked suggestion models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SuggestionStatus(str, Enum):
    OPEN = "open"
    ADDRESSED = "addressed"
    DISMISSED = "dismissed"


class SuggestionImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TrackedSuggestion(BaseModel):
    """An improvement recommendation surfaced repeatedly across scans."""

    id: str
    page_id: str
    owner_id: str
    element: str
    title: str
    suggestion: str | None = None
    impact: SuggestionImpact = SuggestionImpact.MEDIUM
    status: SuggestionStatus = SuggestionStatus.OPEN
    times_suggested: int = 1
    first_suggested_at: datetime
    last_suggested_at: datetime
    addressed_at: datetime | None = None
    dismissed_at: datetime | None = None


class SuggestionUpsert(BaseModel):
    """Suggestion reported by the analysis pipeline for one scan."""

    page_id: str
    element: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    suggestion: str | None = None
    impact: SuggestionImpact = SuggestionImpact.MEDIUM


class SuggestionStatusUpdate(BaseModel):
    """Owner action on a suggestion."""

    status: SuggestionStatus
