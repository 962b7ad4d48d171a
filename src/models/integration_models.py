"""Analytics integration models."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel


class AnalyticsIntegration(BaseModel):
    """An owner's connection to an analytics provider."""

    id: str
    owner_id: str
    provider: str
    api_key: str
    project_id: str
    host: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class MetricWindow:
    """Half-open time range [start, end) a metric value is aggregated over."""

    start: datetime
    end: datetime
