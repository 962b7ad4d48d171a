"""Monitored page models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.constants import MAX_URL_LENGTH


class ScanFrequency(str, Enum):
    """How often a page is scanned."""

    MANUAL = "manual"
    WEEKLY = "weekly"
    DAILY = "daily"


class MonitoredPage(BaseModel):
    """A URL an owner tracks."""

    id: str
    owner_id: str
    url: str
    name: str | None = None
    scan_frequency: ScanFrequency = ScanFrequency.WEEKLY
    last_scan_id: str | None = None
    created_at: datetime


class PageCreate(BaseModel):
    """Request body for registering a page."""

    url: str = Field(..., min_length=1, max_length=MAX_URL_LENGTH)
    name: str | None = Field(default=None, max_length=200)
    scan_frequency: str = Field(default="weekly", description="manual, weekly or daily")


class PageUpdate(BaseModel):
    """Request body for updating a page (all fields optional)."""

    name: str | None = Field(default=None, max_length=200)
    scan_frequency: str | None = None
