"""Subscription tier models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.models.page_models import ScanFrequency


class Tier(str, Enum):
    """Subscription level governing page quota and scan cadence."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Billing state reported by the payment provider."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


@dataclass(frozen=True)
class TierLimits:
    """Quota and cadence allowances for one tier."""

    page_limit: int
    scan_frequency: ScanFrequency
    # None means unlimited
    analytics_integrations: int | None
    deploy_scans: bool
    max_horizon_days: int


class OwnerProfile(BaseModel):
    """Billing and identity snapshot for a page owner."""

    id: str
    subscription_tier: str | None = None
    subscription_status: str | None = None
    trial_ends_at: datetime | None = None
    timezone: str = Field(default="UTC", description="IANA timezone name")
    bonus_pages: int = Field(default=0, ge=0)
