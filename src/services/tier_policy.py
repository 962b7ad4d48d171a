"""Subscription tier policy.

Maps an owner's billing state to the quota and cadence decisions every other
component consumes. Everything here is deterministic and free of I/O.
"""

from datetime import datetime, timezone

from src.models.page_models import ScanFrequency
from src.models.tier_models import SubscriptionStatus, Tier, TierLimits


class PolicyViolationError(Exception):
    """Base exception for requests the owner's tier does not allow."""

    code = "policy_violation"


class PageLimitReachedError(PolicyViolationError):
    """Raised when registering a page would exceed the tier's page quota."""

    code = "page_limit_reached"

    def __init__(self, tier: Tier, limit: int):
        self.tier = tier
        self.limit = limit
        super().__init__(
            f"The {tier.value} plan allows {limit} monitored page"
            f"{'' if limit == 1 else 's'}"
        )


class ScanFrequencyNotAllowedError(PolicyViolationError):
    """Raised when a page asks for a cadence the tier does not include."""

    code = "scan_frequency_not_allowed"

    def __init__(self, tier: Tier, requested: str):
        self.tier = tier
        self.requested = requested
        super().__init__(
            f"Scan frequency '{requested}' is not available on the {tier.value} plan"
        )


class DeployScansNotAllowedError(PolicyViolationError):
    code = "deploy_scans_not_allowed"

    def __init__(self, tier: Tier):
        self.tier = tier
        super().__init__(f"Deploy scans are not available on the {tier.value} plan")


TIER_LIMITS: dict[Tier, TierLimits] = {
    Tier.FREE: TierLimits(
        page_limit=1,
        scan_frequency=ScanFrequency.WEEKLY,
        analytics_integrations=0,
        deploy_scans=False,
        max_horizon_days=30,
    ),
    Tier.STARTER: TierLimits(
        page_limit=3,
        scan_frequency=ScanFrequency.DAILY,
        analytics_integrations=1,
        deploy_scans=True,
        max_horizon_days=90,
    ),
    Tier.PRO: TierLimits(
        page_limit=10,
        scan_frequency=ScanFrequency.DAILY,
        analytics_integrations=None,
        deploy_scans=True,
        max_horizon_days=90,
    ),
}

# Tier granted while a trial is running
TRIAL_TIER = Tier.PRO

_DEGRADED_STATUSES = {SubscriptionStatus.PAST_DUE.value, SubscriptionStatus.CANCELED.value}


def _coerce_tier(raw_tier: str | Tier | None) -> Tier:
    if isinstance(raw_tier, Tier):
        return raw_tier
    try:
        return Tier(raw_tier)
    except ValueError:
        return Tier.FREE


def effective_tier(
    raw_tier: str | Tier | None,
    subscription_status: str | None,
    trial_ends_at: datetime | None,
    now: datetime | None = None,
) -> Tier:
    """Resolve the tier an owner is entitled to right now.

    An active trial wins over everything; otherwise a past_due or canceled
    subscription degrades to free. Unknown tiers are treated as free.
    """
    now = now or datetime.now(timezone.utc)
    if trial_ends_at is not None and trial_ends_at.tzinfo is None:
        trial_ends_at = trial_ends_at.replace(tzinfo=timezone.utc)
    if trial_ends_at is not None and trial_ends_at > now:
        return TRIAL_TIER

    status = (
        subscription_status.value
        if isinstance(subscription_status, SubscriptionStatus)
        else subscription_status
    )
    if status in _DEGRADED_STATUSES:
        return Tier.FREE

    return _coerce_tier(raw_tier)


def get_tier_limits(tier: Tier) -> TierLimits:
    return TIER_LIMITS[tier]


def get_page_limit(tier: Tier, bonus_pages: int = 0) -> int:
    """Number of pages the owner may monitor (bonus pages included)."""
    return TIER_LIMITS[tier].page_limit + max(0, bonus_pages)


def get_allowed_scan_frequency(tier: Tier) -> ScanFrequency:
    """Fastest automatic cadence the tier allows."""
    return TIER_LIMITS[tier].scan_frequency


def get_max_horizon_days(tier: Tier) -> int:
    return TIER_LIMITS[tier].max_horizon_days


def can_use_deploy_scans(tier: Tier) -> bool:
    return TIER_LIMITS[tier].deploy_scans


def can_connect_analytics(tier: Tier, current_count: int) -> bool:
    allowed = TIER_LIMITS[tier].analytics_integrations
    return allowed is None or current_count < allowed


def allows_daily(tier: Tier) -> bool:
    return get_allowed_scan_frequency(tier) == ScanFrequency.DAILY


def check_scan_frequency(tier: Tier, requested: str | ScanFrequency) -> ScanFrequency:
    """Validate a requested page cadence against the tier.

    Returns:
        The parsed ScanFrequency

    Raises:
        ScanFrequencyNotAllowedError: unknown value, or daily on a weekly-only tier
    """
    value = requested.value if isinstance(requested, ScanFrequency) else requested
    try:
        frequency = ScanFrequency(value)
    except ValueError:
        raise ScanFrequencyNotAllowedError(tier, str(value)) from None

    if frequency == ScanFrequency.DAILY and not allows_daily(tier):
        raise ScanFrequencyNotAllowedError(tier, frequency.value)
    return frequency


def check_page_quota(tier: Tier, current_count: int, bonus_pages: int = 0) -> None:
    """Raise PageLimitReachedError if one more page would exceed the quota."""
    limit = get_page_limit(tier, bonus_pages)
    if current_count >= limit:
        raise PageLimitReachedError(tier, limit)
