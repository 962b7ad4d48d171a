"""Tests for subscription tier policy."""

from datetime import datetime, timedelta, timezone

import pytest

from src.models.page_models import ScanFrequency
from src.models.tier_models import Tier
from src.services.tier_policy import (
    DeployScansNotAllowedError,
    PageLimitReachedError,
    PolicyViolationError,
    ScanFrequencyNotAllowedError,
    TIER_LIMITS,
    allows_daily,
    can_connect_analytics,
    can_use_deploy_scans,
    check_page_quota,
    check_scan_frequency,
    effective_tier,
    get_allowed_scan_frequency,
    get_max_horizon_days,
    get_page_limit,
)

NOW = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)


class TestTierLimits:
    """The fixed allowance table."""

    def test_free_tier(self):
        limits = TIER_LIMITS[Tier.FREE]
        assert limits.page_limit == 1
        assert limits.scan_frequency == ScanFrequency.WEEKLY
        assert limits.analytics_integrations == 0
        assert limits.deploy_scans is False
        assert limits.max_horizon_days == 30

    def test_starter_tier(self):
        limits = TIER_LIMITS[Tier.STARTER]
        assert limits.page_limit == 3
        assert limits.scan_frequency == ScanFrequency.DAILY
        assert limits.analytics_integrations == 1
        assert limits.deploy_scans is True
        assert limits.max_horizon_days == 90

    def test_pro_tier(self):
        limits = TIER_LIMITS[Tier.PRO]
        assert limits.page_limit == 10
        assert limits.scan_frequency == ScanFrequency.DAILY
        assert limits.analytics_integrations is None
        assert limits.deploy_scans is True

    @pytest.mark.parametrize("tier", list(Tier))
    def test_queries_are_deterministic(self, tier):
        """Same tier, same answers, every time."""
        assert get_page_limit(tier) == get_page_limit(tier)
        assert get_allowed_scan_frequency(tier) == TIER_LIMITS[tier].scan_frequency
        assert get_max_horizon_days(tier) == TIER_LIMITS[tier].max_horizon_days
        assert can_use_deploy_scans(tier) == TIER_LIMITS[tier].deploy_scans


class TestEffectiveTier:
    """Billing state to effective tier."""

    def test_active_paid_tier_is_kept(self):
        assert effective_tier("starter", "active", None, NOW) == Tier.STARTER

    def test_unknown_tier_falls_back_to_free(self):
        assert effective_tier("enterprise", "active", None, NOW) == Tier.FREE

    def test_missing_tier_is_free(self):
        assert effective_tier(None, None, None, NOW) == Tier.FREE

    @pytest.mark.parametrize("status", ["past_due", "canceled"])
    def test_degraded_billing_is_free(self, status):
        assert effective_tier("pro", status, None, NOW) == Tier.FREE

    def test_active_trial_grants_pro(self):
        trial_end = NOW + timedelta(days=3)
        assert effective_tier("free", "trialing", trial_end, NOW) == Tier.PRO

    def test_expired_trial_uses_stored_tier(self):
        trial_end = NOW - timedelta(seconds=1)
        assert effective_tier("free", "trialing", trial_end, NOW) == Tier.FREE

    def test_naive_trial_end_is_treated_as_utc(self):
        trial_end = datetime(2025, 3, 13, 0, 0)
        assert effective_tier("free", "trialing", trial_end, NOW) == Tier.PRO


class TestQuotas:
    """Page quota and cadence checks."""

    def test_bonus_pages_extend_limit(self):
        assert get_page_limit(Tier.STARTER, 2) == 5

    def test_quota_allows_below_limit(self):
        check_page_quota(Tier.STARTER, 2)

    def test_quota_rejects_at_limit(self):
        with pytest.raises(PageLimitReachedError) as exc_info:
            check_page_quota(Tier.FREE, 1)
        assert exc_info.value.limit == 1
        assert exc_info.value.code == "page_limit_reached"
        assert isinstance(exc_info.value, PolicyViolationError)

    def test_quota_counts_bonus_pages(self):
        check_page_quota(Tier.FREE, 1, bonus_pages=1)

    def test_daily_not_allowed_on_free(self):
        with pytest.raises(ScanFrequencyNotAllowedError) as exc_info:
            check_scan_frequency(Tier.FREE, "daily")
        assert exc_info.value.requested == "daily"

    @pytest.mark.parametrize("requested", ["manual", "weekly"])
    def test_free_accepts_slower_cadences(self, requested):
        assert check_scan_frequency(Tier.FREE, requested) == ScanFrequency(requested)

    def test_paid_tier_accepts_daily(self):
        assert check_scan_frequency(Tier.STARTER, "daily") == ScanFrequency.DAILY

    def test_unknown_frequency_rejected(self):
        with pytest.raises(ScanFrequencyNotAllowedError):
            check_scan_frequency(Tier.PRO, "hourly")

    def test_allows_daily(self):
        assert allows_daily(Tier.FREE) is False
        assert allows_daily(Tier.PRO) is True


class TestIntegrations:
    def test_free_cannot_connect_analytics(self):
        assert can_connect_analytics(Tier.FREE, 0) is False

    def test_starter_allows_one(self):
        assert can_connect_analytics(Tier.STARTER, 0) is True
        assert can_connect_analytics(Tier.STARTER, 1) is False

    def test_pro_is_unlimited(self):
        assert can_connect_analytics(Tier.PRO, 50) is True

    def test_deploy_scan_error_carries_code(self):
        error = DeployScansNotAllowedError(Tier.FREE)
        assert error.code == "deploy_scans_not_allowed"
        assert "free" in str(error)
