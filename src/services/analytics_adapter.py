"""Analytics provider adapters.

The checkpoint engine asks an adapter for aggregate page metrics over a time
window. Adapters report "not connected" explicitly and degrade partial
provider failures to fewer metrics; only a total failure raises, so the
engine can retry that change on its next pass.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from urllib.parse import urlsplit

import httpx
import logfire

from src.config import Settings, get_settings
from src.db.integration_repository import IntegrationRepository
from src.logging_config import mask_secret
from src.models.integration_models import AnalyticsIntegration, MetricWindow
from src.models.page_models import MonitoredPage
from src.models.tier_models import Tier
from src.services.tier_policy import can_connect_analytics


class NotConnected(Enum):
    """Explicit "no analytics provider" result."""

    NOT_CONNECTED = "not_connected"


NOT_CONNECTED = NotConnected.NOT_CONNECTED

MetricValues = dict[str, float]


class AnalyticsUnavailableError(Exception):
    """Raised when a provider could not answer any query for a window."""

    pass


class AnalyticsAdapter(Protocol):
    """Protocol for one analytics provider."""

    provider: str

    async def get_metrics(
        self, page: MonitoredPage, window: MetricWindow
    ) -> MetricValues | NotConnected:
        """Aggregate metric values for a page over a window.

        Returns:
            Metric name to value; empty when the provider has no data

        Raises:
            AnalyticsUnavailableError: Provider could not be reached at all
        """
        ...


def _escape_hogql(value: str) -> str:
    """Escape a string for use inside a HogQL LIKE literal."""
    return (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def _page_pattern(url: str) -> str:
    parts = urlsplit(url)
    target = f"{parts.hostname or ''}{parts.path or '/'}"
    return _escape_hogql(target.rstrip("/") or target)


def _hogql_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


class PostHogAdapter:
    """PostHog adapter using the HogQL query API.

    Returns ``pageviews``, ``unique_visitors`` and ``bounce_rate``.

    Example:
        >>> adapter = PostHogAdapter(api_key="phx_...", project_id="123")
        >>> await adapter.get_metrics(page, MetricWindow(start, end))
        {'pageviews': 1520.0, 'unique_visitors': 801.0, 'bounce_rate': 41.3}
    """

    provider = "posthog"

    def __init__(
        self,
        api_key: str,
        project_id: str,
        host: str | None = None,
        timeout_seconds: float = 10.0,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        if not str(project_id).isdigit():
            raise ValueError("project_id must be numeric")
        self._api_key = api_key
        self._project_id = str(project_id)
        self._host = (host or get_settings().posthog_default_host).rstrip("/")
        self._timeout = timeout_seconds

    @property
    def query_url(self) -> str:
        return f"{self._host}/api/projects/{self._project_id}/query/"

    async def _query(self, client: httpx.AsyncClient, hogql: str) -> list | None:
        """Run one HogQL query and return its first result row (None on failure)."""
        try:
            response = await client.post(
                self.query_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"query": {"kind": "HogQLQuery", "query": hogql}},
            )
        except httpx.HTTPError as e:
            logfire.warning(
                "PostHog query failed",
                project_id=self._project_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if response.status_code != 200:
            logfire.warning(
                "PostHog query rejected",
                project_id=self._project_id,
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            return None

        results = response.json().get("results") or []
        return list(results[0]) if results else []

    async def get_metrics(
        self, page: MonitoredPage, window: MetricWindow
    ) -> MetricValues | NotConnected:
        pattern = _page_pattern(page.url)
        where = (
            "event = '$pageview'"
            f" AND properties.$current_url LIKE '%{pattern}%'"
            f" AND timestamp >= toDateTime('{_hogql_time(window.start)}')"
            f" AND timestamp < toDateTime('{_hogql_time(window.end)}')"
        )
        stats_query = (
            "SELECT count() AS pageviews, count(DISTINCT person_id) AS unique_visitors"
            f" FROM events WHERE {where}"
        )
        bounce_query = (
            "SELECT countIf(session_pageviews = 1) * 100.0 / count() AS bounce_rate"
            " FROM (SELECT $session_id AS session_id, count() AS session_pageviews"
            f" FROM events WHERE {where} GROUP BY session_id)"
        )

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            stats, bounce = await asyncio.gather(
                self._query(client, stats_query),
                self._query(client, bounce_query),
            )

        if stats is None and bounce is None:
            raise AnalyticsUnavailableError(
                f"PostHog project {self._project_id} did not answer"
            )

        metrics: MetricValues = {}
        if stats:
            if stats[0] is not None:
                metrics["pageviews"] = float(stats[0])
            if len(stats) > 1 and stats[1] is not None:
                metrics["unique_visitors"] = float(stats[1])
        if bounce and bounce[0] is not None:
            metrics["bounce_rate"] = round(float(bounce[0]), 2)

        # No traffic at all is "no data", not a measurement of zero. A failed
        # stats query says nothing about traffic, so the other metrics stay.
        if stats is not None and not metrics.get("pageviews"):
            return {}

        logfire.debug(
            "PostHog metrics fetched",
            page_id=page.id,
            metrics=sorted(metrics),
        )
        return metrics


class AnalyticsAdapterResolver:
    """Pick the analytics adapter for an owner, if one is connected and allowed."""

    def __init__(
        self,
        integrations: IntegrationRepository,
        settings: Settings | None = None,
    ):
        self._integrations = integrations
        self._settings = settings or get_settings()

    def build(self, integration: AnalyticsIntegration) -> AnalyticsAdapter | None:
        if integration.provider == PostHogAdapter.provider:
            return PostHogAdapter(
                api_key=integration.api_key,
                project_id=integration.project_id,
                host=integration.host or self._settings.posthog_default_host,
                timeout_seconds=self._settings.analytics_timeout_seconds,
            )
        logfire.warning(
            "Unsupported analytics provider",
            provider=integration.provider,
            integration_id=integration.id,
        )
        return None

    def resolve(self, owner_id: str, tier: Tier) -> AnalyticsAdapter | None:
        # Integrations kept after a downgrade are not used on tiers without analytics
        if not can_connect_analytics(tier, 0):
            return None
        integration = self._integrations.get_active_for_owner(owner_id)
        if integration is None:
            return None
        try:
            return self.build(integration)
        except ValueError as e:
            logfire.warning(
                "Invalid analytics integration",
                integration_id=integration.id,
                api_key=mask_secret(integration.api_key),
                error=str(e),
            )
            return None
