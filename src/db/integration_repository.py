"""Analytics integration repository."""

from supabase import Client

from src.db.query_executor import timed_query
from src.models.integration_models import AnalyticsIntegration


class IntegrationRepository:
    def __init__(self, client: Client):
        self._client = client

    def get_active_for_owner(self, owner_id: str) -> AnalyticsIntegration | None:
        """The owner's most recently connected active integration."""
        with timed_query("get_active_integration", owner_id=owner_id):
            result = (
                self._client.table("analytics_integrations")
                .select("*")
                .eq("owner_id", owner_id)
                .eq("is_active", True)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return AnalyticsIntegration(**result.data[0])
