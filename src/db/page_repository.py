"""Monitored page repository."""

from typing import Any

import logfire
from supabase import Client

from src.constants import QUERY_PAGE_SIZE
from src.db.query_executor import fetch_all, timed_query
from src.models.page_models import MonitoredPage, ScanFrequency


class PageRepository:
    """CRUD over the ``pages`` table, always scoped to an owner for writes."""

    def __init__(self, client: Client, page_size: int = QUERY_PAGE_SIZE):
        self._client = client
        self._page_size = page_size

    def list_scheduled_pages(self) -> list[MonitoredPage]:
        """All pages with an automatic cadence, oldest first."""
        with timed_query("list_scheduled_pages"):
            rows = fetch_all(
                lambda: (
                    self._client.table("pages")
                    .select("*")
                    .neq("scan_frequency", ScanFrequency.MANUAL.value)
                    .order("created_at")
                    .order("id")
                ),
                self._page_size,
            )
        return [MonitoredPage(**row) for row in rows]

    def get_page(self, page_id: str, owner_id: str | None = None) -> MonitoredPage | None:
        with timed_query("get_page", page_id=page_id):
            query = self._client.table("pages").select("*").eq("id", page_id)
            if owner_id is not None:
                query = query.eq("owner_id", owner_id)
            result = query.limit(1).execute()
        if not result.data:
            return None
        return MonitoredPage(**result.data[0])

    def get_pages(self, page_ids: list[str]) -> dict[str, MonitoredPage]:
        if not page_ids:
            return {}
        with timed_query("get_pages", count=len(page_ids)):
            result = (
                self._client.table("pages")
                .select("*")
                .in_("id", sorted(set(page_ids)))
                .execute()
            )
        return {row["id"]: MonitoredPage(**row) for row in result.data or []}

    def list_for_owner(self, owner_id: str) -> list[MonitoredPage]:
        with timed_query("list_pages_for_owner", owner_id=owner_id):
            result = (
                self._client.table("pages")
                .select("*")
                .eq("owner_id", owner_id)
                .order("created_at")
                .execute()
            )
        return [MonitoredPage(**row) for row in result.data or []]

    def create(
        self,
        owner_id: str,
        url: str,
        name: str | None,
        scan_frequency: ScanFrequency,
    ) -> MonitoredPage:
        """
        Insert a page.

        Raises:
            APIError: unique violation on (owner_id, url) propagates to the caller
            ValueError: insert returned no row
        """
        data = {
            "owner_id": owner_id,
            "url": url,
            "name": name,
            "scan_frequency": scan_frequency.value,
        }
        with timed_query("create_page", owner_id=owner_id):
            result = self._client.table("pages").insert(data).execute()

        if not result.data:
            raise ValueError("Failed to create page")

        page = MonitoredPage(**result.data[0])
        logfire.info("Page registered", page_id=page.id, owner_id=owner_id)
        return page

    def update(
        self, page_id: str, owner_id: str, fields: dict[str, Any]
    ) -> MonitoredPage | None:
        with timed_query("update_page", page_id=page_id, fields=sorted(fields)):
            result = (
                self._client.table("pages")
                .update(fields)
                .eq("id", page_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        if not result.data:
            return None
        return MonitoredPage(**result.data[0])

    def set_last_scan(self, url: str, owner_id: str, scan_id: str) -> None:
        """Point the owner's page for ``url`` at its latest completed scan."""
        with timed_query("set_last_scan", owner_id=owner_id, scan_id=scan_id):
            (
                self._client.table("pages")
                .update({"last_scan_id": scan_id})
                .eq("owner_id", owner_id)
                .eq("url", url)
                .execute()
            )

    def delete(self, page_id: str, owner_id: str) -> bool:
        with timed_query("delete_page", page_id=page_id):
            result = (
                self._client.table("pages")
                .delete()
                .eq("id", page_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        return bool(result.data)

    def delete_for_owner(self, owner_id: str) -> int:
        """Account erasure; changes, checkpoints and suggestions cascade."""
        with timed_query("delete_pages_for_owner", owner_id=owner_id):
            result = (
                self._client.table("pages")
                .delete()
                .eq("owner_id", owner_id)
                .execute()
            )
        return len(result.data or [])
