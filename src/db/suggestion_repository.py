"""Tracked suggestion repository."""

from datetime import datetime

import logfire
from supabase import Client

from src.db.query_executor import is_unique_violation, timed_query
from src.models.suggestion_models import (
    SuggestionStatus,
    SuggestionUpsert,
    TrackedSuggestion,
)


class SuggestionRepository:
    """Reads and writes ``tracked_suggestions``.

    At most one open suggestion exists per (page, element, title); repeats
    bump ``times_suggested`` instead of adding rows.
    """

    def __init__(self, client: Client):
        self._client = client

    def find_open(self, page_id: str, element: str, title: str) -> TrackedSuggestion | None:
        with timed_query("find_open_suggestion", page_id=page_id):
            result = (
                self._client.table("tracked_suggestions")
                .select("*")
                .eq("page_id", page_id)
                .eq("element", element)
                .eq("title", title)
                .eq("status", SuggestionStatus.OPEN.value)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return TrackedSuggestion(**result.data[0])

    def _bump(self, existing: TrackedSuggestion, now: datetime) -> TrackedSuggestion:
        with timed_query("bump_suggestion", suggestion_id=existing.id):
            result = (
                self._client.table("tracked_suggestions")
                .update(
                    {
                        "times_suggested": existing.times_suggested + 1,
                        "last_suggested_at": now.isoformat(),
                    }
                )
                .eq("id", existing.id)
                .execute()
            )
        if not result.data:
            raise ValueError("Failed to update suggestion")
        return TrackedSuggestion(**result.data[0])

    def upsert_open(
        self, owner_id: str, suggestion: SuggestionUpsert, now: datetime
    ) -> TrackedSuggestion:
        """Insert a new open suggestion or count a repeat of an existing one."""
        existing = self.find_open(suggestion.page_id, suggestion.element, suggestion.title)
        if existing is not None:
            return self._bump(existing, now)

        data = suggestion.model_dump(mode="json")
        data.update(
            {
                "owner_id": owner_id,
                "status": SuggestionStatus.OPEN.value,
                "times_suggested": 1,
                "first_suggested_at": now.isoformat(),
                "last_suggested_at": now.isoformat(),
            }
        )
        with timed_query("insert_suggestion", page_id=suggestion.page_id):
            try:
                result = self._client.table("tracked_suggestions").insert(data).execute()
            except Exception as e:
                if not is_unique_violation(e):
                    raise
                result = None

        if result is None:
            # A concurrent writer inserted the same open suggestion
            existing = self.find_open(
                suggestion.page_id, suggestion.element, suggestion.title
            )
            if existing is None:
                raise ValueError("Suggestion vanished after unique violation")
            return self._bump(existing, now)

        if not result.data:
            raise ValueError("Failed to create suggestion")
        created = TrackedSuggestion(**result.data[0])
        logfire.info("Suggestion tracked", suggestion_id=created.id, page_id=created.page_id)
        return created

    def get(self, suggestion_id: str, owner_id: str) -> TrackedSuggestion | None:
        with timed_query("get_suggestion", suggestion_id=suggestion_id):
            result = (
                self._client.table("tracked_suggestions")
                .select("*")
                .eq("id", suggestion_id)
                .eq("owner_id", owner_id)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        return TrackedSuggestion(**result.data[0])

    def list_for_page(
        self, page_id: str, status: SuggestionStatus | None = None
    ) -> list[TrackedSuggestion]:
        with timed_query("list_suggestions_for_page", page_id=page_id):
            query = self._client.table("tracked_suggestions").select("*").eq("page_id", page_id)
            if status is not None:
                query = query.eq("status", status.value)
            result = query.order("last_suggested_at", desc=True).execute()
        return [TrackedSuggestion(**row) for row in result.data or []]

    def set_status(
        self,
        suggestion_id: str,
        owner_id: str,
        status: SuggestionStatus,
        now: datetime,
    ) -> TrackedSuggestion | None:
        data: dict = {"status": status.value}
        if status == SuggestionStatus.ADDRESSED:
            data["addressed_at"] = now.isoformat()
        elif status == SuggestionStatus.DISMISSED:
            data["dismissed_at"] = now.isoformat()

        with timed_query(
            "set_suggestion_status", suggestion_id=suggestion_id, status=status.value
        ):
            result = (
                self._client.table("tracked_suggestions")
                .update(data)
                .eq("id", suggestion_id)
                .eq("owner_id", owner_id)
                .execute()
            )
        if not result.data:
            return None
        return TrackedSuggestion(**result.data[0])
