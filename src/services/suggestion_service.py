"""Tracked suggestions: pipeline upserts and owner status changes."""

from datetime import datetime, timezone
from typing import Callable

import logfire

from src.db.page_repository import PageRepository
from src.db.suggestion_repository import SuggestionRepository
from src.models.suggestion_models import (
    SuggestionStatus,
    SuggestionUpsert,
    TrackedSuggestion,
)


class SuggestionNotFoundError(Exception):
    pass


class InvalidSuggestionStatusError(Exception):
    pass


class SuggestionService:
    def __init__(
        self,
        suggestions: SuggestionRepository,
        pages: PageRepository,
        clock: Callable[[], datetime] | None = None,
    ):
        self._suggestions = suggestions
        self._pages = pages
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record(self, suggestion: SuggestionUpsert) -> TrackedSuggestion:
        """Record a suggestion surfaced by a scan (repeats bump the counter)."""
        page = self._pages.get_page(suggestion.page_id)
        if page is None:
            raise SuggestionNotFoundError(f"Page {suggestion.page_id} not found")
        return self._suggestions.upsert_open(page.owner_id, suggestion, self._clock())

    def list_for_page(
        self, owner_id: str, page_id: str, status: SuggestionStatus | None = None
    ) -> list[TrackedSuggestion]:
        if self._pages.get_page(page_id, owner_id) is None:
            raise SuggestionNotFoundError(f"Page {page_id} not found")
        return self._suggestions.list_for_page(page_id, status)

    def set_status(
        self, owner_id: str, suggestion_id: str, status: SuggestionStatus
    ) -> TrackedSuggestion:
        """Owner moves a suggestion to addressed or dismissed."""
        if status == SuggestionStatus.OPEN:
            raise InvalidSuggestionStatusError(
                "Suggestions can only be marked addressed or dismissed"
            )
        updated = self._suggestions.set_status(
            suggestion_id, owner_id, status, self._clock()
        )
        if updated is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        logfire.info(
            "Suggestion status changed",
            suggestion_id=suggestion_id,
            status=status.value,
        )
        return updated
