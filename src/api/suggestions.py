"""Owner endpoints for tracked suggestions."""

import logging

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_container, get_owner_id, rate_limited
from src.models.suggestion_models import (
    SuggestionStatus,
    SuggestionStatusUpdate,
    TrackedSuggestion,
)
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=list[TrackedSuggestion])
async def list_suggestions(
    page_id: str = Query(...),
    status: SuggestionStatus | None = Query(default=None),
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    return container.suggestions.list_for_page(owner_id, page_id, status)


@router.patch("/{suggestion_id}", response_model=TrackedSuggestion)
async def update_suggestion(
    suggestion_id: str,
    body: SuggestionStatusUpdate,
    owner_id: str = Depends(rate_limited("update_suggestion")),
    container: ServiceContainer = Depends(get_container),
):
    """Mark a suggestion addressed or dismissed."""
    updated = container.suggestions.set_status(owner_id, suggestion_id, body.status)
    logger.info("Suggestion %s marked %s", suggestion_id, body.status.value)
    return updated
