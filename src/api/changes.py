"""Owner endpoints for detected changes."""

import logging

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_container, get_owner_id
from src.models.change_models import ChangeView, DetectedChange, HypothesisUpdate
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=list[ChangeView])
async def list_changes(
    page_id: str = Query(...),
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Changes on a page with their checkpoints and outcome sentence."""
    return container.pages.list_changes(owner_id, page_id)


@router.patch("/{change_id}/hypothesis", response_model=DetectedChange)
async def set_hypothesis(
    change_id: str,
    body: HypothesisUpdate,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    return container.lifecycle.set_hypothesis(change_id, owner_id, body.hypothesis)
