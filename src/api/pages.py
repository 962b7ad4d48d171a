"""Owner endpoints for monitored pages."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from src.api.dependencies import get_container, get_owner_id, rate_limited
from src.models.attention_models import PageSummary
from src.models.page_models import MonitoredPage, PageCreate, PageUpdate
from src.models.scan_models import ScanJob, TriggerType
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=list[PageSummary])
async def list_pages(
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Dashboard: every page with its last scan and attention status."""
    return container.pages.dashboard(owner_id)


@router.post("", response_model=MonitoredPage, status_code=201)
async def register_page(
    body: PageCreate,
    owner_id: str = Depends(rate_limited("register_page")),
    container: ServiceContainer = Depends(get_container),
):
    page = container.pages.register_page(
        owner_id, body.url, body.name, body.scan_frequency
    )
    logger.info("Owner %s registered page %s", owner_id, page.id)
    return page


@router.patch("/{page_id}", response_model=MonitoredPage)
async def update_page(
    page_id: str,
    body: PageUpdate,
    owner_id: str = Depends(rate_limited("update_page")),
    container: ServiceContainer = Depends(get_container),
):
    return container.pages.update_page(owner_id, page_id, body)


@router.delete("/{page_id}", status_code=204)
async def delete_page(
    page_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    container.pages.delete_page(owner_id, page_id)
    return Response(status_code=204)


@router.post("/{page_id}/rescan", response_model=ScanJob, status_code=202)
async def rescan_page(
    page_id: str,
    trigger: str = Query(default="manual", description="manual or deploy"),
    deploy_id: str | None = Query(default=None),
    owner_id: str = Depends(rate_limited("rescan")),
    container: ServiceContainer = Depends(get_container),
):
    """Queue an on-demand scan of the page."""
    if trigger not in (TriggerType.MANUAL.value, TriggerType.DEPLOY.value):
        raise HTTPException(status_code=422, detail="trigger must be 'manual' or 'deploy'")
    return await container.pages.request_rescan(
        owner_id, page_id, TriggerType(trigger), deploy_id
    )
