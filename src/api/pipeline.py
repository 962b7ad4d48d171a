"""Callbacks from the analysis pipeline.

The pipeline consumes ``scan/requested`` events at-least-once, reports job
progress here, and records what it found: detected changes, reverts and
suggestions.
"""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_container, require_pipeline_secret
from src.models.change_models import (
    ActorType,
    DetectedChange,
    DetectedChangeCreate,
    RevertRequest,
)
from src.models.scan_models import ScanFailure, ScanJob, ScanStartResult
from src.models.suggestion_models import SuggestionUpsert, TrackedSuggestion
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_pipeline_secret)])


@router.post("/scans/{job_id}/start", response_model=ScanStartResult)
async def start_scan(job_id: str, container: ServiceContainer = Depends(get_container)):
    """Claim a job. Duplicate deliveries get ``started: false`` and should stop."""
    job, started = container.scans.start(job_id)
    return ScanStartResult(job=job, started=started)


@router.post("/scans/{job_id}/complete", response_model=ScanJob)
async def complete_scan(job_id: str, container: ServiceContainer = Depends(get_container)):
    return container.scans.complete(job_id)


@router.post("/scans/{job_id}/fail", response_model=ScanJob)
async def fail_scan(
    job_id: str,
    body: ScanFailure,
    container: ServiceContainer = Depends(get_container),
):
    logger.warning("Pipeline reported failed scan %s", job_id)
    return container.scans.fail(job_id, body.error_message)


@router.post("/changes", response_model=DetectedChange, status_code=201)
async def record_change(
    body: DetectedChangeCreate,
    container: ServiceContainer = Depends(get_container),
):
    """Record a newly detected change; it starts out watching."""
    page = container.pages.get_page(body.page_id)
    return container.lifecycle.create(page.owner_id, body)


@router.post("/changes/{change_id}/revert", response_model=DetectedChange)
async def revert_change(
    change_id: str,
    body: RevertRequest,
    container: ServiceContainer = Depends(get_container),
):
    """A later scan shows the change was undone."""
    updated = container.lifecycle.mark_reverted(change_id, body.reason, ActorType.SYSTEM)
    if updated is None:
        # Lost a race with a concurrent transition; report the current row
        return container.lifecycle.get(change_id)
    return updated


@router.post("/suggestions", response_model=TrackedSuggestion)
async def record_suggestion(
    body: SuggestionUpsert,
    container: ServiceContainer = Depends(get_container),
):
    return container.suggestions.record(body)
