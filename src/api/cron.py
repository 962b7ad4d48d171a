"""Endpoints invoked by the external cron trigger.

The primary jobs (scheduled scans, checkpoints) and their backups are
independent endpoints; every one of them is safe to call repeatedly.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.dependencies import get_container, require_cron_secret
from src.models.change_models import CheckpointRunReport
from src.models.scan_models import BackupRunReport, ScheduleRunReport
from src.services.container import ServiceContainer
from src.services.scan_scheduler import parse_run_frequency

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/scheduled-scans", response_model=ScheduleRunReport)
async def scheduled_scans(
    frequency: str = Query(..., description="daily or weekly"),
    container: ServiceContainer = Depends(get_container),
):
    """Create and announce today's scheduled scan jobs."""
    try:
        trigger = parse_run_frequency(frequency)
    except ValueError:
        raise HTTPException(
            status_code=422, detail="frequency must be 'daily' or 'weekly'"
        )

    report = await container.scheduler.run(trigger)
    logger.info(
        "Scheduled %s scans: created=%d skipped=%d failed=%d",
        trigger.value,
        report.created,
        report.skipped,
        len(report.failed),
    )
    return report


@router.get("/daily-scans", response_model=BackupRunReport)
async def daily_scans_backup(container: ServiceContainer = Depends(get_container)):
    """Backup pass: resync the consumer, backfill missed jobs, re-emit stale ones."""
    return await container.backup.run()


@router.post("/checkpoints", response_model=CheckpointRunReport)
async def run_checkpoints(container: ServiceContainer = Depends(get_container)):
    return await container.checkpoints.run()


@router.get("/checkpoints")
async def checkpoints_backup(container: ServiceContainer = Depends(get_container)):
    """Backup pass: run the engine only when checkpoints are still due."""
    due = container.checkpoints.due_horizon_count()
    if due == 0:
        logger.info("Checkpoint backup: nothing due")
        return {"ran": False, "due": 0, "report": None}

    logger.warning("Checkpoint backup found %d due checkpoints", due)
    report = await container.checkpoints.run()
    return {"ran": True, "due": due, "report": report.model_dump()}
