"""Admin endpoints (loopback clients only)."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel

from repomirror.api.deps import get_orchestrator, require_local
from repomirror.exceptions import SyncError
from repomirror.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_local)])


class SyncTriggerResponse(BaseModel):
    status: str
    message: str


async def _run_sync(orchestrator: SyncOrchestrator) -> None:
    try:
        await orchestrator.sync_all()
    except SyncError as exc:
        logger.error("Manual sync failed: %s", exc)
    else:
        logger.info("Manual sync completed successfully")


@router.post(
    "/sync",
    response_model=SyncTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncTriggerResponse:
    """Start a sync of all repositories and return immediately."""
    logger.info("Manual sync triggered")
    background_tasks.add_task(_run_sync, orchestrator)
    return SyncTriggerResponse(
        status="sync started",
        message="Repository synchronization has been triggered",
    )
