"""Uptime monitoring API: status, acknowledgement, reports and targets."""
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import CheckResult, MonitorTarget
from ..schemas.monitoring import (
    AcknowledgeRequest,
    CheckResultResponse,
    MonitorStatusEntry,
    SweepResponse,
    SyncResponse,
    TargetCreate,
    TargetResponse,
)
from ..services.acknowledgment import acknowledge_alarm
from ..services.registry import HostingCancelledError, HostingNotFoundError, monitor_registry
from ..services.reports import build_monthly_report, report_filename
from ..services.scheduler import scheduler_service
from ..services.state_tracker import list_status

router = APIRouter(prefix="/api/monitoring", tags=["monitoring"])


@router.get("/status", response_model=List[MonitorStatusEntry])
async def get_monitor_status(db: AsyncSession = Depends(get_db)):
    """Current up/down and alarm state of every target."""
    rows = await list_status(db)
    return [MonitorStatusEntry.from_rows(target, state) for target, state in rows]


@router.post("/ack/{target_id}", response_model=MonitorStatusEntry)
async def acknowledge_target_alarm(
    target_id: int,
    request: Optional[AcknowledgeRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
):
    """Acknowledge the active alarm of a target. No-op when there is none."""
    entry = await acknowledge_alarm(db, target_id, actor=request.actor if request else None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Monitor target not found")
    return entry


@router.get("/report")
async def download_monthly_report(
    month: str = Query(..., description="Month as YYYY-MM"),
    target_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Raw CSV of every check performed in a month."""
    try:
        content = await build_monthly_report(db, month, target_id=target_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    filename = report_filename(month, target_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/targets", response_model=List[TargetResponse])
async def list_targets(db: AsyncSession = Depends(get_db)):
    """All monitor targets, enabled or not."""
    return await monitor_registry.list_targets(db)


@router.post("/targets", response_model=TargetResponse, status_code=201)
async def register_target(request: TargetCreate, db: AsyncSession = Depends(get_db)):
    """Start monitoring a hosting record."""
    try:
        return await monitor_registry.register(db, request.hosting_id)
    except HostingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except HostingCancelledError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/targets/sync", response_model=SyncResponse)
async def sync_targets(db: AsyncSession = Depends(get_db)):
    """Register active hosting records and disable cancelled ones."""
    result = await monitor_registry.sync_with_hosting(db)
    return SyncResponse(registered=result.registered, disabled=result.disabled)


@router.post("/targets/{hosting_id}/disable", response_model=TargetResponse)
async def disable_target(hosting_id: int, db: AsyncSession = Depends(get_db)):
    """Stop probing a hosting record; its history is kept."""
    target = await monitor_registry.disable(db, hosting_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Monitor target not found")
    return target


@router.get("/targets/{target_id}/checks", response_model=List[CheckResultResponse])
async def get_recent_checks(
    target_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Most recent checks of a target, newest first."""
    target = await db.get(MonitorTarget, target_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Monitor target not found")

    result = await db.execute(
        select(CheckResult)
        .where(CheckResult.target_id == target_id)
        .order_by(CheckResult.checked_at.desc(), CheckResult.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep_now():
    """Probe every enabled target immediately."""
    summary = await scheduler_service.run_sweep()
    if summary is None:
        raise HTTPException(status_code=409, detail="A sweep is already running")
    return SweepResponse(
        started_at=summary.started_at,
        finished_at=summary.finished_at,
        checked=summary.checked,
        failing=summary.failing,
        errors=summary.errors,
    )
