# api/routes_scheduler.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Query

from core.auth import verify_scheduler_key
from core.container import Container, get_container
from core.response import ok
from models.schemas import DailySchedulerRequest

router = APIRouter()


@router.post("/daily-scheduler")
async def daily_scheduler(
    payload: Optional[DailySchedulerRequest] = Body(None),
    x_scheduler_key: Optional[str] = Header(None),
    container: Container = Depends(get_container),
):
    """
    Cron entry. Called without a body by the platform cron (slot inferred from
    the local hour), or manually with {timeSlot, targetDate, dryRun, force}.
    """
    payload = payload or DailySchedulerRequest()
    verify_scheduler_key(container.settings.SCHEDULER_SECRET_KEY, x_scheduler_key, payload.scheduler_key)
    result = await container.scheduler.run_daily(
        time_slot=payload.time_slot,
        target_date=payload.target_date,
        dry_run=payload.dry_run,
        force=payload.force,
    )
    return ok(result.model_dump(mode="json", by_alias=True))


@router.get("/scheduler-status")
async def scheduler_status(
    day: Optional[date] = Query(None, alias="date"),
    container: Container = Depends(get_container),
):
    return ok(await container.scheduler.status(day))
