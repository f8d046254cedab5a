"""Persistence for daily reminder scheduler runs."""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.db_models import SchedulerRun

logger = logging.getLogger(__name__)

SCHEDULER_TYPE = "booking_reminders"


class SchedulerRunStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def last_completed(self, run_date: date, time_slot: str) -> Dict[str, Any] | None:
        stmt = (
            select(SchedulerRun)
            .where(SchedulerRun.scheduler_type == SCHEDULER_TYPE)
            .where(SchedulerRun.run_date == run_date)
            .where(SchedulerRun.time_slot == time_slot)
            .where(SchedulerRun.status == "completed")
            .order_by(SchedulerRun.created_at.desc())
            .limit(1)
        )
        async with self.session_factory() as session:
            run = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_dict(run) if run else None

    async def start_run(self, run_date: date, time_slot: str, target_date: date, dry_run: bool) -> int:
        async with self.session_factory() as session:
            run = SchedulerRun(
                scheduler_type=SCHEDULER_TYPE,
                run_date=run_date,
                time_slot=time_slot,
                target_date=target_date,
                status="running",
                dry_run=dry_run,
            )
            session.add(run)
            await session.commit()
            return run.id

    async def finish_run(
        self,
        run_id: int,
        success: bool,
        summary: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            run = await session.get(SchedulerRun, run_id)
            if run is None:
                logger.warning("Scheduler run %s vanished before completion", run_id)
                return
            run.status = "completed" if success else "failed"
            run.completed_at = datetime.utcnow()
            run.result_summary = summary
            run.error_details = error
            await session.commit()

    async def runs_for_date(self, run_date: date) -> List[Dict[str, Any]]:
        stmt = (
            select(SchedulerRun)
            .where(SchedulerRun.scheduler_type == SCHEDULER_TYPE)
            .where(SchedulerRun.run_date == run_date)
            .order_by(SchedulerRun.time_slot, SchedulerRun.created_at.desc())
        )
        async with self.session_factory() as session:
            return [self._to_dict(r) for r in (await session.execute(stmt)).scalars().all()]

    @staticmethod
    def _to_dict(r: SchedulerRun) -> Dict[str, Any]:
        return {
            "id": r.id,
            "run_date": r.run_date.isoformat() if r.run_date else None,
            "time_slot": r.time_slot,
            "target_date": r.target_date.isoformat() if r.target_date else None,
            "status": r.status,
            "dry_run": r.dry_run,
            "result_summary": r.result_summary,
            "error_details": r.error_details,
            "started_at": r.started_at.isoformat() if r.started_at else None,
            "completed_at": r.completed_at.isoformat() if r.completed_at else None,
        }
