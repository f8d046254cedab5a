"""
Reminder runs and the daily time-slot scheduler.

- send_reminders: generate candidates for a date and dispatch one reminder each;
  per-reminder failures are counted, never raised
- run_daily: the cron entry. Slots are 17:00 (first reminder) and 18:00 (last
  chance, always forced). A slot that already completed today is skipped unless
  forced. Every run is recorded in scheduler_runs.
- status: per-slot view of today's runs

Re-running generation at 18:00 is the retry path for reminders: students who
booked in between are no longer candidates.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from models.schemas import (
    ReminderBatch,
    ReminderMessage,
    ReminderOutcome,
    ReminderRunSummary,
    SchedulerRunResult,
)
from services.notification_dispatcher import DispatchError, NotificationDispatcher
from services.reminder_generator import ReminderGenerator, tomorrow
from services.scheduler_run_store import SchedulerRunStore

logger = logging.getLogger(__name__)


class InvalidTimeSlot(ValueError):
    pass


class ReminderScheduler:
    def __init__(
        self,
        generator: ReminderGenerator,
        dispatcher: NotificationDispatcher,
        runs: SchedulerRunStore,
        tz_name: str = "Asia/Kolkata",
        time_slots: Sequence[str] = ("17:00", "18:00"),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.generator = generator
        self.dispatcher = dispatcher
        self.runs = runs
        self.tz_name = tz_name
        self.time_slots = list(time_slots)
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(ZoneInfo(self.tz_name))

    def default_target_date(self) -> date:
        return tomorrow(self.tz_name, self.now())

    async def preview(self, target_date: Optional[date] = None) -> ReminderBatch:
        return await self.generator.generate_reminders(target_date or self.default_target_date())

    async def send_reminders(
        self,
        target_date: Optional[date] = None,
        send_push: bool = True,
        time_slot: Optional[str] = None,
    ) -> ReminderRunSummary:
        target_date = target_date or self.default_target_date()
        logger.info("Starting booking reminder run for %s (slot=%s, push=%s)", target_date, time_slot, send_push)

        batch = await self.generator.generate_reminders(target_date)
        summary = ReminderRunSummary(
            target_date=target_date,
            time_slot=time_slot,
            total_reminders=len(batch.reminders),
            test_mode=not send_push,
        )
        for candidate in batch.reminders:
            outcome = ReminderOutcome(student_id=candidate.student_id, schedule_id=candidate.schedule_id, success=False)
            try:
                dispatched = await self.dispatcher.dispatch(
                    ReminderMessage.from_candidate(candidate, time_slot),
                    send_push=send_push,
                )
            except DispatchError as e:
                outcome.error = str(e)
            else:
                outcome.notification_id = dispatched.notification["id"]
                outcome.push_sent = dispatched.delivered
                # no devices is fine; every device failing is not
                outcome.success = (not send_push) or dispatched.subscriptions == 0 or dispatched.delivered
                if not outcome.success:
                    outcome.error = f"{dispatched.failed + dispatched.expired} push deliveries failed"
            if outcome.success:
                summary.notifications_sent += 1
            else:
                summary.notifications_failed += 1
            summary.results.append(outcome)

        logger.info(
            "Booking reminder run for %s done: total=%d sent=%d failed=%d",
            target_date, summary.total_reminders, summary.notifications_sent, summary.notifications_failed,
        )
        return summary

    def resolve_time_slot(self, time_slot: Optional[str]) -> str:
        if time_slot is None:
            hour = self.now().hour
            time_slot = next((s for s in self.time_slots if int(s.split(":")[0]) == hour), None)
            if time_slot is None:
                raise InvalidTimeSlot(
                    f"scheduler only runs at {', '.join(self.time_slots)}; current hour is {hour}"
                )
        if time_slot not in self.time_slots:
            raise InvalidTimeSlot(f"Invalid time slot. Supported: {', '.join(self.time_slots)}")
        return time_slot

    async def run_daily(
        self,
        time_slot: Optional[str] = None,
        target_date: Optional[date] = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> SchedulerRunResult:
        slot = self.resolve_time_slot(time_slot)
        # the last slot of the day is the final chance and always runs
        force = force or slot == self.time_slots[-1]
        today = self.now().date()
        target_date = target_date or self.default_target_date()

        if not force:
            last = await self.runs.last_completed(today, slot)
            if last:
                logger.info("Scheduler already ran today at %s (completed %s)", slot, last["completed_at"])
                return SchedulerRunResult(
                    success=True,
                    skipped=True,
                    time_slot=slot,
                    run_id=last["id"],
                    message=f"Scheduler already ran today at {slot}",
                )

        run_id = None
        try:
            run_id = await self.runs.start_run(today, slot, target_date, dry_run)
        except SQLAlchemyError as e:
            logger.error("Error logging scheduler run start: %s", e)

        summary = None
        error = None
        try:
            summary = await self.send_reminders(target_date, send_push=not dry_run, time_slot=slot)
        except Exception as e:
            logger.exception("Booking reminder scheduler failed for %s at %s", target_date, slot)
            error = str(e)

        if run_id is not None:
            try:
                await self.runs.finish_run(
                    run_id,
                    success=error is None,
                    summary=self._summary_json(summary) if summary else None,
                    error=error,
                )
            except SQLAlchemyError as e:
                logger.error("Error recording scheduler run %s result: %s", run_id, e)

        return SchedulerRunResult(
            success=error is None,
            time_slot=slot,
            run_id=run_id,
            message=f"Daily scheduler executed for {slot}",
            summary=summary,
            error=error,
        )

    async def status(self, day: Optional[date] = None) -> Dict[str, Any]:
        now = self.now()
        day = day or now.date()
        runs = await self.runs.runs_for_date(day)

        slots = []
        for slot in self.time_slots:
            latest = next((r for r in runs if r["time_slot"] == slot), None)
            result = (latest or {}).get("result_summary") or {}
            completed = any(r["time_slot"] == slot and r["status"] == "completed" for r in runs)
            slots.append({
                "timeSlot": slot,
                "status": latest["status"] if latest else "not_run",
                "startedAt": latest["started_at"] if latest else None,
                "lastRun": latest["completed_at"] if latest else None,
                "notificationsSent": result.get("notificationsSent", 0),
                "notificationsFailed": result.get("notificationsFailed", 0),
                "error": latest["error_details"] if latest else None,
                "dryRun": latest["dry_run"] if latest else False,
                "shouldRun": day == now.date() and now.hour >= int(slot.split(":")[0]) and not completed,
            })

        return {
            "date": day.isoformat(),
            "status": slots,
            "summary": {
                "totalRuns": len(runs),
                "completedRuns": sum(1 for r in runs if r["status"] == "completed"),
                "totalNotificationsSent": sum(
                    (r["result_summary"] or {}).get("notificationsSent", 0) for r in runs
                ),
            },
        }

    @staticmethod
    def _summary_json(summary: ReminderRunSummary) -> Dict[str, Any]:
        return summary.model_dump(mode="json", by_alias=True, exclude={"results"})
