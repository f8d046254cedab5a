"""
Reminder generation.

Computes the (student, schedule) pairs for a target date that still need a
booking reminder:

1. open schedules on the date (scheduled, booking enabled, released by admin)
2. keep those on active routes with free capacity
3. transport-enrolled students allocated to those routes
4. drop pairs that already have a confirmed/pending booking

A student whose route has several schedules that day gets one candidate per
unbooked schedule. Output order carries no meaning.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Optional, Set, Tuple
from zoneinfo import ZoneInfo

from models.schemas import ReminderBatch, ReminderCandidate
from services.booking_store import ACTIVE_BOOKING_STATUSES, BookingStore
from services.transport_directory import TransportDirectory

logger = logging.getLogger(__name__)


def tomorrow(tz_name: str, now: Optional[datetime] = None) -> date:
    """Tomorrow's calendar date in the given timezone."""
    now = now or datetime.now(ZoneInfo(tz_name))
    if now.tzinfo is not None:
        now = now.astimezone(ZoneInfo(tz_name))
    return now.date() + timedelta(days=1)


class ReminderGenerator:
    def __init__(
        self,
        directory: TransportDirectory,
        bookings: BookingStore,
        default_boarding_stop: str = "Default Stop",
        legacy_route_match: bool = True,
    ):
        self.directory = directory
        self.bookings = bookings
        self.default_boarding_stop = default_boarding_stop
        self.legacy_route_match = legacy_route_match

    async def generate_reminders(self, target_date: date) -> ReminderBatch:
        schedules = await self.directory.list_open_schedules(target_date)
        available = [
            s for s in schedules
            if s["route_status"] == "active" and s["available_seats"] > s["booked_seats"]
        ]
        logger.info(
            "Reminders for %s: %d open schedules, %d with free seats",
            target_date, len(schedules), len(available),
        )
        if not available:
            return ReminderBatch(target_date=target_date)

        students = await self.directory.list_enrolled_students(s["route_id"] for s in available)
        if not students:
            return ReminderBatch(target_date=target_date, total_schedules=len(available))

        booked = await self._booked_keys(target_date)

        reminders = []
        for student in students:
            for schedule in available:
                if schedule["route_id"] != student["allocated_route_id"]:
                    continue
                if (student["id"], schedule["id"]) in booked:
                    continue
                if self.legacy_route_match and (student["id"], "route:" + schedule["route_id"]) in booked:
                    continue
                reminders.append(ReminderCandidate(
                    student_id=student["id"],
                    schedule_id=schedule["id"],
                    route_id=schedule["route_id"],
                    route_name=schedule["route_name"] or "Unknown Route",
                    schedule_date=schedule["schedule_date"],
                    departure_time=schedule["departure_time"],
                    boarding_stop=(
                        student["boarding_point"]
                        or student["boarding_stop"]
                        or self.default_boarding_stop
                    ),
                ))

        logger.info("Generated %d booking reminders for %s", len(reminders), target_date)
        return ReminderBatch(
            target_date=target_date,
            total_schedules=len(available),
            total_students=len(students),
            reminders_generated=len(reminders),
            reminders=reminders,
        )

    async def _booked_keys(self, target_date: date) -> Set[Tuple[str, str]]:
        """
        (student_id, schedule_id) for every active booking; legacy rows without a
        schedule_id contribute (student_id, "route:<route_id>") instead.
        """
        keys: Set[Tuple[str, str]] = set()
        for b in await self.bookings.list_bookings_for_date(target_date, ACTIVE_BOOKING_STATUSES):
            if b["schedule_id"]:
                keys.add((b["student_id"], b["schedule_id"]))
            elif b["route_id"]:
                keys.add((b["student_id"], "route:" + b["route_id"]))
        return keys
