"""
Booking persistence and the seat reservation critical section.

Key methods:
- list_bookings_for_date(trip_date, statuses): membership data for the reminder diff
- find_booking(student_id, schedule_id): the student's active (confirmed/pending) booking
- reserve_seat(...): create a booking AND increment schedules.booked_seats as one transaction
- log_action(...): append to booking_actions_log

Seat reservation is a conditional UPDATE
    UPDATE schedules SET booked_seats = booked_seats + 1
    WHERE id = :id AND booked_seats < available_seats
followed by the booking write in the same transaction. The UPDATE takes the row
lock first, so concurrent confirmations for the last seat serialize on it and the
losers see rowcount 0. The booking write re-activates a cancelled row for the same
(student_id, schedule_id) if there is one and INSERTs otherwise, so the pair keeps a
single row. The UNIQUE (student_id, schedule_id) index rejects a second active
booking and rolls the increment back with it.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.db_models import Booking, BookingActionLog, Schedule
from models.schemas import SeatReservation

logger = logging.getLogger(__name__)

# bookings that hold a seat; cancelled rows do not
ACTIVE_BOOKING_STATUSES = ("confirmed", "pending")


class _NoSeatLeft(Exception):
    """Raised inside the reservation transaction to force a rollback."""


class BookingStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_bookings_for_date(
        self,
        trip_date: date,
        statuses: Iterable[str] = ACTIVE_BOOKING_STATUSES,
    ) -> List[Dict[str, Any]]:
        stmt = (
            select(Booking)
            .where(Booking.trip_date == trip_date)
            .where(Booking.status.in_(list(statuses)))
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_dict(b) for b in result.scalars().all()]

    async def find_booking(
        self,
        student_id: str,
        schedule_id: str,
        statuses: Iterable[str] = ACTIVE_BOOKING_STATUSES,
    ) -> Dict[str, Any] | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking)
                .where(Booking.student_id == student_id)
                .where(Booking.schedule_id == schedule_id)
                .where(Booking.status.in_(list(statuses)))
            )
            booking = result.scalar_one_or_none()
            return self._to_dict(booking) if booking else None

    async def reserve_seat(
        self,
        student_id: str,
        schedule_id: str,
        route_id: Optional[str],
        trip_date: date,
        boarding_stop: str,
        amount: float = 0.0,
        payment_status: str = "paid",
        source: str = "push_notification",
    ) -> SeatReservation:
        """
        Atomically take one seat on schedule_id for student_id.

        Returns a SeatReservation with status reserved, no_seats, already_booked or
        schedule_not_found. Any other database failure propagates as SQLAlchemyError.
        """
        fields = dict(
            route_id=route_id,
            trip_date=trip_date,
            boarding_stop=boarding_stop,
            amount=amount,
            status="confirmed",
            payment_status=payment_status,
            booking_source=source,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Schedule)
                        .where(Schedule.id == schedule_id)
                        .where(Schedule.booked_seats < Schedule.available_seats)
                        .values(booked_seats=Schedule.booked_seats + 1, updated_at=datetime.utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise _NoSeatLeft()

                    seat = str(await session.scalar(
                        select(Schedule.booked_seats).where(Schedule.id == schedule_id)
                    ))
                    revived = await session.execute(
                        update(Booking)
                        .where(Booking.student_id == student_id)
                        .where(Booking.schedule_id == schedule_id)
                        .where(Booking.status == "cancelled")
                        .values(seat_number=seat, updated_at=datetime.utcnow(), **fields)
                        .execution_options(synchronize_session=False)
                    )
                    if revived.rowcount == 1:
                        booking = await session.scalar(
                            select(Booking)
                            .where(Booking.student_id == student_id)
                            .where(Booking.schedule_id == schedule_id)
                        )
                    else:
                        booking = Booking(student_id=student_id, schedule_id=schedule_id, seat_number=seat, **fields)
                        session.add(booking)
                        await session.flush()
                    reserved = self._to_dict(booking)
        except _NoSeatLeft:
            return await self._explain_rejection(student_id, schedule_id)
        except IntegrityError:
            existing = await self.find_booking(student_id, schedule_id)
            if existing:
                logger.info("Duplicate confirm for student=%s schedule=%s", student_id, schedule_id)
                return SeatReservation(status="already_booked", booking=existing)
            raise

        logger.info(
            "Seat %s reserved on schedule %s for student %s (booking %s%s)",
            seat, schedule_id, student_id, reserved["id"], ", re-activated" if revived.rowcount == 1 else "",
        )
        return SeatReservation(status="reserved", booking=reserved)

    async def _explain_rejection(self, student_id: str, schedule_id: str) -> SeatReservation:
        existing = await self.find_booking(student_id, schedule_id)
        if existing:
            return SeatReservation(status="already_booked", booking=existing)
        async with self.session_factory() as session:
            found = await session.scalar(select(Schedule.id).where(Schedule.id == schedule_id))
        if found is None:
            return SeatReservation(status="schedule_not_found")
        logger.info("No seats left on schedule %s for student %s", schedule_id, student_id)
        return SeatReservation(status="no_seats")

    async def log_action(
        self,
        student_id: str,
        schedule_id: str,
        action: str,
        action_date: Optional[date] = None,
        source: str = "push_notification",
    ) -> None:
        async with self.session_factory() as session:
            session.add(BookingActionLog(
                student_id=student_id,
                schedule_id=schedule_id,
                action=action,
                action_date=action_date,
                source=source,
            ))
            await session.commit()

    @staticmethod
    def _to_dict(b: Booking) -> Dict[str, Any]:
        return {
            "id": b.id,
            "student_id": b.student_id,
            "schedule_id": b.schedule_id,
            "route_id": b.route_id,
            "trip_date": b.trip_date.isoformat() if b.trip_date else None,
            "boarding_stop": b.boarding_stop,
            "amount": float(b.amount or 0),
            "status": b.status,
            "payment_status": b.payment_status,
            "booking_source": b.booking_source,
            "seat_number": b.seat_number,
            "created_at": b.created_at.isoformat() if b.created_at else None,
            "updated_at": b.updated_at.isoformat() if b.updated_at else None,
        }
