"""
Read-only queries over routes, schedules and students.

The reminder pipeline never writes these tables; schedule seat counters are
mutated only by BookingStore.reserve_seat.
"""
from datetime import date
from typing import Any, Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.db_models import Schedule, Student


class TransportDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_open_schedules(self, target_date: date) -> List[Dict[str, Any]]:
        """Schedules on target_date that are scheduled, booking-enabled and released by admin."""
        stmt = (
            select(Schedule)
            .where(Schedule.schedule_date == target_date)
            .where(Schedule.status == "scheduled")
            .where(Schedule.booking_enabled == True)  # noqa: E712
            .where(Schedule.admin_scheduling_enabled == True)  # noqa: E712
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._schedule_to_dict(s) for s in result.unique().scalars().all()]

    async def get_schedule(self, schedule_id: str) -> Dict[str, Any] | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Schedule).where(Schedule.id == schedule_id))
            schedule = result.unique().scalar_one_or_none()
            return self._schedule_to_dict(schedule) if schedule else None

    async def list_enrolled_students(self, route_ids: Iterable[str]) -> List[Dict[str, Any]]:
        route_ids = list(set(route_ids))
        if not route_ids:
            return []
        stmt = (
            select(Student)
            .where(Student.transport_enrolled == True)  # noqa: E712
            .where(Student.allocated_route_id.in_(route_ids))
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._student_to_dict(s) for s in result.scalars().all()]

    async def get_student(self, student_id: str) -> Dict[str, Any] | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Student).where(Student.id == student_id))
            student = result.scalar_one_or_none()
            return self._student_to_dict(student) if student else None

    @staticmethod
    def _schedule_to_dict(s: Schedule) -> Dict[str, Any]:
        route = s.route
        return {
            "id": s.id,
            "route_id": s.route_id,
            "route_name": route.route_name if route else None,
            "route_status": route.status if route else None,
            "fare": float(route.fare or 0) if route else 0.0,
            "schedule_date": s.schedule_date,
            "departure_time": s.departure_time,
            "available_seats": s.available_seats,
            "booked_seats": s.booked_seats or 0,
            "booking_enabled": s.booking_enabled,
            "admin_scheduling_enabled": s.admin_scheduling_enabled,
            "status": s.status,
        }

    @staticmethod
    def _student_to_dict(s: Student) -> Dict[str, Any]:
        return {
            "id": s.id,
            "student_name": s.student_name,
            "email": s.email,
            "mobile": s.mobile,
            "allocated_route_id": s.allocated_route_id,
            "boarding_point": s.boarding_point,
            "boarding_stop": s.boarding_stop,
            "transport_enrolled": s.transport_enrolled,
        }
