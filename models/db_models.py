"""
SQLAlchemy ORM models.

Purpose:
- Define Route, Schedule, Student, Booking, Notification, PushSubscription,
  BookingActionLog and SchedulerRun tables
- Use SQLAlchemy async-compatible models
- Support migrations via Alembic

Integrity rules enforced by the database, not by application code:
- schedules.booked_seats never exceeds schedules.available_seats (CHECK)
- one booking per (student_id, schedule_id) (UNIQUE)
- one push subscription row per endpoint (UNIQUE)
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Route(Base):
    """
    Represents a bus route.

    Columns:
    - route_name/route_number: display identifiers
    - fare: per-trip amount copied onto bookings
    - status: active, inactive
    """
    __tablename__ = "routes"

    id = Column(String(36), primary_key=True, default=_uuid)
    route_name = Column(String(255), nullable=False)
    route_number = Column(String(50), nullable=True)
    fare = Column(Numeric(10, 2), default=0)
    status = Column(String(20), default="active", index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Schedule(Base):
    """
    A dated, timed instance of a route with seat capacity.

    Columns:
    - available_seats: capacity
    - booked_seats: current count, only ever incremented by the seat reservation
    - booking_enabled / admin_scheduling_enabled: both must be true to remind
    - status: scheduled, cancelled, completed
    """
    __tablename__ = "schedules"

    id = Column(String(36), primary_key=True, default=_uuid)
    route_id = Column(String(36), ForeignKey("routes.id"), nullable=False, index=True)
    schedule_date = Column(Date, nullable=False, index=True)
    departure_time = Column(String(8), nullable=False)  # "07:30"
    available_seats = Column(Integer, nullable=False, default=0)
    booked_seats = Column(Integer, nullable=False, default=0)
    booking_enabled = Column(Boolean, default=True)
    admin_scheduling_enabled = Column(Boolean, default=True)
    status = Column(String(20), default="scheduled", index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("booked_seats >= 0", name="ck_schedules_booked_nonnegative"),
        CheckConstraint("booked_seats <= available_seats", name="ck_schedules_no_overbooking"),
    )

    route = relationship("Route", lazy="joined")


class Student(Base):
    """
    A transport passenger. Read-only for the reminder pipeline.
    """
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=_uuid)
    student_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    mobile = Column(String(20), nullable=True)
    allocated_route_id = Column(String(36), ForeignKey("routes.id"), nullable=True, index=True)
    boarding_point = Column(String(255), nullable=True)
    boarding_stop = Column(String(255), nullable=True)
    transport_enrolled = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Booking(Base):
    """
    A seat on a schedule. schedule_id is nullable only for legacy rows.
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=True, index=True)
    route_id = Column(String(36), ForeignKey("routes.id"), nullable=True)
    trip_date = Column(Date, nullable=False, index=True)
    boarding_stop = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), default=0)
    status = Column(String(20), default="confirmed", index=True)  # confirmed, pending, cancelled
    payment_status = Column(String(20), default="paid")
    booking_source = Column(String(50), default="push_notification")
    seat_number = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "schedule_id", name="ux_bookings_student_schedule"),
    )


class Notification(Base):
    """
    An in-app notification targeted at a single user.

    Columns:
    - primary_action/secondary_action: {text, url, type}
    - tags: e.g. ["booking_reminder", "transport", "2026-10-19"]
    - metadata_json: schedule/route/eligibility snapshot
    - created_by: pipeline stage that produced it
    """
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), default="info")  # transport, success, warning, info
    category = Column(String(50), default="booking")
    target_user_id = Column(String(36), index=True, nullable=False)
    is_read = Column(Boolean, default=False, index=True)
    read_at = Column(DateTime, nullable=True)
    primary_action = Column(JSON, nullable=True)
    secondary_action = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class PushSubscription(Base):
    """
    A registered web-push endpoint for a user's device.
    """
    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), index=True, nullable=False)
    user_type = Column(String(20), default="student")
    endpoint = Column(String(512), nullable=False, unique=True)
    p256dh_key = Column(String(255), nullable=False)
    auth_key = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BookingActionLog(Base):
    """
    Audit trail of declines (and other non-booking responses) from push actions.
    """
    __tablename__ = "booking_actions_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(36), index=True, nullable=False)
    schedule_id = Column(String(36), index=True, nullable=False)
    action = Column(String(20), nullable=False)
    action_date = Column(Date, nullable=True)
    source = Column(String(50), default="push_notification")
    created_at = Column(DateTime, default=datetime.utcnow)


class SchedulerRun(Base):
    """
    One execution of the daily reminder scheduler for a time slot.
    """
    __tablename__ = "scheduler_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheduler_type = Column(String(50), default="booking_reminders", index=True)
    run_date = Column(Date, nullable=False, index=True)
    time_slot = Column(String(5), nullable=False)
    target_date = Column(Date, nullable=True)
    status = Column(String(20), default="running")  # running, completed, failed
    dry_run = Column(Boolean, default=False)
    result_summary = Column(JSON, nullable=True)
    error_details = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
