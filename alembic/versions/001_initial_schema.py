"""
Initial schema: routes, schedules, students, bookings, notifications,
push_subscriptions, booking_actions_log, scheduler_runs.

Revision ID: 001
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "routes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("route_name", sa.String(255), nullable=False),
        sa.Column("route_number", sa.String(50), nullable=True),
        sa.Column("fare", sa.Numeric(10, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="active", index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "schedules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("route_id", sa.String(36), sa.ForeignKey("routes.id"), nullable=False, index=True),
        sa.Column("schedule_date", sa.Date(), nullable=False, index=True),
        sa.Column("departure_time", sa.String(8), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("booked_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("booking_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("admin_scheduling_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("status", sa.String(20), server_default="scheduled", index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("booked_seats >= 0", name="ck_schedules_booked_nonnegative"),
        sa.CheckConstraint("booked_seats <= available_seats", name="ck_schedules_no_overbooking"),
    )

    op.create_table(
        "students",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True, index=True),
        sa.Column("mobile", sa.String(20), nullable=True),
        sa.Column("allocated_route_id", sa.String(36), sa.ForeignKey("routes.id"), nullable=True, index=True),
        sa.Column("boarding_point", sa.String(255), nullable=True),
        sa.Column("boarding_stop", sa.String(255), nullable=True),
        sa.Column("transport_enrolled", sa.Boolean(), server_default=sa.false(), index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), sa.ForeignKey("students.id"), nullable=False, index=True),
        sa.Column("schedule_id", sa.String(36), sa.ForeignKey("schedules.id"), nullable=True, index=True),
        sa.Column("route_id", sa.String(36), sa.ForeignKey("routes.id"), nullable=True),
        sa.Column("trip_date", sa.Date(), nullable=False, index=True),
        sa.Column("boarding_stop", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="confirmed", index=True),
        sa.Column("payment_status", sa.String(20), server_default="paid"),
        sa.Column("booking_source", sa.String(50), server_default="push_notification"),
        sa.Column("seat_number", sa.String(10), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("student_id", "schedule_id", name="ux_bookings_student_schedule"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(20), server_default="info"),
        sa.Column("category", sa.String(50), server_default="booking"),
        sa.Column("target_user_id", sa.String(36), nullable=False, index=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), index=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("primary_action", sa.JSON(), nullable=True),
        sa.Column("secondary_action", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), index=True),
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False, index=True),
        sa.Column("user_type", sa.String(20), server_default="student"),
        sa.Column("endpoint", sa.String(512), nullable=False, unique=True),
        sa.Column("p256dh_key", sa.String(255), nullable=False),
        sa.Column("auth_key", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "booking_actions_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.String(36), nullable=False, index=True),
        sa.Column("schedule_id", sa.String(36), nullable=False, index=True),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("action_date", sa.Date(), nullable=True),
        sa.Column("source", sa.String(50), server_default="push_notification"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "scheduler_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("scheduler_type", sa.String(50), server_default="booking_reminders", index=True),
        sa.Column("run_date", sa.Date(), nullable=False, index=True),
        sa.Column("time_slot", sa.String(5), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), server_default="running"),
        sa.Column("dry_run", sa.Boolean(), server_default=sa.false()),
        sa.Column("result_summary", sa.JSON(), nullable=True),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )


def downgrade() -> None:
    for table in (
        "scheduler_runs",
        "booking_actions_log",
        "push_subscriptions",
        "notifications",
        "bookings",
        "students",
        "schedules",
        "routes",
    ):
        op.drop_table(table)
