import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from models.db_models import Booking, BookingActionLog, Schedule
from models.schemas import ActionErrorKind, BookingActionRequest


async def remind(container, student, schedule):
    """Create the reminder notification a push action would refer to."""
    return await container.notifications.create_notification(
        target_user_id=student.id,
        title="Trip Reminder - Route 5",
        message="Tap to confirm",
        type="transport",
        tags=["booking_reminder"],
        created_by="system_booking_reminder",
    )


def action(kind, notification, student, schedule, **extra):
    return BookingActionRequest(
        action=kind,
        notification_id=notification["id"],
        schedule_id=schedule.id,
        student_id=student.id,
        schedule_date=schedule.schedule_date,
        departure_time=schedule.departure_time,
        route_name="Route 5",
        **extra,
    )


async def seats_taken(session_factory, schedule_id):
    async with session_factory() as session:
        return await session.scalar(select(Schedule.booked_seats).where(Schedule.id == schedule_id))


async def booking_count(session_factory, schedule_id):
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(Booking).where(Booking.schedule_id == schedule_id)
        )


@pytest.mark.asyncio
async def test_confirm_books_a_seat_and_sends_confirmation(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=3, booked=1)
    student = await seed.student(route, boarding_point="Library")
    reminder = await remind(container, student, schedule)

    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.success is True
    assert response.result.booking_id
    assert response.result.seat_number == "2"
    assert await seats_taken(session_factory, schedule.id) == 2
    booking = await container.bookings.find_booking(student.id, schedule.id)
    assert booking["status"] == "confirmed"
    assert booking["payment_status"] == "paid"
    assert booking["booking_source"] == "push_notification"
    assert booking["boarding_stop"] == "Library"
    assert booking["amount"] == 40.0

    assert response.follow_up_notification["title"] == "Booking Confirmed!"
    follow_up = await container.notifications.get_notification(response.follow_up_notification["id"])
    assert follow_up["primary_action"]["type"] == "view_booking"
    assert follow_up["secondary_action"]["type"] == "track_bus"
    assert "Seat 2" in follow_up["message"]
    assert (await container.notifications.get_notification(reminder["id"]))["is_read"] is True


@pytest.mark.asyncio
async def test_last_seat_goes_to_exactly_one_student(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=1)
    asha = await seed.student(route, "Asha")
    ravi = await seed.student(route, "Ravi")
    first = await remind(container, asha, schedule)
    second = await remind(container, ravi, schedule)

    responses = await asyncio.gather(
        container.processor.process_action(action("confirm", first, asha, schedule)),
        container.processor.process_action(action("confirm", second, ravi, schedule)),
    )

    winners = [r for r in responses if r.success]
    losers = [r for r in responses if not r.success]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].result.error == ActionErrorKind.NO_SEATS_AVAILABLE
    assert winners[0].result.seat_number == "1"
    assert await seats_taken(session_factory, schedule.id) == 1
    assert await booking_count(session_factory, schedule.id) == 1


@pytest.mark.asyncio
async def test_repeated_confirm_is_already_booked(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=5)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)
    request = action("confirm", reminder, student, schedule)

    first = await container.processor.process_action(request)
    again = await container.processor.process_action(request)

    assert first.success is True
    assert again.success is False
    assert again.result.error == ActionErrorKind.ALREADY_BOOKED
    assert again.result.booking_id == first.result.booking_id
    assert await seats_taken(session_factory, schedule.id) == 1
    assert await booking_count(session_factory, schedule.id) == 1


@pytest.mark.asyncio
async def test_duplicate_delivery_racing_books_once(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=5)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)
    request = action("confirm", reminder, student, schedule)

    responses = await asyncio.gather(
        container.processor.process_action(request),
        container.processor.process_action(request),
    )

    assert sorted(r.success for r in responses) == [False, True]
    loser = next(r for r in responses if not r.success)
    assert loser.result.error == ActionErrorKind.ALREADY_BOOKED
    assert await seats_taken(session_factory, schedule.id) == 1
    assert await booking_count(session_factory, schedule.id) == 1


@pytest.mark.asyncio
async def test_full_schedule_is_rejected_with_retry_follow_up(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=2, booked=2)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)

    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.result.error == ActionErrorKind.NO_SEATS_AVAILABLE
    assert await seats_taken(session_factory, schedule.id) == 2
    follow_up = await container.notifications.get_notification(response.follow_up_notification["id"])
    assert follow_up["title"] == "Booking Not Confirmed"
    assert follow_up["primary_action"]["text"] == "Try Again"
    assert follow_up["metadata"]["errorType"] == "no_seats_available"


@pytest.mark.asyncio
async def test_payment_required_offers_pay_now(container, eligibility, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)
    eligibility.set(
        student.id, schedule.id,
        can_book=False, payment_required=True, reason="Transport fee pending",
        payment_options=[{"type": "single_trip", "amount": 40}],
    )

    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.result.error == ActionErrorKind.BOOKING_NOT_AVAILABLE
    assert response.result.payment_required is True
    assert response.result.payment_options == [{"type": "single_trip", "amount": 40}]
    assert await booking_count(session_factory, schedule.id) == 0
    follow_up = await container.notifications.get_notification(response.follow_up_notification["id"])
    assert follow_up["message"] == "Payment required to confirm booking"
    assert follow_up["primary_action"]["text"] == "Pay Now"
    assert follow_up["primary_action"]["type"] == "payment_required"


@pytest.mark.asyncio
async def test_eligibility_outage_is_not_available(container, eligibility, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)
    eligibility.down = True

    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.result.error == ActionErrorKind.BOOKING_NOT_AVAILABLE
    assert await seats_taken(session_factory, schedule.id) == 0


@pytest.mark.asyncio
async def test_unknown_schedule_is_internal_error(container, seed, trip_date):
    route = await seed.route()
    student = await seed.student(route)
    reminder = await remind(container, student, None)

    response = await container.processor.process_action(BookingActionRequest(
        action="confirm",
        notification_id=reminder["id"],
        schedule_id="no-such-schedule",
        student_id=student.id,
    ))

    assert response.result.error == ActionErrorKind.INTERNAL_ERROR


@pytest.mark.asyncio
async def test_decline_logs_and_acknowledges(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)

    response = await container.processor.process_action(action("decline", reminder, student, schedule))

    assert response.success is True
    assert response.follow_up_notification["title"] == "Got It!"
    assert await booking_count(session_factory, schedule.id) == 0
    async with session_factory() as session:
        logged = (await session.execute(select(BookingActionLog))).scalars().all()
    assert [(row.student_id, row.action, row.action_date) for row in logged] == [
        (student.id, "decline", trip_date)
    ]


@pytest.mark.asyncio
async def test_view_only_marks_read(container, eligibility, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)

    response = await container.processor.process_action(action("view", reminder, student, schedule))

    assert response.success is True
    assert response.follow_up_notification is None
    assert eligibility.calls == []
    assert (await container.notifications.get_notification(reminder["id"]))["is_read"] is True
    assert len(await container.notifications.list_notifications(student.id)) == 1


@pytest.mark.asyncio
async def test_missing_parameters_and_invalid_action(container):
    missing = await container.processor.process_action(BookingActionRequest(action="confirm", student_id="s-1"))
    assert missing.success is False
    assert missing.result.error == ActionErrorKind.MISSING_PARAMETERS
    assert "notification_id" in missing.result.message
    assert missing.follow_up_notification is None

    bogus = await container.processor.process_action(BookingActionRequest(
        action="cancel", notification_id="n-1", schedule_id="sch-1", student_id="s-1",
    ))
    assert bogus.result.error == ActionErrorKind.INVALID_ACTION


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(container, seed, trip_date):
    route = await seed.route()
    student = await seed.student(route)
    reminder = await remind(container, student, None)

    assert await container.notifications.mark_read(reminder["id"]) is True
    first = await container.notifications.get_notification(reminder["id"])
    assert await container.notifications.mark_read(reminder["id"]) is True
    second = await container.notifications.get_notification(reminder["id"])

    assert first["is_read"] is True
    assert second["read_at"] == first["read_at"]
    assert await container.notifications.mark_read("missing") is False


@pytest.mark.asyncio
async def test_concurrent_confirms_never_overbook(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=4, booked=1)
    requests = []
    for name in ("Asha", "Ravi", "Dev", "Mira", "Noor"):
        student = await seed.student(route, name)
        reminder = await remind(container, student, schedule)
        requests.append(action("confirm", reminder, student, schedule))

    responses = await asyncio.gather(*(container.processor.process_action(r) for r in requests))

    winners = [r for r in responses if r.success]
    assert len(winners) == 3
    assert sorted(r.result.seat_number for r in winners) == ["2", "3", "4"]
    assert {r.result.error for r in responses if not r.success} == {ActionErrorKind.NO_SEATS_AVAILABLE}
    assert await seats_taken(session_factory, schedule.id) == 4
    assert await booking_count(session_factory, schedule.id) == 3


@pytest.mark.asyncio
async def test_cancelled_booking_can_be_booked_again(container, session_factory, seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=5, booked=1)
    student = await seed.student(route)
    cancelled = await seed.booking(student, schedule, status="cancelled")

    batch = await container.generator.generate_reminders(trip_date)
    assert [(r.student_id, r.schedule_id) for r in batch.reminders] == [(student.id, schedule.id)]

    reminder = await remind(container, student, schedule)
    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.success is True
    assert response.result.booking_id == cancelled.id
    assert response.result.seat_number == "2"
    assert response.follow_up_notification["title"] == "Booking Confirmed!"
    assert await seats_taken(session_factory, schedule.id) == 2
    assert await booking_count(session_factory, schedule.id) == 1
    booking = await container.bookings.find_booking(student.id, schedule.id)
    assert booking["status"] == "confirmed"
    assert booking["seat_number"] == "2"

    again = await container.processor.process_action(action("confirm", reminder, student, schedule))
    assert again.result.error == ActionErrorKind.ALREADY_BOOKED
    assert await seats_taken(session_factory, schedule.id) == 2


@pytest.mark.asyncio
async def test_store_failure_is_booking_creation_failed(container, session_factory, seed, trip_date, monkeypatch):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=5)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)

    async def broken_reserve(**kwargs):
        raise OperationalError("INSERT INTO bookings", {}, Exception("lock wait timeout"))

    monkeypatch.setattr(container.bookings, "reserve_seat", broken_reserve)

    response = await container.processor.process_action(action("confirm", reminder, student, schedule))

    assert response.success is False
    assert response.result.error == ActionErrorKind.BOOKING_CREATION_FAILED
    follow_up = await container.notifications.get_notification(response.follow_up_notification["id"])
    assert follow_up["primary_action"]["text"] == "Try Again"
    assert follow_up["primary_action"]["type"] == "retry_booking"
    assert await seats_taken(session_factory, schedule.id) == 0
    assert await booking_count(session_factory, schedule.id) == 0


@pytest.mark.asyncio
async def test_decline_survives_audit_log_failure(container, session_factory, seed, trip_date, monkeypatch):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=5, booked=2)
    student = await seed.student(route)
    reminder = await remind(container, student, schedule)

    async def broken_log(**kwargs):
        raise OperationalError("INSERT INTO booking_actions_log", {}, Exception("disk full"))

    monkeypatch.setattr(container.bookings, "log_action", broken_log)

    response = await container.processor.process_action(action("decline", reminder, student, schedule))

    assert response.success is True
    assert response.result.error is None
    assert response.follow_up_notification["title"] == "Got It!"
    assert await seats_taken(session_factory, schedule.id) == 2
    assert await booking_count(session_factory, schedule.id) == 0
    async with session_factory() as session:
        assert (await session.execute(select(BookingActionLog))).scalars().all() == []
