from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from services.reminder_scheduler import InvalidTimeSlot, ReminderScheduler
from services.scheduler_run_store import SchedulerRunStore
from workers.reminder_worker import parse_args

IST = ZoneInfo("Asia/Kolkata")


def at(hour, minute=5):
    return datetime(2026, 10, 18, hour, minute, tzinfo=IST)


@pytest.fixture()
def make_scheduler(container, session_factory):
    def _make(now):
        return ReminderScheduler(
            container.generator,
            container.dispatcher,
            SchedulerRunStore(session_factory),
            tz_name="Asia/Kolkata",
            time_slots=["17:00", "18:00"],
            clock=lambda: now,
        )
    return _make


@pytest_asyncio.fixture()
async def riders(seed, trip_date):
    route = await seed.route()
    schedule = await seed.schedule(route, trip_date, seats=10)
    asha = await seed.student(route, "Asha")
    ravi = await seed.student(route, "Ravi")
    await seed.device(asha, "https://push.example/asha-000001")
    return schedule, asha, ravi


@pytest.mark.asyncio
async def test_first_slot_sends_reminders_for_tomorrow(make_scheduler, riders, transport, container, trip_date):
    schedule, asha, ravi = riders
    scheduler = make_scheduler(at(17))

    result = await scheduler.run_daily()

    assert result.success is True
    assert result.skipped is False
    assert result.time_slot == "17:00"
    assert result.summary.target_date == trip_date
    assert result.summary.total_reminders == 2
    # ravi has no device; the in-app notification is enough
    assert result.summary.notifications_sent == 2
    assert result.summary.notifications_failed == 0
    assert [endpoint for endpoint, _ in transport.sent] == ["https://push.example/asha-000001"]
    assert len(await container.notifications.list_notifications(ravi.id, tag="booking_reminder")) == 1


@pytest.mark.asyncio
async def test_completed_first_slot_is_skipped(make_scheduler, riders, container):
    schedule, asha, ravi = riders
    scheduler = make_scheduler(at(17, 30))

    first = await scheduler.run_daily("17:00")
    repeat = await scheduler.run_daily("17:00")

    assert repeat.skipped is True
    assert repeat.run_id == first.run_id
    assert repeat.summary is None
    assert len(await container.notifications.list_notifications(asha.id)) == 1

    forced = await scheduler.run_daily("17:00", force=True)
    assert forced.skipped is False
    assert len(await container.notifications.list_notifications(asha.id)) == 2


@pytest.mark.asyncio
async def test_last_slot_always_runs_and_skips_new_bookings(make_scheduler, riders, container, seed):
    schedule, asha, ravi = riders
    scheduler = make_scheduler(at(18))

    first = await scheduler.run_daily("18:00")
    await seed.booking(asha, schedule)
    second = await scheduler.run_daily("18:00")

    assert first.summary.total_reminders == 2
    assert second.skipped is False
    assert second.summary.total_reminders == 1
    assert [r.student_id for r in second.summary.results] == [ravi.id]


@pytest.mark.asyncio
async def test_time_slot_resolution(make_scheduler):
    assert make_scheduler(at(18, 40)).resolve_time_slot(None) == "18:00"

    with pytest.raises(InvalidTimeSlot):
        make_scheduler(at(12)).resolve_time_slot(None)
    with pytest.raises(InvalidTimeSlot):
        await make_scheduler(at(17)).run_daily("09:00")


@pytest.mark.asyncio
async def test_dry_run_records_without_pushing(make_scheduler, riders, transport, container):
    schedule, asha, ravi = riders

    result = await make_scheduler(at(17)).run_daily(dry_run=True)

    assert result.summary.test_mode is True
    assert result.summary.notifications_sent == 2
    assert transport.sent == []
    assert len(await container.notifications.list_notifications(asha.id)) == 1


@pytest.mark.asyncio
async def test_failed_push_counts_as_failed_reminder(make_scheduler, riders, transport):
    schedule, asha, ravi = riders
    transport.failing.add("https://push.example/asha-000001")

    summary = await make_scheduler(at(17)).send_reminders()

    outcome = {r.student_id: r for r in summary.results}
    assert outcome[asha.id].success is False
    assert outcome[asha.id].notification_id
    assert outcome[ravi.id].success is True
    assert (summary.notifications_sent, summary.notifications_failed) == (1, 1)


@pytest.mark.asyncio
async def test_eligibility_outage_fails_each_reminder_not_the_run(make_scheduler, riders, eligibility):
    eligibility.down = True

    result = await make_scheduler(at(17)).run_daily()

    assert result.success is True
    assert result.summary.notifications_failed == 2
    assert all("eligibility" in r.error for r in result.summary.results)


@pytest.mark.asyncio
async def test_status_reports_each_slot(make_scheduler, riders):
    scheduler = make_scheduler(at(17, 30))
    await scheduler.run_daily("17:00")

    status = await scheduler.status()

    assert status["date"] == "2026-10-18"
    first, last = status["status"]
    assert first["timeSlot"] == "17:00"
    assert first["status"] == "completed"
    assert first["notificationsSent"] == 2
    assert first["shouldRun"] is False
    assert last == {
        "timeSlot": "18:00",
        "status": "not_run",
        "startedAt": None,
        "lastRun": None,
        "notificationsSent": 0,
        "notificationsFailed": 0,
        "error": None,
        "dryRun": False,
        "shouldRun": False,
    }
    assert status["summary"] == {"totalRuns": 1, "completedRuns": 1, "totalNotificationsSent": 2}


def test_worker_arguments():
    args = parse_args(["--time-slot", "18:00", "--target-date", "2026-10-19", "--dry-run"])

    assert args.time_slot == "18:00"
    assert args.target_date == date(2026, 10, 19)
    assert args.dry_run is True
    assert args.force is False
