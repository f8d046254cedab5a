import asyncio
import json
import sys
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# Ensure project root is on sys.path so `services.*` / `core.*` imports work
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


# Explicitly enable pytest-asyncio plugin for async tests/fixtures
pytest_plugins = ("pytest_asyncio",)


from config.settings import Settings
from core.container import build_container
from core.db import create_all, create_engine_for, create_session_factory
from models.db_models import Booking, PushSubscription, Route, Schedule, Student
from models.schemas import EligibilityResult
from services.eligibility_client import EligibilityError
from services.push_transport import PushDeliveryError, PushGoneError


SCHEDULER_KEY = "test-scheduler-key"


class FakeEligibility:
    """In-memory eligibility collaborator; everyone can book unless overridden."""

    def __init__(self):
        self.default = EligibilityResult(can_book=True)
        self.overrides = {}
        self.down = False
        self.calls = []

    def set(self, student_id, schedule_id, **fields):
        self.overrides[(student_id, schedule_id)] = EligibilityResult(**fields)

    async def check(self, student_id, schedule_id):
        self.calls.append((student_id, schedule_id))
        if self.down:
            raise EligibilityError("eligibility service unavailable")
        return self.overrides.get((student_id, schedule_id), self.default)


class FakeTransport:
    """Records pushes; endpoints in `gone` answer 410, endpoints in `failing` answer 500."""

    def __init__(self, delay=0.0):
        self.sent = []
        self.gone = set()
        self.failing = set()
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, subscription, payload):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            endpoint = subscription["endpoint"]
            if endpoint in self.gone:
                raise PushGoneError("push subscription has unsubscribed or expired", status_code=410)
            if endpoint in self.failing:
                raise PushDeliveryError("push service error", status_code=500)
            self.sent.append((endpoint, json.loads(payload)))
        finally:
            self.in_flight -= 1


class Seeder:
    """Writes fixture rows for routes, schedules, students, bookings and devices."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def route(self, name="Route 5", status="active", fare=40):
        return await self._add(Route(route_name=name, route_number=name.split()[-1], status=status, fare=fare))

    async def schedule(self, route, trip_date, departure_time="07:30", seats=40, booked=0, **fields):
        return await self._add(Schedule(
            route_id=route.id,
            schedule_date=trip_date,
            departure_time=departure_time,
            available_seats=seats,
            booked_seats=booked,
            **fields,
        ))

    async def student(self, route, name="Asha", enrolled=True, boarding_point="Main Gate", boarding_stop=None):
        return await self._add(Student(
            student_name=name,
            allocated_route_id=route.id if route else None,
            transport_enrolled=enrolled,
            boarding_point=boarding_point,
            boarding_stop=boarding_stop,
        ))

    async def booking(self, student, schedule=None, route=None, trip_date=None, status="confirmed"):
        return await self._add(Booking(
            student_id=student.id,
            schedule_id=schedule.id if schedule else None,
            route_id=route.id if route else (schedule.route_id if schedule else None),
            trip_date=trip_date or schedule.schedule_date,
            status=status,
        ))

    async def device(self, student, endpoint):
        return await self._add(PushSubscription(
            user_id=student.id,
            endpoint=endpoint,
            p256dh_key="p256dh-" + endpoint[-6:],
            auth_key="auth-" + endpoint[-6:],
        ))


@pytest.fixture()
def trip_date():
    return date(2026, 10, 19)


@pytest_asyncio.fixture()
async def engine(tmp_path):
    eng = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture()
def eligibility():
    return FakeEligibility()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        VAPID_PUBLIC_KEY="test-public-key",
        VAPID_PRIVATE_KEY="test-private-key",
        SCHEDULER_SECRET_KEY=SCHEDULER_KEY,
        TIMEZONE="Asia/Kolkata",
    )


@pytest.fixture()
def container(settings, session_factory, eligibility, transport):
    return build_container(settings, session_factory, eligibility=eligibility, transport=transport)


@pytest_asyncio.fixture()
async def client(container):
    """Async test client bound to an app that uses the test container."""
    from main import create_app

    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
