# core/container.py
"""
Explicit wiring of the reminder pipeline.

Every component receives its collaborators through its constructor; this is the
one place that reads settings and builds the real implementations. Tests build
their own Container with fakes for eligibility and push transport.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request

from config.settings import Settings
from services.booking_action_processor import BookingActionProcessor
from services.booking_store import BookingStore
from services.eligibility_client import EligibilityClient
from services.notification_dispatcher import NotificationDispatcher
from services.notification_store import NotificationStore
from services.push_transport import PushTransport, build_push_transport
from services.reminder_generator import ReminderGenerator
from services.reminder_scheduler import ReminderScheduler
from services.scheduler_run_store import SchedulerRunStore
from services.subscription_registry import SubscriptionRegistry
from services.transport_directory import TransportDirectory

PUSH_ATTEMPT_GRACE_SEC = 2.0


@dataclass
class Container:
    settings: Settings
    subscriptions: SubscriptionRegistry
    notifications: NotificationStore
    bookings: BookingStore
    directory: TransportDirectory
    eligibility: EligibilityClient
    dispatcher: NotificationDispatcher
    generator: ReminderGenerator
    processor: BookingActionProcessor
    scheduler: ReminderScheduler


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    eligibility: Optional[EligibilityClient] = None,
    transport: Optional[PushTransport] = None,
    use_default_transport: bool = True,
) -> Container:
    subscriptions = SubscriptionRegistry(session_factory)
    notifications = NotificationStore(session_factory)
    bookings = BookingStore(session_factory)
    directory = TransportDirectory(session_factory)
    eligibility = eligibility or EligibilityClient(
        settings.ELIGIBILITY_SERVICE_URL, timeout=settings.ELIGIBILITY_TIMEOUT_SEC
    )
    if transport is None and use_default_transport:
        transport = build_push_transport(settings)

    dispatcher = NotificationDispatcher(
        notifications,
        subscriptions,
        eligibility,
        transport,
        concurrency=settings.PUSH_CONCURRENCY,
        # the webpush HTTP timeout bounds the worker thread; the attempt timeout
        # sits just above it so a slot is only freed once that thread is done
        attempt_timeout=settings.PUSH_TIMEOUT_SEC + PUSH_ATTEMPT_GRACE_SEC,
    )
    generator = ReminderGenerator(
        directory,
        bookings,
        default_boarding_stop=settings.DEFAULT_BOARDING_STOP,
        legacy_route_match=settings.REMINDER_LEGACY_ROUTE_MATCH,
    )
    processor = BookingActionProcessor(
        notifications,
        directory,
        bookings,
        eligibility,
        dispatcher,
        default_boarding_stop=settings.DEFAULT_BOARDING_STOP,
    )
    scheduler = ReminderScheduler(
        generator,
        dispatcher,
        SchedulerRunStore(session_factory),
        tz_name=settings.TIMEZONE,
        time_slots=settings.SCHEDULER_TIME_SLOTS,
    )
    return Container(
        settings=settings,
        subscriptions=subscriptions,
        notifications=notifications,
        bookings=bookings,
        directory=directory,
        eligibility=eligibility,
        dispatcher=dispatcher,
        generator=generator,
        processor=processor,
        scheduler=scheduler,
    )


def get_container(request: Request) -> Container:
    """FastAPI dependency: the container attached to the running app."""
    return request.app.state.container
