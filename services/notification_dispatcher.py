# services/notification_dispatcher.py
"""
Notification dispatch: one in-app notification record plus a push fan-out to
every active subscription of the target user.

- reminder messages re-check eligibility to pick the copy and primary action
  (confirm vs pay-and-book) and snapshot the answer into metadata
- confirmed/failed/declined messages already carry their outcome
- the record is persisted before any push is attempted and stays regardless of
  the push result
- pushes run concurrently behind a semaphore with a per-attempt timeout; a 404/410
  deactivates that subscription, other failures are only counted
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from models.schemas import (
    ActionErrorKind,
    ConfirmedMessage,
    DeclinedMessage,
    DispatchMessage,
    DispatchResult,
    EligibilityResult,
    FailedMessage,
    NotificationAction,
    PushAction,
    PushPayload,
    ReminderMessage,
)
from services.eligibility_client import EligibilityClient, EligibilityError
from services.notification_store import NotificationStore
from services.push_transport import PushDeliveryError, PushGoneError, PushTransport
from services.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

BADGE = "/icons/badge.png"
ICONS = {
    "transport": "/icons/bus-notification.png",
    "success": "/icons/success-notification.png",
    "warning": "/icons/warning-notification.png",
    "error": "/icons/error-notification.png",
    "info": "/icons/info-notification.png",
}

# reminder copy per scheduler time slot; None is a manual/unslotted run
SLOT_TITLES = {
    None: "Trip Reminder",
    "17:00": "Trip Reminder",
    "18:00": "Last Chance - Confirm Your Trip",
}


class DispatchError(Exception):
    """The notification could not be created (eligibility or store failure)."""


def format_trip_date(d: Optional[date]) -> str:
    if d is None:
        return "your trip date"
    return f"{d:%A}, {d.day} {d:%B %Y}"


def _schedules_url(schedule_date: Optional[date], schedule_id: str) -> str:
    if schedule_date is None:
        return f"/dashboard/schedules?schedule={schedule_id}"
    return f"/dashboard/schedules?date={schedule_date.isoformat()}&schedule={schedule_id}"


class NotificationDispatcher:
    def __init__(
        self,
        notifications: NotificationStore,
        subscriptions: SubscriptionRegistry,
        eligibility: EligibilityClient,
        transport: Optional[PushTransport],
        concurrency: int = 5,
        attempt_timeout: float = 10.0,
    ):
        self.notifications = notifications
        self.subscriptions = subscriptions
        self.eligibility = eligibility
        self.transport = transport
        self.concurrency = max(1, concurrency)
        self.attempt_timeout = attempt_timeout

    async def dispatch(self, message: DispatchMessage, send_push: bool = True) -> DispatchResult:
        """
        Persist the notification for message and push it to the user's devices.

        Raises DispatchError when eligibility (reminders only) or the notification
        store fails; push failures never raise.
        """
        eligibility = None
        if isinstance(message, ReminderMessage):
            try:
                eligibility = await self.eligibility.check(message.student_id, message.schedule_id)
            except EligibilityError as e:
                raise DispatchError(f"eligibility lookup failed: {e}") from e

        record, push = self._compose(message, eligibility)
        try:
            notification = await self.notifications.create_notification(target_user_id=message.student_id, **record)
        except SQLAlchemyError as e:
            logger.error("Failed to create %s notification for %s: %s", message.kind, message.student_id, e)
            raise DispatchError("failed to create notification record") from e

        result = DispatchResult(notification=notification)
        if not send_push:
            return result

        payload = push(notification["id"])
        subs, sent, failed, expired = await self._fan_out(message.student_id, payload)
        result.subscriptions = subs
        result.sent = sent
        result.failed = failed
        result.expired = expired
        result.delivered = sent > 0
        logger.info(
            "Dispatched %s notification %s to %s: subscriptions=%d sent=%d failed=%d expired=%d",
            message.kind, notification["id"], message.student_id, subs, sent, failed, expired,
        )
        return result

    # --- composition ---

    def _compose(self, message: DispatchMessage, eligibility: Optional[EligibilityResult]):
        if isinstance(message, ReminderMessage):
            return self._compose_reminder(message, eligibility or EligibilityResult())
        if isinstance(message, ConfirmedMessage):
            return self._compose_confirmed(message)
        if isinstance(message, FailedMessage):
            return self._compose_failed(message)
        if isinstance(message, DeclinedMessage):
            return self._compose_declined(message)
        raise TypeError(f"unknown dispatch message kind: {getattr(message, 'kind', message)!r}")

    def _trip_metadata(self, message) -> Dict[str, Any]:
        return {
            "kind": message.kind,
            "scheduleId": message.schedule_id,
            "scheduleDate": message.schedule_date.isoformat() if message.schedule_date else None,
            "departureTime": message.departure_time,
            "routeName": message.route_name,
            "boardingStop": message.boarding_stop,
        }

    def _tags(self, first: str, message) -> List[str]:
        tags = [first, "transport"]
        if message.schedule_date:
            tags.append(message.schedule_date.isoformat())
        return tags

    def _compose_reminder(self, m: ReminderMessage, eligibility: EligibilityResult):
        route = m.route_name or "your route"
        when = f"{format_trip_date(m.schedule_date)} at {m.departure_time}"
        title = f"{SLOT_TITLES.get(m.time_slot, SLOT_TITLES[None])} - {route}"
        if eligibility.can_book:
            text = f"Your trip is on {when}. Tap to confirm your booking!"
            body = f"Your trip is at {m.departure_time}. Tap to confirm!"
            primary = NotificationAction(text="Confirm Booking", url=_schedules_url(m.schedule_date, m.schedule_id), type="booking_reminder")
        else:
            text = f"Your trip is on {when}. Payment required to book."
            body = f"Your trip is at {m.departure_time}. Payment required."
            primary = NotificationAction(text="Pay & Book", url=f"/dashboard/payments?schedule={m.schedule_id}", type="payment_required")
        secondary = NotificationAction(
            text="View Details",
            url=f"/dashboard/schedules?date={m.schedule_date.isoformat()}" if m.schedule_date else "/dashboard/schedules",
            type="view_schedule",
        )
        metadata = {
            **self._trip_metadata(m),
            "timeSlot": m.time_slot,
            "canBook": eligibility.can_book,
            "paymentRequired": eligibility.payment_required,
            "eligibility": eligibility.model_dump(),
        }
        record = dict(
            title=title,
            message=text,
            type="transport",
            primary_action=primary.model_dump(),
            secondary_action=secondary.model_dump(),
            tags=self._tags("booking_reminder", m),
            metadata=metadata,
            created_by="system_booking_reminder",
        )

        def push(notification_id: str) -> PushPayload:
            return PushPayload(
                title=title,
                body=body,
                icon=ICONS["transport"],
                badge=BADGE,
                tag=f"booking-reminder-{notification_id}",
                requireInteraction=True,
                actions=[
                    PushAction(action="confirm", title=primary.text, icon="/icons/confirm.png"),
                    PushAction(action="view", title="View Details", icon="/icons/view.png"),
                    PushAction(action="dismiss", title="Not Traveling", icon="/icons/dismiss.png"),
                ],
                data={
                    "type": "booking_reminder",
                    "notificationId": notification_id,
                    "studentId": m.student_id,
                    **{k: v for k, v in metadata.items() if k not in ("eligibility", "kind")},
                    "url": primary.url,
                },
            )

        return record, push

    def _compose_confirmed(self, m: ConfirmedMessage):
        primary = NotificationAction(text="View Booking", url=f"/dashboard/bookings?booking={m.booking_id}", type="view_booking")
        secondary = NotificationAction(text="Track Bus", url=f"/dashboard/live-tracking?schedule={m.schedule_id}", type="track_bus")
        seat = f" Seat {m.seat_number}." if m.seat_number else ""
        record = dict(
            title="Booking Confirmed!",
            message=(
                f"Your trip on {m.route_name or 'your route'} ({format_trip_date(m.schedule_date)}) "
                f"at {m.departure_time or 'the scheduled time'} is confirmed.{seat} Have a safe journey!"
            ),
            type="success",
            primary_action=primary.model_dump(),
            secondary_action=secondary.model_dump(),
            tags=self._tags("booking_confirmed", m),
            metadata={**self._trip_metadata(m), "bookingId": m.booking_id, "seatNumber": m.seat_number, "confirmationType": "push_notification"},
            created_by="system_booking_confirmation",
        )
        return record, self._follow_up_push(record, primary)

    def _compose_failed(self, m: FailedMessage):
        message = m.reason or "Unable to confirm booking"
        if m.payment_required:
            message = "Payment required to confirm booking"
            primary = NotificationAction(text="Pay Now", url=f"/dashboard/payments?schedule={m.schedule_id}", type="payment_required")
        elif m.error == ActionErrorKind.ALREADY_BOOKED:
            primary = NotificationAction(text="View Booking", url=f"/dashboard/bookings?schedule={m.schedule_id}", type="view_booking")
        else:
            primary = NotificationAction(text="Try Again", url=_schedules_url(m.schedule_date, m.schedule_id), type="retry_booking")
        record = dict(
            title="Booking Not Confirmed",
            message=message,
            type="warning",
            primary_action=primary.model_dump(),
            tags=self._tags("booking_failed", m),
            metadata={
                **self._trip_metadata(m),
                "errorType": m.error.value,
                "paymentRequired": m.payment_required,
                "paymentOptions": m.payment_options,
            },
            created_by="system_booking_error",
        )
        return record, self._follow_up_push(record, primary)

    def _compose_declined(self, m: DeclinedMessage):
        primary = NotificationAction(text="Change Mind?", url=_schedules_url(m.schedule_date, m.schedule_id), type="change_mind")
        record = dict(
            title="Got It!",
            message=(
                f"We've noted that you won't be traveling on {m.route_name or 'your route'} "
                f"({format_trip_date(m.schedule_date)}) at {m.departure_time or 'the scheduled time'}. "
                "Thanks for letting us know!"
            ),
            type="info",
            primary_action=primary.model_dump(),
            tags=self._tags("booking_declined", m),
            metadata={**self._trip_metadata(m), "declineType": "push_notification"},
            created_by="system_booking_decline",
        )
        return record, self._follow_up_push(record, primary)

    @staticmethod
    def _follow_up_push(record: Dict[str, Any], primary: NotificationAction):
        def push(notification_id: str) -> PushPayload:
            return PushPayload(
                title=record["title"],
                body=record["message"],
                icon=ICONS.get(record["type"], ICONS["info"]),
                badge=BADGE,
                tag=f"booking-followup-{notification_id}",
                actions=[PushAction(action="view", title=primary.text)],
                data={"type": "booking_followup", "notificationId": notification_id, "url": primary.url},
            )
        return push

    # --- fan-out ---

    async def _fan_out(self, user_id: str, payload: PushPayload) -> Tuple[int, int, int, int]:
        try:
            subs = await self.subscriptions.list_active_subscriptions(user_id)
        except SQLAlchemyError as e:
            logger.error("Could not load push subscriptions for %s: %s", user_id, e)
            return 0, 0, 0, 0
        if not subs:
            logger.info("No active push subscriptions for %s", user_id)
            return 0, 0, 0, 0
        if self.transport is None:
            logger.warning("Push transport not configured; %d subscriptions of %s skipped", len(subs), user_id)
            return len(subs), 0, 0, 0

        body = payload.model_dump_json(exclude_none=True)
        gate = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(*(self._attempt(gate, sub, body) for sub in subs))
        return (
            len(subs),
            outcomes.count("sent"),
            outcomes.count("failed"),
            outcomes.count("expired"),
        )

    async def _attempt(self, gate: asyncio.Semaphore, sub: Dict[str, Any], body: str) -> str:
        async with gate:
            try:
                await asyncio.wait_for(self.transport.send(sub, body), timeout=self.attempt_timeout)
                return "sent"
            except PushGoneError as e:
                logger.info("Push endpoint gone (%s) for subscription %s; deactivating", e.status_code, sub["id"])
                await self._deactivate(sub["id"])
                return "expired"
            except asyncio.TimeoutError:
                logger.warning("Push to subscription %s timed out after %.1fs", sub["id"], self.attempt_timeout)
                return "failed"
            except PushDeliveryError as e:
                logger.warning("Push to subscription %s failed: %s", sub["id"], e)
                return "failed"
            except Exception:
                logger.exception("Unexpected push failure for subscription %s", sub["id"])
                return "failed"

    async def _deactivate(self, subscription_id: str) -> None:
        try:
            await self.subscriptions.deactivate_subscription(subscription_id)
        except Exception as e:
            logger.error("Could not deactivate subscription %s: %s", subscription_id, e)
