"""
Booking action processing for interactive push notifications.

Per action:  RECEIVED -> VALIDATING -> SEAT_RESERVED | REJECTED -> OUTCOME_NOTIFIED -> DONE

- view:    marks the notification read, nothing else
- confirm: fresh eligibility check, duplicate check, capacity check, then the
           atomic seat reservation in BookingStore; a confirmed/failed follow-up
           notification is dispatched either way
- decline: best-effort audit row, then a declined follow-up; never un-books

Push actions are delivered at least once, so a repeated confirm must come back as
already_booked without touching seats.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from models.schemas import (
    ActionErrorKind,
    ActionResult,
    BookingActionRequest,
    BookingActionResponse,
    ConfirmedMessage,
    DeclinedMessage,
    FailedMessage,
)
from services.booking_store import BookingStore
from services.eligibility_client import EligibilityClient, EligibilityError
from services.notification_dispatcher import DispatchError, NotificationDispatcher
from services.notification_store import NotificationStore
from services.transport_directory import TransportDirectory

logger = logging.getLogger(__name__)

ACTIONS = ("confirm", "decline", "view")
REQUIRED_FIELDS = ("action", "notification_id", "schedule_id", "student_id")


class ActionState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    SEAT_RESERVED = "seat_reserved"
    REJECTED = "rejected"
    OUTCOME_NOTIFIED = "outcome_notified"
    DONE = "done"


def _failure(
    kind: ActionErrorKind,
    message: str,
    action: str = "confirm",
    payment_required: bool = False,
    payment_options: Optional[List[Any]] = None,
    booking: Optional[Dict[str, Any]] = None,
) -> ActionResult:
    return ActionResult(
        success=False,
        action=action,
        error=kind,
        message=message,
        payment_required=payment_required,
        payment_options=payment_options or [],
        booking_id=booking["id"] if booking else None,
        seat_number=booking["seat_number"] if booking else None,
    )


class BookingActionProcessor:
    def __init__(
        self,
        notifications: NotificationStore,
        directory: TransportDirectory,
        bookings: BookingStore,
        eligibility: EligibilityClient,
        dispatcher: NotificationDispatcher,
        default_boarding_stop: str = "Default Stop",
    ):
        self.notifications = notifications
        self.directory = directory
        self.bookings = bookings
        self.eligibility = eligibility
        self.dispatcher = dispatcher
        self.default_boarding_stop = default_boarding_stop

    async def process_action(self, request: BookingActionRequest) -> BookingActionResponse:
        missing = [name for name in REQUIRED_FIELDS if not getattr(request, name)]
        if missing:
            return self._respond(_failure(
                ActionErrorKind.MISSING_PARAMETERS,
                f"Missing required parameters: {', '.join(missing)}",
                action=request.action,
            ))
        if request.action not in ACTIONS:
            return self._respond(_failure(
                ActionErrorKind.INVALID_ACTION,
                f"Invalid action '{request.action}'",
                action=request.action,
            ))

        logger.info(
            "Processing %s action: student=%s schedule=%s notification=%s",
            request.action, request.student_id, request.schedule_id, request.notification_id,
        )
        self._transition(request, ActionState.RECEIVED)
        await self._mark_read(request.notification_id)

        try:
            self._transition(request, ActionState.VALIDATING)
            if request.action == "view":
                self._transition(request, ActionState.DONE)
                return self._respond(ActionResult(success=True, action="view", message="Redirecting to schedule details"))
            if request.action == "confirm":
                result, outcome = await self._confirm(request)
            else:
                result, outcome = await self._decline(request)
        except Exception as e:
            logger.exception("Unexpected error processing %s action for %s", request.action, request.student_id)
            return self._respond(_failure(ActionErrorKind.INTERNAL_ERROR, str(e), action=request.action))

        follow_up = await self._notify_outcome(outcome)
        self._transition(request, ActionState.OUTCOME_NOTIFIED)
        self._transition(request, ActionState.DONE)
        return self._respond(result, follow_up)

    # --- branches ---

    async def _confirm(self, request: BookingActionRequest):
        schedule = None
        try:
            try:
                eligibility = await self.eligibility.check(request.student_id, request.schedule_id)
            except EligibilityError:
                return self._reject(request, None, _failure(
                    ActionErrorKind.BOOKING_NOT_AVAILABLE,
                    "We could not verify your booking eligibility right now. Please try again.",
                ))
            if not eligibility.can_book:
                return self._reject(request, None, _failure(
                    ActionErrorKind.BOOKING_NOT_AVAILABLE,
                    eligibility.reason or "Booking is not available for this trip.",
                    payment_required=eligibility.payment_required,
                    payment_options=eligibility.payment_options,
                ))

            existing = await self.bookings.find_booking(request.student_id, request.schedule_id)
            if existing:
                return self._reject(request, None, _failure(
                    ActionErrorKind.ALREADY_BOOKED,
                    "You already have a booking for this trip.",
                    booking=existing,
                ))

            student, schedule = await asyncio.gather(
                self.directory.get_student(request.student_id),
                self.directory.get_schedule(request.schedule_id),
            )
            if not student or not schedule:
                return self._reject(request, schedule, _failure(
                    ActionErrorKind.INTERNAL_ERROR,
                    "Failed to fetch student or schedule details",
                ))

            if schedule["booked_seats"] >= schedule["available_seats"]:
                return self._reject(request, schedule, _failure(
                    ActionErrorKind.NO_SEATS_AVAILABLE,
                    "Sorry, no seats are available for this trip.",
                ))

            boarding_stop = (
                request.boarding_stop
                or student["boarding_point"]
                or student["boarding_stop"]
                or self.default_boarding_stop
            )
            try:
                reservation = await self.bookings.reserve_seat(
                    student_id=request.student_id,
                    schedule_id=request.schedule_id,
                    route_id=schedule["route_id"],
                    trip_date=schedule["schedule_date"],
                    boarding_stop=boarding_stop,
                    amount=schedule["fare"],
                )
            except SQLAlchemyError as e:
                logger.error("Booking creation failed for %s on %s: %s", request.student_id, request.schedule_id, e)
                return self._reject(request, schedule, _failure(
                    ActionErrorKind.BOOKING_CREATION_FAILED,
                    "Failed to create booking. Please try again.",
                ))
        except Exception as e:
            logger.exception("Error in booking confirmation for %s", request.student_id)
            return self._reject(request, schedule, _failure(
                ActionErrorKind.INTERNAL_ERROR,
                f"An error occurred while confirming your booking: {e}",
            ))

        if reservation.status == "no_seats":
            return self._reject(request, schedule, _failure(
                ActionErrorKind.NO_SEATS_AVAILABLE,
                "Sorry, no seats are available for this trip.",
            ))
        if reservation.status == "already_booked":
            return self._reject(request, schedule, _failure(
                ActionErrorKind.ALREADY_BOOKED,
                "You already have a booking for this trip.",
                booking=reservation.booking,
            ))
        if reservation.status == "schedule_not_found":
            return self._reject(request, schedule, _failure(
                ActionErrorKind.INTERNAL_ERROR,
                "Failed to fetch student or schedule details",
            ))

        self._transition(request, ActionState.SEAT_RESERVED)
        booking = reservation.booking
        result = ActionResult(
            success=True,
            action="confirm",
            message="Booking confirmed successfully!",
            booking_id=booking["id"],
            seat_number=booking["seat_number"],
        )
        outcome = ConfirmedMessage(
            **self._trip(request, schedule, boarding_stop=booking["boarding_stop"]),
            booking_id=booking["id"],
            seat_number=booking["seat_number"],
        )
        return result, outcome

    async def _decline(self, request: BookingActionRequest):
        try:
            await self.bookings.log_action(
                student_id=request.student_id,
                schedule_id=request.schedule_id,
                action="decline",
                action_date=request.schedule_date,
            )
        except Exception as e:
            logger.warning("Error logging decline action for %s: %s", request.student_id, e)

        result = ActionResult(success=True, action="decline", message="Got it! You won't be traveling on this trip.")
        return result, DeclinedMessage(**self._trip(request))

    def _reject(self, request: BookingActionRequest, schedule: Optional[Dict[str, Any]], result: ActionResult):
        self._transition(request, ActionState.REJECTED, result.error.value)
        outcome = FailedMessage(
            **self._trip(request, schedule),
            error=result.error,
            reason=result.message,
            payment_required=result.payment_required,
            payment_options=result.payment_options,
        )
        return result, outcome

    # --- helpers ---

    def _trip(
        self,
        request: BookingActionRequest,
        schedule: Optional[Dict[str, Any]] = None,
        boarding_stop: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Trip context for the follow-up; stored schedule data wins over the client's copy."""
        schedule = schedule or {}
        return dict(
            student_id=request.student_id,
            schedule_id=request.schedule_id,
            schedule_date=schedule.get("schedule_date") or request.schedule_date,
            departure_time=schedule.get("departure_time") or request.departure_time,
            route_name=schedule.get("route_name") or request.route_name,
            boarding_stop=boarding_stop or request.boarding_stop,
        )

    async def _mark_read(self, notification_id: str) -> None:
        try:
            found = await self.notifications.mark_read(notification_id)
            if not found:
                logger.warning("Notification %s not found while marking read", notification_id)
        except SQLAlchemyError as e:
            logger.warning("Could not mark notification %s read: %s", notification_id, e)

    async def _notify_outcome(self, outcome) -> Optional[Dict[str, Any]]:
        """Follow-ups are best-effort: a failure here never changes the action result."""
        try:
            dispatched = await self.dispatcher.dispatch(outcome)
        except DispatchError as e:
            logger.error("Follow-up %s notification for %s failed: %s", outcome.kind, outcome.student_id, e)
            return None
        n = dispatched.notification
        return {"id": n["id"], "title": n["title"], "message": n["message"], "delivered": dispatched.delivered}

    @staticmethod
    def _transition(request: BookingActionRequest, state: ActionState, detail: str = "") -> None:
        logger.debug(
            "action=%s student=%s schedule=%s -> %s %s",
            request.action, request.student_id, request.schedule_id, state.value, detail,
        )

    @staticmethod
    def _respond(result: ActionResult, follow_up: Optional[Dict[str, Any]] = None) -> BookingActionResponse:
        return BookingActionResponse(
            success=result.success,
            action=result.action,
            result=result,
            follow_up_notification=follow_up,
        )
