from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase keys sent by the web client."""
    model_config = ConfigDict(populate_by_name=True)


# --- reminder generation ---

class ReminderCandidate(CamelModel):
    student_id: str = Field(..., alias="studentId")
    schedule_id: str = Field(..., alias="scheduleId")
    route_id: Optional[str] = Field(None, alias="routeId")
    route_name: str = Field(..., alias="routeName")
    schedule_date: date = Field(..., alias="scheduleDate")
    departure_time: str = Field(..., alias="departureTime")
    boarding_stop: str = Field(..., alias="boardingStop")


class ReminderBatch(CamelModel):
    target_date: date = Field(..., alias="date")
    total_schedules: int = Field(0, alias="totalSchedules")
    total_students: int = Field(0, alias="totalStudents")
    reminders_generated: int = Field(0, alias="remindersGenerated")
    reminders: List[ReminderCandidate] = []


# --- eligibility collaborator ---

class EligibilityResult(BaseModel):
    can_book: bool = False
    reason: Optional[str] = None
    payment_required: bool = False
    payment_options: List[Any] = []


# --- notifications ---

class NotificationAction(BaseModel):
    text: str
    url: str
    type: str


class PushAction(BaseModel):
    action: str
    title: str
    icon: Optional[str] = None


class PushPayload(BaseModel):
    title: str
    body: str
    icon: str
    badge: str
    tag: str
    requireInteraction: bool = False
    actions: List[PushAction] = []
    data: Dict[str, Any] = {}


class TripContext(CamelModel):
    """Trip details carried by every dispatch message."""
    student_id: str = Field(..., alias="studentId")
    schedule_id: str = Field(..., alias="scheduleId")
    schedule_date: Optional[date] = Field(None, alias="scheduleDate")
    departure_time: Optional[str] = Field(None, alias="departureTime")
    route_name: Optional[str] = Field(None, alias="routeName")
    boarding_stop: Optional[str] = Field(None, alias="boardingStop")


class ReminderMessage(TripContext):
    kind: Literal["reminder"] = "reminder"
    time_slot: Optional[str] = Field(None, alias="timeSlot")

    @classmethod
    def from_candidate(cls, candidate: ReminderCandidate, time_slot: Optional[str] = None) -> "ReminderMessage":
        return cls(
            student_id=candidate.student_id,
            schedule_id=candidate.schedule_id,
            schedule_date=candidate.schedule_date,
            departure_time=candidate.departure_time,
            route_name=candidate.route_name,
            boarding_stop=candidate.boarding_stop,
            time_slot=time_slot,
        )


class ConfirmedMessage(TripContext):
    kind: Literal["confirmed"] = "confirmed"
    booking_id: str = Field(..., alias="bookingId")
    seat_number: Optional[str] = Field(None, alias="seatNumber")


class ActionErrorKind(str, Enum):
    MISSING_PARAMETERS = "missing_parameters"
    INVALID_ACTION = "invalid_action"
    BOOKING_NOT_AVAILABLE = "booking_not_available"
    NO_SEATS_AVAILABLE = "no_seats_available"
    ALREADY_BOOKED = "already_booked"
    BOOKING_CREATION_FAILED = "booking_creation_failed"
    INTERNAL_ERROR = "internal_error"


class FailedMessage(TripContext):
    kind: Literal["failed"] = "failed"
    error: ActionErrorKind
    reason: Optional[str] = None
    payment_required: bool = Field(False, alias="paymentRequired")
    payment_options: List[Any] = Field([], alias="paymentOptions")


class DeclinedMessage(TripContext):
    kind: Literal["declined"] = "declined"


DispatchMessage = Annotated[
    Union[ReminderMessage, ConfirmedMessage, FailedMessage, DeclinedMessage],
    Field(discriminator="kind"),
]


class DispatchResult(BaseModel):
    notification: Dict[str, Any]
    delivered: bool = False
    subscriptions: int = 0
    sent: int = 0
    failed: int = 0
    expired: int = 0


# --- booking actions ---

class BookingActionRequest(CamelModel):
    # Everything optional so missing fields become a structured missing_parameters result
    action: Optional[str] = None
    notification_id: Optional[str] = Field(None, alias="notificationId")
    schedule_id: Optional[str] = Field(None, alias="scheduleId")
    student_id: Optional[str] = Field(None, alias="studentId")
    schedule_date: Optional[date] = Field(None, alias="scheduleDate")
    departure_time: Optional[str] = Field(None, alias="departureTime")
    route_name: Optional[str] = Field(None, alias="routeName")
    boarding_stop: Optional[str] = Field(None, alias="boardingStop")


class ActionResult(CamelModel):
    success: bool
    action: Optional[str] = None
    message: Optional[str] = None
    booking_id: Optional[str] = Field(None, alias="bookingId")
    seat_number: Optional[str] = Field(None, alias="seatNumber")
    error: Optional[ActionErrorKind] = None
    payment_required: bool = Field(False, alias="paymentRequired")
    payment_options: List[Any] = Field([], alias="paymentOptions")


class BookingActionResponse(CamelModel):
    success: bool
    action: Optional[str] = None
    result: ActionResult
    follow_up_notification: Optional[Dict[str, Any]] = Field(None, alias="followUpNotification")


class SeatReservation(BaseModel):
    status: Literal["reserved", "no_seats", "already_booked", "schedule_not_found"]
    booking: Optional[Dict[str, Any]] = None


# --- scheduler ---

class ReminderOutcome(CamelModel):
    student_id: str = Field(..., alias="studentId")
    schedule_id: str = Field(..., alias="scheduleId")
    notification_id: Optional[str] = Field(None, alias="notificationId")
    success: bool
    push_sent: bool = Field(False, alias="pushSent")
    error: Optional[str] = None


class ReminderRunSummary(CamelModel):
    target_date: date = Field(..., alias="date")
    time_slot: Optional[str] = Field(None, alias="timeSlot")
    total_reminders: int = Field(0, alias="totalReminders")
    notifications_sent: int = Field(0, alias="notificationsSent")
    notifications_failed: int = Field(0, alias="notificationsFailed")
    test_mode: bool = Field(False, alias="testMode")
    results: List[ReminderOutcome] = []


class SchedulerRunResult(CamelModel):
    success: bool
    skipped: bool = False
    time_slot: str = Field(..., alias="timeSlot")
    message: str
    run_id: Optional[int] = Field(None, alias="runId")
    summary: Optional[ReminderRunSummary] = None
    error: Optional[str] = None


# --- API request bodies ---

class SendRemindersRequest(CamelModel):
    target_date: Optional[date] = Field(None, alias="targetDate")
    send_notifications: bool = Field(True, alias="sendNotifications")
    test_mode: bool = Field(False, alias="testMode")
    scheduler_key: Optional[str] = Field(None, alias="schedulerKey")


class DailySchedulerRequest(CamelModel):
    scheduler_key: Optional[str] = Field(None, alias="schedulerKey")
    target_date: Optional[date] = Field(None, alias="targetDate")
    time_slot: Optional[str] = Field(None, alias="timeSlot")
    dry_run: bool = Field(False, alias="dryRun")
    force: bool = False


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class RegisterSubscriptionRequest(CamelModel):
    user_id: str = Field(..., min_length=1, alias="userId")
    user_type: str = Field("student", alias="userType")
    endpoint: str = Field(..., min_length=1)
    keys: PushKeys
