# api/routes_notifications.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from core.auth import verify_scheduler_key
from core.container import Container, get_container
from core.response import error, ok
from models.schemas import ActionErrorKind, BookingActionRequest, SendRemindersRequest

router = APIRouter()

# action errors that mean the request itself was malformed
CLIENT_ERRORS = (ActionErrorKind.MISSING_PARAMETERS, ActionErrorKind.INVALID_ACTION)


@router.get("/booking-reminders")
async def preview_booking_reminders(
    target_date: Optional[date] = Query(None, alias="targetDate"),
    container: Container = Depends(get_container),
):
    """
    Which students still need a reminder for targetDate (default: tomorrow).

    Response data:
    {
      "date": "2026-10-19",
      "totalSchedules": 3,
      "totalStudents": 40,
      "remindersGenerated": 12,
      "reminders": [{"studentId": ..., "scheduleId": ..., "routeName": ..., ...}]
    }
    """
    batch = await container.scheduler.preview(target_date)
    return ok(batch.model_dump(mode="json", by_alias=True))


@router.post("/booking-reminders")
async def send_booking_reminders(
    payload: SendRemindersRequest,
    x_scheduler_key: Optional[str] = Header(None),
    container: Container = Depends(get_container),
):
    """
    Generate and send reminders. testMode (or sendNotifications=false) creates the
    in-app notifications without any push delivery.
    """
    verify_scheduler_key(container.settings.SCHEDULER_SECRET_KEY, x_scheduler_key, payload.scheduler_key)
    summary = await container.scheduler.send_reminders(
        payload.target_date,
        send_push=payload.send_notifications and not payload.test_mode,
    )
    return ok(summary.model_dump(mode="json", by_alias=True))


@router.post("/booking-actions")
async def booking_action(
    payload: BookingActionRequest,
    container: Container = Depends(get_container),
):
    """
    Confirm / decline / view from an interactive push notification.

    Request JSON:
    {
      "action": "confirm",
      "notificationId": "...",
      "scheduleId": "...",
      "studentId": "...",
      "scheduleDate": "2026-10-19",
      "departureTime": "07:30",
      "routeName": "Route 5",
      "boardingStop": "Main Gate"      (optional)
    }

    Rejected bookings (no seats, already booked, payment required) are normal
    outcomes and come back with 200 and success=false in data.
    """
    response = await container.processor.process_action(payload)
    body = response.model_dump(mode="json", by_alias=True)
    if response.result.error in CLIENT_ERRORS:
        return JSONResponse(
            status_code=400,
            content=error(code=response.result.error.value, message=response.result.message, data=body),
        )
    return ok(body)


@router.get("")
async def list_notifications(
    user_id: str = Query(..., min_length=1, alias="userId"),
    unread_only: bool = Query(False, alias="unreadOnly"),
    tag: Optional[str] = Query(None),
    container: Container = Depends(get_container),
):
    return ok(await container.notifications.list_notifications(user_id, unread_only=unread_only, tag=tag))


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    container: Container = Depends(get_container),
):
    if not await container.notifications.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return ok({"id": notification_id, "is_read": True})
