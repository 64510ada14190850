"""WhatsApp notification routes: direct sends, batch delivery and logs."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from smartprep.config import get_settings
from smartprep.deps import get_dispatcher
from smartprep.models import NotificationStatus, NotificationType
from smartprep.schemas import NotificationOut, SendMessageIn, pagination
from smartprep.services.notifications import NotificationDispatcher

router = APIRouter()


@router.post("/send")
def send_message(payload: SendMessageIn, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    notification, message_id = dispatcher.send_direct(payload.student_id, payload.message, payload.type)
    return {
        "message": "WhatsApp message sent successfully",
        "message_id": message_id,
        "notification": NotificationOut.model_validate(notification),
    }


@router.post("/test-result/{attempt_id}")
def send_test_result(attempt_id: int, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    message_id = dispatcher.send_test_result(attempt_id)
    return {"message": "Test result notification sent successfully", "message_id": message_id}


@router.post("/process-pending")
def process_pending(
    batch_size: Optional[int] = Query(None, ge=1, le=500),
    include_failed: bool = Query(False),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    summary = dispatcher.process_pending(
        batch_size=batch_size or get_settings().notification_batch_size,
        include_failed=include_failed,
    )
    return {"message": "Pending notifications processed", **summary.model_dump()}


@router.get("/logs")
def notification_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[NotificationStatus] = Query(None),
    type: Optional[NotificationType] = Query(None),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    rows, total = dispatcher.list_logs(page=page, limit=limit, status=status, type=type)
    return {
        "notifications": [NotificationOut.model_validate(n) for n in rows],
        "pagination": pagination(page, limit, total),
    }
