"""In-app notifications to students. Delivery channels beyond the inbox are not modelled."""

from datetime import datetime

from beanie import PydanticObjectId

from registrar.core.exceptions import NotFoundError
from registrar.core.logging import get_logger
from registrar.models.document_request import DocumentRequest
from registrar.models.notification import Notification

log = get_logger(__name__)

MESSAGES = {
    "request_submitted": (
        "Request submitted",
        "Request {rn} was submitted. Please complete payment of PHP {amount} before {deadline}.",
    ),
    "payment_confirmed": (
        "Payment confirmed",
        "Payment for request {rn} was received. Your document is queued for processing.",
    ),
    "processing": ("Request in process", "Registrar staff started working on request {rn}."),
    "ready_for_pickup": (
        "Ready for pickup",
        "Your document for request {rn} is ready. Bring a valid ID to the registrar office.",
    ),
    "released": ("Document released", "The document for request {rn} has been released."),
    "payment_expired": (
        "Payment window closed",
        "Request {rn} expired because no payment was received before the deadline.",
    ),
    "cancelled": ("Request cancelled", "Request {rn} was cancelled."),
    "rejected": ("Request rejected", "Request {rn} was rejected: {reason}"),
}


async def notify(request: DocumentRequest, kind: str) -> Notification:
    title, template = MESSAGES[kind]
    message = template.format(
        rn=request.request_number,
        amount=request.amount,
        deadline=request.payment_deadline.strftime("%Y-%m-%d %H:%M UTC"),
        reason=request.rejection_reason or "",
    )
    n = Notification(
        user_id=request.student_id,
        request_number=request.request_number,
        kind=kind,
        title=title,
        message=message,
    )
    await n.insert()
    log.info("notification_sent", kind=kind, request_number=request.request_number)
    return n


async def list_notifications(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[Notification]:
    return (
        await Notification.find(Notification.user_id == user_id)
        .sort(-Notification.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def mark_read(notification_id: PydanticObjectId, user_id: PydanticObjectId) -> Notification:
    n = await Notification.find_one(Notification.id == notification_id, Notification.user_id == user_id)
    if not n:
        raise NotFoundError("Notification not found")
    if n.read_at is None:
        n.read_at = datetime.utcnow()
        await n.save()
    return n
