"""
Document request lifecycle: pricing, submission and status transitions.

Every status change is a compare-and-set on the request document filtered by
the status the caller read, so two writers racing on one request cannot both
win; the loser re-reads and gets InvalidStateTransition.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import In, Set
from pymongo.errors import DuplicateKeyError

from registrar.core.audit import log_event
from registrar.core.config import get_settings
from registrar.core.exceptions import (
    AppError,
    BadRequestError,
    ConflictError,
    DuplicatePayment,
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    TooManyRequestsError,
)
from registrar.core.logging import get_logger
from registrar.models.document_request import (
    SETTLED_STATUSES,
    STUDENT_CANCELLABLE,
    DocumentRequest,
    DocumentRequestStatus,
    DocumentType,
    ProcessingType,
)
from registrar.models.payment import Payment, PaymentStatus
from registrar.models.user import User, UserRole
from registrar.services import notifications

log = get_logger(__name__)

OTHER_PURPOSE = "Other (please specify)"
PURPOSES = (
    "Scholarship",
    "Provincial scholarship",
    "Municipal scholarship",
    "Educational assistance",
    "Financial assistance",
    "Employment",
    "Transfer to another school",
    OTHER_PURPOSE,
)
MAX_CUSTOM_PURPOSE_LENGTH = 500
REQUEST_NUMBER_ATTEMPTS = 10
MAX_BULK_ITEMS = 100


def unit_price(processing_type: ProcessingType | str) -> int:
    settings = get_settings()
    if ProcessingType(processing_type) == ProcessingType.RUSH:
        return settings.rush_unit_price
    return settings.regular_unit_price


def compute_amount(processing_type: ProcessingType | str, quantity: int) -> int:
    return unit_price(processing_type) * quantity


def turnaround_days(processing_type: ProcessingType | str) -> int:
    settings = get_settings()
    if ProcessingType(processing_type) == ProcessingType.RUSH:
        return settings.rush_turnaround_days
    return settings.regular_turnaround_days


def pricing() -> dict[str, Any]:
    settings = get_settings()
    return {
        "processing_types": [
            {
                "value": pt.value,
                "unit_price": unit_price(pt),
                "turnaround_days": turnaround_days(pt),
            }
            for pt in ProcessingType
        ],
        "document_types": [{"value": dt.value, "label": dt.label} for dt in DocumentType],
        "purposes": list(PURPOSES),
        "max_quantity": settings.max_document_quantity,
        "payment_deadline_hours": settings.payment_deadline_hours,
        "daily_limit": settings.document_request_daily_limit,
    }


def generate_request_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"REQ-{now:%Y%m%d}-{secrets.randbelow(9999) + 1:04d}"


def normalize_purpose(purpose: str, custom_purpose: str | None = None) -> str:
    purpose = (purpose or "").strip()
    if purpose not in PURPOSES:
        raise BadRequestError("Invalid purpose selected.", details={"purposes": list(PURPOSES)})
    if purpose != OTHER_PURPOSE:
        return purpose
    custom = (custom_purpose or "").strip()
    if not custom:
        raise BadRequestError("Please specify your custom purpose.")
    if len(custom) > MAX_CUSTOM_PURPOSE_LENGTH:
        raise BadRequestError(f"Custom purpose cannot exceed {MAX_CUSTOM_PURPOSE_LENGTH} characters.")
    return f"Other: {custom}"


def _validate_quantity(quantity: int) -> None:
    max_quantity = get_settings().max_document_quantity
    if quantity < 1:
        raise BadRequestError("Quantity must be at least 1.")
    if quantity > max_quantity:
        raise BadRequestError(f"Quantity cannot exceed {max_quantity}.")


def _coerce_types(document_type: Any, processing_type: Any) -> tuple[DocumentType, ProcessingType]:
    try:
        return DocumentType(document_type), ProcessingType(processing_type)
    except ValueError as e:
        raise BadRequestError(str(e)) from e


async def count_today(student_id: PydanticObjectId, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return await DocumentRequest.find(
        DocumentRequest.student_id == student_id,
        DocumentRequest.created_at >= start,
    ).count()


async def create_request(
    student: User,
    document_type: DocumentType | str,
    processing_type: ProcessingType | str,
    quantity: int,
    purpose: str,
    custom_purpose: str | None = None,
    now: datetime | None = None,
) -> DocumentRequest:
    """Submit a request in pending_payment; amount comes from configured prices only."""
    if student.role != UserRole.STUDENT:
        raise ForbiddenError("Only students can submit document requests")
    document_type, processing_type = _coerce_types(document_type, processing_type)
    _validate_quantity(quantity)
    purpose = normalize_purpose(purpose, custom_purpose)
    settings = get_settings()
    now = now or datetime.utcnow()
    limit = settings.document_request_daily_limit
    if await count_today(student.id, now) >= limit:
        raise TooManyRequestsError(
            f"Daily document request limit has been reached. You have submitted {limit} requests today.",
            details={"daily_limit": limit},
        )
    price = unit_price(processing_type)
    for _ in range(REQUEST_NUMBER_ATTEMPTS):
        request = DocumentRequest(
            request_number=generate_request_number(now),
            student_id=student.id,
            student_number=student.student_number,
            document_type=document_type,
            processing_type=processing_type,
            quantity=quantity,
            purpose=purpose,
            unit_price=price,
            amount=price * quantity,
            payment_deadline=now + timedelta(hours=settings.payment_deadline_hours),
            created_at=now,
            updated_at=now,
        )
        try:
            await request.insert()
            break
        except DuplicateKeyError:
            continue
    else:
        raise ConflictError("Could not allocate a request number, please retry")
    log.info(
        "document_request_created",
        request_number=request.request_number,
        document_type=document_type.value,
        processing_type=processing_type.value,
        quantity=quantity,
        amount=request.amount,
    )
    await log_event(
        str(student.id),
        "document_request_created",
        "document_request",
        request.request_number,
        {"document_type": document_type.value, "quantity": quantity, "amount": request.amount},
    )
    await notifications.notify(request, "request_submitted")
    return request


async def update_request(
    request: DocumentRequest,
    student: User,
    document_type: DocumentType | str,
    processing_type: ProcessingType | str,
    quantity: int,
    purpose: str,
    custom_purpose: str | None = None,
) -> DocumentRequest:
    """Edit a request still awaiting payment; the amount is recomputed."""
    if request.student_id != student.id:
        raise ForbiddenError("Not your request")
    document_type, processing_type = _coerce_types(document_type, processing_type)
    _validate_quantity(quantity)
    purpose = normalize_purpose(purpose, custom_purpose)
    open_payment = await Payment.find_one(
        Payment.request_id == request.id,
        Payment.status == PaymentStatus.PENDING,
    )
    if open_payment:
        raise ConflictError("Cannot edit a request with a payment in progress")
    price = unit_price(processing_type)
    updated = await DocumentRequest.find_one(
        DocumentRequest.id == request.id,
        DocumentRequest.status == DocumentRequestStatus.PENDING_PAYMENT,
    ).update(
        Set({
            "document_type": document_type,
            "processing_type": processing_type,
            "quantity": quantity,
            "purpose": purpose,
            "unit_price": price,
            "amount": price * quantity,
            "updated_at": datetime.utcnow(),
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        raise ConflictError("Cannot update request that is already being processed.")
    log.info("document_request_updated", request_number=updated.request_number, amount=updated.amount)
    return updated


async def get_by_number(request_number: str) -> DocumentRequest:
    request = await DocumentRequest.find_one(DocumentRequest.request_number == request_number)
    if not request:
        raise NotFoundError("Document request not found")
    return request


async def get_for_user(request_number: str, user: User) -> DocumentRequest:
    """Students see their own requests; registrar staff and cashiers see all."""
    request = await get_by_number(request_number)
    if user.role == UserRole.STUDENT and request.student_id != user.id:
        raise NotFoundError("Document request not found")
    return request


async def list_for_student(student_id: PydanticObjectId, limit: int, offset: int) -> list[DocumentRequest]:
    return (
        await DocumentRequest.find(DocumentRequest.student_id == student_id)
        .sort(-DocumentRequest.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def list_requests(
    status: DocumentRequestStatus | None,
    limit: int,
    offset: int,
) -> tuple[list[DocumentRequest], int]:
    query = DocumentRequest.find(DocumentRequest.status == status) if status else DocumentRequest.find_all()
    total = await query.count()
    items = await query.sort(-DocumentRequest.created_at).skip(offset).limit(limit).to_list()
    return items, total


async def transition(
    request: DocumentRequest,
    target: DocumentRequestStatus,
    fields: dict[str, Any] | None = None,
) -> DocumentRequest:
    """Apply one legal status change atomically; returns the stored document."""
    current = request.status
    if not current.can_transition_to(target):
        raise InvalidStateTransition(current.value, target.value)
    update = {"status": target, "updated_at": datetime.utcnow(), **(fields or {})}
    updated = await DocumentRequest.find_one(
        DocumentRequest.id == request.id,
        DocumentRequest.status == current,
    ).update(Set(update), response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        fresh = await DocumentRequest.get(request.id)
        seen = fresh.status.value if fresh else current.value
        log.info("transition_lost_race", request_number=request.request_number, seen=seen, target=target.value)
        raise InvalidStateTransition(seen, target.value)
    log.info(
        "document_request_transition",
        request_number=updated.request_number,
        from_status=current.value,
        to_status=target.value,
    )
    return updated


async def claim_for_payment(
    request: DocumentRequest,
    payment: Payment,
    allowed_from: list[DocumentRequestStatus],
) -> DocumentRequest:
    """
    Move the request to paid on behalf of one payment. At most one payment can
    ever win: the filter requires paid_payment_id to be unset. A retry by the
    payment that already won returns the request unchanged.
    """
    updated = await DocumentRequest.find_one(
        DocumentRequest.id == request.id,
        In(DocumentRequest.status, allowed_from),
        DocumentRequest.paid_payment_id == None,  # noqa: E711
    ).update(
        Set({
            "status": DocumentRequestStatus.PAID,
            "paid_payment_id": payment.id,
            "payment_method": payment.payment_method.value,
            "updated_at": datetime.utcnow(),
        }),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is not None:
        log.info(
            "document_request_transition",
            request_number=updated.request_number,
            from_status=request.status.value,
            to_status=DocumentRequestStatus.PAID.value,
            payment_id=str(payment.id),
        )
        return updated
    fresh = await DocumentRequest.get(request.id)
    if fresh is None:
        raise NotFoundError("Document request not found")
    if fresh.paid_payment_id == payment.id:
        return fresh
    if fresh.paid_payment_id is not None or fresh.status in SETTLED_STATUSES:
        raise DuplicatePayment(fresh.request_number, str(payment.id))
    raise InvalidStateTransition(fresh.status.value, DocumentRequestStatus.PAID.value)


async def mark_processing(request: DocumentRequest, staff: User) -> DocumentRequest:
    updated = await transition(request, DocumentRequestStatus.PROCESSING, {"processed_by": str(staff.id)})
    await _after_admin_transition(updated, staff, request.status, "processing")
    return updated


async def mark_ready(request: DocumentRequest, staff: User) -> DocumentRequest:
    updated = await transition(request, DocumentRequestStatus.READY_FOR_PICKUP)
    await _after_admin_transition(updated, staff, request.status, "ready_for_pickup")
    return updated


async def release(
    request: DocumentRequest,
    staff: User,
    released_to: str,
    released_id_type: str | None = None,
) -> DocumentRequest:
    if not (released_to or "").strip():
        raise BadRequestError("released_to is required")
    updated = await transition(
        request,
        DocumentRequestStatus.RELEASED,
        {
            "released_at": datetime.utcnow(),
            "released_by": str(staff.id),
            "released_to": released_to.strip(),
            "released_id_type": released_id_type,
        },
    )
    await _after_admin_transition(updated, staff, request.status, "released")
    return updated


async def reject(request: DocumentRequest, staff: User, reason: str) -> DocumentRequest:
    if not (reason or "").strip():
        raise BadRequestError("A rejection reason is required")
    updated = await transition(request, DocumentRequestStatus.REJECTED, {"rejection_reason": reason.strip()})
    await _after_admin_transition(updated, staff, request.status, "rejected")
    return updated


async def cancel(request: DocumentRequest, actor: User, reason: str | None = None) -> DocumentRequest:
    """Students cancel their own unpaid requests; staff cancel anything not yet released."""
    if not actor.is_staff:
        if request.student_id != actor.id:
            raise ForbiddenError("Not your request")
        if request.status not in STUDENT_CANCELLABLE:
            raise InvalidStateTransition(
                request.status.value,
                DocumentRequestStatus.CANCELLED.value,
                "Paid requests can only be cancelled by the registrar",
            )
    fields: dict[str, Any] = {"cancelled_at": datetime.utcnow(), "cancelled_by": str(actor.id)}
    if reason:
        fields["notes"] = reason
    updated = await transition(request, DocumentRequestStatus.CANCELLED, fields)
    await _after_admin_transition(updated, actor, request.status, "cancelled")
    return updated


async def set_status(request: DocumentRequest, staff: User, target: DocumentRequestStatus, **kwargs: Any) -> DocumentRequest:
    """Generic staff status change routed through the dedicated helpers."""
    if target in (DocumentRequestStatus.PAID, DocumentRequestStatus.PAYMENT_EXPIRED):
        raise InvalidStateTransition(
            request.status.value,
            target.value,
            f"Status {target.value} is set by payments, not by staff",
        )
    if target == DocumentRequestStatus.PROCESSING:
        return await mark_processing(request, staff)
    if target == DocumentRequestStatus.READY_FOR_PICKUP:
        return await mark_ready(request, staff)
    if target == DocumentRequestStatus.RELEASED:
        return await release(request, staff, kwargs.get("released_to") or "", kwargs.get("released_id_type"))
    if target == DocumentRequestStatus.REJECTED:
        return await reject(request, staff, kwargs.get("reason") or "")
    if target == DocumentRequestStatus.CANCELLED:
        return await cancel(request, staff, kwargs.get("reason"))
    raise InvalidStateTransition(request.status.value, target.value)


async def _after_admin_transition(
    request: DocumentRequest,
    actor: User,
    previous: DocumentRequestStatus,
    kind: str,
) -> None:
    await log_event(
        str(actor.id),
        "document_request_status_updated",
        "document_request",
        request.request_number,
        {"old_status": previous.value, "new_status": request.status.value},
    )
    await notifications.notify(request, kind)


async def bulk_set_status(
    request_numbers: list[str],
    staff: User,
    target: DocumentRequestStatus,
    **kwargs: Any,
) -> list[dict[str, Any]]:
    """
    set_status for each request on its own; one failing item does not stop
    the rest. Returns one result per distinct request number, in input order.
    """
    numbers = list(dict.fromkeys(n.strip() for n in request_numbers if n and n.strip()))
    if not numbers:
        raise BadRequestError("No request numbers given")
    if len(numbers) > MAX_BULK_ITEMS:
        raise BadRequestError(f"At most {MAX_BULK_ITEMS} requests per bulk update")
    results = []
    for request_number in numbers:
        try:
            request = await get_by_number(request_number)
            updated = await set_status(request, staff, target, **kwargs)
        except AppError as e:
            results.append({"request_number": request_number, "ok": False, "code": e.code, "message": e.message})
            continue
        results.append({"request_number": request_number, "ok": True, "status": updated.status.value})
    succeeded = sum(1 for r in results if r["ok"])
    log.info("bulk_status_update", target=target.value, requested=len(numbers), succeeded=succeeded)
    await log_event(
        str(staff.id),
        "document_request_bulk_status_updated",
        "document_request",
        None,
        {"new_status": target.value, "requested": len(numbers), "succeeded": succeeded},
    )
    return results


async def expire_if_overdue(request: DocumentRequest, now: datetime | None = None) -> DocumentRequest:
    """pending_payment past its deadline -> payment_expired. Returns the current document either way."""
    if request.status != DocumentRequestStatus.PENDING_PAYMENT or not request.is_past_deadline(now):
        return request
    try:
        updated = await transition(request, DocumentRequestStatus.PAYMENT_EXPIRED)
    except InvalidStateTransition:
        return await DocumentRequest.get(request.id) or request
    await log_event(
        None,
        "document_request_expired",
        "document_request",
        updated.request_number,
        {"payment_deadline": updated.payment_deadline.isoformat()},
    )
    await notifications.notify(updated, "payment_expired")
    return updated


async def expire_overdue(now: datetime | None = None, limit: int = 500) -> int:
    """Sweep body: expire every unpaid request whose deadline has passed."""
    now = now or datetime.utcnow()
    due = await DocumentRequest.find(
        DocumentRequest.status == DocumentRequestStatus.PENDING_PAYMENT,
        DocumentRequest.payment_deadline < now,
    ).limit(limit).to_list()
    expired = 0
    for request in due:
        updated = await expire_if_overdue(request, now)
        if updated.status == DocumentRequestStatus.PAYMENT_EXPIRED:
            expired += 1
    if due:
        log.info("expire_overdue", due=len(due), expired=expired)
    return expired
