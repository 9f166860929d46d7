"""Payments for document requests: cash references, PayMongo checkout, settlement."""

import secrets
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import In, Set

from registrar.core.audit import log_event
from registrar.core.config import get_settings
from registrar.core.exceptions import (
    BadRequestError,
    ConflictError,
    DuplicatePayment,
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    PaymentDeadlineExceeded,
)
from registrar.core.logging import get_logger
from registrar.models.document_request import SETTLED_STATUSES, DocumentRequest, DocumentRequestStatus
from registrar.models.payment import Payment, PaymentMethod, PaymentStatus
from registrar.models.user import User
from registrar.services import document_requests as requests_service
from registrar.services import notifications, paymongo

log = get_logger(__name__)

REFERENCE_ATTEMPTS = 10


def _generate_reference(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"PRN-{now:%Y%m%d}-{secrets.randbelow(9999) + 1:04d}"


async def generate_payment_reference() -> str:
    for _ in range(REFERENCE_ATTEMPTS):
        prn = _generate_reference()
        existing = await Payment.find_one(Payment.payment_reference_number == prn)
        if not existing:
            return prn
    raise ConflictError("Could not generate unique payment reference")


async def create_for_request(
    request: DocumentRequest,
    method: PaymentMethod | str,
    checkout_id: str | None = None,
    payment_intent_id: str | None = None,
    provider_payment_method: str | None = None,
    checkout_url: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Record a payment attempt. Digital payments carry provider ids from the
    start; cash payments get a reference number and wait for a cashier.
    """
    method = PaymentMethod(method)
    if request.status != DocumentRequestStatus.PENDING_PAYMENT:
        raise InvalidStateTransition(
            request.status.value,
            DocumentRequestStatus.PAID.value,
            "Payment cannot be initiated for this request. Only requests with pending payment status can be paid.",
        )
    if request.is_past_deadline(now):
        raise PaymentDeadlineExceeded(request.request_number, request.payment_deadline)
    has_provider_ids = bool(checkout_id or payment_intent_id)
    if method == PaymentMethod.DIGITAL and not has_provider_ids:
        raise BadRequestError("Digital payments need a provider checkout or payment intent id")
    if method == PaymentMethod.CASH and (has_provider_ids or provider_payment_method):
        raise BadRequestError("Cash payments cannot carry provider ids")
    payment = Payment(
        request_id=request.id,
        request_number=request.request_number,
        payment_method=method,
        amount=request.amount,
        checkout_id=checkout_id,
        payment_intent_id=payment_intent_id,
        provider_payment_method=provider_payment_method,
        checkout_url=checkout_url,
    )
    if method == PaymentMethod.CASH:
        payment.payment_reference_number = await generate_payment_reference()
    await payment.insert()
    log.info(
        "payment_created",
        request_number=request.request_number,
        payment_id=str(payment.id),
        method=method.value,
        amount=payment.amount,
    )
    await log_event(
        str(request.student_id),
        "payment_created",
        "payment",
        str(payment.id),
        {
            "request_number": request.request_number,
            "payment_method": method.value,
            "amount": payment.amount,
            "checkout_id": checkout_id,
            "payment_reference_number": payment.payment_reference_number,
        },
    )
    return payment


async def _pending_payment(request: DocumentRequest, method: PaymentMethod) -> Payment | None:
    return await Payment.find_one(
        Payment.request_id == request.id,
        Payment.payment_method == method,
        Payment.status == PaymentStatus.PENDING,
    )


async def create_cash_payment(request: DocumentRequest, student: User) -> Payment:
    """Issue (or re-show) the cash payment reference the student brings to the cashier."""
    if request.student_id != student.id:
        raise ForbiddenError("Not your request")
    existing = await _pending_payment(request, PaymentMethod.CASH)
    if existing:
        return existing
    return await create_for_request(request, PaymentMethod.CASH)


async def start_checkout(request: DocumentRequest, student: User) -> Payment:
    """Create a PayMongo checkout session and its digital payment row."""
    if request.student_id != student.id:
        raise ForbiddenError("Not your request")
    if request.status != DocumentRequestStatus.PENDING_PAYMENT:
        raise InvalidStateTransition(request.status.value, DocumentRequestStatus.PAID.value)
    if request.is_past_deadline():
        raise PaymentDeadlineExceeded(request.request_number, request.payment_deadline)
    existing = await _pending_payment(request, PaymentMethod.DIGITAL)
    if existing and existing.checkout_url:
        return existing
    session = await paymongo.create_checkout_session(request, student.email, student.name)
    return await create_for_request(
        request,
        PaymentMethod.DIGITAL,
        checkout_id=session["checkout_id"],
        payment_intent_id=session.get("payment_intent_id"),
        checkout_url=session.get("checkout_url"),
    )


async def find_pending_cash(reference: str) -> Payment:
    payment = await Payment.find_one(
        Payment.payment_reference_number == (reference or "").strip(),
        Payment.payment_method == PaymentMethod.CASH,
        Payment.status == PaymentStatus.PENDING,
    )
    if not payment:
        raise NotFoundError("Payment reference not found or already processed.")
    return payment


async def confirm_cash_payment(reference: str, cashier: User, official_receipt_number: str) -> Payment:
    official_receipt_number = (official_receipt_number or "").strip()
    if not official_receipt_number:
        raise BadRequestError("Official receipt number is required")
    payment = await find_pending_cash(reference)
    return await mark_paid(
        payment,
        cashier_id=str(cashier.id),
        official_receipt_number=official_receipt_number,
    )


async def _set_paid(payment: Payment, fields: dict[str, Any]) -> tuple[Payment, bool]:
    """Returns (payment, matched); matched is False when another writer already settled it."""
    updated = await Payment.find_one(
        Payment.id == payment.id,
        In(Payment.status, [PaymentStatus.PENDING, PaymentStatus.FAILED]),
    ).update(
        Set({**fields, "status": PaymentStatus.PAID}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        # another delivery of the same payment got there first
        return await Payment.get(payment.id) or payment, False
    return updated, True


async def mark_paid(
    payment: Payment,
    cashier_id: str | None = None,
    official_receipt_number: str | None = None,
    payment_intent_id: str | None = None,
    provider_payment_method: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Settle a payment and move its request to paid.

    The request is claimed first (single-document compare-and-set on
    paid_payment_id), then the payment row is written, so a retry after a
    crash between the two writes finishes the job without a second winner.
    """
    if payment.status == PaymentStatus.PAID:
        return payment
    if payment.payment_method == PaymentMethod.CASH and not cashier_id:
        raise BadRequestError("Cash payments are confirmed by a cashier")
    if payment.payment_method == PaymentMethod.DIGITAL and (cashier_id or official_receipt_number):
        raise BadRequestError("Digital payments are confirmed by the provider")
    now = now or datetime.utcnow()
    request = await DocumentRequest.get(payment.request_id)
    if not request:
        raise NotFoundError("Document request not found")

    if request.paid_payment_id not in (None, payment.id) or (
        request.paid_payment_id is None and request.status in SETTLED_STATUSES
    ):
        log.warning(
            "duplicate_payment",
            request_number=request.request_number,
            payment_id=str(payment.id),
            winning_payment_id=str(request.paid_payment_id),
        )
        raise DuplicatePayment(request.request_number, str(payment.id))

    fields: dict[str, Any] = {"paid_at": now, "updated_at": now}
    if cashier_id:
        fields["cashier_id"] = cashier_id
        fields["official_receipt_number"] = official_receipt_number
    if payment_intent_id:
        fields["payment_intent_id"] = payment_intent_id
    if provider_payment_method:
        fields["provider_payment_method"] = provider_payment_method

    late = request.status == DocumentRequestStatus.PAYMENT_EXPIRED or (
        request.status == DocumentRequestStatus.PENDING_PAYMENT and request.is_past_deadline(now)
    )
    allowed = [DocumentRequestStatus.PENDING_PAYMENT]
    if late:
        if get_settings().late_payment_policy != "reinstate":
            await _reject_late_payment(request, payment, fields, now)
        allowed.append(DocumentRequestStatus.PAYMENT_EXPIRED)

    claimed = await requests_service.claim_for_payment(request, payment, allowed)
    updated, matched = await _set_paid(payment, fields)
    if not matched:
        log.info("payment_already_paid", request_number=claimed.request_number, payment_id=str(updated.id))
        return updated
    log.info(
        "payment_marked_paid",
        request_number=claimed.request_number,
        payment_id=str(updated.id),
        method=updated.payment_method.value,
        reinstated=late,
    )
    await log_event(
        cashier_id,
        "payment_confirmed" if cashier_id else "payment_completed",
        "payment",
        str(updated.id),
        {
            "request_number": claimed.request_number,
            "amount": updated.amount,
            "payment_method": updated.payment_method.value,
            "official_receipt_number": official_receipt_number,
            "payment_intent_id": updated.payment_intent_id,
            "reinstated": late,
        },
    )
    await notifications.notify(claimed, "payment_confirmed")
    return updated


async def _reject_late_payment(
    request: DocumentRequest,
    payment: Payment,
    fields: dict[str, Any],
    now: datetime,
) -> None:
    """
    Deadline passed under the reject policy. A digital payment is still
    recorded as paid because the provider already captured the money; the
    request is expired and the error is raised for the caller to record.
    """
    if payment.payment_method == PaymentMethod.DIGITAL:
        _, matched = await _set_paid(payment, fields)
        if not matched:
            raise PaymentDeadlineExceeded(request.request_number, request.payment_deadline)
    await requests_service.expire_if_overdue(request, now)
    log.warning(
        "late_payment_rejected",
        request_number=request.request_number,
        payment_id=str(payment.id),
        payment_deadline=request.payment_deadline.isoformat(),
    )
    await log_event(
        None,
        "late_payment_rejected",
        "payment",
        str(payment.id),
        {"request_number": request.request_number, "method": payment.payment_method.value},
    )
    raise PaymentDeadlineExceeded(request.request_number, request.payment_deadline)


async def mark_failed(payment: Payment, reason: str | None = None) -> Payment:
    """pending -> failed. The request stays pending_payment and may be paid again."""
    if payment.status == PaymentStatus.PAID:
        log.info("payment_failed_after_paid_ignored", payment_id=str(payment.id))
        return payment
    updated = await Payment.find_one(
        Payment.id == payment.id,
        Payment.status == PaymentStatus.PENDING,
    ).update(
        Set({"status": PaymentStatus.FAILED, "failure_reason": reason, "updated_at": datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        return await Payment.get(payment.id) or payment
    log.info("payment_marked_failed", request_number=updated.request_number, payment_id=str(updated.id))
    await log_event(
        None,
        "payment_failed",
        "payment",
        str(updated.id),
        {"request_number": updated.request_number, "failure_reason": reason or "Unknown"},
    )
    return updated


async def list_for_request(request_id: PydanticObjectId) -> list[Payment]:
    return await Payment.find(Payment.request_id == request_id).sort(+Payment.created_at).to_list()


async def receipt(payment_id: PydanticObjectId) -> dict[str, Any]:
    """Official receipt data for a confirmed cash payment."""
    payment = await Payment.get(payment_id)
    if not payment or payment.payment_method != PaymentMethod.CASH:
        raise NotFoundError("Receipt not found")
    if payment.status != PaymentStatus.PAID or not payment.official_receipt_number:
        raise NotFoundError("Receipt not found")
    request = await DocumentRequest.get(payment.request_id)
    student = await User.get(request.student_id) if request else None
    cashier = await User.get(PydanticObjectId(payment.cashier_id)) if payment.cashier_id else None
    return {
        "official_receipt_number": payment.official_receipt_number,
        "payment": {
            "id": str(payment.id),
            "amount": payment.amount,
            "payment_method": payment.payment_method.value,
            "status": payment.status.value,
            "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
            "reference_number": payment.payment_reference_number,
        },
        "document_request": {
            "request_number": payment.request_number,
            "document_type": request.document_type.value if request else None,
            "purpose": request.purpose if request else None,
        },
        "student": {
            "student_number": request.student_number if request else None,
            "name": student.name if student else None,
            "email": student.email if student else None,
        },
        "cashier": {"name": cashier.name if cashier else "N/A"},
    }
