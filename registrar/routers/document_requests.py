from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from registrar.core.pagination import DEFAULT_LIMIT, page, paginate
from registrar.deps import get_current_user, require_student
from registrar.models.document_request import DocumentRequest, DocumentType, ProcessingType
from registrar.models.payment import Payment
from registrar.models.user import User
from registrar.services import document_requests as requests_service
from registrar.services import payments as payments_service

router = APIRouter()


class DocumentRequestBody(BaseModel):
    document_type: DocumentType
    processing_type: ProcessingType = ProcessingType.REGULAR
    quantity: int = 1
    purpose: str
    custom_purpose: str | None = None


class CancelBody(BaseModel):
    reason: str | None = None


def _iso(value):
    return value.isoformat() if value else None


def payment_to_dict(p: Payment) -> dict:
    return {
        "id": str(p.id),
        "request_number": p.request_number,
        "payment_method": p.payment_method.value,
        "amount": p.amount,
        "status": p.status.value,
        "payment_reference_number": p.payment_reference_number,
        "checkout_url": p.checkout_url,
        "provider_payment_method": p.provider_payment_method,
        "official_receipt_number": p.official_receipt_number,
        "failure_reason": p.failure_reason,
        "paid_at": _iso(p.paid_at),
        "created_at": _iso(p.created_at),
    }


def request_to_dict(r: DocumentRequest, payments: list[Payment] | None = None) -> dict:
    out = {
        "id": str(r.id),
        "request_number": r.request_number,
        "student_number": r.student_number,
        "document_type": r.document_type.value,
        "processing_type": r.processing_type.value,
        "quantity": r.quantity,
        "purpose": r.purpose,
        "unit_price": r.unit_price,
        "amount": r.amount,
        "status": r.status.value,
        "payment_deadline": _iso(r.payment_deadline),
        "payment_method": r.payment_method,
        "released_to": r.released_to,
        "released_at": _iso(r.released_at),
        "rejection_reason": r.rejection_reason,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }
    if payments is not None:
        out["payments"] = [payment_to_dict(p) for p in payments]
    return out


@router.get("/pricing")
async def document_request_pricing():
    """Unit prices, turnaround, document types and purposes for the request form."""
    return requests_service.pricing()


@router.post("", status_code=status.HTTP_201_CREATED)
async def document_request_create(body: DocumentRequestBody, user: User = Depends(require_student)):
    r = await requests_service.create_request(
        user,
        body.document_type,
        body.processing_type,
        body.quantity,
        body.purpose,
        custom_purpose=body.custom_purpose,
    )
    return request_to_dict(r)


@router.get("")
async def document_requests_list(
    user: User = Depends(require_student),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """The current student's requests, newest first."""
    limit, offset = paginate(limit, offset)
    items = await requests_service.list_for_student(user.id, limit, offset)
    items = [await requests_service.expire_if_overdue(r) for r in items]
    return page([request_to_dict(r) for r in items], limit, offset)


@router.get("/{request_number}")
async def document_request_detail(request_number: str, user: User = Depends(get_current_user)):
    r = await requests_service.get_for_user(request_number, user)
    # overdue requests are shown as expired even before the sweep runs
    r = await requests_service.expire_if_overdue(r)
    payments = await payments_service.list_for_request(r.id)
    return request_to_dict(r, payments)


@router.patch("/{request_number}")
async def document_request_update(
    request_number: str,
    body: DocumentRequestBody,
    user: User = Depends(require_student),
):
    r = await requests_service.get_for_user(request_number, user)
    r = await requests_service.update_request(
        r,
        user,
        body.document_type,
        body.processing_type,
        body.quantity,
        body.purpose,
        custom_purpose=body.custom_purpose,
    )
    return request_to_dict(r)


@router.post("/{request_number}/cancel")
async def document_request_cancel(
    request_number: str,
    body: CancelBody | None = None,
    user: User = Depends(require_student),
):
    r = await requests_service.get_for_user(request_number, user)
    r = await requests_service.cancel(r, user, body.reason if body else None)
    return request_to_dict(r)
