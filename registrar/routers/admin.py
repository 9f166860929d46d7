from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from registrar.core import audit
from registrar.core.pagination import DEFAULT_LIMIT, page, paginate
from registrar.deps import object_id_or_404, require_registrar_admin, require_staff
from registrar.models.audit_log import AuditLog
from registrar.models.document_request import DocumentRequestStatus
from registrar.models.payment_webhook_event import PaymentWebhookEvent
from registrar.models.user import User, UserRole
from registrar.routers.auth import user_to_dict
from registrar.routers.document_requests import request_to_dict
from registrar.services import document_requests as requests_service
from registrar.services import payments as payments_service
from registrar.services import users as user_service
from registrar.services import webhooks as webhooks_service

router = APIRouter()


class ReleaseBody(BaseModel):
    released_to: str
    released_id_type: str | None = None


class ReasonBody(BaseModel):
    reason: str | None = None


class StatusBody(BaseModel):
    status: DocumentRequestStatus
    reason: str | None = None
    released_to: str | None = None
    released_id_type: str | None = None


class BulkStatusBody(BaseModel):
    request_numbers: list[str]
    status: DocumentRequestStatus
    reason: str | None = None
    released_to: str | None = None
    released_id_type: str | None = None


class RoleBody(BaseModel):
    role: UserRole
    student_number: str | None = None


def _audit_to_dict(a: AuditLog) -> dict:
    return {
        "id": str(a.id),
        "user_id": a.user_id,
        "event_type": a.event_type,
        "entity_type": a.entity_type,
        "entity_id": a.entity_id,
        "description": a.description,
        "metadata": a.metadata,
        "created_at": a.created_at.isoformat(),
    }


def _event_to_dict(e: PaymentWebhookEvent) -> dict:
    return {
        "event_id": e.event_id,
        "event_type": e.event_type,
        "processed": e.processed,
        "outcome": e.outcome.value if e.outcome else None,
        "error_message": e.error_message,
        "attempts": e.attempts,
        "processed_at": e.processed_at.isoformat() if e.processed_at else None,
        "created_at": e.created_at.isoformat(),
    }


@router.get("/document-requests")
async def admin_document_requests(
    user: User = Depends(require_staff),
    status: DocumentRequestStatus | None = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Staff queue, optionally filtered by status."""
    limit, offset = paginate(limit, offset)
    items, total = await requests_service.list_requests(status, limit, offset)
    items = [await requests_service.expire_if_overdue(r) for r in items]
    return page([request_to_dict(r) for r in items], limit, offset, total)


@router.post("/document-requests/bulk-status")
async def admin_bulk_status(body: BulkStatusBody, user: User = Depends(require_staff)):
    """Apply one status change to many requests; each item reports its own result."""
    results = await requests_service.bulk_set_status(
        body.request_numbers,
        user,
        body.status,
        reason=body.reason,
        released_to=body.released_to,
        released_id_type=body.released_id_type,
    )
    return {
        "results": results,
        "succeeded": sum(1 for r in results if r["ok"]),
        "failed": sum(1 for r in results if not r["ok"]),
    }


@router.get("/document-requests/{request_number}")
async def admin_document_request_detail(request_number: str, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    r = await requests_service.expire_if_overdue(r)
    payments = await payments_service.list_for_request(r.id)
    return request_to_dict(r, payments)


@router.post("/document-requests/{request_number}/process")
async def admin_mark_processing(request_number: str, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    return request_to_dict(await requests_service.mark_processing(r, user))


@router.post("/document-requests/{request_number}/ready")
async def admin_mark_ready(request_number: str, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    return request_to_dict(await requests_service.mark_ready(r, user))


@router.post("/document-requests/{request_number}/release")
async def admin_release(request_number: str, body: ReleaseBody, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    r = await requests_service.release(r, user, body.released_to, body.released_id_type)
    return request_to_dict(r)


@router.post("/document-requests/{request_number}/reject")
async def admin_reject(request_number: str, body: ReasonBody, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    return request_to_dict(await requests_service.reject(r, user, body.reason or ""))


@router.post("/document-requests/{request_number}/cancel")
async def admin_cancel(request_number: str, body: ReasonBody | None = None, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    return request_to_dict(await requests_service.cancel(r, user, body.reason if body else None))


@router.patch("/document-requests/{request_number}/status")
async def admin_set_status(request_number: str, body: StatusBody, user: User = Depends(require_staff)):
    r = await requests_service.get_by_number(request_number)
    r = await requests_service.set_status(
        r,
        user,
        body.status,
        reason=body.reason,
        released_to=body.released_to,
        released_id_type=body.released_id_type,
    )
    return request_to_dict(r)


@router.get("/webhook-events")
async def admin_webhook_events(
    user: User = Depends(require_staff),
    processed: bool | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Webhook intake log; processed=false lists the retriable events."""
    events = await webhooks_service.list_events(processed, limit, offset)
    return {"events": [_event_to_dict(e) for e in events], "limit": limit, "offset": offset}


@router.post("/webhook-events/{event_id}/reprocess")
async def admin_webhook_reprocess(event_id: str, user: User = Depends(require_staff)):
    event = await webhooks_service.reprocess(event_id)
    return _event_to_dict(event)


@router.get("/audit-logs")
async def admin_audit_logs(
    user: User = Depends(require_staff),
    event_type: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    limit, offset = paginate(limit, offset)
    items, total = await audit.list_events(
        limit,
        offset,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
    )
    return page([_audit_to_dict(a) for a in items], limit, offset, total)


@router.get("/audit-logs/{audit_id}")
async def admin_audit_log_detail(audit_id: str, user: User = Depends(require_staff)):
    entry = await audit.get_event(object_id_or_404(audit_id, "Audit log entry"))
    return _audit_to_dict(entry)


@router.patch("/users/{user_id}/role")
async def admin_set_role(user_id: str, body: RoleBody, user: User = Depends(require_registrar_admin)):
    target = await user_service.set_role(
        user,
        object_id_or_404(user_id, "User"),
        body.role,
        student_number=body.student_number,
    )
    return user_to_dict(target)
