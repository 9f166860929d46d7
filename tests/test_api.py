"""HTTP surface: role gating, error envelope, cash and webhook flows end to end."""

from datetime import datetime, timedelta

import pytest

from registrar.models.document_request import DocumentRequest, DocumentRequestStatus
from registrar.models.payment import PaymentMethod
from registrar.models.payment_webhook_event import PaymentWebhookEvent
from registrar.models.user import User, UserRole
from registrar.services import payments as payments_service

pytestmark = pytest.mark.asyncio

NEW_REQUEST = {"document_type": "transcript", "processing_type": "rush", "quantity": 2, "purpose": "Employment"}


async def _create(client, headers, body=None):
    r = await client.post("/v1/document-requests", json=body or NEW_REQUEST, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


async def test_requires_session(client):
    r = await client.get("/v1/document-requests")
    assert r.status_code == 401
    body = r.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert "request_id" in body


async def test_pricing_is_public(client):
    r = await client.get("/v1/document-requests/pricing")
    assert r.status_code == 200
    prices = {p["value"]: p["unit_price"] for p in r.json()["processing_types"]}
    assert prices == {"regular": 50, "rush": 100}
    assert r.json()["payment_deadline_hours"] == 48


async def test_student_submits_and_reads_request(client, student, auth_headers):
    headers = auth_headers(student)
    created = await _create(client, headers)
    assert created["amount"] == 200
    assert created["status"] == "pending_payment"
    assert created["payment_deadline"]

    r = await client.get(f"/v1/document-requests/{created['request_number']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["payments"] == []

    listing = await client.get("/v1/document-requests", headers=headers)
    assert [i["request_number"] for i in listing.json()["items"]] == [created["request_number"]]


async def test_other_student_cannot_see_request(client, student, make_user, auth_headers):
    created = await _create(client, auth_headers(student))
    other = await make_user()
    r = await client.get(f"/v1/document-requests/{created['request_number']}", headers=auth_headers(other))
    assert r.status_code == 404


async def test_validation_errors(client, student, auth_headers):
    headers = auth_headers(student)
    r = await client.post("/v1/document-requests", json={**NEW_REQUEST, "quantity": 11}, headers=headers)
    assert r.status_code == 400
    r = await client.post("/v1/document-requests", json={**NEW_REQUEST, "document_type": "yearbook"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_daily_limit_is_429(client, student, auth_headers):
    headers = auth_headers(student)
    for _ in range(5):
        await _create(client, headers)
    r = await client.post("/v1/document-requests", json=NEW_REQUEST, headers=headers)
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "TOO_MANY_REQUESTS"


async def test_role_gating(client, student, cashier, staff, auth_headers):
    assert (await client.post("/v1/document-requests", json=NEW_REQUEST, headers=auth_headers(cashier))).status_code == 403
    assert (
        await client.post("/v1/cashier/verify-payment", json={"payment_reference_number": "PRN-1"}, headers=auth_headers(student))
    ).status_code == 403
    assert (await client.get("/v1/admin/document-requests", headers=auth_headers(cashier))).status_code == 403
    assert (await client.get("/v1/admin/document-requests", headers=auth_headers(staff))).status_code == 200
    r = await client.patch(f"/v1/admin/users/{student.id}/role", json={"role": "cashier"}, headers=auth_headers(staff))
    assert r.status_code == 403


async def test_cash_flow_through_cashier(client, student, cashier, staff, auth_headers):
    created = await _create(client, auth_headers(student))
    rn = created["request_number"]
    prn = (await client.post("/v1/payments/cash", json={"request_number": rn}, headers=auth_headers(student))).json()[
        "payment_reference_number"
    ]

    r = await client.post("/v1/cashier/verify-payment", json={"payment_reference_number": prn}, headers=auth_headers(cashier))
    assert r.status_code == 200
    assert r.json()["document_request"]["request_number"] == rn

    r = await client.post(
        "/v1/cashier/confirm-payment",
        json={"payment_reference_number": prn, "official_receipt_number": "OR-7781"},
        headers=auth_headers(cashier),
    )
    assert r.status_code == 200
    receipt_id = r.json()["receipt_id"]

    r = await client.get(f"/v1/cashier/receipts/{receipt_id}", headers=auth_headers(cashier))
    assert r.json()["official_receipt_number"] == "OR-7781"

    detail = (await client.get(f"/v1/document-requests/{rn}", headers=auth_headers(student))).json()
    assert detail["status"] == "paid"
    assert detail["payments"][0]["status"] == "paid"

    # processing -> released skips ready_for_pickup
    assert (await client.post(f"/v1/admin/document-requests/{rn}/process", headers=auth_headers(staff))).status_code == 200
    r = await client.post(
        f"/v1/admin/document-requests/{rn}/release",
        json={"released_to": "Juan Dela Cruz"},
        headers=auth_headers(staff),
    )
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "INVALID_STATE_TRANSITION"
    assert (await DocumentRequest.find_one(DocumentRequest.request_number == rn)).status == DocumentRequestStatus.PROCESSING

    r = await client.patch(
        f"/v1/admin/document-requests/{rn}/status",
        json={"status": "ready_for_pickup"},
        headers=auth_headers(staff),
    )
    assert r.json()["status"] == "ready_for_pickup"


async def test_receipt_with_bad_id_is_404(client, cashier, auth_headers):
    r = await client.get("/v1/cashier/receipts/not-an-id", headers=auth_headers(cashier))
    assert r.status_code == 404


async def test_webhook_endpoint_is_idempotent(client, student, make_request, paid_event, signed_webhook):
    request = await make_request(student)
    await payments_service.create_for_request(request, PaymentMethod.DIGITAL, checkout_id="cs_http")
    raw, headers = signed_webhook(paid_event("evt_http", "cs_http"))

    first = await client.post("/v1/payments/webhook", content=raw, headers=headers)
    second = await client.post("/v1/payments/webhook", content=raw, headers=headers)
    assert first.status_code == 200
    assert second.json() == {"status": "ok"}
    assert await PaymentWebhookEvent.find_all().count() == 1
    assert (await DocumentRequest.get(request.id)).status == DocumentRequestStatus.PAID


async def test_webhook_endpoint_acknowledges_processing_failures(client, paid_event, signed_webhook):
    raw, headers = signed_webhook(paid_event("evt_orphan_http", "cs_nowhere"))
    r = await client.post("/v1/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 200
    event = await PaymentWebhookEvent.find_one(PaymentWebhookEvent.event_id == "evt_orphan_http")
    assert event.processed is False


async def test_webhook_endpoint_rejects_bad_signature(client, paid_event, signed_webhook):
    raw, headers = signed_webhook(paid_event("evt_forged", "cs_x"), secret="forged")
    r = await client.post("/v1/payments/webhook", content=raw, headers=headers)
    assert r.status_code == 400
    assert await PaymentWebhookEvent.find_all().count() == 0


async def test_admin_reprocess_endpoint(client, staff, student, make_request, paid_event, signed_webhook, auth_headers):
    raw, headers = signed_webhook(paid_event("evt_retry_http", "cs_retry_http"))
    await client.post("/v1/payments/webhook", content=raw, headers=headers)
    request = await make_request(student)
    await payments_service.create_for_request(request, PaymentMethod.DIGITAL, checkout_id="cs_retry_http")

    listing = await client.get("/v1/admin/webhook-events", params={"processed": "false"}, headers=auth_headers(staff))
    assert [e["event_id"] for e in listing.json()["events"]] == ["evt_retry_http"]

    r = await client.post("/v1/admin/webhook-events/evt_retry_http/reprocess", headers=auth_headers(staff))
    assert r.json()["processed"] is True
    assert r.json()["outcome"] == "processed"


async def test_registrar_admin_sets_role(client, make_user, student, auth_headers):
    admin = await make_user(UserRole.REGISTRAR_ADMIN)
    r = await client.patch(f"/v1/admin/users/{student.id}/role", json={"role": "cashier"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["role"] == "cashier"
    # role change invalidates the old session
    assert (await client.get("/v1/auth/me", headers=auth_headers(student))).status_code == 401
    refreshed = await User.get(student.id)
    assert (await client.get("/v1/auth/me", headers=auth_headers(refreshed))).json()["role"] == "cashier"


async def test_logout_invalidates_session(client, student, auth_headers):
    headers = auth_headers(student)
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 200
    assert (await client.post("/v1/auth/logout", headers=headers)).status_code == 200
    assert (await client.get("/v1/auth/me", headers=headers)).status_code == 401


async def test_notifications_inbox(client, student, auth_headers):
    headers = auth_headers(student)
    await _create(client, headers)
    r = await client.get("/v1/notifications", headers=headers)
    items = r.json()["notifications"]
    assert [n["kind"] for n in items] == ["request_submitted"]
    assert items[0]["read"] is False
    r = await client.post(f"/v1/notifications/{items[0]['id']}/read", headers=headers)
    assert r.json()["read"] is True


async def test_lists_show_overdue_requests_as_expired(client, student, staff, make_request, auth_headers):
    overdue = await make_request(student, now=datetime.utcnow() - timedelta(hours=49))

    mine = (await client.get("/v1/document-requests", headers=auth_headers(student))).json()["items"]
    assert [(i["request_number"], i["status"]) for i in mine] == [(overdue.request_number, "payment_expired")]

    queue = (await client.get("/v1/admin/document-requests", headers=auth_headers(staff))).json()["items"]
    assert [i["status"] for i in queue] == ["payment_expired"]
    assert (await DocumentRequest.get(overdue.id)).status == DocumentRequestStatus.PAYMENT_EXPIRED


async def test_bulk_status_endpoint(client, student, cashier, staff, make_request, auth_headers):
    paid = await make_request(student)
    payment = await payments_service.create_for_request(paid, PaymentMethod.CASH)
    await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "OR-9001")
    unpaid = await make_request(student)

    body = {"request_numbers": [paid.request_number, unpaid.request_number], "status": "processing"}
    assert (
        await client.post("/v1/admin/document-requests/bulk-status", json=body, headers=auth_headers(cashier))
    ).status_code == 403
    r = await client.post("/v1/admin/document-requests/bulk-status", json=body, headers=auth_headers(staff))
    assert r.status_code == 200
    out = r.json()
    assert (out["succeeded"], out["failed"]) == (1, 1)
    assert out["results"][0]["status"] == "processing"
    assert out["results"][1]["code"] == "INVALID_STATE_TRANSITION"
    assert (await DocumentRequest.get(unpaid.id)).status == DocumentRequestStatus.PENDING_PAYMENT


async def test_audit_log_listing_and_detail(client, student, staff, auth_headers):
    created = await _create(client, auth_headers(student))
    await _create(client, auth_headers(student))

    assert (await client.get("/v1/admin/audit-logs", headers=auth_headers(student))).status_code == 403
    r = await client.get(
        "/v1/admin/audit-logs",
        params={"event_type": "document_request_created", "entity_id": created["request_number"]},
        headers=auth_headers(staff),
    )
    assert r.status_code == 200
    listing = r.json()
    assert listing["total"] == 1
    entry = listing["items"][0]
    assert entry["entity_type"] == "document_request"
    assert entry["user_id"] == str(student.id)

    everything = (await client.get("/v1/admin/audit-logs", params={"limit": 1}, headers=auth_headers(staff))).json()
    assert everything["total"] == 2
    assert len(everything["items"]) == 1

    detail = await client.get(f"/v1/admin/audit-logs/{entry['id']}", headers=auth_headers(staff))
    assert detail.json() == entry
    assert (await client.get("/v1/admin/audit-logs/not-an-id", headers=auth_headers(staff))).status_code == 404
