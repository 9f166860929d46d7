"""Payment records: cash confirmation, single winner, failure, late payments."""

import re
from datetime import datetime, timedelta

import pytest

from registrar.core.config import get_settings
from registrar.core.exceptions import (
    BadRequestError,
    DuplicatePayment,
    InvalidStateTransition,
    NotFoundError,
    PaymentDeadlineExceeded,
)
from registrar.models.audit_log import AuditLog
from registrar.models.document_request import DocumentRequest, DocumentRequestStatus
from registrar.models.notification import Notification
from registrar.models.payment import Payment, PaymentMethod, PaymentStatus
from registrar.services import document_requests as requests_service
from registrar.services import payments as payments_service
from registrar.services import paymongo

pytestmark = pytest.mark.asyncio


async def _digital(request, checkout_id="cs_test_1"):
    return await payments_service.create_for_request(request, PaymentMethod.DIGITAL, checkout_id=checkout_id)


async def _make_late(request):
    """Move the deadline into the past without waiting 48 hours."""
    request.payment_deadline = datetime.utcnow() - timedelta(minutes=1)
    await request.save()
    return request


async def test_cash_payment_confirmed_by_cashier(student, cashier, make_request):
    r = await make_request(student, quantity=2)
    payment = await payments_service.create_cash_payment(r, student)
    assert re.fullmatch(r"PRN-\d{8}-\d{4}", payment.payment_reference_number)
    assert payment.amount == 100
    assert payment.status == PaymentStatus.PENDING

    paid = await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "OR-2024-0001")
    assert paid.status == PaymentStatus.PAID
    assert paid.cashier_id == str(cashier.id)
    assert paid.official_receipt_number == "OR-2024-0001"
    assert paid.paid_at is not None

    fresh = await DocumentRequest.get(r.id)
    assert fresh.status == DocumentRequestStatus.PAID
    assert fresh.paid_payment_id == payment.id
    assert fresh.payment_method == "cash"

    receipt = await payments_service.receipt(payment.id)
    assert receipt["official_receipt_number"] == "OR-2024-0001"
    assert receipt["document_request"]["request_number"] == r.request_number
    assert receipt["cashier"]["name"] == cashier.name


async def test_cash_reference_is_reused_while_pending(student, make_request):
    r = await make_request(student)
    first = await payments_service.create_cash_payment(r, student)
    second = await payments_service.create_cash_payment(r, student)
    assert first.id == second.id
    assert await Payment.find(Payment.request_id == r.id).count() == 1


async def test_confirm_requires_receipt_number(student, cashier, make_request):
    r = await make_request(student)
    payment = await payments_service.create_cash_payment(r, student)
    with pytest.raises(BadRequestError):
        await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "  ")
    assert (await Payment.get(payment.id)).status == PaymentStatus.PENDING


async def test_confirm_unknown_reference(cashier):
    with pytest.raises(NotFoundError):
        await payments_service.confirm_cash_payment("PRN-20240101-0001", cashier, "OR-1")


async def test_cash_cannot_be_confirmed_twice(student, cashier, make_request):
    r = await make_request(student)
    payment = await payments_service.create_cash_payment(r, student)
    await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "OR-1")
    with pytest.raises(NotFoundError):
        await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "OR-2")
    assert (await Payment.get(payment.id)).official_receipt_number == "OR-1"


async def test_create_for_request_validates_method_fields(student, make_request):
    r = await make_request(student)
    with pytest.raises(BadRequestError):
        await payments_service.create_for_request(r, PaymentMethod.DIGITAL)
    with pytest.raises(BadRequestError):
        await payments_service.create_for_request(r, PaymentMethod.CASH, checkout_id="cs_1")
    assert await Payment.find_all().count() == 0


async def test_create_for_request_needs_pending_request(student, make_request):
    r = await make_request(student)
    r = await requests_service.cancel(r, student)
    with pytest.raises(InvalidStateTransition):
        await payments_service.create_for_request(r, PaymentMethod.CASH)


async def test_create_for_request_after_deadline(student, make_request):
    r = await _make_late(await make_request(student))
    with pytest.raises(PaymentDeadlineExceeded):
        await payments_service.create_for_request(r, PaymentMethod.CASH)


async def test_single_winning_payment(student, make_request):
    r = await make_request(student)
    first = await _digital(r, "cs_first")
    second = await _digital(r, "cs_second")

    await payments_service.mark_paid(first, payment_intent_id="pi_first")
    with pytest.raises(DuplicatePayment):
        await payments_service.mark_paid(second, payment_intent_id="pi_second")

    fresh = await DocumentRequest.get(r.id)
    assert fresh.status == DocumentRequestStatus.PAID
    assert fresh.paid_payment_id == first.id
    assert (await Payment.get(second.id)).status == PaymentStatus.PENDING


async def test_mark_paid_is_idempotent_for_same_payment(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    paid = await payments_service.mark_paid(payment)
    again = await payments_service.mark_paid(paid)
    assert again.status == PaymentStatus.PAID
    completed = await AuditLog.find(AuditLog.event_type == "payment_completed").count()
    assert completed == 1


async def test_racing_settlements_emit_side_effects_once(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    # both deliveries loaded the payment while it was still pending
    first_copy = await Payment.get(payment.id)
    second_copy = await Payment.get(payment.id)

    await payments_service.mark_paid(first_copy, payment_intent_id="pi_race")
    settled = await payments_service.mark_paid(second_copy, payment_intent_id="pi_race")

    assert settled.status == PaymentStatus.PAID
    assert await AuditLog.find(AuditLog.event_type == "payment_completed").count() == 1
    assert await Notification.find(Notification.kind == "payment_confirmed").count() == 1
    assert (await DocumentRequest.get(r.id)).paid_payment_id == payment.id


async def test_racing_late_settlements_audit_once(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    await _make_late(r)
    first_copy = await Payment.get(payment.id)
    second_copy = await Payment.get(payment.id)

    for copy in (first_copy, second_copy):
        with pytest.raises(PaymentDeadlineExceeded):
            await payments_service.mark_paid(copy)

    assert await AuditLog.find(AuditLog.event_type == "late_payment_rejected").count() == 1
    assert (await Payment.get(payment.id)).status == PaymentStatus.PAID
    assert (await DocumentRequest.get(r.id)).status == DocumentRequestStatus.PAYMENT_EXPIRED


async def test_mark_paid_resumes_after_partial_write(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    # the request was claimed but the payment row write never happened
    await requests_service.claim_for_payment(r, payment, [DocumentRequestStatus.PENDING_PAYMENT])
    paid = await payments_service.mark_paid(payment)
    assert paid.status == PaymentStatus.PAID
    assert (await DocumentRequest.get(r.id)).paid_payment_id == payment.id


async def test_digital_payment_rejects_cashier_fields(student, cashier, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    with pytest.raises(BadRequestError):
        await payments_service.mark_paid(payment, cashier_id=str(cashier.id), official_receipt_number="OR-1")


async def test_mark_failed_keeps_request_payable(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    failed = await payments_service.mark_failed(payment, "Insufficient funds")
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Insufficient funds"
    assert (await DocumentRequest.get(r.id)).status == DocumentRequestStatus.PENDING_PAYMENT

    retry = await _digital(r, "cs_retry")
    await payments_service.mark_paid(retry)
    assert (await DocumentRequest.get(r.id)).status == DocumentRequestStatus.PAID


async def test_failed_never_downgrades_paid(student, make_request):
    r = await make_request(student)
    payment = await payments_service.mark_paid(await _digital(r))
    out = await payments_service.mark_failed(payment, "late failure notice")
    assert out.status == PaymentStatus.PAID
    assert (await Payment.get(payment.id)).status == PaymentStatus.PAID


async def test_late_cash_payment_rejected(student, cashier, make_request):
    r = await make_request(student)
    payment = await payments_service.create_cash_payment(r, student)
    await _make_late(r)
    with pytest.raises(PaymentDeadlineExceeded):
        await payments_service.confirm_cash_payment(payment.payment_reference_number, cashier, "OR-1")
    assert (await Payment.get(payment.id)).status == PaymentStatus.PENDING
    fresh = await DocumentRequest.get(r.id)
    assert fresh.status == DocumentRequestStatus.PAYMENT_EXPIRED
    assert fresh.paid_payment_id is None


async def test_late_digital_payment_recorded_but_request_expired(student, make_request):
    r = await make_request(student)
    payment = await _digital(r)
    await _make_late(r)
    with pytest.raises(PaymentDeadlineExceeded):
        await payments_service.mark_paid(payment, payment_intent_id="pi_late")
    stored = await Payment.get(payment.id)
    assert stored.status == PaymentStatus.PAID
    assert stored.payment_intent_id == "pi_late"
    fresh = await DocumentRequest.get(r.id)
    assert fresh.status == DocumentRequestStatus.PAYMENT_EXPIRED
    assert fresh.paid_payment_id is None


async def test_late_digital_payment_reinstates_when_configured(student, make_request, monkeypatch):
    monkeypatch.setattr(get_settings(), "late_payment_policy", "reinstate")
    r = await make_request(student)
    payment = await _digital(r)
    await _make_late(r)
    await requests_service.expire_overdue()
    assert (await DocumentRequest.get(r.id)).status == DocumentRequestStatus.PAYMENT_EXPIRED

    await payments_service.mark_paid(payment)
    fresh = await DocumentRequest.get(r.id)
    assert fresh.status == DocumentRequestStatus.PAID
    assert fresh.paid_payment_id == payment.id


async def test_start_checkout_creates_digital_payment(student, make_request, monkeypatch):
    calls = []

    async def fake_session(request, email=None, name=None):
        calls.append(request.request_number)
        return {
            "checkout_id": "cs_checkout_1",
            "checkout_url": "https://checkout.paymongo.com/cs_checkout_1",
            "payment_intent_id": "pi_checkout_1",
        }

    monkeypatch.setattr(paymongo, "create_checkout_session", fake_session)
    r = await make_request(student)
    payment = await payments_service.start_checkout(r, student)
    assert payment.payment_method == PaymentMethod.DIGITAL
    assert payment.checkout_id == "cs_checkout_1"
    assert payment.payment_reference_number is None
    # an open checkout is handed back instead of creating a second session
    again = await payments_service.start_checkout(r, student)
    assert again.id == payment.id
    assert calls == [r.request_number]


async def test_checkout_payload_amounts_in_centavos(student, make_request):
    r = await make_request(student, processing_type="rush", quantity=3)
    body = paymongo.checkout_payload(r, student.email, student.name)
    item = body["data"]["attributes"]["line_items"][0]
    assert item["amount"] == 10000
    assert item["quantity"] == 3
    assert body["data"]["attributes"]["reference_number"] == r.request_number
