"""
Payment webhook intake: verify, persist once per provider event id, resolve
to a payment action, and record the outcome on the event row.

Rows with processed=False are exactly the retriable ones; everything else
(success, ignored, duplicate, rejected) is final and replays are no-ops.
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from registrar.core.config import get_settings
from registrar.core.exceptions import (
    BadRequestError,
    DuplicatePayment,
    InvalidStateTransition,
    NotFoundError,
    PaymentDeadlineExceeded,
    UnknownWebhookEvent,
    WebhookProcessingFailure,
)
from registrar.core.logging import bind_context, get_logger
from registrar.core.security import verify_paymongo_webhook
from registrar.models.payment import Payment
from registrar.models.payment_webhook_event import PaymentWebhookEvent, WebhookOutcome
from registrar.services import payments as payments_service

log = get_logger(__name__)

PAYMENT_PAID = "payment.paid"
PAYMENT_FAILED = "payment.failed"

EVENT_ALIASES = {
    PAYMENT_PAID: PAYMENT_PAID,
    PAYMENT_FAILED: PAYMENT_FAILED,
    "checkout_session.payment.paid": PAYMENT_PAID,
    "checkout_session.payment.failed": PAYMENT_FAILED,
}

MAX_ERROR_LENGTH = 2000


class PaymentCorrelation(BaseModel):
    """The only fields of a provider payload the intake gives meaning to."""
    checkout_id: str | None = None
    payment_intent_id: str | None = None
    provider_payment_method: str | None = None
    failure_reason: str | None = None


def parse_envelope(body: dict[str, Any]) -> tuple[str, str]:
    """
    Return (event_id, event_type). Accepts the flat shape
    {"id", "type", "data": {...}} and PayMongo's nested event envelope
    {"data": {"id", "attributes": {"type", "data": {...}}}}.
    """
    if not isinstance(body, dict):
        raise BadRequestError("Webhook body must be a JSON object")
    if "type" in body:
        event_id, event_type = body.get("id"), body.get("type")
    else:
        event = body.get("data") or {}
        attrs = event.get("attributes") or {} if isinstance(event, dict) else {}
        event_id = event.get("id") if isinstance(event, dict) else None
        event_type = attrs.get("type")
    if not event_id or not event_type:
        raise BadRequestError("Invalid webhook payload: missing event id or type")
    return str(event_id), str(event_type)


def _resource(payload: dict[str, Any]) -> dict[str, Any]:
    if "type" in payload:
        resource = payload.get("data")
    else:
        resource = ((payload.get("data") or {}).get("attributes") or {}).get("data")
    return resource if isinstance(resource, dict) else {}


def _dig(obj: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(obj, dict):
            obj = obj.get(key)
        elif isinstance(obj, list) and isinstance(key, int) and len(obj) > key:
            obj = obj[key]
        else:
            return None
    return obj


def extract_correlation(payload: dict[str, Any]) -> PaymentCorrelation:
    resource = _resource(payload)
    attrs = resource.get("attributes") or {}
    resource_id = str(resource.get("id") or "")
    intent = attrs.get("payment_intent")

    checkout_id = attrs.get("checkout_id") or attrs.get("checkout_session_id")
    if not checkout_id and resource_id.startswith("cs_"):
        checkout_id = resource_id
    payment_intent_id = attrs.get("payment_intent_id") or _dig(intent, "id")
    if not payment_intent_id and resource_id.startswith("pi_"):
        payment_intent_id = resource_id

    method = (
        attrs.get("payment_method")
        or attrs.get("payment_method_used")
        or _dig(attrs, "source", "type")
        or _dig(intent, "attributes", "payments", 0, "attributes", "source", "type")
        or _dig(attrs, "payments", 0, "attributes", "source", "type")
    )
    failure = (
        attrs.get("failure_reason")
        or attrs.get("failed_message")
        or _dig(attrs, "last_payment_error", "failed_message")
    )
    return PaymentCorrelation(
        checkout_id=checkout_id,
        payment_intent_id=payment_intent_id,
        provider_payment_method=method if isinstance(method, str) else None,
        failure_reason=failure if isinstance(failure, str) else None,
    )


async def find_payment(correlation: PaymentCorrelation) -> Payment | None:
    payment = None
    if correlation.checkout_id:
        payment = await Payment.find_one(Payment.checkout_id == correlation.checkout_id)
    if not payment and correlation.payment_intent_id:
        payment = await Payment.find_one(Payment.payment_intent_id == correlation.payment_intent_id)
    return payment


async def handle_webhook(raw_body: bytes, signature: str | None) -> PaymentWebhookEvent:
    """Verify the PayMongo signature, then ingest. Raises only for bad input or storage failure."""
    settings = get_settings()
    if not settings.paymongo_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not signature or not verify_paymongo_webhook(
        raw_body, signature, settings.paymongo_webhook_secret, settings.paymongo_livemode
    ):
        log.warning("webhook_signature_invalid")
        raise BadRequestError("Invalid webhook signature")
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequestError("Webhook body is not valid JSON") from e
    event_id, event_type = parse_envelope(body)
    return await ingest(event_id, event_type, body)


async def ingest(event_id: str, event_type: str, payload: dict[str, Any]) -> PaymentWebhookEvent:
    """Persist the event once, then process it unless it was already processed."""
    bind_context(event_id=event_id)
    event = await PaymentWebhookEvent.find_one(PaymentWebhookEvent.event_id == event_id)
    if event and event.processed:
        log.info("webhook_replay_ignored", event_type=event_type, outcome=event.outcome)
        return event
    if event is None:
        event = PaymentWebhookEvent(event_id=event_id, event_type=event_type, payload=payload)
        try:
            await event.insert()
        except DuplicateKeyError:
            # concurrent delivery of the same event; that request owns processing
            log.info("webhook_concurrent_delivery", event_type=event_type)
            return await PaymentWebhookEvent.find_one(PaymentWebhookEvent.event_id == event_id)
    log.info("webhook_ingested", event_type=event_type)
    return await process(event)


async def process(event: PaymentWebhookEvent) -> PaymentWebhookEvent:
    event.attempts += 1
    try:
        await _dispatch(event)
    except DuplicatePayment as e:
        return await _record(event, WebhookOutcome.DUPLICATE, e.message)
    except (PaymentDeadlineExceeded, InvalidStateTransition) as e:
        return await _record(event, WebhookOutcome.REJECTED, e.message)
    except UnknownWebhookEvent as e:
        log.info("webhook_unhandled_type", event_type=event.event_type)
        return await _record(event, WebhookOutcome.IGNORED, e.message)
    except Exception as e:  # noqa: BLE001 - anything else stays retriable
        log.exception("webhook_failed", event_type=event.event_type, attempts=event.attempts)
        message = e.message if isinstance(e, WebhookProcessingFailure) else f"Webhook handling failed: {e}"
        return await _record(event, WebhookOutcome.FAILED, message)
    return await _record(event, WebhookOutcome.PROCESSED, None)


async def _dispatch(event: PaymentWebhookEvent) -> None:
    action = EVENT_ALIASES.get(event.event_type)
    if action is None:
        raise UnknownWebhookEvent(event.event_type)
    correlation = extract_correlation(event.payload)
    payment = await find_payment(correlation)
    if not payment:
        raise WebhookProcessingFailure(
            "Payment not found for webhook",
            details=correlation.model_dump(exclude_none=True),
        )
    bind_context(request_number=payment.request_number)
    if action == PAYMENT_PAID:
        await payments_service.mark_paid(
            payment,
            payment_intent_id=correlation.payment_intent_id,
            provider_payment_method=correlation.provider_payment_method,
        )
    else:
        await payments_service.mark_failed(payment, correlation.failure_reason)


async def _record(event: PaymentWebhookEvent, outcome: WebhookOutcome, message: str | None) -> PaymentWebhookEvent:
    retriable = outcome == WebhookOutcome.FAILED
    event.processed = not retriable
    event.processed_at = None if retriable else datetime.utcnow()
    event.outcome = outcome
    event.error_message = message[:MAX_ERROR_LENGTH] if message else None
    await event.save()
    log.info("webhook_recorded", outcome=outcome.value, processed=event.processed, attempts=event.attempts)
    return event


async def reprocess(event_id: str) -> PaymentWebhookEvent:
    event = await PaymentWebhookEvent.find_one(PaymentWebhookEvent.event_id == event_id)
    if not event:
        raise NotFoundError("Webhook event not found")
    if event.processed:
        return event
    bind_context(event_id=event_id)
    return await process(event)


async def reprocess_pending(limit: int | None = None, max_attempts: int | None = None) -> int:
    """Retry sweep over events left processed=False. Returns how many were settled this run."""
    settings = get_settings()
    limit = limit or settings.webhook_reprocess_batch
    max_attempts = max_attempts or settings.webhook_max_attempts
    events = (
        await PaymentWebhookEvent.find(
            PaymentWebhookEvent.processed == False,  # noqa: E712
            PaymentWebhookEvent.attempts < max_attempts,
        )
        .sort(+PaymentWebhookEvent.created_at)
        .limit(limit)
        .to_list()
    )
    settled = 0
    for event in events:
        bind_context(event_id=event.event_id)
        event = await process(event)
        if event.processed:
            settled += 1
    if events:
        log.info("webhook_reprocess", candidates=len(events), settled=settled)
    return settled


async def list_events(processed: bool | None, limit: int, offset: int) -> list[PaymentWebhookEvent]:
    query = (
        PaymentWebhookEvent.find(PaymentWebhookEvent.processed == processed)
        if processed is not None
        else PaymentWebhookEvent.find_all()
    )
    return await query.sort(-PaymentWebhookEvent.created_at).skip(offset).limit(limit).to_list()
