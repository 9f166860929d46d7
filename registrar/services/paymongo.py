"""PayMongo checkout sessions (digital payments: card, GCash, Maya, GrabPay)."""

from typing import Any

import httpx
from fastapi import status

from registrar.core.config import get_settings
from registrar.core.exceptions import AppError, BadRequestError
from registrar.core.logging import get_logger
from registrar.models.document_request import DocumentRequest

log = get_logger(__name__)

PAYMENT_METHOD_TYPES = ["card", "gcash", "paymaya", "grab_pay"]
CURRENCY = "PHP"


class PaymentProviderError(AppError):
    def __init__(self, message: str = "Payment service temporarily unavailable", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="PAYMENT_PROVIDER_UNAVAILABLE",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


def checkout_payload(request: DocumentRequest, student_email: str | None = None, student_name: str | None = None) -> dict:
    settings = get_settings()
    attributes: dict[str, Any] = {
        "line_items": [
            {
                # PayMongo amounts are in centavos, per unit
                "amount": request.unit_price * 100,
                "currency": CURRENCY,
                "name": request.document_type.label,
                "description": f"Document Request: {request.document_type.value} ({request.processing_type.value})",
                "quantity": request.quantity,
            }
        ],
        "payment_method_types": PAYMENT_METHOD_TYPES,
        "success_url": settings.paymongo_success_url.format(request_number=request.request_number),
        "cancel_url": settings.paymongo_cancel_url.format(request_number=request.request_number),
        "reference_number": request.request_number,
        "description": f"Document Request #{request.request_number}",
        "metadata": {"request_number": request.request_number},
    }
    if student_email:
        attributes["billing"] = {"name": student_name or "Student", "email": student_email}
    return {"data": {"attributes": attributes}}


async def create_checkout_session(
    request: DocumentRequest,
    student_email: str | None = None,
    student_name: str | None = None,
) -> dict[str, Any]:
    """Create a checkout session; return checkout_id, checkout_url and payment_intent_id (if issued)."""
    settings = get_settings()
    if not settings.paymongo_secret_key:
        raise BadRequestError("Payments not configured")
    body = checkout_payload(request, student_email, student_name)
    try:
        async with httpx.AsyncClient(
            base_url=settings.paymongo_base_url,
            auth=(settings.paymongo_secret_key, ""),
            timeout=settings.paymongo_timeout_seconds,
        ) as client:
            resp = await client.post("/checkout_sessions", json=body)
    except httpx.HTTPError as e:
        log.error("paymongo_checkout_exception", request_number=request.request_number, error=str(e))
        raise PaymentProviderError() from e
    if resp.status_code >= 400:
        log.error(
            "paymongo_checkout_failed",
            request_number=request.request_number,
            status_code=resp.status_code,
            body=resp.text[:500],
        )
        raise PaymentProviderError("Failed to create checkout session", details={"status_code": resp.status_code})
    data = resp.json().get("data", {})
    attrs = data.get("attributes", {})
    intent = attrs.get("payment_intent") or {}
    return {
        "checkout_id": data.get("id"),
        "checkout_url": attrs.get("checkout_url"),
        "payment_intent_id": intent.get("id") if isinstance(intent, dict) else None,
    }
