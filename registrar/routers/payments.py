from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from registrar.deps import require_student
from registrar.models.user import User
from registrar.routers.document_requests import payment_to_dict
from registrar.services import document_requests as requests_service
from registrar.services import payments as payments_service
from registrar.services import webhooks as webhooks_service

router = APIRouter()


class PaymentStartRequest(BaseModel):
    request_number: str


@router.post("/cash")
async def create_cash_payment(body: PaymentStartRequest, user: User = Depends(require_student)):
    """Issue the cash payment reference number to present at the cashier window."""
    r = await requests_service.get_for_user(body.request_number, user)
    payment = await payments_service.create_cash_payment(r, user)
    return payment_to_dict(payment)


@router.post("/checkout")
async def create_checkout(body: PaymentStartRequest, user: User = Depends(require_student)):
    """Create a PayMongo checkout session; the frontend redirects to checkout_url."""
    r = await requests_service.get_for_user(body.request_number, user)
    payment = await payments_service.start_checkout(r, user)
    return payment_to_dict(payment)


@router.post("/webhook")
async def paymongo_webhook(
    request: Request,
    paymongo_signature: str | None = Header(None, alias="Paymongo-Signature"),
):
    """PayMongo webhook: stored once per event id, then paid/failed applied (idempotent)."""
    body = await request.body()
    await webhooks_service.handle_webhook(body, paymongo_signature)
    return {"status": "ok"}
