from fastapi import APIRouter, Depends
from pydantic import BaseModel

from registrar.deps import object_id_or_404, require_cashier
from registrar.models.document_request import DocumentRequest
from registrar.models.user import User
from registrar.routers.document_requests import payment_to_dict, request_to_dict
from registrar.services import payments as payments_service

router = APIRouter()


class VerifyPaymentRequest(BaseModel):
    payment_reference_number: str


class ConfirmPaymentRequest(BaseModel):
    payment_reference_number: str
    official_receipt_number: str


@router.post("/verify-payment")
async def cashier_verify_payment(body: VerifyPaymentRequest, user: User = Depends(require_cashier)):
    """Look up a pending cash payment by the reference number the student presents."""
    payment = await payments_service.find_pending_cash(body.payment_reference_number)
    r = await DocumentRequest.get(payment.request_id)
    return {
        "payment": payment_to_dict(payment),
        "document_request": request_to_dict(r) if r else None,
    }


@router.post("/confirm-payment")
async def cashier_confirm_payment(body: ConfirmPaymentRequest, user: User = Depends(require_cashier)):
    payment = await payments_service.confirm_cash_payment(
        body.payment_reference_number,
        user,
        body.official_receipt_number,
    )
    return {"payment": payment_to_dict(payment), "receipt_id": str(payment.id)}


@router.get("/receipts/{payment_id}")
async def cashier_receipt(payment_id: str, user: User = Depends(require_cashier)):
    """Official receipt data for printing."""
    return await payments_service.receipt(object_id_or_404(payment_id, "Receipt"))
