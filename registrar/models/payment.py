from datetime import datetime
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field


class PaymentMethod(str, Enum):
    CASH = "cash"
    DIGITAL = "digital"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Payment(Document):
    """One payment attempt for a document request. Append-only history per request."""
    request_id: PydanticObjectId
    request_number: str
    payment_method: PaymentMethod
    amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    # digital path (PayMongo)
    checkout_id: str | None = None
    payment_intent_id: str | None = None
    provider_payment_method: str | None = None  # gcash, card, paymaya, ...
    checkout_url: str | None = None
    # cash path
    payment_reference_number: str | None = None
    cashier_id: str | None = None
    official_receipt_number: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payments"
        indexes = [
            [("request_id", 1), ("created_at", 1)],
            [("checkout_id", 1)],
            [("payment_intent_id", 1)],
            [("payment_reference_number", 1)],
        ]

    @property
    def has_provider_ids(self) -> bool:
        return bool(self.checkout_id or self.payment_intent_id)
