from datetime import datetime
from enum import Enum

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class DocumentType(str, Enum):
    TRANSCRIPT = "transcript"
    CERTIFICATE = "certificate"
    DIPLOMA = "diploma"

    @property
    def label(self) -> str:
        return {
            DocumentType.TRANSCRIPT: "Transcript of Records",
            DocumentType.CERTIFICATE: "Certificate",
            DocumentType.DIPLOMA: "Diploma (certified copy)",
        }[self]


class ProcessingType(str, Enum):
    REGULAR = "regular"
    RUSH = "rush"


class DocumentRequestStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_EXPIRED = "payment_expired"
    PAID = "paid"
    PROCESSING = "processing"
    READY_FOR_PICKUP = "ready_for_pickup"
    RELEASED = "released"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES

    def can_transition_to(self, target: "DocumentRequestStatus") -> bool:
        return target in TRANSITIONS[self]


S = DocumentRequestStatus

TRANSITIONS: dict[DocumentRequestStatus, frozenset[DocumentRequestStatus]] = {
    S.PENDING_PAYMENT: frozenset({S.PAID, S.PAYMENT_EXPIRED, S.CANCELLED}),
    S.PAYMENT_EXPIRED: frozenset({S.CANCELLED}),
    S.PAID: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.READY_FOR_PICKUP, S.REJECTED, S.CANCELLED}),
    S.READY_FOR_PICKUP: frozenset({S.RELEASED, S.CANCELLED}),
    S.RELEASED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
}

FINAL_STATUSES = frozenset({S.RELEASED, S.CANCELLED, S.REJECTED})

# A payment has already settled the request once it reaches any of these.
SETTLED_STATUSES = frozenset({S.PAID, S.PROCESSING, S.READY_FOR_PICKUP, S.RELEASED})

# Students may withdraw only before anything was paid.
STUDENT_CANCELLABLE = frozenset({S.PENDING_PAYMENT, S.PAYMENT_EXPIRED})


class DocumentRequest(Document):
    request_number: Indexed(str, unique=True)
    student_id: PydanticObjectId
    student_number: str | None = None
    document_type: DocumentType
    processing_type: ProcessingType = ProcessingType.REGULAR
    quantity: int
    purpose: str
    unit_price: int
    amount: int  # unit_price * quantity, whole pesos
    status: DocumentRequestStatus = DocumentRequestStatus.PENDING_PAYMENT
    payment_deadline: datetime
    payment_method: str | None = None
    paid_payment_id: PydanticObjectId | None = None
    processed_by: str | None = None
    released_by: str | None = None
    released_to: str | None = None
    released_id_type: str | None = None
    released_at: datetime | None = None
    rejection_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "document_requests"
        indexes = [
            [("student_id", 1), ("created_at", -1)],
            [("status", 1), ("payment_deadline", 1)],
        ]

    def is_past_deadline(self, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) > self.payment_deadline
