from registrar.models.user import User
from registrar.models.document_request import DocumentRequest
from registrar.models.payment import Payment
from registrar.models.payment_webhook_event import PaymentWebhookEvent
from registrar.models.notification import Notification
from registrar.models.audit_log import AuditLog
from registrar.models.failed_job import FailedJob

__all__ = [
    "User",
    "DocumentRequest",
    "Payment",
    "PaymentWebhookEvent",
    "Notification",
    "AuditLog",
    "FailedJob",
]
