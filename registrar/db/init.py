import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from registrar.core.config import get_settings
from registrar.models.audit_log import AuditLog
from registrar.models.document_request import DocumentRequest
from registrar.models.failed_job import FailedJob
from registrar.models.notification import Notification
from registrar.models.payment import Payment
from registrar.models.payment_webhook_event import PaymentWebhookEvent
from registrar.models.user import User

DOCUMENT_MODELS = [
    User,
    DocumentRequest,
    Payment,
    PaymentWebhookEvent,
    Notification,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database=None) -> None:
    """Bind Beanie models. Tests pass their own database handle."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
