"""Cron bodies: payment-deadline expiry and webhook retry."""

from datetime import datetime

from registrar.core.config import get_settings
from registrar.core.logging import get_logger
from registrar.services import document_requests as requests_service
from registrar.services import webhooks as webhooks_service

log = get_logger(__name__)


async def run_expire_overdue_requests(now: datetime | None = None) -> int:
    """Expire every unpaid request whose payment deadline has passed. Returns how many."""
    expired = await requests_service.expire_overdue(now or datetime.utcnow())
    log.info("expire_overdue_requests", expired=expired)
    return expired


async def run_reprocess_webhook_events() -> int:
    """Retry stored webhook events that failed transiently (e.g. payment row not yet visible)."""
    settings = get_settings()
    settled = await webhooks_service.reprocess_pending(
        limit=settings.webhook_reprocess_batch,
        max_attempts=settings.webhook_max_attempts,
    )
    log.info("reprocess_webhook_events", settled=settled)
    return settled
