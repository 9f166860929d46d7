"""Idempotency log for provider webhooks, keyed by the provider's event id."""

from datetime import datetime
from enum import Enum
from typing import Any

from beanie import Document, Indexed
from pydantic import Field


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"  # unknown event type, acknowledged
    DUPLICATE = "duplicate"  # request already settled by another payment
    REJECTED = "rejected"  # late or illegal for the request's state
    FAILED = "failed"  # retriable; processed stays False


class PaymentWebhookEvent(Document):
    event_id: Indexed(str, unique=True)
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    processed: bool = False
    processed_at: datetime | None = None
    outcome: WebhookOutcome | None = None
    error_message: str | None = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payment_webhook_events"
        indexes = [[("processed", 1), ("created_at", 1)]]
