from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field


class Notification(Document):
    user_id: PydanticObjectId
    request_number: str | None = None
    kind: str  # request_submitted, payment_confirmed, ready_for_pickup, ...
    title: str
    message: str
    read_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "notifications"
        indexes = [[("user_id", 1), ("created_at", -1)]]
