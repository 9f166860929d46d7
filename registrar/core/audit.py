"""Audit log for registrar actions (request lifecycle, payments, role changes)."""

from typing import Any

from beanie import PydanticObjectId

from registrar.core.exceptions import NotFoundError
from registrar.models.audit_log import AuditLog


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    description: str | None = None,
) -> None:
    """Append to audit_logs collection. user_id is None for webhook/worker actions."""
    await AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        metadata=metadata or {},
    ).insert()


async def list_events(
    limit: int,
    offset: int,
    event_type: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
) -> tuple[list[AuditLog], int]:
    filters = []
    if event_type:
        filters.append(AuditLog.event_type == event_type)
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    if user_id:
        filters.append(AuditLog.user_id == user_id)
    query = AuditLog.find(*filters)
    total = await query.count()
    items = await query.sort(-AuditLog.created_at).skip(offset).limit(limit).to_list()
    return items, total


async def get_event(audit_id: PydanticObjectId) -> AuditLog:
    entry = await AuditLog.get(audit_id)
    if not entry:
        raise NotFoundError("Audit log entry not found")
    return entry
