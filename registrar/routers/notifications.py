from fastapi import APIRouter, Depends, Query

from registrar.deps import get_current_user, object_id_or_404
from registrar.models.notification import Notification
from registrar.models.user import User
from registrar.services import notifications as notifications_service

router = APIRouter()


def _to_dict(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "kind": n.kind,
        "title": n.title,
        "message": n.message,
        "request_number": n.request_number,
        "read": n.read_at is not None,
        "created_at": n.created_at.isoformat(),
    }


@router.get("")
async def notifications_list(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = await notifications_service.list_notifications(user.id, limit, offset)
    return {"notifications": [_to_dict(n) for n in items], "limit": limit, "offset": offset}


@router.post("/{notification_id}/read")
async def notification_read(notification_id: str, user: User = Depends(get_current_user)):
    n = await notifications_service.mark_read(object_id_or_404(notification_id, "Notification"), user.id)
    return _to_dict(n)
