from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from acheiumpro.auth import require_actor
from acheiumpro.models import (
    DeviceTokenRegisterRequest,
    NotificationReadRequest,
    NotificationRecord,
    User,
)
from acheiumpro.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=dict)
def list_notifications(
    status: Optional[str] = Query(default=None),
    actor: User = Depends(require_actor),
):
    rows = notification_store.list_for_user(user_id=actor.id, unread_only=status == "unread")
    return {"notifications": [row.model_dump(mode="json") for row in rows]}


@router.patch("", response_model=dict)
def mark_notifications_read(payload: NotificationReadRequest, actor: User = Depends(require_actor)):
    if not payload.ids:
        raise HTTPException(status_code=400, detail="ids are required")
    notification_store.mark_many_read(user_id=actor.id, notification_ids=payload.ids)
    return {"ok": True}


@router.post("/register-device", response_model=dict)
def register_device(payload: DeviceTokenRegisterRequest, actor: User = Depends(require_actor)):
    notification_store.register_device_token(
        user_id=actor.id,
        device_token=payload.device_token,
        platform=payload.platform,
    )
    return {"status": "ok"}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(notification_id: int, actor: User = Depends(require_actor)):
    updated = notification_store.mark_read(user_id=actor.id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated
