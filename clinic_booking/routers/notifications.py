# clinic_booking/routers/notifications.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import Actor, get_actor
from ..database import get_db
from ..services import inbox

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    result = inbox.list_notifications(db, actor.user_id, page, limit, unread_only)
    return {
        "success": True,
        "data": schemas.NotificationPage(
            notifications=[schemas.NotificationOut.model_validate(n) for n in result["notifications"]],
            pagination=schemas.Pagination(**result["pagination"]),
            unread_count=result["unread_count"],
        ),
    }

@router.put("/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    row = inbox.mark_read(db, actor.user_id, notification_id)
    return {
        "success": True,
        "message": "Notificación marcada como leída",
        "data": schemas.NotificationOut.model_validate(row),
    }

@router.post("/read-all")
def mark_all_notifications_read(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    count = inbox.mark_all_read(db, actor.user_id)
    return {"success": True, "message": "Todas las notificaciones marcadas como leídas", "data": {"updated": count}}
