# clinic_booking/services/inbox.py
"""
Bandeja de notificaciones del usuario: las filas que deja NotificationService
al entregar cada aviso, con su marca de leída.
"""
from __future__ import annotations
import logging
from typing import Any

from sqlalchemy.orm import Session

from .. import models
from ..errors import NotFoundError
from .appointments import paginate

logger = logging.getLogger(__name__)


def _unread(db: Session, user_id: int):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .filter(models.Notification.is_read.is_(False))
    )

def list_notifications(db: Session, user_id: int, page: int = 1, limit: int = 20,
                       unread_only: bool = False) -> dict[str, Any]:
    q = _unread(db, user_id) if unread_only else (
        db.query(models.Notification).filter(models.Notification.user_id == user_id)
    )
    q = q.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
    items, pagination = paginate(q, page, limit)
    return {
        "notifications": items,
        "pagination": pagination,
        "unread_count": _unread(db, user_id).count(),
    }

def mark_read(db: Session, user_id: int, notification_id: int) -> models.Notification:
    row = db.get(models.Notification, notification_id)
    if row is None or row.user_id != user_id:
        raise NotFoundError("Notificación no encontrada")
    if not row.is_read:
        row.is_read = True
        row.read_at = models.utcnow()
        db.commit()
        db.refresh(row)
    return row

def mark_all_read(db: Session, user_id: int) -> int:
    count = _unread(db, user_id).update(
        {models.Notification.is_read: True, models.Notification.read_at: models.utcnow()},
        synchronize_session=False,
    )
    db.commit()
    if count:
        logger.info("Usuario %s marcó %s notificaciones como leídas", user_id, count)
    return count
