# clinic_booking/routers/admin.py
from __future__ import annotations
import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..auth import require_admin_token
from ..config import settings
from ..database import get_db
from ..services.appointments import send_due_reminders
from ..services.notifications import NotificationService, get_notifier
from ..services.payments import PaymentProcessor, get_payment_processor
from ..services.vip import VipService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])

# ──────────────────────────────────────────────────────────────────────────────
# Básicos
# (main.py monta este router con prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/ping")
def admin_ping():
    return {"ok": True, "ts": datetime.utcnow().isoformat()}

@router.get("/health")
def admin_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning("Health check de BD falló: %s", e)
        db_ok = False
    return {
        "ok": db_ok,
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "tz": settings.TIMEZONE,
        "db": "ok" if db_ok else "error",
        "scheduler": settings.ENABLE_SCHEDULER,
        "ts": datetime.utcnow().isoformat(),
    }

# ──────────────────────────────────────────────────────────────────────────────
# Disparo manual de jobs (mismo código que corre el scheduler)
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/jobs/vip-expiry", dependencies=[Depends(require_admin_token)])
def run_vip_expiry(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
    payments: PaymentProcessor = Depends(get_payment_processor),
):
    expired = VipService(db, notifier, payments).sweep_expired()
    return {"ok": True, "expired": expired}

@router.post("/jobs/reminders", dependencies=[Depends(require_admin_token)])
def run_reminders(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    sent = send_due_reminders(db, notifier)
    return {"ok": True, "sent": sent}
