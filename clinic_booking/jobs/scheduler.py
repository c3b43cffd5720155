# clinic_booking/jobs/scheduler.py
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..services.appointments import send_due_reminders
from ..services.notifications import get_notifier
from ..services.payments import get_payment_processor
from ..services.vip import VipService

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None


def reminder_job():
    db: Session = SessionLocal()
    try:
        send_due_reminders(db, get_notifier())
    except Exception:
        logger.exception("Error en job de recordatorios")
        db.rollback()
    finally:
        db.close()

def vip_expiry_job():
    db: Session = SessionLocal()
    try:
        expired = VipService(db, get_notifier(), get_payment_processor()).sweep_expired()
        logger.info("Job de expiración VIP: %s suscripciones expiradas", expired)
    except Exception:
        logger.exception("Error en job de expiración VIP")
        db.rollback()
    finally:
        db.close()

def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is not None:
        return _scheduler
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(reminder_job, CronTrigger(minute=0), id="reminders")  # cada hora
    scheduler.add_job(vip_expiry_job, CronTrigger(hour=2, minute=0), id="vip_expiry")  # diario 02:00
    scheduler.start()
    _scheduler = scheduler
    logger.info("Scheduler iniciado (tz=%s)", settings.TIMEZONE)
    return scheduler

def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
