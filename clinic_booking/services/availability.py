# clinic_booking/services/availability.py
from __future__ import annotations
import logging
from datetime import datetime, date, time
from typing import List, NamedTuple, Optional

import pytz
from sqlalchemy.orm import Session

from ..config import settings
from .. import models

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 6


class AvailabilityCheck(NamedTuple):
    is_available: bool
    alternatives: List[str]


# ====== Utilidades de tiempo ======
def _to_minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)

def _to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"

def _clinic_tz(clinic: Optional[models.Clinic]):
    name = (clinic.timezone if clinic is not None else None) or settings.TIMEZONE
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning("Timezone desconocida '%s' en clínica; usando %s", name, settings.TIMEZONE)
        return pytz.timezone(settings.TIMEZONE)

def slot_start_local(clinic: Optional[models.Clinic], day: date, hhmm: str) -> datetime:
    """Inicio del slot como datetime aware en la TZ de la clínica."""
    h, m = hhmm.split(":")
    return _clinic_tz(clinic).localize(datetime.combine(day, time(int(h), int(m))))

def is_future_slot(clinic: Optional[models.Clinic], day: date, hhmm: str) -> bool:
    """True si (day, hhmm) es estrictamente posterior a "ahora" en la clínica."""
    start = slot_start_local(clinic, day, hhmm)
    return start > datetime.now(start.tzinfo)

# ====== Ocupación en BD ======
def _booked_times(db: Session, clinic_id: int, day: date, exclude_id: Optional[int] = None) -> set[str]:
    """
    Horas ocupadas por citas no terminales (SCHEDULED/CONFIRMED/IN_PROGRESS)
    de la clínica en ese día.
    """
    q = (
        db.query(models.Appointment.time)
        .filter(models.Appointment.clinic_id == clinic_id)
        .filter(models.Appointment.date == day)
        .filter(models.Appointment.status.in_(models.ACTIVE_STATUSES))
    )
    if exclude_id is not None:
        q = q.filter(models.Appointment.id != exclude_id)
    booked = {t for (t,) in q.all()}
    logger.debug("DB booked clinic=%s day=%s times=%s", clinic_id, day, sorted(booked))
    return booked

def is_slot_available(db: Session, clinic_id: int, day: date, hhmm: str,
                      exclude_id: Optional[int] = None) -> bool:
    """
    Chequeo de un único slot (el que se usa al reservar). `exclude_id` permite
    ignorar la propia cita al reprogramar o editar.
    """
    q = (
        db.query(models.Appointment.id)
        .filter(models.Appointment.clinic_id == clinic_id)
        .filter(models.Appointment.date == day)
        .filter(models.Appointment.time == hhmm)
        .filter(models.Appointment.status.in_(models.ACTIVE_STATUSES))
    )
    if exclude_id is not None:
        q = q.filter(models.Appointment.id != exclude_id)
    return q.first() is None

# ====== Slots disponibles ======
def available_slots(db: Session, clinic: models.Clinic, day: date,
                    service: Optional[models.Service] = None) -> List[str]:
    """
    Genera slots de SLOT_MINUTES entre la apertura y el cierre de la clínica y
    elimina los ocupados en BD y los que no alcanzan a terminar antes del cierre.
    Se recalcula en cada llamada; no es autoritativo (ver is_slot_available).
    """
    if day.isoweekday() not in clinic.working_day_set:
        return []

    open_min = _to_minutes(clinic.open_time or settings.DEFAULT_OPEN_TIME)
    close_min = _to_minutes(clinic.close_time or settings.DEFAULT_CLOSE_TIME)
    duration = (service.duration if service is not None else None) or settings.DEFAULT_SERVICE_DURATION
    step = settings.SLOT_MINUTES

    booked = _booked_times(db, clinic.id, day)

    slots = []
    cur = open_min
    while cur < close_min:
        hhmm = _to_hhmm(cur)
        if hhmm not in booked and cur + duration <= close_min:
            slots.append(hhmm)
        cur += step

    return slots

def check_availability(db: Session, clinic: models.Clinic, day: date, hhmm: str,
                       service: Optional[models.Service] = None) -> AvailabilityCheck:
    """Chequeo puntual + hasta MAX_ALTERNATIVES horarios libres del mismo día si está tomado."""
    if is_slot_available(db, clinic.id, day, hhmm):
        return AvailabilityCheck(True, [])
    alternatives = [s for s in available_slots(db, clinic, day, service) if s != hhmm]
    return AvailabilityCheck(False, alternatives[:MAX_ALTERNATIVES])
