# clinic_booking/services/appointments.py
"""
Ciclo de vida de las citas.

    SCHEDULED   --confirm-->    CONFIRMED --complete--> COMPLETED
    SCHEDULED   --cancel-->     CANCELLED
    CONFIRMED   --cancel-->     CANCELLED
    CONFIRMED   --reschedule--> SCHEDULED
    IN_PROGRESS --complete-->   COMPLETED

COMPLETED y CANCELLED son terminales. Las citas nunca se borran.

Cada operación que ocupa un slot hace un chequeo previo y luego confía en el
índice único parcial `uq_appointments_active_slot`: si dos requests pasan el
chequeo a la vez, el commit del segundo falla y se traduce a ConflictError.
"""
from __future__ import annotations
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import Actor
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .availability import is_future_slot, is_slot_available, slot_start_local
from .notifications import NotificationService
from .pricing import calculate_price
from .vip import is_user_vip

logger = logging.getLogger(__name__)

_PERIODS = {
    "week": relativedelta(days=7),
    "month": relativedelta(months=1),
    "quarter": relativedelta(months=3),
    "year": relativedelta(years=1),
}

REMINDABLE_STATUSES = (models.AppointmentStatus.SCHEDULED, models.AppointmentStatus.CONFIRMED)

# Postgres reporta el nombre del índice; SQLite sólo las columnas
_SLOT_VIOLATION_MARKERS = (
    "uq_appointments_active_slot",
    "appointments.clinic_id, appointments.date, appointments.time",
)


def is_slot_violation(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", None) or exc)
    return any(marker in msg for marker in _SLOT_VIOLATION_MARKERS)


def paginate(q, page: int, limit: int) -> tuple[list, dict]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    total = q.count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return items, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


class AppointmentService:
    def __init__(self, db: Session, notifier: NotificationService):
        self.db = db
        self.notifier = notifier

    # ------------------ helpers ------------------

    def _get(self, appointment_id: int) -> models.Appointment:
        appt = self.db.get(models.Appointment, appointment_id)
        if appt is None:
            raise NotFoundError("Cita no encontrada")
        return appt

    def _get_for_actor(self, appointment_id: int, actor: Actor, action: str) -> models.Appointment:
        appt = self._get(appointment_id)
        if not actor.is_staff and appt.user_id != actor.user_id:
            raise ForbiddenError(f"No tienes permisos para {action} esta cita")
        return appt

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        if not actor.is_staff:
            raise ForbiddenError("Acceso restringido al staff de la clínica")

    def _clinic(self, clinic_id: Optional[int]) -> models.Clinic:
        clinic = self.db.get(models.Clinic, clinic_id) if clinic_id is not None else None
        if clinic is None:
            raise NotFoundError("Clínica no encontrada")
        return clinic

    def _active_service(self, service_id: int, clinic_id: int,
                        message: str = "Servicio no encontrado o no disponible") -> models.Service:
        service = (
            self.db.query(models.Service)
            .filter(models.Service.id == service_id)
            .filter(models.Service.clinic_id == clinic_id)
            .filter(models.Service.is_active.is_(True))
            .first()
        )
        if service is None:
            raise NotFoundError(message)
        return service

    def _get_user(self, user_id: int) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFoundError("Usuario no encontrado")
        return user

    def _commit_slot(self, conflict_message: str) -> None:
        """
        Commit que traduce la violación del índice de slot a ConflictError.
        Cualquier otra violación de integridad se propaga tal cual.
        """
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not is_slot_violation(e):
                raise
            logger.info("Carrera por slot resuelta a favor de otro request: %s", conflict_message)
            raise ConflictError(conflict_message)

    def _quote(self, service: models.Service, user_id: int) -> tuple[float, float, float]:
        vip = is_user_vip(self.db, user_id)
        if service.is_vip_only and not vip:
            raise ForbiddenError("Servicio exclusivo para miembros VIP")
        quote = calculate_price(service.price, service.vip_discount, vip)
        return service.price, quote.final_price, quote.applied_discount

    # ------------------ operaciones ------------------

    def create(self, user_id: int, clinic_id: Optional[int], data: schemas.AppointmentCreate) -> models.Appointment:
        user = self._get_user(user_id)
        clinic = self._clinic(clinic_id)
        service = self._active_service(data.service_id, clinic.id)

        if not is_slot_available(self.db, clinic.id, data.date, data.time):
            raise ConflictError("Horario no disponible")
        if not is_future_slot(clinic, data.date, data.time):
            raise ValidationError("La fecha debe ser futura")

        original, final, discount = self._quote(service, user_id)
        appt = models.Appointment(
            date=data.date,
            time=data.time,
            notes=data.notes,
            user_id=user_id,
            service_id=service.id,
            clinic_id=clinic.id,
            status=models.AppointmentStatus.SCHEDULED,
            original_price=original,
            final_price=final,
            vip_discount=discount,
        )
        self.db.add(appt)
        self._commit_slot("Horario no disponible")
        self.db.refresh(appt)

        logger.info("Cita creada: %s para usuario %s (%s %s)", appt.id, user_id, appt.date, appt.time)
        self.notifier.notify(models.NotificationType.APPOINTMENT_CONFIRMATION, appt, user)
        return appt

    def update(self, actor: Actor, appointment_id: int, data: schemas.AppointmentUpdate) -> models.Appointment:
        appt = self._get_for_actor(appointment_id, actor, "modificar")
        provided = data.model_fields_set
        if not provided:
            raise ValidationError("No hay datos para actualizar")
        if data.status is not None and not actor.is_staff:
            raise ForbiddenError("Solo el staff puede cambiar el estado de una cita")

        new_date = data.date or appt.date
        new_time = data.time or appt.time
        slot_changed = (new_date, new_time) != (appt.date, appt.time)
        service_changed = data.service_id is not None and data.service_id != appt.service_id

        if (slot_changed or service_changed) and appt.status in models.TERMINAL_STATUSES:
            raise ValidationError("No se puede modificar una cita cancelada o completada")

        # Todas las validaciones antes de tocar la entidad
        if slot_changed:
            if not is_slot_available(self.db, appt.clinic_id, new_date, new_time, exclude_id=appt.id):
                raise ConflictError("Horario no disponible")
            if not is_future_slot(appt.clinic, new_date, new_time):
                raise ValidationError("La fecha debe ser futura")
        if service_changed:
            service = self._active_service(data.service_id, appt.clinic_id, "Servicio no encontrado")
            prices = self._quote(service, appt.user_id)

        old_date, old_time, old_status = appt.date, appt.time, appt.status
        if slot_changed:
            appt.date = new_date
            appt.time = new_time
        if service_changed:
            appt.service = service
            appt.original_price, appt.final_price, appt.vip_discount = prices

        if "notes" in provided:
            appt.notes = data.notes

        if data.status is not None and data.status != appt.status:
            appt.status = data.status
            if data.status == models.AppointmentStatus.CANCELLED:
                appt.cancelled_at = models.utcnow()
                appt.cancel_reason = appt.cancel_reason or "No especificado"
            elif data.status == models.AppointmentStatus.COMPLETED:
                appt.completed_at = models.utcnow()

        self._commit_slot("Horario no disponible")
        self.db.refresh(appt)
        logger.info("Cita actualizada: %s por usuario %s", appt.id, actor.user_id)

        if appt.status == models.AppointmentStatus.CANCELLED and old_status != appt.status:
            self.notifier.notify(models.NotificationType.APPOINTMENT_CANCELLATION, appt, appt.user)
        elif slot_changed:
            self.notifier.notify(models.NotificationType.APPOINTMENT_RESCHEDULE, appt, appt.user,
                                 old_date=old_date.strftime("%d/%m/%Y"), old_time=old_time)
        return appt

    def cancel(self, actor: Actor, appointment_id: int, reason: Optional[str] = None) -> models.Appointment:
        appt = self._get_for_actor(appointment_id, actor, "cancelar")
        if appt.status == models.AppointmentStatus.CANCELLED:
            raise ConflictError("La cita ya está cancelada")
        if appt.status == models.AppointmentStatus.COMPLETED:
            raise ConflictError("No se puede cancelar una cita completada")

        appt.status = models.AppointmentStatus.CANCELLED
        appt.cancelled_at = models.utcnow()
        appt.cancel_reason = reason or "No especificado"
        self.db.commit()
        self.db.refresh(appt)

        logger.info("Cita cancelada: %s por usuario %s", appt.id, actor.user_id)
        self.notifier.notify(models.NotificationType.APPOINTMENT_CANCELLATION, appt, appt.user)
        return appt

    def confirm(self, actor: Actor, appointment_id: int) -> models.Appointment:
        self._require_staff(actor)
        appt = self._get(appointment_id)
        if appt.status != models.AppointmentStatus.SCHEDULED:
            raise ValidationError("Solo se pueden confirmar citas programadas")

        appt.status = models.AppointmentStatus.CONFIRMED
        self.db.commit()
        self.db.refresh(appt)

        logger.info("Cita confirmada: %s", appt.id)
        self.notifier.notify(models.NotificationType.APPOINTMENT_CONFIRMATION, appt, appt.user,
                             title="Cita confirmada")
        return appt

    def complete(self, actor: Actor, appointment_id: int, notes: Optional[str] = None) -> models.Appointment:
        self._require_staff(actor)
        appt = self._get(appointment_id)
        if appt.status not in (models.AppointmentStatus.CONFIRMED, models.AppointmentStatus.IN_PROGRESS):
            raise ValidationError("Solo se pueden completar citas confirmadas o en progreso")

        appt.status = models.AppointmentStatus.COMPLETED
        appt.completed_at = models.utcnow()
        if notes:
            appt.notes = notes
        self.db.commit()
        self.db.refresh(appt)
        logger.info("Cita completada: %s", appt.id)
        return appt

    def reschedule(self, actor: Actor, appointment_id: int, new_date: date, new_time: str,
                   reason: Optional[str] = None) -> models.Appointment:
        appt = self._get_for_actor(appointment_id, actor, "reprogramar")
        if appt.status in models.TERMINAL_STATUSES:
            raise ValidationError("No se puede reprogramar una cita cancelada o completada")
        if not is_future_slot(appt.clinic, new_date, new_time):
            raise ValidationError("La nueva fecha debe ser futura")
        if not is_slot_available(self.db, appt.clinic_id, new_date, new_time, exclude_id=appt.id):
            raise ConflictError("El nuevo horario no está disponible")

        old_date, old_time = appt.date, appt.time
        appt.date = new_date
        appt.time = new_time
        # Vuelve a SCHEDULED aunque estuviera confirmada: hay que reconfirmar
        appt.status = models.AppointmentStatus.SCHEDULED
        self._commit_slot("El nuevo horario no está disponible")
        self.db.refresh(appt)

        logger.info("Cita reprogramada: %s %s %s -> %s %s (%s)", appt.id, old_date, old_time,
                    new_date, new_time, reason or "sin motivo")
        self.notifier.notify(models.NotificationType.APPOINTMENT_RESCHEDULE, appt, appt.user,
                             old_date=old_date.strftime("%d/%m/%Y"), old_time=old_time)
        return appt

    # ------------------ consultas ------------------

    def get(self, actor: Actor, appointment_id: int) -> models.Appointment:
        appt = self._get_for_actor(appointment_id, actor, "ver")
        if actor.is_staff and actor.clinic_id is not None and appt.clinic_id != actor.clinic_id:
            raise NotFoundError("Cita no encontrada")
        return appt

    def list_for_user(self, actor: Actor, status: Optional[models.AppointmentStatus] = None,
                      upcoming: bool = False, page: int = 1, limit: int = 10):
        q = self.db.query(models.Appointment).filter(models.Appointment.user_id == actor.user_id)
        if actor.clinic_id is not None:
            q = q.filter(models.Appointment.clinic_id == actor.clinic_id)
        if status is not None:
            q = q.filter(models.Appointment.status == status)
        if upcoming:
            q = q.filter(models.Appointment.date >= date.today())
        q = q.order_by(models.Appointment.date.desc(), models.Appointment.time.desc())
        return paginate(q, page, limit)

    def search(self, actor: Actor, query: Optional[str] = None,
               status: Optional[models.AppointmentStatus] = None,
               date_from: Optional[date] = None, date_to: Optional[date] = None,
               service_id: Optional[int] = None, user_id: Optional[int] = None,
               page: int = 1, limit: int = 20):
        q = self.db.query(models.Appointment)
        if actor.is_staff:
            if actor.clinic_id is not None:
                q = q.filter(models.Appointment.clinic_id == actor.clinic_id)
            if user_id is not None:
                q = q.filter(models.Appointment.user_id == user_id)
        else:
            q = q.filter(models.Appointment.user_id == actor.user_id)
        if status is not None:
            q = q.filter(models.Appointment.status == status)
        if service_id is not None:
            q = q.filter(models.Appointment.service_id == service_id)
        if date_from is not None:
            q = q.filter(models.Appointment.date >= date_from)
        if date_to is not None:
            q = q.filter(models.Appointment.date <= date_to)
        if query:
            like = f"%{query.strip()}%"
            q = (
                q.join(models.Service, models.Service.id == models.Appointment.service_id)
                .join(models.User, models.User.id == models.Appointment.user_id)
                .filter(or_(
                    models.Service.name.ilike(like),
                    models.User.name.ilike(like),
                    models.Appointment.notes.ilike(like),
                ))
            )
        q = q.order_by(models.Appointment.date.asc(), models.Appointment.time.asc())
        return paginate(q, page, limit)

    def history(self, actor: Actor, appointment_id: int) -> List[dict[str, Any]]:
        appt = self._get_for_actor(appointment_id, actor, "ver")
        entries = [{"action": "CREATED", "timestamp": appt.created_at, "details": "Cita creada"}]
        if appt.status == models.AppointmentStatus.CANCELLED:
            entries.append({
                "action": "CANCELLED",
                "timestamp": appt.cancelled_at or appt.updated_at,
                "details": appt.cancel_reason or "Cita cancelada",
            })
        if appt.status == models.AppointmentStatus.COMPLETED:
            entries.append({
                "action": "COMPLETED",
                "timestamp": appt.completed_at or appt.updated_at,
                "details": "Cita completada",
            })
        return sorted(entries, key=lambda e: e["timestamp"])

    def stats(self, actor: Actor, period: str = "month") -> dict[str, Any]:
        """Conteos y facturación del período. Usa sólo precios congelados en cada cita."""
        delta = _PERIODS.get(period, _PERIODS["month"])
        since = models.utcnow() - delta

        q = self.db.query(models.Appointment).filter(models.Appointment.created_at >= since)
        if actor.is_staff and actor.clinic_id is not None:
            q = q.filter(models.Appointment.clinic_id == actor.clinic_id)
        elif not actor.is_staff:
            q = q.filter(models.Appointment.user_id == actor.user_id)

        total = q.count()
        completed_q = q.filter(models.Appointment.status == models.AppointmentStatus.COMPLETED)
        completed = completed_q.count()
        cancelled = q.filter(models.Appointment.status == models.AppointmentStatus.CANCELLED).count()
        scheduled = q.filter(models.Appointment.status.in_(REMINDABLE_STATUSES)).count()
        revenue = completed_q.with_entities(func.coalesce(func.sum(models.Appointment.final_price), 0.0)).scalar()
        return {
            "period": period,
            "total": total,
            "completed": completed,
            "cancelled": cancelled,
            "scheduled": scheduled,
            "revenue": float(revenue or 0.0),
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        }

    def send_reminder(self, actor: Actor, appointment_id: int) -> models.Appointment:
        appt = self._get_for_actor(appointment_id, actor, "enviar recordatorio de")
        if appt.status not in REMINDABLE_STATUSES:
            raise ValidationError("Solo se pueden enviar recordatorios de citas programadas o confirmadas")
        self.notifier.notify(models.NotificationType.APPOINTMENT_REMINDER, appt, appt.user)
        logger.info("Recordatorio enviado para cita: %s", appt.id)
        return appt


def _already_reminded(db: Session, appointment_id: int, since: datetime) -> bool:
    return (
        db.query(models.Notification.id)
        .filter(models.Notification.appointment_id == appointment_id)
        .filter(models.Notification.type == models.NotificationType.APPOINTMENT_REMINDER)
        .filter(models.Notification.created_at >= since)
        .first()
        is not None
    )

def send_due_reminders(db: Session, notifier: NotificationService, now: Optional[datetime] = None) -> int:
    """
    Recordatorios de 24h (citas de mañana) y de 2h (citas que empiezan entre
    2 y 3 horas desde ahora). Omite las que ya recibieron uno en la ventana.
    Pensado para que lo llame el scheduler cada hora.
    """
    now_utc = now or models.utcnow()
    # La fecha de la cita es local: al oeste de UTC puede ser "ayer" en UTC
    today = now_utc.date()
    days = [today + timedelta(days=n) for n in (-1, 0, 1, 2)]
    candidates = (
        db.query(models.Appointment)
        .filter(models.Appointment.date.in_(days))
        .filter(models.Appointment.status.in_(REMINDABLE_STATUSES))
        .all()
    )

    sent = 0
    for appt in candidates:
        start_utc = slot_start_local(appt.clinic, appt.date, appt.time).astimezone(
            timezone.utc).replace(tzinfo=None)
        ahead = start_utc - now_utc
        if timedelta(hours=2) <= ahead < timedelta(hours=3):
            hours, window = 2, timedelta(hours=3)
        elif timedelta(hours=23) <= ahead < timedelta(hours=24):
            hours, window = 24, timedelta(hours=25)
        else:
            continue
        if _already_reminded(db, appt.id, now_utc - window):
            continue
        notifier.notify(models.NotificationType.APPOINTMENT_REMINDER, appt, appt.user, hours_before=hours)
        sent += 1

    if sent:
        logger.info("%s recordatorios de citas enviados", sent)
    return sent
