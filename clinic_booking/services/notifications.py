# clinic_booking/services/notifications.py
"""
Envío de notificaciones "fire-and-forget".

`notify()` arma el mensaje en el hilo del request (mientras la sesión sigue
abierta), lo encola en un pool de hilos y regresa de inmediato. Un fallo de
envío se registra como warning y nunca vuelve al llamador.
"""
from __future__ import annotations
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import settings
from ..database import SessionLocal
from .. import models
from .twilio_client import send_sms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationJob:
    kind: models.NotificationType
    user_id: Optional[int]
    phone: Optional[str]
    appointment_id: Optional[int]
    title: str
    message: str


class NotificationDeliveryError(RuntimeError):
    pass


# ------------------ plantillas ------------------

def _appointment_text(appt: models.Appointment) -> str:
    service = appt.service.name if appt.service else "su servicio"
    clinic = appt.clinic.name if appt.clinic else "la clínica"
    return f"{service} en {clinic}, {appt.date.strftime('%d/%m/%Y')} a las {appt.time}"

def render_appointment(kind: models.NotificationType, appt: models.Appointment,
                       title: Optional[str] = None, **extra) -> tuple[str, str]:
    detail = _appointment_text(appt)
    if kind == models.NotificationType.APPOINTMENT_CANCELLATION:
        reason = appt.cancel_reason or "No especificado"
        return title or "Cita cancelada", f"Su cita ({detail}) fue cancelada. Motivo: {reason}"
    if kind == models.NotificationType.APPOINTMENT_RESCHEDULE:
        old = f" (antes: {extra['old_date']} {extra['old_time']})" if extra.get("old_date") else ""
        return title or "Cita reprogramada", f"Su cita fue movida a {detail}{old}. Le pediremos confirmarla de nuevo."
    if kind == models.NotificationType.APPOINTMENT_REMINDER:
        hours = extra.get("hours_before")
        when = f" en {hours}h" if hours else ""
        return title or "Recordatorio de cita", f"Le recordamos su cita{when}: {detail}"
    return title or "Cita reservada", f"Su cita quedó registrada: {detail}. Precio: ${appt.final_price:,.2f}"

def render_subscription(kind: models.NotificationType, sub: models.VipSubscription,
                        title: Optional[str] = None, **extra) -> tuple[str, str]:
    end = sub.end_date.strftime("%d/%m/%Y")
    if sub.status == models.SubscriptionStatus.CANCELLED:
        return title or "Suscripción VIP cancelada", f"Cancelamos su plan VIP. Mantiene los beneficios hasta el {end}."
    if sub.status == models.SubscriptionStatus.EXPIRED:
        return title or "Tu plan VIP ha expirado", "Su suscripción VIP ha expirado. Renueve para seguir disfrutando los beneficios."
    return title or "Bienvenido a VIP", f"Su plan {sub.plan_type.value} está activo hasta el {end}."


# ------------------ servicio ------------------

class NotificationService:
    def __init__(
        self,
        sender: Callable[[str, str], dict] = send_sms,
        session_factory: Optional[Callable] = SessionLocal,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._sender = sender
        self._session_factory = session_factory
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.NOTIFY_WORKERS, thread_name_prefix="notify"
        )

    def notify(self, kind: models.NotificationType, record, recipient: Optional[models.User],
               **extra) -> Optional[Future]:
        """Encola la notificación. Nunca lanza."""
        try:
            if isinstance(record, models.VipSubscription):
                title, message = render_subscription(kind, record, **extra)
                appointment_id = None
            else:
                title, message = render_appointment(kind, record, **extra)
                appointment_id = record.id
            job = NotificationJob(
                kind=kind,
                user_id=recipient.id if recipient is not None else None,
                phone=recipient.phone if recipient is not None else None,
                appointment_id=appointment_id,
                title=title,
                message=message,
            )
            fut = self._executor.submit(self._deliver, job)
            fut.add_done_callback(self._log_failure)
            return fut
        except Exception as e:
            logger.warning("No se pudo encolar notificación %s: %s", kind, e)
            return None

    def _deliver(self, job: NotificationJob) -> str:
        status = "skipped"
        if job.phone:
            result = self._sender(job.phone, f"{job.title}\n{job.message}")
            status = result.get("status", "sent")
        self._record(job, status)
        if status == "error":
            raise NotificationDeliveryError(f"envío fallido a user={job.user_id} ({job.kind.value})")
        return status

    def _record(self, job: NotificationJob, status: str) -> None:
        if self._session_factory is None:
            return
        db = self._session_factory()
        try:
            db.add(models.Notification(
                user_id=job.user_id,
                appointment_id=job.appointment_id,
                type=job.kind,
                title=job.title,
                message=job.message,
                status=status,
            ))
            db.commit()
        finally:
            db.close()

    @staticmethod
    def _log_failure(fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            logger.warning("Error enviando notificación: %s", exc)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


_notifier: Optional[NotificationService] = None

def get_notifier() -> NotificationService:
    """Dependencia FastAPI; los tests la reemplazan con dependency_overrides."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationService()
    return _notifier
