# clinic_booking/routers/appointments.py
from __future__ import annotations
import datetime as dt
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import Actor, get_actor, require_staff
from ..database import get_db
from ..errors import NotFoundError
from ..services.appointments import AppointmentService
from ..services.availability import available_slots, check_availability
from ..services.notifications import NotificationService, get_notifier
from ..services.rate_limit import enforce_rate_limit

router = APIRouter(prefix="/appointments", tags=["appointments"])


def get_appointment_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
) -> AppointmentService:
    return AppointmentService(db, notifier)

def _out(appt: models.Appointment) -> schemas.AppointmentOut:
    return schemas.AppointmentOut.model_validate(appt)

def _page(items, pagination: dict) -> dict:
    return {
        "success": True,
        "data": schemas.AppointmentPage(
            appointments=[_out(a) for a in items],
            pagination=schemas.Pagination(**pagination),
        ),
    }

def _clinic_for(db: Session, actor: Actor, clinic_id: Optional[int]) -> models.Clinic:
    cid = clinic_id if clinic_id is not None else actor.clinic_id
    clinic = db.get(models.Clinic, cid) if cid is not None else None
    if clinic is None:
        raise NotFoundError("Clínica no encontrada")
    return clinic

def _service_for(db: Session, clinic: models.Clinic, service_id: Optional[int]) -> Optional[models.Service]:
    if service_id is None:
        return None
    service = db.get(models.Service, service_id)
    if service is None or service.clinic_id != clinic.id or not service.is_active:
        raise NotFoundError("Servicio no encontrado o no disponible")
    return service


# ──────────────────────────────────────────────────────────────────────────────
# Reserva y listados
# ──────────────────────────────────────────────────────────────────────────────
@router.post("", status_code=201, dependencies=[Depends(enforce_rate_limit)])
def create_appointment(
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    data = schemas.parse_payload(schemas.AppointmentCreate, payload)
    appt = svc.create(actor.user_id, actor.clinic_id, data)
    return {"success": True, "message": "Cita creada exitosamente", "data": _out(appt)}

@router.get("")
def list_my_appointments(
    status: Optional[models.AppointmentStatus] = Query(default=None),
    upcoming: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    items, pagination = svc.list_for_user(actor, status=status, upcoming=upcoming, page=page, limit=limit)
    return _page(items, pagination)

@router.get("/all")
def list_clinic_appointments(
    status: Optional[models.AppointmentStatus] = Query(default=None),
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    service_id: Optional[int] = None,
    user_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    svc: AppointmentService = Depends(get_appointment_service),
):
    items, pagination = svc.search(
        actor, status=status, date_from=date_from, date_to=date_to,
        service_id=service_id, user_id=user_id, page=page, limit=limit,
    )
    return _page(items, pagination)

@router.get("/search")
def search_appointments(
    q: Optional[str] = Query(default=None, max_length=100),
    status: Optional[models.AppointmentStatus] = Query(default=None),
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    items, pagination = svc.search(
        actor, query=q, status=status, date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return _page(items, pagination)

# ──────────────────────────────────────────────────────────────────────────────
# Disponibilidad
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/available")
def get_available_slots(
    date: dt.date = Query(..., description="YYYY-MM-DD"),
    service_id: Optional[int] = None,
    clinic_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    clinic = _clinic_for(db, actor, clinic_id)
    service = _service_for(db, clinic, service_id)
    slots = available_slots(db, clinic, date, service)
    return {"success": True, "data": schemas.SlotsResponse(date=date, slots=slots)}

@router.post("/check-availability")
def check_slot(
    payload: Any = Body(default=None),
    clinic_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    data = schemas.parse_payload(schemas.AvailabilityCheckRequest, payload)
    clinic = _clinic_for(db, actor, clinic_id)
    service = _service_for(db, clinic, data.service_id)
    result = check_availability(db, clinic, data.date, data.time, service)
    return {
        "success": True,
        "data": schemas.AvailabilityCheckResponse(
            is_available=result.is_available,
            date=data.date,
            time=data.time,
            alternative_slots=result.alternatives,
        ),
    }

@router.get("/stats")
def appointment_stats(
    period: str = Query(default="month", pattern="^(week|month|quarter|year)$"),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    return {"success": True, "data": schemas.AppointmentStatsOut(**svc.stats(actor, period))}

# ──────────────────────────────────────────────────────────────────────────────
# Por cita
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/{appointment_id}")
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    return {"success": True, "data": _out(svc.get(actor, appointment_id))}

@router.put("/{appointment_id}")
def update_appointment(
    appointment_id: int,
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    data = schemas.parse_payload(schemas.AppointmentUpdate, payload)
    appt = svc.update(actor, appointment_id, data)
    return {"success": True, "message": "Cita actualizada exitosamente", "data": _out(appt)}

@router.post("/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: int,
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    data = schemas.parse_payload(schemas.CancelRequest, payload if payload is not None else {})
    appt = svc.cancel(actor, appointment_id, data.reason)
    return {"success": True, "message": "Cita cancelada exitosamente", "data": _out(appt)}

@router.post("/{appointment_id}/confirm")
def confirm_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    appt = svc.confirm(actor, appointment_id)
    return {"success": True, "message": "Cita confirmada exitosamente", "data": _out(appt)}

@router.post("/{appointment_id}/complete")
def complete_appointment(
    appointment_id: int,
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    data = schemas.parse_payload(schemas.CompleteRequest, payload if payload is not None else {})
    appt = svc.complete(actor, appointment_id, data.notes)
    return {"success": True, "message": "Cita completada exitosamente", "data": _out(appt)}

@router.post("/{appointment_id}/reschedule", dependencies=[Depends(enforce_rate_limit)])
def reschedule_appointment(
    appointment_id: int,
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    data = schemas.parse_payload(schemas.RescheduleRequest, payload)
    appt = svc.reschedule(actor, appointment_id, data.new_date, data.new_time, data.reason)
    return {"success": True, "message": "Cita reprogramada exitosamente", "data": _out(appt)}

@router.post("/{appointment_id}/reminder")
def send_appointment_reminder(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    svc.send_reminder(actor, appointment_id)
    return {"success": True, "message": "Recordatorio enviado exitosamente"}

@router.get("/{appointment_id}/history")
def appointment_history(
    appointment_id: int,
    actor: Actor = Depends(get_actor),
    svc: AppointmentService = Depends(get_appointment_service),
):
    entries = [schemas.HistoryEntry(**e) for e in svc.history(actor, appointment_id)]
    return {"success": True, "data": entries}
