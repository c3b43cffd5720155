# clinic_booking/routers/clinics.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import Actor, get_actor
from ..database import get_db
from ..errors import NotFoundError
from ..services.vip import is_user_vip

router = APIRouter(prefix="/clinics", tags=["clinics"])


@router.get("")
def list_clinics(db: Session = Depends(get_db)):
    clinics = (
        db.query(models.Clinic)
        .filter(models.Clinic.is_active.is_(True))
        .order_by(models.Clinic.name)
        .all()
    )
    return {"success": True, "data": [schemas.ClinicOut.model_validate(c) for c in clinics]}

@router.get("/{clinic_id}/services")
def list_services(clinic_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    clinic = db.get(models.Clinic, clinic_id)
    if clinic is None or not clinic.is_active:
        raise NotFoundError("Clínica no encontrada")

    q = (
        db.query(models.Service)
        .filter(models.Service.clinic_id == clinic_id)
        .filter(models.Service.is_active.is_(True))
    )
    # Los servicios exclusivos sólo se listan a quien puede reservarlos
    if not actor.is_staff and not is_user_vip(db, actor.user_id):
        q = q.filter(models.Service.is_vip_only.is_(False))
    services = q.order_by(models.Service.category, models.Service.name).all()
    return {"success": True, "data": [schemas.ServiceOut.model_validate(s) for s in services]}
