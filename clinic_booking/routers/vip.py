# clinic_booking/routers/vip.py
from __future__ import annotations
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import Actor, get_actor, require_admin
from ..database import get_db
from ..services.notifications import NotificationService, get_notifier
from ..services.payments import PaymentProcessor, get_payment_processor
from ..services.rate_limit import enforce_rate_limit
from ..services.vip import VipService

router = APIRouter(prefix="/vip", tags=["vip"])


def get_vip_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
    payments: PaymentProcessor = Depends(get_payment_processor),
) -> VipService:
    return VipService(db, notifier, payments)

def _out(sub: models.VipSubscription) -> schemas.SubscriptionOut:
    return schemas.SubscriptionOut.model_validate(sub)


@router.get("/status")
def vip_status(actor: Actor = Depends(get_actor), svc: VipService = Depends(get_vip_service)):
    status = svc.current_status(actor.user_id)
    return {
        "success": True,
        "data": schemas.VipStatusOut(
            is_vip=status.is_vip,
            subscription=_out(status.subscription) if status.subscription is not None else None,
            stats=schemas.VipStatsOut(**status.stats._asdict()) if status.stats is not None else None,
        ),
    }

@router.post("/subscribe", status_code=201, dependencies=[Depends(enforce_rate_limit)])
def subscribe(
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: VipService = Depends(get_vip_service),
):
    data = schemas.parse_payload(schemas.SubscribeRequest, payload)
    sub = svc.subscribe(actor.user_id, data.plan_type, data.payment_method)
    return {"success": True, "message": "Suscripción VIP activada exitosamente", "data": _out(sub)}

@router.post("/cancel")
def cancel_subscription(
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: VipService = Depends(get_vip_service),
):
    data = schemas.parse_payload(schemas.VipCancelRequest, payload if payload is not None else {})
    sub = svc.cancel(actor.user_id, data.reason)
    return {
        "success": True,
        "message": "Suscripción VIP cancelada. Mantendrás los beneficios hasta el final del período.",
        "data": _out(sub),
    }

@router.get("/benefits")
def vip_benefits(actor: Actor = Depends(get_actor), svc: VipService = Depends(get_vip_service)):
    return {"success": True, "data": schemas.VipBenefitsOut(**svc.benefits(actor.user_id, actor.clinic_id))}

@router.get("/history")
def subscription_history(actor: Actor = Depends(get_actor), svc: VipService = Depends(get_vip_service)):
    return {"success": True, "data": [_out(s) for s in svc.history(actor.user_id)]}

@router.post("/users/{user_id}/extend")
def extend_subscription(
    user_id: int,
    payload: Any = Body(default=None),
    admin: Actor = Depends(require_admin),
    svc: VipService = Depends(get_vip_service),
):
    data = schemas.parse_payload(schemas.VipExtendRequest, payload)
    sub = svc.extend(user_id, data.months)
    return {"success": True, "message": f"Suscripción VIP extendida {data.months} meses", "data": _out(sub)}

@router.post("/update")
def update_plan(
    payload: Any = Body(default=None),
    actor: Actor = Depends(get_actor),
    svc: VipService = Depends(get_vip_service),
):
    data = schemas.parse_payload(schemas.UpdatePlanRequest, payload)
    sub = svc.update_plan(actor.user_id, data.plan_type)
    return {"success": True, "message": f"Plan actualizado a {sub.plan_type.value} exitosamente", "data": _out(sub)}

@router.get("/admin/stats")
def vip_admin_stats(
    period: str = Query(default="month", pattern="^(week|month|year)$"),
    admin: Actor = Depends(require_admin),
    svc: VipService = Depends(get_vip_service),
):
    stats = svc.admin_stats(admin.clinic_id, period)._asdict()
    stats["plans"] = [p._asdict() for p in stats["plans"]]
    return {"success": True, "data": schemas.VipAdminStatsOut(**stats)}
