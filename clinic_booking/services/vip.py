# clinic_booking/services/vip.py
"""
Suscripciones VIP: alta con cobro, cancelación, estado actual con estadísticas
y barrido de vencidas.

"Es VIP ahora" = existe una suscripción ACTIVE con end_date >= ahora. Una
suscripción CANCELLED conserva los beneficios hasta su end_date (la
cancelación no acorta el período ya pagado).
"""
from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import List, NamedTuple, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from .. import models
from ..errors import ConflictError, NotFoundError, PaymentError, ValidationError
from .notifications import NotificationService
from .payments import PaymentProcessor, charge_with_timeout
from .pricing import vip_price_preview

logger = logging.getLogger(__name__)

_BENEFIT_STATUSES = (models.SubscriptionStatus.ACTIVE, models.SubscriptionStatus.CANCELLED)

_ADMIN_PERIODS = {
    "week": relativedelta(days=7),
    "month": relativedelta(months=1),
    "year": relativedelta(years=1),
}


class PlanDetails(NamedTuple):
    plan_type: models.PlanType
    price: float
    original_price: float
    discount: int
    months: int


class VipStats(NamedTuple):
    total_savings: float
    appointments_this_month: int
    completed_appointments: int
    days_remaining: int
    member_since: datetime


class VipStatus(NamedTuple):
    is_vip: bool
    subscription: Optional[models.VipSubscription]
    stats: Optional[VipStats]


class PlanBreakdown(NamedTuple):
    plan_type: models.PlanType
    subscribers: int
    revenue: float


class VipAdminStats(NamedTuple):
    period: str
    total_vip_users: int
    new_subscriptions: int
    cancelled_subscriptions: int
    vip_revenue: float
    expiring_soon: int
    vip_users_in_clinic: int
    retention_rate: float
    plans: List[PlanBreakdown]


def parse_plan_type(plan_type) -> models.PlanType:
    try:
        return models.PlanType(plan_type)
    except ValueError:
        raise ValidationError("Tipo de plan inválido", details={"allowed": [p.value for p in models.PlanType]})

def plan_details(plan_type) -> PlanDetails:
    """Precio y descuento del plan; el anual se compara contra 12 mensualidades."""
    plan = parse_plan_type(plan_type)
    monthly = settings.VIP_MONTHLY_PRICE
    if plan == models.PlanType.annual:
        original = monthly * 12
        annual = settings.VIP_ANNUAL_PRICE
        discount = round((original - annual) / original * 100) if original else 0
        return PlanDetails(plan, annual, original, discount, 12)
    return PlanDetails(plan, monthly, monthly, 0, 1)

def active_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[models.VipSubscription]:
    """Suscripción ACTIVE y no vencida (la que bloquea un nuevo alta)."""
    now = now or models.utcnow()
    return (
        db.query(models.VipSubscription)
        .filter(models.VipSubscription.user_id == user_id)
        .filter(models.VipSubscription.status == models.SubscriptionStatus.ACTIVE)
        .filter(models.VipSubscription.end_date >= now)
        .order_by(models.VipSubscription.end_date.desc())
        .first()
    )

def benefit_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[models.VipSubscription]:
    """Suscripción que hoy otorga beneficios (ACTIVE o CANCELLED aún no vencida)."""
    now = now or models.utcnow()
    return (
        db.query(models.VipSubscription)
        .filter(models.VipSubscription.user_id == user_id)
        .filter(models.VipSubscription.status.in_(_BENEFIT_STATUSES))
        .filter(models.VipSubscription.end_date >= now)
        .order_by(models.VipSubscription.end_date.desc())
        .first()
    )

def is_user_vip(db: Session, user_id: int, now: Optional[datetime] = None) -> bool:
    return benefit_subscription(db, user_id, now) is not None


class VipService:
    def __init__(self, db: Session, notifier: NotificationService, payments: PaymentProcessor):
        self.db = db
        self.notifier = notifier
        self.payments = payments

    def _get_user(self, user_id: int) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFoundError("Usuario no encontrado")
        return user

    def subscribe(self, user_id: int, plan_type, payment_method: str) -> models.VipSubscription:
        plan = plan_details(plan_type)
        if not payment_method or not payment_method.strip():
            raise ValidationError("Método de pago es requerido")
        self._get_user(user_id)

        if active_subscription(self.db, user_id) is not None:
            raise ConflictError("Ya tienes una suscripción VIP activa")

        # El cobro puede tardar segundos: se hace sin transacción abierta
        self.db.rollback()
        if not charge_with_timeout(self.payments, payment_method, plan.price):
            logger.info("Pago VIP rechazado user=%s plan=%s", user_id, plan.plan_type.value)
            raise PaymentError("Error procesando el pago")

        start = models.utcnow()
        end = start + relativedelta(months=plan.months)
        sub = models.VipSubscription(
            user_id=user_id,
            plan_type=plan.plan_type,
            status=models.SubscriptionStatus.ACTIVE,
            start_date=start,
            end_date=end,
            price=plan.price,
            discount=plan.discount,
        )
        user = self._get_user(user_id)
        user.is_vip = True
        user.vip_expiry = end
        self.db.add(sub)
        self.db.commit()
        self.db.refresh(sub)

        logger.info("Usuario %s se suscribió a VIP (%s)", user_id, plan.plan_type.value)
        self.notifier.notify(models.NotificationType.VIP_PROMOTION, sub, user)
        return sub

    def cancel(self, user_id: int, reason: Optional[str] = None) -> models.VipSubscription:
        sub = active_subscription(self.db, user_id)
        if sub is None:
            raise NotFoundError("No tienes una suscripción VIP activa")

        # end_date y la bandera VIP quedan intactos hasta el vencimiento natural
        sub.status = models.SubscriptionStatus.CANCELLED
        sub.cancelled_at = models.utcnow()
        sub.cancel_reason = reason or "Usuario canceló"
        self.db.commit()
        self.db.refresh(sub)

        logger.info("Usuario %s canceló suscripción VIP: %s", user_id, sub.cancel_reason)
        self.notifier.notify(models.NotificationType.VIP_PROMOTION, sub, sub.user)
        return sub

    def current_status(self, user_id: int) -> VipStatus:
        self._get_user(user_id)
        sub = benefit_subscription(self.db, user_id)
        if sub is None:
            return VipStatus(False, None, None)
        return VipStatus(True, sub, self._stats(user_id, sub))

    def _stats(self, user_id: int, sub: models.VipSubscription) -> VipStats:
        now = models.utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        completed = (
            self.db.query(models.Appointment)
            .filter(models.Appointment.user_id == user_id)
            .filter(models.Appointment.status == models.AppointmentStatus.COMPLETED)
        )
        since_start = completed.filter(models.Appointment.created_at >= sub.start_date)

        # Ahorro sobre precios congelados en cada cita, nunca sobre el servicio actual
        savings = (
            since_start.with_entities(
                func.coalesce(func.sum(models.Appointment.original_price - models.Appointment.final_price), 0.0)
            ).scalar()
        )
        days_remaining = max(0, math.ceil((sub.end_date - now).total_seconds() / 86400))
        return VipStats(
            total_savings=float(savings or 0.0),
            appointments_this_month=completed.filter(models.Appointment.created_at >= month_start).count(),
            completed_appointments=since_start.count(),
            days_remaining=days_remaining,
            member_since=sub.start_date,
        )

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Pasa a EXPIRED las ACTIVE vencidas. Si el usuario ya no tiene otra
        suscripción con beneficios, limpia su bandera VIP y le avisa.
        Lo invoca el scheduler; no tiene timer propio.
        """
        now = now or models.utcnow()
        expired = (
            self.db.query(models.VipSubscription)
            .filter(models.VipSubscription.status == models.SubscriptionStatus.ACTIVE)
            .filter(models.VipSubscription.end_date < now)
            .all()
        )
        affected: dict[int, models.VipSubscription] = {}
        for sub in expired:
            sub.status = models.SubscriptionStatus.EXPIRED
            affected[sub.user_id] = sub

        # Canceladas cuyo período pagado ya terminó: sólo hay que bajar la bandera
        lapsed = (
            self.db.query(models.VipSubscription)
            .join(models.User, models.User.id == models.VipSubscription.user_id)
            .filter(models.VipSubscription.status == models.SubscriptionStatus.CANCELLED)
            .filter(models.VipSubscription.end_date < now)
            .filter(models.User.is_vip.is_(True))
            .all()
        )
        for sub in lapsed:
            affected.setdefault(sub.user_id, sub)
        self.db.flush()

        revoked = []
        for user_id, sub in affected.items():
            if benefit_subscription(self.db, user_id, now) is not None:
                continue
            user = self.db.get(models.User, user_id)
            if user is not None and user.is_vip:
                user.is_vip = False
                user.vip_expiry = None
                revoked.append((sub, user))
        self.db.commit()

        for sub, user in revoked:
            self.notifier.notify(models.NotificationType.VIP_PROMOTION, sub, user, title="Tu plan VIP ha expirado")
        if expired:
            logger.info("%s suscripciones VIP expiradas actualizadas (%s usuarios sin VIP)", len(expired), len(revoked))
        return len(expired)

    def benefits(self, user_id: int, clinic_id: Optional[int]) -> dict:
        monthly = plan_details(models.PlanType.monthly)
        annual = plan_details(models.PlanType.annual)
        services: List[models.Service] = []
        if clinic_id is not None:
            services = (
                self.db.query(models.Service)
                .filter(models.Service.clinic_id == clinic_id)
                .filter(models.Service.is_active.is_(True))
                .filter(models.Service.vip_discount > 0)
                .order_by(models.Service.name)
                .all()
            )
        priced = []
        for s in services:
            vip_price, savings = vip_price_preview(s.price, s.vip_discount)
            priced.append({
                "id": s.id,
                "name": s.name,
                "original_price": s.price,
                "vip_price": vip_price,
                "savings": savings,
                "discount_percentage": s.vip_discount,
            })
        return {
            "is_vip": is_user_vip(self.db, user_id),
            "plans": [
                {"id": monthly.plan_type.value, "price": monthly.price,
                 "original_price": monthly.original_price, "discount": monthly.discount},
                {"id": annual.plan_type.value, "price": annual.price,
                 "original_price": annual.original_price, "discount": annual.discount,
                 "savings": annual.original_price - annual.price},
            ],
            "services": priced,
        }

    def history(self, user_id: int) -> List[models.VipSubscription]:
        return (
            self.db.query(models.VipSubscription)
            .filter(models.VipSubscription.user_id == user_id)
            .order_by(models.VipSubscription.created_at.desc(), models.VipSubscription.id.desc())
            .all()
        )

    def extend(self, user_id: int, months: int) -> models.VipSubscription:
        if months <= 0:
            raise ValidationError("Número de meses inválido")
        sub = active_subscription(self.db, user_id)
        if sub is None:
            raise NotFoundError("Usuario no tiene suscripción VIP activa")
        sub.end_date = sub.end_date + relativedelta(months=months)
        user = self._get_user(user_id)
        user.vip_expiry = sub.end_date
        self.db.commit()
        self.db.refresh(sub)
        logger.info("VIP de usuario %s extendido %s meses (hasta %s)", user_id, months, sub.end_date)
        return sub

    def update_plan(self, user_id: int, plan_type) -> models.VipSubscription:
        """
        Cambia el plan de la suscripción activa sin cobrar: el período se
        recalcula desde hoy con la duración del plan nuevo.
        """
        plan = plan_details(plan_type)
        sub = active_subscription(self.db, user_id)
        if sub is None:
            raise NotFoundError("No tienes una suscripción VIP activa")
        if sub.plan_type == plan.plan_type:
            raise ValidationError(f"Ya tienes el plan {plan.plan_type.value}")

        sub.plan_type = plan.plan_type
        sub.price = plan.price
        sub.discount = plan.discount
        sub.end_date = models.utcnow() + relativedelta(months=plan.months)
        user = self._get_user(user_id)
        user.vip_expiry = sub.end_date
        self.db.commit()
        self.db.refresh(sub)

        logger.info("Usuario %s actualizó plan VIP a %s", user_id, plan.plan_type.value)
        return sub

    def admin_stats(self, clinic_id: Optional[int], period: str = "month",
                    now: Optional[datetime] = None) -> VipAdminStats:
        now = now or models.utcnow()
        if period not in _ADMIN_PERIODS:
            raise ValidationError("Período inválido", details={"allowed": list(_ADMIN_PERIODS)})
        since = now - _ADMIN_PERIODS[period]
        Sub = models.VipSubscription

        active_q = (
            self.db.query(Sub)
            .filter(Sub.status == models.SubscriptionStatus.ACTIVE)
            .filter(Sub.end_date >= now)
        )
        new_q = (
            self.db.query(Sub)
            .filter(Sub.status == models.SubscriptionStatus.ACTIVE)
            .filter(Sub.created_at >= since)
        )
        new_subscriptions = new_q.count()
        cancelled = (
            self.db.query(Sub)
            .filter(Sub.status == models.SubscriptionStatus.CANCELLED)
            .filter(Sub.cancelled_at >= since)
            .count()
        )
        revenue = new_q.with_entities(func.coalesce(func.sum(Sub.price), 0.0)).scalar()
        expiring = active_q.filter(Sub.end_date <= now + relativedelta(days=30)).count()

        in_clinic = 0
        if clinic_id is not None:
            in_clinic = (
                self.db.query(models.User)
                .filter(models.User.clinic_id == clinic_id)
                .filter(models.User.is_vip.is_(True))
                .count()
            )

        subscribers = dict(
            active_q.with_entities(Sub.plan_type, func.count(Sub.id)).group_by(Sub.plan_type).all()
        )
        revenue_by_plan = dict(
            new_q.with_entities(Sub.plan_type, func.coalesce(func.sum(Sub.price), 0.0)).group_by(Sub.plan_type).all()
        )
        plans = [
            PlanBreakdown(p, subscribers.get(p, 0), float(revenue_by_plan.get(p, 0.0)))
            for p in models.PlanType
        ]

        retention = 0.0
        if new_subscriptions:
            retention = round((new_subscriptions - cancelled) / new_subscriptions * 100, 1)
        return VipAdminStats(
            period=period,
            total_vip_users=active_q.count(),
            new_subscriptions=new_subscriptions,
            cancelled_subscriptions=cancelled,
            vip_revenue=float(revenue or 0.0),
            expiring_soon=expiring,
            vip_users_in_clinic=in_clinic,
            retention_rate=retention,
            plans=plans,
        )
