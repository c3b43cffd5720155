import pytest
from dateutil.relativedelta import relativedelta

from clinic_booking import models, schemas
from clinic_booking.errors import ConflictError, NotFoundError, PaymentError, ValidationError
from clinic_booking.services.appointments import AppointmentService
from clinic_booking.services.vip import VipService, is_user_vip, plan_details


@pytest.fixture
def vip(db, notifier, payments):
    return VipService(db, notifier, payments)

def _subs(db, user_id):
    return db.query(models.VipSubscription).filter(models.VipSubscription.user_id == user_id).all()


def test_plan_details():
    monthly = plan_details("monthly")
    assert (monthly.price, monthly.discount, monthly.months) == (1500.0, 0, 1)
    annual = plan_details(models.PlanType.annual)
    assert annual.price == 12000.0
    assert annual.original_price == 18000.0
    assert annual.discount == 33
    assert annual.months == 12

def test_invalid_plan(vip, seed, payments):
    with pytest.raises(ValidationError):
        vip.subscribe(seed.client.id, "weekly", "card")
    assert payments.calls == []

def test_subscribe_monthly(db, vip, seed, payments, notifier):
    sub = vip.subscribe(seed.client.id, "monthly", "card")

    assert sub.status == models.SubscriptionStatus.ACTIVE
    assert sub.price == 1500.0
    assert sub.end_date == sub.start_date + relativedelta(months=1)
    assert payments.calls == [("card", 1500.0)]

    db.refresh(seed.client)
    assert seed.client.is_vip is True
    assert seed.client.vip_expiry == sub.end_date
    assert is_user_vip(db, seed.client.id)
    assert notifier.kinds() == [models.NotificationType.VIP_PROMOTION]

def test_subscribe_annual(vip, seed, payments):
    sub = vip.subscribe(seed.client.id, "annual", "card")
    assert sub.price == 12000.0
    assert sub.discount == 33
    assert sub.end_date == sub.start_date + relativedelta(months=12)
    assert payments.calls == [("card", 12000.0)]

def test_second_subscription_is_conflict_without_charge(db, vip, seed, payments):
    vip.subscribe(seed.client.id, "monthly", "card")
    with pytest.raises(ConflictError):
        vip.subscribe(seed.client.id, "annual", "card")
    assert len(payments.calls) == 1
    assert len(_subs(db, seed.client.id)) == 1

def test_failed_payment_persists_nothing(db, seed, notifier):
    class Declined:
        def charge(self, method, amount):
            return False

    svc = VipService(db, notifier, Declined())
    with pytest.raises(PaymentError):
        svc.subscribe(seed.client.id, "monthly", "card")

    assert _subs(db, seed.client.id) == []
    db.refresh(seed.client)
    assert seed.client.is_vip is False
    assert notifier.sent == []

def test_payment_exception_counts_as_failure(db, seed, notifier):
    class Broken:
        def charge(self, method, amount):
            raise RuntimeError("gateway caído")

    with pytest.raises(PaymentError):
        VipService(db, notifier, Broken()).subscribe(seed.client.id, "monthly", "card")
    assert _subs(db, seed.client.id) == []

def test_blank_payment_method(vip, seed, payments):
    with pytest.raises(ValidationError):
        vip.subscribe(seed.client.id, "monthly", "  ")
    assert payments.calls == []

def test_unknown_user(vip):
    with pytest.raises(NotFoundError):
        vip.subscribe(9999, "monthly", "card")


def test_cancel_keeps_benefits_until_end(db, vip, seed):
    vip.subscribe(seed.client.id, "monthly", "card")
    sub = vip.cancel(seed.client.id, "muy caro")

    assert sub.status == models.SubscriptionStatus.CANCELLED
    assert sub.cancel_reason == "muy caro"
    assert sub.cancelled_at is not None
    assert is_user_vip(db, seed.client.id)
    status = vip.current_status(seed.client.id)
    assert status.is_vip is True
    assert status.subscription.id == sub.id

def test_cancel_without_active_subscription(vip, seed):
    with pytest.raises(NotFoundError):
        vip.cancel(seed.client.id)

def test_cannot_cancel_twice(vip, seed):
    vip.subscribe(seed.client.id, "monthly", "card")
    vip.cancel(seed.client.id)
    with pytest.raises(NotFoundError):
        vip.cancel(seed.client.id)

def test_status_for_non_member(vip, seed):
    status = vip.current_status(seed.client.id)
    assert status == (False, None, None)


def _expired_sub(db, user, status=models.SubscriptionStatus.ACTIVE):
    start = models.utcnow() - relativedelta(months=1, days=2)
    sub = models.VipSubscription(
        user_id=user.id, plan_type=models.PlanType.monthly, status=status,
        start_date=start, end_date=start + relativedelta(months=1), price=1500.0,
    )
    user.is_vip = True
    user.vip_expiry = sub.end_date
    db.add(sub)
    db.commit()
    return sub

def test_sweep_expires_and_clears_flag(db, vip, seed, notifier):
    sub = _expired_sub(db, seed.client)
    assert vip.sweep_expired() == 1

    db.refresh(sub)
    db.refresh(seed.client)
    assert sub.status == models.SubscriptionStatus.EXPIRED
    assert seed.client.is_vip is False
    assert seed.client.vip_expiry is None
    assert not is_user_vip(db, seed.client.id)
    assert notifier.kinds() == [models.NotificationType.VIP_PROMOTION]

def test_sweep_clears_flag_of_lapsed_cancellation(db, vip, seed):
    sub = _expired_sub(db, seed.client, models.SubscriptionStatus.CANCELLED)
    assert vip.sweep_expired() == 0
    db.refresh(sub)
    db.refresh(seed.client)
    assert sub.status == models.SubscriptionStatus.CANCELLED
    assert seed.client.is_vip is False

def test_sweep_leaves_current_members(db, vip, seed):
    vip.subscribe(seed.client.id, "monthly", "card")
    assert vip.sweep_expired() == 0
    db.refresh(seed.client)
    assert seed.client.is_vip is True

def test_expired_member_can_subscribe_again(db, vip, seed, payments):
    _expired_sub(db, seed.client)
    sub = vip.subscribe(seed.client.id, "monthly", "card")
    assert sub.status == models.SubscriptionStatus.ACTIVE


def test_savings_use_snapshot_prices(db, vip, seed, notifier, workdays):
    vip.subscribe(seed.client.id, "monthly", "card")
    appts = AppointmentService(db, notifier)
    appt = appts.create(seed.client.id, seed.clinic.id,
                        schemas.AppointmentCreate(date=workdays[0], time="10:00", service_id=seed.facial.id))
    appts.confirm(seed.staff_actor, appt.id)
    appts.complete(seed.staff_actor, appt.id)

    # Cambiar el catálogo no altera lo ya cobrado
    seed.facial.price = 20000.0
    seed.facial.vip_discount = 50.0
    db.commit()

    stats = vip.current_status(seed.client.id).stats
    assert stats.total_savings == pytest.approx(1700.0)
    assert stats.completed_appointments == 1
    assert stats.appointments_this_month == 1
    assert 27 <= stats.days_remaining <= 32


def test_benefits_lists_discounted_services(vip, seed):
    data = vip.benefits(seed.client.id, seed.clinic.id)
    assert data["is_vip"] is False
    assert [p["id"] for p in data["plans"]] == ["monthly", "annual"]
    assert data["plans"][1]["savings"] == 6000.0
    facial = next(s for s in data["services"] if s["id"] == seed.facial.id)
    assert (facial["vip_price"], facial["savings"]) == (6800, 1700)

def test_history_and_extend(db, vip, seed):
    first = vip.subscribe(seed.client.id, "monthly", "card")
    end = first.end_date
    extended = vip.extend(seed.client.id, 2)
    assert extended.end_date == end + relativedelta(months=2)
    db.refresh(seed.client)
    assert seed.client.vip_expiry == extended.end_date
    assert [s.id for s in vip.history(seed.client.id)] == [first.id]

def test_extend_requires_active(vip, seed):
    with pytest.raises(NotFoundError):
        vip.extend(seed.client.id, 1)
    with pytest.raises(ValidationError):
        vip.extend(seed.client.id, 0)


# ─── cambio de plan ───────────────────────────────────────────────────────────

def test_update_plan_switches_without_charge(db, vip, seed, payments):
    vip.subscribe(seed.client.id, "monthly", "card")
    before = models.utcnow()
    sub = vip.update_plan(seed.client.id, "annual")

    assert sub.plan_type == models.PlanType.annual
    assert sub.price == 12000.0
    assert sub.discount == 33
    assert sub.end_date >= before + relativedelta(months=12)
    assert payments.calls == [("card", 1500.0)]
    db.refresh(seed.client)
    assert seed.client.vip_expiry == sub.end_date

def test_update_plan_rejects_same_or_unknown_plan(vip, seed):
    vip.subscribe(seed.client.id, "monthly", "card")
    with pytest.raises(ValidationError, match="Ya tienes el plan monthly"):
        vip.update_plan(seed.client.id, "monthly")
    with pytest.raises(ValidationError, match="Tipo de plan inválido"):
        vip.update_plan(seed.client.id, "weekly")

def test_update_plan_requires_active(vip, seed):
    with pytest.raises(NotFoundError):
        vip.update_plan(seed.client.id, "annual")


# ─── estadísticas de administración ───────────────────────────────────────────

def test_admin_stats(db, vip, seed):
    vip.subscribe(seed.client.id, "monthly", "card")
    vip.subscribe(seed.other.id, "annual", "card")
    vip.cancel(seed.other.id, "caro")

    # Cinco días después el plan mensual ya vence dentro de los próximos 30
    stats = vip.admin_stats(seed.clinic.id, "month", now=models.utcnow() + relativedelta(days=5))

    assert stats.total_vip_users == 1
    assert stats.new_subscriptions == 1
    assert stats.cancelled_subscriptions == 1
    assert stats.vip_revenue == 1500.0
    assert stats.expiring_soon == 1
    assert stats.vip_users_in_clinic == 2
    assert stats.retention_rate == 0.0
    by_plan = {p.plan_type: p for p in stats.plans}
    assert by_plan[models.PlanType.monthly].subscribers == 1
    assert by_plan[models.PlanType.monthly].revenue == 1500.0
    assert by_plan[models.PlanType.annual].subscribers == 0

def test_admin_stats_rejects_unknown_period(vip, seed):
    with pytest.raises(ValidationError):
        vip.admin_stats(seed.clinic.id, "decade")
