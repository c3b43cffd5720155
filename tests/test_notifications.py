import pytest

from clinic_booking import models, schemas
from clinic_booking.services.appointments import AppointmentService
from clinic_booking.services.notifications import NotificationDeliveryError, NotificationService
from clinic_booking.services.twilio_client import send_sms


@pytest.fixture
def appointment(db, seed, notifier, workdays):
    data = schemas.AppointmentCreate(date=workdays[0], time="10:00", service_id=seed.facial.id)
    return AppointmentService(db, notifier).create(seed.client.id, seed.clinic.id, data)


def test_delivery_is_logged(db, seed, session_factory, appointment):
    outbox = []
    svc = NotificationService(sender=lambda to, body: outbox.append((to, body)) or {"status": "sent"},
                              session_factory=session_factory)
    try:
        fut = svc.notify(models.NotificationType.APPOINTMENT_CONFIRMATION, appointment, seed.client)
        assert fut.result(timeout=5) == "sent"
    finally:
        svc.shutdown()

    to, body = outbox[0]
    assert to == seed.client.phone
    assert "Limpieza facial" in body

    row = db.query(models.Notification).filter(models.Notification.appointment_id == appointment.id).one()
    assert row.status == "sent"
    assert row.type == models.NotificationType.APPOINTMENT_CONFIRMATION

def test_failed_delivery_never_reaches_caller(db, seed, session_factory, appointment):
    svc = NotificationService(sender=lambda to, body: {"status": "error", "error": "timeout"},
                              session_factory=session_factory)
    try:
        fut = svc.notify(models.NotificationType.APPOINTMENT_REMINDER, appointment, seed.client)
        assert isinstance(fut.exception(timeout=5), NotificationDeliveryError)
    finally:
        svc.shutdown()

    row = db.query(models.Notification).filter(models.Notification.appointment_id == appointment.id).one()
    assert row.status == "error"

def test_recipient_without_phone_is_skipped(seed, session_factory, appointment):
    calls = []
    svc = NotificationService(sender=lambda to, body: calls.append(to) or {"status": "sent"},
                              session_factory=session_factory)
    try:
        fut = svc.notify(models.NotificationType.APPOINTMENT_CANCELLATION, appointment, seed.staff)
        assert fut.result(timeout=5) == "skipped"
    finally:
        svc.shutdown()
    assert calls == []

def test_dry_run_sms():
    result = send_sms("54 9 11-0000-0001", "hola")
    assert result["status"] == "dry_run"
    assert result["to"] == "+5491100000001"
