from datetime import date, timedelta

from clinic_booking import models
from clinic_booking.config import settings
from clinic_booking.services.availability import (
    MAX_ALTERNATIVES,
    available_slots,
    check_availability,
    is_future_slot,
    is_slot_available,
)


def _book(db, seed, day, hhmm, status=models.AppointmentStatus.SCHEDULED):
    appt = models.Appointment(
        date=day, time=hhmm, status=status,
        user_id=seed.client.id, service_id=seed.facial.id, clinic_id=seed.clinic.id,
        original_price=8500.0, final_price=8500.0, vip_discount=0.0,
    )
    db.add(appt)
    db.commit()
    return appt


def test_working_day_slots_fit_before_closing(db, seed, workdays):
    slots = available_slots(db, seed.clinic, workdays[0], seed.facial)
    assert slots[0] == "09:00"
    # Un servicio de 60 min no puede empezar 17:30 si se cierra a las 18:00
    assert slots[-1] == "17:00"
    assert len(slots) == 17

def test_longer_service_has_fewer_slots(db, seed, workdays):
    seed.facial.duration = 120
    db.commit()
    slots = available_slots(db, seed.clinic, workdays[0], seed.facial)
    assert slots[-1] == "16:00"

def test_non_working_day_has_no_slots(db, seed, saturday):
    assert available_slots(db, seed.clinic, saturday, seed.facial) == []

def test_booked_slot_is_excluded(db, seed, workdays):
    day = workdays[0]
    _book(db, seed, day, "10:00")
    slots = available_slots(db, seed.clinic, day, seed.facial)
    assert "10:00" not in slots
    assert len(slots) == 16
    assert not is_slot_available(db, seed.clinic.id, day, "10:00")

def test_terminal_appointments_free_the_slot(db, seed, workdays):
    day = workdays[0]
    _book(db, seed, day, "10:00", models.AppointmentStatus.CANCELLED)
    _book(db, seed, day, "11:00", models.AppointmentStatus.COMPLETED)
    assert is_slot_available(db, seed.clinic.id, day, "10:00")
    assert is_slot_available(db, seed.clinic.id, day, "11:00")
    assert {"10:00", "11:00"} <= set(available_slots(db, seed.clinic, day, seed.facial))

def test_exclude_id_ignores_own_appointment(db, seed, workdays):
    appt = _book(db, seed, workdays[0], "10:00")
    assert is_slot_available(db, seed.clinic.id, workdays[0], "10:00", exclude_id=appt.id)

def test_other_clinic_bookings_do_not_block(db, seed, workdays):
    other = models.Clinic(name="Sucursal Norte")
    db.add(other)
    db.commit()
    _book(db, seed, workdays[0], "10:00")
    assert is_slot_available(db, other.id, workdays[0], "10:00")

def test_check_availability_offers_alternatives(db, seed, workdays):
    day = workdays[0]
    _book(db, seed, day, "10:00")
    result = check_availability(db, seed.clinic, day, "10:00", seed.facial)
    assert result.is_available is False
    assert "10:00" not in result.alternatives
    assert len(result.alternatives) == MAX_ALTERNATIVES
    assert result.alternatives[:3] == ["09:00", "09:30", "10:30"]

def test_check_availability_free_slot(db, seed, workdays):
    result = check_availability(db, seed.clinic, workdays[0], "12:30", seed.facial)
    assert result.is_available is True
    assert result.alternatives == []

def test_future_slot_uses_clinic_clock(seed):
    assert is_future_slot(seed.clinic, date.today() + timedelta(days=2), "09:00")
    assert not is_future_slot(seed.clinic, date.today() - timedelta(days=1), "23:30")

def test_blank_working_days_fall_back_to_configured_default(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_WORKING_DAYS", "2,4,6")
    assert models.Clinic(working_days="").working_day_set == {2, 4, 6}
    assert models.Clinic(working_days="1,7").working_day_set == {1, 7}
