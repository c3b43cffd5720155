import pytest

from clinic_booking import models, schemas
from clinic_booking.errors import ValidationError


@pytest.mark.parametrize("raw,expected", [("9:00", "09:00"), ("09:30", "09:30"), (" 23:59 ", "23:59")])
def test_normalize_time(raw, expected):
    assert schemas.normalize_time(raw) == expected

@pytest.mark.parametrize("raw", ["24:00", "9", "09:60", "", "nueve"])
def test_normalize_time_rejects(raw):
    with pytest.raises(ValueError):
        schemas.normalize_time(raw)

def test_validate_payload_ok():
    result = schemas.validate_payload(
        schemas.AppointmentCreate, {"date": "2030-01-07", "time": "9:00", "service_id": 3}
    )
    assert result.ok
    assert result.value.time == "09:00"
    assert result.errors == []

def test_validate_payload_collects_errors():
    result = schemas.validate_payload(schemas.AppointmentCreate, {"date": "mañana", "time": "99:99"})
    assert not result.ok
    fields = {e["field"] for e in result.errors}
    assert {"date", "time", "service_id"} <= fields

def test_validate_payload_rejects_non_objects():
    result = schemas.validate_payload(schemas.CancelRequest, ["no", "soy", "objeto"])
    assert not result.ok
    assert result.errors[0]["field"] is None

def test_subscribe_request_plan_type():
    assert schemas.validate_payload(
        schemas.SubscribeRequest, {"plan_type": "annual", "payment_method": "card"}
    ).value.plan_type == models.PlanType.annual
    assert not schemas.validate_payload(
        schemas.SubscribeRequest, {"plan_type": "weekly", "payment_method": "card"}
    ).ok

def test_parse_payload_raises_with_details():
    with pytest.raises(ValidationError) as exc:
        schemas.parse_payload(schemas.RescheduleRequest, {"new_date": "2030-01-07"})
    assert exc.value.status_code == 400
    assert any(e["field"] == "new_time" for e in exc.value.details)
