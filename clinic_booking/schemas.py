from __future__ import annotations
import re
from dataclasses import dataclass, field
import datetime as dt
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import AppointmentStatus, NotificationType, PlanType, SubscriptionStatus

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def normalize_time(value: str) -> str:
    """'9:00' -> '09:00'. Lanza ValueError si no es HH:MM."""
    m = _TIME_RE.match((value or "").strip())
    if not m:
        raise ValueError("Formato de hora inválido (HH:MM)")
    return f"{int(m.group(1)):02d}:{m.group(2)}"


# ──────────────────────────────────────────────────────────────────────────────
# Requests
# ──────────────────────────────────────────────────────────────────────────────
class AppointmentCreate(BaseModel):
    date: dt.date
    time: str
    service_id: int
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("time")
    @classmethod
    def _time(cls, v: str) -> str:
        return normalize_time(v)

class AppointmentUpdate(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[str] = None
    service_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    status: Optional[AppointmentStatus] = None

    @field_validator("time")
    @classmethod
    def _time(cls, v: Optional[str]) -> Optional[str]:
        return normalize_time(v) if v is not None else None

class RescheduleRequest(BaseModel):
    new_date: dt.date
    new_time: str
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("new_time")
    @classmethod
    def _time(cls, v: str) -> str:
        return normalize_time(v)

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

class CompleteRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)

class AvailabilityCheckRequest(BaseModel):
    date: dt.date
    time: str
    service_id: int

    @field_validator("time")
    @classmethod
    def _time(cls, v: str) -> str:
        return normalize_time(v)

class SubscribeRequest(BaseModel):
    plan_type: PlanType
    payment_method: str = Field(min_length=1)

class VipCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

class VipExtendRequest(BaseModel):
    months: int = Field(gt=0, le=36)
    reason: Optional[str] = None

class UpdatePlanRequest(BaseModel):
    plan_type: PlanType


# ──────────────────────────────────────────────────────────────────────────────
# Validación tipada: resultado o errores, sin excepciones
# ──────────────────────────────────────────────────────────────────────────────
M = TypeVar("M", bound=BaseModel)

@dataclass
class ValidationResult(Generic[M]):
    value: Optional[M] = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors

def validate_payload(model: type[M], data: Any) -> ValidationResult[M]:
    """
    Valida `data` contra `model`. Los rechazos de entrada son rutina, no
    excepciones: se devuelven como lista de {field, message}.
    """
    if not isinstance(data, dict):
        return ValidationResult(errors=[{"field": None, "message": "Se esperaba un objeto JSON"}])
    try:
        return ValidationResult(value=model.model_validate(data))
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())) or None,
                "message": err.get("msg", "inválido"),
            }
            for err in e.errors()
        ]
        return ValidationResult(errors=errors)

def parse_payload(model: type[M], data: Any) -> M:
    """Atajo para la capa HTTP: valida o lanza ValidationError(400) con los detalles."""
    result = validate_payload(model, data)
    if not result.ok:
        raise ValidationError("Datos inválidos", details=result.errors)
    return result.value


# ──────────────────────────────────────────────────────────────────────────────
# Responses
# ──────────────────────────────────────────────────────────────────────────────
class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    name: str
    category: Optional[str] = None
    duration: int
    price: float
    vip_discount: float
    is_vip_only: bool
    is_active: bool

class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    timezone: str
    open_time: str
    close_time: str
    working_days: str

class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    time: str
    status: AppointmentStatus
    notes: Optional[str] = None
    original_price: float
    final_price: float
    vip_discount: float
    user_id: int
    service_id: int
    clinic_id: int
    cancelled_at: Optional[dt.datetime] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

class AppointmentPage(BaseModel):
    appointments: list[AppointmentOut]
    pagination: Pagination

class SlotsResponse(BaseModel):
    date: dt.date
    slots: list[str]

class AvailabilityCheckResponse(BaseModel):
    is_available: bool
    date: dt.date
    time: str
    alternative_slots: list[str] = []

class HistoryEntry(BaseModel):
    action: str
    timestamp: dt.datetime
    details: str

class AppointmentStatsOut(BaseModel):
    period: str
    total: int
    completed: int
    cancelled: int
    scheduled: int
    revenue: float
    completion_rate: float

class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    plan_type: PlanType
    status: SubscriptionStatus
    start_date: dt.datetime
    end_date: dt.datetime
    price: float
    discount: float
    cancelled_at: Optional[dt.datetime] = None
    cancel_reason: Optional[str] = None

class VipStatsOut(BaseModel):
    total_savings: float
    appointments_this_month: int
    completed_appointments: int
    days_remaining: int
    member_since: dt.datetime

class VipStatusOut(BaseModel):
    is_vip: bool
    subscription: Optional[SubscriptionOut] = None
    stats: Optional[VipStatsOut] = None

class PlanOut(BaseModel):
    id: str
    price: float
    original_price: float
    discount: int
    savings: float = 0.0

class VipServicePrice(BaseModel):
    id: int
    name: str
    original_price: float
    vip_price: float
    savings: float
    discount_percentage: float

class VipBenefitsOut(BaseModel):
    is_vip: bool
    plans: list[PlanOut]
    services: list[VipServicePrice]

class PlanBreakdownOut(BaseModel):
    plan_type: PlanType
    subscribers: int
    revenue: float

class VipAdminStatsOut(BaseModel):
    period: str
    total_vip_users: int
    new_subscriptions: int
    cancelled_subscriptions: int
    vip_revenue: float
    expiring_soon: int
    vip_users_in_clinic: int
    retention_rate: float
    plans: list[PlanBreakdownOut]

class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: Optional[int] = None
    type: NotificationType
    channel: str
    title: str
    message: str
    status: str
    is_read: bool
    read_at: Optional[dt.datetime] = None
    created_at: dt.datetime

class NotificationPage(BaseModel):
    notifications: list[NotificationOut]
    pagination: Pagination
    unread_count: int
