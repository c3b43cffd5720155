# clinic_booking/models.py
import datetime as dt
import enum
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Integer, String, Date, DateTime, Enum, Float, ForeignKey, Boolean, Text,
    Index, text,
)
from .config import settings
from .database import Base


def utcnow() -> dt.datetime:
    """Timestamps en UTC *naive* (así se guardan en todas las tablas)."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    CLIENTE = "CLIENTE"

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

# Estados que siguen ocupando su slot
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)
TERMINAL_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)

class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

class PlanType(str, enum.Enum):
    monthly = "monthly"
    annual = "annual"

class NotificationType(str, enum.Enum):
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    APPOINTMENT_CONFIRMATION = "APPOINTMENT_CONFIRMATION"
    APPOINTMENT_CANCELLATION = "APPOINTMENT_CANCELLATION"
    APPOINTMENT_RESCHEDULE = "APPOINTMENT_RESCHEDULE"
    VIP_PROMOTION = "VIP_PROMOTION"
    GENERAL = "GENERAL"


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/Argentina/Buenos_Aires")
    open_time: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    close_time: Mapped[str] = mapped_column(String(5), nullable=False, default="18:00")
    # Códigos ISO de día: 1=lunes ... 7=domingo
    working_days: Mapped[str] = mapped_column(String(20), nullable=False, default="1,2,3,4,5")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    services = relationship("Service", back_populates="clinic")

    @property
    def working_day_set(self) -> set[int]:
        raw = self.working_days or settings.DEFAULT_WORKING_DAYS
        return {int(d) for d in raw.split(",") if d.strip()}

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="user_role"), default=UserRole.CLIENTE, nullable=False)
    clinic_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True)
    # Bandera denormalizada; la verdad está en vip_subscriptions
    is_vip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vip_expiry: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    appointments = relationship("Appointment", back_populates="user")
    vip_subscriptions = relationship("VipSubscription", back_populates="user")

class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    clinic_id: Mapped[int] = mapped_column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)  # minutos
    price: Mapped[float] = mapped_column(Float, nullable=False)
    vip_discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # 0-100
    is_vip_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    clinic = relationship("Clinic", back_populates="services")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Un solo turno no terminal por (clínica, día, hora). Es la garantía real
        # contra la doble reserva; el chequeo previo en la app es sólo un atajo.
        Index(
            "uq_appointments_active_slot",
            "clinic_id", "date", "time",
            unique=True,
            sqlite_where=text("status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS')"),
            postgresql_where=text("status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS')"),
        ),
        Index("ix_appointments_clinic_date", "clinic_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM hora local de la clínica
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Snapshot de precios al crear/actualizar; nunca se recalcula después
    original_price: Mapped[float] = mapped_column(Float, nullable=False)
    final_price: Mapped[float] = mapped_column(Float, nullable=False)
    vip_discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(Integer, ForeignKey("services.id", ondelete="RESTRICT"), nullable=False)
    clinic_id: Mapped[int] = mapped_column(Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)

    cancelled_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    completed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="appointments")
    service = relationship("Service")
    clinic = relationship("Clinic")

class VipSubscription(Base):
    __tablename__ = "vip_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_type: Mapped[PlanType] = mapped_column(Enum(PlanType, name="plan_type"), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status"),
        default=SubscriptionStatus.PENDING,
        nullable=False,
    )
    start_date: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, index=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cancelled_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="vip_subscriptions")

class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType, name="notification_type"), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), default="sms")
    title: Mapped[str] = mapped_column(String(200), default="")
    message: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(50), default="queued")  # sent / dry_run / mock / error
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
