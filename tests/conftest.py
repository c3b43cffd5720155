import os

# Antes de importar la app: sin scheduler, sin SMS reales, BD en memoria por defecto
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("DRY_RUN", "true")
os.environ.setdefault("ADMIN_TOKEN", "test-admin")

from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from clinic_booking import models
from clinic_booking.auth import Actor
from clinic_booking.database import build_engine, init_db


class RecordingNotifier:
    """Reemplazo del NotificationService: guarda lo que se hubiera enviado."""

    def __init__(self):
        self.sent = []

    def notify(self, kind, record, recipient, **extra):
        self.sent.append(SimpleNamespace(
            kind=kind,
            record_id=record.id,
            user_id=recipient.id if recipient is not None else None,
            extra=extra,
        ))
        return None

    def kinds(self):
        return [n.kind for n in self.sent]

    def shutdown(self):
        pass


class ScriptedPayments:
    """Procesador de pagos con resultados predefinidos (True por defecto)."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []

    def charge(self, method, amount):
        self.calls.append((method, amount))
        return self.results.pop(0) if self.results else True


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def payments():
    return ScriptedPayments()


@pytest.fixture
def seed(db):
    clinic = models.Clinic(
        name="Clínica Centro",
        timezone="America/Argentina/Buenos_Aires",
        open_time="09:00",
        close_time="18:00",
        working_days="1,2,3,4,5",
    )
    db.add(clinic)
    db.flush()

    client = models.User(name="Ana Pérez", email="ana@example.com", phone="+5491100000001", clinic_id=clinic.id)
    other = models.User(name="Luis Gómez", email="luis@example.com", phone="+5491100000002", clinic_id=clinic.id)
    staff = models.User(name="Recepción", email="staff@example.com", role=models.UserRole.STAFF, clinic_id=clinic.id)
    admin = models.User(name="Admin", email="admin@example.com", role=models.UserRole.ADMIN, clinic_id=clinic.id)
    facial = models.Service(clinic_id=clinic.id, name="Limpieza facial", category="facial",
                            duration=60, price=8500.0, vip_discount=20.0)
    laser = models.Service(clinic_id=clinic.id, name="Láser premium", category="laser",
                           duration=60, price=30000.0, vip_discount=10.0, is_vip_only=True)
    db.add_all([client, other, staff, admin, facial, laser])
    db.commit()

    return SimpleNamespace(
        clinic=clinic,
        client=client,
        other=other,
        staff=staff,
        admin=admin,
        facial=facial,
        laser=laser,
        client_actor=Actor(user_id=client.id, role=models.UserRole.CLIENTE, clinic_id=clinic.id),
        other_actor=Actor(user_id=other.id, role=models.UserRole.CLIENTE, clinic_id=clinic.id),
        staff_actor=Actor(user_id=staff.id, role=models.UserRole.STAFF, clinic_id=clinic.id),
        admin_actor=Actor(user_id=admin.id, role=models.UserRole.ADMIN, clinic_id=clinic.id),
    )


@pytest.fixture
def workdays():
    """Próximos días hábiles (lun-vie), al menos dos días en el futuro."""
    days = []
    d = date.today() + timedelta(days=2)
    while len(days) < 5:
        if d.isoweekday() <= 5:
            days.append(d)
        d += timedelta(days=1)
    return days

@pytest.fixture
def saturday():
    d = date.today() + timedelta(days=2)
    while d.isoweekday() != 6:
        d += timedelta(days=1)
    return d
