# clinic_booking/database.py
from __future__ import annotations
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    # SQLite no aplica FKs por defecto; busy_timeout para escrituras concurrentes
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.execute("PRAGMA busy_timeout=5000")
    cur.close()

def build_engine(url: str) -> Engine:
    """
    Engine según el tipo de base:
      - sqlite (local / tests): sin chequeo de hilo, FKs activadas
      - Postgres u otros (producción): pool dimensionado desde settings
    """
    if not url:
        raise RuntimeError("DATABASE_URL no está configurada (revisa tu .env).")
    if url.startswith("sqlite"):
        eng = create_engine(
            url,
            connect_args={"check_same_thread": False},  # el pool de notificaciones usa otros hilos
            pool_pre_ping=True,
        )
        event.listen(eng, "connect", _sqlite_pragmas)
        return eng
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False)

Base = declarative_base()

def init_db(bind: Engine | None = None) -> None:
    """Crea tablas e índices (incluido el único parcial de slots) si no existen."""
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    """Sesión por request: se abre al entrar y se cierra siempre al salir."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
