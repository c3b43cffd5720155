# clinic_booking/main.py
import os
import logging

from fastapi import FastAPI

from .config import settings
from .database import init_db
from .errors import register_exception_handlers
from .jobs.scheduler import shutdown_scheduler, start_scheduler
from .services.notifications import get_notifier
from .services.rate_limit import build_rate_limiter

# Routers
from .routers.admin import router as admin_router
from .routers.appointments import router as appointments_router
from .routers.clinics import router as clinics_router
from .routers.notifications import router as notifications_router
from .routers.vip import router as vip_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Controla niveles con variables de entorno:
#   LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
register_exception_handlers(app)
app.state.rate_limiter = build_rate_limiter()

# Monta rutas
app.include_router(appointments_router)
app.include_router(vip_router)
app.include_router(clinics_router)
app.include_router(notifications_router)
app.include_router(admin_router, prefix="/admin")  # admin.py NO repite /admin

# ──────────────────────────────────────────────────────────────────────────────
# Ciclo de vida
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    logger.info("Startup completo: %s (%s)", settings.APP_NAME, settings.ENV)

@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
    get_notifier().shutdown()

@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
