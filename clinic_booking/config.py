# clinic_booking/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "clinic_booking"
    ENV: str = "dev"
    # Con DEBUG=True los errores internos incluyen el detalle crudo
    DEBUG: bool = False
    # TZ por defecto para clínicas sin timezone propio
    TIMEZONE: str = "America/Argentina/Buenos_Aires"

    # ===== DB =====
    # En producción define DATABASE_URL con tu Postgres. Local puede caer a SQLite.
    DATABASE_URL: str = "sqlite:///./clinic_booking.db"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # ===== Horario de clínica y slots =====
    SLOT_MINUTES: int = 30
    DEFAULT_OPEN_TIME: str = "09:00"
    DEFAULT_CLOSE_TIME: str = "18:00"
    DEFAULT_WORKING_DAYS: str = "1,2,3,4,5"
    DEFAULT_SERVICE_DURATION: int = 60

    # ===== VIP =====
    VIP_MONTHLY_PRICE: float = 1500.0
    VIP_ANNUAL_PRICE: float = 12000.0

    # ===== Pagos (simulados) =====
    PAYMENT_DELAY_SECONDS: float = 2.0
    PAYMENT_FAILURE_RATE: float = 0.05
    PAYMENT_TIMEOUT_SECONDS: float = 10.0

    # ===== Notificaciones / Twilio =====
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_SMS_FROM: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    NOTIFY_WORKERS: int = 4

    # Simulación (True = no envía mensajes reales)
    DRY_RUN: bool = False

    # ===== Rate limiting =====
    RATE_LIMIT_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    # Si está definido se comparte el contador entre instancias
    REDIS_URL: Optional[str] = None

    # ===== Jobs =====
    ENABLE_SCHEDULER: bool = True

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """
        Normaliza valores que suelen llegar "sucios" desde el entorno:
          - ENV en minúsculas
          - en producción nunca se expone el detalle de errores
        """
        self.ENV = (self.ENV or "dev").strip().lower()
        if self.ENV in ("prod", "production"):
            self.DEBUG = False


settings = Settings()
