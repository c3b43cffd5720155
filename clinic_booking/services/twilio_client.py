# clinic_booking/services/twilio_client.py
import logging

from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ..config import settings

logger = logging.getLogger(__name__)

def _normalize_phone(number: str) -> str:
    if not number:
        return number
    number = number.strip().replace(" ", "").replace("-", "")
    if not number.startswith("+"):
        number = "+" + number.lstrip("+")
    return number

def get_twilio_client() -> Client | None:
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
        return None
    # Timeout acotado: un proveedor lento no debe colgar al worker de notificaciones
    http_client = TwilioHttpClient(timeout=settings.NOTIFY_TIMEOUT_SECONDS)
    return Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, http_client=http_client)

def send_sms(to: str, body: str) -> dict:
    """
    Envía un SMS usando Twilio.
    - Si DRY_RUN=true: no envía; registra en logs y regresa {"status": "dry_run", ...}
    - Si faltan credenciales: modo MOCK (no envía) y regresa {"status": "mock", ...}
    - Si hay error al enviar: registra y regresa {"status": "error", "error": "..."}
    """
    to_norm = _normalize_phone(to)
    from_norm = _normalize_phone(settings.TWILIO_SMS_FROM or "")
    flat = body.replace("\n", " | ")

    # DRY RUN: solo log, no se consume Twilio
    if settings.DRY_RUN:
        logger.info("[DRY_RUN SMS] to=%s body=%s", to_norm, flat)
        return {"status": "dry_run", "to": to_norm, "body": body}

    client = get_twilio_client()

    # MOCK si no hay credenciales/configuración
    if client is None or not from_norm:
        logger.info("[SMS MOCK] to=%s body=%s", to_norm, flat)
        return {"status": "mock", "to": to_norm, "body": body}

    try:
        msg = client.messages.create(from_=from_norm, to=to_norm, body=body)
        return {"status": "sent", "sid": msg.sid, "to": to_norm}
    except Exception as e:
        logger.warning("[SMS ERROR] to=%s err=%s", to_norm, e)
        return {"status": "error", "error": str(e), "to": to_norm}
