# clinic_booking/errors.py
"""
Taxonomía de errores del motor de reservas.

Los servicios lanzan estas excepciones; la capa HTTP las traduce a status codes
con los handlers registrados en `register_exception_handlers`.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import settings

logger = logging.getLogger(__name__)


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BookingError):
    """Entrada mal formada o fuera de rango (fecha pasada, plan inválido...)."""
    status_code = 400


class ForbiddenError(BookingError):
    status_code = 403


class NotFoundError(BookingError):
    status_code = 404


class ConflictError(BookingError):
    """Slot ocupado, suscripción activa duplicada, doble cancelación."""
    status_code = 409


class PaymentError(BookingError):
    status_code = 402


class RateLimitError(BookingError):
    status_code = 429


def _body(message: str, details: Optional[Any] = None) -> dict:
    body: dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=_body(exc.message, exc.details))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("IntegrityError en %s %s: %s", request.method, request.url.path, exc.orig)
        detail = str(exc.orig) if settings.DEBUG else None
        return JSONResponse(status_code=409, content=_body("Ya existe un registro en conflicto", detail))

    @app.exception_handler(SQLAlchemyError)
    async def db_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Error de base de datos en %s %s", request.method, request.url.path)
        detail = str(exc) if settings.DEBUG else None
        return JSONResponse(status_code=500, content=_body("Error interno del servidor", detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Error no controlado en %s %s", request.method, request.url.path)
        detail = repr(exc) if settings.DEBUG else None
        return JSONResponse(status_code=500, content=_body("Error interno del servidor", detail))
