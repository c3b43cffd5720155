# clinic_booking/auth.py
"""
Identidad del llamador.

La emisión y verificación de tokens vive en el gateway; éste reenvía la
identidad ya validada en los headers X-User-Id / X-User-Role / X-Clinic-Id.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from .config import settings
from .errors import ForbiddenError
from .models import UserRole

STAFF_ROLES = (UserRole.ADMIN, UserRole.STAFF)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole = UserRole.CLIENTE
    clinic_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def get_actor(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_clinic_id: Optional[int] = Header(default=None),
) -> Actor:
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No autenticado")
    try:
        role = UserRole((x_user_role or UserRole.CLIENTE.value).strip().upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Rol inválido")
    return Actor(user_id=x_user_id, role=role, clinic_id=x_clinic_id)

def require_staff(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_staff:
        raise ForbiddenError("Acceso restringido al staff de la clínica")
    return actor

def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenError("Acceso restringido a administradores")
    return actor

def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="ADMIN_TOKEN no configurado")
    if provided != expected:
        raise HTTPException(status_code=401, detail="Token inválido")
