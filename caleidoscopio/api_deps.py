from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from . import config
from .auth_models import AuthUser
from .auth_service import autenticar_token
from .errors import NaoAutenticado, PermissaoNegada
from .manager_client import get_manager_client
from .permissions import has_permission


def extrair_token(request: Request) -> str | None:
    """Cookie de sessão, Authorization: Bearer ou x-caleidoscopio-token (nesta ordem)."""
    token = request.cookies.get(config.COOKIE_NAME)
    if token:
        return token

    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token

    return request.headers.get("x-caleidoscopio-token") or None


def get_manager():
    return get_manager_client()


def get_current_user(request: Request, manager=Depends(get_manager)) -> AuthUser:
    token = getattr(request.state, "token", None) or extrair_token(request)
    if not token:
        raise NaoAutenticado("Usuário não autenticado")
    return autenticar_token(token, manager, validar_no_manager=config.MANAGER_VALIDATE_EACH_REQUEST)


def get_tenant_user(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.tenant_id:
        raise PermissaoNegada("Usuário não está associado a uma clínica")
    return user


def require_permission(action: str, message: str) -> Callable[[AuthUser], AuthUser]:
    """Dependência que exige a permissão `action` para o usuário da clínica."""

    def _check(user: AuthUser = Depends(get_tenant_user)) -> AuthUser:
        if not has_permission(user, action):
            raise PermissaoNegada(message)
        return user

    return _check


def require_admin(message: str) -> Callable[[AuthUser], AuthUser]:
    def _check(user: AuthUser = Depends(get_tenant_user)) -> AuthUser:
        if not user.is_admin:
            raise PermissaoNegada(message)
        return user

    return _check
