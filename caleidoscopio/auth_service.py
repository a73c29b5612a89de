from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from .auth_models import AuthUser, TenantInfo
from .auth_security import create_session_token, user_from_token
from .db import db_session
from .errors import DadosInvalidos, ManagerError, NaoAutenticado, PermissaoNegada
from .models import Tenant

logger = logging.getLogger(__name__)


def registrar_tenant(tenant: TenantInfo) -> None:
    """Mantém o registro local da clínica em sincronia com o Manager (idempotente)."""
    with db_session() as s:
        t = s.get(Tenant, tenant.id)
        plano = tenant.plan.name if tenant.plan else None
        if t is None:
            # o slug pode ter sido usado por um registro antigo com outro id
            antigo = s.execute(select(Tenant).where(Tenant.slug == tenant.slug)).scalar_one_or_none()
            if antigo is not None:
                antigo.slug = f"{antigo.slug}-{antigo.id}"
                s.flush()
            s.add(Tenant(id=tenant.id, nome=tenant.name, slug=tenant.slug, plano=plano, ativo=True))
            logger.info("Clínica registrada localmente: %s (%s)", tenant.name, tenant.id)
        else:
            t.nome = tenant.name
            t.slug = tenant.slug
            t.plano = plano


def login(manager, email: str | None, password: str | None, tenant_slug: str | None = None) -> tuple[AuthUser, str]:
    """
    Use case: login via Sistema 1.
    - autentica no Manager (SSO em três etapas)
    - exige usuário associado a uma clínica
    - devolve o usuário e o token de sessão deste sistema
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise DadosInvalidos("Email e senha são obrigatórios")

    try:
        resultado = manager.sso_login(email, password, tenant_slug)
    except ManagerError as e:
        if e.status_code == 401:
            raise NaoAutenticado("Credenciais inválidas") from e
        raise

    if not resultado.user or not resultado.user.get("id"):
        raise NaoAutenticado("Credenciais inválidas")

    if resultado.tenant is None:
        raise PermissaoNegada("Usuário não está associado a uma clínica")

    user = AuthUser(
        id=resultado.user["id"],
        email=resultado.user.get("email") or email,
        name=resultado.user.get("name") or "",
        role=resultado.user.get("role") or "USER",
        tenant=resultado.tenant,
        config=resultado.config,
        token=resultado.token,
        login_time=datetime.now(timezone.utc).isoformat(),
    )
    registrar_tenant(resultado.tenant)

    logger.info("Login de %s (%s) na clínica %s", user.email, user.role, resultado.tenant.name)
    return user, create_session_token(user)


def autenticar_token(token: str | None, manager=None, validar_no_manager: bool = True) -> AuthUser:
    """
    Resolve o usuário a partir do token de sessão.
    Com validar_no_manager, o token SSO embutido é revalidado no Sistema 1.
    """
    if not token:
        raise NaoAutenticado("Usuário não autenticado")

    user = user_from_token(token)
    if user is None:
        raise NaoAutenticado("Token inválido")

    if validar_no_manager and manager is not None:
        if not user.token or not manager.validate_sso_token(user.token):
            logger.info("Token SSO de %s recusado pelo Manager", user.email)
            raise NaoAutenticado("Sessão expirada. Faça login novamente.")

    return user
