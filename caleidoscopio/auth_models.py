from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})
# USER = terapeuta no Sistema 1
TERAPEUTA_ROLES = frozenset({"USER", "TERAPEUTA"}) | ADMIN_ROLES


class TenantPlan(BaseModel):
    id: str | None = None
    name: str | None = None
    slug: str | None = None


class TenantInfo(BaseModel):
    """Clínica do usuário, como devolvida pelo Sistema 1."""

    id: str
    name: str
    slug: str
    cnpj: str | None = None
    status: str | None = None
    plan: TenantPlan | None = None


class AuthUser(BaseModel):
    """
    Usuário autenticado via Sistema 1 (Manager).
    - token: token SSO emitido pelo Manager para o produto educacional
    """

    id: str
    email: str
    name: str
    role: str
    tenant: TenantInfo | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    token: str = ""
    login_time: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def tenant_id(self) -> str | None:
        return self.tenant.id if self.tenant else None

    def tenant_ref(self) -> dict[str, str]:
        """Bloco `tenant` que acompanha as respostas da API."""
        if not self.tenant:
            return {}
        return {"id": self.tenant.id, "name": self.tenant.name}


class SSOResult(BaseModel):
    """Resultado do fluxo completo de login SSO no Manager."""

    user: dict[str, Any]
    tenant: TenantInfo | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    token: str
