"""
Cliente do Sistema 1 (Caleidoscópio Manager).

Fluxo de login SSO (três etapas):
1. POST /api/auth/login                 -> autentica e abre sessão (cookie) no Manager
2. POST /api/auth/validate-access       -> confirma acesso ao produto educacional
3. POST /api/products/sso/<produto>     -> gera o token SSO do produto

O token SSO é validado depois em GET /api/products/sso/<produto>?token=...
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable

import requests

from . import config
from .auth_models import SSOResult, TenantInfo
from .auth_security import hash_password, verify_password
from .errors import ManagerError

logger = logging.getLogger(__name__)

DEFAULT_TENANT_CONFIG: dict[str, Any] = {
    "tenant": {
        "maxStudents": 100,
        "enableCertificates": True,
        "enableLiveClasses": True,
        "contentAccess": "full",
    }
}


def _mask(token: str) -> str:
    return f"{token[:20]}..." if token else "-"


def _error_message(response: requests.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default


class ManagerClient:
    """
    Cliente HTTP do Manager.

    O login usa uma `requests.Session` própria (os cookies do Manager ligam as
    três etapas a um único usuário). As demais chamadas se autenticam pelo token
    e usam a sessão compartilhada, que não guarda cookies de usuários.
    """

    def __init__(
        self,
        base_url: str = config.MANAGER_API_URL,
        product_slug: str = config.MANAGER_PRODUCT_SLUG,
        timeout: float = config.MANAGER_TIMEOUT,
        session: requests.Session | None = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.product_slug = product_slug
        self.timeout = timeout
        self.session_factory = session_factory
        self.session = session or self._nova_sessao()

    def _nova_sessao(self) -> requests.Session:
        s = self.session_factory()
        s.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        return s

    def _request(
        self, method: str, path: str, session: requests.Session | None = None, **kwargs: Any
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            return (session or self.session).request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error("Falha de conexão com o Manager em %s: %s", url, e)
            raise ManagerError(
                f"Erro de conexão com Sistema Manager. Verifique se está rodando em {self.base_url}."
            ) from e

    # ETAPA 1
    def authenticate_user(
        self,
        email: str,
        password: str,
        tenant_slug: str | None = None,
        session: requests.Session | None = None,
    ) -> dict[str, Any]:
        logger.info("Login no Manager para %s", email)
        r = self._request(
            "POST",
            "/api/auth/login",
            session=session,
            json={"email": email, "password": password, "tenantSlug": tenant_slug},
        )
        if not r.ok:
            message = _error_message(r, f"HTTP {r.status_code}: {r.reason}")
            logger.warning("Manager recusou o login de %s: %s %s", email, r.status_code, message)
            status = 401 if r.status_code in (400, 401, 403) else 500
            raise ManagerError(message, status_code=status)

        data = r.json()
        if not data.get("success") or not data.get("user"):
            raise ManagerError("Resposta de login inválida do Sistema Manager", status_code=401)
        return data

    # ETAPA 2
    def validate_access(self, email: str, session: requests.Session | None = None) -> dict[str, Any]:
        r = self._request(
            "POST",
            "/api/auth/validate-access",
            session=session,
            json={"productSlug": self.product_slug, "userEmail": email},
        )
        try:
            data = r.json()
        except ValueError as e:
            raise ManagerError(f"Resposta inválida do Manager (HTTP {r.status_code})") from e

        if not data.get("hasAccess"):
            message = data.get("error") or "Você não tem acesso ao módulo educacional"
            logger.warning("Acesso negado ao produto %s para %s: %s", self.product_slug, email, message)
            raise ManagerError(message, status_code=403)

        tenant = data.get("tenant") or {}
        logger.info("Acesso confirmado para %s (clínica: %s)", email, tenant.get("name"))
        return data

    # ETAPA 3
    def generate_sso_token(self, session: requests.Session | None = None) -> dict[str, Any]:
        r = self._request("POST", f"/api/products/sso/{self.product_slug}", session=session)
        if not r.ok:
            raise ManagerError(_error_message(r, "Erro ao gerar token de acesso"))
        data = r.json()
        logger.info("Token SSO gerado, expira em %s segundos", data.get("expiresIn"))
        return data

    def validate_sso_token(self, token: str) -> bool:
        """Nunca lança exceção: qualquer falha conta como token inválido."""
        try:
            r = self._request("GET", f"/api/products/sso/{self.product_slug}", params={"token": token})
        except ManagerError:
            return False

        if not r.ok:
            logger.warning("Validação do token %s falhou: HTTP %s", _mask(token), r.status_code)
            return False
        try:
            valid = r.json().get("valid") is True
        except ValueError:
            return False
        if not valid:
            logger.info("Token SSO %s inválido", _mask(token))
        return valid

    def sso_login(self, email: str, password: str, tenant_slug: str | None = None) -> SSOResult:
        sessao = self._nova_sessao()
        try:
            login = self.authenticate_user(email, password, tenant_slug, session=sessao)
            access = self.validate_access(email, session=sessao)
            sso = self.generate_sso_token(session=sessao)
        finally:
            sessao.close()
        if not sso.get("token"):
            raise ManagerError("Erro ao gerar token de acesso")

        login_user = login["user"]
        access_user = access.get("user") or {}
        user = {
            key: access_user.get(key) or login_user.get(key)
            for key in ("id", "email", "name", "role")
        }

        tenant_data = access.get("tenant") or login_user.get("tenant")
        return SSOResult(
            user=user,
            tenant=TenantInfo(**tenant_data) if tenant_data else None,
            config=access.get("config") or DEFAULT_TENANT_CONFIG,
            token=sso["token"],
        )

    def get_users(self, tenant_id: str, auth_token: str) -> dict[str, Any]:
        r = self._request(
            "GET",
            "/api/users",
            params={"tenantId": tenant_id},
            headers={"Authorization": f"Bearer {auth_token}"},
        )
        if not r.ok:
            raise ManagerError(_error_message(r, "Erro ao buscar usuários"))
        data = r.json()
        logger.info("%d usuários do Manager para o tenant %s", len(data.get("users") or []), tenant_id)
        return data

    def create_user(self, user_data: dict[str, Any], sso_token: str) -> dict[str, Any]:
        r = self._request(
            "POST",
            "/api/users/create-with-sso",
            params={"token": sso_token},
            json=user_data,
        )
        if not r.ok:
            status = r.status_code if r.status_code in (400, 409) else None
            raise ManagerError(_error_message(r, "Erro ao criar usuário"), status_code=status)
        data = r.json()
        logger.info("Usuário criado no Manager: %s", (data.get("user") or {}).get("email"))
        return data

    def clear_session(self) -> None:
        """Os cookies do Manager vivem só durante cada login; a sessão compartilhada não guarda nenhum."""
        logger.debug("Logout: nenhuma sessão do Manager a limpar")


# =========================
# Mock para desenvolvimento
# =========================
MOCK_TENANT = {
    "id": "tenant_1",
    "name": "Clínica Exemplo",
    "slug": "clinica-exemplo",
    "plan": {"id": "plan_premium", "name": "Premium"},
}

MOCK_USERS: list[dict[str, Any]] = [
    {
        "password": "clinica123!@#",
        "user": {"id": "user_1", "email": "admin@clinica-exemplo.com", "name": "Dr. João Silva", "role": "ADMIN"},
        "tenant": MOCK_TENANT,
    },
    {
        "password": "user123!@#",
        "user": {
            "id": "user_2",
            "email": "terapeuta1@clinica-exemplo.com",
            "name": "Maria Santos",
            "role": "TERAPEUTA",
        },
        "tenant": MOCK_TENANT,
        "config": {"tenant": {**DEFAULT_TENANT_CONFIG["tenant"], "contentAccess": "limited"}},
    },
    {
        "password": "admin123!@#",
        "user": {"id": "user_0", "email": "admin@caleidoscopio.com", "name": "Super Admin", "role": "SUPER_ADMIN"},
        "tenant": None,
    },
]

MOCK_TOKEN_PREFIX = "mock_token_"


class MockManagerClient:
    """Simula o Sistema 1 com usuários fixos; senhas guardadas com bcrypt."""

    def __init__(self, users: list[dict[str, Any]] | None = None) -> None:
        self._users = []
        for entry in users if users is not None else MOCK_USERS:
            entry = dict(entry)
            entry["password_hash"] = hash_password(entry.pop("password"))
            self._users.append(entry)
        self._created: list[dict[str, Any]] = []

    def _find(self, email: str) -> dict[str, Any] | None:
        email = email.strip().lower()
        return next((u for u in self._users if u["user"]["email"] == email), None)

    def authenticate_user(
        self, email: str, password: str, tenant_slug: str | None = None, session: Any = None
    ) -> dict[str, Any]:
        logger.info("[MOCK] Login para %s", email)
        entry = self._find(email)
        if not entry or not verify_password(password, entry["password_hash"]):
            raise ManagerError("Credenciais inválidas", status_code=401)
        return {"success": True, "user": {**entry["user"], "tenant": entry["tenant"]}}

    def validate_access(self, email: str, session: Any = None) -> dict[str, Any]:
        entry = self._find(email)
        if not entry:
            raise ManagerError("Usuário não encontrado", status_code=403)
        return {
            "hasAccess": True,
            "user": entry["user"],
            "tenant": entry["tenant"],
            "config": entry.get("config") or DEFAULT_TENANT_CONFIG,
        }

    def generate_sso_token(self, session: Any = None) -> dict[str, Any]:
        token = f"{MOCK_TOKEN_PREFIX}{int(time.time() * 1000)}_{secrets.token_hex(5)}"
        return {"token": token, "expiresIn": config.COOKIE_MAX_AGE}

    def validate_sso_token(self, token: str) -> bool:
        return bool(token) and token.startswith(MOCK_TOKEN_PREFIX)

    def sso_login(self, email: str, password: str, tenant_slug: str | None = None) -> SSOResult:
        login = self.authenticate_user(email, password, tenant_slug)
        access = self.validate_access(email)
        sso = self.generate_sso_token()
        tenant_data = access.get("tenant") or login["user"].get("tenant")
        return SSOResult(
            user=access["user"],
            tenant=TenantInfo(**tenant_data) if tenant_data else None,
            config=access["config"],
            token=sso["token"],
        )

    def get_users(self, tenant_id: str, auth_token: str) -> dict[str, Any]:
        if not self.validate_sso_token(auth_token):
            raise ManagerError("Token inválido", status_code=401)
        users = [
            {**u["user"], "isActive": True}
            for u in self._users
            if u["tenant"] and u["tenant"]["id"] == tenant_id
        ]
        users += [u for u in self._created if u["tenantId"] == tenant_id]
        return {"users": users}

    def create_user(self, user_data: dict[str, Any], sso_token: str) -> dict[str, Any]:
        if not self.validate_sso_token(sso_token):
            raise ManagerError("Token inválido", status_code=401)
        email = user_data["email"].strip().lower()
        if self._find(email) or any(u["email"] == email for u in self._created):
            raise ManagerError("Email já cadastrado", status_code=409)
        user = {
            "id": f"user_{secrets.token_hex(6)}",
            "email": email,
            "name": user_data["name"],
            "role": user_data.get("role") or "USER",
            "tenantId": user_data["tenantId"],
            "isActive": True,
        }
        self._created.append(user)
        return {"success": True, "user": user}

    def clear_session(self) -> None:
        logger.debug("[MOCK] Sessão limpa")


_client: ManagerClient | MockManagerClient | None = None


def get_manager_client() -> ManagerClient | MockManagerClient:
    """Instância única; USE_MOCK_MANAGER=true seleciona o mock."""
    global _client
    if _client is None:
        if config.USE_MOCK_MANAGER:
            logger.info("Usando MockManagerClient para desenvolvimento")
            _client = MockManagerClient()
        else:
            logger.info("Usando ManagerClient real em %s", config.MANAGER_API_URL)
            _client = ManagerClient()
    return _client
