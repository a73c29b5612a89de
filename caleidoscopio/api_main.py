"""
API do Caleidoscópio (Sistema 2).

Execução local:
    uvicorn caleidoscopio.api_main:app --reload --port 8000
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from . import config
from .api_agendamentos import router as agendamentos_router
from .api_atendimentos import router as atendimentos_router
from .api_cadastros import router as cadastros_router
from .api_deps import extrair_token, get_current_user, get_manager, get_tenant_user
from .auth_models import AuthUser
from .auth_security import user_from_token
from .auth_service import login as sso_login
from .db import init_db
from .errors import CaleidoscopioError, NaoAutenticado
from .logging_setup import setup_logging
from .services import agenda_hoje, estatisticas_dashboard, sessoes_recentes

logger = logging.getLogger(__name__)

app = FastAPI(title="Caleidoscópio API", version="1.0.0")

# Rotas abertas (sem token)
PUBLIC_PATHS = frozenset({"/", "/login", "/api/health", "/docs", "/redoc", "/openapi.json"})
PUBLIC_API_PREFIXES = ("/api/auth/login", "/api/auth/validate", "/api/auth/set-cookie", "/api/health")


# Startup

@app.on_event("startup")
def startup() -> None:
    setup_logging()
    init_db()
    logger.info("Caleidoscópio API iniciada (ambiente: %s)", config.APP_ENV)


# Middleware de roteamento

@app.middleware("http")
async def exigir_token(request: Request, call_next):
    path = request.url.path
    if path in PUBLIC_PATHS or path.startswith(PUBLIC_API_PREFIXES):
        return await call_next(request)

    token = extrair_token(request)
    if not token:
        if path.startswith("/api/"):
            return JSONResponse(status_code=401, content={"error": "Token de acesso não fornecido"})
        return RedirectResponse(url="/login", status_code=307)

    request.state.token = token
    return await call_next(request)


# Erros

@app.exception_handler(CaleidoscopioError)
def erro_dominio(request: Request, exc: CaleidoscopioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
def erro_validacao(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Dados inválidos", "details": jsonable_errors(exc)},
    )


@app.exception_handler(Exception)
def erro_interno(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Erro inesperado em %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Erro interno do servidor", "details": str(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


# Schemas de autenticação

class LoginIn(BaseModel):
    email: str | None = None
    password: str | None = None
    tenantSlug: str | None = None


class SetCookieIn(BaseModel):
    token: str | None = None


def _set_session_cookie(response: JSONResponse, token: str) -> None:
    response.set_cookie(
        key=config.COOKIE_NAME,
        value=token,
        max_age=config.COOKIE_MAX_AGE,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def _user_out(user: AuthUser) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "tenantId": user.tenant_id,
        "tenant": user.tenant.model_dump() if user.tenant else None,
        "productToken": user.token,
    }


# AUTH endpoints

@app.post("/api/auth/login")
def login(payload: LoginIn, manager=Depends(get_manager)) -> JSONResponse:
    user, token = sso_login(manager, payload.email, payload.password, payload.tenantSlug)
    response = JSONResponse(content={"user": _user_out(user), "token": token})
    _set_session_cookie(response, token)
    return response


@app.post("/api/auth/logout")
def logout(manager=Depends(get_manager)) -> JSONResponse:
    manager.clear_session()
    response = JSONResponse(content={"success": True})
    response.delete_cookie(
        key=config.COOKIE_NAME,
        path="/",
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
    )
    return response


@app.post("/api/auth/set-cookie")
def set_cookie(payload: SetCookieIn) -> JSONResponse:
    if not payload.token:
        return JSONResponse(status_code=400, content={"error": "Token é obrigatório"})
    response = JSONResponse(content={"success": True})
    _set_session_cookie(response, payload.token)
    return response


@app.get("/api/auth/validate")
def validate(request: Request) -> dict[str, Any]:
    token = request.headers.get("x-caleidoscopio-token") or extrair_token(request)
    if not token:
        raise NaoAutenticado("Token não fornecido")
    user = user_from_token(token)
    if user is None:
        raise NaoAutenticado("Token inválido")
    return {"valid": True, "userId": user.id, "tenantId": user.tenant_id}


@app.get("/api/me")
def me(user: AuthUser = Depends(get_current_user)) -> dict[str, Any]:
    return {"success": True, "user": {**_user_out(user), "loginTime": user.login_time}}


@app.get("/api/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "service": "caleidoscopio", "environment": config.APP_ENV}


# Páginas (UI em Streamlit)

@app.get("/", include_in_schema=False)
def home() -> RedirectResponse:
    return RedirectResponse(url=config.UI_BASE_URL)


@app.get("/login", include_in_schema=False)
def login_page() -> RedirectResponse:
    return RedirectResponse(url=config.UI_BASE_URL)


# Dashboard

@app.get("/api/dashboard/stats")
def dashboard_stats(user: AuthUser = Depends(get_tenant_user)) -> dict[str, Any]:
    return {"success": True, "data": estatisticas_dashboard(user), "tenant": user.tenant_ref()}


@app.get("/api/dashboard/agenda-hoje")
def dashboard_agenda_hoje(user: AuthUser = Depends(get_tenant_user)) -> dict[str, Any]:
    return {"success": True, "data": agenda_hoje(user), "tenant": user.tenant_ref()}


@app.get("/api/dashboard/sessoes-recentes")
def dashboard_sessoes_recentes(user: AuthUser = Depends(get_tenant_user)) -> dict[str, Any]:
    return {"success": True, "data": sessoes_recentes(user), "tenant": user.tenant_ref()}


app.include_router(agendamentos_router)
app.include_router(cadastros_router)
app.include_router(atendimentos_router)
