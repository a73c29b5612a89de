from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .api_deps import require_permission
from .atendimentos import (
    criar_anamnese,
    criar_atividade,
    finalizar_sessao,
    iniciar_sessao,
    listar_anamneses,
    listar_atividades,
    listar_sessoes,
    obter_sessao,
)
from .auth_models import AuthUser

router = APIRouter(prefix="/api")


def _envelope(user: AuthUser, data: Any, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": data, **extra, "tenant": user.tenant_ref()}


# Schemas

class AtividadeIn(BaseModel):
    nome: str | None = None
    tipo: str | None = None
    descricao: str | None = None
    metodologia: str | None = None
    objetivo: str | None = None


class SessaoIn(BaseModel):
    pacienteId: str | None = None
    atividadeId: str | None = None


class FinalizarSessaoIn(BaseModel):
    sessaoId: str | None = None
    observacoes_gerais: str | None = None
    nota: float | None = None


class AnamneseIn(BaseModel):
    pacienteId: str | None = None
    profissionalId: str | None = None
    status: str | None = None
    historiaDesenvolvimento: Any = None
    comportamentosExcessivos: Any = None
    comportamentosDeficitarios: Any = None
    comportamentosProblema: Any = None
    rotinaDiaria: Any = None
    ambienteFamiliar: Any = None
    ambienteEscolar: Any = None
    preferencias: Any = None
    habilidadesCriticas: Any = None
    observacoesGerais: str | None = None


# Atividades

@router.get("/atividades", tags=["atividades"])
def api_atividades(
    user: AuthUser = Depends(require_permission("view_activities", "Sem permissão para visualizar atividades")),
) -> dict[str, Any]:
    data = listar_atividades(user)
    return _envelope(user, data, total=len(data))


@router.post("/atividades", tags=["atividades"])
def api_criar_atividade(
    payload: AtividadeIn,
    user: AuthUser = Depends(require_permission("create_activities", "Sem permissão para criar atividades")),
) -> dict[str, Any]:
    return _envelope(user, criar_atividade(user, payload.model_dump(exclude_unset=True)))


# Sessões

@router.get("/sessoes", tags=["sessoes"])
def api_sessoes(
    id: str | None = Query(default=None),
    pacienteId: str | None = Query(default=None),
    status: str | None = Query(default=None),
    user: AuthUser = Depends(require_permission("view_sessions", "Sem permissão para visualizar sessões")),
) -> dict[str, Any]:
    """Com `id`, devolve uma única sessão."""
    if id:
        return {"success": True, "data": obter_sessao(user, id)}
    data = listar_sessoes(user, paciente_id=pacienteId, status=status)
    return _envelope(user, data, total=len(data))


@router.post("/sessoes", tags=["sessoes"])
def api_iniciar_sessao(
    payload: SessaoIn,
    user: AuthUser = Depends(require_permission("create_sessions", "Sem permissão para criar sessões")),
) -> dict[str, Any]:
    sessao = iniciar_sessao(user, payload.pacienteId, payload.atividadeId)
    return _envelope(user, sessao, message="Sessão iniciada com sucesso")


@router.post("/sessoes/finalizar", tags=["sessoes"])
def api_finalizar_sessao(
    payload: FinalizarSessaoIn,
    user: AuthUser = Depends(require_permission("edit_sessions", "Sem permissão para finalizar sessões")),
) -> dict[str, Any]:
    sessao = finalizar_sessao(user, payload.sessaoId, payload.observacoes_gerais, payload.nota)
    return _envelope(user, sessao, message="Sessão finalizada com sucesso")


# Anamneses

@router.get("/anamneses", tags=["anamneses"])
def api_anamneses(
    user: AuthUser = Depends(require_permission("view_anamneses", "Sem permissão para visualizar anamneses")),
) -> dict[str, Any]:
    data = listar_anamneses(user)
    return _envelope(user, data, total=len(data))


@router.post("/anamneses", tags=["anamneses"], status_code=201)
def api_criar_anamnese(
    payload: AnamneseIn,
    user: AuthUser = Depends(require_permission("create_anamneses", "Sem permissão para criar anamneses")),
) -> dict[str, Any]:
    return _envelope(user, criar_anamnese(user, payload.model_dump(exclude_unset=True)))
