from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .api_deps import require_permission
from .auth_models import AuthUser
from .errors import DadosInvalidos
from .services import (
    atualizar_agendamento,
    criar_agendamento,
    criar_agendamentos_em_lote,
    excluir_agendamento,
    listar_agendamentos,
    obter_agendamento,
)

router = APIRouter(prefix="/api/agendamentos", tags=["agendamentos"])

pode_ver = require_permission("view_patients", "Sem permissão para visualizar agendamentos")
pode_criar = require_permission("create_patients", "Sem permissão para criar agendamentos")
pode_editar = require_permission("edit_patients", "Sem permissão para editar agendamentos")
pode_excluir = require_permission("delete_patients", "Sem permissão para deletar agendamentos")


class AgendamentoIn(BaseModel):
    pacienteId: str | None = None
    profissionalId: str | None = None
    data_hora: datetime | None = None
    horario_fim: datetime | None = None
    sala: str | None = None
    procedimento: str | None = None
    status: str | None = None
    observacoes: str | None = None


class AgendamentoLoteIn(BaseModel):
    pacienteId: str | None = None
    profissionalId: str | None = None
    datas: list[str] | None = None
    horario: str | None = None  # "H:MM" ou "HH:MM"
    duracao_minutos: int = 60
    salaId: str | None = None
    procedimento: str | None = None
    status: str | None = None
    observacoes: str | None = None


# chave do corpo -> argumento do serviço
CAMPOS_ATUALIZACAO = {
    "pacienteId": "paciente_id",
    "profissionalId": "profissional_id",
    "sala": "sala_id",
    "procedimento": "procedimento_id",
    "data_hora": "data_hora",
    "horario_fim": "horario_fim",
    "status": "status",
    "observacoes": "observacoes",
}


def _datahora_query(valor: str | None, campo: str) -> datetime | None:
    if not valor:
        return None
    try:
        return datetime.fromisoformat(valor)
    except ValueError:
        raise DadosInvalidos(f"Parâmetro {campo} inválido") from None


@router.get("")
def api_listar(
    profissionalId: str | None = Query(default=None),
    pacienteId: str | None = Query(default=None),
    status: str | None = Query(default=None),
    data_inicio: str | None = Query(default=None),
    data_fim: str | None = Query(default=None),
    sala: str | None = Query(default=None),
    user: AuthUser = Depends(pode_ver),
) -> list[dict]:
    return listar_agendamentos(
        user,
        profissional_id=profissionalId,
        paciente_id=pacienteId,
        status=status,
        data_inicio=_datahora_query(data_inicio, "data_inicio"),
        data_fim=_datahora_query(data_fim, "data_fim"),
        sala_id=sala,
    )


@router.post("", status_code=201)
def api_criar(payload: AgendamentoIn, user: AuthUser = Depends(pode_criar)) -> dict[str, Any]:
    return criar_agendamento(
        user,
        paciente_id=payload.pacienteId,
        profissional_id=payload.profissionalId,
        data_hora=payload.data_hora,
        horario_fim=payload.horario_fim,
        sala_id=payload.sala,
        procedimento_id=payload.procedimento,
        status=payload.status,
        observacoes=payload.observacoes,
    )


@router.post("/batch")
def api_criar_lote(payload: AgendamentoLoteIn, user: AuthUser = Depends(pode_criar)) -> JSONResponse:
    """
    Mesmo horário em várias datas.
    Responde 201 se ao menos um agendamento foi criado.
    """
    resultado = criar_agendamentos_em_lote(
        user,
        paciente_id=payload.pacienteId,
        profissional_id=payload.profissionalId,
        datas=payload.datas,
        horario=payload.horario,
        sala_id=payload.salaId,
        duracao_minutos=payload.duracao_minutos,
        procedimento_id=payload.procedimento,
        status=payload.status,
        observacoes=payload.observacoes,
    )
    status_code = 201 if resultado["resumo"]["sucessos"] else 200
    return JSONResponse(status_code=status_code, content=resultado)


@router.get("/{agendamento_id}")
def api_obter(agendamento_id: str, user: AuthUser = Depends(pode_ver)) -> dict[str, Any]:
    return obter_agendamento(user, agendamento_id)


@router.put("/{agendamento_id}")
def api_atualizar(
    agendamento_id: str, payload: AgendamentoIn, user: AuthUser = Depends(pode_editar)
) -> dict[str, Any]:
    enviados = payload.model_dump(exclude_unset=True)
    dados = {CAMPOS_ATUALIZACAO[k]: v for k, v in enviados.items()}
    return atualizar_agendamento(user, agendamento_id, dados)


@router.delete("/{agendamento_id}")
def api_excluir(agendamento_id: str, user: AuthUser = Depends(pode_excluir)) -> dict[str, Any]:
    excluir_agendamento(user, agendamento_id)
    return {"success": True, "message": "Agendamento excluído com sucesso"}
