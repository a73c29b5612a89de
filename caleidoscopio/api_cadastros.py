from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .api_deps import get_manager, get_tenant_user, require_admin, require_permission
from .auth_models import AuthUser
from .cadastros import (
    atualizar_paciente,
    atualizar_procedimento,
    atualizar_sala,
    atualizar_terapeuta,
    criar_paciente,
    criar_procedimento,
    criar_sala,
    criar_terapeuta,
    criar_usuario_e_profissional,
    excluir_paciente,
    excluir_procedimento,
    excluir_sala,
    excluir_terapeuta,
    listar_pacientes,
    listar_procedimentos,
    listar_salas,
    listar_terapeutas,
    listar_usuarios_manager,
    listar_usuarios_sistema1,
    vincular_usuario,
)

router = APIRouter(prefix="/api")


def _envelope(user: AuthUser, data: Any, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": data, **extra, "tenant": user.tenant_ref()}


# Schemas

class PacienteIn(BaseModel):
    id: str | None = None
    name: str | None = None
    cpf: str | None = None
    birthDate: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    guardianName: str | None = None
    guardianPhone: str | None = None
    healthInsurance: str | None = None
    healthInsuranceNumber: str | None = None
    profissionalId: str | None = None


class TerapeutaIn(BaseModel):
    id: str | None = None
    name: str | None = None
    cpf: str | None = None
    phone: str | None = None
    email: str | None = None
    specialty: str | None = None
    professionalRegistration: str | None = None
    roomAccess: list[str] | None = None


class SalaIn(BaseModel):
    id: str | None = None
    nome: str | None = None
    descricao: str | None = None
    capacidade: int | None = None
    recursos: list[str] | None = None
    cor: str | None = None
    ativo: bool | None = None


class ProcedimentoIn(BaseModel):
    nome: str | None = None
    codigo: str | None = None
    descricao: str | None = None
    valor: float | None = None
    duracao_padrao: int | None = None
    cor: str | None = None


class UsuarioSistema1In(BaseModel):
    email: str | None = None
    name: str | None = None
    password: str | None = None
    role: str | None = None
    cpf: str | None = None
    telefone: str | None = None
    especialidade: str | None = None
    registro_profissional: str | None = None
    salas_acesso: list[str] | None = None


class VinculoIn(BaseModel):
    usuarioId: str | None = None
    profissionalId: str | None = None


# Pacientes

@router.get("/pacientes", tags=["pacientes"])
def api_pacientes(
    user: AuthUser = Depends(require_permission("view_patients", "Sem permissão para visualizar pacientes")),
) -> dict[str, Any]:
    data = listar_pacientes(user)
    return _envelope(user, data, total=len(data))


@router.post("/pacientes", tags=["pacientes"])
def api_criar_paciente(
    payload: PacienteIn,
    user: AuthUser = Depends(require_permission("create_patients", "Sem permissão para criar pacientes")),
) -> dict[str, Any]:
    return _envelope(user, criar_paciente(user, payload.model_dump(exclude_unset=True)))


@router.put("/pacientes", tags=["pacientes"])
def api_atualizar_paciente(
    payload: PacienteIn,
    user: AuthUser = Depends(require_permission("edit_patients", "Sem permissão para editar pacientes")),
) -> dict[str, Any]:
    return _envelope(user, atualizar_paciente(user, payload.model_dump(exclude_unset=True)))


@router.delete("/pacientes", tags=["pacientes"])
def api_excluir_paciente(
    id: str | None = Query(default=None),
    user: AuthUser = Depends(require_permission("delete_patients", "Sem permissão para deletar pacientes")),
) -> dict[str, Any]:
    excluir_paciente(user, id)
    return {"success": True, "message": "Paciente removido com sucesso"}


# Terapeutas

@router.get("/terapeutas", tags=["terapeutas"])
def api_terapeutas(
    user: AuthUser = Depends(require_permission("view_professionals", "Sem permissão para visualizar terapeutas")),
) -> dict[str, Any]:
    data = listar_terapeutas(user)
    return _envelope(user, data, total=len(data))


@router.post("/terapeutas", tags=["terapeutas"])
def api_criar_terapeuta(
    payload: TerapeutaIn,
    user: AuthUser = Depends(require_permission("create_professionals", "Sem permissão para criar terapeutas")),
) -> dict[str, Any]:
    return _envelope(user, criar_terapeuta(user, payload.model_dump(exclude_unset=True)))


@router.put("/terapeutas", tags=["terapeutas"])
def api_atualizar_terapeuta(
    payload: TerapeutaIn,
    user: AuthUser = Depends(require_permission("edit_professionals", "Sem permissão para editar terapeutas")),
) -> dict[str, Any]:
    return _envelope(user, atualizar_terapeuta(user, payload.model_dump(exclude_unset=True)))


@router.delete("/terapeutas", tags=["terapeutas"])
def api_excluir_terapeuta(
    id: str | None = Query(default=None),
    user: AuthUser = Depends(require_permission("delete_professionals", "Sem permissão para deletar terapeutas")),
) -> dict[str, Any]:
    excluir_terapeuta(user, id)
    return {"success": True, "message": "Terapeuta removido com sucesso"}


# Salas

pode_gerenciar_salas = require_permission("manage_rooms", "Apenas administradores podem gerenciar salas")


@router.get("/salas", tags=["salas"])
def api_salas(user: AuthUser = Depends(get_tenant_user)) -> dict[str, Any]:
    data = listar_salas(user)
    return _envelope(user, data, total=len(data))


@router.post("/salas", tags=["salas"], status_code=201)
def api_criar_sala(payload: SalaIn, user: AuthUser = Depends(pode_gerenciar_salas)) -> dict[str, Any]:
    return _envelope(user, criar_sala(user, payload.model_dump(exclude_unset=True)))


@router.put("/salas", tags=["salas"])
def api_atualizar_sala(payload: SalaIn, user: AuthUser = Depends(pode_gerenciar_salas)) -> dict[str, Any]:
    return _envelope(user, atualizar_sala(user, payload.model_dump(exclude_unset=True)))


@router.delete("/salas", tags=["salas"])
def api_excluir_sala(
    id: str | None = Query(default=None), user: AuthUser = Depends(pode_gerenciar_salas)
) -> dict[str, Any]:
    excluir_sala(user, id)
    return {"success": True, "message": "Sala removida com sucesso"}


# Procedimentos

pode_gerenciar_procedimentos = require_permission(
    "manage_procedures", "Apenas administradores podem gerenciar procedimentos"
)


@router.get("/procedimentos", tags=["procedimentos"])
def api_procedimentos(user: AuthUser = Depends(get_tenant_user)) -> dict[str, Any]:
    return {"success": True, "data": listar_procedimentos(user)}


@router.post("/procedimentos", tags=["procedimentos"], status_code=201)
def api_criar_procedimento(
    payload: ProcedimentoIn, user: AuthUser = Depends(pode_gerenciar_procedimentos)
) -> dict[str, Any]:
    return {"success": True, "data": criar_procedimento(user, payload.model_dump(exclude_unset=True))}


@router.put("/procedimentos/{procedimento_id}", tags=["procedimentos"])
def api_atualizar_procedimento(
    procedimento_id: str, payload: ProcedimentoIn, user: AuthUser = Depends(pode_gerenciar_procedimentos)
) -> dict[str, Any]:
    dados = payload.model_dump(exclude_unset=True)
    return {"success": True, "data": atualizar_procedimento(user, procedimento_id, dados)}


@router.delete("/procedimentos/{procedimento_id}", tags=["procedimentos"])
def api_excluir_procedimento(
    procedimento_id: str, user: AuthUser = Depends(pode_gerenciar_procedimentos)
) -> dict[str, Any]:
    excluir_procedimento(user, procedimento_id)
    return {"success": True, "message": "Procedimento removido com sucesso"}


# Usuários do Sistema 1

@router.get("/usuarios-sistema1", tags=["usuarios"])
def api_usuarios(
    user: AuthUser = Depends(require_admin("Apenas administradores podem gerenciar usuários")),
) -> dict[str, Any]:
    return listar_usuarios_sistema1(user)


@router.get("/usuarios-sistema1/manager", tags=["usuarios"])
def api_usuarios_manager(
    user: AuthUser = Depends(require_admin("Apenas administradores podem gerenciar usuários")),
    manager=Depends(get_manager),
) -> dict[str, Any]:
    return listar_usuarios_manager(user, manager)


@router.post("/usuarios-sistema1/criar", tags=["usuarios"])
def api_criar_usuario(
    payload: UsuarioSistema1In,
    user: AuthUser = Depends(require_admin("Apenas administradores podem criar usuários")),
    manager=Depends(get_manager),
) -> JSONResponse:
    resultado = criar_usuario_e_profissional(user, manager, payload.model_dump(exclude_unset=True))
    return JSONResponse(status_code=201, content=resultado)


@router.post("/usuarios-sistema1/vincular", tags=["usuarios"])
def api_vincular_usuario(
    payload: VinculoIn,
    user: AuthUser = Depends(require_admin("Apenas administradores podem vincular usuários")),
) -> dict[str, Any]:
    return vincular_usuario(user, payload.usuarioId, payload.profissionalId)
