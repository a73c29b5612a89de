from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .auth_models import AuthUser
from .cadastros import _do_tenant, _iso, _texto
from .db import db_session
from .errors import Conflito, DadosInvalidos, NaoEncontrado, PermissaoNegada
from .models import Anamnese, Atividade, Paciente, Profissional, SessaoAtividade, StatusAnamnese, StatusSessao
from .services import agora_clinica, profissional_do_usuario, query_sessoes, sessao_dict

logger = logging.getLogger(__name__)

# seções livres da anamnese, guardadas em `conteudo`
SECOES_ANAMNESE = (
    "historiaDesenvolvimento",
    "comportamentosExcessivos",
    "comportamentosDeficitarios",
    "comportamentosProblema",
    "rotinaDiaria",
    "ambienteFamiliar",
    "ambienteEscolar",
    "preferencias",
    "habilidadesCriticas",
)


def _paciente(s: Session, tenant_id: str, paciente_id: str | None) -> Paciente:
    return _do_tenant(s, Paciente, tenant_id, paciente_id, "Paciente não encontrado ou não pertence a esta clínica")


# =========================
# Atividades
# =========================
def atividade_dict(a: Atividade) -> dict[str, Any]:
    return {
        "id": a.id,
        "nome": a.nome,
        "tipo": a.tipo,
        "descricao": a.descricao,
        "metodologia": a.metodologia,
        "objetivo": a.objetivo,
        "ativo": a.ativo,
        "createdAt": _iso(a.created_at),
    }


def listar_atividades(user: AuthUser) -> list[dict]:
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        rows = s.scalars(
            select(Atividade)
            .where(Atividade.tenant_id == tenant_id, Atividade.ativo.is_(True))
            .order_by(Atividade.created_at.desc(), Atividade.nome.asc())
        ).all()
        logger.info("%d atividades encontradas para a clínica %s", len(rows), tenant_id)
        return [atividade_dict(a) for a in rows]


def criar_atividade(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("nome"))
    tipo = _texto(dados.get("tipo"))
    if not nome or not tipo:
        raise DadosInvalidos("Nome e tipo são obrigatórios")

    with db_session(user.tenant_id) as s:
        a = Atividade(
            tenant_id=user.tenant_id,
            nome=nome,
            tipo=tipo,
            descricao=_texto(dados.get("descricao")),
            metodologia=_texto(dados.get("metodologia")),
            objetivo=_texto(dados.get("objetivo")),
            ativo=True,
        )
        s.add(a)
        s.flush()
        s.refresh(a)
        logger.info("Atividade %s criada para a clínica %s", nome, user.tenant_id)
        return atividade_dict(a)


# =========================
# Sessões de atividade
# =========================
def _profissional_da_sessao(s: Session, user: AuthUser, paciente: Paciente) -> Profissional:
    """
    O profissional vinculado ao usuário conduz a sessão.
    Admins sem vínculo usam o profissional do paciente ou, na falta dele, qualquer um ativo da clínica.
    """
    profissional = profissional_do_usuario(s, user)
    if profissional is None and user.is_admin:
        if paciente.profissional_id:
            profissional = s.execute(
                select(Profissional).where(
                    Profissional.id == paciente.profissional_id,
                    Profissional.tenant_id == user.tenant_id,
                    Profissional.ativo.is_(True),
                )
            ).scalar_one_or_none()
        if profissional is None:
            profissional = s.execute(
                select(Profissional)
                .where(Profissional.tenant_id == user.tenant_id, Profissional.ativo.is_(True))
                .order_by(Profissional.nome.asc())
            ).scalars().first()
    if profissional is None:
        raise NaoEncontrado(
            "Profissional não encontrado. Verifique se seu usuário está vinculado a um profissional "
            "ou se há profissionais cadastrados na clínica."
        )
    return profissional


def _sessao_da_clinica(s: Session, tenant_id: str, sessao_id: str | None) -> SessaoAtividade:
    sessao = None
    if sessao_id:
        sessao = s.scalars(
            query_sessoes().where(SessaoAtividade.id == sessao_id, SessaoAtividade.tenant_id == tenant_id)
        ).one_or_none()
    if sessao is None:
        raise NaoEncontrado("Sessão não encontrada")
    return sessao


def _status_sessao(valor: str) -> StatusSessao:
    try:
        return StatusSessao(valor)
    except ValueError:
        raise DadosInvalidos(f"Status inválido: {valor}") from None


def listar_sessoes(
    user: AuthUser,
    paciente_id: str | None = None,
    status: str | None = None,
    limite: int = 50,
) -> list[dict]:
    """Histórico de sessões, mais recentes primeiro. Terapeutas veem só as que conduziram."""
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        q = query_sessoes().where(SessaoAtividade.tenant_id == tenant_id)
        if paciente_id:
            q = q.where(SessaoAtividade.paciente_id == _paciente(s, tenant_id, paciente_id).id)
        if status:
            q = q.where(SessaoAtividade.status == _status_sessao(status))
        if not user.is_admin:
            proprio = profissional_do_usuario(s, user)
            if proprio is None:
                return []
            q = q.where(SessaoAtividade.profissional_id == proprio.id)

        rows = s.scalars(q.order_by(SessaoAtividade.iniciada_em.desc()).limit(limite)).all()
        logger.info("%d sessões encontradas", len(rows))
        return [sessao_dict(x) for x in rows]


def obter_sessao(user: AuthUser, sessao_id: str) -> dict:
    with db_session(user.tenant_id) as s:
        return sessao_dict(_sessao_da_clinica(s, user.tenant_id, sessao_id))


def iniciar_sessao(user: AuthUser, paciente_id: str | None, atividade_id: str | None) -> dict:
    if not paciente_id or not atividade_id:
        raise DadosInvalidos("ID do paciente e ID da atividade são obrigatórios")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        paciente = _paciente(s, tenant_id, paciente_id)
        atividade = _do_tenant(
            s, Atividade, tenant_id, atividade_id, "Atividade não encontrada ou não pertence a esta clínica"
        )
        profissional = _profissional_da_sessao(s, user, paciente)

        em_andamento = s.execute(
            select(SessaoAtividade.id).where(
                SessaoAtividade.tenant_id == tenant_id,
                SessaoAtividade.paciente_id == paciente.id,
                SessaoAtividade.profissional_id == profissional.id,
                SessaoAtividade.status == StatusSessao.EM_ANDAMENTO,
            ).limit(1)
        ).first()
        if em_andamento is not None:
            raise Conflito(
                "Já existe uma sessão em andamento com este paciente. "
                "Finalize a sessão atual antes de iniciar outra."
            )

        sessao = SessaoAtividade(
            tenant_id=tenant_id,
            paciente_id=paciente.id,
            atividade_id=atividade.id,
            profissional_id=profissional.id,
            status=StatusSessao.EM_ANDAMENTO,
            iniciada_em=agora_clinica(),
        )
        s.add(sessao)
        s.flush()
        logger.info(
            "Sessão %s iniciada: paciente %s, atividade %s, profissional %s (por %s)",
            sessao.id, paciente.nome, atividade.nome, profissional.nome, user.email,
        )
        return sessao_dict(_sessao_da_clinica(s, tenant_id, sessao.id))


def finalizar_sessao(
    user: AuthUser,
    sessao_id: str | None,
    observacoes_gerais: str | None = None,
    nota: float | None = None,
) -> dict:
    if not sessao_id:
        raise DadosInvalidos("ID da sessão é obrigatório")
    if nota is not None and nota < 0:
        raise DadosInvalidos("A nota não pode ser negativa")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        sessao = _sessao_da_clinica(s, tenant_id, sessao_id)
        if sessao.status != StatusSessao.EM_ANDAMENTO:
            raise DadosInvalidos("Esta sessão já foi finalizada ou cancelada")
        # admins finalizam qualquer sessão
        if not user.is_admin and (sessao.profissional is None or sessao.profissional.usuario_id != user.id):
            raise PermissaoNegada("Você só pode finalizar sessões que você mesmo iniciou")

        sessao.status = StatusSessao.FINALIZADA
        sessao.finalizada_em = agora_clinica()
        sessao.observacoes_gerais = _texto(observacoes_gerais)
        if nota is not None:
            sessao.nota = nota
        s.flush()
        logger.info("Sessão %s finalizada", sessao.id)
        return sessao_dict(sessao)


# =========================
# Anamneses
# =========================
def anamnese_dict(a: Anamnese) -> dict[str, Any]:
    return {
        "id": a.id,
        "paciente": {"id": a.paciente.id, "nome": a.paciente.nome, "nascimento": _iso(a.paciente.nascimento)},
        "profissionalId": a.profissional_id,
        "status": a.status.value,
        "conteudo": a.conteudo or {},
        "observacoesGerais": a.observacoes_gerais,
        "finalizadaEm": _iso(a.finalizada_em),
        "createdAt": _iso(a.created_at),
        "updatedAt": _iso(a.updated_at),
    }


def listar_anamneses(user: AuthUser) -> list[dict]:
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        rows = s.scalars(
            select(Anamnese)
            .options(selectinload(Anamnese.paciente))
            .where(Anamnese.tenant_id == tenant_id)
            .order_by(Anamnese.created_at.desc())
        ).all()
        logger.info("%d anamneses encontradas para a clínica %s", len(rows), tenant_id)
        return [anamnese_dict(a) for a in rows]


def criar_anamnese(user: AuthUser, dados: dict[str, Any]) -> dict:
    """Sem profissionalId, a anamnese fica em nome do próprio usuário."""
    if not dados.get("pacienteId"):
        raise DadosInvalidos("Paciente é obrigatório")
    try:
        status = StatusAnamnese(dados.get("status") or StatusAnamnese.RASCUNHO.value)
    except ValueError:
        raise DadosInvalidos(f"Status inválido: {dados.get('status')}") from None

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        paciente = _paciente(s, tenant_id, dados["pacienteId"])
        a = Anamnese(
            tenant_id=tenant_id,
            paciente_id=paciente.id,
            profissional_id=_texto(dados.get("profissionalId")) or user.id,
            status=status,
            conteudo={k: dados[k] for k in SECOES_ANAMNESE if dados.get(k) is not None},
            observacoes_gerais=_texto(dados.get("observacoesGerais")),
            finalizada_em=agora_clinica() if status == StatusAnamnese.FINALIZADA else None,
        )
        s.add(a)
        s.flush()
        s.refresh(a)
        logger.info("Anamnese criada para o paciente %s na clínica %s", paciente.nome, tenant_id)
        return anamnese_dict(a)
