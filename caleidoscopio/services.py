from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, select, true
from sqlalchemy.orm import Session, selectinload

from . import config
from .auth_models import AuthUser
from .db import db_session
from .errors import Conflito, DadosInvalidos, NaoEncontrado
from .models import (
    STATUS_LIVRES,
    Agendamento,
    Anamnese,
    Atividade,
    Paciente,
    Procedimento,
    Profissional,
    Sala,
    SessaoAtividade,
    StatusAgendamento,
    StatusAnamnese,
    StatusSessao,
)

logger = logging.getLogger(__name__)


# =========================
# Horário da clínica
# =========================
def agora_clinica() -> datetime:
    """Agora no fuso da clínica, sem tzinfo (como gravado no banco)."""
    return datetime.now(ZoneInfo(config.CLINIC_TIMEZONE)).replace(tzinfo=None)


def normalizar_datahora(valor: datetime) -> datetime:
    """Datas com fuso são convertidas para o horário local da clínica."""
    if valor.tzinfo is not None:
        valor = valor.astimezone(ZoneInfo(config.CLINIC_TIMEZONE)).replace(tzinfo=None)
    return valor


def _iso(valor: datetime | date | None) -> str | None:
    return valor.isoformat() if valor is not None else None


# =========================
# Serialização
# =========================
def agendamento_dict(a: Agendamento) -> dict[str, Any]:
    return {
        "id": a.id,
        "pacienteId": a.paciente_id,
        "profissionalId": a.profissional_id,
        "data_hora": _iso(a.data_hora),
        "horario_fim": _iso(a.horario_fim),
        "duracao_minutos": a.duracao_minutos,
        "salaId": a.sala_id,
        "procedimentoId": a.procedimento_id,
        "status": a.status.value,
        "observacoes": a.observacoes,
        "createdAt": _iso(a.created_at),
        "updatedAt": _iso(a.updated_at),
        "paciente": {
            "id": a.paciente.id,
            "nome": a.paciente.nome,
            "cor_agenda": a.paciente.cor_agenda,
            "telefone": a.paciente.telefone,
        },
        "profissional": {
            "id": a.profissional.id,
            "nome": a.profissional.nome,
            "especialidade": a.profissional.especialidade,
            "email": a.profissional.email,
        },
        "salaRelacao": {"id": a.sala.id, "nome": a.sala.nome, "cor": a.sala.cor},
        "procedimento": (
            {
                "id": a.procedimento.id,
                "nome": a.procedimento.nome,
                "codigo": a.procedimento.codigo,
                "cor": a.procedimento.cor,
            }
            if a.procedimento
            else None
        ),
    }


def _query_agendamentos():
    return select(Agendamento).options(
        selectinload(Agendamento.paciente),
        selectinload(Agendamento.profissional),
        selectinload(Agendamento.sala),
        selectinload(Agendamento.procedimento),
    )


# =========================
# Helpers de escopo
# =========================
def profissional_do_usuario(s: Session, user: AuthUser) -> Profissional | None:
    """Profissional ativo vinculado ao usuário do Sistema 1, na clínica dele."""
    return s.execute(
        select(Profissional).where(
            Profissional.usuario_id == user.id,
            Profissional.tenant_id == user.tenant_id,
            Profissional.ativo.is_(True),
        )
    ).scalars().first()


def _buscar_ativo(s: Session, model, obj_id: str | None, tenant_id: str, mensagem: str):
    if not obj_id:
        raise NaoEncontrado(mensagem)
    obj = s.execute(
        select(model).where(model.id == obj_id, model.tenant_id == tenant_id, model.ativo.is_(True))
    ).scalar_one_or_none()
    if obj is None:
        raise NaoEncontrado(mensagem)
    return obj


def _buscar_paciente(s: Session, tenant_id: str, paciente_id: str | None) -> Paciente:
    return _buscar_ativo(s, Paciente, paciente_id, tenant_id, "Paciente não encontrado ou não pertence a esta clínica")


def _buscar_profissional(s: Session, tenant_id: str, profissional_id: str | None) -> Profissional:
    return _buscar_ativo(
        s, Profissional, profissional_id, tenant_id, "Profissional não encontrado ou não pertence a esta clínica"
    )


def _buscar_sala(s: Session, tenant_id: str, sala_id: str | None) -> Sala:
    return _buscar_ativo(s, Sala, sala_id, tenant_id, "Sala não encontrada ou não pertence a esta clínica")


def _buscar_procedimento(s: Session, tenant_id: str, procedimento_id: str | None) -> Procedimento:
    return _buscar_ativo(
        s, Procedimento, procedimento_id, tenant_id, "Procedimento não encontrado ou não pertence a esta clínica"
    )


# =========================
# Disponibilidade
# =========================
def _horario_ocupado(
    s: Session,
    coluna,
    valor: str,
    inicio: datetime,
    fim: datetime,
    ignorar_id: str | None = None,
) -> bool:
    """
    Sobreposição [inicio, fim) com agendamentos que ocupam o horário
    (CANCELADO e FALTOU não contam).
    """
    q = select(Agendamento.id).where(
        and_(
            coluna == valor,
            Agendamento.status.not_in(STATUS_LIVRES),
            Agendamento.data_hora < fim,
            Agendamento.horario_fim > inicio,
        )
    )
    if ignorar_id:
        q = q.where(Agendamento.id != ignorar_id)
    return s.execute(q.limit(1)).first() is not None


def _verificar_disponibilidade(
    s: Session,
    profissional_id: str,
    sala_id: str,
    inicio: datetime,
    fim: datetime,
    ignorar_id: str | None = None,
) -> None:
    if _horario_ocupado(s, Agendamento.profissional_id, profissional_id, inicio, fim, ignorar_id):
        raise Conflito("Já existe um agendamento neste horário para este profissional")
    if _horario_ocupado(s, Agendamento.sala_id, sala_id, inicio, fim, ignorar_id):
        raise Conflito("Sala já está ocupada neste horário")


def _validar_intervalo(inicio: datetime, fim: datetime) -> int:
    if fim <= inicio:
        raise DadosInvalidos("O horário de fim deve ser posterior ao de início")
    return round((fim - inicio).total_seconds() / 60)


def _hora(horario: str) -> time:
    """Aceita H:MM, HH:MM ou HH:MM:SS."""
    partes = str(horario).strip().split(":")
    if len(partes) not in (2, 3):
        raise DadosInvalidos("Horário inválido, use HH:MM")
    try:
        return time(*(int(p) for p in partes))
    except ValueError:
        raise DadosInvalidos("Horário inválido, use HH:MM") from None


def _status(valor: str | StatusAgendamento | None) -> StatusAgendamento:
    if valor is None:
        return StatusAgendamento.AGENDADO
    if isinstance(valor, StatusAgendamento):
        return valor
    try:
        return StatusAgendamento(valor)
    except ValueError:
        raise DadosInvalidos(f"Status inválido: {valor}") from None


# =========================
# Agendamentos
# =========================
def listar_agendamentos(
    user: AuthUser,
    profissional_id: str | None = None,
    paciente_id: str | None = None,
    status: str | None = None,
    data_inicio: datetime | None = None,
    data_fim: datetime | None = None,
    sala_id: str | None = None,
) -> list[dict]:
    """
    Agendamentos da clínica do usuário.
    Terapeutas veem só os do profissional vinculado a eles (lista vazia se não houver vínculo).
    """
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        q = (
            _query_agendamentos()
            .join(Paciente, Paciente.id == Agendamento.paciente_id)
            .join(Profissional, Profissional.id == Agendamento.profissional_id)
            .where(
                Agendamento.tenant_id == tenant_id,
                Paciente.ativo.is_(True),
                Profissional.ativo.is_(True),
            )
        )

        if not user.is_admin:
            proprio = profissional_do_usuario(s, user)
            if proprio is None:
                logger.info("Usuário %s (%s) sem profissional vinculado", user.email, user.role)
                return []
            q = q.where(Agendamento.profissional_id == proprio.id)
        elif profissional_id:
            q = q.where(Agendamento.profissional_id == profissional_id)

        if paciente_id:
            q = q.where(Agendamento.paciente_id == paciente_id)
        if status:
            q = q.where(Agendamento.status == _status(status))
        if sala_id:
            q = q.where(Agendamento.sala_id == sala_id)
        if data_inicio:
            q = q.where(Agendamento.data_hora >= normalizar_datahora(data_inicio))
        if data_fim:
            q = q.where(Agendamento.data_hora <= normalizar_datahora(data_fim))

        rows = s.scalars(q.order_by(Agendamento.data_hora.asc())).all()
        logger.info("%d agendamentos encontrados para a clínica %s", len(rows), tenant_id)
        return [agendamento_dict(a) for a in rows]


def criar_agendamento(
    user: AuthUser,
    paciente_id: str | None,
    profissional_id: str | None,
    data_hora: datetime | None,
    horario_fim: datetime | None,
    sala_id: str | None,
    procedimento_id: str | None = None,
    status: str | None = None,
    observacoes: str | None = None,
) -> dict:
    """
    Use case: criar agendamento.
    - paciente, profissional, sala (e procedimento) da mesma clínica
    - sem sobreposição para o profissional nem para a sala
    """
    if not paciente_id or not profissional_id or not data_hora or not horario_fim or not sala_id:
        raise DadosInvalidos("Paciente, profissional, sala, horário de início e fim são obrigatórios")

    inicio = normalizar_datahora(data_hora)
    fim = normalizar_datahora(horario_fim)
    duracao = _validar_intervalo(inicio, fim)
    novo_status = _status(status)

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        paciente = _buscar_paciente(s, tenant_id, paciente_id)
        profissional = _buscar_profissional(s, tenant_id, profissional_id)
        _buscar_sala(s, tenant_id, sala_id)
        if procedimento_id:
            _buscar_procedimento(s, tenant_id, procedimento_id)

        if novo_status not in STATUS_LIVRES:
            _verificar_disponibilidade(s, profissional_id, sala_id, inicio, fim)

        ag = Agendamento(
            tenant_id=tenant_id,
            paciente_id=paciente_id,
            profissional_id=profissional_id,
            sala_id=sala_id,
            procedimento_id=procedimento_id or None,
            data_hora=inicio,
            horario_fim=fim,
            duracao_minutos=duracao,
            status=novo_status,
            observacoes=observacoes,
        )
        s.add(ag)
        s.flush()

        logger.info("Agendamento %s criado: %s com %s em %s", ag.id, paciente.nome, profissional.nome, inicio)
        ag = s.scalars(_query_agendamentos().where(Agendamento.id == ag.id)).one()
        return agendamento_dict(ag)


def criar_agendamentos_em_lote(
    user: AuthUser,
    paciente_id: str | None,
    profissional_id: str | None,
    datas: list[str] | None,
    horario: str | None,
    sala_id: str | None,
    duracao_minutos: int = 60,
    procedimento_id: str | None = None,
    status: str | None = None,
    observacoes: str | None = None,
) -> dict:
    """
    Mesmo paciente/profissional/sala no mesmo horário em várias datas.
    Conflitos e datas inválidas entram no resultado da data, sem abortar o lote.
    """
    if not paciente_id or not profissional_id or not datas or not horario or not sala_id:
        raise DadosInvalidos("Paciente, profissional, sala, datas (lista) e horário são obrigatórios")
    if duracao_minutos <= 0:
        raise DadosInvalidos("A duração deve ser maior que zero")
    hora = _hora(horario)

    novo_status = _status(status)
    tenant_id = user.tenant_id
    resultados: list[dict] = []

    with db_session(tenant_id) as s:
        _buscar_paciente(s, tenant_id, paciente_id)
        _buscar_profissional(s, tenant_id, profissional_id)
        _buscar_sala(s, tenant_id, sala_id)
        if procedimento_id:
            _buscar_procedimento(s, tenant_id, procedimento_id)

        for data_str in datas:
            try:
                dia = date.fromisoformat(str(data_str)[:10])
            except ValueError:
                resultados.append({"data": data_str, "success": False, "error": "Data inválida"})
                continue

            inicio = datetime.combine(dia, hora)
            fim = inicio + timedelta(minutes=duracao_minutos)
            if novo_status not in STATUS_LIVRES:
                try:
                    _verificar_disponibilidade(s, profissional_id, sala_id, inicio, fim)
                except Conflito as e:
                    resultados.append({"data": data_str, "success": False, "error": e.message})
                    continue

            ag = Agendamento(
                tenant_id=tenant_id,
                paciente_id=paciente_id,
                profissional_id=profissional_id,
                sala_id=sala_id,
                procedimento_id=procedimento_id or None,
                data_hora=inicio,
                horario_fim=fim,
                duracao_minutos=duracao_minutos,
                status=novo_status,
                observacoes=observacoes,
            )
            s.add(ag)
            # flush para os próximos dias enxergarem este horário
            s.flush()
            ag = s.scalars(_query_agendamentos().where(Agendamento.id == ag.id)).one()
            resultados.append({"data": data_str, "success": True, "agendamento": agendamento_dict(ag)})

    sucessos = sum(1 for r in resultados if r["success"])
    falhas = len(resultados) - sucessos
    logger.info("Agendamento em lote: %d sucessos, %d falhas", sucessos, falhas)
    return {
        "success": True,
        "message": f"{sucessos} agendamento(s) criado(s) com sucesso, {falhas} falha(s)",
        "resultados": resultados,
        "resumo": {"total": len(resultados), "sucessos": sucessos, "falhas": falhas},
    }


def _agendamento_da_clinica(s: Session, tenant_id: str, agendamento_id: str) -> Agendamento:
    ag = s.scalars(
        _query_agendamentos().where(Agendamento.id == agendamento_id, Agendamento.tenant_id == tenant_id)
    ).one_or_none()
    if ag is None:
        raise NaoEncontrado("Agendamento não encontrado ou não pertence a esta clínica")
    return ag


def obter_agendamento(user: AuthUser, agendamento_id: str) -> dict:
    with db_session(user.tenant_id) as s:
        return agendamento_dict(_agendamento_da_clinica(s, user.tenant_id, agendamento_id))


def atualizar_agendamento(user: AuthUser, agendamento_id: str, dados: dict[str, Any]) -> dict:
    """
    Atualização parcial: só os campos presentes em `dados` mudam.
    Mudanças de horário, profissional, sala ou status revalidam a disponibilidade.
    """
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        ag = _agendamento_da_clinica(s, tenant_id, agendamento_id)

        if dados.get("paciente_id"):
            ag.paciente_id = _buscar_paciente(s, tenant_id, dados["paciente_id"]).id
        if dados.get("profissional_id"):
            ag.profissional_id = _buscar_profissional(s, tenant_id, dados["profissional_id"]).id
        if dados.get("sala_id"):
            ag.sala_id = _buscar_sala(s, tenant_id, dados["sala_id"]).id
        if "procedimento_id" in dados:
            procedimento_id = dados["procedimento_id"] or None
            if procedimento_id:
                _buscar_procedimento(s, tenant_id, procedimento_id)
            ag.procedimento_id = procedimento_id
        if dados.get("data_hora"):
            ag.data_hora = normalizar_datahora(dados["data_hora"])
        if dados.get("horario_fim"):
            ag.horario_fim = normalizar_datahora(dados["horario_fim"])
        if dados.get("status"):
            ag.status = _status(dados["status"])
        if "observacoes" in dados:
            ag.observacoes = dados["observacoes"]

        ag.duracao_minutos = _validar_intervalo(ag.data_hora, ag.horario_fim)

        campos_agenda = {"data_hora", "horario_fim", "profissional_id", "sala_id", "status"}
        if campos_agenda & {k for k, v in dados.items() if v} and ag.status not in STATUS_LIVRES:
            _verificar_disponibilidade(s, ag.profissional_id, ag.sala_id, ag.data_hora, ag.horario_fim, ag.id)

        s.flush()
        s.expire(ag)
        logger.info("Agendamento %s atualizado", ag.id)
        return agendamento_dict(_agendamento_da_clinica(s, tenant_id, agendamento_id))


def excluir_agendamento(user: AuthUser, agendamento_id: str) -> None:
    with db_session(user.tenant_id) as s:
        ag = _agendamento_da_clinica(s, user.tenant_id, agendamento_id)
        s.delete(ag)
        logger.info("Agendamento %s excluído", agendamento_id)


# =========================
# Dashboard
# =========================
def _limites_do_dia(dia: date) -> tuple[datetime, datetime]:
    inicio = datetime.combine(dia, time.min)
    return inicio, inicio + timedelta(days=1)


def _filtro_agenda_do_usuario(s: Session, user: AuthUser):
    """
    Filtro extra da agenda: admins veem a clínica toda, terapeutas só o próprio profissional.
    Retorna None quando o terapeuta não tem profissional vinculado.
    """
    if user.is_admin:
        return true()
    proprio = profissional_do_usuario(s, user)
    if proprio is None:
        return None
    return Agendamento.profissional_id == proprio.id


def estatisticas_dashboard(user: AuthUser, agora: datetime | None = None) -> dict[str, int]:
    agora = agora or agora_clinica()
    tenant_id = user.tenant_id
    inicio_mes = datetime.combine(agora.date().replace(day=1), time.min)
    inicio_dia, fim_dia = _limites_do_dia(agora.date())

    def contar(s: Session, *criterios) -> int:
        return s.execute(select(func.count()).where(*criterios)).scalar_one()

    with db_session(tenant_id) as s:
        stats: dict[str, int] = {
            "totalPacientes": contar(s, Paciente.tenant_id == tenant_id, Paciente.ativo.is_(True)),
            "sessoesEmAndamento": contar(
                s,
                SessaoAtividade.tenant_id == tenant_id,
                SessaoAtividade.status == StatusSessao.EM_ANDAMENTO,
            ),
            "sessoesRealizadasMes": contar(
                s,
                SessaoAtividade.tenant_id == tenant_id,
                SessaoAtividade.status == StatusSessao.FINALIZADA,
                SessaoAtividade.finalizada_em >= inicio_mes,
            ),
            "anamnesesPendentes": contar(
                s, Anamnese.tenant_id == tenant_id, Anamnese.status == StatusAnamnese.RASCUNHO
            ),
            "atividadesCadastradas": contar(s, Atividade.tenant_id == tenant_id, Atividade.ativo.is_(True)),
        }

        if user.is_admin:
            stats["totalTerapeutas"] = contar(
                s, Profissional.tenant_id == tenant_id, Profissional.ativo.is_(True)
            )

        escopo = _filtro_agenda_do_usuario(s, user)
        if escopo is None:
            stats["sessoesHoje"] = 0
        else:
            stats["sessoesHoje"] = contar(
                s,
                Agendamento.tenant_id == tenant_id,
                Agendamento.data_hora >= inicio_dia,
                Agendamento.data_hora < fim_dia,
                Agendamento.status.not_in(STATUS_LIVRES),
                escopo,
            )
        # clientes antigos leem a chave acentuada
        stats["sessõesHoje"] = stats["sessoesHoje"]

    logger.info("Estatísticas calculadas para o tenant %s", tenant_id)
    return stats


def agenda_hoje(user: AuthUser, agora: datetime | None = None) -> list[dict]:
    """Agendamentos de hoje (fuso da clínica), em ordem de horário."""
    agora = agora or agora_clinica()
    inicio_dia, fim_dia = _limites_do_dia(agora.date())
    tenant_id = user.tenant_id

    with db_session(tenant_id) as s:
        escopo = _filtro_agenda_do_usuario(s, user)
        if escopo is None:
            return []

        q = (
            select(
                Agendamento.id,
                Agendamento.data_hora,
                Agendamento.horario_fim,
                Agendamento.status,
                Agendamento.observacoes,
                Paciente.id.label("paciente_id"),
                Paciente.nome.label("paciente_nome"),
                Profissional.id.label("profissional_id"),
                Profissional.nome.label("profissional_nome"),
                Sala.nome.label("sala_nome"),
            )
            .join(Paciente, Paciente.id == Agendamento.paciente_id)
            .join(Profissional, Profissional.id == Agendamento.profissional_id)
            .join(Sala, Sala.id == Agendamento.sala_id)
            .where(
                Agendamento.tenant_id == tenant_id,
                Agendamento.data_hora >= inicio_dia,
                Agendamento.data_hora < fim_dia,
                escopo,
            )
            .order_by(Agendamento.data_hora.asc())
        )
        rows = s.execute(q).all()

    logger.info("%d agendamentos encontrados para hoje", len(rows))
    return [
        {
            "id": r.id,
            "data_hora": _iso(r.data_hora),
            "horario_fim": _iso(r.horario_fim),
            "status": r.status.value,
            "observacoes": r.observacoes,
            "sala": r.sala_nome,
            "paciente": {"id": r.paciente_id, "nome": r.paciente_nome},
            "profissional": {"id": r.profissional_id, "nome": r.profissional_nome},
        }
        for r in rows
    ]


def sessao_dict(sessao: SessaoAtividade) -> dict[str, Any]:
    return {
        "id": sessao.id,
        "status": sessao.status.value,
        "iniciada_em": _iso(sessao.iniciada_em),
        "finalizada_em": _iso(sessao.finalizada_em),
        "nota": sessao.nota,
        "observacoes_gerais": sessao.observacoes_gerais,
        "paciente": {"id": sessao.paciente.id, "nome": sessao.paciente.nome},
        "atividade": {"id": sessao.atividade.id, "nome": sessao.atividade.nome, "tipo": sessao.atividade.tipo},
        "profissional": (
            {"id": sessao.profissional.id, "nome": sessao.profissional.nome} if sessao.profissional else None
        ),
    }


def query_sessoes():
    return select(SessaoAtividade).options(
        selectinload(SessaoAtividade.paciente),
        selectinload(SessaoAtividade.atividade),
        selectinload(SessaoAtividade.profissional),
    )


def sessoes_recentes(user: AuthUser, limite: int = 5) -> dict[str, list[dict]]:
    """Sessões em andamento e últimas finalizadas da clínica."""
    tenant_id = user.tenant_id
    base = query_sessoes()
    with db_session(tenant_id) as s:
        pendentes = s.scalars(
            base.where(
                SessaoAtividade.tenant_id == tenant_id,
                SessaoAtividade.status == StatusSessao.EM_ANDAMENTO,
            )
            .order_by(SessaoAtividade.iniciada_em.desc())
            .limit(limite)
        ).all()
        recentes = s.scalars(
            base.where(
                SessaoAtividade.tenant_id == tenant_id,
                SessaoAtividade.status == StatusSessao.FINALIZADA,
            )
            .order_by(SessaoAtividade.finalizada_em.desc())
            .limit(limite)
        ).all()
        return {
            "pendentes": [sessao_dict(x) for x in pendentes],
            "recentes": [sessao_dict(x) for x in recentes],
        }
