from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class StatusAgendamento(enum.Enum):
    AGENDADO = "AGENDADO"
    CONFIRMADO = "CONFIRMADO"
    CANCELADO = "CANCELADO"
    ATENDIDO = "ATENDIDO"
    FALTOU = "FALTOU"


# Status que liberam o horário (não contam para conflito)
STATUS_LIVRES = (StatusAgendamento.CANCELADO, StatusAgendamento.FALTOU)


class StatusSessao(enum.Enum):
    EM_ANDAMENTO = "EM_ANDAMENTO"
    FINALIZADA = "FINALIZADA"


class StatusAnamnese(enum.Enum):
    RASCUNHO = "RASCUNHO"
    FINALIZADA = "FINALIZADA"


class Tenant(Base):
    """
    Registro local das clínicas do Sistema 1.
    O id é o mesmo do Manager; as tabelas de domínio guardam só tenant_id (sem FK).
    """
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    nome: Mapped[str] = mapped_column(String(160), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    plano: Mapped[str | None] = mapped_column(String(80), nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"Tenant({self.slug})"


class Profissional(Base):
    __tablename__ = "profissionais"
    __table_args__ = (Index("ix_profissionais_tenant_ativo", "tenant_id", "ativo"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # id do usuário no Sistema 1
    usuario_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    nome: Mapped[str] = mapped_column(String(160), nullable=False)
    cpf: Mapped[str | None] = mapped_column(String(14), nullable=True)
    telefone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(160), nullable=True)
    especialidade: Mapped[str] = mapped_column(String(120), nullable=False)
    registro_profissional: Mapped[str | None] = mapped_column(String(60), nullable=True)
    salas_acesso: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    pacientes: Mapped[list["Paciente"]] = relationship(back_populates="profissional")
    agendamentos: Mapped[list["Agendamento"]] = relationship(back_populates="profissional")

    def __repr__(self) -> str:
        return f"Profissional({self.nome}, {self.especialidade})"


class Paciente(Base):
    __tablename__ = "pacientes"
    __table_args__ = (Index("ix_pacientes_tenant_ativo", "tenant_id", "ativo"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    profissional_id: Mapped[str | None] = mapped_column(ForeignKey("profissionais.id"), nullable=True)

    nome: Mapped[str] = mapped_column(String(160), nullable=False)
    cpf: Mapped[str | None] = mapped_column(String(14), nullable=True)
    nascimento: Mapped[date | None] = mapped_column(Date, nullable=True)
    email: Mapped[str | None] = mapped_column(String(160), nullable=True)
    telefone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    endereco: Mapped[str | None] = mapped_column(String(255), nullable=True)
    responsavel_financeiro: Mapped[str | None] = mapped_column(String(160), nullable=True)
    contato_emergencia: Mapped[str | None] = mapped_column(String(60), nullable=True)
    plano_saude: Mapped[str | None] = mapped_column(String(80), nullable=True)
    matricula: Mapped[str | None] = mapped_column(String(60), nullable=True)
    cor_agenda: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    profissional: Mapped[Profissional | None] = relationship(back_populates="pacientes")
    agendamentos: Mapped[list["Agendamento"]] = relationship(back_populates="paciente")

    def __repr__(self) -> str:
        return f"Paciente({self.nome})"


class Sala(Base):
    __tablename__ = "salas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nome: Mapped[str] = mapped_column(String(80), nullable=False)
    descricao: Mapped[str | None] = mapped_column(Text, nullable=True)
    capacidade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recursos: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    cor: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    agendamentos: Mapped[list["Agendamento"]] = relationship(back_populates="sala")


class Procedimento(Base):
    __tablename__ = "procedimentos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nome: Mapped[str] = mapped_column(String(120), nullable=False)
    codigo: Mapped[str | None] = mapped_column(String(40), nullable=True)
    descricao: Mapped[str | None] = mapped_column(Text, nullable=True)
    valor: Mapped[float | None] = mapped_column(Float, nullable=True)
    duracao_padrao: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutos
    cor: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    agendamentos: Mapped[list["Agendamento"]] = relationship(back_populates="procedimento")


class Agendamento(Base):
    __tablename__ = "agendamentos"
    __table_args__ = (
        Index("ix_agendamentos_profissional_inicio", "profissional_id", "data_hora"),
        Index("ix_agendamentos_sala_inicio", "sala_id", "data_hora"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    paciente_id: Mapped[str] = mapped_column(ForeignKey("pacientes.id"), nullable=False)
    profissional_id: Mapped[str] = mapped_column(ForeignKey("profissionais.id"), nullable=False)
    sala_id: Mapped[str] = mapped_column(ForeignKey("salas.id"), nullable=False)
    procedimento_id: Mapped[str | None] = mapped_column(ForeignKey("procedimentos.id"), nullable=True)

    # horário local da clínica (sem fuso)
    data_hora: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    horario_fim: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duracao_minutos: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[StatusAgendamento] = mapped_column(
        Enum(StatusAgendamento), default=StatusAgendamento.AGENDADO, nullable=False
    )
    observacoes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    paciente: Mapped["Paciente"] = relationship(back_populates="agendamentos")
    profissional: Mapped["Profissional"] = relationship(back_populates="agendamentos")
    sala: Mapped["Sala"] = relationship(back_populates="agendamentos")
    procedimento: Mapped[Procedimento | None] = relationship(back_populates="agendamentos")


class Atividade(Base):
    __tablename__ = "atividades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nome: Mapped[str] = mapped_column(String(160), nullable=False)
    tipo: Mapped[str] = mapped_column(String(60), nullable=False)
    descricao: Mapped[str | None] = mapped_column(Text, nullable=True)
    metodologia: Mapped[str | None] = mapped_column(String(120), nullable=True)
    objetivo: Mapped[str | None] = mapped_column(Text, nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    sessoes: Mapped[list["SessaoAtividade"]] = relationship(back_populates="atividade")


class SessaoAtividade(Base):
    __tablename__ = "sessoes_atividade"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    paciente_id: Mapped[str] = mapped_column(ForeignKey("pacientes.id"), nullable=False)
    atividade_id: Mapped[str] = mapped_column(ForeignKey("atividades.id"), nullable=False)
    profissional_id: Mapped[str | None] = mapped_column(ForeignKey("profissionais.id"), nullable=True)

    status: Mapped[StatusSessao] = mapped_column(
        Enum(StatusSessao), default=StatusSessao.EM_ANDAMENTO, nullable=False
    )
    iniciada_em: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    finalizada_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    nota: Mapped[float | None] = mapped_column(Float, nullable=True)
    observacoes_gerais: Mapped[str | None] = mapped_column(Text, nullable=True)

    paciente: Mapped["Paciente"] = relationship()
    atividade: Mapped["Atividade"] = relationship(back_populates="sessoes")
    profissional: Mapped[Profissional | None] = relationship()


class Anamnese(Base):
    __tablename__ = "anamneses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    paciente_id: Mapped[str] = mapped_column(ForeignKey("pacientes.id"), nullable=False)
    # id do profissional ou do usuário do Sistema 1 que preencheu
    profissional_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[StatusAnamnese] = mapped_column(
        Enum(StatusAnamnese), default=StatusAnamnese.RASCUNHO, nullable=False
    )
    # seções livres do formulário (história, rotina, ambiente...)
    conteudo: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    observacoes_gerais: Mapped[str | None] = mapped_column(Text, nullable=True)
    finalizada_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    paciente: Mapped["Paciente"] = relationship()
