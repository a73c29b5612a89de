from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select

from .db import db_session
from .models import Atividade, Paciente, Procedimento, Profissional, Sala, Tenant

logger = logging.getLogger(__name__)

# Mesma clínica do MockManagerClient
DEMO_TENANT_ID = "tenant_1"


def seed_demo_tenant(tenant_id: str = DEMO_TENANT_ID) -> None:
    """
    Popola dados mínimos da clínica de demonstração (idempotente):
    - tenant
    - salas
    - procedimentos
    - profissionais (Maria Santos vinculada ao usuário user_2 do Manager)
    - pacientes
    - atividades
    """
    with db_session() as s:
        if s.get(Tenant, tenant_id) is None:
            s.add(Tenant(id=tenant_id, nome="Clínica Exemplo", slug="clinica-exemplo", plano="Premium"))

    with db_session(tenant_id) as s:
        # Salas
        salas = [
            ("Sala 1", "Atendimento individual", 2, ["mesa", "brinquedos"], "#4F46E5"),
            ("Sala 2", "Integração sensorial", 4, ["balanço", "tatame"], "#059669"),
        ]
        for nome, descricao, capacidade, recursos, cor in salas:
            if s.execute(
                select(Sala).where(Sala.tenant_id == tenant_id, Sala.nome == nome)
            ).scalar_one_or_none() is None:
                s.add(
                    Sala(
                        tenant_id=tenant_id,
                        nome=nome,
                        descricao=descricao,
                        capacidade=capacidade,
                        recursos=recursos,
                        cor=cor,
                    )
                )

        # Procedimentos
        procedimentos = [
            ("Sessão de Terapia ABA", "ABA-01", 150.0, 60, "#2563EB"),
            ("Avaliação Fonoaudiológica", "FONO-01", 200.0, 50, "#DB2777"),
            ("Terapia Ocupacional", "TO-01", 160.0, 45, "#F59E0B"),
        ]
        for nome, codigo, valor, duracao, cor in procedimentos:
            if s.execute(
                select(Procedimento).where(Procedimento.tenant_id == tenant_id, Procedimento.codigo == codigo)
            ).scalar_one_or_none() is None:
                s.add(
                    Procedimento(
                        tenant_id=tenant_id,
                        nome=nome,
                        codigo=codigo,
                        valor=valor,
                        duracao_padrao=duracao,
                        cor=cor,
                    )
                )

        # Profissionais
        profissionais = [
            ("Maria Santos", "terapeuta1@clinica-exemplo.com", "Psicologia", "CRP 06/12345", "user_2"),
            ("Carlos Lima", "carlos.lima@clinica-exemplo.com", "Fonoaudiologia", "CRFa 2-9876", None),
        ]
        for nome, email, especialidade, registro, usuario_id in profissionais:
            if s.execute(
                select(Profissional).where(Profissional.tenant_id == tenant_id, Profissional.email == email)
            ).scalar_one_or_none() is None:
                s.add(
                    Profissional(
                        tenant_id=tenant_id,
                        usuario_id=usuario_id,
                        nome=nome,
                        email=email,
                        especialidade=especialidade,
                        registro_profissional=registro,
                    )
                )

        s.flush()
        maria = s.execute(
            select(Profissional).where(
                Profissional.tenant_id == tenant_id, Profissional.email == "terapeuta1@clinica-exemplo.com"
            )
        ).scalar_one()

        # Pacientes
        pacientes = [
            ("Ana Beatriz Costa", date(2017, 3, 12), "Fernanda Costa", "#F87171"),
            ("Pedro Henrique Alves", date(2015, 8, 30), "Ricardo Alves", "#60A5FA"),
        ]
        for nome, nascimento, responsavel, cor in pacientes:
            if s.execute(
                select(Paciente).where(Paciente.tenant_id == tenant_id, Paciente.nome == nome)
            ).scalar_one_or_none() is None:
                s.add(
                    Paciente(
                        tenant_id=tenant_id,
                        profissional_id=maria.id,
                        nome=nome,
                        nascimento=nascimento,
                        responsavel_financeiro=responsavel,
                        cor_agenda=cor,
                    )
                )

        # Atividades
        atividades = [
            ("Pareamento de cores", "ABA"),
            ("Imitação motora", "ABA"),
            ("Nomeação de figuras", "LINGUAGEM"),
        ]
        for nome, tipo in atividades:
            if s.execute(
                select(Atividade).where(Atividade.tenant_id == tenant_id, Atividade.nome == nome)
            ).scalar_one_or_none() is None:
                s.add(Atividade(tenant_id=tenant_id, nome=nome, tipo=tipo))

    logger.info("Seed da clínica %s concluído", tenant_id)
