from datetime import datetime, time, timedelta

from caleidoscopio.db import db_session
from caleidoscopio.models import (
    Agendamento,
    Anamnese,
    Atividade,
    Paciente,
    SessaoAtividade,
    StatusAgendamento,
    StatusAnamnese,
    StatusSessao,
)
from caleidoscopio.services import agora_clinica


def _agendamento(demo, profissional, paciente_idx, sala_idx, hora, status=StatusAgendamento.AGENDADO, dia=None):
    dia = dia or agora_clinica().date()
    inicio = datetime.combine(dia, time(hora, 0))
    return Agendamento(
        tenant_id="tenant_1",
        paciente_id=demo["pacientes"][paciente_idx],
        profissional_id=profissional,
        sala_id=demo["salas"][sala_idx],
        data_hora=inicio,
        horario_fim=inicio + timedelta(hours=1),
        duracao_minutos=60,
        status=status,
    )


def _popular(demo, outra_clinica):
    agora = agora_clinica()
    with db_session("tenant_1") as s:
        s.add_all(
            [
                _agendamento(demo, demo["maria"], 0, 0, 9),
                _agendamento(demo, demo["carlos"], 1, 1, 8),
                _agendamento(demo, demo["maria"], 1, 0, 11, status=StatusAgendamento.CANCELADO),
                _agendamento(demo, demo["maria"], 0, 0, 9, dia=agora.date() + timedelta(days=1)),
            ]
        )
        atividade = s.query(Atividade).filter(Atividade.tenant_id == "tenant_1").first()
        s.add_all(
            [
                SessaoAtividade(
                    tenant_id="tenant_1",
                    paciente_id=demo["pacientes"][0],
                    atividade_id=atividade.id,
                    status=StatusSessao.EM_ANDAMENTO,
                    iniciada_em=agora,
                ),
                SessaoAtividade(
                    tenant_id="tenant_1",
                    paciente_id=demo["pacientes"][1],
                    atividade_id=atividade.id,
                    status=StatusSessao.FINALIZADA,
                    iniciada_em=agora,
                    finalizada_em=agora,
                    nota=8.5,
                ),
                Anamnese(tenant_id="tenant_1", paciente_id=demo["pacientes"][0], status=StatusAnamnese.RASCUNHO),
                Anamnese(tenant_id="tenant_1", paciente_id=demo["pacientes"][1], status=StatusAnamnese.FINALIZADA),
            ]
        )
        # inativo não conta
        s.add(Paciente(tenant_id="tenant_1", nome="Arquivado", ativo=False))


def test_stats_admin(client, admin_headers, demo, outra_clinica):
    _popular(demo, outra_clinica)
    r = client.get("/api/dashboard/stats", headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["tenant"] == {"id": "tenant_1", "name": "Clínica Exemplo"}
    assert body["data"] == {
        "totalPacientes": 2,
        "sessoesEmAndamento": 1,
        "sessoesRealizadasMes": 1,
        "anamnesesPendentes": 1,
        "atividadesCadastradas": 3,
        "totalTerapeutas": 2,
        "sessoesHoje": 2,
        "sessõesHoje": 2,
    }


def test_stats_terapeuta_sees_own_agenda_without_total_terapeutas(client, terapeuta_headers, demo, outra_clinica):
    _popular(demo, outra_clinica)
    data = client.get("/api/dashboard/stats", headers=terapeuta_headers).json()["data"]
    assert "totalTerapeutas" not in data
    assert data["sessoesHoje"] == 1


def test_agenda_hoje_ordered_and_scoped(client, admin_headers, terapeuta_headers, demo, outra_clinica):
    _popular(demo, outra_clinica)

    itens = client.get("/api/dashboard/agenda-hoje", headers=admin_headers).json()["data"]
    assert [i["data_hora"][11:16] for i in itens] == ["08:00", "09:00", "11:00"]
    assert itens[0]["profissional"]["nome"] == "Carlos Lima"
    assert set(itens[0]["paciente"]) == {"id", "nome"}

    itens = client.get("/api/dashboard/agenda-hoje", headers=terapeuta_headers).json()["data"]
    assert {i["profissional"]["nome"] for i in itens} == {"Maria Santos"}


def test_sessoes_recentes(client, admin_headers, demo, outra_clinica):
    _popular(demo, outra_clinica)
    data = client.get("/api/dashboard/sessoes-recentes", headers=admin_headers).json()["data"]
    assert len(data["pendentes"]) == 1
    assert len(data["recentes"]) == 1
    assert data["recentes"][0]["nota"] == 8.5
    assert data["recentes"][0]["atividade"]["nome"]


def test_stats_empty_clinic(client, admin_headers):
    data = client.get("/api/dashboard/stats", headers=admin_headers).json()["data"]
    assert data["totalPacientes"] == 0
    assert data["sessoesHoje"] == 0
