from caleidoscopio.db import db_session
from caleidoscopio.models import Atividade, Paciente, SessaoAtividade


def _stats(client, headers):
    return client.get("/api/dashboard/stats", headers=headers).json()["data"]


def _atividade(client, headers, nome="Pareamento de cores"):
    atividades = client.get("/api/atividades", headers=headers).json()["data"]
    return next(a["id"] for a in atividades if a["nome"] == nome)


def _iniciar(client, headers, paciente_id, atividade_id):
    return client.post("/api/sessoes", json={"pacienteId": paciente_id, "atividadeId": atividade_id}, headers=headers)


def test_dashboard_counters_follow_the_api(client, admin_headers, demo):
    antes = _stats(client, admin_headers)
    assert antes["atividadesCadastradas"] == 3
    assert antes["sessoesEmAndamento"] == 0
    assert antes["sessoesRealizadasMes"] == 0
    assert antes["anamnesesPendentes"] == 0

    r = client.post(
        "/api/atividades",
        json={"nome": "Sequência lógica", "tipo": "COGNITIVA", "metodologia": "DTT"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    atividade = r.json()["data"]
    assert atividade["metodologia"] == "DTT"
    assert _stats(client, admin_headers)["atividadesCadastradas"] == 4

    r = _iniciar(client, admin_headers, demo["pacientes"][0], atividade["id"])
    assert r.status_code == 200
    sessao = r.json()["data"]
    assert sessao["status"] == "EM_ANDAMENTO"
    # admin sem vínculo usa o profissional do paciente
    assert sessao["profissional"]["id"] == demo["maria"]
    assert _stats(client, admin_headers)["sessoesEmAndamento"] == 1
    recentes = client.get("/api/dashboard/sessoes-recentes", headers=admin_headers).json()["data"]
    assert [x["id"] for x in recentes["pendentes"]] == [sessao["id"]]

    r = client.post(
        "/api/sessoes/finalizar",
        json={"sessaoId": sessao["id"], "observacoes_gerais": "Boa evolução", "nota": 9},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "FINALIZADA"
    assert r.json()["data"]["finalizada_em"]
    stats = _stats(client, admin_headers)
    assert stats["sessoesEmAndamento"] == 0
    assert stats["sessoesRealizadasMes"] == 1
    recentes = client.get("/api/dashboard/sessoes-recentes", headers=admin_headers).json()["data"]
    assert recentes["pendentes"] == []
    assert recentes["recentes"][0]["nota"] == 9
    assert recentes["recentes"][0]["observacoes_gerais"] == "Boa evolução"

    r = client.post(
        "/api/anamneses",
        json={"pacienteId": demo["pacientes"][1], "rotinaDiaria": "Escola pela manhã"},
        headers=admin_headers,
    )
    assert r.status_code == 201
    anamnese = r.json()["data"]
    assert anamnese["status"] == "RASCUNHO"
    assert anamnese["profissionalId"] == "user_1"
    assert anamnese["conteudo"] == {"rotinaDiaria": "Escola pela manhã"}
    r = client.post(
        "/api/anamneses",
        json={"pacienteId": demo["pacientes"][0], "status": "FINALIZADA"},
        headers=admin_headers,
    )
    assert r.json()["data"]["finalizadaEm"]
    assert _stats(client, admin_headers)["anamnesesPendentes"] == 1

    body = client.get("/api/anamneses", headers=admin_headers).json()
    assert body["total"] == 2
    assert body["tenant"]["id"] == "tenant_1"


def test_atividade_validation(client, admin_headers, demo):
    r = client.post("/api/atividades", json={"nome": "Sem tipo"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Nome e tipo são obrigatórios"


def test_only_one_running_session_per_patient_and_professional(client, terapeuta_headers, demo):
    atividade = _atividade(client, terapeuta_headers)
    assert _iniciar(client, terapeuta_headers, demo["pacientes"][0], atividade).status_code == 200

    r = _iniciar(client, terapeuta_headers, demo["pacientes"][0], atividade)
    assert r.status_code == 409
    assert r.json()["error"].startswith("Já existe uma sessão em andamento com este paciente")

    # outro paciente não conflita
    assert _iniciar(client, terapeuta_headers, demo["pacientes"][1], atividade).status_code == 200


def test_session_validation(client, admin_headers, demo, outra_clinica):
    r = client.post("/api/sessoes", json={"pacienteId": demo["pacientes"][0]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "ID do paciente e ID da atividade são obrigatórios"

    atividade = _atividade(client, admin_headers)
    r = _iniciar(client, admin_headers, outra_clinica["paciente"], atividade)
    assert r.status_code == 404
    assert r.json()["error"] == "Paciente não encontrado ou não pertence a esta clínica"

    with db_session("tenant_2") as s:
        alheia = Atividade(tenant_id="tenant_2", nome="Outra", tipo="ABA")
        s.add(alheia)
        s.flush()
        alheia_id = alheia.id
    r = _iniciar(client, admin_headers, demo["pacientes"][0], alheia_id)
    assert r.status_code == 404
    assert r.json()["error"] == "Atividade não encontrada ou não pertence a esta clínica"


def test_finalizar_rules(client, admin_headers, terapeuta_headers, demo):
    with db_session("tenant_1") as s:
        s.get(Paciente, demo["pacientes"][1]).profissional_id = demo["carlos"]
    atividade = _atividade(client, admin_headers)

    de_carlos = _iniciar(client, admin_headers, demo["pacientes"][1], atividade).json()["data"]
    assert de_carlos["profissional"]["id"] == demo["carlos"]
    r = client.post("/api/sessoes/finalizar", json={"sessaoId": de_carlos["id"]}, headers=terapeuta_headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Você só pode finalizar sessões que você mesmo iniciou"

    propria = _iniciar(client, terapeuta_headers, demo["pacientes"][0], atividade).json()["data"]
    r = client.post("/api/sessoes/finalizar", json={"sessaoId": propria["id"]}, headers=terapeuta_headers)
    assert r.status_code == 200

    r = client.post("/api/sessoes/finalizar", json={"sessaoId": propria["id"]}, headers=terapeuta_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Esta sessão já foi finalizada ou cancelada"

    r = client.post("/api/sessoes/finalizar", json={}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post("/api/sessoes/finalizar", json={"sessaoId": "nao-existe"}, headers=admin_headers)
    assert r.status_code == 404


def test_sessions_of_other_clinic_are_not_found(client, admin_headers, demo, outra_clinica):
    with db_session("tenant_2") as s:
        atividade = Atividade(tenant_id="tenant_2", nome="Outra", tipo="ABA")
        s.add(atividade)
        s.flush()
        sessao = SessaoAtividade(
            tenant_id="tenant_2",
            paciente_id=outra_clinica["paciente"],
            atividade_id=atividade.id,
            profissional_id=outra_clinica["profissional"],
        )
        s.add(sessao)
        s.flush()
        sessao_id = sessao.id

    assert client.get("/api/sessoes", headers=admin_headers).json()["data"] == []
    assert client.get("/api/sessoes", params={"id": sessao_id}, headers=admin_headers).status_code == 404
    r = client.post("/api/sessoes/finalizar", json={"sessaoId": sessao_id}, headers=admin_headers)
    assert r.status_code == 404


def test_list_sessions_scoped_and_filtered(client, admin_headers, terapeuta_headers, demo):
    with db_session("tenant_1") as s:
        s.get(Paciente, demo["pacientes"][1]).profissional_id = demo["carlos"]
    atividade = _atividade(client, admin_headers)
    propria = _iniciar(client, terapeuta_headers, demo["pacientes"][0], atividade).json()["data"]
    _iniciar(client, admin_headers, demo["pacientes"][1], atividade)

    assert client.get("/api/sessoes", headers=admin_headers).json()["total"] == 2
    body = client.get("/api/sessoes", headers=terapeuta_headers).json()
    assert [x["id"] for x in body["data"]] == [propria["id"]]

    r = client.get("/api/sessoes", params={"pacienteId": demo["pacientes"][1]}, headers=admin_headers)
    assert [x["paciente"]["id"] for x in r.json()["data"]] == [demo["pacientes"][1]]
    r = client.get("/api/sessoes", params={"status": "FINALIZADA"}, headers=admin_headers)
    assert r.json()["data"] == []
    r = client.get("/api/sessoes", params={"status": "PAUSADA"}, headers=admin_headers)
    assert r.status_code == 400

    r = client.get("/api/sessoes", params={"id": propria["id"]}, headers=admin_headers)
    assert r.json()["data"]["atividade"]["id"] == atividade


def test_anamnese_validation(client, admin_headers, demo, outra_clinica):
    r = client.post("/api/anamneses", json={}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Paciente é obrigatório"

    r = client.post("/api/anamneses", json={"pacienteId": outra_clinica["paciente"]}, headers=admin_headers)
    assert r.status_code == 404

    r = client.post(
        "/api/anamneses", json={"pacienteId": demo["pacientes"][0], "status": "ARQUIVADA"}, headers=admin_headers
    )
    assert r.status_code == 400


def test_requires_authentication(client, demo):
    assert client.get("/api/atividades").status_code == 401
    assert client.post("/api/sessoes", json={}).status_code == 401
    assert client.get("/api/anamneses").status_code == 401
