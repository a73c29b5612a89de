from caleidoscopio.db import db_session
from caleidoscopio.models import Paciente, Profissional


# Terapeutas

def test_list_terapeutas(client, terapeuta_headers, demo, outra_clinica):
    r = client.get("/api/terapeutas", headers=terapeuta_headers)
    assert r.status_code == 200
    body = r.json()
    assert [t["name"] for t in body["data"]] == ["Carlos Lima", "Maria Santos"]
    assert body["total"] == 2
    assert body["tenant"]["id"] == "tenant_1"


def test_create_terapeuta(client, admin_headers, demo):
    r = client.post(
        "/api/terapeutas",
        json={"name": "Júlia Rocha", "specialty": "Terapia Ocupacional", "cpf": "111", "roomAccess": ["Sala 1"]},
        headers=admin_headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["specialty"] == "Terapia Ocupacional"
    assert data["roomAccess"] == ["Sala 1"]
    assert data["usuarioId"] is None


def test_create_terapeuta_requires_name_and_specialty(client, admin_headers):
    r = client.post("/api/terapeutas", json={"name": "Sem Especialidade"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Nome e especialidade são obrigatórios"


def test_create_terapeuta_duplicates(client, admin_headers, demo):
    novo = {"name": "A", "specialty": "Psicologia", "cpf": "222", "email": "a@clinica.com"}
    assert client.post("/api/terapeutas", json=novo, headers=admin_headers).status_code == 200

    r = client.post("/api/terapeutas", json={**novo, "email": "b@clinica.com"}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "Já existe um terapeuta com este CPF cadastrado nesta clínica"

    r = client.post("/api/terapeutas", json={**novo, "cpf": "333"}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "Já existe um terapeuta com este email cadastrado nesta clínica"


def test_cpf_uniqueness_is_per_clinic(client, admin_headers, demo, outra_clinica):
    # "999" pertence a um profissional da outra clínica
    r = client.post(
        "/api/terapeutas", json={"name": "B", "specialty": "Psicologia", "cpf": "999"}, headers=admin_headers
    )
    assert r.status_code == 200


def test_terapeuta_cannot_manage_terapeutas(client, terapeuta_headers, demo):
    r = client.post("/api/terapeutas", json={"name": "X", "specialty": "Y"}, headers=terapeuta_headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Sem permissão para criar terapeutas"


def test_update_and_soft_delete_terapeuta(client, admin_headers, demo):
    r = client.put(
        "/api/terapeutas",
        json={"id": demo["carlos"], "name": "Carlos Lima", "specialty": "Fonoaudiologia", "phone": "1199"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["data"]["phone"] == "1199"

    assert client.delete("/api/terapeutas", headers=admin_headers).status_code == 400
    r = client.delete("/api/terapeutas", params={"id": demo["carlos"]}, headers=admin_headers)
    assert r.status_code == 200

    nomes = [t["name"] for t in client.get("/api/terapeutas", headers=admin_headers).json()["data"]]
    assert nomes == ["Maria Santos"]
    with db_session("tenant_1") as s:
        assert s.get(Profissional, demo["carlos"]).ativo is False


# Pacientes

def test_pacientes_scoped_for_terapeuta(client, admin_headers, terapeuta_headers, demo):
    client.post(
        "/api/pacientes",
        json={"name": "Paciente do Carlos", "birthDate": "2019-02-01", "profissionalId": demo["carlos"]},
        headers=admin_headers,
    )
    todos = client.get("/api/pacientes", headers=admin_headers).json()
    assert todos["total"] == 3

    proprios = client.get("/api/pacientes", headers=terapeuta_headers).json()
    assert {p["profissional"]["nome"] for p in proprios["data"]} == {"Maria Santos"}
    assert proprios["total"] == 2


def test_create_paciente(client, admin_headers, demo):
    r = client.post(
        "/api/pacientes",
        json={"name": "Clara", "birthDate": "2018-05-20T00:00:00.000Z", "cpf": "123", "healthInsurance": "particular"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["birthDate"] == "2018-05-20"
    assert data["healthInsurance"] is None

    r = client.post("/api/pacientes", json={"name": "Outra", "birthDate": "2018-01-01", "cpf": "123"}, headers=admin_headers)
    assert r.status_code == 409

    r = client.post("/api/pacientes", json={"name": "Sem data"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Nome e data de nascimento são obrigatórios"


def test_update_and_delete_paciente(client, admin_headers, terapeuta_headers, demo):
    paciente_id = demo["pacientes"][0]
    r = client.put(
        "/api/pacientes",
        json={"id": paciente_id, "name": "Ana B. Costa", "birthDate": "2017-03-12", "phone": "1188"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["data"]["name"] == "Ana B. Costa"

    r = client.delete("/api/pacientes", params={"id": paciente_id}, headers=terapeuta_headers)
    assert r.status_code == 403

    r = client.delete("/api/pacientes", params={"id": paciente_id}, headers=admin_headers)
    assert r.status_code == 200
    with db_session("tenant_1") as s:
        assert s.get(Paciente, paciente_id).ativo is False


# Salas

def test_salas(client, admin_headers, terapeuta_headers, demo):
    r = client.get("/api/salas", headers=terapeuta_headers)
    assert [x["nome"] for x in r.json()["data"]] == ["Sala 1", "Sala 2"]

    r = client.post("/api/salas", json={"nome": "Sala 3"}, headers=terapeuta_headers)
    assert r.status_code == 403

    r = client.post("/api/salas", json={"nome": "Sala 3", "capacidade": 3, "recursos": ["espelho"]}, headers=admin_headers)
    assert r.status_code == 201
    sala = r.json()["data"]
    assert sala["recursos"] == ["espelho"]

    r = client.put("/api/salas", json={"id": sala["id"]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "ID e nome são obrigatórios"

    r = client.put("/api/salas", json={"id": sala["id"], "nome": "Sala 3B", "cor": "#000000"}, headers=admin_headers)
    assert r.json()["data"]["nome"] == "Sala 3B"

    assert client.delete("/api/salas", params={"id": sala["id"]}, headers=admin_headers).status_code == 200
    assert len(client.get("/api/salas", headers=admin_headers).json()["data"]) == 2


# Procedimentos

def test_procedimentos(client, admin_headers, terapeuta_headers, demo, outra_clinica):
    nomes = [p["nome"] for p in client.get("/api/procedimentos", headers=terapeuta_headers).json()["data"]]
    assert nomes == sorted(nomes)
    assert len(nomes) == 3

    r = client.post("/api/procedimentos", json={"nome": "Musicoterapia"}, headers=terapeuta_headers)
    assert r.status_code == 403

    r = client.post(
        "/api/procedimentos", json={"nome": "Musicoterapia", "valor": 120, "duracao_padrao": 40}, headers=admin_headers
    )
    assert r.status_code == 201
    proc = r.json()["data"]

    r = client.put(f"/api/procedimentos/{proc['id']}", json={"valor": 130.5}, headers=admin_headers)
    assert r.json()["data"]["valor"] == 130.5
    assert r.json()["data"]["nome"] == "Musicoterapia"

    r = client.put(f"/api/procedimentos/{proc['id']}", json={"duracao_padrao": 0}, headers=admin_headers)
    assert r.status_code == 400

    assert client.delete(f"/api/procedimentos/{proc['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/procedimentos/{proc['id']}", headers=admin_headers).status_code == 404
    assert len(client.get("/api/procedimentos", headers=admin_headers).json()["data"]) == 3
