from caleidoscopio.db import db_session
from caleidoscopio.models import Profissional


def test_list_usuarios(client, admin_headers, demo):
    r = client.get("/api/usuarios-sistema1", headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert body["vinculados"] == 1

    por_nome = {u["name"]: u for u in body["usuarios"]}
    assert por_nome["Maria Santos"]["id"] == "user_2"
    assert por_nome["Maria Santos"]["vinculado"] is True
    assert por_nome["Carlos Lima"]["id"] == f"pending-{demo['carlos']}"
    assert por_nome["Carlos Lima"]["role"] == "PENDING"


def test_usuarios_admin_only(client, terapeuta_headers, demo):
    r = client.get("/api/usuarios-sistema1", headers=terapeuta_headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Apenas administradores podem gerenciar usuários"


def test_manager_users_marked_when_linked(client, admin_headers, demo):
    r = client.get("/api/usuarios-sistema1/manager", headers=admin_headers)
    assert r.status_code == 200
    por_id = {u["id"]: u for u in r.json()["usuarios"]}
    assert por_id["user_2"]["vinculado"] is True
    assert por_id["user_2"]["profissionalId"] == demo["maria"]
    assert por_id["user_1"]["vinculado"] is False


def test_criar_usuario_e_profissional(client, manager, admin_headers, demo):
    r = client.post(
        "/api/usuarios-sistema1/criar",
        json={
            "email": "nova@clinica-exemplo.com",
            "name": "Nova Terapeuta",
            "password": "segredo123",
            "especialidade": "Psicopedagogia",
        },
        headers=admin_headers,
    )
    assert r.status_code == 201
    body = r.json()
    assert body["usuario"]["email"] == "nova@clinica-exemplo.com"
    assert body["profissional"]["usuarioId"] == body["usuario"]["id"]

    with db_session("tenant_1") as s:
        p = s.get(Profissional, body["profissional"]["id"])
        assert p.especialidade == "Psicopedagogia"
        assert p.tenant_id == "tenant_1"

    emails = [u["email"] for u in manager.get_users("tenant_1", "mock_token_x")["users"]]
    assert "nova@clinica-exemplo.com" in emails


def test_criar_usuario_validation_and_manager_conflict(client, admin_headers, demo):
    r = client.post(
        "/api/usuarios-sistema1/criar",
        json={"email": "x@y.com", "name": "X", "password": "123"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Especialidade é obrigatória"

    r = client.post(
        "/api/usuarios-sistema1/criar",
        json={
            "email": "terapeuta1@clinica-exemplo.com",
            "name": "Duplicada",
            "password": "123",
            "especialidade": "Psicologia",
        },
        headers=admin_headers,
    )
    assert r.status_code == 409
    with db_session("tenant_1") as s:
        assert s.query(Profissional).filter(Profissional.nome == "Duplicada").count() == 0


def test_vincular(client, admin_headers, demo):
    r = client.post(
        "/api/usuarios-sistema1/vincular",
        json={"usuarioId": "user_1", "profissionalId": demo["carlos"]},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["profissional"]["usuarioId"] == "user_1"


def test_vincular_rejects_existing_links(client, admin_headers, demo):
    r = client.post(
        "/api/usuarios-sistema1/vincular",
        json={"usuarioId": "user_2", "profissionalId": demo["carlos"]},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Este usuário já está vinculado a outro profissional"

    r = client.post(
        "/api/usuarios-sistema1/vincular",
        json={"usuarioId": "user_1", "profissionalId": demo["maria"]},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Este profissional já está vinculado a outro usuário"

    r = client.post(
        "/api/usuarios-sistema1/vincular",
        json={"usuarioId": "user_1", "profissionalId": "nao-existe"},
        headers=admin_headers,
    )
    assert r.status_code == 404

    r = client.post("/api/usuarios-sistema1/vincular", json={"profissionalId": demo["carlos"]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "ID do usuário é obrigatório"


def test_criar_usuario_checks_local_duplicates_before_manager(client, manager, admin_headers, demo):
    with db_session("tenant_1") as s:
        s.get(Profissional, demo["carlos"]).cpf = "123.456.789-00"

    casos = [
        ({"email": "carlos.lima@clinica-exemplo.com"}, "Já existe um terapeuta com este email cadastrado nesta clínica"),
        (
            {"email": "outro.carlos@clinica-exemplo.com", "cpf": "123.456.789-00"},
            "Já existe um terapeuta com este CPF cadastrado nesta clínica",
        ),
    ]
    for extra, erro in casos:
        r = client.post(
            "/api/usuarios-sistema1/criar",
            json={"name": "Carlos Duplicado", "password": "segredo123", "especialidade": "Fonoaudiologia", **extra},
            headers=admin_headers,
        )
        assert r.status_code == 409
        assert r.json()["error"] == erro

    # nenhum usuário órfão ficou no Manager
    emails = [u["email"] for u in manager.get_users("tenant_1", "mock_token_x")["users"]]
    assert "carlos.lima@clinica-exemplo.com" not in emails
    assert "outro.carlos@clinica-exemplo.com" not in emails
