import os

# Configuração de teste antes de importar o pacote (config lê o ambiente no import)
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["USE_MOCK_MANAGER"] = "true"
os.environ["MANAGER_VALIDATE_EACH_REQUEST"] = "true"
os.environ["TENANT_SCHEMA_ROUTING"] = "false"
os.environ["SESSION_SECRET"] = "test-secret"
os.environ["APP_ENV"] = "test"

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from caleidoscopio.api_deps import get_manager
from caleidoscopio.api_main import app
from caleidoscopio.db import Base, TenantSessionRegistry, db_session, engine, init_db
from caleidoscopio.manager_client import MockManagerClient
from caleidoscopio.models import Paciente, Procedimento, Profissional, Sala, Tenant
from caleidoscopio.seed import seed_demo_tenant

ADMIN = ("admin@clinica-exemplo.com", "clinica123!@#")
TERAPEUTA = ("terapeuta1@clinica-exemplo.com", "user123!@#")
SUPER_ADMIN = ("admin@caleidoscopio.com", "admin123!@#")


@pytest.fixture(scope="session", autouse=True)
def _schema():
    init_db()
    yield


@pytest.fixture(autouse=True)
def clean_data():
    """Esvazia as tabelas depois de cada teste."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    TenantSessionRegistry.clear_all_instances()


@pytest.fixture
def manager():
    return MockManagerClient()


@pytest.fixture
def client(manager):
    app.dependency_overrides[get_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(client, credentials) -> dict:
    email, password = credentials
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    # o TestClient guardaria o cookie; os testes usam o header explicitamente
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return _login(client, ADMIN)


@pytest.fixture
def terapeuta_headers(client):
    return _login(client, TERAPEUTA)


@pytest.fixture
def demo():
    """Clínica de demonstração (tenant_1) com os ids principais."""
    seed_demo_tenant()

    def ids(model, ordem):
        stmt = select(model.id).where(model.tenant_id == "tenant_1").order_by(ordem)
        return list(s.execute(stmt).scalars())

    with db_session("tenant_1") as s:
        maria = s.execute(select(Profissional).where(Profissional.nome == "Maria Santos")).scalar_one()
        carlos = s.execute(select(Profissional).where(Profissional.nome == "Carlos Lima")).scalar_one()
        return {
            "maria": maria.id,
            "carlos": carlos.id,
            "pacientes": ids(Paciente, Paciente.nome),
            "salas": ids(Sala, Sala.nome),
            "procedimentos": ids(Procedimento, Procedimento.nome),
        }


@pytest.fixture
def outra_clinica():
    """Dados de outra clínica (tenant_2), para verificar isolamento."""
    with db_session() as s:
        s.add(Tenant(id="tenant_2", nome="Outra Clínica", slug="outra-clinica"))
    with db_session("tenant_2") as s:
        prof = Profissional(tenant_id="tenant_2", nome="Bruno Reis", especialidade="Psicologia", cpf="999")
        sala = Sala(tenant_id="tenant_2", nome="Sala X")
        s.add_all([prof, sala])
        s.flush()
        pac = Paciente(tenant_id="tenant_2", nome="Lucas Prado", nascimento=date(2016, 1, 1), profissional_id=prof.id)
        s.add(pac)
        s.flush()
        return {"profissional": prof.id, "sala": sala.id, "paciente": pac.id}
