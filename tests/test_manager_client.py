import threading
from unittest.mock import MagicMock

import pytest
import requests

from caleidoscopio.errors import ManagerError
from caleidoscopio.manager_client import DEFAULT_TENANT_CONFIG, ManagerClient, MockManagerClient

TENANT = {"id": "tenant_9", "name": "Clínica Nove", "slug": "clinica-nove", "plan": {"name": "Basic"}}


def _response(status=200, json_data=None, reason="OK"):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.reason = reason
    if isinstance(json_data, Exception):
        r.json.side_effect = json_data
    else:
        r.json.return_value = json_data if json_data is not None else {}
    return r


@pytest.fixture
def session():
    s = MagicMock(spec=requests.Session)
    s.headers = {}
    s.cookies = MagicMock()
    return s


@pytest.fixture
def client(session):
    return ManagerClient(
        base_url="http://manager.test/", product_slug="educational", timeout=3, session_factory=lambda: session
    )


def test_sso_login_three_steps(client, session):
    session.request.side_effect = [
        _response(json_data={"success": True, "user": {"id": "u1", "email": "a@b.com", "name": "Ana", "role": "USER"}}),
        _response(
            json_data={
                "hasAccess": True,
                "user": {"id": "u1", "role": "ADMIN"},
                "tenant": TENANT,
                "config": {"tenant": {"maxStudents": 5}},
            }
        ),
        _response(json_data={"token": "sso_abc", "expiresIn": 3600}),
    ]

    result = client.sso_login("a@b.com", "pw")

    assert result.token == "sso_abc"
    assert result.tenant.slug == "clinica-nove"
    # dados da validação de acesso prevalecem sobre os do login
    assert result.user == {"id": "u1", "email": "a@b.com", "name": "Ana", "role": "ADMIN"}
    assert result.config == {"tenant": {"maxStudents": 5}}

    calls = session.request.call_args_list
    assert calls[0].args == ("POST", "http://manager.test/api/auth/login")
    assert calls[0].kwargs["json"] == {"email": "a@b.com", "password": "pw", "tenantSlug": None}
    assert calls[0].kwargs["timeout"] == 3
    assert calls[1].kwargs["json"] == {"productSlug": "educational", "userEmail": "a@b.com"}
    assert calls[2].args == ("POST", "http://manager.test/api/products/sso/educational")


def test_sso_login_uses_login_tenant_and_default_config(client, session):
    session.request.side_effect = [
        _response(json_data={"success": True, "user": {"id": "u1", "email": "a@b.com", "tenant": TENANT}}),
        _response(json_data={"hasAccess": True}),
        _response(json_data={"token": "sso_abc"}),
    ]
    result = client.sso_login("a@b.com", "pw")
    assert result.tenant.id == "tenant_9"
    assert result.config == DEFAULT_TENANT_CONFIG


def test_login_rejected(client, session):
    session.request.return_value = _response(401, {"error": "Senha incorreta"}, reason="Unauthorized")
    with pytest.raises(ManagerError) as exc:
        client.authenticate_user("a@b.com", "x")
    assert exc.value.status_code == 401
    assert exc.value.message == "Senha incorreta"


def test_manager_server_error_is_500(client, session):
    session.request.return_value = _response(502, ValueError("no json"), reason="Bad Gateway")
    with pytest.raises(ManagerError) as exc:
        client.authenticate_user("a@b.com", "x")
    assert exc.value.status_code == 500
    assert exc.value.message == "HTTP 502: Bad Gateway"


def test_access_denied(client, session):
    session.request.return_value = _response(403, {"hasAccess": False, "error": "Produto não contratado"})
    with pytest.raises(ManagerError) as exc:
        client.validate_access("a@b.com")
    assert exc.value.status_code == 403
    assert exc.value.message == "Produto não contratado"


def test_connection_error(client, session):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ManagerError) as exc:
        client.generate_sso_token()
    assert "Erro de conexão com Sistema Manager" in exc.value.message


def test_validate_sso_token_never_raises(client, session):
    session.request.return_value = _response(json_data={"valid": True})
    assert client.validate_sso_token("t") is True
    assert session.request.call_args.kwargs["params"] == {"token": "t"}

    session.request.return_value = _response(json_data={"valid": False})
    assert client.validate_sso_token("t") is False

    session.request.return_value = _response(500, {})
    assert client.validate_sso_token("t") is False

    session.request.side_effect = requests.Timeout("lento")
    assert client.validate_sso_token("t") is False


def test_get_users_and_create_user(client, session):
    session.request.return_value = _response(json_data={"users": [{"id": "u1"}]})
    assert client.get_users("tenant_9", "tok")["users"] == [{"id": "u1"}]
    kwargs = session.request.call_args.kwargs
    assert kwargs["params"] == {"tenantId": "tenant_9"}
    assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    session.request.return_value = _response(409, {"error": "Email já cadastrado"})
    with pytest.raises(ManagerError) as exc:
        client.create_user({"email": "a@b.com"}, "tok")
    assert exc.value.status_code == 409
    assert session.request.call_args.kwargs["params"] == {"token": "tok"}


def test_login_session_is_closed_and_logout_keeps_shared_session(client, session):
    session.request.side_effect = [
        _response(json_data={"success": True, "user": {"id": "u1", "email": "a@b.com"}}),
        _response(json_data={"hasAccess": True, "tenant": TENANT}),
        _response(json_data={"token": "sso_abc"}),
    ]
    client.sso_login("a@b.com", "pw")
    session.close.assert_called_once()

    client.clear_session()
    session.cookies.clear.assert_not_called()


def test_mock_client():
    mock = MockManagerClient()
    result = mock.sso_login("ADMIN@clinica-exemplo.com ", "clinica123!@#")
    assert result.user["role"] == "ADMIN"
    assert result.tenant.id == "tenant_1"
    assert mock.validate_sso_token(result.token)
    assert not mock.validate_sso_token("cal_x")

    with pytest.raises(ManagerError) as exc:
        mock.sso_login("admin@clinica-exemplo.com", "errada")
    assert exc.value.status_code == 401

    no_tenant = mock.sso_login("admin@caleidoscopio.com", "admin123!@#")
    assert no_tenant.tenant is None


class FakeManagerSession:
    """Sessão HTTP falsa: o Manager identifica o usuário pelo cookie `sid` do login."""

    def __init__(self, pausas):
        self.headers = {}
        self.cookies = {}
        self.pausas = pausas

    def request(self, method, url, **kwargs):
        if url.endswith("/api/auth/login"):
            email = kwargs["json"]["email"]
            self.cookies["sid"] = email
            return _response(json_data={"success": True, "user": {"id": email, "email": email, "tenant": TENANT}})
        if url.endswith("/api/auth/validate-access"):
            pausa = self.pausas.get(kwargs["json"]["userEmail"])
            if pausa:
                pausa.wait(timeout=5)
            return _response(json_data={"hasAccess": True})
        return _response(json_data={"token": f"sso-of-{self.cookies.get('sid')}"})

    def close(self):
        pass


def test_overlapping_logins_keep_their_own_manager_session():
    liberar_a = threading.Event()
    client = ManagerClient(
        base_url="http://manager.test",
        session_factory=lambda: FakeManagerSession({"a@x": liberar_a}),
    )
    resultados = {}

    def login_a():
        resultados["a"] = client.sso_login("a@x", "pw")

    t = threading.Thread(target=login_a)
    t.start()
    try:
        # B faz o login completo enquanto A espera na validação de acesso
        resultados["b"] = client.sso_login("b@x", "pw")
    finally:
        liberar_a.set()
        t.join(timeout=5)

    assert resultados["a"].user["email"] == "a@x"
    assert resultados["a"].token == "sso-of-a@x"
    assert resultados["b"].token == "sso-of-b@x"
