from __future__ import annotations

import base64
import binascii
import json
import os
from datetime import date, datetime, time, timedelta, timezone

import requests
import streamlit as st

st.set_page_config(page_title="Caleidoscópio", layout="wide")

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")

STATUS_AGENDAMENTO = ["AGENDADO", "CONFIRMADO", "CANCELADO", "ATENDIDO", "FALTOU"]


class ApiError(Exception):
    """Resposta de erro da API com a mensagem devolvida pelo backend."""


# JWT helpers (só para a UI, sem verificar assinatura)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return {}
    return payload if isinstance(payload, dict) else {}


def jwt_is_expired(token: str) -> bool:
    exp = jwt_payload(token).get("exp")
    if not isinstance(exp, (int, float)):
        return False
    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (int(exp) - 5)


# HTTP client (com token de sessão)

def _headers(token: str | None) -> dict:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _resposta(r: requests.Response) -> dict | list:
    if r.status_code == 401:
        raise PermissionError("401 Não autorizado (token inválido/expirado ou Sistema 1 indisponível).")
    if not r.ok:
        try:
            message = r.json().get("error")
        except ValueError:
            message = None
        raise ApiError(message or f"HTTP {r.status_code}")
    return r.json()


def api_get(path: str, token: str | None = None, params: dict | None = None) -> dict | list:
    r = requests.get(f"{API_BASE}{path}", headers=_headers(token), params=params, timeout=10)
    return _resposta(r)


def api_send(method: str, path: str, payload: dict | None = None, token: str | None = None) -> dict:
    r = requests.request(method, f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _resposta(r)


def api_login(email: str, password: str) -> dict:
    r = requests.post(
        f"{API_BASE}/api/auth/login",
        json={"email": email, "password": password},
        timeout=15,
    )
    if r.status_code in (400, 401, 403):
        raise ApiError(r.json().get("error") or "Credenciais inválidas")
    r.raise_for_status()
    return r.json()


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str)


def do_logout() -> None:
    token = st.session_state.get("token")
    if token:
        try:
            api_send("POST", "/api/auth/logout", token=token)
        except (requests.RequestException, ApiError, PermissionError) as e:
            # a sessão local é encerrada mesmo assim
            st.warning(f"Logout no servidor falhou: {e}")
    for key in ("token", "user", "auth_error"):
        st.session_state.pop(key, None)
    st.rerun()


def require_auth() -> str | None:
    token = st.session_state.get("token")
    if not token:
        st.warning("Área restrita. Faça login pela barra lateral.")
        return None
    if jwt_is_expired(token):
        st.error("Sessão expirada. Faça logout pela barra lateral e entre novamente.")
        return None
    return token


def sessao_invalida(e: PermissionError) -> None:
    st.session_state["auth_error"] = str(e)
    st.error("Sessão inválida. Clique em Sair e faça login novamente.")


def is_admin() -> bool:
    return (st.session_state.get("user") or {}).get("role") in ("ADMIN", "SUPER_ADMIN")


# Sidebar login

with st.sidebar:
    st.header("Acesso")

    if not is_logged_in():
        email = st.text_input("Email", key="login_email")
        senha = st.text_input("Senha", type="password", key="login_pass")

        if st.button("Entrar", key="login_btn"):
            try:
                res = api_login(email.strip().lower(), senha)
                st.session_state["token"] = res["token"]
                st.session_state["user"] = res["user"]
                st.session_state.pop("auth_error", None)
                st.success("Login realizado.")
                st.rerun()
            except ApiError as e:
                st.error(str(e))
            except requests.RequestException as e:
                st.error(f"API indisponível: {e}")
    else:
        user = st.session_state.get("user") or {}
        st.write(f"Usuário: **{user.get('name') or user.get('email')}**")
        st.write(f"Perfil: {user.get('role', '-')}")
        st.write(f"Clínica: {(user.get('tenant') or {}).get('name', '-')}")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Sair", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")


# UI

st.title("Caleidoscópio")

tab_dash, tab_agenda, tab_terapeutas, tab_proc, tab_usuarios = st.tabs(
    ["Dashboard", "Agenda", "Terapeutas", "Procedimentos", "Usuários"]
)


# TAB 1 - Dashboard

with tab_dash:
    st.subheader("Visão geral")

    token = require_auth()
    if token:
        try:
            stats = api_get("/api/dashboard/stats", token=token)["data"]
            cols = st.columns(4)
            cols[0].metric("Pacientes", stats.get("totalPacientes", 0))
            cols[1].metric("Sessões hoje", stats.get("sessoesHoje", 0))
            cols[2].metric("Sessões em andamento", stats.get("sessoesEmAndamento", 0))
            cols[3].metric("Sessões no mês", stats.get("sessoesRealizadasMes", 0))
            cols = st.columns(4)
            cols[0].metric("Anamneses pendentes", stats.get("anamnesesPendentes", 0))
            cols[1].metric("Atividades", stats.get("atividadesCadastradas", 0))
            if "totalTerapeutas" in stats:
                cols[2].metric("Terapeutas", stats["totalTerapeutas"])

            st.divider()
            st.write("**Agenda de hoje**")
            agenda = api_get("/api/dashboard/agenda-hoje", token=token)["data"]
            if not agenda:
                st.info("Nenhum agendamento para hoje.")
            for a in agenda:
                inicio = a["data_hora"][11:16]
                fim = a["horario_fim"][11:16]
                st.write(
                    f"- **{inicio} - {fim}** | {a['paciente']['nome']} com {a['profissional']['nome']} "
                    f"| Sala: {a.get('sala') or '-'} | {a['status']}"
                )

            st.divider()
            sessoes = api_get("/api/dashboard/sessoes-recentes", token=token)["data"]
            c1, c2 = st.columns(2)
            with c1:
                st.write("**Sessões em andamento**")
                for x in sessoes["pendentes"] or []:
                    st.write(f"- {x['paciente']['nome']} | {x['atividade']['nome']}")
            with c2:
                st.write("**Sessões finalizadas recentes**")
                for x in sessoes["recentes"] or []:
                    nota = x["nota"] if x["nota"] is not None else "-"
                    st.write(f"- {x['paciente']['nome']} | {x['atividade']['nome']} | nota {nota}")
        except PermissionError as e:
            sessao_invalida(e)
        except (ApiError, requests.RequestException) as e:
            st.error(f"Erro ao carregar o dashboard: {e}")


# TAB 2 - Agenda

with tab_agenda:
    st.subheader("Agenda")

    token = require_auth()
    if token:
        try:
            pacientes = api_get("/api/pacientes", token=token)["data"]
            terapeutas = api_get("/api/terapeutas", token=token)["data"]
            salas = api_get("/api/salas", token=token)["data"]
            procedimentos = api_get("/api/procedimentos", token=token)["data"]
        except PermissionError as e:
            sessao_invalida(e)
            st.stop()
        except (ApiError, requests.RequestException) as e:
            st.error(f"API indisponível ou erro: {e}")
            st.stop()

        with st.expander("Novo agendamento"):
            c1, c2, c3 = st.columns(3)
            with c1:
                paciente = st.selectbox(
                    "Paciente", options=pacientes, format_func=lambda p: p["name"], key="ag_paciente"
                )
                terapeuta = st.selectbox(
                    "Profissional",
                    options=terapeutas,
                    format_func=lambda t: f"{t['name']} ({t['specialty']})",
                    key="ag_terapeuta",
                )
            with c2:
                sala = st.selectbox("Sala", options=salas, format_func=lambda s: s["nome"], key="ag_sala")
                procedimento = st.selectbox(
                    "Procedimento",
                    options=[None] + procedimentos,
                    format_func=lambda p: p["nome"] if p else "-",
                    key="ag_proc",
                )
            with c3:
                dia = st.date_input("Data", value=date.today(), key="ag_data")
                hora = st.time_input("Horário", value=time(9, 0), key="ag_hora")
                duracao = st.number_input("Duração (min)", min_value=15, max_value=240, value=60, step=15)
            observacoes = st.text_area("Observações (opcional)", height=80, key="ag_obs")

            if st.button("Agendar", key="ag_submit", disabled=not (pacientes and terapeutas and salas)):
                inicio = datetime.combine(dia, hora)
                payload = {
                    "pacienteId": paciente["id"],
                    "profissionalId": terapeuta["id"],
                    "sala": sala["id"],
                    "procedimento": procedimento["id"] if procedimento else None,
                    "data_hora": inicio.isoformat(),
                    "horario_fim": (inicio + timedelta(minutes=int(duracao))).isoformat(),
                    "observacoes": observacoes or None,
                }
                try:
                    res = api_send("POST", "/api/agendamentos", payload, token=token)
                    st.success(f"Agendamento criado (ID: {res['id']})")
                except PermissionError as e:
                    sessao_invalida(e)
                except (ApiError, requests.RequestException) as e:
                    st.error(str(e))

        st.divider()
        c1, c2 = st.columns(2)
        inicio_filtro = c1.date_input("De", value=date.today(), key="ag_de")
        fim_filtro = c2.date_input("Até", value=date.today() + timedelta(days=7), key="ag_ate")

        try:
            itens = api_get(
                "/api/agendamentos",
                token=token,
                params={
                    "data_inicio": datetime.combine(inicio_filtro, time.min).isoformat(),
                    "data_fim": datetime.combine(fim_filtro, time.max).isoformat(),
                },
            )
            if not itens:
                st.info("Nenhum agendamento no período.")
            for a in itens:
                c1, c2 = st.columns([5, 1])
                c1.write(
                    f"- **{a['data_hora'][:16].replace('T', ' ')}** | {a['paciente']['nome']} com "
                    f"{a['profissional']['nome']} | Sala: {a['salaRelacao']['nome']} | {a['status']}"
                )
                novo_status = c2.selectbox(
                    "Status",
                    options=STATUS_AGENDAMENTO,
                    index=STATUS_AGENDAMENTO.index(a["status"]),
                    key=f"st_{a['id']}",
                    label_visibility="collapsed",
                )
                if novo_status != a["status"]:
                    try:
                        api_send("PUT", f"/api/agendamentos/{a['id']}", {"status": novo_status}, token=token)
                        st.rerun()
                    except (ApiError, requests.RequestException) as e:
                        st.error(str(e))
        except PermissionError as e:
            sessao_invalida(e)
        except (ApiError, requests.RequestException) as e:
            st.error(f"Erro na agenda: {e}")


# TAB 3 - Terapeutas

with tab_terapeutas:
    st.subheader("Terapeutas")

    token = require_auth()
    if token:
        if is_admin():
            with st.expander("Cadastrar terapeuta"):
                c1, c2 = st.columns(2)
                nome = c1.text_input("Nome", key="ter_nome")
                especialidade = c2.text_input("Especialidade", key="ter_esp")
                email = c1.text_input("Email (opcional)", key="ter_email")
                telefone = c2.text_input("Telefone (opcional)", key="ter_tel")
                registro = c1.text_input("Registro profissional (opcional)", key="ter_reg")

                if st.button("Cadastrar", key="ter_submit"):
                    try:
                        api_send(
                            "POST",
                            "/api/terapeutas",
                            {
                                "name": nome.strip(),
                                "specialty": especialidade.strip(),
                                "email": email.strip() or None,
                                "phone": telefone.strip() or None,
                                "professionalRegistration": registro.strip() or None,
                            },
                            token=token,
                        )
                        st.success("Terapeuta cadastrado.")
                    except PermissionError as e:
                        sessao_invalida(e)
                    except (ApiError, requests.RequestException) as e:
                        st.error(str(e))

        try:
            terapeutas = api_get("/api/terapeutas", token=token)["data"]
            if not terapeutas:
                st.info("Nenhum terapeuta cadastrado.")
            for t in terapeutas:
                vinculo = "vinculado" if t.get("usuarioId") else "sem usuário"
                st.write(f"- **{t['name']}** | {t['specialty']} | {t.get('email') or '-'} | {vinculo}")
        except PermissionError as e:
            sessao_invalida(e)
        except (ApiError, requests.RequestException) as e:
            st.error(f"Erro ao carregar terapeutas: {e}")


# TAB 4 - Procedimentos

with tab_proc:
    st.subheader("Procedimentos")

    token = require_auth()
    if token:
        if is_admin():
            with st.expander("Novo procedimento"):
                c1, c2 = st.columns(2)
                nome = c1.text_input("Nome", key="proc_nome")
                codigo = c2.text_input("Código (opcional)", key="proc_cod")
                valor = c1.number_input("Valor (R$)", min_value=0.0, step=10.0, key="proc_valor")
                duracao = c2.number_input("Duração padrão (min)", min_value=5, value=60, step=5, key="proc_dur")

                if st.button("Salvar", key="proc_submit"):
                    try:
                        api_send(
                            "POST",
                            "/api/procedimentos",
                            {
                                "nome": nome.strip(),
                                "codigo": codigo.strip() or None,
                                "valor": valor,
                                "duracao_padrao": int(duracao),
                            },
                            token=token,
                        )
                        st.success("Procedimento criado.")
                    except PermissionError as e:
                        sessao_invalida(e)
                    except (ApiError, requests.RequestException) as e:
                        st.error(str(e))

        try:
            procedimentos = api_get("/api/procedimentos", token=token)["data"]
            if not procedimentos:
                st.info("Nenhum procedimento cadastrado.")
            for p in procedimentos:
                c1, c2 = st.columns([5, 1])
                c1.write(f"- **{p['nome']}** | {p.get('codigo') or '-'} | {p.get('duracao_padrao') or '-'} min")
                if is_admin() and c2.button("Remover", key=f"rm_proc_{p['id']}"):
                    api_send("DELETE", f"/api/procedimentos/{p['id']}", token=token)
                    st.rerun()
        except PermissionError as e:
            sessao_invalida(e)
        except (ApiError, requests.RequestException) as e:
            st.error(f"Erro ao carregar procedimentos: {e}")


# TAB 5 - Usuários (admin)

with tab_usuarios:
    st.subheader("Usuários do Sistema 1")

    token = require_auth()
    if token and not is_admin():
        st.info("Apenas administradores podem gerenciar usuários.")
    elif token:
        with st.expander("Criar usuário e terapeuta"):
            c1, c2 = st.columns(2)
            nome = c1.text_input("Nome", key="usr_nome")
            email = c2.text_input("Email", key="usr_email")
            senha = c1.text_input("Senha inicial", type="password", key="usr_senha")
            especialidade = c2.text_input("Especialidade", key="usr_esp")

            if st.button("Criar", key="usr_submit"):
                try:
                    res = api_send(
                        "POST",
                        "/api/usuarios-sistema1/criar",
                        {
                            "name": nome.strip(),
                            "email": email.strip().lower(),
                            "password": senha,
                            "especialidade": especialidade.strip(),
                        },
                        token=token,
                    )
                    st.success(res.get("message"))
                except PermissionError as e:
                    sessao_invalida(e)
                except (ApiError, requests.RequestException) as e:
                    st.error(str(e))

        try:
            res = api_get("/api/usuarios-sistema1", token=token)
            st.caption(f"{res['vinculados']} de {res['total']} terapeutas com usuário vinculado")
            pendentes = [u for u in res["usuarios"] if not u["vinculado"]]
            for u in res["usuarios"]:
                marca = "vinculado" if u["vinculado"] else "pendente"
                st.write(f"- **{u['name']}** | {u['email'] or '-'} | {u['profissional']['especialidade']} | {marca}")

            manager_users = api_get("/api/usuarios-sistema1/manager", token=token)["usuarios"]
            livres = [u for u in manager_users if not u["vinculado"]]
            if pendentes and livres:
                st.divider()
                st.write("**Vincular usuário existente**")
                c1, c2 = st.columns(2)
                usuario = c1.selectbox(
                    "Usuário", options=livres, format_func=lambda u: f"{u['name']} ({u['email']})", key="vinc_usr"
                )
                profissional = c2.selectbox(
                    "Terapeuta",
                    options=pendentes,
                    format_func=lambda u: u["profissional"]["nome"],
                    key="vinc_prof",
                )
                if st.button("Vincular", key="vinc_submit"):
                    res = api_send(
                        "POST",
                        "/api/usuarios-sistema1/vincular",
                        {"usuarioId": usuario["id"], "profissionalId": profissional["profissional"]["id"]},
                        token=token,
                    )
                    st.success(res.get("message"))
        except PermissionError as e:
            sessao_invalida(e)
        except (ApiError, requests.RequestException) as e:
            st.error(f"Erro ao carregar usuários: {e}")
