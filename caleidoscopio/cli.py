from __future__ import annotations

import argparse

from .auth_models import AuthUser, TenantInfo
from .cadastros import criar_paciente, listar_pacientes, listar_procedimentos, listar_salas, listar_terapeutas
from .db import criar_schema_tenant, db_session, init_db
from .errors import CaleidoscopioError
from .logging_setup import setup_logging
from .manager_client import get_manager_client
from .models import Tenant
from .seed import DEMO_TENANT_ID, seed_demo_tenant
from .services import listar_agendamentos


def _operador(tenant_id: str) -> AuthUser:
    """Usuário administrativo local, para operar a clínica pela linha de comando."""
    with db_session() as s:
        t = s.get(Tenant, tenant_id)
        nome, slug = (t.nome, t.slug) if t else (tenant_id, tenant_id)
    return AuthUser(
        id="cli",
        email="cli@localhost",
        name="CLI",
        role="ADMIN",
        tenant=TenantInfo(id=tenant_id, name=nome, slug=slug),
    )


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    seed_demo_tenant()
    print("Banco inicializado e seed concluído.")


def cmd_list(args: argparse.Namespace) -> None:
    user = _operador(args.tenant)
    if args.entity == "pacientes":
        for p in listar_pacientes(user):
            print(f"{p['id']} | {p['name']} | {p['birthDate']} | {p['cpf'] or '-'}")
    elif args.entity == "terapeutas":
        for t in listar_terapeutas(user):
            vinculo = t["usuarioId"] or "sem usuário"
            print(f"{t['id']} | {t['name']} | {t['specialty']} | {vinculo}")
    elif args.entity == "salas":
        for s in listar_salas(user):
            print(f"{s['id']} | {s['nome']} | capacidade {s['capacidade'] or '-'}")
    elif args.entity == "procedimentos":
        for p in listar_procedimentos(user):
            print(f"{p['id']} | {p['nome']} ({p['duracao_padrao'] or '-'} min)")
    elif args.entity == "agendamentos":
        for a in listar_agendamentos(user):
            print(
                f"{a['id']} | {a['data_hora']} - {a['horario_fim']} | "
                f"{a['paciente']['nome']} com {a['profissional']['nome']} | {a['status']}"
            )


def cmd_add_patient(args: argparse.Namespace) -> None:
    dados = {
        "name": args.nome,
        "birthDate": args.nascimento,
        "cpf": args.cpf,
        "phone": args.telefone,
        "email": args.email,
    }
    p = criar_paciente(_operador(args.tenant), dados)
    print(f"Paciente criado: {p['id']}")


def cmd_create_tenant_schema(args: argparse.Namespace) -> None:
    schema = criar_schema_tenant(args.tenant)
    print(f"Schema criado: {schema}")


def cmd_check_manager(args: argparse.Namespace) -> None:
    """
    Testa o fluxo SSO contra o Sistema 1 configurado:
    - login + validação de acesso + token do produto
    - validação do token gerado
    """
    manager = get_manager_client()
    resultado = manager.sso_login(args.email, args.password, args.tenant_slug)
    clinica = resultado.tenant.name if resultado.tenant else "sem clínica"
    print(f"Login OK: {resultado.user.get('name')} ({resultado.user.get('role')}) | {clinica}")
    valido = manager.validate_sso_token(resultado.token)
    print("Token SSO válido." if valido else "Token SSO recusado pelo Manager.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="caleidoscopio", description="CLI Caleidoscópio (operação e diagnóstico)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Cria as tabelas e carrega a clínica de demonstração")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="Lista entidades de uma clínica")
    p_list.add_argument("entity", choices=["pacientes", "terapeutas", "salas", "procedimentos", "agendamentos"])
    p_list.add_argument("--tenant", default=DEMO_TENANT_ID)
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Cria paciente")
    p_addp.add_argument("--tenant", default=DEMO_TENANT_ID)
    p_addp.add_argument("--nome", required=True)
    p_addp.add_argument("--nascimento", required=True, help="Data ISO, ex: 2018-05-20")
    p_addp.add_argument("--cpf", default=None)
    p_addp.add_argument("--telefone", default=None)
    p_addp.add_argument("--email", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_schema = sub.add_parser("create-tenant-schema", help="Cria o schema PostgreSQL de uma clínica")
    p_schema.add_argument("--tenant", required=True)
    p_schema.set_defaults(func=cmd_create_tenant_schema)

    p_mgr = sub.add_parser("check-manager", help="Testa o login SSO no Sistema 1")
    p_mgr.add_argument("--email", required=True)
    p_mgr.add_argument("--password", required=True)
    p_mgr.add_argument("--tenant-slug", default=None)
    p_mgr.set_defaults(func=cmd_check_manager)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging()
    init_db()  # garante as tabelas
    try:
        args.func(args)
    except CaleidoscopioError as e:
        parser.exit(1, f"Erro: {e.message}\n")


if __name__ == "__main__":
    main()
