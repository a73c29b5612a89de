from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .auth_models import AuthUser
from .db import db_session
from .errors import Conflito, DadosInvalidos, ManagerError, NaoEncontrado
from .models import Paciente, Procedimento, Profissional, Sala
from .services import profissional_do_usuario

logger = logging.getLogger(__name__)


def _iso(valor: datetime | date | None) -> str | None:
    return valor.isoformat() if valor is not None else None


def _texto(valor: Any) -> str | None:
    """Strings vazias viram None."""
    if valor is None:
        return None
    valor = str(valor).strip()
    return valor or None


def _data(valor: Any) -> date:
    if isinstance(valor, datetime):
        return valor.date()
    if isinstance(valor, date):
        return valor
    try:
        return date.fromisoformat(str(valor)[:10])
    except ValueError:
        raise DadosInvalidos("Data de nascimento inválida") from None


def _existe(s: Session, model, tenant_id: str, campo, valor: str, ignorar_id: str | None = None) -> bool:
    q = select(model.id).where(model.tenant_id == tenant_id, model.ativo.is_(True), campo == valor)
    if ignorar_id:
        q = q.where(model.id != ignorar_id)
    return s.execute(q.limit(1)).first() is not None


def _do_tenant(s: Session, model, tenant_id: str, obj_id: str | None, mensagem: str):
    obj = None
    if obj_id:
        obj = s.execute(
            select(model).where(model.id == obj_id, model.tenant_id == tenant_id, model.ativo.is_(True))
        ).scalar_one_or_none()
    if obj is None:
        raise NaoEncontrado(mensagem)
    return obj


# =========================
# Pacientes
# =========================
def paciente_dict(p: Paciente) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.nome,
        "cpf": p.cpf or "",
        "birthDate": _iso(p.nascimento),
        "email": p.email,
        "phone": p.telefone,
        "address": p.endereco,
        "guardianName": p.responsavel_financeiro,
        "guardianPhone": p.contato_emergencia,
        "healthInsurance": p.plano_saude,
        "healthInsuranceNumber": p.matricula,
        "profissionalId": p.profissional_id,
        "profissional": (
            {"id": p.profissional.id, "nome": p.profissional.nome, "especialidade": p.profissional.especialidade}
            if p.profissional
            else None
        ),
        "createdAt": _iso(p.created_at),
        "updatedAt": _iso(p.updated_at),
    }


def _plano_saude(valor: Any) -> str | None:
    valor = _texto(valor)
    return None if valor == "particular" else valor


def listar_pacientes(user: AuthUser) -> list[dict]:
    """Admins veem todos os pacientes ativos; terapeutas só os do profissional vinculado."""
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        q = (
            select(Paciente)
            .options(selectinload(Paciente.profissional))
            .where(Paciente.tenant_id == tenant_id, Paciente.ativo.is_(True))
        )
        if not user.is_admin:
            proprio = profissional_do_usuario(s, user)
            if proprio is None:
                logger.info("Usuário %s (%s) não tem profissional vinculado", user.email, user.role)
                return []
            q = q.where(Paciente.profissional_id == proprio.id)

        rows = s.scalars(q.order_by(Paciente.nome.asc())).all()
        logger.info("%d pacientes encontrados para a clínica %s", len(rows), tenant_id)
        return [paciente_dict(p) for p in rows]


def _aplicar_paciente(s: Session, p: Paciente, tenant_id: str, dados: dict[str, Any]) -> None:
    campos = {
        "email": "email",
        "phone": "telefone",
        "address": "endereco",
        "guardianName": "responsavel_financeiro",
        "guardianPhone": "contato_emergencia",
        "healthInsuranceNumber": "matricula",
    }
    for chave, coluna in campos.items():
        if chave in dados:
            setattr(p, coluna, _texto(dados[chave]))
    if "cpf" in dados:
        p.cpf = _texto(dados["cpf"])
    if "healthInsurance" in dados:
        p.plano_saude = _plano_saude(dados["healthInsurance"])
    if "profissionalId" in dados:
        profissional_id = _texto(dados["profissionalId"])
        if profissional_id:
            _do_tenant(
                s, Profissional, tenant_id, profissional_id,
                "Profissional não encontrado ou não pertence a esta clínica",
            )
        p.profissional_id = profissional_id


def criar_paciente(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("name"))
    if not nome or not dados.get("birthDate"):
        raise DadosInvalidos("Nome e data de nascimento são obrigatórios")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        cpf = _texto(dados.get("cpf"))
        if cpf and _existe(s, Paciente, tenant_id, Paciente.cpf, cpf):
            raise Conflito("Já existe um paciente com este CPF cadastrado nesta clínica")

        p = Paciente(tenant_id=tenant_id, nome=nome, nascimento=_data(dados["birthDate"]), ativo=True)
        _aplicar_paciente(s, p, tenant_id, dados)
        s.add(p)
        s.flush()
        s.refresh(p)

        logger.info("Paciente %s criado para a clínica %s", p.nome, tenant_id)
        return paciente_dict(p)


def atualizar_paciente(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("name"))
    if not dados.get("id") or not nome or not dados.get("birthDate"):
        raise DadosInvalidos("ID, nome e data de nascimento são obrigatórios")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        p = _do_tenant(s, Paciente, tenant_id, dados["id"], "Paciente não encontrado ou não pertence a esta clínica")

        cpf = _texto(dados.get("cpf"))
        if cpf and cpf != p.cpf and _existe(s, Paciente, tenant_id, Paciente.cpf, cpf, ignorar_id=p.id):
            raise Conflito("Já existe outro paciente com este CPF nesta clínica")

        p.nome = nome
        p.nascimento = _data(dados["birthDate"])
        _aplicar_paciente(s, p, tenant_id, dados)
        s.flush()
        s.refresh(p)

        logger.info("Paciente %s atualizado", p.id)
        return paciente_dict(p)


def excluir_paciente(user: AuthUser, paciente_id: str | None) -> None:
    if not paciente_id:
        raise DadosInvalidos("ID do paciente é obrigatório")
    with db_session(user.tenant_id) as s:
        p = _do_tenant(
            s, Paciente, user.tenant_id, paciente_id, "Paciente não encontrado ou não pertence a esta clínica"
        )
        p.ativo = False
        logger.info("Paciente %s desativado", paciente_id)


# =========================
# Terapeutas (profissionais)
# =========================
def terapeuta_dict(p: Profissional) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.nome,
        "cpf": p.cpf or "",
        "phone": p.telefone,
        "email": p.email,
        "specialty": p.especialidade,
        "professionalRegistration": p.registro_profissional,
        "roomAccess": p.salas_acesso or [],
        "usuarioId": p.usuario_id,
        "createdAt": _iso(p.created_at),
        "updatedAt": _iso(p.updated_at),
    }


def listar_terapeutas(user: AuthUser) -> list[dict]:
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        rows = s.scalars(
            select(Profissional)
            .where(Profissional.tenant_id == tenant_id, Profissional.ativo.is_(True))
            .order_by(Profissional.nome.asc())
        ).all()
        logger.info("%d terapeutas encontrados para a clínica %s", len(rows), tenant_id)
        return [terapeuta_dict(p) for p in rows]


def _verificar_unicidade_terapeuta(
    s: Session, tenant_id: str, cpf: str | None, email: str | None, ignorar_id: str | None = None
) -> None:
    if cpf and _existe(s, Profissional, tenant_id, Profissional.cpf, cpf, ignorar_id):
        raise Conflito("Já existe um terapeuta com este CPF cadastrado nesta clínica")
    if email and _existe(s, Profissional, tenant_id, Profissional.email, email, ignorar_id):
        raise Conflito("Já existe um terapeuta com este email cadastrado nesta clínica")


def criar_terapeuta(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("name"))
    especialidade = _texto(dados.get("specialty"))
    if not nome or not especialidade:
        raise DadosInvalidos("Nome e especialidade são obrigatórios")

    cpf = _texto(dados.get("cpf"))
    email = _texto(dados.get("email"))
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        _verificar_unicidade_terapeuta(s, tenant_id, cpf, email)

        p = Profissional(
            tenant_id=tenant_id,
            nome=nome,
            cpf=cpf,
            telefone=_texto(dados.get("phone")),
            email=email,
            especialidade=especialidade,
            registro_profissional=_texto(dados.get("professionalRegistration")),
            salas_acesso=list(dados.get("roomAccess") or []),
            ativo=True,
        )
        s.add(p)
        s.flush()
        s.refresh(p)

        logger.info("Terapeuta %s criado para a clínica %s", nome, tenant_id)
        return terapeuta_dict(p)


def atualizar_terapeuta(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("name"))
    especialidade = _texto(dados.get("specialty"))
    if not dados.get("id") or not nome or not especialidade:
        raise DadosInvalidos("ID, nome e especialidade são obrigatórios")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        p = _do_tenant(
            s, Profissional, tenant_id, dados["id"], "Terapeuta não encontrado ou não pertence a esta clínica"
        )

        cpf = _texto(dados["cpf"]) if "cpf" in dados else p.cpf
        email = _texto(dados["email"]) if "email" in dados else p.email
        _verificar_unicidade_terapeuta(
            s, tenant_id, cpf if cpf != p.cpf else None, email if email != p.email else None, ignorar_id=p.id
        )

        p.nome = nome
        p.especialidade = especialidade
        p.cpf = cpf
        p.email = email
        if "phone" in dados:
            p.telefone = _texto(dados["phone"])
        if "professionalRegistration" in dados:
            p.registro_profissional = _texto(dados["professionalRegistration"])
        if "roomAccess" in dados:
            p.salas_acesso = list(dados["roomAccess"] or [])
        s.flush()
        s.refresh(p)

        logger.info("Terapeuta %s atualizado", p.id)
        return terapeuta_dict(p)


def excluir_terapeuta(user: AuthUser, profissional_id: str | None) -> None:
    if not profissional_id:
        raise DadosInvalidos("ID do terapeuta é obrigatório")
    with db_session(user.tenant_id) as s:
        p = _do_tenant(
            s, Profissional, user.tenant_id, profissional_id,
            "Terapeuta não encontrado ou não pertence a esta clínica",
        )
        p.ativo = False
        logger.info("Terapeuta %s desativado", profissional_id)


# =========================
# Salas
# =========================
def sala_dict(sala: Sala) -> dict[str, Any]:
    return {
        "id": sala.id,
        "nome": sala.nome,
        "descricao": sala.descricao,
        "capacidade": sala.capacidade,
        "recursos": sala.recursos or [],
        "cor": sala.cor,
        "ativo": sala.ativo,
        "createdAt": _iso(sala.created_at),
        "updatedAt": _iso(sala.updated_at),
    }


def listar_salas(user: AuthUser) -> list[dict]:
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        rows = s.scalars(
            select(Sala).where(Sala.tenant_id == tenant_id, Sala.ativo.is_(True)).order_by(Sala.nome.asc())
        ).all()
        return [sala_dict(x) for x in rows]


def criar_sala(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("nome"))
    if not nome:
        raise DadosInvalidos("Nome da sala é obrigatório")

    with db_session(user.tenant_id) as s:
        sala = Sala(
            tenant_id=user.tenant_id,
            nome=nome,
            descricao=_texto(dados.get("descricao")),
            capacidade=dados.get("capacidade"),
            recursos=list(dados.get("recursos") or []),
            cor=_texto(dados.get("cor")),
            ativo=True if dados.get("ativo") is None else bool(dados["ativo"]),
        )
        s.add(sala)
        s.flush()
        s.refresh(sala)
        logger.info("Sala %s criada para a clínica %s", nome, user.tenant_id)
        return sala_dict(sala)


def atualizar_sala(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("nome"))
    if not dados.get("id") or not nome:
        raise DadosInvalidos("ID e nome são obrigatórios")

    with db_session(user.tenant_id) as s:
        sala = _do_tenant(s, Sala, user.tenant_id, dados["id"], "Sala não encontrada ou não pertence a esta clínica")
        sala.nome = nome
        if "descricao" in dados:
            sala.descricao = _texto(dados["descricao"])
        if "capacidade" in dados:
            sala.capacidade = dados["capacidade"]
        if "recursos" in dados:
            sala.recursos = list(dados["recursos"] or [])
        if "cor" in dados:
            sala.cor = _texto(dados["cor"])
        if dados.get("ativo") is not None:
            sala.ativo = bool(dados["ativo"])
        s.flush()
        s.refresh(sala)
        return sala_dict(sala)


def excluir_sala(user: AuthUser, sala_id: str | None) -> None:
    if not sala_id:
        raise DadosInvalidos("ID da sala é obrigatório")
    with db_session(user.tenant_id) as s:
        sala = _do_tenant(s, Sala, user.tenant_id, sala_id, "Sala não encontrada ou não pertence a esta clínica")
        sala.ativo = False
        logger.info("Sala %s desativada", sala_id)


# =========================
# Procedimentos
# =========================
def procedimento_dict(p: Procedimento) -> dict[str, Any]:
    return {
        "id": p.id,
        "nome": p.nome,
        "codigo": p.codigo,
        "descricao": p.descricao,
        "valor": p.valor,
        "duracao_padrao": p.duracao_padrao,
        "cor": p.cor,
    }


def listar_procedimentos(user: AuthUser) -> list[dict]:
    with db_session(user.tenant_id) as s:
        rows = s.scalars(
            select(Procedimento)
            .where(Procedimento.tenant_id == user.tenant_id, Procedimento.ativo.is_(True))
            .order_by(Procedimento.nome.asc())
        ).all()
        return [procedimento_dict(p) for p in rows]


def _aplicar_procedimento(p: Procedimento, dados: dict[str, Any]) -> None:
    for campo in ("codigo", "descricao", "cor"):
        if campo in dados:
            setattr(p, campo, _texto(dados[campo]))
    if "valor" in dados:
        p.valor = dados["valor"]
    if "duracao_padrao" in dados:
        duracao = dados["duracao_padrao"]
        if duracao is not None and duracao <= 0:
            raise DadosInvalidos("A duração padrão deve ser maior que zero")
        p.duracao_padrao = duracao


def criar_procedimento(user: AuthUser, dados: dict[str, Any]) -> dict:
    nome = _texto(dados.get("nome"))
    if not nome:
        raise DadosInvalidos("Nome do procedimento é obrigatório")

    with db_session(user.tenant_id) as s:
        p = Procedimento(tenant_id=user.tenant_id, nome=nome, ativo=True)
        _aplicar_procedimento(p, dados)
        s.add(p)
        s.flush()
        logger.info("Procedimento %s criado para a clínica %s", nome, user.tenant_id)
        return procedimento_dict(p)


def atualizar_procedimento(user: AuthUser, procedimento_id: str, dados: dict[str, Any]) -> dict:
    with db_session(user.tenant_id) as s:
        p = _do_tenant(
            s, Procedimento, user.tenant_id, procedimento_id,
            "Procedimento não encontrado ou não pertence a esta clínica",
        )
        if "nome" in dados:
            nome = _texto(dados["nome"])
            if not nome:
                raise DadosInvalidos("Nome do procedimento é obrigatório")
            p.nome = nome
        _aplicar_procedimento(p, dados)
        s.flush()
        return procedimento_dict(p)


def excluir_procedimento(user: AuthUser, procedimento_id: str) -> None:
    with db_session(user.tenant_id) as s:
        p = _do_tenant(
            s, Procedimento, user.tenant_id, procedimento_id,
            "Procedimento não encontrado ou não pertence a esta clínica",
        )
        p.ativo = False
        logger.info("Procedimento %s desativado", procedimento_id)


# =========================
# Usuários do Sistema 1 <-> profissionais
# =========================
def listar_usuarios_sistema1(user: AuthUser) -> dict[str, Any]:
    """Profissionais da clínica vistos como usuários; sem vínculo aparecem como `pending-<id>`."""
    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        rows = s.scalars(
            select(Profissional)
            .where(Profissional.tenant_id == tenant_id, Profissional.ativo.is_(True))
            .order_by(Profissional.created_at.desc())
        ).all()
        usuarios = [
            {
                "id": p.usuario_id or f"pending-{p.id}",
                "email": p.email or "",
                "name": p.nome,
                "role": "USER" if p.usuario_id else "PENDING",
                "isActive": True,
                "vinculado": bool(p.usuario_id),
                "profissional": {"id": p.id, "nome": p.nome, "especialidade": p.especialidade},
            }
            for p in rows
        ]

    vinculados = sum(1 for u in usuarios if u["vinculado"])
    return {"success": True, "usuarios": usuarios, "total": len(usuarios), "vinculados": vinculados}


def listar_usuarios_manager(user: AuthUser, manager) -> dict[str, Any]:
    """Usuários da clínica no Manager, marcando os que já têm profissional vinculado."""
    tenant_id = user.tenant_id
    resposta = manager.get_users(tenant_id, user.token)
    with db_session(tenant_id) as s:
        vinculos = dict(
            s.execute(
                select(Profissional.usuario_id, Profissional.id).where(
                    Profissional.tenant_id == tenant_id,
                    Profissional.ativo.is_(True),
                    Profissional.usuario_id.is_not(None),
                )
            ).all()
        )

    usuarios = [
        {**u, "vinculado": u.get("id") in vinculos, "profissionalId": vinculos.get(u.get("id"))}
        for u in resposta.get("users") or []
    ]
    return {"success": True, "usuarios": usuarios, "total": len(usuarios)}


def criar_usuario_e_profissional(user: AuthUser, manager, dados: dict[str, Any]) -> dict[str, Any]:
    """
    Use case: novo terapeuta com acesso ao sistema.
    1. verifica CPF e email na clínica
    2. cria o usuário no Manager (com o token SSO do admin)
    3. cria o profissional vinculado a ele
    """
    email = _texto(dados.get("email"))
    nome = _texto(dados.get("name"))
    if not email or not nome or not dados.get("password"):
        raise DadosInvalidos("Email, nome e senha são obrigatórios")
    especialidade = _texto(dados.get("especialidade"))
    if not especialidade:
        raise DadosInvalidos("Especialidade é obrigatória")

    cpf = _texto(dados.get("cpf"))
    tenant_id = user.tenant_id
    # nada vai para o Manager se o profissional não puder ser gravado aqui
    with db_session(tenant_id) as s:
        _verificar_unicidade_terapeuta(s, tenant_id, cpf, email)

    resposta = manager.create_user(
        {
            "email": email,
            "name": nome,
            "password": dados["password"],
            "role": dados.get("role") or "USER",
            "tenantId": tenant_id,
        },
        user.token,
    )
    usuario = resposta.get("user") if isinstance(resposta, dict) else None
    if not usuario or not usuario.get("id"):
        raise ManagerError("Erro ao criar usuário no Sistema 1")

    with db_session(tenant_id) as s:
        p = Profissional(
            tenant_id=tenant_id,
            usuario_id=usuario["id"],
            nome=nome,
            cpf=cpf,
            telefone=_texto(dados.get("telefone")),
            email=email,
            especialidade=especialidade,
            registro_profissional=_texto(dados.get("registro_profissional")),
            salas_acesso=list(dados.get("salas_acesso") or []),
            ativo=True,
        )
        s.add(p)
        s.flush()
        logger.info("Vínculo criado: usuário %s <-> profissional %s", usuario["id"], p.id)
        profissional = {
            "id": p.id,
            "nome": p.nome,
            "email": p.email,
            "especialidade": p.especialidade,
            "usuarioId": p.usuario_id,
        }

    return {
        "success": True,
        "usuario": usuario,
        "profissional": profissional,
        "message": "Usuário e profissional criados com sucesso",
    }


def vincular_usuario(user: AuthUser, usuario_id: str | None, profissional_id: str | None) -> dict[str, Any]:
    if not usuario_id:
        raise DadosInvalidos("ID do usuário é obrigatório")
    if not profissional_id:
        raise DadosInvalidos("ID do profissional é obrigatório")

    tenant_id = user.tenant_id
    with db_session(tenant_id) as s:
        p = _do_tenant(
            s, Profissional, tenant_id, profissional_id,
            "Profissional não encontrado ou não pertence a esta clínica",
        )
        if p.usuario_id and p.usuario_id != usuario_id:
            raise DadosInvalidos("Este profissional já está vinculado a outro usuário")

        outro = s.execute(
            select(Profissional.id).where(
                Profissional.tenant_id == tenant_id,
                Profissional.usuario_id == usuario_id,
                Profissional.ativo.is_(True),
                Profissional.id != profissional_id,
            )
        ).first()
        if outro is not None:
            raise DadosInvalidos("Este usuário já está vinculado a outro profissional")

        p.usuario_id = usuario_id
        logger.info("Usuário %s vinculado ao profissional %s", usuario_id, p.id)
        return {
            "success": True,
            "profissional": {
                "id": p.id,
                "nome": p.nome,
                "especialidade": p.especialidade,
                "usuarioId": p.usuario_id,
            },
            "message": "Usuário vinculado ao profissional com sucesso",
        }
