from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import config

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # SQLite em memória: uma única conexão para o schema sobreviver
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(
    config.DATABASE_URL,
    echo=config.SQL_ECHO,
    future=True,
    **_engine_kwargs(config.DATABASE_URL),
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base ORM para todos os modelos."""
    pass


# Tabelas que vivem no schema do tenant quando o roteamento por schema está ativo
TENANT_TABLES = frozenset(
    {
        "pacientes",
        "profissionais",
        "agendamentos",
        "salas",
        "procedimentos",
        "atividades",
        "sessoes_atividade",
        "anamneses",
    }
)


def schema_do_tenant(tenant_id: str) -> str:
    tenant_id = (tenant_id or "").strip()
    if not tenant_id:
        raise ValueError("tenant_id é obrigatório para roteamento por schema.")
    return f"tenant_{tenant_id}"


def _roteamento_ativo(connection) -> bool:
    return config.TENANT_SCHEMA_ROUTING and connection.dialect.name == "postgresql"


class TenantSessionRegistry:
    """
    Cache de fábricas de sessão por tenant.

    Com TENANT_SCHEMA_ROUTING ligado (PostgreSQL), cada transação de uma sessão
    do tenant começa com `SET LOCAL search_path TO "tenant_<id>", public`.
    Nos outros casos as sessões são equivalentes a SessionLocal e o isolamento
    fica a cargo dos filtros por tenant_id.
    """

    _instances: dict[str, sessionmaker] = {}
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls, tenant_id: str) -> sessionmaker:
        with cls._lock:
            factory = cls._instances.get(tenant_id)
            if factory is None:
                factory = cls._build(tenant_id)
                cls._instances[tenant_id] = factory
            return factory

    @classmethod
    def _build(cls, tenant_id: str) -> sessionmaker:
        schema = schema_do_tenant(tenant_id)
        factory = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )

        @event.listens_for(factory, "after_begin")
        def _set_search_path(session, transaction, connection) -> None:
            if not _roteamento_ativo(connection):
                return
            quoted = connection.dialect.identifier_preparer.quote(schema)
            connection.exec_driver_sql(f"SET LOCAL search_path TO {quoted}, public")

        logger.debug("Fábrica de sessão criada para tenant %s", tenant_id)
        return factory

    @classmethod
    def clear_instance(cls, tenant_id: str) -> bool:
        with cls._lock:
            return cls._instances.pop(tenant_id, None) is not None

    @classmethod
    def clear_all_instances(cls) -> None:
        with cls._lock:
            cls._instances.clear()

    @classmethod
    def tenants(cls) -> list[str]:
        with cls._lock:
            return sorted(cls._instances)


@contextmanager
def db_session(tenant_id: str | None = None) -> Iterator[Session]:
    """
    Context manager para gerenciar a sessão:
    - commit se tudo ok
    - rollback em exceções
    - close sempre
    """
    factory = TenantSessionRegistry.get_instance(tenant_id) if tenant_id else SessionLocal
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Cria as tabelas se não existirem."""
    # registra os modelos no metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def criar_schema_tenant(tenant_id: str) -> str:
    """
    Cria o schema do tenant e suas tabelas (apenas PostgreSQL).
    Retorna o nome do schema.
    """
    from . import models  # noqa: F401

    schema = schema_do_tenant(tenant_id)
    if engine.dialect.name != "postgresql":
        raise RuntimeError("Schemas por tenant exigem PostgreSQL.")

    tabelas = [t for t in Base.metadata.sorted_tables if t.name in TENANT_TABLES]
    quoted = engine.dialect.identifier_preparer.quote(schema)
    with engine.begin() as conn:
        conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quoted}"))
        tenant_conn = conn.execution_options(schema_translate_map={None: schema})
        Base.metadata.create_all(bind=tenant_conn, tables=tabelas)

    logger.info("Schema %s criado com %d tabelas", schema, len(tabelas))
    return schema
