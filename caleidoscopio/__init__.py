"""
Backend Caleidoscópio (módulo educacional/clínico multi-tenant).

Estrutura:
- config.py          : configuração via variáveis de ambiente (.env)
- db.py              : engine, sessões SQLAlchemy e roteamento por tenant
- models.py          : modelos ORM e enums
- manager_client.py  : cliente HTTP do Sistema 1 (Manager) e mock de desenvolvimento
- auth_*.py          : token de sessão, usuário autenticado, permissões
- services.py        : dashboard e agendamentos
- cadastros.py       : pacientes, terapeutas, salas, procedimentos, vínculo de usuários
- api_*.py           : rotas FastAPI
- seed.py / cli.py   : dados de demonstração e linha de comando
"""
