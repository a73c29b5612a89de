from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# SQLite na raiz do projeto por padrão; em produção, PostgreSQL
DB_PATH = Path(__file__).resolve().parents[1] / "caleidoscopio.sqlite"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")
SQL_ECHO = _env_bool("SQL_ECHO", False)

# search_path por tenant (só tem efeito em PostgreSQL)
TENANT_SCHEMA_ROUTING = _env_bool("TENANT_SCHEMA_ROUTING", False)

# Sistema 1 (Manager)
MANAGER_API_URL = os.getenv("MANAGER_API_URL", "http://localhost:3000").rstrip("/")
MANAGER_PRODUCT_SLUG = os.getenv("MANAGER_PRODUCT_SLUG", "educational")
MANAGER_TIMEOUT = float(os.getenv("MANAGER_TIMEOUT", "10"))
USE_MOCK_MANAGER = _env_bool("USE_MOCK_MANAGER", False)
MANAGER_VALIDATE_EACH_REQUEST = _env_bool("MANAGER_VALIDATE_EACH_REQUEST", True)

# Token de sessão emitido por este sistema após o login SSO
SESSION_SECRET = os.getenv("SESSION_SECRET", "CHANGE_ME_DEV_SECRET")
SESSION_ALG = "HS256"
SESSION_EXPIRE_MINUTES = int(os.getenv("SESSION_EXPIRE_MINUTES", str(7 * 24 * 60)))

COOKIE_NAME = os.getenv("COOKIE_NAME", "caleidoscopio_token")
COOKIE_MAX_AGE = SESSION_EXPIRE_MINUTES * 60
COOKIE_SECURE = IS_PRODUCTION

CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "America/Sao_Paulo")

UI_BASE_URL = os.getenv("UI_BASE_URL", "http://127.0.0.1:8501")
