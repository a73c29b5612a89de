from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from . import config
from .auth_models import AuthUser

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_session_token(user: AuthUser) -> str:
    """
    Token de sessão deste sistema: carrega usuário, tenant e o token SSO do Manager.
    Usa datetime timezone-aware para evitar erros de offset no timestamp.
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=config.SESSION_EXPIRE_MINUTES)

    payload: dict[str, Any] = {
        "sub": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "tenant": user.tenant.model_dump() if user.tenant else None,
        "config": user.config,
        "sso": user.token,
        "login_time": user.login_time or now.isoformat(),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, config.SESSION_SECRET, algorithm=config.SESSION_ALG)


def decode_session_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, config.SESSION_SECRET, algorithms=[config.SESSION_ALG])


def user_from_token(token: str) -> AuthUser | None:
    """AuthUser do token de sessão, ou None se inválido/expirado."""
    # proteção extra: remove espaços / aspas acidentais
    token = token.strip().strip('"').strip("'")
    try:
        payload = decode_session_token(token)
    except JWTError:
        return None

    if not payload.get("sub"):
        return None

    return AuthUser(
        id=payload["sub"],
        email=payload.get("email") or "",
        name=payload.get("name") or "",
        role=payload.get("role") or "USER",
        tenant=payload.get("tenant"),
        config=payload.get("config") or {},
        token=payload.get("sso") or "",
        login_time=payload.get("login_time"),
    )


# Header X-User-Data: JSON do usuário em base64 (evita problemas com acentos)

def encode_user_data(user: AuthUser) -> str:
    raw = json.dumps(user.model_dump(), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_user_data(header: str) -> dict[str, Any] | None:
    try:
        data = json.loads(base64.b64decode(header).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None
