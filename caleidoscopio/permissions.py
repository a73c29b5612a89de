from __future__ import annotations

from .auth_models import ADMIN_ROLES, TERAPEUTA_ROLES, AuthUser

# ação -> roles autorizadas
PERMISSOES: dict[str, frozenset[str]] = {
    "view_patients": TERAPEUTA_ROLES,
    "create_patients": TERAPEUTA_ROLES,
    "edit_patients": TERAPEUTA_ROLES,
    "delete_patients": ADMIN_ROLES,
    # terapeutas podem ver a lista de profissionais
    "view_professionals": TERAPEUTA_ROLES,
    "create_professionals": ADMIN_ROLES,
    "edit_professionals": ADMIN_ROLES,
    "delete_professionals": ADMIN_ROLES,
    "view_medical_records": TERAPEUTA_ROLES,
    "create_medical_records": TERAPEUTA_ROLES,
    "edit_medical_records": TERAPEUTA_ROLES,
    "delete_medical_records": TERAPEUTA_ROLES,
    "view_activities": TERAPEUTA_ROLES,
    "create_activities": TERAPEUTA_ROLES,
    "edit_activities": TERAPEUTA_ROLES,
    "delete_activities": ADMIN_ROLES,
    "view_sessions": TERAPEUTA_ROLES,
    "create_sessions": TERAPEUTA_ROLES,
    "edit_sessions": TERAPEUTA_ROLES,
    "view_anamneses": TERAPEUTA_ROLES,
    "create_anamneses": TERAPEUTA_ROLES,
    "edit_anamneses": TERAPEUTA_ROLES,
    "delete_anamneses": ADMIN_ROLES,
    "manage_users": ADMIN_ROLES,
    "manage_rooms": ADMIN_ROLES,
    "manage_procedures": ADMIN_ROLES,
}


def has_permission(user: AuthUser, action: str) -> bool:
    """Ações desconhecidas são negadas."""
    roles = PERMISSOES.get(action)
    if roles is None:
        return False
    return user.role in roles
