"""Local model ↔ JSON / Keycloak representations.

Usage:
    # Local row → API JSON
    body = Representations.user_to_dict(user, roles=store.user_roles(user))

    # Local row → Keycloak user representation
    kc_user = Representations.user_to_keycloak(user)
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from lms_admin.core.models import DirectorySyncTask, Permission, Role, User


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class Representations:
    """Converters between ORM rows and wire formats."""

    @staticmethod
    def role_to_dict(role: Role) -> Dict[str, Any]:
        return {
            "id": str(role.id),
            "name": role.name,
            "description": role.description,
            "isActive": role.is_active,
            "keycloakId": role.keycloak_id,
            "createdAt": _iso(role.created_at),
            "updatedAt": _iso(role.updated_at),
        }

    @staticmethod
    def permission_to_dict(permission: Permission) -> Dict[str, Any]:
        return {
            "id": str(permission.id),
            "name": permission.name,
            "resource": permission.resource,
            "action": permission.action,
            "description": permission.description,
            "isActive": permission.is_active,
            "createdAt": _iso(permission.created_at),
            "updatedAt": _iso(permission.updated_at),
        }

    @staticmethod
    def user_to_dict(user: User, roles: Optional[Iterable[Role]] = None) -> Dict[str, Any]:
        """Convert a local user to its API representation.

        Args:
            user: User row
            roles: Roles held by the user; omitted from the body when None

        Returns:
            camelCase JSON-ready dict
        """
        body = {
            "id": str(user.id),
            "username": user.username,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "phone": user.phone,
            "isActive": user.is_active,
            "keycloakId": user.keycloak_id,
            "createdAt": _iso(user.created_at),
            "updatedAt": _iso(user.updated_at),
        }
        if roles is not None:
            body["roles"] = [Representations.role_to_dict(role) for role in roles]
        return body

    @staticmethod
    def user_to_keycloak(user: User) -> Dict[str, Any]:
        """Convert a local user to the Keycloak user representation.

        Only identity fields are pushed; credentials are handled separately.
        """
        return {
            "username": user.username,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "enabled": bool(user.is_active),
            "emailVerified": True,
        }

    @staticmethod
    def task_to_dict(task: DirectorySyncTask) -> Dict[str, Any]:
        return {
            "id": task.id,
            "operation": task.operation,
            "payload": task.payload,
            "status": task.status,
            "attempts": task.attempts,
            "lastError": task.last_error,
            "createdAt": _iso(task.created_at),
            "updatedAt": _iso(task.updated_at),
        }
