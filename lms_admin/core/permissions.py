"""Effective permission resolution.

A user's effective permissions are the union of direct grants and grants
inherited through roles. Each permission appears once, tagged with the
source that contributed it. Precedence is fixed:

1. direct grants, ordered by (resource, action);
2. role grants, roles ordered by name, each role's grants by (resource, action).

The first occurrence of a permission id wins; later duplicates are dropped.
Resolution only reads from the session.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_admin.core.models import Permission, Role, RolePermission, UserPermission, UserRole
from lms_admin.core.store import DomainStore, IdLike


@dataclass(frozen=True)
class Direct:
    """Permission granted straight to the user."""

    def __str__(self) -> str:
        return "direct"


@dataclass(frozen=True)
class FromRole:
    """Permission inherited through the named role."""

    role_name: str

    def __str__(self) -> str:
        return f"role:{self.role_name}"


PermissionSource = Union[Direct, FromRole]

DIRECT = Direct()


def parse_source(tag: str) -> PermissionSource:
    """Inverse of ``str(source)`` for the wire tags ``direct`` and ``role:<name>``."""
    if tag == "direct":
        return DIRECT
    if tag.startswith("role:") and len(tag) > len("role:"):
        return FromRole(tag[len("role:"):])
    raise ValueError(f"Unknown permission source '{tag}'")


@dataclass(frozen=True)
class EffectivePermission:
    permission_id: uuid.UUID
    name: str
    resource: str
    action: str
    description: Optional[str]
    is_active: bool
    source: PermissionSource

    @classmethod
    def from_model(cls, permission: Permission, source: PermissionSource) -> "EffectivePermission":
        return cls(
            permission_id=permission.id,
            name=permission.name,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
            is_active=permission.is_active,
            source=source,
        )

    def to_dict(self) -> dict:
        return {
            "permissionId": str(self.permission_id),
            "name": self.name,
            "resource": self.resource,
            "action": self.action,
            "description": self.description,
            "isActive": self.is_active,
            "source": str(self.source),
        }


def _direct_grants(session: Session, user_id: uuid.UUID) -> list[Permission]:
    query = (
        select(Permission)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user_id)
        .order_by(Permission.resource, Permission.action)
    )
    return list(session.scalars(query))


def _role_grants(session: Session, user_id: uuid.UUID) -> list[tuple[str, Permission]]:
    query = (
        select(Role.name, Permission)
        .join(UserRole, UserRole.role_id == Role.id)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name, Permission.resource, Permission.action)
    )
    return [(role_name, permission) for role_name, permission in session.execute(query)]


def resolve_effective_permissions(
    session: Session,
    user_id: IdLike,
    *,
    active_only: bool = False,
) -> list[EffectivePermission]:
    """Compute the de-duplicated effective permission list for a user.

    Args:
        session: Database session
        user_id: User identifier
        active_only: Skip soft-deactivated permissions when True

    Returns:
        Permissions in precedence order, one entry per permission id

    Raises:
        NotFoundError: If the user does not exist
    """
    user = DomainStore(session).get_user(user_id)

    candidates: list[tuple[Permission, PermissionSource]] = [
        (permission, DIRECT) for permission in _direct_grants(session, user.id)
    ]
    candidates.extend(
        (permission, FromRole(role_name)) for role_name, permission in _role_grants(session, user.id)
    )

    resolved: dict[uuid.UUID, EffectivePermission] = {}
    for permission, source in candidates:
        if active_only and not permission.is_active:
            continue
        if permission.id in resolved:
            continue
        resolved[permission.id] = EffectivePermission.from_model(permission, source)
    return list(resolved.values())


def resolve_role_permissions(
    session: Session,
    role_id: IdLike,
    *,
    active_only: bool = False,
) -> list[Permission]:
    """List the permissions attached to a role, ordered by (resource, action).

    Raises:
        NotFoundError: If the role does not exist
    """
    role = DomainStore(session).get_role(role_id)
    query = (
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id)
        .order_by(Permission.resource, Permission.action)
    )
    if active_only:
        query = query.where(Permission.is_active.is_(True))
    return list(session.scalars(query))
