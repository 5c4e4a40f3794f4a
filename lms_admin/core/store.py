"""Domain store: transactional CRUD over users, roles, permissions and links.

Each mutating method is one logical transaction: it commits on success and
rolls back on failure. Uniqueness is checked up front for friendly messages,
but the database constraints remain the final arbiter; a constraint race is
rolled back and reported as :class:`ConflictError`.
"""
from __future__ import annotations
import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms_admin.core.errors import ConflictError, NotFoundError
from lms_admin.core.models import (
    Permission,
    Role,
    RolePermission,
    User,
    UserPermission,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

IdLike = Union[uuid.UUID, str]

_USER_FIELDS = {"email", "first_name", "last_name", "phone", "is_active"}
_ROLE_FIELDS = {"name", "description", "is_active"}
_PERMISSION_FIELDS = {"name", "resource", "action", "description", "is_active"}


def _as_uuid(value: IdLike, entity: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFoundError(f"{entity} '{value}' not found")


def _conflict_message(exc: IntegrityError, fallback: str) -> str:
    """Map a constraint violation to a field-specific message."""
    text = str(exc.orig).lower()
    for marker, message in (
        ("users.username", "Username already exists"),
        ("users.email", "Email already exists"),
        ("users.keycloak_id", "Directory id already linked to another user"),
        ("roles.name", "Role name already exists"),
        ("roles.keycloak_id", "Directory id already linked to another role"),
        ("permissions.resource", "Permission for this resource and action already exists"),
        ("uq_permissions_resource_action", "Permission for this resource and action already exists"),
    ):
        if marker in text:
            return message
    return fallback


class DomainStore:
    """Repository over a single SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def _commit(self, conflict_message: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(_conflict_message(exc, conflict_message)) from exc

    # ─────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────
    def get_user(self, user_id: IdLike) -> User:
        """Return the user or raise NotFoundError."""
        user = self.session.get(User, _as_uuid(user_id, "User"))
        if user is None:
            raise NotFoundError(f"User '{user_id}' not found")
        return user

    def find_user_by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username.lower()))

    def list_users(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.username)))

    def create_user(
        self,
        *,
        username: str,
        email: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> User:
        """Insert a user row.

        Raises:
            ConflictError: Username or email already taken
        """
        if self.session.scalar(select(User.id).where(User.username == username)) is not None:
            raise ConflictError(f"Username '{username}' already exists")
        if self.session.scalar(select(User.id).where(User.email == email)) is not None:
            raise ConflictError(f"Email '{email}' already exists")

        user = User(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            is_active=True,
            created_by=actor,
            updated_by=actor,
        )
        self.session.add(user)
        self._commit("User already exists")
        logger.info(f"User '{username}' created locally (id={user.id})")
        return user

    def update_user(self, user_id: IdLike, changes: dict, actor: Optional[str] = None) -> User:
        """Apply a partial update; omitted fields keep their value."""
        user = self.get_user(user_id)
        email = changes.get("email")
        if email and email != user.email:
            clash = self.session.scalar(select(User.id).where(User.email == email, User.id != user.id))
            if clash is not None:
                raise ConflictError(f"Email '{email}' already exists")
        for key, value in changes.items():
            if key in _USER_FIELDS:
                setattr(user, key, value)
        user.updated_by = actor
        user.updated_at = utcnow()
        self._commit("User update conflicts with an existing user")
        return user

    def set_user_directory_id(self, user: User, keycloak_id: str) -> User:
        """Persist the directory identifier onto the local user."""
        if user.keycloak_id == keycloak_id:
            return user
        user.keycloak_id = keycloak_id
        user.updated_at = utcnow()
        self._commit("Directory id already linked to another user")
        return user

    def delete_user(self, user: User) -> None:
        """Hard-delete the user; join rows cascade."""
        self.session.delete(user)
        self.session.commit()
        logger.info(f"User '{user.username}' deleted locally")

    # ─────────────────────────────────────────────────────────────────────
    # Roles
    # ─────────────────────────────────────────────────────────────────────
    def get_role(self, role_id: IdLike) -> Role:
        role = self.session.get(Role, _as_uuid(role_id, "Role"))
        if role is None:
            raise NotFoundError(f"Role '{role_id}' not found")
        return role

    def find_role_by_name(self, name: str) -> Optional[Role]:
        return self.session.scalar(select(Role).where(Role.name == name))

    def list_roles(self, active_only: bool = True) -> list[Role]:
        query = select(Role).order_by(Role.name)
        if active_only:
            query = query.where(Role.is_active.is_(True))
        return list(self.session.scalars(query))

    def managed_role_names(self) -> set[str]:
        """Names of every role known locally, active or not."""
        return set(self.session.scalars(select(Role.name)))

    def create_role(self, *, name: str, description: Optional[str] = None, actor: Optional[str] = None) -> Role:
        if self.find_role_by_name(name) is not None:
            raise ConflictError(f"Role '{name}' already exists")
        role = Role(name=name, description=description, is_active=True, created_by=actor, updated_by=actor)
        self.session.add(role)
        self._commit("Role already exists")
        logger.info(f"Role '{name}' created locally (id={role.id})")
        return role

    def update_role(self, role_id: IdLike, changes: dict, actor: Optional[str] = None) -> Role:
        role = self.get_role(role_id)
        name = changes.get("name")
        if name and name != role.name:
            clash = self.session.scalar(select(Role.id).where(Role.name == name, Role.id != role.id))
            if clash is not None:
                raise ConflictError(f"Role '{name}' already exists")
        for key, value in changes.items():
            if key in _ROLE_FIELDS:
                setattr(role, key, value)
        role.updated_by = actor
        role.updated_at = utcnow()
        self._commit("Role update conflicts with an existing role")
        return role

    def set_role_directory_id(self, role: Role, keycloak_id: str) -> Role:
        if role.keycloak_id == keycloak_id:
            return role
        role.keycloak_id = keycloak_id
        role.updated_at = utcnow()
        self._commit("Directory id already linked to another role")
        return role

    def delete_role(self, role: Role) -> None:
        self.session.delete(role)
        self.session.commit()
        logger.info(f"Role '{role.name}' deleted locally")

    # ─────────────────────────────────────────────────────────────────────
    # Permissions
    # ─────────────────────────────────────────────────────────────────────
    def get_permission(self, permission_id: IdLike) -> Permission:
        """Point lookup; deactivated permissions are still returned."""
        permission = self.session.get(Permission, _as_uuid(permission_id, "Permission"))
        if permission is None:
            raise NotFoundError(f"Permission '{permission_id}' not found")
        return permission

    def list_permissions(self, active_only: bool = True) -> list[Permission]:
        query = select(Permission).order_by(Permission.resource, Permission.action)
        if active_only:
            query = query.where(Permission.is_active.is_(True))
        return list(self.session.scalars(query))

    def _permission_clash(self, resource: str, action: str, exclude: Optional[uuid.UUID] = None) -> bool:
        query = select(Permission.id).where(Permission.resource == resource, Permission.action == action)
        if exclude is not None:
            query = query.where(Permission.id != exclude)
        return self.session.scalar(query) is not None

    def create_permission(
        self,
        *,
        name: str,
        resource: str,
        action: str,
        description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Permission:
        """Insert a permission.

        Raises:
            ConflictError: (resource, action) pair already exists
        """
        if self._permission_clash(resource, action):
            raise ConflictError(f"Permission '{resource}:{action}' already exists")
        permission = Permission(
            name=name,
            resource=resource,
            action=action,
            description=description,
            is_active=True,
            created_by=actor,
            updated_by=actor,
        )
        self.session.add(permission)
        self._commit("Permission for this resource and action already exists")
        return permission

    def update_permission(self, permission_id: IdLike, changes: dict, actor: Optional[str] = None) -> Permission:
        permission = self.get_permission(permission_id)
        resource = changes.get("resource", permission.resource)
        action = changes.get("action", permission.action)
        if (resource, action) != (permission.resource, permission.action):
            if self._permission_clash(resource, action, exclude=permission.id):
                raise ConflictError(f"Permission '{resource}:{action}' already exists")
        for key, value in changes.items():
            if key in _PERMISSION_FIELDS:
                setattr(permission, key, value)
        permission.updated_by = actor
        permission.updated_at = utcnow()
        self._commit("Permission for this resource and action already exists")
        return permission

    def deactivate_permission(self, permission_id: IdLike, actor: Optional[str] = None) -> Permission:
        """Soft-delete: the row and its grants stay, ``is_active`` becomes False."""
        return self.update_permission(permission_id, {"is_active": False}, actor=actor)

    # ─────────────────────────────────────────────────────────────────────
    # Links
    # ─────────────────────────────────────────────────────────────────────
    def _add_link(self, link, exists_query) -> bool:
        if self.session.scalar(exists_query) is not None:
            return False
        self.session.add(link)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent insert of the same pair
            self.session.rollback()
            return False
        return True

    def _remove_link(self, query) -> bool:
        link = self.session.scalar(query)
        if link is None:
            return False
        self.session.delete(link)
        self.session.commit()
        return True

    def add_user_role(self, user: User, role: Role, actor: Optional[str] = None) -> bool:
        """Link user and role. Returns False when the pair already existed."""
        return self._add_link(
            UserRole(user_id=user.id, role_id=role.id, assigned_by=actor),
            select(UserRole.id).where(UserRole.user_id == user.id, UserRole.role_id == role.id),
        )

    def remove_user_role(self, user: User, role: Role) -> bool:
        """Unlink user and role. Returns False when no such link existed."""
        return self._remove_link(
            select(UserRole).where(UserRole.user_id == user.id, UserRole.role_id == role.id)
        )

    def user_roles(self, user: User) -> list[Role]:
        """Roles held by the user, ordered by name."""
        query = (
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user.id)
            .order_by(Role.name)
        )
        return list(self.session.scalars(query))

    def add_user_permission(self, user: User, permission: Permission, actor: Optional[str] = None) -> bool:
        return self._add_link(
            UserPermission(user_id=user.id, permission_id=permission.id, assigned_by=actor),
            select(UserPermission.id).where(
                UserPermission.user_id == user.id, UserPermission.permission_id == permission.id
            ),
        )

    def remove_user_permission(self, user: User, permission: Permission) -> bool:
        return self._remove_link(
            select(UserPermission).where(
                UserPermission.user_id == user.id, UserPermission.permission_id == permission.id
            )
        )

    def add_role_permission(self, role: Role, permission: Permission, actor: Optional[str] = None) -> bool:
        return self._add_link(
            RolePermission(role_id=role.id, permission_id=permission.id, assigned_by=actor),
            select(RolePermission.id).where(
                RolePermission.role_id == role.id, RolePermission.permission_id == permission.id
            ),
        )

    def remove_role_permission(self, role: Role, permission: Permission) -> bool:
        return self._remove_link(
            select(RolePermission).where(
                RolePermission.role_id == role.id, RolePermission.permission_id == permission.id
            )
        )
