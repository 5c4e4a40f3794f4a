"""
Administrative service layer.

Composes the domain store, the permission resolver, the directory sync
adapter and the audit trail into the operations exposed by the API and the
CLI. Local state is authoritative: every flow commits locally first and only
then mirrors into Keycloak.

Architecture:
    API blueprints (/api/*) ──┐
                              ├──> AdminService ──> DomainStore ──> database
    CLI (lms_admin.cli) ──────┘          │
                                         └──> DirectorySyncAdapter ──> Keycloak
                                                      └──> SyncOutbox (failed mirrors)

Failure policy:
    - Initial provisioning and explicit profile updates surface SyncError.
    - Mirrors of role assignment/removal, deletions and role changes are
      swallowed: logged, queued in the outbox and reported as
      ``directorySynced: false``.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from lms_admin.core import audit
from lms_admin.core.directory_sync import DirectorySyncAdapter, SyncOutbox
from lms_admin.core.errors import ConflictError, NotFoundError, SyncError
from lms_admin.core.models import Role, User
from lms_admin.core.permissions import resolve_effective_permissions, resolve_role_permissions
from lms_admin.core.rbac import Caller
from lms_admin.core.representations import Representations
from lms_admin.core.store import DomainStore, IdLike

logger = logging.getLogger(__name__)


class AdminService:
    """Administrative operations for one database session."""

    def __init__(self, session: Session, directory: DirectorySyncAdapter):
        self.session = session
        self.store = DomainStore(session)
        self.directory = directory
        self.outbox = SyncOutbox(directory)

    def _mirror(self, operation: str, payload: dict, call: Callable[[], Any]) -> bool:
        """Best-effort directory mirror; failures are queued, never raised."""
        try:
            call()
            return True
        except SyncError as exc:
            logger.warning(f"Directory mirror '{operation}' failed, queued for retry: {exc.detail}")
            self.outbox.enqueue(operation, payload, exc.detail)
            return False

    def _user_dict(self, user: User) -> dict:
        return Representations.user_to_dict(user, roles=self.store.user_roles(user))

    # ─────────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────────

    def list_users(self) -> list[dict]:
        return [self._user_dict(user) for user in self.store.list_users()]

    def get_user(self, user_id: IdLike) -> dict:
        return self._user_dict(self.store.get_user(user_id))

    def current_profile(self, caller: Caller) -> dict:
        """Local profile of the caller, matched by preferred username.

        Raises:
            NotFoundError: The caller has no local user row
        """
        user = self.store.find_user_by_username(caller.username) if caller.username else None
        if user is None:
            raise NotFoundError("User not found in database")
        body = self._user_dict(user)
        body["permissions"] = [
            entry.to_dict() for entry in resolve_effective_permissions(self.session, user.id)
        ]
        return body

    def create_user(self, fields: dict, caller: Caller) -> dict:
        """Create the local user, then provision the directory account.

        Args:
            fields: Validated fields from ``parse_user_create``
            caller: Authenticated caller

        Returns:
            User representation including ``keycloakId``

        Raises:
            ConflictError: Username or email already exists
            SyncError: Directory provisioning failed; the local row persists and
                its id is included in the error body for a later retry
        """
        fields = dict(fields)
        password = fields.pop("password", None)
        user = self.store.create_user(**fields, actor=caller.actor)
        audit.safe_log_event(
            "user_create",
            user.username,
            operator=caller.actor,
            details={"user_id": str(user.id), "email": user.email},
        )

        try:
            self.directory.create_directory_user(user, password)
        except SyncError as exc:
            audit.safe_log_event(
                "user_provision",
                user.username,
                operator=caller.actor,
                details={"user_id": str(user.id), "error": exc.detail},
                success=False,
            )
            raise SyncError(
                f"User created locally but directory provisioning failed: {exc.detail}",
                extra={"userId": str(user.id), "user": self._user_dict(user)},
            ) from exc

        audit.safe_log_event(
            "user_provision",
            user.username,
            operator=caller.actor,
            details={"user_id": str(user.id), "keycloak_id": user.keycloak_id},
        )
        return self._user_dict(user)

    def provision_user(self, user_id: IdLike, caller: Caller, password: Optional[str] = None) -> dict:
        """Retry (or refresh) directory provisioning for an existing local user.

        Creates the directory account when missing, back-filling the local
        ``keycloakId``; otherwise pushes the profile. Role mappings are then
        reconciled. The local row is never duplicated.

        Raises:
            NotFoundError: Unknown user id
            SyncError: Directory call failed
        """
        user = self.store.get_user(user_id)
        try:
            keycloak_id = self.directory.create_directory_user(user, password)
            reconciled = self.directory.sync_user_roles(user)
        except SyncError as exc:
            audit.safe_log_event(
                "user_provision",
                user.username,
                operator=caller.actor,
                details={"user_id": str(user.id), "error": exc.detail},
                success=False,
            )
            raise SyncError(exc.detail, extra={"userId": str(user.id)}) from exc

        audit.safe_log_event(
            "user_provision",
            user.username,
            operator=caller.actor,
            details={"user_id": str(user.id), "keycloak_id": keycloak_id, "roles": reconciled},
        )
        return {"user": self._user_dict(user), "keycloakId": keycloak_id, "roles": reconciled}

    def update_user(self, user_id: IdLike, changes: dict, caller: Caller) -> dict:
        """Apply a partial profile update, then push it to the directory.

        Raises:
            SyncError: The local update is committed but the directory push
                failed (the push is also queued for the drainer)
        """
        user = self.store.update_user(user_id, changes, actor=caller.actor)
        audit.safe_log_event(
            "user_update",
            user.username,
            operator=caller.actor,
            details={"user_id": str(user.id), "fields": sorted(changes)},
        )
        if user.keycloak_id:
            try:
                self.directory.update_directory_user(user)
            except SyncError as exc:
                self.outbox.enqueue("update_user", {"user_id": str(user.id)}, exc.detail)
                raise SyncError(
                    f"User updated locally but directory update failed: {exc.detail}",
                    extra={"userId": str(user.id), "queued": True},
                ) from exc
        return self._user_dict(user)

    def delete_user(self, user_id: IdLike, caller: Caller) -> bool:
        """Delete the directory account (best-effort), then the local row.

        Returns:
            Whether the directory side was deleted (True when not linked)
        """
        user = self.store.get_user(user_id)
        synced = True
        if user.keycloak_id:
            keycloak_id = user.keycloak_id
            synced = self._mirror(
                "delete_user",
                {"keycloak_id": keycloak_id, "username": user.username},
                lambda: self.directory.delete_directory_user(keycloak_id),
            )
        username = user.username
        self.store.delete_user(user)
        audit.safe_log_event(
            "user_delete",
            username,
            operator=caller.actor,
            details={"user_id": str(user_id), "directory_synced": synced},
        )
        return synced

    def assign_role(self, user_id: IdLike, role_id: IdLike, caller: Caller) -> dict:
        """Link a role to a user and mirror the membership.

        Idempotent: an existing link (including one inserted concurrently)
        is reported as success without a second row or mirror call.
        """
        user = self.store.get_user(user_id)
        role = self.store.get_role(role_id)
        created = self.store.add_user_role(user, role, actor=caller.actor)
        if not created:
            return {"message": "Role already assigned", "assigned": False, "directorySynced": None}

        synced: Optional[bool] = None
        if user.keycloak_id:
            keycloak_id = user.keycloak_id
            synced = self._mirror(
                "assign_role",
                {"user_id": str(user.id), "role_id": str(role.id), "role_name": role.name},
                lambda: self.directory.assign_directory_role(keycloak_id, role.name),
            )
        audit.safe_log_event(
            "role_assign",
            user.username,
            operator=caller.actor,
            details={"role": role.name, "directory_synced": synced},
        )
        return {"message": "Role assigned successfully", "assigned": True, "directorySynced": synced}

    def remove_role(self, user_id: IdLike, role_id: IdLike, caller: Caller) -> dict:
        """Unlink a role from a user and mirror the removal; absent links are a no-op."""
        user = self.store.get_user(user_id)
        role = self.store.get_role(role_id)
        removed = self.store.remove_user_role(user, role)
        if not removed:
            return {"message": "Role was not assigned", "removed": False, "directorySynced": None}

        synced: Optional[bool] = None
        if user.keycloak_id:
            keycloak_id = user.keycloak_id
            synced = self._mirror(
                "remove_role",
                {
                    "user_id": str(user.id),
                    "role_id": str(role.id),
                    "keycloak_user_id": keycloak_id,
                    "role_name": role.name,
                },
                lambda: self.directory.remove_directory_role(keycloak_id, role.name),
            )
        audit.safe_log_event(
            "role_remove",
            user.username,
            operator=caller.actor,
            details={"role": role.name, "directory_synced": synced},
        )
        return {"message": "Role removed successfully", "removed": True, "directorySynced": synced}

    def user_permissions(self, user_id: IdLike, active_only: bool = False) -> list[dict]:
        return [
            entry.to_dict()
            for entry in resolve_effective_permissions(self.session, user_id, active_only=active_only)
        ]

    # ─────────────────────────────────────────────────────────────────────────
    # Roles
    # ─────────────────────────────────────────────────────────────────────────

    def list_roles(self) -> list[dict]:
        return [Representations.role_to_dict(role) for role in self.store.list_roles()]

    def get_role(self, role_id: IdLike) -> dict:
        return Representations.role_to_dict(self.store.get_role(role_id))

    def _push_role(self, role: Role, previous_name: str) -> None:
        if role.keycloak_id:
            self.directory.update_directory_role(role, previous_name)
        else:
            self.directory.create_directory_role(role)

    def create_role(self, fields: dict, caller: Caller) -> dict:
        role = self.store.create_role(**fields, actor=caller.actor)
        synced = self._mirror(
            "sync_role",
            {"role_id": str(role.id), "previous_name": role.name},
            lambda: self.directory.create_directory_role(role),
        )
        audit.safe_log_event(
            "role_create",
            role.name,
            operator=caller.actor,
            details={"role_id": str(role.id), "directory_synced": synced},
        )
        body = Representations.role_to_dict(role)
        body["directorySynced"] = synced
        return body

    def update_role(self, role_id: IdLike, changes: dict, caller: Caller) -> dict:
        previous_name = self.store.get_role(role_id).name
        role = self.store.update_role(role_id, changes, actor=caller.actor)
        synced = self._mirror(
            "sync_role",
            {"role_id": str(role.id), "previous_name": previous_name},
            lambda: self._push_role(role, previous_name),
        )
        audit.safe_log_event(
            "role_update",
            role.name,
            operator=caller.actor,
            details={"role_id": str(role.id), "previous_name": previous_name, "directory_synced": synced},
        )
        body = Representations.role_to_dict(role)
        body["directorySynced"] = synced
        return body

    def delete_role(self, role_id: IdLike, caller: Caller) -> bool:
        """Delete the directory role (best-effort), then the local row and its links."""
        role = self.store.get_role(role_id)
        name = role.name
        synced = True
        if role.keycloak_id:
            synced = self._mirror(
                "delete_role",
                {"role_name": name},
                lambda: self.directory.delete_directory_role(name),
            )
        self.store.delete_role(role)
        audit.safe_log_event(
            "role_delete",
            name,
            operator=caller.actor,
            details={"role_id": str(role_id), "directory_synced": synced},
        )
        return synced

    def role_permissions(self, role_id: IdLike, active_only: bool = False) -> list[dict]:
        return [
            Representations.permission_to_dict(permission)
            for permission in resolve_role_permissions(self.session, role_id, active_only=active_only)
        ]

    # ─────────────────────────────────────────────────────────────────────────
    # Permissions
    # ─────────────────────────────────────────────────────────────────────────

    def list_permissions(self) -> list[dict]:
        return [Representations.permission_to_dict(p) for p in self.store.list_permissions()]

    def get_permission(self, permission_id: IdLike) -> dict:
        return Representations.permission_to_dict(self.store.get_permission(permission_id))

    def create_permission(self, fields: dict, caller: Caller) -> dict:
        permission = self.store.create_permission(**fields, actor=caller.actor)
        audit.safe_log_event(
            "permission_create",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"permission_id": str(permission.id)},
        )
        return Representations.permission_to_dict(permission)

    def update_permission(self, permission_id: IdLike, changes: dict, caller: Caller) -> dict:
        permission = self.store.update_permission(permission_id, changes, actor=caller.actor)
        audit.safe_log_event(
            "permission_update",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"permission_id": str(permission.id), "fields": sorted(changes)},
        )
        return Representations.permission_to_dict(permission)

    def deactivate_permission(self, permission_id: IdLike, caller: Caller) -> None:
        permission = self.store.deactivate_permission(permission_id, actor=caller.actor)
        audit.safe_log_event(
            "permission_deactivate",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"permission_id": str(permission.id)},
        )

    def grant_role_permission(self, permission_id: IdLike, role_id: IdLike, caller: Caller) -> dict:
        """Attach a permission to a role.

        Raises:
            ConflictError: The role already holds the permission
        """
        permission = self.store.get_permission(permission_id)
        role = self.store.get_role(role_id)
        if not self.store.add_role_permission(role, permission, actor=caller.actor):
            raise ConflictError("Permission already assigned to role")
        audit.safe_log_event(
            "permission_grant",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"role": role.name},
        )
        return {"message": "Permission assigned to role successfully"}

    def revoke_role_permission(self, permission_id: IdLike, role_id: IdLike, caller: Caller) -> dict:
        """Detach a permission from a role.

        Raises:
            NotFoundError: No such assignment
        """
        permission = self.store.get_permission(permission_id)
        role = self.store.get_role(role_id)
        if not self.store.remove_role_permission(role, permission):
            raise NotFoundError("Role permission assignment not found")
        audit.safe_log_event(
            "permission_revoke",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"role": role.name},
        )
        return {"message": "Permission removed from role successfully"}

    def grant_user_permission(self, permission_id: IdLike, user_id: IdLike, caller: Caller) -> dict:
        """Grant a permission directly to a user.

        Raises:
            ConflictError: The user already holds the direct grant
        """
        permission = self.store.get_permission(permission_id)
        user = self.store.get_user(user_id)
        if not self.store.add_user_permission(user, permission, actor=caller.actor):
            raise ConflictError("Permission already assigned to user")
        audit.safe_log_event(
            "permission_grant",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"user": user.username},
        )
        return {"message": "Permission assigned to user successfully"}

    def revoke_user_permission(self, permission_id: IdLike, user_id: IdLike, caller: Caller) -> dict:
        permission = self.store.get_permission(permission_id)
        user = self.store.get_user(user_id)
        if not self.store.remove_user_permission(user, permission):
            raise NotFoundError("User permission assignment not found")
        audit.safe_log_event(
            "permission_revoke",
            f"{permission.resource}:{permission.action}",
            operator=caller.actor,
            details={"user": user.username},
        )
        return {"message": "Permission removed from user successfully"}

    # ─────────────────────────────────────────────────────────────────────────
    # Directory outbox
    # ─────────────────────────────────────────────────────────────────────────

    def outbox_tasks(self, status: Optional[str] = None) -> list[dict]:
        return [Representations.task_to_dict(task) for task in self.outbox.list_tasks(status)]

    def drain_outbox(self, caller: Caller, limit: int = 100) -> dict:
        report = self.outbox.drain(limit=limit)
        audit.safe_log_event(
            "outbox_drain",
            "directory",
            operator=caller.actor,
            details=report.to_dict(),
            success=report.failed == 0 and report.retried == 0,
        )
        return report.to_dict()
