"""Directory sync adapter: mirrors local users and roles into Keycloak.

Every operation authenticates a new admin client (fresh token) through the
configured client factory, performs its calls, and converts any Keycloak or
transport failure into :class:`SyncError`. The adapter never rolls back
local state; callers decide whether a failure is fatal or queued in the
outbox (:class:`SyncOutbox`) for a later :meth:`SyncOutbox.drain`.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from lms_admin.core.errors import NotFoundError, SyncError
from lms_admin.core.keycloak import (
    KeycloakClient,
    KeycloakError,
    RoleNotFoundError,
    RoleService,
    UserAlreadyExistsError,
    UserService,
)
from lms_admin.core.keycloak.client import REQUEST_TIMEOUT
from lms_admin.core.models import DirectorySyncTask, Role, User, UserRole
from lms_admin.core.representations import Representations
from lms_admin.core.store import DomainStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[], KeycloakClient]

OPERATIONS = ("update_user", "delete_user", "assign_role", "remove_role", "sync_role", "delete_role")


@dataclass(frozen=True)
class DirectorySettings:
    """Connection settings for the directory admin API."""

    base_url: str
    realm: str
    admin_username: str
    admin_password: str
    admin_realm: str = "master"
    admin_client_id: str = "admin-cli"
    timeout: float = REQUEST_TIMEOUT
    default_password: str = "ChangeMe123!"
    max_attempts: int = 5

    @classmethod
    def from_config(cls, cfg) -> "DirectorySettings":
        return cls(
            base_url=cfg.keycloak_url,
            realm=cfg.keycloak_realm,
            admin_username=cfg.keycloak_admin,
            admin_password=cfg.keycloak_admin_password,
            admin_realm=cfg.keycloak_admin_realm,
            admin_client_id=cfg.keycloak_admin_client_id,
            timeout=cfg.keycloak_timeout,
            default_password=cfg.default_user_password,
            max_attempts=cfg.outbox_max_attempts,
        )


def admin_client_factory(settings: DirectorySettings) -> ClientFactory:
    """Return a factory producing a freshly authenticated admin client per call."""

    def factory() -> KeycloakClient:
        client = KeycloakClient(settings.base_url, timeout=settings.timeout)
        client.authenticate_admin(
            settings.admin_username,
            settings.admin_password,
            realm=settings.admin_realm,
            client_id=settings.admin_client_id,
        )
        return client

    return factory


class DirectorySyncAdapter:
    """Facade over the Keycloak admin API for one database session."""

    def __init__(
        self,
        session: Session,
        settings: DirectorySettings,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.session = session
        self.settings = settings
        self.store = DomainStore(session)
        self._client_factory = client_factory or admin_client_factory(settings)

    @property
    def realm(self) -> str:
        return self.settings.realm

    def _call(self, action: str, fn: Callable[[KeycloakClient], T]) -> T:
        """Run ``fn`` with a fresh admin client, mapping failures to SyncError."""
        try:
            client = self._client_factory()
            return fn(client)
        except KeycloakError as exc:
            logger.error(f"Directory call failed ({action}): {exc}")
            raise SyncError(f"Directory call failed ({action}): {exc}") from exc
        except requests.RequestException as exc:
            logger.error(f"Directory unreachable ({action}): {exc}")
            raise SyncError(f"Directory unreachable ({action}): {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(f"Malformed directory response ({action}): {exc}")
            raise SyncError(f"Malformed directory response ({action})") from exc

    # ─────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────
    def create_directory_user(self, user: User, initial_password: Optional[str] = None) -> str:
        """Create (or adopt) the directory account and persist its id locally.

        Delegates to :meth:`update_directory_user` when the user is already
        linked. An existing directory account with the same username is
        adopted instead of failing.

        Returns:
            The directory id now stored on ``user.keycloak_id``

        Raises:
            SyncError: Directory call failed or returned no usable id
        """
        if user.keycloak_id:
            self.update_directory_user(user)
            return user.keycloak_id

        representation = Representations.user_to_keycloak(user)
        password = initial_password or self.settings.default_password

        def _create(client: KeycloakClient) -> str:
            users = UserService(client)
            try:
                return users.create_user(self.realm, representation, password)
            except UserAlreadyExistsError:
                existing = users.get_user_by_username(self.realm, user.username)
                if not existing or not existing.get("id"):
                    raise
                logger.info(f"Adopting existing directory account for '{user.username}'")
                users.update_user(self.realm, existing["id"], representation)
                return existing["id"]

        directory_id = self._call(f"create user '{user.username}'", _create)
        self.store.set_user_directory_id(user, directory_id)
        logger.info(f"User '{user.username}' linked to directory id {directory_id}")
        return directory_id

    def update_directory_user(self, user: User) -> None:
        """Push profile fields to the directory; no-op for unlinked users."""
        if not user.keycloak_id:
            return
        representation = Representations.user_to_keycloak(user)
        self._call(
            f"update user '{user.username}'",
            lambda client: UserService(client).update_user(self.realm, user.keycloak_id, representation),
        )
        logger.info(f"Directory user '{user.username}' updated")

    def delete_directory_user(self, keycloak_id: str) -> None:
        self._call(
            f"delete user {keycloak_id}",
            lambda client: UserService(client).delete_user(self.realm, keycloak_id),
        )
        logger.info(f"Directory user {keycloak_id} deleted")

    # ─────────────────────────────────────────────────────────────────────
    # Roles
    # ─────────────────────────────────────────────────────────────────────
    def create_directory_role(self, role: Role) -> str:
        """Create the realm role (or update it when already linked) and store its id."""
        if role.keycloak_id:
            self.update_directory_role(role, role.name)
            return role.keycloak_id
        representation = self._call(
            f"create role '{role.name}'",
            lambda client: RoleService(client).create_role(self.realm, role.name, role.description),
        )
        directory_id = representation.get("id")
        if not directory_id:
            raise SyncError(f"Directory returned no id for role '{role.name}'")
        self.store.set_role_directory_id(role, directory_id)
        return directory_id

    def directory_role_exists(self, role_name: str) -> bool:
        return self._call(
            f"look up role '{role_name}'",
            lambda client: RoleService(client).get_role(self.realm, role_name) is not None,
        )

    def update_directory_role(self, role: Role, previous_name: str) -> None:
        self._call(
            f"update role '{previous_name}'",
            lambda client: RoleService(client).update_role(
                self.realm, previous_name, role.name, role.description
            ),
        )
        logger.info(f"Directory role '{previous_name}' updated to '{role.name}'")

    def delete_directory_role(self, role_name: str) -> None:
        self._call(
            f"delete role '{role_name}'",
            lambda client: RoleService(client).delete_role(self.realm, role_name),
        )
        logger.info(f"Directory role '{role_name}' deleted")

    # ─────────────────────────────────────────────────────────────────────
    # Role memberships
    # ─────────────────────────────────────────────────────────────────────
    def assign_directory_role(self, keycloak_user_id: str, role_name: str) -> None:
        """Add a realm role mapping; fails fast if the realm has no such role."""
        self._call(
            f"assign role '{role_name}'",
            lambda client: RoleService(client).add_realm_role(self.realm, keycloak_user_id, role_name),
        )
        logger.info(f"Directory role '{role_name}' assigned to {keycloak_user_id}")

    def remove_directory_role(self, keycloak_user_id: str, role_name: str) -> None:
        self._call(
            f"remove role '{role_name}'",
            lambda client: RoleService(client).remove_realm_role(self.realm, keycloak_user_id, role_name),
        )
        logger.info(f"Directory role '{role_name}' removed from {keycloak_user_id}")

    def sync_user_roles(self, user: User) -> dict[str, list[str]]:
        """Reconcile the user's directory realm roles with the locally held roles.

        Only roles known to the local store are added or removed; directory
        roles the store does not manage (such as ``default-roles-<realm>``)
        are left alone.

        Returns:
            ``{"added": [...], "removed": [...]}`` role names
        """
        if not user.keycloak_id:
            return {"added": [], "removed": []}

        wanted = {role.name for role in self.store.user_roles(user)}
        managed = self.store.managed_role_names()

        def _reconcile(client: KeycloakClient) -> dict[str, list[str]]:
            mapped = {
                mapping.get("name")
                for mapping in UserService(client).get_realm_role_mappings(self.realm, user.keycloak_id)
            }
            roles = RoleService(client)
            added = sorted(wanted - mapped)
            removed = sorted((mapped & managed) - wanted)
            for name in added:
                roles.add_realm_role(self.realm, user.keycloak_id, name)
            for name in removed:
                roles.remove_realm_role(self.realm, user.keycloak_id, name)
            return {"added": added, "removed": removed}

        result = self._call(f"reconcile roles of '{user.username}'", _reconcile)
        logger.info(f"Directory roles of '{user.username}' reconciled: {result}")
        return result


# ─────────────────────────────────────────────────────────────────────────────
# Outbox
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class DrainReport:
    processed: int = 0
    succeeded: int = 0
    dropped: int = 0
    retried: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "dropped": self.dropped,
            "retried": self.retried,
            "failed": self.failed,
            "errors": self.errors,
        }


class SyncOutbox:
    """Durable queue of directory mutations that failed when first attempted."""

    def __init__(self, adapter: DirectorySyncAdapter):
        self.adapter = adapter
        self.session = adapter.session
        self.store = adapter.store

    def enqueue(self, operation: str, payload: dict, error: Optional[str] = None) -> DirectorySyncTask:
        """Queue a failed directory mutation.

        Pending ``sync_role`` tasks are kept one per role: a later failure
        for the same role refreshes the queued task and keeps its original
        ``previous_name``, the name the directory still knows.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown directory operation '{operation}'")
        if operation == "sync_role":
            queued = self._pending_role_sync(payload.get("role_id"))
            if queued is not None:
                queued.last_error = error
                self.session.commit()
                logger.warning(f"Directory task #{queued.id} sync_role already queued for {payload}")
                return queued
        task = DirectorySyncTask(operation=operation, payload=payload, status="pending", last_error=error)
        self.session.add(task)
        self.session.commit()
        logger.warning(f"Queued directory task #{task.id} {operation} {payload}")
        return task

    def _pending_role_sync(self, role_id: Optional[str]) -> Optional[DirectorySyncTask]:
        query = (
            select(DirectorySyncTask)
            .where(DirectorySyncTask.status == "pending", DirectorySyncTask.operation == "sync_role")
            .order_by(DirectorySyncTask.id)
        )
        for task in self.session.scalars(query):
            if (task.payload or {}).get("role_id") == role_id:
                return task
        return None

    def list_tasks(self, status: Optional[str] = None) -> list[DirectorySyncTask]:
        query = select(DirectorySyncTask).order_by(DirectorySyncTask.id)
        if status:
            query = query.where(DirectorySyncTask.status == status)
        return list(self.session.scalars(query))

    def drain(self, limit: int = 100) -> DrainReport:
        """Replay pending tasks oldest-first against current local state.

        Succeeded or obsolete tasks are deleted. Failed ones are retried on
        the next drain until ``max_attempts`` is reached, then marked failed.
        """
        report = DrainReport()
        query = (
            select(DirectorySyncTask)
            .where(DirectorySyncTask.status == "pending")
            .order_by(DirectorySyncTask.id)
            .limit(limit)
        )
        for task in list(self.session.scalars(query)):
            report.processed += 1
            try:
                replayed = self._replay(task)
            except SyncError as exc:
                task.attempts += 1
                task.last_error = exc.detail
                if task.attempts >= self.adapter.settings.max_attempts:
                    task.status = "failed"
                    report.failed += 1
                else:
                    report.retried += 1
                self.session.commit()
                report.errors.append({"taskId": task.id, "operation": task.operation, "error": exc.detail})
                continue

            if replayed:
                report.succeeded += 1
            else:
                report.dropped += 1
            self.session.delete(task)
            self.session.commit()

        logger.info(f"Outbox drain finished: {report.to_dict()}")
        return report

    def _replay(self, task: DirectorySyncTask) -> bool:
        """Run one task. Returns False when the task no longer applies."""
        payload = task.payload or {}
        handler = getattr(self, f"_replay_{task.operation}", None)
        if handler is None:
            logger.warning(f"Dropping task #{task.id} with unknown operation {task.operation}")
            return False
        return handler(payload)

    def _user(self, user_id: Optional[str]) -> Optional[User]:
        try:
            return self.store.get_user(user_id) if user_id else None
        except NotFoundError:
            return None

    def _role(self, role_id: Optional[str]) -> Optional[Role]:
        try:
            return self.store.get_role(role_id) if role_id else None
        except NotFoundError:
            return None

    def _linked(self, user: User, role: Role) -> bool:
        query = select(UserRole.id).where(UserRole.user_id == user.id, UserRole.role_id == role.id)
        return self.session.scalar(query) is not None

    def _replay_update_user(self, payload: dict) -> bool:
        user = self._user(payload.get("user_id"))
        if user is None or not user.keycloak_id:
            return False
        self.adapter.update_directory_user(user)
        return True

    def _replay_delete_user(self, payload: dict) -> bool:
        keycloak_id = payload.get("keycloak_id")
        if not keycloak_id:
            return False
        self.adapter.delete_directory_user(keycloak_id)
        return True

    def _replay_assign_role(self, payload: dict) -> bool:
        user = self._user(payload.get("user_id"))
        role = self._role(payload.get("role_id"))
        if user is None or role is None or not user.keycloak_id or not self._linked(user, role):
            return False
        self.adapter.assign_directory_role(user.keycloak_id, role.name)
        return True

    def _replay_remove_role(self, payload: dict) -> bool:
        keycloak_user_id = payload.get("keycloak_user_id")
        role_name = payload.get("role_name")
        if not keycloak_user_id or not role_name:
            return False
        user = self._user(payload.get("user_id"))
        role = self._role(payload.get("role_id"))
        if user is not None and role is not None and self._linked(user, role):
            return False
        # The role may have been renamed since the task was queued; the
        # directory holds either the current name or, until its own rename
        # is replayed, the queued one.
        candidates = [role.name] if role is not None else []
        if role_name not in candidates:
            candidates.append(role_name)
        for name in candidates:
            try:
                self.adapter.remove_directory_role(keycloak_user_id, name)
            except SyncError as exc:
                if isinstance(exc.__cause__, RoleNotFoundError):
                    continue
                raise
            return True
        return False

    def _replay_sync_role(self, payload: dict) -> bool:
        role = self._role(payload.get("role_id"))
        if role is None:
            return False
        if not role.keycloak_id:
            self.adapter.create_directory_role(role)
            return True
        previous_name = payload.get("previous_name") or role.name
        if previous_name != role.name and not self.adapter.directory_role_exists(previous_name):
            if self.adapter.directory_role_exists(role.name):
                # Rename already applied by an earlier task; refresh the rest
                previous_name = role.name
        self.adapter.update_directory_role(role, previous_name)
        return True

    def _replay_delete_role(self, payload: dict) -> bool:
        role_name = payload.get("role_name")
        if not role_name or self.store.find_role_by_name(role_name) is not None:
            return False
        self.adapter.delete_directory_role(role_name)
        return True

