"""Keycloak realm role management operations."""
from __future__ import annotations
import logging
from typing import Optional
from urllib.parse import quote

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, RoleNotFoundError

logger = logging.getLogger(__name__)


def _role_path(realm: str, role_name: str) -> str:
    return f"/admin/realms/{realm}/roles/{quote(role_name, safe='')}"


class RoleService:
    """Service for managing Keycloak realm roles and user role mappings."""

    def __init__(self, client: KeycloakClient):
        """Initialize role service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get_role(self, realm: str, role_name: str) -> Optional[dict]:
        """Return the realm role representation or None when it does not exist."""
        try:
            resp = self.client.get(_role_path(realm, role_name))
        except KeycloakAPIError as exc:
            if exc.status_code == 404:
                return None
            raise
        return resp.json()

    def create_role(self, realm: str, role_name: str, description: Optional[str] = None) -> dict:
        """Idempotently create a realm-level role and return its representation.

        Args:
            realm: Realm name
            role_name: Role name
            description: Optional role description

        Raises:
            RoleNotFoundError: Role could not be read back after creation
        """
        payload = {"name": role_name, "description": description or ""}
        try:
            self.client.post(f"/admin/realms/{realm}/roles", json=payload)
            logger.info(f"Directory role '{role_name}' created")
        except KeycloakAPIError as exc:
            if exc.status_code != 409:
                raise
            logger.info(f"Directory role '{role_name}' already exists")

        # The create call does not return the id; read it back by name
        role = self.get_role(realm, role_name)
        if role is None:
            raise RoleNotFoundError(role_name, realm)
        return role

    def update_role(
        self,
        realm: str,
        current_name: str,
        new_name: str,
        description: Optional[str] = None,
    ) -> None:
        """Rename and/or re-describe a realm role addressed by its current name."""
        payload = {"name": new_name, "description": description or ""}
        self.client.put(_role_path(realm, current_name), json=payload)

    def delete_role(self, realm: str, role_name: str) -> bool:
        """Delete a realm role.

        Returns:
            False when the role was already gone (HTTP 404)
        """
        try:
            self.client.delete(_role_path(realm, role_name))
        except KeycloakAPIError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    def _require_role(self, realm: str, role_name: str) -> dict:
        role = self.get_role(realm, role_name)
        if role is None:
            raise RoleNotFoundError(role_name, realm)
        return role

    def add_realm_role(self, realm: str, user_id: str, role_name: str) -> None:
        """Grant a realm role to a directory user without touching other mappings.

        Raises:
            RoleNotFoundError: The realm has no role with that name
        """
        role = self._require_role(realm, role_name)
        self.client.post(
            f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm",
            json=[{"id": role["id"], "name": role["name"]}],
        )

    def remove_realm_role(self, realm: str, user_id: str, role_name: str) -> None:
        """Revoke a realm role from a directory user.

        Raises:
            RoleNotFoundError: The realm has no role with that name
        """
        role = self._require_role(realm, role_name)
        self.client.delete(
            f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm",
            json=[{"id": role["id"], "name": role["name"]}],
        )
