"""Keycloak user management operations."""
from __future__ import annotations
import logging
from typing import Optional, List

from .client import KeycloakClient
from .exceptions import KeycloakAPIError, MalformedResponseError, UserAlreadyExistsError

logger = logging.getLogger(__name__)


class UserService:
    """Service for managing Keycloak users."""

    def __init__(self, client: KeycloakClient):
        """Initialize user service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get_user_by_username(self, realm: str, username: str) -> Optional[dict]:
        """Return the user representation that exactly matches the username.

        Args:
            realm: Realm name
            username: Username to search for

        Returns:
            User representation or None if not found
        """
        resp = self.client.get(
            f"/admin/realms/{realm}/users",
            params={"username": username, "exact": "true"},
        )
        for user in resp.json() or []:
            if (user.get("username") or "").lower() == username.lower():
                return user
        return None

    def create_user(self, realm: str, representation: dict, password: str) -> str:
        """Create a directory user with a non-temporary password.

        Args:
            realm: Realm name
            representation: Keycloak user representation (username, email, names, enabled)
            password: Initial credential

        Returns:
            Keycloak user id of the new account

        Raises:
            UserAlreadyExistsError: Username or email already taken (HTTP 409)
            MalformedResponseError: Created but the id could not be resolved
        """
        payload = dict(representation)
        payload["credentials"] = [{"type": "password", "value": password, "temporary": False}]
        username = payload.get("username", "")
        try:
            resp = self.client.post(f"/admin/realms/{realm}/users", json=payload)
        except KeycloakAPIError as exc:
            if exc.status_code == 409:
                raise UserAlreadyExistsError(username) from exc
            raise

        # Keycloak returns 201 with Location: .../users/{id}
        location = resp.headers.get("Location") or ""
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if "/users/" in location else ""
        if not user_id:
            existing = self.get_user_by_username(realm, username)
            user_id = (existing or {}).get("id") or ""
        if not user_id:
            raise MalformedResponseError(f"Created user '{username}' but no id was returned")
        logger.info(f"Directory user '{username}' created (id={user_id})")
        return user_id

    def update_user(self, realm: str, user_id: str, representation: dict) -> None:
        """Push profile fields onto an existing directory user."""
        self.client.put(f"/admin/realms/{realm}/users/{user_id}", json=representation)

    def delete_user(self, realm: str, user_id: str) -> bool:
        """Delete a directory user.

        Returns:
            False when the account was already gone (HTTP 404)
        """
        try:
            self.client.delete(f"/admin/realms/{realm}/users/{user_id}")
        except KeycloakAPIError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    def get_realm_role_mappings(self, realm: str, user_id: str) -> List[dict]:
        """Return the realm roles directly mapped to a user."""
        resp = self.client.get(f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm")
        return resp.json() or []
