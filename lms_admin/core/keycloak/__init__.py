"""Keycloak Admin API client library.

Architecture:
- client.py: HTTP client with admin authentication, plus end-user token issuance
- users.py: Directory user lifecycle (create, update, delete, role mappings)
- roles.py: Realm roles and user role-mapping add/remove
- exceptions.py: Typed exceptions for error handling

Usage:
    from lms_admin.core.keycloak import KeycloakClient, UserService

    client = KeycloakClient("http://keycloak:8080")
    client.authenticate_admin("admin", "password")

    user_service = UserService(client)
    user = user_service.get_user_by_username("lms-realm", "alice")
"""
from .client import (
    KeycloakClient,
    issue_user_token,
    REQUEST_TIMEOUT,
)
from .exceptions import (
    KeycloakError,
    KeycloakAPIError,
    MalformedResponseError,
    UserAlreadyExistsError,
    RoleNotFoundError,
)
from .users import UserService
from .roles import RoleService

__all__ = [
    # Client
    "KeycloakClient",
    "issue_user_token",
    "REQUEST_TIMEOUT",

    # Exceptions
    "KeycloakError",
    "KeycloakAPIError",
    "MalformedResponseError",
    "UserAlreadyExistsError",
    "RoleNotFoundError",

    # Services
    "UserService",
    "RoleService",
]
