"""Keycloak-specific exceptions for error handling."""


class KeycloakError(Exception):
    """Base exception for all Keycloak operations."""
    pass


class KeycloakAPIError(KeycloakError):
    """HTTP error from Keycloak Admin API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class UserAlreadyExistsError(KeycloakError):
    """User creation failed - username or email already exists."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' already exists in the directory")


class RoleNotFoundError(KeycloakError):
    """Role does not exist in realm."""

    def __init__(self, role_name: str, realm: str):
        self.role_name = role_name
        self.realm = realm
        super().__init__(f"Role '{role_name}' not found in realm '{realm}'")


class MalformedResponseError(KeycloakError):
    """Keycloak answered 2xx but the response lacks the expected data."""
    pass
