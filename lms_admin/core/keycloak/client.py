"""Low-level HTTP client for Keycloak Admin API.

Handles authentication and HTTP operations. A client holds the token it was
authenticated with; callers that want a fresh token per unit of work simply
build a new client.
"""
from __future__ import annotations
import logging
from typing import Optional, Dict, Any

import requests

from .exceptions import KeycloakAPIError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5


class KeycloakClient:
    """HTTP client for Keycloak Admin API.

    Usage:
        client = KeycloakClient("http://keycloak:8080")
        client.authenticate_admin("admin", "password")
        response = client.get("/admin/realms/lms-realm/users")
    """

    def __init__(self, base_url: str, *, timeout: float = REQUEST_TIMEOUT):
        """Initialize Keycloak client.

        Args:
            base_url: Keycloak base URL
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def authenticate_admin(
        self,
        username: str,
        password: str,
        realm: str = "master",
        client_id: str = "admin-cli",
    ) -> str:
        """Authenticate as an administrative account (password grant).

        Args:
            username: Admin username
            password: Admin password
            realm: Authentication realm (default: master)
            client_id: Public client used for the grant (default: admin-cli)

        Returns:
            Access token
        """
        url = f"{self.base_url}/realms/{realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "password",
            "client_id": client_id,
            "username": username,
            "password": password,
        }
        resp = requests.request("POST", url, data=data, timeout=self.timeout)
        if resp.status_code != 200:
            raise KeycloakAPIError(resp.status_code, resp.text, url)
        try:
            self._token = resp.json()["access_token"]
        except (ValueError, KeyError) as exc:
            raise KeycloakAPIError(resp.status_code, "Token response without access_token", url) from exc
        return self._token

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        return self._request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute POST request with a JSON payload.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        return self._request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute PUT request with a JSON payload.

        Raises:
            KeycloakAPIError: On HTTP error
        """
        return self._request("PUT", path, json=json, **kwargs)

    def delete(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        """Execute DELETE request (role-mapping removal carries a JSON body).

        Raises:
            KeycloakAPIError: On HTTP error
        """
        return self._request("DELETE", path, json=json, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self._token:
            raise KeycloakAPIError(401, "Not authenticated - call authenticate_admin first", path)
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self._token}"

        resp = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        self._handle_error(resp)
        return resp

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            KeycloakAPIError: If response status indicates error
        """
        if resp.status_code >= 400:
            raise KeycloakAPIError(resp.status_code, resp.text, resp.url)


# ─────────────────────────────────────────────────────────────────────────────
# Interactive login
# ─────────────────────────────────────────────────────────────────────────────
def issue_user_token(
    base_url: str,
    realm: str,
    client_id: str,
    username: str,
    password: str,
    *,
    client_secret: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> dict:
    """Exchange end-user credentials for tokens at the realm token endpoint.

    Args:
        base_url: Keycloak base URL
        realm: Realm the user belongs to
        client_id: Login client
        username: End-user username
        password: End-user password
        client_secret: Secret for confidential login clients

    Returns:
        Token response (access_token, refresh_token, expires_in, ...)

    Raises:
        KeycloakAPIError: When Keycloak rejects the credentials
    """
    url = f"{base_url.rstrip('/')}/realms/{realm}/protocol/openid-connect/token"
    data = {
        "grant_type": "password",
        "client_id": client_id,
        "username": username,
        "password": password,
    }
    if client_secret:
        data["client_secret"] = client_secret
    resp = requests.request("POST", url, data=data, timeout=timeout)
    if resp.status_code != 200:
        logger.warning(f"Token request for '{username}' rejected with HTTP {resp.status_code}")
        raise KeycloakAPIError(resp.status_code, resp.text, url)
    return resp.json()
