"""Pytest shared fixtures: in-memory database, fake directory, Flask client."""
import json
import pathlib
import sys
import time
import uuid
from typing import Optional
from urllib.parse import unquote

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.backends import default_backend
from authlib.jose import jwt as authlib_jwt

from lms_admin.api import decorators
from lms_admin.config import AppConfig
from lms_admin.core import audit
from lms_admin.core.db import SessionLocal, create_db_engine, init_db
from lms_admin.core.directory_sync import DirectorySettings, DirectorySyncAdapter
from lms_admin.core.keycloak import KeycloakAPIError
from lms_admin.core.provisioning_service import AdminService
from lms_admin.flask_app import create_app

REALM = "lms-realm"
ISSUER = f"http://keycloak.test/realms/{REALM}"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching a live Keycloak.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _unexpected(method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests, "request", _unexpected)


@pytest.fixture(autouse=True)
def _audit_to_tmp(monkeypatch, tmp_path):
    """Send audit events to a per-test directory with a known signing key."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "admin-events.jsonl")
    monkeypatch.setattr(audit, "_signing_key_override", "test-signing-key")
    return audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# Fake Keycloak Admin API
# ─────────────────────────────────────────────────────────────────────────────
class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, headers: Optional[dict] = None, url: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ""
        self.url = url

    def json(self):
        return self._payload


class FakeKeycloak:
    """In-memory stand-in for an authenticated KeycloakClient.

    Serves the admin endpoints used by UserService and RoleService. Set
    ``offline`` to make every login fail with a connection error.
    """

    def __init__(self, realm: str = REALM):
        self.realm = realm
        self.default_role = f"default-roles-{realm}"
        self.users: dict[str, dict] = {}
        self.roles: dict[str, dict] = {}
        self.mappings: dict[str, set[str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.logins = 0
        self.offline = False
        self.add_role(self.default_role)

    # Test setup helpers
    def add_role(self, name: str, description: str = "") -> dict:
        role = {"id": str(uuid.uuid4()), "name": name, "description": description}
        self.roles[name] = role
        return role

    def add_user(self, username: str, **fields) -> dict:
        user = {"id": str(uuid.uuid4()), "username": username, **fields}
        self.users[user["id"]] = user
        self.mappings[user["id"]] = {self.default_role}
        return user

    def find_user(self, username: str) -> Optional[dict]:
        for user in self.users.values():
            if user["username"] == username:
                return user
        return None

    def factory(self):
        if self.offline:
            raise requests.ConnectionError("directory offline")
        self.logins += 1
        return self

    # Client surface
    def get(self, path, params=None, **kwargs):
        return self._dispatch("GET", path, params=params)

    def post(self, path, json=None, **kwargs):
        return self._dispatch("POST", path, body=json)

    def put(self, path, json=None, **kwargs):
        return self._dispatch("PUT", path, body=json)

    def delete(self, path, json=None, **kwargs):
        return self._dispatch("DELETE", path, body=json)

    def _dispatch(self, method, path, params=None, body=None):
        self.calls.append((method, path))
        prefix = f"/admin/realms/{self.realm}/"
        assert path.startswith(prefix), path
        parts = [unquote(part) for part in path[len(prefix):].split("/")]

        if parts[0] == "users":
            return self._users(method, path, parts[1:], params, body)
        if parts[0] == "roles":
            return self._roles(method, path, parts[1:], body)
        raise AssertionError(f"Unhandled fake route {method} {path}")

    def _missing(self, path):
        raise KeycloakAPIError(404, "Not Found", path)

    def _users(self, method, path, rest, params, body):
        if not rest:
            if method == "GET":
                wanted = (params or {}).get("username", "")
                return FakeResponse(payload=[u for u in self.users.values() if u["username"] == wanted])
            if self.find_user(body["username"]) is not None:
                raise KeycloakAPIError(409, "User exists with same username", path)
            rep = {k: v for k, v in body.items() if k != "credentials"}
            user = self.add_user(rep.pop("username"), **rep)
            location = f"http://keycloak.test{path}/{user['id']}"
            return FakeResponse(201, headers={"Location": location}, url=path)

        user_id = rest[0]
        if user_id not in self.users:
            self._missing(path)
        if len(rest) == 1:
            if method == "PUT":
                self.users[user_id].update(body)
                return FakeResponse(204)
            if method == "DELETE":
                del self.users[user_id]
                self.mappings.pop(user_id, None)
                return FakeResponse(204)
            return FakeResponse(payload=self.users[user_id])

        # role-mappings/realm
        held = self.mappings.setdefault(user_id, set())
        if method == "GET":
            return FakeResponse(payload=[self.roles[name] for name in sorted(held) if name in self.roles])
        names = {entry["name"] for entry in body}
        if method == "POST":
            held |= names
        else:
            held -= names
        return FakeResponse(204)

    def _roles(self, method, path, rest, body):
        if not rest:
            if body["name"] in self.roles:
                raise KeycloakAPIError(409, "Role exists", path)
            self.add_role(body["name"], body.get("description", ""))
            return FakeResponse(201)

        name = rest[0]
        if name not in self.roles:
            self._missing(path)
        if method == "GET":
            return FakeResponse(payload=self.roles[name])
        if method == "PUT":
            role = self.roles.pop(name)
            role.update(name=body["name"], description=body.get("description", ""))
            self.roles[role["name"]] = role
            for held in self.mappings.values():
                if name in held:
                    held.discard(name)
                    held.add(role["name"])
            return FakeResponse(204)
        del self.roles[name]
        for held in self.mappings.values():
            held.discard(name)
        return FakeResponse(204)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration and Storage
# ─────────────────────────────────────────────────────────────────────────────
def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=True,
        database_url="sqlite://",
        keycloak_url="http://keycloak.test",
        keycloak_realm=REALM,
        keycloak_issuer=ISSUER,
        keycloak_admin="admin",
        keycloak_admin_password="admin",
        default_user_password="Default-Pass-123",
        outbox_max_attempts=3,
        audit_log_signing_key="test-signing-key",
    )
    base.update(overrides)
    return AppConfig(**base)


@pytest.fixture()
def app_config(tmp_path):
    return make_config(audit_log_dir=str(tmp_path / "audit"))


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = SessionLocal(bind=engine)
    yield session
    session.close()


@pytest.fixture()
def directory():
    return FakeKeycloak()


@pytest.fixture()
def adapter(db_session, app_config, directory):
    return DirectorySyncAdapter(db_session, DirectorySettings.from_config(app_config), directory.factory)


@pytest.fixture()
def service(db_session, adapter):
    return AdminService(db_session, adapter)


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
TOKEN_CLAIMS = {
    "admin-token": {
        "sub": "admin-sub",
        "preferred_username": "admin",
        "email": "admin@example.com",
        "realm_access": {"roles": ["admin", f"default-roles-{REALM}"]},
    },
    "user-token": {
        "sub": "alice-sub",
        "preferred_username": "alice",
        "email": "alice@example.com",
        "given_name": "Alice",
        "family_name": "Martin",
        "realm_access": {"roles": ["user", f"default-roles-{REALM}"]},
    },
    "guest-token": {
        "sub": "guest-sub",
        "preferred_username": "guest",
        "realm_access": {"roles": ["viewer"]},
    },
}


@pytest.fixture()
def fake_tokens(monkeypatch):
    """Accept the opaque tokens of TOKEN_CLAIMS instead of verifying signatures."""

    def _validate(token):
        if token not in TOKEN_CLAIMS:
            raise decorators.TokenValidationError("Token decode error (malformed JWT)")
        return TOKEN_CLAIMS[token]

    monkeypatch.setattr(decorators, "validate_jwt_token", _validate)


@pytest.fixture()
def app(app_config, engine, directory):
    flask_app = create_app(app_config, engine=engine, directory_client_factory=directory.factory)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app, fake_tokens):
    with app.test_client() as client:
        yield client


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


ADMIN = bearer("admin-token")
USER = bearer("user-token")
GUEST = bearer("guest-token")


# ─────────────────────────────────────────────────────────────────────────────
# RSA Key Pair for JWT Testing
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate RSA key pair for JWT signing in tests."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return {"private_key": private_key, "public_key": private_key.public_key(), "public_pem": public_pem}


def create_valid_jwt(
    rsa_key_pair: dict,
    issuer: str = ISSUER,
    sub: str = "user-123",
    username: str = "alice",
    roles: Optional[list[str]] = None,
    exp_offset: int = 3600,
    kid: str = "default-key-id",
) -> str:
    """Create a valid RS256-signed JWT for testing."""
    if roles is None:
        roles = ["user"]

    now = int(time.time())
    header = {"alg": "RS256", "typ": "JWT", "kid": kid}
    payload = {
        "iss": issuer,
        "sub": sub,
        "exp": now + exp_offset,
        "iat": now,
        "preferred_username": username,
        "realm_access": {"roles": roles},
    }
    token = authlib_jwt.encode(header, payload, rsa_key_pair["private_key"])
    return token.decode("utf-8") if isinstance(token, bytes) else token


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
