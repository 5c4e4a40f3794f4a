from types import SimpleNamespace

import pytest
from flask import Flask
from jwt.exceptions import ExpiredSignatureError

from lms_admin.api import decorators
from tests.conftest import ISSUER, create_valid_jwt, make_config


@pytest.fixture
def app_ctx():
    app = Flask(__name__)
    app.config["APP_CONFIG"] = make_config()
    with app.app_context():
        yield app


class DummySigningKey:
    key = "secret"


class DummyJWKS:
    def get_signing_key_from_jwt(self, token):
        return DummySigningKey()


@pytest.fixture
def signed_app(app, monkeypatch, rsa_key_pair):
    """Application whose JWKS client serves the test RSA public key."""

    class _JWKS:
        def get_signing_key_from_jwt(self, token):
            return SimpleNamespace(key=rsa_key_pair["public_key"])

    monkeypatch.setattr(decorators, "get_jwks_client", lambda: _JWKS())
    return app


def test_validate_jwt_token_expired_raises_token_validation_error(monkeypatch, app_ctx):
    monkeypatch.setattr(decorators, "get_jwks_client", lambda: DummyJWKS())

    def raise_expired(*args, **kwargs):
        raise ExpiredSignatureError("expired")

    monkeypatch.setattr(decorators.jwt, "decode", raise_expired)

    with pytest.raises(decorators.TokenValidationError) as exc:
        decorators.validate_jwt_token("header.payload.signature")

    assert "Token expired" in str(exc.value)


def test_validate_jwt_token_passes_issuer(monkeypatch, app_ctx):
    monkeypatch.setattr(decorators, "get_jwks_client", lambda: DummyJWKS())
    seen = {}

    def decode_success(token, key, **kwargs):
        seen.update(kwargs)
        return {"sub": "user-123"}

    monkeypatch.setattr(decorators.jwt, "decode", decode_success)

    claims = decorators.validate_jwt_token("header.payload.signature")

    assert claims["sub"] == "user-123"
    assert seen["issuer"] == ISSUER
    assert seen["algorithms"] == ["RS256"]
    assert "exp" in seen["options"]["require"]


def test_get_jwks_client_cached_per_app(app_ctx):
    first = decorators.get_jwks_client()
    assert decorators.get_jwks_client() is first
    assert app_ctx.extensions["jwks_client"] is first


def test_signed_admin_token_accepted(signed_app, rsa_key_pair):
    token = create_valid_jwt(rsa_key_pair, roles=["admin"], sub="admin-sub", username="admin")

    resp = signed_app.test_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    assert resp.get_json() == []


def test_signed_token_wrong_issuer_rejected(signed_app, rsa_key_pair):
    token = create_valid_jwt(rsa_key_pair, issuer="http://evil.test/realms/lms-realm", roles=["admin"])

    resp = signed_app.test_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert "issuer" in resp.get_json()["message"]


def test_signed_token_expired_rejected(signed_app, rsa_key_pair):
    token = create_valid_jwt(rsa_key_pair, roles=["admin"], exp_offset=-3600)

    resp = signed_app.test_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


def test_signed_token_without_role_forbidden(signed_app, rsa_key_pair):
    token = create_valid_jwt(rsa_key_pair, roles=["viewer"])

    resp = signed_app.test_client().get("/api/users", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 403


def test_configured_role_names_are_honoured(engine, directory, monkeypatch, rsa_key_pair, tmp_path):
    from lms_admin.flask_app import create_app

    cfg = make_config(admin_role="lms-admin", audit_log_dir=str(tmp_path / "audit"))
    flask_app = create_app(cfg, engine=engine, directory_client_factory=directory.factory)
    monkeypatch.setattr(
        decorators,
        "get_jwks_client",
        lambda: SimpleNamespace(
            get_signing_key_from_jwt=lambda token: SimpleNamespace(key=rsa_key_pair["public_key"])
        ),
    )
    client = flask_app.test_client()

    plain = create_valid_jwt(rsa_key_pair, roles=["admin"])
    custom = create_valid_jwt(rsa_key_pair, roles=["lms-admin"])
    body = {"name": "teacher"}

    assert client.post("/api/roles", json=body, headers={"Authorization": f"Bearer {plain}"}).status_code == 403
    assert client.post("/api/roles", json=body, headers={"Authorization": f"Bearer {custom}"}).status_code == 201
