"""Authentication endpoints: interactive login and caller introspection."""
from flask import Blueprint, current_app, jsonify
import requests

from lms_admin.api.decorators import require_roles
from lms_admin.api.helpers.service import json_body
from lms_admin.core.errors import SyncError, UnauthorizedError, ValidationError
from lms_admin.core.keycloak import KeycloakAPIError, issue_user_token
from lms_admin.core.rbac import filter_display_roles

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@bp.route("/token", methods=["POST"])
def issue_token():
    """Exchange ``{username, password}`` for tokens at the Keycloak token endpoint."""
    payload = json_body()
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    username = payload.get("username")
    password = payload.get("password")
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("username is required")
    if not isinstance(password, str) or not password:
        raise ValidationError("password is required")

    cfg = current_app.config["APP_CONFIG"]
    try:
        tokens = issue_user_token(
            cfg.keycloak_url,
            cfg.keycloak_realm,
            cfg.oidc_client_id,
            username.strip(),
            password,
            client_secret=cfg.oidc_client_secret or None,
            timeout=cfg.keycloak_timeout,
        )
    except KeycloakAPIError as exc:
        if exc.status_code in (400, 401):
            raise UnauthorizedError("Invalid username or password")
        raise SyncError(f"Token endpoint returned HTTP {exc.status_code}")
    except requests.RequestException as exc:
        current_app.logger.error(f"Token endpoint unreachable: {exc}")
        raise SyncError("Token endpoint unreachable")

    return jsonify({
        "accessToken": tokens.get("access_token"),
        "refreshToken": tokens.get("refresh_token"),
        "expiresIn": tokens.get("expires_in"),
        "tokenType": tokens.get("token_type", "Bearer"),
    })


@bp.route("/validate", methods=["GET"])
@require_roles()
def validate(caller):
    return jsonify({"valid": True, **caller.to_dict()})


@bp.route("/user-info", methods=["GET"])
@require_roles()
def user_info(caller):
    cfg = current_app.config["APP_CONFIG"]
    body = caller.to_dict()
    body["roles"] = filter_display_roles(list(caller.roles), cfg.keycloak_realm)
    return jsonify(body)


@bp.route("/check-role/<role>", methods=["GET"])
@require_roles()
def check_role(role, caller):
    return jsonify({"role": role, "hasRole": caller.has_role(role)})
