"""User administration endpoints."""
from flask import Blueprint, jsonify

from lms_admin.api.decorators import ADMIN, USER, require_roles
from lms_admin.api.helpers.service import get_admin_service, json_body, query_flag
from lms_admin.core.errors import ValidationError
from lms_admin.core.validators import parse_user_create, parse_user_update

bp = Blueprint("users", __name__, url_prefix="/api/users")


@bp.route("", methods=["GET"])
@require_roles(ADMIN, USER)
def list_users(caller):
    return jsonify(get_admin_service().list_users())


@bp.route("/me", methods=["GET"])
@require_roles(ADMIN, USER)
def current_user(caller):
    """Local profile, roles and effective permissions of the caller."""
    return jsonify(get_admin_service().current_profile(caller))


@bp.route("/<uuid:user_id>", methods=["GET"])
@require_roles(ADMIN, USER)
def get_user(user_id, caller):
    return jsonify(get_admin_service().get_user(user_id))


@bp.route("", methods=["POST"])
@require_roles(ADMIN)
def create_user(caller):
    """Create a user locally and provision the directory account.

    Returns 201 on success, 502 (with ``userId``) when the local row was
    created but directory provisioning failed.
    """
    fields = parse_user_create(json_body())
    body = get_admin_service().create_user(fields, caller)
    response = jsonify(body)
    response.status_code = 201
    response.headers["Location"] = f"/api/users/{body['id']}"
    return response


@bp.route("/<uuid:user_id>", methods=["PUT"])
@require_roles(ADMIN)
def update_user(user_id, caller):
    changes = parse_user_update(json_body())
    return jsonify(get_admin_service().update_user(user_id, changes, caller))


@bp.route("/<uuid:user_id>", methods=["DELETE"])
@require_roles(ADMIN)
def delete_user(user_id, caller):
    get_admin_service().delete_user(user_id, caller)
    return "", 204


@bp.route("/<uuid:user_id>/roles/<uuid:role_id>", methods=["POST"])
@require_roles(ADMIN)
def assign_role(user_id, role_id, caller):
    return jsonify(get_admin_service().assign_role(user_id, role_id, caller))


@bp.route("/<uuid:user_id>/roles/<uuid:role_id>", methods=["DELETE"])
@require_roles(ADMIN)
def remove_role(user_id, role_id, caller):
    return jsonify(get_admin_service().remove_role(user_id, role_id, caller))


@bp.route("/<uuid:user_id>/permissions", methods=["GET"])
@require_roles(ADMIN, USER)
def user_permissions(user_id, caller):
    """Effective permissions (direct and role-inherited, de-duplicated)."""
    active_only = query_flag("activeOnly")
    return jsonify(get_admin_service().user_permissions(user_id, active_only=active_only))


@bp.route("/<uuid:user_id>/directory-sync", methods=["POST"])
@require_roles(ADMIN)
def provision_user(user_id, caller):
    """Retry directory provisioning and reconcile role mappings."""
    payload = json_body() or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    password = payload.get("password")
    if password is not None and (not isinstance(password, str) or not password):
        raise ValidationError("password must be a non-empty string")
    return jsonify(get_admin_service().provision_user(user_id, caller, password=password))
