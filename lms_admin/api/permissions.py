"""Permission administration endpoints."""
from flask import Blueprint, jsonify

from lms_admin.api.decorators import ADMIN, USER, require_roles
from lms_admin.api.helpers.service import get_admin_service, json_body, query_flag
from lms_admin.core.validators import parse_permission_create, parse_permission_update

bp = Blueprint("permissions", __name__, url_prefix="/api/permissions")


@bp.route("", methods=["GET"])
@require_roles(ADMIN, USER)
def list_permissions(caller):
    """Active permissions ordered by resource, then action."""
    return jsonify(get_admin_service().list_permissions())


@bp.route("/<uuid:permission_id>", methods=["GET"])
@require_roles(ADMIN, USER)
def get_permission(permission_id, caller):
    """Point lookup; deactivated permissions are still returned."""
    return jsonify(get_admin_service().get_permission(permission_id))


@bp.route("", methods=["POST"])
@require_roles(ADMIN)
def create_permission(caller):
    fields = parse_permission_create(json_body())
    body = get_admin_service().create_permission(fields, caller)
    response = jsonify(body)
    response.status_code = 201
    response.headers["Location"] = f"/api/permissions/{body['id']}"
    return response


@bp.route("/<uuid:permission_id>", methods=["PUT"])
@require_roles(ADMIN)
def update_permission(permission_id, caller):
    changes = parse_permission_update(json_body())
    return jsonify(get_admin_service().update_permission(permission_id, changes, caller))


@bp.route("/<uuid:permission_id>", methods=["DELETE"])
@require_roles(ADMIN)
def deactivate_permission(permission_id, caller):
    """Soft delete: the permission is marked inactive, grants are kept."""
    get_admin_service().deactivate_permission(permission_id, caller)
    return "", 204


@bp.route("/<uuid:permission_id>/roles/<uuid:role_id>", methods=["POST"])
@require_roles(ADMIN)
def assign_to_role(permission_id, role_id, caller):
    return jsonify(get_admin_service().grant_role_permission(permission_id, role_id, caller))


@bp.route("/<uuid:permission_id>/roles/<uuid:role_id>", methods=["DELETE"])
@require_roles(ADMIN)
def remove_from_role(permission_id, role_id, caller):
    return jsonify(get_admin_service().revoke_role_permission(permission_id, role_id, caller))


@bp.route("/<uuid:permission_id>/users/<uuid:user_id>", methods=["POST"])
@require_roles(ADMIN)
def assign_to_user(permission_id, user_id, caller):
    return jsonify(get_admin_service().grant_user_permission(permission_id, user_id, caller))


@bp.route("/<uuid:permission_id>/users/<uuid:user_id>", methods=["DELETE"])
@require_roles(ADMIN)
def remove_from_user(permission_id, user_id, caller):
    return jsonify(get_admin_service().revoke_user_permission(permission_id, user_id, caller))


@bp.route("/users/<uuid:user_id>", methods=["GET"])
@require_roles(ADMIN, USER)
def user_permissions(user_id, caller):
    """Effective permissions of a user with their source tags."""
    active_only = query_flag("activeOnly")
    return jsonify(get_admin_service().user_permissions(user_id, active_only=active_only))


@bp.route("/roles/<uuid:role_id>", methods=["GET"])
@require_roles(ADMIN, USER)
def role_permissions(role_id, caller):
    active_only = query_flag("activeOnly")
    return jsonify(get_admin_service().role_permissions(role_id, active_only=active_only))
