"""Role administration endpoints."""
from flask import Blueprint, jsonify

from lms_admin.api.decorators import ADMIN, USER, require_roles
from lms_admin.api.helpers.service import get_admin_service, json_body, query_flag
from lms_admin.core.validators import parse_role_create, parse_role_update

bp = Blueprint("roles", __name__, url_prefix="/api/roles")


@bp.route("", methods=["GET"])
@require_roles(ADMIN, USER)
def list_roles(caller):
    """Active roles ordered by name."""
    return jsonify(get_admin_service().list_roles())


@bp.route("/<uuid:role_id>", methods=["GET"])
@require_roles(ADMIN, USER)
def get_role(role_id, caller):
    return jsonify(get_admin_service().get_role(role_id))


@bp.route("", methods=["POST"])
@require_roles(ADMIN)
def create_role(caller):
    fields = parse_role_create(json_body())
    body = get_admin_service().create_role(fields, caller)
    response = jsonify(body)
    response.status_code = 201
    response.headers["Location"] = f"/api/roles/{body['id']}"
    return response


@bp.route("/<uuid:role_id>", methods=["PUT"])
@require_roles(ADMIN)
def update_role(role_id, caller):
    changes = parse_role_update(json_body())
    return jsonify(get_admin_service().update_role(role_id, changes, caller))


@bp.route("/<uuid:role_id>", methods=["DELETE"])
@require_roles(ADMIN)
def delete_role(role_id, caller):
    get_admin_service().delete_role(role_id, caller)
    return "", 204


@bp.route("/<uuid:role_id>/permissions", methods=["GET"])
@require_roles(ADMIN, USER)
def role_permissions(role_id, caller):
    active_only = query_flag("activeOnly")
    return jsonify(get_admin_service().role_permissions(role_id, active_only=active_only))
