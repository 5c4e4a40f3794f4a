"""Directory outbox endpoints."""
from flask import Blueprint, jsonify, request

from lms_admin.api.decorators import ADMIN, require_roles
from lms_admin.api.helpers.service import get_admin_service
from lms_admin.core.errors import ValidationError

bp = Blueprint("directory", __name__, url_prefix="/api/directory")

_STATUSES = {"pending", "failed"}


@bp.route("/outbox", methods=["GET"])
@require_roles(ADMIN)
def list_outbox(caller):
    """Queued directory mutations, optionally filtered by ``status``."""
    status = request.args.get("status")
    if status is not None and status not in _STATUSES:
        raise ValidationError(f"status must be one of {sorted(_STATUSES)}")
    return jsonify(get_admin_service().outbox_tasks(status))


@bp.route("/outbox/drain", methods=["POST"])
@require_roles(ADMIN)
def drain_outbox(caller):
    """Replay pending tasks now (``?limit=`` caps the batch, default 100)."""
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        raise ValidationError("limit must be an integer")
    if limit <= 0:
        raise ValidationError("limit must be positive")
    return jsonify(get_admin_service().drain_outbox(caller, limit=limit))
