"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from lms_admin.core.db import ping

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return jsonify({"status": "healthy", "service": "lms-admin"}), 200


@bp.route("/ready")
def readiness_check():
    """Readiness check endpoint: the database must answer."""
    try:
        ping(current_app.extensions["db_engine"])
    except SQLAlchemyError as exc:
        current_app.logger.warning(f"Readiness check failed: {exc}")
        return jsonify({"status": "unavailable", "database": "down"}), 503
    return jsonify({"status": "ready", "database": "up"}), 200
