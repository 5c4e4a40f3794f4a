"""Error handlers for the application (JSON only)."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from lms_admin.core.errors import AdminError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(AdminError)
    def handle_admin_error(error: AdminError):
        """Render domain errors with their own status."""
        if error.status >= 500:
            app.logger.error(f"{error.kind}: {error.detail}")
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Render Werkzeug errors (404 routing, 405, malformed JSON) as JSON."""
        return jsonify({"error": error.name, "message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        if isinstance(error, HTTPException):
            return handle_http_exception(error)

        # Always logged, the client only sees a generic message
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500
