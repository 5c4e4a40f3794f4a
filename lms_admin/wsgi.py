"""WSGI entry point.

    gunicorn --bind 0.0.0.0:8000 lms_admin.wsgi:app
"""
from lms_admin.flask_app import create_app

# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
