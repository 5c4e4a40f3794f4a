"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with its database, directory adapter settings,
blueprints and error handlers.
"""
from __future__ import annotations
import logging
from typing import Optional

from flask import Flask
from sqlalchemy.engine import Engine
from werkzeug.middleware.proxy_fix import ProxyFix

from lms_admin.config import AppConfig, load_settings
from lms_admin.core.audit import configure_audit
from lms_admin.core.db import create_db_engine, init_db
from lms_admin.core.directory_sync import ClientFactory, DirectorySettings, admin_client_factory

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    config: Optional[AppConfig] = None,
    *,
    engine: Optional[Engine] = None,
    directory_client_factory: Optional[ClientFactory] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings (loaded from the environment when omitted)
        engine: SQLAlchemy engine (built from ``config.database_url`` when omitted)
        directory_client_factory: Callable returning an authenticated
            KeycloakClient (a fresh admin login per call when omitted)
    """
    cfg = config or load_settings()
    logging.basicConfig(level=cfg.log_level)
    logging.getLogger().setLevel(cfg.log_level)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.json.sort_keys = False

    # Trust X-Forwarded-* headers from the reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    # Storage
    engine = engine or create_db_engine(cfg.database_url)
    init_db(engine)
    app.extensions["db_engine"] = engine

    # Directory
    directory_settings = DirectorySettings.from_config(cfg)
    app.extensions["directory_settings"] = directory_settings
    app.extensions["directory_client_factory"] = (
        directory_client_factory or admin_client_factory(directory_settings)
    )

    configure_audit(cfg.audit_log_dir, cfg.audit_log_signing_key)

    # Register blueprints
    from lms_admin.api import auth, directory, errors, health, permissions, roles, users
    from lms_admin.api.helpers.service import close_db_session

    app.register_blueprint(health.bp)
    app.register_blueprint(auth.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(roles.bp)
    app.register_blueprint(permissions.bp)
    app.register_blueprint(directory.bp)

    errors.register_error_handlers(app)
    app.teardown_appcontext(close_db_session)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info(f"Mode={mode_label}; realm={cfg.keycloak_realm}; database={engine.url.render_as_string()}")
    if cfg.demo_mode:
        logger.warning("Demo mode active - do not deploy with demo credentials")

    return app
