"""Request-scoped helpers shared by the API blueprints."""
from __future__ import annotations
from typing import Any

from flask import current_app, g, request

from lms_admin.core.db import SessionLocal
from lms_admin.core.directory_sync import DirectorySyncAdapter
from lms_admin.core.errors import ValidationError
from lms_admin.core.provisioning_service import AdminService


def get_db_session():
    """Return the database session of the current request (opened lazily)."""
    if "db_session" not in g:
        g.db_session = SessionLocal(bind=current_app.extensions["db_engine"])
    return g.db_session


def close_db_session(exc=None) -> None:
    session = g.pop("db_session", None)
    if session is not None:
        if exc is not None:
            session.rollback()
        session.close()


def get_admin_service() -> AdminService:
    """Build the service for this request with a directory adapter bound to its session."""
    session = get_db_session()
    adapter = DirectorySyncAdapter(
        session,
        current_app.extensions["directory_settings"],
        current_app.extensions["directory_client_factory"],
    )
    return AdminService(session, adapter)


def json_body() -> Any:
    """Parsed JSON body, or None when the request has no body.

    Raises:
        ValidationError: Body present but not valid JSON
    """
    if not request.get_data(cache=True):
        return None
    payload = request.get_json(silent=True, force=True)
    if payload is None:
        raise ValidationError("Malformed JSON body")
    return payload


def query_flag(name: str, default: bool = False) -> bool:
    """Interpret a boolean query parameter (true/1/yes)."""
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}
