"""Domain error taxonomy shared by the store, the sync adapter and the API.

Every error carries the HTTP status it maps to, so Flask handlers can render
it without knowing where it was raised.
"""
from __future__ import annotations
from typing import Any, Optional


class AdminError(Exception):
    """Base class for administrative errors with HTTP status and detail."""

    status = 500
    kind = "InternalError"

    def __init__(self, detail: str, *, extra: Optional[dict[str, Any]] = None):
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to the JSON error body returned by the API."""
        body = {"error": self.kind, "message": self.detail}
        body.update(self.extra)
        return body


class NotFoundError(AdminError):
    """Entity id does not resolve."""

    status = 404
    kind = "NotFound"


class ConflictError(AdminError):
    """Uniqueness violation on an identity field or an assignment."""

    status = 409
    kind = "Conflict"


class ValidationError(AdminError):
    """Missing or malformed request field."""

    status = 400
    kind = "ValidationError"


class SyncError(AdminError):
    """Directory call failed (timeout, non-2xx, malformed response)."""

    status = 502
    kind = "SyncError"


class UnauthorizedError(AdminError):
    """Caller is not authenticated."""

    status = 401
    kind = "Unauthorized"


class ForbiddenError(AdminError):
    """Caller lacks the required role."""

    status = 403
    kind = "Forbidden"
