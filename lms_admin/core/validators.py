"""Input validation helpers for user, role and permission payloads.

Field validators raise ``ValueError``; the ``parse_*`` helpers turn request
bodies into keyword arguments for the store and re-raise failures as
:class:`~lms_admin.core.errors.ValidationError`.
"""
from __future__ import annotations
from typing import Any, Optional

from lms_admin.core.errors import ValidationError

_INVALID_NAME_CHARS = "<>\"'`;&|$"


def normalize_username(raw: str) -> str:
    """Normalize and validate username.

    Args:
        raw: Raw username input

    Returns:
        Normalized username

    Raises:
        ValueError: If username is invalid
    """
    normalized = "".join(char for char in raw.lower().strip() if char.isalnum() or char in {".", "-", "_"})

    if len(normalized) < 3:
        raise ValueError("Username must be at least 3 characters")
    if len(normalized) > 64:
        raise ValueError("Username must not exceed 64 characters")
    if normalized[0] in {".", "-", "_"} or normalized[-1] in {".", "-", "_"}:
        raise ValueError("Username cannot start or end with special characters")

    return normalized


def validate_email(email: str) -> str:
    """Validate email address.

    Args:
        email: Email address to validate

    Returns:
        Normalized email address

    Raises:
        ValueError: If email is invalid
    """
    email = email.strip().lower()
    if not email or "@" not in email:
        raise ValueError("Invalid email format")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValueError("Invalid email format")
    if len(email) > 254:
        raise ValueError("Email exceeds maximum length")

    return email


def validate_name(name: str, field: str, max_length: int = 100) -> str:
    """Validate first/last name and other free-text label fields.

    Args:
        name: Name to validate
        field: Field name for error messages (e.g., "First name")
        max_length: Maximum accepted length

    Returns:
        Trimmed name

    Raises:
        ValueError: If name is invalid
    """
    name = name.strip()
    if not name:
        raise ValueError(f"{field} is required")
    if len(name) > max_length:
        raise ValueError(f"{field} exceeds maximum length")

    # Prevent injection attacks
    if any(char in name for char in _INVALID_NAME_CHARS):
        raise ValueError(f"{field} contains invalid characters")

    return name


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """Validate an optional phone number (blank becomes None)."""
    if phone is None:
        return None
    phone = phone.strip()
    if not phone:
        return None
    if len(phone) > 20:
        raise ValueError("Phone exceeds maximum length")
    if not all(char.isdigit() or char in "+-() ." for char in phone):
        raise ValueError("Phone contains invalid characters")
    return phone


# ─────────────────────────────────────────────────────────────────────────────
# Request payload parsers
# ─────────────────────────────────────────────────────────────────────────────
def _require_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _string(payload: dict, key: str, *, required: bool) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _bool(payload: dict, key: str) -> Optional[bool]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _description(payload: dict) -> Optional[str]:
    description = _string(payload, "description", required=False)
    if description is not None:
        description = description.strip() or None
        if description and len(description) > 1000:
            raise ValidationError("description exceeds maximum length")
    return description


def parse_user_create(payload: Any) -> dict:
    """Validate a user creation body.

    Returns:
        Keyword arguments for ``DomainStore.create_user`` plus ``password``
        (None when the caller did not supply one).
    """
    payload = _require_object(payload)
    try:
        fields = {
            "username": normalize_username(_string(payload, "username", required=True)),
            "email": validate_email(_string(payload, "email", required=True)),
            "first_name": validate_name(_string(payload, "firstName", required=True), "First name"),
            "last_name": validate_name(_string(payload, "lastName", required=True), "Last name"),
            "phone": validate_phone(_string(payload, "phone", required=False)),
        }
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    password = _string(payload, "password", required=False)
    fields["password"] = password or None
    return fields


def parse_user_update(payload: Any) -> dict:
    """Validate a partial user update; only supplied fields are returned."""
    payload = _require_object(payload)
    changes: dict = {}
    try:
        if "email" in payload:
            changes["email"] = validate_email(_string(payload, "email", required=True))
        if "firstName" in payload:
            changes["first_name"] = validate_name(_string(payload, "firstName", required=True), "First name")
        if "lastName" in payload:
            changes["last_name"] = validate_name(_string(payload, "lastName", required=True), "Last name")
        if "phone" in payload:
            changes["phone"] = validate_phone(_string(payload, "phone", required=False))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    is_active = _bool(payload, "isActive")
    if is_active is not None:
        changes["is_active"] = is_active
    return changes


def parse_role_create(payload: Any) -> dict:
    payload = _require_object(payload)
    try:
        name = validate_name(_string(payload, "name", required=True), "Role name")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return {"name": name, "description": _description(payload)}


def parse_role_update(payload: Any) -> dict:
    payload = _require_object(payload)
    changes: dict = {}
    if "name" in payload:
        try:
            changes["name"] = validate_name(_string(payload, "name", required=True), "Role name")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    if "description" in payload:
        changes["description"] = _description(payload)
    is_active = _bool(payload, "isActive")
    if is_active is not None:
        changes["is_active"] = is_active
    return changes


def parse_permission_create(payload: Any) -> dict:
    payload = _require_object(payload)
    try:
        fields = {
            "name": validate_name(_string(payload, "name", required=True), "Permission name"),
            "resource": validate_name(_string(payload, "resource", required=True), "Resource"),
            "action": validate_name(_string(payload, "action", required=True), "Action", max_length=50),
        }
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    fields["description"] = _description(payload)
    return fields


def parse_permission_update(payload: Any) -> dict:
    payload = _require_object(payload)
    changes: dict = {}
    try:
        if "name" in payload:
            changes["name"] = validate_name(_string(payload, "name", required=True), "Permission name")
        if "resource" in payload:
            changes["resource"] = validate_name(_string(payload, "resource", required=True), "Resource")
        if "action" in payload:
            changes["action"] = validate_name(
                _string(payload, "action", required=True), "Action", max_length=50
            )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if "description" in payload:
        changes["description"] = _description(payload)
    is_active = _bool(payload, "isActive")
    if is_active is not None:
        changes["is_active"] = is_active
    return changes
