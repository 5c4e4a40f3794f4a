"""Audit logging for administrative operations.

Events are appended to a JSONL file, one JSON object per line, each signed
with HMAC-SHA256 so tampering can be detected by :func:`verify_audit_log`.
"""
from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "admin-events.jsonl"
_signing_key_override: Optional[str] = None

EventType = Literal[
    "user_create", "user_update", "user_delete", "user_provision",
    "role_create", "role_update", "role_delete",
    "role_assign", "role_remove",
    "permission_create", "permission_update", "permission_deactivate",
    "permission_grant", "permission_revoke",
    "outbox_drain",
]


def configure_audit(log_dir: Optional[str] = None, signing_key: Optional[str] = None) -> None:
    """Point the audit trail at a directory and signing key (called by create_app)."""
    global AUDIT_LOG_DIR, AUDIT_LOG_FILE, _signing_key_override
    if log_dir:
        AUDIT_LOG_DIR = Path(log_dir)
        AUDIT_LOG_FILE = AUDIT_LOG_DIR / "admin-events.jsonl"
    if signing_key:
        _signing_key_override = signing_key


def _get_signing_key() -> bytes:
    """Get the audit signing key (configured value, then environment, then secret file)."""
    if _signing_key_override:
        return _signing_key_override.strip().encode("utf-8")
    key = os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip()
    if key:
        return key.encode("utf-8")
    secret_file = Path("/run/secrets/audit_log_signing_key")
    if secret_file.exists():
        try:
            return secret_file.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    return b""


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    # Canonical JSON representation for signing
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    target: str,
    *,
    operator: str = "system",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append an administrative event to the audit trail.

    Args:
        event_type: Kind of operation (user_create, role_assign, ...)
        target: Entity affected (username, role name, resource:action)
        operator: Subject of the caller who performed the operation
        details: Additional context (ids, directory sync outcome, ...)
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "target": target,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(
    event_type: EventType,
    target: str,
    *,
    operator: str = "system",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Log an audit event, never raising.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_event(event_type, target, operator=operator, details=details, success=success)
        return True
    except Exception as e:
        logger.warning(f"Failed to log {event_type} audit event for {target}: {e}")
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid
