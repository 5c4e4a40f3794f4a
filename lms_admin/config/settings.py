"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info(f"Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            logger.warning(f"Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Storage
    database_url: str = "sqlite:///lms_admin.db"

    # Keycloak (directory)
    keycloak_url: str = ""
    keycloak_realm: str = "lms-realm"
    keycloak_issuer: str = ""
    keycloak_admin_realm: str = "master"
    keycloak_admin: str = "admin"
    keycloak_admin_password: str = ""
    keycloak_admin_client_id: str = "admin-cli"
    keycloak_timeout: float = 5.0

    # Login client used by POST /api/auth/token
    oidc_client_id: str = "lms-frontend"
    oidc_client_secret: str = ""

    # Provisioning
    default_user_password: str = "ChangeMe123!"
    outbox_max_attempts: int = 5

    # Roles
    admin_role: str = "admin"
    user_role: str = "user"

    # Logging / audit
    log_level: str = "INFO"
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    @property
    def jwks_url(self) -> str:
        return f"{self.keycloak_issuer.rstrip('/')}/protocol/openid-connect/certs"


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        logger.info(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _number(var_name: str, default, cast):
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got '{raw}'")
    if value <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive")
    return value


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Secrets: /run/secrets first, environment second
    keycloak_admin_password = _load_secret_from_file("keycloak_admin_password", "KEYCLOAK_ADMIN_PASSWORD")
    if not keycloak_admin_password:
        if not demo_mode:
            raise RuntimeError("KEYCLOAK_ADMIN_PASSWORD not found in /run/secrets or environment")
        keycloak_admin_password = "admin"
        logger.info("[demo-mode] Using default Keycloak admin password")

    oidc_client_secret = _load_secret_from_file("oidc_client_secret", "OIDC_CLIENT_SECRET") or ""

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = "demo-audit-signing-key-change-in-production"

    database_url = _get_or_generate("DATABASE_URL", demo_default="sqlite:///lms_admin.db", demo_mode=demo_mode)

    # Keycloak
    keycloak_url = _get_or_generate(
        "KEYCLOAK_URL",
        demo_default="http://localhost:8080",
        demo_mode=demo_mode,
    ).rstrip("/")
    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "lms-realm")
    keycloak_issuer = os.environ.get("KEYCLOAK_ISSUER") or f"{keycloak_url}/realms/{keycloak_realm}"
    keycloak_admin_realm = os.environ.get("KEYCLOAK_ADMIN_REALM", "master")
    keycloak_admin = _get_or_generate("KEYCLOAK_ADMIN", demo_default="admin", demo_mode=demo_mode)
    keycloak_admin_client_id = os.environ.get("KEYCLOAK_ADMIN_CLIENT_ID", "admin-cli")
    keycloak_timeout = _number("KEYCLOAK_TIMEOUT", 5.0, float)

    oidc_client_id = os.environ.get("OIDC_CLIENT_ID", "lms-frontend")

    default_user_password = (
        _load_secret_from_file("default_user_password", "DEFAULT_USER_PASSWORD") or "ChangeMe123!"
    )
    outbox_max_attempts = _number("OUTBOX_MAX_ATTEMPTS", 5, int)

    admin_role = os.environ.get("ADMIN_ROLE", "admin").strip() or "admin"
    user_role = os.environ.get("USER_ROLE", "user").strip() or "user"

    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    audit_log_dir = os.environ.get("AUDIT_LOG_DIR", ".runtime/audit")

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    logger.info(f"Mode={mode_label}; realm={keycloak_realm}; keycloak={keycloak_url}")
    if demo_mode:
        logger.warning("Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        database_url=database_url,
        keycloak_url=keycloak_url,
        keycloak_realm=keycloak_realm,
        keycloak_issuer=keycloak_issuer,
        keycloak_admin_realm=keycloak_admin_realm,
        keycloak_admin=keycloak_admin,
        keycloak_admin_password=keycloak_admin_password,
        keycloak_admin_client_id=keycloak_admin_client_id,
        keycloak_timeout=keycloak_timeout,
        oidc_client_id=oidc_client_id,
        oidc_client_secret=oidc_client_secret,
        default_user_password=default_user_password,
        outbox_max_attempts=outbox_max_attempts,
        admin_role=admin_role,
        user_role=user_role,
        log_level=log_level,
        audit_log_dir=audit_log_dir,
        audit_log_signing_key=audit_log_signing_key,
    )
