"""
Flask decorators for authentication and authorization.

Bearer tokens issued by Keycloak are verified here and turned into an
explicit :class:`~lms_admin.core.rbac.Caller`, which is handed to the view
as the ``caller`` keyword argument.

Security:
- RSA-SHA256 signature verification via JWKS (RFC 7517)
- Expiration and issuer validation (RFC 7519)
- JWKS caching per application (1-hour refresh)
"""

import logging
from functools import wraps
from typing import Dict, Any

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    ExpiredSignatureError,
    InvalidIssuerError,
    InvalidSignatureError,
    DecodeError,
    PyJWKClientError,
)
from flask import request, current_app

from lms_admin.core.errors import ForbiddenError, UnauthorizedError
from lms_admin.core.rbac import caller_from_claims, has_any_role

logger = logging.getLogger(__name__)

ADMIN = "admin"
USER = "user"


class TokenValidationError(Exception):
    """Exception raised when JWT token validation fails."""
    pass


def get_jwks_client() -> PyJWKClient:
    """
    Get the JWKS client of the current application (created on first use).

    Returns:
        PyJWKClient: Configured client for the Keycloak realm
    """
    client = current_app.extensions.get("jwks_client")
    if client is None:
        cfg = current_app.config["APP_CONFIG"]
        logger.info(f"Initializing JWKS client for: {cfg.jwks_url}")
        client = PyJWKClient(
            cfg.jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "LMS-Admin/1.0"},
        )
        current_app.extensions["jwks_client"] = client
    return client


def validate_jwt_token(token: str) -> Dict[str, Any]:
    """
    Validate a JWT Bearer token.

    Validations performed:
    1. Signature verification (RSA-SHA256 via JWKS)
    2. Expiration (exp claim, required)
    3. Not Before (nbf claim)
    4. Issuer (iss claim)

    Args:
        token: JWT token string (without "Bearer " prefix)

    Returns:
        dict: Validated token claims

    Raises:
        TokenValidationError: If any validation fails
    """
    cfg = current_app.config["APP_CONFIG"]

    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.keycloak_issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_aud": False,
                "require": ["exp", "iat"],
            },
            leeway=5,
        )
        logger.debug(f"JWT validated for subject: {claims.get('sub')}")
        return claims

    except ExpiredSignatureError:
        raise TokenValidationError("Token expired (exp claim)")
    except InvalidIssuerError as e:
        raise TokenValidationError(f"Invalid issuer (token from wrong Keycloak realm): {e}")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature (token tampered or wrong key)")
    except DecodeError as e:
        raise TokenValidationError(f"Token decode error (malformed JWT): {e}")
    except PyJWKClientError as e:
        raise TokenValidationError(f"Signing key unavailable: {e}")
    except jwt.InvalidTokenError as e:
        raise TokenValidationError(f"Token validation failed: {e}")


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise UnauthorizedError("Authorization header required. Use 'Authorization: Bearer <token>'")
    if not auth_header.startswith("Bearer "):
        raise UnauthorizedError("Invalid Authorization header format. Expected 'Bearer <token>'")
    token = auth_header[7:].strip()
    if not token:
        raise UnauthorizedError("Bearer token is empty")
    return token


def _configured_role(name: str) -> str:
    cfg = current_app.config["APP_CONFIG"]
    if name == ADMIN:
        return cfg.admin_role
    if name == USER:
        return cfg.user_role
    return name


def require_roles(*roles: str):
    """
    Decorator requiring a verified Bearer token holding at least one of ``roles``.

    With no roles, any authenticated caller is accepted. The verified caller
    is passed to the view as ``caller``.

    Raises:
        UnauthorizedError: Missing, malformed, or invalid token (401)
        ForbiddenError: None of the required roles held (403)

    Example:
        @bp.route("/api/users", methods=["POST"])
        @require_roles(ADMIN)
        def create_user(caller):
            ...
    """

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = _bearer_token()
            try:
                claims = validate_jwt_token(token)
            except TokenValidationError as e:
                logger.warning(f"JWT validation failed on {request.path}: {e}")
                raise UnauthorizedError(str(e))

            caller = caller_from_claims(claims)
            if roles:
                required = [_configured_role(role) for role in roles]
                if not has_any_role(caller.roles, required):
                    logger.warning(
                        f"Caller '{caller.username}' lacks required roles on {request.path}. "
                        f"Required: {required}, has: {list(caller.roles)}"
                    )
                    raise ForbiddenError(f"Required role: {', '.join(required)}")

            kwargs["caller"] = caller
            return fn(*args, **kwargs)

        return wrapper

    return decorator
