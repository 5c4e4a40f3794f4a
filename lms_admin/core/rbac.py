"""Role-Based Access Control helpers.

The authenticated caller is represented by an explicit :class:`Caller`
value built from verified token claims. It is passed as an argument through
the API into the service layer; nothing here reads request-global state.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass(frozen=True)
class Caller:
    """Identity of the authenticated principal making a request."""

    subject: str
    username: str = ""
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    roles: tuple[str, ...] = field(default_factory=tuple)

    @property
    def actor(self) -> str:
        """Value recorded in created_by / updated_by / assigned_by columns."""
        return self.subject or self.username

    def has_role(self, role: str) -> bool:
        return role.lower() in {r.lower() for r in self.roles}

    def to_dict(self) -> dict:
        return {
            "userId": self.subject,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "roles": list(self.roles),
        }


SYSTEM_CALLER = Caller(subject="system", username="system")


def collect_roles(*sources) -> list[str]:
    """Collect all roles from realm_access and resource_access claims."""
    roles = []
    for source in sources:
        if not isinstance(source, dict):
            continue
        realm_access = source.get("realm_access")
        if isinstance(realm_access, dict):
            roles.extend(r for r in realm_access.get("roles", []) if r not in roles)
        resource_access = source.get("resource_access")
        if isinstance(resource_access, dict):
            for client_access in resource_access.values():
                if not isinstance(client_access, dict):
                    continue
                roles.extend(r for r in client_access.get("roles", []) if r not in roles)
    return roles


def caller_from_claims(claims: dict) -> Caller:
    """Build a Caller from verified access-token claims."""
    return Caller(
        subject=str(claims.get("sub") or ""),
        username=claims.get("preferred_username") or claims.get("email") or "",
        email=claims.get("email"),
        first_name=claims.get("given_name"),
        last_name=claims.get("family_name"),
        roles=tuple(collect_roles(claims)),
    )


def has_any_role(roles: Iterable[str], required: Iterable[str]) -> bool:
    """Check if any held role matches one of the required roles (case-insensitive)."""
    held = {role.lower() for role in roles}
    return any(role.lower() in held for role in required)


def filter_display_roles(roles: list[str], realm: str) -> list[str]:
    """Filter out internal/default roles from display."""
    default_role_name = f"default-roles-{realm.lower()}" if realm else ""
    hidden = {default_role_name} if default_role_name else set()
    return [role for role in roles if role.lower() not in hidden]
