from __future__ import annotations

from dataclasses import dataclass, field

from app.core.permissions import permissions_for


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity taken from a validated bearer token.

    user_id: token subject; keys every progress and points document.
    roles: platform roles; resolved to permissions via ROLE_PERMISSIONS.
    """

    user_id: str
    roles: frozenset[str]
    permissions: frozenset[str] = field(default=frozenset())

    @staticmethod
    def from_claims(claims: dict) -> Principal:
        roles = frozenset(claims.get("roles", []))
        return Principal(
            user_id=claims["sub"],
            roles=roles,
            permissions=permissions_for(roles),
        )

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions
