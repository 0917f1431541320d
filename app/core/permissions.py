"""Role → permission map.

Tokens carry roles; routes demand permissions.  Adding a permission to a
role here is the only change needed to open a route to that role.
"""

from __future__ import annotations

from collections.abc import Iterable

PROGRESS_WRITE = "progress:write"
PROGRESS_READ = "progress:read"
POINTS_EARN = "points:earn"
POINTS_READ = "points:read"
PROFILE_WRITE = "profile:write"
POINTS_VERIFY_CREW = "points:verify_crew"
LEADERBOARD_READ = "leaderboard:read"
LEADERBOARD_RECOMPUTE = "leaderboard:recompute"

_USER_PERMISSIONS = frozenset(
    {
        PROGRESS_WRITE,
        PROGRESS_READ,
        POINTS_EARN,
        POINTS_READ,
        PROFILE_WRITE,
        LEADERBOARD_READ,
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "user": _USER_PERMISSIONS,
    "admin": _USER_PERMISSIONS | {LEADERBOARD_RECOMPUTE, POINTS_VERIFY_CREW},
}


def permissions_for(roles: Iterable[str]) -> frozenset[str]:
    """Union of the permissions granted by each role; unknown roles grant nothing."""
    granted: set[str] = set()
    for role in roles:
        granted |= ROLE_PERMISSIONS.get(role, frozenset())
    return frozenset(granted)
