"""Security: elevation checks for change-capture settings. No driver."""

from change_audit.security.permissions import (
    ADMIN_ROLES,
    ELEVATION_ACTIONS,
    ElevationGrant,
    GrantSource,
    PermissionResolver,
)

__all__ = [
    "ADMIN_ROLES",
    "ELEVATION_ACTIONS",
    "ElevationGrant",
    "GrantSource",
    "PermissionResolver",
]
