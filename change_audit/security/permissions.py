"""Elevation check: may the connected principal change a collection's change-capture settings. No I/O."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from change_audit.domain.models import PrincipalProfile, Privilege, RoleRef

# Actions that allow running collMod on some resource.
ELEVATION_ACTIONS: frozenset[str] = frozenset({"collMod", "anyAction"})

# Built-in roles that carry collMod.
ADMIN_ROLES: frozenset[str] = frozenset(
    {
        "dbAdmin",
        "dbOwner",
        "root",
        "atlasAdmin",
        "dbAdminAnyDatabase",
    }
)


class GrantSource(str, Enum):
    """Which part of the profile granted elevation. Checked in declaration order."""

    INHERITED_PRIVILEGE = "inherited_privilege"
    PRIVILEGE = "privilege"
    ROLE = "role"
    INHERITED_ROLE = "inherited_role"


@dataclass(frozen=True)
class ElevationGrant:
    granted: bool
    source: Optional[GrantSource] = None


_DENIED = ElevationGrant(granted=False)


def _grants_elevation(privileges: Iterable[Privilege]) -> bool:
    return any(p.actions & ELEVATION_ACTIONS for p in privileges)


def _has_admin_role(roles: Iterable[RoleRef]) -> bool:
    return any(r.role in ADMIN_ROLES for r in roles)


class PermissionResolver:
    """
    First match wins, fixed order:
    inherited privileges, explicit privileges, explicit roles, inherited roles.
    Absent profile is never elevated.
    """

    def evaluate(self, profile: Optional[PrincipalProfile]) -> ElevationGrant:
        """Return whether elevation is allowed and which rule matched."""
        if profile is None:
            return _DENIED
        if _grants_elevation(profile.inherited_privileges):
            return ElevationGrant(True, GrantSource.INHERITED_PRIVILEGE)
        if _grants_elevation(profile.privileges):
            return ElevationGrant(True, GrantSource.PRIVILEGE)
        if _has_admin_role(profile.roles):
            return ElevationGrant(True, GrantSource.ROLE)
        if _has_admin_role(profile.inherited_roles):
            return ElevationGrant(True, GrantSource.INHERITED_ROLE)
        return _DENIED

    def can_elevate(self, profile: Optional[PrincipalProfile]) -> bool:
        return self.evaluate(profile).granted
