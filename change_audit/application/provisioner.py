"""Pre/post-image provisioning. Every failure is degraded capability, never fatal."""

import logging
from typing import Optional

from change_audit.application.session import DatabaseSession
from change_audit.domain.models import PrincipalProfile, ProvisionOutcome, ProvisionStatus
from change_audit.observability.metrics import PROVISION_OUTCOME, MetricsCollector
from change_audit.security.permissions import PermissionResolver


class PreImageProvisioner:
    """
    Tries to turn on changeStreamPreAndPostImages for a collection.
    Steps: resolve principal, fetch its privileges, check elevation, run collMod.
    The principal is fetched fresh on every call.
    """

    def __init__(
        self,
        session: DatabaseSession,
        resolver: Optional[PermissionResolver] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._resolver = resolver or PermissionResolver()
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)

    async def provision(self, collection: str) -> ProvisionOutcome:
        outcome = await self._provision(collection)
        if self._metrics is not None:
            self._metrics.increment(PROVISION_OUTCOME, category=outcome.status.value)
        if outcome.degraded:
            self._logger.warning(
                "preimage_provisioning_degraded",
                extra={
                    "collection": collection,
                    "status": outcome.status.value,
                    "reason": outcome.reason,
                },
            )
        else:
            self._logger.info("preimage_enabled", extra={"collection": collection})
        return outcome

    async def fetch_principal(self) -> Optional[PrincipalProfile]:
        """Current principal with privileges, or None if unauthenticated or not in the user registry."""
        status = await self._session.command({"connectionStatus": 1})
        users = (status.get("authInfo") or {}).get("authenticatedUsers") or []
        if not users:
            return None
        user, user_db = users[0].get("user"), users[0].get("db")
        self._logger.info("principal_resolved", extra={"user": user, "user_db": user_db})

        reply = await self._session.admin_command(
            {"usersInfo": {"user": user, "db": user_db}, "showPrivileges": True}
        )
        entries = reply.get("users") or []
        if not entries:
            self._logger.warning(
                "principal_not_in_user_registry",
                extra={"user": user, "user_db": user_db},
            )
            return None
        return PrincipalProfile.from_users_info(entries[0])

    async def _provision(self, collection: str) -> ProvisionOutcome:
        # Steps 1-2: principal and privileges
        try:
            profile = await self.fetch_principal()
        except Exception as e:
            return ProvisionOutcome(collection, ProvisionStatus.SKIPPED_NO_PRINCIPAL, str(e))
        if profile is None:
            return ProvisionOutcome(
                collection,
                ProvisionStatus.SKIPPED_NO_PRINCIPAL,
                "No authenticated user found",
            )

        # Step 3: elevation check
        grant = self._resolver.evaluate(profile)
        if not grant.granted:
            return ProvisionOutcome(
                collection,
                ProvisionStatus.SKIPPED_NO_PERMISSION,
                f"{profile.user}@{profile.db} cannot run collMod",
            )
        self._logger.info(
            "elevation_granted",
            extra={"collection": collection, "grant_source": grant.source.value},
        )

        # Step 4: enable image retention
        try:
            await self._session.command(
                {
                    "collMod": collection,
                    "changeStreamPreAndPostImages": {"enabled": True},
                }
            )
        except Exception as e:
            return ProvisionOutcome(collection, ProvisionStatus.FAILED_AT_STORAGE, str(e))
        return ProvisionOutcome(collection, ProvisionStatus.ENABLED)
