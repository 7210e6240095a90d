"""Domain layer: configuration, principal snapshots, change events, audit records, exceptions."""

from change_audit.domain.exceptions import (
    AlreadyInitializedError,
    AlreadyStartedError,
    AuditError,
    ConfigurationError,
    NotInitializedError,
    TransformError,
)
from change_audit.domain.models import (
    AuditConfiguration,
    AuditRecord,
    ChangeEvent,
    PrincipalProfile,
    Privilege,
    ProvisionOutcome,
    ProvisionStatus,
    RoleRef,
    TransformFailurePolicy,
)

__all__ = [
    "AlreadyInitializedError",
    "AlreadyStartedError",
    "AuditConfiguration",
    "AuditError",
    "AuditRecord",
    "ChangeEvent",
    "ConfigurationError",
    "NotInitializedError",
    "PrincipalProfile",
    "Privilege",
    "ProvisionOutcome",
    "ProvisionStatus",
    "RoleRef",
    "TransformError",
    "TransformFailurePolicy",
]
