"""change-audit: capture before/after images of MongoDB mutations into an audit collection."""

from change_audit.application.manager import AuditManager
from change_audit.domain.models import (
    AuditConfiguration,
    AuditRecord,
    ProvisionOutcome,
    ProvisionStatus,
    TransformFailurePolicy,
)

__all__ = [
    "AuditConfiguration",
    "AuditManager",
    "AuditRecord",
    "ProvisionOutcome",
    "ProvisionStatus",
    "TransformFailurePolicy",
]
