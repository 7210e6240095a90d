"""Domain models for the change-capture pipeline. Pure data, no driver or I/O."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from change_audit.domain.exceptions import ConfigurationError

Document = Dict[str, Any]
Transform = Callable[[Document], Document]

DEFAULT_AUDIT_COLLECTION = "audit_logs"
INVALIDATE_OPERATION = "invalidate"


class TransformFailurePolicy(str, Enum):
    """What to do with an event whose transform raised."""

    SKIP = "skip"  # Drop the record for this event
    UNTRANSFORMED = "untransformed"  # Best-effort record with raw images
    MARK_ERRORED = "mark_errored"  # Record without images, error text attached


class ProvisionStatus(str, Enum):
    ENABLED = "enabled"
    SKIPPED_NO_PRINCIPAL = "skipped_no_principal"
    SKIPPED_NO_PERMISSION = "skipped_no_permission"
    FAILED_AT_STORAGE = "failed_at_storage"


@dataclass(frozen=True)
class ProvisionOutcome:
    """Result of trying to enable pre/post-image retention for one collection."""

    collection: str
    status: ProvisionStatus
    reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """True when the collection will be audited without guaranteed before-images."""
        return self.status != ProvisionStatus.ENABLED


@dataclass(frozen=True)
class AuditConfiguration:
    """
    Immutable pipeline configuration. Validated on construction.
    uri and a non-empty, duplicate-free collection list are required; the audit
    collection itself may not be in that list.
    """

    uri: str
    collections: Tuple[str, ...]
    audit_collection: str = DEFAULT_AUDIT_COLLECTION
    transform: Optional[Transform] = None
    transform_failure_policy: TransformFailurePolicy = TransformFailurePolicy.SKIP
    resubscribe_initial_delay_seconds: float = 1.0
    resubscribe_max_delay_seconds: float = 30.0
    max_resubscribe_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.uri:
            raise ConfigurationError("Mongo URI is required")
        if isinstance(self.collections, str):
            raise ConfigurationError("Collections must be a sequence of names, not a single string")
        collections = tuple(self.collections or ())
        if not collections:
            raise ConfigurationError("Collections to audit are required")
        if any(not name for name in collections):
            raise ConfigurationError("Collection names must not be empty")
        if len(set(collections)) != len(collections):
            raise ConfigurationError("Collection names must be unique")
        object.__setattr__(self, "collections", collections)
        if not self.audit_collection:
            object.__setattr__(self, "audit_collection", DEFAULT_AUDIT_COLLECTION)
        # Auditing the audit collection would feed every record back into the pipeline.
        if self.audit_collection in collections:
            raise ConfigurationError("Audit collection cannot be audited")
        if self.transform is not None and not callable(self.transform):
            raise ConfigurationError("transform must be callable")
        try:
            policy = TransformFailurePolicy(self.transform_failure_policy)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown transform_failure_policy: {self.transform_failure_policy!r}"
            ) from e
        object.__setattr__(self, "transform_failure_policy", policy)
        if self.resubscribe_initial_delay_seconds < 0 or self.resubscribe_max_delay_seconds < 0:
            raise ConfigurationError("Resubscribe delays must be >= 0")
        if self.max_resubscribe_attempts is not None and self.max_resubscribe_attempts < 1:
            raise ConfigurationError("max_resubscribe_attempts must be >= 1 when set")

    @classmethod
    def from_settings(cls, settings: Any, transform: Optional[Transform] = None) -> "AuditConfiguration":
        """Build configuration from AuditSettings. Transform is code, so it is passed separately."""
        return cls(
            uri=settings.mongo_uri,
            collections=tuple(settings.audit_collections),
            audit_collection=settings.audit_collection,
            transform=transform,
            transform_failure_policy=settings.transform_failure_policy,
            resubscribe_initial_delay_seconds=settings.resubscribe_initial_delay_seconds,
            resubscribe_max_delay_seconds=settings.resubscribe_max_delay_seconds,
            max_resubscribe_attempts=settings.max_resubscribe_attempts,
        )


@dataclass(frozen=True)
class Privilege:
    resource: Mapping[str, Any]
    actions: FrozenSet[str]


@dataclass(frozen=True)
class RoleRef:
    role: str
    db: str


def _privileges(raw: Any) -> Tuple[Privilege, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(
        Privilege(
            resource=dict(p.get("resource") or {}),
            actions=frozenset(p.get("actions") or ()),
        )
        for p in raw
        if isinstance(p, Mapping)
    )


def _roles(raw: Any) -> Tuple[RoleRef, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(
        RoleRef(role=str(r.get("role", "")), db=str(r.get("db", "")))
        for r in raw
        if isinstance(r, Mapping)
    )


@dataclass(frozen=True)
class PrincipalProfile:
    """
    Read-only snapshot of a principal's roles and privileges, as returned by
    usersInfo with showPrivileges. Fetched fresh for each provisioning attempt.
    """

    user: str
    db: str
    privileges: Tuple[Privilege, ...] = ()
    inherited_privileges: Tuple[Privilege, ...] = ()
    roles: Tuple[RoleRef, ...] = ()
    inherited_roles: Tuple[RoleRef, ...] = ()

    @classmethod
    def from_users_info(cls, user_doc: Mapping[str, Any]) -> "PrincipalProfile":
        """Parse one entry of the usersInfo `users` array. Missing sections become empty."""
        return cls(
            user=str(user_doc.get("user", "")),
            db=str(user_doc.get("db", "")),
            privileges=_privileges(user_doc.get("privileges")),
            inherited_privileges=_privileges(user_doc.get("inheritedPrivileges")),
            roles=_roles(user_doc.get("roles")),
            inherited_roles=_roles(user_doc.get("inheritedRoles")),
        )


@dataclass(frozen=True)
class ChangeEvent:
    """Normalized change notification for one audited collection. Never mutated."""

    operation: str
    collection: str
    document_key: Optional[Document] = None
    before: Optional[Document] = None
    after: Optional[Document] = None
    cluster_time: Any = None
    resume_token: Optional[Document] = None

    @property
    def document_id(self) -> Any:
        if self.document_key is None:
            return None
        return self.document_key.get("_id")

    @property
    def is_invalidation(self) -> bool:
        return self.operation == INVALIDATE_OPERATION


@dataclass(frozen=True)
class AuditRecord:
    """
    Immutable audit record: which document, what happened, when it was captured,
    and the (transformed) state before and after.
    """

    collection: str
    document_id: Any
    operation: str
    timestamp: datetime
    before: Optional[Document]
    after: Optional[Document]
    error: Optional[str] = field(default=None)

    def to_document(self) -> Document:
        """Shape persisted to the audit collection."""
        doc: Document = {
            "collection": self.collection,
            "documentId": self.document_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "before": self.before,
            "after": self.after,
        }
        if self.error is not None:
            doc["error"] = self.error
        return doc
