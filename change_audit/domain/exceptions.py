"""Audit pipeline exceptions. Typed, no driver types."""


class AuditError(Exception):
    """Base for all audit pipeline errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(AuditError):
    """Raised when the audit configuration is unusable (missing uri, no collections)."""


class NotInitializedError(AuditError):
    """Raised when start() is called before a connection was established by initialize()."""


class AlreadyInitializedError(AuditError):
    """Raised when initialize() is called on a manager that already holds a configuration."""


class AlreadyStartedError(AuditError):
    """Raised when start() is called while feeds are already running."""


class TransformError(AuditError):
    """Raised when the user transform fails for a single change event."""

    def __init__(self, collection: str, document_id: object, cause: BaseException) -> None:
        self.collection = collection
        self.document_id = document_id
        self.cause = cause
        super().__init__(
            f"Transform failed for {collection} document {document_id!r}: {cause}"
        )


class ResumeTokenExpiredError(AuditError):
    """Raised when a change feed can no longer resume from its token (history rolled off the oplog)."""


class RecordRejectedError(AuditError):
    """Raised when storage permanently refuses an audit record, e.g. too large or not encodable."""
