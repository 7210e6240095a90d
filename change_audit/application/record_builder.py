"""Builds AuditRecords from ChangeEvents. Deterministic apart from the capture timestamp. No I/O."""

from datetime import datetime, timezone
from typing import Callable, Optional

from change_audit.domain.exceptions import TransformError
from change_audit.domain.models import AuditRecord, ChangeEvent, Document, Transform


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecordBuilder:
    """
    Applies the optional transform to each non-null image independently.
    A null image stays null. A raising transform surfaces as TransformError.
    """

    def __init__(
        self,
        transform: Optional[Transform] = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._transform = transform
        self._clock = clock

    def build(self, event: ChangeEvent) -> AuditRecord:
        """Build the record for event. Timestamp is assigned here, in UTC."""
        timestamp = self._clock()
        return AuditRecord(
            collection=event.collection,
            document_id=event.document_id,
            operation=event.operation,
            timestamp=timestamp,
            before=self._apply(event, event.before),
            after=self._apply(event, event.after),
        )

    def build_untransformed(self, event: ChangeEvent) -> AuditRecord:
        """Best-effort record with raw images, used when the transform failed."""
        return AuditRecord(
            collection=event.collection,
            document_id=event.document_id,
            operation=event.operation,
            timestamp=self._clock(),
            before=event.before,
            after=event.after,
        )

    def build_errored(self, event: ChangeEvent, error: TransformError) -> AuditRecord:
        """Record that the mutation happened without exposing either image."""
        return AuditRecord(
            collection=event.collection,
            document_id=event.document_id,
            operation=event.operation,
            timestamp=self._clock(),
            before=None,
            after=None,
            error=str(error.cause),
        )

    def _apply(self, event: ChangeEvent, image: Optional[Document]) -> Optional[Document]:
        if image is None or self._transform is None:
            return image
        try:
            return self._transform(image)
        except Exception as e:
            raise TransformError(event.collection, event.document_id, e) from e
