"""Audit sink: persist the record, then notify observers."""

import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, Union

from change_audit.application.session import DatabaseSession
from change_audit.domain.models import AuditRecord
from change_audit.observability.metrics import (
    COMMIT_LATENCY_MS,
    OBSERVER_FAILURES,
    RECORDS_COMMITTED,
    MetricsCollector,
)

AuditObserver = Callable[[AuditRecord], Union[None, Awaitable[None]]]


class AuditSink:
    """
    One independent insert per record; no batching, no cross-record transaction.
    Observers are called in registration order only after the insert succeeded,
    so a received record is durable. An observer failure is logged and skipped.
    """

    def __init__(
        self,
        session: DatabaseSession,
        audit_collection: str,
        *,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._audit_collection = audit_collection
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._observers: list[AuditObserver] = []

    @property
    def audit_collection(self) -> str:
        return self._audit_collection

    def add_observer(self, observer: AuditObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: AuditObserver) -> None:
        """Unregister observer. No-op if it was never registered."""
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    async def commit(self, record: AuditRecord) -> None:
        """Persist record. Raises on storage failure, in which case no observer is notified."""
        started = time.monotonic()
        await self._session.insert_one(self._audit_collection, record.to_document())
        if self._metrics is not None:
            self._metrics.increment(RECORDS_COMMITTED, category=record.collection)
            self._metrics.observe_latency(
                COMMIT_LATENCY_MS,
                (time.monotonic() - started) * 1000,
                category=record.collection,
            )
        self._logger.debug(
            "audit_record_committed",
            extra={
                "collection": record.collection,
                "document_id": record.document_id,
                "operation": record.operation,
            },
        )
        await self.notify(record)

    async def notify(self, record: AuditRecord) -> None:
        # Snapshot: observers may unregister themselves while being notified.
        for observer in list(self._observers):
            try:
                result = observer(record)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                if self._metrics is not None:
                    self._metrics.increment(OBSERVER_FAILURES, category=record.collection)
                self._logger.error(
                    "audit_observer_failed",
                    extra={
                        "collection": record.collection,
                        "document_id": record.document_id,
                        "error": str(e),
                    },
                )
