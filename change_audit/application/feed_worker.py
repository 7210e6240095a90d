"""Long-lived feed task for one audited collection: subscribe, build, commit, resubscribe on fault."""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Mapping, Optional

from change_audit.application.record_builder import AuditRecordBuilder
from change_audit.application.sink import AuditSink
from change_audit.application.subscriber import ChangeSubscriber
from change_audit.core.context import collection_ctx
from change_audit.domain.exceptions import (
    RecordRejectedError,
    ResumeTokenExpiredError,
    TransformError,
)
from change_audit.domain.models import AuditRecord, ChangeEvent, TransformFailurePolicy
from change_audit.observability.metrics import (
    CHANGE_EVENTS_IGNORED,
    CHANGE_FEED_ABANDONED,
    CHANGE_FEED_FAILURES,
    RECORDS_REJECTED,
    TRANSFORM_FAILURES,
    MetricsCollector,
)

# 2**62 is far beyond any useful delay; larger exponents overflow float conversion.
MAX_BACKOFF_EXPONENT = 62


def compute_backoff_delay_seconds(
    attempt: int,
    initial_delay_seconds: float,
    max_delay_seconds: float,
) -> float:
    """Exponential backoff: initial * 2**(attempt-1), capped at max."""
    if attempt <= 0:
        raise ValueError("attempt must be >= 1.")
    exponent = min(attempt - 1, MAX_BACKOFF_EXPONENT)
    return min(initial_delay_seconds * (2 ** exponent), max_delay_seconds)


class CollectionFeedWorker:
    """
    Sequential writer for one collection: each event is committed before the next
    is read, so commits keep arrival order. Feed or storage faults are logged and
    the feed is reopened after a backoff, resuming after the last committed event
    so a failed commit is redelivered. A record storage permanently refuses is
    logged and skipped instead. Gives up after max_attempts consecutive
    failures (None = never).
    """

    def __init__(
        self,
        collection: str,
        subscriber: ChangeSubscriber,
        builder: AuditRecordBuilder,
        sink: AuditSink,
        *,
        failure_policy: TransformFailurePolicy = TransformFailurePolicy.SKIP,
        initial_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        max_attempts: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._collection = collection
        self._subscriber = subscriber
        self._builder = builder
        self._sink = sink
        self._failure_policy = failure_policy
        self._initial_delay = initial_delay_seconds
        self._max_delay = max_delay_seconds
        self._max_attempts = max_attempts
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._resume_token: Optional[Mapping[str, Any]] = None

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def resume_token(self) -> Optional[Mapping[str, Any]]:
        """Token of the last fully handled event; None before the first event or after invalidate."""
        return self._resume_token

    async def run(self) -> None:
        collection_ctx.set(self._collection)
        failures = 0
        while True:
            try:
                async with aclosing(
                    self._subscriber.subscribe(self._collection, resume_after=self._resume_token)
                ) as events:
                    async for event in events:
                        await self._handle(event)
                        failures = 0
                self._logger.warning("change_feed_closed", extra={"collection": self._collection})
            except Exception as e:
                failures += 1
                self._increment(CHANGE_FEED_FAILURES)
                self._logger.error(
                    "change_feed_failed",
                    extra={
                        "collection": self._collection,
                        "attempt": failures,
                        "error": str(e),
                    },
                )
                if isinstance(e, ResumeTokenExpiredError):
                    # Events between the token and now are lost; continue from the current position.
                    self._resume_token = None
                    self._logger.warning(
                        "change_feed_resume_point_lost",
                        extra={"collection": self._collection},
                    )
                if self._max_attempts is not None and failures >= self._max_attempts:
                    self._increment(CHANGE_FEED_ABANDONED)
                    self._logger.error(
                        "change_feed_abandoned",
                        extra={"collection": self._collection, "attempts": failures},
                    )
                    return
            await self._sleep(
                compute_backoff_delay_seconds(
                    max(failures, 1), self._initial_delay, self._max_delay
                )
            )

    async def _handle(self, event: ChangeEvent) -> None:
        if event.is_invalidation:
            # The stream ends after invalidate; its token cannot be resumed from.
            self._resume_token = None
            self._logger.warning("change_feed_invalidated", extra={"collection": self._collection})
            return
        if event.document_key is None:
            self._increment(CHANGE_EVENTS_IGNORED)
            self._logger.info(
                "change_event_ignored",
                extra={"collection": self._collection, "operation": event.operation},
            )
            self._resume_token = event.resume_token
            return

        try:
            record = self._builder.build(event)
        except TransformError as e:
            record = self._on_transform_failure(event, e)
        if record is not None:
            try:
                await self._sink.commit(record)
            except RecordRejectedError as e:
                self._increment(RECORDS_REJECTED)
                self._logger.error(
                    "audit_record_rejected",
                    extra={
                        "collection": self._collection,
                        "document_id": event.document_id,
                        "operation": event.operation,
                        "error": e.message,
                    },
                )
        self._resume_token = event.resume_token

    def _on_transform_failure(self, event: ChangeEvent, error: TransformError) -> Optional[AuditRecord]:
        self._increment(TRANSFORM_FAILURES)
        self._logger.error(
            "audit_transform_failed",
            extra={
                "collection": self._collection,
                "document_id": event.document_id,
                "operation": event.operation,
                "policy": self._failure_policy.value,
                "error": str(error.cause),
            },
        )
        if self._failure_policy == TransformFailurePolicy.UNTRANSFORMED:
            return self._builder.build_untransformed(event)
        if self._failure_policy == TransformFailurePolicy.MARK_ERRORED:
            return self._builder.build_errored(event, error)
        return None

    def _increment(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(name, category=self._collection)
