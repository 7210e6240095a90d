"""AuditManager: the single entry point. Owns configuration and wires the pipeline per instance."""

import asyncio
import functools
import logging
import uuid
from typing import Awaitable, Callable, Dict, Mapping, Optional

from change_audit.application.feed_worker import CollectionFeedWorker
from change_audit.application.provisioner import PreImageProvisioner
from change_audit.application.record_builder import AuditRecordBuilder
from change_audit.application.session import DatabaseSession
from change_audit.application.sink import AuditObserver, AuditSink
from change_audit.application.subscriber import ChangeSubscriber
from change_audit.core.context import pipeline_id_ctx
from change_audit.domain.exceptions import (
    AlreadyInitializedError,
    AlreadyStartedError,
    ConfigurationError,
    NotInitializedError,
)
from change_audit.domain.models import AuditConfiguration, ProvisionOutcome
from change_audit.infrastructure.mongo_session import MongoSession
from change_audit.observability.metrics import MetricsCollector

SessionFactory = Callable[[str], Awaitable[DatabaseSession]]


class AuditManager:
    """
    initialize(config): connect, then provision pre-images per collection (never fatal).
    start(): one feed task per collection. stop(): cancel feeds, close the session.
    Everything lives on the instance, so several pipelines can share a process.
    """

    def __init__(
        self,
        session_factory: SessionFactory = MongoSession.connect,
        *,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session_factory = session_factory
        self._metrics = metrics or MetricsCollector()
        self._logger = logger or logging.getLogger(__name__)
        self._pipeline_id = str(uuid.uuid4())
        self._config: Optional[AuditConfiguration] = None
        self._session: Optional[DatabaseSession] = None
        self._sink: Optional[AuditSink] = None
        self._observers: list[AuditObserver] = []
        self._outcomes: Dict[str, ProvisionOutcome] = {}
        self._workers: Dict[str, CollectionFeedWorker] = {}
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    @property
    def pipeline_id(self) -> str:
        return self._pipeline_id

    @property
    def config(self) -> Optional[AuditConfiguration]:
        return self._config

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def provision_outcomes(self) -> Mapping[str, ProvisionOutcome]:
        return dict(self._outcomes)

    @property
    def running_collections(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def add_observer(self, observer: AuditObserver) -> None:
        """Register a callback invoked once per committed record, after persistence."""
        self._observers.append(observer)
        if self._sink is not None:
            self._sink.add_observer(observer)

    def remove_observer(self, observer: AuditObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)
        if self._sink is not None:
            self._sink.remove_observer(observer)

    async def initialize(self, config: AuditConfiguration) -> Dict[str, ProvisionOutcome]:
        """Connect and provision. Fatal only for bad configuration or a failed connection."""
        if self._config is not None:
            raise AlreadyInitializedError("AuditManager is already initialized")
        if not isinstance(config, AuditConfiguration):
            raise ConfigurationError("config must be an AuditConfiguration")

        session = await self._session_factory(config.uri)
        self._config = config
        self._session = session
        self._sink = AuditSink(
            session,
            config.audit_collection,
            metrics=self._metrics,
            logger=self._logger,
        )
        for observer in self._observers:
            self._sink.add_observer(observer)
        self._logger.info(
            "audit_initialized",
            extra={
                "pipeline_id": self._pipeline_id,
                "collections": list(config.collections),
                "audit_collection": config.audit_collection,
            },
        )

        provisioner = PreImageProvisioner(session, metrics=self._metrics, logger=self._logger)
        for name in config.collections:
            self._outcomes[name] = await provisioner.provision(name)
        return dict(self._outcomes)

    async def start(self) -> None:
        """Open one change feed per configured collection. Returns once all feed tasks are scheduled."""
        if self._session is None or self._config is None or self._sink is None:
            raise NotInitializedError("Call initialize() first")
        if self._tasks:
            raise AlreadyStartedError("AuditManager is already started")

        config = self._config
        subscriber = ChangeSubscriber(self._session, logger=self._logger)
        builder = AuditRecordBuilder(config.transform)
        for name in config.collections:
            worker = CollectionFeedWorker(
                name,
                subscriber,
                builder,
                self._sink,
                failure_policy=config.transform_failure_policy,
                initial_delay_seconds=config.resubscribe_initial_delay_seconds,
                max_delay_seconds=config.resubscribe_max_delay_seconds,
                max_attempts=config.max_resubscribe_attempts,
                metrics=self._metrics,
                logger=self._logger,
            )
            self._workers[name] = worker
            task = asyncio.create_task(self._run_feed(worker), name=f"change-audit:{name}")
            task.add_done_callback(functools.partial(self._on_feed_done, name))
            self._tasks[name] = task
        self._logger.info(
            "audit_started",
            extra={"pipeline_id": self._pipeline_id, "collections": list(config.collections)},
        )

    async def join(self) -> None:
        """Wait until every feed task has finished (abandoned or cancelled)."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel all feeds and close the session. The manager cannot be restarted."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._logger.info("audit_stopped", extra={"pipeline_id": self._pipeline_id})

    async def _run_feed(self, worker: CollectionFeedWorker) -> None:
        pipeline_id_ctx.set(self._pipeline_id)
        await worker.run()

    def _on_feed_done(self, collection: str, task: "asyncio.Task[None]") -> None:
        """Log a feed task that ended with an exception; join() and stop() collect results silently."""
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error(
                "change_feed_crashed",
                extra={
                    "pipeline_id": self._pipeline_id,
                    "collection": collection,
                    "error": str(error),
                },
                exc_info=error,
            )
