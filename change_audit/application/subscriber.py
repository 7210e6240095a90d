"""Per-collection change stream subscription and normalization into ChangeEvent."""

import logging
from typing import Any, AsyncIterator, Mapping, Optional

from change_audit.application.session import DatabaseSession
from change_audit.domain.models import ChangeEvent

# Current document on update; pre-image whenever retention is enabled, absent otherwise.
FULL_DOCUMENT = "updateLookup"
FULL_DOCUMENT_BEFORE_CHANGE = "whenAvailable"


def normalize_change(raw: Mapping[str, Any], collection: str) -> ChangeEvent:
    """Map a raw change stream document to a ChangeEvent. Missing images become None."""
    cluster_time = raw.get("clusterTime")
    if cluster_time is None:
        cluster_time = raw.get("wallTime")
    return ChangeEvent(
        operation=raw.get("operationType"),
        collection=collection,
        document_key=raw.get("documentKey"),
        before=raw.get("fullDocumentBeforeChange"),
        after=raw.get("fullDocument"),
        cluster_time=cluster_time,
        resume_token=raw.get("_id"),
    )


class ChangeSubscriber:
    """Opens one continuous change stream per subscribe() call. Starts from now unless resume_after is given."""

    def __init__(
        self,
        session: DatabaseSession,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    async def subscribe(
        self,
        collection: str,
        *,
        resume_after: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[ChangeEvent]:
        async with self._session.change_stream(
            collection,
            full_document=FULL_DOCUMENT,
            full_document_before_change=FULL_DOCUMENT_BEFORE_CHANGE,
            resume_after=resume_after,
        ) as stream:
            self._logger.info(
                "change_stream_opened",
                extra={"collection": collection, "resumed": resume_after is not None},
            )
            async for raw in stream:
                yield normalize_change(raw, collection)
