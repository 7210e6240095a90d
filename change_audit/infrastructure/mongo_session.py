# change_audit/infrastructure/mongo_session.py

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from bson.errors import InvalidDocument
from pymongo import AsyncMongoClient
from pymongo.errors import DocumentTooLarge, OperationFailure, WriteError

from change_audit.domain.exceptions import RecordRejectedError, ResumeTokenExpiredError

DEFAULT_DATABASE = "test"

# CappedPositionLost, ChangeStreamFatalError, ChangeStreamHistoryLost
RESUME_POINT_LOST_CODES = frozenset({136, 280, 286})


def _resume_point_lost(error: OperationFailure) -> bool:
    return error.code in RESUME_POINT_LOST_CODES


class MongoSession:
    """DatabaseSession over the pymongo async driver. Commands run against the URI's default database."""

    def __init__(self, client: AsyncMongoClient, database_name: Optional[str] = None) -> None:
        self.client = client
        self.db = client.get_default_database(database_name or DEFAULT_DATABASE)

    @classmethod
    async def connect(cls, uri: str) -> "MongoSession":
        """Create a client and verify the server is reachable. Raises on connection failure."""
        client = AsyncMongoClient(uri)
        try:
            await client.admin.command("ping")
        except Exception:
            await client.close()
            raise
        return cls(client)

    async def command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.db.command(dict(command))

    async def admin_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.admin.command(dict(command))

    @asynccontextmanager
    async def change_stream(
        self,
        collection: str,
        *,
        full_document: str,
        full_document_before_change: str,
        resume_after: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[Any]:
        """
        Open a change stream. A server refusal to resume (at open or while iterating)
        surfaces as ResumeTokenExpiredError; other driver errors propagate unchanged.
        """
        try:
            stream = await self.db[collection].watch(
                full_document=full_document,
                full_document_before_change=full_document_before_change,
                resume_after=resume_after,
            )
        except OperationFailure as e:
            if _resume_point_lost(e):
                raise ResumeTokenExpiredError(f"Cannot resume {collection} feed: {e}") from e
            raise
        try:
            yield stream
        except OperationFailure as e:
            if _resume_point_lost(e):
                raise ResumeTokenExpiredError(f"Cannot resume {collection} feed: {e}") from e
            raise
        finally:
            await stream.close()

    async def insert_one(self, collection: str, document: Mapping[str, Any]) -> None:
        """Insert a copy of document. Errors that a retry cannot fix raise RecordRejectedError."""
        try:
            # insert_one adds _id to the dict it is given
            await self.db[collection].insert_one(dict(document))
        except (DocumentTooLarge, InvalidDocument) as e:
            raise RecordRejectedError(f"Audit record not storable in {collection}: {e}") from e
        except WriteError as e:
            if e.has_error_label("RetryableWriteError"):
                raise
            raise RecordRejectedError(f"Audit record refused by {collection}: {e}") from e

    async def close(self) -> None:
        await self.client.close()
