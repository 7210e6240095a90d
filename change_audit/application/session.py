"""Database session protocol. Application layer depends on this; infrastructure implements it."""

from typing import Any, AsyncContextManager, AsyncIterator, Dict, Mapping, Optional, Protocol


class DatabaseSession(Protocol):
    """Connected session: admin commands, per-collection change streams, inserts."""

    async def command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        """Run a command against the application database."""
        ...

    async def admin_command(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        """Run a command against the admin database (usersInfo)."""
        ...

    def change_stream(
        self,
        collection: str,
        *,
        full_document: str,
        full_document_before_change: str,
        resume_after: Optional[Mapping[str, Any]] = None,
    ) -> AsyncContextManager[AsyncIterator[Dict[str, Any]]]:
        """Open one continuous change stream; yields raw change documents until closed."""
        ...

    async def insert_one(self, collection: str, document: Mapping[str, Any]) -> None:
        """Insert a single document into the named collection."""
        ...

    async def close(self) -> None:
        ...
