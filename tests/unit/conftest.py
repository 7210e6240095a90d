"""Shared fixtures: in-memory database session with queue-backed change streams."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager

import pytest

from change_audit.observability.metrics import MetricsCollector

STREAM_END = object()


class FakeChangeStream:
    """Async iterator over a queue. STREAM_END closes the stream; an exception instance is raised."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is STREAM_END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeSession:
    """In-memory DatabaseSession for unit tests."""

    def __init__(self) -> None:
        self.command_replies: dict[str, object] = {}
        self.admin_replies: dict[str, object] = {}
        self.commands: list[dict] = []
        self.admin_commands: list[dict] = []
        self.inserted: list[tuple[str, dict]] = []
        self.insert_failures: list[BaseException] = []
        self.open_failures: dict[str, BaseException] = {}
        self.feeds: dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)
        self.opened: list[tuple[str, dict]] = []
        self.closed = False

    async def command(self, command):
        self.commands.append(dict(command))
        reply = self.command_replies.get(next(iter(command)), {"ok": 1})
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def admin_command(self, command):
        self.admin_commands.append(dict(command))
        reply = self.admin_replies.get(next(iter(command)), {"users": [], "ok": 1})
        if isinstance(reply, BaseException):
            raise reply
        return reply

    @asynccontextmanager
    async def change_stream(
        self,
        collection,
        *,
        full_document,
        full_document_before_change,
        resume_after=None,
    ):
        self.opened.append(
            (
                collection,
                {
                    "full_document": full_document,
                    "full_document_before_change": full_document_before_change,
                    "resume_after": resume_after,
                },
            )
        )
        if collection in self.open_failures:
            raise self.open_failures[collection]
        yield FakeChangeStream(self.feeds[collection])

    async def insert_one(self, collection, document):
        if self.insert_failures:
            raise self.insert_failures.pop(0)
        self.inserted.append((collection, dict(document)))

    async def close(self):
        self.closed = True

    def push(self, collection, *items):
        for item in items:
            self.feeds[collection].put_nowait(item)

    def inserted_docs(self, collection="audit_logs"):
        return [doc for name, doc in self.inserted if name == collection]


def make_change(operation, doc_id, *, before=None, after=None, token=None, **extra):
    raw = {
        "_id": {"_data": token if token is not None else f"{operation}-{doc_id}"},
        "operationType": operation,
        "documentKey": {"_id": doc_id},
    }
    if before is not None:
        raw["fullDocumentBeforeChange"] = before
    if after is not None:
        raw["fullDocument"] = after
    raw.update(extra)
    return raw


def admin_user_info(
    *,
    privileges=None,
    inherited_privileges=None,
    roles=None,
    inherited_roles=None,
    user="auditor",
    db="admin",
):
    return {
        "user": user,
        "db": db,
        "privileges": privileges or [],
        "inheritedPrivileges": inherited_privileges or [],
        "roles": roles or [],
        "inheritedRoles": inherited_roles or [],
    }


def authenticate(session: FakeSession, user_doc: dict) -> None:
    """Make the fake report user_doc as the connected, registered principal."""
    session.command_replies["connectionStatus"] = {
        "authInfo": {
            "authenticatedUsers": [{"user": user_doc["user"], "db": user_doc["db"]}],
        },
        "ok": 1,
    }
    session.admin_replies["usersInfo"] = {"users": [user_doc], "ok": 1}


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def change():
    """Factory for raw change stream documents."""
    return make_change


@pytest.fixture
def user_info():
    """Factory for usersInfo user entries."""
    return admin_user_info


@pytest.fixture
def login():
    return authenticate


@pytest.fixture
def stream_end():
    return STREAM_END


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait


@pytest.fixture
def recorded_sleep():
    """Sleep replacement that records requested delays and only yields control."""
    delays: list[float] = []

    async def _sleep(seconds: float):
        delays.append(seconds)
        await asyncio.sleep(0)

    _sleep.delays = delays
    return _sleep
