"""AuditManager: lifecycle, fatal vs degraded errors, end-to-end capture, isolation across collections."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from change_audit.application.feed_worker import CollectionFeedWorker
from change_audit.application.manager import AuditManager
from change_audit.domain.exceptions import (
    AlreadyInitializedError,
    AlreadyStartedError,
    ConfigurationError,
    NotInitializedError,
)
from change_audit.domain.models import AuditConfiguration, AuditRecord, ProvisionStatus


def _config(collections=("orders",), **kwargs):
    kwargs.setdefault("resubscribe_initial_delay_seconds", 0.01)
    return AuditConfiguration(uri="mongodb://localhost:27017/shop", collections=collections, **kwargs)


@pytest.fixture
def session_factory(fake_session):
    return AsyncMock(return_value=fake_session)


@pytest.fixture
async def manager(session_factory):
    m = AuditManager(session_factory)
    yield m
    await m.stop()


def test_missing_uri_is_fatal():
    with pytest.raises(ConfigurationError):
        AuditConfiguration(uri="", collections=("orders",))


def test_empty_collections_is_fatal():
    with pytest.raises(ConfigurationError):
        _config(collections=())


@pytest.mark.asyncio
async def test_initialize_rejects_non_configuration(manager, session_factory):
    with pytest.raises(ConfigurationError):
        await manager.initialize({"uri": "mongodb://localhost", "collections": ["orders"]})
    session_factory.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_before_initialize_is_fatal(manager):
    with pytest.raises(NotInitializedError):
        await manager.start()


@pytest.mark.asyncio
async def test_connection_failure_is_fatal_and_leaves_manager_uninitialized():
    factory = AsyncMock(side_effect=ConnectionError("server selection timeout"))
    manager = AuditManager(factory)
    with pytest.raises(ConnectionError):
        await manager.initialize(_config())
    assert manager.config is None
    with pytest.raises(NotInitializedError):
        await manager.start()


@pytest.mark.asyncio
async def test_initialize_twice_raises(manager):
    await manager.initialize(_config())
    with pytest.raises(AlreadyInitializedError):
        await manager.initialize(_config())


@pytest.mark.asyncio
async def test_start_twice_raises(manager):
    await manager.initialize(_config())
    await manager.start()
    with pytest.raises(AlreadyStartedError):
        await manager.start()


@pytest.mark.asyncio
async def test_degraded_provisioning_still_starts_feed(manager, fake_session, session_factory, wait_until):
    """No principal: initialize succeeds, start still opens the feed."""
    outcomes = await manager.initialize(_config(collections=("orders", "users")))
    session_factory.assert_awaited_once_with("mongodb://localhost:27017/shop")
    assert {o.status for o in outcomes.values()} == {ProvisionStatus.SKIPPED_NO_PRINCIPAL}

    await manager.start()
    await wait_until(lambda: len(fake_session.opened) == 2)
    assert sorted(name for name, _ in fake_session.opened) == ["orders", "users"]
    assert sorted(manager.running_collections) == ["orders", "users"]


@pytest.mark.asyncio
async def test_provisioning_enables_preimages_per_collection(manager, fake_session, login, user_info):
    login(fake_session, user_info(roles=[{"role": "dbOwner", "db": "shop"}]))
    outcomes = await manager.initialize(_config(collections=("orders", "users")))
    assert [o.status for o in outcomes.values()] == [ProvisionStatus.ENABLED, ProvisionStatus.ENABLED]
    assert [c["collMod"] for c in fake_session.commands if "collMod" in c] == ["orders", "users"]
    assert manager.provision_outcomes == outcomes


@pytest.mark.asyncio
async def test_delete_scenario(manager, fake_session, change, wait_until):
    received: list[AuditRecord] = []
    manager.add_observer(received.append)
    await manager.initialize(_config())
    await manager.start()

    fake_session.push("orders", change("delete", 7, before={"_id": 7, "status": "paid"}))
    await wait_until(lambda: len(received) == 1)

    docs = fake_session.inserted_docs("audit_logs")
    assert len(docs) == 1
    doc = docs[0]
    assert doc["collection"] == "orders"
    assert doc["documentId"] == 7
    assert doc["operation"] == "delete"
    assert doc["before"] == {"_id": 7, "status": "paid"}
    assert doc["after"] is None
    assert received[0].to_document() == doc


@pytest.mark.asyncio
async def test_transform_redacts_images_but_not_missing_ones(session_factory, fake_session, change, wait_until):
    manager = AuditManager(session_factory)
    await manager.initialize(
        _config(transform=lambda doc: {"redacted": True}, audit_collection="history")
    )
    await manager.start()
    try:
        fake_session.push("orders", change("insert", 1, after={"_id": 1, "card": "4111"}))
        await wait_until(lambda: len(fake_session.inserted_docs("history")) == 1)
    finally:
        await manager.stop()

    doc = fake_session.inserted_docs("history")[0]
    assert doc["before"] is None
    assert doc["after"] == {"redacted": True}


@pytest.mark.asyncio
async def test_fault_in_one_feed_does_not_stop_others(manager, fake_session, change, wait_until):
    fake_session.open_failures["orders"] = ConnectionError("collection feed broken")
    await manager.initialize(_config(collections=("orders", "users")))
    await manager.start()

    fake_session.push("users", change("update", "u1", before={"_id": "u1"}, after={"_id": "u1", "x": 1}))
    await wait_until(lambda: len(fake_session.inserted) == 1)

    assert fake_session.inserted_docs()[0]["collection"] == "users"
    assert "users" in manager.running_collections


@pytest.mark.asyncio
async def test_abandoned_feed_finishes_without_affecting_manager(session_factory, fake_session, change, wait_until):
    fake_session.open_failures["orders"] = ConnectionError("unauthorized")
    manager = AuditManager(session_factory)
    await manager.initialize(_config(collections=("orders", "users"), max_resubscribe_attempts=2))
    await manager.start()
    try:
        await wait_until(lambda: manager.running_collections == ["users"])
        fake_session.push("users", change("insert", 1, after={"_id": 1}))
        await wait_until(lambda: len(fake_session.inserted) == 1)
    finally:
        await manager.stop()


@pytest.mark.asyncio
async def test_stop_cancels_feeds_and_closes_session(session_factory, fake_session):
    manager = AuditManager(session_factory)
    await manager.initialize(_config(collections=("orders", "users")))
    await manager.start()
    await manager.stop()

    assert manager.running_collections == []
    assert fake_session.closed is True
    with pytest.raises(NotInitializedError):
        await manager.start()


@pytest.mark.asyncio
async def test_observer_registered_after_initialize(manager, fake_session, change, wait_until):
    await manager.initialize(_config())
    received = []
    manager.add_observer(received.append)
    await manager.start()

    fake_session.push("orders", change("insert", 3, after={"_id": 3}))
    await wait_until(lambda: len(received) == 1)

    manager.remove_observer(received.append)
    fake_session.push("orders", change("insert", 4, after={"_id": 4}))
    await wait_until(lambda: len(fake_session.inserted) == 2)
    assert len(received) == 1


@pytest.mark.asyncio
async def test_feed_task_crash_is_logged(session_factory, monkeypatch, wait_until):
    async def crash(self):
        raise RuntimeError("feed loop bug")

    monkeypatch.setattr(CollectionFeedWorker, "run", crash)
    logger = MagicMock()
    manager = AuditManager(session_factory, logger=logger)
    await manager.initialize(_config())
    await manager.start()

    def crash_calls():
        return [c for c in logger.error.call_args_list if c.args and c.args[0] == "change_feed_crashed"]

    try:
        await manager.join()
        await wait_until(lambda: len(crash_calls()) == 1)
    finally:
        await manager.stop()

    extra = crash_calls()[0].kwargs["extra"]
    assert extra["collection"] == "orders"
    assert extra["error"] == "feed loop bug"
