"""Tests for the store status state machine and record queries."""

import pytest

from app.core.errors import InvalidTransition
from app.models.store import Store, StoreEngine, StoreStatus
from app.services.stores import (
    count_owner_stores,
    create_store,
    list_active_stores,
    transition,
)


def _store(status: StoreStatus = StoreStatus.PROVISIONING, **fields) -> Store:
    return Store(id="abc12345", name="demo", engine=StoreEngine.WOOCOMMERCE, status=status, **fields)


def test_provisioning_to_ready_clears_reason():
    store = _store()
    assert transition(store, StoreStatus.READY) is True
    assert store.status == StoreStatus.READY
    assert store.error_reason is None


def test_provisioning_to_failed_sets_reason():
    store = _store()
    assert transition(store, StoreStatus.FAILED, "Provisioning failed: boom") is True
    assert store.status == StoreStatus.FAILED
    assert store.error_reason == "Provisioning failed: boom"


def test_failed_requires_a_reason():
    with pytest.raises(ValueError):
        transition(_store(), StoreStatus.FAILED)


def test_same_status_is_a_no_op():
    store = _store(StoreStatus.READY)
    assert transition(store, StoreStatus.READY) is False


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (StoreStatus.READY, StoreStatus.FAILED),
        (StoreStatus.READY, StoreStatus.PROVISIONING),
        (StoreStatus.FAILED, StoreStatus.READY),
        (StoreStatus.FAILED, StoreStatus.PROVISIONING),
    ],
)
def test_terminal_states_do_not_move(start, target):
    reason = "Provisioning failed: earlier" if start == StoreStatus.FAILED else None
    store = _store(start, error_reason=reason)
    with pytest.raises(InvalidTransition):
        transition(store, target, "late failure")
    assert store.status == start
    assert store.error_reason == reason


@pytest.mark.asyncio
async def test_new_store_defaults(session):
    store = await create_store(session, "Fresh", StoreEngine.MEDUSA, owner_id="carol")

    assert len(store.id) == 8
    int(store.id, 16)
    assert store.status == StoreStatus.PROVISIONING
    assert store.url is None
    assert store.error_reason is None
    assert await count_owner_stores(session, "carol") == 1


@pytest.mark.asyncio
async def test_active_stores_exclude_failed(session, make_store):
    ok = await make_store("ok")
    ready = await make_store("ready", status=StoreStatus.READY)
    await make_store("bad", status=StoreStatus.FAILED, error_reason="Provisioning failed: x")

    active = await list_active_stores(session)

    assert [s.id for s in active] == [ok.id, ready.id]
