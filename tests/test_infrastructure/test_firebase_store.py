"""
Tests for the Realtime Database store adapter (firebase_admin.db is patched)
"""
from unittest.mock import MagicMock, Mock, patch

import pytest
from firebase_admin import exceptions as firebase_exceptions

from subtracker.infrastructure.store.base import SERVER_TIMESTAMP, Snapshot, StoreError
from subtracker.infrastructure.store.firebase_store import FirebaseSubscriptionStore


@pytest.fixture
def refs():
    """path -> mocked db.Reference"""
    created = {}

    def reference(path, app=None):
        return created.setdefault(path, MagicMock(name=path))

    with patch("subtracker.infrastructure.store.firebase_store.firebase_db.reference", side_effect=reference):
        yield created


@pytest.fixture
def fb_store(refs):
    return FirebaseSubscriptionStore(app=Mock())


def test_create_returns_push_id_without_writing(fb_store, refs):
    key = fb_store.create("subscriptions/u1")

    assert len(key) == 20
    assert refs == {}


def test_write_passes_server_timestamp_through(fb_store, refs):
    fb_store.write("subscriptions/u1/s1", {"serviceName": "Netflix", "createdAt": SERVER_TIMESTAMP})

    refs["subscriptions/u1/s1"].set.assert_called_once_with(
        {"serviceName": "Netflix", "createdAt": {".sv": "timestamp"}}
    )


def test_update_and_delete(fb_store, refs):
    fb_store.update("subscriptions/u1/s1", {"isActive": False})
    fb_store.delete("subscriptions/u1/s1")

    ref = refs["subscriptions/u1/s1"]
    ref.update.assert_called_once_with({"isActive": False})
    ref.delete.assert_called_once_with()


def test_read_once(fb_store, refs):
    fb_store._ref("subscriptions/u1/s1").get.return_value = {"price": 10}
    fb_store._ref("subscriptions/u1/none").get.return_value = None

    assert fb_store.read_once("subscriptions/u1/s1") == Snapshot(key="s1", value={"price": 10})
    assert fb_store.read_once("subscriptions/u1/none") is None


def test_sdk_errors_become_store_errors(fb_store, refs):
    fb_store._ref("subscriptions/u1/s1").set.side_effect = firebase_exceptions.PermissionDeniedError(
        "Permission denied"
    )

    with pytest.raises(StoreError, match="Store write failed. Please try again."):
        fb_store.write("subscriptions/u1/s1", {"x": 1})


def test_subscribe_rereads_collection_on_events(fb_store, refs):
    ref = fb_store._ref("subscriptions/u1")
    ref.get.return_value = {"s1": {"price": 10}}
    on_change = Mock()
    on_error = Mock()

    unsubscribe = fb_store.subscribe("subscriptions/u1", on_change, on_error)
    handler = ref.listen.call_args.args[0]

    handler(Mock(event_type="put", path="/", data=None))
    on_change.assert_called_once_with(Snapshot(key="u1", value={"s1": {"price": 10}}))

    unsubscribe()
    ref.listen.return_value.close.assert_called_once_with()

    handler(Mock(event_type="patch", path="/s2", data={}))
    assert on_change.call_count == 1
    on_error.assert_not_called()


def test_subscribe_read_failure_goes_to_on_error(fb_store, refs):
    ref = fb_store._ref("subscriptions/u1")
    ref.get.side_effect = ValueError("bad path")
    on_change = Mock()
    on_error = Mock()

    fb_store.subscribe("subscriptions/u1", on_change, on_error)
    ref.listen.call_args.args[0](Mock())

    on_change.assert_not_called()
    assert isinstance(on_error.call_args.args[0], StoreError)
