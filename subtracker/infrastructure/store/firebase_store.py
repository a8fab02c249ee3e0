"""
Subscription Store on top of Firebase Realtime Database (firebase_admin.db)
"""
import logging
import threading
from typing import Any, Dict, Optional

from firebase_admin import db as firebase_db
from firebase_admin.exceptions import FirebaseError

from subtracker.infrastructure.store.base import (
    ChangeCallback, ErrorCallback, Snapshot, StoreError, SubscriptionStore,
    Unsubscribe, generate_push_id, split_path,
)

logger = logging.getLogger(__name__)


class FirebaseSubscriptionStore(SubscriptionStore):
    """
    Realtime Database adapter

    SERVER_TIMESTAMP ({".sv": "timestamp"}) передаётся как есть -
    его резолвит сам сервер.
    """

    def __init__(self, app=None):
        self.app = app

    def _ref(self, path: str):
        return firebase_db.reference(path.strip("/"), app=self.app)

    def create(self, parent_path: str) -> str:
        # Reference.push() writes an empty value; the key is generated locally instead
        return generate_push_id()

    def write(self, path: str, value: Dict[str, Any]) -> None:
        self._call("write", path, lambda ref: ref.set(value))

    def update(self, path: str, values: Dict[str, Any]) -> None:
        self._call("update", path, lambda ref: ref.update(values))

    def delete(self, path: str) -> None:
        self._call("delete", path, lambda ref: ref.delete())

    def read_once(self, path: str) -> Optional[Snapshot]:
        value = self._call("read", path, lambda ref: ref.get())
        if value is None:
            return None
        _, key = split_path(path)
        return Snapshot(key=key, value=value)

    def subscribe(self, path: str, on_change: ChangeCallback, on_error: ErrorCallback) -> Unsubscribe:
        active = threading.Event()
        active.set()

        def handle_event(event) -> None:
            # Любое событие (put/patch) -> перечитать коллекцию целиком
            if not active.is_set():
                return
            try:
                snapshot = self.read_once(path)
            except StoreError as e:
                if active.is_set():
                    on_error(e)
                return
            if active.is_set():
                on_change(snapshot)

        try:
            registration = self._ref(path).listen(handle_event)
        except (FirebaseError, ValueError) as e:
            logger.error("Firebase listen failed on %s: %s", path, e)
            raise StoreError("Failed to load subscriptions. Please try again.") from e

        def unsubscribe() -> None:
            active.clear()
            registration.close()

        return unsubscribe

    def _call(self, operation: str, path: str, fn):
        try:
            return fn(self._ref(path))
        except (FirebaseError, ValueError) as e:
            logger.error("Firebase %s failed on %s: %s", operation, path, e)
            raise StoreError(f"Store {operation} failed. Please try again.") from e
