"""
Local Subscription Store: document nodes in the store_documents table

Каждый документ - строка (path, parent_path, key, value JSON).
Change notifications рассылаются in-process после commit: listener,
подписанный на коллекцию, получает полный snapshot коллекции.
"""
import copy
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subtracker.infrastructure.db.models import StoreDocument
from subtracker.infrastructure.store.base import (
    ChangeCallback, ErrorCallback, Snapshot, StoreError, SubscriptionStore,
    Unsubscribe, generate_push_id, resolve_server_values, split_path,
)

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    id: int
    path: str
    on_change: ChangeCallback
    on_error: ErrorCallback
    active: bool = True
    # read + on_change of one listener never interleave; the last delivery sees the latest commit
    delivery_lock: Any = field(default_factory=threading.RLock)


class SqlSubscriptionStore(SubscriptionStore):
    """
    SQLAlchemy-backed store

    Args:
        session_factory: sessionmaker; store opens a short-lived session per call
        clock: epoch-ms clock for SERVER_TIMESTAMP and push ids (для тестов)
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Optional[Callable[[], int]] = None):
        self.session_factory = session_factory
        self.clock = clock or (lambda: int(time.time() * 1000))
        self._listeners: Dict[int, _Listener] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    # === Point operations ===

    def create(self, parent_path: str) -> str:
        return generate_push_id(self.clock())

    def write(self, path: str, value: Dict[str, Any]) -> None:
        path = path.strip("/")
        parent, key = split_path(path)
        resolved = resolve_server_values(copy.deepcopy(value), self.clock())

        with self._session("write", path) as db:
            doc = db.get(StoreDocument, path)
            if doc is None:
                db.add(StoreDocument(path=path, parent_path=parent, key=key, value=resolved))
            else:
                doc.value = resolved
            db.commit()

        self._notify(parent, path)

    def update(self, path: str, values: Dict[str, Any]) -> None:
        path = path.strip("/")
        parent, key = split_path(path)
        resolved = resolve_server_values(copy.deepcopy(values), self.clock())

        with self._session("update", path) as db:
            doc = db.get(StoreDocument, path)
            if doc is None:
                # Как и Realtime Database: update несуществующего узла создаёт его
                db.add(StoreDocument(path=path, parent_path=parent, key=key, value=resolved))
            else:
                # New dict object so the JSON column is flagged dirty
                doc.value = {**doc.value, **resolved}
            db.commit()

        self._notify(parent, path)

    def delete(self, path: str) -> None:
        path = path.strip("/")
        parent, _ = split_path(path)

        with self._session("delete", path) as db:
            deleted = db.query(StoreDocument).filter(
                or_(StoreDocument.path == path, StoreDocument.parent_path == path)
            ).delete(synchronize_session=False)
            db.commit()

        if deleted:
            self._notify(parent, path)

    def read_once(self, path: str) -> Optional[Snapshot]:
        path = path.strip("/")
        with self._session("read", path) as db:
            return self._read(db, path)

    # === Change subscription ===

    def subscribe(self, path: str, on_change: ChangeCallback, on_error: ErrorCallback) -> Unsubscribe:
        listener = _Listener(
            id=next(self._ids), path=path.strip("/"), on_change=on_change, on_error=on_error,
        )
        with self._lock:
            self._listeners[listener.id] = listener
        logger.debug("Store listener %d attached to %s", listener.id, listener.path)

        self._deliver(listener)

        def unsubscribe() -> None:
            with self._lock:
                listener.active = False
                self._listeners.pop(listener.id, None)
            logger.debug("Store listener %d detached from %s", listener.id, listener.path)

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            for listener in self._listeners.values():
                listener.active = False
            self._listeners.clear()

    # === Internals ===

    def _session(self, operation: str, path: str) -> "_StoreSession":
        return _StoreSession(self.session_factory, operation, path)

    @staticmethod
    def _read(db: Session, path: str) -> Optional[Snapshot]:
        _, key = split_path(path)
        doc = db.get(StoreDocument, path)
        if doc is not None:
            return Snapshot(key=key, value=copy.deepcopy(doc.value))

        children = db.query(StoreDocument).filter(
            StoreDocument.parent_path == path
        ).order_by(StoreDocument.key).all()
        if not children:
            return None
        return Snapshot(key=key, value={c.key: copy.deepcopy(c.value) for c in children})

    def _notify(self, *paths: str) -> None:
        with self._lock:
            targets: List[_Listener] = [
                l for l in self._listeners.values() if l.path in paths
            ]
        for listener in targets:
            self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        with listener.delivery_lock:
            try:
                snapshot = self.read_once(listener.path)
            except StoreError as e:
                if listener.active:
                    listener.on_error(e)
                return

            if not listener.active:
                return
            try:
                listener.on_change(snapshot)
            except Exception:
                # Ошибка подписчика не должна ломать запись
                logger.exception("Store listener %d failed on %s", listener.id, listener.path)


class _StoreSession:
    """Context manager: session per call, SQLAlchemy errors -> StoreError"""

    def __init__(self, session_factory, operation: str, path: str):
        self.session_factory = session_factory
        self.operation = operation
        self.path = path
        self.db: Optional[Session] = None

    def __enter__(self) -> Session:
        self.db = self.session_factory()
        return self.db

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None:
                self.db.rollback()
        finally:
            self.db.close()

        if exc_type is not None and issubclass(exc_type, SQLAlchemyError):
            logger.error("Store %s failed on %s: %s", self.operation, self.path, exc)
            raise StoreError(f"Store {self.operation} failed. Please try again.") from exc
        return False
