"""
Store backend selection (singleton)
"""
import logging

from subtracker.config import get_settings
from subtracker.infrastructure.store.base import SubscriptionStore

logger = logging.getLogger(__name__)

_store = None


def get_store() -> SubscriptionStore:
    """Get or create the configured store (STORE_BACKEND = sql | firebase)"""
    global _store
    if _store is not None:
        return _store

    settings = get_settings()
    backend = settings.STORE_BACKEND.lower()
    if backend == "firebase":
        from subtracker.infrastructure.firebase import get_firebase_app
        from subtracker.infrastructure.store.firebase_store import FirebaseSubscriptionStore
        _store = FirebaseSubscriptionStore(app=get_firebase_app())
    elif backend == "sql":
        from subtracker.infrastructure.db.session import get_session_factory
        from subtracker.infrastructure.store.sql_store import SqlSubscriptionStore
        _store = SqlSubscriptionStore(get_session_factory())
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND!r} (use 'sql' or 'firebase')")

    logger.info("Subscription store backend: %s", backend)
    return _store


def reset_store() -> None:
    """Close and forget the singleton (shutdown, tests)"""
    global _store
    if _store is not None:
        _store.close()
    _store = None
