"""
Subscription Repository - CRUD подписок пользователя + live projection

Репозиторий - единственный источник правды о подписках одного пользователя:
- команды (add / update / delete / set_active) идут в store напрямую;
- projection (отсортированный список) меняется ТОЛЬКО по уведомлениям store,
  поэтому неудачная команда никогда не портит список.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, Optional, Tuple, Union

from subtracker.domain.subscription import (
    Subscription, SubscriptionError, SubscriptionInput, SubscriptionValidationError,
    compute_renewal_date, validate_subscription_input,
)
from subtracker.domain.user import AuthUser
from subtracker.infrastructure.store.base import (
    SERVER_TIMESTAMP, Snapshot, StoreError, SubscriptionStore,
    collection_path, document_path,
)

logger = logging.getLogger(__name__)


class NotAuthenticatedError(SubscriptionError):
    """No current identity"""
    pass


class SubscriptionNotFoundError(SubscriptionError):
    pass


class SubscriptionStoreError(SubscriptionError):
    """Store / transport failure surfaced to the caller"""
    pass


@dataclass(frozen=True)
class ProjectionState:
    """
    Published projection: newest first, replaced atomically on every change

    version увеличивается при каждой публикации (ключ для memoization).
    """
    subscriptions: Tuple[Subscription, ...] = ()
    loading: bool = False
    version: int = 0
    error: Optional[str] = None


Observer = Callable[[ProjectionState], None]
Payload = Union[SubscriptionInput, Dict[str, Any]]


def _as_input(data: Payload) -> SubscriptionInput:
    if isinstance(data, SubscriptionInput):
        return data
    return SubscriptionInput.from_mapping(data or {})


class SubscriptionRepository:
    """
    Repository for one user's subscriptions

    Args:
        store: SubscriptionStore backend
        user: текущая identity (None - не залогинен)
        base_path: корень коллекций в store
        clock: источник "сейчас" для renewalDate (для тестов)
        tz: таймзона календарной арифметики

    Usage:
        repo = SubscriptionRepository(store)
        repo.bind(user)                  # открыть live subscription
        unsubscribe = repo.observe(render)
        sub_id = repo.add({"serviceName": "Netflix", ...})
        repo.bind(None)                  # sign-out: список очищен, listener снят
    """

    def __init__(
        self,
        store: SubscriptionStore,
        user: Optional[AuthUser] = None,
        base_path: str = "subscriptions",
        clock: Optional[Callable[[], datetime]] = None,
        tz: tzinfo = timezone.utc,
    ):
        self.store = store
        self.base_path = base_path
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(self.tz))

        self._user: Optional[AuthUser] = None
        self._state = ProjectionState()
        self._observers: Dict[int, Observer] = {}
        self._next_observer_id = 0
        self._lock = threading.RLock()
        # Bumped on every teardown; callbacks of older listeners are dropped
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

        if user is not None:
            self.bind(user)

    # ========================================================================
    # Projection
    # ========================================================================

    @property
    def user(self) -> Optional[AuthUser]:
        return self._user

    @property
    def state(self) -> ProjectionState:
        return self._state

    @property
    def subscriptions(self) -> Tuple[Subscription, ...]:
        return self._state.subscriptions

    @property
    def loading(self) -> bool:
        return self._state.loading

    def observe(self, callback: Observer) -> Callable[[], None]:
        """
        Register an observer; it receives the current state right away
        and every published state afterwards.

        Returns:
            unsubscribe function
        """
        with self._lock:
            observer_id = self._next_observer_id
            self._next_observer_id += 1
            self._observers[observer_id] = callback
            state = self._state
        callback(state)

        def unsubscribe() -> None:
            with self._lock:
                self._observers.pop(observer_id, None)

        return unsubscribe

    def bind(self, user: Optional[AuthUser]) -> None:
        """
        Identity changed: tear down the current listener and open one for user

        bind(None) - sign-out: список очищается, loading=False.
        Повторный bind той же identity ничего не делает.
        """
        with self._lock:
            if user is not None and self._user is not None and user.uid == self._user.uid \
                    and self._unsubscribe is not None:
                self._user = user
                return

            previous = self._user
            stale = self._detach()
            self._user = user

            if user is None:
                self._publish(ProjectionState(version=self._state.version + 1))
            else:
                generation = self._generation
                self._publish(ProjectionState(loading=True, version=self._state.version + 1))

        # Outside the lock: Firebase close() joins a listener thread that may be
        # waiting on this lock inside _on_change
        if stale is not None:
            stale()
            logger.info("Live subscription closed for uid=%s", previous.uid if previous else None)

        if user is None:
            return

        path = collection_path(self.base_path, user.uid)
        try:
            unsubscribe = self.store.subscribe(
                path,
                on_change=lambda snapshot: self._on_change(generation, snapshot),
                on_error=lambda error: self._on_error(generation, error),
            )
        except StoreError as e:
            self._on_error(generation, e)
            return

        with self._lock:
            superseded = generation != self._generation
            if not superseded:
                self._unsubscribe = unsubscribe
        if superseded:
            # identity changed while the listener was being attached
            unsubscribe()
            return
        logger.info("Live subscription opened for %s", path)

    def close(self) -> None:
        """Dispose: same as sign-out"""
        self.bind(None)

    def _detach(self) -> Optional[Callable[[], None]]:
        """Invalidate the current listener; caller runs the returned unsubscribe unlocked"""
        self._generation += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        return unsubscribe

    def _on_change(self, generation: int, snapshot: Optional[Snapshot]) -> None:
        subscriptions = []
        if snapshot is not None:
            for key, value in snapshot.children():
                if not isinstance(value, dict):
                    logger.warning("Skipping malformed subscription node %s", key)
                    continue
                subscriptions.append(Subscription.from_document(key, value))
        # Stable sort: equal createdAt keep store key order
        subscriptions.sort(key=lambda s: s.sort_key, reverse=True)

        with self._lock:
            if generation != self._generation:
                return
            self._publish(ProjectionState(
                subscriptions=tuple(subscriptions),
                loading=False,
                version=self._state.version + 1,
            ))

    def _on_error(self, generation: int, error: Exception) -> None:
        message = getattr(error, "message", None) or "Failed to load subscriptions. Please try again."
        logger.error("Error loading subscriptions: %s", error)
        with self._lock:
            if generation != self._generation:
                return
            self._publish(replace(
                self._state, loading=False, error=message, version=self._state.version + 1,
            ))

    def _publish(self, state: ProjectionState) -> None:
        with self._lock:
            self._state = state
            observers = list(self._observers.values())
            for callback in observers:
                try:
                    callback(state)
                except Exception:
                    logger.exception("Projection observer failed")

    # ========================================================================
    # Commands
    # ========================================================================

    def _require_user(self, action: str) -> AuthUser:
        if self._user is None:
            raise NotAuthenticatedError(f"You must be logged in to {action} subscriptions.")
        return self._user

    @staticmethod
    def _require_id(subscription_id: Optional[str]) -> str:
        if not subscription_id or not str(subscription_id).strip():
            raise SubscriptionValidationError("Subscription ID is required.")
        return str(subscription_id).strip()

    def _build_body(self, data: Payload) -> Dict[str, Any]:
        payload = _as_input(data)
        body = validate_subscription_input(payload)
        body["renewalDate"] = compute_renewal_date(
            body["billingCycle"], payload.renewal_date, now=self.clock(), tz=self.tz,
        )
        return body

    def add(self, data: Payload) -> str:
        """
        Создать подписку

        Returns:
            id новой подписки

        Raises:
            NotAuthenticatedError, SubscriptionValidationError, SubscriptionStoreError
        """
        user = self._require_user("add")
        try:
            body = self._build_body(data)
            body["createdAt"] = SERVER_TIMESTAMP

            parent = collection_path(self.base_path, user.uid)
            subscription_id = self.store.create(parent)
            self.store.write(document_path(self.base_path, user.uid, subscription_id), body)
        except SubscriptionValidationError as e:
            logger.info("Add subscription rejected: %s", e.message)
            raise
        except StoreError as e:
            logger.error("Error adding subscription: %s", e)
            raise SubscriptionStoreError(e.message) from e

        logger.info("Subscription %s added for uid=%s", subscription_id, user.uid)
        return subscription_id

    def update(self, subscription_id: str, data: Payload) -> None:
        """
        Перезаписать все изменяемые поля (createdAt не трогается)
        """
        user = self._require_user("update")
        subscription_id = self._require_id(subscription_id)
        try:
            body = self._build_body(data)
            self.store.update(document_path(self.base_path, user.uid, subscription_id), body)
        except SubscriptionValidationError as e:
            logger.info("Update of %s rejected: %s", subscription_id, e.message)
            raise
        except StoreError as e:
            logger.error("Error updating subscription %s: %s", subscription_id, e)
            raise SubscriptionStoreError(e.message) from e

    def delete(self, subscription_id: str) -> None:
        """Удалить подписку; удаление несуществующего id - не ошибка"""
        user = self._require_user("delete")
        subscription_id = self._require_id(subscription_id)
        try:
            self.store.delete(document_path(self.base_path, user.uid, subscription_id))
        except StoreError as e:
            logger.error("Error deleting subscription %s: %s", subscription_id, e)
            raise SubscriptionStoreError("Failed to delete subscription. Please try again.") from e

    def get(self, subscription_id: str) -> Subscription:
        user = self._require_user("view")
        subscription_id = self._require_id(subscription_id)
        try:
            snapshot = self.store.read_once(document_path(self.base_path, user.uid, subscription_id))
        except StoreError as e:
            logger.error("Error getting subscription %s: %s", subscription_id, e)
            raise SubscriptionStoreError(e.message) from e

        if snapshot is None or not isinstance(snapshot.value, dict):
            raise SubscriptionNotFoundError("Subscription not found.")
        return Subscription.from_document(snapshot.key, snapshot.value)

    def set_active(self, subscription_id: str, is_active: bool) -> None:
        """Partial write: only isActive changes"""
        user = self._require_user("update")
        subscription_id = self._require_id(subscription_id)
        try:
            self.store.update(
                document_path(self.base_path, user.uid, subscription_id),
                {"isActive": bool(is_active)},
            )
        except StoreError as e:
            logger.error("Error toggling subscription status %s: %s", subscription_id, e)
            raise SubscriptionStoreError("Failed to update subscription status. Please try again.") from e
