"""
Subscription Store contract - keyed per-user document collections

Store моделирует realtime document database:
- subscriptions/{uid}            - коллекция пользователя
- subscriptions/{uid}/{sub_id}   - документ подписки

Реализации: SqlSubscriptionStore (SQLAlchemy + in-process notifications),
FirebaseSubscriptionStore (Firebase Realtime Database).
"""
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

# Placeholder resolved by the backend to epoch ms at write time
# (same shape as the Realtime Database server value)
SERVER_TIMESTAMP = {".sv": "timestamp"}

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

ChangeCallback = Callable[[Optional["Snapshot"]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class StoreError(Exception):
    """Backend / transport failure (permission denied, network, misconfiguration)"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable view of a store node

    value - dict документа, либо dict {child_key: document} для коллекции.
    """
    key: str
    value: Any

    def exists(self) -> bool:
        return self.value is not None

    def children(self) -> Iterator[Tuple[str, Any]]:
        """(key, value) pairs of a collection node in key order"""
        if not isinstance(self.value, dict):
            return iter(())
        return iter(sorted(self.value.items()))


def collection_path(base_path: str, uid: str) -> str:
    return f"{base_path}/{uid}"


def document_path(base_path: str, uid: str, subscription_id: str) -> str:
    return f"{base_path}/{uid}/{subscription_id}"


def split_path(path: str) -> Tuple[str, str]:
    """'a/b/c' -> ('a/b', 'c')"""
    path = path.strip("/")
    if "/" not in path:
        return "", path
    parent, key = path.rsplit("/", 1)
    return parent, key


def generate_push_id(now_ms: Optional[int] = None) -> str:
    """
    Time-ordered 20-char key (8 chars of timestamp + 12 random chars).

    Lexicographic order of keys follows creation order.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    time_chars = []
    for _ in range(8):
        time_chars.append(PUSH_CHARS[now_ms % 64])
        now_ms //= 64
    random_chars = [secrets.choice(PUSH_CHARS) for _ in range(12)]
    return "".join(reversed(time_chars)) + "".join(random_chars)


def resolve_server_values(value: Any, now_ms: int) -> Any:
    """Replace SERVER_TIMESTAMP placeholders (recursively) with now_ms"""
    if value == SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now_ms) for k, v in value.items()}
    return value


class SubscriptionStore(ABC):
    """
    Keyed document store with point read/write, delete and push-based change
    subscription.

    All paths are slash-separated, without leading slash.
    """

    @abstractmethod
    def create(self, parent_path: str) -> str:
        """Reserve a new child key under parent_path (nothing is written)"""

    @abstractmethod
    def write(self, path: str, value: Dict[str, Any]) -> None:
        """Full overwrite of the node at path"""

    @abstractmethod
    def update(self, path: str, values: Dict[str, Any]) -> None:
        """Partial write: only the listed fields of the node change"""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove the node; removing a missing node is a no-op"""

    @abstractmethod
    def read_once(self, path: str) -> Optional[Snapshot]:
        """Current node value, None when absent"""

    @abstractmethod
    def subscribe(
        self,
        path: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """
        Standing listener on a collection node

        on_change получает snapshot сразу после подписки и после каждого
        изменения под path (None - коллекция пуста). Возвращает функцию
        отписки; после её вызова callbacks больше не приходят.
        """

    def close(self) -> None:
        """Release backend resources"""
