"""
User session context - explicit owner of the live projection

UserSession создаётся при входе и закрывается при выходе; вместо
глобального состояния (current user / current list) страницы получают
сессию из SessionRegistry.
"""
import logging
import threading
import time
from datetime import timezone, tzinfo
from typing import Callable, Dict, List, Optional

from subtracker.application.subscriptions import ProjectionState, SubscriptionRepository
from subtracker.domain.user import AuthUser
from subtracker.infrastructure.store.base import SubscriptionStore
from subtracker.readmodels.subscription_summary import (
    SubscriptionFilters, SubscriptionSummary, SummaryCache,
)

logger = logging.getLogger(__name__)


class UserSession:
    """
    One authenticated user's repository + derived summaries
    """

    def __init__(self, user: AuthUser, repository: SubscriptionRepository):
        self.user = user
        self.repository = repository
        self._cache = SummaryCache()
        self.closed = False
        self.last_used = 0.0

    @property
    def state(self) -> ProjectionState:
        return self.repository.state

    def summary(self, filters: Optional[SubscriptionFilters] = None) -> SubscriptionSummary:
        """Filtered list + totals for the current projection"""
        state = self.repository.state
        return self._cache.get(state.version, state.subscriptions, filters or SubscriptionFilters())

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.repository.close()


class SessionRegistry:
    """
    Sessions keyed by uid

    Args:
        store_factory: returns the SubscriptionStore (singleton get_store в проде)
        base_path: корень коллекций подписок
        tz: таймзона для renewalDate
        idle_ttl: секунды без обращений, после которых сессия закрывается
            при следующем open() (None - не закрывать)
        clock: monotonic seconds (для тестов)
    """

    def __init__(
        self,
        store_factory: Callable[[], SubscriptionStore],
        base_path: str = "subscriptions",
        tz: tzinfo = timezone.utc,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store_factory = store_factory
        self.base_path = base_path
        self.tz = tz
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._sessions: Dict[str, UserSession] = {}
        self._lock = threading.Lock()

    def open(self, user: AuthUser) -> UserSession:
        """Existing session for user.uid, or a new one with a bound repository"""
        now = self.clock()
        with self._lock:
            expired = self._pop_expired(now, keep=user.uid)
            session = self._sessions.get(user.uid)
            created = session is None or session.closed
            if created:
                repository = SubscriptionRepository(
                    self.store_factory(), base_path=self.base_path, tz=self.tz,
                )
                session = UserSession(user, repository)
                self._sessions[user.uid] = session
            else:
                # свежие email / email_verified из gateway
                session.user = user
            session.last_used = now

        self._close(expired)
        # same uid: bind only swaps the identity object
        session.repository.bind(user)
        if created:
            logger.info("Session opened for uid=%s", user.uid)
        return session

    def get(self, uid: str) -> Optional[UserSession]:
        with self._lock:
            return self._sessions.get(uid)

    def close(self, uid: str) -> None:
        with self._lock:
            session = self._sessions.pop(uid, None)
        if session is not None:
            session.close()
            logger.info("Session closed for uid=%s", uid)

    def evict_idle(self) -> int:
        """Close every session idle longer than idle_ttl; returns how many"""
        with self._lock:
            expired = self._pop_expired(self.clock())
        self._close(expired)
        return len(expired)

    def close_all(self) -> None:
        with self._lock:
            sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            session.close()

    def _pop_expired(self, now: float, keep: Optional[str] = None) -> List[UserSession]:
        if self.idle_ttl is None:
            return []
        expired = [
            uid for uid, session in self._sessions.items()
            if uid != keep and now - session.last_used > self.idle_ttl
        ]
        return [self._sessions.pop(uid) for uid in expired]

    @staticmethod
    def _close(sessions: List[UserSession]) -> None:
        # repository.close() unsubscribes from the store; never under the registry lock
        for session in sessions:
            session.close()
            logger.info("Idle session closed for uid=%s", session.user.uid)
