"""
FastAPI dependencies (DB session, identity, session registry, flash messages)
"""
import logging
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, Request, status

from subtracker.application.session import SessionRegistry, UserSession
from subtracker.config import get_settings
from subtracker.domain.user import AuthUser
from subtracker.infrastructure.auth.gateway import LocalAuthGateway
from subtracker.infrastructure.db.session import get_db as _get_db
from subtracker.infrastructure.db.session import get_session_factory
from subtracker.infrastructure.store.factory import get_store

logger = logging.getLogger(__name__)

# Re-export get_db для удобства
get_db = _get_db

SESSION_UID = "uid"
SESSION_PENDING_UID = "pending_uid"
SESSION_FLASH = "_flash"

_gateway = None
_registry = None


def get_auth_gateway() -> LocalAuthGateway:
    """Singleton auth gateway (override в тестах через dependency_overrides)"""
    global _gateway
    if _gateway is None:
        _gateway = LocalAuthGateway(get_session_factory())
    return _gateway


def get_session_registry() -> SessionRegistry:
    """Singleton registry of live user sessions"""
    global _registry
    if _registry is None:
        settings = get_settings()
        _registry = SessionRegistry(
            get_store,
            base_path=settings.SUBSCRIPTIONS_BASE_PATH,
            tz=ZoneInfo(settings.TIMEZONE),
            idle_ttl=settings.SESSION_IDLE_TTL_MINUTES * 60 or None,
        )
    return _registry


def shutdown_sessions() -> None:
    """Close every live session (app shutdown)"""
    global _registry
    if _registry is not None:
        _registry.close_all()
    _registry = None


def require_user(request: Request) -> bool:
    """
    Проверка аутентификации через session

    Returns:
        True если пользователь залогинен
        False если не залогинен

    Usage в routes:
        if not require_user(request):
            return RedirectResponse("/login")
    """
    return bool(request.session.get(SESSION_UID))


def load_user(request: Request, gateway: LocalAuthGateway) -> AuthUser | None:
    """
    Текущий пользователь из cookie session, None если не залогинен.

    A uid whose account is gone or disabled is dropped from the session.
    """
    uid = request.session.get(SESSION_UID)
    if not uid:
        return None
    user = gateway.current_user(uid)
    if user is None:
        request.session.pop(SESSION_UID, None)
    return user


def open_user_session(
    request: Request,
    gateway: LocalAuthGateway,
    registry: SessionRegistry,
) -> UserSession | None:
    """Live session for the signed-in user (открывается лениво), None если не залогинен"""
    user = load_user(request, gateway)
    if user is None:
        return None
    return registry.open(user)


def get_current_session(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
) -> UserSession:
    """
    Сессия текущего пользователя (для API endpoints)

    Raises:
        HTTPException(401): если не залогинен

    Usage:
        @router.get("/")
        def list_subscriptions(session: UserSession = Depends(get_current_session)):
            ...
    """
    session = open_user_session(request, gateway, registry)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return session


# === Flash messages (toasts) ===

def flash(request: Request, level: str, message: str) -> None:
    """Queue a toast for the next rendered page (level: success | error)"""
    messages = list(request.session.get(SESSION_FLASH, []))
    messages.append({"level": level, "message": message})
    request.session[SESSION_FLASH] = messages


def pop_flashes(request: Request) -> list[dict]:
    return request.session.pop(SESSION_FLASH, None) or []
