"""
Auth Gateway - identity provider contract + local implementation

LocalAuthGateway хранит аккаунты в таблице users (passlib-хэши),
одноразовые коды (подтверждение email, сброс пароля) - в auth_tokens.
Federated sign-in проверяет Google/Firebase ID token через firebase_admin.

Ошибки - AuthError с кодом в стиле провайдера ("auth/invalid-credential"),
текст для пользователя даёт auth_error_message().
"""
import logging
import secrets
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from subtracker.auth import (
    get_user_by_email, get_user_by_uid, hash_password, is_valid_email,
    normalize_email, verify_password,
)
from subtracker.config import Settings, get_settings
from subtracker.domain.user import AuthUser
from subtracker.infrastructure.db.models import AuthToken, User
from subtracker.infrastructure.mail import Mailer

logger = logging.getLogger(__name__)

TOKEN_VERIFY_EMAIL = "VERIFY_EMAIL"
TOKEN_RESET_PASSWORD = "RESET_PASSWORD"

PROVIDER_PASSWORD = "password"
PROVIDER_GOOGLE = "google"

AUTH_ERROR_MESSAGES = {
    "auth/invalid-email": "Please enter a valid email address.",
    "auth/weak-password": "Password must be at least {min_length} characters.",
    "auth/invalid-credential": "Invalid email or password.",
    "auth/user-disabled": "This account has been disabled.",
    "auth/email-already-in-use": "This email is already in use.",
    "auth/email-not-verified": "Please verify your email.",
    "auth/user-not-found": "No user found. Please sign up first.",
    "auth/network-request-failed": "Network error. Please check your internet connection and try again.",
    "auth/invalid-id-token": "An error occurred during Google sign-in. Please try again.",
    "auth/account-exists-with-different-credential": (
        "An account already exists with the same email address but different sign-in credentials."
    ),
    "auth/invalid-action-code": "This link is invalid or has expired.",
}


class AuthError(Exception):
    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


def auth_error_message(error: AuthError, default: str, min_length: int = 6) -> str:
    """User-facing text for an AuthError (default for unknown codes)"""
    template = AUTH_ERROR_MESSAGES.get(error.code)
    if template is None:
        return default
    return template.format(min_length=min_length)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    # SQLite returns naive datetimes; values are always written in UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _to_auth_user(user: User) -> AuthUser:
    return AuthUser(
        uid=user.uid,
        email=user.email,
        email_verified=bool(user.email_verified),
        provider=user.provider,
    )


class AuthGateway(ABC):
    """Identity provider contract consumed by pages and the session layer"""

    @abstractmethod
    def current_user(self, uid: Optional[str]) -> Optional[AuthUser]:
        ...

    @abstractmethod
    def sign_in(self, email: str, password: str) -> AuthUser:
        ...

    @abstractmethod
    def sign_up(self, email: str, password: str) -> AuthUser:
        ...

    @abstractmethod
    def sign_out(self, uid: str) -> None:
        ...

    @abstractmethod
    def send_password_reset(self, email: str) -> None:
        ...

    @abstractmethod
    def sign_in_with_federated_provider(self, id_token: str) -> AuthUser:
        ...

    @abstractmethod
    def resend_verification_email(self, uid: str) -> None:
        ...


def firebase_token_verifier(id_token: str) -> Dict[str, Any]:
    """Verify a Google/Firebase ID token with the Admin SDK"""
    from firebase_admin import auth as firebase_auth
    from subtracker.infrastructure.firebase import get_firebase_app

    return firebase_auth.verify_id_token(id_token, app=get_firebase_app())


class LocalAuthGateway(AuthGateway):
    """
    Args:
        session_factory: sessionmaker (gateway открывает свои сессии)
        mailer: доставка писем (Mailer)
        settings: Settings (MIN_PASSWORD_LENGTH, AUTH_TOKEN_TTL_HOURS, APP_BASE_URL)
        token_verifier: id_token -> claims (по умолчанию firebase_admin)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        mailer: Optional[Mailer] = None,
        settings: Optional[Settings] = None,
        token_verifier: Optional[Callable[[str], Dict[str, Any]]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.mailer = mailer or Mailer(self.settings)
        self.token_verifier = token_verifier or firebase_token_verifier

    # === Identity ===

    def current_user(self, uid: Optional[str]) -> Optional[AuthUser]:
        if not uid:
            return None
        with self.session_factory() as db:
            user = get_user_by_uid(db, uid)
            if user is None or user.is_disabled:
                return None
            return _to_auth_user(user)

    def sign_in(self, email: str, password: str) -> AuthUser:
        """
        Проверка email + пароль

        Returns the user even when the email is not verified yet -
        решение «пускать или нет» принимает страница.
        """
        with self.session_factory() as db:
            user = get_user_by_email(db, email)
            if user is None or not verify_password(password or "", user.password_hash):
                logger.info("Sign-in failed for %s", normalize_email(email))
                raise AuthError("auth/invalid-credential")
            if user.is_disabled:
                raise AuthError("auth/user-disabled")

            user.last_seen_at = _utcnow()
            db.commit()
            logger.info("User %s signed in", user.uid)
            return _to_auth_user(user)

    def sign_up(self, email: str, password: str) -> AuthUser:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise AuthError("auth/invalid-email")
        if len(password or "") < self.settings.MIN_PASSWORD_LENGTH:
            raise AuthError("auth/weak-password")

        with self.session_factory() as db:
            if get_user_by_email(db, email) is not None:
                raise AuthError("auth/email-already-in-use")

            user = User(
                uid=secrets.token_hex(14),
                email=email,
                password_hash=hash_password(password),
                provider=PROVIDER_PASSWORD,
                email_verified=False,
                is_disabled=False,
            )
            db.add(user)
            db.flush()
            token = self._issue_token(db, user, TOKEN_VERIFY_EMAIL)
            db.commit()
            auth_user = _to_auth_user(user)

        logger.info("User %s signed up", auth_user.uid)
        self._send_verification(email, token)
        return auth_user

    def sign_out(self, uid: str) -> None:
        with self.session_factory() as db:
            user = get_user_by_uid(db, uid)
            if user is not None:
                user.last_seen_at = _utcnow()
                db.commit()
        logger.info("User %s signed out", uid)

    def sign_in_with_federated_provider(self, id_token: str) -> AuthUser:
        """
        Google sign-in: ID token -> local account (email считается подтверждённым)
        """
        if not id_token:
            raise AuthError("auth/invalid-id-token")
        try:
            claims = self.token_verifier(id_token)
        except AuthError:
            raise
        except Exception as e:
            logger.warning("ID token verification failed: %s", e)
            raise AuthError("auth/invalid-id-token") from e

        email = normalize_email(claims.get("email"))
        if not is_valid_email(email):
            raise AuthError("auth/invalid-id-token")

        with self.session_factory() as db:
            user = get_user_by_email(db, email)
            if user is None:
                user = User(
                    uid=claims.get("uid") or claims.get("sub") or secrets.token_hex(14),
                    email=email,
                    password_hash=None,
                    provider=PROVIDER_GOOGLE,
                    email_verified=True,
                    is_disabled=False,
                )
                db.add(user)
                logger.info("Federated account created for %s", email)
            elif user.provider != PROVIDER_GOOGLE:
                raise AuthError("auth/account-exists-with-different-credential")
            elif user.is_disabled:
                raise AuthError("auth/user-disabled")

            user.last_seen_at = _utcnow()
            db.commit()
            return _to_auth_user(user)

    # === Email verification ===

    def resend_verification_email(self, uid: str) -> None:
        with self.session_factory() as db:
            user = get_user_by_uid(db, uid) if uid else None
            if user is None:
                raise AuthError("auth/user-not-found")
            token = self._issue_token(db, user, TOKEN_VERIFY_EMAIL)
            db.commit()
            email = user.email
        self._send_verification(email, token)

    def verify_email(self, token: str) -> AuthUser:
        with self.session_factory() as db:
            user = self._consume_token(db, token, TOKEN_VERIFY_EMAIL)
            user.email_verified = True
            db.commit()
            logger.info("Email verified for %s", user.uid)
            return _to_auth_user(user)

    # === Password reset ===

    def send_password_reset(self, email: str) -> None:
        """
        Issue a reset link if the account exists.

        Никогда не сообщает, существует ли аккаунт: для неизвестного email
        просто ничего не происходит.
        """
        with self.session_factory() as db:
            user = get_user_by_email(db, email)
            if user is None or user.provider != PROVIDER_PASSWORD:
                logger.info("Password reset requested for unknown account")
                return
            token = self._issue_token(db, user, TOKEN_RESET_PASSWORD)
            db.commit()
            address = user.email

        link = f"{self.settings.APP_BASE_URL}/reset-password?token={token}"
        try:
            self.mailer.send(
                address,
                "Reset your password",
                f"Follow this link to reset your password:\n\n{link}\n\n"
                "If you didn't ask to reset your password, you can ignore this email.",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Password reset email to %s failed: %s", address, e)
            raise AuthError("auth/network-request-failed") from e

    def confirm_password_reset(self, token: str, new_password: str) -> None:
        if len(new_password or "") < self.settings.MIN_PASSWORD_LENGTH:
            raise AuthError("auth/weak-password")
        with self.session_factory() as db:
            user = self._consume_token(db, token, TOKEN_RESET_PASSWORD)
            user.password_hash = hash_password(new_password)
            db.commit()
            logger.info("Password reset for %s", user.uid)

    # === Tokens ===

    def _issue_token(self, db: Session, user: User, purpose: str) -> str:
        token = secrets.token_urlsafe(32)
        db.add(AuthToken(
            token=token,
            user_id=user.id,
            purpose=purpose,
            expires_at=_utcnow() + timedelta(hours=self.settings.AUTH_TOKEN_TTL_HOURS),
        ))
        return token

    def _consume_token(self, db: Session, token: str, purpose: str) -> User:
        record = db.query(AuthToken).filter(
            AuthToken.token == (token or ""),
            AuthToken.purpose == purpose,
        ).first()
        if record is None or record.used_at is not None or _as_utc(record.expires_at) < _utcnow():
            raise AuthError("auth/invalid-action-code")

        user = db.query(User).filter(User.id == record.user_id).first()
        if user is None:
            raise AuthError("auth/invalid-action-code")
        record.used_at = _utcnow()
        return user

    def _send_verification(self, email: str, token: str) -> None:
        link = f"{self.settings.APP_BASE_URL}/verify-email?token={token}"
        try:
            self.mailer.send(
                email,
                "Verify your email",
                f"Welcome to SubTracker!\n\nConfirm your email address:\n\n{link}\n",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Verification email to %s failed: %s", email, e)
            raise AuthError("auth/network-request-failed") from e
