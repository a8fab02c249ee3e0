"""
Tests for LocalAuthGateway (accounts, email verification, password reset, federated sign-in)
"""
from datetime import datetime, timedelta, timezone

import pytest

from subtracker.config import Settings
from subtracker.infrastructure.auth.gateway import (
    AuthError, LocalAuthGateway, auth_error_message,
)
from subtracker.infrastructure.db.models import AuthToken, User

from conftest import FakeMailer


@pytest.fixture
def settings():
    return Settings(APP_BASE_URL="http://testserver", MIN_PASSWORD_LENGTH=6)


@pytest.fixture
def claims():
    return {"uid": "google-uid-1", "email": "carol@gmail.com"}


@pytest.fixture
def gateway(session_factory, mailer, settings, claims):
    return LocalAuthGateway(
        session_factory, mailer=mailer, settings=settings,
        token_verifier=lambda token: claims,
    )


def _code(call):
    with pytest.raises(AuthError) as exc:
        call()
    return exc.value.code


# === Sign up / sign in ===

def test_sign_up_creates_unverified_user_and_mails_link(gateway, mailer):
    user = gateway.sign_up("  Dana@Example.com ", "secret1")

    assert user.email == "dana@example.com"
    assert user.email_verified is False
    assert user.provider == "password"
    assert len(mailer.sent) == 1
    to, subject, body = mailer.sent[0]
    assert to == "dana@example.com"
    assert "http://testserver/verify-email?token=" in body


def test_sign_up_validation(gateway):
    gateway.sign_up("dana@example.com", "secret1")

    assert _code(lambda: gateway.sign_up("not-an-email", "secret1")) == "auth/invalid-email"
    assert _code(lambda: gateway.sign_up("eve@example.com", "123")) == "auth/weak-password"
    assert _code(lambda: gateway.sign_up("DANA@example.com", "secret1")) == "auth/email-already-in-use"


def test_sign_in_returns_user_even_if_unverified(gateway):
    gateway.sign_up("dana@example.com", "secret1")

    user = gateway.sign_in("dana@example.com", "secret1")

    assert user.email_verified is False


def test_sign_in_rejects_bad_credentials(gateway):
    gateway.sign_up("dana@example.com", "secret1")

    assert _code(lambda: gateway.sign_in("dana@example.com", "wrong!")) == "auth/invalid-credential"
    assert _code(lambda: gateway.sign_in("ghost@example.com", "secret1")) == "auth/invalid-credential"


def test_disabled_account(gateway, session_factory):
    user = gateway.sign_up("dana@example.com", "secret1")
    with session_factory() as db:
        db.query(User).filter(User.uid == user.uid).update({"is_disabled": True})
        db.commit()

    assert _code(lambda: gateway.sign_in("dana@example.com", "secret1")) == "auth/user-disabled"
    assert gateway.current_user(user.uid) is None


def test_current_user(gateway):
    user = gateway.sign_up("dana@example.com", "secret1")

    assert gateway.current_user(user.uid) == user
    assert gateway.current_user(None) is None
    assert gateway.current_user("missing") is None


# === Email verification ===

def test_verify_email_with_mailed_token(gateway, mailer):
    user = gateway.sign_up("dana@example.com", "secret1")

    verified = gateway.verify_email(mailer.last_token())

    assert verified.uid == user.uid
    assert verified.email_verified is True
    assert gateway.current_user(user.uid).email_verified is True


def test_verification_token_single_use(gateway, mailer):
    gateway.sign_up("dana@example.com", "secret1")
    token = mailer.last_token()
    gateway.verify_email(token)

    assert _code(lambda: gateway.verify_email(token)) == "auth/invalid-action-code"
    assert _code(lambda: gateway.verify_email("bogus")) == "auth/invalid-action-code"


def test_expired_token_rejected(gateway, mailer, session_factory):
    gateway.sign_up("dana@example.com", "secret1")
    token = mailer.last_token()
    with session_factory() as db:
        db.query(AuthToken).filter(AuthToken.token == token).update(
            {"expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}
        )
        db.commit()

    assert _code(lambda: gateway.verify_email(token)) == "auth/invalid-action-code"


def test_resend_verification(gateway, mailer):
    user = gateway.sign_up("dana@example.com", "secret1")

    gateway.resend_verification_email(user.uid)

    assert len(mailer.sent) == 2
    assert _code(lambda: gateway.resend_verification_email("missing")) == "auth/user-not-found"


def test_mail_failure_reported_as_network_error(session_factory, settings):
    gateway = LocalAuthGateway(session_factory, mailer=FakeMailer(fail=True), settings=settings)

    assert _code(lambda: gateway.sign_up("dana@example.com", "secret1")) == "auth/network-request-failed"


# === Password reset ===

def test_password_reset_for_unknown_email_is_silent(gateway, mailer):
    gateway.send_password_reset("ghost@example.com")
    assert mailer.sent == []


def test_password_reset_flow(gateway, mailer):
    gateway.sign_up("dana@example.com", "secret1")

    gateway.send_password_reset("dana@example.com")
    token = mailer.last_token()
    assert "http://testserver/reset-password?token=" in mailer.sent[-1][2]

    gateway.confirm_password_reset(token, "newsecret")

    assert gateway.sign_in("dana@example.com", "newsecret").email == "dana@example.com"
    assert _code(lambda: gateway.sign_in("dana@example.com", "secret1")) == "auth/invalid-credential"
    assert _code(lambda: gateway.confirm_password_reset(token, "another1")) == "auth/invalid-action-code"


def test_password_reset_requires_strong_password(gateway, mailer):
    gateway.sign_up("dana@example.com", "secret1")
    gateway.send_password_reset("dana@example.com")

    assert _code(lambda: gateway.confirm_password_reset(mailer.last_token(), "123")) == "auth/weak-password"


# === Federated sign-in ===

def test_federated_sign_in_creates_verified_account(gateway):
    user = gateway.sign_in_with_federated_provider("id-token")

    assert user.uid == "google-uid-1"
    assert user.email == "carol@gmail.com"
    assert user.email_verified is True
    assert user.provider == "google"

    # второй вход - тот же аккаунт
    assert gateway.sign_in_with_federated_provider("id-token") == user


def test_federated_sign_in_conflicts_with_password_account(gateway, claims):
    gateway.sign_up("carol@gmail.com", "secret1")

    code = _code(lambda: gateway.sign_in_with_federated_provider("id-token"))

    assert code == "auth/account-exists-with-different-credential"


def test_federated_sign_in_with_bad_token(session_factory, settings):
    def reject(token):
        raise ValueError("Token expired")

    gateway = LocalAuthGateway(session_factory, mailer=FakeMailer(), settings=settings, token_verifier=reject)

    assert _code(lambda: gateway.sign_in_with_federated_provider("expired")) == "auth/invalid-id-token"
    assert _code(lambda: gateway.sign_in_with_federated_provider("")) == "auth/invalid-id-token"


# === Messages ===

def test_auth_error_messages():
    assert auth_error_message(AuthError("auth/invalid-credential"), "x") == "Invalid email or password."
    assert auth_error_message(AuthError("auth/weak-password"), "x", min_length=8) == (
        "Password must be at least 8 characters."
    )
    assert auth_error_message(AuthError("auth/something-else"), "Login failed.") == "Login failed."
