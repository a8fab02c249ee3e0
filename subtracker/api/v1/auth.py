"""
Authentication routes (login, signup, password reset, email verification, logout)
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from subtracker.api.deps import (
    SESSION_PENDING_UID, SESSION_UID, flash, get_auth_gateway, get_session_registry, load_user,
)
from subtracker.api.v1.pages import render
from subtracker.application.session import SessionRegistry
from subtracker.auth import is_valid_email, normalize_email
from subtracker.config import get_settings
from subtracker.domain.user import AuthUser
from subtracker.infrastructure.auth.gateway import AuthError, LocalAuthGateway, auth_error_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

RESET_SENT_MESSAGE = (
    "If an account exists with this email, a password reset link has been sent. "
    "If you don't see it, check your spam folder."
)
SIGNUP_SUCCESS_MESSAGE = (
    "Signup successful! Verification email sent. If you don't see it, check your spam folder."
)


def _error_text(error: AuthError, default: str) -> str:
    return auth_error_message(error, default, min_length=get_settings().MIN_PASSWORD_LENGTH)


def _start_session(request: Request, registry: SessionRegistry, user: AuthUser) -> RedirectResponse:
    request.session.pop(SESSION_PENDING_UID, None)
    request.session[SESSION_UID] = user.uid
    registry.open(user)
    flash(request, "success", "Login successful!")
    return RedirectResponse("/dashboard", status_code=302)


# === Login ===

@router.get("/login", response_class=HTMLResponse)
def login_get(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    """
    Форма входа (уже залогиненный пользователь уходит на dashboard)
    """
    if load_user(request, gateway) is not None:
        return RedirectResponse("/dashboard", status_code=302)
    return render(request, "login.html", {
        "can_resend": bool(request.session.get(SESSION_PENDING_UID)),
    })


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Обработка формы входа

    Unverified accounts are not let in: uid запоминается как pending,
    чтобы можно было повторно отправить письмо подтверждения.
    """
    min_length = get_settings().MIN_PASSWORD_LENGTH

    def fail(message: str, can_resend: bool = False):
        return render(request, "login.html", {"email": email, "can_resend": can_resend}, error=message)

    if not email.strip() or not password:
        return fail("Please enter valid data.")
    if not is_valid_email(normalize_email(email)):
        return fail("Please enter a valid email address.")
    if len(password) < min_length:
        return fail(f"Password must be at least {min_length} characters.")

    try:
        user = gateway.sign_in(email, password)
    except AuthError as e:
        return fail(_error_text(e, "Login failed. Please try again."))

    if not user.email_verified:
        request.session[SESSION_PENDING_UID] = user.uid
        return fail("Please verify your email.", can_resend=True)

    return _start_session(request, registry, user)


@router.post("/login/federated", response_class=HTMLResponse)
def login_federated(
    request: Request,
    id_token: str = Form(""),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Google sign-in: клиент присылает ID token"""
    try:
        user = gateway.sign_in_with_federated_provider(id_token)
    except AuthError as e:
        flash(request, "error", _error_text(e, "An error occurred during Google sign-in. Please try again."))
        return RedirectResponse("/login", status_code=302)

    return _start_session(request, registry, user)


# === Email verification ===

@router.post("/resend-verification", response_class=HTMLResponse)
def resend_verification(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    uid = request.session.get(SESSION_PENDING_UID) or request.session.get(SESSION_UID)
    if not uid:
        flash(request, "error", "No user found. Please sign up first.")
        return RedirectResponse("/login", status_code=302)

    try:
        gateway.resend_verification_email(uid)
        flash(request, "success", "Verification email sent! Check your inbox.")
    except AuthError as e:
        flash(request, "error", _error_text(e, "Failed to send verification email. Please try again."))
    return RedirectResponse("/login", status_code=302)


@router.get("/verify-email", response_class=HTMLResponse)
def verify_email(
    request: Request,
    token: str = "",
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    try:
        gateway.verify_email(token)
        request.session.pop(SESSION_PENDING_UID, None)
        flash(request, "success", "Email verified! You can now log in.")
    except AuthError as e:
        flash(request, "error", _error_text(e, "Email verification failed."))
    return RedirectResponse("/login", status_code=302)


# === Signup ===

@router.get("/signup", response_class=HTMLResponse)
def signup_get(request: Request):
    return render(request, "signup.html")


@router.post("/signup", response_class=HTMLResponse)
def signup_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    """
    Регистрация: аккаунт создаётся неподтверждённым, письмо уходит сразу
    """
    min_length = get_settings().MIN_PASSWORD_LENGTH

    def fail(message: str):
        return render(request, "signup.html", {"email": email}, error=message)

    if not email.strip() or not password or not confirm_password:
        return fail("Please fill out all fields.")
    if not is_valid_email(normalize_email(email)):
        return fail("Please enter a valid email address.")
    if len(password) < min_length:
        return fail(f"Password must be at least {min_length} characters.")
    if password != confirm_password:
        return fail("Passwords do not match.")

    try:
        user = gateway.sign_up(email, password)
    except AuthError as e:
        return fail(_error_text(e, "Signup failed. Please try again."))

    request.session[SESSION_PENDING_UID] = user.uid
    flash(request, "success", SIGNUP_SUCCESS_MESSAGE)
    return RedirectResponse("/login", status_code=302)


# === Password reset ===

@router.get("/forget-password", response_class=HTMLResponse)
def forget_password_get(request: Request):
    return render(request, "forget_password.html")


@router.post("/forget-password", response_class=HTMLResponse)
def forget_password_post(
    request: Request,
    email: str = Form(""),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    """
    Всегда один и тот же ответ: существование аккаунта не раскрывается
    """
    if not email.strip():
        return render(request, "forget_password.html", error="Please enter your email address.")

    try:
        gateway.send_password_reset(email)
    except AuthError as e:
        logger.warning("Password reset delivery failed: %s", e.code)

    flash(request, "success", RESET_SENT_MESSAGE)
    return RedirectResponse("/forget-password", status_code=302)


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_get(request: Request, token: str = ""):
    if not token:
        flash(request, "error", "This link is invalid or has expired.")
        return RedirectResponse("/forget-password", status_code=302)
    return render(request, "reset_password.html", {"token": token})


@router.post("/reset-password", response_class=HTMLResponse)
def reset_password_post(
    request: Request,
    token: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
):
    if password != confirm_password:
        return render(request, "reset_password.html", {"token": token}, error="Passwords do not match.")

    try:
        gateway.confirm_password_reset(token, password)
    except AuthError as e:
        return render(request, "reset_password.html", {"token": token},
                      error=_error_text(e, "Password reset failed. Please try again."))

    flash(request, "success", "Password has been reset. You can now log in.")
    return RedirectResponse("/login", status_code=302)


# === Logout ===

@router.get("/logout")
def logout(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Выход из системы: live-подписка закрывается, cookie session очищается
    """
    uid = request.session.get(SESSION_UID)
    if uid:
        registry.close(uid)
        gateway.sign_out(uid)
    request.session.clear()
    flash(request, "success", "Logged out successfully!")
    return RedirectResponse("/login", status_code=302)
