"""
SSR pages - dashboard, add / edit forms, card actions
"""
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from subtracker.api.deps import (
    flash, get_auth_gateway, get_session_registry, open_user_session, pop_flashes,
)
from subtracker.application.session import SessionRegistry
from subtracker.config import get_settings
from subtracker.domain.subscription import (
    BillingCycle, Category, PaymentMethod, StatusFilter, SubscriptionError, SubscriptionInput,
    SubscriptionValidationError,
)
from subtracker.infrastructure.auth.gateway import LocalAuthGateway
from subtracker.readmodels.subscription_summary import SubscriptionFilters
from subtracker.utils.money import format_date, format_price, to_date_input
from subtracker.utils.validation import form_bool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

# Templates
templates_dir = Path(__file__).parent.parent.parent.parent / "templates"
templates = Jinja2Templates(directory=str(templates_dir))
templates.env.filters["price"] = lambda amount: format_price(amount, get_settings().CURRENCY_LABEL)
templates.env.filters["date"] = format_date
templates.env.filters["date_input"] = to_date_input

FORM_CHOICES = {
    "categories": [c.value for c in Category],
    "billing_cycles": [c.value for c in BillingCycle],
    "payment_methods": [m.value for m in PaymentMethod],
    "statuses": [s.value for s in StatusFilter],
}


def render(request: Request, name: str, context: dict | None = None, error: str | None = None):
    """
    TemplateResponse + накопленные toasts (+ error текущего запроса)
    """
    flashes = pop_flashes(request)
    if error:
        flashes.append({"level": "error", "message": error})
    ctx = {"request": request, "flashes": flashes, **FORM_CHOICES}
    ctx.update(context or {})
    return templates.TemplateResponse(name, ctx)


def _login_redirect():
    return RedirectResponse("/login", status_code=302)


# === Root ===

@router.get("/", response_class=HTMLResponse)
def index():
    return _login_redirect()


# === Dashboard ===

@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Список подписок + фильтры + итоги (monthly / yearly по активным)
    """
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    error = None
    try:
        filters = SubscriptionFilters.from_params(request.query_params)
    except SubscriptionValidationError as e:
        filters = SubscriptionFilters()
        error = e.message

    state = session.state
    summary = session.summary(filters)
    if state.error and not error:
        error = state.error

    return render(request, "dashboard.html", {
        "user": session.user,
        "summary": summary,
        "filters": filters,
        "loading": state.loading,
    }, error=error)


# === Add / edit ===

def _form_input(
    service_name: str,
    category: str,
    price: str,
    billing_cycle: str,
    renewal_date: str,
    payment_method: str,
    notes: str,
    is_active: str | None,
) -> SubscriptionInput:
    return SubscriptionInput(
        service_name=service_name,
        category=category,
        price=price,
        billing_cycle=billing_cycle,
        renewal_date=renewal_date or None,
        payment_method=payment_method,
        notes=notes,
        is_active=form_bool(is_active),
    )


def _form_values(data: SubscriptionInput) -> dict:
    """Echo submitted values back into the form after a failed submit"""
    return {
        "service_name": data.service_name or "",
        "category": data.category or "",
        "price": data.price or "",
        "billing_cycle": data.billing_cycle or "",
        "renewal_date": data.renewal_date or "",
        "payment_method": data.payment_method or "",
        "notes": data.notes or "",
        "is_active": bool(data.is_active),
    }


@router.get("/add-subscription", response_class=HTMLResponse)
def add_subscription_page(
    request: Request,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    return render(request, "subscription_form.html", {
        "user": session.user,
        "mode": "add",
        "action": "/add-subscription",
        "form": _form_values(SubscriptionInput(is_active=True)),
    })


@router.post("/add-subscription", response_class=HTMLResponse)
def add_subscription_form(
    request: Request,
    service_name: str = Form(""),
    category: str = Form(""),
    price: str = Form(""),
    billing_cycle: str = Form(""),
    renewal_date: str = Form(""),
    payment_method: str = Form(""),
    notes: str = Form(""),
    is_active: str | None = Form(None),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Обработка формы добавления подписки"""
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    data = _form_input(service_name, category, price, billing_cycle, renewal_date,
                       payment_method, notes, is_active)
    try:
        session.repository.add(data)
    except SubscriptionError as e:
        return render(request, "subscription_form.html", {
            "user": session.user,
            "mode": "add",
            "action": "/add-subscription",
            "form": _form_values(data),
        }, error=e.message)

    flash(request, "success", "Subscription added successfully!")
    return RedirectResponse("/dashboard", status_code=302)


@router.get("/edit-subscription/{subscription_id}", response_class=HTMLResponse)
def edit_subscription_page(
    request: Request,
    subscription_id: str,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Форма редактирования, предзаполненная текущими значениями"""
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    try:
        sub = session.repository.get(subscription_id)
    except SubscriptionError as e:
        # not found / store failure
        flash(request, "error", e.message)
        return RedirectResponse("/dashboard", status_code=302)

    return render(request, "subscription_form.html", {
        "user": session.user,
        "mode": "edit",
        "action": f"/edit-subscription/{sub.id}",
        "form": {
            "service_name": sub.service_name,
            "category": sub.category,
            "price": sub.price,
            "billing_cycle": sub.billing_cycle,
            "renewal_date": to_date_input(sub.renewal_date),
            "payment_method": sub.payment_method,
            "notes": sub.notes,
            "is_active": sub.is_active,
        },
    })


@router.post("/edit-subscription/{subscription_id}", response_class=HTMLResponse)
def edit_subscription_form(
    request: Request,
    subscription_id: str,
    service_name: str = Form(""),
    category: str = Form(""),
    price: str = Form(""),
    billing_cycle: str = Form(""),
    renewal_date: str = Form(""),
    payment_method: str = Form(""),
    notes: str = Form(""),
    is_active: str | None = Form(None),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    data = _form_input(service_name, category, price, billing_cycle, renewal_date,
                       payment_method, notes, is_active)
    try:
        session.repository.update(subscription_id, data)
    except SubscriptionError as e:
        return render(request, "subscription_form.html", {
            "user": session.user,
            "mode": "edit",
            "action": f"/edit-subscription/{subscription_id}",
            "form": _form_values(data),
        }, error=e.message)

    flash(request, "success", "Subscription updated successfully!")
    return RedirectResponse("/dashboard", status_code=302)


# === Card actions ===

@router.post("/subscriptions/{subscription_id}/toggle", response_class=HTMLResponse)
def toggle_subscription(
    request: Request,
    subscription_id: str,
    is_active: str | None = Form(None),
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Active/Inactive toggle: форма присылает целевое состояние (is_active)
    """
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    target = form_bool(is_active)
    try:
        session.repository.set_active(subscription_id, target)
        flash(request, "success",
              f"Subscription {'activated' if target else 'deactivated'} successfully.")
    except SubscriptionError as e:
        flash(request, "error", e.message)
    return RedirectResponse(_back_to_dashboard(request), status_code=302)


@router.post("/subscriptions/{subscription_id}/delete", response_class=HTMLResponse)
def delete_subscription(
    request: Request,
    subscription_id: str,
    gateway: LocalAuthGateway = Depends(get_auth_gateway),
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = open_user_session(request, gateway, registry)
    if session is None:
        return _login_redirect()

    try:
        session.repository.delete(subscription_id)
        flash(request, "success", "Subscription deleted successfully.")
    except SubscriptionError as e:
        flash(request, "error", e.message)
    return RedirectResponse(_back_to_dashboard(request), status_code=302)


def _back_to_dashboard(request: Request) -> str:
    # keep the active filters after a card action
    referer = request.headers.get("referer") or ""
    marker = "/dashboard"
    idx = referer.find(marker)
    if idx == -1:
        return marker
    return referer[idx:]
