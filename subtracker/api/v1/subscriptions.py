"""
Subscription API endpoints
"""
import logging
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from subtracker.api.deps import get_current_session
from subtracker.application.session import UserSession
from subtracker.application.subscriptions import (
    NotAuthenticatedError, SubscriptionNotFoundError, SubscriptionStoreError,
)
from subtracker.domain.subscription import (
    Subscription, SubscriptionError, SubscriptionInput, SubscriptionValidationError,
)
from subtracker.readmodels.subscription_summary import SubscriptionFilters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class SubscriptionRequest(BaseModel):
    # все поля опциональны: сообщения об ошибках даёт доменная валидация
    service_name: Optional[str] = None
    category: Optional[str] = None
    price: Any = None  # число или строка "9,99"
    billing_cycle: Optional[str] = None
    renewal_date: Any = None  # epoch ms / "YYYY-MM-DD" / пусто = по billing cycle
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    def to_input(self) -> SubscriptionInput:
        return SubscriptionInput(**self.model_dump())


class StatusRequest(BaseModel):
    is_active: bool


class SubscriptionResponse(BaseModel):
    id: str
    service_name: str
    category: str
    price: float
    billing_cycle: str
    renewal_date: Optional[int] = None
    payment_method: str
    notes: str
    is_active: bool
    created_at: Optional[int] = None

    @classmethod
    def from_entity(cls, sub: Subscription) -> "SubscriptionResponse":
        return cls(**asdict(sub))


class SubscriptionListResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
    monthly_total: float
    yearly_total: float
    active_count: int
    total_count: int
    loading: bool
    filters: dict[str, str]


class CreatedResponse(BaseModel):
    id: str


# === Helper function ===

def _raise_http(error: SubscriptionError):
    """Translate application errors to HTTP status codes"""
    if isinstance(error, NotAuthenticatedError):
        status_code = 401
    elif isinstance(error, SubscriptionValidationError):
        status_code = 422
    elif isinstance(error, SubscriptionNotFoundError):
        status_code = 404
    elif isinstance(error, SubscriptionStoreError):
        status_code = 502
    else:
        status_code = 400
    raise HTTPException(status_code=status_code, detail=error.message) from error


# === Endpoints ===

@router.get("/", response_model=SubscriptionListResponse)
def list_subscriptions(
    request: Request,
    session: UserSession = Depends(get_current_session),
):
    """Список (newest first) + итоги; фильтры - query params category / billing_cycle / payment_method / status"""
    try:
        filters = SubscriptionFilters.from_params(request.query_params)
    except SubscriptionError as e:
        _raise_http(e)

    summary = session.summary(filters)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_entity(s) for s in summary.filtered],
        monthly_total=round(summary.monthly_total, 2),
        yearly_total=round(summary.yearly_total, 2),
        active_count=summary.active_count,
        total_count=summary.total_count,
        loading=session.state.loading,
        filters=filters.to_params(),
    )


@router.post("/", response_model=CreatedResponse, status_code=201)
def create_subscription(
    req: SubscriptionRequest,
    session: UserSession = Depends(get_current_session),
):
    """Создать подписку"""
    try:
        subscription_id = session.repository.add(req.to_input())
    except SubscriptionError as e:
        _raise_http(e)
    return CreatedResponse(id=subscription_id)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: str,
    session: UserSession = Depends(get_current_session),
):
    try:
        sub = session.repository.get(subscription_id)
    except SubscriptionError as e:
        _raise_http(e)
    return SubscriptionResponse.from_entity(sub)


@router.put("/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: str,
    req: SubscriptionRequest,
    session: UserSession = Depends(get_current_session),
):
    """Заменить все изменяемые поля (createdAt сохраняется)"""
    try:
        session.repository.update(subscription_id, req.to_input())
        sub = session.repository.get(subscription_id)
    except SubscriptionError as e:
        _raise_http(e)
    return SubscriptionResponse.from_entity(sub)


@router.delete("/{subscription_id}", status_code=204)
def delete_subscription(
    subscription_id: str,
    session: UserSession = Depends(get_current_session),
):
    try:
        session.repository.delete(subscription_id)
    except SubscriptionError as e:
        _raise_http(e)
    return Response(status_code=204)


@router.patch("/{subscription_id}/status", response_model=SubscriptionResponse)
def set_subscription_status(
    subscription_id: str,
    req: StatusRequest,
    session: UserSession = Depends(get_current_session),
):
    """Active/Inactive toggle"""
    try:
        session.repository.set_active(subscription_id, req.is_active)
        sub = session.repository.get(subscription_id)
    except SubscriptionError as e:
        _raise_http(e)
    return SubscriptionResponse.from_entity(sub)
