"""
Subscription domain entity - enums, validation, renewal date and cost rules

Документ подписки хранится в store под subscriptions/{uid}/{id}
с camelCase-ключами (serviceName, billingCycle, ...).
"""
import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Optional

from subtracker.utils.validation import normalize_decimal_input


class Category(str, Enum):
    ENTERTAINMENT = "Entertainment"
    PRODUCTIVITY = "Productivity / Software"
    FITNESS = "Fitness & Health"
    EDUCATION = "Education / Learning"
    GAMING = "Gaming"
    UTILITIES = "Utilities / Services"
    OTHER = "Other"


class BillingCycle(str, Enum):
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class PaymentMethod(str, Enum):
    CARD = "Card"
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"


class StatusFilter(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SubscriptionError(Exception):
    """Base error of the subscription layer (carries a user-facing message)"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SubscriptionValidationError(SubscriptionError, ValueError):
    """Ошибка валидации подписки"""
    pass


def _enum_value(enum_cls, raw) -> Optional[str]:
    """Return the enum value for raw input, None if unrecognized"""
    if isinstance(raw, enum_cls):
        return raw.value
    try:
        return enum_cls(raw).value
    except ValueError:
        return None


def _epoch_ms_or_zero(raw) -> Optional[int]:
    """createdAt as int; missing stays None, anything non-numeric sorts as oldest"""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return 0
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass(frozen=True)
class Subscription:
    """
    Subscription as seen by presentation code (projection entry)

    created_at / renewal_date - epoch milliseconds.
    """
    id: str
    service_name: str
    category: str
    price: float
    billing_cycle: str
    renewal_date: Optional[int]
    payment_method: str
    notes: str = ""
    is_active: bool = True
    created_at: Optional[int] = None

    @classmethod
    def from_document(cls, key: str, value: Dict[str, Any]) -> "Subscription":
        """
        Build from a store node. Missing keys get neutral defaults:
        nodes written by partial updates may lack fields.
        """
        value = value or {}
        price = value.get("price", 0)
        try:
            price = float(price)
        except (TypeError, ValueError):
            price = 0.0
        return cls(
            id=key,
            service_name=value.get("serviceName", ""),
            category=value.get("category", ""),
            price=price,
            billing_cycle=value.get("billingCycle", ""),
            renewal_date=value.get("renewalDate"),
            payment_method=value.get("paymentMethod", ""),
            notes=value.get("notes", "") or "",
            is_active=value.get("isActive", True) is not False,
            created_at=_epoch_ms_or_zero(value.get("createdAt")),
        )

    def to_document(self) -> Dict[str, Any]:
        """camelCase mapping as stored (без id)"""
        doc = {
            "serviceName": self.service_name,
            "category": self.category,
            "price": self.price,
            "billingCycle": self.billing_cycle,
            "renewalDate": self.renewal_date,
            "paymentMethod": self.payment_method,
            "notes": self.notes,
            "isActive": self.is_active,
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc

    def to_dict(self) -> Dict[str, Any]:
        """Document merged with its id (API responses, templates)"""
        return {"id": self.id, **self.to_document()}

    @property
    def sort_key(self) -> int:
        # missing createdAt sorts as the oldest entry
        return self.created_at if self.created_at is not None else 0


@dataclass
class SubscriptionInput:
    """
    Raw form / API payload before validation.

    price and renewal_date may arrive as strings straight from a form.
    """
    service_name: Optional[str] = None
    category: Optional[str] = None
    price: Any = None
    billing_cycle: Optional[str] = None
    renewal_date: Any = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "SubscriptionInput":
        """Accept both camelCase (store/JS style) and snake_case keys"""
        def pick(*names):
            for name in names:
                if name in data:
                    return data[name]
            return None

        return cls(
            service_name=pick("serviceName", "service_name"),
            category=pick("category"),
            price=pick("price"),
            billing_cycle=pick("billingCycle", "billing_cycle"),
            renewal_date=pick("renewalDate", "renewal_date"),
            payment_method=pick("paymentMethod", "payment_method"),
            notes=pick("notes"),
            is_active=pick("isActive", "is_active"),
        )


def _coerce_price(raw) -> float:
    if raw is None or isinstance(raw, bool):
        return math.nan
    if isinstance(raw, str):
        raw = normalize_decimal_input(raw)
        if not raw:
            return math.nan
    try:
        return float(raw)
    except (TypeError, ValueError):
        return math.nan


def validate_subscription_input(data: SubscriptionInput) -> Dict[str, Any]:
    """
    Validate a payload and return the normalised document body
    (без renewalDate / createdAt - их добавляет repository).

    Raises:
        SubscriptionValidationError: первая найденная ошибка
    """
    name = (data.service_name or "").strip() if isinstance(data.service_name, str) else ""
    if not name:
        raise SubscriptionValidationError("Service name is required.")

    if not data.category:
        raise SubscriptionValidationError("Category is required.")
    category = _enum_value(Category, data.category)
    if category is None:
        raise SubscriptionValidationError("Invalid category.")

    price = _coerce_price(data.price)
    # NaN fails this comparison as well
    if not price > 0 or math.isinf(price):
        raise SubscriptionValidationError("Price must be greater than 0.")

    if not data.billing_cycle:
        raise SubscriptionValidationError("Billing cycle is required.")
    billing_cycle = _enum_value(BillingCycle, data.billing_cycle)
    if billing_cycle is None:
        raise SubscriptionValidationError("Invalid billing cycle.")

    if not data.payment_method:
        raise SubscriptionValidationError("Payment method is required.")
    payment_method = _enum_value(PaymentMethod, data.payment_method)
    if payment_method is None:
        raise SubscriptionValidationError("Invalid payment method.")

    notes = data.notes.strip() if isinstance(data.notes, str) else ""

    return {
        "serviceName": name,
        "category": category,
        "price": price,
        "billingCycle": billing_cycle,
        "paymentMethod": payment_method,
        "notes": notes,
        "isActive": True if data.is_active is None else bool(data.is_active),
    }


# ============================================================================
# Renewal date
# ============================================================================


def _add_months(dt: datetime, n: int) -> datetime:
    """Add n calendar months, clamping the day to the target month length"""
    month = dt.month - 1 + n
    year = dt.year + month // 12
    month = month % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=tz)


def _parse_custom_date(custom) -> int:
    if isinstance(custom, bool):
        raise SubscriptionValidationError("Invalid renewal date.")
    if isinstance(custom, (int, float)):
        return int(custom)
    if isinstance(custom, datetime):
        if custom.tzinfo is None:
            custom = custom.replace(tzinfo=timezone.utc)
        return to_epoch_ms(custom)
    if isinstance(custom, date):
        return to_epoch_ms(datetime(custom.year, custom.month, custom.day, tzinfo=timezone.utc))
    if isinstance(custom, str):
        raw = custom.strip()
        if raw.isdigit():
            return int(raw)
        try:
            if len(raw) == 10:
                # YYYY-MM-DD from <input type="date"> - midnight UTC
                return _parse_custom_date(date.fromisoformat(raw))
            return _parse_custom_date(datetime.fromisoformat(raw))
        except ValueError:
            raise SubscriptionValidationError("Invalid renewal date.")
    raise SubscriptionValidationError("Invalid renewal date.")


def compute_renewal_date(
    billing_cycle: str,
    custom=None,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> int:
    """
    Renewal date in epoch ms

    Args:
        billing_cycle: Monthly / Yearly
        custom: явная дата (epoch ms, datetime, date, "YYYY-MM-DD"); пустое значение игнорируется
        now: текущее время (для тестов)
        tz: таймзона календарной арифметики

    Example:
        >>> compute_renewal_date("Monthly", now=datetime(2026, 1, 31, tzinfo=timezone.utc))
        # 2026-02-28 00:00 UTC
    """
    if custom not in (None, ""):
        return _parse_custom_date(custom)

    now = now or datetime.now(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    if billing_cycle == BillingCycle.MONTHLY.value:
        renewal = _add_months(now, 1)
    elif billing_cycle == BillingCycle.YEARLY.value:
        renewal = _add_months(now, 12)
    else:
        renewal = now
    return to_epoch_ms(renewal)


# ============================================================================
# Cost contributions
# ============================================================================


def monthly_equivalent(sub: Subscription) -> float:
    if sub.billing_cycle == BillingCycle.YEARLY.value:
        return sub.price / 12
    return sub.price


def yearly_equivalent(sub: Subscription) -> float:
    if sub.billing_cycle == BillingCycle.MONTHLY.value:
        return sub.price * 12
    return sub.price
