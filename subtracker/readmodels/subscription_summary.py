"""
Aggregation & filter engine over the subscription projection

Чистые функции: (projection, filters) -> (filtered, monthly_total, yearly_total).
Никакого I/O и никакого инкрементального состояния - каждый раз полный проход.
"""
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

from subtracker.domain.subscription import (
    BillingCycle, Category, PaymentMethod, StatusFilter, Subscription,
    SubscriptionValidationError, monthly_equivalent, yearly_equivalent,
)

# Query-string values meaning "no selection"
_UNSELECTED = ("", "all")


@dataclass(frozen=True)
class SubscriptionFilters:
    """
    Filter selection; None = field imposes no constraint
    """
    category: Optional[str] = None
    billing_cycle: Optional[str] = None
    payment_method: Optional[str] = None
    status: Optional[str] = None  # active / inactive

    @classmethod
    def from_params(cls, params: Mapping[str, Optional[str]]) -> "SubscriptionFilters":
        """
        Build from query params (camelCase or snake_case keys)

        Raises:
            SubscriptionValidationError: неизвестное значение фильтра
        """
        def pick(enum_cls, label: str, *names: str) -> Optional[str]:
            raw = None
            for name in names:
                if params.get(name) is not None:
                    raw = params.get(name)
                    break
            if raw is None or raw.strip().lower() in _UNSELECTED:
                return None
            raw = raw.strip()
            try:
                return enum_cls(raw).value
            except ValueError:
                raise SubscriptionValidationError(f"Invalid {label} filter.")

        status = pick(StatusFilter, "status", "status")
        return cls(
            category=pick(Category, "category", "category"),
            billing_cycle=pick(BillingCycle, "billing cycle", "billingCycle", "billing_cycle"),
            payment_method=pick(PaymentMethod, "payment method", "paymentMethod", "payment_method"),
            status=status,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.category or self.billing_cycle or self.payment_method or self.status)

    def to_params(self) -> Dict[str, str]:
        params = {
            "category": self.category,
            "billingCycle": self.billing_cycle,
            "paymentMethod": self.payment_method,
            "status": self.status,
        }
        return {k: v for k, v in params.items() if v}


@dataclass(frozen=True)
class SubscriptionSummary:
    filtered: Tuple[Subscription, ...]
    monthly_total: float
    yearly_total: float
    active_count: int
    total_count: int


def matches(sub: Subscription, filters: SubscriptionFilters) -> bool:
    if filters.category and sub.category != filters.category:
        return False
    if filters.billing_cycle and sub.billing_cycle != filters.billing_cycle:
        return False
    if filters.payment_method and sub.payment_method != filters.payment_method:
        return False
    if filters.status == StatusFilter.ACTIVE.value and sub.is_active is not True:
        return False
    if filters.status == StatusFilter.INACTIVE.value and sub.is_active is not False:
        return False
    return True


def filter_subscriptions(
    subscriptions: Iterable[Subscription],
    filters: SubscriptionFilters,
) -> Tuple[Subscription, ...]:
    """AND over all selected fields, original relative order preserved"""
    return tuple(s for s in subscriptions if matches(s, filters))


def monthly_cost(subscriptions: Iterable[Subscription]) -> float:
    """Monthly spend of active entries (Yearly counts as price / 12)"""
    return sum((monthly_equivalent(s) for s in subscriptions if s.is_active), 0.0)


def yearly_cost(subscriptions: Iterable[Subscription]) -> float:
    """Yearly spend of active entries (Monthly counts as price * 12)"""
    return sum((yearly_equivalent(s) for s in subscriptions if s.is_active), 0.0)


def build_summary(
    subscriptions: Iterable[Subscription],
    filters: Optional[SubscriptionFilters] = None,
) -> SubscriptionSummary:
    filters = filters or SubscriptionFilters()
    filtered = filter_subscriptions(subscriptions, filters)
    return SubscriptionSummary(
        filtered=filtered,
        monthly_total=monthly_cost(filtered),
        yearly_total=yearly_cost(filtered),
        active_count=sum(1 for s in filtered if s.is_active),
        total_count=len(filtered),
    )


class SummaryCache:
    """
    Memoize build_summary on (projection version, filters)

    Новая версия projection сбрасывает весь кэш.
    """

    def __init__(self, max_entries: int = 32):
        self.max_entries = max_entries
        self._version: Optional[int] = None
        self._entries: Dict[SubscriptionFilters, SubscriptionSummary] = {}
        self._lock = threading.Lock()

    def get(
        self,
        version: int,
        subscriptions: Iterable[Subscription],
        filters: SubscriptionFilters,
    ) -> SubscriptionSummary:
        with self._lock:
            if version != self._version:
                self._version = version
                self._entries = {}

            summary = self._entries.get(filters)
            if summary is None:
                if len(self._entries) >= self.max_entries:
                    self._entries.pop(next(iter(self._entries)))
                summary = build_summary(subscriptions, filters)
                self._entries[filters] = summary
            return summary
