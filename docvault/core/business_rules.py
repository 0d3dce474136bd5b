"""Business Rules: pure checks and arithmetic shared by the workflow coordinator.

Invariants:
    - Order status moves only along ORDER_TRANSITIONS; delivered and cancelled are terminal
    - Cancellation allowed only from pending or completed
    - Transfer amounts and prices must be finite and strictly positive
    - price_change() never divides by a non-positive old price (percent is None)

Design Decisions:
    - Pure functions raising typed errors: the coordinator calls them inside the
      transaction, and the same checks are unit-testable without a store
"""

import math
from typing import Iterable, Mapping

from docvault.core.domain_types import OrderStatus
from docvault.core.errors import (
    AlreadyCancelledError,
    InvalidAmountError,
    InvalidPriceError,
    InvalidStatusTransitionError,
    NotCancellableError,
)

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def _is_positive_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


# ─── Order Status ────────────────────────────────────────────────

def can_transition(current: str, target: str) -> bool:
    try:
        return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


def check_transition(order_id: str, current: str, target: str) -> OrderStatus:
    """Validate a non-cancelling status change and return the target status."""
    if target == OrderStatus.CANCELLED.value or not can_transition(current, target):
        raise InvalidStatusTransitionError(order_id, current, target)
    return OrderStatus(target)


def check_cancellable(order_id: str, status: str) -> None:
    if status == OrderStatus.CANCELLED.value:
        raise AlreadyCancelledError(order_id)
    if not can_transition(status, OrderStatus.CANCELLED.value):
        raise NotCancellableError(order_id, status)


# ─── Money ───────────────────────────────────────────────────────

def check_amount(amount: object) -> float:
    if not _is_positive_number(amount):
        raise InvalidAmountError(amount)
    return amount


def line_total(price: float, quantity: int) -> float:
    return price * quantity


def order_total(items: Iterable[Mapping]) -> float:
    return sum(item["lineTotal"] for item in items)


# ─── Prices ──────────────────────────────────────────────────────

def check_prices(entries: Iterable[tuple[str, object]]) -> None:
    """Reject the whole batch if any (product_id, new_price) pair is invalid."""
    for product_id, price in entries:
        if not _is_positive_number(price):
            raise InvalidPriceError(product_id, price)


def price_change(old_price: float, new_price: float) -> tuple[float, float | None]:
    """Absolute and percentage change. Percent is None when old price is not positive."""
    if isinstance(old_price, bool) or not isinstance(old_price, (int, float)):
        return new_price, None
    change = new_price - old_price
    if old_price <= 0:
        return change, None
    return change, change / old_price * 100
