"""Order and payment status state machine.

Statuses are stored as plain strings; these enums and transition tables are
the single place that decides which moves are legal.
"""

import logging
from enum import Enum

from .errors import InvalidTransitionError, OrderNotCancellableError

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    """Fulfillment status of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status of an order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentRecordStatus(str, Enum):
    """Outcome of a single payment attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# No transition leads to REFUNDED yet; it is kept so stored orders stay readable.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition_order(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: PaymentStatus | str, target: PaymentStatus | str) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def is_cancellable(status: OrderStatus | str) -> bool:
    return can_transition_order(status, OrderStatus.CANCELLED)


def transition_order(current: OrderStatus | str, target: OrderStatus | str) -> OrderStatus:
    """
    Validate a fulfillment status change.

    Returns:
        The target status.

    Raises:
        OrderNotCancellableError: If target is cancelled and current is not cancellable.
        InvalidTransitionError: For any other move outside ORDER_TRANSITIONS.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    if target in ORDER_TRANSITIONS[current]:
        return target

    logger.warning("Rejected order transition %s -> %s", current.value, target.value)
    if target is OrderStatus.CANCELLED:
        raise OrderNotCancellableError(current.value)
    raise InvalidTransitionError("status", current.value, target.value)


def transition_payment(current: PaymentStatus | str, target: PaymentStatus | str) -> PaymentStatus:
    """
    Validate a payment status change.

    Raises:
        InvalidTransitionError: If the move is outside PAYMENT_TRANSITIONS.
    """
    current = PaymentStatus(current)
    target = PaymentStatus(target)
    if target in PAYMENT_TRANSITIONS[current]:
        return target

    logger.warning("Rejected payment transition %s -> %s", current.value, target.value)
    raise InvalidTransitionError("payment_status", current.value, target.value)
