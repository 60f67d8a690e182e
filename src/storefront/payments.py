"""Simulated payment gateway and payment recording."""

import logging
import random
import string
from dataclasses import dataclass
from typing import Any

from .errors import (
    InvalidPaymentMethodError,
    OrderAlreadyPaidError,
    OrderNotPayableError,
    PaymentNotFoundError,
)
from .lifecycle import (
    OrderStatus,
    PaymentMethod,
    PaymentRecordStatus,
    PaymentStatus,
    can_transition_order,
    transition_payment,
)
from .models import Order, Payment, _utc_now, newest_first
from .orders import load_order, save_order
from .store import ORDERS, PAYMENTS, Database

logger = logging.getLogger(__name__)

GATEWAY_NAME = "SimPay v1.0"
DEFAULT_SUCCESS_RATE = 0.95


class PaymentGateway:
    """
    Stand-in for a card processor.

    Approves with probability success_rate regardless of history. The
    processing_time in the response is cosmetic; no delay happens.
    """

    def __init__(self, success_rate: float = DEFAULT_SUCCESS_RATE, rng: random.Random | None = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be between 0 and 1, got {success_rate}")
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def charge(self, method: str, amount: float) -> dict[str, Any]:
        approved = self.rng.random() < self.success_rate
        auth_code = None
        if approved:
            auth_code = "".join(self.rng.choices(string.ascii_uppercase + string.digits, k=8))
        return {
            "gateway": GATEWAY_NAME,
            "method": method,
            "amount": amount,
            "currency": "USD",
            "status": "approved" if approved else "declined",
            "reason": "Transaction approved" if approved else "Insufficient funds (simulated)",
            "auth_code": auth_code,
            "processing_time": f"{self.rng.randint(100, 400)}ms",
            "simulated_at": _utc_now(),
        }


@dataclass
class PaymentResult:
    """What a payment attempt did to the order."""

    payment: Payment
    order: Order

    @property
    def success(self) -> bool:
        return self.payment.status == PaymentRecordStatus.SUCCESS.value

    @property
    def message(self) -> str:
        if self.success:
            return "Payment successful! Your order is now being processed."
        return "Payment declined (simulated). Please try again."

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "transaction_ref": self.payment.transaction_ref,
            "amount": self.payment.amount,
            "method": self.payment.method,
            "status": self.payment.status,
            "order_number": self.order.order_number,
            "order_status": self.order.status,
            "payment_status": self.order.payment_status,
            "gateway_response": self.payment.gateway_response,
        }


def _parse_method(method: PaymentMethod | str) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise InvalidPaymentMethodError(str(method))


class PaymentProcessor:
    """Runs payment attempts against orders and records each one."""

    def __init__(self, database: Database, gateway: PaymentGateway | None = None):
        self.database = database
        self.gateway = gateway or PaymentGateway()

    def simulate_payment(
        self, user_id: str, order_id: str, method: PaymentMethod | str = PaymentMethod.CARD
    ) -> PaymentResult:
        """
        Charge the order total through the gateway.

        Both outcomes create a Payment and point the order's payment_ref at it.
        Approval marks the order paid and moves a pending order to processing;
        a decline marks it failed and leaves fulfillment alone.

        Raises:
            InvalidPaymentMethodError: If method is not card/bank_transfer/wallet.
            OrderNotFoundError: If the order isn't the user's.
            OrderAlreadyPaidError: If the order is already paid.
            OrderNotPayableError: If the order is cancelled.
        """
        method = _parse_method(method)

        with self.database.session() as session:
            order = load_order(session, order_id, user_id)

            if order.payment_status == PaymentStatus.PAID.value:
                raise OrderAlreadyPaidError(order.order_number)
            if order.status == OrderStatus.CANCELLED.value:
                raise OrderNotPayableError(order.order_number)

            response = self.gateway.charge(method.value, order.total_amount)
            approved = response["status"] == "approved"

            payment = Payment.create(
                order_id=order.id,
                user_id=user_id,
                amount=order.total_amount,
                method=method.value,
                status=(PaymentRecordStatus.SUCCESS if approved else PaymentRecordStatus.FAILED).value,
                gateway_response=response,
            )
            session.insert(PAYMENTS, payment.to_dict())

            target = PaymentStatus.PAID if approved else PaymentStatus.FAILED
            order.payment_status = transition_payment(order.payment_status, target).value
            # Only pending orders advance; later stages keep their status
            if approved and can_transition_order(order.status, OrderStatus.PROCESSING):
                order.status = OrderStatus.PROCESSING.value
            order.payment_ref = payment.id
            save_order(session, order)

        logger.info(
            "Payment %s for order %s: %s (%s, %.2f)",
            payment.transaction_ref,
            order.order_number,
            payment.status,
            method.value,
            payment.amount,
        )
        return PaymentResult(payment=payment, order=order)

    def get_latest_payment(self, user_id: str, order_id: str) -> Payment:
        """
        The most recent payment attempt for one of the user's orders.

        Raises:
            OrderNotFoundError: If the order isn't the user's.
            PaymentNotFoundError: If the order has no payments.
        """
        with self.database.session() as session:
            load_order(session, order_id, user_id)
            docs = newest_first(session.find(PAYMENTS, order_id=order_id))

        if not docs:
            raise PaymentNotFoundError(order_id)
        return Payment.from_dict(docs[0])

    def payment_history(self, user_id: str) -> list[dict[str, Any]]:
        """
        All of the user's payments, newest first.

        Each entry is the payment dict plus an "order" summary (order_number,
        total_amount, status), or None if the order is gone.
        """
        with self.database.session() as session:
            docs = newest_first(session.find(PAYMENTS, user_id=user_id))
            orders = {o["id"]: o for o in session.find(ORDERS, user_id=user_id)}

        history = []
        for doc in docs:
            entry = Payment.from_dict(doc).to_dict()
            order = orders.get(doc["order_id"])
            entry["order"] = (
                {
                    "id": order["id"],
                    "order_number": order["order_number"],
                    "total_amount": order["total_amount"],
                    "status": order["status"],
                }
                if order
                else None
            )
            history.append(entry)
        return history
