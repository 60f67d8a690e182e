"""Order lifecycle: placing, cancelling and advancing orders.

Every public operation runs in its own store session, so it either applies all
of its stock, order and cart changes or none of them.
"""

import logging
from typing import Any

from .carts import CartStore
from .catalog import CatalogStore
from .errors import (
    EmptyCartError,
    InsufficientStockError,
    OrderNotFoundError,
    OrderNumberExhaustedError,
    ProductUnavailableError,
)
from .lifecycle import OrderStatus, PaymentStatus, transition_order
from .models import (
    Order,
    OrderItem,
    Page,
    ShippingAddress,
    _utc_now,
    generate_order_number,
    newest_first,
    paginate,
)
from .store import ORDERS, Database, Session

logger = logging.getLogger(__name__)

_ORDER_NUMBER_ATTEMPTS = 5


def load_order(session: Session, order_id: str, user_id: str | None = None) -> Order:
    """
    Load an order, optionally requiring that user_id owns it.

    Raises:
        OrderNotFoundError: If the order doesn't exist or belongs to someone else.
    """
    criteria: dict[str, Any] = {"id": order_id}
    if user_id is not None:
        criteria["user_id"] = user_id
    doc = session.find_one(ORDERS, **criteria)
    if doc is None:
        raise OrderNotFoundError(order_id)
    return Order.from_dict(doc)


def save_order(session: Session, order: Order) -> None:
    order.updated_at = _utc_now()
    session.replace(ORDERS, order.to_dict())


def _unique_order_number(session: Session) -> str:
    for _ in range(_ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if session.find_one(ORDERS, order_number=number) is None:
            return number
    raise OrderNumberExhaustedError(_ORDER_NUMBER_ATTEMPTS)


class OrderEngine:
    """Converts carts into orders and moves orders through their lifecycle."""

    def __init__(self, database: Database):
        self.database = database

    def place_order(
        self,
        user_id: str,
        shipping_address: ShippingAddress | dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> Order:
        """
        Turn the user's cart into a pending order.

        Each line is re-checked against the live product: it must still exist
        and be active, and have enough stock. The unit price is the product's
        current effective price, not the price stored in the cart. Stock is
        deducted per line, then the order is created and the cart emptied.

        Raises:
            EmptyCartError: If the user has no cart or it has no lines.
            ProductUnavailableError: If a product was deleted or deactivated.
            InsufficientStockError: If a line asks for more than is in stock.
        """
        if not isinstance(shipping_address, ShippingAddress):
            shipping_address = ShippingAddress.from_dict(shipping_address)

        with self.database.session() as session:
            carts = CartStore(session)
            catalog = CatalogStore(session)

            cart = carts.find_cart(user_id)
            if cart is None or not cart.items:
                raise EmptyCartError()

            items: list[OrderItem] = []
            for line in cart.items:
                product = catalog.find_product(line.product_id)
                if product is None:
                    raise ProductUnavailableError(line.product_id)
                if not product.is_active:
                    raise ProductUnavailableError(product.name)
                if product.stock < line.quantity:
                    raise InsufficientStockError(product.name, product.stock)

                items.append(OrderItem.snapshot(product, line.quantity))
                catalog.adjust_stock(product.id, -line.quantity)

            order = Order.create(
                user_id=user_id,
                items=items,
                order_number=_unique_order_number(session),
                shipping_address=shipping_address,
                notes=notes,
            )
            session.insert(ORDERS, order.to_dict())
            carts.clear(user_id)

        logger.info(
            "Placed order %s for user %s: %d item(s), total %.2f",
            order.order_number,
            user_id,
            len(order.items),
            order.total_amount,
        )
        return order

    def _cancel(self, session: Session, order: Order) -> Order:
        transition_order(order.status, OrderStatus.CANCELLED)

        catalog = CatalogStore(session)
        for item in order.items:
            if not item.product_id or catalog.find_product(item.product_id) is None:
                logger.warning(
                    "Order %s: product %s no longer exists, %d unit(s) not restocked",
                    order.order_number,
                    item.product_id or item.product_name,
                    item.quantity,
                )
                continue
            catalog.adjust_stock(item.product_id, item.quantity)

        order.status = OrderStatus.CANCELLED.value
        save_order(session, order)
        logger.info("Cancelled order %s", order.order_number)
        return order

    def cancel_order(self, user_id: str, order_id: str) -> Order:
        """
        Cancel a pending or processing order and put its items back in stock.

        Payment status is left as is.

        Raises:
            OrderNotFoundError: If the order isn't the user's.
            OrderNotCancellableError: If the order is shipped, delivered or cancelled.
        """
        with self.database.session() as session:
            order = load_order(session, order_id, user_id)
            return self._cancel(session, order)

    def get_order(self, user_id: str, order_id: str) -> Order:
        with self.database.session() as session:
            return load_order(session, order_id, user_id)

    def list_orders(self, user_id: str, page: int = 1, limit: int = 10) -> Page:
        """The user's orders, newest first."""
        return self.list_all_orders(page=page, limit=limit, user_id=user_id)

    # --- Admin ---

    def get_any_order(self, order_id: str) -> Order:
        with self.database.session() as session:
            return load_order(session, order_id)

    def list_all_orders(
        self,
        page: int = 1,
        limit: int = 20,
        status: OrderStatus | str | None = None,
        payment_status: PaymentStatus | str | None = None,
        user_id: str | None = None,
    ) -> Page:
        criteria: dict[str, Any] = {}
        if status:
            criteria["status"] = OrderStatus(status).value
        if payment_status:
            criteria["payment_status"] = PaymentStatus(payment_status).value
        if user_id:
            criteria["user_id"] = user_id

        with self.database.session() as session:
            docs = newest_first(session.find(ORDERS, **criteria))

        result = paginate(docs, page, limit)
        result.items = [Order.from_dict(d) for d in result.items]
        return result

    def update_order_status(self, order_id: str, status: OrderStatus | str) -> Order:
        """
        Move an order to a new fulfillment status (admin).

        Cancelling takes the same path as a customer cancellation, so stock is
        restored.

        Raises:
            OrderNotFoundError: If the order doesn't exist.
            InvalidTransitionError: If the move is not in the transition table.
        """
        target = OrderStatus(status)
        with self.database.session() as session:
            order = load_order(session, order_id)
            if target is OrderStatus.CANCELLED:
                return self._cancel(session, order)

            previous = order.status
            order.status = transition_order(order.status, target).value
            save_order(session, order)

        logger.info("Order %s status %s -> %s", order.order_number, previous, order.status)
        return order
