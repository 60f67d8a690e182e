"""Tests for OrderEngine: placement, cancellation and status changes."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import fill_cart, product_stock
from storefront.carts import CartStore
from storefront.catalog import CatalogStore
from storefront.errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderNumberExhaustedError,
    ProductUnavailableError,
)
from storefront.lifecycle import OrderStatus
from storefront.orders import OrderEngine
from storefront.payments import PaymentProcessor


def cart_lines(database, user_id):
    with database.session() as session:
        cart = CartStore(session).find_cart(user_id)
    return {} if cart is None else {i.product_id: i.quantity for i in cart.items}


@pytest.fixture
def engine(database):
    return OrderEngine(database)


class TestPlaceOrder:
    def test_two_units_of_product_a(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 2})

        order = engine.place_order(user_id)

        assert order.total_amount == 20.0
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.payment_ref is None
        assert product_stock(database, product_a.id) == 3
        assert cart_lines(database, user_id) == {}

    def test_total_is_sum_of_subtotals(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 3, catalog["product_b"].id: 2})

        order = engine.place_order(user_id)

        for item in order.items:
            assert item.subtotal == item.price * item.quantity
        assert order.total_amount == sum(item.subtotal for item in order.items)
        assert order.total_amount == 3 * 10.0 + 2 * 20.0

    def test_items_are_snapshots(self, database, catalog, engine, user_id):
        product_b = catalog["product_b"]
        fill_cart(database, user_id, {product_b.id: 1})

        order = engine.place_order(user_id)
        with database.session() as session:
            CatalogStore(session).update_product(product_b.id, {"name": "Renamed", "price": 99.0})

        stored = engine.get_order(user_id, order.id)
        item = stored.items[0]
        assert item.product_id == product_b.id
        assert item.product_name == "Product B"
        assert item.product_sku == "SKU-B"
        assert item.price == 20.0

    def test_uses_current_price_not_cart_price(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 2})
        with database.session() as session:
            CatalogStore(session).update_product(product_a.id, {"discount_price": 8.0})

        order = engine.place_order(user_id)

        assert order.items[0].price == 8.0
        assert order.total_amount == 16.0

    def test_amounts_rounded_to_cents(self, database, catalog, engine, user_id):
        with database.session() as session:
            product = CatalogStore(session).add_product(
                name="Sticker", price=0.1, collection_id=catalog["collection"].id, stock=10
            )
        fill_cart(database, user_id, {product.id: 3, catalog["product_a"].id: 1})

        order = engine.place_order(user_id)

        subtotals = {item.product_id: item.subtotal for item in order.items}
        assert subtotals[product.id] == 0.3
        assert order.total_amount == 10.3
        assert order.total_amount == round(sum(item.subtotal for item in order.items), 2)

    def test_order_number_collisions_exhausted(
        self, database, catalog, engine, user_id, monkeypatch
    ):
        monkeypatch.setattr("storefront.orders.generate_order_number", lambda: "ORD-FIXED-0000")
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 1})
        engine.place_order(user_id)
        fill_cart(database, user_id, {product_a.id: 2})

        with pytest.raises(OrderNumberExhaustedError) as exc_info:
            engine.place_order(user_id)

        assert exc_info.value.kind == "internal"
        assert product_stock(database, product_a.id) == 4
        assert cart_lines(database, user_id) == {product_a.id: 2}

    def test_order_number_format(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})
        order = engine.place_order(user_id)
        assert re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{4}", order.order_number)

    def test_shipping_address_defaults(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})

        order = engine.place_order(user_id, {"full_name": "Ada", "city": ""}, notes="  ring bell ")

        address = order.shipping_address
        assert address.full_name == "Ada"
        assert address.city == "N/A"
        assert address.street == "N/A"
        assert order.notes == "ring bell"

    def test_empty_cart_rejected(self, database, catalog, engine, user_id):
        with pytest.raises(EmptyCartError):
            engine.place_order(user_id)

        with database.session() as session:
            CartStore(session).get_cart(user_id)
        with pytest.raises(EmptyCartError):
            engine.place_order(user_id)

    def test_insufficient_stock_leaves_state_unchanged(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 3})
        with database.session() as session:
            CatalogStore(session).adjust_stock(product_a.id, -3)

        with pytest.raises(InsufficientStockError) as exc_info:
            engine.place_order(user_id)

        assert "Product A" in str(exc_info.value)
        assert exc_info.value.available == 2
        assert product_stock(database, product_a.id) == 2
        assert cart_lines(database, user_id) == {product_a.id: 3}
        assert engine.list_orders(user_id).total == 0

    def test_failure_on_later_item_rolls_back_earlier_decrements(
        self, database, catalog, engine, user_id
    ):
        product_a = catalog["product_a"]
        product_b = catalog["product_b"]
        fill_cart(database, user_id, {product_a.id: 2, product_b.id: 3})
        with database.session() as session:
            CatalogStore(session).adjust_stock(product_b.id, -2)

        with pytest.raises(InsufficientStockError):
            engine.place_order(user_id)

        assert product_stock(database, product_a.id) == 5
        assert product_stock(database, product_b.id) == 1
        assert cart_lines(database, user_id) == {product_a.id: 2, product_b.id: 3}

    def test_inactive_product_rejected(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 1})
        with database.session() as session:
            CatalogStore(session).update_product(product_a.id, {"is_active": False})

        with pytest.raises(ProductUnavailableError) as exc_info:
            engine.place_order(user_id)
        assert "Product A" in str(exc_info.value)

    def test_deleted_product_rejected(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 1})
        with database.session() as session:
            CatalogStore(session).remove_product(product_a.id)

        with pytest.raises(ProductUnavailableError):
            engine.place_order(user_id)
        assert cart_lines(database, user_id) == {product_a.id: 1}

    def test_concurrent_orders_never_oversell(self, database, catalog, engine):
        product_a = catalog["product_a"]
        fill_cart(database, "alice", {product_a.id: 3})
        fill_cart(database, "bob", {product_a.id: 3})

        def attempt(user):
            try:
                engine.place_order(user)
                return True
            except InsufficientStockError:
                return False

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, ["alice", "bob"]))

        assert sorted(results) == [False, True]
        assert product_stock(database, product_a.id) == 2


class TestCancelOrder:
    def test_cancel_pending_restores_stock(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 2})
        order = engine.place_order(user_id)
        stock_before = product_stock(database, product_a.id)

        cancelled = engine.cancel_order(user_id, order.id)

        assert cancelled.status == "cancelled"
        assert product_stock(database, product_a.id) == stock_before + 2
        assert engine.get_order(user_id, order.id).status == "cancelled"

    def test_cancel_processing_keeps_payment_status(
        self, database, catalog, engine, user_id, approving_gateway
    ):
        product_a = catalog["product_a"]
        product_b = catalog["product_b"]
        fill_cart(database, user_id, {product_a.id: 1, product_b.id: 2})
        order = engine.place_order(user_id)
        PaymentProcessor(database, approving_gateway).simulate_payment(user_id, order.id)

        cancelled = engine.cancel_order(user_id, order.id)

        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "paid"
        assert product_stock(database, product_a.id) == 5
        assert product_stock(database, product_b.id) == 3

    @pytest.mark.parametrize(
        "path",
        [
            [OrderStatus.PROCESSING, OrderStatus.SHIPPED],
            [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED],
            [OrderStatus.CANCELLED],
        ],
    )
    def test_non_cancellable_rejected(self, database, catalog, engine, user_id, path):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 2})
        order = engine.place_order(user_id)
        for status in path:
            engine.update_order_status(order.id, status)
        stock_before = product_stock(database, product_a.id)

        with pytest.raises(OrderNotCancellableError):
            engine.cancel_order(user_id, order.id)

        assert engine.get_order(user_id, order.id).status == path[-1].value
        assert product_stock(database, product_a.id) == stock_before

    def test_cancel_other_users_order(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})
        order = engine.place_order(user_id)

        with pytest.raises(OrderNotFoundError):
            engine.cancel_order("someone-else", order.id)

    def test_deleted_product_skipped(self, database, catalog, engine, user_id, caplog):
        product_a = catalog["product_a"]
        product_b = catalog["product_b"]
        fill_cart(database, user_id, {product_a.id: 2, product_b.id: 1})
        order = engine.place_order(user_id)
        with database.session() as session:
            CatalogStore(session).remove_product(product_a.id)

        with caplog.at_level(logging.WARNING, logger="storefront.orders"):
            cancelled = engine.cancel_order(user_id, order.id)

        assert cancelled.status == "cancelled"
        assert product_stock(database, product_b.id) == 3
        assert "not restocked" in caplog.text


class TestOrderQueries:
    def test_list_orders_newest_first(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        placed = []
        for _ in range(3):
            fill_cart(database, user_id, {product_a.id: 1})
            placed.append(engine.place_order(user_id))

        result = engine.list_orders(user_id, page=1, limit=2)

        assert result.total == 3
        assert result.pages == 2
        assert [o.id for o in result.items] == [placed[2].id, placed[1].id]

    def test_orders_are_private(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})
        order = engine.place_order(user_id)

        assert engine.list_orders("someone-else").total == 0
        with pytest.raises(OrderNotFoundError):
            engine.get_order("someone-else", order.id)
        assert engine.get_any_order(order.id).id == order.id

    def test_list_all_orders_filters(self, database, catalog, engine):
        product_a = catalog["product_a"]
        fill_cart(database, "alice", {product_a.id: 1})
        first = engine.place_order("alice")
        fill_cart(database, "bob", {product_a.id: 1})
        engine.place_order("bob")
        engine.cancel_order("alice", first.id)

        assert engine.list_all_orders().total == 2
        cancelled = engine.list_all_orders(status="cancelled")
        assert [o.id for o in cancelled.items] == [first.id]
        assert engine.list_all_orders(user_id="bob").total == 1
        assert engine.list_all_orders(payment_status="paid").total == 0


class TestUpdateOrderStatus:
    def test_full_fulfillment_path(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})
        order = engine.place_order(user_id)

        for status in ("processing", "shipped", "delivered"):
            order = engine.update_order_status(order.id, status)
            assert order.status == status

    def test_skipping_a_stage_rejected(self, database, catalog, engine, user_id):
        fill_cart(database, user_id, {catalog["product_a"].id: 1})
        order = engine.place_order(user_id)

        with pytest.raises(InvalidTransitionError):
            engine.update_order_status(order.id, OrderStatus.SHIPPED)
        assert engine.get_any_order(order.id).status == "pending"

    def test_admin_cancel_restores_stock(self, database, catalog, engine, user_id):
        product_a = catalog["product_a"]
        fill_cart(database, user_id, {product_a.id: 4})
        order = engine.place_order(user_id)

        engine.update_order_status(order.id, OrderStatus.CANCELLED)

        assert product_stock(database, product_a.id) == 5

    def test_unknown_order(self, engine):
        with pytest.raises(OrderNotFoundError):
            engine.update_order_status("nope", "processing")
