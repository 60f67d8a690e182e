"""Tests for CartStore."""

import pytest

from storefront.carts import CartStore
from storefront.catalog import CatalogStore
from storefront.errors import (
    CartItemNotFoundError,
    CartNotFoundError,
    InsufficientStockError,
    InvalidRequestError,
    ProductNotFoundError,
)


class TestCartStore:
    def test_get_cart_creates_empty(self, database, user_id):
        with database.session() as session:
            cart = CartStore(session).get_cart(user_id)

        assert cart.user_id == user_id
        assert cart.items == []
        assert cart.total == 0

        # Second access returns the same cart
        with database.session() as session:
            assert CartStore(session).get_cart(user_id).id == cart.id

    def test_add_item_uses_effective_price(self, database, catalog, user_id):
        with database.session() as session:
            cart = CartStore(session).add_item(user_id, catalog["product_b"].id, 2)

        assert len(cart.items) == 1
        assert cart.items[0].price == 20.0
        assert cart.total == 40.0
        assert cart.item_count == 2

    def test_add_existing_item_merges_quantity(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, product_id, 2)
            cart = carts.add_item(user_id, product_id, 1)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_add_beyond_stock_rejected(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, product_id, 4)
            with pytest.raises(InsufficientStockError):
                carts.add_item(user_id, product_id, 2)

    def test_add_inactive_product_rejected(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            CatalogStore(session).update_product(product_id, {"is_active": False})
            with pytest.raises(ProductNotFoundError):
                CartStore(session).add_item(user_id, product_id)

    def test_add_zero_quantity_rejected(self, database, catalog, user_id):
        with database.session() as session:
            with pytest.raises(InvalidRequestError):
                CartStore(session).add_item(user_id, catalog["product_a"].id, 0)

    def test_update_quantity(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, product_id, 1)
            cart = carts.update_item(user_id, product_id, 4)
        assert cart.items[0].quantity == 4

    def test_update_to_zero_removes_line(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, product_id, 1)
            cart = carts.update_item(user_id, product_id, 0)
        assert cart.items == []

    def test_update_beyond_stock_rejected(self, database, catalog, user_id):
        product_id = catalog["product_a"].id
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, product_id, 1)
            with pytest.raises(InsufficientStockError):
                carts.update_item(user_id, product_id, 6)

    def test_update_without_cart(self, database, catalog, user_id):
        with database.session() as session:
            with pytest.raises(CartNotFoundError):
                CartStore(session).update_item(user_id, catalog["product_a"].id, 1)

    def test_remove_missing_item(self, database, catalog, user_id):
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, catalog["product_a"].id, 1)
            with pytest.raises(CartItemNotFoundError):
                carts.remove_item(user_id, catalog["product_b"].id)

    def test_remove_item(self, database, catalog, user_id):
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, catalog["product_a"].id, 1)
            carts.add_item(user_id, catalog["product_b"].id, 1)
            cart = carts.remove_item(user_id, catalog["product_a"].id)
        assert [i.product_id for i in cart.items] == [catalog["product_b"].id]

    def test_clear(self, database, catalog, user_id):
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item(user_id, catalog["product_a"].id, 2)
            carts.clear(user_id)

        with database.session() as session:
            assert CartStore(session).get_cart(user_id).items == []

    def test_carts_are_per_user(self, database, catalog):
        with database.session() as session:
            carts = CartStore(session)
            carts.add_item("alice", catalog["product_a"].id, 1)
            assert carts.get_cart("bob").items == []
