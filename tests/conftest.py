"""Pytest fixtures for storefront tests."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from storefront.carts import CartStore
from storefront.catalog import CatalogStore
from storefront.payments import PaymentGateway
from storefront.store import Database


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database(temp_dir):
    """An empty Database in a temporary data directory."""
    return Database(temp_dir / "data")


@pytest.fixture
def catalog(database):
    """
    Seed one collection with two products.

    product_a: price 10.00, stock 5
    product_b: price 25.00 discounted to 20.00, stock 3
    """
    with database.session() as session:
        store = CatalogStore(session)
        collection = store.add_collection("Kitchen", "Things for cooking")
        product_a = store.add_product(
            name="Product A", price=10.0, collection_id=collection.id, stock=5, sku="SKU-A"
        )
        product_b = store.add_product(
            name="Product B",
            price=25.0,
            discount_price=20.0,
            collection_id=collection.id,
            stock=3,
            sku="SKU-B",
        )
    return {"collection": collection, "product_a": product_a, "product_b": product_b}


@pytest.fixture
def user_id():
    return "user-1"


@pytest.fixture
def approving_gateway():
    """Gateway that approves every charge."""
    return PaymentGateway(success_rate=1.0)


@pytest.fixture
def declining_gateway():
    """Gateway that declines every charge."""
    return PaymentGateway(success_rate=0.0)


def fill_cart(database: Database, user_id: str, lines: dict[str, int]) -> None:
    """Add product_id -> quantity lines to the user's cart."""
    with database.session() as session:
        carts = CartStore(session)
        for product_id, quantity in lines.items():
            carts.add_item(user_id, product_id, quantity)


def product_stock(database: Database, product_id: str) -> int:
    with database.session() as session:
        return CatalogStore(session).get_product(product_id).stock


@pytest.fixture
def api_client(database, approving_gateway):
    """Test client backed by the temporary database and an approving gateway."""
    from storefront.api import app, get_database, get_gateway

    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_gateway] = lambda: approving_gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
