"""Per-user shopping carts."""

import logging

from .catalog import CatalogStore
from .errors import (
    CartItemNotFoundError,
    CartNotFoundError,
    InsufficientStockError,
    InvalidRequestError,
)
from .models import Cart, CartItem, _utc_now
from .store import CARTS, Session

logger = logging.getLogger(__name__)


class CartStore:
    """Manages carts within a session. Each user has at most one cart."""

    def __init__(self, session: Session):
        self.session = session
        self.catalog = CatalogStore(session)

    def find_cart(self, user_id: str) -> Cart | None:
        doc = self.session.find_one(CARTS, user_id=user_id)
        return Cart.from_dict(doc) if doc else None

    def get_cart(self, user_id: str) -> Cart:
        """Get the user's cart, creating an empty one on first access."""
        cart = self.find_cart(user_id)
        if cart is None:
            cart = Cart.create(user_id)
            self.session.insert(CARTS, cart.to_dict())
        return cart

    def _save(self, cart: Cart) -> None:
        cart.updated_at = _utc_now()
        self.session.replace(CARTS, cart.to_dict())

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> Cart:
        """
        Add a product, or raise the quantity of an existing line.

        The line's price is (re)set to the product's current effective price.

        Raises:
            InvalidRequestError: If quantity < 1.
            ProductNotFoundError: If product doesn't exist or is inactive.
            InsufficientStockError: If the combined quantity exceeds stock.
        """
        if quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1", field="quantity")

        product = self.catalog.get_product(product_id, active_only=True)
        cart = self.get_cart(user_id)

        item = cart.find_item(product_id)
        new_quantity = quantity + (item.quantity if item else 0)
        if new_quantity > product.stock:
            raise InsufficientStockError(product.name, product.stock)

        if item:
            item.quantity = new_quantity
            item.price = product.effective_price
        else:
            cart.items.append(
                CartItem(product_id=product_id, quantity=quantity, price=product.effective_price)
            )

        self._save(cart)
        return cart

    def update_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        """
        Set a line's quantity; 0 removes the line.

        Raises:
            InvalidRequestError: If quantity < 0.
            CartNotFoundError: If the user has no cart.
            CartItemNotFoundError: If the product is not in the cart.
            InsufficientStockError: If quantity exceeds current stock.
        """
        if quantity < 0:
            raise InvalidRequestError("Quantity cannot be negative", field="quantity")

        cart = self.find_cart(user_id)
        if cart is None:
            raise CartNotFoundError(user_id)
        item = cart.find_item(product_id)
        if item is None:
            raise CartItemNotFoundError(product_id)

        if quantity == 0:
            cart.items.remove(item)
        else:
            product = self.catalog.find_product(product_id)
            if product is not None and quantity > product.stock:
                raise InsufficientStockError(product.name, product.stock)
            item.quantity = quantity

        self._save(cart)
        return cart

    def remove_item(self, user_id: str, product_id: str) -> Cart:
        """
        Raises:
            CartNotFoundError: If the user has no cart.
            CartItemNotFoundError: If the product is not in the cart.
        """
        cart = self.find_cart(user_id)
        if cart is None:
            raise CartNotFoundError(user_id)
        item = cart.find_item(product_id)
        if item is None:
            raise CartItemNotFoundError(product_id)

        cart.items.remove(item)
        self._save(cart)
        return cart

    def clear(self, user_id: str) -> Cart:
        """Remove every line from the user's cart."""
        cart = self.get_cart(user_id)
        if cart.items:
            cart.items = []
            self._save(cart)
        return cart
