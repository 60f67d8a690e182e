"""storefront - catalog, carts, orders and simulated payments for a small online shop."""

__version__ = "0.1.0"
