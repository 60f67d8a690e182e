"""Catalog storage: collections, products and stock."""

import logging
from typing import Any

from .errors import (
    CollectionInUseError,
    CollectionNotFoundError,
    DuplicateValueError,
    InsufficientStockError,
    InvalidRequestError,
    ProductNotFoundError,
)
from .models import Collection, Page, Product, _utc_now, newest_first, paginate, slugify
from .store import COLLECTIONS, PRODUCTS, Session

logger = logging.getLogger(__name__)

PRODUCT_SORTS = {
    "created_at": ("created_at", False),
    "-created_at": ("created_at", True),
    "price": ("price", False),
    "-price": ("price", True),
    "name": ("name", False),
    "-name": ("name", True),
}

# Fields an admin update may change
PRODUCT_FIELDS = (
    "name",
    "description",
    "price",
    "discount_price",
    "stock",
    "collection_id",
    "sku",
    "tags",
    "is_active",
)

# Fields an update may clear by sending null
NULLABLE_PRODUCT_FIELDS = ("discount_price", "sku")


def validate_pricing(price: float, discount_price: float | None) -> None:
    """
    Raises:
        InvalidRequestError: If price is negative or discount is not below price.
    """
    if price < 0:
        raise InvalidRequestError("Price cannot be negative", field="price")
    if discount_price is None:
        return
    if discount_price < 0:
        raise InvalidRequestError("Discount price cannot be negative", field="discount_price")
    if discount_price >= price:
        raise InvalidRequestError(
            "Discount price must be less than the regular price", field="discount_price"
        )


def validate_stock(stock: int) -> None:
    if stock < 0:
        raise InvalidRequestError("Stock cannot be negative", field="stock")


class CatalogStore:
    """Reads and writes catalog documents within a session."""

    def __init__(self, session: Session):
        self.session = session

    # --- Collections ---

    def list_collections(self, include_inactive: bool = False) -> list[Collection]:
        """List collections sorted by name."""
        docs = self.session.find(COLLECTIONS)
        collections = [Collection.from_dict(d) for d in docs]
        if not include_inactive:
            collections = [c for c in collections if c.is_active]
        return sorted(collections, key=lambda c: c.name.lower())

    def get_collection(self, collection_id: str) -> Collection:
        """
        Raises:
            CollectionNotFoundError: If collection doesn't exist.
        """
        doc = self.session.get(COLLECTIONS, collection_id)
        if doc is None:
            raise CollectionNotFoundError(collection_id)
        return Collection.from_dict(doc)

    def get_collection_by_slug(self, slug: str) -> Collection:
        """Get an active collection by slug."""
        doc = self.session.find_one(COLLECTIONS, slug=slug, is_active=True)
        if doc is None:
            raise CollectionNotFoundError(slug)
        return Collection.from_dict(doc)

    def _check_collection_name(self, name: str, exclude_id: str | None = None) -> None:
        slug = slugify(name)
        for doc in self.session.find(COLLECTIONS):
            if doc["id"] == exclude_id:
                continue
            if doc["name"].lower() == name.lower() or doc["slug"] == slug:
                raise DuplicateValueError("name", name)

    def add_collection(self, name: str, description: str = "") -> Collection:
        """
        Add a new collection.

        Raises:
            InvalidRequestError: If name is blank.
            DuplicateValueError: If name (or its slug) is taken.
        """
        if not name or not name.strip():
            raise InvalidRequestError("Collection name is required", field="name")
        self._check_collection_name(name.strip())

        collection = Collection.create(name, description)
        self.session.insert(COLLECTIONS, collection.to_dict())
        logger.info("Created collection %s (%s)", collection.slug, collection.id)
        return collection

    def update_collection(
        self,
        collection_id: str,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> Collection:
        collection = self.get_collection(collection_id)

        if name is not None:
            if not name.strip():
                raise InvalidRequestError("Collection name is required", field="name")
            self._check_collection_name(name.strip(), exclude_id=collection_id)
            collection.name = name.strip()
            collection.slug = slugify(collection.name)
        if description is not None:
            collection.description = description.strip()
        if is_active is not None:
            collection.is_active = is_active

        collection.updated_at = _utc_now()
        self.session.replace(COLLECTIONS, collection.to_dict())
        return collection

    def remove_collection(self, collection_id: str) -> Collection:
        """
        Delete a collection that no product references.

        Raises:
            CollectionNotFoundError: If collection doesn't exist.
            CollectionInUseError: If products still belong to it.
        """
        collection = self.get_collection(collection_id)
        in_use = self.session.count(PRODUCTS, collection_id=collection_id)
        if in_use:
            raise CollectionInUseError(collection.name, in_use)

        self.session.delete(COLLECTIONS, collection_id)
        logger.info("Deleted collection %s", collection.slug)
        return collection

    # --- Products ---

    def find_product(self, product_id: str) -> Product | None:
        doc = self.session.get(PRODUCTS, product_id)
        return Product.from_dict(doc) if doc else None

    def get_product(self, product_id: str, active_only: bool = False) -> Product:
        """
        Get a product by ID.

        Raises:
            ProductNotFoundError: If product doesn't exist (or is inactive when active_only).
        """
        product = self.find_product(product_id)
        if product is None or (active_only and not product.is_active):
            raise ProductNotFoundError(product_id)
        return product

    def list_products(
        self,
        page: int = 1,
        limit: int = 20,
        collection_id: str | None = None,
        search: str | None = None,
        min_price: float | None = None,
        max_price: float | None = None,
        sort: str = "-created_at",
        is_active: bool | None = True,
    ) -> Page:
        """
        List products matching the filters.

        Args:
            search: Case-insensitive substring of the product name.
            min_price: Lower bound on list price (inclusive).
            max_price: Upper bound on list price (inclusive).
            sort: One of PRODUCT_SORTS.
            is_active: Filter on the active flag; None returns both.
        """
        if sort not in PRODUCT_SORTS:
            raise InvalidRequestError(
                f"Invalid sort '{sort}'. Use one of: {', '.join(PRODUCT_SORTS)}", field="sort"
            )

        criteria: dict[str, Any] = {}
        if is_active is not None:
            criteria["is_active"] = is_active
        if collection_id:
            criteria["collection_id"] = collection_id

        needle = search.lower() if search else None

        def wanted(doc: dict[str, Any]) -> bool:
            if needle and needle not in doc["name"].lower():
                return False
            if min_price is not None and doc["price"] < min_price:
                return False
            if max_price is not None and doc["price"] > max_price:
                return False
            return True

        docs = newest_first(self.session.find(PRODUCTS, predicate=wanted, **criteria))
        key, descending = PRODUCT_SORTS[sort]
        if key != "created_at" or not descending:
            docs.sort(
                key=lambda d: d[key].lower() if key == "name" else d[key], reverse=descending
            )

        result = paginate(docs, page, limit)
        result.items = [Product.from_dict(d) for d in result.items]
        return result

    def _check_sku(self, sku: str | None, exclude_id: str | None = None) -> None:
        if not sku:
            return
        existing = self.session.find_one(PRODUCTS, sku=sku)
        if existing and existing["id"] != exclude_id:
            raise DuplicateValueError("sku", sku)

    def add_product(
        self,
        name: str,
        price: float,
        collection_id: str,
        description: str = "",
        discount_price: float | None = None,
        stock: int = 0,
        sku: str | None = None,
        tags: list[str] | None = None,
    ) -> Product:
        """
        Add a new product.

        Raises:
            InvalidRequestError: For a blank name, bad pricing or negative stock.
            CollectionNotFoundError: If the collection doesn't exist.
            DuplicateValueError: If the sku is taken.
        """
        if not name or not name.strip():
            raise InvalidRequestError("Product name is required", field="name")
        validate_pricing(price, discount_price)
        validate_stock(stock)
        self.get_collection(collection_id)

        product = Product.create(
            name=name,
            price=price,
            collection_id=collection_id,
            description=description,
            discount_price=discount_price,
            stock=stock,
            sku=sku,
            tags=tags,
        )
        self._check_sku(product.sku)

        self.session.insert(PRODUCTS, product.to_dict())
        logger.info("Created product %s (%s) stock=%d", product.name, product.id, product.stock)
        return product

    def update_product(self, product_id: str, changes: dict[str, Any]) -> Product:
        """
        Update product fields named in PRODUCT_FIELDS.

        The merged product is validated as a whole, so lowering the price below
        an existing discount is rejected.
        """
        product = self.get_product(product_id)

        unknown = set(changes) - set(PRODUCT_FIELDS)
        if unknown:
            raise InvalidRequestError(f"Unknown product field(s): {', '.join(sorted(unknown))}")
        nulls = sorted(k for k, v in changes.items() if v is None and k not in NULLABLE_PRODUCT_FIELDS)
        if nulls:
            raise InvalidRequestError(f"Field(s) cannot be null: {', '.join(nulls)}", field=nulls[0])

        data = product.to_dict()
        data.update(changes)
        updated = Product.from_dict(data)
        if not updated.name.strip():
            raise InvalidRequestError("Product name is required", field="name")
        validate_pricing(updated.price, updated.discount_price)
        validate_stock(updated.stock)
        if "collection_id" in changes:
            self.get_collection(updated.collection_id)
        if "sku" in changes:
            updated.sku = updated.sku.strip() if updated.sku else None
            self._check_sku(updated.sku, exclude_id=product_id)
        if "tags" in changes:
            updated.tags = [t.strip().lower() for t in updated.tags if t.strip()]

        updated.updated_at = _utc_now()
        self.session.replace(PRODUCTS, updated.to_dict())
        return updated

    def remove_product(self, product_id: str) -> Product:
        """
        Delete a product. Orders keep their item snapshots.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        product = self.get_product(product_id)
        self.session.delete(PRODUCTS, product_id)
        logger.info("Deleted product %s (%s)", product.name, product_id)
        return product

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        """
        Add delta (negative to remove) to a product's stock.

        The read, the check and the write happen inside the caller's session,
        which holds the store lock, so concurrent callers cannot oversell.

        Raises:
            ProductNotFoundError: If product doesn't exist.
            InsufficientStockError: If the result would be negative.
        """
        product = self.get_product(product_id)
        new_stock = product.stock + delta
        if new_stock < 0:
            raise InsufficientStockError(product.name, product.stock)

        product.stock = new_stock
        product.updated_at = _utc_now()
        self.session.update(
            PRODUCTS, product_id, {"stock": new_stock, "updated_at": product.updated_at}
        )
        logger.debug("Stock for %s adjusted by %+d to %d", product_id, delta, new_stock)
        return product
