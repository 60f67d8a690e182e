"""Data models for storefront."""

import random
import re
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .lifecycle import OrderStatus, PaymentMethod, PaymentRecordStatus, PaymentStatus

_BASE36 = string.digits + string.ascii_uppercase


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new document ID."""
    return str(uuid.uuid4())


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """Return e.g. 'ORD-LXK2Z9QA-7F3K' (millisecond timestamp + random suffix)."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"ORD-{timestamp}-{suffix}"


def round_money(value: float) -> float:
    """Round a currency amount to cents."""
    return round(value, 2)


def generate_transaction_ref() -> str:
    return f"TXN-{str(uuid.uuid4()).upper()}"


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass
class User:
    """A registered, admin or anonymous guest account."""

    id: str
    name: str = "Guest"
    email: str | None = None
    password_hash: str | None = None
    role: str = "user"  # "user" | "admin" | "anonymous"
    is_anonymous: bool = False
    is_active: bool = True
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password_hash": self.password_hash,
            "role": self.role,
            "is_anonymous": self.is_anonymous,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def public_dict(self) -> dict[str, Any]:
        """to_dict() without the password hash."""
        data = self.to_dict()
        data.pop("password_hash")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            name=data.get("name", "Guest"),
            email=data.get("email"),
            password_hash=data.get("password_hash"),
            role=data.get("role", "user"),
            is_anonymous=data.get("is_anonymous", False),
            is_active=data.get("is_active", True),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        name: str,
        email: str | None = None,
        password_hash: str | None = None,
        role: str = "user",
    ) -> "User":
        """Create a new user with generated ID and timestamps."""
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name,
            email=email.strip().lower() if email else None,
            password_hash=password_hash,
            role=role,
            is_anonymous=role == "anonymous",
            created_at=now,
            updated_at=now,
        )


@dataclass
class Collection:
    """A product category."""

    id: str
    name: str
    slug: str
    description: str = ""
    is_active: bool = True
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Collection":
        return cls(
            id=data["id"],
            name=data["name"],
            slug=data.get("slug") or slugify(data["name"]),
            description=data.get("description", ""),
            is_active=data.get("is_active", True),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(cls, name: str, description: str = "") -> "Collection":
        now = _utc_now()
        name = name.strip()
        return cls(
            id=_generate_id(),
            name=name,
            slug=slugify(name),
            description=description.strip(),
            created_at=now,
            updated_at=now,
        )


@dataclass
class Product:
    """A sellable catalog item."""

    id: str
    name: str
    price: float
    collection_id: str
    description: str = ""
    discount_price: float | None = None
    stock: int = 0
    sku: str | None = None
    tags: list[str] = field(default_factory=list)
    is_active: bool = True
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def effective_price(self) -> float:
        """Selling price: the discount price when set, else the list price."""
        if self.discount_price is not None:
            return self.discount_price
        return self.price

    @property
    def discount_percentage(self) -> int:
        if self.discount_price is not None and self.price > 0:
            return round((self.price - self.discount_price) / self.price * 100)
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "discount_price": self.discount_price,
            "stock": self.stock,
            "collection_id": self.collection_id,
            "sku": self.sku,
            "tags": self.tags,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            price=data["price"],
            discount_price=data.get("discount_price"),
            stock=data.get("stock", 0),
            collection_id=data["collection_id"],
            sku=data.get("sku"),
            tags=data.get("tags", []),
            is_active=data.get("is_active", True),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        name: str,
        price: float,
        collection_id: str,
        description: str = "",
        discount_price: float | None = None,
        stock: int = 0,
        sku: str | None = None,
        tags: list[str] | None = None,
    ) -> "Product":
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name.strip(),
            price=price,
            collection_id=collection_id,
            description=description.strip(),
            discount_price=discount_price,
            stock=stock,
            sku=sku.strip() if sku else None,
            tags=[t.strip().lower() for t in (tags or []) if t.strip()],
            created_at=now,
            updated_at=now,
        )


@dataclass
class CartItem:
    """A cart line; price is the effective price when the item was added."""

    product_id: str
    quantity: int
    price: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=data["product_id"],
            quantity=data["quantity"],
            price=data["price"],
        )


@dataclass
class Cart:
    """One cart per user."""

    id: str
    user_id: str
    items: list[CartItem] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def total(self) -> float:
        return round_money(sum(item.price * item.quantity for item in self.items))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            items=[CartItem.from_dict(i) for i in data.get("items", [])],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(cls, user_id: str) -> "Cart":
        now = _utc_now()
        return cls(id=_generate_id(), user_id=user_id, created_at=now, updated_at=now)


@dataclass(frozen=True)
class OrderItem:
    """Snapshot of a purchased line, copied from the product at order time."""

    product_id: str | None
    product_name: str
    product_sku: str
    quantity: int
    price: float
    subtotal: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=data.get("product_id"),
            product_name=data["product_name"],
            product_sku=data.get("product_sku", ""),
            quantity=data["quantity"],
            price=data["price"],
            subtotal=data["subtotal"],
        )

    @classmethod
    def snapshot(cls, product: Product, quantity: int) -> "OrderItem":
        price = product.effective_price
        return cls(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku or "",
            quantity=quantity,
            price=price,
            subtotal=round_money(price * quantity),
        )


@dataclass
class ShippingAddress:
    full_name: str = "N/A"
    street: str = "N/A"
    city: str = "N/A"
    state: str = "N/A"
    zip: str = "N/A"
    country: str = "N/A"

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ShippingAddress":
        data = data or {}
        # Blank values fall back to the placeholder like missing ones
        return cls(**{k: (data.get(k) or "N/A") for k in cls().to_dict()})


@dataclass
class Order:
    """A placed order. Items and total are fixed at creation."""

    id: str
    order_number: str
    user_id: str
    items: list[OrderItem]
    total_amount: float
    status: str = OrderStatus.PENDING.value
    payment_status: str = PaymentStatus.PENDING.value
    payment_ref: str | None = None
    shipping_address: ShippingAddress = field(default_factory=ShippingAddress)
    notes: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_ref": self.payment_ref,
            "shipping_address": self.shipping_address.to_dict(),
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            order_number=data["order_number"],
            user_id=data["user_id"],
            items=[OrderItem.from_dict(i) for i in data.get("items", [])],
            total_amount=data["total_amount"],
            status=data.get("status", OrderStatus.PENDING.value),
            payment_status=data.get("payment_status", PaymentStatus.PENDING.value),
            payment_ref=data.get("payment_ref"),
            shipping_address=ShippingAddress.from_dict(data.get("shipping_address")),
            notes=data.get("notes"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        items: list[OrderItem],
        order_number: str,
        shipping_address: ShippingAddress | None = None,
        notes: str | None = None,
    ) -> "Order":
        """Create a pending order; total_amount is the sum of item subtotals."""
        now = _utc_now()
        notes = notes.strip() if notes else None
        return cls(
            id=_generate_id(),
            order_number=order_number,
            user_id=user_id,
            items=list(items),
            total_amount=round_money(sum(item.subtotal for item in items)),
            shipping_address=shipping_address or ShippingAddress(),
            notes=notes or None,
            created_at=now,
            updated_at=now,
        )


@dataclass
class Payment:
    """One payment attempt against an order."""

    id: str
    order_id: str
    user_id: str
    amount: float
    method: str = PaymentMethod.CARD.value
    status: str = PaymentRecordStatus.PENDING.value
    transaction_ref: str = field(default_factory=generate_transaction_ref)
    gateway_response: dict[str, Any] = field(default_factory=dict)
    simulated_at: str | None = None
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "method": self.method,
            "status": self.status,
            "transaction_ref": self.transaction_ref,
            "gateway_response": self.gateway_response,
            "simulated_at": self.simulated_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Payment":
        return cls(
            id=data["id"],
            order_id=data["order_id"],
            user_id=data["user_id"],
            amount=data["amount"],
            method=data.get("method", PaymentMethod.CARD.value),
            status=data.get("status", PaymentRecordStatus.PENDING.value),
            transaction_ref=data["transaction_ref"],
            gateway_response=data.get("gateway_response", {}),
            simulated_at=data.get("simulated_at"),
            created_at=data.get("created_at", ""),
        )

    @classmethod
    def create(
        cls,
        order_id: str,
        user_id: str,
        amount: float,
        method: str,
        status: str,
        gateway_response: dict[str, Any],
    ) -> "Payment":
        now = _utc_now()
        return cls(
            id=_generate_id(),
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            method=method,
            status=status,
            gateway_response=gateway_response,
            simulated_at=now,
            created_at=now,
        )


@dataclass
class Page:
    """One page of a listing."""

    items: list[Any]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


def paginate(items: list[Any], page: int, limit: int) -> Page:
    """Slice items for a 1-based page number."""
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return Page(items=items[start : start + limit], total=len(items), page=page, limit=limit)


def newest_first(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort documents by created_at descending; later inserts win ties."""
    return sorted(reversed(docs), key=lambda d: d.get("created_at", ""), reverse=True)
