"""FastAPI REST API for the storefront."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field

from . import __version__
from .auth import AuthService
from .carts import CartStore
from .catalog import CatalogStore
from .config import get_settings
from .errors import (
    AccountDeactivatedError,
    AdminRequiredError,
    AuthenticationError,
    ConflictError,
    DuplicateValueError,
    InvalidRequestError,
    NotFoundError,
    StorefrontError,
)
from .lifecycle import OrderStatus, PaymentMethod, PaymentStatus
from .models import Cart, Page, Product, User, round_money
from .orders import OrderEngine
from .payments import PaymentGateway, PaymentProcessor
from .store import Database

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


class UserSchema(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: str
    is_anonymous: bool
    is_active: bool
    created_at: str
    updated_at: str


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserSchema


# --- Catalog Schemas ---


class CollectionSchema(BaseModel):
    id: str
    name: str
    slug: str
    description: str
    is_active: bool
    created_at: str
    updated_at: str


class CollectionListResponse(BaseModel):
    collections: list[CollectionSchema]
    count: int


class CollectionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class CollectionUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ProductSchema(BaseModel):
    id: str
    name: str
    description: str
    price: float
    discount_price: Optional[float] = None
    effective_price: float
    discount_percentage: int
    stock: int
    collection_id: str
    sku: Optional[str] = None
    tags: list[str]
    is_active: bool
    created_at: str
    updated_at: str


class ProductListResponse(BaseModel):
    products: list[ProductSchema]
    count: int
    total: int
    page: int
    pages: int


class CollectionProductsResponse(ProductListResponse):
    collection: CollectionSchema


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    collection_id: str = Field(..., description="ID of the owning collection")
    description: str = ""
    discount_price: Optional[float] = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)
    sku: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class ProductUpdateRequest(BaseModel):
    """Only fields present in the request body are changed."""

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    discount_price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    collection_id: Optional[str] = None
    sku: Optional[str] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None


# --- Cart Schemas ---


class CartProductSchema(BaseModel):
    """Live product details shown next to a cart line."""

    id: str
    name: str
    effective_price: float
    stock: int
    is_active: bool


class CartItemSchema(BaseModel):
    product_id: str
    quantity: int
    price: float
    subtotal: float
    product: Optional[CartProductSchema] = None


class CartSchema(BaseModel):
    id: str
    user_id: str
    items: list[CartItemSchema]
    total: float
    item_count: int
    updated_at: str


class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)


class CartUpdateRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0, description="Set to 0 to remove the item")


# --- Order Schemas ---


class ShippingAddressSchema(BaseModel):
    full_name: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class PlaceOrderRequest(BaseModel):
    shipping_address: Optional[ShippingAddressSchema] = None
    notes: Optional[str] = None


class OrderItemSchema(BaseModel):
    product_id: Optional[str] = None
    product_name: str
    product_sku: str
    quantity: int
    price: float
    subtotal: float


class OrderSchema(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: list[OrderItemSchema]
    total_amount: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_ref: Optional[str] = None
    shipping_address: ShippingAddressSchema
    notes: Optional[str] = None
    created_at: str
    updated_at: str


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int
    total: int
    page: int
    pages: int


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus


# --- Payment Schemas ---


class SimulatePaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    method: PaymentMethod = PaymentMethod.CARD


class PaymentSchema(BaseModel):
    id: str
    order_id: str
    user_id: str
    amount: float
    method: str
    status: str
    transaction_ref: str
    gateway_response: dict[str, Any]
    simulated_at: Optional[str] = None
    created_at: str


class PaymentResultSchema(BaseModel):
    success: bool
    message: str
    transaction_ref: str
    amount: float
    method: str
    status: str
    order_number: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    gateway_response: dict[str, Any]


class PaymentOrderSummary(BaseModel):
    id: str
    order_number: str
    total_amount: float
    status: str


class PaymentHistoryEntrySchema(PaymentSchema):
    order: Optional[PaymentOrderSummary] = None


class PaymentHistoryResponse(BaseModel):
    payments: list[PaymentHistoryEntrySchema]
    count: int


# --- Dependencies ---


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_database() -> Database:
    """Get the global Database."""
    return Database()


def get_gateway() -> PaymentGateway:
    """Get a payment gateway using the configured success rate."""
    return PaymentGateway(success_rate=get_settings().payment_success_rate)


def get_auth_service(database: Database = Depends(get_database)) -> AuthService:
    return AuthService(database)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the caller from the bearer token."""
    if not token:
        raise AuthenticationError("Not authorised, no token provided")
    return auth.resolve_token(token)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise AdminRequiredError()
    return user


# --- Helper Functions ---


def user_to_schema(user: User) -> UserSchema:
    return UserSchema(**user.public_dict())


def product_to_schema(product: Product) -> ProductSchema:
    return ProductSchema(
        **product.to_dict(),
        effective_price=product.effective_price,
        discount_percentage=product.discount_percentage,
    )


def product_page_response(page: Page) -> ProductListResponse:
    return ProductListResponse(
        products=[product_to_schema(p) for p in page.items],
        count=len(page.items),
        total=page.total,
        page=page.page,
        pages=page.pages,
    )


def order_page_response(page: Page) -> OrderListResponse:
    return OrderListResponse(
        orders=[OrderSchema(**o.to_dict()) for o in page.items],
        count=len(page.items),
        total=page.total,
        page=page.page,
        pages=page.pages,
    )


def cart_to_schema(cart: Cart, catalog: CatalogStore) -> CartSchema:
    """Convert a Cart to its schema, attaching live product details to each line."""
    items = []
    for item in cart.items:
        product = catalog.find_product(item.product_id)
        summary = None
        if product is not None:
            summary = CartProductSchema(
                id=product.id,
                name=product.name,
                effective_price=product.effective_price,
                stock=product.stock,
                is_active=product.is_active,
            )
        items.append(
            CartItemSchema(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                subtotal=round_money(item.price * item.quantity),
                product=summary,
            )
        )
    return CartSchema(
        id=cart.id,
        user_id=cart.user_id,
        items=items,
        total=cart.total,
        item_count=cart.item_count,
        updated_at=cart.updated_at,
    )


def auth_response(user: User, token: str) -> AuthResponse:
    return AuthResponse(token=token, user=user_to_schema(user))


# --- App ---


app = FastAPI(
    title="storefront API",
    description="REST API for the storefront: catalog, carts, orders and simulated payments",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes; the most specific class wins
ERROR_STATUS_CODES: dict[type, int] = {
    InvalidRequestError: 400,
    NotFoundError: 404,
    ConflictError: 400,
    DuplicateValueError: 409,
    AuthenticationError: 401,
    AccountDeactivatedError: 403,
    AdminRequiredError: 403,
}


def status_code_for(exc: StorefrontError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to appropriate HTTP responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
        headers=headers,
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check(database: Database = Depends(get_database)):
    """
    Health check endpoint.

    Reports whether the data directory is usable.
    """
    try:
        writable = database.is_writable()
        return {
            "status": "ok" if writable else "degraded",
            "service": "storefront",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except OSError as e:
        return {
            "status": "error",
            "detail": str(e),
        }


# --- Auth Endpoints ---


@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(request: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    user, token = auth.register(request.name, request.email, request.password)
    return auth_response(user, token)


@app.post("/api/auth/login", response_model=AuthResponse)
def login(request: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    user, token = auth.login(request.email, request.password)
    return auth_response(user, token)


@app.post("/api/auth/anonymous", response_model=AuthResponse, status_code=201)
def anonymous_login(auth: AuthService = Depends(get_auth_service)):
    """Create a guest session so the cart can be persisted before sign-up."""
    user, token = auth.anonymous_login()
    return auth_response(user, token)


@app.post("/api/auth/admin/login", response_model=AuthResponse)
def admin_login(request: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    user, token = auth.admin_login(request.email, request.password)
    return auth_response(user, token)


@app.get("/api/auth/me", response_model=UserSchema)
def me(user: User = Depends(get_current_user)):
    return user_to_schema(user)


# --- Catalog Endpoints ---


@app.get("/api/products", response_model=ProductListResponse)
def list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    collection: Optional[str] = Query(default=None, description="Collection ID"),
    search: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, ge=0),
    max_price: Optional[float] = Query(default=None, ge=0),
    sort: str = Query(default="-created_at"),
    database: Database = Depends(get_database),
):
    """List active products."""
    with database.session() as session:
        result = CatalogStore(session).list_products(
            page=page,
            limit=limit,
            collection_id=collection,
            search=search,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
        )
    return product_page_response(result)


@app.get("/api/products/collection/{slug}", response_model=CollectionProductsResponse)
def list_collection_products(
    slug: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    database: Database = Depends(get_database),
):
    """List active products in an active collection."""
    with database.session() as session:
        catalog = CatalogStore(session)
        collection = catalog.get_collection_by_slug(slug)
        result = catalog.list_products(page=page, limit=limit, collection_id=collection.id)
    listing = product_page_response(result)
    return CollectionProductsResponse(
        **listing.model_dump(), collection=CollectionSchema(**collection.to_dict())
    )


@app.get("/api/products/{product_id}", response_model=ProductSchema)
def get_product(product_id: str, database: Database = Depends(get_database)):
    with database.session() as session:
        product = CatalogStore(session).get_product(product_id, active_only=True)
    return product_to_schema(product)


@app.get("/api/collections", response_model=CollectionListResponse)
def list_collections(database: Database = Depends(get_database)):
    with database.session() as session:
        collections = CatalogStore(session).list_collections()
    return CollectionListResponse(
        collections=[CollectionSchema(**c.to_dict()) for c in collections],
        count=len(collections),
    )


# --- Cart Endpoints ---


@app.get("/api/cart", response_model=CartSchema)
def get_cart(user: User = Depends(get_current_user), database: Database = Depends(get_database)):
    """Get the caller's cart (created empty on first access)."""
    with database.session() as session:
        carts = CartStore(session)
        cart = carts.get_cart(user.id)
        return cart_to_schema(cart, carts.catalog)


@app.post("/api/cart/add", response_model=CartSchema)
def add_to_cart(
    request: CartAddRequest,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        carts = CartStore(session)
        cart = carts.add_item(user.id, request.product_id, request.quantity)
        return cart_to_schema(cart, carts.catalog)


@app.put("/api/cart/update", response_model=CartSchema)
def update_cart_item(
    request: CartUpdateRequest,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        carts = CartStore(session)
        cart = carts.update_item(user.id, request.product_id, request.quantity)
        return cart_to_schema(cart, carts.catalog)


@app.delete("/api/cart/remove/{product_id}", response_model=CartSchema)
def remove_from_cart(
    product_id: str,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        carts = CartStore(session)
        cart = carts.remove_item(user.id, product_id)
        return cart_to_schema(cart, carts.catalog)


@app.delete("/api/cart/clear", response_model=CartSchema)
def clear_cart(user: User = Depends(get_current_user), database: Database = Depends(get_database)):
    with database.session() as session:
        carts = CartStore(session)
        cart = carts.clear(user.id)
        return cart_to_schema(cart, carts.catalog)


# --- Order Endpoints ---


@app.post("/api/orders", response_model=OrderSchema, status_code=201)
def place_order(
    request: Optional[PlaceOrderRequest] = None,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    """
    Place an order from the caller's cart.

    Deducts stock and empties the cart. Payment is a separate step via
    /api/payment/simulate.
    """
    request = request or PlaceOrderRequest()
    address = request.shipping_address.model_dump() if request.shipping_address else None
    order = OrderEngine(database).place_order(user.id, address, request.notes)
    return OrderSchema(**order.to_dict())


@app.get("/api/orders", response_model=OrderListResponse)
def list_my_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    result = OrderEngine(database).list_orders(user.id, page=page, limit=limit)
    return order_page_response(result)


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
def get_my_order(
    order_id: str,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    order = OrderEngine(database).get_order(user.id, order_id)
    return OrderSchema(**order.to_dict())


@app.put("/api/orders/{order_id}/cancel", response_model=OrderSchema)
def cancel_order(
    order_id: str,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    """Cancel a pending or processing order and restore stock."""
    order = OrderEngine(database).cancel_order(user.id, order_id)
    return OrderSchema(**order.to_dict())


# --- Payment Endpoints ---


@app.post("/api/payment/simulate", response_model=PaymentResultSchema, status_code=201)
def simulate_payment(
    request: SimulatePaymentRequest,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Simulate paying for an order.

    No card data is collected. On approval the order becomes paid and moves
    to processing; a decline is recorded and the order can be paid again.
    """
    result = PaymentProcessor(database, gateway).simulate_payment(
        user.id, request.order_id, request.method
    )
    return PaymentResultSchema(**result.to_dict())


@app.get("/api/payment/history", response_model=PaymentHistoryResponse)
def payment_history(user: User = Depends(get_current_user), database: Database = Depends(get_database)):
    entries = PaymentProcessor(database).payment_history(user.id)
    return PaymentHistoryResponse(
        payments=[PaymentHistoryEntrySchema(**e) for e in entries],
        count=len(entries),
    )


@app.get("/api/payment/{order_id}", response_model=PaymentSchema)
def get_order_payment(
    order_id: str,
    user: User = Depends(get_current_user),
    database: Database = Depends(get_database),
):
    """Latest payment attempt for one of the caller's orders."""
    payment = PaymentProcessor(database).get_latest_payment(user.id, order_id)
    return PaymentSchema(**payment.to_dict())


# --- Admin Endpoints ---


@app.get("/api/admin/collections", response_model=CollectionListResponse)
def admin_list_collections(
    admin: User = Depends(require_admin), database: Database = Depends(get_database)
):
    with database.session() as session:
        collections = CatalogStore(session).list_collections(include_inactive=True)
    return CollectionListResponse(
        collections=[CollectionSchema(**c.to_dict()) for c in collections],
        count=len(collections),
    )


@app.post("/api/admin/collections", response_model=CollectionSchema, status_code=201)
def admin_create_collection(
    request: CollectionCreateRequest,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        collection = CatalogStore(session).add_collection(request.name, request.description)
    return CollectionSchema(**collection.to_dict())


@app.get("/api/admin/collections/{collection_id}", response_model=CollectionSchema)
def admin_get_collection(
    collection_id: str,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        collection = CatalogStore(session).get_collection(collection_id)
    return CollectionSchema(**collection.to_dict())


@app.put("/api/admin/collections/{collection_id}", response_model=CollectionSchema)
def admin_update_collection(
    collection_id: str,
    request: CollectionUpdateRequest,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        collection = CatalogStore(session).update_collection(
            collection_id,
            name=request.name,
            description=request.description,
            is_active=request.is_active,
        )
    return CollectionSchema(**collection.to_dict())


@app.delete("/api/admin/collections/{collection_id}", response_model=CollectionSchema)
def admin_delete_collection(
    collection_id: str,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Delete a collection; refused while products still belong to it."""
    with database.session() as session:
        collection = CatalogStore(session).remove_collection(collection_id)
    return CollectionSchema(**collection.to_dict())


@app.get("/api/admin/products", response_model=ProductListResponse)
def admin_list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    collection: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """List products including inactive ones unless is_active is given."""
    with database.session() as session:
        result = CatalogStore(session).list_products(
            page=page, limit=limit, collection_id=collection, search=search, is_active=is_active
        )
    return product_page_response(result)


@app.post("/api/admin/products", response_model=ProductSchema, status_code=201)
def admin_create_product(
    request: ProductCreateRequest,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        product = CatalogStore(session).add_product(**request.model_dump())
    return product_to_schema(product)


@app.get("/api/admin/products/{product_id}", response_model=ProductSchema)
def admin_get_product(
    product_id: str,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        product = CatalogStore(session).get_product(product_id)
    return product_to_schema(product)


@app.put("/api/admin/products/{product_id}", response_model=ProductSchema)
def admin_update_product(
    product_id: str,
    request: ProductUpdateRequest,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Update only the fields present in the body; send discount_price=null to clear it."""
    changes = request.model_dump(exclude_unset=True)
    with database.session() as session:
        product = CatalogStore(session).update_product(product_id, changes)
    return product_to_schema(product)


@app.delete("/api/admin/products/{product_id}", response_model=ProductSchema)
def admin_delete_product(
    product_id: str,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    with database.session() as session:
        product = CatalogStore(session).remove_product(product_id)
    return product_to_schema(product)


@app.get("/api/admin/orders", response_model=OrderListResponse)
def admin_list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    result = OrderEngine(database).list_all_orders(
        page=page, limit=limit, status=status, payment_status=payment_status
    )
    return order_page_response(result)


@app.get("/api/admin/orders/{order_id}", response_model=OrderSchema)
def admin_get_order(
    order_id: str,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    order = OrderEngine(database).get_any_order(order_id)
    return OrderSchema(**order.to_dict())


@app.put("/api/admin/orders/{order_id}/status", response_model=OrderSchema)
def admin_update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    admin: User = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Advance an order's fulfillment status (pending -> processing -> shipped -> delivered)."""
    order = OrderEngine(database).update_order_status(order_id, request.status)
    return OrderSchema(**order.to_dict())
