"""Custom exceptions for storefront."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    kind = "internal"


class OrderNumberExhaustedError(StorefrontError):
    """Raised when no unused order number could be generated."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique order number after {attempts} attempts")


# --- Validation ---


class InvalidRequestError(StorefrontError):
    """Raised when input is missing or malformed."""

    kind = "validation"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidPaymentMethodError(InvalidRequestError):
    """Raised when a payment method is not one the gateway accepts."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(
            f"Unsupported payment method '{method}'. Use card, bank_transfer or wallet.",
            field="method",
        )


# --- Not found ---


class NotFoundError(StorefrontError):
    """Base for lookups that found nothing (or nothing the caller owns)."""

    kind = "not_found"
    entity = "Resource"

    def __init__(self, entity_id: str | None = None, message: str | None = None):
        self.entity_id = entity_id
        msg = message or f"{self.entity} not found"
        if entity_id and not message:
            msg = f"{msg}: {entity_id}"
        super().__init__(msg)


class ProductNotFoundError(NotFoundError):
    entity = "Product"


class CollectionNotFoundError(NotFoundError):
    entity = "Collection"


class CartNotFoundError(NotFoundError):
    entity = "Cart"


class CartItemNotFoundError(NotFoundError):
    entity = "Cart item"


class OrderNotFoundError(NotFoundError):
    entity = "Order"


class PaymentNotFoundError(NotFoundError):
    """Raised when an order has no payment attempts yet."""

    entity = "Payment"

    def __init__(self, order_id: str):
        super().__init__(order_id, f"No payment record found for order {order_id}")


class UserNotFoundError(NotFoundError):
    entity = "User"


# --- Conflicts (business rule violations) ---


class ConflictError(StorefrontError):
    """Base for requests that are well formed but break a business rule."""

    kind = "conflict"


class EmptyCartError(ConflictError):
    def __init__(self):
        super().__init__("Cart is empty")


class ProductUnavailableError(ConflictError):
    """Raised when a product is inactive or was deleted."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f'Product "{product_name}" is no longer available')


class InsufficientStockError(ConflictError):
    def __init__(self, product_name: str, available: int):
        self.product_name = product_name
        self.available = available
        super().__init__(f'Insufficient stock for "{product_name}". Available: {available}')


class InvalidTransitionError(ConflictError):
    """Raised when a status change is outside the lifecycle transition table."""

    def __init__(self, field: str, current: str, target: str, message: str | None = None):
        self.field = field
        self.current = current
        self.target = target
        super().__init__(message or f'Cannot change {field} from "{current}" to "{target}"')


class OrderNotCancellableError(InvalidTransitionError):
    def __init__(self, current: str):
        super().__init__(
            "status", current, "cancelled", f'Cannot cancel an order with status "{current}"'
        )


class OrderAlreadyPaidError(ConflictError):
    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} has already been paid")


class OrderNotPayableError(ConflictError):
    """Raised when paying for a cancelled order."""

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Cannot pay for cancelled order {order_number}")


class CollectionInUseError(ConflictError):
    def __init__(self, name: str, product_count: int):
        self.name = name
        self.product_count = product_count
        super().__init__(
            f'Cannot delete collection "{name}": {product_count} product(s) still reference it'
        )


class DuplicateValueError(ConflictError):
    """Raised when a unique field already holds the given value."""

    def __init__(self, field: str, value: str, message: str | None = None):
        self.field = field
        self.value = value
        super().__init__(message or f"Duplicate value for '{field}': {value}")


class EmailExistsError(DuplicateValueError):
    def __init__(self, email: str):
        super().__init__("email", email, "Email already registered")


# --- Auth ---


class AuthenticationError(StorefrontError):
    """Raised when credentials or tokens are missing, invalid or expired."""

    kind = "auth"

    def __init__(self, message: str = "Not authorised"):
        super().__init__(message)


class AccountDeactivatedError(StorefrontError):
    kind = "forbidden"

    def __init__(self):
        super().__init__("Account has been deactivated")


class AdminRequiredError(StorefrontError):
    kind = "forbidden"

    def __init__(self):
        super().__init__("Admin access required")
