from typing import Any, Optional


class DomainError(Exception):
    """Base for every expected, caller-visible failure raised by the core.

    Carries a machine code and a human message only; the mapping to HTTP
    status codes lives in ``atelier.common.custom_exceptions``.
    """

    code = "DOMAIN_ERROR"

    def __init__(self, message: str = "", details: Optional[Any] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


# validation

class ValidationFailed(DomainError):
    code = "VALIDATION_ERROR"


# identity / authorization

class NotAuthenticated(DomainError):
    code = "NOT_AUTHENTICATED"


class TokenInvalid(DomainError):
    code = "TOKEN_INVALID"


class SessionExpired(DomainError):
    code = "SESSION_EXPIRED"


class InvalidCredentials(DomainError):
    code = "INVALID_CREDENTIALS"


class Forbidden(DomainError):
    code = "FORBIDDEN"


# not found

class VariationNotFound(DomainError):
    code = "VARIATION_NOT_FOUND"


class ProductNotFound(DomainError):
    code = "PRODUCT_NOT_FOUND"


class CartLineNotFound(DomainError):
    code = "CART_LINE_NOT_FOUND"


class OrderNotFound(DomainError):
    code = "ORDER_NOT_FOUND"


class UserNotFound(DomainError):
    code = "USER_NOT_FOUND"


# business rules

class InsufficientStock(DomainError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, variation_id: int, requested: int, available: int, line_id: Optional[int] = None):
        super().__init__(
            f"Not enough stock for variation {variation_id}: requested={requested}, available={available}",
            details={"variation_id": variation_id, "requested": requested,
                     "available": available, "line_id": line_id},
        )
        self.variation_id = variation_id
        self.requested = requested
        self.available = available
        self.line_id = line_id


class EmptyCart(DomainError):
    code = "EMPTY_CART"


class LineNotInCart(DomainError):
    code = "LINE_NOT_IN_CART"


class ProductUnavailable(DomainError):
    code = "PRODUCT_UNAVAILABLE"


class InvalidStatusTransition(DomainError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move from {current} to {requested}",
                         details={"current": current, "requested": requested})
        self.current = current
        self.requested = requested


class EmailTaken(DomainError):
    code = "EMAIL_TAKEN"


class DuplicateSlug(DomainError):
    code = "DUPLICATE_SLUG"


# infrastructure

class CheckoutTimeout(DomainError):
    code = "CHECKOUT_TIMEOUT"
