"""
Domain errors raised by the service layer.

Every error carries the HTTP status and a stable machine-readable code; the
exception handler in storefront.main renders them as
{"detail": <message>, "code": <code>}. Nothing here is retried internally.
"""

from fastapi import status


class StorefrontError(Exception):
    """Base class for storefront errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class InvalidInputError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_INPUT"
    message = "Invalid request"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    message = "Product not found"


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"
    message = "Order not found"


class PaymentNotFoundError(NotFoundError):
    code = "PAYMENT_NOT_FOUND"
    message = "Payment not found"


# ---------------------------------------------------------------------------
# Conflicts and state
# ---------------------------------------------------------------------------


class ConflictError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Conflicting request"


class DuplicateOrderError(ConflictError):
    """The user already holds a PENDING or DONE order for this product."""

    code = "ORDER_ALREADY_EXISTS"
    message = "An order for this product is already in progress"


class InvalidOrderStateError(ConflictError):
    code = "INVALID_ORDER_STATE"
    message = "Order is not in a state that allows this operation"


class RefundAlreadyRequestedError(ConflictError):
    code = "REFUND_ALREADY_REQUESTED"
    message = "A refund has already been requested for this order"


class RefundInProgressError(ConflictError):
    """Another request already claimed this refund and is talking to the gateway."""

    code = "REFUND_IN_PROGRESS"
    message = "A refund for this order is already being processed"


class InsufficientStockError(StorefrontError):
    """Conditional stock decrement touched no rows."""

    status_code = status.HTTP_409_CONFLICT
    code = "OUT_OF_STOCK"
    message = "Not enough stock left"


# ---------------------------------------------------------------------------
# Payment validation
# ---------------------------------------------------------------------------


class AmountMismatchError(StorefrontError):
    """Callback amount differs from the order total. The order is already FAILED."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "AMOUNT_MISMATCH"
    message = "Paid amount does not match the order total"


class CallbackRejectedError(StorefrontError):
    """Callback could not be authenticated. No state was changed."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "CALLBACK_REJECTED"
    message = "Payment callback could not be authenticated"


class NotOrderOwnerError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "UNAUTHORIZED_ORDER_ACCESS"
    message = "You do not have access to this order"


class RefundWindowExpiredError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "REFUND_TIME_EXPIRED"
    message = "The refund window has expired"


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class ExternalServiceError(StorefrontError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "EXTERNAL_SERVICE_FAILURE"
    message = "Payment gateway is unavailable"


class GatewayTransportError(ExternalServiceError):
    """Timeout, connection failure or non-2xx response from the gateway."""

    code = "GATEWAY_UNAVAILABLE"


class GatewayRejectedError(ExternalServiceError):
    """Gateway answered but reported a non-zero result code."""

    code = "GATEWAY_REJECTED"
    message = "Payment gateway rejected the request"

    def __init__(self, message: str | None = None, gateway_code: int | None = None,
                 gateway_error_code: str | None = None) -> None:
        super().__init__(message)
        self.gateway_code = gateway_code
        self.gateway_error_code = gateway_error_code


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


class OrderNumberCollisionError(StorefrontError):
    """Generated order number already exists. Fatal, never retried."""

    code = "ORDER_NUMBER_COLLISION"
    message = "Order number collision"
