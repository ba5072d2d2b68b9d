"""Exception taxonomy for the order lifecycle."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500
    code = "storefront_error"
    retryable = False


class MalformedOrderError(StorefrontError):
    """Raised when a stored order record cannot be repaired into a valid Order."""

    code = "malformed_order"

    def __init__(self, reason: str, order_id: str | None = None):
        self.reason = reason
        self.order_id = order_id
        msg = f"Malformed order record: {reason}"
        if order_id:
            msg = f"Malformed order record {order_id}: {reason}"
        super().__init__(msg)


class InvalidStatusError(StorefrontError):
    """Raised when a caller supplies a status outside the lifecycle."""

    status_code = 422
    code = "invalid_status"

    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid order status: {value!r}")


class NotFoundError(StorefrontError):
    """Raised when the referenced order does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class QueryError(StorefrontError):
    """Raised on backend or transport failure. Safe to retry."""

    status_code = 503
    code = "query_failed"
    retryable = True

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        msg = f"Order store {operation} failed"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ConcurrencyError(StorefrontError):
    """Raised when a write affected zero rows although the order existed."""

    status_code = 409
    code = "nothing_changed"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Update of order {order_id} affected no rows")


class EmptyOrderError(StorefrontError):
    """Raised when checkout is attempted without items."""

    status_code = 400
    code = "empty_order"

    def __init__(self):
        super().__init__("An order needs at least one item")


class PermissionDeniedError(StorefrontError):
    status_code = 403
    code = "permission_denied"


class PaymentVerificationError(StorefrontError):
    """Raised when a webhook payload or its signature cannot be trusted."""

    status_code = 400
    code = "payment_verification_failed"


class PaymentProviderError(StorefrontError):
    """Raised when the payment provider call itself fails."""

    status_code = 502
    code = "payment_provider_failed"
    retryable = True
