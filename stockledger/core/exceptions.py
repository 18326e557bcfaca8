class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    pass

class InvalidAdjustmentError(ValidationError):
    """Raised when a stock adjustment would have no effect (zero delta)."""
    pass

class ProductNotFoundError(BaseServiceError):
    """Raised when product is not found."""
    pass

class OrderNotFoundError(BaseServiceError):
    """Raised when order is not found."""
    pass

class AmbiguousMatchError(BaseServiceError):
    """Raised when an order line matches more than one active product."""

    def __init__(self, message: str, candidate_ids=None):
        super().__init__(message)
        self.candidate_ids = list(candidate_ids or [])

class InvalidTransitionError(BaseServiceError):
    """Raised when an order status change is not allowed."""

    def __init__(self, current_status, requested_status):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot move order from '{getattr(current_status, 'value', current_status)}' "
            f"to '{getattr(requested_status, 'value', requested_status)}'"
        )

class ConcurrencyConflictError(BaseServiceError):
    """Raised when a racing duplicate hits the ledger's idempotency constraint."""

    def __init__(self, order_id, product_id, reason):
        self.order_id = order_id
        self.product_id = product_id
        self.reason = reason
        super().__init__(
            f"Movement for order {order_id}, product {product_id} ({getattr(reason, 'value', reason)}) already recorded"
        )

class DatabaseError(Exception):
    """Exception raised for database-related errors."""
    pass
