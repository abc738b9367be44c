"""
Error taxonomy for the Storefront service.

Every business-rule violation raised by the engine is a StorefrontError
subclass carrying the HTTP status it maps to. The API layer turns these
into JSON error responses; anything that is not a StorefrontError is an
unexpected fault.
"""
from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    """Base exception for all typed failures of the order engine."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        """Additional fields included in the error response body."""
        return {}


class ValidationError(StorefrontError):
    """Malformed input, surfaced with field-level messages."""

    status_code = 422


class EmptyCart(ValidationError):
    """Checkout attempted with nothing in the cart."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("Your cart is empty")


class NotFound(StorefrontError):
    """Unknown order, return, transaction or product id."""

    status_code = 404

    def __init__(self, resource: str, resource_id: Any) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class Unauthorized(StorefrontError):
    status_code = 401


class Forbidden(StorefrontError):
    """Actor does not own the resource and lacks override privilege."""

    status_code = 403


class InvalidStateTransition(StorefrontError):
    """Operation is not legal from the entity's current status."""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str, message: Optional[str] = None) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(message or f"Invalid {entity} status transition: {current} -> {target}")

    def extra(self) -> Dict[str, Any]:
        return {"current_status": self.current, "requested_status": self.target}


class InsufficientStock(StorefrontError):
    status_code = 409

    def __init__(self, product_name: str, available: int, requested: int) -> None:
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product '{product_name}'. Available: {available}, Requested: {requested}"
        )

    def extra(self) -> Dict[str, Any]:
        return {"product_name": self.product_name, "available": self.available, "requested": self.requested}


class PaymentDeclined(StorefrontError):
    """Gateway-reported failure; status and message are passed through verbatim."""

    status_code = 402

    def __init__(self, payment_status: str, message: str, transaction_id: Optional[str] = None) -> None:
        self.payment_status = payment_status
        self.transaction_id = transaction_id
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {"payment_status": self.payment_status, "transaction_id": self.transaction_id}


class InternalError(StorefrontError):
    """Unexpected storage or gateway fault. Only a generic message reaches the caller."""

    status_code = 500
