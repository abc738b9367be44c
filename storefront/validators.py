"""
Business validation for the Storefront service.

Holds the explicit transition tables for orders and return requests, the
return-eligibility predicate and the cart line checks that run before an
order is placed. Schema-level validation lives in schemas.py.
"""
from decimal import Decimal
from typing import Dict, FrozenSet, List, Tuple

from . import config
from .exceptions import InvalidStateTransition, ValidationError
from .models import OrderStatus, ReturnStatus

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.RETURNED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),  # Terminal state
    OrderStatus.RETURNED: frozenset(),  # Terminal state
}

RETURN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset({ReturnStatus.COMPLETED}),
    ReturnStatus.REJECTED: frozenset(),
    ReturnStatus.COMPLETED: frozenset(),
}

# Orders in these states can have a return request opened against them
RETURNABLE_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})


def validate_status_transition(
    transitions: Dict[str, FrozenSet[str]], old_status: str, new_status: str
) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed by a transition table.

    Args:
        transitions: Transition table (current status -> allowed next statuses)
        old_status: Current status
        new_status: Requested status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status not in transitions:
        return False, f"Unknown status: {old_status}"

    if new_status not in transitions:
        return False, f"Unknown status: {new_status}"

    if new_status not in transitions[old_status]:
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""


def ensure_order_transition(old_status: str, new_status: str, message: str = None) -> None:
    """Raise InvalidStateTransition unless the order table allows old -> new."""
    is_valid, error = validate_status_transition(ORDER_TRANSITIONS, old_status, new_status)
    if not is_valid:
        raise InvalidStateTransition("order", old_status, new_status, message or error)


def ensure_return_transition(old_status: str, new_status: str, message: str = None) -> None:
    """Raise InvalidStateTransition unless the return table allows old -> new."""
    is_valid, error = validate_status_transition(RETURN_TRANSITIONS, old_status, new_status)
    if not is_valid:
        raise InvalidStateTransition("return", old_status, new_status, message or error)


def is_returnable(order_status: str) -> bool:
    """Single eligibility predicate for opening a return request."""
    return order_status in RETURNABLE_ORDER_STATUSES


def validate_order_status(status: str) -> None:
    """Enum membership check used by the administrative status update."""
    if status not in OrderStatus.ALL:
        allowed = ", ".join(OrderStatus.ALL)
        raise ValidationError(
            "Invalid order status",
            errors=[f"status: must be one of {allowed}"],
        )


def validate_cart_lines(lines: List) -> Tuple[bool, str]:
    """
    Validate cart lines for business rules before an order is built.

    Args:
        lines: Cart items (objects with product_id, count and product)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(lines) > config.MAX_ORDER_LINES:
        return False, f"Order cannot contain more than {config.MAX_ORDER_LINES} items"

    for line in lines:
        if line.count <= 0:
            return False, f"Product {line.product_id}: quantity must be positive"

        if line.count > config.MAX_LINE_QUANTITY:
            return False, f"Product {line.product_id}: quantity exceeds maximum ({config.MAX_LINE_QUANTITY})"

        if line.product is None:
            return False, f"Product {line.product_id} does not exist"

        if line.product.price < 0:
            return False, f"Product '{line.product.name}': price cannot be negative"

    return True, ""


def validate_refund_amount(amount: Decimal) -> None:
    # Not compared against the order total
    if amount is None or amount <= 0:
        raise ValidationError(
            "Refund amount must be greater than 0",
            errors=["refund_amount: must be greater than 0"],
        )


def validate_shipping_address(address: str) -> None:
    length = len(address.strip()) if address else 0
    if length < config.SHIPPING_ADDRESS_MIN_LENGTH or length > config.SHIPPING_ADDRESS_MAX_LENGTH:
        raise ValidationError(
            "Invalid shipping address",
            errors=[
                f"shipping_address: must be between {config.SHIPPING_ADDRESS_MIN_LENGTH} "
                f"and {config.SHIPPING_ADDRESS_MAX_LENGTH} characters"
            ],
        )
