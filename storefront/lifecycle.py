"""
Order lifecycle engine.

Turns a cart into an order (standard checkout and one-click-buy), cancels
pending orders and applies administrative status corrections. Each operation
runs as one unit of work: stock reservations, the order rows, the ledger
entry, the cart clear and the timeline event commit together or not at all.
"""
import logging
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import cart, crud, inventory, ledger, models
from .clients.payment_gateway import PaymentGateway, PaymentGatewayError, PaymentResult
from .database import unit_of_work
from .exceptions import (
    EmptyCart,
    InternalError,
    InvalidStateTransition,
    NotFound,
    PaymentDeclined,
    StorefrontError,
    ValidationError,
)
from .validators import (
    ensure_order_transition,
    validate_cart_lines,
    validate_order_status,
    validate_shipping_address,
)

logger = logging.getLogger(__name__)


def set_order_status(db: Session, order: models.Order, new_status: str) -> None:
    """
    Move an order to new_status only if its stored status is still the one we read.

    A concurrent writer that changed the status first makes the update match
    no row, which is reported as InvalidStateTransition.
    """
    expected = order.status
    result = db.execute(
        update(models.Order)
        .where(models.Order.id == order.id, models.Order.status == expected)
        .values(status=new_status)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        db.refresh(order)
        raise InvalidStateTransition("order", order.status, new_status)


def _load_cart(db: Session, user_id: int, require_active: bool = False) -> List[models.CartItem]:
    lines = cart.get_cart_lines(db, user_id)
    if not lines:
        raise EmptyCart()

    is_valid, error = validate_cart_lines(lines)
    if not is_valid:
        raise ValidationError(error)

    if require_active:
        for line in lines:
            if not line.product.is_active:
                raise ValidationError(f"Product '{line.product.name}' is not available")

    inventory.check_availability(lines)
    return lines


def _cart_total(lines: List[models.CartItem]) -> Decimal:
    return sum((line.product.price * line.count for line in lines), Decimal("0"))


def _place_order(
    db: Session, user_id: int, shipping_address: str, lines: List[models.CartItem], status: str
) -> models.Order:
    """Reserve stock for every line and persist the order with its price snapshots."""
    inventory.reserve_lines(db, [(line.product_id, line.count) for line in lines])

    items = [
        models.OrderItem(
            product_id=line.product_id,
            product_name=line.product.name,
            unit_price=line.product.price,
            quantity=line.count,
        )
        for line in lines
    ]
    order = models.Order(
        user_id=user_id,
        status=status,
        shipping_address=shipping_address.strip(),
        total_amount=sum((item.unit_price * item.quantity for item in items), Decimal("0")),
        items=items,
    )
    db.add(order)
    db.flush()
    return order


def checkout(db: Session, user_id: int, shipping_address: str) -> models.Order:
    """
    Create an order from the user's cart.

    Args:
        db: Database session
        user_id: Buyer
        shipping_address: Free-text delivery address

    Returns:
        The created order, status Pending

    Raises:
        EmptyCart: if the cart has no lines
        InsufficientStock: if any line asks for more than is available
        ValidationError: if the address or a cart line is invalid
    """
    validate_shipping_address(shipping_address)

    with unit_of_work(db, "creating the order"):
        lines = _load_cart(db, user_id)
        order = _place_order(db, user_id, shipping_address, lines, models.OrderStatus.PENDING)
        ledger.append(
            db,
            models.TransactionType.PURCHASE,
            order.total_amount,
            order.id,
            user_id,
            f"Purchase for Order #{order.id}",
        )
        cart.clear_cart(db, user_id, [line.id for line in lines])
        crud.add_order_event(
            db,
            order.id,
            "created",
            f"Order created with {len(order.items)} items, total {order.total_amount}",
            new_value=order.status,
            user_id=user_id,
        )

    db.refresh(order)
    logger.info(f"Order {order.id} created for user {user_id}, total {order.total_amount}")
    return order


async def _compensate(gateway: PaymentGateway, payment: PaymentResult, amount: Decimal, user_id: int) -> None:
    try:
        refund = await gateway.refund(payment.transaction_id, amount)
    except PaymentGatewayError:
        refund = None
    if refund is None or not refund.success:
        logger.error(
            f"Manual reconciliation needed: payment {payment.transaction_id} of {amount} "
            f"for user {user_id} was authorized but the order was not persisted and could not be refunded"
        )
    else:
        logger.warning(f"Payment {payment.transaction_id} refunded as {refund.transaction_id} after order failure")


async def one_click_buy(
    db: Session, user_id: int, shipping_address: str, payment_method: str, gateway: PaymentGateway
) -> Tuple[models.Order, PaymentResult]:
    """
    Charge the cart total through the payment gateway, then create the order.

    The gateway is called before any stock is touched, so a decline leaves
    stock, cart and ledger unchanged.

    Args:
        db: Database session
        user_id: Buyer
        shipping_address: Free-text delivery address
        payment_method: Payment method hint passed to the gateway
        gateway: Payment gateway adapter

    Returns:
        Tuple of (created order with status Processing, gateway result)

    Raises:
        PaymentDeclined: gateway status and message passed through verbatim
        EmptyCart, InsufficientStock, ValidationError: as for checkout
        InternalError: if the gateway cannot be reached
    """
    validate_shipping_address(shipping_address)

    lines = _load_cart(db, user_id, require_active=True)
    total = _cart_total(lines)

    try:
        payment = await gateway.authorize(total, payment_method, user_id)
    except PaymentGatewayError as e:
        logger.exception(f"Payment gateway failure for user {user_id}")
        raise InternalError("Payment could not be processed") from e

    if not payment.success:
        logger.warning(f"One-click buy declined for user {user_id}: {payment.status}")
        raise PaymentDeclined(payment.status, payment.message, payment.transaction_id)

    try:
        with unit_of_work(db, "creating the order"):
            order = _place_order(db, user_id, shipping_address, lines, models.OrderStatus.PROCESSING)
            ledger.append(
                db,
                models.TransactionType.PURCHASE,
                order.total_amount,
                order.id,
                user_id,
                f"One-click purchase for Order #{order.id} via {payment_method}",
                gateway_transaction_id=payment.transaction_id,
            )
            cart.clear_cart(db, user_id, [line.id for line in lines])
            crud.add_order_event(
                db,
                order.id,
                "created",
                f"One-click order created, payment {payment.transaction_id}",
                new_value=order.status,
                user_id=user_id,
            )
    except StorefrontError:
        await _compensate(gateway, payment, total, user_id)
        raise

    db.refresh(order)
    logger.info(f"One-click order {order.id} created for user {user_id}, payment {payment.transaction_id}")
    return order, payment


def cancel_order(db: Session, order_id: int, user_id: int, is_admin: bool = False) -> models.Order:
    """
    Cancel a pending order and give its stock back.

    No ledger entry is written; the original Purchase stays as the
    historical record and reporting nets it out.

    Raises:
        NotFound: if the order does not exist
        Forbidden: if the actor neither owns the order nor is an admin
        InvalidStateTransition: if the order is not Pending
    """
    with unit_of_work(db, "cancelling the order"):
        order = crud.get_order_for_actor(db, order_id, user_id, is_admin)
        old_status = order.status
        ensure_order_transition(
            old_status,
            models.OrderStatus.CANCELLED,
            f"Only pending orders can be cancelled. Current status: {old_status}",
        )
        set_order_status(db, order, models.OrderStatus.CANCELLED)
        inventory.release_lines(db, order.items)
        crud.add_order_event(
            db,
            order.id,
            "cancelled",
            "Order cancelled",
            old_value=old_status,
            new_value=models.OrderStatus.CANCELLED,
            user_id=user_id,
        )

    db.refresh(order)
    logger.info(f"Order {order.id} cancelled by user {user_id}")
    return order


def update_order_status(
    db: Session, order_id: int, new_status: str, acting_user_id: int, note: str = None
) -> Tuple[models.Order, str]:
    """
    Administrative status correction.

    Any enumerated status may be set from any other. No stock or ledger
    effect is applied.

    Returns:
        Tuple of (updated order, previous status)
    """
    validate_order_status(new_status)

    with unit_of_work(db, "updating the order status"):
        order = crud.get_order(db, order_id)
        if order is None:
            raise NotFound("Order", order_id)
        old_status = order.status
        if old_status != new_status:
            set_order_status(db, order, new_status)
        description = f"Status changed from '{old_status}' to '{new_status}'"
        if note:
            description = f"{description}: {note}"
        crud.add_order_event(
            db,
            order.id,
            "status_changed",
            description,
            old_value=old_status,
            new_value=new_status,
            user_id=acting_user_id,
        )

    db.refresh(order)
    logger.info(f"Order {order.id} status {old_status} -> {new_status} by admin {acting_user_id}")
    return order, old_status
