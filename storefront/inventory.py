"""
Inventory ledger operations for the Storefront service.

Stock is a per-product counter mutated only through conditional UPDATE
statements evaluated by the database, so concurrent reservations against the
same product can never drive it negative. None of these functions commit:
they run inside the caller's unit of work, and a failed reservation rolls
back every line the same order already reserved.
"""
import logging
from typing import Iterable, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import models
from .exceptions import InsufficientStock, NotFound

logger = logging.getLogger(__name__)


def reserve_stock(db: Session, product_id: int, quantity: int) -> None:
    """
    Decrement a product's stock, only if enough units remain.

    Args:
        db: Database session
        product_id: Product to reserve
        quantity: Units to take

    Raises:
        InsufficientStock: if stock < quantity at the moment of the update
        NotFound: if the product does not exist
    """
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock >= quantity)
        .values(stock=models.Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info(f"Reserved {quantity} units of product {product_id}")
        return

    row = db.execute(
        select(models.Product.name, models.Product.stock).where(models.Product.id == product_id)
    ).first()
    if row is None:
        raise NotFound("Product", product_id)
    logger.warning(f"Reservation refused for product {product_id}: available {row.stock}, requested {quantity}")
    raise InsufficientStock(row.name, row.stock, quantity)


def release_stock(db: Session, product_id: int, quantity: int) -> None:
    """
    Increment a product's stock unconditionally.

    Used on cancellation and on approved returns. There is no upper bound
    check against what was originally reserved.
    """
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(stock=models.Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(f"Stock release skipped: product {product_id} no longer exists")
        return
    logger.info(f"Released {quantity} units of product {product_id}")


def check_availability(lines: Iterable[models.CartItem]) -> None:
    """
    Up-front whole-cart check, performed before any reservation.

    Gives the caller a precise error for the first short line. The
    conditional decrement in reserve_stock remains the real guard.

    Raises:
        InsufficientStock: naming the first product that cannot be covered
    """
    for line in lines:
        if line.product.stock < line.count:
            raise InsufficientStock(line.product.name, line.product.stock, line.count)


def reserve_lines(db: Session, lines: List[Tuple[int, int]]) -> None:
    """
    Reserve stock for every (product_id, quantity) pair of one order.

    All or nothing: the first refused line raises, and the caller's unit of
    work rolls back the reservations already made for earlier lines.
    """
    reserved = 0
    for product_id, quantity in lines:
        try:
            reserve_stock(db, product_id, quantity)
        except (InsufficientStock, NotFound):
            if reserved:
                logger.info(f"Rolling back stock reservations for {reserved} lines")
            raise
        reserved += 1


def release_lines(db: Session, items: Iterable[models.OrderItem]) -> None:
    """Give back the stored quantity of every order line."""
    for item in items:
        release_stock(db, item.product_id, item.quantity)


def low_stock_products(db: Session) -> List[models.Product]:
    """Products at or under their critical stock level."""
    return (
        db.query(models.Product)
        .filter(models.Product.stock <= models.Product.critical_stock_level)
        .order_by(models.Product.stock)
        .all()
    )
