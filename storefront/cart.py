"""
Minimal cart collaborator.

Supplies the candidate lines consumed by checkout and is cleared as a side
effect of a successful order.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from . import models
from .database import unit_of_work
from .exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)


def get_cart_lines(db: Session, user_id: int) -> List[models.CartItem]:
    """Return the user's cart lines, oldest first, with products loaded."""
    return (
        db.query(models.CartItem)
        .filter(models.CartItem.user_id == user_id)
        .order_by(models.CartItem.id)
        .all()
    )


def clear_cart(db: Session, user_id: int, line_ids: Optional[List[int]] = None) -> None:
    """Delete cart lines of a user. Runs inside the caller's unit of work.

    When ``line_ids`` is given only those lines go; lines added to the cart
    after they were read are left in place.
    """
    statement = delete(models.CartItem).where(models.CartItem.user_id == user_id)
    if line_ids is not None:
        statement = statement.where(models.CartItem.id.in_(line_ids))
    db.execute(statement.execution_options(synchronize_session=False))


def empty_cart(db: Session, user_id: int) -> None:
    with unit_of_work(db, "clearing the cart"):
        clear_cart(db, user_id)
    logger.info(f"Cart cleared for user {user_id}")


def add_to_cart(db: Session, user_id: int, product_id: int, count: int) -> models.CartItem:
    """
    Add a product to the user's cart, merging with an existing line.

    Args:
        db: Database session
        user_id: Cart owner
        product_id: Product to add
        count: Units to add (positive)

    Returns:
        The updated cart line

    Raises:
        ValidationError: if count is not positive or the product is inactive
        NotFound: if the product does not exist
    """
    if count <= 0:
        raise ValidationError("Quantity must be positive", errors=["count: must be greater than 0"])

    with unit_of_work(db, "updating the cart"):
        product = db.get(models.Product, product_id)
        if product is None:
            raise NotFound("Product", product_id)
        if not product.is_active:
            raise ValidationError(f"Product '{product.name}' is not available")

        line = (
            db.query(models.CartItem)
            .filter(models.CartItem.user_id == user_id, models.CartItem.product_id == product_id)
            .first()
        )
        if line is None:
            line = models.CartItem(user_id=user_id, product_id=product_id, count=count)
            db.add(line)
        else:
            line.count += count

    db.refresh(line)
    logger.info(f"User {user_id} cart: product {product_id} now x{line.count}")
    return line


def cart_summary(db: Session, user_id: int) -> dict:
    lines = get_cart_lines(db, user_id)
    return {
        "items": lines,
        "total_amount": sum((line.subtotal for line in lines), Decimal("0")),
    }
