"""
Read operations for the Storefront service.

This module contains the order queries used by the API: single lookups with
ownership checks, paged listings and the order timeline. State changes live
in lifecycle.py and returns.py.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from . import models
from .exceptions import Forbidden, NotFound

logger = logging.getLogger(__name__)

ORDER_SORT_FIELDS = {
    "order_date": models.Order.order_date,
    "total_amount": models.Order.total_amount,
}


def paginate(total: int, page: int, page_size: int) -> dict:
    """
    Build the paging envelope shared by every listing.

    Args:
        total: Total matching rows
        page: 1-based page number
        page_size: Rows per page

    Returns:
        Dictionary with page, page_size, total_count, total_pages, has_previous, has_next
    """
    total_pages = (total + page_size - 1) // page_size if page_size else 0
    return {
        "page": page,
        "page_size": page_size,
        "total_count": total,
        "total_pages": total_pages,
        "has_previous": page > 1,
        "has_next": page < total_pages,
    }


def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    """
    Retrieve a single order by ID.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_order_for_actor(db: Session, order_id: int, user_id: int, is_admin: bool = False) -> models.Order:
    """
    Retrieve an order the actor may see.

    Raises:
        NotFound: if the order does not exist
        Forbidden: if the actor neither owns the order nor is an admin
    """
    order = get_order(db, order_id)
    if order is None:
        raise NotFound("Order", order_id)
    if not is_admin and order.user_id != user_id:
        raise Forbidden("Not authorized to access this order")
    return order


def get_orders_for_user(
    db: Session, user_id: int, page: int = 1, page_size: int = 10, status: Optional[str] = None
) -> Tuple[List[models.Order], int]:
    """List a user's orders, newest first."""
    query = db.query(models.Order).filter(models.Order.user_id == user_id)
    if status:
        query = query.filter(models.Order.status == status)
    total = query.count()
    orders = (
        query.order_by(models.Order.order_date.desc(), models.Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return orders, total


def get_all_orders(
    db: Session,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    sort_by: str = "order_date",
    descending: bool = True,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[models.Order], int]:
    """
    List every order with filters and pagination (admin).

    Returns:
        Tuple of (orders on the requested page, total matching count)
    """
    query = db.query(models.Order)
    if status:
        query = query.filter(models.Order.status == status)
    if user_id is not None:
        query = query.filter(models.Order.user_id == user_id)
    if start_date:
        query = query.filter(models.Order.order_date >= start_date)
    if end_date:
        query = query.filter(models.Order.order_date <= end_date)
    if min_amount is not None:
        query = query.filter(models.Order.total_amount >= min_amount)
    if max_amount is not None:
        query = query.filter(models.Order.total_amount <= max_amount)

    column = ORDER_SORT_FIELDS.get(sort_by, models.Order.order_date)
    order_clause = column.desc() if descending else column.asc()

    total = query.count()
    orders = (
        query.order_by(order_clause, models.Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return orders, total


def add_order_event(
    db: Session,
    order_id: int,
    event_type: str,
    description: str,
    old_value: str = None,
    new_value: str = None,
    user_id: int = None,
) -> models.OrderEvent:
    """
    Add an order event to the timeline inside the caller's unit of work.

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "cancelled", "status_changed")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User who triggered the event (optional)
    """
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id,
    )
    db.add(event)
    return event


def get_order_events(db: Session, order_id: int) -> List[models.OrderEvent]:
    return (
        db.query(models.OrderEvent)
        .filter(models.OrderEvent.order_id == order_id)
        .order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc())
        .all()
    )
