"""
Transaction ledger for the Storefront service.

The ledger is append-only: rows are inserted and never updated or deleted.
All money figures reported by the service are derived by summing it at
query time.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .database import unit_of_work
from .exceptions import Forbidden, NotFound, ValidationError
from .validators import validate_refund_amount

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "transaction_date": models.Transaction.transaction_date,
    "amount": models.Transaction.amount,
}


def append(
    db: Session,
    transaction_type: str,
    amount: Decimal,
    order_id: int,
    user_id: int,
    description: str,
    status: str = models.TransactionStatus.COMPLETED,
    gateway_transaction_id: Optional[str] = None,
) -> models.Transaction:
    """
    Append a ledger entry inside the caller's unit of work.

    Args:
        db: Database session
        transaction_type: Purchase, Refund or Adjustment
        amount: Monetary amount
        order_id: Related order
        user_id: Related user
        description: Human-readable description
        status: Completed or Failed
        gateway_transaction_id: Payment gateway reference (optional)

    Returns:
        The flushed Transaction, with its id assigned
    """
    entry = models.Transaction(
        transaction_type=transaction_type,
        amount=amount,
        order_id=order_id,
        user_id=user_id,
        description=description,
        status=status,
        gateway_transaction_id=gateway_transaction_id,
        transaction_date=datetime.utcnow(),
    )
    db.add(entry)
    db.flush()
    logger.info(f"Ledger: {transaction_type} {amount} for order {order_id} (transaction {entry.id})")
    return entry


def record_adjustment(
    db: Session, order_id: int, amount: Decimal, description: str, acting_user_id: int
) -> models.Transaction:
    """
    Append an Adjustment entry for an order (admin).

    Adjustments never touch order status or stock. The entry is attributed
    to the order's owner.
    """
    if amount is None or amount == 0:
        raise ValidationError("Adjustment amount cannot be zero", errors=["amount: must not be zero"])

    with unit_of_work(db, "recording the adjustment"):
        order = db.get(models.Order, order_id)
        if order is None:
            raise NotFound("Order", order_id)
        entry = append(
            db,
            models.TransactionType.ADJUSTMENT,
            amount,
            order.id,
            order.user_id,
            description or f"Adjustment for Order #{order.id} by user {acting_user_id}",
        )
    db.refresh(entry)
    return entry


def refund_description(order_id: int, reason: str) -> str:
    return f"Refund for Order #{order_id} - {reason}"


def append_refund(db: Session, order: models.Order, amount: Decimal, reason: str) -> models.Transaction:
    """Append the Refund entry written by an approved return."""
    validate_refund_amount(amount)
    return append(
        db,
        models.TransactionType.REFUND,
        amount,
        order.id,
        order.user_id,
        refund_description(order.id, reason),
    )


def get_transaction(db: Session, transaction_id: int, user_id: int, is_admin: bool = False) -> models.Transaction:
    """
    Retrieve a single ledger entry.

    Raises:
        NotFound: if the transaction does not exist
        Forbidden: if a non-admin asks for another user's entry
    """
    entry = db.get(models.Transaction, transaction_id)
    if entry is None:
        raise NotFound("Transaction", transaction_id)
    if not is_admin and entry.user_id != user_id:
        raise Forbidden("Not authorized to view this transaction")
    return entry


def list_transactions(
    db: Session,
    transaction_type: Optional[str] = None,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    order_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = "transaction_date",
    descending: bool = True,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[models.Transaction], int]:
    """
    List ledger entries with filters and pagination (admin).

    Returns:
        Tuple of (entries on the requested page, total matching count)
    """
    query = db.query(models.Transaction)
    if transaction_type:
        query = query.filter(models.Transaction.transaction_type == transaction_type)
    if status:
        query = query.filter(models.Transaction.status == status)
    if user_id is not None:
        query = query.filter(models.Transaction.user_id == user_id)
    if order_id is not None:
        query = query.filter(models.Transaction.order_id == order_id)
    if start_date:
        query = query.filter(models.Transaction.transaction_date >= start_date)
    if end_date:
        query = query.filter(models.Transaction.transaction_date <= end_date)

    column = SORTABLE_FIELDS.get(sort_by, models.Transaction.transaction_date)
    order_clause = column.desc() if descending else column.asc()

    total = query.count()
    entries = (
        query.order_by(order_clause, models.Transaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return entries, total


def list_my_transactions(db: Session, user_id: int, page: int = 1, page_size: int = 20):
    return list_transactions(db, user_id=user_id, page=page, page_size=page_size)


def _sum_completed(db: Session, transaction_type: str, start_date, end_date, cancelled_only: bool = False) -> Decimal:
    query = (
        db.query(func.coalesce(func.sum(models.Transaction.amount), 0))
        .select_from(models.Transaction)
        .filter(
            models.Transaction.transaction_type == transaction_type,
            models.Transaction.status == models.TransactionStatus.COMPLETED,
        )
    )
    if cancelled_only:
        query = query.join(models.Order, models.Order.id == models.Transaction.order_id).filter(
            models.Order.status == models.OrderStatus.CANCELLED
        )
    if start_date:
        query = query.filter(models.Transaction.transaction_date >= start_date)
    if end_date:
        query = query.filter(models.Transaction.transaction_date <= end_date)
    return Decimal(query.scalar() or 0)


def statistics(db: Session, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict:
    """
    Aggregate ledger statistics, derived by summing entries at query time.

    Net revenue is completed purchases minus completed refunds minus the
    purchases of orders that were later cancelled, since cancellation writes
    no reversing entry.

    Counts cover every entry whatever its status; amounts and the average
    order value cover completed entries only.

    Args:
        db: Database session
        start_date: Inclusive lower bound on transaction date (optional)
        end_date: Inclusive upper bound on transaction date (optional)

    Returns:
        Dictionary matching schemas.TransactionStatistics
    """
    base = db.query(models.Transaction)
    if start_date:
        base = base.filter(models.Transaction.transaction_date >= start_date)
    if end_date:
        base = base.filter(models.Transaction.transaction_date <= end_date)

    total_revenue = _sum_completed(db, models.TransactionType.PURCHASE, start_date, end_date)
    total_refunds = _sum_completed(db, models.TransactionType.REFUND, start_date, end_date)
    cancelled_purchases = _sum_completed(
        db, models.TransactionType.PURCHASE, start_date, end_date, cancelled_only=True
    )

    by_status = dict(
        base.with_entities(models.Transaction.status, func.count(models.Transaction.id))
        .group_by(models.Transaction.status)
        .all()
    )
    count_by_type = dict(
        base.with_entities(models.Transaction.transaction_type, func.count(models.Transaction.id))
        .group_by(models.Transaction.transaction_type)
        .all()
    )
    completed_rows = (
        base.with_entities(
            models.Transaction.transaction_type,
            func.count(models.Transaction.id),
            func.coalesce(func.sum(models.Transaction.amount), 0),
        )
        .filter(models.Transaction.status == models.TransactionStatus.COMPLETED)
        .group_by(models.Transaction.transaction_type)
        .all()
    )
    amount_by_type = {row[0]: Decimal(row[2]) for row in completed_rows}

    purchase_count = next(
        (row[1] for row in completed_rows if row[0] == models.TransactionType.PURCHASE), 0
    )
    average_order_value = (total_revenue / purchase_count).quantize(Decimal("0.01")) if purchase_count else Decimal("0")

    return {
        "total_transactions": base.count(),
        "total_revenue": total_revenue,
        "total_refunds": total_refunds,
        "cancelled_purchases": cancelled_purchases,
        "net_revenue": total_revenue - total_refunds - cancelled_purchases,
        "average_order_value": average_order_value,
        "count_by_status": by_status,
        "count_by_type": count_by_type,
        "amount_by_type": amount_by_type,
        "start_date": start_date,
        "end_date": end_date,
    }
