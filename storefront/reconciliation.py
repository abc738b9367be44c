"""
Ledger reconciliation report.

Order status and product stock are denormalized next to the append-only
ledger. This module scans them against each other and reports drift. It is
read-only: running it any number of times changes nothing.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List

from sqlalchemy.orm import Session

from . import models
from .inventory import low_stock_products

logger = logging.getLogger(__name__)


def _issue(kind: str, message: str, order_id: int = None, return_id: int = None, product_id: int = None) -> Dict:
    return {
        "kind": kind,
        "message": message,
        "order_id": order_id,
        "return_id": return_id,
        "product_id": product_id,
    }


def reconcile(db: Session) -> Dict:
    """
    Compare orders, returns and stock against the ledger.

    Reported kinds:
        purchase_mismatch: a non-cancelled order without exactly one completed
            Purchase equal to its total
        missing_refund: a Returned order without a completed Refund
        missing_refund_link: a Completed return whose refund transaction is gone
        negative_stock: a product with stock below zero
        low_stock: a product at or under its critical level

    Returns:
        Dictionary matching schemas.ReconciliationReport
    """
    purchases = defaultdict(list)
    refunds = defaultdict(list)
    completed = (
        db.query(models.Transaction)
        .filter(models.Transaction.status == models.TransactionStatus.COMPLETED)
        .all()
    )
    for entry in completed:
        if entry.transaction_type == models.TransactionType.PURCHASE:
            purchases[entry.order_id].append(entry)
        elif entry.transaction_type == models.TransactionType.REFUND:
            refunds[entry.order_id].append(entry)

    issues: List[Dict] = []
    orders = db.query(models.Order).order_by(models.Order.id).all()
    for order in orders:
        order_purchases = purchases.get(order.id, [])
        if order.status != models.OrderStatus.CANCELLED:
            if len(order_purchases) != 1 or order_purchases[0].amount != order.total_amount:
                amounts = ", ".join(str(p.amount) for p in order_purchases) or "none"
                issues.append(_issue(
                    "purchase_mismatch",
                    f"Order #{order.id} total {order.total_amount} has purchases: {amounts}",
                    order_id=order.id,
                ))
        if order.status == models.OrderStatus.RETURNED and not refunds.get(order.id):
            issues.append(_issue(
                "missing_refund",
                f"Order #{order.id} is Returned but has no completed refund",
                order_id=order.id,
            ))

    completed_returns = (
        db.query(models.OrderReturn)
        .filter(models.OrderReturn.status == models.ReturnStatus.COMPLETED)
        .all()
    )
    for order_return in completed_returns:
        if order_return.refund_transaction_id is None or order_return.refund_transaction is None:
            issues.append(_issue(
                "missing_refund_link",
                f"Return {order_return.id} is Completed without a refund transaction",
                order_id=order_return.order_id,
                return_id=order_return.id,
            ))

    for product in low_stock_products(db):
        kind = "negative_stock" if product.stock < 0 else "low_stock"
        issues.append(_issue(
            kind,
            f"Product '{product.name}' stock {product.stock} (critical level {product.critical_stock_level})",
            product_id=product.id,
        ))

    drift = [issue for issue in issues if issue["kind"] != "low_stock"]
    if drift:
        logger.warning(f"Reconciliation found {len(drift)} ledger drift issues")
    else:
        logger.info("Reconciliation found no ledger drift")

    return {
        "generated_at": datetime.utcnow(),
        "orders_checked": len(orders),
        "transactions_checked": len(completed),
        "consistent": not drift,
        "issues": issues,
    }
