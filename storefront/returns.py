"""
Return and refund workflow.

A return request moves Pending -> Approved -> Completed, or Pending ->
Rejected. Approval is one atomic unit: the request is finalized, a Refund
entry is appended to the ledger and linked back, the order becomes Returned
and every order line's stock is released.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, crud, inventory, ledger, models
from .database import unit_of_work
from .exceptions import Forbidden, InvalidStateTransition, NotFound, ValidationError
from .lifecycle import set_order_status
from .validators import (
    ensure_order_transition,
    ensure_return_transition,
    is_returnable,
    validate_refund_amount,
)

logger = logging.getLogger(__name__)


def _validate_note(note: Optional[str], required: bool) -> None:
    if required and (note is None or not note.strip()):
        raise ValidationError("Admin note is required", errors=["admin_note: must not be empty"])
    if note and len(note) > config.ADMIN_NOTE_MAX_LENGTH:
        raise ValidationError(
            "Admin note is too long",
            errors=[f"admin_note: must be at most {config.ADMIN_NOTE_MAX_LENGTH} characters"],
        )


def _set_return_status(db: Session, order_return: models.OrderReturn, new_status: str) -> None:
    """Compare-and-set the return status against the value we read."""
    expected = order_return.status
    result = db.execute(
        update(models.OrderReturn)
        .where(models.OrderReturn.id == order_return.id, models.OrderReturn.status == expected)
        .values(status=new_status, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        db.refresh(order_return)
        raise InvalidStateTransition("return", order_return.status, new_status)


def _get_return(db: Session, return_id: int) -> models.OrderReturn:
    order_return = db.get(models.OrderReturn, return_id)
    if order_return is None:
        raise NotFound("Return", return_id)
    return order_return


def request_return(
    db: Session,
    order_id: int,
    user_id: int,
    reason: str,
    description: Optional[str] = None,
    is_admin: bool = False,
) -> models.OrderReturn:
    """
    Open a return request for an order.

    Args:
        db: Database session
        order_id: Order to return
        user_id: Acting user (must own the order unless is_admin)
        reason: Short reason, e.g. "Defective"
        description: Optional free text
        is_admin: Administrative override of the ownership check

    Returns:
        The created request, status Pending

    Raises:
        NotFound: if the order does not exist
        Forbidden: if the actor neither owns the order nor is an admin
        InvalidStateTransition: if the order is not returnable or a request is already pending
    """
    if not reason or not reason.strip() or len(reason) > config.RETURN_REASON_MAX_LENGTH:
        raise ValidationError(
            "Invalid return reason",
            errors=[f"return_reason: must be between 1 and {config.RETURN_REASON_MAX_LENGTH} characters"],
        )
    if description and len(description) > config.RETURN_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            "Return description is too long",
            errors=[f"return_description: must be at most {config.RETURN_DESCRIPTION_MAX_LENGTH} characters"],
        )

    with unit_of_work(db, "creating the return request"):
        order = crud.get_order_for_actor(db, order_id, user_id, is_admin)
        if not is_returnable(order.status):
            raise InvalidStateTransition(
                "order",
                order.status,
                models.OrderStatus.RETURNED,
                f"Only delivered or completed orders can be returned. Current status: {order.status}",
            )

        pending = (
            db.query(models.OrderReturn.id)
            .filter(
                models.OrderReturn.order_id == order.id,
                models.OrderReturn.status == models.ReturnStatus.PENDING,
            )
            .first()
        )
        if pending is not None:
            raise InvalidStateTransition(
                "return",
                models.ReturnStatus.PENDING,
                models.ReturnStatus.PENDING,
                "A return request is already pending for this order",
            )

        order_return = models.OrderReturn(
            order_id=order.id,
            user_id=order.user_id,
            return_reason=reason.strip(),
            return_description=description,
            status=models.ReturnStatus.PENDING,
            created_at=datetime.utcnow(),
        )
        db.add(order_return)
        try:
            db.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent request for the same order
            raise InvalidStateTransition(
                "return",
                models.ReturnStatus.PENDING,
                models.ReturnStatus.PENDING,
                "A return request is already pending for this order",
            ) from e

        crud.add_order_event(
            db,
            order.id,
            "return_requested",
            f"Return requested: {order_return.return_reason}",
            user_id=user_id,
        )

    db.refresh(order_return)
    logger.info(f"Return {order_return.id} opened for order {order_id} by user {user_id}")
    return order_return


def approve_return(
    db: Session, return_id: int, refund_amount: Decimal, admin_note: Optional[str], acting_user_id: int
) -> models.OrderReturn:
    """
    Approve a pending return and refund it.

    Args:
        db: Database session
        return_id: Return request to approve
        refund_amount: Positive amount; not compared against the order total
        admin_note: Optional note
        acting_user_id: Admin performing the approval

    Returns:
        The request, status Completed, linked to its Refund entry

    Raises:
        NotFound: if the request does not exist
        InvalidStateTransition: if the request is not Pending or the order cannot become Returned
        ValidationError: if the refund amount is not positive
    """
    validate_refund_amount(refund_amount)
    _validate_note(admin_note, required=False)

    with unit_of_work(db, "approving the return"):
        order_return = _get_return(db, return_id)
        ensure_return_transition(
            order_return.status,
            models.ReturnStatus.APPROVED,
            f"Only pending returns can be approved. Current status: {order_return.status}",
        )
        _set_return_status(db, order_return, models.ReturnStatus.APPROVED)

        order = order_return.order
        refund = ledger.append_refund(db, order, refund_amount, order_return.return_reason)

        ensure_return_transition(order_return.status, models.ReturnStatus.COMPLETED)
        order_return.status = models.ReturnStatus.COMPLETED
        order_return.refund_amount = refund_amount
        order_return.admin_note = admin_note
        order_return.refund_transaction_id = refund.id
        order_return.updated_at = datetime.utcnow()

        old_status = order.status
        ensure_order_transition(old_status, models.OrderStatus.RETURNED)
        set_order_status(db, order, models.OrderStatus.RETURNED)
        inventory.release_lines(db, order.items)

        crud.add_order_event(
            db,
            order.id,
            "return_approved",
            f"Return {order_return.id} approved, refund {refund_amount}",
            old_value=old_status,
            new_value=models.OrderStatus.RETURNED,
            user_id=acting_user_id,
        )

    db.refresh(order_return)
    logger.info(f"Return {return_id} approved by admin {acting_user_id}, refund transaction {refund.id}")
    return order_return


def reject_return(db: Session, return_id: int, admin_note: str, acting_user_id: int) -> models.OrderReturn:
    """
    Reject a pending return. No stock or ledger effect.

    Raises:
        NotFound: if the request does not exist
        InvalidStateTransition: if the request is not Pending
        ValidationError: if the admin note is missing
    """
    _validate_note(admin_note, required=True)

    with unit_of_work(db, "rejecting the return"):
        order_return = _get_return(db, return_id)
        ensure_return_transition(
            order_return.status,
            models.ReturnStatus.REJECTED,
            f"Only pending returns can be rejected. Current status: {order_return.status}",
        )
        _set_return_status(db, order_return, models.ReturnStatus.REJECTED)
        order_return.admin_note = admin_note

        crud.add_order_event(
            db,
            order_return.order_id,
            "return_rejected",
            f"Return {order_return.id} rejected: {admin_note}",
            user_id=acting_user_id,
        )

    db.refresh(order_return)
    logger.info(f"Return {return_id} rejected by admin {acting_user_id}")
    return order_return


def get_return(db: Session, return_id: int, user_id: int, is_admin: bool = False) -> models.OrderReturn:
    order_return = _get_return(db, return_id)
    if not is_admin and order_return.user_id != user_id:
        raise Forbidden("Not authorized to view this return")
    return order_return


def list_my_returns(
    db: Session, user_id: int, page: int = 1, page_size: int = 10
) -> Tuple[List[models.OrderReturn], int]:
    return list_all_returns(db, user_id=user_id, page=page, page_size=page_size)


def list_all_returns(
    db: Session,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    order_id: Optional[int] = None,
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[models.OrderReturn], int]:
    """
    List return requests with filters, newest first.

    Returns:
        Tuple of (requests on the requested page, total matching count)
    """
    query = db.query(models.OrderReturn)
    if status:
        query = query.filter(models.OrderReturn.status == status)
    if reason:
        query = query.filter(models.OrderReturn.return_reason == reason)
    if order_id is not None:
        query = query.filter(models.OrderReturn.order_id == order_id)
    if user_id is not None:
        query = query.filter(models.OrderReturn.user_id == user_id)
    if start_date:
        query = query.filter(models.OrderReturn.created_at >= start_date)
    if end_date:
        query = query.filter(models.OrderReturn.created_at <= end_date)

    total = query.count()
    returns = (
        query.order_by(models.OrderReturn.created_at.desc(), models.OrderReturn.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return returns, total
