"""Tests for the return and refund workflow."""
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from storefront import lifecycle, models, returns
from storefront.exceptions import Forbidden, InvalidStateTransition, NotFound, ValidationError

USER_ID = 42
ADMIN_ID = 1
ADDRESS = "10 Downing Street, London"


@pytest.fixture
def delivered_order(db, make_product, fill_cart):
    """An order of 2 x 50.00 that has been delivered; product stock 5 -> 3."""
    product = make_product(name="Headphones", price="50.00", stock=5)
    fill_cart(USER_ID, (product, 2))
    order = lifecycle.checkout(db, USER_ID, ADDRESS)
    lifecycle.update_order_status(db, order.id, models.OrderStatus.DELIVERED, acting_user_id=ADMIN_ID)
    return order, product


def refunds_for(db, order_id):
    return (
        db.query(models.Transaction)
        .filter(
            models.Transaction.order_id == order_id,
            models.Transaction.transaction_type == models.TransactionType.REFUND,
        )
        .all()
    )


class TestRequestReturn:
    def test_opens_pending_request(self, db, delivered_order):
        order, _ = delivered_order

        order_return = returns.request_return(db, order.id, USER_ID, "Defective", "Left ear is silent")

        assert order_return.status == models.ReturnStatus.PENDING
        assert order_return.order_id == order.id
        assert order_return.user_id == USER_ID
        assert order_return.refund_transaction_id is None

    def test_completed_orders_are_returnable(self, db, delivered_order):
        order, _ = delivered_order
        lifecycle.update_order_status(db, order.id, models.OrderStatus.COMPLETED, acting_user_id=ADMIN_ID)

        order_return = returns.request_return(db, order.id, USER_ID, "Wrong size")

        assert order_return.status == models.ReturnStatus.PENDING

    @pytest.mark.parametrize(
        "status",
        [models.OrderStatus.PENDING, models.OrderStatus.PROCESSING, models.OrderStatus.SHIPPED, models.OrderStatus.CANCELLED],
    )
    def test_other_statuses_are_not_returnable(self, db, delivered_order, status):
        order, _ = delivered_order
        lifecycle.update_order_status(db, order.id, status, acting_user_id=ADMIN_ID)

        with pytest.raises(InvalidStateTransition):
            returns.request_return(db, order.id, USER_ID, "Defective")

    def test_second_pending_request_is_refused(self, db, delivered_order):
        order, _ = delivered_order
        returns.request_return(db, order.id, USER_ID, "Defective")

        with pytest.raises(InvalidStateTransition):
            returns.request_return(db, order.id, USER_ID, "Changed my mind")

        assert db.query(models.OrderReturn).count() == 1

    def test_storage_rejects_second_pending_row(self, db, delivered_order):
        order, _ = delivered_order
        returns.request_return(db, order.id, USER_ID, "Defective")

        db.add(models.OrderReturn(order_id=order.id, user_id=USER_ID, return_reason="Other"))
        with pytest.raises(IntegrityError):
            db.flush()
        db.rollback()

    def test_new_request_allowed_after_rejection(self, db, delivered_order):
        order, _ = delivered_order
        first = returns.request_return(db, order.id, USER_ID, "Defective")
        returns.reject_return(db, first.id, "Works as intended", ADMIN_ID)

        second = returns.request_return(db, order.id, USER_ID, "Defective")

        assert second.id != first.id
        assert second.status == models.ReturnStatus.PENDING

    def test_other_user_is_forbidden(self, db, delivered_order):
        order, _ = delivered_order

        with pytest.raises(Forbidden):
            returns.request_return(db, order.id, 43, "Defective")

    def test_admin_override_attributes_request_to_owner(self, db, delivered_order):
        order, _ = delivered_order

        order_return = returns.request_return(db, order.id, ADMIN_ID, "Defective", is_admin=True)

        assert order_return.user_id == USER_ID

    def test_reason_is_required(self, db, delivered_order):
        order, _ = delivered_order

        with pytest.raises(ValidationError):
            returns.request_return(db, order.id, USER_ID, "   ")


class TestApproveReturn:
    def test_full_refund_scenario(self, db, delivered_order):
        order, product = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        approved = returns.approve_return(db, order_return.id, Decimal("100"), "Refund issued", ADMIN_ID)

        assert approved.status == models.ReturnStatus.COMPLETED
        assert approved.refund_amount == Decimal("100")
        db.refresh(order)
        assert order.status == models.OrderStatus.RETURNED
        db.refresh(product)
        assert product.stock == 5

        entries = refunds_for(db, order.id)
        assert len(entries) == 1
        assert entries[0].amount == Decimal("100")
        assert entries[0].description == f"Refund for Order #{order.id} - Defective"
        assert approved.refund_transaction_id == entries[0].id

    def test_refund_amount_is_not_capped_by_order_total(self, db, delivered_order):
        order, _ = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        approved = returns.approve_return(db, order_return.id, Decimal("150"), None, ADMIN_ID)

        assert approved.refund_amount == Decimal("150")

    def test_non_positive_refund_is_rejected(self, db, delivered_order):
        order, product = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        with pytest.raises(ValidationError):
            returns.approve_return(db, order_return.id, Decimal("0"), None, ADMIN_ID)

        db.refresh(order_return)
        assert order_return.status == models.ReturnStatus.PENDING

    def test_approving_twice_fails_without_second_refund(self, db, delivered_order):
        order, product = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")
        returns.approve_return(db, order_return.id, Decimal("100"), None, ADMIN_ID)

        with pytest.raises(InvalidStateTransition):
            returns.approve_return(db, order_return.id, Decimal("100"), None, ADMIN_ID)

        assert len(refunds_for(db, order.id)) == 1
        db.refresh(product)
        assert product.stock == 5

    def test_order_that_can_no_longer_be_returned_rolls_back(self, db, delivered_order):
        order, product = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")
        lifecycle.update_order_status(db, order.id, models.OrderStatus.CANCELLED, acting_user_id=ADMIN_ID)

        with pytest.raises(InvalidStateTransition):
            returns.approve_return(db, order_return.id, Decimal("100"), None, ADMIN_ID)

        db.refresh(order_return)
        db.refresh(product)
        assert order_return.status == models.ReturnStatus.PENDING
        assert refunds_for(db, order.id) == []
        assert product.stock == 3

    def test_unknown_return(self, db):
        with pytest.raises(NotFound):
            returns.approve_return(db, 999, Decimal("10"), None, ADMIN_ID)


class TestRejectReturn:
    def test_rejects_with_note_and_no_side_effects(self, db, delivered_order):
        order, product = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        rejected = returns.reject_return(db, order_return.id, "Outside return window", ADMIN_ID)

        assert rejected.status == models.ReturnStatus.REJECTED
        assert rejected.admin_note == "Outside return window"
        db.refresh(order)
        db.refresh(product)
        assert order.status == models.OrderStatus.DELIVERED
        assert product.stock == 3
        assert refunds_for(db, order.id) == []

    def test_rejecting_twice_fails(self, db, delivered_order):
        order, _ = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")
        returns.reject_return(db, order_return.id, "No", ADMIN_ID)

        with pytest.raises(InvalidStateTransition):
            returns.reject_return(db, order_return.id, "Still no", ADMIN_ID)

        db.refresh(order_return)
        assert order_return.status == models.ReturnStatus.REJECTED
        assert order_return.admin_note == "No"

    def test_completed_return_cannot_be_rejected(self, db, delivered_order):
        order, _ = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")
        returns.approve_return(db, order_return.id, Decimal("100"), None, ADMIN_ID)

        with pytest.raises(InvalidStateTransition):
            returns.reject_return(db, order_return.id, "Too late", ADMIN_ID)

    def test_note_is_required(self, db, delivered_order):
        order, _ = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        with pytest.raises(ValidationError):
            returns.reject_return(db, order_return.id, "", ADMIN_ID)


class TestReturnQueries:
    def test_owner_and_admin_can_read(self, db, delivered_order):
        order, _ = delivered_order
        order_return = returns.request_return(db, order.id, USER_ID, "Defective")

        assert returns.get_return(db, order_return.id, USER_ID).id == order_return.id
        assert returns.get_return(db, order_return.id, ADMIN_ID, is_admin=True).id == order_return.id
        with pytest.raises(Forbidden):
            returns.get_return(db, order_return.id, 43)

    def test_list_filters(self, db, delivered_order):
        order, _ = delivered_order
        first = returns.request_return(db, order.id, USER_ID, "Defective")
        returns.reject_return(db, first.id, "No", ADMIN_ID)
        returns.request_return(db, order.id, USER_ID, "Wrong size")

        pending, total = returns.list_all_returns(db, status=models.ReturnStatus.PENDING)
        mine, my_total = returns.list_my_returns(db, USER_ID)

        assert total == 1
        assert pending[0].return_reason == "Wrong size"
        assert my_total == 2
