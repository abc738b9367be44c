"""Tests for one-click-buy through the payment gateway."""
import asyncio
from decimal import Decimal

import pytest

from storefront import cart, lifecycle, models
from storefront.clients.payment_gateway import (
    AUTHORIZED,
    FAILED,
    INSUFFICIENT_FUNDS,
    MockPaymentGateway,
    PaymentGatewayError,
    PaymentResult,
)
from storefront.exceptions import InsufficientStock, InternalError, PaymentDeclined, ValidationError

USER_ID = 42
ADDRESS = "1 Infinite Loop, Cupertino"


def buy(db, gateway, payment_method="Visa"):
    return asyncio.run(lifecycle.one_click_buy(db, USER_ID, ADDRESS, payment_method, gateway))


class UnreachableGateway(MockPaymentGateway):
    async def authorize(self, amount, payment_method, user_id):
        raise PaymentGatewayError("connection refused")


class RefundOutageGateway(MockPaymentGateway):
    async def refund(self, transaction_id, amount):
        self.calls.append({"method": "refund", "transaction_id": transaction_id, "amount": amount})
        raise PaymentGatewayError("gateway timeout")


class RefusedRefundGateway(MockPaymentGateway):
    async def refund(self, transaction_id, amount):
        self.calls.append({"method": "refund", "transaction_id": transaction_id, "amount": amount})
        return PaymentResult(success=False, transaction_id=None, status=FAILED, message="Refund rejected")


class CartChangingGateway(MockPaymentGateway):
    """Adds a product to the buyer's cart while the payment is in flight."""

    def __init__(self, db, product, **kwargs):
        super().__init__(**kwargs)
        self.db = db
        self.product = product

    async def authorize(self, amount, payment_method, user_id):
        cart.add_to_cart(self.db, user_id, self.product.id, 1)
        return await super().authorize(amount, payment_method, user_id)


class TestOneClickBuy:
    def test_authorized_payment_creates_processing_order(self, db, make_product, fill_cart, gateway):
        product = make_product(price="12.00", stock=5)
        fill_cart(USER_ID, (product, 2))

        order, payment = buy(db, gateway)

        assert order.status == models.OrderStatus.PROCESSING
        assert order.total_amount == Decimal("24.00")
        assert payment.status == AUTHORIZED
        db.refresh(product)
        assert product.stock == 3
        assert cart.get_cart_lines(db, USER_ID) == []

        entry = db.query(models.Transaction).filter(models.Transaction.order_id == order.id).one()
        assert entry.transaction_type == models.TransactionType.PURCHASE
        assert entry.gateway_transaction_id == payment.transaction_id
        assert entry.gateway_transaction_id.startswith("TXN-")

    def test_gateway_receives_cart_total(self, db, make_product, fill_cart, gateway):
        product = make_product(price="7.50", stock=5)
        fill_cart(USER_ID, (product, 2))

        buy(db, gateway, payment_method="Mastercard")

        assert gateway.calls == [
            {"method": "authorize", "amount": Decimal("15.00"), "payment_method": "Mastercard", "user_id": USER_ID}
        ]

    @pytest.mark.parametrize(
        "status, message",
        [
            (INSUFFICIENT_FUNDS, "Insufficient funds"),
            (FAILED, "Payment processing failed. Please try again."),
        ],
    )
    def test_decline_changes_nothing(self, db, make_product, fill_cart, gateway, status, message):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 2))
        gateway.configure(status)

        with pytest.raises(PaymentDeclined) as exc_info:
            buy(db, gateway)

        assert exc_info.value.payment_status == status
        assert exc_info.value.message == message
        db.refresh(product)
        assert product.stock == 5
        assert db.query(models.Order).count() == 0
        assert db.query(models.Transaction).count() == 0
        assert len(cart.get_cart_lines(db, USER_ID)) == 1

    def test_inactive_product_is_rejected_before_payment(self, db, make_product, fill_cart, gateway):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 1))
        product.is_active = False
        db.commit()

        with pytest.raises(ValidationError):
            buy(db, gateway)

        assert gateway.calls == []

    def test_insufficient_stock_is_rejected_before_payment(self, db, make_product, fill_cart, gateway):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 5))
        product.stock = 1
        db.commit()

        with pytest.raises(InsufficientStock):
            buy(db, gateway)

        assert gateway.calls == []

    def test_unreachable_gateway_is_an_internal_error(self, db, make_product, fill_cart):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 1))

        with pytest.raises(InternalError):
            buy(db, UnreachableGateway(latency=0))

        db.refresh(product)
        assert product.stock == 5

    def test_failed_persistence_refunds_the_payment(self, db, make_product, fill_cart, gateway, monkeypatch):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 1))

        def fail_reservation(session, lines):
            raise InsufficientStock(product.name, 0, 1)

        monkeypatch.setattr(lifecycle.inventory, "reserve_lines", fail_reservation)

        with pytest.raises(InsufficientStock):
            buy(db, gateway)

        assert [call["method"] for call in gateway.calls] == ["authorize", "refund"]
        assert db.query(models.Order).count() == 0

    @pytest.mark.parametrize("gateway_class", [RefundOutageGateway, RefusedRefundGateway])
    def test_failed_compensation_is_flagged_for_reconciliation(
        self, db, make_product, fill_cart, monkeypatch, caplog, gateway_class
    ):
        product = make_product(stock=5)
        fill_cart(USER_ID, (product, 1))
        gateway = gateway_class(latency=0, seed=1)
        gateway.configure(AUTHORIZED)

        def fail_reservation(session, lines):
            raise InsufficientStock(product.name, 0, 1)

        monkeypatch.setattr(lifecycle.inventory, "reserve_lines", fail_reservation)

        with caplog.at_level("ERROR", logger="storefront.lifecycle"):
            with pytest.raises(InsufficientStock):
                buy(db, gateway)

        assert [call["method"] for call in gateway.calls] == ["authorize", "refund"]
        assert db.query(models.Order).count() == 0
        assert db.query(models.Transaction).count() == 0
        assert "Manual reconciliation needed" in caplog.text

    def test_lines_added_during_payment_stay_in_the_cart(self, db, make_product, fill_cart):
        bought = make_product(name="A", price="10.00", stock=5)
        added_later = make_product(name="B", price="99.00", stock=5)
        fill_cart(USER_ID, (bought, 2))
        gateway = CartChangingGateway(db, added_later, latency=0, seed=1)
        gateway.configure(AUTHORIZED)

        order, payment = buy(db, gateway)

        assert [(item.product_id, item.quantity) for item in order.items] == [(bought.id, 2)]
        assert order.total_amount == Decimal("20.00")
        assert [(line.product.name, line.count) for line in cart.get_cart_lines(db, USER_ID)] == [("B", 1)]
        db.refresh(added_later)
        assert added_later.stock == 5


class TestMockPaymentGateway:
    def test_seeded_outcomes_follow_the_distribution(self):
        gateway = MockPaymentGateway(latency=0, seed=2024)

        results = [asyncio.run(gateway.authorize(Decimal("1"), "Default", 1)) for _ in range(400)]

        authorized = sum(1 for r in results if r.status == AUTHORIZED)
        assert 260 < authorized < 380
        assert all(r.success == (r.status == AUTHORIZED) for r in results)

    def test_refund_always_succeeds(self):
        gateway = MockPaymentGateway(latency=0)

        result = asyncio.run(gateway.refund("TXN-1", Decimal("5")))

        assert result == PaymentResult(
            success=True, transaction_id=result.transaction_id, status="Refunded", message="Refund processed successfully"
        )
        assert result.transaction_id.startswith("REFUND-")

    def test_configure_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            MockPaymentGateway(latency=0).configure("Maybe")
