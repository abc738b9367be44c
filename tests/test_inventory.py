"""Tests for the conditional stock reservation and release."""
import pytest

from storefront import inventory
from storefront.database import unit_of_work
from storefront.exceptions import InsufficientStock, NotFound


class TestReserveStock:
    def test_decrements_when_enough_stock(self, db, make_product):
        product = make_product(stock=5)

        with unit_of_work(db, "reserving"):
            inventory.reserve_stock(db, product.id, 3)

        db.refresh(product)
        assert product.stock == 2

    def test_exact_stock_can_be_reserved(self, db, make_product):
        product = make_product(stock=4)

        with unit_of_work(db, "reserving"):
            inventory.reserve_stock(db, product.id, 4)

        db.refresh(product)
        assert product.stock == 0

    def test_refuses_more_than_available(self, db, make_product):
        product = make_product(name="Lamp", stock=2)

        with pytest.raises(InsufficientStock) as exc_info:
            with unit_of_work(db, "reserving"):
                inventory.reserve_stock(db, product.id, 4)

        assert exc_info.value.product_name == "Lamp"
        assert exc_info.value.available == 2
        assert exc_info.value.requested == 4
        db.refresh(product)
        assert product.stock == 2

    def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            with unit_of_work(db, "reserving"):
                inventory.reserve_stock(db, 999, 1)


class TestReserveLines:
    def test_later_failure_rolls_back_earlier_lines(self, db, make_product):
        plenty = make_product(name="Plenty", stock=10)
        scarce = make_product(name="Scarce", stock=3)

        with pytest.raises(InsufficientStock) as exc_info:
            with unit_of_work(db, "reserving"):
                inventory.reserve_lines(db, [(plenty.id, 2), (scarce.id, 5)])

        assert exc_info.value.product_name == "Scarce"
        db.refresh(plenty)
        db.refresh(scarce)
        assert plenty.stock == 10
        assert scarce.stock == 3

    def test_all_lines_reserved(self, db, make_product):
        first = make_product(name="First", stock=10)
        second = make_product(name="Second", stock=3)

        with unit_of_work(db, "reserving"):
            inventory.reserve_lines(db, [(first.id, 2), (second.id, 3)])

        db.refresh(first)
        db.refresh(second)
        assert first.stock == 8
        assert second.stock == 0


class TestReleaseStock:
    def test_increments_unconditionally(self, db, make_product):
        product = make_product(stock=1)

        with unit_of_work(db, "releasing"):
            inventory.release_stock(db, product.id, 7)

        db.refresh(product)
        assert product.stock == 8

    def test_missing_product_is_skipped(self, db):
        with unit_of_work(db, "releasing"):
            inventory.release_stock(db, 999, 3)


class TestLowStock:
    def test_lists_products_at_or_under_critical_level(self, db, make_product):
        make_product(name="Healthy", stock=50, critical_stock_level=5)
        low = make_product(name="Low", stock=5, critical_stock_level=5)

        assert [p.id for p in inventory.low_stock_products(db)] == [low.id]
