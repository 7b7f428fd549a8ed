from __future__ import annotations

import os
import sys
from decimal import Decimal

import pytest
from sqlalchemy import text

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockbook import create_app
from stockbook.errors import InsufficientStockError, NotFoundError, ValidationError
from stockbook.extensions import db
from stockbook.models import MovementType, Stock, StockMovement, User
from stockbook.services import stock_ledger


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "LOG_DIR": str(tmp_path),
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _owner(username: str = "alice") -> int:
    user = User(username=username)
    user.set_password("correct-horse")
    db.session.add(user)
    db.session.commit()
    return user.id


def _stock(owner_id: int, **overrides) -> Stock:
    data = {
        "barcode": "B1",
        "name": "Blue Widget",
        "sku": "WID-1",
        "quantity": 10,
        "stock_rate": 5,
        "selling_rate": 8,
    }
    data.update(overrides)
    stock = stock_ledger.create_stock(owner_id, data)
    db.session.commit()
    return stock


def _quantity(stock_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Stock, stock_id).quantity


def test_create_stock_applies_defaults_and_records_movement(app):
    owner_id = _owner()
    stock = _stock(owner_id, vat_percent="12.5", purchase_date="2025-01-02")

    assert stock.quantity == 10
    assert stock.stock_rate == Decimal("5.00")
    assert stock.vat_percent == Decimal("12.50")
    assert stock.discount_allowed is False
    assert stock.to_dict()["status"] == "In Stock"
    assert stock.to_dict()["purchase_date"] == "2025-01-02"

    movement = StockMovement.query.filter_by(stock_id=stock.id).one()
    assert movement.quantity == 10
    assert movement.movement_type == MovementType.ADJUST


def test_create_stock_reports_first_validation_error(app):
    owner_id = _owner()
    with pytest.raises(ValidationError) as excinfo:
        stock_ledger.create_stock(owner_id, {"name": "Nameless", "quantity": -2})

    assert excinfo.value.message == "Barcode is required"
    assert "SKU is required" in excinfo.value.errors
    assert "Quantity must be a non-negative integer" in excinfo.value.errors

    with pytest.raises(ValidationError) as excinfo:
        _stock(owner_id, stock_rate="4.999")
    assert excinfo.value.message == "Stock Rate must have at most 2 decimal places"


def test_barcode_is_unique_per_owner(app):
    alice = _owner("alice")
    bob = _owner("bob")
    _stock(alice)

    with pytest.raises(ValidationError) as excinfo:
        stock_ledger.create_stock(alice, {"barcode": "B1", "name": "Dup", "sku": "OTHER"})
    assert excinfo.value.message == "Barcode already exists"

    other = _stock(bob)
    assert other.owner_id == bob


def test_decrement_reduces_quantity_and_logs_sale(app):
    owner_id = _owner()
    stock = _stock(owner_id)

    remaining = stock_ledger.decrement(owner_id, stock.id, 4, reference="INV-1")
    db.session.commit()

    assert remaining == 6
    assert _quantity(stock.id) == 6
    sale = StockMovement.query.filter_by(movement_type=MovementType.SALE).one()
    assert sale.quantity == -4
    assert sale.reference == "INV-1"


def test_decrement_never_drives_quantity_negative(app):
    owner_id = _owner()
    stock = _stock(owner_id, quantity=3)

    with pytest.raises(InsufficientStockError) as excinfo:
        stock_ledger.decrement(owner_id, stock.id, 4)

    assert excinfo.value.details == {"stock_id": stock.id, "available": 3, "requested": 4}
    db.session.rollback()
    assert _quantity(stock.id) == 3


def test_decrement_loses_race_against_concurrent_writer(app):
    owner_id = _owner()
    stock = _stock(owner_id)

    # availability looked fine when checked
    stock_ledger.ensure_available(owner_id, {stock.id: 8})

    # another request sells most of the stock before this one decrements
    db.session.execute(
        text("UPDATE stock SET quantity = 2 WHERE id = :id"), {"id": stock.id}
    )
    db.session.commit()

    with pytest.raises(InsufficientStockError):
        stock_ledger.decrement(owner_id, stock.id, 8)
    db.session.rollback()
    assert _quantity(stock.id) == 2


def test_back_to_back_decrements_only_one_wins(app):
    owner_id = _owner()
    stock = _stock(owner_id)

    stock_ledger.decrement(owner_id, stock.id, 6)
    with pytest.raises(InsufficientStockError):
        stock_ledger.decrement(owner_id, stock.id, 6)
    db.session.commit()

    assert _quantity(stock.id) == 4


def test_decrement_is_scoped_to_owner(app):
    alice = _owner("alice")
    bob = _owner("bob")
    stock = _stock(alice)

    with pytest.raises(NotFoundError):
        stock_ledger.decrement(bob, stock.id, 1)
    with pytest.raises(NotFoundError):
        stock_ledger.get_stock(bob, stock.id)
    assert stock_ledger.lookup_by_barcode(bob, "B1") is None
    assert stock_ledger.lookup_by_barcode(alice, "B1").id == stock.id


def test_increment_has_no_upper_bound(app):
    owner_id = _owner()
    stock = _stock(owner_id)

    assert stock_ledger.increment(owner_id, stock.id, 1000, reference="INV-9") == 1010
    with pytest.raises(NotFoundError):
        stock_ledger.increment(owner_id, stock.id + 100, 1)


def test_ensure_available_reports_shortfall_without_mutation(app):
    owner_id = _owner()
    first = _stock(owner_id)
    second = _stock(owner_id, barcode="B2", sku="WID-2", quantity=1)

    stocks = stock_ledger.ensure_available(owner_id, {first.id: 10, second.id: 1})
    assert set(stocks) == {first.id, second.id}

    with pytest.raises(InsufficientStockError):
        stock_ledger.ensure_available(owner_id, {first.id: 1, second.id: 2})
    with pytest.raises(NotFoundError):
        stock_ledger.ensure_available(owner_id, {second.id + 50: 1})

    assert _quantity(first.id) == 10
    assert _quantity(second.id) == 1


def test_update_stock_is_partial_and_tracks_quantity_edits(app):
    owner_id = _owner()
    stock = _stock(owner_id)

    stock_ledger.update_stock(owner_id, stock.id, {"quantity": 7, "supplier": "Northwind"})
    db.session.commit()

    refreshed = stock_ledger.get_stock(owner_id, stock.id)
    assert refreshed.quantity == 7
    assert refreshed.supplier == "Northwind"
    assert refreshed.name == "Blue Widget"
    edit = StockMovement.query.filter_by(reference="edit").one()
    assert edit.quantity == -3


def test_stock_status_threshold(app):
    assert stock_ledger.stock_status(0) == "Out of Stock"
    assert stock_ledger.stock_status(1) == "In Stock"
    assert stock_ledger.stock_status(4, threshold=5) == "Out of Stock"


def test_lookup_by_ids_and_delete(app):
    owner_id = _owner()
    first = _stock(owner_id)
    second = _stock(owner_id, barcode="B2", sku="WID-2")

    found = stock_ledger.lookup_by_ids(owner_id, [first.id, second.id, None])
    assert set(found) == {first.id, second.id}

    stock_ledger.delete_stock(owner_id, first.id)
    db.session.commit()
    assert set(stock_ledger.lookup_by_ids(owner_id, [first.id, second.id])) == {second.id}
    assert [stock.barcode for stock in stock_ledger.list_stocks(owner_id)] == ["B2"]
